# apps/stages/domain/services/progress.py
from functools import lru_cache
from typing import Iterable, List

from apps.stages.domain.entities import StageEntity, TaskEntity


@lru_cache(maxsize=1024)
def completion_percent(completed: int, total: int) -> int:
    """
    round(100 * completed / total) z zaokrągleniem "half-up" (1/8 -> 13, 1/3 -> 33).
    """
    if total <= 0:
        return 0
    completed = max(0, min(completed, total))
    return (200 * completed + total) // (2 * total)


def stage_progress(tasks: Iterable[TaskEntity]) -> int:
    """
    Postęp etapu = udział zadań z is_completed=True.
    Status pochodny nie ma wpływu: opóźnione zadanie liczy się
    dopiero po oznaczeniu jako ukończone.
    """
    total = 0
    completed = 0
    for task in tasks:
        total += 1
        if task.is_completed:
            completed += 1
    return completion_percent(completed, total)


def project_progress(stages: List[StageEntity]) -> int:
    """Ta sama formuła na sumie wszystkich zadań (nie średnia procentów etapów)."""
    return stage_progress(task for stage in stages for task in stage.tasks)
