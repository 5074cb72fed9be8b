# apps/projects/domain/services.py
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import List, Optional

from apps.stages.domain.entities import StageEntity, TaskEntity
from apps.stages.domain.services.progress import project_progress
from apps.stages.domain.services.status import days_remaining


class ScheduleHealth(str, Enum):
    GOOD = 'good'
    WARNING = 'warning'
    CRITICAL = 'critical'


class ScheduleHealthService:
    """
    Ocena "zdrowia" harmonogramu: porównuje faktyczny postęp z postępem
    oczekiwanym na podstawie upływu czasu między startem a terminem.
    """

    def __init__(self, warning_gap: int = 10, critical_gap: int = 20):
        self.warning_gap = warning_gap
        self.critical_gap = critical_gap

    def expected_progress(self, start: Optional[date], end: Optional[date], today: date) -> Optional[int]:
        if start is None or end is None:
            return None
        total_days = (end - start).days
        if total_days <= 0:
            return 100 if today >= end else 0
        elapsed = (today - start).days
        # Half-up, jak przy postępie
        expected = (200 * elapsed + total_days) // (2 * total_days)
        return min(100, max(0, expected))

    def evaluate(self, progress: int, start: Optional[date], end: Optional[date], today: date) -> ScheduleHealth:
        if progress >= 100:
            return ScheduleHealth.GOOD

        if end is not None and today > end:
            return ScheduleHealth.CRITICAL

        expected = self.expected_progress(start, end, today)
        if expected is None:
            # Brak dat -> nie ma z czym porównać
            return ScheduleHealth.GOOD

        gap = progress - expected
        if gap < -self.critical_gap:
            return ScheduleHealth.CRITICAL
        if gap < -self.warning_gap:
            return ScheduleHealth.WARNING
        return ScheduleHealth.GOOD

    def stage_health(self, stage: StageEntity, today: date) -> ScheduleHealth:
        return self.evaluate(stage.progress, stage.start_date, stage.end_date, today)


@dataclass
class ProjectSummary:
    project_id: int
    progress: int
    health: ScheduleHealth
    start_date: Optional[date]
    end_date: Optional[date]
    days_remaining: Optional[int]
    total_tasks: int
    completed_tasks: int


class ProjectProgressService:
    def __init__(self, health_service: Optional[ScheduleHealthService] = None):
        self.health_service = health_service or ScheduleHealthService()

    def date_range(self, stages: List[StageEntity]):
        """Zakres projektu = najwcześniejszy start .. najpóźniejszy koniec etapu."""
        starts = [s.start_date for s in stages if s.start_date is not None]
        ends = [s.end_date for s in stages if s.end_date is not None]
        return (min(starts) if starts else None, max(ends) if ends else None)

    def summarize(self, project_id: int, stages: List[StageEntity], today: date) -> ProjectSummary:
        progress = project_progress(stages)
        start, end = self.date_range(stages)
        total = sum(len(s.tasks) for s in stages)
        completed = sum(s.completed_count for s in stages)

        return ProjectSummary(
            project_id=project_id,
            progress=progress,
            health=self.health_service.evaluate(progress, start, end, today),
            start_date=start,
            end_date=end,
            days_remaining=days_remaining(end, today),
            total_tasks=total,
            completed_tasks=completed,
        )


class UpcomingTasksService:
    def __init__(self, window_days: int = 60):
        self.window_days = window_days

    def get_upcoming(self, stages: List[StageEntity], today: date) -> List[TaskEntity]:
        """
        Zwraca nieukończone zadania z terminem w ciągu `window_days` dni.
        Zadania po terminie też się łapią (są na początku listy).
        """
        horizon = today + timedelta(days=self.window_days)
        upcoming = [
            task
            for stage in stages
            for task in stage.tasks
            if not task.is_completed
            and task.expected_end_date is not None
            and task.expected_end_date <= horizon
        ]
        return sorted(upcoming, key=lambda t: (t.expected_end_date, t.stage_id, t.id))
