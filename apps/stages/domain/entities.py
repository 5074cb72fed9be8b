# apps/stages/domain/entities.py
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional
from enum import Enum


class TaskStatus(str, Enum):
    NOT_STARTED = 'not-started'
    IN_PROGRESS = 'in-progress'
    DELAYED = 'delayed'
    COMPLETED = 'completed'


@dataclass
class TaskEntity:
    id: int
    stage_id: int
    name: str
    description: str = ""

    # Daty kalendarzowe; None = data nieczytelna ("nieskończenie daleko w przyszłości")
    start_date: Optional[date] = None
    expected_end_date: Optional[date] = None

    # Jedyne źródło prawdy o ukończeniu (pochodzi ze zdalnego serwisu)
    is_completed: bool = False

    @property
    def progress(self) -> int:
        """Postęp zadania jest binarny: 0 albo 100."""
        return 100 if self.is_completed else 0

    def status_on(self, today: date) -> TaskStatus:
        from apps.stages.domain.services.status import derive_status
        return derive_status(self.is_completed, self.start_date, self.expected_end_date, today)

    def overdue_days_on(self, today: date) -> int:
        from apps.stages.domain.services.status import overdue_days
        if self.is_completed:
            return 0
        return overdue_days(self.expected_end_date, today)

    def days_remaining_on(self, today: date) -> Optional[int]:
        from apps.stages.domain.services.status import days_remaining
        return days_remaining(self.expected_end_date, today)


@dataclass
class StageEntity:
    id: int
    project_id: int
    name: str
    description: str = ""
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    # Kolejność = kolejność zwrócona przez serwer
    tasks: List[TaskEntity] = field(default_factory=list)

    @property
    def progress(self) -> int:
        """Liczone przy każdym odczycie, nigdy nie przechowywane."""
        from apps.stages.domain.services.progress import stage_progress
        return stage_progress(self.tasks)

    @property
    def completed_count(self) -> int:
        return sum(1 for t in self.tasks if t.is_completed)

    def find_task(self, task_id: int) -> Optional[TaskEntity]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None
