# apps/stages/application/use_cases.py
from dataclasses import dataclass
from datetime import date
from typing import Optional

from apps.stages.ports.stage_gateway import StagePayload, TaskPayload


def _check_dates(start_date: Optional[date], end_date: Optional[date]):
    if start_date and end_date and end_date < start_date:
        raise ValueError("End date cannot be earlier than start date")


@dataclass
class CreateStageInput:
    name: str
    description: str = ""
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    def to_payload(self, project_id: int) -> StagePayload:
        if not self.name or not self.name.strip():
            raise ValueError("Stage name cannot be empty")
        _check_dates(self.start_date, self.end_date)
        return StagePayload(
            project_id=project_id,
            name=self.name.strip(),
            description=self.description or "",
            start_date=self.start_date,
            end_date=self.end_date,
        )


# Edycja etapu wysyła pełny obiekt, tak jak tworzenie
EditStageInput = CreateStageInput


@dataclass
class CreateTaskInput:
    stage_id: int
    name: str
    description: str = ""
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    def to_payload(self) -> TaskPayload:
        if not self.name or not self.name.strip():
            raise ValueError("Task name cannot be empty")
        _check_dates(self.start_date, self.end_date)
        return TaskPayload(
            stage_id=self.stage_id,
            name=self.name.strip(),
            description=self.description or "",
            start_date=self.start_date,
            end_date=self.end_date,
        )


@dataclass
class EditTaskInput:
    """Edycja zadania zmienia wyłącznie nazwę i opis."""
    name: str
    description: str = ""

    def validated(self) -> 'EditTaskInput':
        if not self.name or not self.name.strip():
            raise ValueError("Task name cannot be empty")
        return EditTaskInput(name=self.name.strip(), description=self.description or "")
