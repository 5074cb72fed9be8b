# apps/stages/ports/stage_gateway.py
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import List, Optional

from apps.stages.domain.entities import StageEntity, TaskEntity


class GatewayError(Exception):
    """Każda porażka zdalnego serwisu: sieć, timeout, kod HTTP, zła koperta."""


@dataclass(frozen=True)
class MutationResult:
    """Jednolita koperta {success, message} dla operacji zmieniających dane."""
    success: bool
    message: str = ""


@dataclass
class StagePayload:
    project_id: int
    name: str
    description: str = ""
    start_date: Optional[date] = None
    end_date: Optional[date] = None


@dataclass
class TaskPayload:
    stage_id: int
    name: str
    description: str = ""
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class IStageGateway(ABC):
    """
    Port do zdalnego systemu (źródło prawdy dla etapów i zadań).
    Wszystkie metody są asynchroniczne.
    """

    @abstractmethod
    async def fetch_stages(self, project_id: int) -> List[StageEntity]:
        """Zwraca etapy projektu (bez zadań). Rzuca GatewayError."""
        pass

    @abstractmethod
    async def fetch_tasks(self, stage_id: int) -> List[TaskEntity]:
        """Zwraca zadania etapu w kolejności serwera. Rzuca GatewayError."""
        pass

    @abstractmethod
    async def create_stage(self, payload: StagePayload) -> MutationResult:
        pass

    @abstractmethod
    async def edit_stage(self, stage_id: int, payload: StagePayload) -> MutationResult:
        pass

    @abstractmethod
    async def delete_stage(self, stage_id: int) -> MutationResult:
        pass

    @abstractmethod
    async def create_task(self, payload: TaskPayload) -> MutationResult:
        pass

    @abstractmethod
    async def edit_task(self, task_id: int, name: str, description: str) -> MutationResult:
        """Edycja dotyczy tylko nazwy i opisu."""
        pass

    @abstractmethod
    async def delete_task(self, task_id: int) -> MutationResult:
        pass

    @abstractmethod
    async def complete_task(self, task_id: int) -> MutationResult:
        pass

    @abstractmethod
    async def uncheck_task(self, task_id: int) -> MutationResult:
        pass

    async def close(self) -> None:
        """Zwalnia zasoby (np. sesję HTTP). Domyślnie nic nie robi."""
        return None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
