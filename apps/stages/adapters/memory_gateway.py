# apps/stages/adapters/memory_gateway.py
import asyncio
import copy
import itertools
from typing import Dict, List, Optional, Tuple

from apps.stages.domain.entities import StageEntity, TaskEntity
from apps.stages.ports.stage_gateway import (
    GatewayError,
    IStageGateway,
    MutationResult,
    StagePayload,
    TaskPayload,
)


class InMemoryStageGateway(IStageGateway):
    """
    Działająca implementacja portu na słownikach (testy, tryb offline).
    Serwer sam nadaje id, usunięcie etapu kasuje jego zadania.

    Awarie można wstrzyknąć:
        gateway.fail_next('complete_task', "Serwer odrzucił")      -> success=False
        gateway.fail_next('fetch_tasks', error=GatewayError("x"))   -> wyjątek
    """

    def __init__(self, stages: Optional[List[StageEntity]] = None, latency: float = 0.0):
        self.latency = latency
        self._stages: Dict[int, StageEntity] = {}
        self._tasks: Dict[int, TaskEntity] = {}
        self._failures: Dict[str, List[Tuple[str, Optional[Exception]]]] = {}
        self.calls: List[Tuple[str, tuple]] = []

        for stage in stages or []:
            # Zadania trzymamy osobno, jak w prawdziwym API
            self._stages[stage.id] = StageEntity(
                id=stage.id, project_id=stage.project_id, name=stage.name,
                description=stage.description, start_date=stage.start_date, end_date=stage.end_date,
            )
            for task in stage.tasks:
                self._tasks[task.id] = copy.deepcopy(task)

        self._stage_ids = itertools.count(max(self._stages, default=0) + 1)
        self._task_ids = itertools.count(max(self._tasks, default=0) + 1)

    # -- wstrzykiwanie awarii ------------------------------------------------

    def fail_next(self, operation: str, message: str = "Operation failed", error: Optional[Exception] = None):
        self._failures.setdefault(operation, []).append((message, error))

    async def _enter(self, operation: str, *args) -> Optional[MutationResult]:
        self.calls.append((operation, args))
        pending = self._failures.get(operation)
        failure = pending.pop(0) if pending else None

        # Oddajemy sterowanie pętli, jak przy prawdziwym wywołaniu sieciowym
        await asyncio.sleep(self.latency)

        if failure is None:
            return None
        message, error = failure
        if error is not None:
            raise error
        return MutationResult(success=False, message=message)

    def calls_to(self, operation: str) -> List[tuple]:
        return [args for name, args in self.calls if name == operation]

    # -- odczyt ---------------------------------------------------------------

    async def fetch_stages(self, project_id: int) -> List[StageEntity]:
        failure = await self._enter('fetch_stages', project_id)
        if failure is not None:
            raise GatewayError(failure.message)
        return [copy.deepcopy(s) for s in self._stages.values() if s.project_id == project_id]

    async def fetch_tasks(self, stage_id: int) -> List[TaskEntity]:
        failure = await self._enter('fetch_tasks', stage_id)
        if failure is not None:
            raise GatewayError(failure.message)
        return [copy.deepcopy(t) for t in self._tasks.values() if t.stage_id == stage_id]

    # -- etapy ----------------------------------------------------------------

    async def create_stage(self, payload: StagePayload) -> MutationResult:
        failure = await self._enter('create_stage', payload)
        if failure is not None:
            return failure
        stage_id = next(self._stage_ids)
        self._stages[stage_id] = StageEntity(
            id=stage_id, project_id=payload.project_id, name=payload.name,
            description=payload.description, start_date=payload.start_date, end_date=payload.end_date,
        )
        return MutationResult(success=True, message="Stage created")

    async def edit_stage(self, stage_id: int, payload: StagePayload) -> MutationResult:
        failure = await self._enter('edit_stage', stage_id, payload)
        if failure is not None:
            return failure
        stage = self._stages.get(stage_id)
        if stage is None:
            return MutationResult(success=False, message="Stage not found")
        stage.name = payload.name
        stage.description = payload.description
        stage.start_date = payload.start_date
        stage.end_date = payload.end_date
        return MutationResult(success=True, message="Stage updated")

    async def delete_stage(self, stage_id: int) -> MutationResult:
        failure = await self._enter('delete_stage', stage_id)
        if failure is not None:
            return failure
        if self._stages.pop(stage_id, None) is None:
            return MutationResult(success=False, message="Stage not found")
        for task_id in [t.id for t in self._tasks.values() if t.stage_id == stage_id]:
            del self._tasks[task_id]
        return MutationResult(success=True, message="Stage deleted")

    # -- zadania --------------------------------------------------------------

    async def create_task(self, payload: TaskPayload) -> MutationResult:
        failure = await self._enter('create_task', payload)
        if failure is not None:
            return failure
        if payload.stage_id not in self._stages:
            return MutationResult(success=False, message="Stage not found")
        task_id = next(self._task_ids)
        self._tasks[task_id] = TaskEntity(
            id=task_id, stage_id=payload.stage_id, name=payload.name,
            description=payload.description, start_date=payload.start_date,
            expected_end_date=payload.end_date,
        )
        return MutationResult(success=True, message="Task created")

    async def edit_task(self, task_id: int, name: str, description: str) -> MutationResult:
        failure = await self._enter('edit_task', task_id, name, description)
        if failure is not None:
            return failure
        task = self._tasks.get(task_id)
        if task is None:
            return MutationResult(success=False, message="Task not found")
        task.name = name
        task.description = description
        return MutationResult(success=True, message="Task updated")

    async def delete_task(self, task_id: int) -> MutationResult:
        failure = await self._enter('delete_task', task_id)
        if failure is not None:
            return failure
        if self._tasks.pop(task_id, None) is None:
            return MutationResult(success=False, message="Task not found")
        return MutationResult(success=True, message="Task deleted")

    async def _set_completed(self, operation: str, task_id: int, value: bool) -> MutationResult:
        failure = await self._enter(operation, task_id)
        if failure is not None:
            return failure
        task = self._tasks.get(task_id)
        if task is None:
            return MutationResult(success=False, message="Task not found")
        task.is_completed = value
        return MutationResult(success=True)

    async def complete_task(self, task_id: int) -> MutationResult:
        return await self._set_completed('complete_task', task_id, True)

    async def uncheck_task(self, task_id: int) -> MutationResult:
        return await self._set_completed('uncheck_task', task_id, False)

    # -- pomocnicze dla testów ------------------------------------------------

    def server_task(self, task_id: int) -> Optional[TaskEntity]:
        return self._tasks.get(task_id)

    def server_stage(self, stage_id: int) -> Optional[StageEntity]:
        return self._stages.get(stage_id)
