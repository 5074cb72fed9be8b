# apps/stages/application/hierarchy_store.py
import asyncio
import logging
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from django.conf import settings
from django.utils import timezone

from apps.projects.domain.services import (
    ProjectProgressService,
    ProjectSummary,
    ScheduleHealthService,
    UpcomingTasksService,
)
from apps.stages.application.reconciliation import (
    FailureAction,
    MutationKind,
    RefreshScope,
    policy_for,
)
from apps.stages.application.use_cases import (
    CreateStageInput,
    CreateTaskInput,
    EditStageInput,
    EditTaskInput,
)
from apps.stages.domain.entities import StageEntity, TaskEntity
from apps.stages.domain.services.progress import project_progress
from apps.stages.ports.stage_gateway import GatewayError, IStageGateway, MutationResult
from apps.stages.signals import hierarchy_changed, mutation_failed

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_MESSAGE = "Operation failed"


class LoadState(str, Enum):
    NOT_LOADED = 'not_loaded'
    LOADING = 'loading'
    LOADED = 'loaded'
    EMPTY = 'empty'      # projekt nie ma żadnych etapów
    ERROR = 'error'      # nie udało się pobrać listy etapów


@dataclass(frozen=True)
class OperationResult:
    success: bool
    message: str = ""
    # True = operacja nic nie zrobiła (nieaktualne id albo zdublowane kliknięcie)
    ignored: bool = False


@dataclass(frozen=True)
class MutationError:
    kind: MutationKind
    entity_id: Optional[int]
    message: str


class HierarchyStore:
    """
    Lokalny cache drzewa Etap -> Zadanie dla jednego projektu.

    Każda operacja zmieniająca dane przechodzi przez ten sam schemat:
    (opcjonalna zmiana optymistyczna) -> wywołanie zdalne -> uzgodnienie
    wg ReconciliationPolicy -> przeliczenie pól pochodnych (przy odczycie).

    Jedna instancja na projekt, tworzona jawnie przez warstwę prezentacji
    i zwalniana przez dispose() po opuszczeniu widoku projektu.
    """

    def __init__(self, project_id: int, gateway: IStageGateway,
                 today_provider: Optional[Callable[[], date]] = None):
        self.project_id = project_id
        self.gateway = gateway
        self._today_provider = today_provider or timezone.localdate

        self._stages: List[StageEntity] = []
        self.load_state = LoadState.NOT_LOADED
        self.load_error: Optional[str] = None
        self.last_error: Optional[MutationError] = None

        # Ostatnie uruchomione pobranie wygrywa
        self._load_generation = 0
        self._task_fetch_generation: Dict[int, int] = {}

        # Licznik potwierdzonych zmian lokalnych; pełne ładowanie nie nadpisuje
        # etapów zmienionych (ani nie przywraca usuniętych) po swoim starcie
        self._change_seq = 0
        self._stage_changed_at: Dict[int, int] = {}
        self._stage_deleted_at: Dict[int, int] = {}

        # task_id -> docelowa wartość is_completed (przełączenia w toku)
        self._pending_toggles: Dict[int, bool] = {}
        self._busy_tasks: Counter = Counter()
        self._busy_stages: Counter = Counter()

        self._project_lock = asyncio.Lock()
        self._stage_locks: Dict[int, asyncio.Lock] = {}

        self._health = ScheduleHealthService()
        self._project_progress = ProjectProgressService(self._health)

    # ------------------------------------------------------------------
    # Odczyt
    # ------------------------------------------------------------------

    def today(self) -> date:
        return self._today_provider()

    @property
    def stages(self) -> List[StageEntity]:
        return list(self._stages)

    @property
    def completing_ids(self) -> Set[int]:
        return set(self._pending_toggles)

    @property
    def progress(self) -> int:
        return project_progress(self._stages)

    def find_stage(self, stage_id: int) -> Optional[StageEntity]:
        for stage in self._stages:
            if stage.id == stage_id:
                return stage
        return None

    def find_task(self, task_id: int) -> Optional[Tuple[StageEntity, TaskEntity]]:
        """Szuka zadania w całym drzewie; stage_id zadania jest rozstrzygające."""
        for stage in self._stages:
            task = stage.find_task(task_id)
            if task is not None:
                return stage, task
        return None

    def is_task_busy(self, task_id: int) -> bool:
        return task_id in self._pending_toggles or self._busy_tasks[task_id] > 0

    def is_stage_busy(self, stage_id: int) -> bool:
        return self._busy_stages[stage_id] > 0

    def summary(self) -> ProjectSummary:
        return self._project_progress.summarize(self.project_id, self._stages, self.today())

    def upcoming_tasks(self, window_days: Optional[int] = None) -> List[TaskEntity]:
        if window_days is None:
            window_days = getattr(settings, 'UPCOMING_TASKS_WINDOW_DAYS', 60)
        return UpcomingTasksService(window_days).get_upcoming(self._stages, self.today())

    def snapshot(self) -> Dict[str, Any]:
        """Otagowane drzewo dla warstwy prezentacji (statusy i postęp liczone teraz)."""
        today = self.today()
        summary = self._project_progress.summarize(self.project_id, self._stages, today)

        return {
            'project_id': self.project_id,
            'today': today.isoformat(),
            'load_state': self.load_state.value,
            'load_error': self.load_error,
            'last_error': self.last_error.message if self.last_error else None,
            'progress': summary.progress,
            'health': summary.health.value,
            'days_remaining': summary.days_remaining,
            'stages': [self._stage_view(stage, today) for stage in self._stages],
        }

    def _stage_view(self, stage: StageEntity, today: date) -> Dict[str, Any]:
        return {
            'id': stage.id,
            'name': stage.name,
            'description': stage.description,
            'start_date': stage.start_date.isoformat() if stage.start_date else None,
            'end_date': stage.end_date.isoformat() if stage.end_date else None,
            'progress': stage.progress,
            'health': self._health.stage_health(stage, today).value,
            'busy': self.is_stage_busy(stage.id),
            'tasks': [self._task_view(task, today) for task in stage.tasks],
        }

    def _task_view(self, task: TaskEntity, today: date) -> Dict[str, Any]:
        return {
            'id': task.id,
            'stage_id': task.stage_id,
            'name': task.name,
            'description': task.description,
            'start_date': task.start_date.isoformat() if task.start_date else None,
            'expected_end_date': task.expected_end_date.isoformat() if task.expected_end_date else None,
            'is_completed': task.is_completed,
            'status': task.status_on(today).value,
            'progress': task.progress,
            'overdue_days': task.overdue_days_on(today),
            'days_remaining': task.days_remaining_on(today),
            'busy': self.is_task_busy(task.id),
        }

    # ------------------------------------------------------------------
    # Ładowanie
    # ------------------------------------------------------------------

    async def load_stages(self) -> OperationResult:
        """Pobiera etapy, a potem (równolegle) zadania każdego etapu."""
        return await self._load(keep_tree_on_failure=False)

    async def _load(self, keep_tree_on_failure: bool) -> OperationResult:
        self._load_generation += 1
        generation = self._load_generation
        started_at = self._change_seq
        previous_state = self.load_state
        if self.load_state in (LoadState.NOT_LOADED, LoadState.ERROR):
            self.load_state = LoadState.LOADING
            self._notify()

        try:
            stages = await self.gateway.fetch_stages(self.project_id)
        except Exception as e:
            if generation != self._load_generation:
                return OperationResult(success=True, ignored=True)
            message = str(e) or "Failed to fetch stages"
            if isinstance(e, GatewayError):
                logger.warning("Nie udało się pobrać etapów projektu %s: %s", self.project_id, message)
            else:
                logger.exception("Błąd przy pobieraniu etapów projektu %s", self.project_id)

            if keep_tree_on_failure:
                # Odświeżenie po udanej zmianie: zostawiamy dotychczasowe drzewo i stan
                if self.load_state is LoadState.LOADING:
                    self.load_state = previous_state
                    self._notify()
                return OperationResult(success=False, message=message)

            self._stages = []
            self.load_state = LoadState.ERROR
            self.load_error = message
            self._notify()
            return OperationResult(success=False, message=message)

        if generation != self._load_generation:
            return OperationResult(success=True, ignored=True)

        results = await asyncio.gather(
            *(self.gateway.fetch_tasks(stage.id) for stage in stages),
            return_exceptions=True,
        )

        if generation != self._load_generation:
            logger.debug("Pomijam wynik nieaktualnego ładowania projektu %s", self.project_id)
            return OperationResult(success=True, ignored=True)

        current = {stage.id: stage for stage in self._stages}
        fresh = []
        for stage, result in zip(stages, results):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
            if self._stage_deleted_at.get(stage.id, 0) > started_at:
                continue
            local = current.get(stage.id)
            if local is not None and self._stage_changed_at.get(stage.id, 0) > started_at:
                # Zadania zmienione lokalnie po starcie ładowania są świeższe
                stage.tasks = local.tasks
            elif isinstance(result, Exception):
                # Etap zostaje, tylko bez zadań (postęp 0)
                logger.warning("Nie udało się pobrać zadań etapu %s: %s", stage.id, result)
                stage.tasks = []
            else:
                stage.tasks = self._with_pending_toggles(result)
            fresh.append(stage)
        stages = fresh

        # Starsze wpisy nie dotyczą już żadnego późniejszego ładowania
        self._stage_changed_at = {k: v for k, v in self._stage_changed_at.items() if v > started_at}
        self._stage_deleted_at = {k: v for k, v in self._stage_deleted_at.items() if v > started_at}

        self._stages = stages
        self.load_state = LoadState.LOADED if stages else LoadState.EMPTY
        self.load_error = None
        logger.info("Projekt %s: wczytano %d etapów", self.project_id, len(stages))
        self._notify()
        return OperationResult(success=True)

    async def _refresh_stage_tasks(self, stage_id: int) -> bool:
        generation = self._task_fetch_generation.get(stage_id, 0) + 1
        self._task_fetch_generation[stage_id] = generation

        try:
            tasks = await self.gateway.fetch_tasks(stage_id)
        except Exception as e:
            logger.warning("Nie udało się odświeżyć zadań etapu %s: %s", stage_id, e)
            return False

        if generation != self._task_fetch_generation.get(stage_id):
            return True

        stage = self.find_stage(stage_id)
        if stage is None:
            # Etap zniknął w międzyczasie (np. usunięty)
            return True
        stage.tasks = self._with_pending_toggles(tasks)
        self._mark_stage_changed(stage_id)
        self._notify()
        return True

    def _with_pending_toggles(self, tasks: List[TaskEntity]) -> List[TaskEntity]:
        """Świeżo pobrane zadania nie mogą nadpisać przełączeń, które są w toku."""
        tasks = list(tasks)
        for task in tasks:
            if task.id in self._pending_toggles:
                task.is_completed = self._pending_toggles[task.id]
        return tasks

    # ------------------------------------------------------------------
    # Przełączanie ukończenia (optymistyczne)
    # ------------------------------------------------------------------

    async def toggle_task_completion(self, task_id: int) -> OperationResult:
        if task_id in self._pending_toggles:
            # Jedno przełączenie na zadanie naraz - drugie kliknięcie ignorujemy
            logger.debug("Zadanie %s jest już przełączane, pomijam", task_id)
            return OperationResult(success=False, message="Task update already in progress", ignored=True)

        located = self.find_task(task_id)
        if located is None:
            return OperationResult(success=True, ignored=True)

        policy = policy_for(MutationKind.TOGGLE_TASK)
        _, task = located
        previous = task.is_completed
        target = not previous

        self._pending_toggles[task_id] = target
        if policy.optimistic:
            self._set_completed(task_id, target)
        self._notify()

        remote = self.gateway.complete_task if target else self.gateway.uncheck_task
        try:
            result = await self._call_remote(MutationKind.TOGGLE_TASK, task_id, lambda: remote(task_id))
        finally:
            self._pending_toggles.pop(task_id, None)

        if result.success:
            # Drzewo mogło zostać w międzyczasie przeładowane - utrwalamy potwierdzony stan
            self._set_completed(task_id, target)
            located = self.find_task(task_id)
            if located is not None:
                self._mark_stage_changed(located[0].id)
            self._notify()
            return OperationResult(success=True, message=result.message)

        if policy.on_failure is FailureAction.REVERT_LOCAL:
            self._set_completed(task_id, previous)
        return self._fail(MutationKind.TOGGLE_TASK, task_id, result.message)

    def _set_completed(self, task_id: int, value: bool):
        located = self.find_task(task_id)
        if located is not None:
            located[1].is_completed = value

    # ------------------------------------------------------------------
    # Etapy (najpierw serwer, potem odświeżenie)
    # ------------------------------------------------------------------

    async def create_stage(self, data: CreateStageInput) -> OperationResult:
        try:
            payload = data.to_payload(self.project_id)
        except ValueError as e:
            return self._fail(MutationKind.CREATE_STAGE, None, str(e))

        async with self._project_lock:
            return await self._run_remote_first(
                MutationKind.CREATE_STAGE, None, None,
                lambda: self.gateway.create_stage(payload),
            )

    async def edit_stage(self, stage_id: int, data: EditStageInput) -> OperationResult:
        if self.find_stage(stage_id) is None:
            return OperationResult(success=True, ignored=True)
        try:
            payload = data.to_payload(self.project_id)
        except ValueError as e:
            return self._fail(MutationKind.EDIT_STAGE, stage_id, str(e))

        async with self._project_lock:
            with self._busy(self._busy_stages, stage_id):
                return await self._run_remote_first(
                    MutationKind.EDIT_STAGE, stage_id, stage_id,
                    lambda: self.gateway.edit_stage(stage_id, payload),
                )

    async def delete_stage(self, stage_id: int) -> OperationResult:
        if self.find_stage(stage_id) is None:
            return OperationResult(success=True, ignored=True)

        def confirm_deleted():
            self._stages = [s for s in self._stages if s.id != stage_id]
            self._mark_stage_deleted(stage_id)
            if not self._stages:
                self.load_state = LoadState.EMPTY

        async with self._project_lock:
            with self._busy(self._busy_stages, stage_id):
                return await self._run_remote_first(
                    MutationKind.DELETE_STAGE, stage_id, stage_id,
                    lambda: self.gateway.delete_stage(stage_id),
                    on_confirmed=confirm_deleted,
                )

    # ------------------------------------------------------------------
    # Zadania (najpierw serwer, potem odświeżenie jednego etapu)
    # ------------------------------------------------------------------

    async def create_task(self, data: CreateTaskInput) -> OperationResult:
        if self.find_stage(data.stage_id) is None:
            return OperationResult(success=True, ignored=True)
        try:
            payload = data.to_payload()
        except ValueError as e:
            return self._fail(MutationKind.CREATE_TASK, None, str(e))

        async with self._stage_lock(data.stage_id):
            with self._busy(self._busy_stages, data.stage_id):
                return await self._run_remote_first(
                    MutationKind.CREATE_TASK, None, data.stage_id,
                    lambda: self.gateway.create_task(payload),
                )

    async def edit_task(self, task_id: int, data: EditTaskInput) -> OperationResult:
        located = self.find_task(task_id)
        if located is None:
            return OperationResult(success=True, ignored=True)
        try:
            data = data.validated()
        except ValueError as e:
            return self._fail(MutationKind.EDIT_TASK, task_id, str(e))

        stage_id = located[1].stage_id
        async with self._stage_lock(stage_id):
            with self._busy(self._busy_tasks, task_id):
                return await self._run_remote_first(
                    MutationKind.EDIT_TASK, task_id, stage_id,
                    lambda: self.gateway.edit_task(task_id, data.name, data.description),
                )

    async def delete_task(self, task_id: int) -> OperationResult:
        located = self.find_task(task_id)
        if located is None:
            # Nie ma czego usuwać - sukces bez wywołania zdalnego
            return OperationResult(success=True, ignored=True)

        stage_id = located[1].stage_id

        def confirm_deleted():
            stage = self.find_stage(stage_id)
            if stage is not None:
                stage.tasks = [t for t in stage.tasks if t.id != task_id]

        async with self._stage_lock(stage_id):
            with self._busy(self._busy_tasks, task_id):
                return await self._run_remote_first(
                    MutationKind.DELETE_TASK, task_id, stage_id,
                    lambda: self.gateway.delete_task(task_id),
                    on_confirmed=confirm_deleted,
                )

    # ------------------------------------------------------------------
    # Wspólna mechanika uzgadniania
    # ------------------------------------------------------------------

    async def _run_remote_first(self, kind: MutationKind, entity_id: Optional[int], stage_id: Optional[int],
                                remote: Callable[[], Awaitable[MutationResult]],
                                on_confirmed: Optional[Callable[[], None]] = None) -> OperationResult:
        policy = policy_for(kind)
        result = await self._call_remote(kind, entity_id, remote)

        if not result.success:
            # LEAVE_UNTOUCHED: lokalnie nic nie zostało zmienione, więc nie ma czego cofać
            return self._fail(kind, entity_id, result.message)

        if policy.refresh_on_success is RefreshScope.STAGE_TASKS and stage_id is not None:
            self._mark_stage_changed(stage_id)

        if on_confirmed is not None:
            # Potwierdzone usunięcie znika od razu, nawet jeśli odświeżenie zawiedzie
            on_confirmed()
            self._notify()

        refreshed = await self._refresh(policy.refresh_on_success, stage_id)
        if not refreshed:
            self._record_error(kind, entity_id, "Changes saved, but refreshing the data failed")
        return OperationResult(success=True, message=result.message)

    async def _refresh(self, scope: RefreshScope, stage_id: Optional[int]) -> bool:
        if scope is RefreshScope.PROJECT_STAGES:
            result = await self._load(keep_tree_on_failure=True)
            return result.success
        if scope is RefreshScope.STAGE_TASKS and stage_id is not None:
            return await self._refresh_stage_tasks(stage_id)
        return True

    async def _call_remote(self, kind: MutationKind, entity_id: Optional[int],
                           remote: Callable[[], Awaitable[MutationResult]]) -> MutationResult:
        """Żaden wyjątek z warstwy sieciowej nie wychodzi poza store."""
        try:
            return await remote()
        except GatewayError as e:
            logger.warning("%s (%s): błąd serwisu: %s", kind.value, entity_id, e)
            return MutationResult(success=False, message=str(e) or DEFAULT_FAILURE_MESSAGE)
        except Exception as e:
            logger.exception("%s (%s): nieoczekiwany błąd", kind.value, entity_id)
            return MutationResult(success=False, message=str(e) or DEFAULT_FAILURE_MESSAGE)

    def _record_error(self, kind: Optional[MutationKind], entity_id: Optional[int], message: str) -> MutationError:
        error = MutationError(kind=kind, entity_id=entity_id, message=message or DEFAULT_FAILURE_MESSAGE)
        self.last_error = error
        logger.warning("Operacja %s (%s) nie powiodła się: %s",
                       kind.value if kind else 'refresh', entity_id, error.message)
        mutation_failed.send(sender=self.__class__, store=self, error=error)
        return error

    def _fail(self, kind: Optional[MutationKind], entity_id: Optional[int], message: str) -> OperationResult:
        error = self._record_error(kind, entity_id, message)
        self._notify()
        return OperationResult(success=False, message=error.message)

    # ------------------------------------------------------------------
    # Pomocnicze
    # ------------------------------------------------------------------

    def _stage_lock(self, stage_id: int) -> asyncio.Lock:
        lock = self._stage_locks.get(stage_id)
        if lock is None:
            lock = self._stage_locks[stage_id] = asyncio.Lock()
        return lock

    def _mark_stage_changed(self, stage_id: int):
        self._change_seq += 1
        self._stage_changed_at[stage_id] = self._change_seq

    def _mark_stage_deleted(self, stage_id: int):
        self._change_seq += 1
        self._stage_deleted_at[stage_id] = self._change_seq
        self._stage_changed_at.pop(stage_id, None)
        self._stage_locks.pop(stage_id, None)
        self._task_fetch_generation.pop(stage_id, None)

    @contextmanager
    def _busy(self, counter: Counter, key: int):
        counter[key] += 1
        self._notify()
        try:
            yield
        finally:
            counter[key] -= 1
            if counter[key] <= 0:
                del counter[key]
            self._notify()

    def _notify(self):
        hierarchy_changed.send(sender=self.__class__, store=self)

    def clear_error(self):
        self.last_error = None
        self._notify()

    def dispose(self):
        """Zwalnia stan po opuszczeniu widoku projektu; spóźnione wyniki zostaną zignorowane."""
        self._load_generation += 1
        self._task_fetch_generation.clear()
        self._stages = []
        self._pending_toggles.clear()
        self._busy_tasks.clear()
        self._busy_stages.clear()
        self._stage_locks.clear()
        self._stage_changed_at.clear()
        self._stage_deleted_at.clear()
        self.load_state = LoadState.NOT_LOADED
        self.load_error = None
        self.last_error = None
        self._notify()
