# apps/stages/application/reconciliation.py
from dataclasses import dataclass
from enum import Enum
from typing import Dict


class MutationKind(str, Enum):
    TOGGLE_TASK = 'toggle_task'
    CREATE_STAGE = 'create_stage'
    EDIT_STAGE = 'edit_stage'
    DELETE_STAGE = 'delete_stage'
    CREATE_TASK = 'create_task'
    EDIT_TASK = 'edit_task'
    DELETE_TASK = 'delete_task'


class RefreshScope(str, Enum):
    NONE = 'none'                      # stan optymistyczny zostaje jako potwierdzony
    PROJECT_STAGES = 'project_stages'  # ponowne pobranie całego drzewa projektu
    STAGE_TASKS = 'stage_tasks'        # ponowne pobranie zadań jednego etapu


class FailureAction(str, Enum):
    REVERT_LOCAL = 'revert_local'          # cofnięcie zmiany w miejscu
    LEAVE_UNTOUCHED = 'leave_untouched'    # nic nie zostało zmienione lokalnie


@dataclass(frozen=True)
class MutationPolicy:
    optimistic: bool
    refresh_on_success: RefreshScope
    on_failure: FailureAction
    # Ponowienia zawsze inicjuje użytkownik
    auto_retry: bool = False


POLICIES: Dict[MutationKind, MutationPolicy] = {
    MutationKind.TOGGLE_TASK: MutationPolicy(
        optimistic=True,
        refresh_on_success=RefreshScope.NONE,
        on_failure=FailureAction.REVERT_LOCAL,
    ),
    MutationKind.CREATE_STAGE: MutationPolicy(
        optimistic=False,
        refresh_on_success=RefreshScope.PROJECT_STAGES,
        on_failure=FailureAction.LEAVE_UNTOUCHED,
    ),
    MutationKind.EDIT_STAGE: MutationPolicy(
        optimistic=False,
        refresh_on_success=RefreshScope.PROJECT_STAGES,
        on_failure=FailureAction.LEAVE_UNTOUCHED,
    ),
    MutationKind.DELETE_STAGE: MutationPolicy(
        optimistic=False,
        refresh_on_success=RefreshScope.PROJECT_STAGES,
        on_failure=FailureAction.LEAVE_UNTOUCHED,
    ),
    MutationKind.CREATE_TASK: MutationPolicy(
        optimistic=False,
        refresh_on_success=RefreshScope.STAGE_TASKS,
        on_failure=FailureAction.LEAVE_UNTOUCHED,
    ),
    MutationKind.EDIT_TASK: MutationPolicy(
        optimistic=False,
        refresh_on_success=RefreshScope.STAGE_TASKS,
        on_failure=FailureAction.LEAVE_UNTOUCHED,
    ),
    MutationKind.DELETE_TASK: MutationPolicy(
        optimistic=False,
        refresh_on_success=RefreshScope.STAGE_TASKS,
        on_failure=FailureAction.LEAVE_UNTOUCHED,
    ),
}


def policy_for(kind: MutationKind) -> MutationPolicy:
    return POLICIES[kind]
