"""Built-in plan actions.

``BUILTIN_ACTIONS`` is the single table of action type to factory. It is
applied by ``register_builtin_actions``; importing this package registers
nothing.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import timedelta

from contracts.deployment import ActionType
from services.reconcile.actions.add_member import AddMemberAction
from services.reconcile.actions.cleanout_member import CleanOutMemberAction
from services.reconcile.actions.idle import IdleAction
from services.reconcile.actions.maintenance import DisableMaintenanceAction, EnableMaintenanceAction
from services.reconcile.actions.member_status import MemberPhaseUpdateAction, SetMemberConditionAction
from services.reconcile.actions.rebuild_outsynced_shards import RebuildOutSyncedShardsAction
from services.reconcile.actions.remove_member import RemoveMemberAction
from services.reconcile.actions.resign_leadership import ResignLeadershipAction
from services.reconcile.actions.rotate_member import (
    RotateMemberAction,
    RotateStartMemberAction,
    RotateStopMemberAction,
)
from services.reconcile.actions.set_current_image import SetCurrentImageAction
from services.reconcile.actions.shutdown_member import ShutdownMemberAction
from services.reconcile.actions.wait_for_member_up import WaitForMemberUpAction
from services.reconcile.registry import (
    ActionFactory,
    ActionRegistry,
    deprecated_action,
    with_start_failure_grace_period,
)

ROTATE_GRACE_PERIOD = timedelta(seconds=60)

BUILTIN_ACTIONS: Mapping[ActionType, ActionFactory] = {
    ActionType.IDLE: IdleAction,
    ActionType.ADD_MEMBER: AddMemberAction,
    ActionType.REMOVE_MEMBER: RemoveMemberAction,
    ActionType.CLEAN_OUT_MEMBER: CleanOutMemberAction,
    ActionType.SHUTDOWN_MEMBER: ShutdownMemberAction,
    ActionType.RESIGN_LEADERSHIP: ResignLeadershipAction,
    ActionType.ROTATE_MEMBER: with_start_failure_grace_period(RotateMemberAction, ROTATE_GRACE_PERIOD),
    ActionType.ROTATE_START_MEMBER: with_start_failure_grace_period(
        RotateStartMemberAction, ROTATE_GRACE_PERIOD
    ),
    ActionType.ROTATE_STOP_MEMBER: with_start_failure_grace_period(
        RotateStopMemberAction, ROTATE_GRACE_PERIOD
    ),
    ActionType.WAIT_FOR_MEMBER_UP: WaitForMemberUpAction,
    ActionType.ENABLE_MAINTENANCE: EnableMaintenanceAction,
    ActionType.DISABLE_MAINTENANCE: DisableMaintenanceAction,
    ActionType.MEMBER_PHASE_UPDATE: MemberPhaseUpdateAction,
    ActionType.SET_MEMBER_CONDITION: SetMemberConditionAction,
    ActionType.REBUILD_OUT_SYNCED_SHARDS: RebuildOutSyncedShardsAction,
    ActionType.SET_CURRENT_IMAGE: SetCurrentImageAction,
    ActionType.DISABLE_CLUSTER_SCALING: deprecated_action,
    ActionType.ENABLE_CLUSTER_SCALING: deprecated_action,
}


def register_builtin_actions(registry: ActionRegistry) -> ActionRegistry:
    """Register every built-in action on ``registry``."""
    for action_type, factory in BUILTIN_ACTIONS.items():
        registry.register(action_type, factory)
    return registry


__all__ = ["BUILTIN_ACTIONS", "ROTATE_GRACE_PERIOD", "register_builtin_actions"]
