"""Action timeout defaults, override resolution and the timeout predicate."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timedelta

from contracts.deployment import ActionRecord, ActionType, DeploymentSpec, utcnow

# A resolved timeout of zero never expires.
INFINITE_TIMEOUT = timedelta(0)

DEFAULT_ACTION_TIMEOUT = timedelta(minutes=10)

ACTION_DEFAULT_TIMEOUTS: Mapping[ActionType, timedelta] = {
    ActionType.ADD_MEMBER: timedelta(minutes=10),
    ActionType.CLEAN_OUT_MEMBER: timedelta(hours=48),
    ActionType.DISABLE_MAINTENANCE: timedelta(minutes=10),
    ActionType.ENABLE_MAINTENANCE: timedelta(minutes=10),
    ActionType.IDLE: timedelta(minutes=10),
    ActionType.MEMBER_PHASE_UPDATE: timedelta(minutes=10),
    ActionType.REBUILD_OUT_SYNCED_SHARDS: timedelta(hours=24),
    ActionType.REMOVE_MEMBER: timedelta(minutes=15),
    ActionType.RESIGN_LEADERSHIP: timedelta(minutes=30),
    ActionType.ROTATE_MEMBER: timedelta(minutes=15),
    ActionType.ROTATE_START_MEMBER: timedelta(minutes=15),
    ActionType.ROTATE_STOP_MEMBER: timedelta(minutes=15),
    ActionType.SET_CURRENT_IMAGE: timedelta(hours=6),
    ActionType.SET_MEMBER_CONDITION: timedelta(minutes=10),
    ActionType.SHUTDOWN_MEMBER: timedelta(minutes=30),
    ActionType.WAIT_FOR_MEMBER_UP: timedelta(minutes=30),
}


def is_infinite(timeout: timedelta | None) -> bool:
    return timeout is None or timeout <= INFINITE_TIMEOUT


def is_action_timeout(
    timeout: timedelta | None,
    record: ActionRecord,
    now: datetime | None = None,
) -> bool:
    """Return True when a started record ran longer than ``timeout``."""
    if record.start_time is None or is_infinite(timeout):
        return False
    return (now or utcnow()) - record.start_time > timeout


class TimeoutPolicy:
    """Resolve the effective timeout of an action type.

    Order: deployment spec override, operator configuration override, the
    timeout the action declares, the compiled-in per-type default, and finally
    the configured global default. Only overrides can select the infinite
    sentinel; a zero declared timeout counts as unset.
    """

    def __init__(
        self,
        *,
        spec: DeploymentSpec | None = None,
        overrides: Mapping[str, float] | None = None,
        default_timeout: timedelta = DEFAULT_ACTION_TIMEOUT,
        defaults: Mapping[ActionType, timedelta] = ACTION_DEFAULT_TIMEOUTS,
    ) -> None:
        self._spec = spec or DeploymentSpec()
        self._overrides = {str(k): timedelta(seconds=float(v)) for k, v in (overrides or {}).items()}
        self._default_timeout = default_timeout
        self._defaults = defaults

    def resolve(self, action_type: ActionType, declared: timedelta | None = None) -> timedelta:
        from_spec = self._spec.timeouts.get(action_type)
        if from_spec is not None:
            return from_spec
        configured = self._overrides.get(str(action_type))
        if configured is not None:
            return configured
        if declared is not None and not is_infinite(declared):
            return declared
        return self._defaults.get(action_type, self._default_timeout)
