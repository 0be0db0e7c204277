"""Registry mapping action types to action factories."""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta
from threading import Lock

from contracts.deployment import ActionRecord, ActionType
from infra.logging_config import StructuredLogger
from services.reconcile.base import (
    IN_PROGRESS,
    READY,
    Action,
    ActionImpl,
    Progress,
    TimeoutHandling,
)
from services.reconcile.context import ActionContext
from services.reconcile.errors import (
    ConfigurationError,
    DuplicateActionError,
    RegistryFrozenError,
    UnknownActionTypeError,
)

ActionFactory = Callable[[ActionRecord, ActionContext], Action]

logger = StructuredLogger(__name__)


class ActionRegistry:
    """Action type to factory mapping; read-only once frozen."""

    def __init__(self) -> None:
        self._factories: dict[ActionType, ActionFactory] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, action_type: ActionType | str, factory: ActionFactory) -> None:
        """Register ``factory`` for ``action_type``."""
        if self._frozen:
            raise RegistryFrozenError(f"registry is frozen, cannot register {action_type!r}")
        key = ActionType(action_type)
        if key in self._factories:
            raise DuplicateActionError(f"action already registered for {key.value!r}")
        self._factories[key] = factory

    def freeze(self) -> ActionRegistry:
        self._frozen = True
        return self

    def is_registered(self, action_type: ActionType | str) -> bool:
        try:
            return ActionType(action_type) in self._factories
        except ValueError:
            return False

    def list_types(self) -> list[str]:
        """Return registered action types in deterministic order."""
        return sorted(t.value for t in self._factories)

    def create(self, record: ActionRecord, ctx: ActionContext) -> Action:
        """Build the action for one plan record."""
        factory = self._factories.get(record.type)
        if factory is None:
            raise UnknownActionTypeError(str(record.type))
        return factory(record, ctx)


class _StartFailureGracePeriod(Action):
    """Report "not ready" for transient progress errors shortly after start."""

    def __init__(self, inner: Action, record: ActionRecord, ctx: ActionContext, grace: timedelta) -> None:
        self._inner = inner
        self._record = record
        self._ctx = ctx
        self._grace = grace

    @property
    def inner(self) -> Action:
        return self._inner

    @property
    def timeout_handling(self) -> TimeoutHandling:  # type: ignore[override]
        return self._inner.timeout_handling

    def start(self) -> bool:
        return self._inner.start()

    def check_progress(self) -> Progress:
        try:
            return self._inner.check_progress()
        except ConfigurationError:
            raise
        except Exception as exc:
            started = self._record.start_time
            if started is None or self._ctx.now() - started >= self._grace:
                raise
            logger.info(
                "action_error_within_grace_period",
                action_type=str(self._record.type),
                member_id=self._record.member_id,
                error=str(exc),
            )
            return IN_PROGRESS

    def timeout(self) -> timedelta:
        return self._inner.timeout()

    def member_id(self) -> str:
        return self._inner.member_id()

    def on_timeout(self) -> None:
        self._inner.on_timeout()

    def post(self) -> None:
        self._inner.post()

    def plan_append(self, plan: list[ActionRecord]) -> tuple[list[ActionRecord], bool]:
        return self._inner.plan_append(plan)


def with_start_failure_grace_period(factory: ActionFactory, grace: timedelta) -> ActionFactory:
    """Wrap ``factory`` so its actions tolerate progress errors for ``grace`` after start."""

    def _factory(record: ActionRecord, ctx: ActionContext) -> Action:
        return _StartFailureGracePeriod(factory(record, ctx), record, ctx, grace)

    return _factory


class _DeprecatedAction(ActionImpl):
    """No-op stand-in for types kept only so that old plans still decode."""

    def start(self) -> bool:
        return True

    def check_progress(self) -> Progress:
        return READY


def deprecated_action(record: ActionRecord, ctx: ActionContext) -> Action:
    return _DeprecatedAction(record, ctx)


_DEFAULT_LOCK = Lock()
_DEFAULT_REGISTRY: ActionRegistry | None = None


def get_default_registry() -> ActionRegistry:
    """Return the process-wide registry of built-in actions, built on first use."""
    global _DEFAULT_REGISTRY
    with _DEFAULT_LOCK:
        if _DEFAULT_REGISTRY is None:
            from services.reconcile.actions import register_builtin_actions

            registry = ActionRegistry()
            register_builtin_actions(registry)
            _DEFAULT_REGISTRY = registry.freeze()
        return _DEFAULT_REGISTRY
