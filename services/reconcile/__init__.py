"""Plan execution engine.

This package contains:
- the action contract (`base.py`) and action context (`context.py`)
- the registry and its factory decorators (`registry.py`)
- built-in actions (`actions/`)
- the plan executor (`executor.py`) and per-tick reconciler (`reconciler.py`)
"""

from services.reconcile.base import (
    ABORT,
    IN_PROGRESS,
    READY,
    Action,
    ActionImpl,
    Progress,
    TimeoutHandling,
)
from services.reconcile.context import ActionContext, AgencyState, ClusterBackend, JobState, JobStatus
from services.reconcile.errors import (
    ActionError,
    BackendError,
    ConfigurationError,
    NotFoundError,
    ReconcileError,
    StatusConflictError,
    UnknownActionTypeError,
)
from services.reconcile.executor import ActionOutcome, PlanExecutor, PlanRunResult
from services.reconcile.reconciler import (
    PlanGenerator,
    PlanProposal,
    Reconciler,
    TickResult,
    with_status_update,
)
from services.reconcile.registry import (
    ActionRegistry,
    deprecated_action,
    get_default_registry,
    with_start_failure_grace_period,
)
from services.reconcile.status_store import InMemoryStatusStore, PostgresStatusStore, StatusStore

__all__ = [
    "ABORT",
    "IN_PROGRESS",
    "READY",
    "Action",
    "ActionImpl",
    "Progress",
    "TimeoutHandling",
    "ActionContext",
    "AgencyState",
    "ClusterBackend",
    "JobState",
    "JobStatus",
    "ReconcileError",
    "ActionError",
    "BackendError",
    "NotFoundError",
    "ConfigurationError",
    "UnknownActionTypeError",
    "StatusConflictError",
    "ActionOutcome",
    "PlanExecutor",
    "PlanRunResult",
    "PlanGenerator",
    "PlanProposal",
    "Reconciler",
    "TickResult",
    "with_status_update",
    "ActionRegistry",
    "deprecated_action",
    "get_default_registry",
    "with_start_failure_grace_period",
    "InMemoryStatusStore",
    "PostgresStatusStore",
    "StatusStore",
]
