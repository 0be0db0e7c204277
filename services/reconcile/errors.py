"""Error taxonomy for plan execution.

Any exception an action raises is a transient failure: it is contained inside
one tick and retried on the next one. Configuration errors mean the deployment
cannot be reconciled by this build and always propagate to the caller of the
tick.
"""

from __future__ import annotations


class ReconcileError(Exception):
    """Base class for reconciliation errors."""


class ActionError(ReconcileError):
    """Transient failure raised from Action.start / Action.check_progress."""


class BackendError(ReconcileError):
    """Failure of an external cluster call."""


class NotFoundError(BackendError):
    """The addressed object does not exist on the cluster side."""


class ConfigurationError(ReconcileError):
    """Deployment/version mismatch; not retryable."""


class UnknownActionTypeError(ConfigurationError):
    """No factory is registered for a plan record's type."""

    def __init__(self, action_type: str) -> None:
        super().__init__(f"unknown action type: {action_type!r}")
        self.action_type = action_type


class DuplicateActionError(ConfigurationError):
    """A factory is already registered for the type."""


class RegistryFrozenError(ConfigurationError):
    """Registration attempted after the registry was frozen."""


class StatusDecodeError(ConfigurationError):
    """Persisted status could not be decoded by this build."""


class StatusConflictError(ReconcileError):
    """Optimistic status write lost against a concurrent writer."""

    def __init__(self, name: str, expected_version: int) -> None:
        super().__init__(f"status of {name!r} changed since version {expected_version}")
        self.name = name
        self.expected_version = expected_version


class DeploymentNotFoundError(ReconcileError):
    """No persisted deployment under the given name."""
