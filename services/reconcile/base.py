"""Base contracts for plan actions."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import timedelta
from enum import StrEnum
from typing import TYPE_CHECKING, NamedTuple

from contracts.deployment import ActionRecord

if TYPE_CHECKING:
    from services.reconcile.context import ActionContext


class Progress(NamedTuple):
    """Result of one CheckProgress poll."""

    ready: bool
    abort: bool = False


IN_PROGRESS = Progress(ready=False, abort=False)
READY = Progress(ready=True, abort=False)
ABORT = Progress(ready=False, abort=True)


class TimeoutHandling(StrEnum):
    """What the executor does when a started action exceeds its timeout."""

    ABORT = "abort"
    RETRY = "retry"


class Action(ABC):
    """Abstract plan action contract.

    ``start`` and ``check_progress`` raise one of the transient errors from
    ``services.reconcile.errors`` for conditions worth retrying next tick.
    """

    timeout_handling: TimeoutHandling = TimeoutHandling.ABORT

    @abstractmethod
    def start(self) -> bool:
        """Issue the action's side effects; return True when already complete."""
        raise NotImplementedError

    @abstractmethod
    def check_progress(self) -> Progress:
        """Poll external state of a started action."""
        raise NotImplementedError

    @abstractmethod
    def timeout(self) -> timedelta:
        """Maximum time from start before the executor gives up."""
        raise NotImplementedError

    @abstractmethod
    def member_id(self) -> str:
        """Targeted member, empty for deployment-wide actions."""
        raise NotImplementedError

    def on_timeout(self) -> None:
        """Compensating bookkeeping run before a timed out action is dropped."""

    def post(self) -> None:
        """Run after the action completed and left the plan."""

    def plan_append(self, plan: list[ActionRecord]) -> tuple[list[ActionRecord], bool]:
        """Return the remaining plan with follow-up records, and whether it changed."""
        return plan, False


class ActionImpl(Action):
    """Record-backed action base used by all built-in actions."""

    # Declared timeout; None defers to the per-type table.
    default_timeout: timedelta | None = None

    def __init__(self, record: ActionRecord, ctx: ActionContext) -> None:
        self.record = record
        self.ctx = ctx

    def check_progress(self) -> Progress:
        return READY

    def timeout(self) -> timedelta:
        return self.ctx.timeout_policy.resolve(self.record.type, self.default_timeout)

    def member_id(self) -> str:
        return self.record.member_id

    def __repr__(self) -> str:
        return f"{type(self).__name__}(type={self.record.type}, member={self.record.member_id!r})"
