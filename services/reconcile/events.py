"""Event sink primitives for plan execution events."""

from __future__ import annotations

from typing import NamedTuple, Protocol

from infra.logging_config import StructuredLogger

REASON_ACTION_COMPLETED = "ActionCompleted"
REASON_ACTION_START_FAILED = "ActionStartFailed"
REASON_ACTION_PROGRESS_FAILED = "ActionProgressFailed"
REASON_ACTION_POST_FAILED = "ActionPostFailed"
REASON_PLAN_ABORTED = "PlanAborted"
REASON_PLAN_TIMEOUT = "PlanTimeout"
REASON_ACTION_TIMEOUT_RETRY = "ActionTimeoutRetry"


class ReconcileEvent(NamedTuple):
    """Immutable event emitted against a managed deployment."""

    deployment: str
    reason: str
    message: str
    action_type: str = ""
    member_id: str = ""
    group: str = ""
    plan: str = ""
    warning: bool = False


class EventSink(Protocol):
    """Protocol for deployment event sinks."""

    def sink_name(self) -> str:
        """Return deterministic sink name for diagnostics."""

    def record_event(self, event: ReconcileEvent) -> None:
        """Record one event."""


class NoopEventSink:
    """No-op sink used when no event destination is configured."""

    def sink_name(self) -> str:
        return "noop"

    def record_event(self, event: ReconcileEvent) -> None:
        _ = event


class InMemoryEventSink:
    """In-memory sink for deterministic unit tests."""

    def __init__(self) -> None:
        self._events: list[ReconcileEvent] = []

    def record_event(self, event: ReconcileEvent) -> None:
        """Store event in insertion order."""
        self._events.append(event)

    def sink_name(self) -> str:
        return "in_memory"

    def events(self) -> list[ReconcileEvent]:
        """Return a copy of recorded events."""
        return list(self._events)

    def reasons(self) -> list[str]:
        return [e.reason for e in self._events]


class LoggingEventSink:
    """Sink that writes events as structured log lines."""

    def __init__(self, logger: StructuredLogger | None = None) -> None:
        self._logger = logger or StructuredLogger("clusterplan.events")

    def sink_name(self) -> str:
        return "logging"

    def record_event(self, event: ReconcileEvent) -> None:
        fields = event._asdict()
        fields.pop("warning")
        event_message = fields.pop("message")
        if event.warning:
            self._logger.warning("deployment_event", event_message=event_message, **fields)
        else:
            self._logger.info("deployment_event", event_message=event_message, **fields)
