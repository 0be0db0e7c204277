"""Plan executor: drives the head record of one plan through a tick."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from contracts.deployment import (
    MEMBER_ID_PREVIOUS_ACTION,
    ActionRecord,
    Deployment,
    DeploymentStatus,
    PlanKind,
    backoff_key,
    utcnow,
)
from infra.config import ReconcileConfig
from infra.logging_config import StructuredLogger
from services.reconcile.base import Action, TimeoutHandling
from services.reconcile.context import ActionContext, ClusterBackend
from services.reconcile.errors import ConfigurationError
from services.reconcile.events import (
    REASON_ACTION_COMPLETED,
    REASON_ACTION_POST_FAILED,
    REASON_ACTION_PROGRESS_FAILED,
    REASON_ACTION_START_FAILED,
    REASON_ACTION_TIMEOUT_RETRY,
    REASON_PLAN_ABORTED,
    REASON_PLAN_TIMEOUT,
    EventSink,
    NoopEventSink,
    ReconcileEvent,
)
from services.reconcile.metrics import (
    OUTCOME_ABORTED,
    OUTCOME_SUCCEEDED,
    OUTCOME_TIMEOUT,
    PHASE_PROGRESS,
    PHASE_START,
    ReconcileMetrics,
)
from services.reconcile.registry import ActionRegistry
from services.reconcile.scratch import PlanLocalKey
from services.reconcile.timeouts import TimeoutPolicy, is_action_timeout

logger = StructuredLogger(__name__)

# Number of start-time resets already granted to a timeout-tolerant record.
TIMEOUT_RETRIES_KEY = PlanLocalKey("executor", "timeoutRetries")

STEP_STARTED = "started"
STEP_IN_PROGRESS = "in_progress"
STEP_COMPLETED = "completed"
STEP_ABORTED = "aborted"
STEP_TIMEOUT = "timeout"
STEP_TIMEOUT_RETRY = "timeout_retry"
STEP_START_FAILED = "start_failed"
STEP_PROGRESS_FAILED = "progress_failed"


@dataclass(frozen=True)
class ActionOutcome:
    """What happened to one plan record during a tick."""

    plan: PlanKind
    action_id: str
    action_type: str
    member_id: str
    step: str
    message: str = ""


@dataclass
class PlanRunResult:
    """Summary of executing one plan for one tick.

    ``events`` and ``finished`` hold what the tick wants to report once its
    status change is durable; ``PlanExecutor.publish`` hands them out.
    """

    changed: bool = False
    call_again: bool = False
    outcomes: list[ActionOutcome] = field(default_factory=list)
    events: list[ReconcileEvent] = field(default_factory=list)
    finished: list[tuple[str, str, str, str]] = field(default_factory=list)


class _PendingEventSink:
    """Collects events raised during a run into its result."""

    def __init__(self, result: PlanRunResult) -> None:
        self._result = result

    def sink_name(self) -> str:
        return "pending"

    def record_event(self, event: ReconcileEvent) -> None:
        self._result.events.append(event)


class PlanExecutor:
    """Execute the head of a plan with timeout, abort and backoff handling.

    Every exception an action raises is a transient failure contained here,
    except configuration errors (for example an unregistered action type),
    which propagate to the caller.
    """

    def __init__(
        self,
        *,
        registry: ActionRegistry,
        backend: ClusterBackend,
        metrics: ReconcileMetrics,
        config: ReconcileConfig | None = None,
        event_sink: EventSink | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._registry = registry
        self._backend = backend
        self._metrics = metrics
        self._config = config or ReconcileConfig()
        self._event_sink = event_sink or NoopEventSink()
        self._clock = clock

    @property
    def config(self) -> ReconcileConfig:
        return self._config

    def timeout_policy(self, deployment: Deployment) -> TimeoutPolicy:
        return TimeoutPolicy(
            spec=deployment.spec,
            overrides=self._config.action_timeouts,
            default_timeout=timedelta(seconds=self._config.default_action_timeout_seconds),
        )

    def execute(
        self,
        deployment: Deployment,
        status: DeploymentStatus,
        kind: PlanKind,
        *,
        deadline: datetime | None = None,
        publish: bool = True,
    ) -> PlanRunResult:
        """Process the ``kind`` plan of the working ``status`` in place.

        With ``publish=False`` events and finished counters stay on the
        result until the caller has committed the status.
        """
        run = _PlanRun(self, deployment, status, kind, deadline)
        run.run()
        if publish:
            self.publish(run.result)
        return run.result

    def publish(self, result: PlanRunResult) -> None:
        """Emit the events and finished counters held by ``result``."""
        for event in result.events:
            self._event_sink.record_event(event)
        for labels in result.finished:
            self._metrics.finished(*labels)
        result.events.clear()
        result.finished.clear()


class _PlanRun:
    """State of one executor pass over one plan."""

    def __init__(
        self,
        executor: PlanExecutor,
        deployment: Deployment,
        status: DeploymentStatus,
        kind: PlanKind,
        deadline: datetime | None,
    ) -> None:
        self._executor = executor
        self._config = executor._config
        self._metrics = executor._metrics
        self._clock = executor._clock
        self._deployment = deployment
        self._status = status
        self._kind = kind
        self._deadline = deadline
        self._policy = executor.timeout_policy(deployment)
        self.result = PlanRunResult()
        self._events = _PendingEventSink(self.result)

    def run(self) -> None:
        while True:
            plan = self._status.get_plan(self._kind)
            if not plan:
                break
            record = plan[0]
            ctx = ActionContext(
                deployment=self._deployment,
                status=self._status,
                record=record,
                backend=self._executor._backend,
                event_sink=self._events,
                timeout_policy=self._policy,
                config=self._config,
                plan_kind=self._kind,
                clock=self._clock,
                deadline=self._deadline,
            )
            action = self._executor._registry.create(record, ctx)
            if record.is_started():
                advanced = self._progress(record, action, ctx)
            else:
                advanced = self._start(record, action)
            if not advanced:
                break
        if self.result.changed:
            self.result.call_again = bool(self._status.get_plan(self._kind))

    # Steps; each returns True when the next record should run in this tick.

    def _start(self, record: ActionRecord, action: Action) -> bool:
        try:
            done = action.start()
        except ConfigurationError:
            raise
        except Exception as exc:
            self._failed(record, PHASE_START, REASON_ACTION_START_FAILED, STEP_START_FAILED, exc)
            return False

        if done:
            return self._complete(record, action)

        record.start_time = self._clock()
        self.result.changed = True
        self._set_current(record, 1)
        logger.info(
            "action_started",
            action_type=str(record.type),
            action_id=record.id,
            member_id=record.member_id,
        )
        self._outcome(record, STEP_STARTED)
        return False

    def _progress(self, record: ActionRecord, action: Action, ctx: ActionContext) -> bool:
        if is_action_timeout(action.timeout(), record, self._clock()):
            self._timed_out(record, action, ctx)
            return False

        try:
            progress = action.check_progress()
        except ConfigurationError:
            raise
        except Exception as exc:
            self._failed(
                record, PHASE_PROGRESS, REASON_ACTION_PROGRESS_FAILED, STEP_PROGRESS_FAILED, exc
            )
            return False

        if progress.ready:
            return self._complete(record, action)
        if progress.abort:
            self._drop(record, action, OUTCOME_ABORTED)
            self._emit(
                record,
                REASON_PLAN_ABORTED,
                f"{record.type} aborted for member {action.member_id() or '-'}",
                warning=True,
            )
            logger.warning(
                "plan_aborted",
                action_type=str(record.type),
                action_id=record.id,
                member_id=record.member_id,
                drop_plan=self._config.drop_plan_on_abort,
            )
            self._outcome(record, STEP_ABORTED)
            return False

        self._outcome(record, STEP_IN_PROGRESS)
        return False

    def _timed_out(self, record: ActionRecord, action: Action, ctx: ActionContext) -> None:
        limit = self._config.timeout_retry_limit
        retries = int(ctx.get(TIMEOUT_RETRIES_KEY) or 0)
        if action.timeout_handling == TimeoutHandling.RETRY and retries < limit:
            ctx.add(TIMEOUT_RETRIES_KEY, str(retries + 1))
            record.start_time = self._clock()
            self.result.changed = True
            self._emit(
                record,
                REASON_ACTION_TIMEOUT_RETRY,
                f"{record.type} timed out, retry {retries + 1} of {limit}",
                warning=True,
            )
            logger.warning(
                "action_timeout_retry",
                action_type=str(record.type),
                action_id=record.id,
                member_id=record.member_id,
                retry=retries + 1,
            )
            self._outcome(record, STEP_TIMEOUT_RETRY)
            return

        try:
            action.on_timeout()
        except ConfigurationError:
            raise
        except Exception as exc:
            self._failed(
                record, PHASE_PROGRESS, REASON_ACTION_PROGRESS_FAILED, STEP_PROGRESS_FAILED, exc
            )
            return

        self._drop(record, action, OUTCOME_TIMEOUT)
        self._emit(
            record,
            REASON_PLAN_TIMEOUT,
            f"{record.type} timed out after {action.timeout()}",
            warning=True,
        )
        logger.warning(
            "action_timeout",
            action_type=str(record.type),
            action_id=record.id,
            member_id=record.member_id,
        )
        self._outcome(record, STEP_TIMEOUT)

    def _complete(self, record: ActionRecord, action: Action) -> bool:
        """Remove the finished head; False when appended records wait for the next tick."""
        member_id = action.member_id()
        remaining = list(self._status.get_plan(self._kind)[1:])
        if remaining and remaining[0].member_id == MEMBER_ID_PREVIOUS_ACTION:
            remaining[0].member_id = member_id
        self._status.set_plan(self._kind, remaining)
        self._status.backoff = self._status.backoff.reset(backoff_key(str(record.type), member_id))
        self.result.changed = True

        try:
            action.post()
        except ConfigurationError:
            raise
        except Exception as exc:
            self._metrics.error(self._name, str(record.type), str(self._kind), PHASE_PROGRESS)
            self._emit(record, REASON_ACTION_POST_FAILED, str(exc), warning=True)
            logger.warning(
                "action_post_failed",
                action_type=str(record.type),
                action_id=record.id,
                member_id=member_id,
                error=str(exc),
            )
        appended, changed = action.plan_append(list(self._status.get_plan(self._kind)))
        if changed:
            self._status.set_plan(self._kind, appended)

        self._finished(record, OUTCOME_SUCCEEDED)
        self._set_current(record, 0)
        self._emit(
            record,
            REASON_ACTION_COMPLETED,
            f"{record.type} completed for member {member_id or '-'}",
        )
        logger.info(
            "action_completed",
            action_type=str(record.type),
            action_id=record.id,
            member_id=member_id,
        )
        self._outcome(record, STEP_COMPLETED)
        return not changed

    def _drop(self, record: ActionRecord, action: Action, outcome: str) -> None:
        """Remove a failed head (or the whole plan) and back off its type/member pair."""
        if self._config.drop_plan_on_abort:
            self._status.set_plan(self._kind, [])
        else:
            self._status.set_plan(self._kind, list(self._status.get_plan(self._kind)[1:]))
        self._status.backoff = self._status.backoff.back_off(
            backoff_key(str(record.type), action.member_id()),
            timedelta(seconds=self._config.failure_backoff_seconds),
            self._clock(),
        )
        self.result.changed = True
        self._finished(record, outcome)
        self._set_current(record, 0)

    def _failed(
        self,
        record: ActionRecord,
        phase: str,
        reason: str,
        step: str,
        exc: BaseException,
    ) -> None:
        """Record a transient failure; the plan stays as it is."""
        self._metrics.error(self._name, str(record.type), str(self._kind), phase)
        self._emit(record, reason, str(exc), warning=True)
        logger.warning(
            "action_failed",
            action_type=str(record.type),
            action_id=record.id,
            member_id=record.member_id,
            phase=phase,
            error=str(exc),
        )
        self._outcome(record, step, str(exc))

    @property
    def _name(self) -> str:
        return self._deployment.name

    def _finished(self, record: ActionRecord, outcome: str) -> None:
        self.result.finished.append((self._name, str(record.type), str(self._kind), outcome))

    def _set_current(self, record: ActionRecord, value: float) -> None:
        self._metrics.set_current(
            self._name,
            str(record.group),
            record.member_id,
            str(record.type),
            str(self._kind),
            value,
        )

    def _emit(self, record: ActionRecord, reason: str, message: str, *, warning: bool = False) -> None:
        self._events.record_event(
            ReconcileEvent(
                deployment=self._name,
                reason=reason,
                message=message,
                action_type=str(record.type),
                member_id=record.member_id,
                group=str(record.group),
                plan=str(self._kind),
                warning=warning,
            )
        )

    def _outcome(self, record: ActionRecord, step: str, message: str = "") -> None:
        self.result.outcomes.append(
            ActionOutcome(
                plan=self._kind,
                action_id=record.id,
                action_type=str(record.type),
                member_id=record.member_id,
                step=step,
                message=message,
            )
        )
