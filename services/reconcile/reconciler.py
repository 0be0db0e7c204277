"""One control-loop tick for one deployment."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import NamedTuple, Protocol

from contracts.deployment import (
    PLAN_KINDS,
    ActionRecord,
    BackOff,
    Deployment,
    DeploymentStatus,
    PlanKind,
    utcnow,
)
from infra.config import Settings, get_settings
from infra.logging_config import StructuredLogger, clear_request_context, set_request_context
from services.reconcile.context import ClusterBackend
from services.reconcile.errors import StatusConflictError
from services.reconcile.events import EventSink
from services.reconcile.executor import ActionOutcome, PlanExecutor, PlanRunResult
from services.reconcile.metrics import ReconcileMetrics, get_default_metrics
from services.reconcile.registry import ActionRegistry, get_default_registry
from services.reconcile.status_store import StatusStore

logger = StructuredLogger(__name__)


class PlanProposal(NamedTuple):
    """Records and backoff proposed by one generator pass."""

    actions: list[ActionRecord]
    backoff: BackOff | None = None


class PlanGenerator(Protocol):
    """Builds new plan records for a deployment whose plan is empty."""

    def __call__(self, deployment: Deployment, status: DeploymentStatus, now: datetime) -> PlanProposal:
        """Return a proposal; ``status.backoff`` tells which pairs are throttled."""


@dataclass(frozen=True)
class TickResult:
    """Outcome of one reconciliation tick."""

    deployment: str
    committed: bool = False
    conflict: bool = False
    call_again: bool = False
    version: int | None = None
    outcomes: tuple[ActionOutcome, ...] = field(default_factory=tuple)


class Reconciler:
    """Read status, generate plans, execute them and commit once."""

    def __init__(
        self,
        *,
        store: StatusStore,
        backend: ClusterBackend,
        registry: ActionRegistry | None = None,
        event_sink: EventSink | None = None,
        metrics: ReconcileMetrics | None = None,
        settings: Settings | None = None,
        generators: Mapping[PlanKind, Sequence[PlanGenerator]] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        settings = settings or get_settings()
        self._store = store
        self._metrics = metrics or get_default_metrics()
        self._config = settings.reconcile
        self._generators = {kind: list((generators or {}).get(kind, ())) for kind in PLAN_KINDS}
        self._clock = clock
        self._executor = PlanExecutor(
            registry=registry or get_default_registry(),
            backend=backend,
            metrics=self._metrics,
            config=self._config,
            event_sink=event_sink,
            clock=clock,
        )

    def tick(self, name: str) -> TickResult:
        """Run one tick for deployment ``name``.

        Transient action failures and aborts are absorbed into the result. A
        concurrent status write discards the tick along with its events and
        finished counters. Configuration errors propagate and nothing is
        written.
        """
        set_request_context(deployment=name)
        try:
            return self._tick(name)
        finally:
            clear_request_context()

    def _tick(self, name: str) -> TickResult:
        deployment, version = self._store.get(name)
        status = deployment.status.model_copy(deep=True)
        now = self._clock()
        deadline = now + timedelta(seconds=self._config.tick_timeout_seconds)

        generated = [(kind, self._generate(deployment, status, kind, now)) for kind in PLAN_KINDS]

        runs: list[PlanRunResult] = []
        for kind in PLAN_KINDS:
            run = self._executor.execute(deployment, status, kind, deadline=deadline, publish=False)
            runs.append(run)
            # Normal work waits until the high priority plan drained.
            if kind == PlanKind.HIGH and status.get_plan(kind):
                break
        outcomes = tuple(outcome for run in runs for outcome in run.outcomes)
        call_again = any(run.call_again for run in runs)

        if status == deployment.status:
            self._publish(name, generated, runs)
            return TickResult(deployment=name, call_again=call_again, version=version, outcomes=outcomes)

        try:
            new_version = self._store.update(name, status, version)
        except StatusConflictError:
            # Held events and counters are dropped; the next tick redoes the work.
            logger.warning("status_conflict", expected_version=version)
            return TickResult(
                deployment=name,
                conflict=True,
                call_again=True,
                version=version,
                outcomes=outcomes,
            )
        logger.debug("status_committed", version=new_version)
        self._publish(name, generated, runs)
        return TickResult(
            deployment=name,
            committed=True,
            call_again=call_again,
            version=new_version,
            outcomes=outcomes,
        )

    def _publish(
        self,
        name: str,
        generated: list[tuple[PlanKind, list[ActionRecord]]],
        runs: list[PlanRunResult],
    ) -> None:
        for kind, records in generated:
            for record in records:
                self._metrics.generated(name, str(record.type), str(kind))
        for run in runs:
            self._executor.publish(run)

    def _generate(
        self,
        deployment: Deployment,
        status: DeploymentStatus,
        kind: PlanKind,
        now: datetime,
    ) -> list[ActionRecord]:
        """Fill an empty plan from the first generator that proposes records."""
        if status.get_plan(kind):
            return []
        backoff = status.backoff
        generated: list[ActionRecord] = []
        for generator in self._generators[kind]:
            proposal = generator(deployment, status, now)
            backoff = backoff.combine_latest(proposal.backoff)
            if proposal.actions:
                generated = list(proposal.actions)
                status.set_plan(kind, list(generated))
                logger.info(
                    "plan_generated",
                    plan=str(kind),
                    actions=[str(r.type) for r in generated],
                )
                break
        status.backoff = backoff
        return generated


def with_status_update(
    store: StatusStore,
    name: str,
    mutate: Callable[[DeploymentStatus], bool],
    *,
    retries: int = 3,
) -> bool:
    """Read-modify-write ``name``'s status, retrying on version conflicts.

    ``mutate`` changes the status in place and returns whether it changed
    anything. Returns True when a write happened.
    """
    if retries < 1:
        raise ValueError("retries must be >= 1")
    for attempt in range(1, retries + 1):
        deployment, version = store.get(name)
        status = deployment.status.model_copy(deep=True)
        if not mutate(status):
            return False
        try:
            store.update(name, status, version)
            return True
        except StatusConflictError:
            if attempt == retries:
                raise
            logger.info("status_update_retry", deployment=name, attempt=attempt)
    return False
