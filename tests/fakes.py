"""Shared test doubles: fake cluster backend, fixed clock and builders."""
# pylint: disable=too-many-instance-attributes

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from prometheus_client import CollectorRegistry

from contracts.deployment import (
    ActionRecord,
    Deployment,
    DeploymentSpec,
    DeploymentStatus,
    MemberPhase,
    MemberStatus,
    PlanKind,
    ServerGroup,
)
from infra.config import ReconcileConfig, Settings
from services.reconcile.context import ActionContext, AgencyState, JobState, JobStatus
from services.reconcile.events import InMemoryEventSink
from services.reconcile.executor import PlanExecutor
from services.reconcile.metrics import ReconcileMetrics
from services.reconcile.registry import ActionRegistry
from services.reconcile.timeouts import TimeoutPolicy

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


class FixedClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FakeBackend:
    """In-memory cluster; ``fail`` queues exceptions per method name."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.timeouts: list[float] = []
        self.jobs: dict[str, JobState] = {}
        self.cleaned_out: set[str] = set()
        self.healthy: set[str] = set()
        self.maintenance = False
        self._failures: dict[str, list[BaseException]] = {}
        self._next_job = 0

    def fail(self, method: str, exc: BaseException, times: int = 1) -> None:
        self._failures.setdefault(method, []).extend([exc] * times)

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def _call(self, method: str, *args: Any, timeout: float) -> None:
        self.calls.append((method, args))
        self.timeouts.append(timeout)
        queued = self._failures.get(method)
        if queued:
            raise queued.pop(0)

    def _new_job(self, prefix: str) -> str:
        self._next_job += 1
        job_id = f"{prefix}-{self._next_job}"
        self.jobs[job_id] = JobState(JobStatus.RUNNING)
        return job_id

    def cleanout_server(self, deployment: str, member_id: str, *, timeout: float) -> str:
        self._call("cleanout_server", deployment, member_id, timeout=timeout)
        return self._new_job("cleanout")

    def is_cleaned_out(self, deployment: str, member_id: str, *, timeout: float) -> bool:
        self._call("is_cleaned_out", deployment, member_id, timeout=timeout)
        return member_id in self.cleaned_out

    def job_status(self, deployment: str, job_id: str, *, timeout: float) -> JobState:
        self._call("job_status", deployment, job_id, timeout=timeout)
        return self.jobs.get(job_id, JobState(JobStatus.PENDING))

    def resign_server(self, deployment: str, member_id: str, *, timeout: float) -> str:
        self._call("resign_server", deployment, member_id, timeout=timeout)
        return self._new_job("resign")

    def shutdown_member(self, deployment: str, member_id: str, *, timeout: float) -> None:
        self._call("shutdown_member", deployment, member_id, timeout=timeout)
        self.healthy.discard(member_id)

    def member_healthy(self, deployment: str, member_id: str, *, timeout: float) -> bool:
        self._call("member_healthy", deployment, member_id, timeout=timeout)
        return member_id in self.healthy

    def agency_state(self, deployment: str, *, timeout: float) -> AgencyState:
        self._call("agency_state", deployment, timeout=timeout)
        return AgencyState(maintenance=self.maintenance)

    def set_maintenance(self, deployment: str, enabled: bool, *, timeout: float) -> None:
        self._call("set_maintenance", deployment, enabled, timeout=timeout)

    def delete_pod(self, deployment: str, pod_name: str, *, timeout: float) -> None:
        self._call("delete_pod", deployment, pod_name, timeout=timeout)

    def delete_pvc(self, deployment: str, pvc_name: str, *, timeout: float) -> None:
        self._call("delete_pvc", deployment, pvc_name, timeout=timeout)

    def remove_server(self, deployment: str, member_id: str, *, timeout: float) -> None:
        self._call("remove_server", deployment, member_id, timeout=timeout)

    def rebuild_shard(self, deployment: str, member_id: str, shard_id: str, *, timeout: float) -> str:
        self._call("rebuild_shard", deployment, member_id, shard_id, timeout=timeout)
        return self._new_job("rebuild")

    def async_job_status(
        self, deployment: str, member_id: str, job_id: str, *, timeout: float
    ) -> JobState:
        self._call("async_job_status", deployment, member_id, job_id, timeout=timeout)
        return self.jobs.get(job_id, JobState(JobStatus.PENDING))


def member(
    member_id: str,
    group: ServerGroup = ServerGroup.DBSERVERS,
    *,
    phase: MemberPhase = MemberPhase.CREATED,
    initialized: bool = True,
    **kwargs: Any,
) -> MemberStatus:
    return MemberStatus(id=member_id, group=group, phase=phase, initialized=initialized, **kwargs)


def deployment(
    name: str = "prod-db",
    *,
    members: list[MemberStatus] | None = None,
    plan: list[ActionRecord] | None = None,
    high: list[ActionRecord] | None = None,
    spec: DeploymentSpec | None = None,
) -> Deployment:
    return Deployment(
        name=name,
        spec=spec or DeploymentSpec(),
        status=DeploymentStatus(
            members=list(members or []),
            plan=list(plan or []),
            high_priority_plan=list(high or []),
        ),
    )


def make_metrics() -> ReconcileMetrics:
    return ReconcileMetrics(registry=CollectorRegistry())


def metric_value(metrics: ReconcileMetrics, name: str, labels: dict[str, str]) -> float:
    """Read one sample from the metrics' isolated registry (0.0 when absent)."""
    value = metrics.registry.get_sample_value(name, labels)
    return float(value or 0.0)


def make_context(
    dep: Deployment,
    record: ActionRecord,
    backend: FakeBackend,
    *,
    clock: Callable[[], datetime] | None = None,
    events: InMemoryEventSink | None = None,
    config: ReconcileConfig | None = None,
    kind: PlanKind = PlanKind.NORMAL,
) -> ActionContext:
    """Context over ``dep.status`` for direct action tests."""
    return ActionContext(
        deployment=dep,
        status=dep.status,
        record=record,
        backend=backend,
        event_sink=events or InMemoryEventSink(),
        timeout_policy=TimeoutPolicy(spec=dep.spec),
        config=config or ReconcileConfig(),
        plan_kind=kind,
        clock=clock or FixedClock(),
    )


def make_executor(
    registry: ActionRegistry,
    backend: FakeBackend,
    *,
    clock: FixedClock,
    events: InMemoryEventSink | None = None,
    metrics: ReconcileMetrics | None = None,
    config: ReconcileConfig | None = None,
) -> PlanExecutor:
    return PlanExecutor(
        registry=registry,
        backend=backend,
        metrics=metrics or make_metrics(),
        config=config,
        event_sink=events,
        clock=clock,
    )


def settings_with(**reconcile: Any) -> Settings:
    return Settings(reconcile=ReconcileConfig(**reconcile))
