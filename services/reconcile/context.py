"""Capabilities handed to actions: members, cluster calls, events, scratch.

Actions never touch the status store directly. Member and status mutations go
to the tick's working copy of the status, which the reconciler commits in a
single compare-and-set write once the tick ends.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Protocol

from contracts.deployment import (
    ActionRecord,
    Deployment,
    DeploymentMode,
    DeploymentSpec,
    DeploymentStatus,
    MemberStatus,
    PlanKind,
    ServerGroup,
    utcnow,
)
from infra.config import ReconcileConfig
from services.reconcile.errors import ActionError
from services.reconcile.events import EventSink, ReconcileEvent
from services.reconcile.scratch import ScratchStore
from services.reconcile.timeouts import TimeoutPolicy


class JobStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    FINISHED = "finished"
    FAILED = "failed"


@dataclass(frozen=True)
class JobState:
    """Snapshot of one server-side job."""

    status: JobStatus
    reason: str = ""

    @property
    def is_finished(self) -> bool:
        return self.status == JobStatus.FINISHED

    @property
    def is_failed(self) -> bool:
        return self.status == JobStatus.FAILED


@dataclass(frozen=True)
class AgencyState:
    """Read-only snapshot of the cluster consensus store."""

    maintenance: bool = False
    healthy: bool = True


class ClusterBackend(Protocol):
    """Cluster-side operations used by actions.

    Every call is bounded by ``timeout`` seconds. Implementations raise
    ``BackendError`` (or ``NotFoundError``) on failure.
    """

    def cleanout_server(self, deployment: str, member_id: str, *, timeout: float) -> str:
        """Start moving all shards off a member; return the job id."""

    def is_cleaned_out(self, deployment: str, member_id: str, *, timeout: float) -> bool:
        """Return True when the member holds no shards."""

    def job_status(self, deployment: str, job_id: str, *, timeout: float) -> JobState:
        """Return the state of an agency job."""

    def resign_server(self, deployment: str, member_id: str, *, timeout: float) -> str:
        """Start moving shard leadership off a member; return the job id."""

    def shutdown_member(self, deployment: str, member_id: str, *, timeout: float) -> None:
        """Ask one member to shut down gracefully."""

    def member_healthy(self, deployment: str, member_id: str, *, timeout: float) -> bool:
        """Return True when the member responds and reports ready."""

    def agency_state(self, deployment: str, *, timeout: float) -> AgencyState:
        """Return a snapshot of the agency."""

    def set_maintenance(self, deployment: str, enabled: bool, *, timeout: float) -> None:
        """Toggle cluster supervision maintenance mode."""

    def delete_pod(self, deployment: str, pod_name: str, *, timeout: float) -> None:
        """Delete one pod."""

    def delete_pvc(self, deployment: str, pvc_name: str, *, timeout: float) -> None:
        """Delete one persistent volume claim."""

    def remove_server(self, deployment: str, member_id: str, *, timeout: float) -> None:
        """Remove a member from the cluster health registry."""

    def rebuild_shard(self, deployment: str, member_id: str, shard_id: str, *, timeout: float) -> str:
        """Start an async shard rebuild on a member; return the job id."""

    def async_job_status(
        self, deployment: str, member_id: str, job_id: str, *, timeout: float
    ) -> JobState:
        """Return the state of an async job running on one member."""


class DeploymentClient:
    """Backend calls bound to one deployment and to the context's call timeout."""

    def __init__(self, ctx: ActionContext) -> None:
        self._ctx = ctx
        self._backend = ctx.backend
        self._name = ctx.name

    def cleanout_server(self, member_id: str) -> str:
        return self._backend.cleanout_server(self._name, member_id, timeout=self._ctx.call_timeout())

    def is_cleaned_out(self, member_id: str) -> bool:
        return self._backend.is_cleaned_out(self._name, member_id, timeout=self._ctx.call_timeout())

    def job_status(self, job_id: str) -> JobState:
        return self._backend.job_status(self._name, job_id, timeout=self._ctx.call_timeout())

    def resign_server(self, member_id: str) -> str:
        return self._backend.resign_server(self._name, member_id, timeout=self._ctx.call_timeout())

    def shutdown_member(self, member_id: str) -> None:
        self._backend.shutdown_member(self._name, member_id, timeout=self._ctx.call_timeout())

    def member_healthy(self, member_id: str) -> bool:
        return self._backend.member_healthy(self._name, member_id, timeout=self._ctx.call_timeout())

    def set_maintenance(self, enabled: bool) -> None:
        self._backend.set_maintenance(self._name, enabled, timeout=self._ctx.call_timeout())

    def delete_pod(self, pod_name: str) -> None:
        self._backend.delete_pod(self._name, pod_name, timeout=self._ctx.call_timeout())

    def delete_pvc(self, pvc_name: str) -> None:
        self._backend.delete_pvc(self._name, pvc_name, timeout=self._ctx.call_timeout())

    def remove_server(self, member_id: str) -> None:
        self._backend.remove_server(self._name, member_id, timeout=self._ctx.call_timeout())

    def rebuild_shard(self, member_id: str, shard_id: str) -> str:
        return self._backend.rebuild_shard(
            self._name, member_id, shard_id, timeout=self._ctx.call_timeout()
        )

    def async_job_status(self, member_id: str, job_id: str) -> JobState:
        return self._backend.async_job_status(
            self._name, member_id, job_id, timeout=self._ctx.call_timeout()
        )


class ActionContext:
    """Everything one action may read or change during a tick."""

    def __init__(
        self,
        *,
        deployment: Deployment,
        status: DeploymentStatus,
        record: ActionRecord,
        backend: ClusterBackend,
        event_sink: EventSink,
        timeout_policy: TimeoutPolicy,
        config: ReconcileConfig,
        plan_kind: PlanKind = PlanKind.NORMAL,
        clock: Callable[[], datetime] = utcnow,
        deadline: datetime | None = None,
    ) -> None:
        self._deployment = deployment
        self._status = status
        self._record = record
        self._backend = backend
        self._event_sink = event_sink
        self._timeout_policy = timeout_policy
        self._config = config
        self._plan_kind = plan_kind
        self._clock = clock
        self._deadline = deadline
        self._scratch = ScratchStore(record)

    @property
    def name(self) -> str:
        return self._deployment.name

    @property
    def spec(self) -> DeploymentSpec:
        return self._deployment.spec

    @property
    def mode(self) -> DeploymentMode:
        return self._deployment.spec.mode

    @property
    def status(self) -> DeploymentStatus:
        """Working status of the current tick."""
        return self._status

    @property
    def backend(self) -> ClusterBackend:
        return self._backend

    @property
    def config(self) -> ReconcileConfig:
        return self._config

    @property
    def timeout_policy(self) -> TimeoutPolicy:
        return self._timeout_policy

    @property
    def plan_kind(self) -> PlanKind:
        return self._plan_kind

    def now(self) -> datetime:
        return self._clock()

    def call_timeout(self) -> float:
        """Seconds allowed for the next external call.

        Bounded by the configured per-call timeout and by what is left of the
        tick budget; raises TimeoutError once the tick deadline has passed.
        """
        limit = float(self._config.call_timeout_seconds)
        if self._deadline is None:
            return limit
        remaining = (self._deadline - self.now()).total_seconds()
        if remaining <= 0:
            raise TimeoutError(f"tick deadline exceeded for deployment {self.name!r}")
        return min(limit, remaining)

    def cluster(self) -> DeploymentClient:
        """Return a short-lived client scoped to this deployment."""
        return DeploymentClient(self)

    def agency_state(self) -> AgencyState:
        return self._backend.agency_state(self.name, timeout=self.call_timeout())

    # Members

    def get_member(self, member_id: str) -> MemberStatus | None:
        member = self._status.member_by_id(member_id)
        if member is None:
            return None
        return member.model_copy(deep=True)

    def get_member_and_group(self, member_id: str) -> tuple[MemberStatus | None, ServerGroup]:
        member = self.get_member(member_id)
        if member is None:
            return None, ServerGroup.UNKNOWN
        return member, member.group

    def update_member(self, member: MemberStatus) -> None:
        if not self._status.replace_member(member):
            raise ActionError(f"member {member.id!r} not found in deployment {self.name!r}")

    def add_member(self, member: MemberStatus) -> None:
        if self._status.member_by_id(member.id) is not None:
            raise ActionError(f"member {member.id!r} already exists in deployment {self.name!r}")
        self._status.members.append(member)

    def remove_member(self, member_id: str) -> bool:
        return self._status.remove_member(member_id)

    def with_status_update(self, mutate: Callable[[DeploymentStatus], bool]) -> bool:
        """Apply ``mutate`` to the working status; it returns whether it changed anything."""
        return bool(mutate(self._status))

    # Events

    def create_event(self, reason: str, message: str, *, warning: bool = False) -> None:
        self._event_sink.record_event(
            ReconcileEvent(
                deployment=self.name,
                reason=reason,
                message=message,
                action_type=str(self._record.type),
                member_id=self._record.member_id,
                group=str(self._record.group),
                plan=str(self._plan_kind),
                warning=warning,
            )
        )

    # Scratch store

    def get(self, key: str) -> str | None:
        return self._scratch.get(key)

    def add(self, key: str, value: str, *, overwrite: bool = True) -> bool:
        return self._scratch.add(key, value, overwrite=overwrite)

    def clear(self, key: str) -> None:
        self._scratch.clear(key)
