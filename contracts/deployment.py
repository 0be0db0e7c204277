"""Persisted deployment model: plan records, members, backoff.

Everything in this module is part of the managed resource's persisted status
and round-trips through JSON (``model_dump(mode="json", by_alias=True)``).
Field aliases follow the wire names of the status sub-resource
(``memberID``, ``startTime``, ``highPriorityPlan``...).
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

# Member id placeholder resolved to the member of the previously completed action.
MEMBER_ID_PREVIOUS_ACTION = "@previous"


def utcnow() -> datetime:
    """Return an aware UTC timestamp."""
    return datetime.now(UTC)


def _new_action_id() -> str:
    return uuid.uuid4().hex[:16]


class ActionType(StrEnum):
    """Closed set of plan action tags."""

    IDLE = "Idle"
    ADD_MEMBER = "AddMember"
    REMOVE_MEMBER = "RemoveMember"
    CLEAN_OUT_MEMBER = "CleanOutMember"
    SHUTDOWN_MEMBER = "ShutdownMember"
    RESIGN_LEADERSHIP = "ResignLeadership"
    ROTATE_MEMBER = "RotateMember"
    ROTATE_START_MEMBER = "RotateStartMember"
    ROTATE_STOP_MEMBER = "RotateStopMember"
    WAIT_FOR_MEMBER_UP = "WaitForMemberUp"
    ENABLE_MAINTENANCE = "EnableMaintenance"
    DISABLE_MAINTENANCE = "DisableMaintenance"
    MEMBER_PHASE_UPDATE = "MemberPhaseUpdate"
    SET_MEMBER_CONDITION = "SetMemberCondition"
    REBUILD_OUT_SYNCED_SHARDS = "RebuildOutSyncedShards"
    SET_CURRENT_IMAGE = "SetCurrentImage"
    # Kept only so that plans persisted by older releases still decode.
    DISABLE_CLUSTER_SCALING = "ScalingDisabled"
    ENABLE_CLUSTER_SCALING = "ScalingEnabled"


class ServerGroup(StrEnum):
    """Member role within the database cluster."""

    SINGLE = "single"
    AGENTS = "agents"
    DBSERVERS = "dbservers"
    COORDINATORS = "coordinators"
    SYNCMASTERS = "syncmasters"
    SYNCWORKERS = "syncworkers"
    UNKNOWN = "unknown"


class PlanKind(StrEnum):
    """Which of the deployment's plans a record lives in."""

    HIGH = "high"
    NORMAL = "normal"


# Execution order inside one tick.
PLAN_KINDS: tuple[PlanKind, ...] = (PlanKind.HIGH, PlanKind.NORMAL)


class MemberPhase(StrEnum):
    NONE = ""
    PENDING = "Pending"
    CREATED = "Created"
    FAILED = "Failed"
    CLEAN_OUT = "CleanOut"
    UPGRADING = "Upgrading"
    ROTATING = "Rotating"


class ConditionType(StrEnum):
    READY = "Ready"
    TERMINATING = "Terminating"
    TERMINATED = "Terminated"
    CLEANED_OUT = "CleanedOut"
    PENDING_RESTART = "PendingRestart"
    MAINTENANCE_MODE = "MaintenanceMode"
    UP_TO_DATE = "UpToDate"


class DeploymentMode(StrEnum):
    SINGLE = "Single"
    ACTIVE_FAILOVER = "ActiveFailover"
    CLUSTER = "Cluster"


class ActionRecord(BaseModel):
    """One scheduled unit of work in a plan."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=_new_action_id)
    type: ActionType
    group: ServerGroup = ServerGroup.UNKNOWN
    member_id: str = Field(default="", alias="memberID")
    params: dict[str, str] = Field(default_factory=dict)
    scratch: dict[str, str] = Field(default_factory=dict, alias="locals")
    reason: str = ""
    image: str | None = None
    creation_time: datetime = Field(default_factory=utcnow, alias="creationTime")
    start_time: datetime | None = Field(default=None, alias="startTime")

    def is_started(self) -> bool:
        return self.start_time is not None

    def get_param(self, key: str) -> str | None:
        return self.params.get(key)

    def add_param(self, key: str, value: str) -> ActionRecord:
        self.params[key] = value
        return self


def new_action(
    action_type: ActionType,
    group: ServerGroup = ServerGroup.UNKNOWN,
    member_id: str = "",
    reason: str = "",
    *,
    image: str | None = None,
    params: dict[str, str] | None = None,
) -> ActionRecord:
    """Build a fresh, not yet started, plan record."""
    return ActionRecord(
        type=action_type,
        group=group,
        member_id=member_id,
        reason=reason,
        image=image,
        params=dict(params or {}),
    )


class Condition(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: bool
    reason: str = ""
    message: str = ""
    last_transition_time: datetime = Field(default_factory=utcnow, alias="lastTransitionTime")


def _update_condition(
    conditions: dict[ConditionType, Condition],
    condition_type: ConditionType,
    status: bool,
    reason: str,
    message: str,
) -> bool:
    current = conditions.get(condition_type)
    if (
        current is not None
        and current.status == status
        and current.reason == reason
        and current.message == message
    ):
        return False
    conditions[condition_type] = Condition(status=status, reason=reason, message=message)
    return True


class MemberStatus(BaseModel):
    """Observed state of one cluster member."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    group: ServerGroup
    phase: MemberPhase = MemberPhase.NONE
    conditions: dict[ConditionType, Condition] = Field(default_factory=dict)
    cleanout_job_id: str = Field(default="", alias="cleanoutJobID")
    pod_name: str = Field(default="", alias="podName")
    pvc_name: str = Field(default="", alias="pvcName")
    image: str | None = None
    initialized: bool = False

    def condition_is_true(self, condition_type: ConditionType) -> bool:
        cond = self.conditions.get(condition_type)
        return bool(cond and cond.status)

    def update_condition(
        self,
        condition_type: ConditionType,
        status: bool,
        reason: str = "",
        message: str = "",
    ) -> bool:
        """Set a condition; return True when anything changed."""
        return _update_condition(self.conditions, condition_type, status, reason, message)

    def remove_condition(self, condition_type: ConditionType) -> bool:
        return self.conditions.pop(condition_type, None) is not None


def backoff_key(action_type: str, member_id: str = "") -> str:
    """Return the persisted backoff key for one (action type, member) pair."""
    return f"{action_type}:{member_id}"


class BackOffEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    count: int = Field(default=0, ge=0)
    next: datetime


class BackOff(BaseModel):
    """Accumulated throttling state for new plan items.

    Instances are treated as values: every operation returns a new BackOff.
    """

    model_config = ConfigDict(frozen=True)

    entries: dict[str, BackOffEntry] = Field(default_factory=dict)

    def get(self, key: str) -> BackOffEntry | None:
        return self.entries.get(key)

    def process(self, key: str, now: datetime | None = None) -> bool:
        """Return True when an action under ``key`` may be scheduled."""
        entry = self.entries.get(key)
        if entry is None:
            return True
        return (now or utcnow()) >= entry.next

    def back_off(self, key: str, delay: timedelta, now: datetime | None = None) -> BackOff:
        """Count one more failure for ``key`` and push its eligibility to ``now + delay``."""
        current = self.entries.get(key)
        count = (current.count if current else 0) + 1
        entries = dict(self.entries)
        entries[key] = BackOffEntry(count=count, next=(now or utcnow()) + delay)
        return BackOff(entries=entries)

    def reset(self, key: str) -> BackOff:
        if key not in self.entries:
            return self
        entries = dict(self.entries)
        entries.pop(key)
        return BackOff(entries=entries)

    def combine_latest(self, other: BackOff | None) -> BackOff:
        """Merge two proposals; overlapping keys keep the later time and higher count."""
        if other is None or not other.entries:
            return self
        entries = dict(self.entries)
        for key, theirs in other.entries.items():
            ours = entries.get(key)
            if ours is None:
                entries[key] = theirs
                continue
            entries[key] = BackOffEntry(
                count=max(ours.count, theirs.count),
                next=max(ours.next, theirs.next),
            )
        return BackOff(entries=entries)


class ActionTimeouts(BaseModel):
    """Per action type timeout overrides; a zero duration means no timeout."""

    actions: dict[ActionType, timedelta] = Field(default_factory=dict)

    def get(self, action_type: ActionType) -> timedelta | None:
        return self.actions.get(action_type)


class DeploymentSpec(BaseModel):
    """Desired configuration fields the executor consults."""

    model_config = ConfigDict(populate_by_name=True)

    mode: DeploymentMode = DeploymentMode.CLUSTER
    image: str | None = None
    timeouts: ActionTimeouts = Field(default_factory=ActionTimeouts)


class DeploymentStatus(BaseModel):
    """Status sub-resource owned by the operator."""

    model_config = ConfigDict(populate_by_name=True)

    members: list[MemberStatus] = Field(default_factory=list)
    plan: list[ActionRecord] = Field(default_factory=list)
    high_priority_plan: list[ActionRecord] = Field(default_factory=list, alias="highPriorityPlan")
    backoff: BackOff = Field(default_factory=BackOff)
    current_image: str | None = Field(default=None, alias="currentImage")
    conditions: dict[ConditionType, Condition] = Field(default_factory=dict)

    def get_plan(self, kind: PlanKind) -> list[ActionRecord]:
        if kind == PlanKind.HIGH:
            return self.high_priority_plan
        return self.plan

    def set_plan(self, kind: PlanKind, plan: list[ActionRecord]) -> None:
        if kind == PlanKind.HIGH:
            self.high_priority_plan = plan
        else:
            self.plan = plan

    def member_by_id(self, member_id: str) -> MemberStatus | None:
        for member in self.members:
            if member.id == member_id:
                return member
        return None

    def replace_member(self, member: MemberStatus) -> bool:
        for idx, current in enumerate(self.members):
            if current.id == member.id:
                self.members[idx] = member
                return True
        return False

    def remove_member(self, member_id: str) -> bool:
        before = len(self.members)
        self.members = [m for m in self.members if m.id != member_id]
        return len(self.members) != before

    def update_condition(
        self,
        condition_type: ConditionType,
        status: bool,
        reason: str = "",
        message: str = "",
    ) -> bool:
        return _update_condition(self.conditions, condition_type, status, reason, message)


class Deployment(BaseModel):
    """Managed resource as read from the status store."""

    name: str
    spec: DeploymentSpec = Field(default_factory=DeploymentSpec)
    status: DeploymentStatus = Field(default_factory=DeploymentStatus)


def dump_status(status: DeploymentStatus) -> dict[str, object]:
    """Serialize status to its persisted JSON shape."""
    return status.model_dump(mode="json", by_alias=True, exclude_none=True)


__all__ = [
    "MEMBER_ID_PREVIOUS_ACTION",
    "PLAN_KINDS",
    "ActionRecord",
    "ActionTimeouts",
    "ActionType",
    "BackOff",
    "BackOffEntry",
    "Condition",
    "ConditionType",
    "Deployment",
    "DeploymentMode",
    "DeploymentSpec",
    "DeploymentStatus",
    "MemberPhase",
    "MemberStatus",
    "PlanKind",
    "ServerGroup",
    "backoff_key",
    "dump_status",
    "new_action",
    "utcnow",
]
