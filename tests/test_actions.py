"""Direct tests of the built-in actions against the fake cluster backend."""

from __future__ import annotations

from contracts.deployment import (
    ActionType,
    ConditionType,
    DeploymentMode,
    DeploymentSpec,
    MemberPhase,
    ServerGroup,
    new_action,
)
from services.reconcile.actions.add_member import AddMemberAction, new_member_id
from services.reconcile.actions.maintenance import DisableMaintenanceAction, EnableMaintenanceAction
from services.reconcile.actions.member_status import MemberPhaseUpdateAction, SetMemberConditionAction
from services.reconcile.actions.rebuild_outsynced_shards import (
    LOCAL_JOB_ID,
    RebuildOutSyncedShardsAction,
)
from services.reconcile.actions.remove_member import RemoveMemberAction
from services.reconcile.actions.resign_leadership import ResignLeadershipAction
from services.reconcile.actions.rotate_member import (
    RotateMemberAction,
    RotateStartMemberAction,
    RotateStopMemberAction,
)
from services.reconcile.actions.set_current_image import SetCurrentImageAction
from services.reconcile.actions.shutdown_member import ShutdownMemberAction
from services.reconcile.actions.wait_for_member_up import WaitForMemberUpAction
from services.reconcile.base import ABORT, IN_PROGRESS, READY, TimeoutHandling
from services.reconcile.context import JobState, JobStatus
from services.reconcile.errors import NotFoundError
from services.reconcile.events import InMemoryEventSink
from tests.fakes import FakeBackend, deployment, make_context, member


def _build(cls, dep, record, backend, **kwargs):  # type: ignore[no-untyped-def]
    return cls(record, make_context(dep, record, backend, **kwargs))


def test_resign_leadership_issues_job_and_finishes() -> None:
    backend = FakeBackend()
    dep = deployment(members=[member("PRMR-1")])
    record = new_action(ActionType.RESIGN_LEADERSHIP, ServerGroup.DBSERVERS, "PRMR-1")
    action = _build(ResignLeadershipAction, dep, record, backend)

    assert action.start() is False
    stored = dep.status.member_by_id("PRMR-1")
    assert stored is not None and stored.cleanout_job_id == "resign-1"
    assert action.start() is False
    assert backend.count("resign_server") == 1

    assert action.check_progress() == IN_PROGRESS
    backend.jobs["resign-1"] = JobState(JobStatus.FINISHED)
    assert action.check_progress() == READY
    assert dep.status.member_by_id("PRMR-1").cleanout_job_id == ""  # type: ignore[union-attr]


def test_resign_leadership_skipped_in_maintenance_or_single_mode() -> None:
    backend = FakeBackend()
    backend.maintenance = True
    dep = deployment(members=[member("PRMR-1")])
    record = new_action(ActionType.RESIGN_LEADERSHIP, ServerGroup.DBSERVERS, "PRMR-1")
    assert _build(ResignLeadershipAction, dep, record, backend).start() is True

    single = deployment(members=[member("PRMR-1")], spec=DeploymentSpec(mode=DeploymentMode.SINGLE))
    assert _build(ResignLeadershipAction, single, record, FakeBackend()).start() is True
    assert backend.count("resign_server") == 0


def test_resign_leadership_missing_job_is_ready() -> None:
    backend = FakeBackend()
    backend.fail("job_status", NotFoundError("job gone"))
    dep = deployment(members=[member("PRMR-1", cleanout_job_id="resign-9")])
    record = new_action(ActionType.RESIGN_LEADERSHIP, ServerGroup.DBSERVERS, "PRMR-1")

    assert _build(ResignLeadershipAction, dep, record, backend).check_progress() == READY
    assert dep.status.member_by_id("PRMR-1").cleanout_job_id == ""  # type: ignore[union-attr]


def test_shutdown_member_waits_until_member_stops() -> None:
    backend = FakeBackend()
    backend.healthy.add("PRMR-1")
    dep = deployment(members=[member("PRMR-1")])
    record = new_action(ActionType.SHUTDOWN_MEMBER, ServerGroup.DBSERVERS, "PRMR-1")
    action = _build(ShutdownMemberAction, dep, record, backend)

    assert action.start() is False
    assert action.start() is False
    assert backend.count("shutdown_member") == 1
    assert dep.status.member_by_id("PRMR-1").condition_is_true(ConditionType.TERMINATING)  # type: ignore[union-attr]

    backend.healthy.add("PRMR-1")
    assert action.check_progress() == IN_PROGRESS
    backend.healthy.discard("PRMR-1")
    assert action.check_progress() == READY
    stopped = dep.status.member_by_id("PRMR-1")
    assert stopped is not None
    assert stopped.condition_is_true(ConditionType.TERMINATED)
    assert not stopped.condition_is_true(ConditionType.READY)


def test_rotate_member_deletes_pod_once_and_waits_for_health() -> None:
    backend = FakeBackend()
    dep = deployment(members=[member("PRMR-1", pod_name="db-prmr-1")])
    record = new_action(ActionType.ROTATE_MEMBER, ServerGroup.DBSERVERS, "PRMR-1")
    action = _build(RotateMemberAction, dep, record, backend)

    assert action.start() is False
    assert action.start() is False
    assert backend.calls.count(("delete_pod", ("prod-db", "db-prmr-1"))) == 1
    assert dep.status.member_by_id("PRMR-1").phase == MemberPhase.ROTATING  # type: ignore[union-attr]

    assert action.check_progress() == IN_PROGRESS
    backend.healthy.add("PRMR-1")
    assert action.check_progress() == READY
    rotated = dep.status.member_by_id("PRMR-1")
    assert rotated is not None
    assert rotated.phase == MemberPhase.CREATED
    assert rotated.condition_is_true(ConditionType.READY)
    assert ConditionType.TERMINATING not in rotated.conditions


def test_rotate_member_for_missing_member_completes() -> None:
    record = new_action(ActionType.ROTATE_MEMBER, ServerGroup.DBSERVERS, "PRMR-9")
    assert _build(RotateMemberAction, deployment(), record, FakeBackend()).start() is True


def test_rotate_start_and_stop_split_the_restart() -> None:
    backend = FakeBackend()
    backend.healthy.add("PRMR-1")
    dep = deployment(members=[member("PRMR-1", pod_name="db-prmr-1")])
    start_record = new_action(ActionType.ROTATE_START_MEMBER, ServerGroup.DBSERVERS, "PRMR-1")
    start = _build(RotateStartMemberAction, dep, start_record, backend)

    assert start.start() is False
    assert start.check_progress() == IN_PROGRESS
    backend.healthy.discard("PRMR-1")
    assert start.check_progress() == READY

    stop_record = new_action(ActionType.ROTATE_STOP_MEMBER, ServerGroup.DBSERVERS, "PRMR-1")
    assert _build(RotateStopMemberAction, dep, stop_record, backend).start() is True
    stopped = dep.status.member_by_id("PRMR-1")
    assert stopped is not None
    assert stopped.phase == MemberPhase.CREATED
    assert ConditionType.TERMINATED not in stopped.conditions


def test_wait_for_member_up_marks_member_ready() -> None:
    backend = FakeBackend()
    dep = deployment(members=[member("PRMR-1", phase=MemberPhase.PENDING, initialized=False)])
    record = new_action(ActionType.WAIT_FOR_MEMBER_UP, ServerGroup.DBSERVERS, "PRMR-1")
    action = _build(WaitForMemberUpAction, dep, record, backend)

    assert action.timeout_handling == TimeoutHandling.RETRY
    assert action.start() is False
    backend.healthy.add("PRMR-1")
    assert action.start() is True
    up = dep.status.member_by_id("PRMR-1")
    assert up is not None
    assert up.initialized is True
    assert up.condition_is_true(ConditionType.READY)


def test_enable_maintenance_waits_for_agency() -> None:
    backend = FakeBackend()
    dep = deployment()
    record = new_action(ActionType.ENABLE_MAINTENANCE)
    action = _build(EnableMaintenanceAction, dep, record, backend)

    assert action.start() is False
    assert ("set_maintenance", ("prod-db", True)) in backend.calls
    assert action.check_progress() == IN_PROGRESS

    backend.maintenance = True
    assert action.check_progress() == READY
    condition = dep.status.conditions[ConditionType.MAINTENANCE_MODE]
    assert condition.status is True


def test_disable_maintenance_already_off_completes() -> None:
    backend = FakeBackend()
    dep = deployment()
    record = new_action(ActionType.DISABLE_MAINTENANCE)

    assert _build(DisableMaintenanceAction, dep, record, backend).start() is True
    assert backend.count("set_maintenance") == 0
    assert dep.status.conditions[ConditionType.MAINTENANCE_MODE].status is False


def test_maintenance_is_noop_in_single_mode() -> None:
    backend = FakeBackend()
    dep = deployment(spec=DeploymentSpec(mode=DeploymentMode.SINGLE))
    record = new_action(ActionType.ENABLE_MAINTENANCE)

    assert _build(EnableMaintenanceAction, dep, record, backend).start() is True
    assert backend.calls == []


def test_member_phase_update() -> None:
    dep = deployment(members=[member("PRMR-1")])
    record = new_action(ActionType.MEMBER_PHASE_UPDATE, ServerGroup.DBSERVERS, "PRMR-1", params={"phase": "Upgrading"})

    assert _build(MemberPhaseUpdateAction, dep, record, FakeBackend()).start() is True
    assert dep.status.member_by_id("PRMR-1").phase == MemberPhase.UPGRADING  # type: ignore[union-attr]

    bogus = new_action(ActionType.MEMBER_PHASE_UPDATE, ServerGroup.DBSERVERS, "PRMR-1", params={"phase": "Bogus"})
    assert _build(MemberPhaseUpdateAction, dep, bogus, FakeBackend()).start() is True
    assert dep.status.member_by_id("PRMR-1").phase == MemberPhase.UPGRADING  # type: ignore[union-attr]


def test_set_member_condition_skips_unknown_names() -> None:
    dep = deployment(members=[member("PRMR-1")])
    record = new_action(
        ActionType.SET_MEMBER_CONDITION,
        ServerGroup.DBSERVERS,
        "PRMR-1",
        "operator request",
        params={"PendingRestart": "true", "Ready": "false", "NoSuchCondition": "true"},
    )

    assert _build(SetMemberConditionAction, dep, record, FakeBackend()).start() is True
    updated = dep.status.member_by_id("PRMR-1")
    assert updated is not None
    assert updated.condition_is_true(ConditionType.PENDING_RESTART)
    assert updated.conditions[ConditionType.READY].status is False
    assert updated.conditions[ConditionType.PENDING_RESTART].reason == "operator request"
    assert len(updated.conditions) == 2


def test_remove_member_cleans_up_cluster_side() -> None:
    backend = FakeBackend()
    backend.fail("remove_server", NotFoundError("already gone"))
    dep = deployment(members=[member("PRMR-1", pod_name="db-prmr-1", pvc_name="data-prmr-1")])
    record = new_action(ActionType.REMOVE_MEMBER, ServerGroup.DBSERVERS, "PRMR-1")

    assert _build(RemoveMemberAction, dep, record, backend).start() is True
    assert [name for name, _ in backend.calls] == ["remove_server", "delete_pvc", "delete_pod"]
    assert dep.status.members == []


def test_remove_member_skips_registration_for_agents() -> None:
    backend = FakeBackend()
    dep = deployment(members=[member("AGNT-1", ServerGroup.AGENTS)])
    record = new_action(ActionType.REMOVE_MEMBER, ServerGroup.AGENTS, "AGNT-1")

    assert _build(RemoveMemberAction, dep, record, backend).start() is True
    assert backend.calls == []
    assert dep.status.members == []


def test_rebuild_out_synced_shards_tracks_job_in_scratch() -> None:
    backend = FakeBackend()
    dep = deployment(members=[member("PRMR-1")])
    record = new_action(
        ActionType.REBUILD_OUT_SYNCED_SHARDS, ServerGroup.DBSERVERS, "PRMR-1", params={"shardID": "s1001"}
    )
    action = _build(RebuildOutSyncedShardsAction, dep, record, backend)

    assert action.start() is False
    assert action.start() is False
    assert backend.count("rebuild_shard") == 1
    assert record.scratch[LOCAL_JOB_ID] == "rebuild-1"

    assert action.check_progress() == IN_PROGRESS
    backend.jobs["rebuild-1"] = JobState(JobStatus.FINISHED)
    assert action.check_progress() == READY
    assert action.ctx.get(LOCAL_JOB_ID) is None


def test_rebuild_out_synced_shards_aborts_without_job_handle() -> None:
    events = InMemoryEventSink()
    dep = deployment(members=[member("PRMR-1")])
    record = new_action(
        ActionType.REBUILD_OUT_SYNCED_SHARDS, ServerGroup.DBSERVERS, "PRMR-1", params={"shardID": "s1"}
    )
    action = _build(RebuildOutSyncedShardsAction, dep, record, FakeBackend(), events=events)

    assert action.check_progress() == ABORT
    assert events.reasons() == ["RebuildShardFailed"]


def test_rebuild_out_synced_shards_failed_job_aborts() -> None:
    backend = FakeBackend()
    dep = deployment(members=[member("PRMR-1")])
    record = new_action(
        ActionType.REBUILD_OUT_SYNCED_SHARDS, ServerGroup.DBSERVERS, "PRMR-1", params={"shardID": "s1"}
    )
    action = _build(RebuildOutSyncedShardsAction, dep, record, backend)
    action.start()
    backend.jobs["rebuild-1"] = JobState(JobStatus.FAILED, "checksum mismatch")

    assert action.check_progress() == ABORT


def test_set_current_image() -> None:
    dep = deployment()
    record = new_action(ActionType.SET_CURRENT_IMAGE, image="db:3.12")
    action = _build(SetCurrentImageAction, dep, record, FakeBackend())

    assert action.start() is False
    assert action.check_progress() == READY
    assert dep.status.current_image == "db:3.12"

    no_image = new_action(ActionType.SET_CURRENT_IMAGE)
    assert _build(SetCurrentImageAction, dep, no_image, FakeBackend()).start() is True


def test_add_member_generates_id_and_appends_wait() -> None:
    dep = deployment()
    record = new_action(ActionType.ADD_MEMBER, ServerGroup.COORDINATORS, params={"WaitForMemberUp": ""})
    action = _build(AddMemberAction, dep, record, FakeBackend())

    assert action.start() is True
    assert record.member_id.startswith("CRDN-")
    added = dep.status.member_by_id(record.member_id)
    assert added is not None
    assert added.phase == MemberPhase.PENDING

    assert action.start() is True
    assert len(dep.status.members) == 1

    tail = new_action(ActionType.IDLE)
    plan, changed = action.plan_append([tail])
    assert changed is True
    assert [r.type for r in plan] == [ActionType.WAIT_FOR_MEMBER_UP, ActionType.IDLE]
    assert plan[0].member_id == record.member_id


def test_new_member_id_prefixes() -> None:
    assert new_member_id(ServerGroup.DBSERVERS).startswith("PRMR-")
    assert new_member_id(ServerGroup.AGENTS).startswith("AGNT-")
    assert new_member_id(ServerGroup.UNKNOWN).startswith("MMBR-")
