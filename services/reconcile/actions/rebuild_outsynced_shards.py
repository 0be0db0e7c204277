"""RebuildOutSyncedShards: rebuild one shard's tree on a DB server as an async job."""

from __future__ import annotations

from contracts.deployment import ServerGroup
from infra.logging_config import StructuredLogger
from services.reconcile.base import ABORT, IN_PROGRESS, READY, ActionImpl, Progress
from services.reconcile.scratch import PlanLocalKey

logger = StructuredLogger(__name__)

PARAM_SHARD = "shardID"
PARAM_DATABASE = "database"

LOCAL_JOB_ID = PlanLocalKey("rebuildOutSyncedShards", "jobID")
LOCAL_SHARD = PlanLocalKey("rebuildOutSyncedShards", "shard")


class RebuildOutSyncedShardsAction(ActionImpl):
    """The job handle is kept in the record's scratch store between ticks."""

    def start(self) -> bool:
        if self.record.group != ServerGroup.DBSERVERS:
            return True
        if self.ctx.get_member(self.record.member_id) is None:
            return True
        shard = self.record.get_param(PARAM_SHARD)
        if not shard:
            logger.error("rebuild_shard_missing_param", member_id=self.record.member_id)
            return True
        if self.ctx.get(LOCAL_JOB_ID) is not None:
            return False

        job_id = self.ctx.cluster().rebuild_shard(self.record.member_id, shard)
        self.ctx.add(LOCAL_JOB_ID, job_id)
        self.ctx.add(LOCAL_SHARD, shard)
        return False

    def check_progress(self) -> Progress:
        if self.ctx.get_member(self.record.member_id) is None:
            return READY
        job_id = self.ctx.get(LOCAL_JOB_ID)
        if job_id is None:
            self.ctx.create_event(
                "RebuildShardFailed",
                f"Scratch key {LOCAL_JOB_ID} is missing for member {self.record.member_id}",
                warning=True,
            )
            return ABORT

        job = self.ctx.cluster().async_job_status(self.record.member_id, job_id)
        if job.is_finished:
            self.ctx.clear(LOCAL_JOB_ID)
            return READY
        if job.is_failed:
            logger.warning(
                "rebuild_shard_failed",
                member_id=self.record.member_id,
                shard=self.ctx.get(LOCAL_SHARD),
                reason=job.reason,
            )
            self.ctx.clear(LOCAL_JOB_ID)
            return ABORT
        return IN_PROGRESS
