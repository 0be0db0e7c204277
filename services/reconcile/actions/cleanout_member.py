"""CleanOutMember: move all shards off a DB server before it is removed."""

from __future__ import annotations

from contracts.deployment import ConditionType, MemberPhase, ServerGroup
from infra.logging_config import StructuredLogger
from services.reconcile.base import ABORT, IN_PROGRESS, READY, ActionImpl, Progress
from services.reconcile.errors import NotFoundError

logger = StructuredLogger(__name__)


class CleanOutMemberAction(ActionImpl):
    """Issue a cleanout job for one DB server and follow it to completion.

    The job id lives on the member status (``cleanoutJobID``) so that a second
    ``start`` before the start time was persisted re-attaches to the running
    job instead of issuing another one. A failed job reverts the member to
    ``Created`` and aborts the record.
    """

    def start(self) -> bool:
        if self.record.group != ServerGroup.DBSERVERS:
            return True
        member = self.ctx.get_member(self.record.member_id)
        if member is None:
            return True
        if member.phase == MemberPhase.CLEAN_OUT and member.cleanout_job_id:
            return False

        try:
            job_id = self.ctx.cluster().cleanout_server(member.id)
        except NotFoundError:
            # Never joined the cluster; nothing to move.
            return True
        logger.debug("cleanout_started", member_id=member.id, job_id=job_id)
        member.phase = MemberPhase.CLEAN_OUT
        member.cleanout_job_id = job_id
        self.ctx.update_member(member)
        return False

    def check_progress(self) -> Progress:
        member = self.ctx.get_member(self.record.member_id)
        if member is None or not member.initialized:
            return READY

        cluster = self.ctx.cluster()
        if not cluster.is_cleaned_out(member.id):
            job = cluster.job_status(member.cleanout_job_id)
            if not job.is_failed:
                return IN_PROGRESS
            logger.warning("cleanout_job_failed", member_id=member.id, reason=job.reason)
            member.phase = MemberPhase.CREATED
            member.cleanout_job_id = ""
            self.ctx.update_member(member)
            self.ctx.create_event(
                "CleanOutFailed",
                f"Cleanout of member {member.id} failed: {job.reason or 'unknown reason'}",
                warning=True,
            )
            return ABORT

        if member.update_condition(ConditionType.CLEANED_OUT, True, "CleanedOut"):
            self.ctx.update_member(member)
        return READY
