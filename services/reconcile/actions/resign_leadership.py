"""ResignLeadership: move shard leadership off a DB server before a restart."""

from __future__ import annotations

from contracts.deployment import DeploymentMode, MemberStatus, ServerGroup
from infra.logging_config import StructuredLogger
from services.reconcile.base import IN_PROGRESS, READY, ActionImpl, Progress
from services.reconcile.errors import NotFoundError

logger = StructuredLogger(__name__)


class ResignLeadershipAction(ActionImpl):
    """Skipped entirely while cluster supervision is in maintenance mode."""

    def start(self) -> bool:
        member = self.ctx.get_member(self.record.member_id)
        if member is None:
            logger.warning("member_not_found", member_id=self.record.member_id)
            return True
        if self.ctx.mode != DeploymentMode.CLUSTER or self.record.group != ServerGroup.DBSERVERS:
            return True
        if self.ctx.agency_state().maintenance:
            logger.warning("maintenance_enabled_skipping", member_id=member.id)
            return True
        if member.cleanout_job_id:
            return False

        member.cleanout_job_id = self.ctx.cluster().resign_server(member.id)
        self.ctx.update_member(member)
        return False

    def check_progress(self) -> Progress:
        member = self.ctx.get_member(self.record.member_id)
        if member is None:
            return READY
        if self.ctx.agency_state().maintenance or not member.cleanout_job_id:
            return self._finish(member)

        try:
            job = self.ctx.cluster().job_status(member.cleanout_job_id)
        except NotFoundError:
            logger.debug("resign_job_not_found", member_id=member.id)
            return self._finish(member)
        if job.is_failed:
            logger.error("resign_job_failed", member_id=member.id, reason=job.reason)
            return self._finish(member)
        if job.is_finished:
            return self._finish(member)
        return IN_PROGRESS

    def _finish(self, member: MemberStatus) -> Progress:
        if member.cleanout_job_id:
            member.cleanout_job_id = ""
            self.ctx.update_member(member)
        return READY
