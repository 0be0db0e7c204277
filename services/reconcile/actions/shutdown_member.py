"""ShutdownMember: stop one member gracefully."""

from __future__ import annotations

from contracts.deployment import ConditionType
from services.reconcile.base import IN_PROGRESS, READY, ActionImpl, Progress
from services.reconcile.errors import NotFoundError


class ShutdownMemberAction(ActionImpl):
    def start(self) -> bool:
        member = self.ctx.get_member(self.record.member_id)
        if member is None:
            return True
        if member.condition_is_true(ConditionType.TERMINATING):
            return False
        try:
            self.ctx.cluster().shutdown_member(member.id)
        except NotFoundError:
            return True
        member.update_condition(ConditionType.TERMINATING, True, "Shutdown requested")
        self.ctx.update_member(member)
        return False

    def check_progress(self) -> Progress:
        member = self.ctx.get_member(self.record.member_id)
        if member is None:
            return READY
        if self.ctx.cluster().member_healthy(member.id):
            return IN_PROGRESS
        member.update_condition(ConditionType.TERMINATED, True, "Member stopped")
        member.update_condition(ConditionType.READY, False, "Member stopped")
        self.ctx.update_member(member)
        return READY
