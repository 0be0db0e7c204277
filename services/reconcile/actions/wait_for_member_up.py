"""WaitForMemberUp: block the plan until a member reports healthy."""

from __future__ import annotations

from contracts.deployment import ConditionType, MemberPhase
from services.reconcile.base import IN_PROGRESS, READY, ActionImpl, Progress, TimeoutHandling


class WaitForMemberUpAction(ActionImpl):
    """Slow starts are expected here, so a timeout restarts the wait a bounded number of times."""

    timeout_handling = TimeoutHandling.RETRY

    def start(self) -> bool:
        return self.check_progress().ready

    def check_progress(self) -> Progress:
        member = self.ctx.get_member(self.record.member_id)
        if member is None or member.phase == MemberPhase.FAILED:
            return READY
        if not self.ctx.cluster().member_healthy(member.id):
            return IN_PROGRESS
        changed = member.update_condition(ConditionType.READY, True, "Member up")
        if not member.initialized:
            member.initialized = True
            changed = True
        if changed:
            self.ctx.update_member(member)
        return READY
