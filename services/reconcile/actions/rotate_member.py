"""Member restart actions.

``RotateMember`` restarts a member in one record. ``RotateStartMember`` and
``RotateStopMember`` split the same restart around other plan records (for
example a ``WaitForMemberUp`` or an image change). Member calls fail while the
pod is being recreated, so the registry wraps all three with a start failure
grace period.
"""

from __future__ import annotations

from contracts.deployment import ConditionType, MemberPhase
from services.reconcile.actions._common import remove_terminating_conditions
from services.reconcile.base import IN_PROGRESS, READY, ActionImpl, Progress
from services.reconcile.errors import NotFoundError


class _RotateBase(ActionImpl):
    def _delete_pod(self) -> bool:
        """Delete the member's pod; return False when the member is gone."""
        member = self.ctx.get_member(self.record.member_id)
        if member is None:
            return False
        if member.phase == MemberPhase.ROTATING:
            return True
        if member.pod_name:
            try:
                self.ctx.cluster().delete_pod(member.pod_name)
            except NotFoundError:
                pass
        member.phase = MemberPhase.ROTATING
        member.update_condition(ConditionType.TERMINATING, True, "Rotation requested")
        member.update_condition(ConditionType.READY, False, "Rotation requested")
        self.ctx.update_member(member)
        return True


class RotateMemberAction(_RotateBase):
    def start(self) -> bool:
        return not self._delete_pod()

    def check_progress(self) -> Progress:
        member = self.ctx.get_member(self.record.member_id)
        if member is None:
            return READY
        if not self.ctx.cluster().member_healthy(member.id):
            return IN_PROGRESS
        member.phase = MemberPhase.CREATED
        remove_terminating_conditions(member)
        member.update_condition(ConditionType.READY, True, "Member restarted")
        self.ctx.update_member(member)
        return READY


class RotateStartMemberAction(_RotateBase):
    def start(self) -> bool:
        return not self._delete_pod()

    def check_progress(self) -> Progress:
        member = self.ctx.get_member(self.record.member_id)
        if member is None:
            return READY
        if self.ctx.cluster().member_healthy(member.id):
            return IN_PROGRESS
        if member.update_condition(ConditionType.TERMINATED, True, "Pod deleted"):
            self.ctx.update_member(member)
        return READY


class RotateStopMemberAction(ActionImpl):
    def start(self) -> bool:
        member = self.ctx.get_member(self.record.member_id)
        if member is None:
            return True
        member.phase = MemberPhase.CREATED
        remove_terminating_conditions(member)
        self.ctx.update_member(member)
        return True
