"""Actions that only edit member status fields."""

from __future__ import annotations

from contracts.deployment import ConditionType, MemberPhase
from infra.logging_config import StructuredLogger
from services.reconcile.actions._common import parse_bool, save_member
from services.reconcile.base import ActionImpl

logger = StructuredLogger(__name__)

PARAM_PHASE = "phase"


class MemberPhaseUpdateAction(ActionImpl):
    """Set ``member.phase`` to the ``phase`` param."""

    def start(self) -> bool:
        member = self.ctx.get_member(self.record.member_id)
        if member is None:
            return True
        raw = self.record.get_param(PARAM_PHASE)
        try:
            phase = MemberPhase(raw or "")
        except ValueError:
            logger.error("invalid_member_phase", member_id=member.id, phase=raw)
            return True
        if member.phase != phase:
            member.phase = phase
            self.ctx.update_member(member)
        return True


class SetMemberConditionAction(ActionImpl):
    """Params map condition names to "true"/"false"; unknown names are skipped."""

    def start(self) -> bool:
        member = self.ctx.get_member(self.record.member_id)
        if member is None:
            return True
        changed = False
        for name, value in sorted(self.record.params.items()):
            try:
                condition = ConditionType(name)
            except ValueError:
                logger.warning("unknown_condition", member_id=member.id, condition=name)
                continue
            changed = member.update_condition(condition, parse_bool(value), self.record.reason) or changed
        save_member(self.ctx, member, changed)
        return True
