"""AddMember: create a new member entry in the status."""

from __future__ import annotations

import uuid

from contracts.deployment import (
    ActionRecord,
    ActionType,
    MemberPhase,
    MemberStatus,
    ServerGroup,
    new_action,
)
from services.reconcile.base import ActionImpl

_ID_PREFIXES = {
    ServerGroup.SINGLE: "SNGL",
    ServerGroup.AGENTS: "AGNT",
    ServerGroup.DBSERVERS: "PRMR",
    ServerGroup.COORDINATORS: "CRDN",
    ServerGroup.SYNCMASTERS: "SYNM",
    ServerGroup.SYNCWORKERS: "SYNW",
}


def new_member_id(group: ServerGroup) -> str:
    return f"{_ID_PREFIXES.get(group, 'MMBR')}-{uuid.uuid4().hex[:8]}"


class AddMemberAction(ActionImpl):
    """Creates the member as ``Pending``.

    The chosen id is written back to the record so that a repeated start and
    a following ``@previous`` record both see the same member. When the record
    carries a ``WaitForMemberUp`` param, a wait record for the new member is
    put at the front of the remaining plan.
    """

    def start(self) -> bool:
        if not self.record.member_id:
            self.record.member_id = new_member_id(self.record.group)
        if self.ctx.get_member(self.record.member_id) is None:
            self.ctx.add_member(
                MemberStatus(
                    id=self.record.member_id,
                    group=self.record.group,
                    phase=MemberPhase.PENDING,
                    image=self.record.image,
                )
            )
        return True

    def plan_append(self, plan: list[ActionRecord]) -> tuple[list[ActionRecord], bool]:
        if self.record.get_param(str(ActionType.WAIT_FOR_MEMBER_UP)) is None:
            return plan, False
        wait = new_action(
            ActionType.WAIT_FOR_MEMBER_UP,
            self.record.group,
            self.record.member_id,
            "Wait for member in sync after creation",
        )
        return [wait, *plan], True
