"""RemoveMember: drop a member from the cluster and from the status."""

from __future__ import annotations

from contracts.deployment import ServerGroup
from infra.logging_config import StructuredLogger
from services.reconcile.base import ActionImpl
from services.reconcile.errors import NotFoundError

logger = StructuredLogger(__name__)

_REGISTERED_GROUPS = {ServerGroup.DBSERVERS, ServerGroup.COORDINATORS}


class RemoveMemberAction(ActionImpl):
    def start(self) -> bool:
        member = self.ctx.get_member(self.record.member_id)
        if member is None:
            return True
        cluster = self.ctx.cluster()
        if member.group in _REGISTERED_GROUPS:
            try:
                cluster.remove_server(member.id)
            except NotFoundError:
                logger.debug("server_already_removed", member_id=member.id)
        if member.pvc_name:
            try:
                cluster.delete_pvc(member.pvc_name)
            except NotFoundError:
                pass
        if member.pod_name:
            try:
                cluster.delete_pod(member.pod_name)
            except NotFoundError:
                pass
        self.ctx.remove_member(member.id)
        return True
