"""Toggle cluster supervision maintenance mode."""

from __future__ import annotations

from contracts.deployment import ConditionType, DeploymentMode, DeploymentStatus
from services.reconcile.base import IN_PROGRESS, READY, ActionImpl, Progress


class _MaintenanceAction(ActionImpl):
    enabled: bool = True

    def start(self) -> bool:
        if self.ctx.mode == DeploymentMode.SINGLE:
            return True
        if self.ctx.agency_state().maintenance == self.enabled:
            self._record_condition()
            return True
        self.ctx.cluster().set_maintenance(self.enabled)
        return False

    def check_progress(self) -> Progress:
        if self.ctx.agency_state().maintenance != self.enabled:
            return IN_PROGRESS
        self._record_condition()
        return READY

    def _record_condition(self) -> None:
        enabled = self.enabled

        def _mutate(status: DeploymentStatus) -> bool:
            return status.update_condition(
                ConditionType.MAINTENANCE_MODE,
                enabled,
                "Maintenance enabled" if enabled else "Maintenance disabled",
            )

        self.ctx.with_status_update(_mutate)


class EnableMaintenanceAction(_MaintenanceAction):
    enabled = True


class DisableMaintenanceAction(_MaintenanceAction):
    enabled = False
