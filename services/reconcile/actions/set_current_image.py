"""SetCurrentImage: record the image the deployment now runs."""

from __future__ import annotations

from contracts.deployment import DeploymentStatus
from services.reconcile.base import READY, ActionImpl, Progress


class SetCurrentImageAction(ActionImpl):
    def start(self) -> bool:
        return self.record.image is None

    def check_progress(self) -> Progress:
        image = self.record.image

        def _mutate(status: DeploymentStatus) -> bool:
            if status.current_image == image:
                return False
            status.current_image = image
            return True

        self.ctx.with_status_update(_mutate)
        return READY
