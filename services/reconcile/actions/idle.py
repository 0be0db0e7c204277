"""Idle action: completes immediately, used as a plan placeholder."""

from __future__ import annotations

from services.reconcile.base import ActionImpl


class IdleAction(ActionImpl):
    def start(self) -> bool:
        return True
