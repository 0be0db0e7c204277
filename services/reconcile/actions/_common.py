"""Shared helpers for built-in action implementations."""

from __future__ import annotations

from contracts.deployment import ConditionType, MemberStatus
from services.reconcile.context import ActionContext

_TRUE_VALUES = {"1", "true", "yes", "on"}


def parse_bool(value: str | None) -> bool:
    return str(value or "").strip().lower() in _TRUE_VALUES


def remove_terminating_conditions(member: MemberStatus) -> bool:
    """Drop the restart bookkeeping conditions; return True when any was set."""
    changed = member.remove_condition(ConditionType.TERMINATING)
    changed = member.remove_condition(ConditionType.TERMINATED) or changed
    return changed


def save_member(ctx: ActionContext, member: MemberStatus, changed: bool = True) -> None:
    if changed:
        ctx.update_member(member)
