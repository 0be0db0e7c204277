"""Per-record scratch storage used to correlate multi-tick server-side jobs.

Actions persist a job handle into ``ActionRecord.scratch`` before reporting
"not ready" and read it back on the next tick instead of issuing the job
again. The mapping lives and dies with its plan record.
"""

from __future__ import annotations

from collections.abc import MutableMapping

from contracts.deployment import ActionRecord

# Written when a job concluded; reads treat it as "no value".
NOT_AVAILABLE = "N/A"


class PlanLocalKey(str):
    """Well-known scratch key; the prefix keeps unrelated actions apart."""

    __slots__ = ()

    def __new__(cls, namespace: str, name: str) -> PlanLocalKey:
        return super().__new__(cls, f"{namespace}.{name}")


class ScratchStore:
    """Get/add/clear view over one record's scratch mapping."""

    def __init__(self, record: ActionRecord) -> None:
        self._values: MutableMapping[str, str] = record.scratch

    def get(self, key: str) -> str | None:
        value = self._values.get(key)
        if value is None or value == NOT_AVAILABLE:
            return None
        return value

    def add(self, key: str, value: str, *, overwrite: bool = True) -> bool:
        """Store ``value``; return False when the key is set and overwrite is off."""
        if not overwrite and self.get(key) is not None:
            return False
        self._values[key] = str(value)
        return True

    def clear(self, key: str) -> None:
        if key in self._values:
            self._values[key] = NOT_AVAILABLE

    def keys(self) -> list[str]:
        return sorted(k for k, v in self._values.items() if v != NOT_AVAILABLE)
