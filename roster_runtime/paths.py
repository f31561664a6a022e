"""
Store Paths - the closed set of logical collections in the key-value store.
"""

from __future__ import annotations

from enum import Enum


class StorePath(str, Enum):
    """Logical collection -> storage key."""

    PERSONNEL_BY_UNIT = "personnelByUnit"
    UNITS = "units"
    CURRENT_UNIT_ID = "currentUnitId"
    GM_PASSKEY = "gmPasskey"

    @property
    def key(self) -> str:
        return self.value
