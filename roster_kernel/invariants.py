"""
Roster Kernel - Unit Tree Invariants

Hard-fail validation. Every check raises a UnitTreeError subclass on
failure, before any state has been touched.
"""

from __future__ import annotations

from typing import List

from .domain_types import UNASSIGNED_UNIT_ID, Unit
from .graph import build_unit_map, detect_parent_cycles


class UnitTreeError(Exception):
    """Raised when a unit-tree rule would be violated."""

    def __init__(self, rule: str, detail: str) -> None:
        self.rule = rule
        self.detail = detail
        super().__init__(f"[UNIT:{rule}] {detail}")


class DuplicateNameError(UnitTreeError):
    def __init__(self, name: str) -> None:
        super().__init__("duplicate_name", f"Unit name {name!r} already exists")


class DuplicateIdError(UnitTreeError):
    def __init__(self, unit_id: str) -> None:
        super().__init__(
            "duplicate_id",
            f"Generated unit ID {unit_id!r} already exists, "
            f"please use a different name",
        )


class CircularReferenceError(UnitTreeError):
    def __init__(self, unit_id: str, parent_id: str) -> None:
        super().__init__(
            "circular_reference",
            f"Cannot make {parent_id!r} the parent of {unit_id!r}: "
            f"circular parent reference",
        )


class ProtectedUnitError(UnitTreeError):
    def __init__(self, unit_id: str) -> None:
        super().__init__("protected_unit", f"Unit {unit_id!r} cannot be deleted")


class UnknownUnitError(UnitTreeError):
    def __init__(self, unit_id: str) -> None:
        super().__init__("unknown_unit", f"Unit {unit_id!r} does not exist")


class InvalidUnitNameError(UnitTreeError):
    def __init__(self) -> None:
        super().__init__("invalid_name", "Unit name is required")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def validate_unit_tree(units: List[Unit]) -> None:
    """
    Run every whole-tree check. Raises UnitTreeError on the first failure.

    Used on trees that did not come through UnitTree operations
    (imports, raw store pushes).
    """
    _check_unique_ids(units)
    _check_unique_names(units)
    _check_no_self_parent(units)
    _check_acyclic(units)


# ---------------------------------------------------------------------------
# Individual checks (private)
# ---------------------------------------------------------------------------

def _check_unique_ids(units: List[Unit]) -> None:
    seen: set[str] = set()
    for unit in units:
        if unit.id in seen:
            raise DuplicateIdError(unit.id)
        seen.add(unit.id)


def _check_unique_names(units: List[Unit]) -> None:
    seen: set[str] = set()
    for unit in units:
        key = unit.name.lower()
        if key in seen:
            raise DuplicateNameError(unit.name)
        seen.add(key)


def _check_no_self_parent(units: List[Unit]) -> None:
    for unit in units:
        if unit.parent_id and unit.parent_id == unit.id:
            raise CircularReferenceError(unit.id, unit.parent_id)


def _check_acyclic(units: List[Unit]) -> None:
    cycles = detect_parent_cycles(build_unit_map(units))
    if cycles:
        cycle = cycles[0]
        raise CircularReferenceError(cycle[-1], cycle[0])


def is_protected(unit_id: str) -> bool:
    return unit_id == UNASSIGNED_UNIT_ID
