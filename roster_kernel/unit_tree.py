"""
Roster Kernel - Unit Tree

Mutating operator over the unit forest of a RosterState.

Every operation validates first and mutates second, so a raised
UnitTreeError leaves the state exactly as it was. Rename and delete
cascade into ``personnel_by_unit`` because personnel reference their
unit by name as well as by grouping key.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .domain_types import UNASSIGNED_UNIT_ID, RosterState, Unit, derive_unit_id
from .graph import (
    build_unit_map,
    descendant_ids,
    unit_depth,
    unit_path,
    would_create_cycle,
)
from .invariants import (
    CircularReferenceError,
    DuplicateIdError,
    DuplicateNameError,
    InvalidUnitNameError,
    ProtectedUnitError,
    UnitTreeError,
    UnknownUnitError,
    is_protected,
)

logger = logging.getLogger(__name__)

# Distinguishes "leave unchanged" from an explicit None in update().
UNSET = object()


class UnitTree:
    """
    Unit hierarchy operations bound to one RosterState.

    The tree never copies the state: callers that need all-or-nothing
    semantics across several operations work on ``state.copy()``.
    """

    def __init__(self, state: RosterState) -> None:
        self._state = state

    # -- Read ---------------------------------------------------------------

    @property
    def units(self) -> List[Unit]:
        return self._state.units

    def get(self, unit_id: str) -> Optional[Unit]:
        for unit in self._state.units:
            if unit.id == unit_id:
                return unit
        return None

    def find_by_name(self, name: str) -> Optional[Unit]:
        for unit in self._state.units:
            if unit.name == name:
                return unit
        return None

    def depth(self, unit_id: str) -> int:
        return unit_depth(unit_id, build_unit_map(self._state.units))

    def path(self, unit_id: str) -> str:
        return unit_path(unit_id, build_unit_map(self._state.units))

    def descendants(self, unit_id: str) -> List[str]:
        return descendant_ids(unit_id, self._state.units)

    def ordered_list(self) -> List[Unit]:
        """
        Display order for every unit list.

        1. Units with a manual ``sort_order``, ascending.
        2. Remaining units by their "/"-joined name path, compared as a
           plain string.
        3. The permanent unassigned unit, always last.
        """
        unit_map = build_unit_map(self._state.units)

        def path_key(unit: Unit) -> str:
            return unit_path(unit.id, unit_map)

        regular = [u for u in self._state.units if u.id != UNASSIGNED_UNIT_ID]
        manual = sorted(
            (u for u in regular if u.sort_order is not None),
            key=lambda u: (u.sort_order, path_key(u)),
        )
        automatic = sorted(
            (u for u in regular if u.sort_order is None),
            key=path_key,
        )
        tail = [u for u in self._state.units if u.id == UNASSIGNED_UNIT_ID]
        return manual + automatic + tail

    def parent_candidates(self, unit_id: Optional[str] = None) -> List[Unit]:
        """Units that may be chosen as parent (of ``unit_id`` when editing)."""
        excluded = {UNASSIGNED_UNIT_ID}
        if unit_id:
            excluded.add(unit_id)
            excluded.update(self.descendants(unit_id))
        return [u for u in self.ordered_list() if u.id not in excluded]

    def reassignment_targets(self, unit_id: str) -> List[Unit]:
        """Units that may receive the personnel of ``unit_id`` on delete."""
        excluded = {unit_id, *self.descendants(unit_id)}
        return [u for u in self.ordered_list() if u.id not in excluded]

    # -- Create -------------------------------------------------------------

    def create(
        self,
        name: str,
        parent_id: Optional[str] = None,
        sort_order: Optional[int] = None,
    ) -> Unit:
        """
        Add a unit. Its id is derived from the name and fixed from then on.

        Raises DuplicateNameError, DuplicateIdError, CircularReferenceError,
        UnknownUnitError (missing parent) or InvalidUnitNameError.
        """
        trimmed = self._clean_name(name)
        self._check_name_free(trimmed)

        new_id = derive_unit_id(trimmed)
        if not new_id:
            raise InvalidUnitNameError()
        if self.get(new_id) is not None:
            raise DuplicateIdError(new_id)

        parent_id = parent_id or None
        self._check_parent(new_id, parent_id)

        unit = Unit(id=new_id, name=trimmed, parent_id=parent_id, sort_order=sort_order)
        self._state.units.append(unit)
        return unit

    # -- Update -------------------------------------------------------------

    def rename(self, unit_id: str, new_name: str) -> int:
        """
        Rename a unit and rewrite every personnel reference to the old name.

        Returns the number of personnel records rewritten.
        Unknown ``unit_id`` is a logged no-op.
        """
        return self.update(unit_id, name=new_name)

    def reparent(self, unit_id: str, new_parent_id: Optional[str]) -> None:
        """Move a unit under ``new_parent_id``; empty or None makes it top-level."""
        self.update(unit_id, parent_id=new_parent_id)

    def update(
        self,
        unit_id: str,
        name: Optional[str] = None,
        parent_id=UNSET,
        sort_order=UNSET,
    ) -> int:
        """
        Combined edit of name, parent and manual order.

        All checks run before any field changes. Returns the number of
        personnel records rewritten by the rename cascade.
        """
        unit = self.get(unit_id)
        if unit is None:
            logger.warning("update of unknown unit %r ignored", unit_id)
            return 0

        new_name = unit.name
        if name is not None:
            new_name = self._clean_name(name)
            self._check_name_free(new_name, exclude_id=unit_id)

        new_parent = unit.parent_id
        if parent_id is not UNSET:
            new_parent = parent_id or None
            self._check_parent(unit_id, new_parent)

        old_name = unit.name
        unit.name = new_name
        unit.parent_id = new_parent
        if sort_order is not UNSET:
            unit.sort_order = sort_order

        if old_name != new_name:
            return self._cascade_rename(old_name, new_name)
        return 0

    # -- Delete -------------------------------------------------------------

    def delete(self, unit_id: str, reassign_to: str = UNASSIGNED_UNIT_ID) -> Optional[Unit]:
        """
        Remove a unit without orphaning anything.

        Children move up to the deleted unit's parent (or top level).
        Personnel grouped under the unit move to ``reassign_to`` with
        ``assigned_unit`` set to that unit's name.

        Returns the removed Unit, or None for an unknown ``unit_id``.
        """
        if is_protected(unit_id):
            raise ProtectedUnitError(unit_id)

        unit = self.get(unit_id)
        if unit is None:
            logger.warning("delete of unknown unit %r ignored", unit_id)
            return None

        if reassign_to == unit_id:
            raise UnitTreeError(
                "invalid_reassignment",
                f"Personnel of {unit_id!r} cannot be reassigned to itself",
            )
        target = self.get(reassign_to)
        if target is None:
            raise UnknownUnitError(reassign_to)

        for child in self._state.units:
            if child.parent_id == unit_id:
                child.parent_id = unit.parent_id

        moved = self._state.personnel_by_unit.pop(unit_id, [])
        if moved:
            for person in moved:
                person.assigned_unit = target.name
            self._state.personnel_by_unit.setdefault(target.id, []).extend(moved)

        self._state.units = [u for u in self._state.units if u.id != unit_id]
        if self._state.current_unit_id == unit_id:
            self._state.current_unit_id = target.id
        return unit

    # -- Internal -----------------------------------------------------------

    @staticmethod
    def _clean_name(name: str) -> str:
        trimmed = (name or "").strip()
        if not trimmed:
            raise InvalidUnitNameError()
        return trimmed

    def _check_name_free(self, name: str, exclude_id: Optional[str] = None) -> None:
        key = name.lower()
        for unit in self._state.units:
            if unit.id != exclude_id and unit.name.lower() == key:
                raise DuplicateNameError(name)

    def _check_parent(self, unit_id: str, parent_id: Optional[str]) -> None:
        if not parent_id:
            return
        unit_map = build_unit_map(self._state.units)
        if parent_id != unit_id and parent_id not in unit_map:
            raise UnknownUnitError(parent_id)
        if would_create_cycle(unit_id, parent_id, unit_map):
            raise CircularReferenceError(unit_id, parent_id)

    def _cascade_rename(self, old_name: str, new_name: str) -> int:
        rewritten = 0
        for group in self._state.personnel_by_unit.values():
            for person in group:
                touched = False
                if person.assigned_unit == old_name:
                    person.assigned_unit = new_name
                    touched = True
                if person.secondment == old_name:
                    person.secondment = new_name
                    touched = True
                if touched:
                    rewritten += 1
        return rewritten
