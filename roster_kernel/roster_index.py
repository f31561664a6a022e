"""
Roster Kernel - Roster Index

Operator over the denormalized ``personnel_by_unit`` grouping of a
RosterState.

A record is located by scanning every group (ids are globally unique,
so the first match wins). Moving a record between groups always
rewrites ``assigned_unit`` to the target unit's name so the grouping
key and the name reference never disagree.

Operations addressing an unknown personnel id or unit id leave the
state untouched and log a warning.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from .domain_types import (
    PERSONNEL_FIELD_MAP,
    CharacterType,
    Personnel,
    PersonnelStatus,
    RosterState,
)
from .filters import rank_category
from .unit_tree import UnitTree

logger = logging.getLogger(__name__)


class InvalidPersonnelError(ValueError):
    """Raised when a personnel create/patch carries an unusable value."""


class RosterIndex:
    """Personnel lookups and moves bound to one RosterState."""

    def __init__(self, state: RosterState) -> None:
        self._state = state
        self._tree = UnitTree(state)

    # -- Read ---------------------------------------------------------------

    def group(self, unit_id: str) -> List[Personnel]:
        return list(self._state.personnel_by_unit.get(unit_id, []))

    def all_personnel(self) -> List[Personnel]:
        return [p for group in self._state.personnel_by_unit.values() for p in group]

    def find(self, personnel_id: str) -> Optional[Tuple[str, Personnel]]:
        """(unit id, record) of the first record with this id, or None."""
        for unit_id, group in self._state.personnel_by_unit.items():
            for person in group:
                if person.id == personnel_id:
                    return unit_id, person
        return None

    def personnel_in_subtree(self, unit_id: str) -> List[Personnel]:
        """
        Everyone grouped under ``unit_id`` or any descendant, plus anyone
        seconded to it. Each record appears once.
        """
        unit = self._tree.get(unit_id)
        if unit is None:
            logger.warning("subtree view of unknown unit %r is empty", unit_id)
            return []

        result: List[Personnel] = []
        seen: set[str] = set()

        def _take(person: Personnel) -> None:
            if person.id not in seen:
                seen.add(person.id)
                result.append(person)

        for uid in [unit_id, *self._tree.descendants(unit_id)]:
            for person in self._state.personnel_by_unit.get(uid, []):
                _take(person)

        for person in self.all_personnel():
            if person.secondment and person.secondment == unit.name:
                _take(person)

        return result

    def unit_counts(self) -> Dict[str, int]:
        return {
            unit.id: len(self._state.personnel_by_unit.get(unit.id, []))
            for unit in self._state.units
        }

    def specialties_present(self) -> List[str]:
        return sorted({p.specialty for p in self.all_personnel() if p.specialty})

    def rank_categories_present(self) -> List[str]:
        found = {rank_category(p.grade) for p in self.all_personnel()}
        return sorted(c.value for c in found if c is not None)

    # -- Create / delete ----------------------------------------------------

    def add(self, unit_id: str, person: Personnel) -> Optional[Personnel]:
        """
        Insert ``person`` into the group of ``unit_id``.

        A missing id is generated; a missing ``assigned_unit`` defaults
        to the unit's name.
        """
        unit = self._tree.get(unit_id)
        if unit is None:
            logger.warning("add to unknown unit %r ignored", unit_id)
            return None
        if not person.name.strip():
            raise InvalidPersonnelError("Personnel name is required")
        if not person.id:
            person.id = uuid.uuid4().hex
        elif self.find(person.id) is not None:
            raise InvalidPersonnelError(f"Personnel id {person.id!r} already exists")
        if not person.assigned_unit:
            person.assigned_unit = unit.name
        self._state.personnel_by_unit.setdefault(unit_id, []).append(person)
        return person

    def remove(self, personnel_id: str) -> Optional[Personnel]:
        found = self.find(personnel_id)
        if found is None:
            logger.warning("remove of unknown personnel %r ignored", personnel_id)
            return None
        unit_id, person = found
        group = self._state.personnel_by_unit[unit_id]
        group.remove(person)
        return person

    # -- Move / update ------------------------------------------------------

    def reassign(self, personnel_id: str, target_unit_id: str) -> bool:
        """Move a record to ``target_unit_id``'s group and rewrite its unit name."""
        target = self._tree.get(target_unit_id)
        if target is None:
            logger.warning(
                "reassign of %r to unknown unit %r ignored",
                personnel_id, target_unit_id,
            )
            return False
        found = self.find(personnel_id)
        if found is None:
            logger.warning("reassign of unknown personnel %r ignored", personnel_id)
            return False

        unit_id, person = found
        person.assigned_unit = target.name
        if unit_id != target_unit_id:
            self._state.personnel_by_unit[unit_id].remove(person)
            self._state.personnel_by_unit.setdefault(target_unit_id, []).append(person)
        return True

    def update_fields(
        self, personnel_id: str, patch: Dict[str, Any],
    ) -> Optional[Personnel]:
        """
        Apply a partial update in place.

        ``patch`` uses the persisted (camelCase) keys; snake_case attribute
        names are accepted too. ``id`` cannot change. A new
        ``assignedUnit`` must name a known unit; the record moves into that
        unit's group. An unknown name raises with nothing changed.
        """
        found = self.find(personnel_id)
        if found is None:
            logger.warning("update of unknown personnel %r ignored", personnel_id)
            return None
        unit_id, person = found

        changes = _normalise_patch(patch)
        if changes.pop("id", personnel_id) != personnel_id:
            logger.warning("id change for personnel %r ignored", personnel_id)

        target = None
        if changes.get("assigned_unit", person.assigned_unit) != person.assigned_unit:
            target = self._tree.find_by_name(changes["assigned_unit"])
            if target is None:
                raise InvalidPersonnelError(f"Unknown unit {changes['assigned_unit']!r}")

        for attr, value in changes.items():
            setattr(person, attr, value)

        if target is not None and target.id != unit_id:
            self._state.personnel_by_unit[unit_id].remove(person)
            self._state.personnel_by_unit.setdefault(target.id, []).append(person)
        return person


def personnel_from_fields(fields: Dict[str, Any]) -> Personnel:
    """Build a new record from camelCase or snake_case fields. ``name`` is required."""
    changes = _normalise_patch(fields)
    if not changes.get("name"):
        raise InvalidPersonnelError("Personnel name is required")
    changes.setdefault("id", "")
    return Personnel(**changes)


def _normalise_patch(patch: Dict[str, Any]) -> Dict[str, Any]:
    """Map patch keys to attribute names and validate values. No mutation."""
    attrs = set(PERSONNEL_FIELD_MAP.values())
    changes: Dict[str, Any] = {}
    for key, value in patch.items():
        attr = PERSONNEL_FIELD_MAP.get(key, key)
        if attr not in attrs:
            raise InvalidPersonnelError(f"Unknown personnel field {key!r}")
        if attr == "status":
            try:
                value = PersonnelStatus(value)
            except ValueError as exc:
                raise InvalidPersonnelError(f"Invalid status {value!r}") from exc
        elif attr == "character_type":
            try:
                value = CharacterType(value)
            except ValueError as exc:
                raise InvalidPersonnelError(f"Invalid character type {value!r}") from exc
        else:
            value = "" if value is None else str(value)
        if attr == "name" and not value.strip():
            raise InvalidPersonnelError("Personnel name is required")
        changes[attr] = value
    return changes
