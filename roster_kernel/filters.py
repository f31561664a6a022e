"""
Roster Kernel - Derived Views

Filtering and ordering of personnel lists. Pure functions over
Personnel sequences; nothing here touches the grouping structure.

Filter order:
  1. drop inactive records unless show_inactive
  2. free-text query (case-insensitive substring)
  3. set filters: AND across dimensions, OR within a dimension,
     an empty selection disables its dimension
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set

from .constants import JUNIOR_ENLISTED_GRADES, NCO_GRADES, OFFICER_GRADES
from .domain_types import Personnel, PersonnelStatus, RankCategory, Unit


@dataclass
class FilterCriteria:
    """Ephemeral search state. Never persisted."""

    query: str = ""
    statuses: Set[str] = field(default_factory=set)
    rank_categories: Set[str] = field(default_factory=set)
    specialties: Set[str] = field(default_factory=set)
    character_types: Set[str] = field(default_factory=set)
    # Unit ids or unit names; ids are resolved to names when units are given.
    assigned_units: Set[str] = field(default_factory=set)
    secondments: Set[str] = field(default_factory=set)
    show_inactive: bool = False

    def active_filter_count(self) -> int:
        return (
            len(self.statuses)
            + len(self.rank_categories)
            + len(self.specialties)
            + len(self.character_types)
            + len(self.assigned_units)
            + len(self.secondments)
            + (1 if self.query.strip() else 0)
        )


# ---------------------------------------------------------------------------
# Grade helpers
# ---------------------------------------------------------------------------

def parse_grade(grade: str) -> Optional[int]:
    try:
        return int(str(grade).strip())
    except (TypeError, ValueError):
        return None


def rank_category(grade: str) -> Optional[RankCategory]:
    """1-3 junior enlisted, 4-8 NCO, 9-16 officer, anything else None."""
    value = parse_grade(grade)
    if value is None:
        return None
    for category, (low, high) in (
        (RankCategory.JUNIOR_ENLISTED, JUNIOR_ENLISTED_GRADES),
        (RankCategory.NCO, NCO_GRADES),
        (RankCategory.OFFICER, OFFICER_GRADES),
    ):
        if low <= value <= high:
            return category
    return None


def sort_by_rank(personnel: Iterable[Personnel]) -> List[Personnel]:
    """Highest grade first; unparseable grades count as 0; ties by name, case-insensitive."""
    return sorted(
        personnel,
        key=lambda p: (-(parse_grade(p.grade) or 0), p.name.casefold(), p.name),
    )


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------

def _matches_query(person: Personnel, query: str) -> bool:
    needle = query.lower()
    return any(
        needle in value.lower()
        for value in (
            person.name,
            person.callsign,
            person.rank,
            person.specialty,
            person.role,
        )
    )


def _resolve_unit_names(selected: Set[str], units: Optional[List[Unit]]) -> Set[str]:
    if not selected or not units:
        return set(selected)
    by_id = {u.id: u.name for u in units}
    return {by_id.get(value, value) for value in selected}


def filter_personnel(
    personnel: Iterable[Personnel],
    criteria: FilterCriteria,
    units: Optional[List[Unit]] = None,
) -> List[Personnel]:
    """Apply ``criteria`` in order, preserving input order."""
    assigned = _resolve_unit_names(criteria.assigned_units, units)
    seconded = _resolve_unit_names(criteria.secondments, units)
    query = criteria.query.strip()

    result: List[Personnel] = []
    for person in personnel:
        if not criteria.show_inactive and person.status == PersonnelStatus.INACTIVE:
            continue
        if query and not _matches_query(person, query):
            continue
        if criteria.statuses and person.status.value not in criteria.statuses:
            continue
        if criteria.rank_categories:
            category = rank_category(person.grade)
            if category is None or category.value not in criteria.rank_categories:
                continue
        if criteria.specialties and person.specialty not in criteria.specialties:
            continue
        if (
            criteria.character_types
            and person.character_type.value not in criteria.character_types
        ):
            continue
        if assigned and person.assigned_unit not in assigned:
            continue
        if seconded and person.secondment not in seconded:
            continue
        result.append(person)
    return result
