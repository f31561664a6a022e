"""
Roster Kernel - Core Domain Types

Pure data. No storage, no transition logic.

Units form a forest through ``parent_id``. Personnel live in groups keyed
by unit id, and also name their unit by *display name* in
``assigned_unit`` / ``secondment``. The two references must be kept in
step by every operation that renames or removes a unit.

────────────────────────────────────────────────
DOMAIN GLOSSARY
────────────────────────────────────────────────

Unit:
    Node in the organizational hierarchy.

Secondment:
    Temporary attachment of a personnel record to a unit other than
    its home ``assigned_unit``.

Grade:
    Numeric rank level stored as a string ("1".."16").

────────────────────────────────────────────────
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


# ── Permanent Unit ────────────────────────────────────────────
UNASSIGNED_UNIT_ID: str = "unassigned"
UNASSIGNED_UNIT_NAME: str = "Unassigned"


class PersonnelStatus(str, Enum):
    AVAILABLE = "available"
    DEPLOYED = "deployed"
    INACTIVE = "inactive"
    WIA = "wia"
    KIA = "kia"


class CharacterType(str, Enum):
    PC = "pc"
    NPC = "npc"


class RankCategory(str, Enum):
    JUNIOR_ENLISTED = "junior-enlisted"
    NCO = "nco"
    OFFICER = "officer"


# ── Unit ID Derivation ────────────────────────────────────────
_ID_STRIP = re.compile(r"[^a-z0-9\s-]")
_ID_SPACES = re.compile(r"\s+")
_ID_DASHES = re.compile(r"-+")


def derive_unit_id(name: str) -> str:
    """
    Derive a stable unit id from a display name.

    "17th Assault Group" -> "17th-assault-group". The id is fixed at
    creation and never follows later renames.
    """
    slug = _ID_STRIP.sub("", name.lower())
    slug = _ID_SPACES.sub("-", slug)
    slug = _ID_DASHES.sub("-", slug)
    return slug.strip()


# ── Core Domain Types ─────────────────────────────────────────

@dataclass
class Unit:
    """A node in the unit forest."""

    id: str
    name: str
    parent_id: Optional[str] = None
    sort_order: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"id": self.id, "name": self.name}
        if self.parent_id:
            d["parentId"] = self.parent_id
        if self.sort_order is not None:
            d["sortOrder"] = self.sort_order
        return d


@dataclass
class Personnel:
    """A single roster record. ``assigned_unit`` holds a unit *name*."""

    id: str
    name: str
    callsign: str = ""
    rank: str = ""
    grade: str = ""
    role: str = ""
    specialty: str = ""
    species: str = ""
    gender: str = ""
    assigned_unit: str = ""
    secondment: str = ""
    status: PersonnelStatus = PersonnelStatus.AVAILABLE
    character_type: CharacterType = CharacterType.PC
    notes: str = ""

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "callsign": self.callsign,
            "rank": self.rank,
            "grade": self.grade,
            "role": self.role,
            "specialty": self.specialty,
            "species": self.species,
            "gender": self.gender,
            "assignedUnit": self.assigned_unit,
            "status": self.status.value,
            "characterType": self.character_type.value,
            "notes": self.notes,
        }
        if self.secondment:
            d["secondment"] = self.secondment
        return d


# Persisted (camelCase) key -> dataclass attribute
PERSONNEL_FIELD_MAP: Dict[str, str] = {
    "id": "id",
    "name": "name",
    "callsign": "callsign",
    "rank": "rank",
    "grade": "grade",
    "role": "role",
    "specialty": "specialty",
    "species": "species",
    "gender": "gender",
    "assignedUnit": "assigned_unit",
    "secondment": "secondment",
    "status": "status",
    "characterType": "character_type",
    "notes": "notes",
}


@dataclass
class RosterState:
    """
    Complete roster snapshot as held in the store.

    personnel_by_unit: unit id -> records grouped under that unit.
    """

    units: List[Unit] = field(default_factory=list)
    personnel_by_unit: Dict[str, List[Personnel]] = field(default_factory=dict)
    current_unit_id: str = ""

    def copy(self) -> "RosterState":
        """Deep-copy the entire state so intents can compute on a scratch copy."""
        return copy.deepcopy(self)

    def units_to_list(self) -> List[Dict[str, Any]]:
        return [u.to_dict() for u in self.units]

    def personnel_to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            unit_id: [p.to_dict() for p in group]
            for unit_id, group in self.personnel_by_unit.items()
        }

    def to_dict(self) -> dict:
        """Serialise state to the persisted shape (for the API / logging)."""
        return {
            "units": self.units_to_list(),
            "personnelByUnit": self.personnel_to_dict(),
            "currentUnitId": self.current_unit_id,
        }
