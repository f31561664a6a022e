"""
Roster Kernel - Snapshot Encoder / Decoder

Two jobs:
  - Boundary decoding of untrusted store values (``units``,
    ``personnelByUnit``) into typed domain objects. The store enforces
    no schema, so shapes are checked here before anything trusts them.
  - Export / import of the whole roster as a versioned JSON document:

    {"version": "1.0", "exportDate": <ISO-8601>,
     "personnelByUnit": {unit_id: [personnel, ...]}, "units": [unit, ...]}

Import only requires ``id`` and ``name`` on each personnel record; every
other field is auto-filled with its default.
"""

from __future__ import annotations

import json
import pathlib
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .constants import DEFAULT_CHARACTER_TYPE, DEFAULT_STATUS, EXPORT_FORMAT_VERSION
from .domain_types import (
    CharacterType,
    Personnel,
    PersonnelStatus,
    RosterState,
    Unit,
)
from .invariants import UnitTreeError, validate_unit_tree


# ══════════════════════════════════════════════════════════════
# Exception Hierarchy
# ══════════════════════════════════════════════════════════════

class SnapshotError(Exception):
    """Base exception for all snapshot operations."""


class DeserializationError(SnapshotError):
    """Raised when a stored value does not have the expected shape."""


class ImportValidationError(SnapshotError):
    """Raised when an import document is rejected. ``reason`` is user-facing."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


# ══════════════════════════════════════════════════════════════
# Boundary Decoding
# ══════════════════════════════════════════════════════════════

_PERSONNEL_TEXT_FIELDS = (
    ("callsign", "callsign"),
    ("rank", "rank"),
    ("grade", "grade"),
    ("role", "role"),
    ("specialty", "specialty"),
    ("species", "species"),
    ("gender", "gender"),
    ("assignedUnit", "assigned_unit"),
    ("secondment", "secondment"),
    ("notes", "notes"),
)


def _as_list(raw: Any, context: str) -> List[Any]:
    """
    Accept a JSON array, or an object keyed "0", "1", ... (the shape a
    realtime store hands back for arrays).
    """
    if raw is None:
        return []
    if isinstance(raw, list):
        return raw
    if isinstance(raw, dict) and all(str(k).isdigit() for k in raw):
        return [raw[k] for k in sorted(raw, key=lambda k: int(k))]
    raise DeserializationError(
        f"{context} must be a JSON array, got {type(raw).__name__}"
    )


def _as_text(value: Any, name: str, context: str) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        raise DeserializationError(f"Field '{name}' in {context} must be string")
    if isinstance(value, (str, int)):
        return str(value)
    raise DeserializationError(
        f"Field '{name}' in {context} must be string, got {type(value).__name__}"
    )


def decode_unit(raw: Any, context: str = "unit") -> Unit:
    if not isinstance(raw, dict):
        raise DeserializationError(f"{context} must be a JSON object")
    unit_id = raw.get("id")
    name = raw.get("name")
    if not isinstance(unit_id, str) or not unit_id:
        raise DeserializationError(f"{context} is missing a string 'id'")
    if not isinstance(name, str):
        raise DeserializationError(f"{context} is missing a string 'name'")

    parent_id = raw.get("parentId")
    if parent_id is not None and not isinstance(parent_id, str):
        raise DeserializationError(f"'parentId' of {context} must be string")

    sort_order = raw.get("sortOrder")
    if sort_order is not None and (
        isinstance(sort_order, bool) or not isinstance(sort_order, int)
    ):
        raise DeserializationError(f"'sortOrder' of {context} must be int")

    return Unit(
        id=unit_id,
        name=name,
        parent_id=parent_id or None,
        sort_order=sort_order,
    )


def decode_units(raw: Any) -> List[Unit]:
    """Decode the ``units`` store value. None decodes to an empty list."""
    return [
        decode_unit(item, f"unit [{i}]")
        for i, item in enumerate(_as_list(raw, "'units'"))
    ]


def decode_personnel(raw: Any, context: str = "personnel") -> Personnel:
    """
    Decode one record. ``id`` and ``name`` are required; missing text
    fields become "", unknown status / character type fall back to the
    defaults.
    """
    if not isinstance(raw, dict):
        raise DeserializationError(f"{context} must be a JSON object")
    pid = _as_text(raw.get("id"), "id", context)
    name = _as_text(raw.get("name"), "name", context)
    if not pid or not name:
        raise DeserializationError(
            "Personnel record missing required fields (id, name)"
        )

    fields: Dict[str, Any] = {
        attr: _as_text(raw.get(key), key, context)
        for key, attr in _PERSONNEL_TEXT_FIELDS
    }

    try:
        status = PersonnelStatus(raw.get("status") or DEFAULT_STATUS)
    except ValueError:
        status = PersonnelStatus(DEFAULT_STATUS)
    try:
        character_type = CharacterType(raw.get("characterType") or DEFAULT_CHARACTER_TYPE)
    except ValueError:
        character_type = CharacterType(DEFAULT_CHARACTER_TYPE)

    return Personnel(
        id=pid,
        name=name,
        status=status,
        character_type=character_type,
        **fields,
    )


def decode_personnel_by_unit(raw: Any) -> Dict[str, List[Personnel]]:
    """Decode the ``personnelByUnit`` store value. None decodes to {}."""
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise DeserializationError(
            f"'personnelByUnit' must be a JSON object, got {type(raw).__name__}"
        )
    result: Dict[str, List[Personnel]] = {}
    for unit_id, group in raw.items():
        records = _as_list(group, f"personnel group '{unit_id}'")
        result[str(unit_id)] = [
            decode_personnel(item, f"personnel '{unit_id}'[{i}]")
            for i, item in enumerate(records)
        ]
    return result


# ══════════════════════════════════════════════════════════════
# Export
# ══════════════════════════════════════════════════════════════

def build_export_dict(
    state: RosterState, export_date: Optional[datetime] = None,
) -> Dict[str, Any]:
    stamp = export_date or datetime.now(timezone.utc)
    return {
        "version": EXPORT_FORMAT_VERSION,
        "exportDate": stamp.isoformat().replace("+00:00", "Z"),
        "personnelByUnit": state.personnel_to_dict(),
        "units": state.units_to_list(),
    }


def encode_snapshot(
    state: RosterState, export_date: Optional[datetime] = None,
) -> str:
    """Serialize units + personnel into the export document (2-space JSON)."""
    return json.dumps(build_export_dict(state, export_date), indent=2, ensure_ascii=False)


# ══════════════════════════════════════════════════════════════
# Import
# ══════════════════════════════════════════════════════════════

def validate_import(data: Any) -> RosterState:
    """
    Validate a parsed export document and decode it.

    Raises ImportValidationError with a short, user-facing reason.
    """
    if not data or not isinstance(data, dict):
        raise ImportValidationError("Invalid file format")
    if not data.get("version"):
        raise ImportValidationError("Missing version information")

    raw_personnel = data.get("personnelByUnit")
    if not isinstance(raw_personnel, dict):
        raise ImportValidationError("Missing or invalid personnel data")

    raw_units = data.get("units")
    if not isinstance(raw_units, list):
        raise ImportValidationError("Missing or invalid units data")

    personnel_by_unit: Dict[str, List[Personnel]] = {}
    for unit_id, group in raw_personnel.items():
        if not isinstance(group, list):
            raise ImportValidationError(f"Invalid personnel data for unit {unit_id}")
        records: List[Personnel] = []
        for item in group:
            if not isinstance(item, dict) or not item.get("id") or not item.get("name"):
                raise ImportValidationError(
                    "Personnel record missing required fields (id, name)"
                )
            try:
                records.append(decode_personnel(item, f"personnel '{unit_id}'"))
            except DeserializationError as exc:
                raise ImportValidationError(str(exc)) from exc
        personnel_by_unit[str(unit_id)] = records

    try:
        units = decode_units(raw_units)
        validate_unit_tree(units)
    except DeserializationError as exc:
        raise ImportValidationError(f"Invalid units data: {exc}") from exc
    except UnitTreeError as exc:
        raise ImportValidationError(f"Invalid unit hierarchy: {exc.detail}") from exc

    return RosterState(units=units, personnel_by_unit=personnel_by_unit)


def decode_import(text: str) -> RosterState:
    """Parse and validate an export document."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ImportValidationError(f"Failed to parse file: {exc}") from exc
    return validate_import(data)


# ══════════════════════════════════════════════════════════════
# File I/O
# ══════════════════════════════════════════════════════════════

def export_snapshot_to_file(state: RosterState, path: pathlib.Path) -> None:
    path.write_text(encode_snapshot(state), encoding="utf-8")


def import_snapshot_from_file(path: pathlib.Path) -> RosterState:
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, IOError) as exc:
        raise ImportValidationError(f"Failed to read file {path}: {exc}") from exc
    return decode_import(text)
