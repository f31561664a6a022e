"""
Roster Kernel
Pure, in-memory unit hierarchy and personnel roster logic.
No storage, no I/O beyond explicit snapshot file helpers.
"""

from .domain_types import (
    UNASSIGNED_UNIT_ID, UNASSIGNED_UNIT_NAME, CharacterType, Personnel,
    PersonnelStatus, RankCategory, RosterState, Unit, derive_unit_id,
)
from .constants import DEFAULT_UNITS, EXPORT_FORMAT_VERSION
from .invariants import (
    CircularReferenceError,
    DuplicateIdError,
    DuplicateNameError,
    InvalidUnitNameError,
    ProtectedUnitError,
    UnitTreeError,
    UnknownUnitError,
    validate_unit_tree,
)
from .unit_tree import UnitTree
from .roster_index import InvalidPersonnelError, RosterIndex, personnel_from_fields
from .filters import FilterCriteria, filter_personnel, rank_category, sort_by_rank
from .hashing import hash_passkey, is_hashed, verify_passkey
from .snapshot import (
    SnapshotError,
    DeserializationError,
    ImportValidationError,
    decode_units,
    decode_personnel_by_unit,
    encode_snapshot,
    decode_import,
    validate_import,
    export_snapshot_to_file,
    import_snapshot_from_file,
)

__all__ = [
    "UNASSIGNED_UNIT_ID",
    "UNASSIGNED_UNIT_NAME",
    "CharacterType",
    "Personnel",
    "PersonnelStatus",
    "RankCategory",
    "RosterState",
    "Unit",
    "derive_unit_id",
    "DEFAULT_UNITS",
    "EXPORT_FORMAT_VERSION",
    "CircularReferenceError",
    "DuplicateIdError",
    "DuplicateNameError",
    "InvalidUnitNameError",
    "ProtectedUnitError",
    "UnitTreeError",
    "UnknownUnitError",
    "validate_unit_tree",
    "UnitTree",
    "InvalidPersonnelError",
    "RosterIndex",
    "personnel_from_fields",
    "FilterCriteria",
    "filter_personnel",
    "rank_category",
    "sort_by_rank",
    "hash_passkey",
    "is_hashed",
    "verify_passkey",
    "SnapshotError",
    "DeserializationError",
    "ImportValidationError",
    "decode_units",
    "decode_personnel_by_unit",
    "encode_snapshot",
    "decode_import",
    "validate_import",
    "export_snapshot_to_file",
    "import_snapshot_from_file",
]
