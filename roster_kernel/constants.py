"""
Roster Kernel - Default Values

Seed data and magic numbers live here as module-level defaults.
"""

from .domain_types import UNASSIGNED_UNIT_ID, UNASSIGNED_UNIT_NAME, Unit

# --- Export format ---
EXPORT_FORMAT_VERSION: str = "1.0"

# --- Rank categories (inclusive grade bands) ---
JUNIOR_ENLISTED_GRADES = (1, 3)
NCO_GRADES = (4, 8)
OFFICER_GRADES = (9, 16)

# --- Import auto-fill ---
DEFAULT_CHARACTER_TYPE: str = "pc"
DEFAULT_STATUS: str = "available"

# --- Seeded command tree ---
DEFAULT_UNITS = (
    Unit(id="high-command", name="Dreadmarch Military High Command"),
    Unit(id="4th-sof", name="4th Special Operations Brigade"),
    Unit(id="17th-assault", name="17th Assault Group", parent_id="4th-sof"),
    Unit(id="vornskr-company", name="Vornskr Company", parent_id="17th-assault"),
    Unit(
        id="imperial-reclamation",
        name="Imperial Reclamation Service Detachment",
        parent_id="vornskr-company",
    ),
    Unit(
        id="imperial-conquest",
        name="Imperial Conquest Consolidation Corps",
        parent_id="vornskr-company",
    ),
    Unit(id="iss-beaumont", name="I.S.S. Beaumont Hill", parent_id="17th-assault"),
    Unit(id="dagger-squadron", name="Dagger Squadron", parent_id="17th-assault"),
    Unit(id="warrior-cadre", name="Warrior Cadre", parent_id="17th-assault"),
    Unit(id="imperial-auxiliary", name="Imperial Auxiliary", parent_id="17th-assault"),
    Unit(id=UNASSIGNED_UNIT_ID, name=UNASSIGNED_UNIT_NAME),
)
