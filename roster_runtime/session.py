"""
Roster Session - orchestrates the kernel and the store adapter.

Write-then-observe order:
  1. compute the new state on ``state.copy()`` via UnitTree / RosterIndex
     (may raise UnitTreeError / InvalidPersonnelError; nothing written)
  2. write each changed path through the adapter (WriteError propagates)
  3. local state changes only when the subscription push for a path
     arrives

Local state is never updated optimistically, so a failed write leaves
nothing to roll back. With the mock backend pushes arrive during the
write; with the remote backend they arrive after the round trip.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from roster_kernel.constants import DEFAULT_UNITS
from roster_kernel.domain_types import UNASSIGNED_UNIT_ID, Personnel, RosterState, Unit
from roster_kernel.filters import FilterCriteria, filter_personnel, sort_by_rank
from roster_kernel.roster_index import RosterIndex, personnel_from_fields
from roster_kernel.snapshot import (
    DeserializationError,
    decode_import,
    decode_personnel_by_unit,
    decode_units,
    encode_snapshot,
)
from roster_kernel.unit_tree import UNSET, UnitTree

from .adapter import StoreAdapter
from .credentials import CredentialGate
from .paths import StorePath
from .store import Unsubscribe

logger = logging.getLogger(__name__)

Observer = Callable[["RosterSession"], None]

_SYNCED_PATHS = (StorePath.UNITS, StorePath.PERSONNEL_BY_UNIT, StorePath.CURRENT_UNIT_ID)


def _default_units() -> List[Unit]:
    return copy.deepcopy(list(DEFAULT_UNITS))


class RosterSession:
    """
    One client's view of the shared roster.

    ``start()`` before use, ``stop()`` on teardown.
    """

    def __init__(self, adapter: StoreAdapter) -> None:
        self._adapter = adapter
        self._state = RosterState(
            units=_default_units(),
            current_unit_id=DEFAULT_UNITS[0].id,
        )
        self._unsubscribes: List[Unsubscribe] = []
        self._observers: List[Observer] = []
        self._loaded: Set[StorePath] = set()
        self.credentials = CredentialGate(adapter)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._unsubscribes:
            return
        handlers = {
            StorePath.UNITS: self._on_units,
            StorePath.PERSONNEL_BY_UNIT: self._on_personnel,
            StorePath.CURRENT_UNIT_ID: self._on_current_unit,
        }
        for path in _SYNCED_PATHS:
            self._unsubscribes.append(await self._adapter.subscribe(path, handlers[path]))

    async def stop(self) -> None:
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes.clear()

    def on_change(self, observer: Observer) -> Callable[[], None]:
        """Call ``observer(session)`` after every applied push."""
        self._observers.append(observer)

        def _remove() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _remove

    # ------------------------------------------------------------------
    # Subscription pushes
    # ------------------------------------------------------------------

    def _on_units(self, raw: Any) -> None:
        try:
            units = decode_units(raw)
        except DeserializationError as exc:
            logger.warning("ignoring malformed units push: %s", exc)
            return
        self._state.units = units or _default_units()
        self._applied(StorePath.UNITS)

    def _on_personnel(self, raw: Any) -> None:
        try:
            personnel = decode_personnel_by_unit(raw)
        except DeserializationError as exc:
            logger.warning("ignoring malformed personnel push: %s", exc)
            return
        self._state.personnel_by_unit = personnel
        self._applied(StorePath.PERSONNEL_BY_UNIT)

    def _on_current_unit(self, raw: Any) -> None:
        if raw is not None and not isinstance(raw, str):
            logger.warning("ignoring non-string currentUnitId push: %r", raw)
            return
        self._state.current_unit_id = raw or DEFAULT_UNITS[0].id
        self._applied(StorePath.CURRENT_UNIT_ID)

    def _applied(self, path: StorePath) -> None:
        self._loaded.add(path)
        for observer in list(self._observers):
            try:
                observer(self)
            except Exception:
                logger.exception("roster observer raised")

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def state(self) -> RosterState:
        return self._state

    @property
    def ready(self) -> bool:
        """True once every synced path has been delivered at least once."""
        return self._loaded.issuperset(_SYNCED_PATHS)

    @property
    def adapter(self) -> StoreAdapter:
        return self._adapter

    @property
    def mode(self) -> str:
        return self._adapter.mode

    @property
    def tree(self) -> UnitTree:
        return UnitTree(self._state)

    @property
    def index(self) -> RosterIndex:
        return RosterIndex(self._state)

    def roster_view(
        self,
        unit_id: str,
        criteria: Optional[FilterCriteria] = None,
        rank_sort: bool = True,
    ) -> List[Personnel]:
        """Subtree personnel of ``unit_id``, filtered, highest rank first."""
        people = self.index.personnel_in_subtree(unit_id)
        people = filter_personnel(people, criteria or FilterCriteria(), self._state.units)
        return sort_by_rank(people) if rank_sort else people

    def get_metrics(self):
        from .observability import collect_metrics
        return collect_metrics(self)

    # ------------------------------------------------------------------
    # Unit intents
    # ------------------------------------------------------------------

    async def create_unit(
        self,
        name: str,
        parent_id: Optional[str] = None,
        sort_order: Optional[int] = None,
    ) -> Unit:
        draft = self._state.copy()
        unit = UnitTree(draft).create(name, parent_id=parent_id, sort_order=sort_order)
        await self._commit(draft, StorePath.UNITS)
        return unit

    async def update_unit(
        self,
        unit_id: str,
        name: Optional[str] = None,
        parent_id=UNSET,
        sort_order=UNSET,
    ) -> Optional[Unit]:
        """Rename / reparent / reorder. Returns None for an unknown unit."""
        draft = self._state.copy()
        tree = UnitTree(draft)
        if tree.get(unit_id) is None:
            logger.warning("update of unknown unit %r ignored", unit_id)
            return None
        rewritten = tree.update(unit_id, name=name, parent_id=parent_id, sort_order=sort_order)
        if rewritten:
            await self._commit(draft, StorePath.PERSONNEL_BY_UNIT, StorePath.UNITS)
        else:
            await self._commit(draft, StorePath.UNITS)
        return tree.get(unit_id)

    async def delete_unit(
        self, unit_id: str, reassign_to: str = UNASSIGNED_UNIT_ID,
    ) -> Optional[Unit]:
        draft = self._state.copy()
        removed = UnitTree(draft).delete(unit_id, reassign_to=reassign_to)
        if removed is None:
            return None
        paths = [StorePath.PERSONNEL_BY_UNIT, StorePath.UNITS]
        if draft.current_unit_id != self._state.current_unit_id:
            paths.append(StorePath.CURRENT_UNIT_ID)
        await self._commit(draft, *paths)
        return removed

    async def set_current_unit(self, unit_id: str) -> bool:
        if self.tree.get(unit_id) is None:
            logger.warning("selection of unknown unit %r ignored", unit_id)
            return False
        await self._adapter.write(StorePath.CURRENT_UNIT_ID, unit_id)
        return True

    # ------------------------------------------------------------------
    # Personnel intents
    # ------------------------------------------------------------------

    async def add_personnel(
        self, unit_id: str, fields: Dict[str, Any],
    ) -> Optional[Personnel]:
        person = personnel_from_fields(fields)
        draft = self._state.copy()
        added = RosterIndex(draft).add(unit_id, person)
        if added is None:
            return None
        await self._commit(draft, StorePath.PERSONNEL_BY_UNIT)
        return added

    async def update_personnel(
        self, personnel_id: str, patch: Dict[str, Any],
    ) -> Optional[Personnel]:
        draft = self._state.copy()
        updated = RosterIndex(draft).update_fields(personnel_id, patch)
        if updated is None:
            return None
        await self._commit(draft, StorePath.PERSONNEL_BY_UNIT)
        return updated

    async def reassign_personnel(self, personnel_id: str, target_unit_id: str) -> bool:
        draft = self._state.copy()
        if not RosterIndex(draft).reassign(personnel_id, target_unit_id):
            return False
        await self._commit(draft, StorePath.PERSONNEL_BY_UNIT)
        return True

    async def delete_personnel(self, personnel_id: str) -> Optional[Personnel]:
        draft = self._state.copy()
        removed = RosterIndex(draft).remove(personnel_id)
        if removed is None:
            return None
        await self._commit(draft, StorePath.PERSONNEL_BY_UNIT)
        return removed

    # ------------------------------------------------------------------
    # Import / export / defaults
    # ------------------------------------------------------------------

    def export_json(self) -> str:
        return encode_snapshot(self._state)

    async def import_json(self, text: str) -> RosterState:
        """
        Replace units and personnel wholesale. Raises ImportValidationError
        before anything is written.
        """
        imported = decode_import(text)
        paths = [StorePath.UNITS, StorePath.PERSONNEL_BY_UNIT]
        imported.current_unit_id = self._state.current_unit_id
        if imported.units and UnitTree(imported).get(imported.current_unit_id) is None:
            imported.current_unit_id = UnitTree(imported).ordered_list()[0].id
            paths.append(StorePath.CURRENT_UNIT_ID)
        await self._commit(imported, *paths)
        logger.info(
            "imported %d units and %d personnel",
            len(imported.units),
            sum(len(g) for g in imported.personnel_by_unit.values()),
        )
        return imported

    async def initialize_defaults(self) -> bool:
        """Seed the default command tree into an empty store. True if seeded."""
        if await self._adapter.read(StorePath.UNITS) is not None:
            return False
        seeded = RosterState(
            units=_default_units(),
            current_unit_id=DEFAULT_UNITS[0].id,
        )
        await self._commit(
            seeded,
            StorePath.UNITS,
            StorePath.CURRENT_UNIT_ID,
            StorePath.PERSONNEL_BY_UNIT,
        )
        logger.info("seeded %d default units", len(seeded.units))
        return True

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _commit(self, draft: RosterState, *paths: StorePath) -> None:
        for path in paths:
            if path is StorePath.UNITS:
                value: Any = draft.units_to_list()
            elif path is StorePath.PERSONNEL_BY_UNIT:
                value = draft.personnel_to_dict()
            else:
                value = draft.current_unit_id
            await self._adapter.write(path, value)
