"""
Mock Store - in-process key-value tree with a durable sqlite3 mirror.

Used whenever the remote backend is disabled, misconfigured, or failed
to initialise.

  - Values live in a nested dict keyed by slash-delimited segments.
  - After every write the whole tree is mirrored into a single-row
    sqlite3 table (best-effort: persistence failures are logged, never
    raised). On construction the tree is restored from that row.
  - Subscriptions fan out synchronously: the callback fires with the
    current value on subscribe, then after every write to that exact
    path. No prefix matching.

One instance per process, injected into the adapter. Tests build as
many independent instances as they like.
"""

from __future__ import annotations

import copy
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .store import KeyValueStore, Listener, Unsubscribe

logger = logging.getLogger(__name__)

_INIT_SQL = """
CREATE TABLE IF NOT EXISTS mock_store (
    id          INTEGER PRIMARY KEY CHECK (id = 1),
    document    TEXT NOT NULL,
    updated_at  TEXT NOT NULL
)
"""


def _segments(path: str) -> List[str]:
    return [p for p in path.split("/") if p]


class MockStore(KeyValueStore):
    """
    Local fallback store.

    ``db_path`` of None keeps everything in memory only.
    """

    def __init__(self, db_path: Optional[str | Path] = None) -> None:
        self._tree: Dict[str, Any] = {}
        self._listeners: Dict[str, List[Listener]] = {}
        self._conn: Optional[sqlite3.Connection] = None
        if db_path is not None:
            self._open(str(db_path))
            self._restore()

    # ------------------------------------------------------------------
    # KeyValueStore
    # ------------------------------------------------------------------

    async def read(self, path: str) -> Any:
        return self.get(path)

    async def write(self, path: str, value: Any) -> None:
        self.set(path, value)

    async def subscribe(self, path: str, callback: Listener) -> Unsubscribe:
        key = "/".join(_segments(path))
        self._listeners.setdefault(key, []).append(callback)
        callback(self.get(path))

        def _unsubscribe() -> None:
            listeners = self._listeners.get(key, [])
            if callback in listeners:
                listeners.remove(callback)

        return _unsubscribe

    async def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ------------------------------------------------------------------
    # Synchronous core
    # ------------------------------------------------------------------

    def get(self, path: str) -> Any:
        cur: Any = self._tree
        for part in _segments(path):
            if not isinstance(cur, dict):
                return None
            cur = cur.get(part)
            if cur is None:
                return None
        return copy.deepcopy(cur)

    def set(self, path: str, value: Any) -> None:
        parts = _segments(path)
        if not parts:
            return
        cur = self._tree
        for part in parts[:-1]:
            if not isinstance(cur.get(part), dict):
                cur[part] = {}
            cur = cur[part]
        cur[parts[-1]] = copy.deepcopy(value)
        self._persist()
        self._notify("/".join(parts))

    def clear(self) -> None:
        """Drop every value, in memory and in the mirror."""
        self._tree.clear()
        if self._conn is None:
            return
        try:
            with self._conn:
                self._conn.execute("DELETE FROM mock_store")
        except sqlite3.Error as exc:
            logger.warning("mock store: failed to clear local mirror: %s", exc)

    @property
    def listener_count(self) -> int:
        return sum(len(v) for v in self._listeners.values())

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _notify(self, key: str) -> None:
        value = self.get(key)
        for callback in list(self._listeners.get(key, [])):
            try:
                callback(value)
            except Exception:
                logger.exception("mock store: listener for %r raised", key)

    def _open(self, db_path: str) -> None:
        try:
            self._conn = sqlite3.connect(db_path)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute(_INIT_SQL)
        except sqlite3.Error as exc:
            logger.warning("mock store: local mirror unavailable (%s): %s", db_path, exc)
            self._conn = None

    def _restore(self) -> None:
        if self._conn is None:
            return
        try:
            row = self._conn.execute(
                "SELECT document FROM mock_store WHERE id = 1"
            ).fetchone()
            if row is not None:
                restored = json.loads(row[0])
                if isinstance(restored, dict):
                    self._tree.update(restored)
        except (sqlite3.Error, json.JSONDecodeError) as exc:
            logger.warning("mock store: failed to restore local mirror: %s", exc)

    def _persist(self) -> None:
        if self._conn is None:
            return
        now = datetime.now(timezone.utc).isoformat()
        try:
            document = json.dumps(self._tree, ensure_ascii=False)
            with self._conn:
                self._conn.execute(
                    """
                    INSERT INTO mock_store (id, document, updated_at)
                    VALUES (1, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        document = excluded.document,
                        updated_at = excluded.updated_at
                    """,
                    (document, now),
                )
        except (sqlite3.Error, TypeError, ValueError) as exc:
            logger.warning("mock store: failed to mirror write: %s", exc)
