"""
Remote Store - Supabase (PostgreSQL) backed key-value store.

Same contract as MockStore, shared across every client of a project.

  - One row per (project_id, path) in ``roster_kv``; the value is JSONB
    and ``revision`` increases on every write.
  - A write upserts the row, then ``pg_notify``s the ``roster_kv``
    channel with {project_id, path, revision}.
  - Each store keeps one dedicated LISTEN connection, polled from an
    asyncio task. A notification for a subscribed path triggers a read
    and delivery to that path's callbacks. Writers hear their own
    writes through the same round trip; nothing is echoed locally.
  - Deliveries per callback are in revision order; stale revisions are
    skipped.

pg8000 is blocking, so every driver call runs in ``asyncio.to_thread``.
All other operations use a connection per call.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import pg8000.native
from pg8000.exceptions import DatabaseError, InterfaceError

from .config import StoreConfig
from .store import BackendInitError, KeyValueStore, Listener, Unsubscribe, WriteError

logger = logging.getLogger(__name__)

NOTIFY_CHANNEL = "roster_kv"

_INIT_SQL = """
CREATE TABLE IF NOT EXISTS roster_kv (
    project_id   TEXT NOT NULL,
    path         TEXT NOT NULL,
    value        JSONB,
    revision     BIGINT NOT NULL DEFAULT 1,
    updated_at   TIMESTAMPTZ DEFAULT NOW(),
    PRIMARY KEY (project_id, path)
);

CREATE INDEX IF NOT EXISTS idx_roster_kv_project
    ON roster_kv(project_id);
"""

# Errors that mean "the database could not be reached or refused the call".
_DRIVER_ERRORS = (DatabaseError, InterfaceError, OSError)


@dataclass
class _Subscription:
    path: str
    callback: Listener
    last_revision: int = -1
    active: bool = True


def parse_database_url(url: str, fallback_password: str = "") -> Dict[str, Any]:
    """
    Split a postgres URL into pg8000 connection kwargs.

    Manual parser: urlparse chokes on special chars ([], @) in passwords.
    An empty password falls back to ``fallback_password`` (the project
    API key on Supabase).
    """
    rest = url.split("://", 1)[1] if "://" in url else url
    at_idx = rest.rfind("@")
    credentials = rest[:at_idx] if at_idx >= 0 else ""
    host_part = rest[at_idx + 1:]
    colon_idx = credentials.find(":")
    if colon_idx >= 0:
        user = credentials[:colon_idx]
        password = credentials[colon_idx + 1:]
    else:
        user, password = credentials, ""
    host_port, _, database = host_part.partition("/")
    if ":" in host_port:
        host, port_str = host_port.rsplit(":", 1)
    else:
        host, port_str = host_port, "5432"
    return {
        "user": user or "postgres",
        "password": password or fallback_password,
        "host": host,
        "port": int(port_str),
        "database": database or "postgres",
    }


class RemoteStore(KeyValueStore):
    """
    PostgreSQL-backed synced store.

    Nothing touches the network until ``connect()``.
    """

    def __init__(self, config: StoreConfig) -> None:
        self._config = config
        self._project_id = config.project_id
        self._poll_interval = config.poll_interval
        self._subscriptions: Dict[str, List[_Subscription]] = {}
        self._listen_conn = None
        self._listen_task: Optional[asyncio.Task] = None
        self._listen_setup: Optional[asyncio.Task] = None
        self._pending: set = set()

    def _get_conn(self):
        kwargs = parse_database_url(self._config.database_url, self._config.api_key)
        return pg8000.native.Connection(ssl_context=True, **kwargs)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Verify connectivity and create the table. Raises BackendInitError."""
        try:
            await asyncio.to_thread(self._ensure_schema)
        except Exception as exc:
            raise BackendInitError(f"Remote store setup failed: {exc}") from exc

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            for stmt in _INIT_SQL.split(";")[:-1]:
                if stmt.strip():
                    conn.run(stmt)
        finally:
            conn.close()

    async def close(self) -> None:
        if self._listen_setup is not None:
            try:
                await self._listen_setup
            except _DRIVER_ERRORS as exc:
                logger.warning("remote store: LISTEN setup failed during close: %s", exc)
        if self._listen_task is not None:
            self._listen_task.cancel()
            try:
                await self._listen_task
            except asyncio.CancelledError:
                pass
            self._listen_task = None
        for task in list(self._pending):
            task.cancel()
        if self._listen_conn is not None:
            await asyncio.to_thread(self._listen_conn.close)
            self._listen_conn = None

    # ------------------------------------------------------------------
    # Read / write
    # ------------------------------------------------------------------

    async def read(self, path: str) -> Any:
        value, _ = await asyncio.to_thread(self._read_row, path)
        return value

    def _read_row(self, path: str) -> Tuple[Any, int]:
        conn = self._get_conn()
        try:
            rows = conn.run(
                """
                SELECT value::text, revision
                FROM roster_kv
                WHERE project_id = :pid AND path = :path
                """,
                pid=self._project_id,
                path=path,
            )
        finally:
            conn.close()
        if not rows or rows[0][0] is None:
            return None, rows[0][1] if rows else 0
        return json.loads(rows[0][0]), rows[0][1]

    async def write(self, path: str, value: Any) -> None:
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise WriteError(path, f"value is not JSON serialisable: {exc}") from exc
        try:
            await asyncio.to_thread(self._write_row, path, payload)
        except _DRIVER_ERRORS as exc:
            logger.error("remote store: write to %r failed: %s", path, exc)
            raise WriteError(path, str(exc)) from exc

    def _write_row(self, path: str, payload: str) -> int:
        conn = self._get_conn()
        try:
            rows = conn.run(
                """
                INSERT INTO roster_kv (project_id, path, value, revision, updated_at)
                VALUES (:pid, :path, CAST(:value AS JSONB), 1, NOW())
                ON CONFLICT (project_id, path) DO UPDATE SET
                    value = EXCLUDED.value,
                    revision = roster_kv.revision + 1,
                    updated_at = NOW()
                RETURNING revision
                """,
                pid=self._project_id,
                path=path,
                value=payload,
            )
            revision = rows[0][0]
            conn.run(
                "SELECT pg_notify(:channel, :message)",
                channel=NOTIFY_CHANNEL,
                message=json.dumps({
                    "project_id": self._project_id,
                    "path": path,
                    "revision": revision,
                }),
            )
            return revision
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def subscribe(self, path: str, callback: Listener) -> Unsubscribe:
        """
        Register ``callback`` for ``path``. The current value is delivered
        asynchronously, like every later change.
        """
        sub = _Subscription(path=path, callback=callback)
        self._subscriptions.setdefault(path, []).append(sub)
        await self._ensure_listener()

        task = asyncio.get_running_loop().create_task(self._deliver_initial(sub))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

        def _unsubscribe() -> None:
            sub.active = False
            subs = self._subscriptions.get(path, [])
            if sub in subs:
                subs.remove(sub)

        return _unsubscribe

    async def _ensure_listener(self) -> None:
        """Start the LISTEN loop once; concurrent subscribers share one setup."""
        if self._listen_task is not None:
            return
        if self._listen_setup is None:
            self._listen_setup = asyncio.get_running_loop().create_task(self._start_listener())
        await asyncio.shield(self._listen_setup)

    async def _start_listener(self) -> None:
        try:
            self._listen_conn = await asyncio.to_thread(self._open_listen_conn)
            self._listen_task = asyncio.get_running_loop().create_task(self._listen_loop())
        finally:
            self._listen_setup = None

    def _open_listen_conn(self):
        conn = self._get_conn()
        conn.run(f"LISTEN {NOTIFY_CHANNEL}")
        return conn

    async def _listen_loop(self) -> None:
        """Poll the LISTEN connection and dispatch notifications in arrival order."""
        logger.info("remote store: LISTEN subscriber active on %r", NOTIFY_CHANNEL)
        while True:
            await asyncio.sleep(self._poll_interval)
            try:
                notes = await asyncio.to_thread(self._drain_notifications)
            except _DRIVER_ERRORS as exc:
                logger.error("remote store: LISTEN poll failed, reconnecting: %s", exc)
                try:
                    self._listen_conn = await asyncio.to_thread(self._open_listen_conn)
                except _DRIVER_ERRORS as reconnect_exc:
                    logger.error("remote store: LISTEN reconnect failed: %s", reconnect_exc)
                continue
            for payload in notes:
                await self._dispatch(payload)

    def _drain_notifications(self) -> List[str]:
        # pg8000 queues notifications as (backend_pid, channel, payload)
        # while it processes any round trip.
        self._listen_conn.run("SELECT 1")
        notes: List[str] = []
        while self._listen_conn.notifications:
            _, channel, payload = self._listen_conn.notifications.popleft()
            if channel == NOTIFY_CHANNEL:
                notes.append(payload)
        return notes

    async def _dispatch(self, payload: str) -> None:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("remote store: invalid NOTIFY payload: %s", payload[:200])
            return
        if data.get("project_id") != self._project_id:
            return
        path = data.get("path")
        subs = list(self._subscriptions.get(path, []))
        if not subs:
            return
        try:
            value, revision = await asyncio.to_thread(self._read_row, path)
        except _DRIVER_ERRORS as exc:
            logger.error("remote store: failed to read %r after notify: %s", path, exc)
            return
        for sub in subs:
            self._deliver(sub, value, revision)

    async def _deliver_initial(self, sub: _Subscription) -> None:
        try:
            value, revision = await asyncio.to_thread(self._read_row, sub.path)
        except _DRIVER_ERRORS as exc:
            logger.error("remote store: initial read of %r failed: %s", sub.path, exc)
            return
        self._deliver(sub, value, revision)

    @staticmethod
    def _deliver(sub: _Subscription, value: Any, revision: int) -> None:
        if not sub.active or revision <= sub.last_revision:
            return
        sub.last_revision = revision
        try:
            sub.callback(value)
        except Exception:
            logger.exception("remote store: listener for %r raised", sub.path)
