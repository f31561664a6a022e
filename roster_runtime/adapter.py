"""
Store Adapter - lazy, single-flight backend selection.

Callers address logical collections (StorePath); the adapter decides
which KeyValueStore serves them.

  - Remote disabled or incompletely configured: the mock, always.
  - Remote enabled: the first operation starts one initialization task.
    Every operation arriving while it runs awaits that same task, so
    exactly one attempt is in flight and nobody sees a half-built
    handle.
  - Success caches the remote handle for the life of the adapter.
  - Failure is logged (masked config, missing variables) and latches
    the adapter onto the mock for the session. The in-flight task is
    cleared; ``reconnect()`` allows one new attempt on the next
    operation. Callers never see BackendInitError.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from .config import StoreConfig
from .mock_store import MockStore
from .paths import StorePath
from .remote_store import RemoteStore
from .store import KeyValueStore, Listener, Unsubscribe

logger = logging.getLogger(__name__)

RemoteFactory = Callable[[StoreConfig], KeyValueStore]


class StoreAdapter:
    """Routes path operations to the remote store or the injected mock."""

    def __init__(
        self,
        config: StoreConfig,
        mock: MockStore,
        remote_factory: Optional[RemoteFactory] = None,
    ) -> None:
        self._config = config
        self._mock = mock
        self._remote_factory: RemoteFactory = remote_factory or RemoteStore
        self._impl: Optional[KeyValueStore] = None
        self._init_task: Optional[asyncio.Task] = None
        self._init_failed = False
        self.init_attempts = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def mode(self) -> str:
        """"remote" once the remote handle is live, else "local"."""
        return "remote" if self._impl is not None else "local"

    @property
    def mock(self) -> MockStore:
        return self._mock

    @property
    def initializing(self) -> bool:
        return self._init_task is not None

    def reconnect(self) -> None:
        """Forget a previous init failure so the next operation tries again."""
        self._init_failed = False

    # ------------------------------------------------------------------
    # Backend selection
    # ------------------------------------------------------------------

    async def backend(self) -> KeyValueStore:
        """The store that serves the next operation. Never raises."""
        if not self._config.remote_enabled:
            return self._mock
        if self._impl is not None:
            return self._impl
        if self._init_failed:
            return self._mock
        if self._init_task is None:
            self._init_task = asyncio.get_running_loop().create_task(self._initialize())
        # shield: a cancelled caller must not cancel the shared attempt
        return await asyncio.shield(self._init_task)

    async def _initialize(self) -> KeyValueStore:
        self.init_attempts += 1
        try:
            store = self._remote_factory(self._config)
            await store.connect()
        except Exception as exc:
            logger.error(
                "Remote store initialization failed, using local mock store: %s",
                exc,
            )
            logger.error("Store config: %s", self._config.describe())
            missing = self._config.missing()
            if missing:
                logger.error("Missing environment variables: %s", ", ".join(missing))
            self._init_failed = True
            return self._mock
        else:
            self._impl = store
            logger.info("Remote store initialized for project %r", self._config.project_id)
            return store
        finally:
            self._init_task = None

    # ------------------------------------------------------------------
    # Path operations
    # ------------------------------------------------------------------

    async def read(self, path: StorePath) -> Any:
        store = await self.backend()
        return await store.read(path.key)

    async def write(self, path: StorePath, value: Any) -> None:
        """Raises WriteError when the backend rejects the write."""
        store = await self.backend()
        await store.write(path.key, value)

    async def subscribe(self, path: StorePath, callback: Listener) -> Unsubscribe:
        store = await self.backend()
        return await store.subscribe(path.key, callback)

    async def close(self) -> None:
        if self._init_task is not None:
            await asyncio.shield(self._init_task)
        if self._impl is not None:
            await self._impl.close()
            self._impl = None
        await self._mock.close()
