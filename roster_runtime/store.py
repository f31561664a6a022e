"""
Key-Value Store Contract

Path-addressed read / write / subscribe, shared by the local mock
backend and the remote synced backend.

Every operation is a coroutine and may suspend. Callbacks are plain
callables invoked on the event loop with the path's current value
(``None`` when nothing is stored). ``subscribe`` returns a callable
that removes the registration.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable

Listener = Callable[[Any], None]
Unsubscribe = Callable[[], None]


class BackendInitError(Exception):
    """Remote backend could not be set up. Always absorbed by the adapter."""


class WriteError(Exception):
    """The backend rejected a write. Propagated to the caller, never retried."""

    def __init__(self, path: str, detail: str) -> None:
        self.path = path
        self.detail = detail
        super().__init__(f"Write to {path!r} failed: {detail}")


class KeyValueStore(ABC):
    """Contract implemented by MockStore and RemoteStore."""

    async def connect(self) -> None:
        """Prepare the backend. Stores that need no setup inherit this no-op."""

    @abstractmethod
    async def read(self, path: str) -> Any:
        ...

    @abstractmethod
    async def write(self, path: str, value: Any) -> None:
        ...

    @abstractmethod
    async def subscribe(self, path: str, callback: Listener) -> Unsubscribe:
        ...

    async def close(self) -> None:
        """Release backend resources."""
