"""
Roster Runtime - Storage and Orchestration Layer

Key-value backends (local mock, remote PostgreSQL), the single-flight
store adapter, and the session that drives the Roster Kernel.
"""

from .store import BackendInitError, KeyValueStore, WriteError
from .paths import StorePath
from .config import StoreConfig
from .mock_store import MockStore
from .remote_store import RemoteStore
from .adapter import StoreAdapter
from .credentials import CredentialGate, IncorrectPasskeyError, PasskeyError
from .session import RosterSession
from .observability import RosterMetrics, collect_metrics

__all__ = [
    "BackendInitError",
    "KeyValueStore",
    "WriteError",
    "StorePath",
    "StoreConfig",
    "MockStore",
    "RemoteStore",
    "StoreAdapter",
    "CredentialGate",
    "IncorrectPasskeyError",
    "PasskeyError",
    "RosterSession",
    "RosterMetrics",
    "collect_metrics",
]
