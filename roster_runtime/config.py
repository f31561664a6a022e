"""
Store Configuration

Read from environment variables, optionally seeded from a ``.env`` file.

The remote backend is used only when ROSTER_REMOTE_ENABLED is "true"
AND every required connection parameter is present. Anything less is
treated as "disabled" and the local mock store is used.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

from dotenv import load_dotenv

REQUIRED_ENV = (
    "ROSTER_API_KEY",
    "ROSTER_DATABASE_URL",
    "ROSTER_PROJECT_ID",
)

_DEFAULT_LOCAL_DB = "roster_local.db"
_DEFAULT_POLL_INTERVAL = 0.5


@dataclass(frozen=True)
class StoreConfig:
    """Enablement flag plus connection parameters for the remote store."""

    enabled: bool = False
    api_key: str = ""
    database_url: str = ""
    project_id: str = ""
    auth_domain: str = ""
    storage_bucket: str = ""
    messaging_sender_id: str = ""
    app_id: str = ""
    poll_interval: float = _DEFAULT_POLL_INTERVAL
    local_db_path: Optional[str] = _DEFAULT_LOCAL_DB

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.database_url and self.project_id)

    @property
    def remote_enabled(self) -> bool:
        return self.enabled and self.is_configured

    def missing(self) -> List[str]:
        """Names of required variables that are empty."""
        values = {
            "ROSTER_API_KEY": self.api_key,
            "ROSTER_DATABASE_URL": self.database_url,
            "ROSTER_PROJECT_ID": self.project_id,
        }
        return [name for name in REQUIRED_ENV if not values[name]]

    def describe(self) -> Dict[str, object]:
        """Summary for diagnostics. Secrets are masked."""
        return {
            "enabled": self.enabled,
            "configured": self.is_configured,
            "api_key": "***masked***" if self.api_key else "missing",
            "database_url": "***masked***" if self.database_url else "missing",
            "project_id": self.project_id or "missing",
            "auth_domain": self.auth_domain or "missing",
            "storage_bucket": self.storage_bucket or "missing",
            "messaging_sender_id": "***masked***" if self.messaging_sender_id else "missing",
            "app_id": "***masked***" if self.app_id else "missing",
        }

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        env_file: Optional[str] = None,
    ) -> "StoreConfig":
        """
        Build a config from ``environ`` (default: os.environ).

        If ``env_file`` exists it is loaded into os.environ first without
        overriding variables that are already set.
        """
        if env_file and os.path.exists(env_file):
            load_dotenv(env_file)
        env = os.environ if environ is None else environ

        try:
            poll_interval = float(env.get("ROSTER_POLL_INTERVAL", _DEFAULT_POLL_INTERVAL))
        except ValueError:
            poll_interval = _DEFAULT_POLL_INTERVAL

        local_db = env.get("ROSTER_LOCAL_DB", _DEFAULT_LOCAL_DB)
        return cls(
            enabled=env.get("ROSTER_REMOTE_ENABLED", "").strip().lower() == "true",
            api_key=env.get("ROSTER_API_KEY", ""),
            database_url=env.get("ROSTER_DATABASE_URL", ""),
            project_id=env.get("ROSTER_PROJECT_ID", ""),
            auth_domain=env.get("ROSTER_AUTH_DOMAIN", ""),
            storage_bucket=env.get("ROSTER_STORAGE_BUCKET", ""),
            messaging_sender_id=env.get("ROSTER_MESSAGING_SENDER_ID", ""),
            app_id=env.get("ROSTER_APP_ID", ""),
            poll_interval=poll_interval,
            local_db_path=local_db or None,
        )
