"""
Credential Gate - the single shared administrative passkey.

The passkey lives at ``gmPasskey`` as a SHA-256 hex digest. Values
written before hashing existed are plaintext; they still verify, and a
successful verification rewrites them as a digest.
"""

from __future__ import annotations

import logging
from typing import Optional

from roster_kernel.hashing import hash_passkey, is_hashed, verify_passkey

from .adapter import StoreAdapter
from .paths import StorePath
from .store import WriteError

logger = logging.getLogger(__name__)


class PasskeyError(Exception):
    """A passkey could not be set. The message is user-facing."""


class IncorrectPasskeyError(PasskeyError):
    def __init__(self) -> None:
        super().__init__("Incorrect passkey")


class CredentialGate:
    def __init__(self, adapter: StoreAdapter) -> None:
        self._adapter = adapter

    async def _stored(self) -> str:
        value = await self._adapter.read(StorePath.GM_PASSKEY)
        if value is None:
            return ""
        if not isinstance(value, str):
            logger.warning("ignoring non-string passkey value of type %s", type(value).__name__)
            return ""
        return value

    async def has_passkey(self) -> bool:
        return bool(await self._stored())

    async def set_passkey(
        self, passkey: str, confirm: str, current: Optional[str] = None,
    ) -> None:
        """
        First-time setup, or a change when ``current`` verifies.

        Raises PasskeyError for an empty or unconfirmed passkey and
        IncorrectPasskeyError when a passkey exists and ``current`` is wrong.
        """
        stored = await self._stored()
        if stored and not verify_passkey(current or "", stored):
            raise IncorrectPasskeyError()
        if not passkey.strip():
            raise PasskeyError("Passkey cannot be empty")
        if passkey != confirm:
            raise PasskeyError("Passkeys do not match")
        await self._adapter.write(StorePath.GM_PASSKEY, hash_passkey(passkey))

    async def verify_passkey(self, candidate: str) -> bool:
        stored = await self._stored()
        if not verify_passkey(candidate, stored):
            return False
        if not is_hashed(stored):
            try:
                await self._adapter.write(StorePath.GM_PASSKEY, hash_passkey(candidate))
            except WriteError as exc:
                logger.warning("legacy passkey migration failed, will retry next time: %s", exc)
            else:
                logger.info("legacy plaintext passkey migrated to hash")
        return True
