"""
Roster Kernel - Passkey Hashing

SHA-256 of the UTF-8 passkey, stored as a lowercase hex string.
No salt: there is one shared administrative secret.

Stored values that are not 64 lowercase hex characters are legacy
plaintext passkeys written before hashing was introduced.
"""

from __future__ import annotations

import hashlib
import re

HASH_PATTERN = re.compile(r"^[0-9a-f]{64}$")


def hash_passkey(passkey: str) -> str:
    """SHA-256 of the passkey. Lowercase hex string."""
    return hashlib.sha256(passkey.encode("utf-8")).hexdigest()


def is_hashed(stored: str) -> bool:
    return bool(HASH_PATTERN.match(stored or ""))


def verify_passkey(candidate: str, stored: str) -> bool:
    """
    Compare a candidate against a stored value.

    Hashed values are compared digest to digest; legacy plaintext values
    are compared directly.
    """
    if not stored:
        return False
    if is_hashed(stored):
        return hash_passkey(candidate) == stored
    return candidate == stored
