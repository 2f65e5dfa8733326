"""Workspace key generation and hashing.

Activity keys (game server signals) and API keys (public read API) are
shown once at creation and stored only as sha256 hex digests.
"""

import hashlib
import secrets


def generate_key(prefix: str = "ct") -> str:
    return f"{prefix}_{secrets.token_urlsafe(32)}"


def hash_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def keys_match(raw_key: str, stored_hash: str | None) -> bool:
    if not stored_hash:
        return False
    return secrets.compare_digest(hash_key(raw_key), stored_hash)
