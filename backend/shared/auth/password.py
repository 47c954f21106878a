"""Password hashing behind a small async protocol.

BcryptHasher is the production hasher. bcrypt is deliberately slow (~100ms),
so both hashing and checking run in a worker thread via anyio to keep the
event loop serving other connections.

SimpleHasher is a salted SHA-256 stand-in for tests where bcrypt's cost would
dominate the run time.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from typing import Protocol, runtime_checkable

import bcrypt
from anyio import to_thread


@runtime_checkable
class PasswordHasher(Protocol):
    async def hash(self, plain: str) -> str: ...

    async def verify(self, plain: str, hashed: str) -> bool: ...


class BcryptHasher:
    async def hash(self, plain: str) -> str:
        encoded = plain.encode("utf-8")
        return await to_thread.run_sync(lambda: bcrypt.hashpw(encoded, bcrypt.gensalt()).decode("utf-8"))

    async def verify(self, plain: str, hashed: str) -> bool:
        """Return False for a malformed stored hash instead of raising."""
        encoded_plain = plain.encode("utf-8")
        encoded_hash = hashed.encode("utf-8")
        try:
            return await to_thread.run_sync(lambda: bcrypt.checkpw(encoded_plain, encoded_hash))
        except ValueError:
            return False


_SIMPLE_PREFIX = "simple"


class SimpleHasher:
    """Format: ``simple$<salt>$<sha256(salt + password)>``. Tests only."""

    async def hash(self, plain: str) -> str:
        salt = secrets.token_hex(8)
        return f"{_SIMPLE_PREFIX}${salt}${_sha256(salt, plain)}"

    async def verify(self, plain: str, hashed: str) -> bool:
        parts = hashed.split("$")
        if len(parts) != 3 or parts[0] != _SIMPLE_PREFIX:  # noqa: PLR2004
            return False
        return hmac.compare_digest(parts[2], _sha256(parts[1], plain))


def _sha256(salt: str, plain: str) -> str:
    return hashlib.sha256((salt + plain).encode("utf-8")).hexdigest()


def get_hasher(name: str = "bcrypt") -> PasswordHasher:
    """Return a PasswordHasher by name ("bcrypt" or "simple")."""
    if name == "bcrypt":
        return BcryptHasher()
    if name == "simple":
        return SimpleHasher()
    raise ValueError(f"Unknown password hasher: {name!r}")
