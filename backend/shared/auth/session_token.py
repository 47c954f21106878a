"""HMAC-SHA256 signed session tokens.

The opaque token handed to clients is the session row id plus a signature,
so tampered or made-up tokens are rejected before touching the database.

Token format: base64url(token_id).base64url(hmac_sha256(secret, token_id))
"""

import base64
import binascii
import hashlib
import hmac
import secrets

import structlog

logger = structlog.get_logger()

_TOKEN_PARTS = 2
_TOKEN_ID_BYTES = 24
MAX_TOKEN_LENGTH = 512


def new_token_id() -> str:
    return secrets.token_urlsafe(_TOKEN_ID_BYTES)


def _signature(token_id: str, secret: str) -> bytes:
    return hmac.new(secret.encode(), token_id.encode(), hashlib.sha256).digest()


def sign_token(token_id: str, secret: str) -> str:
    """Return the client-facing token for a session row id."""
    id_b64 = base64.urlsafe_b64encode(token_id.encode()).decode()
    sig_b64 = base64.urlsafe_b64encode(_signature(token_id, secret)).decode()
    return f"{id_b64}.{sig_b64}"


def unsign_token(token: str, secret: str) -> str | None:
    """Verify the signature and return the session row id, or None if the token is malformed."""
    if not token or len(token) > MAX_TOKEN_LENGTH:
        return None
    parts = token.split(".")
    if len(parts) != _TOKEN_PARTS:
        return None

    try:
        token_id = base64.urlsafe_b64decode(parts[0]).decode()
        provided_sig = base64.urlsafe_b64decode(parts[1])
    except (ValueError, binascii.Error, UnicodeDecodeError):
        return None

    if not token_id or not hmac.compare_digest(provided_sig, _signature(token_id, secret)):
        logger.debug("session token signature mismatch")
        return None
    return token_id
