"""User account, session and resolved-identity models."""

from dataclasses import dataclass
from datetime import UTC, datetime

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(UTC)


class User(BaseModel, frozen=True):
    """Registered account stored in the users table."""

    user_id: str
    username: str
    password_hash: str = Field(min_length=1)
    created_at: datetime = Field(default_factory=utc_now)


class AuthSession(BaseModel, frozen=True):
    """Persisted session row. The client never sees token_id directly, only its signed form."""

    token_id: str
    user_id: str
    username: str
    created_at: float  # time.time()
    expires_at: float  # time.time() + TTL


@dataclass(frozen=True)
class Identity:
    """Who a connection or HTTP caller is, once credentials have been checked."""

    user_id: str
    username: str
    is_guest: bool = False


@dataclass(frozen=True)
class IssuedCredentials:
    """Result of register/login: the identity plus a freshly minted token."""

    user_id: str
    username: str
    token: str
