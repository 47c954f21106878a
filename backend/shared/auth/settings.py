"""Credential store configuration via AUTH_* environment variables."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

THIRTY_DAYS_SECONDS = 30 * 86400


class AuthSettings(BaseSettings):
    model_config = {"env_prefix": "AUTH_"}

    # HMAC key for session tokens -- required, no default.
    # The application refuses to start if AUTH_TOKEN_SECRET is unset.
    token_secret: str = Field(min_length=1)

    # SQLite file holding users, sessions and messages
    database_path: str = Field(default="backend/data/chat.db", min_length=1)

    session_ttl_seconds: int = Field(default=THIRTY_DAYS_SECONDS, ge=60)

    password_hasher: Literal["bcrypt", "simple"] = "bcrypt"
