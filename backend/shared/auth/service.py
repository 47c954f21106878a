"""Credential service: registration, login, token verification and guest names."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING
from uuid import uuid4

import structlog

from shared.auth.models import Identity, IssuedCredentials, User
from shared.auth.session_token import sign_token, unsign_token
from shared.errors import AuthError, ConflictError, ValidationError

if TYPE_CHECKING:
    from shared.auth.password import PasswordHasher
    from shared.auth.session_store import SessionStore
    from shared.dal.user_repository import UserRepository

logger = structlog.get_logger()

USERNAME_MIN_LENGTH = 2
USERNAME_MAX_LENGTH = 30
# Unicode letters and digits, underscore, dash, dot and inner spaces.
USERNAME_PATTERN = re.compile(r"^[\w.\- ]+$")

PASSWORD_MIN_LENGTH = 6
PASSWORD_MAX_BYTES = 72  # bcrypt truncates at 72 bytes

GUEST_ID_PREFIX = "guest:"

_INVALID_CREDENTIALS = "Invalid credentials"


class CredentialService:
    """Coordinate account registration, login, and session token validation."""

    def __init__(
        self,
        user_repo: UserRepository,
        session_store: SessionStore,
        *,
        password_hasher: PasswordHasher,
        token_secret: str,
    ) -> None:
        self._user_repo = user_repo
        self._session_store = session_store
        self._hasher = password_hasher
        self._token_secret = token_secret

    async def register(self, username: str, password: str) -> IssuedCredentials:
        """Create an account and sign the caller in."""
        username = normalize_username(username)
        _validate_password(password)
        if await self._user_repo.get_by_username(username) is not None:
            raise ConflictError(f"Username '{username}' is already taken")

        user = User(
            user_id=str(uuid4()),
            username=username,
            password_hash=await self._hasher.hash(password),
        )
        try:
            await self._user_repo.create_user(user)
        except ValueError as e:
            # lost a race with a concurrent registration of the same name
            raise ConflictError(str(e)) from e
        logger.info("user registered", user_id=user.user_id, username=user.username)
        return await self._issue(user.user_id, user.username)

    async def login(self, username: str, password: str) -> IssuedCredentials:
        user = await self._user_repo.get_by_username(username.strip())
        if user is None:
            raise AuthError(_INVALID_CREDENTIALS)
        if not await self._hasher.verify(password, user.password_hash):
            raise AuthError(_INVALID_CREDENTIALS)
        return await self._issue(user.user_id, user.username)

    async def verify(self, token: str) -> Identity:
        """Return the identity bound to a token. AuthError if malformed, expired or unknown."""
        token_id = unsign_token(token, self._token_secret)
        if token_id is None:
            raise AuthError("Malformed session token")
        session = await self._session_store.get_session(token_id)
        if session is None:
            raise AuthError("Session expired or not found")
        return Identity(user_id=session.user_id, username=session.username)

    async def logout(self, token: str) -> None:
        """Revoke a token. Unknown or malformed tokens are ignored."""
        token_id = unsign_token(token, self._token_secret)
        if token_id is not None:
            await self._session_store.delete_session(token_id)

    async def guest_identity(self, username: str) -> Identity:
        """Trust-on-first-use identity for an unregistered display name.

        Names that belong to a registered account are refused so a guest
        cannot appear as that user.
        """
        username = normalize_username(username)
        if await self._user_repo.get_by_username(username) is not None:
            raise AuthError(f"Username '{username}' belongs to a registered account")
        return Identity(user_id=f"{GUEST_ID_PREFIX}{uuid4()}", username=username, is_guest=True)

    async def _issue(self, user_id: str, username: str) -> IssuedCredentials:
        session = await self._session_store.create_session(user_id, username)
        return IssuedCredentials(
            user_id=user_id,
            username=username,
            token=sign_token(session.token_id, self._token_secret),
        )


def normalize_username(username: str) -> str:
    """Trim and validate a display name: 2-30 chars of letters, digits, '_', '-', '.', or space."""
    username = username.strip()
    if len(username) < USERNAME_MIN_LENGTH or len(username) > USERNAME_MAX_LENGTH:
        raise ValidationError(
            f"Username must be between {USERNAME_MIN_LENGTH} and {USERNAME_MAX_LENGTH} characters",
        )
    if not USERNAME_PATTERN.match(username):
        raise ValidationError("Username may contain only letters, digits, spaces, '_', '-' and '.'")
    return username


def _validate_password(password: str) -> None:
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValidationError(f"Password must not exceed {PASSWORD_MAX_BYTES} bytes when encoded")
