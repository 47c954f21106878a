"""Credential store: accounts, password hashing and signed session tokens."""

from shared.auth.models import AuthSession, Identity, IssuedCredentials, User
from shared.auth.password import PasswordHasher, get_hasher
from shared.auth.service import CredentialService
from shared.auth.session_store import SessionStore
from shared.auth.session_token import sign_token, unsign_token
from shared.auth.settings import AuthSettings

__all__ = [
    "AuthSession",
    "AuthSettings",
    "CredentialService",
    "Identity",
    "IssuedCredentials",
    "PasswordHasher",
    "SessionStore",
    "User",
    "get_hasher",
    "sign_token",
    "unsign_token",
]
