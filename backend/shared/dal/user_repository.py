"""Abstract interfaces for account and session persistence."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from shared.auth.models import AuthSession, User


class UserRepository(ABC):
    """Account persistence. Usernames are unique case-insensitively."""

    @abstractmethod
    async def create_user(self, user: User) -> None: ...

    @abstractmethod
    async def get_by_username(self, username: str) -> User | None: ...


class SessionRepository(ABC):
    """Session token persistence."""

    @abstractmethod
    async def create_session(self, session: AuthSession) -> None: ...

    @abstractmethod
    async def get_session(self, token_id: str) -> AuthSession | None: ...

    @abstractmethod
    async def delete_session(self, token_id: str) -> None: ...

    @abstractmethod
    async def delete_expired(self, now: float) -> int: ...
