"""Abstract interface for chat message persistence."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from shared.dal.models import StoredMessage


class MessageRepository(ABC):
    """Append-only message log with in-place edit and soft delete.

    Implementations must assign ids inside the same critical section as the
    insert, so concurrent appends get strictly increasing, unique ids.
    """

    @abstractmethod
    async def append(self, user_id: str, username: str, text: str, timestamp: datetime) -> StoredMessage: ...

    @abstractmethod
    async def get(self, message_id: int) -> StoredMessage | None: ...

    @abstractmethod
    async def update_text(self, message_id: int, text: str, edited_at: datetime) -> StoredMessage | None: ...

    @abstractmethod
    async def mark_deleted(self, message_id: int) -> bool: ...

    @abstractmethod
    async def recent(self, limit: int) -> list[StoredMessage]: ...
