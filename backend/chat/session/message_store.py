"""Chat message store: authorship rules over the message repository."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from chat.messaging.types import MAX_TEXT_LENGTH
from shared.auth.models import utc_now
from shared.errors import ForbiddenError, NotFoundError, ValidationError

if TYPE_CHECKING:
    from shared.dal.message_repository import MessageRepository
    from shared.dal.models import StoredMessage

logger = structlog.get_logger()

DEFAULT_HISTORY_LIMIT = 50


def normalize_text(text: str) -> str:
    """Trim message text. Raises ValidationError if nothing is left or it is too long."""
    text = text.strip()
    if not text:
        raise ValidationError("Message text must not be empty")
    if len(text) > MAX_TEXT_LENGTH:
        raise ValidationError(f"Message text must not exceed {MAX_TEXT_LENGTH} characters")
    return text


class MessageStore:
    """Append, edit, soft-delete and replay chat messages.

    Ids and timestamps are assigned here, never taken from clients. Deleted
    messages stay in storage but are excluded from history and cannot be
    edited or deleted again.
    """

    def __init__(self, repository: MessageRepository) -> None:
        self._repository = repository

    async def append(self, user_id: str, username: str, text: str) -> StoredMessage:
        message = await self._repository.append(user_id, username, normalize_text(text), utc_now())
        logger.debug("message stored", message_id=message.id, user_id=user_id)
        return message

    async def edit(self, message_id: int, user_id: str, new_text: str) -> StoredMessage:
        new_text = normalize_text(new_text)
        await self._get_owned(message_id, user_id)
        updated = await self._repository.update_text(message_id, new_text, utc_now())
        if updated is None:
            raise NotFoundError(f"Message {message_id} not found")
        return updated

    async def soft_delete(self, message_id: int, user_id: str) -> None:
        await self._get_owned(message_id, user_id)
        if not await self._repository.mark_deleted(message_id):
            raise NotFoundError(f"Message {message_id} not found")

    async def recent_history(self, limit: int = DEFAULT_HISTORY_LIMIT) -> list[StoredMessage]:
        """Newest non-deleted messages, at most limit of them, in ascending id order."""
        if limit <= 0:
            return []
        return await self._repository.recent(limit)

    async def _get_owned(self, message_id: int, user_id: str) -> StoredMessage:
        # existence is checked before authorship
        message = await self._repository.get(message_id)
        if message is None or message.deleted:
            raise NotFoundError(f"Message {message_id} not found")
        if message.user_id != user_id:
            raise ForbiddenError("You can only modify your own messages")
        return message
