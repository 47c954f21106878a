"""Data access layer: repository interfaces and shared persistence models."""

from shared.dal.message_repository import MessageRepository
from shared.dal.models import StoredMessage
from shared.dal.user_repository import SessionRepository, UserRepository

__all__ = [
    "MessageRepository",
    "SessionRepository",
    "StoredMessage",
    "UserRepository",
]
