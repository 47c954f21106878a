"""Persistence models for the data access layer."""

from datetime import datetime

from pydantic import BaseModel


class StoredMessage(BaseModel, frozen=True):
    """A chat message row. Soft-deleted rows stay in storage with deleted=True."""

    id: int
    user_id: str
    username: str
    text: str
    timestamp: datetime
    edited: bool = False
    deleted: bool = False
    edited_at: datetime | None = None
