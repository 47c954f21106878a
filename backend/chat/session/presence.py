"""Presence table: which authenticated connections are online, keyed by connection."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from shared.auth.models import utc_now

if TYPE_CHECKING:
    from shared.auth.models import Identity


@dataclass(frozen=True)
class PresenceEntry:
    user_id: str
    username: str
    joined_at: datetime = field(default_factory=utc_now)


class PresenceTable:
    """Map of connection_id to the user behind it.

    One user may hold several entries (multi-device). The online count is the
    number of entries, not distinct users. Callers serialize access through
    the hub lock.
    """

    def __init__(self) -> None:
        self._entries: dict[str, PresenceEntry] = {}

    def add(self, connection_id: str, identity: Identity) -> PresenceEntry:
        if connection_id in self._entries:
            raise ValueError(f"Connection {connection_id} is already present")
        entry = PresenceEntry(user_id=identity.user_id, username=identity.username)
        self._entries[connection_id] = entry
        return entry

    def remove(self, connection_id: str) -> PresenceEntry | None:
        """Drop an entry. Returns None if it was already gone."""
        return self._entries.pop(connection_id, None)

    def get(self, connection_id: str) -> PresenceEntry | None:
        return self._entries.get(connection_id)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def count(self) -> int:
        return len(self._entries)

    def connection_ids(self) -> list[str]:
        """Snapshot of present connection ids, safe to iterate while the table changes."""
        return list(self._entries)
