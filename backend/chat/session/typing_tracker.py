"""Track who is typing, with a server-side expiry per user."""

import asyncio
from collections.abc import Awaitable, Callable

import structlog

DEFAULT_TYPING_TTL_SECONDS = 6.0

logger = structlog.get_logger()

# Callback type: (username) -> Awaitable[None]
ExpireCallback = Callable[[str], Awaitable[None]]


class TypingTracker:
    """Maintain the typing set and one expiry task per typing user.

    Every typing=true signal (re)arms the user's timer. When a timer fires it
    calls on_expire; the callback is expected to take the hub lock and then
    call expire(), which only removes the user if that timer is still the
    current one. Callers serialize set_typing/clear/expire through the hub lock.
    """

    def __init__(self, on_expire: ExpireCallback, ttl_seconds: float = DEFAULT_TYPING_TTL_SECONDS) -> None:
        self._on_expire = on_expire
        self._ttl_seconds = ttl_seconds
        self._typing: set[str] = set()
        self._timers: dict[str, asyncio.Task[None]] = {}

    @property
    def users(self) -> list[str]:
        return sorted(self._typing)

    def __contains__(self, username: object) -> bool:
        return username in self._typing

    def set_typing(self, username: str) -> bool:
        """Mark a user as typing and rearm their timer. Returns True if the set changed."""
        changed = username not in self._typing
        self._typing.add(username)
        self._arm(username)
        return changed

    def clear(self, username: str) -> bool:
        """Remove a user and cancel their timer. Returns True if the set changed."""
        self._cancel_timer(username)
        if username in self._typing:
            self._typing.discard(username)
            return True
        return False

    def expire(self, username: str) -> bool:
        """Remove a user on behalf of their expiry timer.

        Must be called from inside the timer's own callback. A timer that was
        rearmed while its callback waited for the lock is stale and does nothing.
        """
        timer = self._timers.get(username)
        if timer is None or timer is not asyncio.current_task():
            return False
        del self._timers[username]
        if username in self._typing:
            self._typing.discard(username)
            return True
        return False

    def cancel_all(self) -> None:
        """Cancel every pending timer and empty the set (used on shutdown)."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._typing.clear()

    def _arm(self, username: str) -> None:
        self._cancel_timer(username)
        self._timers[username] = asyncio.create_task(self._expire_after(username))

    def _cancel_timer(self, username: str) -> None:
        timer = self._timers.pop(username, None)
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

    async def _expire_after(self, username: str) -> None:
        await asyncio.sleep(self._ttl_seconds)
        try:
            await self._on_expire(username)
        except Exception:
            logger.exception("typing expiry callback failed", username=username)
