"""The chat hub: connection registry, presence, typing and fan-out."""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

import structlog

from chat.messaging.encoder import WireFormat, encode
from chat.messaging.protocol import TRANSPORT_ERRORS
from chat.messaging.types import (
    ErrorCode,
    ErrorEvent,
    HistoryEvent,
    MessageDeletedEvent,
    MessageEditedEvent,
    MessagePayload,
    PingEvent,
    PongEvent,
    TypingEvent,
    UserJoinedEvent,
    UserLeftEvent,
)
from chat.session.message_store import DEFAULT_HISTORY_LIMIT
from chat.session.models import ConnectionRecord, ConnectionState
from chat.session.presence import PresenceTable
from chat.session.typing_tracker import DEFAULT_TYPING_TTL_SECONDS, TypingTracker
from shared.auth.models import utc_now
from shared.errors import AlreadyAuthenticatedError, ChatError, NotAuthenticatedError, TransportError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from chat.messaging.protocol import ConnectionProtocol
    from chat.messaging.types import WireModel
    from chat.session.message_store import MessageStore
    from shared.auth.models import Identity
    from shared.dal.models import StoredMessage

logger = structlog.get_logger()

AUTH_FAILED_CLOSE_CODE = 4001
TRANSPORT_FAILED_CLOSE_CODE = 1011


def message_payload(message: StoredMessage) -> MessagePayload:
    return MessagePayload(
        id=message.id,
        text=message.text,
        username=message.username,
        user_id=message.user_id,
        timestamp=message.timestamp,
        edited=message.edited,
    )


class ChatHub:
    """Single point of serialization for everything shared between connections.

    One asyncio.Lock guards the connection registry, the presence table, the
    typing set and every message store call made here, together with the
    broadcast that follows, so all clients observe events in one order.

    Sends that fail while the lock is held are collected and their close paths
    run after it is released: closing re-enters the hub, which would otherwise
    deadlock on the lock.
    """

    def __init__(
        self,
        message_store: MessageStore,
        *,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        typing_ttl_seconds: float = DEFAULT_TYPING_TTL_SECONDS,
    ) -> None:
        self._store = message_store
        self._history_limit = history_limit
        self._lock = asyncio.Lock()
        self._connections: dict[str, ConnectionRecord] = {}
        self._presence = PresenceTable()
        self._typing = TypingTracker(self._on_typing_expired, ttl_seconds=typing_ttl_seconds)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def online_count(self) -> int:
        return self._presence.count

    @property
    def typing_users(self) -> list[str]:
        return self._typing.users

    def get_record(self, connection_id: str) -> ConnectionRecord | None:
        return self._connections.get(connection_id)

    def is_authenticated(self, connection_id: str) -> bool:
        record = self._connections.get(connection_id)
        return record is not None and record.is_authenticated

    # --- connection lifecycle ---

    async def on_connection_opened(self, connection: ConnectionProtocol) -> None:
        async with self._lock:
            if connection.connection_id in self._connections:
                raise ValueError(f"Connection {connection.connection_id} is already registered")
            self._connections[connection.connection_id] = ConnectionRecord(connection=connection)
        logger.debug("connection registered", connection_id=connection.connection_id)

    async def on_auth_event(self, connection: ConnectionProtocol, identity: Identity) -> None:
        """Promote a connection to AUTHENTICATED, send it history and announce the join.

        The history read, the presence insert, the private history frame and
        the userJoined broadcast form one step under the lock, so no message
        can slip between the history a joiner sees and the live stream.
        """
        failed: list[ConnectionProtocol] = []
        async with self._contained(connection, failed):
            async with self._lock:
                record = self._connections.get(connection.connection_id)
                if record is None or record.state is ConnectionState.CLOSED:
                    return
                if record.is_authenticated:
                    raise AlreadyAuthenticatedError("Connection is already authenticated")

                history = await self._store.recent_history(self._history_limit)
                record.state = ConnectionState.AUTHENTICATED
                record.identity = identity
                self._presence.add(connection.connection_id, identity)

                event = HistoryEvent(messages=[message_payload(m) for m in history])
                if not await self._send(connection, event):
                    failed.append(connection)
                failed.extend(
                    await self._broadcast(
                        UserJoinedEvent(
                            username=identity.username,
                            online_count=self._presence.count,
                            timestamp=utc_now(),
                        ),
                    ),
                )
            logger.info(
                "user joined",
                user_id=identity.user_id,
                username=identity.username,
                guest=identity.is_guest,
                online=self.online_count,
            )

    async def on_auth_failed(self, connection: ConnectionProtocol, error: ChatError) -> None:
        """Report a failed join privately and close the connection with 4001."""
        logger.info("authentication failed", error_code=error.code, error_message=error.message)
        failed: list[ConnectionProtocol] = []
        await self._send_error(connection, ErrorCode(error.code), error.message, failed)
        with contextlib.suppress(*TRANSPORT_ERRORS):
            await connection.close(code=AUTH_FAILED_CLOSE_CODE, reason=error.code)
        await self.on_connection_closed(connection)
        await self._close_failed(failed)

    async def on_connection_closed(self, connection: ConnectionProtocol) -> None:
        """Run the close path. Safe to call any number of times for the same connection."""
        async with self._lock:
            failed = await self._remove(connection.connection_id)
        await self._close_failed(failed)

    async def _remove(self, connection_id: str) -> list[ConnectionProtocol]:
        """Drop a connection from every table. Must be called under the lock."""
        record = self._connections.pop(connection_id, None)
        if record is None:
            return []
        was_authenticated = record.is_authenticated
        record.state = ConnectionState.CLOSED
        if not was_authenticated or record.identity is None:
            return []

        entry = self._presence.remove(connection_id)
        if entry is None:
            return []
        typing_changed = self._typing.clear(entry.username)
        failed = await self._broadcast(
            UserLeftEvent(username=entry.username, online_count=self._presence.count, timestamp=utc_now()),
        )
        if typing_changed:
            failed.extend(await self._broadcast(TypingEvent(users=self._typing.users)))
        logger.info("user left", user_id=entry.user_id, username=entry.username, online=self._presence.count)
        return failed

    # --- chat operations ---

    async def on_chat_event(self, connection: ConnectionProtocol, text: str) -> None:
        failed: list[ConnectionProtocol] = []
        async with self._contained(connection, failed):
            async with self._lock:
                identity = self._require_identity(connection)
                message = await self._store.append(identity.user_id, identity.username, text)
                failed.extend(await self._broadcast(message_payload(message)))

    async def on_edit_event(self, connection: ConnectionProtocol, message_id: int, text: str) -> None:
        failed: list[ConnectionProtocol] = []
        async with self._contained(connection, failed):
            async with self._lock:
                identity = self._require_identity(connection)
                updated = await self._store.edit(message_id, identity.user_id, text)
                failed.extend(
                    await self._broadcast(
                        MessageEditedEvent(
                            message_id=updated.id,
                            text=updated.text,
                            timestamp=updated.edited_at or utc_now(),
                        ),
                    ),
                )

    async def on_delete_event(self, connection: ConnectionProtocol, message_id: int) -> None:
        failed: list[ConnectionProtocol] = []
        async with self._contained(connection, failed):
            async with self._lock:
                identity = self._require_identity(connection)
                await self._store.soft_delete(message_id, identity.user_id)
                failed.extend(await self._broadcast(MessageDeletedEvent(message_id=message_id)))

    async def on_typing_event(self, connection: ConnectionProtocol, *, is_typing: bool) -> None:
        failed: list[ConnectionProtocol] = []
        async with self._contained(connection, failed):
            async with self._lock:
                identity = self._require_identity(connection)
                if is_typing:
                    self._typing.set_typing(identity.username)
                else:
                    self._typing.clear(identity.username)
                failed.extend(await self._broadcast(TypingEvent(users=self._typing.users)))

    async def _on_typing_expired(self, username: str) -> None:
        async with self._lock:
            failed = []
            if self._typing.expire(username):
                logger.debug("typing expired", username=username)
                failed = await self._broadcast(TypingEvent(users=self._typing.users))
        await self._close_failed(failed)

    # --- liveness ---

    def record_activity(self, connection_id: str) -> None:
        """Any inbound frame proves the peer is alive."""
        record = self._connections.get(connection_id)
        if record is not None:
            record.awaiting_pong = False

    async def on_ping(self, connection: ConnectionProtocol) -> None:
        self.record_activity(connection.connection_id)
        failed: list[ConnectionProtocol] = []
        if not await self._send(connection, PongEvent()):
            failed.append(connection)
        await self._close_failed(failed)

    async def on_pong(self, connection: ConnectionProtocol) -> None:
        self.record_activity(connection.connection_id)

    async def probe_liveness(self) -> list[ConnectionProtocol]:
        """Send a ping to every live connection and return the ones that never answered the last one.

        Connections still awaiting a pong from the previous sweep are returned
        for termination. Connections whose probe fails to send are closed here.
        """
        stale: list[ConnectionProtocol] = []
        failed: list[ConnectionProtocol] = []
        async with self._lock:
            frames: dict[WireFormat, str | bytes] = {}
            payload = PingEvent().to_wire()
            for record in list(self._connections.values()):
                if record.awaiting_pong:
                    stale.append(record.connection)
                    continue
                record.awaiting_pong = True
                if not await self._send_encoded(record.connection, payload, frames):
                    failed.append(record.connection)
        await self._close_failed(failed)
        return stale

    async def close_all(self, code: int = 1001, reason: str = "server_shutdown") -> None:
        """Close every connection and cancel typing timers. Used on shutdown."""
        self._typing.cancel_all()
        for record in list(self._connections.values()):
            with contextlib.suppress(*TRANSPORT_ERRORS):
                await record.connection.close(code=code, reason=reason)
            await self.on_connection_closed(record.connection)

    # --- delivery ---

    def _require_identity(self, connection: ConnectionProtocol) -> Identity:
        record = self._connections.get(connection.connection_id)
        if record is None or not record.is_authenticated or record.identity is None:
            raise NotAuthenticatedError("Join the chat first")
        return record.identity

    async def _broadcast(self, event: WireModel) -> list[ConnectionProtocol]:
        """Deliver an event to every present connection, sender included.

        The event is serialized once per wire format. Iterates a snapshot of
        presence and skips transports that are already closed. Returns the
        connections whose send failed; the caller runs their close paths once
        the lock is released.
        """
        payload = event.to_wire()
        frames: dict[WireFormat, str | bytes] = {}
        failed: list[ConnectionProtocol] = []
        for connection_id in self._presence.connection_ids():
            record = self._connections.get(connection_id)
            if record is None or not record.connection.is_open:
                continue
            if not await self._send_encoded(record.connection, payload, frames):
                failed.append(record.connection)
        return failed

    async def _send_encoded(
        self,
        connection: ConnectionProtocol,
        payload: dict,
        frames: dict[WireFormat, str | bytes],
    ) -> bool:
        wire_format = connection.wire_format
        frame = frames.get(wire_format)
        if frame is None:
            frame = frames[wire_format] = encode(payload, wire_format)
        try:
            await connection.send_frame(frame)
        except TRANSPORT_ERRORS as e:
            logger.info("send failed", connection_id=connection.connection_id, error=str(e))
            return False
        return True

    async def _send(self, connection: ConnectionProtocol, event: WireModel) -> bool:
        return await self._send_encoded(connection, event.to_wire(), {})

    async def _send_error(
        self,
        connection: ConnectionProtocol,
        code: ErrorCode,
        message: str,
        failed: list[ConnectionProtocol],
    ) -> None:
        logger.warning("error sent to client", error_code=code.value, error_message=message)
        if not await self._send(connection, ErrorEvent(code=code, message=message)):
            failed.append(connection)

    async def _close_failed(self, failed: list[ConnectionProtocol]) -> None:
        """Close transports whose send failed and run their close paths, outside the lock."""
        for connection in failed:
            with contextlib.suppress(*TRANSPORT_ERRORS):
                await connection.close(code=TRANSPORT_FAILED_CLOSE_CODE, reason=TransportError.code)
            await self.on_connection_closed(connection)

    @contextlib.asynccontextmanager
    async def _contained(
        self,
        connection: ConnectionProtocol,
        failed: list[ConnectionProtocol],
    ) -> AsyncIterator[None]:
        """Turn hub errors into a private error event for the caller.

        Expected failures carry their own code. Anything else is logged with a
        traceback and reported as internal_error. Failed sends collected in
        ``failed`` are cleaned up on the way out, after the lock is released.
        """
        try:
            yield
        except ChatError as e:
            await self._send_error(connection, ErrorCode(e.code), e.message, failed)
        except Exception:
            logger.exception("unexpected error in hub operation", connection_id=connection.connection_id)
            await self._send_error(connection, ErrorCode.INTERNAL_ERROR, "Internal server error", failed)
        finally:
            await self._close_failed(failed)
