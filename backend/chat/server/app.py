from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING

import structlog
import uvicorn
from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute

from chat.messaging.router import MessageRouter
from chat.server.auth_handlers import login, logout, register, verify
from chat.server.settings import ChatServerSettings
from chat.server.websocket import websocket_endpoint
from chat.session.heartbeat import LivenessMonitor
from chat.session.hub import ChatHub
from chat.session.message_store import MessageStore
from shared.auth.password import get_hasher
from shared.auth.service import CredentialService
from shared.auth.session_store import SessionStore
from shared.auth.settings import AuthSettings
from shared.build_info import APP_VERSION, GIT_COMMIT
from shared.db import Database, SqliteMessageRepository, SqliteSessionRepository, SqliteUserRepository
from shared.logging import setup_logging

logger = structlog.get_logger()

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from starlette.requests import Request
    from starlette.websockets import WebSocket


async def health(request: Request) -> JSONResponse:
    hub: ChatHub = request.app.state.hub
    return JSONResponse(
        {
            "status": "ok",
            "version": APP_VERSION,
            "commit": GIT_COMMIT,
            "connections": hub.connection_count,
            "online": hub.online_count,
        },
    )


def create_app(
    settings: ChatServerSettings | None = None,
    auth_settings: AuthSettings | None = None,  # required in production (via get_app)
    *,
    database: Database | None = None,
) -> Starlette:
    if settings is None:  # pragma: no cover
        settings = ChatServerSettings()
    if auth_settings is None:  # pragma: no cover
        auth_settings = AuthSettings()  # type: ignore[call-arg]

    # When the app opens its own database, it owns the lifecycle.
    owned_db: Database | None = None
    if database is None:
        database = Database(auth_settings.database_path)
        database.connect()
        owned_db = database

    session_store = SessionStore(SqliteSessionRepository(database), ttl_seconds=auth_settings.session_ttl_seconds)
    credentials = CredentialService(
        SqliteUserRepository(database),
        session_store,
        password_hasher=get_hasher(auth_settings.password_hasher),
        token_secret=auth_settings.token_secret,
    )
    hub = ChatHub(
        MessageStore(SqliteMessageRepository(database)),
        history_limit=settings.history_limit,
        typing_ttl_seconds=settings.typing_ttl_seconds,
    )
    message_router = MessageRouter(hub, credentials, allow_guests=settings.allow_guests)
    monitor = LivenessMonitor(hub, interval_seconds=settings.heartbeat_interval_seconds)

    async def ws_endpoint(websocket: WebSocket) -> None:
        await websocket_endpoint(websocket, message_router, hub, allowed_origin=settings.ws_allowed_origin)

    routes = [
        Route("/health", health, methods=["GET"]),
        Route("/api/auth/register", register, methods=["POST"]),
        Route("/api/auth/login", login, methods=["POST"]),
        Route("/api/auth/verify", verify, methods=["POST"]),
        Route("/api/auth/logout", logout, methods=["POST"]),
        WebSocketRoute("/ws", ws_endpoint),
    ]

    @contextlib.asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncGenerator[None]:
        session_store.start_cleanup()
        monitor.start()
        try:
            yield
        finally:
            await monitor.stop()
            await hub.close_all()
            await session_store.stop_cleanup()
            if owned_db is not None:
                owned_db.close()

    app = Starlette(routes=routes, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type"],
    )
    app.state.settings = settings
    app.state.auth_settings = auth_settings
    app.state.db = database
    app.state.credentials = credentials
    app.state.session_store = session_store
    app.state.hub = hub
    app.state.monitor = monitor

    logger.info("chat server ready", allow_guests=settings.allow_guests, history_limit=settings.history_limit)
    return app


def get_app() -> Starlette:  # pragma: no cover  # deadcode: ignore
    """ASGI application factory for production use (e.g., uvicorn --factory chat.server.app:get_app)."""
    settings = ChatServerSettings()
    auth_settings = AuthSettings()  # ty: ignore[missing-argument]
    setup_logging(log_dir=settings.log_dir)
    return create_app(settings=settings, auth_settings=auth_settings)


def main() -> None:  # pragma: no cover
    """Console entry point: serve the app with uvicorn on CHAT_HOST:CHAT_PORT."""
    settings = ChatServerSettings()
    uvicorn.run("chat.server.app:get_app", factory=True, host=settings.host, port=settings.port, log_config=None)
