from typing import Any

import msgpack
import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from chat.server.app import create_app
from chat.server.rate_limit import DEFAULT_BURST


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def _token(client: TestClient, username: str) -> str:
    response = client.post("/api/auth/register", json={"username": username, "password": "password123"})
    return response.json()["token"]


def _recv_until(ws, message_type: str) -> dict[str, Any]:
    """Read frames until one of the given type arrives."""
    while True:
        message = ws.receive_json()
        if message["type"] == message_type:
            return message


def _join(ws, **credential: str) -> list[dict[str, Any]]:
    ws.send_json({"type": "join", **credential})
    return [ws.receive_json(), ws.receive_json()]


class TestChatSession:
    def test_two_users_chat(self, client):
        alice_token = _token(client, "alice")

        with client.websocket_connect("/ws") as alice:
            history, joined = _join(alice, token=alice_token)
            assert history == {"type": "history", "messages": []}
            assert joined["type"] == "userJoined"
            assert joined["onlineCount"] == 1

            with client.websocket_connect("/ws") as bob:
                _join(bob, username="bob")
                bob_joined = _recv_until(alice, "userJoined")
                assert bob_joined["username"] == "bob"
                assert bob_joined["onlineCount"] == 2

                alice.send_json({"type": "message", "text": "hi bob"})
                sent = _recv_until(alice, "message")
                received = _recv_until(bob, "message")
                assert sent == received
                assert received["username"] == "alice"

                bob.send_json({"type": "edit", "messageId": received["id"], "text": "hacked"})
                assert _recv_until(bob, "error")["code"] == "forbidden"

                alice.send_json({"type": "typing", "isTyping": True})
                assert _recv_until(bob, "typing")["users"] == ["alice"]

            left = _recv_until(alice, "userLeft")
            assert left["username"] == "bob"
            assert left["onlineCount"] == 1

    def test_late_joiner_sees_history(self, client):
        with client.websocket_connect("/ws") as alice:
            _join(alice, username="alice")
            for text in ("one", "two"):
                alice.send_json({"type": "message", "text": text})
                _recv_until(alice, "message")

        with client.websocket_connect("/ws") as bob:
            history, _ = _join(bob, username="bob")
            assert [m["text"] for m in history["messages"]] == ["one", "two"]

    def test_chat_before_join(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "message", "text": "hello"})
            assert ws.receive_json()["code"] == "not_authenticated"

            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_bad_token_closes_with_4001(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "join", "token": "garbage"})
            assert ws.receive_json()["code"] == "auth_failed"
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()
            assert exc_info.value.code == 4001

    def test_revoked_token_rejected(self, client):
        token = _token(client, "alice")
        client.post("/api/auth/logout", json={"token": token})

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "join", "token": token})
            error = ws.receive_json()
            assert error["code"] == "auth_failed"
            assert "expired or not found" in error["message"]


class TestWireFormats:
    def test_msgpack_session(self, client):
        with client.websocket_connect("/ws?encoding=msgpack") as ws:
            ws.send_bytes(msgpack.packb({"type": "join", "username": "packer"}))
            history = msgpack.unpackb(ws.receive_bytes(), raw=False)
            joined = msgpack.unpackb(ws.receive_bytes(), raw=False)

            assert history["type"] == "history"
            assert joined["username"] == "packer"

    def test_unknown_encoding_refused(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info, client.websocket_connect("/ws?encoding=xml"):
            pass
        assert exc_info.value.code == 4000

    def test_invalid_frame_gets_error(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_text("not json")
            error = ws.receive_json()
            assert error["type"] == "error"
            assert error["code"] == "invalid_message"

            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_repeated_decode_errors_disconnect(self, client):
        with client.websocket_connect("/ws") as ws:
            for _ in range(5):
                ws.send_text("not json")
                assert ws.receive_json()["code"] == "invalid_message"
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()
            assert exc_info.value.code == 4004


class TestRateLimit:
    def test_flood_is_throttled(self, client):
        frames = DEFAULT_BURST * 3
        with client.websocket_connect("/ws") as ws:
            for _ in range(frames):
                ws.send_json({"type": "ping"})
            replies = [ws.receive_json() for _ in range(frames)]

        limited = [r for r in replies if r["type"] == "error"]
        assert limited
        assert all(r["code"] == "rate_limited" for r in limited)
        assert sum(r["type"] == "pong" for r in replies) >= DEFAULT_BURST


class TestOriginCheck:
    @pytest.fixture
    def guarded_client(self, chat_settings, auth_settings):
        settings = chat_settings.model_copy(update={"ws_allowed_origin": "https://chat.example.com"})
        with TestClient(create_app(settings=settings, auth_settings=auth_settings)) as test_client:
            yield test_client

    def test_foreign_origin_refused(self, guarded_client):
        with (
            pytest.raises(WebSocketDisconnect) as exc_info,
            guarded_client.websocket_connect("/ws", headers={"origin": "https://evil.example.com"}),
        ):
            pass
        assert exc_info.value.code == 1008

    def test_matching_origin_accepted(self, guarded_client):
        with guarded_client.websocket_connect("/ws", headers={"origin": "https://chat.example.com"}) as ws:
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}


class TestGuestsDisabled:
    def test_guest_join_refused(self, chat_settings, auth_settings):
        settings = chat_settings.model_copy(update={"allow_guests": False})
        with TestClient(create_app(settings=settings, auth_settings=auth_settings)) as client:
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"type": "join", "username": "visitor"})
                assert ws.receive_json()["code"] == "auth_failed"
                with pytest.raises(WebSocketDisconnect) as exc_info:
                    ws.receive_json()
                assert exc_info.value.code == 4001
