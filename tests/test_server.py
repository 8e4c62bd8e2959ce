"""HTTP and WebSocket surface."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from companion.core.config import AvatarConfig, GenerationConfig
from companion.processing.responder import ResponseGenerator
from companion.server import create_app
from companion.services.cleanup import CapacityCleaner
from companion.services.registry import ServiceRegistry

from fakes import NOW, FakeAvatarProvider, FakeGenerative, SleepRecorder, fast_policy


@pytest.fixture
def registry(classifier):
    return ServiceRegistry(
        generator=ResponseGenerator.default(FakeGenerative(), GenerationConfig(), retry_policy=fast_policy()),
        classifier=classifier,
    )


@pytest.fixture
def client(registry):
    with TestClient(create_app(registry)) as c:
        yield c


def receive_until(ws, msg_type):
    for _ in range(10):
        frame = ws.receive_json()
        if frame["type"] == msg_type:
            return frame
    raise AssertionError(f"no {msg_type} frame")


class TestRest:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert set(body["providers"]) == {"generation", "speech", "avatar"}

    def test_unknown_session_is_404(self, client):
        assert client.get("/session/nope").status_code == 404

    def test_avatar_admin_without_provider_is_503(self, client):
        assert client.post("/avatar/cleanup").status_code == 503
        assert client.get("/avatar/limit").status_code == 503

    def test_avatar_admin_endpoints(self, classifier):
        provider = FakeAvatarProvider()
        provider.add_session("old", 90)
        provider.add_session("new", 1)
        cleaner = CapacityCleaner(
            provider,
            AvatarConfig(max_concurrent_sessions=5, probe_on_cleanup=False),
            clock=lambda: NOW,
            sleep=SleepRecorder(),
        )
        registry = ServiceRegistry(classifier=classifier, avatar_provider=provider, cleaner=cleaner)

        with TestClient(create_app(registry)) as c:
            assert c.get("/avatar/limit").json()["active_count"] == 2
            assert c.post("/avatar/cleanup").json() == {"resolved": True}
            assert provider.end_calls == ["old"]
            assert c.post("/avatar/force-cleanup").json() == {"ended": 1}


class TestWebSocket:
    def test_chat_round_trip(self, client):
        with client.websocket_connect("/ws/chat") as ws:
            ws.send_json({"type": "start_session", "user_id": "u1", "context": {"recent_mood": 2}})
            started = receive_until(ws, "session_started")
            session_id = started["data"]["id"]
            assert started["data"]["messages"][1]["role"] == "assistant"

            ws.send_json({"type": "send_message", "text": "I'm anxious about work"})
            user = receive_until(ws, "chat")
            reply = receive_until(ws, "chat")
            assert user["data"]["role"] == "user"
            assert reply["data"]["role"] == "assistant"
            assert reply["data"]["emotion_tag"] in {"calming", "supportive", "warm"}

            detail = client.get(f"/session/{session_id}").json()
            assert len(detail["messages"]) == 4

            ws.send_json({"type": "end_session"})
            ended = receive_until(ws, "session_ended")
            assert ended["data"]["session_id"] == session_id

    def test_crisis_message_is_urgent(self, client):
        with client.websocket_connect("/ws/chat") as ws:
            ws.send_json({"type": "start_session", "user_id": "u1"})
            receive_until(ws, "session_started")

            ws.send_json({"type": "send_message", "text": "I want to end my life"})
            receive_until(ws, "chat")
            reply = receive_until(ws, "chat")

            assert reply["data"]["emotion_tag"] == "urgent"
            assert "988" in reply["data"]["content"]

    def test_send_without_session_reports_error(self, client):
        with client.websocket_connect("/ws/chat") as ws:
            ws.send_json({"type": "send_message", "text": "hello"})
            assert receive_until(ws, "error")["message"] == "No active session"

    def test_ping(self, client):
        with client.websocket_connect("/ws/chat") as ws:
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_open_avatar_without_provider(self, client):
        with client.websocket_connect("/ws/chat") as ws:
            ws.send_json({"type": "start_session", "user_id": "u1"})
            receive_until(ws, "session_started")
            ws.send_json({"type": "open_avatar"})
            avatar = receive_until(ws, "avatar")
            assert avatar["data"]["status"] == "error"

    def test_bad_mood_keeps_connection_and_session(self, client, registry):
        with client.websocket_connect("/ws/chat") as ws:
            ws.send_json({"type": "start_session", "user_id": "u1", "context": {"recent_mood": 4}})
            receive_until(ws, "session_started")

            ws.send_json({"type": "update_context", "context": {"recentMood": "low"}})
            updated = receive_until(ws, "context_updated")
            assert updated["data"]["recent_mood"] == 4

            ws.send_json({"type": "update_context", "context": ["x"]})
            assert "object" in receive_until(ws, "error")["message"]

            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}
            assert registry.active_count == 1

    def test_non_object_payload_is_rejected(self, client, registry):
        with client.websocket_connect("/ws/chat") as ws:
            ws.send_json({"type": "start_session", "user_id": "u1"})
            receive_until(ws, "session_started")

            ws.send_text("[1, 2]")
            assert receive_until(ws, "error")["message"] == "Message must be a JSON object"

            ws.send_json({"type": "send_message", "text": "hello"})
            assert receive_until(ws, "chat")["data"]["role"] == "user"
            assert registry.active_count == 1

    def test_avatar_status_without_avatar(self, client):
        with client.websocket_connect("/ws/chat") as ws:
            ws.send_json({"type": "start_session", "user_id": "u1"})
            receive_until(ws, "session_started")
            ws.send_json({"type": "avatar_status"})
            assert receive_until(ws, "avatar")["data"] is None
