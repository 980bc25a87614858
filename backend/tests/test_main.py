import base64
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from voicechat import main
from voicechat.conversation.controller import ConversationController

from conftest import FakeCapture, FakePlayback, FakeReasoning


@pytest.fixture
def fakes():
    return FakeCapture(), FakePlayback(), FakeReasoning()


@pytest.fixture
def client(fakes):
    capture, playback, reasoning = fakes

    def build_session(send):
        controller = ConversationController(
            capture=capture,
            playback=playback,
            reasoning=reasoning,
            on_state_change=lambda state: send({"type": "state", "data": state.snapshot()}),
        )
        return controller, capture, playback

    with patch.object(main, "build_session", build_session):
        with TestClient(main.app) as test_client:
            yield test_client


def receive_until(websocket, message_type):
    while True:
        message = websocket.receive_json()
        if message["type"] == message_type:
            return message


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["active_sessions"] == 0


class TestVoiceWebSocket:

    def test_session_ready_and_initial_state(self, client):
        with client.websocket_connect("/ws/voice") as websocket:
            ready = websocket.receive_json()
            state = websocket.receive_json()

            assert ready["type"] == "session_ready"
            assert ready["data"]["session_id"]
            assert state["type"] == "state"
            assert state["data"]["has_microphone_access"] is False
            assert state["data"]["phase"] == "idle"

            websocket.send_json({"type": "disconnect"})

    def test_intents_update_state(self, client, fakes):
        capture, _, _ = fakes
        with client.websocket_connect("/ws/voice") as websocket:
            receive_until(websocket, "state")

            websocket.send_json({"type": "microphone_access", "data": {"granted": True}})
            state = receive_until(websocket, "state")
            assert state["data"]["has_microphone_access"] is True

            websocket.send_json({"type": "toggle_mute"})
            state = receive_until(websocket, "state")
            assert state["data"]["is_muted"] is True

            websocket.send_json({"type": "toggle_capture"})
            state = receive_until(websocket, "state")
            assert state["data"]["is_listening"] is True

            audio = base64.b64encode(b"\x00\x01").decode()
            websocket.send_json({"type": "audio_chunk", "data": {"audio": audio}})
            websocket.send_json({"type": "ping"})
            receive_until(websocket, "pong")
            assert capture.audio == [b"\x00\x01"]

            websocket.send_json({"type": "disconnect"})

        assert capture.close_calls >= 1

    def test_denied_microphone(self, client):
        with client.websocket_connect("/ws/voice") as websocket:
            receive_until(websocket, "state")

            websocket.send_json({"type": "microphone_access", "data": {"granted": False}})
            state = receive_until(websocket, "state")

            assert state["data"]["has_microphone_access"] is False
            assert state["data"]["error"] == "capture_unavailable"

            websocket.send_json({"type": "disconnect"})

    def test_playback_complete_forwarded(self, client, fakes):
        _, playback, _ = fakes
        with client.websocket_connect("/ws/voice") as websocket:
            receive_until(websocket, "state")
            websocket.send_json({"type": "playback_complete"})
            websocket.send_json({"type": "ping"})
            receive_until(websocket, "pong")

            websocket.send_json({"type": "disconnect"})

        assert playback.client_finished == 1

    def test_unknown_message(self, client):
        with client.websocket_connect("/ws/voice") as websocket:
            receive_until(websocket, "state")
            websocket.send_json({"type": "dance"})
            error = receive_until(websocket, "error")

            assert error["data"]["code"] == "UNKNOWN_MESSAGE"
            websocket.send_json({"type": "disconnect"})

    @pytest.mark.parametrize("payload", [
        ["toggle_capture"],
        "toggle_capture",
        {"type": "microphone_access", "data": "granted"},
    ])
    def test_malformed_message_keeps_session_open(self, client, payload):
        with client.websocket_connect("/ws/voice") as websocket:
            receive_until(websocket, "state")
            websocket.send_json(payload)
            error = receive_until(websocket, "error")

            assert error["data"]["code"] == "INVALID_MESSAGE"

            websocket.send_json({"type": "ping"})
            assert receive_until(websocket, "pong")["type"] == "pong"
            websocket.send_json({"type": "disconnect"})
