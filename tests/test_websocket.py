import pytest
from conftest import FakeFeedbackService, FakeReplyService
from fastapi.testclient import TestClient

from speakup.api.websocket import MessageType, parse_event, update_profile
from speakup.capture.events import FragmentResult, PlaybackFailed, SessionEnded
from speakup.capture.turn import LearnerProfile
from speakup.services.feedback_service import get_feedback_service
from speakup.services.reply_service import get_reply_service
from speakup.services.voice_catalog import get_voice_catalog


class StubCatalog:
    async def preview(self, voice_id):
        return "aGk="


@pytest.fixture()
def services():
    return {"reply": FakeReplyService(), "feedback": FakeFeedbackService()}


@pytest.fixture()
def client(services):
    from speakup.main import create_app

    app = create_app()
    app.dependency_overrides[get_reply_service] = lambda: services["reply"]
    app.dependency_overrides[get_feedback_service] = lambda: services["feedback"]
    app.dependency_overrides[get_voice_catalog] = lambda: StubCatalog()
    return TestClient(app)


def receive_until(ws, kind, limit=30):
    seen = []
    for _ in range(limit):
        message = ws.receive_json()
        seen.append(message)
        if message["type"] == kind:
            return message, seen
    raise AssertionError(f"never received {kind}: {seen}")


def test_parse_event_builds_tagged_events():
    event = parse_event(
        {
            "type": "recognizer.result",
            "token": 3,
            "fragments": [{"text": "I goed", "is_final": True}, {"transcript": "to the"}, "junk"],
        }
    )
    assert isinstance(event, FragmentResult)
    assert event.token == 3
    assert event.final_text == "I goed"
    assert event.interim_text == "to the"

    assert parse_event({"type": "recognizer.session_end", "token": 3}) == SessionEnded(3)
    assert parse_event({"type": "playback.error", "token": 1, "reason": "decode"}) == PlaybackFailed(1, "decode")
    assert parse_event({"type": "ping"}) is None


@pytest.mark.parametrize("token", [None, "1", True, 1.5])
def test_parse_event_rejects_bad_tokens(token):
    with pytest.raises(ValueError):
        parse_event({"type": "recognizer.session_start", "token": token})


def test_update_profile_ignores_blank_fields():
    profile = LearnerProfile()
    update_profile(profile, {"topic": " travel ", "level": "", "voice_id": 5, "user": "Sam"})
    assert profile.topic == "travel"
    assert profile.level == LearnerProfile().level
    assert profile.voice_id is None
    assert profile.user == "Sam"


def test_connect_ping_and_errors(client):
    with client.websocket_connect("/ws/conversation") as ws:
        hello = ws.receive_json()
        assert hello["type"] == MessageType.CONNECTED.value
        assert hello["mode"] == "auto"

        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}

        ws.send_text("{not json")
        assert ws.receive_json()["type"] == "error"

        ws.send_json({"type": "teleport"})
        error = ws.receive_json()
        assert error == {"type": "error", "message": "Unknown message type: teleport"}

        # A malformed event is dropped and the pipeline keeps working
        ws.send_json({"type": "recognizer.result", "token": "nope"})
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}


def test_capture_round_trip_over_socket(client, services):
    with client.websocket_connect("/ws/conversation") as ws:
        ws.receive_json()
        ws.send_json({"type": "profile.update", "topic": "weekend plans"})
        ws.send_json({"type": "capture.start"})
        start, _ = receive_until(ws, "recognizer.start")
        token = start["token"]

        ws.send_json({"type": "recognizer.session_start", "token": token})
        ws.send_json(
            {"type": "recognizer.result", "token": token, "fragments": [{"text": "I will go hiking", "is_final": True}]}
        )
        transcript, _ = receive_until(ws, "transcript")
        assert transcript == {"type": "transcript", "text": "I will go hiking", "is_final": True}

        ws.send_json({"type": "capture.stop"})
        stop, _ = receive_until(ws, "recognizer.stop")
        assert stop["token"] == token

        ws.send_json({"type": "recognizer.session_end", "token": token})
        user_text, _ = receive_until(ws, "user_text")
        assert user_text["text"] == "I will go hiking"
        reply, _ = receive_until(ws, "ai_text")
        assert reply["text"] == "Nice! What did you buy?"
        feedback, _ = receive_until(ws, "feedback")
        assert feedback["data"]["grammar"]["score"] == 6

    call = services["reply"].calls[0]
    assert call["topic"] == "weekend plans"
    assert call["history"] == [("user", "I will go hiking")]


def test_typed_text_and_mode_switch(client, services):
    with client.websocket_connect("/ws/conversation") as ws:
        ws.receive_json()
        ws.send_json({"type": "capture.mode", "mode": "push_to_finish"})
        ws.send_json({"type": "text.submit", "text": "Can we practise small talk?"})
        _, seen = receive_until(ws, "feedback")

        states = [m["state"] for m in seen if m["type"] == "turn_state"]
        assert states[0] == "awaiting_reply"
        assert "feedback_received" in states

    assert services["reply"].calls[0]["history"] == [("user", "Can we practise small talk?")]


def test_voice_preview_loads_playback(client):
    with client.websocket_connect("/ws/conversation") as ws:
        ws.receive_json()
        ws.send_json({"type": "voice.preview", "voice_id": "en-US-GuyNeural"})
        load, _ = receive_until(ws, "playback.load")
        assert load["audio"] == "aGk="
        play, _ = receive_until(ws, "playback.play")
        assert play["token"] == load["token"]
