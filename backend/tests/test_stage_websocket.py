import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from config import get_settings
from main import app
from models.interview import StageResult
from models.session import InterviewSession
from routes.dependencies import get_artifacts, get_engine, get_voice_factory
from services import stage_websocket
from services.coaching import CLOSING_MESSAGE
from services.live_demo import AgentMessage, CandidateMessage, VoiceConnected
from services.stage_timer import StageTimer


@pytest.fixture
def client(engine, artifacts, monkeypatch):
    # no scheduled ticks; the flow below is driven by client messages only
    monkeypatch.setenv("TICK_INTERVAL_SECONDS", "3600")
    get_settings.cache_clear()
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_artifacts] = lambda: artifacts
    yield TestClient(app)
    app.dependency_overrides.clear()


class FakeVoice:
    def __init__(self, session_id, on_event, send_audio):
        self.session_id = session_id
        self.on_event = on_event
        self.updates = []
        self.disconnected = False

    async def connect(self):
        self.on_event(VoiceConnected())
        self.on_event(AgentMessage("Welcome! What will you teach today?"))
        self.on_event(CandidateMessage("Today we study photosynthesis."))
        return True

    def feed_audio(self, encoded):
        pass

    def send_contextual_update(self, text):
        self.updates.append(text)
        return True

    async def disconnect(self, delay=0.0):
        self.disconnected = True


class StartedClock:
    """Reads 0 when the stage timer starts, then whatever the test sets."""

    def __init__(self):
        self.now = 0.0
        self.started = False

    def __call__(self):
        if not self.started:
            self.started = True
            return 0.0
        return self.now


@pytest.fixture
def voices():
    created = []

    def factory(session_id, on_event, send_audio):
        voice = FakeVoice(session_id, on_event, send_audio)
        created.append(voice)
        return voice

    app.dependency_overrides[get_voice_factory] = lambda: factory
    return created


@pytest.fixture
def seed(store, profile):
    def _seed(current_stage_order):
        store.sessions["sess-1"] = InterviewSession(
            session_id="sess-1",
            candidate_id=profile.candidate_id,
            candidate_profile=profile,
            current_stage_order=current_stage_order,
        )

    return _seed


def _receive_until(ws, predicate, limit=500):
    for _ in range(limit):
        message = ws.receive_json()
        if predicate(message):
            return message
    raise AssertionError("expected message never arrived")


def test_socket_rejects_bad_token(client, seed):
    seed(3)
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws/stage/sess-1/3?token=nope") as ws:
            ws.receive_json()


def test_locked_stage_is_refused(client, seed):
    seed(1)
    with client.websocket_connect("/ws/stage/sess-1/3?token=test-token") as ws:
        message = ws.receive_json()
    assert message["type"] == "error"
    assert "locked" in message["message"]


def test_completed_stage_returns_stored_result(client, seed, store, evaluator):
    seed(6)
    store.results[("sess-1", 5)] = StageResult(
        session_id="sess-1", stage_order=5, stage_name="Demo Round", score=77, passed=True,
        completed_at="2026-03-01T10:00:00Z",
    )
    with client.websocket_connect("/ws/stage/sess-1/5?token=test-token") as ws:
        message = ws.receive_json()
    assert message["type"] == "completed"
    assert message["result"]["score"] == 77
    assert evaluator.evaluate_calls == []


def test_begin_requires_device_permission(client, seed):
    seed(3)
    with client.websocket_connect("/ws/stage/sess-1/3?token=test-token") as ws:
        assert ws.receive_json()["type"] == "ready"
        assert ws.receive_json()["phase"] == "not_started"
        ws.send_json({"type": "begin"})
        error = _receive_until(ws, lambda m: m["type"] == "error")
        assert error["retry"] is True


def test_timed_assessment_over_the_socket(client, seed, store, artifacts, evaluator):
    seed(3)
    with client.websocket_connect("/ws/stage/sess-1/3?token=test-token") as ws:
        assert ws.receive_json()["type"] == "ready"
        ws.send_json({"type": "permission", "granted": True})
        _receive_until(ws, lambda m: m["type"] == "permission")

        ws.send_json({"type": "begin"})
        _receive_until(ws, lambda m: m["type"] == "record" and m["action"] == "start")
        ws.send_bytes(b"\x1a\x45\xdf\xa3" * 1024)

        for i in range(8):
            ws.send_json({"type": "answer", "text": f"Answer {i + 1}"})
            ws.send_json({"type": "next"})

        _receive_until(ws, lambda m: m["type"] == "record" and m["action"] == "stop")
        ws.send_bytes(b"\x00" * 512)
        ws.send_json({"type": "recording_stopped"})

        final = _receive_until(ws, lambda m: m["type"] == "state" and m["phase"] == "completed")

    assert final["answered"] == 8
    assert final["result"]["score"] == 82.0
    assert artifacts.uploads[0][2] == 4 * 1024 + 512
    stored = store.results[("sess-1", 3)]
    assert stored.recording_ref == "mock-interviews/sess-1/stage-3.webm"
    assert len(stored.answers) == 8
    assert store.sessions["sess-1"].current_stage_order == 4
    assert len(evaluator.evaluate_calls) == 1


def test_oversized_recording_aborts_the_assessment(client, seed, store, artifacts, evaluator, monkeypatch):
    monkeypatch.setenv("MAX_RECORDING_BYTES", "1000")
    get_settings.cache_clear()
    seed(3)
    with client.websocket_connect("/ws/stage/sess-1/3?token=test-token") as ws:
        assert ws.receive_json()["type"] == "ready"
        ws.send_json({"type": "permission", "granted": True})
        _receive_until(ws, lambda m: m["type"] == "permission")

        ws.send_json({"type": "begin"})
        _receive_until(ws, lambda m: m["type"] == "record" and m["action"] == "start")
        ws.send_bytes(b"\x00" * 5000)

        error = _receive_until(ws, lambda m: m["type"] == "error")
        final = _receive_until(ws, lambda m: m["type"] == "state" and m["phase"] == "aborted")

    assert "1000 bytes" in error["message"]
    assert error["retry"] is False
    assert final["can_retry"] is False
    assert ("sess-1", 3) not in store.results
    assert artifacts.uploads == []
    assert evaluator.evaluate_calls == []
    assert store.sessions["sess-1"].current_stage_order == 3


def test_live_demo_over_the_socket(client, seed, store, artifacts, evaluator, notifier, voices, monkeypatch):
    clock = StartedClock()
    monkeypatch.setattr(stage_websocket, "StageTimer", lambda limit: StageTimer(limit, clock=clock))
    monkeypatch.setenv("TICK_INTERVAL_SECONDS", "0.02")
    monkeypatch.setenv("DEMO_CLOSING_DELAY_SECONDS", "0")
    get_settings.cache_clear()
    seed(5)

    with client.websocket_connect("/ws/stage/sess-1/5?token=test-token") as ws:
        assert ws.receive_json()["type"] == "ready"
        ws.send_json({"type": "permission", "granted": True})
        _receive_until(ws, lambda m: m["type"] == "permission")

        ws.send_json({"type": "start", "topic": "Photosynthesis"})
        _receive_until(ws, lambda m: m["type"] == "record" and m["action"] == "start")
        ws.send_bytes(b"\x1a\x45\xdf\xa3" * 256)
        ws.send_json({"type": "recording_started"})

        grant = _receive_until(ws, lambda m: m["type"] == "broadcast")
        assert grant["grant"]["room_name"] == "demo-sess-1"
        _receive_until(ws, lambda m: m["type"] == "state" and m["voice"] == "connected")
        assert store.sessions["sess-1"].live_view_active

        clock.now = 45.0
        _receive_until(ws, lambda m: m["type"] == "state" and m["can_end"])
        ws.send_json({"type": "stop"})

        _receive_until(ws, lambda m: m["type"] == "record" and m["action"] == "stop")
        ws.send_bytes(b"\x00" * 256)
        ws.send_json({"type": "recording_stopped"})

        final = _receive_until(ws, lambda m: m["type"] == "state" and m["phase"] == "completed")

    assert final["result"]["duration_seconds"] == 45
    assert artifacts.uploads[0][2] == 4 * 256 + 256

    assert len(evaluator.evaluate_calls) == 1
    order, submission = evaluator.evaluate_calls[0]
    assert order == 5
    assert submission.recording_ref == "mock-interviews/sess-1/stage-5.webm"
    assert submission.duration_seconds == 45
    assert submission.demo_topic == "Photosynthesis"
    assert [m.content for m in submission.transcript] == [
        "Welcome! What will you teach today?",
        "Today we study photosynthesis.",
    ]

    voice = voices[0]
    assert CLOSING_MESSAGE in voice.updates
    assert voice.disconnected

    session = store.sessions["sess-1"]
    assert session.live_view_active is False
    assert session.live_view_token is None
    assert session.current_stage_order == 6
    assert notifier.management == ["demo_started", "demo_feedback"]

    with client.websocket_connect("/ws/stage/sess-1/5?token=test-token") as ws:
        reopened = ws.receive_json()
    assert reopened["type"] == "completed"
    assert reopened["result"]["recording_ref"] == "mock-interviews/sess-1/stage-5.webm"
