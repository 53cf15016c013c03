"""Integration tests for FastAPI endpoints."""
import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from interview_roleplay import __version__
from interview_roleplay.app import build_recorder, create_app
from interview_roleplay.core.factory import scripted_factory
from interview_roleplay.core.recorder import MemoryRecorder, NullRecorder


@pytest.fixture
def app():
    """Create a test FastAPI app."""
    return create_app()


@pytest.fixture
async def client(app):
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def ws_client(app, script):
    """Synchronous client with the lifespan running and scripted agents without delays."""
    with TestClient(app) as tc:
        app.state.connection_factory = scripted_factory(script, chunk_size=16, interval_s=0, ready_delay_s=0)
        yield tc


def receive_until(ws, predicate, limit=500):
    """Read messages until one satisfies `predicate`; returns everything read."""
    seen = []
    for _ in range(limit):
        msg = ws.receive_json()
        seen.append(msg)
        if predicate(msg):
            return seen
    raise AssertionError(f"expected message not received; got types {[m['type'] for m in seen]}")


class TestRootEndpoint:
    """Tests for the root health check endpoint."""

    async def test_root_returns_ok(self, client):
        """Test that root endpoint returns health status."""
        response = await client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == "InterviewRoleplay"
        assert data["version"] == __version__


class TestPatternsEndpoint:
    async def test_lists_all_patterns(self, client):
        response = await client.get("/v1/patterns")

        assert response.status_code == 200
        data = response.json()
        assert [p["pattern"] for p in data] == ["pattern1", "pattern2", "pattern3"]
        by_name = {p["pattern"]: p for p in data}
        assert by_name["pattern1"]["participants"] == ["human", "candidate"]
        assert by_name["pattern1"]["firstSpeaker"] == "candidate"
        assert by_name["pattern2"]["participants"] == ["human", "interviewer", "candidate"]
        assert by_name["pattern3"]["firstSpeaker"] == "interviewer"


class TestSessionSocket:
    """Tests for the /ws session endpoint."""

    def test_step_session_with_evaluation(self, ws_client):
        with ws_client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "start_session", "mode": "step", "pattern": "pattern2"})
            seen = receive_until(ws, lambda m: m["type"] == "turn_state" and m["waitingForNext"])
            types = [m["type"] for m in seen]
            assert types[0] == "pattern_info"
            assert "session_ready" in types
            assert "sessions_ready" in types
            done = [m for m in seen if m["type"] == "transcript_done"]
            assert [m["speaker"] for m in done] == ["interviewer"]

            ws.send_json({"type": "human_text", "text": "Let me confirm your visa and residence status."})
            receive_until(ws, lambda m: m["type"] == "transcript_done" and m["speaker"] == "human")

            ws.send_json({"type": "end_session"})
            seen = receive_until(ws, lambda m: m["type"] == "evaluation_result")
            assert any(m["type"] == "turn_state" and m["phase"] == "ended" for m in seen)
            result = seen[-1]["result"]
            assert set(result) >= {"passed", "grade", "score", "summary", "categories", "strengths", "improvements"}
            assert result["passed"] is False

    def test_malformed_message_keeps_socket_open(self, ws_client):
        with ws_client.websocket_connect("/ws") as ws:
            ws.send_text("{not json")
            assert ws.receive_json() == {"type": "error", "message": "Malformed message ignored"}

            ws.send_json({"type": "start_interview"})
            receive_until(ws, lambda m: m["type"] == "transcript" and m["source"] == "ai_a")

    def test_binary_frames_are_parsed_like_text(self, ws_client):
        with ws_client.websocket_connect("/ws") as ws:
            ws.send_bytes(b"\xff\xfe not json")
            assert ws.receive_json() == {"type": "error", "message": "Malformed message ignored"}

            ws.send_bytes(b'{"type": "start_interview"}')
            receive_until(ws, lambda m: m["type"] == "transcript" and m["source"] == "ai_a")


class TestRecorderSetting:
    def test_lifespan_defaults_to_null_recorder(self, app):
        with TestClient(app):
            assert isinstance(app.state.recorder, NullRecorder)

    def test_memory_recorder_on_request(self):
        assert isinstance(build_recorder("memory"), MemoryRecorder)
        assert isinstance(build_recorder("null"), NullRecorder)
