"""Pytest configuration and fixtures."""
import pytest

from interview_roleplay.core.factory import scripted_factory
from interview_roleplay.core.orchestrator import SessionOrchestrator
from interview_roleplay.core.recorder import MemoryRecorder
from interview_roleplay.core.scripted import Script, default_script
from interview_roleplay.consts import DEFAULT_END_MARKER

from tests.mocks.sink import MessageSink
from tests.mocks.transcriber import MockWhisperTranscriber
from tests.mocks.llm import create_mock_llm_with_responses


@pytest.fixture
def mock_transcriber():
    """Create a mock Whisper transcriber."""
    return MockWhisperTranscriber(mock_response="I am the career advisor supporting Nguyen today")


@pytest.fixture
def mock_llm():
    """Create a mock chat model with predefined turns."""
    return create_mock_llm_with_responses([
        "Welcome. Please introduce yourself.",
        "Thank you. What are your strengths?",
    ])


@pytest.fixture
def script() -> Script:
    """The built-in scripted interview, ending with the end marker."""
    return default_script(DEFAULT_END_MARKER)


@pytest.fixture
def fast_factory(script):
    """Scripted agents with no artificial delays."""
    return scripted_factory(script, chunk_size=8, interval_s=0, ready_delay_s=0)


@pytest.fixture
def sink():
    return MessageSink()


@pytest.fixture
def recorder():
    return MemoryRecorder()


@pytest.fixture
async def orchestrator(fast_factory, sink, recorder):
    """A session orchestrator wired to scripted agents; closed after the test."""
    orch = SessionOrchestrator(fast_factory, sink, session_id="test-session-123", recorder=recorder)
    yield orch
    await orch.shutdown()
