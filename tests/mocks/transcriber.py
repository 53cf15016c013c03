"""Mock Whisper transcriber for testing."""
from dataclasses import dataclass, field


@dataclass
class MockWhisperTranscriber:
    """
    Mock transcriber that returns a predefined response without loading Whisper.

    Attributes:
        mock_response: Text returned for any non-empty audio
        received: pcm payloads passed in, in call order
    """
    mock_response: str = "This is a mock transcription"
    received: list[bytes] = field(default_factory=list)

    def transcribe_bytes(self, audio_bytes: bytes, suffix: str = ".wav") -> str:
        if not audio_bytes:
            return ""
        self.received.append(audio_bytes)
        return self.mock_response

    def transcribe_pcm16(self, pcm: bytes, sample_rate: int = 24000) -> str:
        return self.transcribe_bytes(pcm)
