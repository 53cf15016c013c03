import io
import tempfile
import wave
from dataclasses import dataclass, field
from typing import Optional

from faster_whisper import WhisperModel


def pcm16_to_wav(pcm: bytes, sample_rate: int, channels: int = 1) -> bytes:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as w:
        w.setnchannels(channels)
        w.setsampwidth(2)
        w.setframerate(sample_rate)
        w.writeframes(pcm)
    return buf.getvalue()


@dataclass
class WhisperTranscriber:
    """
    Wrapper around faster-whisper for moderator speech.

    Attributes:
        model_name: Whisper model size (tiny/base/small/medium/large)
        device: Compute device (cpu/cuda)
        compute_type: Quantization type (int8/float16/float32)
        language: Target language code (e.g., 'en', 'ja')
    """
    model_name: str = "small"
    device: str = "cpu"
    compute_type: str = "int8"
    language: Optional[str] = None
    _model: WhisperModel = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._model = WhisperModel(self.model_name, device=self.device, compute_type=self.compute_type)

    def transcribe_bytes(self, audio_bytes: bytes, suffix: str = ".wav") -> str:
        """
        Transcribe an encoded audio file held in memory.

        Args:
            audio_bytes: Encoded audio data
            suffix: File extension hint for audio format

        Returns:
            Transcribed text, segments joined by single spaces
        """
        if not audio_bytes:
            return ""
        with tempfile.NamedTemporaryFile(delete=True, suffix=suffix) as f:
            f.write(audio_bytes)
            f.flush()

            segments, _info = self._model.transcribe(
                f.name,
                language=self.language,
                vad_filter=True,
            )

            parts: list[str] = []
            for seg in segments:
                t = (seg.text or "").strip()
                if t:
                    parts.append(t)
            return " ".join(parts).strip()

    def transcribe_pcm16(self, pcm: bytes, sample_rate: int = 24000) -> str:
        """Transcribe raw mono pcm16, the format clients stream in audio chunks."""
        if not pcm:
            return ""
        return self.transcribe_bytes(pcm16_to_wav(pcm, sample_rate), suffix=".wav")
