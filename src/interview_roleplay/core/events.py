"""
Canonical form of upstream agent events.

Realtime endpoints emit many vendor event types (and renamed them between API
versions). Everything downstream only sees the ten event classes below.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Union


@dataclass(frozen=True, slots=True)
class SessionReady:
    session_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class AudioDelta:
    audio: str


@dataclass(frozen=True, slots=True)
class AudioDone:
    pass


@dataclass(frozen=True, slots=True)
class TranscriptDelta:
    text: str


@dataclass(frozen=True, slots=True)
class TranscriptDone:
    text: str


@dataclass(frozen=True, slots=True)
class ResponseDone:
    status: str
    error_message: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.status == "completed"


@dataclass(frozen=True, slots=True)
class InputTranscriptDelta:
    text: str


@dataclass(frozen=True, slots=True)
class InputTranscriptDone:
    text: str


@dataclass(frozen=True, slots=True)
class Error:
    message: str
    code: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Unknown:
    pass


NormalizedEvent = Union[
    SessionReady,
    AudioDelta,
    AudioDone,
    TranscriptDelta,
    TranscriptDone,
    ResponseDone,
    InputTranscriptDelta,
    InputTranscriptDone,
    Error,
    Unknown,
]

UNKNOWN = Unknown()


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _session_ready(raw: Mapping[str, Any]) -> NormalizedEvent:
    return SessionReady(session_id=_opt_str(_mapping(raw.get("session")).get("id")))


def _response_done(raw: Mapping[str, Any]) -> NormalizedEvent:
    response = _mapping(raw.get("response"))
    error = _mapping(_mapping(response.get("status_details")).get("error"))
    return ResponseDone(
        status=_str(response.get("status")) or "unknown",
        error_message=_opt_str(error.get("message")),
        error_code=_opt_str(error.get("code")),
    )


def _error(raw: Mapping[str, Any]) -> NormalizedEvent:
    error = _mapping(raw.get("error"))
    return Error(
        message=_str(error.get("message")) or "Unknown upstream error",
        code=_opt_str(error.get("code")),
    )


_Extractor = Callable[[Mapping[str, Any]], NormalizedEvent]

EVENT_TYPE_MAP: Dict[str, _Extractor] = {
    "session.updated": _session_ready,

    "response.audio.delta": lambda raw: AudioDelta(audio=_str(raw.get("delta"))),
    "response.output_audio.delta": lambda raw: AudioDelta(audio=_str(raw.get("delta"))),
    "response.audio.done": lambda raw: AudioDone(),
    "response.output_audio.done": lambda raw: AudioDone(),

    "response.audio_transcript.delta": lambda raw: TranscriptDelta(text=_str(raw.get("delta"))),
    "response.output_audio_transcript.delta": lambda raw: TranscriptDelta(text=_str(raw.get("delta"))),
    "response.text.delta": lambda raw: TranscriptDelta(text=_str(raw.get("delta"))),
    "response.output_text.delta": lambda raw: TranscriptDelta(text=_str(raw.get("delta"))),
    "response.audio_transcript.done": lambda raw: TranscriptDone(text=_str(raw.get("transcript"))),
    "response.output_audio_transcript.done": lambda raw: TranscriptDone(text=_str(raw.get("transcript"))),
    "response.text.done": lambda raw: TranscriptDone(text=_str(raw.get("text"))),
    "response.output_text.done": lambda raw: TranscriptDone(text=_str(raw.get("text"))),

    "response.done": _response_done,

    "conversation.item.input_audio_transcription.delta":
        lambda raw: InputTranscriptDelta(text=_str(raw.get("delta"))),
    "conversation.item.input_audio_transcription.completed":
        lambda raw: InputTranscriptDone(text=_str(raw.get("transcript"))),

    "error": _error,
}

NOISY_EVENT_TYPES = frozenset({
    "response.audio.delta",
    "response.output_audio.delta",
    "response.audio_transcript.delta",
    "response.output_audio_transcript.delta",
    "rate_limits.updated",
    "input_audio_buffer.speech_started",
    "input_audio_buffer.speech_stopped",
})


def event_type(raw: Any) -> str:
    if isinstance(raw, Mapping):
        return _str(raw.get("type"))
    return ""


def normalize_event(raw: Any) -> NormalizedEvent:
    """Map one decoded upstream message to its canonical event. Never raises."""
    extractor = EVENT_TYPE_MAP.get(event_type(raw))
    if extractor is None:
        return UNKNOWN
    return extractor(raw)


def should_log(raw: Any) -> bool:
    return event_type(raw) not in NOISY_EVENT_TYPES
