"""
Deterministic stand-in for a live agent.

Replays scripted lines with the same callback order as the realtime backend,
chunking each line into fixed-size transcript deltas at a fixed interval. Used by
the test suite and by `AGENT_BACKEND=scripted` for offline demos.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Literal, Optional, Sequence

from pydantic import BaseModel, Field

from interview_roleplay.core.connection import AgentCallbacks, AgentConnection
from interview_roleplay.core.errors import ScriptExhaustedError
from interview_roleplay.core.types import Role

logger = logging.getLogger(__name__)

Exhaustion = Literal["loop", "raise"]


@dataclass(frozen=True, slots=True)
class Script:
    interviewer: tuple[str, ...]
    candidate: tuple[str, ...]
    human: tuple[str, ...] = ()

    def lines_for(self, role: Role) -> tuple[str, ...]:
        if role is Role.INTERVIEWER:
            return self.interviewer
        if role is Role.CANDIDATE:
            return self.candidate
        return self.human


class ScriptFile(BaseModel):
    interviewer: List[str] = Field(min_length=1)
    candidate: List[str] = Field(min_length=1)
    human: List[str] = Field(default_factory=list)


def default_script(end_marker: str) -> Script:
    return Script(
        interviewer=(
            "Thank you for coming in today. Could you start by introducing yourself?",
            "I see. Why are you interested in working for our company?",
            "Understood. Do you have any questions about the role or the working conditions?",
            f"That is all from my side. We will contact you about the result. {end_marker}",
        ),
        candidate=(
            "Nice to meet you. My name is Nguyen. I came to Japan three years ago and study business.",
            "I like your products, and I want to use my languages to help customers.",
            "Yes. How many hours do I work each week, and is there training at the start?",
            "Thank you very much for today.",
        ),
    )


def load_script(path: str | Path) -> Script:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Script file not found: {p}")
    data = ScriptFile.model_validate_json(p.read_text(encoding="utf-8"))
    return Script(
        interviewer=tuple(data.interviewer),
        candidate=tuple(data.candidate),
        human=tuple(data.human),
    )


def chunk_text(text: str, size: int) -> List[str]:
    return [text[i:i + size] for i in range(0, len(text), size)]


class ScriptedAgentConnection(AgentConnection):
    def __init__(
        self,
        role: Role,
        callbacks: AgentCallbacks,
        *,
        lines: Sequence[str],
        human_lines: Sequence[str] = (),
        chunk_size: int = 3,
        interval_s: float = 0.03,
        ready_delay_s: float = 0.1,
        response_delay_s: float = 0.0,
        exhaustion: Exhaustion = "loop",
    ) -> None:
        super().__init__(role, callbacks)
        if not lines:
            raise ValueError(f"Scripted {role} needs at least one line")
        self.lines = list(lines)
        self.human_lines = list(human_lines)
        self.chunk_size = max(1, chunk_size)
        self.interval_s = interval_s
        self.ready_delay_s = ready_delay_s
        self.response_delay_s = response_delay_s
        self.exhaustion = exhaustion

        self.received_messages: List[str] = []
        self.received_audio: List[str] = []
        self.committed_audio: List[List[str]] = []
        self.requests = 0
        self.cancels = 0

        self._index = 0
        self._human_index = 0
        self._buffer: List[str] = []
        self._response: Optional[asyncio.Task] = None

    @property
    def responding(self) -> bool:
        return self._response is not None and not self._response.done()

    async def connect(self) -> None:
        self._spawn(self._become_ready(), "ready")

    async def _become_ready(self) -> None:
        await asyncio.sleep(self.ready_delay_s)
        self._handle_event({"type": "session.updated", "session": {"id": f"scripted-{self.role}"}})

    def add_text_message(self, text: str) -> None:
        self.received_messages.append(text)

    def append_audio(self, audio_base64: str) -> None:
        self.received_audio.append(audio_base64)
        self._buffer.append(audio_base64)

    def commit_audio(self) -> None:
        self.committed_audio.append(list(self._buffer))
        self._buffer.clear()
        if self._human_index < len(self.human_lines):
            line = self.human_lines[self._human_index]
            self._human_index += 1
            self._spawn(self._transcribe(line), "input-transcript")

    def clear_audio(self) -> None:
        self._buffer.clear()

    def _next_line(self) -> str:
        if self._index >= len(self.lines):
            if self.exhaustion == "raise":
                raise ScriptExhaustedError(str(self.role), len(self.lines))
            logger.info("[%s] script exhausted, looping to first line", self.role)
            self._index = 0
        line = self.lines[self._index]
        self._index += 1
        return line

    def request_response(self) -> None:
        if self.closed:
            return
        if self.responding:
            logger.warning("[%s] response already in progress, ignoring request", self.role)
            return
        line = self._next_line()
        self.requests += 1
        self._response = self._spawn(self._stream(line), "response")

    def cancel_response(self) -> None:
        if not self.responding:
            return
        self.cancels += 1
        self._response.cancel()
        self._response = None
        self._handle_event({"type": "response.done", "response": {"status": "cancelled"}})

    async def _stream(self, line: str) -> None:
        if self.response_delay_s:
            await asyncio.sleep(self.response_delay_s)
        for chunk in chunk_text(line, self.chunk_size):
            self._handle_event({"type": "response.audio_transcript.delta", "delta": chunk})
            await asyncio.sleep(self.interval_s)
        # cleared before the closing events: a callback may request the next line
        self._response = None
        self._handle_event({"type": "response.audio_transcript.done", "transcript": line})
        self._handle_event({"type": "response.audio.done"})
        self._handle_event({"type": "response.done", "response": {"status": "completed"}})

    async def _transcribe(self, line: str) -> None:
        await asyncio.sleep(0)
        self._handle_event({"type": "conversation.item.input_audio_transcription.delta", "delta": line})
        self._handle_event({"type": "conversation.item.input_audio_transcription.completed", "transcript": line})

    async def close(self) -> None:
        await self._cancel_tasks()
        self._response = None
        self._notify_closed()
