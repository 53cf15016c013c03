from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from typing import Any, List, Optional, Protocol

import anyio
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from interview_roleplay.core.connection import AgentCallbacks, AgentConnection
from interview_roleplay.core.types import Role

logger = logging.getLogger(__name__)


class Pcm16Transcriber(Protocol):
    def transcribe_pcm16(self, pcm: bytes, sample_rate: int = 24000) -> str:
        ...


def _failed(message: str, code: str) -> dict:
    return {
        "type": "response.done",
        "response": {"status": "failed", "status_details": {"error": {"message": message, "code": code}}},
    }


class ChatAgentConnection(AgentConnection):
    """
    Text-only agent driven by a chat-completion model.

    Turns are streamed as text events and end with an empty audio-done so the
    orchestrator advances exactly as it does for voiced agents. Moderator audio
    is buffered and transcribed with Whisper when committed.
    """

    def __init__(
        self,
        role: Role,
        callbacks: AgentCallbacks,
        *,
        instructions: str,
        llm: BaseChatModel,
        transcriber: Optional[Pcm16Transcriber] = None,
        sample_rate: int = 24000,
    ) -> None:
        super().__init__(role, callbacks)
        self.instructions = instructions
        self.llm = llm
        self.transcriber = transcriber
        self.sample_rate = sample_rate
        self.history: List[BaseMessage] = []
        self._audio = bytearray()
        self._response: Optional[asyncio.Task] = None
        self._transcription: Optional[asyncio.Task] = None

    async def connect(self) -> None:
        self._spawn(self._become_ready(), "ready")

    async def _become_ready(self) -> None:
        await asyncio.sleep(0)
        self._handle_event({"type": "session.updated", "session": {"id": f"chat-{self.role}"}})

    def add_text_message(self, text: str) -> None:
        self.history.append(HumanMessage(content=text))

    def append_audio(self, audio_base64: str) -> None:
        try:
            self._audio.extend(base64.b64decode(audio_base64, validate=True))
        except (binascii.Error, ValueError):
            logger.warning("[%s] dropping undecodable audio chunk", self.role)

    def commit_audio(self) -> None:
        pcm = bytes(self._audio)
        self._audio.clear()
        if not pcm:
            return
        if self.transcriber is None:
            self.callbacks.on_error(f"{self.role} agent cannot transcribe audio")
            return
        self._transcription = self._spawn(self._transcribe(pcm), "transcribe")

    def clear_audio(self) -> None:
        self._audio.clear()

    async def _transcribe(self, pcm: bytes) -> None:
        text = await anyio.to_thread.run_sync(self.transcriber.transcribe_pcm16, pcm, self.sample_rate)
        text = (text or "").strip()
        if text:
            self.history.append(HumanMessage(content=text))
            self._handle_event({"type": "conversation.item.input_audio_transcription.completed", "transcript": text})

    def request_response(self) -> None:
        if self.closed:
            return
        if self._response is not None and not self._response.done():
            logger.warning("[%s] response already in progress, ignoring request", self.role)
            return
        self._response = self._spawn(self._respond(), "response")

    def cancel_response(self) -> None:
        if self._response is None or self._response.done():
            return
        self._response.cancel()
        self._response = None
        self._handle_event({"type": "response.done", "response": {"status": "cancelled"}})

    def _prompt(self) -> List[BaseMessage]:
        return [SystemMessage(content=self.instructions), *self.history]

    async def _respond(self) -> None:
        if self._transcription is not None and not self._transcription.done():
            # the moderator's committed speech must be in the history first
            await asyncio.wait([self._transcription])
        text = ""
        try:
            async for chunk in self.llm.astream(self._prompt()):
                token = _content(chunk)
                if token:
                    text += token
                    self._handle_event({"type": "response.text.delta", "delta": token})
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("[%s] chat completion failed", self.role)
            self._response = None
            self._handle_event(_failed(str(e) or type(e).__name__, type(e).__name__))
            return

        text = text.strip()
        self.history.append(AIMessage(content=text))
        self._response = None
        self._handle_event({"type": "response.text.done", "text": text})
        self._handle_event({"type": "response.audio.done"})
        self._handle_event({"type": "response.done", "response": {"status": "completed"}})

    async def close(self) -> None:
        await self._cancel_tasks()
        self._response = None
        self._notify_closed()


def _content(chunk: Any) -> str:
    content = getattr(chunk, "content", "")
    if isinstance(content, str):
        return content
    # content blocks
    return "".join(b.get("text", "") for b in content if isinstance(b, dict))
