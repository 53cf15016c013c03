from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import websockets
from websockets.exceptions import WebSocketException

from interview_roleplay.core import events
from interview_roleplay.core.connection import AgentCallbacks, AgentConnection
from interview_roleplay.core.errors import AgentConnectionError
from interview_roleplay.core.types import Role

logger = logging.getLogger(__name__)


class RealtimeAgentConnection(AgentConnection):
    """
    Agent backed by an OpenAI Realtime websocket session.

    Outbound messages are queued and written by a single sender task so callers
    never await the socket. The session is configured with server-side turn
    detection disabled: the orchestrator decides when each agent speaks.
    """

    def __init__(
        self,
        role: Role,
        callbacks: AgentCallbacks,
        *,
        instructions: str,
        voice: str,
        api_key: str,
        url: str,
        model: str,
        transcription_model: str = "whisper-1",
    ) -> None:
        super().__init__(role, callbacks)
        self.instructions = instructions
        self.voice = voice
        self.api_key = api_key
        self.url = url
        self.model = model
        self.transcription_model = transcription_model
        self._outbox: asyncio.Queue[Dict[str, Any]] = asyncio.Queue()
        self._runner: Optional[asyncio.Task] = None
        # per response: transcript already done, audio done waiting on it
        self._transcript_finished = False
        self._audio_held = False

    @property
    def endpoint(self) -> str:
        sep = "&" if "?" in self.url else "?"
        return f"{self.url}{sep}model={self.model}"

    def session_update(self) -> Dict[str, Any]:
        return {
            "type": "session.update",
            "session": {
                "modalities": ["text", "audio"],
                "instructions": self.instructions,
                "voice": self.voice,
                "input_audio_format": "pcm16",
                "output_audio_format": "pcm16",
                "input_audio_transcription": {"model": self.transcription_model},
                "turn_detection": None,
            },
        }

    async def connect(self) -> None:
        if self._runner is not None:
            return
        self._runner = self._spawn(self._run(), "realtime")

    async def _open(self) -> Any:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "OpenAI-Beta": "realtime=v1",
        }
        try:
            return await websockets.connect(self.endpoint, additional_headers=headers, max_size=None)
        except (OSError, WebSocketException) as e:
            raise AgentConnectionError(f"{self.role} connection error: {e}") from e

    async def _run(self) -> None:
        try:
            ws = await self._open()
            async with ws:
                logger.info("[%s] realtime socket open", self.role)
                await ws.send(json.dumps(self.session_update()))
                sender = asyncio.create_task(self._drain(ws), name=f"{self.role}:sender")
                try:
                    async for message in ws:
                        try:
                            raw = json.loads(message)
                        except json.JSONDecodeError:
                            logger.warning("[%s] dropping non-JSON frame", self.role)
                            continue
                        self._handle_event(raw)
                finally:
                    sender.cancel()
                    await asyncio.gather(sender, return_exceptions=True)
        except AgentConnectionError as e:
            logger.warning("[%s] realtime connect failed: %s", self.role, e)
            self.callbacks.on_error(str(e))
        except (OSError, WebSocketException) as e:
            logger.warning("[%s] realtime connection lost: %s", self.role, e)
            self.callbacks.on_error(f"{self.role} connection lost: {e}")
        finally:
            logger.info("[%s] realtime socket closed", self.role)
            self._notify_closed()

    def _dispatch(self, event: events.NormalizedEvent) -> None:
        """
        The realtime API finishes the audio stream before the transcript.
        `response.audio.done` is held back until the transcript is done, or
        until `response.done` when no transcript arrives.
        """
        match event:
            case events.AudioDone():
                if self._transcript_finished:
                    super()._dispatch(event)
                else:
                    self._audio_held = True
            case events.TranscriptDone():
                super()._dispatch(event)
                self._transcript_finished = True
                self._release_audio_done()
            case events.ResponseDone():
                self._release_audio_done()
                self._transcript_finished = False
                super()._dispatch(event)
            case _:
                super()._dispatch(event)

    def _release_audio_done(self) -> None:
        if self._audio_held:
            self._audio_held = False
            super()._dispatch(events.AudioDone())

    async def _drain(self, ws: Any) -> None:
        while True:
            msg = await self._outbox.get()
            await ws.send(json.dumps(msg))

    def _send(self, msg: Dict[str, Any]) -> None:
        if self.closed:
            logger.debug("[%s] connection closed, dropping %s", self.role, msg.get("type"))
            return
        self._outbox.put_nowait(msg)

    def add_text_message(self, text: str) -> None:
        self._send({
            "type": "conversation.item.create",
            "item": {
                "type": "message",
                "role": "user",
                "content": [{"type": "input_text", "text": text}],
            },
        })

    def append_audio(self, audio_base64: str) -> None:
        self._send({"type": "input_audio_buffer.append", "audio": audio_base64})

    def commit_audio(self) -> None:
        self._send({"type": "input_audio_buffer.commit"})

    def clear_audio(self) -> None:
        self._send({"type": "input_audio_buffer.clear"})

    def request_response(self) -> None:
        self._send({"type": "response.create", "response": {"modalities": ["text", "audio"]}})

    def cancel_response(self) -> None:
        self._send({"type": "response.cancel"})

    async def close(self) -> None:
        await self._cancel_tasks()
        self._notify_closed()
