from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Set

from interview_roleplay.core import events
from interview_roleplay.core.types import Role

logger = logging.getLogger(__name__)


def _noop(*_args: Any) -> None:
    return None


@dataclass
class AgentCallbacks:
    """Hooks an AgentConnection calls, always from the event loop thread."""
    on_session_ready: Callable[[], None] = _noop
    on_audio_delta: Callable[[str], None] = _noop
    on_audio_done: Callable[[], None] = _noop
    on_transcript_delta: Callable[[str], None] = _noop
    on_transcript_done: Callable[[str], None] = _noop
    on_input_transcript_delta: Callable[[str], None] = _noop
    on_input_transcript_done: Callable[[str], None] = _noop
    on_response_done: Callable[[events.ResponseDone], None] = _noop
    on_error: Callable[[str], None] = _noop
    on_close: Callable[[], None] = _noop


class AgentConnection(ABC):
    """
    Uniform interface to one streaming conversational agent.

    Implementations feed every upstream message, decoded to a dict, through
    `_handle_event`; the shared dispatch guarantees `on_session_ready` fires at
    most once per connection and `on_close` exactly once after `close()`.

    Per `request_response()` call the agent produces:
        on_transcript_delta* -> on_transcript_done -> on_audio_delta* -> on_audio_done -> on_response_done
    """

    def __init__(self, role: Role, callbacks: AgentCallbacks) -> None:
        self.role = role
        self.callbacks = callbacks
        self._ready = False
        self._ready_fired = False
        self._closed = False
        self._tasks: Set[asyncio.Task] = set()

    @property
    def ready(self) -> bool:
        return self._ready and not self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    async def connect(self) -> None:
        """Start session setup. Returns before the session is usable."""

    @abstractmethod
    def add_text_message(self, text: str) -> None:
        ...

    @abstractmethod
    def append_audio(self, audio_base64: str) -> None:
        ...

    @abstractmethod
    def commit_audio(self) -> None:
        ...

    @abstractmethod
    def clear_audio(self) -> None:
        ...

    @abstractmethod
    def request_response(self) -> None:
        ...

    @abstractmethod
    def cancel_response(self) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=f"{self.role}:{name}")
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Task %s failed", task.get_name(), exc_info=exc)
            self.callbacks.on_error(f"{self.role} agent failed: {exc}")

    async def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        pending = [t for t in self._tasks if t is not current]
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _handle_event(self, raw: Any) -> None:
        if events.should_log(raw):
            logger.debug("[%s] upstream event %s", self.role, events.event_type(raw) or "<untyped>")
        self._dispatch(events.normalize_event(raw))

    def _dispatch(self, event: events.NormalizedEvent) -> None:
        cb = self.callbacks
        match event:
            case events.SessionReady():
                self._ready = True
                if not self._ready_fired:
                    self._ready_fired = True
                    cb.on_session_ready()
            case events.AudioDelta(audio=audio):
                if audio:
                    cb.on_audio_delta(audio)
            case events.AudioDone():
                cb.on_audio_done()
            case events.TranscriptDelta(text=text):
                if text:
                    cb.on_transcript_delta(text)
            case events.TranscriptDone(text=text):
                cb.on_transcript_done(text)
            case events.ResponseDone():
                cb.on_response_done(event)
            case events.InputTranscriptDelta(text=text):
                if text:
                    cb.on_input_transcript_delta(text)
            case events.InputTranscriptDone(text=text):
                cb.on_input_transcript_done(text)
            case events.Error(message=message, code=code):
                logger.warning("[%s] upstream error %s: %s", self.role, code, message)
                cb.on_error(message)
            case events.Unknown():
                pass

    def _notify_closed(self) -> None:
        self._ready = False
        if self._closed:
            return
        self._closed = True
        self.callbacks.on_close()
