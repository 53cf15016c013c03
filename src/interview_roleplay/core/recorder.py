from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from interview_roleplay.core.transcript import TranscriptEntry


class SessionRecorder(Protocol):
    """Persistence collaborator. Calls are fire-and-forget from the orchestrator."""

    async def start_session(self, session_id: str, pattern: str, mode: str) -> None:
        ...

    async def add_transcript(self, session_id: str, entry: TranscriptEntry) -> None:
        ...

    async def end_session(self, session_id: str, reason: str) -> None:
        ...

    async def save_evaluation(self, session_id: str, payload: Dict[str, Any]) -> None:
        ...


class NullRecorder:
    async def start_session(self, session_id: str, pattern: str, mode: str) -> None:
        return None

    async def add_transcript(self, session_id: str, entry: TranscriptEntry) -> None:
        return None

    async def end_session(self, session_id: str, reason: str) -> None:
        return None

    async def save_evaluation(self, session_id: str, payload: Dict[str, Any]) -> None:
        return None


@dataclass
class SessionRecord:
    session_id: str
    pattern: str
    mode: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    end_reason: Optional[str] = None
    transcripts: List[TranscriptEntry] = field(default_factory=list)
    evaluation: Optional[Dict[str, Any]] = None


class MemoryRecorder:
    """Keeps session records in process memory."""

    def __init__(self) -> None:
        self.sessions: Dict[str, SessionRecord] = {}

    async def start_session(self, session_id: str, pattern: str, mode: str) -> None:
        self.sessions[session_id] = SessionRecord(
            session_id=session_id,
            pattern=pattern,
            mode=mode,
            started_at=datetime.now(timezone.utc),
        )

    def _get(self, session_id: str) -> SessionRecord:
        try:
            return self.sessions[session_id]
        except KeyError:
            raise KeyError(f"Unknown session {session_id!r}") from None

    async def add_transcript(self, session_id: str, entry: TranscriptEntry) -> None:
        self._get(session_id).transcripts.append(entry)

    async def end_session(self, session_id: str, reason: str) -> None:
        rec = self._get(session_id)
        rec.ended_at = datetime.now(timezone.utc)
        rec.end_reason = reason

    async def save_evaluation(self, session_id: str, payload: Dict[str, Any]) -> None:
        self._get(session_id).evaluation = payload
