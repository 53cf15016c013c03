from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from interview_roleplay.core.types import Role


DEFAULT_DISPLAY_NAMES: Dict[Role, str] = {
    Role.INTERVIEWER: "Interviewer",
    Role.CANDIDATE: "Candidate",
    Role.HUMAN: "Career advisor",
}


@dataclass(frozen=True, slots=True)
class TranscriptEntry:
    speaker: Role
    display_name: str
    text: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> dict:
        return {
            "speaker": self.speaker.value,
            "displayName": self.display_name,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
        }


class TranscriptLog:
    """
    Committed utterances in arrival order, plus one in-flight partial per speaker.

    Only commit() adds to the durable log, and it always clears that speaker's
    partial. After freeze() the log refuses further commits so the scored
    transcript cannot change underneath the evaluation.
    """

    def __init__(self, display_names: Optional[Dict[Role, str]] = None) -> None:
        self._names = {**DEFAULT_DISPLAY_NAMES, **(display_names or {})}
        self._entries: List[TranscriptEntry] = []
        self._pending: Dict[Role, str] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def display_name(self, speaker: Role) -> str:
        return self._names.get(speaker, speaker.value)

    def set_display_name(self, speaker: Role, name: str) -> None:
        self._names[speaker] = name

    def add_delta(self, speaker: Role, chunk: str) -> None:
        if self._frozen or not chunk:
            return
        self._pending[speaker] = self._pending.get(speaker, "") + chunk

    def get_pending_delta(self, speaker: Role) -> str:
        return self._pending.get(speaker, "")

    def commit(self, speaker: Role, text: str, display_name: Optional[str] = None) -> Optional[TranscriptEntry]:
        if self._frozen:
            return None
        self._pending.pop(speaker, None)
        entry = TranscriptEntry(
            speaker=speaker,
            display_name=display_name or self.display_name(speaker),
            text=text,
        )
        self._entries.append(entry)
        return entry

    def freeze(self) -> None:
        self._frozen = True
        self._pending.clear()

    def clear(self) -> None:
        self._entries.clear()
        self._pending.clear()
        self._frozen = False

    def get_all(self) -> List[TranscriptEntry]:
        return list(self._entries)

    def get_recent(self, n: int) -> List[TranscriptEntry]:
        if n <= 0:
            return []
        return self._entries[-n:]

    def get_by_speaker(self, speaker: Role) -> List[TranscriptEntry]:
        return [e for e in self._entries if e.speaker is speaker]

    def get_last_by_speaker(self, speaker: Role) -> Optional[TranscriptEntry]:
        for e in reversed(self._entries):
            if e.speaker is speaker:
                return e
        return None

    def get_count_by_speaker(self) -> Dict[Role, int]:
        counts = {role: 0 for role in Role}
        for e in self._entries:
            counts[e.speaker] += 1
        return counts

    def __len__(self) -> int:
        return len(self._entries)

    def to_formatted_text(self) -> str:
        return "\n".join(
            f"[{e.timestamp.strftime('%H:%M:%S')}] {e.display_name}: {e.text}" for e in self._entries
        )

    def to_context_string(self, last_n: int = 10) -> str:
        """Recent history as `[speaker]: text` lines, the form agents receive as context."""
        return "\n".join(f"[{e.display_name}]: {e.text}" for e in self.get_recent(last_n))
