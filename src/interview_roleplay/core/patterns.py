from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from interview_roleplay.core.types import JapaneseLevel, Pattern, Role


@dataclass(frozen=True, slots=True)
class PatternConfig:
    pattern: Pattern
    title: str
    agents: tuple[Role, ...]
    first_speaker: Role
    japanese_level: Optional[JapaneseLevel] = None

    @property
    def participants(self) -> tuple[Role, ...]:
        return (Role.HUMAN, *self.agents)

    @property
    def uses_level(self) -> bool:
        return Role.CANDIDATE in self.agents

    def includes(self, role: Role) -> bool:
        return role in self.agents

    def to_payload(self) -> dict:
        return {
            "pattern": self.pattern.value,
            "title": self.title,
            "participants": [r.value for r in self.participants],
            "firstSpeaker": self.first_speaker.value,
            "japaneseLevel": self.japanese_level.value if self.japanese_level else None,
        }


PATTERNS: Dict[Pattern, PatternConfig] = {
    Pattern.PATTERN1: PatternConfig(
        pattern=Pattern.PATTERN1,
        title="Attendance check and self-introduction practice",
        agents=(Role.CANDIDATE,),
        first_speaker=Role.CANDIDATE,
    ),
    Pattern.PATTERN2: PatternConfig(
        pattern=Pattern.PATTERN2,
        title="Interview with employer and candidate",
        agents=(Role.INTERVIEWER, Role.CANDIDATE),
        first_speaker=Role.INTERVIEWER,
    ),
    Pattern.PATTERN3: PatternConfig(
        pattern=Pattern.PATTERN3,
        title="Hearing and closing with the employer",
        agents=(Role.INTERVIEWER,),
        first_speaker=Role.INTERVIEWER,
    ),
}


def get_pattern_config(pattern: Pattern, japanese_level: Optional[JapaneseLevel] = None) -> PatternConfig:
    base = PATTERNS[pattern]
    if not base.uses_level:
        return base
    return PatternConfig(
        pattern=base.pattern,
        title=base.title,
        agents=base.agents,
        first_speaker=base.first_speaker,
        japanese_level=japanese_level or JapaneseLevel.N4,
    )
