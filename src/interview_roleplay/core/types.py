from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    INTERVIEWER = "interviewer"
    CANDIDATE = "candidate"
    HUMAN = "human"


AGENT_ROLES = (Role.INTERVIEWER, Role.CANDIDATE)


class Target(StrEnum):
    INTERVIEWER = "interviewer"
    CANDIDATE = "candidate"
    BOTH = "both"

    def roles(self) -> tuple[Role, ...]:
        if self is Target.BOTH:
            return AGENT_ROLES
        return (Role(self.value),)


class Phase(StrEnum):
    WAITING = "waiting"
    INTERVIEWER = "interviewer"
    CANDIDATE = "candidate"
    USER_CHOICE = "user_choice"
    USER_SPEAKING = "user_speaking"
    ENDED = "ended"


class Mode(StrEnum):
    STEP = "step"
    AUTO = "auto"


class EndReason(StrEnum):
    NORMAL = "normal"
    ABORTED = "aborted"


class Pattern(StrEnum):
    PATTERN1 = "pattern1"
    PATTERN2 = "pattern2"
    PATTERN3 = "pattern3"


class JapaneseLevel(StrEnum):
    N5 = "N5"
    N4 = "N4"
    N3 = "N3"
    N2 = "N2"
    N1 = "N1"


class AdvanceTrigger(StrEnum):
    AUDIO_DONE = "audio_done"
    PLAYBACK_DONE = "playback_done"


def other_agent(role: Role) -> Role | None:
    if role is Role.INTERVIEWER:
        return Role.CANDIDATE
    if role is Role.CANDIDATE:
        return Role.INTERVIEWER
    return None
