from __future__ import annotations

from dataclasses import dataclass

from interview_roleplay.core.types import Mode, Phase, Role


@dataclass(frozen=True, slots=True)
class TurnState:
    phase: Phase
    current_speaker: Role | None
    waiting_for_next: bool
    mode: Mode
    turn_count: int
    interviewer_turns: int
    candidate_turns: int
    human_turns: int
    last_agent_speaker: Role | None

    def to_payload(self) -> dict:
        return {
            "currentSpeaker": self.current_speaker.value if self.current_speaker else None,
            "waitingForNext": self.waiting_for_next,
            "phase": self.phase.value,
            "mode": self.mode.value,
            "turnCount": self.turn_count,
        }


class TurnStateMachine:
    """
    Owns who is speaking and whether the session is paused for the moderator.

    Every transition is total: a call that does not apply to the current phase
    leaves the state untouched. Once ended, nothing but reset() changes it.
    `waiting_for_next` is kept true exactly while the phase is user_choice.
    """

    def __init__(self, mode: Mode = Mode.STEP) -> None:
        self._mode = mode
        self._clear()

    def _clear(self) -> None:
        self._phase = Phase.WAITING
        self._speaker: Role | None = None
        self._turn_count = 0
        self._counts = {Role.INTERVIEWER: 0, Role.CANDIDATE: 0, Role.HUMAN: 0}
        self._last_agent: Role | None = None

    @property
    def state(self) -> TurnState:
        return TurnState(
            phase=self._phase,
            current_speaker=self._speaker,
            waiting_for_next=self._phase is Phase.USER_CHOICE,
            mode=self._mode,
            turn_count=self._turn_count,
            interviewer_turns=self._counts[Role.INTERVIEWER],
            candidate_turns=self._counts[Role.CANDIDATE],
            human_turns=self._counts[Role.HUMAN],
            last_agent_speaker=self._last_agent,
        )

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def ended(self) -> bool:
        return self._phase is Phase.ENDED

    @property
    def started(self) -> bool:
        return self._phase is not Phase.WAITING

    @property
    def waiting_for_next(self) -> bool:
        return self._phase is Phase.USER_CHOICE

    def set_mode(self, mode: Mode) -> None:
        self._mode = mode

    def _enter(self, phase: Phase, speaker: Role | None) -> None:
        self._phase = phase
        self._speaker = speaker

    def _speak(self, role: Role) -> None:
        if role is Role.HUMAN:
            self._enter(Phase.USER_SPEAKING, Role.HUMAN)
        else:
            self._enter(Phase(role.value), role)

    def start(self, first_speaker: Role = Role.INTERVIEWER) -> bool:
        if self._phase is not Phase.WAITING:
            return False
        self._speak(first_speaker)
        self._turn_count = 1
        return True

    def on_agent_speaking_done(self, who: Role) -> bool:
        if who not in (Role.INTERVIEWER, Role.CANDIDATE):
            return False
        if self._phase in (Phase.WAITING, Phase.ENDED):
            return False

        self._counts[who] += 1
        self._turn_count += 1
        self._last_agent = who

        if self._mode is Mode.AUTO and who is Role.INTERVIEWER:
            self._speak(Role.CANDIDATE)
        else:
            # auto mode also pauses here after the candidate
            self._enter(Phase.USER_CHOICE, None)
        return True

    def on_next_turn(self) -> bool:
        if self._phase is not Phase.USER_CHOICE:
            return False
        if self._last_agent is Role.INTERVIEWER:
            self._speak(Role.CANDIDATE)
        else:
            self._speak(Role.INTERVIEWER)
        return True

    def on_human_speak_start(self) -> bool:
        if self._phase in (Phase.WAITING, Phase.ENDED):
            return False
        self._speak(Role.HUMAN)
        return True

    def on_human_speak_done(self) -> bool:
        if self._phase is not Phase.USER_SPEAKING:
            return False
        self._counts[Role.HUMAN] += 1
        self._turn_count += 1
        if self._mode is Mode.AUTO:
            self._speak(Role.INTERVIEWER)
        else:
            self._enter(Phase.USER_CHOICE, None)
        return True

    def set_speaker(self, role: Role) -> bool:
        if self._phase in (Phase.WAITING, Phase.ENDED):
            return False
        self._speak(role)
        return True

    def to_user_choice(self) -> bool:
        if self._phase in (Phase.WAITING, Phase.ENDED):
            return False
        self._enter(Phase.USER_CHOICE, None)
        return True

    def end(self) -> None:
        self._enter(Phase.ENDED, None)

    def reset(self) -> None:
        self._clear()

    def should_end_by_turn_limit(self, max_turns: int) -> bool:
        return max_turns > 0 and self._turn_count >= max_turns
