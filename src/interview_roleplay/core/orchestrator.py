"""
Session orchestrator: one per client connection.

Owns the turn state machine and transcript log of a session, opens the agent
connections its pattern needs, relays agent output to the client and decides
who speaks next. Client messages and agent callbacks are processed on the
event loop thread one at a time, so turn state never needs a lock.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from pydantic import ValidationError

from interview_roleplay.consts import (
    DEFAULT_ABORT_MARKER,
    DEFAULT_END_MARKER,
    LEGACY_SOURCE_CANDIDATE,
    LEGACY_SOURCE_HUMAN,
    LEGACY_SOURCE_INTERVIEWER,
)
from interview_roleplay.core.connection import AgentCallbacks, AgentConnection
from interview_roleplay.core.errors import RoleplayError
from interview_roleplay.core.events import ResponseDone
from interview_roleplay.core.factory import ConnectionFactory
from interview_roleplay.core.feedback import format_text, to_payload
from interview_roleplay.core.patterns import PatternConfig, get_pattern_config
from interview_roleplay.core.personas import PersonaConfig, build_instructions, display_name
from interview_roleplay.core.recorder import NullRecorder, SessionRecorder
from interview_roleplay.core.scoring import EvaluationResult, ScoringEngine
from interview_roleplay.core.transcript import TranscriptEntry, TranscriptLog
from interview_roleplay.core.turns import TurnStateMachine
from interview_roleplay.core.types import (
    AdvanceTrigger,
    EndReason,
    Mode,
    Pattern,
    Phase,
    Role,
    Target,
    other_agent,
)
from interview_roleplay.schemas import (
    AnyClientMessage,
    EndSession,
    HumanAudioChunk,
    HumanAudioCommit,
    HumanSpeakStart,
    HumanText,
    LegacyAudio,
    LegacyAudioPlaybackDone,
    LegacyProceedToNext,
    LegacyStartInterview,
    LegacyUserDoneSpeaking,
    LegacyUserWillSpeak,
    NextTurn,
    PlaybackDone,
    SetMode,
    StartSession,
    parse_client_message,
)

logger = logging.getLogger(__name__)

Send = Callable[[Dict[str, Any]], None]

LEGACY_SOURCES = {
    Role.INTERVIEWER: LEGACY_SOURCE_INTERVIEWER,
    Role.CANDIDATE: LEGACY_SOURCE_CANDIDATE,
    Role.HUMAN: LEGACY_SOURCE_HUMAN,
}

AGENT_PHASES = {Phase.INTERVIEWER: Role.INTERVIEWER, Phase.CANDIDATE: Role.CANDIDATE}


class SessionOrchestrator:
    def __init__(
        self,
        connection_factory: ConnectionFactory,
        send: Send,
        *,
        session_id: Optional[str] = None,
        recorder: Optional[SessionRecorder] = None,
        scoring: Optional[ScoringEngine] = None,
        end_marker: str = DEFAULT_END_MARKER,
        abort_marker: str = DEFAULT_ABORT_MARKER,
        default_mode: Mode = Mode.STEP,
        default_pattern: Pattern = Pattern.PATTERN2,
        advance_trigger: AdvanceTrigger = AdvanceTrigger.AUDIO_DONE,
        max_turns: int = 0,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex
        self.connection_factory = connection_factory
        self.recorder: SessionRecorder = recorder or NullRecorder()
        self.scoring = scoring or ScoringEngine()
        self.end_marker = end_marker
        self.abort_marker = abort_marker
        self.default_mode = default_mode
        self.default_pattern = default_pattern
        self.advance_trigger = advance_trigger
        self.max_turns = max_turns
        self._out = send

        self.turns = TurnStateMachine(default_mode)
        self.transcript = TranscriptLog()
        self.connections: Dict[Role, AgentConnection] = {}
        self.config: Optional[PatternConfig] = None
        self.persona = PersonaConfig()
        self.end_reason: Optional[EndReason] = None
        self.evaluation: Optional[EvaluationResult] = None

        self._ready: Dict[Role, bool] = {}
        self._pending_start = False
        self._started_at: Optional[datetime] = None
        # agent whose response is streaming
        self._in_flight: Optional[Role] = None
        self._awaiting_playback: Optional[Role] = None
        self._retry_role: Optional[Role] = None
        # agent whose input transcription stands for the moderator's speech
        self._listener: Optional[Role] = None
        self._shutting_down = False
        self._background: Set[asyncio.Task] = set()

        self.handlers: Dict[type, Callable[[Any], Awaitable[None]]] = {
            StartSession: self._on_start_session,
            SetMode: self._on_set_mode,
            NextTurn: self._on_next_turn,
            HumanText: self._on_human_text,
            HumanAudioChunk: self._on_human_audio_chunk,
            HumanAudioCommit: self._on_human_audio_commit,
            HumanSpeakStart: self._on_human_speak_start,
            PlaybackDone: self._on_playback_done,
            EndSession: self._on_end_session,
            LegacyStartInterview: self._on_legacy_start,
            LegacyAudio: self._on_legacy_audio,
            LegacyAudioPlaybackDone: self._on_legacy_playback_done,
            LegacyProceedToNext: self._on_next_turn,
            LegacyUserWillSpeak: self._on_human_speak_start,
            LegacyUserDoneSpeaking: self._on_legacy_done_speaking,
        }

    # ------------------------------------------------------------------ state

    @property
    def ended(self) -> bool:
        return self.end_reason is not None

    @property
    def started(self) -> bool:
        return self.turns.started

    def _all_ready(self) -> bool:
        return self.config is not None and all(self._ready.get(r, False) for r in self.config.agents)

    def _name(self, role: Role) -> str:
        return self.transcript.display_name(role)

    # --------------------------------------------------------------- outbound

    def _send(self, msg: Dict[str, Any]) -> None:
        self._out(msg)

    def _send_error(self, message: str) -> None:
        self._send({"type": "error", "message": message})

    def _publish_turn_state(self, reason: Optional[EndReason] = None) -> None:
        st = self.turns.state
        self._send({"type": "turn_state", **st.to_payload()})
        legacy: Dict[str, Any] = {"type": "phase_change", "phase": st.phase.value}
        if st.current_speaker is not None:
            legacy["speaker"] = st.current_speaker.value
        if reason is not None:
            legacy["reason"] = reason.value
        self._send(legacy)

    def _send_committed(self, entry: TranscriptEntry) -> None:
        self._send({"type": "transcript_done", "speaker": entry.speaker.value, "text": entry.text})
        self._send({
            "type": "transcript",
            "source": LEGACY_SOURCES[entry.speaker],
            "name": entry.display_name,
            "text": entry.text,
        })

    def _record(self, method: str, *args: Any) -> None:
        coro = getattr(self.recorder, method)(*args)
        task = asyncio.get_running_loop().create_task(coro, name=f"recorder:{method}")
        self._background.add(task)
        task.add_done_callback(partial(self._recorded, method))

    def _recorded(self, method: str, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Recorder %s failed for session %s: %s", method, self.session_id, exc, exc_info=exc)

    # ---------------------------------------------------------- client inbound

    async def handle_client_message(self, raw: str | bytes) -> None:
        try:
            msg = parse_client_message(raw)
        except ValidationError as e:
            logger.warning("Dropping malformed client message: %s", e.errors(include_url=False)[:3])
            self._send_error("Malformed message ignored")
            return
        await self.dispatch(msg)

    async def dispatch(self, msg: AnyClientMessage) -> None:
        handler = self.handlers[type(msg)]
        try:
            await handler(msg)
        except RoleplayError as e:
            logger.warning("Session %s: %s failed: %s", self.session_id, msg.type, e)
            self._send_error(str(e))

    async def _on_start_session(self, msg: StartSession) -> None:
        if self.ended:
            self._send_error("Session has ended")
            return
        if self.config is not None:
            logger.info("Session %s: duplicate start ignored", self.session_id)
            return

        self.turns.set_mode(msg.mode or self.default_mode)
        self.config = get_pattern_config(msg.pattern or self.default_pattern, msg.japanese_level)
        self.persona = msg.persona or PersonaConfig()
        for role in self.config.participants:
            self.transcript.set_display_name(role, display_name(role, self.persona))

        logger.info(
            "Session %s: starting %s in %s mode",
            self.session_id, self.config.pattern, self.turns.mode,
        )
        self._pending_start = True
        self._send({"type": "pattern_info", **self.config.to_payload()})
        await self._open_connections()
        if self._pending_start:
            self._send({"type": "waiting_for_sessions"})

    async def _on_legacy_start(self, msg: LegacyStartInterview) -> None:
        await self._on_start_session(StartSession(type="start_session"))

    async def _on_set_mode(self, msg: SetMode) -> None:
        self.turns.set_mode(msg.mode)
        self._publish_turn_state()

    async def _on_next_turn(self, msg: NextTurn | LegacyProceedToNext) -> None:
        if self.ended or not self.turns.waiting_for_next:
            return
        if self._retry_role is not None:
            self.turns.set_speaker(self._retry_role)
        elif len(self.config.agents) == 1:
            self.turns.set_speaker(self.config.agents[0])
        else:
            self.turns.on_next_turn()
        self._publish_turn_state()
        self._request_current()

    async def _on_human_speak_start(self, msg: HumanSpeakStart | LegacyUserWillSpeak) -> None:
        if self.ended or not self.started:
            return
        self._begin_human_turn()

    async def _on_human_text(self, msg: HumanText) -> None:
        targets = self._targets(msg.target)
        if targets is None:
            return
        self._begin_human_turn()
        entry = self.transcript.commit(Role.HUMAN, msg.text)
        if entry is not None:
            self._record("add_transcript", self.session_id, entry)
            self._send_committed(entry)
        context = f"[{self._name(Role.HUMAN)}]: {msg.text}"
        for role in targets:
            self.connections[role].add_text_message(context)
        self._finish_human_turn()

    async def _on_human_audio_chunk(self, msg: HumanAudioChunk) -> None:
        self._append_audio(msg.target, msg.audio_base64)

    async def _on_legacy_audio(self, msg: LegacyAudio) -> None:
        self._append_audio(Target.BOTH, msg.data)

    async def _on_human_audio_commit(self, msg: HumanAudioCommit) -> None:
        self._commit_audio(msg.target)

    async def _on_legacy_done_speaking(self, msg: LegacyUserDoneSpeaking) -> None:
        self._commit_audio(Target.BOTH)

    async def _on_playback_done(self, msg: PlaybackDone) -> None:
        role = self._awaiting_playback
        if role is None or self.ended:
            return
        if msg.speaker is not None and msg.speaker is not role:
            return
        self._complete_turn(role)

    async def _on_legacy_playback_done(self, msg: LegacyAudioPlaybackDone) -> None:
        await self._on_playback_done(PlaybackDone(type="playback_done"))

    async def _on_end_session(self, msg: EndSession) -> None:
        self._end(EndReason.NORMAL, cancel=True)

    # ------------------------------------------------------------ human turns

    def _targets(self, target: Target) -> Optional[List[Role]]:
        if self.ended:
            logger.debug("Session %s: human input after end ignored", self.session_id)
            return None
        if not self.started:
            self._send_error("Session has not started")
            return None
        roles = [r for r in target.roles() if r in self.connections]
        if not roles:
            self._send_error(f"No {target.value} agent in this session")
            return None
        return roles

    def _begin_human_turn(self) -> None:
        self._cancel_in_flight()
        if self.turns.phase is not Phase.USER_SPEAKING:
            self.turns.on_human_speak_start()
            self._publish_turn_state()

    def _finish_human_turn(self) -> None:
        if not self.turns.on_human_speak_done():
            return
        if self.turns.mode is Mode.AUTO:
            nxt = Role.INTERVIEWER if self.config.includes(Role.INTERVIEWER) else self.config.agents[0]
            self.turns.set_speaker(nxt)
            self._publish_turn_state()
            self._request_current()
        else:
            self._publish_turn_state()

    def _append_audio(self, target: Target, audio: str) -> None:
        targets = self._targets(target)
        if targets is None:
            return
        self._begin_human_turn()
        self._listener = targets[0]
        for role in targets:
            self.connections[role].append_audio(audio)

    def _commit_audio(self, target: Target) -> None:
        targets = self._targets(target)
        if targets is None:
            return
        self._listener = targets[0]
        for role in targets:
            self.connections[role].commit_audio()
        self._finish_human_turn()

    # ------------------------------------------------------------ agent turns

    async def _open_connections(self) -> None:
        for role in self.config.agents:
            instructions = build_instructions(
                role,
                self.config,
                self.persona,
                end_marker=self.end_marker,
                abort_marker=self.abort_marker,
            )
            conn = self.connection_factory(role, instructions, self._callbacks_for(role))
            self.connections[role] = conn
            self._ready[role] = False
            await conn.connect()

    def _callbacks_for(self, role: Role) -> AgentCallbacks:
        return AgentCallbacks(
            on_session_ready=partial(self._on_agent_ready, role),
            on_audio_delta=partial(self._on_audio_delta, role),
            on_audio_done=partial(self._on_audio_done, role),
            on_transcript_delta=partial(self._on_transcript_delta, role),
            on_transcript_done=partial(self._on_transcript_done, role),
            on_input_transcript_delta=partial(self._on_input_transcript_delta, role),
            on_input_transcript_done=partial(self._on_input_transcript_done, role),
            on_response_done=partial(self._on_response_done, role),
            on_error=partial(self._on_agent_error, role),
            on_close=partial(self._on_agent_close, role),
        )

    def _on_agent_ready(self, role: Role) -> None:
        self._ready[role] = True
        logger.info("Session %s: %s agent ready", self.session_id, role)
        if self._pending_start and self._all_ready():
            self._pending_start = False
            self._begin()

    def _begin(self) -> None:
        cfg = self.config
        self._started_at = datetime.now(timezone.utc)
        self._send({
            "type": "session_ready",
            "pattern": cfg.pattern.value,
            "japaneseLevel": cfg.japanese_level.value if cfg.japanese_level else None,
            "participants": [r.value for r in cfg.participants],
        })
        self._send({"type": "sessions_ready"})
        self._record("start_session", self.session_id, cfg.pattern.value, self.turns.mode.value)
        self.turns.start(cfg.first_speaker)
        self._publish_turn_state()
        self._request(cfg.first_speaker)

    def _request_current(self) -> None:
        role = AGENT_PHASES.get(self.turns.phase)
        if role is not None:
            self._request(role)

    def _request(self, role: Role) -> bool:
        conn = self.connections.get(role)
        if conn is None or not conn.ready:
            self._send_error(f"{self._name(role)} is not connected")
            self._hold_for_retry(role)
            return False
        try:
            conn.request_response()
        except RoleplayError as e:
            logger.warning("Session %s: %s response request failed: %s", self.session_id, role, e)
            self._send_error(str(e))
            self._hold_for_retry(role)
            return False
        self._in_flight = role
        self._retry_role = None
        return True

    def _hold_for_retry(self, role: Role) -> None:
        # the turn is not advanced; the next next_turn asks the same agent again
        self._in_flight = None
        self._retry_role = role
        if self.turns.to_user_choice():
            self._publish_turn_state()

    def _cancel_in_flight(self) -> None:
        role = self._in_flight
        if role is None:
            return
        self._in_flight = None
        self._awaiting_playback = None
        conn = self.connections.get(role)
        if conn is not None:
            conn.cancel_response()

    def _complete_turn(self, role: Role) -> None:
        self._in_flight = None
        self._awaiting_playback = None
        self.turns.on_agent_speaking_done(role)
        if self.turns.should_end_by_turn_limit(self.max_turns):
            logger.info("Session %s: turn limit %d reached", self.session_id, self.max_turns)
            self._end(EndReason.NORMAL)
            return
        nxt = AGENT_PHASES.get(self.turns.phase)
        if nxt is not None and not self.config.includes(nxt):
            self.turns.to_user_choice()
        self._publish_turn_state()
        self._request_current()

    def _agent_turn_finished(self, role: Role) -> None:
        if self._in_flight is not role or self._awaiting_playback is role:
            return
        if self.advance_trigger is AdvanceTrigger.PLAYBACK_DONE:
            self._awaiting_playback = role
            return
        self._complete_turn(role)

    # ---------------------------------------------------------- agent events

    def _on_transcript_delta(self, role: Role, text: str) -> None:
        if self.ended:
            return
        self.transcript.add_delta(role, text)
        self._send({"type": "transcript_delta", "speaker": role.value, "textDelta": text})

    def _on_transcript_done(self, role: Role, text: str) -> None:
        if self.ended:
            return
        text = text or self.transcript.get_pending_delta(role)
        entry = self.transcript.commit(role, text)
        if entry is None:
            return
        self._record("add_transcript", self.session_id, entry)
        self._send_committed(entry)

        other = other_agent(role)
        if other in self.connections and text:
            self.connections[other].add_text_message(f"[{entry.display_name}]: {text}")

        if self.end_marker in text:
            logger.info("Session %s: end marker from %s", self.session_id, role)
            self._end(EndReason.NORMAL)
        elif self.abort_marker in text:
            logger.info("Session %s: abort marker from %s", self.session_id, role)
            self._end(EndReason.ABORTED)

    def _on_audio_delta(self, role: Role, audio: str) -> None:
        if self.turns.phase is not Phase(role.value):
            return
        self._send({"type": "audio_delta", "speaker": role.value, "audioBase64": audio})
        self._send({"type": "audio", "source": LEGACY_SOURCES[role], "data": audio})

    def _on_audio_done(self, role: Role) -> None:
        if self.ended:
            return
        self._send({"type": "audio_done", "speaker": role.value})
        self._agent_turn_finished(role)

    def _on_response_done(self, role: Role, event: ResponseDone) -> None:
        if self.ended:
            return
        if event.completed:
            # text-only responses never report audio done
            self._agent_turn_finished(role)
            return
        if event.status == "cancelled":
            if self._in_flight is role:
                self._in_flight = None
            return
        if self._in_flight is not role:
            return
        logger.warning(
            "Session %s: %s response %s (%s) %s",
            self.session_id, role, event.status, event.error_code, event.error_message,
        )
        self._send_error(f"{self._name(role)} response failed: {event.error_message or event.status}")
        self._hold_for_retry(role)

    def _on_input_transcript_delta(self, role: Role, text: str) -> None:
        if self.ended or role is not self._listener:
            return
        self.transcript.add_delta(Role.HUMAN, text)
        self._send({"type": "transcript_delta", "speaker": Role.HUMAN.value, "textDelta": text})

    def _on_input_transcript_done(self, role: Role, text: str) -> None:
        if self.ended or role is not self._listener:
            return
        text = text.strip()
        if not text:
            return
        entry = self.transcript.commit(Role.HUMAN, text)
        if entry is not None:
            self._record("add_transcript", self.session_id, entry)
            self._send_committed(entry)

    def _on_agent_error(self, role: Role, message: str) -> None:
        if self._shutting_down:
            return
        self._send_error(f"{self._name(role)}: {message}")

    def _on_agent_close(self, role: Role) -> None:
        self._ready[role] = False
        if self._in_flight is role:
            self._in_flight = None
        if self._shutting_down or self.ended:
            return
        logger.warning("Session %s: %s agent disconnected", self.session_id, role)
        self._send_error(f"{self._name(role)} disconnected")

    # ------------------------------------------------------------ termination

    def _end(self, reason: EndReason, *, cancel: bool = False) -> None:
        if self.ended:
            return
        self.end_reason = reason
        if cancel:
            self._cancel_in_flight()
        self._in_flight = None
        self._awaiting_playback = None
        self._pending_start = False
        self.turns.end()
        self.transcript.freeze()
        self._publish_turn_state(reason)
        logger.info("Session %s ended (%s) after %d entries", self.session_id, reason, len(self.transcript))
        if self._started_at is None:
            return
        self._record("end_session", self.session_id, reason.value)
        self._evaluate()

    def _evaluate(self) -> None:
        try:
            result = self.scoring.evaluate(
                self.transcript.get_all(),
                session_id=self.session_id,
                started_at=self._started_at,
            )
            payload = to_payload(result)
        except Exception:
            logger.exception("Session %s: evaluation failed", self.session_id)
            self._send_error("Evaluation failed")
            return
        self.evaluation = result
        self._send({"type": "evaluation_result", "result": payload})
        self._record("save_evaluation", self.session_id, payload)
        logger.debug("Session %s evaluation:\n%s", self.session_id, format_text(result))

    async def shutdown(self) -> None:
        """Close every agent connection. Called when the client goes away."""
        self._shutting_down = True
        self._pending_start = False
        conns = list(self.connections.values())
        results = await asyncio.gather(*(c.close() for c in conns), return_exceptions=True)
        for conn, res in zip(conns, results):
            if isinstance(res, BaseException):
                logger.warning("Session %s: closing %s failed: %s", self.session_id, conn.role, res)
        self.connections.clear()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        logger.info("Session %s shut down", self.session_id)
