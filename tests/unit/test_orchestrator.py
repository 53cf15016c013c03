"""Unit tests for the session orchestrator, driven by scripted agents."""
import asyncio
import json

import pytest

from interview_roleplay.consts import DEFAULT_ABORT_MARKER, DEFAULT_END_MARKER
from interview_roleplay.core.factory import scripted_factory
from interview_roleplay.core.orchestrator import SessionOrchestrator
from interview_roleplay.core.scripted import Script, ScriptedAgentConnection
from interview_roleplay.core.types import AdvanceTrigger, EndReason, Phase, Role
from interview_roleplay.schemas import CLIENT_MESSAGE_TYPES

SESSION_ID = "test-session-123"


async def send(orch, **msg):
    await orch.handle_client_message(json.dumps(msg))


@pytest.fixture
async def build(sink, recorder):
    """Build orchestrators with a custom factory; all are shut down after the test."""
    made = []

    def _build(factory, **kwargs):
        kwargs.setdefault("recorder", recorder)
        orch = SessionOrchestrator(factory, sink, session_id=SESSION_ID, **kwargs)
        made.append(orch)
        return orch

    yield _build
    for orch in made:
        await orch.shutdown()


def slow_factory(script):
    return scripted_factory(script, chunk_size=3, interval_s=0.02, ready_delay_s=0)


class FlakyAgent(ScriptedAgentConnection):
    """Scripted agent whose first response fails upstream."""

    def __init__(self, *args, failures=1, **kwargs):
        super().__init__(*args, **kwargs)
        self.failures = failures

    def request_response(self):
        if self.failures:
            self.failures -= 1
            self._spawn(self._fail(), "fail")
            return
        super().request_response()

    async def _fail(self):
        await asyncio.sleep(0)
        self._handle_event({
            "type": "response.done",
            "response": {
                "status": "failed",
                "status_details": {"error": {"message": "Rate limit", "code": "rate_limit_exceeded"}},
            },
        })


class TestStartup:
    async def test_start_announces_pattern_and_first_speaker(self, orchestrator, sink):
        await send(orchestrator, type="start_session")
        info = sink.last("pattern_info")
        assert info["pattern"] == "pattern2"
        assert info["participants"] == ["human", "interviewer", "candidate"]
        assert info["japaneseLevel"] == "N4"

        ready = await sink.wait_for("session_ready")
        assert ready["participants"] == ["human", "interviewer", "candidate"]
        await sink.wait_for("sessions_ready")
        st = await sink.wait_for_turn_state(phase="interviewer")
        assert st["currentSpeaker"] == "interviewer"
        assert st["turnCount"] == 1
        assert set(orchestrator.connections) == {Role.INTERVIEWER, Role.CANDIDATE}

    async def test_waits_for_every_agent(self, fast_factory, sink, build):
        orch = build(scripted_factory(
            Script(interviewer=("Hello",), candidate=("Hi",)), chunk_size=8, interval_s=0, ready_delay_s=0.05,
        ))
        await send(orch, type="start_session")
        assert "waiting_for_sessions" in sink.types()
        assert sink.of_type("session_ready") == []
        await sink.wait_for("session_ready")
        assert len(sink.of_type("session_ready")) == 1

    async def test_duplicate_start_ignored(self, orchestrator, sink):
        await send(orchestrator, type="start_session")
        await send(orchestrator, type="start_session", pattern="pattern1")
        await sink.wait_for("session_ready")
        assert len(sink.of_type("pattern_info")) == 1
        assert orchestrator.config.pattern == "pattern2"

    async def test_pattern1_has_only_candidate(self, orchestrator, sink):
        await send(orchestrator, type="start_session", pattern="pattern1", japaneseLevel="N3")
        ready = await sink.wait_for("session_ready")
        assert ready["participants"] == ["human", "candidate"]
        assert ready["japaneseLevel"] == "N3"
        assert set(orchestrator.connections) == {Role.CANDIDATE}
        await sink.wait_for_turn_state(waitingForNext=True, turnCount=2)
        await send(orchestrator, type="next_turn")
        st = await sink.wait_for_turn_state(waitingForNext=True, turnCount=3)
        assert st["currentSpeaker"] is None
        speakers = [m["speaker"] for m in sink.of_type("transcript_done")]
        assert speakers == ["candidate", "candidate"]

    async def test_pattern3_has_no_level(self, orchestrator, sink):
        await send(orchestrator, type="start_session", pattern="pattern3", japaneseLevel="N1")
        ready = await sink.wait_for("session_ready")
        assert ready["japaneseLevel"] is None
        assert set(orchestrator.connections) == {Role.INTERVIEWER}

    async def test_persona_sets_display_names(self, orchestrator, sink):
        await send(
            orchestrator,
            type="start_session",
            persona={"interviewer": {"customName": "Ms. Sato"}, "candidate": {"customName": "Ana"}},
        )
        await sink.wait_for("transcript_done")
        assert sink.last("transcript")["name"] == "Ms. Sato"
        assert orchestrator.transcript.display_name(Role.CANDIDATE) == "Ana"


class TestStepMode:
    """Step mode pauses after every agent turn until next_turn."""

    async def test_full_interview_to_end_marker(self, orchestrator, sink, recorder):
        await send(orchestrator, type="start_session", mode="step")
        for k in range(1, 7):
            await sink.wait_for_turn_state(waitingForNext=True, turnCount=k + 1)
            await send(orchestrator, type="next_turn")

        await sink.wait_for("evaluation_result")
        speakers = [m["speaker"] for m in sink.of_type("transcript_done")]
        assert speakers == ["interviewer", "candidate"] * 3 + ["interviewer"]
        assert sink.of_type("transcript_done")[-1]["text"].endswith(DEFAULT_END_MARKER)
        assert orchestrator.end_reason is EndReason.NORMAL

        final = sink.last("turn_state")
        assert final["phase"] == "ended"
        assert final["currentSpeaker"] is None
        assert final["waitingForNext"] is False
        assert sink.last("phase_change") == {"type": "phase_change", "phase": "ended", "reason": "normal"}

        result = sink.last("evaluation_result")["result"]
        assert result["score"]["percentage"] == 41
        assert result["passed"] is False

        await sink.wait_until(lambda: recorder.sessions[SESSION_ID].evaluation is not None)
        record = recorder.sessions[SESSION_ID]
        assert record.pattern == "pattern2"
        assert record.mode == "step"
        assert record.end_reason == "normal"
        assert len(record.transcripts) == 7

    async def test_nothing_after_end(self, orchestrator, sink):
        await send(orchestrator, type="start_session")
        for k in range(1, 7):
            await sink.wait_for_turn_state(waitingForNext=True, turnCount=k + 1)
            await send(orchestrator, type="next_turn")
        await sink.wait_for("evaluation_result")
        count = len(sink.messages)

        await send(orchestrator, type="next_turn")
        await send(orchestrator, type="human_text", text="Are you still there?")
        await send(orchestrator, type="end_session")
        await asyncio.sleep(0.02)
        assert len(sink.messages) == count
        assert len(sink.of_type("evaluation_result")) == 1
        assert len(orchestrator.transcript) == 7

    async def test_agents_hear_each_other(self, orchestrator, sink):
        await send(orchestrator, type="start_session")
        await sink.wait_for_turn_state(waitingForNext=True, turnCount=2)
        candidate = orchestrator.connections[Role.CANDIDATE]
        interviewer = orchestrator.connections[Role.INTERVIEWER]
        assert candidate.received_messages == [
            "[Mr. Tanaka]: Thank you for coming in today. Could you start by introducing yourself?",
        ]
        assert interviewer.received_messages == []

    async def test_next_turn_while_speaking_is_ignored(self, build, sink, script):
        orch = build(slow_factory(script))
        await send(orch, type="start_session")
        await sink.wait_for("transcript_delta")
        await send(orch, type="next_turn")
        assert orch.turns.phase is Phase.INTERVIEWER
        assert orch.connections[Role.INTERVIEWER].requests == 1

    async def test_set_mode_publishes(self, orchestrator, sink):
        await send(orchestrator, type="start_session")
        await sink.wait_for_turn_state(waitingForNext=True, turnCount=2)
        await send(orchestrator, type="set_mode", mode="auto")
        assert sink.last("turn_state")["mode"] == "auto"


class TestAutoMode:
    async def test_interviewer_then_candidate_then_pause(self, orchestrator, sink):
        await send(orchestrator, type="start_session", mode="auto")
        st = await sink.wait_for_turn_state(waitingForNext=True, turnCount=3)
        assert st["mode"] == "auto"
        speakers = [m["speaker"] for m in sink.of_type("transcript_done")]
        assert speakers == ["interviewer", "candidate"]
        assert sink.of_type("evaluation_result") == []

    async def test_human_text_hands_back_to_interviewer(self, orchestrator, sink):
        await send(orchestrator, type="start_session", mode="auto")
        await sink.wait_for_turn_state(waitingForNext=True, turnCount=3)
        await send(orchestrator, type="human_text", text="Nguyen has studied business for two years.")
        await sink.wait_for_turn_state(waitingForNext=True, turnCount=6)
        speakers = [m["speaker"] for m in sink.of_type("transcript_done")]
        assert speakers == ["interviewer", "candidate", "human", "interviewer", "candidate"]


class TestHumanInput:
    async def test_human_text_in_step_mode(self, orchestrator, sink):
        await send(orchestrator, type="start_session")
        await sink.wait_for_turn_state(waitingForNext=True, turnCount=2)
        await send(orchestrator, type="human_text", text="I am from the career support agent.")

        done = sink.last("transcript_done")
        assert done == {"type": "transcript_done", "speaker": "human", "text": "I am from the career support agent."}
        legacy = sink.last("transcript")
        assert legacy["source"] == "human"
        assert legacy["name"] == "Career advisor"

        context = "[Career advisor]: I am from the career support agent."
        assert orchestrator.connections[Role.INTERVIEWER].received_messages[-1] == context
        assert orchestrator.connections[Role.CANDIDATE].received_messages[-1] == context

        st = sink.last("turn_state")
        assert st["phase"] == "user_choice"
        assert st["turnCount"] == 3
        assert orchestrator.turns.state.human_turns == 1

    async def test_human_text_to_one_agent(self, orchestrator, sink):
        await send(orchestrator, type="start_session")
        await sink.wait_for_turn_state(waitingForNext=True, turnCount=2)
        await send(orchestrator, type="human_text", target="candidate", text="Please answer slowly.")
        assert orchestrator.connections[Role.CANDIDATE].received_messages[-1] == "[Career advisor]: Please answer slowly."
        assert orchestrator.connections[Role.INTERVIEWER].received_messages == []

    async def test_human_text_to_absent_agent(self, orchestrator, sink):
        await send(orchestrator, type="start_session", pattern="pattern1")
        await sink.wait_for_turn_state(waitingForNext=True, turnCount=2)
        await send(orchestrator, type="human_text", target="interviewer", text="Hello")
        assert sink.last("error")["message"] == "No interviewer agent in this session"
        assert len(orchestrator.transcript.get_by_speaker(Role.HUMAN)) == 0

    async def test_human_input_before_start(self, orchestrator, sink):
        await send(orchestrator, type="human_text", text="Hello")
        assert sink.last("error")["message"] == "Session has not started"
        await send(orchestrator, type="human_speak_start")
        assert sink.of_type("turn_state") == []

    async def test_barge_in_cancels_speaking_agent(self, build, sink, script):
        orch = build(slow_factory(script))
        await send(orch, type="start_session")
        await sink.wait_for("transcript_delta")
        await send(orch, type="human_speak_start")

        interviewer = orch.connections[Role.INTERVIEWER]
        assert interviewer.cancels == 1
        st = sink.last("turn_state")
        assert st["phase"] == "user_speaking"
        assert st["currentSpeaker"] == "human"

        await send(orch, type="human_text", text="Sorry to interrupt.")
        assert sink.last("turn_state")["phase"] == "user_choice"
        await asyncio.sleep(0.05)
        assert [m["speaker"] for m in sink.of_type("transcript_done")] == ["human"]

    async def test_audio_transcribed_once(self, build, sink):
        script = Script(interviewer=("Hello",), candidate=("Hi",), human=("I will support you today",))
        orch = build(scripted_factory(script, chunk_size=8, interval_s=0, ready_delay_s=0))
        await send(orch, type="start_session")
        await sink.wait_for_turn_state(waitingForNext=True, turnCount=2)

        await send(orch, type="human_audio_chunk", audioBase64="AAAA")
        assert sink.last("turn_state")["phase"] == "user_speaking"
        await send(orch, type="human_audio_commit")
        assert sink.last("turn_state")["phase"] == "user_choice"

        for role in (Role.INTERVIEWER, Role.CANDIDATE):
            assert orch.connections[role].committed_audio == [["AAAA"]]

        await sink.wait_until(lambda: orch.transcript.get_by_speaker(Role.HUMAN))
        await asyncio.sleep(0.02)
        human = orch.transcript.get_by_speaker(Role.HUMAN)
        assert [e.text for e in human] == ["I will support you today"]

    async def test_legacy_audio_flow(self, build, sink):
        script = Script(interviewer=("Hello",), candidate=("Hi",), human=("Nice to meet you",))
        orch = build(scripted_factory(script, chunk_size=8, interval_s=0, ready_delay_s=0))
        await send(orch, type="start_interview")
        await sink.wait_for_turn_state(waitingForNext=True, turnCount=2)
        await send(orch, type="user_will_speak")
        await send(orch, type="audio", data="AAAA")
        await send(orch, type="user_done_speaking")
        done = await sink.wait_for("transcript_done", 2)
        assert done["speaker"] == "human"
        assert sink.last("transcript")["source"] == "human"


class TestLegacyProtocol:
    async def test_legacy_start_and_proceed(self, orchestrator, sink):
        await send(orchestrator, type="start_interview")
        await sink.wait_for_turn_state(waitingForNext=True, turnCount=2)
        await send(orchestrator, type="proceed_to_next")
        await sink.wait_for_turn_state(waitingForNext=True, turnCount=3)

        sources = [m["source"] for m in sink.of_type("transcript")]
        assert sources == ["ai_a", "ai_b"]
        phases = [m["phase"] for m in sink.of_type("phase_change")]
        assert phases[:3] == ["interviewer", "user_choice", "candidate"]
        assert sink.of_type("phase_change")[0]["speaker"] == "interviewer"


class TestMessageHandling:
    def test_every_message_type_has_a_handler(self, orchestrator):
        assert set(orchestrator.handlers) == set(CLIENT_MESSAGE_TYPES)

    @pytest.mark.parametrize("raw", [
        "{not json",
        '{"type": "bogus"}',
        '{"no_type": 1}',
        '{"type": "human_text", "text": ""}',
        '{"type": "set_mode", "mode": "turbo"}',
    ])
    async def test_malformed_messages_are_reported(self, orchestrator, sink, raw):
        await orchestrator.handle_client_message(raw)
        assert sink.messages == [{"type": "error", "message": "Malformed message ignored"}]
        assert orchestrator.turns.phase is Phase.WAITING


class TestFailures:
    async def test_failed_response_is_retried(self, build, sink, script):
        plain = scripted_factory(script, chunk_size=8, interval_s=0, ready_delay_s=0)

        def factory(role, instructions, callbacks):
            if role is Role.INTERVIEWER:
                return FlakyAgent(role, callbacks, lines=script.interviewer, interval_s=0, ready_delay_s=0)
            return plain(role, instructions, callbacks)

        orch = build(factory)
        await send(orch, type="start_session")
        error = await sink.wait_for("error")
        assert error["message"] == "Mr. Tanaka response failed: Rate limit"
        st = sink.last("turn_state")
        assert st["waitingForNext"] is True
        assert st["turnCount"] == 1

        await send(orch, type="next_turn")
        await sink.wait_for_turn_state(waitingForNext=True, turnCount=2)
        assert [m["speaker"] for m in sink.of_type("transcript_done")] == ["interviewer"]
        await send(orch, type="next_turn")
        await sink.wait_for_turn_state(waitingForNext=True, turnCount=3)
        assert [m["speaker"] for m in sink.of_type("transcript_done")] == ["interviewer", "candidate"]

    async def test_script_exhaustion_holds_turn(self, build, sink):
        script = Script(interviewer=("Only one question.",), candidate=("One answer.",))
        orch = build(scripted_factory(script, chunk_size=8, interval_s=0, ready_delay_s=0, exhaustion="raise"))
        await send(orch, type="start_session")
        await sink.wait_for_turn_state(waitingForNext=True, turnCount=2)
        await send(orch, type="next_turn")
        await sink.wait_for_turn_state(waitingForNext=True, turnCount=3)
        await send(orch, type="next_turn")

        assert "no line left" in sink.last("error")["message"]
        assert orch.turns.waiting_for_next is True
        assert orch.turns.state.turn_count == 3
        assert not orch.ended

    async def test_recorder_failure_does_not_break_session(self, build, sink, script):
        class BrokenRecorder:
            async def start_session(self, *args):
                raise RuntimeError("database down")

            async def add_transcript(self, *args):
                raise RuntimeError("database down")

            async def end_session(self, *args):
                raise RuntimeError("database down")

            async def save_evaluation(self, *args):
                raise RuntimeError("database down")

        orch = build(scripted_factory(script, chunk_size=8, interval_s=0, ready_delay_s=0), recorder=BrokenRecorder())
        await send(orch, type="start_session")
        await sink.wait_for_turn_state(waitingForNext=True, turnCount=2)
        await send(orch, type="end_session")
        await sink.wait_for("evaluation_result")


class TestEnding:
    async def test_abort_marker(self, build, sink):
        script = Script(
            interviewer=(f"I will not continue this interview. {DEFAULT_ABORT_MARKER}",),
            candidate=("Hi",),
        )
        orch = build(scripted_factory(script, chunk_size=8, interval_s=0, ready_delay_s=0))
        await send(orch, type="start_session")
        await sink.wait_for("evaluation_result")
        assert orch.end_reason is EndReason.ABORTED
        assert sink.last("phase_change")["reason"] == "aborted"

    async def test_end_marker_wins_over_abort_marker(self, build, sink):
        script = Script(
            interviewer=(f"{DEFAULT_ABORT_MARKER} Actually, we are done. {DEFAULT_END_MARKER}",),
            candidate=("Hi",),
        )
        orch = build(scripted_factory(script, chunk_size=8, interval_s=0, ready_delay_s=0))
        await send(orch, type="start_session")
        await sink.wait_for("evaluation_result")
        assert orch.end_reason is EndReason.NORMAL
        assert sink.last("phase_change")["reason"] == "normal"

    async def test_end_session_mid_turn(self, build, sink, script):
        orch = build(slow_factory(script))
        await send(orch, type="start_session")
        await sink.wait_for("transcript_delta")
        await send(orch, type="end_session")
        await send(orch, type="end_session")

        assert orch.connections[Role.INTERVIEWER].cancels == 1
        assert sink.last("turn_state")["phase"] == "ended"
        await asyncio.sleep(0.05)
        assert sink.of_type("transcript_done") == []
        assert len(sink.of_type("evaluation_result")) == 1

    async def test_end_before_start_skips_evaluation(self, orchestrator, sink):
        await send(orchestrator, type="end_session")
        assert sink.last("turn_state")["phase"] == "ended"
        assert sink.of_type("evaluation_result") == []
        await send(orchestrator, type="start_session")
        assert sink.last("error")["message"] == "Session has ended"

    async def test_turn_limit(self, fast_factory, sink, build):
        orch = build(fast_factory, max_turns=3)
        await send(orch, type="start_session")
        await sink.wait_for_turn_state(waitingForNext=True, turnCount=2)
        await send(orch, type="next_turn")
        await sink.wait_for("evaluation_result")
        assert orch.end_reason is EndReason.NORMAL
        assert len(sink.of_type("transcript_done")) == 2


class TestPlaybackTrigger:
    async def test_turn_advances_on_playback_done(self, fast_factory, sink, build):
        orch = build(fast_factory, advance_trigger=AdvanceTrigger.PLAYBACK_DONE)
        await send(orch, type="start_session")
        await sink.wait_for("audio_done")
        await asyncio.sleep(0.01)
        assert orch.turns.phase is Phase.INTERVIEWER

        await send(orch, type="playback_done", speaker="candidate")
        assert orch.turns.phase is Phase.INTERVIEWER

        await send(orch, type="playback_done", speaker="interviewer")
        assert orch.turns.phase is Phase.USER_CHOICE
        assert sink.last("turn_state")["turnCount"] == 2

    async def test_legacy_playback_done(self, fast_factory, sink, build):
        orch = build(fast_factory, advance_trigger=AdvanceTrigger.PLAYBACK_DONE)
        await send(orch, type="start_interview")
        await sink.wait_for("audio_done")
        await send(orch, type="audio_playback_done")
        assert orch.turns.phase is Phase.USER_CHOICE
