from __future__ import annotations

import logging
from typing import Callable, Optional

from langchain_core.language_models import BaseChatModel

from interview_roleplay.core.chat import ChatAgentConnection, Pcm16Transcriber
from interview_roleplay.core.connection import AgentCallbacks, AgentConnection
from interview_roleplay.core.realtime import RealtimeAgentConnection
from interview_roleplay.core.scripted import Script, ScriptedAgentConnection, default_script, load_script
from interview_roleplay.core.types import Role
from interview_roleplay.settings import Settings

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[Role, str, AgentCallbacks], AgentConnection]


def scripted_factory(
    script: Script,
    *,
    chunk_size: int = 3,
    interval_s: float = 0.03,
    ready_delay_s: float = 0.1,
    response_delay_s: float = 0.0,
    exhaustion: str = "loop",
) -> ConnectionFactory:
    def make(role: Role, instructions: str, callbacks: AgentCallbacks) -> AgentConnection:
        return ScriptedAgentConnection(
            role,
            callbacks,
            lines=script.lines_for(role),
            human_lines=script.human,
            chunk_size=chunk_size,
            interval_s=interval_s,
            ready_delay_s=ready_delay_s,
            response_delay_s=response_delay_s,
            exhaustion=exhaustion,
        )

    return make


def build_connection_factory(
    settings: Settings,
    *,
    llm: Optional[BaseChatModel] = None,
    transcriber: Optional[Pcm16Transcriber] = None,
    script: Optional[Script] = None,
) -> ConnectionFactory:
    """Pick the agent backend named by AGENT_BACKEND."""
    backend = settings.AGENT_BACKEND
    logger.info("Agent backend: %s", backend)

    if backend == "realtime":
        voices = {Role.INTERVIEWER: settings.INTERVIEWER_VOICE, Role.CANDIDATE: settings.CANDIDATE_VOICE}

        def make_realtime(role: Role, instructions: str, callbacks: AgentCallbacks) -> AgentConnection:
            return RealtimeAgentConnection(
                role,
                callbacks,
                instructions=instructions,
                voice=voices[role],
                api_key=settings.OPENAI_API_KEY,
                url=settings.REALTIME_URL,
                model=settings.REALTIME_MODEL,
                transcription_model=settings.REALTIME_TRANSCRIPTION_MODEL,
            )

        return make_realtime

    if backend == "chat":
        if llm is None:
            from interview_roleplay.core.llm import build_llm
            llm = build_llm(settings)
        if transcriber is None:
            from interview_roleplay.core.transcriber import WhisperTranscriber
            transcriber = WhisperTranscriber(
                model_name=settings.WHISPER_MODEL_NAME,
                device=settings.WHISPER_DEVICE,
                compute_type=settings.WHISPER_COMPUTE_TYPE,
                language=settings.WHISPER_LANGUAGE,
            )

        def make_chat(role: Role, instructions: str, callbacks: AgentCallbacks) -> AgentConnection:
            return ChatAgentConnection(
                role,
                callbacks,
                instructions=instructions,
                llm=llm,
                transcriber=transcriber,
                sample_rate=settings.INPUT_SAMPLE_RATE,
            )

        return make_chat

    if script is None:
        script = load_script(settings.SCRIPT_PATH) if settings.SCRIPT_PATH else default_script(settings.END_MARKER)
    return scripted_factory(
        script,
        chunk_size=settings.SCRIPT_CHUNK_SIZE,
        interval_s=settings.SCRIPT_INTERVAL_MS / 1000,
        ready_delay_s=settings.SCRIPT_READY_DELAY_MS / 1000,
        response_delay_s=settings.SCRIPT_RESPONSE_DELAY_MS / 1000,
        exhaustion=settings.SCRIPT_EXHAUSTION,
    )
