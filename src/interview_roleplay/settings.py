"""Runtime configuration loaded from environment variables and .env."""
import sys
from typing import Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from interview_roleplay.consts import (
    DEFAULT_ABORT_MARKER,
    DEFAULT_END_MARKER,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_RELOAD,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        env_parse_none_str='None'
    )

    # Server Configuration
    HOST: str = Field(default=DEFAULT_HOST, description="Server host address")
    PORT: int = Field(default=DEFAULT_PORT, ge=1, le=65535, description="Server port")
    RELOAD: bool = Field(default=DEFAULT_RELOAD, description="Enable auto-reload in development")
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")

    # API Keys
    OPENAI_API_KEY: str = Field(default="", description="OpenAI API key for agent connections")

    # Agent backend
    AGENT_BACKEND: Literal["realtime", "chat", "scripted"] = Field(
        default="scripted",
        description="Which agent connection implementation sessions use",
    )

    # Realtime Configuration
    REALTIME_URL: str = Field(default="wss://api.openai.com/v1/realtime", description="Realtime websocket endpoint")
    REALTIME_MODEL: str = Field(default="gpt-4o-realtime-preview", description="Realtime model name")
    REALTIME_TRANSCRIPTION_MODEL: str = Field(default="whisper-1", description="Model used to transcribe human audio")
    INTERVIEWER_VOICE: str = Field(default="ash", description="Realtime voice of the interviewer agent")
    CANDIDATE_VOICE: str = Field(default="shimmer", description="Realtime voice of the candidate agent")

    # LLM Configuration
    LLM_MODEL: str = Field(default="gpt-4o-mini", description="OpenAI model used by the chat backend")
    LLM_TEMPERATURE: float = Field(default=0.7, ge=0.0, le=2.0, description="LLM temperature for agent turns")

    # Whisper Configuration
    WHISPER_MODEL_NAME: str = Field(default="small", description="Whisper model size (tiny/base/small/medium/large)")
    WHISPER_DEVICE: str = Field(default="cpu", description="Device for Whisper (cpu/cuda)")
    WHISPER_COMPUTE_TYPE: str = Field(default="int8", description="Whisper compute type")
    WHISPER_LANGUAGE: Optional[str] = Field(default="en", description="Language for transcription")

    # Audio Configuration
    INPUT_SAMPLE_RATE: int = Field(default=24000, ge=8000, description="Sample rate of pcm16 human audio chunks")

    # Scripted backend
    SCRIPT_CHUNK_SIZE: int = Field(default=3, ge=1, description="Characters per scripted transcript delta")
    SCRIPT_INTERVAL_MS: int = Field(default=30, ge=0, description="Delay between scripted deltas")
    SCRIPT_READY_DELAY_MS: int = Field(default=100, ge=0, description="Delay before a scripted session is ready")
    SCRIPT_RESPONSE_DELAY_MS: int = Field(default=0, ge=0, description="Delay before a scripted response starts")
    SCRIPT_EXHAUSTION: Literal["loop", "raise"] = Field(
        default="loop",
        description="What a scripted agent does once its lines run out",
    )
    SCRIPT_PATH: Optional[str] = Field(default=None, description="Optional JSON file with scripted lines")

    # Interview Configuration
    END_MARKER: str = Field(default=DEFAULT_END_MARKER, min_length=1, description="Token that ends the interview")
    ABORT_MARKER: str = Field(default=DEFAULT_ABORT_MARKER, min_length=1, description="Token that aborts the interview")
    DEFAULT_MODE: Literal["step", "auto"] = Field(default="step", description="Turn mode when the client omits it")
    DEFAULT_PATTERN: Literal["pattern1", "pattern2", "pattern3"] = Field(
        default="pattern2",
        description="Interview pattern when the client omits it",
    )
    TURN_ADVANCE_TRIGGER: Literal["audio_done", "playback_done"] = Field(
        default="audio_done",
        description="Event that completes an agent turn",
    )
    MAX_TURNS: int = Field(default=0, ge=0, description="End the session after this many turns (0 disables)")
    RULES_PATH: Optional[str] = Field(default=None, description="Optional JSON scoring rule set")
    RECORDER: Literal["null", "memory"] = Field(
        default="null",
        description="Where finished sessions go; 'memory' keeps every session for the process lifetime",
    )


def load_settings_or_die() -> Settings:
    try:
        s = Settings()
    except ValidationError as e:
        # One clean message, no scary traceback
        print("[CONFIG ERROR] Invalid environment configuration:", file=sys.stderr)
        for err in e.errors():
            loc = ".".join(str(x) for x in err.get("loc", []))
            msg = err.get("msg", "invalid value")
            print(f"  - {loc}: {msg}", file=sys.stderr)
        sys.exit(2)

    return s

settings = load_settings_or_die()
