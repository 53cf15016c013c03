"""Wire models for the client websocket protocol and the HTTP endpoints."""
from typing import Annotated, List, Literal, Optional, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from interview_roleplay.core.personas import PersonaConfig
from interview_roleplay.core.types import JapaneseLevel, Mode, Pattern, Role, Target


class ClientMessage(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class StartSession(ClientMessage):
    type: Literal["start_session"]
    mode: Optional[Mode] = None
    pattern: Optional[Pattern] = None
    japanese_level: Optional[JapaneseLevel] = None
    persona: Optional[PersonaConfig] = None


class SetMode(ClientMessage):
    type: Literal["set_mode"]
    mode: Mode


class NextTurn(ClientMessage):
    type: Literal["next_turn"]


class HumanText(ClientMessage):
    type: Literal["human_text"]
    target: Target = Target.BOTH
    text: str = Field(min_length=1)


class HumanAudioChunk(ClientMessage):
    type: Literal["human_audio_chunk"]
    target: Target = Target.BOTH
    audio_base64: str = Field(min_length=1)


class HumanAudioCommit(ClientMessage):
    type: Literal["human_audio_commit"]
    target: Target = Target.BOTH


class HumanSpeakStart(ClientMessage):
    type: Literal["human_speak_start"]


class PlaybackDone(ClientMessage):
    type: Literal["playback_done"]
    speaker: Optional[Role] = None


class EndSession(ClientMessage):
    type: Literal["end_session"]


# Legacy client messages, mapped onto the handlers above.

class LegacyStartInterview(ClientMessage):
    type: Literal["start_interview"]


class LegacyAudio(ClientMessage):
    type: Literal["audio"]
    data: str = Field(min_length=1)


class LegacyAudioPlaybackDone(ClientMessage):
    type: Literal["audio_playback_done"]


class LegacyProceedToNext(ClientMessage):
    type: Literal["proceed_to_next"]


class LegacyUserWillSpeak(ClientMessage):
    type: Literal["user_will_speak"]


class LegacyUserDoneSpeaking(ClientMessage):
    type: Literal["user_done_speaking"]


AnyClientMessage = Annotated[
    Union[
        StartSession,
        SetMode,
        NextTurn,
        HumanText,
        HumanAudioChunk,
        HumanAudioCommit,
        HumanSpeakStart,
        PlaybackDone,
        EndSession,
        LegacyStartInterview,
        LegacyAudio,
        LegacyAudioPlaybackDone,
        LegacyProceedToNext,
        LegacyUserWillSpeak,
        LegacyUserDoneSpeaking,
    ],
    Field(discriminator="type"),
]

CLIENT_MESSAGE_TYPES: tuple[type[ClientMessage], ...] = get_args(get_args(AnyClientMessage)[0])

CLIENT_MESSAGE_ADAPTER: TypeAdapter[AnyClientMessage] = TypeAdapter(AnyClientMessage)


def parse_client_message(raw: str | bytes) -> AnyClientMessage:
    return CLIENT_MESSAGE_ADAPTER.validate_json(raw)


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str
    version: str


class PatternInfo(BaseModel):
    pattern: Pattern
    title: str
    participants: List[Role]
    first_speaker: Role = Field(serialization_alias="firstSpeaker")

