"""Persona options for both agents and the instructions rendered from them."""
from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from interview_roleplay.core.patterns import PatternConfig
from interview_roleplay.core.types import JapaneseLevel, Pattern, Role


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class InterviewerPersona(_CamelModel):
    gender: Literal["male", "female"] = "male"
    industry: Literal[
        "manufacturing", "nursing", "restaurant", "retail", "logistics", "construction", "it", "other"
    ] = "manufacturing"
    personality: Literal["detailed", "casual", "inquisitive", "friendly", "strict"] = "friendly"
    foreign_hiring_literacy: Literal["high", "low"] = "high"
    dialect: Literal["standard", "kansai", "kyushu", "tohoku"] = "standard"
    difficulty: Literal["beginner", "hard"] = "beginner"
    custom_name: Optional[str] = Field(default=None, max_length=40)


class CandidatePersona(_CamelModel):
    japanese_level: JapaneseLevel = JapaneseLevel.N4
    nationality: Optional[str] = Field(default=None, max_length=40)
    work_experience: bool = False
    custom_name: Optional[str] = Field(default=None, max_length=40)


class PersonaConfig(_CamelModel):
    interviewer: InterviewerPersona = Field(default_factory=InterviewerPersona)
    candidate: CandidatePersona = Field(default_factory=CandidatePersona)


DEFAULT_NAMES = {
    Role.INTERVIEWER: "Mr. Tanaka",
    Role.CANDIDATE: "Nguyen",
    Role.HUMAN: "Career advisor",
}

PERSONALITY_HINTS = {
    "detailed": "You check documents and work history closely.",
    "casual": "You judge roughly and skip details.",
    "inquisitive": "You ask many follow-up questions and dig deep.",
    "friendly": "You keep the mood relaxed and warm.",
    "strict": "You insist on rules and punctuality.",
}

LEVEL_HINTS = {
    JapaneseLevel.N5: "You speak only in short, broken phrases and often misunderstand.",
    JapaneseLevel.N4: "You speak simple sentences with frequent mistakes and ask for repetition.",
    JapaneseLevel.N3: "You handle everyday conversation but struggle with business terms.",
    JapaneseLevel.N2: "You speak business conversation with minor mistakes.",
    JapaneseLevel.N1: "You speak almost like a native speaker.",
}

SCENES = {
    Pattern.PATTERN1: "A career advisor checks the candidate's attendance and practises self-introduction.",
    Pattern.PATTERN2: "A job interview at the employer, led by the career advisor who brought the candidate.",
    Pattern.PATTERN3: "After the candidate left, the career advisor hears feedback from the employer and closes.",
}


def display_name(role: Role, persona: PersonaConfig) -> str:
    if role is Role.INTERVIEWER and persona.interviewer.custom_name:
        return persona.interviewer.custom_name
    if role is Role.CANDIDATE and persona.candidate.custom_name:
        return persona.candidate.custom_name
    return DEFAULT_NAMES[role]


def build_instructions(
    role: Role,
    config: PatternConfig,
    persona: PersonaConfig,
    *,
    end_marker: str,
    abort_marker: str,
) -> str:
    name = display_name(role, persona)
    lines = [f"Scene: {SCENES[config.pattern]}"]

    if role is Role.INTERVIEWER:
        p = persona.interviewer
        lines += [
            f"You are {name}, a hiring manager in the {p.industry} industry interviewing a foreign candidate.",
            PERSONALITY_HINTS[p.personality],
            "You are used to hiring foreign staff." if p.foreign_hiring_literacy == "high"
            else "This is your first time hiring a foreign worker and you are unsure about visas.",
            f"Speak in the {p.dialect} dialect.",
        ]
        if p.difficulty == "hard":
            lines.append("Interrupt and press the career advisor on vague statements.")
        lines += [
            "Speak one short turn at a time.",
            f"When the interview is over, end your last turn with {end_marker}.",
            f"If the conversation becomes inappropriate, end your turn with {abort_marker}.",
        ]
    else:
        c = persona.candidate
        level = config.japanese_level or c.japanese_level
        lines += [
            f"You are {name}, a foreign job candidate"
            + (f" from {c.nationality}." if c.nationality else "."),
            f"Japanese proficiency {level.value}. {LEVEL_HINTS[level]}",
            "You have worked in Japan before." if c.work_experience else "You have never worked in Japan.",
            "Answer briefly and stay in character.",
        ]
    return "\n".join(lines)
