from __future__ import annotations

from langchain_openai import ChatOpenAI
from interview_roleplay.settings import Settings


def build_llm(settings: Settings) -> ChatOpenAI:
    return ChatOpenAI(
        model=settings.LLM_MODEL,
        temperature=settings.LLM_TEMPERATURE,
        api_key=settings.OPENAI_API_KEY,
        streaming=True,
    )
