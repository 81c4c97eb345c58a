"""Groq chat client through the OpenAI-compatible SDK."""
from __future__ import annotations

from openai import AsyncOpenAI

from ideahub.config import settings


def get_client() -> AsyncOpenAI:
    """Build an OpenAI-compatible client pointed at Groq."""
    if not settings.groq_api_key:
        raise RuntimeError("GROQ_API_KEY is not configured")
    base_url = settings.groq_base_url.strip() or "https://api.groq.com/openai/v1"
    return AsyncOpenAI(
        api_key=settings.groq_api_key,
        base_url=base_url,
    )


def get_model() -> str:
    """Get the model id used for sentiment classification."""
    return settings.sentiment_model


_client: AsyncOpenAI | None = None


def client() -> AsyncOpenAI:
    """Get or create the LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client
