from __future__ import annotations

import json
import re
import time
from typing import Protocol

from loguru import logger

from ideahub import llm_client
from ideahub.config import settings
from ideahub.models.hub import Tone
from ideahub.services.logger import log_provider_call

POSITIVE_WORDS = ("great", "excellent", "good", "amazing", "love", "best")
NEGATIVE_WORDS = ("bad", "terrible", "hate", "worst", "awful", "poor")

SYSTEM_PROMPT = (
    "You label the sentiment of short texts about a product idea. "
    'Reply with a JSON array containing exactly one of "positive", "neutral" '
    'or "negative" per input text, in input order, and nothing else.'
)


class SentimentClassifier(Protocol):
    name: str

    async def classify(self, texts: list[str]) -> list[Tone]: ...


def keyword_sentiment(text: str) -> Tone:
    """Compare counts of positive and negative marker words."""
    lowered = text.lower()
    positive = sum(1 for word in POSITIVE_WORDS if word in lowered)
    negative = sum(1 for word in NEGATIVE_WORDS if word in lowered)
    if positive > negative:
        return Tone.POSITIVE
    if negative > positive:
        return Tone.NEGATIVE
    return Tone.NEUTRAL


class KeywordSentimentClassifier:
    name = "keyword"

    async def classify(self, texts: list[str]) -> list[Tone]:
        return [keyword_sentiment(text) for text in texts]


def _parse_labels(raw: str, expected: int) -> list[Tone]:
    match = re.search(r"\[.*\]", raw, flags=re.DOTALL)
    if not match:
        raise ValueError("classifier response contained no JSON array")
    labels = json.loads(match.group(0))
    if not isinstance(labels, list) or len(labels) != expected:
        raise ValueError(f"expected {expected} labels, got {labels!r}")
    return [Tone(str(label).strip().lower()) for label in labels]


class LLMSentimentClassifier:
    """Batch sentiment labels from a Groq-hosted model.

    Falls back to keyword matching for any batch the model fails on.
    """

    name = "llm"

    def __init__(self, *, batch_size: int | None = None):
        self.batch_size = max(batch_size or settings.sentiment_batch_size, 1)
        self._fallback = KeywordSentimentClassifier()

    async def _classify_batch(self, texts: list[str]) -> list[Tone]:
        numbered = "\n".join(f"{i + 1}. {text[:500]}" for i, text in enumerate(texts))
        response = await llm_client.client().chat.completions.create(
            model=llm_client.get_model(),
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": numbered},
            ],
            temperature=0,
            max_tokens=16 * len(texts) + 16,
        )
        return _parse_labels(response.choices[0].message.content or "", len(texts))

    async def classify(self, texts: list[str]) -> list[Tone]:
        labels: list[Tone] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start:start + self.batch_size]
            started = time.monotonic()
            try:
                labels.extend(await self._classify_batch(batch))
                log_provider_call(
                    "groq",
                    "sentiment",
                    f"{len(batch)} texts",
                    duration_ms=int((time.monotonic() - started) * 1000),
                    results=len(batch),
                )
            except Exception as e:
                log_provider_call(
                    "groq",
                    "sentiment",
                    f"{len(batch)} texts",
                    duration_ms=int((time.monotonic() - started) * 1000),
                    status="fallback",
                    error=str(e),
                )
                labels.extend(await self._fallback.classify(batch))
        return labels


def get_classifier() -> SentimentClassifier:
    if settings.sentiment_classifier == "llm":
        return LLMSentimentClassifier()
    if settings.sentiment_classifier != "keyword":
        logger.warning(
            f"Unknown sentiment classifier '{settings.sentiment_classifier}', using keyword"
        )
    return KeywordSentimentClassifier()
