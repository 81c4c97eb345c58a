from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any


class TileType(StrEnum):
    PMF_SCORE = "pmf_score"
    MARKET_SIZE = "market_size"
    COMPETITION = "competition"
    SENTIMENT = "sentiment"
    MARKET_TRENDS = "market_trends"
    GOOGLE_TRENDS = "google_trends"
    WEB_SEARCH = "web_search"
    REDDIT_SENTIMENT = "reddit_sentiment"
    TWITTER_BUZZ = "twitter_buzz"
    GROWTH_POTENTIAL = "growth_potential"
    MARKET_READINESS = "market_readiness"
    COMPETITIVE_ADVANTAGE = "competitive_advantage"
    RISK_ASSESSMENT = "risk_assessment"


class DataQuality(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ChartType(StrEnum):
    LINE = "line"
    BAR = "bar"
    PIE = "pie"
    AREA = "area"
    SCATTER = "scatter"


@dataclass(slots=True, frozen=True)
class Citation:
    url: str
    title: str
    source: str
    relevance: float


@dataclass(slots=True, frozen=True)
class ChartData:
    type: ChartType
    title: str
    series: list[dict[str, Any]] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class TileOutput:
    """Rendered data for one dashboard tile. Never mutated after synthesis."""
    metrics: dict[str, Any]
    explanation: str
    citations: list[Citation]
    charts: list[ChartData]
    json: dict[str, Any]
    confidence: int  # 0..100
    data_quality: DataQuality

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TileOutput":
        return cls(
            metrics=dict(data.get("metrics") or {}),
            explanation=str(data.get("explanation") or ""),
            citations=[Citation(**c) for c in data.get("citations") or []],
            charts=[
                ChartData(
                    type=ChartType(c.get("type", "bar")),
                    title=c.get("title", ""),
                    series=list(c.get("series") or []),
                    labels=list(c.get("labels") or []),
                )
                for c in data.get("charts") or []
            ],
            json=dict(data.get("json") or {}),
            confidence=int(data.get("confidence", 0) or 0),
            data_quality=DataQuality(data.get("data_quality", "low")),
        )

    @property
    def is_insufficient(self) -> bool:
        return self.json.get("error") == "insufficient_data"
