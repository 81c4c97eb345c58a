from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel


class ProviderSource(StrEnum):
    SERPER = "serper"
    TAVILY = "tavily"
    BRAVE = "brave"
    FIRECRAWL = "firecrawl"
    GROQ = "groq"
    SERPAPI = "serpapi"
    SCRAPERAPI = "scraperapi"


class Tone(StrEnum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class InputDescriptor(BaseModel):
    """What the user wants validated. Immutable once a plan is built from it."""
    idea: str
    target_markets: list[str] = []
    audience_profiles: list[str] = []
    geos: list[str] = []
    competitor_hints: list[str] = []
    time_horizon: Optional[str] = None

    model_config = {"frozen": True}


class FetchPlanItem(BaseModel):
    """A single provider call in a fetch plan."""
    id: str  # "{source}_{position}"
    source: ProviderSource
    purpose: str  # routing tag, e.g. "news_recent"
    query: str
    dedupe_key: str  # lower("{source}|{purpose}|{query}")
    dependencies: list[str] = []  # reserved, always empty today
    priority: int = 1  # 1 highest, 3 lowest

    model_config = {"frozen": True}


# --- Index records ---
# Every record carries `origin`, the id of the plan item that produced it.


@dataclass(slots=True)
class SearchRecord:
    url: str
    title: str
    snippet: str
    source: str
    fetched_at: str
    relevance_score: float
    origin: str = ""


@dataclass(slots=True)
class NewsRecord:
    publisher: str
    title: str
    url: str
    published_date: str
    tone: Tone
    snippet: str
    relevance_score: float
    origin: str = ""


@dataclass(slots=True)
class CompetitorRecord:
    name: str
    url: str
    pricing: dict[str, Any] = field(default_factory=dict)
    features: list[str] = field(default_factory=list)
    claims: list[str] = field(default_factory=list)
    traction: dict[str, Any] = field(default_factory=dict)
    market_share: Optional[float] = None
    last_updated: str = ""
    origin: str = ""


@dataclass(slots=True)
class ReviewRecord:
    source: str
    content: str
    rating: Optional[float]
    sentiment: Tone
    date: str
    url: str
    origin: str = ""


@dataclass(slots=True)
class SocialRecord:
    platform: str
    content: str
    engagement: float
    sentiment: Tone
    date: str
    url: str = ""
    origin: str = ""


@dataclass(slots=True)
class PriceRecord:
    product: str
    price: float
    currency: str
    source: str
    date: str
    price_type: str = "subscription"  # subscription | one-time | freemium
    origin: str = ""


@dataclass(slots=True)
class TrendPoint:
    date: str
    value: float


@dataclass(slots=True)
class TrendsMetrics:
    keyword: str
    interest_over_time: list[TrendPoint] = field(default_factory=list)
    related_queries: list[str] = field(default_factory=list)
    breakout_terms: list[str] = field(default_factory=list)
    origin: str = ""


@dataclass(slots=True)
class Evidence:
    id: str
    url: str
    title: str
    source: str
    snippet: str
    confidence: float  # 0..1
    tile_references: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ProviderLogEntry:
    provider: str
    request_count: int
    dedupe_count: int
    estimated_cost: float
    timestamp: str


@dataclass(slots=True)
class ProviderErrorEntry:
    provider: str
    error: str
    query: str
    timestamp: str


@dataclass(slots=True)
class DataHubIndices:
    """Per-run collections filled by ingestion and read by tile synthesis."""
    search: list[SearchRecord] = field(default_factory=list)
    news: list[NewsRecord] = field(default_factory=list)
    competitors: list[CompetitorRecord] = field(default_factory=list)
    reviews: list[ReviewRecord] = field(default_factory=list)
    social: list[SocialRecord] = field(default_factory=list)
    prices: list[PriceRecord] = field(default_factory=list)
    trends: Optional[TrendsMetrics] = None
    evidence: list[Evidence] = field(default_factory=list)
    provider_log: list[ProviderLogEntry | ProviderErrorEntry] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        return {
            "search": len(self.search),
            "news": len(self.news),
            "competitors": len(self.competitors),
            "reviews": len(self.reviews),
            "social": len(self.social),
            "prices": len(self.prices),
            "trends": len(self.trends.interest_over_time) if self.trends else 0,
            "evidence": len(self.evidence),
        }

    def provider_summaries(self) -> list[ProviderLogEntry]:
        return [entry for entry in self.provider_log if isinstance(entry, ProviderLogEntry)]

    def provider_errors(self) -> list[ProviderErrorEntry]:
        return [entry for entry in self.provider_log if isinstance(entry, ProviderErrorEntry)]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class ProviderPayload:
    """Canonical fetcher output, already mapped from the provider's wire shape.

    organic: {url, title, snippet, position}
    news:    {publisher, title, url, published_date, snippet}
    social:  {platform, content, engagement, sentiment, date, url}
    trends:  {date, value}
    pages:   {url, title, content}
    """
    organic: list[dict[str, Any]] = field(default_factory=list)
    news: list[dict[str, Any]] = field(default_factory=list)
    social: list[dict[str, Any]] = field(default_factory=list)
    trends: list[dict[str, Any]] = field(default_factory=list)
    pages: list[dict[str, Any]] = field(default_factory=list)
    related_queries: list[str] = field(default_factory=list)
