"""Per-tile scoring weights, required indices and cache TTLs, declared once."""
from __future__ import annotations

from dataclasses import dataclass, field

from ideahub.models.tiles import TileType

SHORT_TTL = 15 * 60
MEDIUM_TTL = 30 * 60
LONG_TTL = 60 * 60


@dataclass(slots=True, frozen=True)
class TileFormula:
    formula_id: str
    required_indices: tuple[str, ...]
    ttl_seconds: int
    weights: dict[str, float] = field(default_factory=dict)
    sentinel_when_empty: bool = False
    citation_count: int = 3

    def describe(self) -> str:
        """Render the weighted sum exactly as it is computed."""
        return " + ".join(f"{weight:g}×{name}" for name, weight in self.weights.items())


TILE_FORMULAS: dict[TileType, TileFormula] = {
    TileType.PMF_SCORE: TileFormula(
        formula_id="pmf_weighted_v1",
        required_indices=("sentiment", "competitors", "search", "trends"),
        ttl_seconds=LONG_TTL,
        weights={"sentiment": 0.3, "competition": 0.2, "demand": 0.3, "trends": 0.2},
    ),
    TileType.MARKET_SIZE: TileFormula(
        formula_id="tam_sam_som_v1",
        required_indices=("search", "pricing"),
        ttl_seconds=LONG_TTL,
        weights={"volume_multiplier": 1000, "months": 12, "sam_share": 0.15, "som_share": 0.05},
    ),
    TileType.COMPETITION: TileFormula(
        formula_id="competitor_landscape_v1",
        required_indices=("competitors",),
        ttl_seconds=MEDIUM_TTL,
        sentinel_when_empty=True,
        citation_count=5,
    ),
    TileType.SENTIMENT: TileFormula(
        formula_id="sentiment_breakdown_v1",
        required_indices=("reviews", "social"),
        ttl_seconds=SHORT_TTL,
        sentinel_when_empty=True,
    ),
    TileType.MARKET_TRENDS: TileFormula(
        formula_id="news_momentum_v1",
        required_indices=("news",),
        ttl_seconds=SHORT_TTL,
        sentinel_when_empty=True,
    ),
    TileType.GOOGLE_TRENDS: TileFormula(
        formula_id="search_interest_v1",
        required_indices=("trends",),
        ttl_seconds=MEDIUM_TTL,
        sentinel_when_empty=True,
    ),
    TileType.WEB_SEARCH: TileFormula(
        formula_id="search_relevance_v1",
        required_indices=("search",),
        ttl_seconds=MEDIUM_TTL,
        sentinel_when_empty=True,
        citation_count=5,
    ),
    TileType.REDDIT_SENTIMENT: TileFormula(
        formula_id="platform_sentiment_v1",
        required_indices=("reddit",),
        ttl_seconds=SHORT_TTL,
        sentinel_when_empty=True,
    ),
    TileType.TWITTER_BUZZ: TileFormula(
        formula_id="platform_sentiment_v1",
        required_indices=("twitter",),
        ttl_seconds=SHORT_TTL,
        sentinel_when_empty=True,
    ),
    TileType.GROWTH_POTENTIAL: TileFormula(
        formula_id="growth_v1",
        required_indices=("trends", "news"),
        ttl_seconds=MEDIUM_TTL,
        weights={"trends": 0.6, "news_velocity": 40},
    ),
    TileType.MARKET_READINESS: TileFormula(
        formula_id="readiness_v1",
        required_indices=("social", "news"),
        ttl_seconds=MEDIUM_TTL,
        weights={"social_velocity": 50, "news_cadence": 50},
    ),
    TileType.COMPETITIVE_ADVANTAGE: TileFormula(
        formula_id="feature_gaps_v1",
        required_indices=("competitors",),
        ttl_seconds=LONG_TTL,
        weights={"feature_gaps": 20},
    ),
    TileType.RISK_ASSESSMENT: TileFormula(
        formula_id="risk_v1",
        required_indices=("news", "competitors", "search"),
        ttl_seconds=LONG_TTL,
        weights={"regulatory": 10, "competitors": 5, "security": 15},
    ),
}

# Substring of a plan purpose -> tiles whose citations its evidence supports.
PURPOSE_TILE_REFERENCES: tuple[tuple[str, tuple[TileType, ...]], ...] = (
    ("market_size", (TileType.MARKET_SIZE,)),
    ("market", (TileType.MARKET_SIZE, TileType.PMF_SCORE, TileType.WEB_SEARCH)),
    ("overview", (TileType.WEB_SEARCH, TileType.PMF_SCORE)),
    ("search", (TileType.WEB_SEARCH,)),
    ("competitor", (TileType.COMPETITION, TileType.COMPETITIVE_ADVANTAGE, TileType.RISK_ASSESSMENT)),
    ("pricing", (TileType.MARKET_SIZE, TileType.COMPETITIVE_ADVANTAGE)),
    ("news", (TileType.MARKET_TRENDS, TileType.GROWTH_POTENTIAL, TileType.RISK_ASSESSMENT)),
    ("trends", (TileType.MARKET_TRENDS, TileType.GOOGLE_TRENDS, TileType.GROWTH_POTENTIAL)),
    ("reddit", (TileType.REDDIT_SENTIMENT, TileType.SENTIMENT, TileType.MARKET_READINESS, TileType.PMF_SCORE)),
    ("twitter", (TileType.TWITTER_BUZZ, TileType.SENTIMENT, TileType.MARKET_READINESS)),
    ("social", (TileType.SENTIMENT, TileType.MARKET_READINESS)),
    ("review", (TileType.SENTIMENT, TileType.PMF_SCORE)),
)


def tile_references_for(purpose: str) -> list[str]:
    """Tile-type keys supported by evidence gathered for `purpose`."""
    lowered = purpose.lower()
    references: list[str] = []
    for marker, tiles in PURPOSE_TILE_REFERENCES:
        if marker not in lowered:
            continue
        for tile in tiles:
            if tile.value not in references:
                references.append(tile.value)
    return references or [TileType.WEB_SEARCH.value]


def get_formula(tile_type: str) -> TileFormula | None:
    try:
        return TILE_FORMULAS[TileType(tile_type)]
    except ValueError:
        return None


def ttl_for(tile_type: str, default: int) -> int:
    formula = get_formula(tile_type)
    return formula.ttl_seconds if formula else default
