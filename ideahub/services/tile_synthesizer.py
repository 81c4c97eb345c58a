from __future__ import annotations

import math
import re
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from ideahub.models.hub import DataHubIndices, SocialRecord, Tone
from ideahub.models.tiles import ChartData, ChartType, Citation, DataQuality, TileOutput, TileType
from ideahub.services.tile_formulas import TILE_FORMULAS, TileFormula
from ideahub.tools.web_utils import extract_domain

DEFAULT_AVERAGE_PRICE = 29.99
NEUTRAL_SCORE = 50
RECENT_NEWS_DAYS = 30
FEATURE_GAP_COVERAGE = 0.3
MAX_FEATURE_GAPS = 5

PMF_CATEGORIES = (
    (85, "Unicorn Potential"),
    (75, "Strong Business"),
    (60, "Viable Startup"),
    (40, "Early Stage"),
)
GROWTH_MARKERS = ("growth", "expand")
REGULATORY_MARKERS = ("regulation", "compliance")
SECURITY_MARKERS = ("security", "breach")
RELATIVE_AGE = re.compile(r"(\d+)\s+(minute|hour|day|week|month|year)s?\s+ago", flags=re.IGNORECASE)
AGE_UNITS = {
    "minute": timedelta(minutes=1),
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def parse_published(value: str, now: datetime) -> datetime | None:
    """ISO timestamps or relative ages such as "3 days ago"."""
    text = (value or "").strip()
    if not text:
        return None
    match = RELATIVE_AGE.search(text)
    if match:
        return now - int(match.group(1)) * AGE_UNITS[match.group(2).lower()]
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def pmf_category(score: int) -> str:
    for threshold, label in PMF_CATEGORIES:
        if score > threshold:
            return label
    return "Concept Phase"


def empty_tile() -> TileOutput:
    return TileOutput(
        metrics={},
        explanation="",
        citations=[],
        charts=[],
        json={},
        confidence=0,
        data_quality=DataQuality.LOW,
    )


def insufficient_data_tile(tile_type: str, required: tuple[str, ...] = ()) -> TileOutput:
    needed = ", ".join(required) if required else "search and social"
    return TileOutput(
        metrics={},
        explanation=f"Insufficient data for {tile_type}. Need more evidence from {needed} indices.",
        citations=[],
        charts=[],
        json={"error": "insufficient_data", "tile": tile_type},
        confidence=0,
        data_quality=DataQuality.LOW,
    )


class TileSynthesizer:
    """Turns one run's indices into tile outputs.

    Reads only the indices it was given; `now` anchors news recency.
    """

    def __init__(self, indices: DataHubIndices, *, now: datetime | None = None):
        self.indices = indices
        self.now = now or datetime.now(timezone.utc)
        self._builders: dict[TileType, Callable[[TileFormula], TileOutput]] = {
            TileType.PMF_SCORE: self._pmf_score,
            TileType.MARKET_SIZE: self._market_size,
            TileType.COMPETITION: self._competition,
            TileType.SENTIMENT: self._sentiment,
            TileType.MARKET_TRENDS: self._market_trends,
            TileType.GOOGLE_TRENDS: self._google_trends,
            TileType.WEB_SEARCH: self._web_search,
            TileType.REDDIT_SENTIMENT: self._reddit_sentiment,
            TileType.TWITTER_BUZZ: self._twitter_buzz,
            TileType.GROWTH_POTENTIAL: self._growth_potential,
            TileType.MARKET_READINESS: self._market_readiness,
            TileType.COMPETITIVE_ADVANTAGE: self._competitive_advantage,
            TileType.RISK_ASSESSMENT: self._risk_assessment,
        }

    def synthesize(self, tile_type: str) -> TileOutput:
        try:
            tile = TileType(tile_type)
        except ValueError:
            return empty_tile()
        formula = TILE_FORMULAS[tile]
        if formula.sentinel_when_empty and not any(
            self._is_filled(name) for name in formula.required_indices
        ):
            return insufficient_data_tile(tile.value, formula.required_indices)
        return self._builders[tile](formula)

    # --- shared scoring ---

    def _platform_posts(self, platform: str) -> list[SocialRecord]:
        return [post for post in self.indices.social if post.platform == platform]

    def _is_filled(self, name: str) -> bool:
        indices = self.indices
        checks: dict[str, Callable[[], bool]] = {
            "search": lambda: bool(indices.search),
            "news": lambda: bool(indices.news),
            "competitors": lambda: bool(indices.competitors),
            "reviews": lambda: bool(indices.reviews),
            "social": lambda: bool(indices.social),
            "sentiment": lambda: bool(indices.reviews or indices.social),
            "pricing": lambda: bool(indices.prices),
            "trends": lambda: bool(indices.trends and indices.trends.interest_over_time),
            "reddit": lambda: bool(self._platform_posts("reddit")),
            "twitter": lambda: bool(self._platform_posts("twitter")),
            "evidence": lambda: bool(indices.evidence),
        }
        check = checks.get(name)
        return bool(check and check())

    def calculate_confidence(self, required: tuple[str, ...] | list[str]) -> int:
        if not required:
            return 0
        filled = sum(1 for name in required if self._is_filled(name))
        return round_half_up(filled / len(required) * 100)

    def assess_data_quality(self) -> DataQuality:
        indices = self.indices
        total = (
            len(indices.search)
            + len(indices.news)
            + len(indices.competitors)
            + len(indices.reviews)
            + len(indices.social)
        )
        if total > 100:
            return DataQuality.HIGH
        if total > 30:
            return DataQuality.MEDIUM
        return DataQuality.LOW

    def get_top_citations(self, category: str, count: int) -> list[Citation]:
        relevant = [e for e in self.indices.evidence if category in e.tile_references]
        relevant.sort(key=lambda e: e.confidence, reverse=True)
        return [
            Citation(url=e.url, title=e.title, source=e.source, relevance=e.confidence)
            for e in relevant[:count]
        ]

    def sentiment_score(self) -> int:
        records = [*self.indices.reviews, *self.indices.social]
        if not records:
            return NEUTRAL_SCORE
        positive = sum(1 for r in records if r.sentiment == Tone.POSITIVE)
        return round_half_up(positive / len(records) * 100)

    def competition_score(self) -> int:
        return max(0, 100 - len(self.indices.competitors) * 10)

    def demand_score(self) -> int:
        return min(100, len(self.indices.search) * 2)

    def trends_score(self) -> int:
        trends = self.indices.trends
        if not trends or not trends.interest_over_time:
            return NEUTRAL_SCORE
        recent = trends.interest_over_time[-3:]
        return round_half_up(sum(point.value for point in recent) / len(recent))

    def average_pricing(self) -> float:
        prices = self.indices.prices
        if not prices:
            return DEFAULT_AVERAGE_PRICE
        return sum(p.price for p in prices) / len(prices)

    def _output(
        self,
        tile: TileType,
        formula: TileFormula,
        *,
        metrics: dict[str, Any],
        explanation: str,
        json: dict[str, Any],
        charts: list[ChartData] | None = None,
        citations: list[Citation] | None = None,
    ) -> TileOutput:
        return TileOutput(
            metrics=metrics,
            explanation=explanation,
            citations=citations if citations is not None else self.get_top_citations(tile.value, formula.citation_count),
            charts=charts or [],
            json={"formula_id": formula.formula_id, **json},
            confidence=self.calculate_confidence(formula.required_indices),
            data_quality=self.assess_data_quality(),
        )

    # --- tiles ---

    def _pmf_score(self, formula: TileFormula) -> TileOutput:
        components = {
            "sentiment": self.sentiment_score(),
            "competition": self.competition_score(),
            "demand": self.demand_score(),
            "trends": self.trends_score(),
        }
        score = round_half_up(sum(formula.weights[name] * value for name, value in components.items()))
        category = pmf_category(score)
        indices = self.indices
        return self._output(
            TileType.PMF_SCORE,
            formula,
            metrics={"score": score, "category": category, **components},
            explanation=(
                f"PMF score {score}/100 ({category}) = {formula.describe()}. "
                f"Based on {len(indices.search)} search results, {len(indices.news)} news items, "
                f"{len(indices.competitors)} competitors and "
                f"{len(indices.reviews) + len(indices.social)} sentiment signals."
            ),
            charts=[
                ChartData(
                    type=ChartType.BAR,
                    title="PMF Score Breakdown",
                    series=[{"name": name.title(), "value": value} for name, value in components.items()],
                    labels=[name.title() for name in components],
                )
            ],
            json={
                "score": score,
                "category": category,
                "components": components,
                "weights": dict(formula.weights),
                "recommendations": self._pmf_recommendations(score, components),
            },
        )

    @staticmethod
    def _pmf_recommendations(score: int, components: dict[str, int]) -> list[str]:
        advice = {
            "sentiment": "Interview users behind neutral or negative mentions before building further.",
            "competition": "Sharpen differentiation; the space already has many competitors.",
            "demand": "Validate demand with a landing page or waitlist before committing budget.",
            "trends": "Search interest is soft; test timing and positioning against current trends.",
        }
        recommendations = [
            advice[name]
            for name, value in sorted(components.items(), key=lambda kv: kv[1])
            if value < NEUTRAL_SCORE
        ]
        if score > 60 and not recommendations:
            recommendations.append("Signals are strong; move to paid acquisition experiments.")
        elif not recommendations:
            recommendations.append("Gather more evidence; no single signal stands out as weak.")
        return recommendations

    def _market_size(self, formula: TileFormula) -> TileOutput:
        indices = self.indices
        weights = formula.weights
        search_volume = len(indices.search)
        avg_pricing = self.average_pricing()
        tam = search_volume * weights["volume_multiplier"] * avg_pricing * weights["months"]
        sam = tam * weights["sam_share"]
        som = sam * weights["som_share"]

        growth_news = sum(
            1
            for n in indices.news
            if any(m in n.title.lower() for m in GROWTH_MARKERS) or "cagr" in n.snippet.lower()
        )
        growth_rate = min(50, 15 + min(25, growth_news * 2))
        competitor_count = len(indices.competitors)
        if search_volume < 20 and competitor_count < 5:
            maturity = "emerging"
        elif competitor_count > 20:
            maturity = "mature"
        else:
            maturity = "growth"
        competitive_density = min(100, competitor_count * 5)

        return self._output(
            TileType.MARKET_SIZE,
            formula,
            metrics={
                "tam": tam,
                "sam": sam,
                "som": som,
                "growth_rate": growth_rate,
                "avg_pricing": round(avg_pricing, 2),
                "competitor_count": competitor_count,
                "market_maturity": maturity,
                "competitive_density": competitive_density,
            },
            explanation=(
                f"TAM = search volume ({search_volume}) × {weights['volume_multiplier']:g} × "
                f"${avg_pricing:.2f} × {weights['months']:g} months = ${tam:,.0f}. "
                f"SAM = {weights['sam_share']:.0%} of TAM, SOM = {weights['som_share']:.0%} of SAM. "
                f"Market shows {maturity} characteristics with {growth_rate}% projected growth."
            ),
            charts=[
                ChartData(
                    type=ChartType.PIE,
                    title="Market Size Breakdown",
                    series=[
                        {"name": "TAM", "value": tam},
                        {"name": "SAM", "value": sam},
                        {"name": "SOM", "value": som},
                    ],
                    labels=["TAM", "SAM", "SOM"],
                )
            ],
            json={
                "tam": tam,
                "sam": sam,
                "som": som,
                "growth_rate": growth_rate,
                "market_maturity": maturity,
                "competitive_density": competitive_density,
                "calculation": {
                    "search_volume": search_volume,
                    "avg_pricing": avg_pricing,
                    **weights,
                },
            },
        )

    def _competition(self, formula: TileFormula) -> TileOutput:
        competitors = self.indices.competitors
        direct = [c for c in competitors if (c.market_share or 0) > 5]
        indirect = [c for c in competitors if (c.market_share or 0) <= 5]
        avg_share = sum(c.market_share or 0 for c in competitors) / len(competitors)
        return self._output(
            TileType.COMPETITION,
            formula,
            metrics={
                "total": len(competitors),
                "direct": len(direct),
                "indirect": len(indirect),
                "avg_market_share": avg_share,
                "competition_score": self.competition_score(),
            },
            explanation=(
                f"Identified {len(competitors)} competitors: {len(direct)} direct (>5% market share) "
                f"and {len(indirect)} indirect."
            ),
            charts=[
                ChartData(
                    type=ChartType.BAR,
                    title="Competitor Market Share",
                    series=[{"name": c.name, "value": c.market_share or 0} for c in competitors],
                    labels=[c.name for c in competitors],
                )
            ],
            json={
                "competitors": [c.name for c in competitors],
                "direct": [c.name for c in direct],
                "indirect": [c.name for c in indirect],
            },
        )

    def _sentiment(self, formula: TileFormula) -> TileOutput:
        records = [*self.indices.reviews, *self.indices.social]
        breakdown = {tone.value: sum(1 for r in records if r.sentiment == tone) for tone in Tone}
        score = self.sentiment_score()
        return self._output(
            TileType.SENTIMENT,
            formula,
            metrics={"score": score, **breakdown, "total": len(records)},
            explanation=(
                f"Sentiment score {score}% based on {len(records)} data points: "
                f"{breakdown['positive']} positive, {breakdown['neutral']} neutral, "
                f"{breakdown['negative']} negative. Sources include {len(self.indices.reviews)} reviews "
                f"and {len(self.indices.social)} social mentions."
            ),
            charts=[
                ChartData(
                    type=ChartType.PIE,
                    title="Sentiment Breakdown",
                    series=[{"name": tone.title(), "value": count} for tone, count in breakdown.items()],
                    labels=[tone.title() for tone in breakdown],
                )
            ],
            json={
                "sentiment_score": score,
                "breakdown": breakdown,
                "sources": {"reviews": len(self.indices.reviews), "social": len(self.indices.social)},
            },
        )

    def _news_ages(self) -> list[tuple[float, Tone]]:
        ages: list[tuple[float, Tone]] = []
        for article in self.indices.news:
            published = parse_published(article.published_date, self.now)
            if published is None:
                continue
            ages.append(((self.now - published).total_seconds() / 86400, article.tone))
        return ages

    def _market_trends(self, formula: TileFormula) -> TileOutput:
        ages = self._news_ages()
        recent = [(age, tone) for age, tone in ages if 0 <= age <= RECENT_NEWS_DAYS]
        velocity = len(recent) / RECENT_NEWS_DAYS
        momentum = "high" if velocity > 1 else "medium" if velocity > 0.5 else "low"

        this_week = sum(1 for age, tone in recent if age <= 7 and tone == Tone.POSITIVE)
        last_week = sum(1 for age, tone in recent if 7 < age <= 14 and tone == Tone.POSITIVE)
        if this_week > last_week * 1.2:
            direction = "up"
        elif this_week < last_week * 0.8:
            direction = "down"
        else:
            direction = "stable"

        per_day = Counter(int(age) for age, _ in recent)
        labels = [
            (self.now - timedelta(days=offset)).date().isoformat()
            for offset in range(RECENT_NEWS_DAYS - 1, -1, -1)
        ]
        return self._output(
            TileType.MARKET_TRENDS,
            formula,
            metrics={
                "velocity": velocity,
                "momentum": momentum,
                "recent_articles": len(recent),
                "trend_direction": direction,
            },
            explanation=(
                f"Market velocity: {velocity:.2f} news articles/day over the last {RECENT_NEWS_DAYS} days. "
                f"Momentum classified as {momentum} based on publication frequency."
            ),
            charts=[
                ChartData(
                    type=ChartType.LINE,
                    title="Articles per Day",
                    series=[
                        {
                            "name": "Articles",
                            "data": [per_day.get(offset, 0) for offset in range(RECENT_NEWS_DAYS - 1, -1, -1)],
                        }
                    ],
                    labels=labels,
                )
            ],
            json={
                "velocity": velocity,
                "momentum": momentum,
                "trend_direction": direction,
                "articles": [n.title for n in self.indices.news],
            },
        )

    def _google_trends(self, formula: TileFormula) -> TileOutput:
        trends = self.indices.trends
        points = trends.interest_over_time
        current = points[-1].value
        peak = max(point.value for point in points)
        return self._output(
            TileType.GOOGLE_TRENDS,
            formula,
            metrics={
                "current_interest": current,
                "peak_interest": peak,
                "related_queries": len(trends.related_queries),
            },
            explanation=f"Interest trends showing {current:g}/100 current interest. Peak was {peak:g}/100.",
            charts=[
                ChartData(
                    type=ChartType.AREA,
                    title="Search Interest",
                    series=[{"name": trends.keyword, "data": [point.value for point in points]}],
                    labels=[point.date for point in points],
                )
            ],
            json={
                "keyword": trends.keyword,
                "interest_over_time": [{"date": p.date, "value": p.value} for p in points],
                "related_queries": list(trends.related_queries),
                "breakout_terms": list(trends.breakout_terms),
            },
        )

    def _web_search(self, formula: TileFormula) -> TileOutput:
        results = self.indices.search
        avg_relevance = sum(r.relevance_score for r in results) / len(results)
        domains = Counter(extract_domain(r.url) for r in results if r.url)
        top_sources = [domain for domain, _ in domains.most_common(5)]
        return self._output(
            TileType.WEB_SEARCH,
            formula,
            metrics={
                "total_results": len(results),
                "avg_relevance": avg_relevance,
                "top_sources": top_sources,
            },
            explanation=(
                f"Found {len(results)} relevant search results with average relevance score "
                f"{avg_relevance:.2f}."
            ),
            json={"results": [{"url": r.url, "title": r.title, "relevance": r.relevance_score} for r in results]},
        )

    def _platform_tile(self, tile: TileType, formula: TileFormula, platform: str, label: str) -> TileOutput:
        posts = self._platform_posts(platform)
        positive = sum(1 for p in posts if p.sentiment == Tone.POSITIVE)
        sentiment = round_half_up(positive / len(posts) * 100) if posts else NEUTRAL_SCORE
        avg_engagement = sum(p.engagement for p in posts) / len(posts)
        return self._output(
            tile,
            formula,
            metrics={"posts": len(posts), "avg_engagement": avg_engagement, "sentiment": sentiment},
            explanation=(
                f"Analyzed {len(posts)} {label} with average engagement of {avg_engagement:.2f} "
                f"and {sentiment}% positive sentiment."
            ),
            json={"posts": [{"content": p.content[:280], "url": p.url, "sentiment": p.sentiment.value} for p in posts]},
        )

    def _reddit_sentiment(self, formula: TileFormula) -> TileOutput:
        return self._platform_tile(TileType.REDDIT_SENTIMENT, formula, "reddit", "Reddit posts")

    def _twitter_buzz(self, formula: TileFormula) -> TileOutput:
        return self._platform_tile(TileType.TWITTER_BUZZ, formula, "twitter", "tweets")

    def _growth_potential(self, formula: TileFormula) -> TileOutput:
        trends = self.trends_score()
        news_velocity = len(self.indices.news) / RECENT_NEWS_DAYS
        weights = formula.weights
        score = min(100, round_half_up(trends * weights["trends"] + news_velocity * weights["news_velocity"]))
        return self._output(
            TileType.GROWTH_POTENTIAL,
            formula,
            metrics={
                "score": score,
                "trends_contribution": trends,
                "news_contribution": news_velocity * weights["news_velocity"],
            },
            explanation=(
                f"Growth potential {score}/100 = {formula.describe()} with trends {trends} and "
                f"news velocity {news_velocity:.2f}/day."
            ),
            json={"growth_score": score, "factors": {"trends": trends, "news_velocity": news_velocity}},
        )

    def _market_readiness(self, formula: TileFormula) -> TileOutput:
        social_velocity = len(self.indices.social) / RECENT_NEWS_DAYS
        news_cadence = len(self.indices.news) / RECENT_NEWS_DAYS
        weights = formula.weights
        score = min(
            100,
            round_half_up(social_velocity * weights["social_velocity"] + news_cadence * weights["news_cadence"]),
        )
        return self._output(
            TileType.MARKET_READINESS,
            formula,
            metrics={"score": score, "social_velocity": social_velocity, "news_cadence": news_cadence},
            explanation=(
                f"Market readiness {score}/100 = {formula.describe()} from social velocity "
                f"({social_velocity:.2f} posts/day) and news cadence ({news_cadence:.2f} articles/day)."
            ),
            json={"adoption_score": score, "factors": {"social_velocity": social_velocity, "news_cadence": news_cadence}},
        )

    def _feature_gaps(self) -> list[str]:
        competitors = self.indices.competitors
        coverage: dict[str, int] = {}
        for competitor in competitors:
            for feature in dict.fromkeys(competitor.features):
                coverage[feature] = coverage.get(feature, 0) + 1
        threshold = len(competitors) * FEATURE_GAP_COVERAGE
        gaps = [f"Feature gap: {feature}" for feature, count in coverage.items() if count < threshold]
        return gaps[:MAX_FEATURE_GAPS]

    def _competitive_advantage(self, formula: TileFormula) -> TileOutput:
        gaps = self._feature_gaps()
        score = min(100, len(gaps) * int(formula.weights["feature_gaps"]))
        return self._output(
            TileType.COMPETITIVE_ADVANTAGE,
            formula,
            metrics={"score": score, "gaps": len(gaps), "opportunities": gaps},
            explanation=(
                f"Identified {len(gaps)} competitive gaps. Advantage = {formula.describe()}, capped at 100."
            ),
            json={"advantage_score": score, "gaps": gaps},
        )

    def _risk_assessment(self, formula: TileFormula) -> TileOutput:
        regulatory = sum(
            1 for n in self.indices.news if any(m in n.snippet.lower() for m in REGULATORY_MARKERS)
        )
        competitors = len(self.indices.competitors)
        security = sum(
            1 for s in self.indices.search if any(m in s.snippet.lower() for m in SECURITY_MARKERS)
        )
        weights = formula.weights
        factors = {"regulatory": regulatory, "competitors": competitors, "security": security}
        contributions = {name: count * weights[name] for name, count in factors.items()}
        score = min(100, round_half_up(sum(contributions.values())))
        return self._output(
            TileType.RISK_ASSESSMENT,
            formula,
            metrics={"score": score, **factors},
            explanation=(
                f"Risk assessment {score}/100 = {formula.describe()} from {regulatory} regulatory mentions, "
                f"{competitors} competitors and {security} security concerns."
            ),
            charts=[
                ChartData(
                    type=ChartType.BAR,
                    title="Risk Factors",
                    series=[{"name": name.title(), "value": value} for name, value in contributions.items()],
                    labels=[name.title() for name in contributions],
                )
            ],
            json={"risk_score": score, "factors": factors},
        )
