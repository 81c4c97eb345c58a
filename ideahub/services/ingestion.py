"""Route canonical provider payloads into the hub indices by purpose tag."""
from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from typing import Any

from ideahub.models.hub import (
    CompetitorRecord,
    DataHubIndices,
    Evidence,
    FetchPlanItem,
    NewsRecord,
    PriceRecord,
    ProviderPayload,
    ReviewRecord,
    SearchRecord,
    SocialRecord,
    Tone,
    TrendPoint,
    TrendsMetrics,
)
from ideahub.services.sentiment import SentimentClassifier
from ideahub.services.tile_formulas import tile_references_for
from ideahub.tools import web_utils

DEFAULT_RELEVANCE = 0.5
MARKET_SIZE_RELEVANCE = 0.9
NEWS_RELEVANCE = 0.7
SOCIAL_EVIDENCE_CONFIDENCE = 0.6
COMPETITOR_EVIDENCE_CONFIDENCE = 0.7
MAX_PRICES_PER_PAYLOAD = 5
MARKET_SIZE_MARKERS = ("billion", "million", "tam")
COMPARISON_MARKERS = ("vs", "alternative", "competitor")


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _text(value: Any) -> str:
    return str(value or "").strip()


def _position_relevance(position: Any) -> float:
    try:
        rank = int(position)
    except (TypeError, ValueError):
        return DEFAULT_RELEVANCE
    return min(max((11 - rank) / 10, 0.0), 1.0)


def _tone(value: Any) -> Tone | None:
    try:
        return Tone(str(value).lower())
    except ValueError:
        return None


def social_platform(purpose: str) -> str | None:
    lowered = purpose.lower()
    if "reddit" in lowered:
        return "reddit"
    if "twitter" in lowered:
        return "twitter"
    if "social" in lowered:
        return "social"
    return None


def _add_evidence(
    indices: DataHubIndices,
    item: FetchPlanItem,
    *,
    url: str,
    title: str,
    snippet: str,
    confidence: float,
) -> None:
    if not url:
        return
    evidence_id = hashlib.sha1(f"{item.id}|{url}|{title}".encode("utf-8")).hexdigest()[:16]
    indices.evidence.append(
        Evidence(
            id=evidence_id,
            url=url,
            title=title,
            source=item.source.value,
            snippet=snippet[:500],
            confidence=min(max(confidence, 0.0), 1.0),
            tile_references=tile_references_for(item.purpose),
        )
    )


def _ingest_search(
    item: FetchPlanItem,
    payload: ProviderPayload,
    indices: DataHubIndices,
    fetched_at: str,
) -> int:
    market_size_only = "market_size" in item.purpose.lower()
    added = 0
    for result in payload.organic:
        url = _text(result.get("url"))
        title = _text(result.get("title"))
        snippet = _text(result.get("snippet"))
        if market_size_only:
            if not any(marker in snippet.lower() for marker in MARKET_SIZE_MARKERS):
                continue
            relevance = MARKET_SIZE_RELEVANCE
        else:
            relevance = _position_relevance(result.get("position"))
        indices.search.append(
            SearchRecord(
                url=url,
                title=title,
                snippet=snippet,
                source=item.source.value,
                fetched_at=fetched_at,
                relevance_score=relevance,
                origin=item.id,
            )
        )
        _add_evidence(indices, item, url=url, title=title, snippet=snippet, confidence=relevance)
        added += 1
    return added


def _ingest_competitors(
    item: FetchPlanItem,
    payload: ProviderPayload,
    indices: DataHubIndices,
    fetched_at: str,
) -> int:
    known = {competitor.name.lower() for competitor in indices.competitors}
    added = 0

    for result in payload.organic:
        title = _text(result.get("title"))
        if not any(marker in title.lower() for marker in COMPARISON_MARKERS):
            continue
        url = _text(result.get("url"))
        name = web_utils.competitor_name(title, url)
        if not name or name.lower() in known:
            continue
        known.add(name.lower())
        snippet = _text(result.get("snippet"))
        indices.competitors.append(
            CompetitorRecord(
                name=name,
                url=url,
                claims=[snippet] if snippet else [],
                last_updated=fetched_at,
                origin=item.id,
            )
        )
        _add_evidence(
            indices, item, url=url, title=title, snippet=snippet,
            confidence=COMPETITOR_EVIDENCE_CONFIDENCE,
        )
        added += 1

    for page in payload.pages:
        url = _text(page.get("url"))
        content = _text(page.get("content"))
        name = web_utils.competitor_name(_text(page.get("title")), url) or item.query
        if name.lower() in known:
            continue
        known.add(name.lower())
        prices = web_utils.extract_prices(content, limit=MAX_PRICES_PER_PAYLOAD)
        pricing: dict[str, Any] = {}
        if prices:
            pricing = {"prices": prices, "starting_price": min(prices), "currency": "USD"}
        indices.competitors.append(
            CompetitorRecord(
                name=name,
                url=url,
                pricing=pricing,
                features=web_utils.extract_features(content),
                last_updated=fetched_at,
                origin=item.id,
            )
        )
        for price in prices:
            indices.prices.append(
                PriceRecord(
                    product=name,
                    price=price,
                    currency="USD",
                    source=web_utils.extract_domain(url) if url else item.source.value,
                    date=fetched_at,
                    price_type=web_utils.price_type(content),
                    origin=item.id,
                )
            )
        _add_evidence(
            indices, item, url=url, title=name, snippet=content[:300],
            confidence=COMPETITOR_EVIDENCE_CONFIDENCE,
        )
        added += 1 + len(prices)
    return added


def _ingest_prices(
    item: FetchPlanItem,
    payload: ProviderPayload,
    indices: DataHubIndices,
    fetched_at: str,
) -> int:
    texts: list[tuple[str, str, str]] = [
        (_text(r.get("title")), _text(r.get("url")), _text(r.get("snippet")))
        for r in payload.organic
    ]
    texts.extend(
        (_text(p.get("title")), _text(p.get("url")), _text(p.get("content")))
        for p in payload.pages
    )

    added = 0
    for title, url, text in texts:
        remaining = MAX_PRICES_PER_PAYLOAD - added
        if remaining <= 0:
            break
        for price in web_utils.extract_prices(text, limit=remaining):
            indices.prices.append(
                PriceRecord(
                    product=title or item.query,
                    price=price,
                    currency="USD",
                    source=web_utils.extract_domain(url) if url else item.source.value,
                    date=fetched_at,
                    price_type=web_utils.price_type(text),
                    origin=item.id,
                )
            )
            added += 1
    return added


async def _ingest_news(
    item: FetchPlanItem,
    payload: ProviderPayload,
    indices: DataHubIndices,
    classifier: SentimentClassifier,
) -> int:
    articles = payload.news or [
        {
            "publisher": web_utils.extract_domain(_text(r.get("url"))),
            "title": r.get("title"),
            "url": r.get("url"),
            "published_date": r.get("published_date", ""),
            "snippet": r.get("snippet"),
        }
        for r in payload.organic
    ]
    if not articles:
        return 0

    tones = await classifier.classify(
        [f"{_text(a.get('title'))} {_text(a.get('snippet'))}" for a in articles]
    )
    for article, tone in zip(articles, tones):
        url = _text(article.get("url"))
        title = _text(article.get("title"))
        snippet = _text(article.get("snippet"))
        indices.news.append(
            NewsRecord(
                publisher=_text(article.get("publisher")) or web_utils.extract_domain(url),
                title=title,
                url=url,
                published_date=_text(article.get("published_date")),
                tone=tone,
                snippet=snippet,
                relevance_score=NEWS_RELEVANCE,
                origin=item.id,
            )
        )
        _add_evidence(indices, item, url=url, title=title, snippet=snippet, confidence=NEWS_RELEVANCE)
    return len(articles)


def _as_posts(payload: ProviderPayload, platform: str) -> list[dict[str, Any]]:
    if payload.social:
        return payload.social
    return [
        {
            "platform": platform,
            "content": " ".join(part for part in (_text(r.get("title")), _text(r.get("snippet"))) if part),
            "engagement": r.get("score", 0.0),
            "date": r.get("published_date", ""),
            "url": r.get("url", ""),
        }
        for r in payload.organic
    ]


async def _label(posts: list[dict[str, Any]], classifier: SentimentClassifier) -> list[Tone]:
    provided = [_tone(post.get("sentiment")) if post.get("sentiment") else None for post in posts]
    missing = [i for i, tone in enumerate(provided) if tone is None]
    if missing:
        labels = await classifier.classify([_text(posts[i].get("content")) for i in missing])
        for index, label in zip(missing, labels):
            provided[index] = label
    return [tone or Tone.NEUTRAL for tone in provided]


def _float(value: Any) -> float:
    try:
        return float(value or 0.0)
    except (TypeError, ValueError):
        return 0.0


async def _ingest_social(
    item: FetchPlanItem,
    payload: ProviderPayload,
    indices: DataHubIndices,
    classifier: SentimentClassifier,
    platform: str,
) -> int:
    posts = [post for post in _as_posts(payload, platform) if _text(post.get("content"))]
    if not posts:
        return 0
    tones = await _label(posts, classifier)
    for post, tone in zip(posts, tones):
        url = _text(post.get("url"))
        content = _text(post.get("content"))
        indices.social.append(
            SocialRecord(
                platform=_text(post.get("platform")) or platform,
                content=content,
                engagement=_float(post.get("engagement")),
                sentiment=tone,
                date=_text(post.get("date")),
                url=url,
                origin=item.id,
            )
        )
        _add_evidence(
            indices, item, url=url, title=content[:120], snippet=content,
            confidence=SOCIAL_EVIDENCE_CONFIDENCE,
        )
    return len(posts)


async def _ingest_reviews(
    item: FetchPlanItem,
    payload: ProviderPayload,
    indices: DataHubIndices,
    classifier: SentimentClassifier,
) -> int:
    posts = [post for post in _as_posts(payload, "reviews") if _text(post.get("content"))]
    if not posts:
        return 0
    tones = await _label(posts, classifier)
    for post, tone in zip(posts, tones):
        url = _text(post.get("url"))
        rating = post.get("rating")
        indices.reviews.append(
            ReviewRecord(
                source=web_utils.extract_domain(url) if url else item.source.value,
                content=_text(post.get("content")),
                rating=_float(rating) if rating is not None else None,
                sentiment=tone,
                date=_text(post.get("date")),
                url=url,
                origin=item.id,
            )
        )
    return len(posts)


def _ingest_trends(item: FetchPlanItem, payload: ProviderPayload, indices: DataHubIndices) -> int:
    if indices.trends is not None:
        return 0
    points = [
        TrendPoint(date=_text(point.get("date")), value=_float(point.get("value")))
        for point in payload.trends
    ]
    indices.trends = TrendsMetrics(
        keyword=item.query,
        interest_over_time=points,
        related_queries=list(payload.related_queries),
        breakout_terms=[q for q in payload.related_queries if "breakout" in q.lower()],
        origin=item.id,
    )
    return len(points)


async def ingest_payload(
    item: FetchPlanItem,
    payload: ProviderPayload,
    indices: DataHubIndices,
    classifier: SentimentClassifier,
) -> int:
    """Append the records a payload yields for its plan item's purpose.

    Returns the number of records added across all collections.
    """
    purpose = item.purpose.lower()
    fetched_at = _utc_now()
    added = 0

    if "market" in purpose or "search" in purpose:
        added += _ingest_search(item, payload, indices, fetched_at)
    if "competitor" in purpose:
        added += _ingest_competitors(item, payload, indices, fetched_at)
    if "pricing" in purpose:
        added += _ingest_prices(item, payload, indices, fetched_at)
    if "news" in purpose:
        added += await _ingest_news(item, payload, indices, classifier)
    platform = social_platform(purpose)
    if platform:
        added += await _ingest_social(item, payload, indices, classifier, platform)
    if "review" in purpose:
        added += await _ingest_reviews(item, payload, indices, classifier)
    if payload.trends:
        added += _ingest_trends(item, payload, indices)
    return added
