from __future__ import annotations

from dataclasses import dataclass

from ideahub.models.hub import FetchPlanItem, InputDescriptor, ProviderSource
from ideahub.services.logger import log_plan_built

MIN_KEYWORD_LENGTH = 4
MARKET_SIZE_KEYWORDS = 2


@dataclass(slots=True, frozen=True)
class PlanTemplate:
    source: ProviderSource
    purpose: str
    query: str  # formatted with idea=
    priority: int


# Declaration order is the plan order.
BASE_TEMPLATES: tuple[PlanTemplate, ...] = (
    PlanTemplate(ProviderSource.SERPER, "market_overview", "{idea}", 1),
    PlanTemplate(ProviderSource.SERPER, "competitor_search", "{idea} competitors alternatives", 1),
    PlanTemplate(ProviderSource.SERPER, "pricing_search", "{idea} pricing cost", 2),
    PlanTemplate(ProviderSource.SCRAPERAPI, "competitor_deep", "{idea} vs alternatives comparison", 1),
    PlanTemplate(ProviderSource.SCRAPERAPI, "pricing_deep", "{idea} pricing plans features", 2),
    PlanTemplate(ProviderSource.SCRAPERAPI, "market_analysis", "{idea} market analysis report", 2),
    PlanTemplate(ProviderSource.BRAVE, "news_recent", "{idea} news latest", 1),
    PlanTemplate(ProviderSource.BRAVE, "news_trends", "{idea} trends 2024 2025", 2),
    PlanTemplate(ProviderSource.TAVILY, "reddit_sentiment", "site:reddit.com {idea}", 2),
    PlanTemplate(ProviderSource.TAVILY, "twitter_buzz", "site:twitter.com {idea}", 3),
)
COMPETITOR_TEMPLATE = PlanTemplate(ProviderSource.FIRECRAWL, "competitor_analysis", "{idea}", 2)
MARKET_SIZE_TEMPLATE = PlanTemplate(ProviderSource.SERPAPI, "market_size", "{idea} market size TAM", 3)


def _clean(text: str) -> str:
    return " ".join(text.split()).strip()


def normalize_keywords(descriptor: InputDescriptor) -> list[str]:
    """Collect lower-cased search keywords in first-occurrence order.

    Idea words shorter than four characters are dropped; market, audience
    and competitor phrases are kept whole.
    """
    candidates = [
        word
        for word in descriptor.idea.lower().split()
        if len(word) >= MIN_KEYWORD_LENGTH
    ]
    for phrases in (
        descriptor.target_markets,
        descriptor.audience_profiles,
        descriptor.competitor_hints,
    ):
        candidates.extend(_clean(phrase).lower() for phrase in phrases)

    keywords: list[str] = []
    seen: set[str] = set()
    for keyword in candidates:
        if not keyword or keyword in seen:
            continue
        seen.add(keyword)
        keywords.append(keyword)
    return keywords


def dedupe_key(source: str, purpose: str, query: str) -> str:
    return f"{source}|{purpose}|{query}".lower()


def build_fetch_plan(descriptor: InputDescriptor, keywords: list[str]) -> list[FetchPlanItem]:
    """Expand the fixed template set into an ordered, deduplicated fetch plan.

    Pure: the same descriptor and keywords always yield the same plan.
    """
    # Queries carry the idea text as given; only the emptiness check strips it.
    idea = descriptor.idea
    if not idea.strip():
        raise ValueError("idea must not be empty")

    expanded: list[tuple[PlanTemplate, str]] = [
        (template, template.query.format(idea=idea)) for template in BASE_TEMPLATES
    ]
    for hint in descriptor.competitor_hints:
        hint = _clean(hint)
        if hint:
            expanded.append((COMPETITOR_TEMPLATE, COMPETITOR_TEMPLATE.query.format(idea=hint)))
    for keyword in keywords[:MARKET_SIZE_KEYWORDS]:
        expanded.append((MARKET_SIZE_TEMPLATE, MARKET_SIZE_TEMPLATE.query.format(idea=keyword)))

    plan: list[FetchPlanItem] = []
    seen: set[str] = set()
    skipped = 0
    for template, query in expanded:
        key = dedupe_key(template.source.value, template.purpose, query)
        if key in seen:
            skipped += 1
            continue
        seen.add(key)
        plan.append(
            FetchPlanItem(
                id=f"{template.source.value}_{len(plan)}",
                source=template.source,
                purpose=template.purpose,
                query=query,
                dedupe_key=key,
                priority=template.priority,
            )
        )

    log_plan_built(idea, len(plan), skipped)
    return plan
