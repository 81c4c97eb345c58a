from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol

from ideahub.config import settings
from ideahub.models.hub import ProviderPayload, ProviderSource
from ideahub.tools import (
    brave_search,
    firecrawl_fetch,
    scraperapi_search,
    serpapi_search,
    serper_search,
    tavily_search,
)

# Estimated USD cost of one request, used for the provider log.
UNIT_COSTS: dict[str, float] = {
    ProviderSource.SERPER.value: 0.001,
    ProviderSource.TAVILY.value: 0.0005,
    ProviderSource.BRAVE.value: 0.0003,
    ProviderSource.FIRECRAWL.value: 0.002,
    ProviderSource.SERPAPI.value: 0.001,
    ProviderSource.SCRAPERAPI.value: 0.0015,
    ProviderSource.GROQ.value: 0.0001,
}
DEFAULT_UNIT_COST = 0.001


class Fetcher(Protocol):
    name: str
    unit_cost: float

    async def fetch(self, query: str, purpose: str) -> ProviderPayload: ...


@dataclass(slots=True)
class ProviderFetcher:
    name: str
    unit_cost: float
    search_fn: Callable[..., Awaitable[ProviderPayload]]

    async def fetch(self, query: str, purpose: str) -> ProviderPayload:
        return await self.search_fn(
            query,
            purpose=purpose,
            max_results=settings.provider_results_per_query,
        )


def unit_cost(provider: str, fetcher: object | None = None) -> float:
    cost = getattr(fetcher, "unit_cost", None)
    if isinstance(cost, (int, float)):
        return float(cost)
    return UNIT_COSTS.get(provider, DEFAULT_UNIT_COST)


def build_default_fetchers() -> dict[str, Fetcher]:
    """One fetcher per search provider. Missing API keys fail at fetch time."""
    search_fns = {
        ProviderSource.SERPER.value: serper_search.search,
        ProviderSource.BRAVE.value: brave_search.search,
        ProviderSource.TAVILY.value: tavily_search.search,
        ProviderSource.SERPAPI.value: serpapi_search.search,
        ProviderSource.SCRAPERAPI.value: scraperapi_search.search,
        ProviderSource.FIRECRAWL.value: firecrawl_fetch.search,
    }
    return {
        name: ProviderFetcher(name=name, unit_cost=UNIT_COSTS[name], search_fn=fn)
        for name, fn in search_fns.items()
    }
