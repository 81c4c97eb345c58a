from __future__ import annotations

import asyncio

import pytest

from ideahub.agents.orchestrator import DataHubOrchestrator
from ideahub.models.hub import DataHubIndices, InputDescriptor, ProviderPayload, ProviderSource, SearchRecord
from ideahub.services.idea_store import IdeaStore
from ideahub.services.sentiment import KeywordSentimentClassifier
from ideahub.services.tile_cache import MemoryCacheBackend, TileCacheLayer

IDEA = "AI powered dog walking app"


class _FakeFetcher:
    def __init__(self, name: str, payload: ProviderPayload | None = None, delay: float = 0.0):
        self.name = name
        self.unit_cost = 0.001
        self.payload = payload or ProviderPayload()
        self.delay = delay
        self.calls: list[tuple[str, str]] = []

    async def fetch(self, query: str, purpose: str) -> ProviderPayload:
        self.calls.append((query, purpose))
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.payload


class _BrokenBackend:
    name = "broken"

    async def get(self, key):
        raise ConnectionError("cache offline")

    async def set(self, key, value, ttl_seconds):
        raise ConnectionError("cache offline")

    async def delete(self, key):
        raise ConnectionError("cache offline")


def _fetchers(delay: float = 0.0) -> dict[str, _FakeFetcher]:
    organic = [
        {"url": "https://a.com/1", "title": "Rover vs Wag", "snippet": "great app", "position": 1},
        {"url": "https://b.com/2", "title": "Dog walking guide", "snippet": "tips", "position": 2},
    ]
    fetchers = {source.value: _FakeFetcher(source.value, delay=delay) for source in ProviderSource}
    fetchers["serper"].payload = ProviderPayload(organic=organic)
    return fetchers


def _orchestrator(fetchers, cache: TileCacheLayer | None = None) -> DataHubOrchestrator:
    return DataHubOrchestrator(
        fetchers,
        cache or TileCacheLayer([MemoryCacheBackend(max_items=50)]),
        classifier=KeywordSentimentClassifier(),
    )


def _total_calls(fetchers: dict[str, _FakeFetcher]) -> int:
    return sum(len(fetcher.calls) for fetcher in fetchers.values())


@pytest.mark.asyncio
async def test_second_request_is_served_from_cache():
    fetchers = _fetchers()
    hub = _orchestrator(fetchers)
    descriptor = InputDescriptor(idea=IDEA)

    first = await hub.get_tile("web_search", descriptor)
    second = await hub.get_tile("web_search", descriptor)

    assert first == second
    assert _total_calls(fetchers) == 12
    assert first.metrics


@pytest.mark.asyncio
async def test_concurrent_tiles_share_one_fetch_run():
    fetchers = _fetchers(delay=0.05)
    hub = _orchestrator(fetchers)

    tiles = await hub.get_tiles(["pmf_score", "market_size", "web_search"], InputDescriptor(idea=IDEA))

    assert set(tiles) == {"pmf_score", "market_size", "web_search"}
    assert len(fetchers["serper"].calls) == 3
    assert _total_calls(fetchers) == 12


@pytest.mark.asyncio
async def test_concurrent_requests_for_one_tile_produce_once():
    fetchers = _fetchers(delay=0.05)
    hub = _orchestrator(fetchers)
    descriptor = InputDescriptor(idea=IDEA)

    results = await asyncio.gather(*(hub.get_tile("pmf_score", descriptor) for _ in range(4)))

    assert all(result == results[0] for result in results)
    assert _total_calls(fetchers) == 12


@pytest.mark.asyncio
async def test_unavailable_cache_still_serves_tiles():
    fetchers = _fetchers()
    hub = _orchestrator(fetchers, TileCacheLayer([_BrokenBackend()]))
    descriptor = InputDescriptor(idea=IDEA)

    tile = await hub.get_tile("web_search", descriptor)
    await hub.get_tile("web_search", descriptor)

    assert tile.metrics
    # indices stay warm for the same plan, so no second fetch run
    assert _total_calls(fetchers) == 12


class _IdeaScopedFetcher(_FakeFetcher):
    """Returns results only for queries mentioning `marker`."""

    def __init__(self, name: str, marker: str, payload: ProviderPayload, delay: float):
        super().__init__(name, payload, delay)
        self.marker = marker

    async def fetch(self, query: str, purpose: str) -> ProviderPayload:
        payload = await super().fetch(query, purpose)
        return payload if self.marker in query else ProviderPayload()


@pytest.mark.asyncio
async def test_concurrent_ideas_get_tiles_from_their_own_data():
    organic = [
        {"url": f"https://b.com/{i}", "title": f"Backpack {i}", "snippet": "s", "position": i + 1}
        for i in range(40)
    ]
    fetchers = _fetchers(delay=0.02)
    fetchers["serper"] = _IdeaScopedFetcher("serper", "Solar", ProviderPayload(organic=organic), delay=0.05)
    hub = _orchestrator(fetchers)
    dog = InputDescriptor(idea=IDEA)
    solar = InputDescriptor(idea="Solar powered backpack")

    dog_tile, solar_tile = await asyncio.gather(
        hub.get_tile("web_search", dog),
        hub.get_tile("web_search", solar),
    )

    assert dog_tile.is_insufficient
    assert dog_tile.confidence == 0
    assert solar_tile.metrics["total_results"] == 120
    # the cached entry for the first idea holds its own result
    assert (await hub.get_tile("web_search", dog)).is_insufficient


@pytest.mark.asyncio
async def test_hub_summary_reports_requests_and_costs():
    hub = _orchestrator(_fetchers())

    await hub.refresh(InputDescriptor(idea=IDEA))
    summary = hub.hub_summary()

    assert summary["requests"] == 12
    assert summary["deduped"] == 0
    assert summary["failures"] == 0
    assert summary["estimated_cost"] == pytest.approx(0.012)
    assert set(summary["providers_used"]) == {"serper", "scraperapi", "brave", "tavily", "serpapi"}
    assert summary["counts"]["search"] == 6
    assert summary["fetched_at"]


@pytest.mark.asyncio
async def test_idea_change_discards_indices():
    fetchers = _fetchers()
    hub = _orchestrator(fetchers)
    store = IdeaStore()
    hub.bind_idea_store(store)
    store.set(IDEA)

    await hub.get_tile("web_search")
    assert hub.indices.counts()["search"] > 0

    store.set("Solar powered backpack")

    assert all(value == 0 for value in hub.indices.counts().values())
    assert hub.last_report is None
    assert hub.hub_summary()["fetched_at"] is None


@pytest.mark.asyncio
async def test_empty_idea_is_rejected():
    hub = _orchestrator(_fetchers())

    with pytest.raises(ValueError):
        await hub.get_tile("pmf_score", InputDescriptor(idea="  "))
    with pytest.raises(ValueError):
        await hub.get_tile("pmf_score")


@pytest.mark.asyncio
async def test_filters_get_their_own_cache_entry():
    fetchers = _fetchers()
    hub = _orchestrator(fetchers)
    descriptor = InputDescriptor(idea=IDEA)

    await hub.get_tile("market_size", descriptor)
    await hub.get_tile("market_size", descriptor, filters={"geo": "EU"})

    # same plan, so the second tile reuses the indices without refetching
    assert _total_calls(fetchers) == 12


@pytest.mark.asyncio
async def test_installed_indices_are_used_without_fetching():
    fetchers = _fetchers()
    hub = _orchestrator(fetchers)
    descriptor = InputDescriptor(idea=IDEA)
    indices = DataHubIndices(
        search=[
            SearchRecord(url="https://x.com", title="X", snippet="s", source="serper",
                         fetched_at="2025-01-01T00:00:00+00:00", relevance_score=0.8)
        ]
    )

    hub.set_indices(indices, descriptor)
    tile = await hub.get_tile("web_search", descriptor)

    assert tile.metrics["total_results"] == 1
    assert _total_calls(fetchers) == 0
