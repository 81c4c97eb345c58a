from __future__ import annotations

import asyncio

import pytest

from ideahub.models.hub import (
    DataHubIndices,
    FetchPlanItem,
    InputDescriptor,
    ProviderErrorEntry,
    ProviderLogEntry,
    ProviderPayload,
    ProviderSource,
)
from ideahub.services.circuit_breaker import BreakerRegistry
from ideahub.services.fetch_executor import execute_fetch_plan
from ideahub.services.fetch_plan import build_fetch_plan, dedupe_key, normalize_keywords
from ideahub.services.sentiment import KeywordSentimentClassifier
from ideahub.services.tile_synthesizer import TileSynthesizer


class _FakeFetcher:
    def __init__(self, name: str, payload: ProviderPayload | None = None, *, error: Exception | None = None,
                 delay: float = 0.0, unit_cost: float = 0.001):
        self.name = name
        self.unit_cost = unit_cost
        self.payload = payload or ProviderPayload()
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, str]] = []

    async def fetch(self, query: str, purpose: str) -> ProviderPayload:
        self.calls.append((query, purpose))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.payload


def _item(item_id: str, source: ProviderSource, purpose: str, query: str) -> FetchPlanItem:
    return FetchPlanItem(
        id=item_id,
        source=source,
        purpose=purpose,
        query=query,
        dedupe_key=dedupe_key(source.value, purpose, query),
    )


def _empty_fetchers() -> dict[str, _FakeFetcher]:
    return {source.value: _FakeFetcher(source.value) for source in ProviderSource}


async def _execute(plan, fetchers, indices, **kwargs):
    kwargs.setdefault("classifier", KeywordSentimentClassifier())
    kwargs.setdefault("breakers", BreakerRegistry())
    return await execute_fetch_plan(plan, fetchers, indices, **kwargs)


@pytest.mark.asyncio
async def test_duplicate_dedupe_keys_fetch_once_and_share_outcome():
    organic = [{"url": "https://a.com", "title": "A", "snippet": "s", "position": 1}]
    fetcher = _FakeFetcher("serper", ProviderPayload(organic=organic))
    plan = [
        _item("serper_0", ProviderSource.SERPER, "market_overview", "Dog walking"),
        _item("serper_1", ProviderSource.SERPER, "market_overview", "dog WALKING"),
    ]
    indices = DataHubIndices()

    report = await _execute(plan, {"serper": fetcher}, indices)

    assert len(fetcher.calls) == 1
    assert report.dedupe_map == {"serper_1": "serper_0"}
    assert report.outcomes["serper_1"] is report.outcomes["serper_0"]
    assert report.request_counts == {"serper": 1}
    assert len(indices.search) == 1
    summary = indices.provider_summaries()
    assert summary[0].request_count == 1
    assert summary[0].dedupe_count == 1


@pytest.mark.asyncio
async def test_failing_provider_does_not_affect_siblings():
    fetchers = {
        "serper": _FakeFetcher(
            "serper",
            ProviderPayload(organic=[{"url": "https://a.com", "title": "A", "snippet": "s", "position": 2}]),
        ),
        "brave": _FakeFetcher("brave", error=RuntimeError("brave down")),
    }
    plan = [
        _item("serper_0", ProviderSource.SERPER, "market_overview", "idea"),
        _item("brave_1", ProviderSource.BRAVE, "news_recent", "idea news latest"),
    ]
    indices = DataHubIndices()

    report = await _execute(plan, fetchers, indices)

    assert [o.item_id for o in report.succeeded] == ["serper_0"]
    assert [o.item_id for o in report.failed] == ["brave_1"]
    assert len(indices.search) == 1
    errors = indices.provider_errors()
    assert len(errors) == 1
    assert errors[0].provider == "brave"
    assert errors[0].error == "brave down"
    assert errors[0].query == "idea news latest"

    synthesizer = TileSynthesizer(indices)
    assert synthesizer.synthesize("web_search").confidence > 0
    assert synthesizer.synthesize("market_trends").is_insufficient


@pytest.mark.asyncio
async def test_summary_entries_follow_error_entries_with_costs():
    fetchers = {
        "serper": _FakeFetcher("serper", unit_cost=0.001),
        "tavily": _FakeFetcher("tavily", error=ValueError("bad payload"), unit_cost=0.0005),
    }
    plan = [
        _item("serper_0", ProviderSource.SERPER, "market_overview", "a"),
        _item("serper_1", ProviderSource.SERPER, "competitor_search", "a competitors"),
        _item("serper_2", ProviderSource.SERPER, "pricing_search", "a pricing"),
        _item("tavily_3", ProviderSource.TAVILY, "reddit_sentiment", "site:reddit.com a"),
    ]
    indices = DataHubIndices()

    await _execute(plan, fetchers, indices)

    assert isinstance(indices.provider_log[0], ProviderErrorEntry)
    summaries = indices.provider_log[1:]
    assert all(isinstance(entry, ProviderLogEntry) for entry in summaries)
    assert [(s.provider, s.request_count) for s in summaries] == [("serper", 3), ("tavily", 1)]
    assert summaries[0].estimated_cost == pytest.approx(0.003)
    assert summaries[1].estimated_cost == pytest.approx(0.0005)
    assert all(s.dedupe_count == 0 for s in summaries)


@pytest.mark.asyncio
async def test_slow_fetch_times_out_as_failure():
    fetchers = {"brave": _FakeFetcher("brave", delay=1.0)}
    plan = [_item("brave_0", ProviderSource.BRAVE, "news_recent", "idea news latest")]
    indices = DataHubIndices()

    report = await _execute(plan, fetchers, indices, timeout=0.01)

    assert report.failed[0].error == "timed out after 0.01s"
    assert indices.provider_errors()[0].error.startswith("timed out")


@pytest.mark.asyncio
async def test_missing_fetcher_is_recorded_not_raised():
    plan = [_item("firecrawl_0", ProviderSource.FIRECRAWL, "competitor_analysis", "Rover")]
    indices = DataHubIndices()

    report = await _execute(plan, {}, indices)

    assert report.failed[0].provider == "firecrawl"
    assert "no fetcher registered" in indices.provider_errors()[0].error
    assert indices.provider_summaries()[0].request_count == 1


@pytest.mark.asyncio
async def test_open_circuit_short_circuits_next_run():
    fetcher = _FakeFetcher("serper", error=RuntimeError("quota exceeded"))
    breakers = BreakerRegistry(max_failures=1, reset_seconds=60)
    plan = [_item("serper_0", ProviderSource.SERPER, "market_overview", "idea")]

    await _execute(plan, {"serper": fetcher}, DataHubIndices(), breakers=breakers)
    indices = DataHubIndices()
    await _execute(plan, {"serper": fetcher}, indices, breakers=breakers)

    assert len(fetcher.calls) == 1
    assert "circuit open" in indices.provider_errors()[0].error


@pytest.mark.asyncio
async def test_fetches_run_concurrently():
    fetchers = {
        source: _FakeFetcher(source, delay=0.2)
        for source in ("serper", "brave", "tavily")
    }
    plan = [
        _item("serper_0", ProviderSource.SERPER, "market_overview", "x"),
        _item("brave_1", ProviderSource.BRAVE, "news_recent", "x news"),
        _item("tavily_2", ProviderSource.TAVILY, "reddit_sentiment", "site:reddit.com x"),
    ]

    report = await _execute(plan, fetchers, DataHubIndices(), max_parallel=3)

    assert len(report.succeeded) == 3
    assert report.duration_ms < 550


@pytest.mark.asyncio
async def test_all_empty_providers_give_empty_indices_and_zero_market_size():
    descriptor = InputDescriptor(idea="AI powered dog walking app")
    plan = build_fetch_plan(descriptor, normalize_keywords(descriptor))
    indices = DataHubIndices()

    report = await _execute(plan, _empty_fetchers(), indices)

    assert len(report.succeeded) == 12
    counts = indices.counts()
    assert all(value == 0 for value in counts.values())
    assert indices.to_dict()["trends"] is None

    tile = TileSynthesizer(indices).synthesize("market_size")
    assert tile.metrics["tam"] == 0
    assert tile.metrics["sam"] == 0
    assert tile.metrics["som"] == 0
    assert tile.confidence == 0
