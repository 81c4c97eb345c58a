from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from ideahub.config import settings
from ideahub.models.tiles import DataQuality, TileOutput
from ideahub.services.tile_cache import (
    FileCacheBackend,
    MemoryCacheBackend,
    TileCacheKey,
    TileCacheLayer,
    build_cache_layer,
)


def _tile(score: int = 42) -> TileOutput:
    return TileOutput(
        metrics={"score": score},
        explanation="test",
        citations=[],
        charts=[],
        json={"score": score},
        confidence=50,
        data_quality=DataQuality.LOW,
    )


class _Clock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class _BrokenBackend:
    name = "broken"

    async def get(self, key):
        raise ConnectionError("store offline")

    async def set(self, key, value, ttl_seconds):
        raise ConnectionError("store offline")

    async def delete(self, key):
        raise ConnectionError("store offline")


class TestTileCacheKey:
    def test_prefix_is_normalized_and_truncated(self):
        key = TileCacheKey.build("pmf_score", "  AI   Dog Walking " + "x" * 200)

        assert key.idea_prefix.startswith("ai dog walking ")
        assert len(key.idea_prefix) == 100
        assert key.filters_hash == ""
        assert str(key).startswith("pmf_score:ai dog walking")

    def test_filters_hash_ignores_key_order(self):
        first = TileCacheKey.build("market_size", "idea", {"geo": "US", "horizon": "1y"})
        second = TileCacheKey.build("market_size", "idea", {"horizon": "1y", "geo": "US"})

        assert first == second
        assert len(first.filters_hash) == 16
        assert first.storage_tile_type == f"market_size#{first.filters_hash}"


class TestMemoryCacheBackend:
    @pytest.mark.asyncio
    async def test_entries_expire_after_ttl(self):
        clock = _Clock()
        backend = MemoryCacheBackend(max_items=10, clock=clock)
        key = TileCacheKey.build("sentiment", "idea")

        await backend.set(key, {"data": {}}, ttl_seconds=60)
        clock.now += 59
        assert await backend.get(key) == {"data": {}}
        clock.now += 1
        assert await backend.get(key) is None

    @pytest.mark.asyncio
    async def test_oldest_entry_evicted_past_capacity(self):
        backend = MemoryCacheBackend(max_items=2)
        keys = [TileCacheKey.build("sentiment", f"idea {i}") for i in range(3)]
        for key in keys:
            await backend.set(key, {"data": {}}, ttl_seconds=60)

        assert len(backend) == 2
        assert await backend.get(keys[0]) is None
        assert await backend.get(keys[2]) is not None


class TestFileCacheBackend:
    @pytest.mark.asyncio
    async def test_round_trip_and_expiry(self, tmp_path):
        backend = FileCacheBackend(str(tmp_path))
        key = TileCacheKey.build("market_size", "idea")

        await backend.set(key, {"data": {"a": 1}}, ttl_seconds=3600)
        assert await backend.get(key) == {"data": {"a": 1}}

        path = backend.path_for(key)
        payload = json.loads(path.read_text(encoding="utf-8"))
        payload["expires_at"] = (datetime.now(timezone.utc) - timedelta(seconds=1)).isoformat()
        path.write_text(json.dumps(payload), encoding="utf-8")
        assert await backend.get(key) is None

    @pytest.mark.asyncio
    async def test_corrupt_file_is_a_miss(self, tmp_path):
        backend = FileCacheBackend(str(tmp_path))
        key = TileCacheKey.build("market_size", "idea")
        backend.path_for(key).write_text("{not json", encoding="utf-8")

        assert await backend.get(key) is None


class TestTileCacheLayer:
    @pytest.mark.asyncio
    async def test_hit_in_slower_tier_backfills_memory(self, tmp_path):
        memory = MemoryCacheBackend(max_items=10)
        file_tier = FileCacheBackend(str(tmp_path))
        key = TileCacheKey.build("pmf_score", "idea")
        await TileCacheLayer([file_tier]).set(key, _tile(7))

        layer = TileCacheLayer([memory, file_tier])
        tile = await layer.get(key)

        assert tile == _tile(7)
        assert await memory.get(key) is not None

    @pytest.mark.asyncio
    async def test_broken_tier_is_treated_as_miss(self):
        memory = MemoryCacheBackend(max_items=10)
        layer = TileCacheLayer([_BrokenBackend(), memory])
        key = TileCacheKey.build("pmf_score", "idea")

        await layer.set(key, _tile())
        assert await layer.get(key) == _tile()
        await layer.invalidate(key)
        assert await layer.get(key) is None

    @pytest.mark.asyncio
    async def test_ttl_comes_from_tile_type(self):
        layer = TileCacheLayer([], default_ttl_seconds=123)

        assert layer.ttl_for(TileCacheKey.build("sentiment", "i")) == 15 * 60
        assert layer.ttl_for(TileCacheKey.build("market_size", "i")) == 60 * 60
        assert layer.ttl_for(TileCacheKey.build("custom_tile", "i")) == 123

    @pytest.mark.asyncio
    async def test_run_once_collapses_concurrent_producers(self):
        layer = TileCacheLayer([])
        key = TileCacheKey.build("pmf_score", "idea")
        calls = 0
        release = asyncio.Event()

        async def produce():
            nonlocal calls
            calls += 1
            await release.wait()
            return _tile()

        waiters = [asyncio.create_task(layer.run_once(key, produce)) for _ in range(5)]
        await asyncio.sleep(0)
        assert layer.in_flight(key)
        release.set()
        results = await asyncio.gather(*waiters)

        assert calls == 1
        assert all(result == _tile() for result in results)
        await asyncio.sleep(0)
        assert not layer.in_flight(key)


def test_build_cache_layer_rejects_unknown_tier(monkeypatch):
    monkeypatch.setattr(settings, "tile_cache_persistent", "redis")

    with pytest.raises(ValueError):
        build_cache_layer()


def test_build_cache_layer_adds_file_tier(monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "tile_cache_persistent", "file")
    monkeypatch.setattr(settings, "tile_cache_dir", str(tmp_path))

    layer = build_cache_layer()

    assert [tier.name for tier in layer.tiers] == ["memory", "file"]
