from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from ideahub.config import settings
from ideahub.services import supabase
from ideahub.services.tile_cache import SupabaseCacheBackend, TileCacheKey


@pytest.mark.asyncio
async def test_backend_reads_rows_by_owner_idea_and_tile(monkeypatch):
    get_cached = AsyncMock(return_value={"data": '{"data": {"metrics": {}}}'})
    monkeypatch.setattr(supabase, "get_cached_tile", get_cached)
    key = TileCacheKey.build("market_size", "Dog Walking", {"geo": "US"})

    value = await SupabaseCacheBackend("user-1").get(key)

    assert value == {"data": {"metrics": {}}}
    get_cached.assert_awaited_once_with("user-1", "dog walking", key.storage_tile_type)


@pytest.mark.asyncio
async def test_backend_upserts_with_expiry(monkeypatch):
    upsert = AsyncMock()
    monkeypatch.setattr(supabase, "upsert_cached_tile", upsert)
    key = TileCacheKey.build("sentiment", "idea")

    await SupabaseCacheBackend().set(key, {"data": {"score": 1}}, ttl_seconds=900)

    owner, idea, tile_type, data, expires_at = upsert.await_args.args
    assert owner == settings.cache_owner_key
    assert (idea, tile_type, data) == ("idea", "sentiment", {"data": {"score": 1}})
    assert expires_at


@pytest.mark.asyncio
async def test_backend_skips_non_positive_ttl(monkeypatch):
    upsert = AsyncMock()
    monkeypatch.setattr(supabase, "upsert_cached_tile", upsert)

    await SupabaseCacheBackend().set(TileCacheKey.build("sentiment", "idea"), {"data": {}}, ttl_seconds=0)

    upsert.assert_not_awaited()


@pytest.mark.asyncio
async def test_get_cached_tile_filters_unexpired_rows(monkeypatch):
    fake_client = MagicMock()
    query = fake_client.table.return_value.select.return_value
    query.eq.return_value = query
    query.gt.return_value = query
    query.limit.return_value = query
    query.execute.return_value = MagicMock(data=[{"tile_type": "pmf_score", "data": {}}])
    monkeypatch.setattr(supabase, "client", lambda: fake_client)

    row = await supabase.get_cached_tile("user-1", "idea", "pmf_score")

    assert row == {"tile_type": "pmf_score", "data": {}}
    fake_client.table.assert_called_with(settings.supabase_cache_table)
    assert query.gt.call_args.args[0] == "expires_at"
    query.limit.assert_called_once_with(1)


def test_get_client_requires_configuration(monkeypatch):
    monkeypatch.setattr(settings, "supabase_url", "")

    with pytest.raises(RuntimeError):
        supabase.get_client()
