from __future__ import annotations

import asyncio
import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from hashlib import sha256
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol, TypeVar

from ideahub.config import settings
from ideahub.models.tiles import TileOutput
from ideahub.services import supabase
from ideahub.services.logger import log_cache_operation
from ideahub.services.tile_formulas import ttl_for

T = TypeVar("T")

CACHE_VERSION = 1
IDEA_PREFIX_CHARS = 100


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class TileCacheKey:
    tile_type: str
    idea_prefix: str
    filters_hash: str = ""

    @classmethod
    def build(cls, tile_type: str, idea: str, filters: dict[str, Any] | None = None) -> "TileCacheKey":
        prefix = " ".join(idea.split()).lower()[:IDEA_PREFIX_CHARS]
        filters_hash = ""
        if filters:
            material = json.dumps(filters, sort_keys=True, default=str)
            filters_hash = sha256(material.encode("utf-8")).hexdigest()[:16]
        return cls(tile_type=tile_type, idea_prefix=prefix, filters_hash=filters_hash)

    @property
    def storage_tile_type(self) -> str:
        """Tile column value for row-oriented stores; filtered variants get a suffix."""
        if self.filters_hash:
            return f"{self.tile_type}#{self.filters_hash}"
        return self.tile_type

    def __str__(self) -> str:
        return f"{self.tile_type}:{self.idea_prefix}:{self.filters_hash}"


class CacheBackend(Protocol):
    name: str

    async def get(self, key: TileCacheKey) -> dict[str, Any] | None: ...

    async def set(self, key: TileCacheKey, value: dict[str, Any], ttl_seconds: int) -> None: ...

    async def delete(self, key: TileCacheKey) -> None: ...


class MemoryCacheBackend:
    """Process-local TTL cache; evicts the oldest entry past `max_items`."""

    name = "memory"

    def __init__(self, *, max_items: int | None = None, clock: Callable[[], float] = time.time):
        self.max_items = max(max_items or settings.tile_cache_memory_max_items, 1)
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, dict[str, Any]]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: TileCacheKey) -> dict[str, Any] | None:
        entry = self._entries.get(str(key))
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[str(key)]
            return None
        return value

    async def set(self, key: TileCacheKey, value: dict[str, Any], ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        self._entries.pop(str(key), None)
        self._entries[str(key)] = (self._clock() + ttl_seconds, value)
        while len(self._entries) > self.max_items:
            self._entries.popitem(last=False)

    async def delete(self, key: TileCacheKey) -> None:
        self._entries.pop(str(key), None)


class FileCacheBackend:
    """One JSON file per key under `cache_dir`."""

    name = "file"

    def __init__(self, cache_dir: str | None = None):
        self.cache_dir = Path(cache_dir or settings.tile_cache_dir)

    def path_for(self, key: TileCacheKey) -> Path:
        digest = sha256(f"v{CACHE_VERSION}|{key}".encode("utf-8")).hexdigest()
        return self.cache_dir / f"{digest}.json"

    async def get(self, key: TileCacheKey) -> dict[str, Any] | None:
        path = self.path_for(key)
        if not path.exists():
            return None

        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return None

        expires_at_raw = payload.get("expires_at")
        if not isinstance(expires_at_raw, str):
            return None
        try:
            expires_at = datetime.fromisoformat(expires_at_raw)
        except ValueError:
            return None
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if _utc_now() >= expires_at:
            return None

        value = payload.get("value")
        return value if isinstance(value, dict) else None

    async def set(self, key: TileCacheKey, value: dict[str, Any], ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        now = _utc_now()
        payload = {
            "version": CACHE_VERSION,
            "key": str(key),
            "fetched_at": now.isoformat(),
            "expires_at": (now + timedelta(seconds=ttl_seconds)).isoformat(),
            "value": value,
        }
        path.write_text(json.dumps(payload, ensure_ascii=True, default=str), encoding="utf-8")

    async def delete(self, key: TileCacheKey) -> None:
        self.path_for(key).unlink(missing_ok=True)


class SupabaseCacheBackend:
    """Rows in the `dashboard_data` table, unique per owner, idea and tile."""

    name = "supabase"

    def __init__(self, owner_key: str | None = None):
        self.owner_key = owner_key or settings.cache_owner_key

    async def get(self, key: TileCacheKey) -> dict[str, Any] | None:
        row = await supabase.get_cached_tile(self.owner_key, key.idea_prefix, key.storage_tile_type)
        if not row:
            return None
        data = row.get("data")
        if isinstance(data, str):
            data = json.loads(data)
        return data if isinstance(data, dict) else None

    async def set(self, key: TileCacheKey, value: dict[str, Any], ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        expires_at = (_utc_now() + timedelta(seconds=ttl_seconds)).isoformat()
        await supabase.upsert_cached_tile(
            self.owner_key,
            key.idea_prefix,
            key.storage_tile_type,
            json.loads(json.dumps(value, default=str)),
            expires_at,
        )

    async def delete(self, key: TileCacheKey) -> None:
        await supabase.delete_cached_tile(self.owner_key, key.idea_prefix, key.storage_tile_type)


class TileCacheLayer:
    """Read-through, write-through tile cache over ordered tiers.

    Tier failures are logged and treated as misses. Concurrent producers for
    the same key share one task via `run_once`.
    """

    def __init__(self, tiers: list[CacheBackend], *, default_ttl_seconds: int | None = None):
        self.tiers = list(tiers)
        self.default_ttl_seconds = (
            default_ttl_seconds
            if default_ttl_seconds is not None
            else settings.tile_cache_default_ttl_seconds
        )
        self._in_flight: dict[str, asyncio.Task] = {}

    def ttl_for(self, key: TileCacheKey) -> int:
        return ttl_for(key.tile_type, self.default_ttl_seconds)

    async def get(self, key: TileCacheKey) -> TileOutput | None:
        for index, tier in enumerate(self.tiers):
            try:
                envelope = await tier.get(key)
            except Exception as e:
                log_cache_operation("get", tier.name, str(key), "error", error=str(e))
                continue
            if not envelope or not isinstance(envelope.get("data"), dict):
                continue
            try:
                tile = TileOutput.from_dict(envelope["data"])
            except (TypeError, ValueError) as e:
                log_cache_operation("decode", tier.name, str(key), "error", error=str(e))
                continue
            log_cache_operation("get", tier.name, str(key), "hit")
            for faster in self.tiers[:index]:
                await self._set_tier(faster, key, envelope)
            return tile
        return None

    async def _set_tier(self, tier: CacheBackend, key: TileCacheKey, envelope: dict[str, Any]) -> None:
        try:
            await tier.set(key, envelope, self.ttl_for(key))
        except Exception as e:
            log_cache_operation("set", tier.name, str(key), "error", error=str(e))
            return
        log_cache_operation("set", tier.name, str(key), "success")

    async def set(self, key: TileCacheKey, tile: TileOutput) -> None:
        envelope = {"data": tile.to_dict(), "timestamp": _utc_now().isoformat()}
        for tier in self.tiers:
            await self._set_tier(tier, key, envelope)

    async def invalidate(self, key: TileCacheKey) -> None:
        for tier in self.tiers:
            try:
                await tier.delete(key)
            except Exception as e:
                log_cache_operation("delete", tier.name, str(key), "error", error=str(e))

    def in_flight(self, key: TileCacheKey | str) -> bool:
        return str(key) in self._in_flight

    async def run_once(self, key: TileCacheKey | str, factory: Callable[[], Awaitable[T]]) -> T:
        """Await the in-flight producer for `key`, starting one if none runs."""
        name = str(key)
        task = self._in_flight.get(name)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._in_flight[name] = task
            task.add_done_callback(lambda _: self._in_flight.pop(name, None))
        return await asyncio.shield(task)


def build_cache_layer(owner_key: str | None = None) -> TileCacheLayer:
    """Memory tier plus the persistent tier chosen in settings."""
    tiers: list[CacheBackend] = [MemoryCacheBackend()]
    persistent = settings.tile_cache_persistent.lower().strip()
    if persistent == "file":
        tiers.append(FileCacheBackend())
    elif persistent == "supabase":
        tiers.append(SupabaseCacheBackend(owner_key))
    elif persistent != "none":
        raise ValueError(f"Unsupported tile cache tier: {settings.tile_cache_persistent}")
    return TileCacheLayer(tiers)
