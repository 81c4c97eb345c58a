from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from hashlib import sha256
from typing import Any, Mapping

from loguru import logger

from ideahub.models.hub import DataHubIndices, FetchPlanItem, InputDescriptor
from ideahub.models.tiles import TileOutput
from ideahub.services.circuit_breaker import BreakerRegistry
from ideahub.services.fetch_executor import ExecutionReport, execute_fetch_plan
from ideahub.services.fetch_plan import build_fetch_plan, normalize_keywords
from ideahub.services.idea_store import IdeaStore
from ideahub.services.logger import log_event
from ideahub.services.sentiment import SentimentClassifier, get_classifier
from ideahub.services.tile_cache import TileCacheKey, TileCacheLayer, build_cache_layer
from ideahub.services.tile_synthesizer import TileSynthesizer
from ideahub.tools.providers import Fetcher, build_default_fetchers


def plan_signature(plan: list[FetchPlanItem]) -> str:
    material = "\n".join(item.dedupe_key for item in plan)
    return sha256(material.encode("utf-8")).hexdigest()[:16]


class DataHubOrchestrator:
    """Plans, fetches, indexes and synthesizes tiles for one idea at a time.

    Tiles are served from the cache when possible. On a miss, concurrent
    requests for the same tile share one producer, and concurrent refreshes
    for the same plan share one fetch run.
    """

    def __init__(
        self,
        fetchers: Mapping[str, Fetcher] | None = None,
        cache: TileCacheLayer | None = None,
        *,
        classifier: SentimentClassifier | None = None,
        breakers: BreakerRegistry | None = None,
        owner_key: str | None = None,
    ):
        self.fetchers = dict(fetchers) if fetchers is not None else build_default_fetchers()
        self.cache = cache if cache is not None else build_cache_layer(owner_key)
        self.classifier = classifier or get_classifier()
        self.breakers = breakers or BreakerRegistry()
        self.indices = DataHubIndices()
        self.last_report: ExecutionReport | None = None
        self._indexed_for: str | None = None
        self._fetched_at: str | None = None
        self._idea_store: IdeaStore | None = None
        self._unsubscribe = None

    # --- planning and fetching ---

    def prepare(self, descriptor: InputDescriptor) -> tuple[list[str], list[FetchPlanItem]]:
        keywords = normalize_keywords(descriptor)
        return keywords, build_fetch_plan(descriptor, keywords)

    async def refresh(self, descriptor: InputDescriptor) -> DataHubIndices:
        """Fetch everything for `descriptor` and replace the current indices."""
        _, plan = self.prepare(descriptor)
        signature = plan_signature(plan)
        return await self.cache.run_once(f"refresh:{signature}", lambda: self._run_plan(plan, signature))

    async def _run_plan(self, plan: list[FetchPlanItem], signature: str) -> DataHubIndices:
        indices = DataHubIndices()
        report = await execute_fetch_plan(
            plan,
            self.fetchers,
            indices,
            classifier=self.classifier,
            breakers=self.breakers,
        )
        self.indices = indices
        self.last_report = report
        self._indexed_for = signature
        self._fetched_at = datetime.now(timezone.utc).isoformat()
        log_event(
            event_type="hub_refreshed",
            message=f"Indexed {len(plan)} plan items",
            signature=signature,
            counts=indices.counts(),
        )
        return indices

    def set_indices(self, indices: DataHubIndices, descriptor: InputDescriptor | None = None) -> None:
        """Install pre-built indices, optionally marking them as fetched for `descriptor`."""
        self.indices = indices
        self._indexed_for = plan_signature(self.prepare(descriptor)[1]) if descriptor else None
        self._fetched_at = datetime.now(timezone.utc).isoformat()

    # --- tiles ---

    def _resolve(self, descriptor: InputDescriptor | None) -> InputDescriptor:
        if descriptor is None:
            if self._idea_store is None:
                raise ValueError("No descriptor given and no idea store bound")
            descriptor = InputDescriptor(idea=self._idea_store.get())
        if not descriptor.idea.strip():
            raise ValueError("idea must not be empty")
        return descriptor

    async def get_tile(
        self,
        tile_type: str,
        descriptor: InputDescriptor | None = None,
        filters: dict[str, Any] | None = None,
    ) -> TileOutput:
        descriptor = self._resolve(descriptor)
        key = TileCacheKey.build(tile_type, descriptor.idea, filters)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached
        return await self.cache.run_once(key, lambda: self._produce_tile(tile_type, descriptor, key))

    async def _produce_tile(
        self,
        tile_type: str,
        descriptor: InputDescriptor,
        key: TileCacheKey,
    ) -> TileOutput:
        # The tile must come from this plan's own indices, not self.indices
        # read after an await.
        _, plan = self.prepare(descriptor)
        indices = self.indices
        if self._indexed_for != plan_signature(plan):
            indices = await self.refresh(descriptor)
        tile = TileSynthesizer(indices).synthesize(tile_type)
        await self.cache.set(key, tile)
        return tile

    async def get_tiles(
        self,
        tile_types: list[str],
        descriptor: InputDescriptor | None = None,
        filters: dict[str, Any] | None = None,
    ) -> dict[str, TileOutput]:
        tiles = await asyncio.gather(
            *(self.get_tile(tile_type, descriptor, filters) for tile_type in tile_types)
        )
        return dict(zip(tile_types, tiles))

    # --- summary and idea binding ---

    def hub_summary(self) -> dict[str, Any]:
        summaries = self.indices.provider_summaries()
        return {
            "requests": sum(entry.request_count for entry in summaries),
            "deduped": summaries[0].dedupe_count if summaries else 0,
            "providers_used": [entry.provider for entry in summaries],
            "failures": len(self.indices.provider_errors()),
            "estimated_cost": round(sum(entry.estimated_cost for entry in summaries), 6),
            "fetched_at": self._fetched_at,
            "counts": self.indices.counts(),
        }

    def bind_idea_store(self, store: IdeaStore) -> None:
        """Discard indexed data whenever the store's idea changes."""
        if self._unsubscribe is not None:
            self._unsubscribe()
        self._idea_store = store
        self._unsubscribe = store.subscribe(self._on_idea_changed)

    def _on_idea_changed(self, idea: str) -> None:
        self.indices = DataHubIndices()
        self.last_report = None
        self._indexed_for = None
        self._fetched_at = None
        logger.info(f"Idea changed, cleared hub indices: {idea[:80]!r}")
