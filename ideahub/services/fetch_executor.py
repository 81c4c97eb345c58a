from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Mapping

from ideahub.config import settings
from ideahub.models.hub import (
    DataHubIndices,
    FetchPlanItem,
    ProviderErrorEntry,
    ProviderLogEntry,
    ProviderPayload,
)
from ideahub.services.circuit_breaker import BreakerRegistry
from ideahub.services.ingestion import ingest_payload
from ideahub.services.logger import log_event, log_provider_call
from ideahub.services.sentiment import SentimentClassifier, get_classifier
from ideahub.tools.providers import Fetcher, unit_cost


@dataclass(slots=True)
class FetchOutcome:
    item_id: str
    provider: str
    purpose: str
    query: str
    ok: bool
    records: int = 0
    error: str | None = None
    duration_ms: int = 0
    payload: ProviderPayload | None = None


@dataclass(slots=True)
class ExecutionReport:
    # Items sharing a dedupe key point at the same FetchOutcome object.
    outcomes: dict[str, FetchOutcome] = field(default_factory=dict)
    dedupe_map: dict[str, str] = field(default_factory=dict)
    request_counts: dict[str, int] = field(default_factory=dict)
    duration_ms: int = 0

    @property
    def executed(self) -> list[FetchOutcome]:
        return [
            outcome
            for item_id, outcome in self.outcomes.items()
            if item_id not in self.dedupe_map
        ]

    @property
    def succeeded(self) -> list[FetchOutcome]:
        return [outcome for outcome in self.executed if outcome.ok]

    @property
    def failed(self) -> list[FetchOutcome]:
        return [outcome for outcome in self.executed if not outcome.ok]


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error_text(exc: BaseException, timeout: float) -> str:
    if isinstance(exc, TimeoutError):
        return f"timed out after {timeout:g}s"
    return str(exc) or exc.__class__.__name__


async def execute_fetch_plan(
    plan: list[FetchPlanItem],
    fetchers: Mapping[str, Fetcher],
    indices: DataHubIndices,
    *,
    classifier: SentimentClassifier | None = None,
    breakers: BreakerRegistry | None = None,
    timeout: float | None = None,
    max_parallel: int | None = None,
) -> ExecutionReport:
    """Run every unique plan item concurrently and ingest the results.

    Duplicate dedupe keys are fetched once. A failing fetch is recorded in
    the provider log and never cancels its siblings. One summary entry per
    provider is appended after all fetches settle.
    """
    started = time.monotonic()
    classifier = classifier or get_classifier()
    breakers = breakers or BreakerRegistry()
    timeout = float(timeout if timeout is not None else settings.provider_timeout_seconds)
    semaphore = asyncio.Semaphore(max(max_parallel or settings.provider_max_parallel, 1))

    report = ExecutionReport()
    processed_queries: dict[str, str] = {}
    to_run: list[FetchPlanItem] = []
    for item in plan:
        first_id = processed_queries.get(item.dedupe_key)
        if first_id is not None:
            report.dedupe_map[item.id] = first_id
            continue
        processed_queries[item.dedupe_key] = item.id
        provider = item.source.value
        report.request_counts[provider] = report.request_counts.get(provider, 0) + 1
        to_run.append(item)

    async def run_item(item: FetchPlanItem) -> FetchOutcome:
        provider = item.source.value
        fetcher = fetchers.get(provider)
        item_started = time.monotonic()
        try:
            if fetcher is None:
                raise LookupError(f"no fetcher registered for provider {provider}")
            async with semaphore:
                payload = await breakers.get(provider).call(
                    lambda: asyncio.wait_for(fetcher.fetch(item.query, item.purpose), timeout=timeout)
                )
            records = await ingest_payload(item, payload, indices, classifier)
        except Exception as e:
            error = _error_text(e, timeout)
            duration_ms = int((time.monotonic() - item_started) * 1000)
            indices.provider_log.append(
                ProviderErrorEntry(
                    provider=provider,
                    error=error,
                    query=item.query,
                    timestamp=_utc_now(),
                )
            )
            log_provider_call(
                provider, item.purpose, item.query,
                duration_ms=duration_ms, status="error", error=error,
            )
            return FetchOutcome(
                item_id=item.id,
                provider=provider,
                purpose=item.purpose,
                query=item.query,
                ok=False,
                error=error,
                duration_ms=duration_ms,
            )

        duration_ms = int((time.monotonic() - item_started) * 1000)
        log_provider_call(
            provider, item.purpose, item.query,
            duration_ms=duration_ms, results=records,
        )
        return FetchOutcome(
            item_id=item.id,
            provider=provider,
            purpose=item.purpose,
            query=item.query,
            ok=True,
            records=records,
            duration_ms=duration_ms,
            payload=payload,
        )

    raw_outcomes = await asyncio.gather(
        *(run_item(item) for item in to_run),
        return_exceptions=True,
    )

    for item, outcome in zip(to_run, raw_outcomes):
        if isinstance(outcome, BaseException):
            # Only reachable for errors raised outside run_item's own handler.
            if not isinstance(outcome, Exception):
                raise outcome
            error = _error_text(outcome, timeout)
            indices.provider_log.append(
                ProviderErrorEntry(item.source.value, error, item.query, _utc_now())
            )
            outcome = FetchOutcome(
                item_id=item.id,
                provider=item.source.value,
                purpose=item.purpose,
                query=item.query,
                ok=False,
                error=error,
            )
        report.outcomes[item.id] = outcome

    for duplicate_id, first_id in report.dedupe_map.items():
        report.outcomes[duplicate_id] = report.outcomes[first_id]

    dedupe_count = len(report.dedupe_map)
    for provider, count in report.request_counts.items():
        indices.provider_log.append(
            ProviderLogEntry(
                provider=provider,
                request_count=count,
                dedupe_count=dedupe_count,
                estimated_cost=round(unit_cost(provider, fetchers.get(provider)) * count, 6),
                timestamp=_utc_now(),
            )
        )

    report.duration_ms = int((time.monotonic() - started) * 1000)
    log_event(
        event_type="fetch_plan_executed",
        message=f"Executed {len(to_run)} fetches, {dedupe_count} deduplicated",
        succeeded=len(report.succeeded),
        failed=len(report.failed),
        duration_ms=report.duration_ms,
    )
    return report
