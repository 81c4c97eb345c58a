from __future__ import annotations

from typing import Any

import httpx

from ideahub.config import settings
from ideahub.models.hub import ProviderPayload

SERPAPI_URL = "https://serpapi.com/search.json"


def normalize_response(payload: dict[str, Any]) -> ProviderPayload:
    """Map SerpApi Google or Google Trends responses."""
    timeline = (payload.get("interest_over_time") or {}).get("timeline_data") or []
    if timeline:
        points = []
        for entry in timeline:
            values = entry.get("values") or [{}]
            points.append(
                {
                    "date": entry.get("date", ""),
                    "value": values[0].get("extracted_value", 0),
                }
            )
        return ProviderPayload(trends=points)

    organic = [
        {
            "url": item.get("link", ""),
            "title": item.get("title", ""),
            "snippet": item.get("snippet", ""),
            "position": item.get("position", idx + 1),
            "published_date": item.get("date", ""),
        }
        for idx, item in enumerate(payload.get("organic_results", []) or [])
    ]
    related = [
        str(item.get("query", ""))
        for item in payload.get("related_searches", []) or []
        if item.get("query")
    ]
    return ProviderPayload(organic=organic, related_queries=related)


async def search(query: str, *, purpose: str = "", max_results: int = 10) -> ProviderPayload:
    """Execute a SerpApi search; trends purposes hit the Google Trends engine."""
    if not settings.serpapi_api_key:
        raise RuntimeError("SERPAPI_API_KEY is not configured")

    params: dict[str, Any] = {"q": query, "api_key": settings.serpapi_api_key}
    if "trends" in purpose.lower():
        params.update({"engine": "google_trends", "data_type": "TIMESERIES"})
    else:
        params.update({"engine": "google", "num": max_results})

    async with httpx.AsyncClient(timeout=30.0) as client:
        response = await client.get(SERPAPI_URL, params=params)
        response.raise_for_status()
        payload = response.json()

    return normalize_response(payload)
