from __future__ import annotations

from typing import Any

import httpx

from ideahub.config import settings
from ideahub.models.hub import ProviderPayload

SERPER_SEARCH_URL = "https://google.serper.dev/search"


def normalize_response(payload: dict[str, Any]) -> ProviderPayload:
    """Map Serper's Google result shape onto canonical organic results."""
    organic = [
        {
            "url": item.get("link", ""),
            "title": item.get("title", ""),
            "snippet": item.get("snippet", ""),
            "position": item.get("position", idx + 1),
            "published_date": item.get("date", ""),
        }
        for idx, item in enumerate(payload.get("organic", []) or [])
    ]
    related = [
        str(item.get("query", ""))
        for item in payload.get("relatedSearches", []) or []
        if item.get("query")
    ]
    return ProviderPayload(organic=organic, related_queries=related)


async def search(query: str, *, purpose: str = "", max_results: int = 10) -> ProviderPayload:
    """Execute a Serper Google search."""
    if not settings.serper_api_key:
        raise RuntimeError("SERPER_API_KEY is not configured")

    async with httpx.AsyncClient(timeout=30.0) as client:
        response = await client.post(
            SERPER_SEARCH_URL,
            json={"q": query, "num": max_results},
            headers={
                "Content-Type": "application/json",
                "X-API-KEY": settings.serper_api_key,
            },
        )
        response.raise_for_status()
        payload = response.json()

    return normalize_response(payload)
