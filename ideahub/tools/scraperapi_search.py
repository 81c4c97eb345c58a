from __future__ import annotations

from typing import Any

import httpx

from ideahub.config import settings
from ideahub.models.hub import ProviderPayload

SCRAPERAPI_SEARCH_URL = "https://api.scraperapi.com/structured/google/search"


def normalize_response(payload: dict[str, Any]) -> ProviderPayload:
    """Map ScraperAPI structured Google results."""
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
    return ProviderPayload(organic=organic)


async def search(query: str, *, purpose: str = "", max_results: int = 10) -> ProviderPayload:
    """Execute a Google search through ScraperAPI's structured endpoint."""
    if not settings.scraperapi_api_key:
        raise RuntimeError("SCRAPERAPI_API_KEY is not configured")

    params = {
        "api_key": settings.scraperapi_api_key,
        "query": query,
        "num": max_results,
    }
    async with httpx.AsyncClient(timeout=60.0) as client:
        response = await client.get(SCRAPERAPI_SEARCH_URL, params=params)
        response.raise_for_status()
        payload = response.json()

    return normalize_response(payload)
