from __future__ import annotations

from typing import Any

from tavily import AsyncTavilyClient

from ideahub.config import settings
from ideahub.models.hub import ProviderPayload


def normalize_response(response: dict[str, Any]) -> ProviderPayload:
    """Tavily results keep their score, used as engagement for social posts."""
    return ProviderPayload(
        organic=[
            {
                "url": r.get("url", ""),
                "title": r.get("title", ""),
                "snippet": r.get("content", ""),
                "position": idx + 1,
                "score": r.get("score", 0.0),
                "published_date": r.get("published_date", ""),
            }
            for idx, r in enumerate(response.get("results", []) or [])
        ]
    )


async def search(
    query: str,
    *,
    purpose: str = "",
    max_results: int = 10,
    search_depth: str = "basic",
) -> ProviderPayload:
    """Execute a Tavily web search."""
    if not settings.tavily_api_key:
        raise RuntimeError("TAVILY_API_KEY is not configured")

    client = AsyncTavilyClient(api_key=settings.tavily_api_key)
    kwargs: dict[str, Any] = {
        "query": query,
        "search_depth": search_depth,
        "max_results": max_results,
        "topic": "news" if "news" in purpose.lower() else "general",
    }
    response = await client.search(**kwargs)
    return normalize_response(response)
