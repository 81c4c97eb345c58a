from __future__ import annotations

from typing import Any

import httpx

from ideahub.config import settings
from ideahub.models.hub import ProviderPayload
from ideahub.tools.web_utils import extract_domain

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
BRAVE_NEWS_URL = "https://api.search.brave.com/res/v1/news/search"


def _news_item(item: dict[str, Any]) -> dict[str, Any]:
    url = item.get("url", "")
    meta_url = item.get("meta_url") or {}
    return {
        "publisher": meta_url.get("hostname") or extract_domain(url),
        "title": item.get("title", ""),
        "url": url,
        "published_date": item.get("page_age") or item.get("age") or "",
        "snippet": item.get("description", "") or "",
    }


def normalize_response(payload: dict[str, Any]) -> ProviderPayload:
    """Map Brave web or news responses onto canonical results."""
    if payload.get("type") == "news":
        return ProviderPayload(news=[_news_item(item) for item in payload.get("results", []) or []])

    organic: list[dict[str, Any]] = []
    for idx, item in enumerate(payload.get("web", {}).get("results", []) or []):
        snippets = item.get("extra_snippets", []) or []
        description = item.get("description", "") or ""
        organic.append(
            {
                "url": item.get("url", ""),
                "title": item.get("title", ""),
                "snippet": description.strip() or " ".join(snippets).strip(),
                "position": idx + 1,
                "published_date": item.get("page_age") or item.get("age") or "",
            }
        )
    news = [_news_item(item) for item in payload.get("news", {}).get("results", []) or []]
    return ProviderPayload(organic=organic, news=news)


async def search(query: str, *, purpose: str = "", max_results: int = 10) -> ProviderPayload:
    """Execute a Brave search; news purposes use the news endpoint."""
    if not settings.brave_api_key:
        raise RuntimeError("BRAVE_API_KEY is not configured")

    is_news = "news" in purpose.lower()
    params: dict[str, Any] = {
        "q": query,
        "count": max_results,
    }
    if is_news:
        params["freshness"] = "pm"

    async with httpx.AsyncClient(timeout=30.0) as client:
        response = await client.get(
            BRAVE_NEWS_URL if is_news else BRAVE_SEARCH_URL,
            params=params,
            headers={
                "Accept": "application/json",
                "X-Subscription-Token": settings.brave_api_key,
            },
        )
        response.raise_for_status()
        payload = response.json()

    return normalize_response(payload)
