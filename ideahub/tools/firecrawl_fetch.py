from __future__ import annotations

from typing import Any

import httpx

from ideahub.config import settings
from ideahub.models.hub import ProviderPayload
from ideahub.tools.web_utils import clean_content, is_valid_url

MAX_PAGE_CHARS = 20000


def _page(body: dict[str, Any], fallback_url: str = "") -> dict[str, Any]:
    metadata = body.get("metadata") or {}
    return {
        "url": str(body.get("url") or metadata.get("sourceURL") or metadata.get("url") or fallback_url),
        "title": str(body.get("title") or metadata.get("title") or ""),
        "content": str(body.get("markdown") or body.get("content") or body.get("description") or "")[:MAX_PAGE_CHARS],
    }


def normalize_response(payload: dict[str, Any], *, url: str = "") -> ProviderPayload:
    """Map a Firecrawl scrape (one page) or search (page list) response."""
    data = payload.get("data", payload)
    if isinstance(data, dict):
        pages = [_page(data, url)]
    else:
        pages = [_page(item) for item in data or [] if isinstance(item, dict)]
    pages = [page for page in pages if page["content"] or page["url"]]
    organic = [
        {
            "url": page["url"],
            "title": page["title"],
            "snippet": clean_content(page["content"], max_length=300),
            "position": idx + 1,
        }
        for idx, page in enumerate(pages)
    ]
    return ProviderPayload(organic=organic, pages=pages)


async def search(query: str, *, purpose: str = "", max_results: int = 5) -> ProviderPayload:
    """Scrape a competitor URL, or search Firecrawl for a competitor name."""
    if not settings.firecrawl_base_url:
        raise RuntimeError("Firecrawl base URL not configured")

    base = settings.firecrawl_base_url.rstrip("/")
    headers = {"Content-Type": "application/json"}
    if settings.firecrawl_api_key:
        headers["Authorization"] = f"Bearer {settings.firecrawl_api_key}"

    if is_valid_url(query):
        endpoint = base + "/v1/scrape"
        body: dict[str, Any] = {"url": query, "formats": ["markdown"]}
    else:
        endpoint = base + "/v1/search"
        body = {
            "query": query,
            "limit": max_results,
            "scrapeOptions": {"formats": ["markdown"]},
        }

    async with httpx.AsyncClient(timeout=60.0, follow_redirects=True) as client:
        response = await client.post(endpoint, json=body, headers=headers)
        response.raise_for_status()
        payload = response.json()

    if not isinstance(payload, dict):
        raise RuntimeError("Firecrawl response was not a JSON object")
    return normalize_response(payload, url=query if is_valid_url(query) else "")
