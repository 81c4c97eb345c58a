from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from supabase import Client, create_client

from ideahub.config import settings
from ideahub.services.logger import log_cache_operation


def get_client() -> Client:
    if not settings.supabase_url or not settings.supabase_key:
        raise RuntimeError("SUPABASE_URL and SUPABASE_KEY must be configured")
    return create_client(settings.supabase_url, settings.supabase_key)


_client: Client | None = None


def client() -> Client:
    global _client
    if _client is None:
        _client = get_client()
    return _client


# --- Cached tiles ---


async def get_cached_tile(owner_key: str, idea_text: str, tile_type: str) -> dict[str, Any] | None:
    """Unexpired cached row for one owner, idea and tile, if any."""
    now = datetime.now(timezone.utc).isoformat()
    result = (
        client()
        .table(settings.supabase_cache_table)
        .select("*")
        .eq("user_id", owner_key)
        .eq("idea_text", idea_text)
        .eq("tile_type", tile_type)
        .gt("expires_at", now)
        .limit(1)
        .execute()
    )
    return result.data[0] if result.data else None


async def upsert_cached_tile(
    owner_key: str,
    idea_text: str,
    tile_type: str,
    data: dict[str, Any],
    expires_at: str,
) -> None:
    row = {
        "user_id": owner_key,
        "idea_text": idea_text,
        "tile_type": tile_type,
        "data": data,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "expires_at": expires_at,
    }
    client().table(settings.supabase_cache_table).upsert(
        row, on_conflict="user_id,idea_text,tile_type"
    ).execute()
    log_cache_operation("upsert", "supabase", f"{tile_type}:{idea_text[:40]}", "success")


async def delete_cached_tile(owner_key: str, idea_text: str, tile_type: str) -> None:
    (
        client()
        .table(settings.supabase_cache_table)
        .delete()
        .eq("user_id", owner_key)
        .eq("idea_text", idea_text)
        .eq("tile_type", tile_type)
        .execute()
    )
