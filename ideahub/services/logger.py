"""Centralized logging service using loguru."""

import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from loguru import logger

from ideahub.config import settings

LOG_DIR = Path("logs")
LOG_DIR.mkdir(exist_ok=True)

logger.remove()

logger.add(
    sys.stderr,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    level=settings.app_log_level.upper(),
    colorize=True,
)

logger.add(
    LOG_DIR / "ideahub_{time:YYYY-MM-DD}.log",
    format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
    level="DEBUG",
    rotation="00:00",
    retention="7 days",
    compression="zip",
)

# Provider SDKs log every request at INFO
import logging

for logger_name in (
    "httpx",
    "httpcore",
    "hpack",
    "openai._base_client",
    "postgrest",
    "supabase",
    "asyncio",
):
    logging.getLogger(logger_name).setLevel(settings.noisy_log_level.upper())


def log_provider_call(
    provider: str,
    purpose: str,
    query: str,
    duration_ms: int = 0,
    status: str = "success",
    results: int = 0,
    error: Optional[str] = None,
) -> None:
    """Log a single provider fetch."""
    call_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "provider": provider,
        "purpose": purpose,
        "query": query,
        "duration_ms": duration_ms,
        "status": status,
        "results": results,
        "error": error,
    }
    if error:
        logger.warning(f"PROVIDER_CALL_FAILED: {call_data}")
    else:
        logger.info(f"PROVIDER_CALL: {call_data}")


def log_plan_built(idea: str, item_count: int, skipped: int = 0) -> None:
    """Log a generated fetch plan."""
    plan_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "idea": idea[:100],
        "item_count": item_count,
        "skipped_duplicates": skipped,
    }
    logger.info(f"FETCH_PLAN: {plan_data}")


def log_cache_operation(
    operation: str,
    tier: str,
    key: str,
    status: str,
    error: Optional[str] = None,
) -> None:
    """Log a tile cache read or write."""
    op_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "operation": operation,
        "tier": tier,
        "key": key,
        "status": status,
        "error": error,
    }
    if error:
        logger.error(f"CACHE_OPERATION_FAILED: {op_data}")
    else:
        logger.debug(f"CACHE_OPERATION: {op_data}")


def log_event(
    event_type: str,
    message: str,
    **kwargs,
) -> None:
    """Log a generic event."""
    event_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type,
        "message": message,
        **kwargs,
    }
    logger.info(f"EVENT: {event_data}")
