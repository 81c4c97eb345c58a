from __future__ import annotations

import json
from typing import Callable, Mapping

from loguru import logger

from ideahub.services.logger import log_event

IdeaListener = Callable[[str], None]

# Older clients stored the idea under several keys; first non-empty wins.
LEGACY_IDEA_KEYS = ("appIdea", "pmfCurrentIdea", "dashboardIdea", "currentIdea", "userIdea")


def _legacy_value(key: str, raw: str) -> str:
    if key != "appIdea":
        return raw
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return raw
    if isinstance(parsed, dict):
        return str(parsed.get("summary") or parsed.get("idea") or "")
    return str(parsed) if isinstance(parsed, str) else ""


class IdeaStore:
    """Single owner of the current idea text, with change observers."""

    def __init__(self, idea: str = ""):
        self._idea = idea.strip()
        self._listeners: list[IdeaListener] = []

    def get(self) -> str:
        return self._idea

    def set(self, idea: str) -> bool:
        """Replace the idea; listeners run only when the text changes."""
        cleaned = idea.strip()
        if cleaned == self._idea:
            return False
        self._idea = cleaned
        for listener in list(self._listeners):
            try:
                listener(cleaned)
            except Exception as e:
                logger.error(f"Idea listener {listener!r} failed: {e}")
        return True

    def clear(self) -> bool:
        return self.set("")

    def subscribe(self, listener: IdeaListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def import_legacy(self, values: Mapping[str, str | None]) -> str | None:
        """One-time migration from legacy storage keys.

        Returns the key the idea was taken from, or None when nothing usable
        was found or an idea is already set.
        """
        if self._idea:
            return None
        for key in LEGACY_IDEA_KEYS:
            raw = values.get(key)
            if not raw or not raw.strip():
                continue
            idea = _legacy_value(key, raw.strip()).strip()
            if not idea:
                continue
            self.set(idea)
            log_event(event_type="legacy_idea_imported", message=f"Imported idea from {key}", key=key)
            return key
        return None
