from __future__ import annotations

import re
from urllib.parse import urlparse

PRICE_PATTERN = re.compile(r"\$\s?(\d{1,3}(?:,\d{3})+|\d+)(\.\d{1,2})?")
FEATURE_MARKERS = ("feature", "includes", "offers", "provides")
TITLE_SPLIT_PATTERN = re.compile(r"\s+(?:vs\.?|versus)\s+|\s+[-|:–—]\s+", flags=re.IGNORECASE)


def is_valid_url(url: str) -> bool:
    """Basic URL validation."""
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except ValueError:
        return False


def clean_content(text: str, max_length: int = 8000) -> str:
    """Collapse whitespace and trim to max length."""
    text = re.sub(r"\s+", " ", text).strip()
    if len(text) > max_length:
        text = text[:max_length] + "..."
    return text


def extract_domain(url: str) -> str:
    """Host without a leading www., or the input when it is not a URL."""
    try:
        netloc = urlparse(url).netloc.lower()
    except ValueError:
        return url
    if netloc.startswith("www."):
        netloc = netloc[4:]
    return netloc or url


def extract_prices(text: str, *, limit: int = 5) -> list[float]:
    """Dollar amounts mentioned in text, in order of appearance."""
    prices: list[float] = []
    for whole, cents in PRICE_PATTERN.findall(text or ""):
        try:
            value = float(whole.replace(",", "") + (cents or ""))
        except ValueError:
            continue
        prices.append(value)
        if len(prices) >= limit:
            break
    return prices


def price_type(text: str) -> str:
    lowered = (text or "").lower()
    if "free" in lowered:
        return "freemium"
    if any(marker in lowered for marker in ("/mo", "month", "/yr", "year", "annual", "subscription")):
        return "subscription"
    return "one-time"


def extract_features(text: str, *, limit: int = 10) -> list[str]:
    """Lines that read like feature statements."""
    features: list[str] = []
    for line in (text or "").splitlines():
        cleaned = clean_content(line, max_length=200)
        if not cleaned:
            continue
        lowered = cleaned.lower()
        if any(marker in lowered for marker in FEATURE_MARKERS):
            features.append(cleaned)
            if len(features) >= limit:
                break
    return features


def competitor_name(title: str, url: str = "") -> str:
    """Leading product name from a comparison or listing title."""
    head = TITLE_SPLIT_PATTERN.split(title or "", maxsplit=1)[0].strip()
    if head:
        return head[:80]
    return extract_domain(url) if url else ""
