from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from hashlib import sha256
from pathlib import Path
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from loguru import logger

from company_intel.config import settings

CACHE_VERSION = 1


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _canonical_url(url: str) -> str:
    parsed = urlsplit(url.strip())
    scheme = (parsed.scheme or "https").lower()
    netloc = parsed.netloc.lower()
    path = parsed.path or "/"
    query = urlencode(sorted(parse_qsl(parsed.query, keep_blank_values=True)))
    return urlunsplit((scheme, netloc, path, query, ""))


def cache_path(url: str, *, scraper: str) -> Path:
    material = f"v{CACHE_VERSION}|{scraper}|{_canonical_url(url)}"
    key = sha256(material.encode("utf-8")).hexdigest()
    return Path(settings.scrape_cache_dir) / scraper / f"{key}.json"


def load(url: str, *, scraper: str) -> dict[str, Any] | None:
    """Cached response body for `url`, or None when missing, stale or disabled."""
    if not settings.scrape_cache_enabled:
        return None

    path = cache_path(url, scraper=scraper)
    if not path.exists():
        return None

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.debug(f"Ignoring unreadable cache entry {path}: {exc}")
        return None

    try:
        fetched_at = datetime.fromisoformat(str(payload.get("fetched_at")))
    except ValueError:
        return None
    if fetched_at.tzinfo is None:
        fetched_at = fetched_at.replace(tzinfo=timezone.utc)

    ttl = max(int(settings.scrape_cache_ttl_hours), 0)
    if ttl == 0 or _utc_now() > fetched_at + timedelta(hours=ttl):
        return None

    body = payload.get("body")
    return body if isinstance(body, dict) and body else None


def save(url: str, *, scraper: str, body: dict[str, Any]) -> None:
    if not settings.scrape_cache_enabled or not body:
        return

    path = cache_path(url, scraper=scraper)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "version": CACHE_VERSION,
        "url": _canonical_url(url),
        "scraper": scraper,
        "fetched_at": _utc_now().isoformat(),
        "body": body,
    }
    path.write_text(json.dumps(payload, ensure_ascii=True), encoding="utf-8")
