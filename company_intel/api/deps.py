from __future__ import annotations

from company_intel.config import settings
from company_intel.scraping.registry import ScraperRegistry, build_default_registry
from company_intel.services.sessions import SessionStore, build_session_store

_store: SessionStore | None = None
_registry: ScraperRegistry | None = None


def get_session_store() -> SessionStore:
    global _store
    if _store is None:
        _store = build_session_store(settings)
    return _store


def get_registry() -> ScraperRegistry:
    global _registry
    if _registry is None:
        _registry = build_default_registry(settings)
    return _registry
