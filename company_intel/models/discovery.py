from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

PageSource = Literal["sitemap", "homepage", "crawl", "blog"]

SOURCE_ORDER: dict[str, int] = {"sitemap": 0, "homepage": 1, "blog": 2, "crawl": 3}


class DiscoveryState(str, Enum):
    IDLE = "idle"
    DISCOVERING_SITEMAP = "discovering_sitemap"
    DISCOVERING_CRAWL = "discovering_crawl"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class DiscoveredPage:
    url: str
    source: PageSource
    discovered_at: str
    priority: float = 0.5
    lastmod: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "source": self.source,
            "discovered_at": self.discovered_at,
            "priority": self.priority,
            "lastmod": self.lastmod,
        }


@dataclass(slots=True)
class DiscoveryResult:
    domain: str
    state: DiscoveryState
    pages: list[DiscoveredPage] = field(default_factory=list)
    sitemap_found: bool = False
    merged_data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    cancelled: bool = False
    persisted: bool = False
    duration_ms: int = 0

    @property
    def urls(self) -> list[str]:
        return [page.url for page in self.pages]

    @property
    def success(self) -> bool:
        return self.state == DiscoveryState.COMPLETED and self.error is None

    def summary(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "state": self.state.value,
            "url_count": len(self.pages),
            "sitemap_found": self.sitemap_found,
            "error": self.error,
            "cancelled": self.cancelled,
            "persisted": self.persisted,
            "duration_ms": self.duration_ms,
        }
