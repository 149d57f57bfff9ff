from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from company_intel.errors import TRANSIENT_CODES

ScraperType = Literal["static", "dynamic", "api", "browser", "hybrid"]
ScraperSpeed = Literal["fast", "medium", "slow"]
ConflictResolution = Literal["latest", "highest_quality", "combine", "manual"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ScrapeOptions:
    timeout_seconds: float = 20.0
    headers: dict[str, str] = field(default_factory=dict)
    wait_for_selector: str | None = None
    scroll: bool = False
    paginate: bool = False
    screenshot: bool = False
    extract_schema: dict[str, Any] | None = None


@dataclass(slots=True)
class ScrapingResult:
    url: str
    scraper: str
    content: str = ""
    html: str = ""
    text: str = ""
    title: str = ""
    structured: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    links: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utc_now)

    def to_payload(self) -> dict[str, Any]:
        """Page payload in the shape the category extractor consumes."""
        payload: dict[str, Any] = {
            "url": self.url,
            "title": self.title,
            "content": self.content,
            "text": self.text,
            "html": self.html,
        }
        if self.structured.get("extract"):
            payload["extract"] = self.structured["extract"]
        if self.metadata.get("markdown"):
            payload["markdown"] = self.metadata["markdown"]
        return payload


@dataclass(frozen=True, slots=True)
class ScrapingPass:
    id: str
    scraper: str
    strategy: str
    timestamp: datetime
    url: str
    duration_ms: int
    result: ScrapingResult

    @classmethod
    def from_result(
        cls,
        result: ScrapingResult,
        *,
        strategy: str,
        duration_ms: int,
        timestamp: datetime | None = None,
    ) -> "ScrapingPass":
        return cls(
            id=uuid.uuid4().hex,
            scraper=result.scraper,
            strategy=strategy,
            timestamp=timestamp or result.timestamp,
            url=result.url,
            duration_ms=int(duration_ms),
            result=result,
        )


@dataclass(frozen=True, slots=True)
class PassSource:
    scraper: str
    strategy: str
    timestamp: datetime
    data_points: tuple[str, ...]
    confidence: float


@dataclass(frozen=True, slots=True)
class MergeQuality:
    score: int
    completeness: int
    consistency: int
    freshness: int


@dataclass(frozen=True, slots=True)
class MergeStatistics:
    total_passes: int
    successful_passes: int
    failed_passes: int
    unique_data_points: int
    duplicate_data_points: int
    conflicting_data_points: int


@dataclass(frozen=True, slots=True)
class MergedScrapingData:
    url: str
    content: str
    html: str
    text: str
    title: str
    structured: dict[str, Any]
    metadata: dict[str, Any]
    sources: tuple[PassSource, ...]
    quality: MergeQuality
    statistics: MergeStatistics

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["sources"] = [
            {**source, "timestamp": source["timestamp"].isoformat(), "data_points": list(source["data_points"])}
            for source in data["sources"]
        ]
        return data


@dataclass(frozen=True, slots=True)
class ScraperCapabilities:
    supports_javascript: bool = False
    supports_authentication: bool = False
    supports_proxies: bool = False
    supports_cookies: bool = False
    supports_custom_headers: bool = True
    max_concurrency: int = 5
    rate_limit_per_second: float | None = None


@dataclass(frozen=True, slots=True)
class CostEstimate:
    per_page: float = 0.0
    per_mb: float = 0.0
    setup_cost: float = 0.0
    minimum_charge: float = 0.0


@dataclass(frozen=True, slots=True)
class ScraperRequirements:
    api_key: bool = False
    browser: bool = False
    proxy: bool = False
    captcha_solver: bool = False


@dataclass(slots=True)
class BatchFailure:
    url: str
    error: str
    code: str = "API_ERROR"

    @property
    def retriable(self) -> bool:
        return self.code in TRANSIENT_CODES


@dataclass(slots=True)
class BatchMetrics:
    total_time_ms: int
    average_time_ms: float
    success_rate: float


@dataclass(slots=True)
class BatchScrapingResult:
    successful: list[ScrapingResult]
    failed: list[BatchFailure]
    metrics: BatchMetrics
    durations_ms: dict[str, int] = field(default_factory=dict)


@dataclass(slots=True)
class Enhancement:
    added_fields: list[str]
    improved_fields: list[str]
    confidence: float
    source: str


@dataclass(slots=True)
class EnhancedResult:
    result: ScrapingResult
    enhancement: Enhancement
