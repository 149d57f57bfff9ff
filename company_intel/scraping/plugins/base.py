from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import ClassVar, Sequence
from urllib.parse import urlparse

import httpx

from company_intel.config import settings
from company_intel.errors import ScrapeError
from company_intel.models.scraping import (
    BatchFailure,
    BatchMetrics,
    BatchScrapingResult,
    CostEstimate,
    Enhancement,
    EnhancedResult,
    ScrapeOptions,
    ScraperCapabilities,
    ScraperRequirements,
    ScraperSpeed,
    ScraperType,
    ScrapingResult,
)
from company_intel.services import logger as log_service
from company_intel.services.streaming import ProgressCallback, notify_progress

COMPARED_FIELDS = ("title", "content", "text", "html")


def classify_http_error(exc: Exception, url: str) -> ScrapeError:
    if isinstance(exc, ScrapeError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return ScrapeError(f"Timed out fetching {url}", url=url, code="TIMEOUT")
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        code = "RATE_LIMITED" if status == 429 else "HTTP_ERROR"
        if status >= 500:
            code = "NETWORK_ERROR"
        return ScrapeError(f"HTTP {status} for {url}", url=url, code=code)
    if isinstance(exc, httpx.TransportError):
        return ScrapeError(f"Network error for {url}: {exc}", url=url, code="NETWORK_ERROR")
    return ScrapeError(f"Scrape failed for {url}: {exc}", url=url, code="API_ERROR")


class ScraperPlugin(ABC):
    """One scraping backend behind the common capability interface."""

    name: ClassVar[str]
    version: ClassVar[str] = "1.0.0"
    scraper_type: ClassVar[ScraperType] = "static"
    speed: ClassVar[ScraperSpeed] = "medium"
    priority: ClassVar[int] = 50
    mergeable: ClassVar[bool] = True
    capabilities: ClassVar[ScraperCapabilities] = ScraperCapabilities()
    cost: ClassVar[CostEstimate] = CostEstimate()
    requirements: ClassVar[ScraperRequirements] = ScraperRequirements()
    excluded_extensions: ClassVar[tuple[str, ...]] = ()

    def __init__(
        self,
        *,
        retry_max: int | None = None,
        batch_size: int | None = None,
        batch_delay_ms: int | None = None,
    ):
        if not 1 <= self.priority <= 100:
            raise ValueError(f"Plugin priority must be within 1-100, got {self.priority}")
        self.retry_max = max(int(settings.scrape_retry_max if retry_max is None else retry_max), 0)
        size = settings.scrape_batch_size if batch_size is None else batch_size
        self.batch_size = max(min(int(size), self.capabilities.max_concurrency), 1)
        delay = settings.scrape_batch_delay_ms if batch_delay_ms is None else batch_delay_ms
        self.batch_delay_ms = max(int(delay), 0)

    @property
    def enabled(self) -> bool:
        return not self.missing_requirements()

    def missing_requirements(self) -> list[str]:
        return []

    def can_handle(self, url: str) -> bool:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return False
        path = parsed.path.lower()
        return not any(path.endswith(ext) for ext in self.excluded_extensions)

    def estimate_cost(self, pages: int, megabytes: float = 0.0) -> float:
        total = self.cost.setup_cost + pages * self.cost.per_page + megabytes * self.cost.per_mb
        return round(max(total, self.cost.minimum_charge), 6)

    @abstractmethod
    async def _fetch(self, url: str, options: ScrapeOptions) -> ScrapingResult:
        """Fetch a single page once."""

    async def scrape(self, url: str, options: ScrapeOptions | None = None) -> ScrapingResult:
        options = options or ScrapeOptions()
        started = time.monotonic()
        attempts = self.retry_max + 1
        attempt = 0

        while True:
            attempt += 1
            try:
                result = await self._fetch(url, options)
            except Exception as exc:
                error = classify_http_error(exc, url)
                if error.retriable and attempt < attempts:
                    await asyncio.sleep(min(0.25 * attempt, 1.0))
                    continue
                log_service.log_scrape(
                    self.name,
                    url,
                    "failed",
                    duration_ms=int((time.monotonic() - started) * 1000),
                    error=f"{error.code}: {error}",
                )
                raise error

            duration_ms = int((time.monotonic() - started) * 1000)
            result.metadata.setdefault("duration_ms", duration_ms)
            result.metadata["attempts"] = attempt
            log_service.log_scrape(self.name, url, "success", duration_ms=duration_ms)
            return result

    async def scrape_batch(
        self,
        urls: Sequence[str],
        options: ScrapeOptions | None = None,
        *,
        on_progress: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> BatchScrapingResult:
        """Scrape in fixed windows; one failing URL never aborts the batch."""
        started = time.monotonic()
        successful: list[ScrapingResult] = []
        failed: list[BatchFailure] = []
        durations: dict[str, int] = {}
        total = len(urls)

        async def _timed(url: str) -> ScrapingResult:
            begin = time.monotonic()
            try:
                return await self.scrape(url, options)
            finally:
                durations[url] = int((time.monotonic() - begin) * 1000)

        for offset in range(0, total, self.batch_size):
            if cancel_event is not None and cancel_event.is_set():
                failed.extend(
                    BatchFailure(url=url, error="Cancelled before fetch", code="CANCELLED")
                    for url in urls[offset:]
                )
                break
            if offset and self.batch_delay_ms:
                await asyncio.sleep(self.batch_delay_ms / 1000)

            window = list(urls[offset : offset + self.batch_size])
            outcomes = await asyncio.gather(*(_timed(url) for url in window), return_exceptions=True)
            for url, outcome in zip(window, outcomes):
                if isinstance(outcome, ScrapingResult):
                    successful.append(outcome)
                elif isinstance(outcome, ScrapeError):
                    failed.append(BatchFailure(url=url, error=str(outcome), code=outcome.code))
                else:
                    failed.append(BatchFailure(url=url, error=str(outcome), code="API_ERROR"))

            await notify_progress(
                on_progress,
                len(successful) + len(failed),
                total,
                f"{self.name}: {len(successful)} scraped, {len(failed)} failed",
            )

        total_ms = int((time.monotonic() - started) * 1000)
        attempted = len(successful) + len(failed)
        return BatchScrapingResult(
            successful=successful,
            failed=failed,
            metrics=BatchMetrics(
                total_time_ms=total_ms,
                average_time_ms=round(total_ms / attempted, 2) if attempted else 0.0,
                success_rate=round(len(successful) / total, 4) if total else 0.0,
            ),
            durations_ms=durations,
        )

    async def enhance(self, existing: ScrapingResult, url: str | None = None) -> EnhancedResult:
        """Scrape again and report what this backend adds over `existing`."""
        result = await self.scrape(url or existing.url)
        added: list[str] = []
        improved: list[str] = []
        for field_name in COMPARED_FIELDS:
            old = getattr(existing, field_name) or ""
            new = getattr(result, field_name) or ""
            if new and not old:
                added.append(field_name)
            elif new and len(new) > len(old):
                improved.append(field_name)
        for key, value in result.structured.items():
            if key not in existing.structured and value:
                added.append(f"structured.{key}")

        confidence = 0.5 + 0.1 * len(added) + 0.05 * len(improved) - (0.3 if result.errors else 0.0)
        return EnhancedResult(
            result=result,
            enhancement=Enhancement(
                added_fields=added,
                improved_fields=improved,
                confidence=round(max(0.0, min(confidence, 1.0)), 2),
                source=self.name,
            ),
        )

    def describe(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "type": self.scraper_type,
            "speed": self.speed,
            "priority": self.priority,
            "mergeable": self.mergeable,
            "enabled": self.enabled,
            "missing_requirements": self.missing_requirements(),
            "capabilities": {
                "javascript": self.capabilities.supports_javascript,
                "authentication": self.capabilities.supports_authentication,
                "proxies": self.capabilities.supports_proxies,
                "cookies": self.capabilities.supports_cookies,
                "custom_headers": self.capabilities.supports_custom_headers,
                "max_concurrency": self.capabilities.max_concurrency,
                "rate_limit_per_second": self.capabilities.rate_limit_per_second,
            },
            "cost": {
                "per_page": self.cost.per_page,
                "per_mb": self.cost.per_mb,
                "setup_cost": self.cost.setup_cost,
                "minimum_charge": self.cost.minimum_charge,
            },
        }
