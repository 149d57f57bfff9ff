from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from company_intel.config import settings
from company_intel.discovery.executor import DiscoveryExecutor
from company_intel.errors import SessionNotFoundError
from company_intel.intelligence.categories import COMPANY_EXTRACT_SCHEMA
from company_intel.intelligence.extractor import CategoryExtractor
from company_intel.models.discovery import DiscoveryResult
from company_intel.models.intelligence import ExtractedIntelligence, IntelligenceCategory
from company_intel.models.scraping import (
    BatchFailure,
    MergedScrapingData,
    ScrapeOptions,
    ScrapingPass,
)
from company_intel.models.session import SessionStatus
from company_intel.scraping.merger import MergeOptions, ScrapingMerger
from company_intel.scraping.plugins.base import ScraperPlugin
from company_intel.scraping.registry import ScraperRegistry
from company_intel.services import logger as log_service
from company_intel.services.sessions import SessionStore, merge_session_data
from company_intel.services.streaming import (
    ErrorCallback,
    ProgressCallback,
    notify_error,
    notify_progress,
)

SCRAPING_PHASE = 2
EXTRACTION_PHASE = 3


def default_scrape_options() -> ScrapeOptions:
    return ScrapeOptions(
        timeout_seconds=settings.scrape_timeout_seconds,
        scroll=settings.browser_scroll,
        paginate=settings.browser_paginate,
        extract_schema=COMPANY_EXTRACT_SCHEMA if settings.firecrawl_extract_schema else None,
    )


def merged_payload(merged: MergedScrapingData) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "url": merged.url,
        "title": merged.title,
        "content": merged.content,
        "text": merged.text,
        "html": merged.html,
    }
    if isinstance(merged.structured.get("extract"), dict):
        payload["extract"] = merged.structured["extract"]
    if merged.metadata.get("markdown"):
        payload["markdown"] = merged.metadata["markdown"]
    return payload


@dataclass(slots=True)
class PipelineResult:
    session_id: str
    discovery: DiscoveryResult
    merged: dict[str, MergedScrapingData] = field(default_factory=dict)
    failed: list[BatchFailure] = field(default_factory=list)
    intelligence: dict[IntelligenceCategory, ExtractedIntelligence] = field(default_factory=dict)
    cancelled: bool = False

    def summary(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "discovered_urls": len(self.discovery.pages),
            "scraped_urls": len(self.merged),
            "failed_urls": len(self.failed),
            "categories": {
                category.value: {"items": len(bucket.items), "status": bucket.status.value}
                for category, bucket in self.intelligence.items()
            },
            "cancelled": self.cancelled,
        }


class IntelligencePipeline:
    """discover → scrape → merge → extract, persisted through the session store."""

    def __init__(
        self,
        *,
        registry: ScraperRegistry,
        store: SessionStore,
        discovery: DiscoveryExecutor | None = None,
        extractor: CategoryExtractor | None = None,
        merger: ScrapingMerger | None = None,
        passes_per_url: int | None = None,
        scrape_options: ScrapeOptions | None = None,
    ):
        self.registry = registry
        self.store = store
        self.discovery = discovery or DiscoveryExecutor(session_store=store)
        self.extractor = extractor or CategoryExtractor(session_store=store)
        self.merger = merger or ScrapingMerger(MergeOptions.from_settings())
        self.passes_per_url = max(passes_per_url or settings.scrape_passes_per_url, 1)
        self.scrape_options = scrape_options or default_scrape_options()

    def route(self, urls: list[str]) -> tuple[dict[str, list[str]], list[BatchFailure]]:
        """Group URLs by the plugins that should scrape them."""
        assignments: dict[str, list[str]] = {}
        unroutable: list[BatchFailure] = []
        for url in urls:
            candidates = self.registry.plugins_for_url(url)
            if not candidates:
                unroutable.append(BatchFailure(url=url, error="No enabled scraper can handle URL", code="NO_SCRAPER"))
                continue
            chosen = [candidates[0]]
            if candidates[0].mergeable:
                chosen.extend(p for p in candidates[1:] if p.mergeable)
            for plugin in chosen[: self.passes_per_url]:
                assignments.setdefault(plugin.name, []).append(url)
        return assignments, unroutable

    async def scrape(
        self,
        urls: list[str],
        *,
        on_progress: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> tuple[dict[str, list[ScrapingPass]], list[BatchFailure]]:
        assignments, failed = self.route(urls)
        passes: dict[str, list[ScrapingPass]] = {}
        for name, plugin_urls in assignments.items():
            plugin: ScraperPlugin = self.registry.require(name)
            batch = await plugin.scrape_batch(
                plugin_urls,
                self.scrape_options,
                on_progress=on_progress,
                cancel_event=cancel_event,
            )
            for result in batch.successful:
                passes.setdefault(result.url, []).append(
                    ScrapingPass.from_result(
                        result,
                        strategy=plugin.scraper_type,
                        duration_ms=batch.durations_ms.get(result.url, 0),
                    )
                )
            failed.extend(batch.failed)
        # a URL only counts as failed when no plugin produced a pass for it
        first_failure: dict[str, BatchFailure] = {}
        for failure in failed:
            if failure.url not in passes:
                first_failure.setdefault(failure.url, failure)
        return passes, list(first_failure.values())

    async def run(
        self,
        session_id: str,
        *,
        max_urls: int | None = None,
        on_progress: ProgressCallback | None = None,
        on_error: ErrorCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> PipelineResult:
        session = await self.store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        try:
            return await self._run(
                session_id,
                session.domain,
                max_urls=max_urls,
                on_progress=on_progress,
                on_error=on_error,
                cancel_event=cancel_event,
            )
        except SessionNotFoundError:
            raise
        except Exception as exc:
            await self._save(
                session_id,
                {"pipeline": {"session_id": session_id, "error": f"{exc.__class__.__name__}: {exc}"}},
                status=SessionStatus.FAILED,
            )
            raise

    async def _run(
        self,
        session_id: str,
        domain: str,
        *,
        max_urls: int | None,
        on_progress: ProgressCallback | None,
        on_error: ErrorCallback | None,
        cancel_event: asyncio.Event | None,
    ) -> PipelineResult:
        discovery = await self.discovery.execute(
            domain,
            session_id=session_id,
            max_urls=max_urls,
            on_progress=on_progress,
            on_error=on_error,
            cancel_event=cancel_event,
        )
        result = PipelineResult(session_id=session_id, discovery=discovery)
        if cancel_event is not None and cancel_event.is_set():
            result.cancelled = True
            await self._finish(result)
            return result

        passes, result.failed = await self.scrape(
            discovery.urls, on_progress=on_progress, cancel_event=cancel_event
        )
        for failure in result.failed:
            await notify_error(
                on_error,
                failure.error,
                retriable=failure.retriable,
                stage="scraping",
                url=failure.url,
                code=failure.code,
            )
        result.merged = {url: self.merger.merge(url_passes) for url, url_passes in passes.items()}
        await notify_progress(
            on_progress, len(result.merged), len(discovery.urls), f"Merged {len(result.merged)} pages"
        )
        await self._save(
            session_id,
            {
                "scraping": {
                    "pages": {url: self._compact(merged) for url, merged in result.merged.items()},
                    "failed": [{"url": f.url, "error": f.error, "code": f.code} for f in result.failed],
                }
            },
            phase=SCRAPING_PHASE,
        )

        result.intelligence = await self.extractor.extract(
            {url: merged_payload(merged) for url, merged in result.merged.items()},
            session_id=session_id,
            on_progress=on_progress,
        )
        result.cancelled = cancel_event is not None and cancel_event.is_set()
        await self._finish(result)
        log_service.log_event("pipeline_completed", "Pipeline run finished", **result.summary())
        return result

    @staticmethod
    def _compact(merged: MergedScrapingData) -> dict[str, Any]:
        data = merged.to_dict()
        data.pop("html", None)
        return data

    async def _finish(self, result: PipelineResult) -> None:
        status = SessionStatus.ABORTED if result.cancelled else SessionStatus.COMPLETED
        await self._save(
            result.session_id,
            {"pipeline": result.summary()},
            phase=EXTRACTION_PHASE,
            status=status,
        )

    async def _save(self, session_id: str, patch: dict[str, Any], **fields: Any) -> bool:
        try:
            await merge_session_data(self.store, session_id, patch, **fields)
            return True
        except SessionNotFoundError:
            raise
        except Exception as exc:
            logger.error(f"Could not persist pipeline state for {session_id}: {exc}")
            return False
