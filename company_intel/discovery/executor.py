"""Discovery phase: sitemap first, bounded crawl as fallback."""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

import httpx
from loguru import logger

from company_intel.config import settings
from company_intel.discovery.crawler import SiteCrawler
from company_intel.discovery.sitemap import SitemapDiscovery
from company_intel.errors import DiscoveryError, SessionNotFoundError, is_retriable
from company_intel.models.discovery import (
    SOURCE_ORDER,
    DiscoveredPage,
    DiscoveryResult,
    DiscoveryState,
)
from company_intel.services import logger as log_service
from company_intel.services.sessions import SessionStore, merge_session_data
from company_intel.services.streaming import (
    ErrorCallback,
    ProgressCallback,
    notify_error,
    notify_progress,
)
from company_intel.utils.web import normalize_domain, path_depth

DISCOVERY_PHASE = 1


def prioritize(pages: list[DiscoveredPage], limit: int) -> list[DiscoveredPage]:
    if len(pages) <= limit:
        return pages
    ranked = sorted(
        pages,
        key=lambda page: (
            -page.priority,
            SOURCE_ORDER.get(page.source, len(SOURCE_ORDER)),
            path_depth(page.url),
            len(page.url),
        ),
    )
    return ranked[:limit]


class DiscoveryExecutor:
    def __init__(
        self,
        *,
        session_store: SessionStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        max_urls: int | None = None,
        min_sitemap_urls: int | None = None,
        crawl_max_pages: int | None = None,
        validate_concurrency: int | None = None,
    ):
        self.session_store = session_store
        self._http_client = http_client
        self.max_urls = max_urls or settings.discovery_max_urls
        self.min_sitemap_urls = (
            settings.discovery_min_sitemap_urls if min_sitemap_urls is None else min_sitemap_urls
        )
        self.crawl_max_pages = crawl_max_pages or settings.discovery_crawl_max_pages
        self.validate_concurrency = max(validate_concurrency or settings.discovery_validate_concurrency, 1)
        self.state = DiscoveryState.IDLE

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(
            timeout=settings.scrape_timeout_seconds,
            follow_redirects=True,
            headers={"User-Agent": settings.scrape_user_agent},
        ) as client:
            yield client

    def _transition(self, state: DiscoveryState) -> None:
        logger.debug(f"Discovery state {self.state.value} -> {state.value}")
        self.state = state

    async def execute(
        self,
        domain: str,
        *,
        session_id: str | None = None,
        max_urls: int | None = None,
        validate_urls: bool = False,
        on_progress: ProgressCallback | None = None,
        on_error: ErrorCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> DiscoveryResult:
        bare = normalize_domain(domain)
        if not bare or "." not in bare:
            raise DiscoveryError(f"Invalid domain: {domain!r}")

        started = time.monotonic()
        limit = max_urls or self.max_urls
        pages: list[DiscoveredPage] = []
        seen: set[str] = set()
        phases: list[str] = []
        analysis = {"sitemap_found": False, "homepage_crawled": False, "blog_discovered": False}
        sitemap_url: str | None = None
        error: str | None = None

        def _cancelled() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        async with self._client() as client:
            try:
                self._transition(DiscoveryState.DISCOVERING_SITEMAP)
                await notify_progress(on_progress, 0, limit, f"Looking for a sitemap on {bare}")
                sitemap = SitemapDiscovery(client, max_urls=limit)
                sitemap_pages, sitemap_url = await sitemap.discover(bare, cancel_event=cancel_event)
                for page in sitemap_pages:
                    if page.url not in seen:
                        seen.add(page.url)
                        pages.append(page)
                analysis["sitemap_found"] = bool(pages)
                phases.append("sitemap")
                await notify_progress(on_progress, len(pages), limit, f"Sitemap yielded {len(pages)} URLs")

                if len(pages) < self.min_sitemap_urls and not _cancelled():
                    self._transition(DiscoveryState.DISCOVERING_CRAWL)
                    crawler = SiteCrawler(client, max_pages=self.crawl_max_pages, max_urls=limit)
                    outcome = await crawler.crawl(
                        bare, pages, seen, on_progress=on_progress, cancel_event=cancel_event
                    )
                    analysis["homepage_crawled"] = outcome.homepage_crawled
                    analysis["blog_discovered"] = outcome.blog_discovered
                    phases.append("crawl")

                if validate_urls and pages and not _cancelled():
                    pages = await self._validate(client, pages, on_progress)
                    phases.append("validation")
            except Exception as exc:
                error = f"{exc.__class__.__name__}: {exc}"
                logger.error(f"Discovery failed for {bare} after {len(pages)} URLs: {error}")
                await notify_error(
                    on_error,
                    exc,
                    retriable=isinstance(exc, httpx.TransportError) or is_retriable(exc),
                    stage="discovery",
                    domain=bare,
                    partial_urls=len(pages),
                )

        pages = prioritize(pages, limit)
        self._transition(DiscoveryState.FAILED if error else DiscoveryState.COMPLETED)
        result = DiscoveryResult(
            domain=bare,
            state=self.state,
            pages=pages,
            sitemap_found=analysis["sitemap_found"],
            error=error,
            cancelled=_cancelled(),
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        result.merged_data = self._envelope(result, analysis, phases, sitemap_url)
        await notify_progress(on_progress, len(pages), limit, f"Discovery finished with {len(pages)} URLs")

        log_service.log_event(
            "discovery_completed" if not error else "discovery_failed",
            f"Discovered {len(pages)} URLs for {bare}",
            **result.summary(),
        )
        if session_id and self.session_store is not None:
            result.persisted = await self._persist(session_id, result)
        return result

    async def _validate(
        self,
        client: httpx.AsyncClient,
        pages: list[DiscoveredPage],
        on_progress: ProgressCallback | None,
    ) -> list[DiscoveredPage]:
        semaphore = asyncio.Semaphore(self.validate_concurrency)

        async def _alive(page: DiscoveredPage) -> bool:
            async with semaphore:
                try:
                    response = await client.head(page.url)
                except httpx.HTTPError:
                    return False
                return response.status_code < 400 or response.status_code == 405

        checks = await asyncio.gather(*(_alive(page) for page in pages))
        valid = [page for page, ok in zip(pages, checks) if ok]
        await notify_progress(
            on_progress, len(valid), len(pages), f"Validated {len(valid)} of {len(pages)} URLs"
        )
        return valid

    @staticmethod
    def _envelope(
        result: DiscoveryResult,
        analysis: dict[str, bool],
        phases: list[str],
        sitemap_url: str | None,
    ) -> dict[str, Any]:
        return {
            "sitemap": {
                "pages": [page.to_dict() for page in result.pages],
                "total_count": len(result.pages),
                "source": sitemap_url,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            "site_analysis": {**analysis, "phases_completed": phases},
            "discovery": {
                "state": result.state.value,
                "error": result.error,
                "cancelled": result.cancelled,
                "duration_ms": result.duration_ms,
            },
        }

    async def _persist(self, session_id: str, result: DiscoveryResult) -> bool:
        try:
            await merge_session_data(
                self.session_store,  # type: ignore[arg-type]
                session_id,
                result.merged_data,
                phase=DISCOVERY_PHASE,
            )
            return True
        except SessionNotFoundError:
            raise
        except Exception as exc:
            log_service.log_session_operation(
                "save_discovery", session_id, "failed", error=str(exc)
            )
            return False
