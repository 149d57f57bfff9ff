from __future__ import annotations

import asyncio
import time

import httpx

from company_intel.config import settings
from company_intel.errors import ScrapeError
from company_intel.models.scraping import (
    CostEstimate,
    ScrapeOptions,
    ScraperCapabilities,
    ScraperRequirements,
    ScrapingResult,
)
from company_intel.scraping import cache as scrape_cache
from company_intel.scraping.plugins.base import ScraperPlugin

EXCLUDED_EXTENSIONS = (
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp",
)


def error_code_for_status(status_code: int) -> str:
    if status_code in (408, 504):
        return "TIMEOUT"
    if status_code == 429:
        return "RATE_LIMITED"
    if status_code in (401, 403):
        return "API_AUTH_ERROR"
    if status_code == 402:
        return "QUOTA_EXCEEDED"
    if status_code in (400, 422):
        return "INVALID_REQUEST"
    return "API_ERROR"


class FirecrawlScraper(ScraperPlugin):
    """Hosted scraping API; renders JavaScript server-side."""

    name = "firecrawl"
    scraper_type = "api"
    speed = "medium"
    priority = 90
    capabilities = ScraperCapabilities(
        supports_javascript=True,
        supports_proxies=True,
        supports_custom_headers=True,
        max_concurrency=5,
        rate_limit_per_second=1.0,
    )
    cost = CostEstimate(per_page=0.001, minimum_charge=0.001)
    requirements = ScraperRequirements(api_key=True)
    excluded_extensions = EXCLUDED_EXTENSIONS

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        rate_limit_delay_ms: int | None = None,
        http_client: httpx.AsyncClient | None = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.api_key = (settings.firecrawl_api_key if api_key is None else api_key).strip()
        self.base_url = (base_url or settings.firecrawl_base_url).rstrip("/")
        delay = settings.firecrawl_rate_limit_delay_ms if rate_limit_delay_ms is None else rate_limit_delay_ms
        self.rate_limit_delay = max(int(delay), 0) / 1000
        self._http_client = http_client
        self._last_request = 0.0
        self._throttle = asyncio.Lock()

    def missing_requirements(self) -> list[str]:
        return [] if self.api_key else ["api_key"]

    def can_handle(self, url: str) -> bool:
        return self.enabled and super().can_handle(url)

    async def _wait_for_slot(self) -> float:
        """Reserve the next request slot under the lock, then sleep until it opens."""
        async with self._throttle:
            now = time.monotonic()
            slot = max(now, self._last_request + self.rate_limit_delay)
            self._last_request = slot
        wait = slot - now
        if wait > 0:
            await asyncio.sleep(wait)
        return wait

    async def _request(self, url: str, options: ScrapeOptions) -> dict:
        body: dict = {"url": url, "formats": ["markdown", "html"], "onlyMainContent": True}
        if options.wait_for_selector:
            body["waitFor"] = options.wait_for_selector
        if options.extract_schema:
            body["formats"].append("extract")
            body["extract"] = {"schema": options.extract_schema}
        if options.headers:
            body["headers"] = options.headers
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        async def _do_request(client: httpx.AsyncClient) -> dict:
            response = await client.post(f"{self.base_url}/v1/scrape", json=body, headers=headers)
            if response.status_code >= 400:
                raise ScrapeError(
                    f"Firecrawl returned HTTP {response.status_code} for {url}",
                    url=url,
                    code=error_code_for_status(response.status_code),
                )
            payload = response.json()
            return payload if isinstance(payload, dict) else {}

        await self._wait_for_slot()
        if self._http_client is None:
            async with httpx.AsyncClient(timeout=options.timeout_seconds or settings.scrape_timeout_seconds) as client:
                return await _do_request(client)
        return await _do_request(self._http_client)

    async def _fetch(self, url: str, options: ScrapeOptions) -> ScrapingResult:
        if not self.enabled:
            raise ScrapeError("Firecrawl API key not configured", url=url, code="API_AUTH_ERROR")

        payload = scrape_cache.load(url, scraper=self.name)
        from_cache = payload is not None
        if payload is None:
            payload = await self._request(url, options)
            if payload.get("success") is False:
                raise ScrapeError(
                    str(payload.get("error") or "Firecrawl scrape failed"), url=url, code="API_ERROR"
                )
            scrape_cache.save(url, scraper=self.name, body=payload)

        data = payload.get("data", payload)
        if not isinstance(data, dict):
            raise ScrapeError("Firecrawl response missing data", url=url, code="API_ERROR")
        meta = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
        markdown = str(data.get("markdown") or "")
        structured: dict = {}
        if isinstance(data.get("extract"), dict):
            structured["extract"] = data["extract"]
        if meta.get("description"):
            structured["description"] = meta["description"]

        return ScrapingResult(
            url=url,
            scraper=self.name,
            content=markdown,
            html=str(data.get("html") or ""),
            text=markdown,
            title=str(meta.get("title") or ""),
            structured=structured,
            links=[str(link) for link in data.get("links") or []],
            metadata={
                "status_code": int(meta.get("statusCode") or 200),
                "final_url": str(meta.get("sourceURL") or url),
                "markdown": markdown,
                "from_cache": from_cache,
            },
        )
