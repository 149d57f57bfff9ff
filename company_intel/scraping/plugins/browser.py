from __future__ import annotations

import hashlib
import importlib.util
from dataclasses import asdict
from pathlib import Path
from typing import Any

from company_intel.config import settings
from company_intel.errors import ScrapeError
from company_intel.models.scraping import (
    CostEstimate,
    ScrapeOptions,
    ScraperCapabilities,
    ScraperRequirements,
    ScrapingResult,
)
from company_intel.scraping.handlers.pagination import PaginationHandler
from company_intel.scraping.handlers.scroll import ScrollHandler
from company_intel.scraping.plugins.base import ScraperPlugin
from company_intel.scraping.plugins.static import parse_html
from company_intel.utils.web import ASSET_EXTENSIONS


def playwright_installed() -> bool:
    return importlib.util.find_spec("playwright") is not None


class BrowserScraper(ScraperPlugin):
    """Headless Chromium via Playwright, for JavaScript-rendered sites."""

    name = "browser"
    scraper_type = "browser"
    speed = "slow"
    priority = 70
    capabilities = ScraperCapabilities(
        supports_javascript=True,
        supports_cookies=True,
        supports_custom_headers=True,
        max_concurrency=3,
    )
    cost = CostEstimate(setup_cost=0.0)
    requirements = ScraperRequirements(browser=True)
    excluded_extensions = ASSET_EXTENSIONS

    def __init__(
        self,
        *,
        headless: bool | None = None,
        capture_screenshot: bool | None = None,
        artifacts_dir: str | None = None,
        scroll_handler: ScrollHandler | None = None,
        pagination_handler: PaginationHandler | None = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.headless = settings.browser_headless if headless is None else headless
        self.capture_screenshot = (
            settings.browser_capture_screenshot if capture_screenshot is None else capture_screenshot
        )
        self.artifacts_dir = Path(artifacts_dir or settings.browser_artifacts_dir)
        self.scroll = scroll_handler or ScrollHandler()
        self.pagination = pagination_handler or PaginationHandler()

    def missing_requirements(self) -> list[str]:
        return [] if playwright_installed() else ["browser"]

    async def prepare_page(self, page: Any, options: ScrapeOptions) -> dict[str, Any]:
        """Scroll and expand a loaded page before its HTML is captured."""
        details: dict[str, Any] = {"load_more_clicks": 0}
        if options.wait_for_selector:
            details["selector_in_view"] = await self.scroll.scroll_to_element(page, options.wait_for_selector)
        if options.scroll:
            scrolled = await self.scroll.auto_scroll(page)
            details["scroll"] = asdict(scrolled)
            # height kept growing while scrolling: treat as an infinite feed
            if scrolled.new_content_detected:
                details["infinite_scroll_items"] = await self.scroll.handle_infinite_scroll(page)
                details["scroll_stable"] = await self.scroll.wait_for_scroll_stable(page)
        if options.paginate:
            details["load_more_clicks"] = await self.pagination.load_more(page)
        return details

    async def _fetch(self, url: str, options: ScrapeOptions) -> ScrapingResult:
        try:
            from playwright.async_api import async_playwright
        except ImportError as exc:  # pragma: no cover - depends on optional package
            raise ScrapeError("Playwright is not installed", url=url, code="API_ERROR") from exc

        timeout_ms = int((options.timeout_seconds or settings.scrape_timeout_seconds) * 1000)
        async with async_playwright() as playwright:  # pragma: no cover - integration behavior
            browser = await playwright.chromium.launch(headless=self.headless)
            try:
                context = await browser.new_context(
                    user_agent=settings.scrape_user_agent,
                    extra_http_headers=options.headers or None,
                )
                page = await context.new_page()
                response = await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
                if options.wait_for_selector:
                    await page.wait_for_selector(options.wait_for_selector, timeout=timeout_ms)

                page_details = await self.prepare_page(page, options)

                html = await page.content()
                final_url = page.url
                status_code = int(response.status) if response is not None else 200

                extra_pages: list[tuple[str, str]] = []
                if options.paginate:

                    async def _render(target: str) -> str:
                        await page.goto(target, wait_until="domcontentloaded", timeout=timeout_ms)
                        return await page.content()

                    extra_pages = (await self.pagination.collect(final_url, html, _render))[1:]

                screenshot_path = None
                if self.capture_screenshot or options.screenshot:
                    digest = hashlib.sha1(f"{url}|{final_url}".encode("utf-8")).hexdigest()
                    shot = self.artifacts_dir / "screenshots" / f"{digest}.png"
                    shot.parent.mkdir(parents=True, exist_ok=True)
                    await page.screenshot(path=str(shot), full_page=True)
                    screenshot_path = str(shot)

                await context.close()
            finally:
                await browser.close()

        result = parse_html(url, html, self.name)
        for page_url, page_html in extra_pages:
            extra = parse_html(page_url, page_html, self.name)
            if extra.content:
                result.content = f"{result.content}\n\n{extra.content}".strip()
            result.text = f"{result.text}\n{extra.text}".strip()
            result.links.extend(link for link in extra.links if link not in result.links)

        result.metadata.update(
            {
                "status_code": status_code,
                "final_url": final_url,
                "pages_rendered": 1 + len(extra_pages),
                **page_details,
            }
        )
        if screenshot_path:
            result.metadata["screenshot"] = screenshot_path
        return result
