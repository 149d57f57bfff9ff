"""Detect and walk paginated listings."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal
from urllib.parse import parse_qs, urlparse

from bs4 import BeautifulSoup
from loguru import logger

from company_intel.config import settings
from company_intel.utils.web import normalize_url, same_site

PaginationType = Literal["numbered", "next_prev", "load_more", "none"]

PAGINATION_SELECTORS = (
    "a[href*='page=']",
    "a[href*='/page/']",
    "a[href*='?p=']",
    "a[href*='&p=']",
    ".pagination a",
    ".page-numbers a",
    ".pager a",
    "nav[aria-label*='agination'] a",
)
NEXT_SELECTORS = ("a[rel~='next']", "link[rel~='next']", "a.next", ".pagination .next a", "a[aria-label*='Next']")
PREV_SELECTORS = ("a[rel~='prev']", "link[rel~='prev']", "a.prev", "a.previous", "a[aria-label*='Prev']")
LOAD_MORE_TEXT = re.compile(r"\b(load|show|view)\s+more\b", re.IGNORECASE)
LOAD_MORE_SELECTORS = (
    "button.load-more",
    "a.load-more",
    "[data-action='load-more']",
    "button:has-text('Load more')",
    "button:has-text('Show more')",
)
MAX_LINKS = 10

PageFetcher = Callable[[str], Awaitable[str]]


@dataclass(slots=True)
class PaginationInfo:
    type: PaginationType = "none"
    links: list[str] = field(default_factory=list)
    next_url: str | None = None
    prev_url: str | None = None
    current_page: int = 1
    total_pages: int | None = None

    @property
    def has_pagination(self) -> bool:
        return self.type != "none"


def _page_number(url: str) -> int | None:
    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    for key in ("page", "p"):
        values = query.get(key)
        if values and values[0].isdigit():
            return int(values[0])
    match = re.search(r"/page/(\d+)", parsed.path)
    return int(match.group(1)) if match else None


class PaginationHandler:
    def __init__(self, *, max_pages: int | None = None, page_delay_ms: int | None = None):
        self.max_pages = max(max_pages or settings.pagination_max_pages, 1)
        delay = settings.pagination_delay_ms if page_delay_ms is None else page_delay_ms
        self.page_delay = max(int(delay), 0) / 1000

    def detect(self, html: str, base_url: str) -> PaginationInfo:
        soup = BeautifulSoup(html, "html.parser")
        info = PaginationInfo(current_page=_page_number(base_url) or 1)
        current = normalize_url(base_url)

        def _resolve(selectors: tuple[str, ...]) -> str | None:
            for selector in selectors:
                node = soup.select_one(selector)
                if node is not None and node.get("href"):
                    url = normalize_url(str(node["href"]), base=base_url)
                    if same_site(url, urlparse(base_url).netloc):
                        return url
            return None

        info.next_url = _resolve(NEXT_SELECTORS)
        info.prev_url = _resolve(PREV_SELECTORS)

        links: list[str] = []
        for selector in PAGINATION_SELECTORS:
            for anchor in soup.select(selector):
                href = anchor.get("href")
                if not href or str(href).startswith(("#", "javascript:")):
                    continue
                url = normalize_url(str(href), base=base_url)
                if url == current or url in links or not same_site(url, urlparse(base_url).netloc):
                    continue
                links.append(url)
                if len(links) >= MAX_LINKS:
                    break
            if len(links) >= MAX_LINKS:
                break
        info.links = links

        numbers = [n for n in (_page_number(url) for url in links) if n is not None]
        if numbers:
            info.type = "numbered"
            info.total_pages = max(numbers + [info.current_page])
        elif info.next_url or info.prev_url:
            info.type = "next_prev"
        elif self._has_load_more(soup):
            info.type = "load_more"
        return info

    @staticmethod
    def _has_load_more(soup: BeautifulSoup) -> bool:
        for node in soup.find_all(["button", "a"]):
            if LOAD_MORE_TEXT.search(node.get_text(" ", strip=True)):
                return True
            classes = " ".join(node.get("class") or [])
            if "load-more" in classes:
                return True
        return False

    async def collect(
        self,
        start_url: str,
        html: str,
        fetch_page: PageFetcher,
    ) -> list[tuple[str, str]]:
        """Follow pagination from an already-fetched first page.

        Returns `(url, html)` pairs starting with the first page. Stops at
        `max_pages`, at the first fetch error, or when no new page is found.
        """
        pages = [(start_url, html)]
        visited = {normalize_url(start_url)}
        info = self.detect(html, start_url)

        if info.type == "numbered":
            queue = [url for url in info.links if (_page_number(url) or 0) != info.current_page]
            for url in queue:
                if len(pages) >= self.max_pages:
                    break
                if url in visited:
                    continue
                fetched = await self._fetch(url, fetch_page, visited)
                if fetched is None:
                    break
                pages.append((url, fetched))
        elif info.type == "next_prev":
            next_url = info.next_url
            while next_url and len(pages) < self.max_pages and next_url not in visited:
                fetched = await self._fetch(next_url, fetch_page, visited)
                if fetched is None:
                    break
                pages.append((next_url, fetched))
                next_url = self.detect(fetched, next_url).next_url
        return pages

    async def _fetch(self, url: str, fetch_page: PageFetcher, visited: set[str]) -> str | None:
        visited.add(url)
        if self.page_delay:
            await asyncio.sleep(self.page_delay)
        try:
            return await fetch_page(url)
        except Exception as exc:
            logger.warning(f"Pagination stopped at {url}: {exc}")
            return None

    async def load_more(self, page: Any, *, max_clicks: int | None = None, wait_ms: int = 1000) -> int:
        """Click a load-more control on a Playwright page until it disappears."""
        clicks = 0
        budget = max_clicks or self.max_pages
        while clicks < budget:
            button = None
            for selector in LOAD_MORE_SELECTORS:
                button = await page.query_selector(selector)
                if button is not None and await button.is_visible():
                    break
                button = None
            if button is None:
                break
            try:
                await button.click()
            except Exception as exc:
                logger.debug(f"Load-more click failed: {exc}")
                break
            clicks += 1
            await page.wait_for_timeout(wait_ms)
        return clicks
