from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx
from bs4 import BeautifulSoup
from loguru import logger

from company_intel.models.discovery import DiscoveredPage, PageSource
from company_intel.services.streaming import ProgressCallback, notify_progress
from company_intel.utils.web import is_asset_url, is_valid_url, normalize_url, same_site

BLOG_PATHS = ("/blog", "/news", "/articles", "/posts")
MAX_BLOG_SECTIONS = 3


@dataclass(slots=True)
class CrawlOutcome:
    pages_fetched: int = 0
    homepage_crawled: bool = False
    blog_discovered: bool = False


def extract_links(html: str, page_url: str, domain: str) -> list[str]:
    soup = BeautifulSoup(html, "html.parser")
    links: list[str] = []
    for anchor in soup.find_all("a", href=True):
        href = str(anchor["href"]).strip()
        if not href or href.startswith(("#", "mailto:", "tel:", "javascript:")):
            continue
        url = normalize_url(href, base=page_url)
        if not is_valid_url(url) or not same_site(url, domain) or is_asset_url(url):
            continue
        if url not in links:
            links.append(url)
    return links


class SiteCrawler:
    """Breadth-first same-domain crawl from the homepage.

    Discovered pages are appended to the caller's list as they are found, so a
    crawl that dies half-way still leaves its partial result behind.
    """

    def __init__(self, client: httpx.AsyncClient, *, max_pages: int = 25, max_urls: int = 500):
        self.client = client
        self.max_pages = max(max_pages, 1)
        self.max_urls = max(max_urls, 1)

    async def _html(self, url: str) -> str | None:
        try:
            response = await self.client.get(url)
        except httpx.HTTPError as exc:
            logger.debug(f"Crawl fetch failed for {url}: {exc}")
            return None
        if response.status_code >= 400:
            return None
        if "html" not in response.headers.get("content-type", "text/html"):
            return None
        return response.text

    async def crawl(
        self,
        domain: str,
        found: list[DiscoveredPage],
        seen: set[str],
        *,
        on_progress: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CrawlOutcome:
        outcome = CrawlOutcome()
        now = datetime.now(timezone.utc).isoformat()

        def _add(url: str, source: PageSource, priority: float = 0.5) -> bool:
            if url in seen or len(found) >= self.max_urls:
                return False
            seen.add(url)
            found.append(DiscoveredPage(url=url, source=source, discovered_at=now, priority=priority))
            return True

        def _cancelled() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        homepage = normalize_url(f"https://{domain}/")
        _add(homepage, "homepage", priority=1.0)
        fetched: set[str] = set()
        queue: deque[tuple[str, PageSource]] = deque([(homepage, "homepage")])

        while queue and outcome.pages_fetched < self.max_pages and len(found) < self.max_urls:
            if _cancelled():
                return outcome
            url, origin = queue.popleft()
            if url in fetched:
                continue
            fetched.add(url)
            html = await self._html(url)
            outcome.pages_fetched += 1
            if html is None:
                continue
            if origin == "homepage":
                outcome.homepage_crawled = True
            child_source: PageSource = "homepage" if origin == "homepage" else "crawl"
            for link in extract_links(html, url, domain):
                if _add(link, child_source):
                    queue.append((link, "crawl"))
            await notify_progress(on_progress, len(found), self.max_urls, f"Crawled {url}")

        sections = 0
        for path in BLOG_PATHS:
            if sections >= MAX_BLOG_SECTIONS or len(found) >= self.max_urls or _cancelled():
                break
            section = normalize_url(f"https://{domain}{path}")
            html = await self._html(section)
            if html is None:
                continue
            sections += 1
            outcome.blog_discovered = True
            _add(section, "blog", priority=0.6)
            for link in extract_links(html, section, domain):
                _add(link, "blog")
            await notify_progress(on_progress, len(found), self.max_urls, f"Discovered blog section {path}")
        return outcome
