from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import httpx
from bs4 import BeautifulSoup
from loguru import logger

from company_intel.models.discovery import DiscoveredPage
from company_intel.utils.web import is_valid_url, normalize_url, same_site

SITEMAP_PATHS = (
    "/sitemap.xml",
    "/sitemap_index.xml",
    "/sitemap-index.xml",
    "/wp-sitemap.xml",
    "/post-sitemap.xml",
    "/page-sitemap.xml",
    "/sitemap",
)


def candidate_hosts(domain: str) -> list[str]:
    bare = domain[4:] if domain.startswith("www.") else domain
    return [bare, f"www.{bare}"]


def _looks_like_sitemap(body: str) -> bool:
    head = body[:2000].lower()
    return "<urlset" in head or "<sitemapindex" in head


def _parse_priority(value: str | None) -> float:
    try:
        return max(0.0, min(float(value or 0.5), 1.0))
    except ValueError:
        return 0.5


class SitemapDiscovery:
    """Locate and read a site's sitemap, following sitemap indexes."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        max_urls: int = 500,
        max_sitemaps: int = 20,
        max_depth: int = 2,
    ):
        self.client = client
        self.max_urls = max_urls
        self.max_sitemaps = max_sitemaps
        self.max_depth = max_depth
        self._fetched = 0

    async def _get(self, url: str) -> str | None:
        try:
            response = await self.client.get(url)
        except httpx.HTTPError as exc:
            logger.debug(f"Sitemap fetch failed for {url}: {exc}")
            return None
        if response.status_code != 200 or not response.text.strip():
            return None
        return response.text

    async def robots_sitemaps(self, host: str) -> list[str]:
        body = await self._get(f"https://{host}/robots.txt")
        if not body:
            return []
        found: list[str] = []
        for line in body.splitlines():
            key, _, value = line.partition(":")
            if key.strip().lower() == "sitemap" and is_valid_url(value.strip()):
                found.append(value.strip())
        return found

    async def candidates(self, domain: str) -> list[str]:
        hosts = candidate_hosts(domain)
        urls: list[str] = []
        for host in hosts:
            urls.extend(await self.robots_sitemaps(host))
        for host in hosts:
            urls.extend(f"https://{host}{path}" for path in SITEMAP_PATHS)
        return list(dict.fromkeys(urls))

    async def discover(
        self,
        domain: str,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> tuple[list[DiscoveredPage], str | None]:
        """Entries of the first sitemap that yields any, and that sitemap's URL."""
        for sitemap_url in await self.candidates(domain):
            if cancel_event is not None and cancel_event.is_set():
                break
            pages = await self.read(sitemap_url, domain, cancel_event=cancel_event)
            if pages:
                logger.info(f"Sitemap {sitemap_url} yielded {len(pages)} URLs")
                return pages, sitemap_url
        return [], None

    async def read(
        self,
        sitemap_url: str,
        domain: str,
        *,
        depth: int = 0,
        seen: set[str] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> list[DiscoveredPage]:
        seen = seen if seen is not None else set()
        seen.add(sitemap_url)
        self._fetched += 1
        body = await self._get(sitemap_url)
        if not body or not _looks_like_sitemap(body):
            return []

        soup = BeautifulSoup(body, "html.parser")
        now = datetime.now(timezone.utc).isoformat()
        pages: list[DiscoveredPage] = []

        for entry in soup.find_all("url"):
            loc = entry.find("loc")
            if loc is None:
                continue
            url = normalize_url(loc.get_text(strip=True))
            if not is_valid_url(url) or not same_site(url, domain):
                continue
            priority = entry.find("priority")
            lastmod = entry.find("lastmod")
            pages.append(
                DiscoveredPage(
                    url=url,
                    source="sitemap",
                    discovered_at=now,
                    priority=_parse_priority(priority.get_text(strip=True) if priority else None),
                    lastmod=lastmod.get_text(strip=True) if lastmod else None,
                )
            )

        if depth >= self.max_depth:
            return pages
        for entry in soup.find_all("sitemap"):
            if len(pages) >= self.max_urls or self._fetched >= self.max_sitemaps:
                break
            if cancel_event is not None and cancel_event.is_set():
                break
            loc = entry.find("loc")
            child = loc.get_text(strip=True) if loc else ""
            if not is_valid_url(child) or child in seen:
                continue
            pages.extend(
                await self.read(child, domain, depth=depth + 1, seen=seen, cancel_event=cancel_event)
            )
        return pages
