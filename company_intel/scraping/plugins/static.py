from __future__ import annotations

import json
import re

import httpx
from bs4 import BeautifulSoup

from company_intel.config import settings
from company_intel.models.scraping import (
    CostEstimate,
    ScrapeOptions,
    ScraperCapabilities,
    ScrapingResult,
)
from company_intel.scraping.plugins.base import ScraperPlugin
from company_intel.scraping.structured_data import fields_from_json_ld
from company_intel.utils.web import ASSET_EXTENSIONS, is_valid_url, normalize_url

BLOCK_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6", "p", "li", "blockquote", "td", "figcaption")
NOISE_TAGS = ("script", "style", "noscript", "template", "svg", "iframe")


def _normalize_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    text = re.sub(r"\r\n?", "\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n\s*\n+", "\n", text)
    return text.strip()


def parse_html(url: str, html: str, scraper: str) -> ScrapingResult:
    """Turn a fetched HTML document into a ScrapingResult."""
    soup = BeautifulSoup(html, "html.parser")

    json_ld: list = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            json_ld.append(json.loads(script.string or ""))
        except (json.JSONDecodeError, TypeError):
            continue

    for tag in soup(NOISE_TAGS):
        tag.decompose()

    title = ""
    if soup.title and soup.title.string:
        title = soup.title.string.strip()
    if not title:
        h1 = soup.find("h1")
        title = h1.get_text(" ", strip=True) if h1 else ""

    description = ""
    meta = soup.find("meta", attrs={"name": "description"}) or soup.find(
        "meta", attrs={"property": "og:description"}
    )
    if meta and meta.get("content"):
        description = str(meta["content"]).strip()

    blocks: list[str] = []
    for element in soup.find_all(BLOCK_TAGS):
        if element.find(BLOCK_TAGS):
            continue
        block = " ".join(element.get_text(" ", strip=True).split())
        if block:
            blocks.append(block)

    links: list[str] = []
    for anchor in soup.find_all("a", href=True):
        href = str(anchor["href"]).strip()
        if href.startswith(("mailto:", "tel:", "javascript:", "#")):
            continue
        absolute = normalize_url(href, base=url)
        if is_valid_url(absolute) and absolute not in links:
            links.append(absolute)

    images = [
        normalize_url(str(img["src"]), base=url)
        for img in soup.find_all("img", src=True)
        if not str(img["src"]).startswith("data:")
    ]

    structured: dict = {}
    if description:
        structured["description"] = description
    headings = [h.get_text(" ", strip=True) for h in soup.find_all(("h1", "h2", "h3"))]
    if headings:
        structured["headings"] = [h for h in headings if h]
    if json_ld:
        structured["json_ld"] = json_ld
        schema_fields = fields_from_json_ld(json_ld)
        if schema_fields:
            structured["extract"] = schema_fields
    if images:
        structured["images"] = images[:50]

    body = soup.body or soup
    return ScrapingResult(
        url=url,
        scraper=scraper,
        content="\n\n".join(blocks),
        html=html,
        text=_normalize_text(body.get_text("\n")),
        title=title,
        structured=structured,
        links=links,
    )


class StaticHttpScraper(ScraperPlugin):
    """Plain HTTP fetch parsed with BeautifulSoup; no JavaScript."""

    name = "static"
    scraper_type = "static"
    speed = "fast"
    priority = 60
    capabilities = ScraperCapabilities(
        supports_cookies=True,
        supports_custom_headers=True,
        max_concurrency=10,
    )
    cost = CostEstimate()
    excluded_extensions = ASSET_EXTENSIONS

    def __init__(self, *, http_client: httpx.AsyncClient | None = None, **kwargs):
        super().__init__(**kwargs)
        self._http_client = http_client

    async def _fetch(self, url: str, options: ScrapeOptions) -> ScrapingResult:
        headers = {"User-Agent": settings.scrape_user_agent, **options.headers}

        async def _do_request(client: httpx.AsyncClient) -> httpx.Response:
            response = await client.get(url, headers=headers)
            response.raise_for_status()
            return response

        if self._http_client is None:
            async with httpx.AsyncClient(
                timeout=options.timeout_seconds or settings.scrape_timeout_seconds,
                follow_redirects=True,
            ) as client:
                response = await _do_request(client)
        else:
            response = await _do_request(self._http_client)

        result = parse_html(url, response.text, self.name)
        result.metadata.update(
            {
                "status_code": response.status_code,
                "content_type": response.headers.get("content-type", ""),
                "content_length": len(response.content),
                "final_url": str(response.url),
            }
        )
        return result
