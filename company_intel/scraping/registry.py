from __future__ import annotations

from typing import Iterable

from loguru import logger

from company_intel.config import Settings, settings
from company_intel.errors import PluginUnavailableError
from company_intel.scraping.plugins.base import ScraperPlugin
from company_intel.scraping.plugins.browser import BrowserScraper
from company_intel.scraping.plugins.firecrawl import FirecrawlScraper
from company_intel.scraping.plugins.static import StaticHttpScraper


class ScraperRegistry:
    """Name → plugin mapping. Construct one per pipeline; there is no global."""

    def __init__(self, plugins: Iterable[ScraperPlugin] = ()):
        self._plugins: dict[str, ScraperPlugin] = {}
        for plugin in plugins:
            self.register(plugin)

    def register(self, plugin: ScraperPlugin) -> None:
        if plugin.name in self._plugins:
            raise ValueError(f"Scraper already registered: {plugin.name}")
        self._plugins[plugin.name] = plugin
        if plugin.enabled:
            logger.info(f"Registered scraper {plugin.name} (priority {plugin.priority})")
        else:
            logger.warning(
                f"Registered scraper {plugin.name} disabled, missing: {', '.join(plugin.missing_requirements())}"
            )

    def unregister(self, name: str) -> ScraperPlugin | None:
        return self._plugins.pop(name, None)

    def get(self, name: str) -> ScraperPlugin | None:
        return self._plugins.get(name)

    def require(self, name: str) -> ScraperPlugin:
        plugin = self._plugins.get(name)
        if plugin is None or not plugin.enabled:
            raise PluginUnavailableError(f"Scraper not available: {name}")
        return plugin

    def all(self) -> list[ScraperPlugin]:
        return list(self._plugins.values())

    def enabled_plugins(self) -> list[ScraperPlugin]:
        return [plugin for plugin in self._plugins.values() if plugin.enabled]

    def plugins_for_url(self, url: str) -> list[ScraperPlugin]:
        candidates = [plugin for plugin in self.enabled_plugins() if plugin.can_handle(url)]
        return sorted(candidates, key=lambda plugin: -plugin.priority)

    def select(self, url: str) -> ScraperPlugin | None:
        candidates = self.plugins_for_url(url)
        return candidates[0] if candidates else None

    def describe(self) -> list[dict]:
        return [plugin.describe() for plugin in sorted(self._plugins.values(), key=lambda p: -p.priority)]

    def __contains__(self, name: object) -> bool:
        return name in self._plugins

    def __len__(self) -> int:
        return len(self._plugins)


def build_default_registry(config: Settings = settings) -> ScraperRegistry:
    return ScraperRegistry(
        [
            FirecrawlScraper(
                api_key=config.firecrawl_api_key,
                base_url=config.firecrawl_base_url,
                rate_limit_delay_ms=config.firecrawl_rate_limit_delay_ms,
            ),
            BrowserScraper(),
            StaticHttpScraper(),
        ]
    )
