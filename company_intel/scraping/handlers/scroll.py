from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from loguru import logger

from company_intel.config import settings

ITEM_SELECTORS = (
    "article",
    "[class*='card']",
    "[class*='item']",
    "[class*='post']",
    "li",
)

SCROLL_STATE_JS = """() => ({
    scrollY: window.scrollY,
    scrollHeight: document.body.scrollHeight,
    innerHeight: window.innerHeight,
})"""
SCROLL_BY_JS = "(distance) => window.scrollBy(0, distance)"
SCROLL_TO_JS = "(y) => window.scrollTo(0, y)"
SCROLL_HEIGHT_JS = "() => document.body.scrollHeight"
COUNT_ITEMS_JS = """(selectors) => selectors.reduce(
    (total, selector) => total + document.querySelectorAll(selector).length, 0)"""


@dataclass(frozen=True, slots=True)
class ScrollResult:
    total_scrolled: int
    scroll_count: int
    reached_bottom: bool
    new_content_detected: bool


class ScrollHandler:
    """Drive a Playwright page so lazily-loaded content gets rendered."""

    def __init__(
        self,
        *,
        distance: int | None = None,
        delay_ms: int | None = None,
        max_scrolls: int | None = None,
        wait_after_ms: int = 500,
        return_to_top: bool = True,
    ):
        self.distance = distance or settings.scroll_distance
        self.delay_ms = settings.scroll_delay_ms if delay_ms is None else delay_ms
        self.max_scrolls = max_scrolls or settings.scroll_max_scrolls
        self.wait_after_ms = wait_after_ms
        self.return_to_top = return_to_top

    async def auto_scroll(self, page: Any) -> ScrollResult:
        state = await page.evaluate(SCROLL_STATE_JS)
        initial_height = int(state["scrollHeight"])
        total = 0
        count = 0
        reached_bottom = False

        while count < self.max_scrolls:
            await page.evaluate(SCROLL_BY_JS, self.distance)
            total += self.distance
            count += 1
            await page.wait_for_timeout(self.delay_ms)

            state = await page.evaluate(SCROLL_STATE_JS)
            if state["scrollY"] + state["innerHeight"] >= state["scrollHeight"]:
                reached_bottom = True
                break

        await page.wait_for_timeout(self.wait_after_ms)
        final_height = int(await page.evaluate(SCROLL_HEIGHT_JS))
        if self.return_to_top:
            await self.scroll_to_top(page)

        result = ScrollResult(
            total_scrolled=total,
            scroll_count=count,
            reached_bottom=reached_bottom,
            new_content_detected=final_height > initial_height,
        )
        logger.debug(f"Auto-scroll finished: {result}")
        return result

    async def handle_infinite_scroll(
        self,
        page: Any,
        *,
        max_attempts: int = 20,
        stable_rounds: int = 3,
        item_selectors: tuple[str, ...] = ITEM_SELECTORS,
    ) -> int:
        """Scroll to the bottom until height stops growing; returns items found."""
        last_height = int(await page.evaluate(SCROLL_HEIGHT_JS))
        unchanged = 0
        for _ in range(max_attempts):
            await self.scroll_to_bottom(page)
            await page.wait_for_timeout(self.wait_after_ms)
            height = int(await page.evaluate(SCROLL_HEIGHT_JS))
            if height == last_height:
                unchanged += 1
                if unchanged >= stable_rounds:
                    break
            else:
                unchanged = 0
                last_height = height
        return int(await page.evaluate(COUNT_ITEMS_JS, list(item_selectors)))

    async def scroll_to_bottom(self, page: Any) -> None:
        height = await page.evaluate(SCROLL_HEIGHT_JS)
        await page.evaluate(SCROLL_TO_JS, height)

    async def scroll_to_top(self, page: Any) -> None:
        await page.evaluate(SCROLL_TO_JS, 0)

    async def scroll_to_element(self, page: Any, selector: str) -> bool:
        element = await page.query_selector(selector)
        if element is None:
            return False
        await element.scroll_into_view_if_needed()
        await page.wait_for_timeout(self.delay_ms)
        return True

    async def wait_for_scroll_stable(self, page: Any, *, timeout_ms: int = 5000, poll_ms: int = 250) -> bool:
        deadline = time.monotonic() + timeout_ms / 1000
        last = await page.evaluate(SCROLL_HEIGHT_JS)
        while time.monotonic() < deadline:
            await page.wait_for_timeout(poll_ms)
            current = await page.evaluate(SCROLL_HEIGHT_JS)
            if current == last:
                return True
            last = current
        return False
