from __future__ import annotations

import asyncio
import logging

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator, Page
from playwright.async_api import TimeoutError as PlaywrightTimeout

from lexis_search.core.errors import NavigationTimeout

logger = logging.getLogger("lexis.waits")


class WaitManager:
    """Bounded waits over a single page. Nothing here blocks without a timeout."""

    def __init__(self, page: Page, navigation_timeout_ms: int = 30_000, settle_timeout_ms: int = 10_000) -> None:
        self._page = page
        self._navigation_timeout_ms = navigation_timeout_ms
        self._settle_timeout_ms = settle_timeout_ms

    @property
    def page(self) -> Page:
        return self._page

    async def goto(self, url: str, wait_until: str = "domcontentloaded") -> None:
        try:
            await self._page.goto(url, wait_until=wait_until, timeout=self._navigation_timeout_ms)
        except PlaywrightTimeout as exc:
            raise NavigationTimeout(f"Loading {url} exceeded {self._navigation_timeout_ms}ms") from exc
        await self.settle()

    async def settle(self) -> None:
        """Wait for DOM content, then give the network a bounded chance to go idle."""
        try:
            await self._page.wait_for_load_state("domcontentloaded", timeout=self._navigation_timeout_ms)
        except PlaywrightTimeout as exc:
            raise NavigationTimeout(f"Page did not settle within {self._navigation_timeout_ms}ms") from exc
        try:
            await self._page.wait_for_load_state("networkidle", timeout=self._settle_timeout_ms)
        except PlaywrightTimeout:
            # long-polling pages never go idle
            logger.debug("[Waits] networkidle not reached within %dms", self._settle_timeout_ms)

    async def wait_visible(self, locator: Locator, timeout_ms: int) -> bool:
        try:
            await locator.wait_for(state="visible", timeout=timeout_ms)
            return True
        except (PlaywrightTimeout, PlaywrightError):
            return False

    async def pause(self, delay_ms: int) -> None:
        if delay_ms <= 0:
            return
        await asyncio.sleep(delay_ms / 1000.0)
