"""
Browser Manager - one persistent Chromium profile, one working page.

Cookies and local storage live in the profile directory
(``browser.user_data_dir``), so logins survive between runs.
"""

import asyncio
from pathlib import Path
from typing import Optional

import structlog
from playwright.async_api import BrowserContext, Page, Playwright, async_playwright

from ..core.config import BrowserConfig

logger = structlog.get_logger()

LAUNCH_ARGS = [
    "--disable-dev-shm-usage",  # limited /dev/shm in containers
    "--no-sandbox",
    "--disable-extensions",
    "--disable-background-networking",
    "--mute-audio",
    "--no-first-run",
]


class BrowserManager:
    """
    Owns the Playwright lifecycle for a driver.

    The browser starts on the first page request. A page closed by the
    site (or by a popup flow) is replaced on the next request.
    """

    def __init__(self, config: Optional[BrowserConfig] = None):
        self.config = config or BrowserConfig()

        self._playwright: Optional[Playwright] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._context is not None

    async def _start(self) -> None:
        profile = Path(self.config.user_data_dir)
        profile.mkdir(parents=True, exist_ok=True)
        logger.info("browser_starting", headless=self.config.headless, profile=str(profile))

        self._playwright = await async_playwright().start()
        try:
            self._context = await self._playwright.chromium.launch_persistent_context(
                str(profile),
                headless=self.config.headless,
                viewport={
                    "width": self.config.viewport_width,
                    "height": self.config.viewport_height,
                },
                args=LAUNCH_ARGS,
                ignore_https_errors=True,
                locale="en-US",
            )
        except Exception:
            await self._playwright.stop()
            self._playwright = None
            raise

        self._context.set_default_timeout(self.config.default_timeout_ms)
        pages = self._context.pages
        self._page = pages[0] if pages else await self._context.new_page()
        logger.info("browser_started")

    async def get_page(self) -> Page:
        """Working page, launching the browser on first use."""
        async with self._lock:
            if self._context is None:
                await self._start()
            if self._page is None or self._page.is_closed():
                self._page = await self._context.new_page()
                logger.debug("browser_page_reopened")
            return self._page

    async def shutdown(self) -> None:
        """Close the profile and stop Playwright. Safe to call twice."""
        async with self._lock:
            if self._context is None:
                return

            context, playwright = self._context, self._playwright
            self._context = None
            self._page = None
            self._playwright = None

            try:
                await context.close()
                await playwright.stop()
            except Exception as e:
                logger.error("browser_shutdown_error", error=str(e))
            else:
                logger.info("browser_stopped")
