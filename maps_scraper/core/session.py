"""Browser process ownership and per-search page setup."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, List, Optional, Tuple

from playwright.async_api import Browser, BrowserContext, Page, Route, async_playwright

from maps_scraper.core.config import Settings, get_settings

BLOCKED_RESOURCE_TYPES = frozenset({"image", "font", "media"})
TRACKING_MARKERS = (
    "google-analytics",
    "googletagmanager",
    "doubleclick",
    "facebook.net",
    "connect.facebook",
    "platform.twitter",
)
LAUNCH_ARGS = [
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
    "--no-first-run",
    "--disable-default-apps",
]

_LOCALE_INIT_SCRIPT = """
Object.defineProperty(navigator, 'language', { get: () => %(locale)s });
Object.defineProperty(navigator, 'languages', { get: () => [%(locale)s] });
"""


class SessionError(RuntimeError):
    """Raised when the browser session is used out of order."""


def should_block(resource_type: str, url: str, *, block_stylesheets: bool = False) -> bool:
    """Return True for sub-resources that never carry listing data."""
    lowered = (url or "").lower()
    if any(marker in lowered for marker in TRACKING_MARKERS):
        return True
    if resource_type in BLOCKED_RESOURCE_TYPES:
        return True
    return block_stylesheets and resource_type == "stylesheet"


def locale_init_script(locale: str) -> str:
    return _LOCALE_INIT_SCRIPT % {"locale": json.dumps(locale)}


class BrowserSession:
    """Owns the single browser process of a scraper instance.

    One isolated context is created per page so that locale and request
    filtering never leak between searches or harvester fetches.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        logger: Optional[logging.Logger] = None,
        playwright_factory: Callable[[], Any] = async_playwright,
    ) -> None:
        self.settings = settings or get_settings()
        self._logger = logger or logging.getLogger(__name__)
        self._playwright_factory = playwright_factory
        self._playwright: Any = None
        self._browser: Optional[Browser] = None
        self._pages: List[Tuple[Page, BrowserContext]] = []

    @property
    def is_open(self) -> bool:
        return self._browser is not None

    @property
    def open_pages(self) -> int:
        return len(self._pages)

    async def init(self) -> None:
        if self._browser is not None:
            raise SessionError("Browser session already initialised; call close() first")

        self._logger.info("Launching browser (headless=%s)", self.settings.headless)
        self._playwright = await self._playwright_factory().start()
        try:
            self._browser = await self._playwright.chromium.launch(
                headless=self.settings.headless,
                args=LAUNCH_ARGS + [f"--window-size={self.settings.viewport_width},{self.settings.viewport_height}"],
            )
        except Exception:
            await self._playwright.stop()
            self._playwright = None
            raise
        self._logger.info("Browser launched successfully")

    async def new_page(self, *, locale: str = "en", block_stylesheets: bool = False) -> Page:
        if self._browser is None:
            raise SessionError("Browser session is not initialised; call init() first")

        context = await self._browser.new_context(
            viewport={"width": self.settings.viewport_width, "height": self.settings.viewport_height},
            locale=locale,
            user_agent=self.settings.user_agent,
        )
        try:
            await context.add_init_script(locale_init_script(locale))

            async def _filter(route: Route) -> None:
                request = route.request
                if should_block(request.resource_type, request.url, block_stylesheets=block_stylesheets):
                    await route.abort()
                else:
                    await route.continue_()

            await context.route("**/*", _filter)
            page = await context.new_page()
        except Exception:
            await context.close()
            raise
        self._pages.append((page, context))
        return page

    async def close_page(self, page: Page) -> None:
        for index, (tracked, context) in enumerate(self._pages):
            if tracked is page:
                del self._pages[index]
                try:
                    await context.close()
                except Exception as exc:  # noqa: BLE001
                    self._logger.warning("Failed to close page context: %s", exc)
                return

    @asynccontextmanager
    async def open_page(self, *, locale: str = "en", block_stylesheets: bool = False) -> AsyncIterator[Page]:
        page = await self.new_page(locale=locale, block_stylesheets=block_stylesheets)
        try:
            yield page
        finally:
            await self.close_page(page)

    async def close(self) -> None:
        """Close every open page, then the browser. Never raises."""
        pages, self._pages = self._pages, []
        for _page, context in pages:
            try:
                await context.close()
            except Exception as exc:  # noqa: BLE001
                self._logger.warning("Failed to close page context: %s", exc)

        browser, self._browser = self._browser, None
        if browser is not None:
            try:
                await browser.close()
                self._logger.info("Browser closed")
            except Exception as exc:  # noqa: BLE001
                self._logger.error("Failed to close browser cleanly: %s", exc)

        playwright, self._playwright = self._playwright, None
        if playwright is not None:
            try:
                await playwright.stop()
            except Exception as exc:  # noqa: BLE001
                self._logger.error("Failed to stop Playwright driver: %s", exc)
