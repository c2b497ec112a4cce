"""Pooled headless Chromium for the browser engine.

A single browser process is shared by all scrapes. Each page lives in its
own browser context, so proxy, viewport, user agent and headers are
isolated per request, and the number of concurrently open pages is bounded
by a semaphore. The browser is relaunched lazily after a crash.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from scrapegate.config import settings
from scrapegate.core.exceptions import BrowserFetchError, BrowserPoolExhaustedError
from scrapegate.core.metrics import (
    active_browser_contexts,
    browser_launches_total,
    browser_pool_exhausted_total,
)

logger = logging.getLogger(__name__)


class BrowserPool:
    """Owns the Playwright driver and one Chromium process."""

    _CHROMIUM_ARGS = [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-gpu",
    ]

    def __init__(
        self,
        max_pages: int | None = None,
        headless: bool | None = None,
        acquire_timeout: float | None = None,
    ):
        self._max_pages = max_pages or settings.BROWSER_MAX_PAGES
        self._headless = settings.BROWSER_HEADLESS if headless is None else headless
        self._acquire_timeout = acquire_timeout or settings.BROWSER_ACQUIRE_TIMEOUT
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._semaphore = asyncio.Semaphore(self._max_pages)
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def is_running(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def open(self):
        """Start the Playwright driver. The browser itself launches on first use."""
        if self._playwright is None:
            self._playwright = await async_playwright().start()
            self._closed = False

    async def close(self):
        async with self._lock:
            self._closed = True
            browser, self._browser = self._browser, None
            if browser is not None:
                try:
                    await browser.close()
                except Exception as e:
                    logger.debug(f"Browser close failed: {e}")
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
        logger.info("Browser pool shut down")

    async def ensure_browser(self) -> Browser:
        """Return a connected browser, launching one if needed."""
        if self.is_running:
            return self._browser

        async with self._lock:
            # Double-check after acquiring lock
            if self.is_running:
                return self._browser
            if self._closed:
                raise BrowserFetchError("Browser pool is closed")
            await self.open()

            browser = await self._playwright.chromium.launch(
                headless=self._headless,
                args=self._CHROMIUM_ARGS,
            )
            browser.on("disconnected", self._on_disconnected)
            self._browser = browser
            browser_launches_total.inc()
            logger.info(f"Chromium launched (max_pages={self._max_pages})")
            return browser

    def _on_disconnected(self, browser: Browser):
        if self._browser is browser:
            logger.warning("Chromium disconnected, will relaunch on next use")
            self._browser = None

    def _is_browser_closed_error(self, exc: Exception) -> bool:
        msg = str(exc).lower()
        return any(
            phrase in msg
            for phrase in [
                "browser has been closed",
                "target page, context or browser has been closed",
                "connection closed",
                "browser closed",
            ]
        )

    @asynccontextmanager
    async def acquire_page(
        self,
        proxy: dict | None = None,
        user_agent: str | None = None,
        viewport: dict | None = None,
        extra_headers: dict | None = None,
    ):
        """Yield a fresh page in its own context; both are closed on exit.

        Args:
            proxy: Optional Playwright proxy dict for the context
            user_agent: User agent for the context
            viewport: {"width": ..., "height": ...}
            extra_headers: Extra HTTP headers sent with every request
        """
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._acquire_timeout)
        except asyncio.TimeoutError:
            browser_pool_exhausted_total.inc()
            raise BrowserPoolExhaustedError(
                f"No browser page slots available after {self._acquire_timeout}s"
            )
        try:
            active_browser_contexts.inc()
            try:
                context_kwargs = dict(ignore_https_errors=True, java_script_enabled=True)
                if user_agent:
                    context_kwargs["user_agent"] = user_agent
                if viewport:
                    context_kwargs["viewport"] = viewport
                if extra_headers:
                    context_kwargs["extra_http_headers"] = extra_headers
                if proxy:
                    context_kwargs["proxy"] = proxy

                browser = await self.ensure_browser()
                try:
                    context: BrowserContext = await browser.new_context(**context_kwargs)
                except Exception as e:
                    if not self._is_browser_closed_error(e):
                        raise
                    logger.warning("Browser closed during new_context, relaunching")
                    self._browser = None
                    browser = await self.ensure_browser()
                    context = await browser.new_context(**context_kwargs)

                page: Page | None = None
                try:
                    page = await context.new_page()
                    yield page
                finally:
                    # CancelledError is a BaseException, so the shield keeps
                    # cleanup running even when the caller is cancelled.
                    try:
                        await asyncio.shield(self._safe_cleanup(page, context))
                    except (asyncio.CancelledError, Exception):
                        pass
            finally:
                active_browser_contexts.dec()
        finally:
            self._semaphore.release()

    async def _safe_cleanup(self, page: Page | None, context: BrowserContext):
        if page is not None:
            try:
                await page.close()
            except Exception as e:
                logger.debug(f"Page close failed: {e}")
        try:
            await context.close()
        except Exception as e:
            logger.debug(f"Context close failed: {e}")
