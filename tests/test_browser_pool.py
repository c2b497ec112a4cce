"""Tests for BrowserPool with a mocked Playwright driver."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from scrapegate.core.exceptions import BrowserFetchError, BrowserPoolExhaustedError
from scrapegate.services.browser import BrowserPool


class FakePlaywright:
    """Wires up async_playwright() -> Playwright -> Browser -> Context -> Page mocks."""

    def __init__(self):
        self.page = AsyncMock()
        self.context = AsyncMock()
        self.context.new_page.return_value = self.page

        self.browser = MagicMock()
        self.browser.is_connected.return_value = True
        self.browser.new_context = AsyncMock(return_value=self.context)
        self.browser.close = AsyncMock()

        self.playwright = MagicMock()
        self.playwright.chromium.launch = AsyncMock(return_value=self.browser)
        self.playwright.stop = AsyncMock()

        self.starter = MagicMock()
        self.starter.start = AsyncMock(return_value=self.playwright)

    def patch(self):
        return patch("scrapegate.services.browser.async_playwright", return_value=self.starter)

    def disconnect_handler(self):
        event, handler = self.browser.on.call_args.args
        assert event == "disconnected"
        return handler


class TestBrowserPool:
    @pytest.mark.asyncio
    async def test_acquire_page_opens_isolated_context(self):
        fake = FakePlaywright()
        pool = BrowserPool(max_pages=2, headless=True)

        with fake.patch():
            async with pool.acquire_page(
                proxy={"server": "http://10.0.0.1:8080"},
                user_agent="TestBot/1.0",
                viewport={"width": 800, "height": 600},
                extra_headers={"Accept-Language": "en"},
            ) as page:
                assert page is fake.page
                assert pool.is_running

            kwargs = fake.browser.new_context.call_args.kwargs
            assert kwargs["proxy"] == {"server": "http://10.0.0.1:8080"}
            assert kwargs["user_agent"] == "TestBot/1.0"
            assert kwargs["viewport"] == {"width": 800, "height": 600}
            assert kwargs["extra_http_headers"] == {"Accept-Language": "en"}
            fake.page.close.assert_awaited_once()
            fake.context.close.assert_awaited_once()
            await pool.close()

    @pytest.mark.asyncio
    async def test_browser_is_launched_once(self):
        fake = FakePlaywright()
        pool = BrowserPool(max_pages=2)

        with fake.patch():
            for _ in range(3):
                async with pool.acquire_page():
                    pass
            await pool.close()

        assert fake.playwright.chromium.launch.await_count == 1
        assert fake.browser.new_context.await_count == 3
        fake.browser.close.assert_awaited_once()
        fake.playwright.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_exhaustion_raises_after_timeout(self):
        fake = FakePlaywright()
        pool = BrowserPool(max_pages=1, acquire_timeout=0.05)

        with fake.patch():
            async with pool.acquire_page():
                with pytest.raises(BrowserPoolExhaustedError):
                    async with pool.acquire_page():
                        pass
            # The slot is released once the first page is done
            async with pool.acquire_page():
                pass
            await pool.close()

    @pytest.mark.asyncio
    async def test_cleanup_runs_when_caller_fails(self):
        fake = FakePlaywright()
        pool = BrowserPool(max_pages=1, acquire_timeout=0.05)

        with fake.patch():
            with pytest.raises(RuntimeError):
                async with pool.acquire_page():
                    raise RuntimeError("navigation blew up")
            fake.context.close.assert_awaited_once()

            async with pool.acquire_page():
                pass
            await pool.close()

    @pytest.mark.asyncio
    async def test_relaunch_after_disconnect(self):
        fake = FakePlaywright()
        pool = BrowserPool(max_pages=1)

        with fake.patch():
            async with pool.acquire_page():
                pass
            fake.disconnect_handler()(fake.browser)
            assert not pool.is_running

            async with pool.acquire_page():
                pass
            await pool.close()

        assert fake.playwright.chromium.launch.await_count == 2

    @pytest.mark.asyncio
    async def test_relaunch_when_context_creation_hits_closed_browser(self):
        fake = FakePlaywright()
        fake.browser.new_context.side_effect = [
            Exception("Target page, context or browser has been closed"),
            fake.context,
        ]
        pool = BrowserPool(max_pages=1)

        with fake.patch():
            async with pool.acquire_page() as page:
                assert page is fake.page
            await pool.close()

        assert fake.playwright.chromium.launch.await_count == 2

    @pytest.mark.asyncio
    async def test_other_context_errors_propagate(self):
        fake = FakePlaywright()
        fake.browser.new_context.side_effect = ValueError("bad proxy config")
        pool = BrowserPool(max_pages=1, acquire_timeout=0.05)

        with fake.patch():
            with pytest.raises(ValueError):
                async with pool.acquire_page():
                    pass
            # The failed acquisition must not leak its slot
            fake.browser.new_context.side_effect = None
            async with pool.acquire_page():
                pass
            await pool.close()

    @pytest.mark.asyncio
    async def test_closed_pool_refuses_pages(self):
        fake = FakePlaywright()
        pool = BrowserPool(max_pages=1)

        with fake.patch():
            await pool.close()
            with pytest.raises(BrowserFetchError):
                async with pool.acquire_page():
                    pass

    @pytest.mark.asyncio
    async def test_concurrent_first_use_launches_one_browser(self):
        fake = FakePlaywright()
        pool = BrowserPool(max_pages=3)

        async def use():
            async with pool.acquire_page():
                await asyncio.sleep(0)

        with fake.patch():
            await asyncio.gather(use(), use(), use())
            await pool.close()

        assert fake.playwright.chromium.launch.await_count == 1
