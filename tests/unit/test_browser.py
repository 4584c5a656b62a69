"""
브라우저 관리자 테스트 (Playwright는 목 객체로 대체)
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from philgeps_crawler.config import BrowserConfig
from philgeps_crawler.utils.browser import BrowserManager, _block_heavy_resources


def fake_playwright(launch_error: Exception = None):
    context = MagicMock()
    context.new_page = AsyncMock(return_value=MagicMock(route=AsyncMock()))
    context.close = AsyncMock()

    browser = MagicMock()
    browser.new_context = AsyncMock(return_value=context)
    browser.close = AsyncMock()

    playwright = MagicMock()
    playwright.chromium.launch = AsyncMock(return_value=browser, side_effect=launch_error)
    playwright.stop = AsyncMock()

    starter = MagicMock()
    starter.start = AsyncMock(return_value=playwright)
    return starter, playwright, browser, context


class TestBrowserManager:

    @pytest.mark.asyncio
    async def test_lifecycle(self):
        starter, playwright, browser, context = fake_playwright()
        manager = BrowserManager(BrowserConfig(headless=True, timeout=5000))

        with patch("philgeps_crawler.utils.browser.async_playwright", return_value=starter):
            async with manager:
                assert manager.is_running is True
                page = await manager.new_page()
                page.route.assert_awaited_once()

        playwright.chromium.launch.assert_awaited_once()
        assert browser.new_context.await_args.kwargs["timezone_id"] == "Asia/Manila"
        context.set_default_timeout.assert_called_once_with(5000)
        context.close.assert_awaited_once()
        browser.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()
        assert manager.is_running is False

    @pytest.mark.asyncio
    async def test_failed_launch_cleans_up(self):
        starter, playwright, _, _ = fake_playwright(launch_error=RuntimeError("no chromium"))
        manager = BrowserManager()

        with patch("philgeps_crawler.utils.browser.async_playwright", return_value=starter):
            with pytest.raises(RuntimeError, match="no chromium"):
                await manager.start()

        playwright.stop.assert_awaited_once()
        assert manager.is_running is False

    @pytest.mark.asyncio
    async def test_new_page_requires_start(self):
        with pytest.raises(RuntimeError):
            await BrowserManager().new_page()


class TestResourceBlocking:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("resource_type, blocked", [
        ("image", True),
        ("font", True),
        ("document", False),
        ("script", False),
    ])
    async def test_route_handler(self, resource_type, blocked):
        route = MagicMock()
        route.request.resource_type = resource_type
        route.abort = AsyncMock()
        route.continue_ = AsyncMock()

        await _block_heavy_resources(route)

        assert route.abort.await_count == (1 if blocked else 0)
        assert route.continue_.await_count == (0 if blocked else 1)
