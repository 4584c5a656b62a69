"""
브라우저 관리 모듈

실행마다 Chromium 하나와 컨텍스트 하나를 띄웁니다.
검색 결과는 postback으로만 이동하므로 Navigator는 한 페이지를 계속 사용합니다.

    async with BrowserManager(config.browser) as browser:
        page = await browser.new_page()
"""

from typing import Any, Dict, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    Route,
    async_playwright,
)

from philgeps_crawler.config import BrowserConfig
from philgeps_crawler.utils.logger import get_logger

logger = get_logger(__name__)

# 목록 파싱에 필요 없는 요청 (스크립트와 문서는 postback에 필요)
BLOCKED_RESOURCE_TYPES = frozenset({"image", "font", "media"})


class BrowserManager:
    """
    브라우저 생명주기 관리자

    start()가 중간에 실패하면 이미 띄운 자원을 정리한 뒤 예외를 다시 던집니다.
    """

    def __init__(self, config: Optional[BrowserConfig] = None):
        self.config = config or BrowserConfig()
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None

    @property
    def is_running(self) -> bool:
        return self._browser is not None

    def launch_options(self) -> Dict[str, Any]:
        return {
            "headless": self.config.headless,
            "slow_mo": self.config.slow_mo,
            "args": ["--no-sandbox", "--disable-dev-shm-usage"],
        }

    def context_options(self) -> Dict[str, Any]:
        """PhilGEPS 날짜 표기(dd/mm/yyyy, 마닐라 시간)에 맞춘 로케일"""
        return {
            "viewport": {
                "width": self.config.viewport_width,
                "height": self.config.viewport_height,
            },
            "user_agent": self.config.user_agent,
            "locale": "en-PH",
            "timezone_id": "Asia/Manila",
        }

    async def start(self) -> None:
        if self.is_running:
            logger.warning("브라우저가 이미 실행 중입니다")
            return

        logger.info(f"Chromium 시작 (headless={self.config.headless})")
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(**self.launch_options())
            self._context = await self._browser.new_context(**self.context_options())
            self._context.set_default_timeout(self.config.timeout)
        except Exception:
            await self.stop()
            raise

    async def stop(self) -> None:
        """컨텍스트, 브라우저, Playwright 순서로 종료"""
        context, browser, playwright = self._context, self._browser, self._playwright
        self._context = self._browser = self._playwright = None

        if context is not None:
            await context.close()
        if browser is not None:
            await browser.close()
        if playwright is not None:
            await playwright.stop()
            logger.info("브라우저 종료")

    async def new_page(self) -> Page:
        """
        이미지/폰트 요청을 차단한 새 페이지

        Raises:
            RuntimeError: start() 이전에 호출한 경우
        """
        if self._context is None:
            raise RuntimeError("Browser is not started; call start() first")

        page = await self._context.new_page()
        await page.route("**/*", _block_heavy_resources)
        return page

    async def __aenter__(self) -> "BrowserManager":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()


async def _block_heavy_resources(route: Route) -> None:
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()
