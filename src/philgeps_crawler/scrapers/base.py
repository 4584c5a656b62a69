"""
기본 스크래퍼 추상 클래스

Playwright 페이지를 다루는 컴포넌트의 공통 인터페이스와 기능을 정의합니다.
브라우저 상호작용에 집중하며, HTML 파싱은 Extractor와 ParserUtils에 위임합니다.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeout

from philgeps_crawler.exceptions import NavigationError
from philgeps_crawler.utils.logger import get_logger

# 상세 페이지 링크 (결과 행 식별자)
DETAIL_LINK_SELECTOR = 'a[href*="SplashBidNoticeAbstractUI.aspx"]'

# postback으로 전체 문서가 교체될 때 Playwright가 내는 오류 문구
CONTEXT_DESTROYED = "Execution context was destroyed"


def is_context_destroyed(error: BaseException) -> bool:
    """문서 교체로 인한 평가 중단 오류인지 확인"""
    return CONTEXT_DESTROYED in str(error)


class BaseScraper(ABC):
    """
    페이지 기반 스크래퍼 기본 클래스

    하나의 Playwright 페이지를 소유하며 이동, 대기, 스크립트 평가를 제공합니다.

    Attributes:
        page: Playwright 페이지 인스턴스
        logger: 로거 인스턴스
    """

    def __init__(self, page: Page):
        self.page = page
        self.logger = get_logger(self.__class__.__name__)

    @abstractmethod
    async def open(self) -> None:
        """시작 페이지 로드"""
        pass

    # === Playwright 상호작용 메서드 ===

    async def navigate(
        self,
        url: str,
        wait_until: str = "networkidle",
        timeout: Optional[int] = None,
    ) -> None:
        """
        URL로 이동

        Args:
            url: 이동할 URL
            wait_until: 대기 조건 (networkidle, load, domcontentloaded)
            timeout: 타임아웃 (ms, None이면 컨텍스트 기본값)

        Raises:
            NavigationError: 네비게이션 실패 시
        """
        try:
            await self.page.goto(url, wait_until=wait_until, timeout=timeout)
        except (PlaywrightTimeout, PlaywrightError) as e:
            raise NavigationError(f"Navigation failed: {e}", page_number=1, url=url) from e

    async def wait_for_rows(self, timeout: int, page_number: Optional[int] = None) -> None:
        """
        결과 행(상세 링크) 표시 대기

        Raises:
            NavigationError: 타임아웃 내에 행이 나타나지 않은 경우
        """
        try:
            await self.page.wait_for_selector(DETAIL_LINK_SELECTOR, timeout=timeout)
        except PlaywrightTimeout as e:
            raise NavigationError(
                f"No result rows within {timeout}ms",
                page_number=page_number,
                url=self.page.url,
            ) from e

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """페이지 스크립트 평가"""
        return await self.page.evaluate(script, arg)

    async def content(self) -> str:
        """현재 렌더링된 HTML"""
        return await self.page.content()
