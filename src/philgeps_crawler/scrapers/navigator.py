"""
페이지네이션 네비게이터

PhilGEPS 검색 결과는 페이지별 URL이 없고 ASP.NET postback으로만 이동할 수 있습니다.
N 페이지에 도달하려면 1 페이지부터 N-1번 순차 전환해야 합니다.

상태 전이:
    AT_PAGE(n) -> NAVIGATING(n -> n+1) -> AT_PAGE(n+1) | FAILED

전환 전략 (순서대로 시도):
    1. DirectPostbackStrategy  - "Next" 링크의 __doPostBack 인자를 읽어 직접 호출
    2. SimulatedClickStrategy  - 폼 참조를 보정한 뒤 합성 click 이벤트 발생
"""

import asyncio
from enum import Enum
from typing import List, Optional, Sequence

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeout

from philgeps_crawler.config import BrowserConfig
from philgeps_crawler.exceptions import NavigationError
from philgeps_crawler.scrapers.base import (
    DETAIL_LINK_SELECTOR,
    BaseScraper,
    is_context_destroyed,
)
from philgeps_crawler.utils.logger import get_logger
from philgeps_crawler.utils.parser import ParserUtils

logger = get_logger(__name__)


# "Next" 링크로 인정하는 텍스트
NEXT_LINK_TEXTS = ["<Next>", "Next>", "Next", ">", ">>"]

# 첫 결과 행의 링크
FIRST_ROW_HREF_JS = """
(selector) => {
    const link = document.querySelector(selector);
    return link ? link.getAttribute('href') : null;
}
"""

# 첫 결과 행의 링크가 이전 값과 달라질 때까지 대기
ROWS_CHANGED_JS = """
([selector, previous]) => {
    const link = document.querySelector(selector);
    if (!link) return false;
    return link.getAttribute('href') !== previous;
}
"""

# "Next" 링크의 onclick/href 조회
FIND_NEXT_LINK_JS = """
(texts) => {
    const link = Array.from(document.querySelectorAll('a'))
        .find(a => texts.includes((a.innerText || a.textContent || '').trim()));
    if (!link) return null;
    return {
        onclick: link.getAttribute('onclick'),
        href: link.getAttribute('href'),
        disabled: !!link.disabled || link.hasAttribute('disabled'),
    };
}
"""

HAS_POSTBACK_JS = "() => typeof window.__doPostBack === 'function'"

INVOKE_POSTBACK_JS = "([target, argument]) => { window.__doPostBack(target, argument); }"

# 인라인 스크립트가 기대하는 폼 참조를 보정한 뒤 click 이벤트 발생
SIMULATED_CLICK_JS = """
(texts) => {
    const link = Array.from(document.querySelectorAll('a'))
        .find(a => texts.includes((a.innerText || a.textContent || '').trim()));
    if (!link) return false;
    const href = link.getAttribute('href');
    if (!href || href.includes('javascript:void') || link.disabled) return false;
    const onclick = link.getAttribute('onclick') || '';
    if (onclick.includes('document.OpportunitiesSearchUI')
        && !window.document.OpportunitiesSearchUI && window.document.forms[0]) {
        window.document.OpportunitiesSearchUI = window.document.forms[0];
    }
    link.dispatchEvent(new MouseEvent('click', {view: window, bubbles: true, cancelable: true}));
    return true;
}
"""


class NavigatorState(str, Enum):
    """네비게이터 상태"""
    IDLE = "idle"
    AT_PAGE = "at_page"
    NAVIGATING = "navigating"
    FAILED = "failed"


class TransitionStrategy:
    """
    페이지 전환 전략 기본 클래스

    trigger()는 전환을 시작했으면 True, 적용할 수 없으면 False를 반환합니다.
    """

    name = "base"

    async def trigger(self, page: Page) -> bool:
        raise NotImplementedError


class DirectPostbackStrategy(TransitionStrategy):
    """Next 링크의 __doPostBack('target','argument')를 직접 호출"""

    name = "direct_postback"

    async def trigger(self, page: Page) -> bool:
        link = await page.evaluate(FIND_NEXT_LINK_JS, NEXT_LINK_TEXTS)
        if not link or link.get("disabled"):
            return False

        args = (
            ParserUtils.parse_postback_args(link.get("onclick"))
            or ParserUtils.parse_postback_args(link.get("href"))
        )
        if args is None:
            return False

        if not await page.evaluate(HAS_POSTBACK_JS):
            return False

        logger.debug(f"__doPostBack{args}")
        await page.evaluate(INVOKE_POSTBACK_JS, list(args))
        return True


class SimulatedClickStrategy(TransitionStrategy):
    """폼 참조 보정 후 합성 click 이벤트 발생"""

    name = "simulated_click"

    async def trigger(self, page: Page) -> bool:
        return bool(await page.evaluate(SIMULATED_CLICK_JS, NEXT_LINK_TEXTS))


class Navigator(BaseScraper):
    """
    순차 postback 페이지네이션 드라이버

    하나의 Playwright 페이지로 검색 결과를 1 페이지부터 순서대로 이동합니다.
    임의 페이지로 바로 이동하는 기능은 없습니다.

    - FAILED 상태이거나 현재보다 앞 페이지를 요청하면 검색 페이지를 다시 로드하고
      1 페이지부터 재생(replay)합니다.

    Examples:
        >>> navigator = Navigator(page, search_url, browser_config)
        >>> await navigator.open()
        >>> await navigator.go_to_page(3)
        >>> html = await navigator.content()
    """

    def __init__(
        self,
        page: Page,
        search_url: str,
        config: Optional[BrowserConfig] = None,
        strategies: Optional[Sequence[TransitionStrategy]] = None,
    ):
        """
        Args:
            page: Playwright 페이지
            search_url: 검색 결과 URL
            config: 브라우저 설정 (타임아웃, 안정화 대기)
            strategies: 전환 전략 체인 (None이면 기본 체인)
        """
        super().__init__(page)
        self.search_url = search_url
        self.config = config or BrowserConfig()
        self.strategies: List[TransitionStrategy] = list(
            strategies or [DirectPostbackStrategy(), SimulatedClickStrategy()]
        )
        self.state = NavigatorState.IDLE
        self._current_page = 0

    @property
    def current_page(self) -> int:
        """현재 페이지 (열기 전에는 0)"""
        return self._current_page

    async def open(self) -> None:
        """
        검색 페이지 로드 (1 페이지)

        config.open_attempts 만큼 재시도합니다.

        Raises:
            NavigationError: 모든 시도 실패 시
        """
        last_error: Optional[NavigationError] = None

        for attempt in range(1, self.config.open_attempts + 1):
            try:
                await self.navigate(self.search_url, timeout=self.config.timeout)
                await self.wait_for_rows(self.config.timeout, page_number=1)
            except NavigationError as e:
                last_error = e
                logger.warning(
                    f"검색 페이지 로드 실패 ({attempt}/{self.config.open_attempts}): {e}"
                )
                await asyncio.sleep(self.config.settle_delay)
                continue

            self._current_page = 1
            self.state = NavigatorState.AT_PAGE
            logger.info(f"검색 페이지 로드 완료: {self.search_url}")
            return

        self.state = NavigatorState.FAILED
        raise NavigationError(
            f"Cannot open search page after {self.config.open_attempts} attempts: {last_error}",
            page_number=1,
            url=self.search_url,
        )

    async def go_to_page(self, page_number: int) -> None:
        """
        지정 페이지로 이동

        Args:
            page_number: 목표 페이지 (1 이상)

        Raises:
            NavigationError: 전환 실패 시 (상태는 FAILED)
        """
        if page_number < 1:
            raise ValueError(f"page_number must be >= 1 (got {page_number})")

        needs_reload = (
            self.state in (NavigatorState.IDLE, NavigatorState.FAILED)
            or page_number < self._current_page
        )
        if needs_reload:
            if self.state == NavigatorState.FAILED:
                logger.info(f"실패 상태에서 재시작: 1 페이지부터 {page_number} 페이지까지 재생")
            await self.open()

        while self._current_page < page_number:
            await self._advance()

    async def _advance(self) -> None:
        """현재 페이지에서 다음 페이지로 한 번 전환"""
        target = self._current_page + 1
        self.state = NavigatorState.NAVIGATING

        previous_href = await self._first_row_href()

        strategy_name = await self._trigger_transition()
        if strategy_name is None:
            self.state = NavigatorState.FAILED
            raise NavigationError(
                "No pagination strategy applicable (Next link missing or disabled)",
                page_number=target,
                url=self.page.url,
            )

        await self._wait_for_new_rows(previous_href, target)

        if self.config.settle_delay > 0:
            await asyncio.sleep(self.config.settle_delay)

        self._current_page = target
        self.state = NavigatorState.AT_PAGE
        logger.debug(f"페이지 {target} 도착 ({strategy_name})")

    async def _trigger_transition(self) -> Optional[str]:
        """
        전략 체인 실행

        Returns:
            전환을 시작한 전략 이름 또는 None
        """
        for strategy in self.strategies:
            try:
                triggered = await strategy.trigger(self.page)
            except PlaywrightError as e:
                if is_context_destroyed(e):
                    # postback이 즉시 문서를 교체한 경우
                    return strategy.name
                logger.warning(f"전환 전략 실패 ({strategy.name}): {e}")
                continue

            if triggered:
                return strategy.name

        return None

    async def _wait_for_new_rows(self, previous_href: Optional[str], target: int) -> None:
        """
        첫 결과 행 링크가 바뀔 때까지 대기

        Raises:
            NavigationError: navigation_timeout 내에 바뀌지 않은 경우
        """
        timeout = self.config.navigation_timeout
        for _ in range(2):
            try:
                await self.page.wait_for_function(
                    ROWS_CHANGED_JS,
                    arg=[DETAIL_LINK_SELECTOR, previous_href],
                    timeout=timeout,
                )
                return
            except PlaywrightTimeout as e:
                self.state = NavigatorState.FAILED
                raise NavigationError(
                    f"No new rows within {timeout}ms after postback",
                    page_number=target,
                    url=self.page.url,
                ) from e
            except PlaywrightError as e:
                if not is_context_destroyed(e):
                    self.state = NavigatorState.FAILED
                    raise NavigationError(
                        f"Waiting for new rows failed: {e}",
                        page_number=target,
                        url=self.page.url,
                    ) from e
                # 문서 교체 중: 로드 후 한 번 더 대기
                await self.page.wait_for_load_state("domcontentloaded", timeout=timeout)

        self.state = NavigatorState.FAILED
        raise NavigationError(
            "Document kept reloading after postback",
            page_number=target,
            url=self.page.url,
        )

    async def _first_row_href(self) -> Optional[str]:
        """첫 결과 행의 링크"""
        try:
            return await self.page.evaluate(FIRST_ROW_HREF_JS, DETAIL_LINK_SELECTOR)
        except PlaywrightError as e:
            logger.debug(f"첫 행 링크 조회 실패: {e}")
            return None
