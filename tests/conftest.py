"""
pytest 설정 및 공통 픽스처

테스트에서 사용되는 공통 설정과 목 객체를 정의합니다.
목록 HTML은 PhilGEPS 검색 결과 테이블 구조를 흉내 냅니다.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from prometheus_client import CollectorRegistry

from philgeps_crawler.config import (
    BatchConfig,
    BrowserConfig,
    CrawlerConfig,
    LoggingConfig,
    RetryConfig,
    StorageConfig,
)
from philgeps_crawler.models.opportunity import ITBDetails, Opportunity
from philgeps_crawler.storage.gateway import PersistenceGateway
from philgeps_crawler.storage.repository_interface import InMemoryRepository
from philgeps_crawler.utils.metrics import CrawlerMetrics

BASE_URL = "https://notices.philgeps.gov.ph/GEPSNONPILOT/Tender/"
SEARCH_URL = BASE_URL + "SplashOpportunitiesSearchUI.aspx?menuIndex=3&ClickFrom=OpenOpp"


# === HTML 헬퍼 ===

def listing_row(
    ref: str,
    title: str,
    category: str = "Information Technology",
    entity: str = "Department of Education",
    published: str = "01/10/2026",
    closing: str = "30/10/2026 02:00 PM",
) -> str:
    """결과 테이블 한 행"""
    return (
        "<tr>"
        f"<td>{published}</td>"
        f"<td>{closing}</td>"
        f'<td><a href="SplashBidNoticeAbstractUI.aspx?menuIndex=3&refID={ref}&Result=3">{title}</a>'
        f", {category}, {entity}</td>"
        "</tr>"
    )


def listing_html(
    rows: List[str],
    total: Optional[int] = None,
    page_links: int = 0,
) -> str:
    """검색 결과 페이지 HTML"""
    summary = f"<span>{total} opportunities found</span>" if total is not None else ""
    links = "".join(f'<a href="javascript:__doPostBack(\'pg\',\'{n}\')">{n}</a>' for n in range(1, page_links + 1))
    return (
        "<html><body><form>"
        f"{summary}"
        '<table id="layout"><tr><td>'
        '<table id="results">'
        "<tr><th>Publish Date</th><th>Closing Date</th><th>Title</th></tr>"
        f"{''.join(rows)}"
        "</table>"
        "</td></tr></table>"
        f"<div>{links}<a href=\"javascript:__doPostBack('pgCtrlDetailedSearch$nextLB','')\">Next&gt;</a></div>"
        "</form></body></html>"
    )


def page_html(page_number: int, rows_per_page: int = 2, total: Optional[int] = None) -> str:
    """page_number 페이지의 결과 HTML (참조번호 P{page}-{i})"""
    rows = [
        listing_row(f"P{page_number}-{i}", f"Opportunity {page_number}-{i}")
        for i in range(1, rows_per_page + 1)
    ]
    return listing_html(rows, total=total)


# === 설정 픽스처 ===

@pytest.fixture
def test_config(tmp_path: Path) -> CrawlerConfig:
    """테스트용 크롤러 설정 (대기 시간 0)"""
    return CrawlerConfig(
        base_url=BASE_URL,
        search_url=SEARCH_URL,
        run_id="test_run",
        browser=BrowserConfig(
            headless=True,
            timeout=1000,
            navigation_timeout=500,
            settle_delay=0,
            open_attempts=2,
        ),
        retry=RetryConfig(max_attempts=3, base_delay=0, multiplier=2.0, max_jitter=0),
        batch=BatchConfig(
            size=2,
            pause_between_batches=0,
            pause_jitter=0,
            max_consecutive_failures=2,
            failed_page_delay=0,
        ),
        storage=StorageConfig(
            backend="json",
            data_dir=tmp_path / "data",
            database_path=tmp_path / "data" / "philgeps.db",
            state_file=tmp_path / "data" / "crawl_state.json",
            control_file=tmp_path / "data" / "crawler-control.json",
            error_log_dir=tmp_path / "logs" / "errors",
        ),
        logging=LoggingConfig(level="DEBUG", file=tmp_path / "logs" / "crawler.log"),
    )


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """임시 데이터 디렉토리"""
    data = tmp_path / "data"
    data.mkdir()
    return data


@pytest.fixture
def metrics() -> CrawlerMetrics:
    """테스트별 독립 레지스트리를 쓰는 메트릭"""
    return CrawlerMetrics(namespace="test", registry=CollectorRegistry())


@pytest.fixture
def repository() -> InMemoryRepository:
    """메모리 저장소"""
    return InMemoryRepository()


@pytest.fixture
def gateway(repository: InMemoryRepository) -> PersistenceGateway:
    """메모리 저장소를 감싼 게이트웨이"""
    return PersistenceGateway(repository)


# === 모델 픽스처 ===

@pytest.fixture
def sample_opportunity() -> Opportunity:
    """샘플 공고 (목록 항목)"""
    return Opportunity(
        reference_number="11223344",
        title="Supply and Delivery of Laptops",
        procuring_entity="Department of Education",
        category="Information Technology",
        area_of_delivery="National Capital Region",
        approved_budget=Decimal("1250000.00"),
        publish_date=datetime(2026, 10, 1),
        closing_date=datetime(2026, 10, 30, 14, 0),
        detail_url=BASE_URL + "SplashBidNoticeAbstractUI.aspx?menuIndex=3&refID=11223344",
        source_url=SEARCH_URL,
    )


@pytest.fixture
def enriched_opportunity(sample_opportunity: Opportunity) -> Opportunity:
    """ITB 상세가 채워진 공고"""
    return sample_opportunity.model_copy(
        update={
            "itb": ITBDetails(
                solicitation_number="ITB-2026-001",
                procurement_mode="Public Bidding",
                contact_email="bac@deped.gov.ph",
            )
        }
    )


@pytest.fixture
def sample_opportunities() -> List[Opportunity]:
    """여러 샘플 공고"""
    now = datetime.now()
    return [
        Opportunity(
            reference_number=f"REF-{i}",
            title=f"Opportunity {i}",
            procuring_entity=f"Agency {i}",
            category="Construction" if i % 2 == 0 else "Information Technology",
            area_of_delivery="Cebu" if i < 2 else "Davao",
            approved_budget=Decimal(str(100000 * (i + 1))),
            closing_date=now + timedelta(days=i - 2),
        )
        for i in range(5)
    ]


# === 목 객체 픽스처 ===

@pytest.fixture
def mock_page() -> AsyncMock:
    """Playwright 페이지 목 객체"""
    page = AsyncMock()

    page.goto = AsyncMock()
    page.wait_for_selector = AsyncMock()
    page.wait_for_function = AsyncMock()
    page.wait_for_load_state = AsyncMock()
    page.evaluate = AsyncMock(return_value=None)
    page.content = AsyncMock(return_value="<html></html>")
    page.url = SEARCH_URL
    page.close = AsyncMock()

    return page


@pytest.fixture
def mock_browser_manager(mock_page: AsyncMock) -> MagicMock:
    """브라우저 매니저 목 객체"""
    manager = MagicMock()
    manager.start = AsyncMock()
    manager.stop = AsyncMock()
    manager.new_page = AsyncMock(return_value=mock_page)

    # 컨텍스트 매니저
    manager.__aenter__ = AsyncMock(return_value=manager)
    manager.__aexit__ = AsyncMock(return_value=False)

    return manager


# === 가짜 PhilGEPS 사이트 ===

class FakeSitePage:
    """
    postback 페이지네이션을 흉내 내는 Playwright 페이지 대역

    Navigator가 평가하는 스크립트 상수별로 응답합니다.
    fail_transitions에 담긴 목표 페이지로의 전환은 (횟수만큼) 새 행이 나타나지 않습니다.
    """

    def __init__(
        self,
        total_pages: int = 3,
        rows_per_page: int = 2,
        fail_transitions: Optional[dict] = None,
        row_factory=None,
    ):
        self.total_pages = total_pages
        self.rows_per_page = rows_per_page
        self.fail_transitions = dict(fail_transitions or {})
        self.row_factory = row_factory
        self.url = SEARCH_URL
        self.current = 0
        self.goto_calls = 0
        self.postbacks = 0
        self._stuck = False

    def _html(self) -> str:
        if self.row_factory is not None:
            return listing_html(self.row_factory(self.current), total=self.total_pages * self.rows_per_page)
        return page_html(self.current, self.rows_per_page, total=self.total_pages * self.rows_per_page)

    def _first_href(self) -> Optional[str]:
        if self.current < 1:
            return None
        return f"SplashBidNoticeAbstractUI.aspx?menuIndex=3&refID=P{self.current}-1&Result=3"

    async def goto(self, url, wait_until=None, timeout=None):
        self.goto_calls += 1
        self.current = 1
        self._stuck = False

    async def wait_for_selector(self, selector, timeout=None):
        return None

    async def wait_for_load_state(self, state=None, timeout=None):
        return None

    async def evaluate(self, script, arg=None):
        from philgeps_crawler.scrapers import navigator as nav

        if script == nav.FIRST_ROW_HREF_JS:
            return self._first_href()
        if script == nav.FIND_NEXT_LINK_JS:
            return {
                "onclick": None,
                "href": "javascript:__doPostBack('pgCtrlDetailedSearch$nextLB','')",
                "disabled": self.current >= self.total_pages,
            }
        if script == nav.HAS_POSTBACK_JS:
            return True
        if script == nav.INVOKE_POSTBACK_JS:
            self.postbacks += 1
            target = self.current + 1
            if self.fail_transitions.get(target, 0) > 0:
                self.fail_transitions[target] -= 1
                self._stuck = True
                return None
            self.current = target
            return None
        if script == nav.SIMULATED_CLICK_JS:
            return False
        raise AssertionError(f"unexpected script: {script!r}")

    async def wait_for_function(self, script, arg=None, timeout=None):
        from playwright.async_api import TimeoutError as PlaywrightTimeout

        previous = arg[1] if arg else None
        if self._stuck or self._first_href() == previous:
            raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded.")
        return True

    async def content(self) -> str:
        return self._html()

    async def close(self):
        return None


class FakeBrowserManager:
    """FakeSitePage를 돌려주는 브라우저 매니저 대역"""

    def __init__(self, page: FakeSitePage):
        self.page = page
        self.started = 0

    async def __aenter__(self):
        self.started += 1
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    async def new_page(self):
        return self.page
