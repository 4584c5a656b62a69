"""
크롤러 통합 테스트

가짜 PhilGEPS 사이트와 실제 저장소 구현(JSON, SQLite)으로
전체 파이프라인(이동 -> 추출 -> 저장 -> 이력)을 검증합니다.
"""

from pathlib import Path

import pytest

from philgeps_crawler.config import CrawlerConfig
from philgeps_crawler.service import CrawlerService
from philgeps_crawler.storage.gateway import create_repository
from philgeps_crawler.storage.repository_interface import SearchFilters
from philgeps_crawler.storage.state_manager import StateManager

from tests.conftest import FakeBrowserManager, FakeSitePage, listing_row


def make_service(config: CrawlerConfig, site: FakeSitePage, metrics) -> CrawlerService:
    return CrawlerService(
        config,
        repository=create_repository(config.storage),
        browser_manager=FakeBrowserManager(site),
        metrics=metrics,
    )


@pytest.fixture(params=["json", "sqlite"])
def backend_config(request, test_config: CrawlerConfig) -> CrawlerConfig:
    storage = test_config.storage.model_copy(update={"backend": request.param})
    return test_config.model_copy(update={"storage": storage})


class TestCrawlPipeline:
    """전체 파이프라인 테스트"""

    @pytest.mark.asyncio
    async def test_two_runs_insert_then_update(self, backend_config, metrics):
        """3페이지 x 2행: 첫 실행은 신규 6건, 두 번째 실행은 갱신 6건"""
        site = FakeSitePage(total_pages=3, rows_per_page=2)
        service = make_service(backend_config, site, metrics)

        try:
            first = await service.run_crawl()
            assert (first.found, first.new, first.updated) == (6, 6, 0)

            second = await service.run_crawl(resume=False)
            assert (second.found, second.new, second.updated) == (6, 0, 6)

            assert service.gateway.count() == 6
            history = service.get_last_crawl_info()
            assert history.status == "completed"
            assert history.updated == 6
        finally:
            await service.close()

    @pytest.mark.asyncio
    async def test_records_survive_restart(self, backend_config, metrics):
        service = make_service(backend_config, FakeSitePage(total_pages=2), metrics)
        try:
            await service.run_crawl()
        finally:
            await service.close()

        repository = create_repository(backend_config.storage)
        try:
            assert repository.count() == 4
            stored = repository.find_by_key("P2-1")
            assert stored.title == "Opportunity 2-1"
            assert repository.last_crawl_history().found == 4
        finally:
            repository.close()

    @pytest.mark.asyncio
    async def test_interrupted_run_resumes(self, backend_config, metrics):
        """중단된 실행은 다음 실행에서 마지막 완료 배치 이후부터 이어짐"""
        site = FakeSitePage(total_pages=6)
        service = make_service(backend_config, site, metrics)

        def stop_on_fifth(page, total):
            if page == 5:
                service.request_stop()

        service.on_page_completed(stop_on_fifth)
        try:
            first = await service.run_crawl(start_page=1, end_page=6)
            assert first.new == 8

            state = StateManager(backend_config.storage.state_file).load()
            assert state.last_completed_page == 4
            assert state.is_completed is False

            service.on_page_completed(lambda page, total: None)
            second = await service.run_crawl(start_page=1, end_page=6)
            assert second.start_page == 5
            assert second.new == 4
            assert service.gateway.count() == 12
        finally:
            await service.close()

    @pytest.mark.asyncio
    async def test_search_after_crawl(self, backend_config, metrics):
        def rows(page):
            return [
                listing_row(
                    f"R{page}-{i}",
                    f"Road Repair {page}-{i}" if i == 1 else f"Office Supplies {page}-{i}",
                    category="Construction Projects" if i == 1 else "Office Supplies",
                    closing=f"{10 + page}/10/2026 10:00 AM",
                )
                for i in (1, 2)
            ]

        site = FakeSitePage(total_pages=2, row_factory=rows)
        service = make_service(backend_config, site, metrics)
        try:
            await service.run_crawl()
            results = service.gateway.search(SearchFilters(keyword="road"))
        finally:
            await service.close()

        assert [o.reference_number for o in results] == ["R2-1", "R1-1"]
        assert results[0].category == "Construction Projects"
        assert results[0].procuring_entity == "Department of Education"


def test_sqlite_database_created(test_config: CrawlerConfig, tmp_path: Path):
    storage = test_config.storage.model_copy(update={"backend": "sqlite"})
    repository = create_repository(storage)
    try:
        assert repository.count() == 0
    finally:
        repository.close()
    assert storage.database_path.exists()
