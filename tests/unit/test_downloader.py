"""
배치 다운로더 테스트

가짜 PhilGEPS 페이지(FakeSitePage)로 배치 진행, 실패 페이지 재시도,
서킷 브레이커, 중단 요청, 재시작을 검증합니다.
"""

from typing import List
from unittest.mock import AsyncMock, MagicMock

import pytest

from philgeps_crawler.downloader import BatchDownloader
from philgeps_crawler.exceptions import DetailFetchError, PersistenceError
from philgeps_crawler.models.crawl_state import BatchRecord
from philgeps_crawler.models.opportunity import EnrichmentResult, ITBDetails
from philgeps_crawler.scrapers.extractor import Extractor
from philgeps_crawler.scrapers.navigator import Navigator
from philgeps_crawler.storage.gateway import PersistenceGateway
from philgeps_crawler.storage.repository_interface import InMemoryRepository
from philgeps_crawler.storage.state_manager import StateManager
from philgeps_crawler.utils.error_logger import ErrorLogger

from tests.conftest import BASE_URL, SEARCH_URL, FakeSitePage


def make_downloader(config, site, gateway, metrics, enricher=None) -> BatchDownloader:
    """가짜 사이트에 연결된 다운로더"""
    return BatchDownloader(
        navigator=Navigator(site, SEARCH_URL, config.browser),
        extractor=Extractor(BASE_URL),
        gateway=gateway,
        state_manager=StateManager(config.storage.state_file),
        config=config,
        enricher=enricher,
        error_logger=ErrorLogger(config.storage.error_log_dir),
        metrics=metrics,
    )


def sample(metrics, name: str, labels: dict = None) -> float:
    return metrics.registry.get_sample_value(f"test_{name}", labels or {}) or 0


class TestBatchRun:
    """정상 실행 테스트"""

    @pytest.mark.asyncio
    async def test_full_run_discovers_total_pages(self, test_config, gateway, repository, metrics):
        """전체 페이지 수는 1 페이지 요약에서 추정"""
        site = FakeSitePage(total_pages=3, rows_per_page=2)
        downloader = make_downloader(test_config, site, gateway, metrics)
        pages: List[tuple] = []
        batches: List[BatchRecord] = []
        downloader.on_page_completed(lambda page, total: pages.append((page, total)))
        downloader.on_batch_completed(batches.append)

        stats = await downloader.run()

        assert stats.found == 6
        assert stats.new == 6
        assert stats.updated == 0
        assert stats.errors == 0
        assert stats.pages_crawled == 3
        assert stats.pages_failed == 0
        assert stats.page_range == "1-3"
        assert pages == [(1, 3), (2, 3), (3, 3)]
        assert [(b.start_page, b.end_page) for b in batches] == [(1, 2), (3, 3)]
        assert repository.count() == 6
        assert repository.find_by_key("P3-2").title == "Opportunity 3-2"

        state = downloader.state_manager.state
        assert state.is_completed is True
        assert state.last_completed_page == 3
        assert state.total_pages == 3
        assert sample(metrics, "pages_total", {"status": "success"}) == 3
        assert sample(metrics, "opportunities_total", {"status": "new"}) == 6

    @pytest.mark.asyncio
    async def test_explicit_range(self, test_config, gateway, repository, metrics):
        site = FakeSitePage(total_pages=5)
        downloader = make_downloader(test_config, site, gateway, metrics)

        stats = await downloader.run(start_page=2, end_page=4)

        assert stats.found == 6
        assert repository.find_by_key("P1-1") is None
        assert repository.find_by_key("P5-1") is None
        assert downloader.state_manager.state.last_completed_page == 4

    @pytest.mark.asyncio
    async def test_max_pages_caps_run(self, test_config, gateway, metrics):
        config = test_config.model_copy(update={"max_pages": 2})
        downloader = make_downloader(config, FakeSitePage(total_pages=3), gateway, metrics)

        stats = await downloader.run()

        assert stats.found == 4
        assert stats.end_page == 2

    @pytest.mark.asyncio
    async def test_resume_from_last_completed_page(self, test_config, gateway, repository, metrics):
        """마지막 완료 페이지 7이면 8 페이지부터 수집"""
        previous = StateManager(test_config.storage.state_file)
        state = previous.initialize("old_run", start_page=1, end_page=10, resume=False)
        state.last_completed_page = 7
        previous.save()

        downloader = make_downloader(test_config, FakeSitePage(total_pages=10), gateway, metrics)
        stats = await downloader.run(start_page=1, end_page=10, resume=True)

        assert stats.start_page == 8
        assert stats.found == 6
        assert sorted(o.reference_number for o in repository._storage.values()) == [
            "P10-1", "P10-2", "P8-1", "P8-2", "P9-1", "P9-2",
        ]
        assert downloader.state_manager.state.is_completed is True

    @pytest.mark.asyncio
    async def test_resume_with_different_range_starts_fresh(self, test_config, gateway, repository, metrics):
        """미완료 실행(1-10, 5까지 완료) 뒤에 1-3을 요청하면 1-3을 새로 수집"""
        previous = StateManager(test_config.storage.state_file)
        state = previous.initialize("old_run", start_page=1, end_page=10, resume=False)
        state.last_completed_page = 5
        previous.save()

        downloader = make_downloader(test_config, FakeSitePage(total_pages=10), gateway, metrics)
        stats = await downloader.run(start_page=1, end_page=3, resume=True)

        assert stats.start_page == 1
        assert stats.found == 6
        assert repository.find_by_key("P1-1") is not None

        reloaded = StateManager(test_config.storage.state_file).load()
        assert reloaded.run_id == test_config.run_id
        assert reloaded.start_page == 1
        assert reloaded.end_page == 3
        assert reloaded.last_completed_page == 3

    @pytest.mark.asyncio
    async def test_no_pages_to_crawl_not_completed(self, test_config, gateway, repository, metrics):
        """시작 페이지가 전체 페이지 수를 넘으면 배치 없이 끝나고 완료 처리하지 않음"""
        downloader = make_downloader(test_config, FakeSitePage(total_pages=3), gateway, metrics)
        batches: List[BatchRecord] = []
        downloader.on_batch_completed(batches.append)

        stats = await downloader.run(start_page=5)

        assert stats.found == 0
        assert batches == []
        assert repository.count() == 0

        reloaded = StateManager(test_config.storage.state_file).load()
        assert reloaded.is_completed is False
        assert reloaded.last_completed_page == 4


class TestFailedPages:
    """실패 페이지 처리 테스트"""

    @pytest.mark.asyncio
    async def test_failed_page_queued_then_recovered(self, test_config, gateway, repository, metrics):
        """배치에서 실패한 5 페이지는 대기열에 쌓였다가 재시도 패스에서 복구"""
        site = FakeSitePage(total_pages=6, fail_transitions={5: 3})
        downloader = make_downloader(test_config, site, gateway, metrics)
        queued: List[List[int]] = []
        downloader.on_batch_completed(
            lambda record: queued.append(list(downloader.state_manager.state.failed_pages))
        )

        stats = await downloader.run(start_page=1, end_page=6)

        assert queued == [[], [], [5]]
        assert stats.found == 12
        assert stats.pages_failed == 0
        assert repository.find_by_key("P5-1") is not None

        state = downloader.state_manager.state
        assert state.failed_pages == []
        assert state.abandoned_pages == []
        assert state.last_completed_page == 6
        assert sample(metrics, "retries_total", {"reason": "page_navigation"}) == 2

    @pytest.mark.asyncio
    async def test_partial_batch_is_successful(self, test_config, gateway, metrics):
        """10 페이지 배치에서 5 페이지만 실패하면 성공 배치, failed_pages=[5]"""
        config = test_config.model_copy(
            update={"batch": test_config.batch.model_copy(update={"size": 10})}
        )
        site = FakeSitePage(total_pages=10, fail_transitions={5: 3})
        downloader = make_downloader(config, site, gateway, metrics)
        batches: List[BatchRecord] = []
        downloader.on_batch_completed(batches.append)

        await downloader.run(start_page=1, end_page=10)

        assert len(batches) == 1
        record = batches[0]
        assert record.is_successful
        assert record.failed_pages == [5]
        assert record.pages_successful == 9
        assert record.pages_failed == 1
        assert downloader.state_manager.state.last_completed_page == 10

    @pytest.mark.asyncio
    async def test_unrecoverable_page_abandoned(self, test_config, gateway, metrics):
        site = FakeSitePage(total_pages=6, fail_transitions={6: 6})
        downloader = make_downloader(test_config, site, gateway, metrics)

        stats = await downloader.run(start_page=1, end_page=6)

        assert stats.found == 10
        assert stats.pages_failed == 1
        assert downloader.state_manager.state.abandoned_pages == [6]
        assert downloader.error_logger.errors_by_context() == {"page_navigation": 2}

    @pytest.mark.asyncio
    async def test_failed_batch_retried_then_circuit_opens(self, test_config, gateway, metrics):
        """연속 실패 배치가 한도에 도달하면 중단"""
        site = FakeSitePage(total_pages=10, fail_transitions={3: 100})
        downloader = make_downloader(test_config, site, gateway, metrics)
        batches: List[BatchRecord] = []
        downloader.on_batch_completed(batches.append)

        stats = await downloader.run(start_page=1, end_page=10)

        assert stats.circuit_broken is True
        assert stats.found == 4
        assert [(b.start_page, b.is_successful) for b in batches] == [(1, True), (3, False), (3, False)]
        state = downloader.state_manager.state
        assert state.last_completed_page == 2
        assert state.is_completed is False
        assert "Circuit breaker" in state.last_error
        assert sample(metrics, "circuit_breaks_total") == 1

    @pytest.mark.asyncio
    async def test_batch_pause_doubles_after_failure(self, test_config, gateway, metrics):
        config = test_config.model_copy(
            update={"batch": test_config.batch.model_copy(update={"pause_between_batches": 1.0})}
        )
        downloader = make_downloader(config, FakeSitePage(), gateway, metrics)
        downloader.crawl_logger = MagicMock()

        with pytest.MonkeyPatch.context() as mp:
            sleep = AsyncMock()
            mp.setattr("philgeps_crawler.downloader.asyncio.sleep", sleep)
            await downloader._pause_between_batches(after_failure=True)

        sleep.assert_awaited_once_with(2.0)
        downloader.crawl_logger.pausing.assert_called_once_with(2.0, after_failure=True)


class TestStopAndErrors:
    """중단 요청과 저장 오류 테스트"""

    @pytest.mark.asyncio
    async def test_stop_discards_unfinished_batch(self, test_config, gateway, repository, metrics):
        site = FakeSitePage(total_pages=6)
        downloader = make_downloader(test_config, site, gateway, metrics)

        def stop_after_third(page, total):
            if page == 3:
                downloader.request_stop()

        downloader.on_page_completed(stop_after_third)

        stats = await downloader.run(start_page=1, end_page=6)

        assert downloader.stop_requested is True
        assert stats.new == 4
        assert repository.find_by_key("P3-1") is None
        state = downloader.state_manager.state
        assert state.last_completed_page == 2
        assert state.is_completed is False

    @pytest.mark.asyncio
    async def test_upsert_error_counted(self, test_config, metrics):
        class FlakyRepository(InMemoryRepository):
            def upsert(self, opportunity):
                if opportunity.reference_number == "P1-1":
                    raise RuntimeError("constraint failed")
                return super().upsert(opportunity)

        gateway = PersistenceGateway(FlakyRepository())
        downloader = make_downloader(test_config, FakeSitePage(total_pages=2), gateway, metrics)
        batches: List[BatchRecord] = []
        downloader.on_batch_completed(batches.append)

        stats = await downloader.run(start_page=1, end_page=2)

        assert stats.errors == 1
        assert stats.new == 3
        assert batches[0].save_errors == 1
        assert batches[0].saved == 3
        assert downloader.state_manager.state.last_completed_page == 2

    @pytest.mark.asyncio
    async def test_flush_failure_aborts_without_advancing(self, test_config, metrics):
        repository = InMemoryRepository()
        repository.flush = MagicMock(side_effect=OSError("disk full"))
        downloader = make_downloader(
            test_config, FakeSitePage(total_pages=2), PersistenceGateway(repository), metrics
        )

        with pytest.raises(PersistenceError):
            await downloader.run(start_page=1, end_page=2)

        state = StateManager(test_config.storage.state_file).load()
        assert state.last_completed_page == 0
        assert "Flush failed" in state.last_error
        assert downloader.stats.errors == 1


class TestEnrichment:
    """상세 보강 연동 테스트"""

    @pytest.mark.asyncio
    async def test_enrichment_applied_and_failures_tolerated(self, test_config, gateway, repository, metrics):
        async def enrich(opportunity):
            if opportunity.reference_number == "P1-2":
                raise DetailFetchError("HTTP 503", url=opportunity.detail_url, status_code=503)
            return EnrichmentResult(itb=ITBDetails(procurement_mode="Public Bidding"), matched_labels=1)

        enricher = MagicMock()
        enricher.enrich = AsyncMock(side_effect=enrich)
        downloader = make_downloader(test_config, FakeSitePage(total_pages=1), gateway, metrics, enricher)

        stats = await downloader.run(start_page=1, end_page=1)

        assert stats.fetch_details is True
        assert stats.new == 2
        assert stats.errors == 1
        assert repository.find_by_key("P1-1").itb.procurement_mode == "Public Bidding"
        assert repository.find_by_key("P1-2").itb is None
        assert downloader.error_logger.errors_by_context() == {"detail_fetch": 1}
        assert sample(metrics, "errors_total", {"type": "detail_fetch"}) == 1
