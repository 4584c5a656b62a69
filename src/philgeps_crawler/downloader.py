"""
배치 다운로더

요청된 페이지 범위를 batch.size 단위로 나누어 순차 수집합니다.

흐름:
    배치 [s..e] -> 페이지별 (Navigator + Extractor, 재시도) -> 보강(선택) -> 저장
        -> 상태 저장 (last_completed_page = e) -> 배치 간 대기
    모든 배치 완료 후 실패 페이지 재시도 패스

- 한 페이지라도 성공하면 성공 배치입니다. 실패 페이지는 재시도 대기열에 쌓입니다.
- 연속 max_consecutive_failures 개 배치가 전부 실패하면 실행을 중단합니다.
- 중단 요청은 페이지 경계에서 반영되며, 끝나지 않은 배치는 완료 처리하지 않습니다.
"""

import asyncio
import random
import time
from typing import Callable, List, Optional, Tuple

from playwright.async_api import Error as PlaywrightError

from philgeps_crawler.config import CrawlerConfig
from philgeps_crawler.exceptions import (
    DetailFetchError,
    NavigationError,
    PersistenceError,
)
from philgeps_crawler.models.crawl_history import CrawlStats
from philgeps_crawler.models.crawl_state import BatchRecord
from philgeps_crawler.models.opportunity import Opportunity
from philgeps_crawler.scrapers.detail_enricher import DetailEnricher
from philgeps_crawler.scrapers.extractor import Extractor
from philgeps_crawler.scrapers.navigator import Navigator
from philgeps_crawler.storage.gateway import PersistenceGateway
from philgeps_crawler.storage.state_manager import StateManager
from philgeps_crawler.utils.error_logger import ErrorLogger
from philgeps_crawler.utils.logger import CrawlLogger, get_logger
from philgeps_crawler.utils.metrics import CrawlerMetrics, get_metrics
from philgeps_crawler.utils.retry import RetryError, compute_pacing_delay, retry_async

logger = get_logger(__name__)


PageCallback = Callable[[int, Optional[int]], None]
BatchCallback = Callable[[BatchRecord], None]


class BatchDownloader:
    """
    배치 단위 페이지 수집기

    Examples:
        >>> downloader = BatchDownloader(navigator, extractor, gateway, state_manager, config)
        >>> downloader.on_page_completed(lambda page, total: print(page, total))
        >>> stats = await downloader.run(start_page=1, end_page=20)
        >>> stats.found, stats.new, stats.updated
    """

    def __init__(
        self,
        navigator: Navigator,
        extractor: Extractor,
        gateway: PersistenceGateway,
        state_manager: StateManager,
        config: CrawlerConfig,
        enricher: Optional[DetailEnricher] = None,
        error_logger: Optional[ErrorLogger] = None,
        metrics: Optional[CrawlerMetrics] = None,
        crawl_logger: Optional[CrawlLogger] = None,
    ):
        """
        Args:
            navigator: 페이지네이션 네비게이터
            extractor: 목록 HTML 추출기
            gateway: 저장 게이트웨이
            state_manager: 진행 상태 관리자
            config: 크롤러 설정
            enricher: 상세 페이지 보강기 (None이면 보강하지 않음)
            error_logger: 실행별 오류 기록기
            metrics: Prometheus 메트릭
            crawl_logger: 진행 로그 출력기
        """
        self.navigator = navigator
        self.extractor = extractor
        self.gateway = gateway
        self.state_manager = state_manager
        self.config = config
        self.enricher = enricher
        self.error_logger = error_logger or ErrorLogger(config.storage.error_log_dir)
        self.metrics = metrics or get_metrics()
        self.crawl_logger = crawl_logger or CrawlLogger()

        self.stats = CrawlStats()
        self._stop_event = asyncio.Event()
        self._pages_fetched = 0
        self._total_pages: Optional[int] = None

        # 콜백
        self._on_page_completed: Optional[PageCallback] = None
        self._on_batch_completed: Optional[BatchCallback] = None

    def on_page_completed(self, callback: PageCallback) -> None:
        """페이지 수집 완료 시 콜백 등록 (page, total)"""
        self._on_page_completed = callback

    def on_batch_completed(self, callback: BatchCallback) -> None:
        """배치 완료 시 콜백 등록"""
        self._on_batch_completed = callback

    def request_stop(self) -> None:
        """다음 페이지 경계에서 중단 요청"""
        if not self._stop_event.is_set():
            logger.warning("중단 요청 수신: 다음 페이지 경계에서 중단합니다")
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    # === 실행 ===

    async def run(
        self,
        start_page: Optional[int] = None,
        end_page: Optional[int] = None,
        resume: bool = True,
    ) -> CrawlStats:
        """
        다운로드 실행

        Args:
            start_page: 시작 페이지 (None이면 설정값)
            end_page: 종료 페이지 (None이면 전체 페이지 수 추정)
            resume: True면 완료되지 않은 이전 상태에서 이어서 수집

        Returns:
            실행 통계

        Raises:
            ConfigError: 페이지 범위가 유효하지 않은 경우
            PersistenceError: 저장소 flush 실패 시
        """
        start, end = self.config.resolve_page_range(start_page, end_page)
        started = time.monotonic()

        state = self.state_manager.initialize(
            self.config.run_id, start_page=start, end_page=end, resume=resume
        )
        first_page = state.next_page
        if first_page > start:
            self.crawl_logger.resuming(first_page)

        self.stats = CrawlStats(
            start_page=first_page,
            end_page=state.end_page,
            fetch_details=self.enricher is not None,
        )
        abandoned = 0

        try:
            last_page = state.end_page
            if last_page is None:
                last_page = state.total_pages or await self._discover_total_pages()
            if self.config.max_pages:
                last_page = min(last_page, first_page + self.config.max_pages - 1)

            self._total_pages = last_page
            self.state_manager.set_total_pages(last_page)
            self.stats.end_page = last_page
            self.metrics.total_pages.set(last_page)

            if first_page > last_page and not state.failed_pages:
                # 실행한 배치가 없으면 완료 처리하지 않음
                logger.warning(f"수집할 페이지 없음: {first_page}페이지부터, 마지막 {last_page}페이지")
                self.state_manager.save()
                return self.stats

            finished = await self._run_batches(first_page, last_page)

            if not self.stats.circuit_broken and not self.stop_requested:
                abandoned = await self._retry_failed_pages()

            if finished and not self.stats.circuit_broken and not self.stop_requested:
                self.state_manager.mark_completed()
            else:
                self.state_manager.save()

        except (asyncio.CancelledError, KeyboardInterrupt):
            logger.warning("크롤링 중단: 마지막 확정 상태를 저장합니다")
            self.state_manager.save()
            self.metrics.record_error("interrupted")
            raise

        except Exception as e:
            logger.error(f"크롤링 오류: {e}")
            self.state_manager.record_error(str(e))
            self.state_manager.save()
            self.metrics.record_error("crawl_error")
            raise

        finally:
            self.stats.pages_failed = len(self.state_manager.state.failed_pages) + abandoned
            self.stats.duration_seconds = round(time.monotonic() - started, 2)

        return self.stats

    async def _discover_total_pages(self) -> int:
        """
        1 페이지 요약에서 전체 페이지 수 추정

        실패하면 default_total_pages를 사용합니다.
        """
        try:
            await self.navigator.go_to_page(1)
            html = await self.navigator.content()
        except (NavigationError, PlaywrightError) as e:
            logger.warning(
                f"전체 페이지 수 확인 실패, 기본값 {self.config.default_total_pages} 사용: {e}"
            )
            return self.config.default_total_pages

        summary = self.extractor.parse_summary(html)
        total = summary.estimate_total_pages(self.config.default_total_pages)
        logger.info(
            f"전체 페이지 수 추정: {total} "
            f"(공고 {summary.total_opportunities}건, 최대 페이지 링크 {summary.max_visible_page})"
        )
        return total

    async def _run_batches(self, first_page: int, last_page: int) -> bool:
        """
        배치 루프

        Returns:
            마지막 페이지까지 모두 처리했으면 True
        """
        batch_config = self.config.batch
        current = first_page
        consecutive_failures = 0

        while current <= last_page:
            if self.stop_requested:
                return False

            batch_end = min(current + batch_config.size - 1, last_page)
            record, opportunities, interrupted = await self._download_batch(current, batch_end)
            if interrupted:
                logger.warning(f"배치 {current}-{batch_end} 미완료: 완료 처리하지 않음")
                return False

            if record.is_successful:
                consecutive_failures = 0
                await self._persist(opportunities, record)
                self.state_manager.record_batch(record)
                self.metrics.record_batch(success=True)
                self._notify_batch(record)
                current = batch_end + 1
                after_failure = False
            else:
                consecutive_failures += 1
                self.state_manager.record_batch(record)
                self.metrics.record_batch(success=False)
                self._notify_batch(record)
                logger.error(
                    f"배치 {current}-{batch_end} 전체 실패 "
                    f"({consecutive_failures}/{batch_config.max_consecutive_failures})"
                )
                if consecutive_failures >= batch_config.max_consecutive_failures:
                    self.crawl_logger.circuit_open(consecutive_failures)
                    self.metrics.record_circuit_break()
                    self.stats.circuit_broken = True
                    self.state_manager.record_error(
                        f"Circuit breaker opened after {consecutive_failures} failed batches"
                    )
                    self.state_manager.save()
                    return False
                after_failure = True

            if current <= last_page:
                await self._pause_between_batches(after_failure)

        return True

    async def _download_batch(
        self, start_page: int, end_page: int
    ) -> Tuple[BatchRecord, List[Opportunity], bool]:
        """
        배치 내 페이지 순차 수집

        Returns:
            (배치 기록, 추출 레코드, 중단 여부)
        """
        self.crawl_logger.batch_started(start_page, end_page)
        started = time.monotonic()
        record = BatchRecord(start_page=start_page, end_page=end_page)
        collected: List[Opportunity] = []

        for page_number in range(start_page, end_page + 1):
            if self.stop_requested:
                return record, collected, True

            record.pages_attempted += 1
            opportunities = await self._fetch_page_or_none(page_number)
            if opportunities is None:
                record.pages_failed += 1
                record.failed_pages.append(page_number)
                continue

            record.pages_successful += 1
            record.opportunities += len(opportunities)
            collected.extend(opportunities)

        record.duration_seconds = round(time.monotonic() - started, 2)
        self.crawl_logger.batch_finished(
            start_page,
            end_page,
            record.pages_successful,
            record.pages_failed,
            record.opportunities,
        )
        return record, collected, False

    async def _fetch_page_or_none(self, page_number: int) -> Optional[List[Opportunity]]:
        """페이지 수집 (재시도 소진 시 기록 후 None)"""
        try:
            opportunities = await self._fetch_page(page_number)
        except RetryError as e:
            cause = e.last_exception or e
            logger.error(f"페이지 {page_number} 수집 실패 ({e.attempts}회 시도): {cause}")
            self.error_logger.log_error(
                "page_navigation",
                cause,
                {"page": page_number, "attempts": e.attempts},
            )
            self.metrics.record_page(page_number, self._total_pages, success=False)
            self.metrics.record_error("navigation")
            return None

        self.stats.found += len(opportunities)
        self.stats.pages_crawled += 1
        self.metrics.record_page(page_number, self._total_pages, success=True)
        self.crawl_logger.page_progress(page_number, self._total_pages, len(opportunities))
        if self._on_page_completed:
            self._on_page_completed(page_number, self._total_pages)
        return opportunities

    async def _fetch_page(self, page_number: int) -> List[Opportunity]:
        """
        단일 페이지 이동 + 추출 (재시도 포함)

        Raises:
            RetryError: 모든 시도 실패 시
        """
        retry_config = self.config.retry

        if self._pages_fetched > 0:
            await asyncio.sleep(
                compute_pacing_delay(retry_config.base_delay, retry_config.max_jitter)
            )
        self._pages_fetched += 1

        async def attempt() -> List[Opportunity]:
            with self.metrics.time_request("list_page"):
                await self.navigator.go_to_page(page_number)
                html = await self.navigator.content()
            return self.extractor.extract(html, source_url=self.config.search_url)

        def on_retry(attempt_number: int, error: Exception) -> None:
            self.metrics.record_retry("page_navigation")
            logger.warning(f"페이지 {page_number} 재시도 {attempt_number}: {error}")

        return await retry_async(
            attempt,
            max_attempts=retry_config.max_attempts,
            base_delay=retry_config.base_delay,
            multiplier=retry_config.multiplier,
            max_jitter=retry_config.max_jitter,
            retry_exceptions=(NavigationError, PlaywrightError),
            on_retry=on_retry,
        )

    # === 저장 ===

    async def _persist(self, opportunities: List[Opportunity], record: BatchRecord) -> None:
        """
        보강(선택) 후 레코드별 upsert, 이어서 저장소 flush

        Raises:
            PersistenceError: flush 실패 시 (배치는 완료 처리되지 않음)
        """
        for opportunity in opportunities:
            if self.enricher is not None:
                opportunity = await self._enrich(opportunity)

            try:
                result = await self.gateway.upsert(opportunity)
            except PersistenceError as e:
                self.stats.errors += 1
                record.save_errors += 1
                self.crawl_logger.item_error(opportunity.reference_number, str(e))
                self.error_logger.log_error(
                    "persistence", e, {"reference_number": opportunity.reference_number}
                )
                self.metrics.record_opportunity("error")
                continue

            record.saved += 1
            if result.is_new:
                self.stats.new += 1
                self.metrics.record_opportunity("new")
            elif result.is_updated:
                self.stats.updated += 1
                self.metrics.record_opportunity("updated")

        try:
            await self.gateway.flush()
        except PersistenceError as e:
            self.stats.errors += 1
            self.error_logger.log_error(
                "persistence_flush",
                e,
                {"start_page": record.start_page, "end_page": record.end_page},
            )
            raise

    async def _enrich(self, opportunity: Opportunity) -> Opportunity:
        """상세 보강 (실패해도 목록 레코드는 그대로 저장)"""
        try:
            with self.metrics.time_request("detail_page"):
                result = await self.enricher.enrich(opportunity)
        except DetailFetchError as e:
            self.stats.errors += 1
            self.crawl_logger.item_error(opportunity.reference_number, str(e))
            self.error_logger.log_error(
                "detail_fetch",
                e,
                {
                    "reference_number": opportunity.reference_number,
                    "url": e.url,
                    "status_code": e.status_code,
                },
            )
            self.metrics.record_error("detail_fetch")
            return opportunity

        if result.is_empty:
            self.error_logger.log_warning(
                "detail_fetch",
                "No known labels on detail page",
                {"reference_number": opportunity.reference_number, "url": opportunity.detail_url},
            )
        return opportunity.with_enrichment(result)

    # === 실패 페이지 재시도 ===

    async def _retry_failed_pages(self) -> int:
        """
        재시도 대기열의 페이지를 하나씩 다시 수집

        Returns:
            포기한 페이지 수
        """
        pending = list(self.state_manager.state.failed_pages)
        if not pending:
            return 0

        logger.info(f"실패 페이지 재시도: {pending}")
        abandoned = 0

        for index, page_number in enumerate(pending):
            if self.stop_requested:
                break
            if index > 0:
                await asyncio.sleep(self.config.batch.failed_page_delay)

            opportunities = await self._fetch_page_or_none(page_number)
            if opportunities is None:
                self.state_manager.abandon_page(
                    page_number, f"Page {page_number} could not be recovered"
                )
                abandoned += 1
                logger.error(f"페이지 {page_number} 복구 실패: 포기")
            else:
                record = BatchRecord(start_page=page_number, end_page=page_number)
                await self._persist(opportunities, record)
                self.state_manager.mark_page_recovered(page_number, len(opportunities))
                logger.info(f"페이지 {page_number} 복구 성공 ({len(opportunities)}건)")
                self.error_logger.log_info(
                    "failed_page_retry",
                    f"Page {page_number} recovered",
                    {"page": page_number, "opportunities": len(opportunities)},
                )

            self.state_manager.save()

        return abandoned

    # === 헬퍼 ===

    async def _pause_between_batches(self, after_failure: bool) -> None:
        """배치 간 대기 (실패 배치 이후 2배)"""
        batch_config = self.config.batch
        delay = batch_config.pause_between_batches + random.uniform(0, batch_config.pause_jitter)
        if after_failure:
            delay *= 2
        self.crawl_logger.pausing(delay, after_failure=after_failure)
        await asyncio.sleep(delay)

    def _notify_batch(self, record: BatchRecord) -> None:
        if self._on_batch_completed:
            self._on_batch_completed(record)
