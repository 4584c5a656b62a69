"""
크롤러 서비스

브라우저, 네비게이터, 추출기, 다운로더, 저장소를 조합하여 한 번의 크롤링 실행을 수행하고
실행 이력(CrawlHistory)과 오류 요약을 남깁니다.

동시 실행은 CrawlerControl이 막습니다. 실행 중에 다시 호출되면 건너뜁니다(None 반환).
"""

import asyncio
import time
from typing import Optional

from philgeps_crawler.config import CrawlerConfig
from philgeps_crawler.downloader import BatchDownloader, BatchCallback, PageCallback
from philgeps_crawler.exceptions import DetailFetchError, PersistenceError
from philgeps_crawler.models.crawl_history import CrawlHistory, CrawlStats
from philgeps_crawler.models.opportunity import Opportunity
from philgeps_crawler.scrapers.detail_enricher import DetailEnricher
from philgeps_crawler.scrapers.extractor import Extractor
from philgeps_crawler.scrapers.navigator import Navigator
from philgeps_crawler.storage.gateway import PersistenceGateway, create_repository
from philgeps_crawler.storage.repository_interface import OpportunityRepository
from philgeps_crawler.storage.state_manager import StateManager
from philgeps_crawler.utils.browser import BrowserManager
from philgeps_crawler.utils.error_logger import ErrorLogger
from philgeps_crawler.utils.logger import CrawlLogger, get_logger, setup_logger
from philgeps_crawler.utils.metrics import CrawlerMetrics, init_metrics

logger = get_logger(__name__)


class CrawlerControl:
    """
    실행 제어 값

    enabled는 스케줄 실행 허용 여부, is_crawling은 실행 중 여부입니다.
    try_begin()은 확인과 설정을 하나의 잠금 안에서 수행합니다.
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self.is_crawling = False
        self.lock = asyncio.Lock()

    async def try_begin(self) -> bool:
        """실행 중이 아니면 실행 중으로 표시하고 True 반환"""
        async with self.lock:
            if self.is_crawling:
                return False
            self.is_crawling = True
            return True

    async def finish(self) -> None:
        """실행 종료 표시"""
        async with self.lock:
            self.is_crawling = False


class CrawlerService:
    """
    크롤링 실행 서비스

    의존성 주입(DI)을 지원합니다. repository, browser_manager, metrics를 넘기면
    기본 구현 대신 사용합니다.

    Examples:
        >>> service = CrawlerService(CrawlerConfig.from_env())
        >>> stats = await service.run_crawl(start_page=1, end_page=5)
        >>> service.get_last_crawl_info().status
        'completed'
    """

    def __init__(
        self,
        config: Optional[CrawlerConfig] = None,
        repository: Optional[OpportunityRepository] = None,
        control: Optional[CrawlerControl] = None,
        browser_manager: Optional[BrowserManager] = None,
        metrics: Optional[CrawlerMetrics] = None,
    ):
        """
        Args:
            config: 크롤러 설정 (None이면 기본값)
            repository: 저장소 (None이면 storage.backend에 따라 생성)
            control: 실행 제어 값
            browser_manager: 브라우저 관리자 (테스트에서 가짜 브라우저 주입)
            metrics: 메트릭 (None이면 설정에 따라 초기화)
        """
        self.config = config or CrawlerConfig()
        self.config.ensure_directories()

        setup_logger(
            "philgeps_crawler",
            level=self.config.log_level,
            log_file=self.config.log_file,
            rotation=self.config.logging.rotation,
            max_bytes=self.config.logging.max_bytes,
            backup_count=self.config.logging.backup_count,
            json_format=self.config.monitoring.json_logging,
            extra_fields=self.config.monitoring.log_extra_fields,
        )
        self.crawl_logger = CrawlLogger()

        self.metrics = metrics or init_metrics(
            namespace=self.config.monitoring.metrics_namespace,
            port=(
                self.config.monitoring.prometheus_port
                if self.config.monitoring.prometheus_enabled
                else None
            ),
        )

        self.gateway = PersistenceGateway(repository or create_repository(self.config.storage))
        self.control = control or CrawlerControl()
        self.browser_manager = browser_manager or BrowserManager(self.config.browser)
        self.state_manager = StateManager(self.config.storage.state_file)
        self.extractor = Extractor(self.config.base_url)

        self._downloader: Optional[BatchDownloader] = None
        self._on_page_completed: Optional[PageCallback] = None
        self._on_batch_completed: Optional[BatchCallback] = None

    def on_page_completed(self, callback: PageCallback) -> None:
        """페이지 완료 시 콜백 등록"""
        self._on_page_completed = callback

    def on_batch_completed(self, callback: BatchCallback) -> None:
        """배치 완료 시 콜백 등록"""
        self._on_batch_completed = callback

    @property
    def is_crawling(self) -> bool:
        return self.control.is_crawling

    def request_stop(self) -> None:
        """진행 중인 실행에 중단 요청"""
        if self._downloader is not None:
            self._downloader.request_stop()

    async def run_crawl(
        self,
        start_page: Optional[int] = None,
        end_page: Optional[int] = None,
        resume: bool = True,
    ) -> Optional[CrawlStats]:
        """
        크롤링 1회 실행

        Args:
            start_page: 시작 페이지
            end_page: 종료 페이지 (None이면 전체)
            resume: 완료되지 않은 이전 상태에서 이어서 수집

        Returns:
            실행 통계, 이미 실행 중이면 None

        Raises:
            ConfigError: 페이지 범위가 유효하지 않은 경우 (실행 전 검증)
        """
        self.config.resolve_page_range(start_page, end_page)

        if not await self.control.try_begin():
            logger.warning("이미 크롤링이 진행 중입니다. 이번 실행은 건너뜁니다.")
            return None

        run_id = self.config.run_id
        ErrorLogger.clean_old_logs(self.config.storage.error_log_dir)
        error_logger = ErrorLogger(self.config.storage.error_log_dir)
        stats = CrawlStats(start_page=start_page, end_page=end_page)
        status = "completed"
        error_message: Optional[str] = None

        self.crawl_logger.start_crawl(run_id, self.config.to_summary())
        self.metrics.set_crawl_info(run_id, self.config.to_summary())
        self.metrics.start_crawl()

        try:
            stats = await self._execute(start_page, end_page, resume, error_logger)
            if stats.circuit_broken:
                status = "failed"
                error_message = (
                    f"Circuit breaker opened after "
                    f"{self.config.batch.max_consecutive_failures} consecutive failed batches"
                )

        except (asyncio.CancelledError, KeyboardInterrupt):
            status = "failed"
            error_message = "Interrupted"
            stats = self._partial_stats(stats)
            raise

        except Exception as e:
            logger.error(f"크롤링 실패: {e}")
            status = "failed"
            error_message = str(e)
            stats = self._partial_stats(stats)
            error_logger.log_error("crawl", e)

        finally:
            self._downloader = None
            await self._finish(stats, status, error_message, error_logger)

        return stats

    async def _execute(
        self,
        start_page: Optional[int],
        end_page: Optional[int],
        resume: bool,
        error_logger: ErrorLogger,
    ) -> CrawlStats:
        """브라우저를 열고 다운로더 실행"""
        enricher = (
            DetailEnricher(self.config.detail, self.config.browser.user_agent)
            if self.config.detail.enabled
            else None
        )

        try:
            async with self.browser_manager:
                page = await self.browser_manager.new_page()
                navigator = Navigator(page, self.config.search_url, self.config.browser)

                downloader = BatchDownloader(
                    navigator=navigator,
                    extractor=self.extractor,
                    gateway=self.gateway,
                    state_manager=self.state_manager,
                    config=self.config,
                    enricher=enricher,
                    error_logger=error_logger,
                    metrics=self.metrics,
                    crawl_logger=self.crawl_logger,
                )
                if self._on_page_completed:
                    downloader.on_page_completed(self._on_page_completed)
                if self._on_batch_completed:
                    downloader.on_batch_completed(self._on_batch_completed)

                self._downloader = downloader
                return await downloader.run(start_page, end_page, resume=resume)
        finally:
            if enricher is not None:
                await enricher.close()

    # === 저장된 레코드 상세 보강 ===

    async def run_enrichment(
        self,
        limit: int = 50,
        enricher: Optional[DetailEnricher] = None,
    ) -> Optional[CrawlStats]:
        """
        상세 정보가 없는 저장 레코드 보강

        ITB 그룹이 없고 detail_url이 있는 레코드를 최대 limit건 골라
        상세 페이지를 수집한 뒤 병합 저장합니다. 목록 페이지는 방문하지 않습니다.

        Args:
            limit: 최대 처리 건수
            enricher: 상세 보강기 (None이면 detail 설정으로 생성)

        Returns:
            실행 통계 (found=대상 건수, updated=보강 저장 건수), 이미 실행 중이면 None

        Raises:
            PersistenceError: 저장소 flush 실패 시
        """
        if not await self.control.try_begin():
            logger.warning("이미 크롤링이 진행 중입니다. 상세 보강을 건너뜁니다.")
            return None

        started = time.monotonic()
        error_logger = ErrorLogger(self.config.storage.error_log_dir, log_type="enrichment")
        stats = CrawlStats(fetch_details=True)

        try:
            candidates = self.gateway.find_missing_details(limit)
            stats.found = len(candidates)
            logger.info(f"상세 보강 대상: {stats.found}건 (limit={limit})")

            if candidates:
                enricher = enricher or DetailEnricher(self.config.detail, self.config.browser.user_agent)
                async with enricher:
                    for opportunity in candidates:
                        await self._enrich_stored(enricher, opportunity, stats, error_logger)
                await self.gateway.flush()

        finally:
            stats.duration_seconds = round(time.monotonic() - started, 2)
            error_logger.finalize({**stats.model_dump(), "status": "enrichment"})
            logger.info(
                f"상세 보강 완료: 대상 {stats.found}건, 보강 {stats.updated}건, "
                f"오류 {stats.errors}건 ({stats.duration_seconds}초)"
            )
            await self.control.finish()

        return stats

    async def _enrich_stored(
        self,
        enricher: DetailEnricher,
        opportunity: Opportunity,
        stats: CrawlStats,
        error_logger: ErrorLogger,
    ) -> None:
        """레코드 하나 보강 후 저장 (실패는 기록만 하고 다음 레코드로)"""
        reference_number = opportunity.reference_number
        try:
            with self.metrics.time_request("detail_page"):
                result = await enricher.enrich(opportunity)
        except DetailFetchError as e:
            stats.errors += 1
            self.crawl_logger.item_error(reference_number, str(e))
            error_logger.log_error(
                "detail_fetch",
                e,
                {"reference_number": reference_number, "url": e.url, "status_code": e.status_code},
            )
            self.metrics.record_error("detail_fetch")
            return

        if result.is_empty:
            error_logger.log_warning(
                "detail_fetch",
                "No known labels on detail page",
                {"reference_number": reference_number, "url": opportunity.detail_url},
            )
            return

        try:
            upserted = await self.gateway.upsert(opportunity.with_enrichment(result))
        except PersistenceError as e:
            stats.errors += 1
            self.crawl_logger.item_error(reference_number, str(e))
            error_logger.log_error("persistence", e, {"reference_number": reference_number})
            self.metrics.record_opportunity("error")
            return

        if upserted.is_updated:
            stats.updated += 1
            self.metrics.record_opportunity("updated")
        elif upserted.is_new:
            stats.new += 1
            self.metrics.record_opportunity("new")

    def _partial_stats(self, fallback: CrawlStats) -> CrawlStats:
        """실패 시점까지의 다운로더 통계"""
        if self._downloader is not None:
            return self._downloader.stats
        return fallback

    async def _finish(
        self,
        stats: CrawlStats,
        status: str,
        error_message: Optional[str],
        error_logger: ErrorLogger,
    ) -> None:
        """이력 기록, 오류 요약, 실행 종료 표시"""
        try:
            await self.gateway.record_crawl_history(stats, status=status, error_message=error_message)
        except PersistenceError as e:
            logger.error(f"실행 이력 기록 실패: {e}")
            error_logger.log_error("crawl_history", e)

        error_logger.finalize({**stats.model_dump(), "status": status})
        self.crawl_logger.end_crawl(
            found=stats.found,
            new=stats.new,
            updated=stats.updated,
            errors=stats.errors,
            pages_failed=stats.pages_failed,
        )
        self.metrics.end_crawl()
        await self.control.finish()

    def get_last_crawl_info(self) -> Optional[CrawlHistory]:
        """최근 실행 이력 (없으면 None)"""
        return self.gateway.last_crawl_history()

    async def close(self) -> None:
        """저장소 종료"""
        await self.gateway.close()


# === Helper Function ===

async def run_crawler(
    config: Optional[CrawlerConfig] = None,
    start_page: Optional[int] = None,
    end_page: Optional[int] = None,
    resume: bool = True,
    repository: Optional[OpportunityRepository] = None,
) -> Optional[CrawlStats]:
    """
    크롤러 실행 헬퍼 함수

    Args:
        config: 크롤러 설정
        start_page: 시작 페이지
        end_page: 종료 페이지
        resume: 이전 상태에서 재시작 여부
        repository: 저장소 인스턴스 (DI)

    Returns:
        실행 통계
    """
    service = CrawlerService(config, repository=repository)
    try:
        return await service.run_crawl(start_page, end_page, resume=resume)
    finally:
        await service.close()
