"""
스케줄러 모듈

정기적인 크롤링 실행을 위한 스케줄러를 제공합니다.
interval 모드와 cron 모드를 지원합니다.

실행 직전마다 제어 파일(crawler-control.json)을 다시 읽어
비활성화 상태면 건너뛰고, 간격이 바뀌었으면 트리거를 교체합니다.
"""

import asyncio
import signal
from datetime import datetime
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from philgeps_crawler.config import CrawlerConfig, SchedulerConfig
from philgeps_crawler.models.crawl_history import CrawlStats
from philgeps_crawler.service import CrawlerService
from philgeps_crawler.storage.control_store import ControlStore
from philgeps_crawler.utils.logger import get_logger

logger = get_logger(__name__)

JOB_ID = "crawl_job"


class CrawlScheduler:
    """
    크롤링 스케줄러

    주기적으로 CrawlerService.run_crawl()을 실행합니다.
    - interval 모드: 일정 간격으로 실행 (제어 파일의 interval_minutes 우선)
    - cron 모드: cron 표현식에 따라 실행

    작업은 max_instances=1, coalesce=True로 등록되어 겹쳐 실행되지 않습니다.
    """

    def __init__(
        self,
        service: Optional[CrawlerService] = None,
        crawler_config: Optional[CrawlerConfig] = None,
        scheduler_config: Optional[SchedulerConfig] = None,
        control_store: Optional[ControlStore] = None,
    ):
        """
        Args:
            service: 크롤러 서비스 (None이면 crawler_config로 생성)
            crawler_config: 크롤러 설정
            scheduler_config: 스케줄러 설정
            control_store: 제어 파일 저장소
        """
        self.service = service or CrawlerService(crawler_config)
        self.crawler_config = self.service.config
        self.scheduler_config = scheduler_config or self.crawler_config.scheduler
        self.control_store = control_store or ControlStore(
            self.crawler_config.storage.control_file,
            default_interval_minutes=self.scheduler_config.interval_minutes,
        )

        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._stop_event: Optional[asyncio.Event] = None
        self._current_interval: Optional[int] = None
        self._on_crawl_complete: Optional[Callable[[CrawlStats], None]] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def on_crawl_complete(self, callback: Callable[[CrawlStats], None]) -> None:
        """크롤링 완료 콜백 등록"""
        self._on_crawl_complete = callback

    async def _crawl_job(self) -> Optional[CrawlStats]:
        """스케줄러에서 실행되는 크롤링 작업"""
        settings = self.control_store.load()
        self.service.control.enabled = settings.enabled

        if not settings.enabled:
            logger.info("크롤러 비활성화 상태: 이번 실행 건너뜀")
            return None

        self._apply_interval(settings.interval_minutes)

        run_id = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.service.config.run_id = run_id
        logger.info(f"=== 스케줄된 크롤링 시작: {run_id} ===")

        try:
            stats = await self.service.run_crawl()
        except Exception as e:
            logger.error(f"스케줄된 크롤링 실패: {e}")
            return None

        if stats is None:
            return None

        logger.info(
            f"=== 스케줄된 크롤링 완료: "
            f"발견 {stats.found}건, 신규 {stats.new}건, 갱신 {stats.updated}건 ==="
        )
        if self._on_crawl_complete:
            self._on_crawl_complete(stats)
        return stats

    def _create_trigger(self, interval_minutes: Optional[int] = None):
        """스케줄 트리거 생성"""
        if self.scheduler_config.mode == "interval":
            return IntervalTrigger(
                minutes=interval_minutes or self.scheduler_config.interval_minutes
            )
        # cron 표현식: "분 시 일 월 요일" (설정 검증 통과)
        return CronTrigger.from_crontab(self.scheduler_config.cron_expression)

    def _apply_interval(self, interval_minutes: int) -> None:
        """제어 파일의 간격이 바뀌었으면 트리거 교체"""
        if self.scheduler_config.mode != "interval" or self._scheduler is None:
            return
        if interval_minutes == self._current_interval:
            return

        logger.info(f"실행 간격 변경: {self._current_interval}분 -> {interval_minutes}분")
        self._scheduler.reschedule_job(
            JOB_ID, trigger=self._create_trigger(interval_minutes)
        )
        self._current_interval = interval_minutes

    async def start(self, run_immediately: bool = True) -> None:
        """
        스케줄러 시작

        Args:
            run_immediately: True면 시작 시 즉시 한 번 실행
        """
        if self._running:
            logger.warning("스케줄러가 이미 실행 중입니다")
            return

        settings = self.control_store.load()
        self._current_interval = settings.interval_minutes

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._crawl_job,
            trigger=self._create_trigger(settings.interval_minutes),
            id=JOB_ID,
            name="PhilGEPS 공고 크롤링",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        self._running = True

        if self.scheduler_config.mode == "interval":
            schedule_desc = f"간격: {settings.interval_minutes}분"
        else:
            schedule_desc = f"cron: {self.scheduler_config.cron_expression}"
        logger.info(f"스케줄러 시작됨 (모드: {self.scheduler_config.mode}, {schedule_desc})")

        if run_immediately:
            logger.info("초기 크롤링 실행...")
            await self._crawl_job()

    def stop(self) -> None:
        """스케줄러 중지 (진행 중인 실행에는 중단 요청)"""
        self.service.request_stop()
        if self._scheduler and self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            logger.info("스케줄러 중지됨")
        if self._stop_event is not None:
            self._stop_event.set()

    async def run_forever(self, run_immediately: bool = True) -> None:
        """
        스케줄러를 무한 실행

        SIGINT/SIGTERM 수신 시 진행 중인 실행에 중단을 요청하고 종료합니다.
        """
        self._stop_event = asyncio.Event()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._handle_signal, sig)
            except NotImplementedError:
                # Windows 이벤트 루프
                signal.signal(sig, lambda signum, frame: self._handle_signal(signum))

        await self.start(run_immediately=run_immediately)
        logger.info("스케줄러 실행 중... (Ctrl+C로 중지)")

        try:
            await self._stop_event.wait()
        finally:
            self.stop()
            await self.service.close()

    def _handle_signal(self, signum) -> None:
        logger.info(f"중지 신호 수신 ({signal.Signals(signum).name})...")
        self.stop()


async def run_scheduled(
    crawler_config: Optional[CrawlerConfig] = None,
    mode: str = "interval",
    interval_minutes: int = 60,
    cron_expression: str = "0 */6 * * *",
    run_immediately: bool = True,
) -> None:
    """
    스케줄된 크롤링 실행 헬퍼 함수

    Args:
        crawler_config: 크롤러 설정
        mode: 실행 모드 ("interval" 또는 "cron")
        interval_minutes: interval 모드 기본 간격 (분, 제어 파일 값 우선)
        cron_expression: cron 표현식
        run_immediately: 시작 시 즉시 실행 여부
    """
    scheduler_config = SchedulerConfig(
        enabled=True,
        mode=mode,
        interval_minutes=interval_minutes,
        cron_expression=cron_expression,
    )

    scheduler = CrawlScheduler(
        crawler_config=crawler_config,
        scheduler_config=scheduler_config,
    )

    await scheduler.run_forever(run_immediately=run_immediately)
