"""
Prometheus 메트릭 모듈

크롤링 성능 및 상태를 모니터링하기 위한 Prometheus 메트릭을 제공합니다.
prometheus_client 라이브러리를 사용하여 메트릭을 수집하고 HTTP 엔드포인트로 노출합니다.
"""

import time
from contextlib import contextmanager
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    start_http_server,
)


class CrawlerMetrics:
    """
    크롤러 Prometheus 메트릭 관리자

    수집되는 메트릭:
    - 처리된 레코드 수 (new/updated/error)
    - 처리된 페이지 수 (success/failed)
    - 배치 결과, 서킷 브레이커 작동 횟수
    - 재시도 횟수, 유형별 오류 수
    - 요청 지연 시간
    """

    def __init__(
        self,
        namespace: str = "philgeps_crawler",
        registry: Optional[CollectorRegistry] = None,
    ):
        """
        Args:
            namespace: 메트릭 네임스페이스 (접두사)
            registry: Prometheus 레지스트리 (None이면 인스턴스 전용 레지스트리 생성)
        """
        self.namespace = namespace
        self.registry = registry or CollectorRegistry()
        self._server_started = False

        # === Counter 메트릭 (누적 값) ===
        self.opportunities_total = Counter(
            f"{namespace}_opportunities_total",
            "Total number of opportunities processed",
            ["status"],  # new, updated, error
            registry=self.registry,
        )

        self.pages_total = Counter(
            f"{namespace}_pages_total",
            "Total number of listing pages processed",
            ["status"],  # success, failed
            registry=self.registry,
        )

        self.batches_total = Counter(
            f"{namespace}_batches_total",
            "Total number of batches processed",
            ["outcome"],  # success, failed
            registry=self.registry,
        )

        self.circuit_breaks_total = Counter(
            f"{namespace}_circuit_breaks_total",
            "Number of runs aborted by the circuit breaker",
            registry=self.registry,
        )

        self.retries_total = Counter(
            f"{namespace}_retries_total",
            "Total number of retry attempts",
            ["reason"],  # NavigationError, TimeoutError, ...
            registry=self.registry,
        )

        self.errors_total = Counter(
            f"{namespace}_errors_total",
            "Total number of errors",
            ["type"],  # navigation, detail_fetch, persistence
            registry=self.registry,
        )

        # === Gauge 메트릭 (현재 값) ===
        self.current_page = Gauge(
            f"{namespace}_current_page",
            "Current page being processed",
            registry=self.registry,
        )

        self.total_pages = Gauge(
            f"{namespace}_total_pages",
            "Total number of pages to process",
            registry=self.registry,
        )

        self.crawl_running = Gauge(
            f"{namespace}_crawl_running",
            "Whether a crawl is currently running (1=yes, 0=no)",
            registry=self.registry,
        )

        # === Histogram 메트릭 (분포) ===
        self.request_duration = Histogram(
            f"{namespace}_request_duration_seconds",
            "Time spent on page transitions and detail requests",
            ["request_type"],  # list_page, detail_page
            buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
            registry=self.registry,
        )

        # === Info 메트릭 (메타데이터) ===
        self.crawl_info = Info(
            f"{namespace}_crawl",
            "Crawl run information",
            registry=self.registry,
        )

    def start_server(self, port: int = 8000) -> bool:
        """
        Prometheus 메트릭 서버 시작

        Args:
            port: HTTP 서버 포트

        Returns:
            서버 시작 성공 여부
        """
        if self._server_started:
            return True

        try:
            start_http_server(port, registry=self.registry)
        except OSError:
            return False

        self._server_started = True
        return True

    def set_crawl_info(self, run_id: str, config_summary: str = "") -> None:
        """크롤링 실행 정보 설정"""
        self.crawl_info.info({
            "run_id": run_id,
            "config": config_summary,
        })

    def start_crawl(self) -> None:
        """크롤링 시작 표시"""
        self.crawl_running.set(1)
        self.current_page.set(0)
        self.total_pages.set(0)

    def end_crawl(self) -> None:
        """크롤링 종료 표시"""
        self.crawl_running.set(0)

    def record_opportunity(self, status: str = "new") -> None:
        """
        레코드 처리 기록

        Args:
            status: 처리 상태 ("new", "updated", "error")
        """
        self.opportunities_total.labels(status=status).inc()

    def record_page(
        self,
        page_num: int,
        total_pages: Optional[int] = None,
        success: bool = True,
    ) -> None:
        """페이지 처리 기록"""
        self.pages_total.labels(status="success" if success else "failed").inc()
        self.current_page.set(page_num)
        if total_pages:
            self.total_pages.set(total_pages)

    def record_batch(self, success: bool) -> None:
        """배치 결과 기록"""
        self.batches_total.labels(outcome="success" if success else "failed").inc()

    def record_circuit_break(self) -> None:
        """서킷 브레이커 작동 기록"""
        self.circuit_breaks_total.inc()

    def record_retry(self, reason: str = "unknown") -> None:
        """재시도 기록"""
        self.retries_total.labels(reason=reason).inc()

    def record_error(self, error_type: str = "unknown") -> None:
        """오류 기록"""
        self.errors_total.labels(type=error_type).inc()

    @contextmanager
    def time_request(self, request_type: str = "detail_page"):
        """
        요청 시간 측정 컨텍스트 매니저

        Usage:
            with metrics.time_request("list_page"):
                await navigator.go_to_page(4)
        """
        start = time.perf_counter()
        try:
            yield
        finally:
            duration = time.perf_counter() - start
            self.request_duration.labels(request_type=request_type).observe(duration)


# 전역 메트릭 인스턴스
_metrics: Optional[CrawlerMetrics] = None


def get_metrics() -> CrawlerMetrics:
    """전역 메트릭 인스턴스 가져오기"""
    global _metrics
    if _metrics is None:
        _metrics = CrawlerMetrics()
    return _metrics


def init_metrics(
    namespace: str = "philgeps_crawler",
    port: Optional[int] = None,
) -> CrawlerMetrics:
    """
    메트릭 초기화

    Args:
        namespace: 메트릭 네임스페이스
        port: HTTP 서버 포트 (None이면 서버 시작 안함)

    Returns:
        초기화된 메트릭 인스턴스
    """
    global _metrics
    _metrics = CrawlerMetrics(namespace=namespace)

    if port is not None:
        _metrics.start_server(port)

    return _metrics
