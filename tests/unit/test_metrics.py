"""
Prometheus 메트릭 모듈 단위 테스트

CrawlerMetrics 클래스의 메트릭 수집 기능을 테스트합니다.
"""

from unittest.mock import patch

import pytest
from prometheus_client import CollectorRegistry

from philgeps_crawler.utils.metrics import CrawlerMetrics, get_metrics, init_metrics


def _value(metrics: CrawlerMetrics, name: str, labels: dict = None) -> float:
    return metrics.registry.get_sample_value(f"test_{name}", labels or {})


class TestCrawlerMetricsInitialization:
    """메트릭 초기화 테스트"""

    def test_custom_namespace(self, metrics: CrawlerMetrics) -> None:
        assert metrics.namespace == "test"

    def test_private_registry_per_instance(self) -> None:
        """인스턴스마다 별도 레지스트리를 사용하므로 중복 등록 오류가 없음"""
        first = CrawlerMetrics(namespace="dup")
        second = CrawlerMetrics(namespace="dup")
        assert first.registry is not second.registry


class TestCounters:
    """Counter 메트릭 테스트"""

    def test_record_opportunity(self, metrics: CrawlerMetrics) -> None:
        metrics.record_opportunity("new")
        metrics.record_opportunity("new")
        metrics.record_opportunity("updated")

        assert _value(metrics, "opportunities_total", {"status": "new"}) == 2
        assert _value(metrics, "opportunities_total", {"status": "updated"}) == 1

    def test_record_page(self, metrics: CrawlerMetrics) -> None:
        """페이지 기록은 현재/전체 페이지 게이지도 갱신"""
        metrics.record_page(4, 12, success=True)
        metrics.record_page(5, None, success=False)

        assert _value(metrics, "pages_total", {"status": "success"}) == 1
        assert _value(metrics, "pages_total", {"status": "failed"}) == 1
        assert _value(metrics, "current_page") == 5
        assert _value(metrics, "total_pages") == 12

    def test_batches_and_circuit(self, metrics: CrawlerMetrics) -> None:
        metrics.record_batch(True)
        metrics.record_batch(False)
        metrics.record_circuit_break()

        assert _value(metrics, "batches_total", {"outcome": "success"}) == 1
        assert _value(metrics, "batches_total", {"outcome": "failed"}) == 1
        assert _value(metrics, "circuit_breaks_total") == 1

    def test_retries_and_errors(self, metrics: CrawlerMetrics) -> None:
        metrics.record_retry("page_navigation")
        metrics.record_error("detail_fetch")
        metrics.record_error("detail_fetch")

        assert _value(metrics, "retries_total", {"reason": "page_navigation"}) == 1
        assert _value(metrics, "errors_total", {"type": "detail_fetch"}) == 2


class TestGaugesAndInfo:
    """Gauge, Info 메트릭 테스트"""

    def test_crawl_running(self, metrics: CrawlerMetrics) -> None:
        metrics.start_crawl()
        assert _value(metrics, "crawl_running") == 1

        metrics.end_crawl()
        assert _value(metrics, "crawl_running") == 0

    def test_crawl_info(self, metrics: CrawlerMetrics) -> None:
        metrics.set_crawl_info("run_001", "batch=10")
        assert _value(metrics, "crawl_info", {"run_id": "run_001", "config": "batch=10"}) == 1


class TestHistogram:
    """요청 시간 측정 테스트"""

    def test_time_request(self, metrics: CrawlerMetrics) -> None:
        with metrics.time_request("list_page"):
            pass

        assert _value(metrics, "request_duration_seconds_count", {"request_type": "list_page"}) == 1

    def test_time_request_records_on_error(self, metrics: CrawlerMetrics) -> None:
        with pytest.raises(RuntimeError):
            with metrics.time_request("detail_page"):
                raise RuntimeError("boom")

        assert _value(metrics, "request_duration_seconds_count", {"request_type": "detail_page"}) == 1


class TestServer:
    """메트릭 서버 테스트"""

    def test_start_server_once(self, metrics: CrawlerMetrics) -> None:
        with patch("philgeps_crawler.utils.metrics.start_http_server") as server:
            assert metrics.start_server(9100) is True
            assert metrics.start_server(9100) is True

        server.assert_called_once_with(9100, registry=metrics.registry)

    def test_start_server_port_in_use(self, metrics: CrawlerMetrics) -> None:
        with patch("philgeps_crawler.utils.metrics.start_http_server", side_effect=OSError):
            assert metrics.start_server(9100) is False


class TestGlobalMetrics:
    """전역 메트릭 인스턴스 테스트"""

    def test_init_replaces_global(self) -> None:
        first = init_metrics(namespace="global_test")
        assert get_metrics() is first

        second = init_metrics(namespace="global_test")
        assert get_metrics() is second
        assert first is not second

    def test_init_with_port_starts_server(self) -> None:
        with patch.object(CrawlerMetrics, "start_server") as start_server:
            init_metrics(namespace="global_port", port=9200)
        start_server.assert_called_once_with(9200)
