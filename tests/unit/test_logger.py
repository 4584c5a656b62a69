"""
logger.py 단위 테스트

로깅 시스템과 크롤링 전용 로거를 테스트합니다.
"""

import json
import logging
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from pathlib import Path

import pytest

from philgeps_crawler.utils.logger import (
    ColoredFormatter,
    CrawlLogger,
    JsonFormatter,
    get_logger,
    reset_loggers,
    setup_logger,
)


def _record(level: int = logging.INFO, msg: str = "test message") -> logging.LogRecord:
    return logging.LogRecord(
        name="test",
        level=level,
        pathname="",
        lineno=0,
        msg=msg,
        args=(),
        exc_info=None,
    )


class TestFormatters:
    """포매터 테스트"""

    def test_colored_format(self) -> None:
        formatter = ColoredFormatter("%(levelname)s - %(message)s")
        formatted = formatter.format(_record())
        assert "\033[32m" in formatted
        assert "test message" in formatted

    def test_json_format(self) -> None:
        """JSON 포매터는 추가 필드를 포함"""
        formatter = JsonFormatter(extra_fields={"service": "philgeps_crawler"})
        record = _record(msg="페이지 처리")
        record.page = 3

        data = json.loads(formatter.format(record))

        assert data["level"] == "INFO"
        assert data["message"] == "페이지 처리"
        assert data["service"] == "philgeps_crawler"
        assert data["extra"]["page"] == 3


class TestSetupLogger:
    """setup_logger 함수 테스트"""

    def setup_method(self) -> None:
        reset_loggers()

    def test_basic_setup(self) -> None:
        logger = setup_logger("test_basic")

        assert logger.name == "test_basic"
        assert logger.level == logging.INFO
        assert len(logger.handlers) >= 1

    def test_custom_level(self) -> None:
        logger = setup_logger("test_level", level="DEBUG")
        assert logger.level == logging.DEBUG

    def test_file_handler(self, tmp_path: Path) -> None:
        log_file = tmp_path / "logs" / "crawler.log"
        logger = setup_logger("test_file", log_file=log_file, console_output=False)

        logger.info("배치 시작")

        assert log_file.exists()
        assert "배치 시작" in log_file.read_text(encoding="utf-8")

    def test_no_console_output(self) -> None:
        logger = setup_logger("test_no_console", console_output=False)
        assert logger.handlers == []

    def test_rotation_size(self, tmp_path: Path) -> None:
        logger = setup_logger(
            "test_rotation_size",
            log_file=tmp_path / "test.log",
            rotation="size",
            max_bytes=1024,
            backup_count=3,
        )
        handlers = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]
        assert len(handlers) == 1
        assert handlers[0].maxBytes == 1024

    def test_rotation_time(self, tmp_path: Path) -> None:
        logger = setup_logger(
            "test_rotation_time",
            log_file=tmp_path / "test.log",
            rotation="time",
        )
        handlers = [h for h in logger.handlers if isinstance(h, TimedRotatingFileHandler)]
        assert len(handlers) == 1

    def test_caching(self) -> None:
        assert setup_logger("test_cache") is setup_logger("test_cache")


class TestGetLogger:
    """get_logger 함수 테스트"""

    def setup_method(self) -> None:
        reset_loggers()

    def test_get_existing_logger(self) -> None:
        created = setup_logger("test_get")
        assert get_logger("test_get") is created

    def test_get_child_logger(self) -> None:
        """부모가 설정되어 있으면 핸들러 없는 자식 로거 반환"""
        setup_logger("parent")
        child = get_logger("parent.child")

        assert child.name == "parent.child"
        assert child.handlers == []


class TestCrawlLogger:
    """CrawlLogger 클래스 테스트"""

    @pytest.fixture
    def crawl_logger(self) -> CrawlLogger:
        reset_loggers()
        logger = logging.getLogger("test_crawl_logger")
        logger.setLevel(logging.DEBUG)
        return CrawlLogger(logger)

    def test_start_and_end(self, crawl_logger: CrawlLogger, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="test_crawl_logger"):
            crawl_logger.start_crawl("run_001", "batch=10")
            crawl_logger.end_crawl(found=6, new=4, updated=2, errors=1, pages_failed=1)

        assert crawl_logger.start_time is not None
        assert "크롤링 시작: run_001" in caplog.text
        assert "신규: 4건" in caplog.text
        assert "실패 페이지: 1개" in caplog.text

    def test_page_progress(self, crawl_logger: CrawlLogger, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="test_crawl_logger"):
            crawl_logger.page_progress(current=5, total=10, items=20)
            crawl_logger.page_progress(current=6, total=None, items=20)

        assert "페이지 5/10" in caplog.text
        assert "페이지 6 처리 완료" in caplog.text

    def test_failed_batch_logged_as_warning(self, crawl_logger: CrawlLogger, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="test_crawl_logger"):
            crawl_logger.batch_finished(1, 10, successful=0, failed=10, opportunities=0)

        assert caplog.records[-1].levelno == logging.WARNING

    def test_pausing_and_circuit(self, crawl_logger: CrawlLogger, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="test_crawl_logger"):
            crawl_logger.pausing(60.0, after_failure=True)
            crawl_logger.circuit_open(3)
            crawl_logger.resuming(page=8)

        assert "2배" in caplog.text
        assert "circuit breaker" in caplog.text
        assert "페이지 8부터" in caplog.text
