"""
로깅 설정 모듈

패키지 최상위 로거("philgeps_crawler")에만 핸들러를 붙이고,
모듈 로거(philgeps_crawler.downloader 등)는 핸들러 없이 상위로 전달합니다.

핸들러 구성:
    콘솔  - 컬러 텍스트 또는 JSON (ELK 수집용)
    파일  - size / time / none 회전, 항상 DEBUG 이상 기록
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Literal, Optional

# setup_logger()로 핸들러가 구성된 로거
_configured: dict[str, logging.Logger] = {}

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# LogRecord 기본 속성 (이 외의 속성은 extra로 취급)
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


class ColoredFormatter(logging.Formatter):
    """콘솔 출력용 컬러 포매터 (원본 레코드는 변경하지 않음)"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname)
        if color is None:
            return super().format(record)

        # 같은 레코드를 받는 파일 핸들러에 색상 코드가 섞이지 않도록 복사본 사용
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(colored)


class JsonFormatter(logging.Formatter):
    """
    한 줄 JSON 포매터

    출력 예:
        {"@timestamp": "...", "level": "INFO", "logger": "philgeps_crawler.downloader",
         "message": "배치 시작: 페이지 1-10", "module": "downloader", "line": 288,
         "service": "philgeps_crawler", "extra": {"page": 3}}
    """

    def __init__(
        self,
        include_stack_trace: bool = True,
        extra_fields: Optional[dict[str, Any]] = None,
    ):
        """
        Args:
            include_stack_trace: 예외 정보 포함 여부
            extra_fields: 모든 줄에 붙일 고정 필드 (예: {"service": "philgeps_crawler"})
        """
        super().__init__()
        self.include_stack_trace = include_stack_trace
        self.extra_fields = dict(extra_fields or {})

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "@timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            **self.extra_fields,
        }

        extra = {
            key: _jsonable(value)
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        if extra:
            payload["extra"] = extra

        if record.exc_info and self.include_stack_trace:
            exc_type, exc_value, _ = record.exc_info
            payload["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "stacktrace": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(payload, ensure_ascii=False, default=str)


def _jsonable(value: Any) -> Any:
    """JSON으로 직렬화할 수 없으면 문자열로"""
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


def _build_formatter(json_format: bool, extra_fields: Optional[dict[str, Any]], colored: bool) -> logging.Formatter:
    if json_format:
        return JsonFormatter(extra_fields=extra_fields)
    if colored:
        return ColoredFormatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    return logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)


def _build_file_handler(
    log_file: Path,
    rotation: Literal["size", "time", "none"],
    max_bytes: int,
    backup_count: int,
    rotation_when: str,
) -> logging.Handler:
    """회전 방식에 맞는 파일 핸들러 생성"""
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    if rotation == "size":
        return RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    if rotation == "time":
        return TimedRotatingFileHandler(
            log_file, when=rotation_when, backupCount=backup_count, encoding="utf-8"
        )
    return logging.FileHandler(log_file, mode="a", encoding="utf-8")


def _drop_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def setup_logger(
    name: str = "philgeps_crawler",
    level: str = "INFO",
    log_file: Optional[Path] = None,
    console_output: bool = True,
    rotation: Literal["size", "time", "none"] = "size",
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    rotation_when: str = "midnight",
    json_format: bool = False,
    extra_fields: Optional[dict[str, Any]] = None,
) -> logging.Logger:
    """
    로거 핸들러 구성

    같은 이름으로 다시 호출하면 기존 핸들러를 닫고 새 설정으로 교체합니다.
    (모듈 import 시 기본값으로 만들어진 로거를 서비스 설정으로 덮어쓰기 위함)

    Args:
        name: 로거 이름
        level: 콘솔 로그 레벨 (DEBUG, INFO, WARNING, ERROR)
        log_file: 로그 파일 경로 (None이면 파일 출력 안 함)
        console_output: 콘솔 출력 여부
        rotation: 파일 회전 방식 ("size", "time", "none")
        max_bytes: size 회전 기준 크기
        backup_count: 보관할 회전 파일 수
        rotation_when: time 회전 시점 ("midnight", "H", "W0" 등)
        json_format: JSON 한 줄 형식 사용 여부
        extra_fields: JSON 로그 고정 필드

    Returns:
        구성된 로거

    Examples:
        >>> logger = setup_logger("philgeps_crawler", level="DEBUG", log_file=Path("logs/crawler.log"))
        >>> get_logger("philgeps_crawler.downloader").info("배치 시작")
    """
    numeric_level = getattr(logging, level.upper())
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG if log_file else numeric_level)
    _drop_handlers(logger)

    if console_output:
        console = logging.StreamHandler(sys.stdout)
        console.setLevel(numeric_level)
        console.setFormatter(
            _build_formatter(json_format, extra_fields, colored=sys.platform != "win32")
        )
        logger.addHandler(console)

    if log_file:
        file_handler = _build_file_handler(log_file, rotation, max_bytes, backup_count, rotation_when)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(_build_formatter(json_format, extra_fields, colored=False))
        logger.addHandler(file_handler)

    _configured[name] = logger
    return logger


def get_logger(name: str = "philgeps_crawler") -> logging.Logger:
    """
    로거 가져오기

    최상위 이름의 로거가 아직 구성되지 않았으면 기본값으로 구성합니다.
    점(.)이 포함된 이름은 핸들러 없는 하위 로거를 돌려주어 상위로 전달되게 합니다.

    Args:
        name: 로거 이름 (보통 __name__)
    """
    if name in _configured:
        return _configured[name]

    root_name = name.split(".", 1)[0]
    if root_name not in _configured:
        setup_logger(root_name)
    return logging.getLogger(name)


def reset_loggers() -> None:
    """구성된 로거의 핸들러 제거 (테스트용)"""
    for logger in _configured.values():
        _drop_handlers(logger)
    _configured.clear()


class CrawlLogger:
    """
    크롤링 진행 로그

    실행 배너, 배치 진행, 대기, 최종 통계를 일정한 문구로 남깁니다.
    """

    RULE = "=" * 60

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or get_logger("philgeps_crawler")
        self.start_time: Optional[datetime] = None

    def start_crawl(self, run_id: str, config_summary: str = "") -> None:
        self.start_time = datetime.now()
        self.logger.info(self.RULE)
        self.logger.info(f"크롤링 시작: {run_id}")
        if config_summary:
            self.logger.info(f"설정: {config_summary}")
        self.logger.info(self.RULE)

    def end_crawl(
        self,
        found: int,
        new: int,
        updated: int,
        errors: int,
        pages_failed: int = 0,
    ) -> None:
        elapsed = f" (소요시간: {datetime.now() - self.start_time})" if self.start_time else ""
        lines = [
            f"크롤링 완료{elapsed}",
            f"  - 발견: {found}건",
            f"  - 신규: {new}건",
            f"  - 갱신: {updated}건",
            f"  - 오류: {errors}건",
            f"  - 실패 페이지: {pages_failed}개",
        ]
        self.logger.info(self.RULE)
        for line in lines:
            self.logger.info(line)
        self.logger.info(self.RULE)

    def page_progress(self, current: int, total: Optional[int], items: int) -> None:
        position = f"{current}/{total}" if total else f"{current}"
        self.logger.info(f"페이지 {position} 처리 완료 ({items}건 수집)")

    def batch_started(self, start_page: int, end_page: int) -> None:
        self.logger.info(f"배치 시작: 페이지 {start_page}-{end_page}")

    def batch_finished(
        self,
        start_page: int,
        end_page: int,
        successful: int,
        failed: int,
        opportunities: int,
    ) -> None:
        """성공 페이지가 없으면 WARNING"""
        self.logger.log(
            logging.INFO if successful > 0 else logging.WARNING,
            f"배치 종료: 페이지 {start_page}-{end_page} "
            f"(성공 {successful}, 실패 {failed}, {opportunities}건)",
        )

    def item_error(self, reference_number: str, error: str) -> None:
        self.logger.error(f"오류: [{reference_number}] {error}")

    def resuming(self, page: int) -> None:
        self.logger.info(f"이전 상태에서 재시작: 페이지 {page}부터")

    def pausing(self, delay: float, after_failure: bool = False) -> None:
        suffix = " (실패 배치 이후 2배)" if after_failure else ""
        self.logger.info(f"다음 배치까지 {delay:.1f}초 대기{suffix}")

    def circuit_open(self, consecutive_failures: int) -> None:
        self.logger.error(
            f"연속 {consecutive_failures}개 배치 실패: 크롤링 중단 (circuit breaker)"
        )
