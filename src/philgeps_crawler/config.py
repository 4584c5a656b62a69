"""
크롤러 설정 관리 모듈

환경 변수, 설정 파일, CLI 옵션을 통합 관리합니다.
python-dotenv를 통한 .env 파일 지원을 포함합니다.
"""

import os
from datetime import datetime
from pathlib import Path
from typing import Literal, Optional, Tuple

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, model_validator

from philgeps_crawler.exceptions import ConfigError


class BrowserConfig(BaseModel):
    """브라우저 설정"""

    headless: bool = Field(default=True, description="헤드리스 모드 실행 여부")
    timeout: int = Field(default=60000, description="페이지 로드 타임아웃 (ms)")
    navigation_timeout: int = Field(
        default=10000, description="postback 후 새 결과 행 대기 타임아웃 (ms)"
    )
    settle_delay: float = Field(
        default=1.0, description="페이지 전환 후 렌더링 안정화 대기 (초)"
    )
    open_attempts: int = Field(default=3, ge=1, description="검색 페이지 로드 시도 횟수")
    slow_mo: int = Field(default=0, description="작업 간 딜레이 (ms)")
    viewport_width: int = Field(default=1920, description="뷰포트 너비")
    viewport_height: int = Field(default=1080, description="뷰포트 높이")
    user_agent: Optional[str] = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36"
        ),
        description="User-Agent 문자열",
    )


class RetryConfig(BaseModel):
    """
    페이지 재시도 설정

    k번째 시도 전 대기 시간 = base_delay * multiplier^(k-1) + uniform(0, max_jitter)
    """

    max_attempts: int = Field(default=3, ge=1, description="페이지당 최대 시도 횟수")
    base_delay: float = Field(default=5.0, ge=0, description="기본 대기 시간 (초)")
    multiplier: float = Field(default=2.0, ge=1.0, description="재시도 지수 배수")
    max_jitter: float = Field(default=3.0, ge=0, description="최대 지터 (초)")


class BatchConfig(BaseModel):
    """배치 실행 설정"""

    size: int = Field(default=10, ge=1, description="배치당 페이지 수")
    pause_between_batches: float = Field(default=30.0, ge=0, description="배치 간 대기 (초)")
    pause_jitter: float = Field(default=10.0, ge=0, description="배치 간 추가 지터 (초)")
    max_consecutive_failures: int = Field(
        default=3, ge=1, description="서킷 브레이커: 연속 실패 배치 허용 수"
    )
    failed_page_delay: float = Field(
        default=2.0, ge=0, description="실패 페이지 재시도 패스의 페이지 간 대기 (초)"
    )


class DetailConfig(BaseModel):
    """상세 페이지(ITB/RFQ) 보강 설정"""

    enabled: bool = Field(default=False, description="상세 페이지 수집 여부")
    request_timeout: float = Field(default=60.0, description="HTTP 요청 타임아웃 (초)")
    request_delay: float = Field(default=2.0, ge=0, description="상세 요청 간 대기 (초)")


class StorageConfig(BaseModel):
    """저장소 설정"""

    backend: Literal["json", "sqlite"] = Field(default="sqlite", description="저장소 구현체")
    data_dir: Path = Field(default=Path("data"), description="데이터 저장 디렉토리")
    database_path: Path = Field(
        default=Path("data/philgeps.db"), description="SQLite 데이터베이스 경로"
    )
    state_file: Path = Field(
        default=Path("data/crawl_state.json"), description="상태 파일 경로"
    )
    control_file: Path = Field(
        default=Path("data/crawler-control.json"), description="활성화 토글 파일 경로"
    )
    error_log_dir: Path = Field(
        default=Path("logs/errors"), description="실행별 오류 로그 디렉토리"
    )


class SchedulerConfig(BaseModel):
    """스케줄러 설정"""

    enabled: bool = Field(default=False, description="스케줄러 활성화 여부")
    mode: Literal["interval", "cron"] = Field(default="interval", description="실행 모드")
    interval_minutes: int = Field(default=60, ge=1, description="interval 모드: 실행 간격 (분)")
    cron_expression: str = Field(
        default="0 */6 * * *", description="cron 모드: cron 표현식"
    )

    @model_validator(mode="after")
    def validate_cron_expression(self) -> "SchedulerConfig":
        """cron 표현식 유효성 검사"""
        if self.mode == "cron":
            parts = self.cron_expression.split()
            if len(parts) < 5:
                raise ValueError(
                    f"Invalid cron expression: {self.cron_expression}. "
                    "Expected format: 'minute hour day month weekday'"
                )
        return self


class LoggingConfig(BaseModel):
    """로깅 설정"""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="로그 레벨"
    )
    file: Optional[Path] = Field(
        default=Path("logs/crawler.log"), description="로그 파일 경로"
    )
    rotation: Literal["size", "time", "none"] = Field(
        default="size", description="로그 회전 방식"
    )
    max_bytes: int = Field(default=10 * 1024 * 1024, description="회전 시 최대 파일 크기")
    backup_count: int = Field(default=5, description="보관할 백업 파일 수")


class MonitoringConfig(BaseModel):
    """
    모니터링 설정

    Prometheus 메트릭 및 구조화된 로깅(ELK 스택)을 위한 설정입니다.
    """

    prometheus_enabled: bool = Field(
        default=False, description="Prometheus 메트릭 활성화"
    )
    prometheus_port: int = Field(
        default=8000, description="Prometheus 메트릭 서버 포트", ge=1024, le=65535
    )
    metrics_namespace: str = Field(
        default="philgeps_crawler", description="메트릭 네임스페이스 (접두사)"
    )

    json_logging: bool = Field(
        default=False, description="JSON 형식 로깅 활성화 (ELK 스택 통합용)"
    )
    log_extra_fields: Optional[dict[str, str]] = Field(
        default=None,
        description="로그에 추가할 필드 (예: {'service': 'philgeps_crawler', 'env': 'prod'})",
    )


class CrawlerConfig(BaseModel):
    """
    크롤러 통합 설정

    모든 설정을 하나의 객체로 관리합니다.
    환경 변수, 설정 파일, CLI 옵션 순서로 우선순위가 적용됩니다.
    """

    # 크롤링 대상 설정
    base_url: str = Field(
        default="https://notices.philgeps.gov.ph/GEPSNONPILOT/Tender/",
        description="상세 링크 정규화 기준 URL",
    )
    search_url: str = Field(
        default=(
            "https://notices.philgeps.gov.ph/GEPSNONPILOT/Tender/"
            "SplashOpportunitiesSearchUI.aspx?menuIndex=3&ClickFrom=OpenOpp&Result=3"
        ),
        description="공개 입찰 검색 결과 페이지 URL",
    )

    # 크롤링 범위 설정
    start_page: int = Field(default=1, description="기본 시작 페이지")
    end_page: Optional[int] = Field(
        default=None, description="기본 종료 페이지 (None: 전체 페이지)"
    )
    max_pages: Optional[int] = Field(
        default=None, description="실행당 최대 페이지 수 (None: 무제한)"
    )
    default_total_pages: int = Field(
        default=100, ge=1, description="전체 페이지 수를 알 수 없을 때 사용하는 값"
    )

    # 하위 설정
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    detail: DetailConfig = Field(default_factory=DetailConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    # 실행 ID (자동 생성)
    run_id: str = Field(
        default_factory=lambda: datetime.now().strftime("%Y%m%d_%H%M%S"),
        description="실행 식별자",
    )

    @property
    def log_level(self) -> str:
        """로그 레벨"""
        return self.logging.level

    @property
    def log_file(self) -> Optional[Path]:
        """로그 파일"""
        return self.logging.file

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "CrawlerConfig":
        """
        환경 변수에서 설정 로드

        밀리초 단위 변수(*_MS)는 초 단위로 변환됩니다.

        Args:
            env_file: .env 파일 경로 (None이면 자동 탐색)

        Returns:
            CrawlerConfig 인스턴스

        Raises:
            ConfigError: 숫자로 해석할 수 없는 값이나 유효하지 않은 값이 있는 경우
        """
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()

        try:
            return cls(
                base_url=os.getenv("CRAWLER_BASE_URL", cls.model_fields["base_url"].default),
                search_url=os.getenv(
                    "CRAWLER_SEARCH_URL", cls.model_fields["search_url"].default
                ),
                start_page=_env_int("CRAWLER_START_PAGE", 1),
                end_page=_env_int("CRAWLER_END_PAGE"),
                max_pages=_env_int("CRAWLER_MAX_PAGES"),
                default_total_pages=_env_int("CRAWLER_TOTAL_PAGES", 100),
                browser=BrowserConfig(
                    headless=os.getenv("CRAWLER_HEADLESS", "true").lower() == "true",
                    timeout=_env_int("CRAWLER_TIMEOUT", 60000),
                ),
                retry=RetryConfig(
                    max_attempts=_env_int("CRAWLER_RETRY_ATTEMPTS", 3),
                    base_delay=_env_ms("CRAWLER_REQUEST_DELAY_MS", 5000),
                    multiplier=_env_float("CRAWLER_RETRY_MULTIPLIER", 2.0),
                    max_jitter=_env_ms("CRAWLER_MAX_JITTER_MS", 3000),
                ),
                batch=BatchConfig(
                    size=_env_int("CRAWLER_BATCH_SIZE", 10),
                    pause_between_batches=_env_ms("CRAWLER_BATCH_PAUSE_MS", 30000),
                ),
                detail=DetailConfig(
                    enabled=os.getenv("CRAWLER_FETCH_DETAILS", "false").lower() == "true",
                ),
                logging=LoggingConfig(
                    level=os.getenv("CRAWLER_LOG_LEVEL", "INFO"),  # type: ignore
                ),
                storage=StorageConfig(
                    backend=os.getenv("CRAWLER_STORAGE_BACKEND", "sqlite"),  # type: ignore
                    data_dir=Path(os.getenv("CRAWLER_DATA_DIR", "data")),
                    database_path=Path(
                        os.getenv("CRAWLER_DATABASE_PATH", "data/philgeps.db")
                    ),
                ),
                scheduler=SchedulerConfig(
                    enabled=os.getenv("CRAWLER_SCHEDULER_ENABLED", "false").lower() == "true",
                    mode=os.getenv("CRAWLER_SCHEDULER_MODE", "interval"),  # type: ignore
                    interval_minutes=_env_int("CRAWLER_INTERVAL_MINUTES", 60),
                    cron_expression=os.getenv("CRAWLER_SCHEDULER_CRON", "0 */6 * * *"),
                ),
            )
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_yaml(cls, config_file: Path) -> "CrawlerConfig":
        """
        YAML 설정 파일에서 로드

        Args:
            config_file: 설정 파일 경로

        Returns:
            CrawlerConfig 인스턴스

        Raises:
            ConfigError: 파일이 없거나 내용이 유효하지 않은 경우
        """
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read config file {config_file}: {e}") from e

        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration in {config_file}: {e}") from e

    def resolve_page_range(
        self,
        start_page: Optional[int] = None,
        end_page: Optional[int] = None,
    ) -> Tuple[int, Optional[int]]:
        """
        요청된 페이지 범위 검증

        인자가 없으면 설정의 기본값을 사용합니다.

        Args:
            start_page: 시작 페이지 (1 이상)
            end_page: 종료 페이지 (None이면 전체)

        Returns:
            (start_page, end_page) 튜플

        Raises:
            ConfigError: 범위가 유효하지 않은 경우

        Examples:
            >>> CrawlerConfig().resolve_page_range(3, 5)
            (3, 5)
        """
        start = start_page if start_page is not None else self.start_page
        end = end_page if end_page is not None else self.end_page

        if start < 1:
            raise ConfigError(f"start_page must be >= 1 (got {start})", "start_page")
        if end is not None and end < start:
            raise ConfigError(
                f"end_page ({end}) must be >= start_page ({start})", "end_page"
            )
        if self.max_pages is not None and self.max_pages < 1:
            raise ConfigError(f"max_pages must be >= 1 (got {self.max_pages})", "max_pages")

        return start, end

    def ensure_directories(self) -> None:
        """필요한 디렉토리 생성"""
        self.storage.data_dir.mkdir(parents=True, exist_ok=True)
        self.storage.state_file.parent.mkdir(parents=True, exist_ok=True)
        self.storage.error_log_dir.mkdir(parents=True, exist_ok=True)
        if self.storage.backend == "sqlite":
            self.storage.database_path.parent.mkdir(parents=True, exist_ok=True)
        if self.logging.file:
            self.logging.file.parent.mkdir(parents=True, exist_ok=True)

    def to_summary(self) -> str:
        """설정 요약 문자열 생성"""
        parts = [
            f"pages={self.start_page}-{self.end_page or 'last'}",
            f"batch={self.batch.size}",
            f"delay={self.retry.base_delay}s+{self.retry.max_jitter}s",
            f"attempts={self.retry.max_attempts}",
            f"backend={self.storage.backend}",
        ]
        if self.max_pages:
            parts.append(f"max_pages={self.max_pages}")
        if self.detail.enabled:
            parts.append("details=on")
        return ", ".join(parts)


def _env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    """정수 환경 변수 읽기"""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer (got {raw!r})", name)


def _env_float(name: str, default: float) -> float:
    """실수 환경 변수 읽기"""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number (got {raw!r})", name)


def _env_ms(name: str, default_ms: int) -> float:
    """밀리초 환경 변수를 초 단위로 읽기"""
    return _env_int(name, default_ms) / 1000
