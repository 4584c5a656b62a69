"""
크롤러 활성화 토글 저장소

{"enabled": bool, "interval_minutes": int} 형태의 작은 JSON 파일을 관리합니다.
스케줄러는 매 실행 전에 이 파일을 다시 읽습니다.
"""

import json
import os
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from philgeps_crawler.utils.logger import get_logger

logger = get_logger(__name__)


class ControlSettings(BaseModel):
    """크롤러 제어 설정"""

    enabled: bool = Field(default=True, description="예약 실행 활성화 여부")
    interval_minutes: int = Field(default=60, ge=1, description="실행 간격 (분)")


class ControlStore:
    """
    제어 파일 저장소

    Examples:
        >>> store = ControlStore(Path("data/crawler-control.json"))
        >>> store.set_enabled(False)
        >>> store.load().enabled
        False
    """

    def __init__(self, control_file: Path, default_interval_minutes: int = 60):
        self.control_file = Path(control_file)
        self.default_interval_minutes = default_interval_minutes

    def load(self) -> ControlSettings:
        """
        제어 설정 로드

        파일이 없거나 손상된 경우 기본값(활성화)을 반환합니다.
        """
        default = ControlSettings(interval_minutes=self.default_interval_minutes)
        if not self.control_file.exists():
            return default

        try:
            with open(self.control_file, "r", encoding="utf-8") as f:
                return ControlSettings.model_validate(json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"제어 파일 읽기 실패, 기본값 사용: {e}")
            return default

    def save(self, settings: ControlSettings) -> None:
        """제어 설정 저장 (원자적 교체)"""
        self.control_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_file = self.control_file.with_suffix(".tmp")
        with open(tmp_file, "w", encoding="utf-8") as f:
            f.write(settings.model_dump_json(indent=2))
        os.replace(tmp_file, self.control_file)

    def set_enabled(self, enabled: bool) -> ControlSettings:
        """활성화 여부 변경"""
        settings = self.load().model_copy(update={"enabled": enabled})
        self.save(settings)
        logger.info(f"크롤러 {'활성화' if enabled else '비활성화'}")
        return settings

    def set_interval(self, interval_minutes: int) -> ControlSettings:
        """실행 간격 변경"""
        settings = ControlSettings(
            enabled=self.load().enabled,
            interval_minutes=interval_minutes,
        )
        self.save(settings)
        return settings
