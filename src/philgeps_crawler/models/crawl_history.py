"""
실행 기록 모델

실행별 통계(CrawlStats), 추가 전용 실행 이력(CrawlHistory),
오류 로그 항목(ErrorLogEntry)을 정의합니다.
"""

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, field_serializer


class CrawlStats(BaseModel):
    """한 번의 크롤링 실행 통계"""

    found: int = Field(default=0, description="추출된 레코드 수")
    new: int = Field(default=0, description="신규 저장 수")
    updated: int = Field(default=0, description="갱신 수")
    errors: int = Field(default=0, description="오류 수")
    duration_seconds: float = Field(default=0.0, description="소요 시간 (초)")

    pages_crawled: int = Field(default=0, description="성공한 페이지 수")
    pages_failed: int = Field(default=0, description="최종 실패 페이지 수")
    circuit_broken: bool = Field(default=False, description="서킷 브레이커 작동 여부")

    start_page: Optional[int] = Field(default=None, description="시작 페이지")
    end_page: Optional[int] = Field(default=None, description="종료 페이지")
    fetch_details: bool = Field(default=False, description="상세 수집 여부")

    @property
    def page_range(self) -> Optional[str]:
        """페이지 범위 문자열 (예: "1-10")"""
        if self.start_page is None:
            return None
        return f"{self.start_page}-{self.end_page if self.end_page is not None else ''}"


class CrawlHistory(BaseModel):
    """
    실행 이력 (추가 전용)

    실행이 끝날 때마다 한 행씩 기록되며 수정되지 않습니다.
    """

    timestamp: datetime = Field(default_factory=datetime.now, description="기록 시각")
    found: int = Field(default=0, description="추출된 레코드 수")
    new: int = Field(default=0, description="신규 저장 수")
    updated: int = Field(default=0, description="갱신 수")
    errors: int = Field(default=0, description="오류 수")
    duration_seconds: float = Field(default=0.0, description="소요 시간 (초)")
    status: Literal["completed", "failed"] = Field(..., description="실행 결과")
    error_message: Optional[str] = Field(default=None, description="실패 사유")
    page_range: Optional[str] = Field(default=None, description="페이지 범위")
    fetch_details: bool = Field(default=False, description="상세 수집 여부")

    @classmethod
    def from_stats(
        cls,
        stats: CrawlStats,
        status: Literal["completed", "failed"],
        error_message: Optional[str] = None,
    ) -> "CrawlHistory":
        """통계에서 이력 행 생성"""
        return cls(
            found=stats.found,
            new=stats.new,
            updated=stats.updated,
            errors=stats.errors,
            duration_seconds=stats.duration_seconds,
            status=status,
            error_message=error_message,
            page_range=stats.page_range,
            fetch_details=stats.fetch_details,
        )

    @field_serializer("timestamp", when_used="json")
    @classmethod
    def serialize_datetime(cls, v: Optional[datetime]) -> Optional[str]:
        """datetime을 ISO 형식 문자열로 직렬화 (JSON 전용)"""
        return v.isoformat() if v else None


class ErrorLogEntry(BaseModel):
    """오류 로그 항목 (JSONL 한 줄)"""

    timestamp: datetime = Field(default_factory=datetime.now)
    level: Literal["error", "warning", "info"] = "error"
    context: str = Field(..., description="발생 위치 (예: page_navigation)")
    error: str = Field(..., description="오류 메시지")
    error_type: Optional[str] = Field(default=None, description="예외 클래스명")
    sequence_number: int = Field(default=0, description="실행 내 순번")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="추가 정보")

    @field_serializer("timestamp", when_used="json")
    @classmethod
    def serialize_datetime(cls, v: Optional[datetime]) -> Optional[str]:
        """datetime을 ISO 형식 문자열로 직렬화 (JSON 전용)"""
        return v.isoformat() if v else None
