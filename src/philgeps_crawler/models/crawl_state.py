"""
크롤링 상태 관리 모델

배치 단위 진행 상태를 저장하여 중단된 지점부터 재시작할 수 있도록 합니다.
last_completed_page는 해당 배치의 레코드가 저장된 뒤에만 전진합니다.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_serializer


class BatchRecord(BaseModel):
    """배치 실행 기록"""

    start_page: int = Field(..., description="배치 시작 페이지")
    end_page: int = Field(..., description="배치 종료 페이지")
    pages_attempted: int = Field(default=0, description="시도한 페이지 수")
    pages_successful: int = Field(default=0, description="성공한 페이지 수")
    pages_failed: int = Field(default=0, description="실패한 페이지 수")
    failed_pages: List[int] = Field(default_factory=list, description="실패한 페이지 번호")
    opportunities: int = Field(default=0, description="추출된 레코드 수")
    saved: int = Field(default=0, description="저장 성공 수")
    save_errors: int = Field(default=0, description="저장 실패 수")
    duration_seconds: float = Field(default=0.0, description="소요 시간 (초)")
    completed_at: datetime = Field(default_factory=datetime.now, description="완료 시각")

    @property
    def is_successful(self) -> bool:
        """한 페이지 이상 성공했으면 성공 배치"""
        return self.pages_successful > 0

    @field_serializer("completed_at", when_used="json")
    @classmethod
    def serialize_datetime(cls, v: Optional[datetime]) -> Optional[str]:
        """datetime을 ISO 형식 문자열로 직렬화 (JSON 전용)"""
        return v.isoformat() if v else None


class CrawlState(BaseModel):
    """
    크롤링 전체 상태

    중단점 저장, 실패 페이지 대기열, 배치 이력을 담당합니다.
    JSON 파일로 저장/로드되어 크롤러 재시작 시 복원됩니다.
    """

    # 실행 식별
    run_id: str = Field(..., description="실행 ID")
    started_at: datetime = Field(default_factory=datetime.now, description="시작 시간")
    last_updated_at: datetime = Field(default_factory=datetime.now, description="마지막 업데이트")

    # 요청 범위
    start_page: int = Field(default=1, description="요청 시작 페이지")
    end_page: Optional[int] = Field(default=None, description="요청 종료 페이지")

    # 진행 상황
    last_completed_page: int = Field(default=0, description="마지막 완료 페이지")
    total_pages: Optional[int] = Field(default=None, description="전체 페이지 수 (발견 또는 추정)")
    total_opportunities: int = Field(default=0, description="누적 추출 레코드 수")
    batches: List[BatchRecord] = Field(default_factory=list, description="배치 기록")

    # 실패 페이지
    failed_pages: List[int] = Field(default_factory=list, description="재시도 대기 페이지")
    abandoned_pages: List[int] = Field(default_factory=list, description="재시도 후 포기한 페이지")

    # 상태
    is_completed: bool = Field(default=False, description="완료 여부")
    last_error: Optional[str] = Field(default=None, description="마지막 오류")

    @field_serializer("started_at", "last_updated_at", when_used="json")
    @classmethod
    def serialize_datetime(cls, v: Optional[datetime]) -> Optional[str]:
        """datetime을 ISO 형식 문자열로 직렬화 (JSON 전용)"""
        return v.isoformat() if v else None

    @property
    def next_page(self) -> int:
        """다음에 수집할 페이지"""
        return max(self.start_page, self.last_completed_page + 1)

    @property
    def has_remaining_pages(self) -> bool:
        """수집할 페이지 또는 재시도 대기 페이지가 남았는지"""
        if self.failed_pages:
            return True
        last_page = self.end_page or self.total_pages
        return last_page is None or self.next_page <= last_page

    def matches_range(self, start_page: int, end_page: Optional[int]) -> bool:
        """
        요청 범위가 이 상태의 범위와 같은지

        end_page가 None이면 저장된 종료 페이지를 그대로 따릅니다.
        """
        if start_page != self.start_page:
            return False
        return end_page is None or end_page == self.end_page

    def record_batch(self, record: BatchRecord) -> None:
        """
        배치 결과 반영

        성공 배치(한 페이지 이상 성공)만 last_completed_page를 batch.end_page로 전진시킵니다.
        실패한 페이지는 재시도 대기열에 추가됩니다.

        Args:
            record: 배치 기록
        """
        self.batches.append(record)
        self.total_opportunities += record.opportunities

        if record.is_successful:
            self.last_completed_page = max(self.last_completed_page, record.end_page)
            for page in record.failed_pages:
                if page not in self.failed_pages:
                    self.failed_pages.append(page)

        self.last_updated_at = datetime.now()

    def mark_page_recovered(self, page: int, opportunities: int = 0) -> None:
        """재시도 패스에서 성공한 페이지 처리"""
        if page in self.failed_pages:
            self.failed_pages.remove(page)
        self.total_opportunities += opportunities
        self.last_updated_at = datetime.now()

    def abandon_page(self, page: int, error: Optional[str] = None) -> None:
        """재시도 패스에서도 실패한 페이지 처리"""
        if page in self.failed_pages:
            self.failed_pages.remove(page)
        if page not in self.abandoned_pages:
            self.abandoned_pages.append(page)
        if error:
            self.last_error = error
        self.last_updated_at = datetime.now()

    def record_error(self, error: str) -> None:
        """오류 기록"""
        self.last_error = error
        self.last_updated_at = datetime.now()

    def mark_completed(self) -> None:
        """크롤링 완료 처리"""
        self.is_completed = True
        self.last_updated_at = datetime.now()
