"""
입찰 기회(Opportunity) 데이터 모델

PhilGEPS 공개 입찰 목록 항목과 상세 페이지(ITB/RFQ) 정보를 구조화합니다.
reference_number(상세 링크의 refID)가 논리적 식별자입니다.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, TypeVar

from pydantic import BaseModel, Field, field_serializer, field_validator

from philgeps_crawler.utils.parser import ParserUtils

M = TypeVar("M", bound=BaseModel)

# 상세 그룹에서 최상위로 올리는 필드 (검색 필터 대상)
PROMOTED_DETAIL_FIELDS = ("approved_budget", "area_of_delivery")


def _to_decimal(v: Any) -> Optional[Decimal]:
    """int/float/str을 Decimal로 변환 (변환 불가 시 None)"""
    if v is None or isinstance(v, Decimal):
        return v
    if isinstance(v, (int, float)):
        try:
            return Decimal(str(v))
        except InvalidOperation:
            return None
    return ParserUtils.parse_budget(str(v))


def merge_non_null(base: M, incoming: Optional[M]) -> M:
    """
    null이 아닌 값 우선 병합

    incoming의 필드 중 None(또는 빈 리스트)이 아닌 값만 base에 덮어씁니다.
    중첩 모델은 같은 규칙으로 재귀 병합합니다.

    Args:
        base: 기존 값
        incoming: 새로 수집한 값

    Returns:
        병합된 새 인스턴스 (원본은 변경되지 않음)
    """
    if incoming is None:
        return base

    updates: dict[str, Any] = {}
    for name in type(base).model_fields:
        new_value = getattr(incoming, name)
        old_value = getattr(base, name)

        if new_value is None:
            continue
        if isinstance(new_value, list) and not new_value:
            continue
        if isinstance(new_value, BaseModel) and isinstance(old_value, BaseModel):
            updates[name] = merge_non_null(old_value, new_value)
        else:
            updates[name] = new_value

    return base.model_copy(update=updates)


class ITBDetails(BaseModel):
    """
    ITB(Invitation to Bid) 상세 정보

    상세 페이지의 라벨/값 테이블에서 채워지며 모든 필드는 선택값입니다.
    """

    solicitation_number: Optional[str] = Field(default=None, description="Solicitation No.")
    trade_agreement: Optional[str] = Field(default=None, description="무역 협정")
    procurement_mode: Optional[str] = Field(default=None, description="조달 방식")
    classification: Optional[str] = Field(default=None, description="분류")
    category: Optional[str] = Field(default=None, description="카테고리")
    approved_budget: Optional[Decimal] = Field(default=None, description="승인 예산 (ABC)")
    delivery_period: Optional[str] = Field(default=None, description="납품 기간")
    client_agency: Optional[str] = Field(default=None, description="발주 기관")

    # 담당자 정보
    contact_person: Optional[str] = Field(default=None, description="담당자명")
    contact_designation: Optional[str] = Field(default=None, description="담당자 직함")
    contact_address: Optional[str] = Field(default=None, description="주소")
    contact_phone: Optional[str] = Field(default=None, description="전화번호")
    contact_email: Optional[str] = Field(default=None, description="이메일")

    area_of_delivery: Optional[str] = Field(default=None, description="납품 지역")

    # 일시 정보 (사이트 표기 그대로 보관)
    date_posted: Optional[str] = Field(default=None, description="게시일")
    date_last_updated: Optional[str] = Field(default=None, description="최종 수정일")
    closing_date: Optional[str] = Field(default=None, description="마감 일시")
    opening_date: Optional[str] = Field(default=None, description="개찰 일시")
    pre_bid_conference: Optional[str] = Field(default=None, description="입찰 설명회")

    description: Optional[str] = Field(default=None, description="공고 본문")
    eligibility: Optional[str] = Field(default=None, description="참가 자격")
    created_by: Optional[str] = Field(default=None, description="작성자")
    status: Optional[str] = Field(default=None, description="공고 상태")
    bid_supplements: Optional[int] = Field(default=None, description="보충 공고 수")
    document_request_list: Optional[int] = Field(default=None, description="문서 요청 수")
    bidding_documents_fee: Optional[str] = Field(default=None, description="입찰 문서 비용")
    bac_chairman: Optional[str] = Field(default=None, description="BAC 위원장")
    bac_secretariat: Optional[str] = Field(default=None, description="BAC 사무국")

    @field_validator("approved_budget", mode="before")
    @classmethod
    def convert_budget(cls, v):
        """금액을 Decimal로 변환"""
        return _to_decimal(v)

    @field_serializer("approved_budget", when_used="json")
    @classmethod
    def serialize_decimal(cls, v: Optional[Decimal]) -> Optional[str]:
        """Decimal을 문자열로 직렬화 (JSON 전용)"""
        return str(v) if v is not None else None


class RFQDetails(BaseModel):
    """RFQ(Request for Quotation) 상세 정보"""

    solicitation_number: Optional[str] = Field(default=None, description="RFQ 번호")
    title: Optional[str] = Field(default=None, description="RFQ 제목")
    status: Optional[str] = Field(default=None, description="상태")
    notice_type: Optional[str] = Field(default=None, description="공고 유형")
    request_type: Optional[str] = Field(default=None, description="요청 유형")
    business_category: Optional[str] = Field(default=None, description="업종")
    procurement_mode: Optional[str] = Field(default=None, description="조달 방식")
    funding_source: Optional[str] = Field(default=None, description="재원")
    trade_agreement: Optional[str] = Field(default=None, description="무역 협정")
    approved_budget: Optional[Decimal] = Field(default=None, description="승인 예산")
    delivery_period: Optional[str] = Field(default=None, description="납품 기간")
    payment_terms: Optional[str] = Field(default=None, description="지불 조건")
    area_of_delivery: Optional[str] = Field(default=None, description="납품 지역")

    published_date: Optional[str] = Field(default=None, description="게시일")
    open_date: Optional[str] = Field(default=None, description="시작일")
    close_date: Optional[str] = Field(default=None, description="종료일")
    submission_deadline: Optional[str] = Field(default=None, description="제출 마감")
    opening_date: Optional[str] = Field(default=None, description="개찰일")
    pre_bid_conference: Optional[str] = Field(default=None, description="입찰 설명회")

    contact_person: Optional[str] = Field(default=None, description="담당자명")
    contact_number: Optional[str] = Field(default=None, description="연락처")
    client_agency: Optional[str] = Field(default=None, description="발주 기관")

    technical_specifications: Optional[str] = Field(default=None, description="기술 사양")
    eligibility_criteria: Optional[str] = Field(default=None, description="자격 요건")
    additional_requirements: Optional[str] = Field(default=None, description="추가 요구사항")
    special_instructions: Optional[str] = Field(default=None, description="특별 지시사항")
    required_documents: Optional[str] = Field(default=None, description="제출 서류")
    line_items: List[str] = Field(default_factory=list, description="품목 목록")

    @field_validator("approved_budget", mode="before")
    @classmethod
    def convert_budget(cls, v):
        """금액을 Decimal로 변환"""
        return _to_decimal(v)

    @field_serializer("approved_budget", when_used="json")
    @classmethod
    def serialize_decimal(cls, v: Optional[Decimal]) -> Optional[str]:
        """Decimal을 문자열로 직렬화 (JSON 전용)"""
        return str(v) if v is not None else None


class Opportunity(BaseModel):
    """
    입찰 기회 모델

    목록 페이지에서 추출한 기본 정보와 상세 페이지에서 보강한
    ITB/RFQ 그룹을 담습니다.
    """

    # 필수 식별 정보
    reference_number: str = Field(..., min_length=1, description="참조번호 (refID)")
    title: str = Field(..., min_length=1, description="공고명")

    # 기본 정보
    procuring_entity: Optional[str] = Field(default=None, description="조달 기관")
    category: Optional[str] = Field(default=None, description="카테고리")
    area_of_delivery: Optional[str] = Field(default=None, description="납품 지역")

    # 금액 정보
    approved_budget: Optional[Decimal] = Field(default=None, description="승인 예산")
    currency: str = Field(default="PHP", description="통화")

    # 일시 정보
    publish_date: Optional[datetime] = Field(default=None, description="게시일시")
    closing_date: Optional[datetime] = Field(default=None, description="마감일시")
    status: str = Field(default="Open", description="공고 상태")

    # 메타 정보
    detail_url: Optional[str] = Field(default=None, description="상세 페이지 URL")
    source_url: Optional[str] = Field(default=None, description="수집 원본 URL")
    crawled_at: datetime = Field(default_factory=datetime.now, description="수집 일시")

    # 상세 그룹 (DetailEnricher가 채움)
    itb: Optional[ITBDetails] = Field(default=None, description="ITB 상세")
    rfq: Optional[RFQDetails] = Field(default=None, description="RFQ 상세")

    # === Validators ===

    @field_validator("approved_budget", mode="before")
    @classmethod
    def convert_budget(cls, v):
        """금액을 Decimal로 변환 (파싱 불가 시 None)"""
        return _to_decimal(v)

    # === Domain Behaviors ===

    def merged_with(self, other: "Opportunity") -> "Opportunity":
        """
        재수집 결과와 병합

        other의 null이 아닌 값이 우선하며, null은 기존 값을 덮어쓰지 않습니다.
        ITB/RFQ 그룹은 필드 단위로 재귀 병합됩니다.

        Args:
            other: 같은 reference_number의 새 레코드

        Returns:
            병합된 새 Opportunity

        Examples:
            >>> old = Opportunity(reference_number="1", title="A", category="IT")
            >>> new = Opportunity(reference_number="1", title="A2")
            >>> old.merged_with(new).category
            'IT'
        """
        return merge_non_null(self, other)

    def is_active(self, now: Optional[datetime] = None) -> bool:
        """
        마감 전 공고인지 확인

        마감일이 없으면 활성 상태로 간주합니다.
        """
        if self.closing_date is None:
            return True
        return self.closing_date >= (now or datetime.now())

    def with_enrichment(self, result: "EnrichmentResult") -> "Opportunity":
        """
        상세 보강 결과 적용

        비어 있는 최상위 approved_budget, area_of_delivery는
        ITB 그룹 값으로, 없으면 RFQ 그룹 값으로 채웁니다.
        """
        update: dict = {"itb": result.itb, "rfq": result.rfq}
        for name in PROMOTED_DETAIL_FIELDS:
            if getattr(self, name) is not None:
                continue
            for group in (result.itb, result.rfq):
                value = getattr(group, name) if group is not None else None
                if value is not None:
                    update[name] = value
                    break
        return merge_non_null(self, self.model_copy(update=update))

    @field_serializer("crawled_at", "publish_date", "closing_date", when_used="json")
    @classmethod
    def serialize_datetime(cls, v: Optional[datetime]) -> Optional[str]:
        """datetime을 ISO 형식 문자열로 직렬화 (JSON 전용)"""
        return v.isoformat() if v else None

    @field_serializer("approved_budget", when_used="json")
    @classmethod
    def serialize_decimal(cls, v: Optional[Decimal]) -> Optional[str]:
        """Decimal을 문자열로 직렬화 (JSON 전용)"""
        return str(v) if v is not None else None


class EnrichmentResult(BaseModel):
    """
    상세 페이지 보강 결과

    일치한 필드만 채워진 부분 결과입니다. 일치 항목이 없으면 두 그룹 모두 None입니다.
    """

    itb: Optional[ITBDetails] = None
    rfq: Optional[RFQDetails] = None
    matched_labels: int = Field(default=0, description="매핑된 라벨 수")

    @property
    def is_empty(self) -> bool:
        """매핑된 필드가 없는지 확인"""
        return self.itb is None and self.rfq is None


class UpsertResult(BaseModel):
    """저장 결과 (신규 삽입 또는 기존 레코드 갱신)"""

    is_new: bool = False
    is_updated: bool = False
