"""
저장소 인터페이스 정의

Repository 패턴의 추상화 계층입니다.
DIP(Dependency Inversion Principle)를 적용하여
PersistenceGateway가 JSON/SQLite 구현체에 직접 의존하지 않도록 합니다.
"""

from abc import abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Literal, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from philgeps_crawler.models.crawl_history import CrawlHistory
from philgeps_crawler.models.opportunity import Opportunity, UpsertResult


class SearchFilters(BaseModel):
    """
    검색 조건

    모든 조건은 AND로 결합됩니다. None인 조건은 무시됩니다.
    """

    keyword: Optional[str] = Field(default=None, description="제목/기관/참조번호 부분 일치")
    category: Optional[str] = Field(default=None, description="카테고리 부분 일치")
    area: Optional[str] = Field(default=None, description="납품 지역 부분 일치")
    budget_min: Optional[Decimal] = Field(default=None, description="최소 예산")
    budget_max: Optional[Decimal] = Field(default=None, description="최대 예산")
    status: Optional[Literal["active", "closed"]] = Field(
        default=None, description="마감일 기준 상태"
    )
    limit: int = Field(default=50, ge=1, description="최대 조회 건수")
    offset: int = Field(default=0, ge=0, description="건너뛸 건수")

    def matches(self, opportunity: Opportunity, now: Optional[datetime] = None) -> bool:
        """
        메모리 내 필터링

        Args:
            opportunity: 검사할 레코드
            now: 기준 시각 (None이면 현재)

        Returns:
            모든 조건을 만족하면 True
        """
        if self.keyword:
            keyword = self.keyword.lower()
            haystacks = [
                opportunity.title,
                opportunity.procuring_entity or "",
                opportunity.reference_number,
            ]
            if not any(keyword in h.lower() for h in haystacks):
                return False

        if self.category and self.category.lower() not in (opportunity.category or "").lower():
            return False

        if self.area and self.area.lower() not in (opportunity.area_of_delivery or "").lower():
            return False

        if self.budget_min is not None:
            if opportunity.approved_budget is None or opportunity.approved_budget < self.budget_min:
                return False

        if self.budget_max is not None:
            if opportunity.approved_budget is None or opportunity.approved_budget > self.budget_max:
                return False

        if self.status == "active" and not opportunity.is_active(now):
            return False
        if self.status == "closed" and opportunity.is_active(now):
            return False

        return True


@runtime_checkable
class OpportunityRepository(Protocol):
    """
    입찰 기회 저장소 인터페이스

    모든 저장소 구현체가 따라야 하는 프로토콜입니다.
    Protocol을 사용하여 구조적 서브타이핑(structural subtyping)을 지원합니다.

    기존 레코드 갱신은 Opportunity.merged_with()를 사용해야 하며,
    null 값이 기존 값을 덮어쓰지 않아야 합니다.

    Examples:
        >>> repo: OpportunityRepository = SqliteOpportunityRepository(Path("data/philgeps.db"))
        >>> repo.upsert(opportunity)
        UpsertResult(is_new=True, is_updated=False)
    """

    @abstractmethod
    def upsert(self, opportunity: Opportunity) -> UpsertResult:
        """
        입찰 기회 삽입 또는 병합 갱신

        Args:
            opportunity: 저장할 레코드

        Returns:
            UpsertResult (is_new / is_updated)
        """
        ...

    @abstractmethod
    def find_by_key(self, reference_number: str) -> Optional[Opportunity]:
        """
        참조번호로 조회

        Args:
            reference_number: 참조번호

        Returns:
            조회된 레코드 또는 None (없는 경우)
        """
        ...

    @abstractmethod
    def count(self) -> int:
        """저장된 총 건수"""
        ...

    @abstractmethod
    def search_with_filters(self, filters: SearchFilters) -> List[Opportunity]:
        """
        조건 검색

        결과는 마감일 내림차순(없는 항목은 뒤)으로 정렬됩니다.

        Args:
            filters: 검색 조건

        Returns:
            조건에 맞는 레코드 리스트 (limit/offset 적용)
        """
        ...

    @abstractmethod
    def find_missing_details(self, limit: int = 50) -> List[Opportunity]:
        """
        상세 보강이 필요한 레코드 조회

        ITB 그룹이 없고 detail_url이 있는 레코드를 마감일 내림차순으로 돌려줍니다.

        Args:
            limit: 최대 조회 건수

        Returns:
            보강 대상 레코드 리스트
        """
        ...

    @abstractmethod
    def record_crawl_history(self, history: CrawlHistory) -> None:
        """
        실행 이력 추가 (추가 전용)

        Args:
            history: 실행 이력 행
        """
        ...

    @abstractmethod
    def last_crawl_history(self) -> Optional[CrawlHistory]:
        """가장 최근 실행 이력 (없으면 None)"""
        ...

    @abstractmethod
    def flush(self) -> bool:
        """
        버퍼 플러시

        버퍼에 있는 데이터를 영구 저장소에 기록합니다.
        버퍼를 사용하지 않는 구현체에서는 True만 반환합니다.

        Returns:
            플러시 성공 여부
        """
        ...

    @abstractmethod
    def close(self) -> None:
        """
        저장소 연결 종료

        리소스를 정리하고 연결을 종료합니다.
        flush()를 내부적으로 호출해야 합니다.
        """
        ...


def sort_by_closing_date(items: List[Opportunity]) -> List[Opportunity]:
    """마감일 내림차순 정렬 (마감일 없는 항목은 뒤로)"""
    dated = [o for o in items if o.closing_date is not None]
    undated = [o for o in items if o.closing_date is None]
    dated.sort(key=lambda o: o.closing_date, reverse=True)
    return dated + undated


def select_missing_details(items: Iterable[Opportunity], limit: int) -> List[Opportunity]:
    """상세 보강 대상(ITB 없음, detail_url 있음)만 골라 마감일 순으로 limit건"""
    pending = [o for o in items if o.itb is None and o.detail_url]
    return sort_by_closing_date(pending)[:limit]


class InMemoryRepository:
    """
    메모리 기반 저장소 구현

    테스트용 인메모리 저장소입니다.
    실제 파일 I/O 없이 메모리에만 저장합니다.

    Examples:
        >>> repo = InMemoryRepository()
        >>> repo.upsert(opportunity).is_new
        True
        >>> repo.find_by_key("12345")
        Opportunity(...)
    """

    def __init__(self):
        self._storage: dict[str, Opportunity] = {}
        self._history: List[CrawlHistory] = []

    def upsert(self, opportunity: Opportunity) -> UpsertResult:
        """삽입 또는 병합"""
        existing = self._storage.get(opportunity.reference_number)
        if existing is None:
            self._storage[opportunity.reference_number] = opportunity
            return UpsertResult(is_new=True)

        self._storage[opportunity.reference_number] = existing.merged_with(opportunity)
        return UpsertResult(is_updated=True)

    def find_by_key(self, reference_number: str) -> Optional[Opportunity]:
        """참조번호로 조회"""
        return self._storage.get(reference_number)

    def count(self) -> int:
        """건수"""
        return len(self._storage)

    def search_with_filters(self, filters: SearchFilters) -> List[Opportunity]:
        """조건 검색"""
        now = datetime.now()
        matched = [o for o in self._storage.values() if filters.matches(o, now)]
        ordered = sort_by_closing_date(matched)
        return ordered[filters.offset:filters.offset + filters.limit]

    def find_missing_details(self, limit: int = 50) -> List[Opportunity]:
        """보강 대상 조회"""
        return select_missing_details(self._storage.values(), limit)

    def record_crawl_history(self, history: CrawlHistory) -> None:
        """이력 추가"""
        self._history.append(history)

    def last_crawl_history(self) -> Optional[CrawlHistory]:
        """최근 이력"""
        return self._history[-1] if self._history else None

    def flush(self) -> bool:
        """플러시 (no-op)"""
        return True

    def close(self) -> None:
        """종료"""
        self._storage.clear()
        self._history.clear()
