"""
영속성 게이트웨이

저장소 구현체 앞단에서 쓰기 직렬화(asyncio.Lock)와 예외 변환을 담당합니다.
저장소에서 발생한 모든 예외는 PersistenceError로 감싸서 전달됩니다.
"""

import asyncio
from typing import List, Optional

from philgeps_crawler.config import StorageConfig
from philgeps_crawler.exceptions import PersistenceError
from philgeps_crawler.models.crawl_history import CrawlHistory, CrawlStats
from philgeps_crawler.models.opportunity import Opportunity, UpsertResult
from philgeps_crawler.storage.json_storage import JsonOpportunityRepository
from philgeps_crawler.storage.repository_interface import (
    OpportunityRepository,
    SearchFilters,
)
from philgeps_crawler.storage.sqlite_storage import SqliteOpportunityRepository
from philgeps_crawler.utils.logger import get_logger

logger = get_logger(__name__)


def create_repository(config: StorageConfig) -> OpportunityRepository:
    """
    설정에 따른 저장소 생성

    Args:
        config: 저장소 설정

    Returns:
        JSON 또는 SQLite 저장소
    """
    if config.backend == "json":
        return JsonOpportunityRepository(config.data_dir)
    return SqliteOpportunityRepository(config.database_path)


class PersistenceGateway:
    """
    영속성 게이트웨이

    - upsert: 신규면 삽입, 기존이면 null이 아닌 값 우선 병합
    - record_crawl_history: 실행 이력 추가 (상태 명시)
    - 모든 쓰기는 하나의 asyncio.Lock으로 직렬화

    Examples:
        >>> gateway = PersistenceGateway(InMemoryRepository())
        >>> result = await gateway.upsert(opportunity)
        >>> result.is_new
        True
    """

    def __init__(self, repository: OpportunityRepository):
        self.repository = repository
        self._lock = asyncio.Lock()

    async def upsert(self, opportunity: Opportunity) -> UpsertResult:
        """
        레코드 저장

        Args:
            opportunity: 저장할 레코드

        Returns:
            UpsertResult

        Raises:
            PersistenceError: 저장 실패 시
        """
        async with self._lock:
            try:
                return self.repository.upsert(opportunity)
            except PersistenceError:
                raise
            except Exception as e:
                raise PersistenceError(
                    f"Failed to upsert opportunity: {e}",
                    reference_number=opportunity.reference_number,
                ) from e

    async def record_crawl_history(
        self,
        stats: CrawlStats,
        status: str,
        error_message: Optional[str] = None,
    ) -> CrawlHistory:
        """
        실행 이력 추가

        Args:
            stats: 실행 통계
            status: "completed" 또는 "failed"
            error_message: 실패 사유

        Returns:
            기록된 CrawlHistory

        Raises:
            PersistenceError: 기록 실패 시
        """
        history = CrawlHistory.from_stats(stats, status=status, error_message=error_message)

        async with self._lock:
            try:
                self.repository.record_crawl_history(history)
            except PersistenceError:
                raise
            except Exception as e:
                raise PersistenceError(f"Failed to record crawl history: {e}") from e

        logger.info(
            f"실행 이력 기록: status={status}, found={stats.found}, "
            f"new={stats.new}, updated={stats.updated}, errors={stats.errors}"
        )
        return history

    async def flush(self) -> None:
        """
        버퍼 플러시

        Raises:
            PersistenceError: 플러시 실패 시
        """
        async with self._lock:
            try:
                self.repository.flush()
            except PersistenceError:
                raise
            except Exception as e:
                raise PersistenceError(f"Flush failed: {e}") from e

    def find_by_key(self, reference_number: str) -> Optional[Opportunity]:
        """참조번호로 조회"""
        return self.repository.find_by_key(reference_number)

    def count(self) -> int:
        """저장된 건수"""
        return self.repository.count()

    def search(self, filters: SearchFilters) -> List[Opportunity]:
        """조건 검색"""
        return self.repository.search_with_filters(filters)

    def find_missing_details(self, limit: int = 50) -> List[Opportunity]:
        """상세 보강 대상 조회"""
        return self.repository.find_missing_details(limit)

    def last_crawl_history(self) -> Optional[CrawlHistory]:
        """최근 실행 이력"""
        return self.repository.last_crawl_history()

    async def close(self) -> None:
        """저장소 종료"""
        async with self._lock:
            try:
                self.repository.close()
            except PersistenceError:
                raise
            except Exception as e:
                raise PersistenceError(f"Close failed: {e}") from e
