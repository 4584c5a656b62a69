"""
SQLite 저장소 모듈

입찰 기회와 실행 이력을 내장 SQLite 데이터베이스에 저장합니다.
OpportunityRepository 인터페이스를 구현합니다.

테이블:
    opportunities   - reference_number 기본 키, ITB/RFQ 그룹은 JSON 컬럼
    crawl_history   - 실행 이력 (추가 전용)
"""

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional

from philgeps_crawler.exceptions import PersistenceError
from philgeps_crawler.models.crawl_history import CrawlHistory
from philgeps_crawler.models.opportunity import (
    ITBDetails,
    Opportunity,
    RFQDetails,
    UpsertResult,
)
from philgeps_crawler.storage.repository_interface import SearchFilters
from philgeps_crawler.utils.logger import get_logger

logger = get_logger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS opportunities (
    reference_number TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    procuring_entity TEXT,
    category TEXT,
    area_of_delivery TEXT,
    approved_budget TEXT,
    currency TEXT NOT NULL DEFAULT 'PHP',
    publish_date TEXT,
    closing_date TEXT,
    status TEXT NOT NULL DEFAULT 'Open',
    detail_url TEXT,
    source_url TEXT,
    crawled_at TEXT NOT NULL,
    itb_json TEXT,
    rfq_json TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_opportunities_closing_date ON opportunities (closing_date);
CREATE INDEX IF NOT EXISTS idx_opportunities_category ON opportunities (category);

CREATE TABLE IF NOT EXISTS crawl_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    crawl_date TEXT NOT NULL,
    opportunities_found INTEGER NOT NULL DEFAULT 0,
    new_opportunities INTEGER NOT NULL DEFAULT 0,
    updated_opportunities INTEGER NOT NULL DEFAULT 0,
    errors INTEGER NOT NULL DEFAULT 0,
    duration_seconds REAL NOT NULL DEFAULT 0,
    status TEXT NOT NULL,
    error_message TEXT,
    page_range TEXT,
    fetch_details INTEGER NOT NULL DEFAULT 0
);
"""

UPSERT_SQL = """
INSERT INTO opportunities (
    reference_number, title, procuring_entity, category, area_of_delivery,
    approved_budget, currency, publish_date, closing_date, status,
    detail_url, source_url, crawled_at, itb_json, rfq_json, created_at, updated_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(reference_number) DO UPDATE SET
    title = excluded.title,
    procuring_entity = excluded.procuring_entity,
    category = excluded.category,
    area_of_delivery = excluded.area_of_delivery,
    approved_budget = excluded.approved_budget,
    currency = excluded.currency,
    publish_date = excluded.publish_date,
    closing_date = excluded.closing_date,
    status = excluded.status,
    detail_url = excluded.detail_url,
    source_url = excluded.source_url,
    crawled_at = excluded.crawled_at,
    itb_json = excluded.itb_json,
    rfq_json = excluded.rfq_json,
    updated_at = excluded.updated_at
"""


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class SqliteOpportunityRepository:
    """
    SQLite 저장소

    기존 레코드가 있으면 Python 측에서 Opportunity.merged_with()로 병합한 뒤
    전체 행을 기록하므로, JSON 저장소와 동일한 병합 규칙을 따릅니다.

    Examples:
        >>> repo = SqliteOpportunityRepository(Path("data/philgeps.db"))
        >>> repo.upsert(opportunity).is_new
        True
        >>> repo.search_with_filters(SearchFilters(keyword="laptop", status="active"))
        [Opportunity(...)]
    """

    def __init__(self, database_path: Path):
        """
        Args:
            database_path: 데이터베이스 파일 경로 (":memory:" 허용)

        Raises:
            PersistenceError: 데이터베이스를 열거나 스키마를 만들 수 없는 경우
        """
        self.database_path = database_path
        if str(database_path) != ":memory:":
            Path(database_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(str(database_path))
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(SCHEMA)
            self._conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open database {database_path}: {e}") from e

        logger.debug(f"SQLite opened: {database_path}")

    # === OpportunityRepository Interface Implementation ===

    def upsert(self, opportunity: Opportunity) -> UpsertResult:
        """
        입찰 기회 삽입 또는 병합 갱신

        Raises:
            PersistenceError: 쓰기 실패 시
        """
        existing = self.find_by_key(opportunity.reference_number)
        record = existing.merged_with(opportunity) if existing else opportunity
        now = datetime.now().isoformat()

        try:
            self._conn.execute(UPSERT_SQL, (
                record.reference_number,
                record.title,
                record.procuring_entity,
                record.category,
                record.area_of_delivery,
                str(record.approved_budget) if record.approved_budget is not None else None,
                record.currency,
                _iso(record.publish_date),
                _iso(record.closing_date),
                record.status,
                record.detail_url,
                record.source_url,
                _iso(record.crawled_at),
                record.itb.model_dump_json() if record.itb else None,
                record.rfq.model_dump_json() if record.rfq else None,
                now,
                now,
            ))
            self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            raise PersistenceError(
                f"Failed to upsert opportunity: {e}",
                reference_number=opportunity.reference_number,
            ) from e

        if existing is None:
            return UpsertResult(is_new=True)
        return UpsertResult(is_updated=True)

    def find_by_key(self, reference_number: str) -> Optional[Opportunity]:
        """참조번호로 조회"""
        row = self._conn.execute(
            "SELECT * FROM opportunities WHERE reference_number = ?",
            (reference_number,),
        ).fetchone()
        return self._row_to_opportunity(row) if row else None

    def count(self) -> int:
        """저장된 건수"""
        return self._conn.execute("SELECT COUNT(*) FROM opportunities").fetchone()[0]

    def search_with_filters(self, filters: SearchFilters) -> List[Opportunity]:
        """
        조건 검색

        Args:
            filters: 검색 조건

        Returns:
            마감일 내림차순 결과 (limit/offset 적용)
        """
        clauses: List[str] = []
        params: List[Any] = []

        if filters.keyword:
            clauses.append(
                "(title LIKE ? OR procuring_entity LIKE ? OR reference_number LIKE ?)"
            )
            pattern = f"%{filters.keyword}%"
            params.extend([pattern, pattern, pattern])

        if filters.category:
            clauses.append("category LIKE ?")
            params.append(f"%{filters.category}%")

        if filters.area:
            clauses.append("area_of_delivery LIKE ?")
            params.append(f"%{filters.area}%")

        if filters.budget_min is not None:
            clauses.append("CAST(approved_budget AS REAL) >= ?")
            params.append(float(filters.budget_min))

        if filters.budget_max is not None:
            clauses.append("CAST(approved_budget AS REAL) <= ?")
            params.append(float(filters.budget_max))

        now = datetime.now().isoformat()
        if filters.status == "active":
            clauses.append("(closing_date IS NULL OR closing_date >= ?)")
            params.append(now)
        elif filters.status == "closed":
            clauses.append("closing_date < ?")
            params.append(now)

        sql = "SELECT * FROM opportunities"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY closing_date IS NULL, closing_date DESC LIMIT ? OFFSET ?"
        params.extend([filters.limit, filters.offset])

        rows = self._conn.execute(sql, params).fetchall()
        return [self._row_to_opportunity(row) for row in rows]

    def find_missing_details(self, limit: int = 50) -> List[Opportunity]:
        """상세 보강 대상 조회 (itb_json 없음, detail_url 있음)"""
        rows = self._conn.execute(
            """
            SELECT * FROM opportunities
            WHERE itb_json IS NULL AND detail_url IS NOT NULL AND detail_url != ''
            ORDER BY closing_date IS NULL, closing_date DESC
            LIMIT ?
            """,
            (limit,),
        ).fetchall()
        return [self._row_to_opportunity(row) for row in rows]

    def record_crawl_history(self, history: CrawlHistory) -> None:
        """
        실행 이력 추가

        Raises:
            PersistenceError: 쓰기 실패 시
        """
        try:
            self._conn.execute(
                """
                INSERT INTO crawl_history (
                    crawl_date, opportunities_found, new_opportunities,
                    updated_opportunities, errors, duration_seconds,
                    status, error_message, page_range, fetch_details
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    history.timestamp.isoformat(),
                    history.found,
                    history.new,
                    history.updated,
                    history.errors,
                    history.duration_seconds,
                    history.status,
                    history.error_message,
                    history.page_range,
                    int(history.fetch_details),
                ),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            raise PersistenceError(f"Failed to record crawl history: {e}") from e

    def last_crawl_history(self) -> Optional[CrawlHistory]:
        """가장 최근 실행 이력"""
        row = self._conn.execute(
            "SELECT * FROM crawl_history ORDER BY id DESC LIMIT 1"
        ).fetchone()
        if row is None:
            return None

        return CrawlHistory(
            timestamp=datetime.fromisoformat(row["crawl_date"]),
            found=row["opportunities_found"],
            new=row["new_opportunities"],
            updated=row["updated_opportunities"],
            errors=row["errors"],
            duration_seconds=row["duration_seconds"],
            status=row["status"],
            error_message=row["error_message"],
            page_range=row["page_range"],
            fetch_details=bool(row["fetch_details"]),
        )

    def flush(self) -> bool:
        """커밋 (upsert마다 커밋하므로 대기 중인 변경만 반영)"""
        try:
            self._conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Commit failed: {e}") from e
        return True

    def close(self) -> None:
        """연결 종료"""
        self.flush()
        self._conn.close()
        logger.debug(f"SQLite closed: {self.database_path}")

    # === 내부 헬퍼 메서드 ===

    @staticmethod
    def _row_to_opportunity(row: sqlite3.Row) -> Opportunity:
        """행을 모델로 변환"""
        return Opportunity(
            reference_number=row["reference_number"],
            title=row["title"],
            procuring_entity=row["procuring_entity"],
            category=row["category"],
            area_of_delivery=row["area_of_delivery"],
            approved_budget=row["approved_budget"],
            currency=row["currency"],
            publish_date=row["publish_date"],
            closing_date=row["closing_date"],
            status=row["status"],
            detail_url=row["detail_url"],
            source_url=row["source_url"],
            crawled_at=row["crawled_at"],
            itb=ITBDetails.model_validate_json(row["itb_json"]) if row["itb_json"] else None,
            rfq=RFQDetails.model_validate_json(row["rfq_json"]) if row["rfq_json"] else None,
        )
