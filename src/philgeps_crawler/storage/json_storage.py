"""
JSON 저장소 모듈

수집된 입찰 기회를 JSON 파일로 저장합니다.
OpportunityRepository 인터페이스를 구현하며 Decimal 타입을 지원합니다.

파일 구조:
    data/
    ├── opportunities.json      # reference_number 순 배열
    └── crawl_history.jsonl     # 실행 이력 (추가 전용)
"""

import json
import os
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from philgeps_crawler.exceptions import PersistenceError
from philgeps_crawler.models.crawl_history import CrawlHistory
from philgeps_crawler.models.opportunity import Opportunity, UpsertResult
from philgeps_crawler.storage.repository_interface import (
    SearchFilters,
    select_missing_details,
    sort_by_closing_date,
)
from philgeps_crawler.utils.logger import get_logger

logger = get_logger(__name__)


class DecimalEncoder(json.JSONEncoder):
    """
    Decimal 타입 JSON 인코더

    Decimal과 datetime 타입을 JSON 직렬화 가능한 형식으로 변환합니다.
    """

    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


class JsonOpportunityRepository:
    """
    JSON 파일 저장소

    OpportunityRepository 인터페이스를 구현합니다.
    전체 레코드를 메모리에 올려 두고 변경분을 flush() 시 원자적으로 기록합니다.

    Features:
        - 병합 갱신: Opportunity.merged_with() (null이 값을 덮어쓰지 않음)
        - 원자적 기록: 임시 파일 작성 후 os.replace
        - 자동 플러시: 변경 건수가 flush_threshold에 도달하면 기록
        - 실행 이력: crawl_history.jsonl에 한 줄씩 추가

    Examples:
        >>> repo = JsonOpportunityRepository(Path("./data"))
        >>> repo.upsert(opportunity)
        UpsertResult(is_new=True, is_updated=False)
        >>> repo.flush()
        True
    """

    def __init__(
        self,
        output_dir: Path,
        filename: str = "opportunities.json",
        history_filename: str = "crawl_history.jsonl",
        pretty: bool = True,
        flush_threshold: int = 10,
    ):
        """
        Args:
            output_dir: 출력 디렉토리
            filename: 레코드 파일명
            history_filename: 실행 이력 파일명
            pretty: 들여쓰기 적용 여부
            flush_threshold: 자동 플러시 기준 변경 건수

        Raises:
            PersistenceError: 기존 파일을 읽을 수 없는 경우
        """
        self.output_dir = Path(output_dir)
        self.filename = filename
        self.history_filename = history_filename
        self.pretty = pretty
        self.flush_threshold = flush_threshold

        self._records: Dict[str, Opportunity] = {}
        self._dirty = 0

        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._load()

    @property
    def output_file(self) -> Path:
        """레코드 파일 경로"""
        return self.output_dir / self.filename

    @property
    def history_file(self) -> Path:
        """실행 이력 파일 경로"""
        return self.output_dir / self.history_filename

    # === OpportunityRepository Interface Implementation ===

    def upsert(self, opportunity: Opportunity) -> UpsertResult:
        """
        입찰 기회 삽입 또는 병합 갱신

        Args:
            opportunity: 저장할 레코드

        Returns:
            UpsertResult
        """
        key = opportunity.reference_number
        existing = self._records.get(key)

        if existing is None:
            self._records[key] = opportunity
            result = UpsertResult(is_new=True)
        else:
            self._records[key] = existing.merged_with(opportunity)
            result = UpsertResult(is_updated=True)

        self._dirty += 1
        if self._dirty >= self.flush_threshold:
            self.flush()
        return result

    def find_by_key(self, reference_number: str) -> Optional[Opportunity]:
        """참조번호로 조회"""
        return self._records.get(reference_number)

    def count(self) -> int:
        """저장된 데이터 건수"""
        return len(self._records)

    def search_with_filters(self, filters: SearchFilters) -> List[Opportunity]:
        """조건 검색"""
        now = datetime.now()
        matched = [o for o in self._records.values() if filters.matches(o, now)]
        ordered = sort_by_closing_date(matched)
        return ordered[filters.offset:filters.offset + filters.limit]

    def find_missing_details(self, limit: int = 50) -> List[Opportunity]:
        """상세 보강 대상 조회"""
        return select_missing_details(self._records.values(), limit)

    def record_crawl_history(self, history: CrawlHistory) -> None:
        """
        실행 이력 추가

        Raises:
            PersistenceError: 파일 기록 실패 시
        """
        try:
            with open(self.history_file, "a", encoding="utf-8") as f:
                f.write(history.model_dump_json() + "\n")
        except OSError as e:
            raise PersistenceError(f"Failed to append crawl history: {e}") from e

    def last_crawl_history(self) -> Optional[CrawlHistory]:
        """가장 최근 실행 이력"""
        if not self.history_file.exists():
            return None

        last_line = None
        with open(self.history_file, "r", encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    last_line = line

        if last_line is None:
            return None

        try:
            return CrawlHistory.model_validate_json(last_line)
        except ValidationError as e:
            logger.warning(f"Invalid crawl history line: {e}")
            return None

    def flush(self) -> bool:
        """
        변경분 기록

        임시 파일에 쓴 뒤 os.replace로 교체하여 부분 기록을 방지합니다.

        Raises:
            PersistenceError: 기록 실패 시
        """
        if not self._dirty:
            return True

        data = [
            self._records[key].model_dump(mode="json")
            for key in sorted(self._records)
        ]
        tmp_file = self.output_file.with_suffix(".tmp")

        try:
            with open(tmp_file, "w", encoding="utf-8") as f:
                json.dump(
                    data,
                    f,
                    ensure_ascii=False,
                    indent=2 if self.pretty else None,
                    cls=DecimalEncoder,
                )
            os.replace(tmp_file, self.output_file)
        except (OSError, TypeError) as e:
            raise PersistenceError(f"Flush failed: {e}") from e

        logger.info(f"JSON saved: {self._dirty} changes (total {len(data)})")
        self._dirty = 0
        return True

    def close(self) -> None:
        """저장소 종료 (변경분 플러시)"""
        self.flush()

    # === 내부 헬퍼 메서드 ===

    def _load(self) -> None:
        """기존 레코드 로드"""
        if not self.output_file.exists():
            return

        try:
            with open(self.output_file, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Cannot read {self.output_file}: {e}") from e

        for item in raw if isinstance(raw, list) else [raw]:
            try:
                opportunity = Opportunity.model_validate(item)
            except ValidationError as e:
                logger.warning(f"Skipping invalid record in {self.output_file}: {e}")
                continue
            self._records[opportunity.reference_number] = opportunity

        logger.debug(f"JSON loaded: {len(self._records)} records")
