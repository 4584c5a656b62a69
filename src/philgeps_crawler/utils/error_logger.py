"""
실행별 오류 기록 모듈

크롤링 실행마다 JSONL 오류 파일(logs/errors/<log_type>-<timestamp>.jsonl)을 만들고,
실행 종료 시 문맥(context)별 집계가 담긴 요약 JSON을 작성합니다.

파일 구조:
    logs/errors/
    ├── crawler-20250101T120000.jsonl           # 한 줄에 하나의 항목
    └── crawler-20250101T120000-summary.json    # finalize() 결과
"""

import json
import time
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from philgeps_crawler.models.crawl_history import ErrorLogEntry
from philgeps_crawler.utils.logger import get_logger

logger = get_logger(__name__)


class ErrorLogger:
    """
    실행별 오류 기록기

    log_error()로 기록한 항목은 메모리에도 보관되어 finalize() 시 집계됩니다.
    info/warning 항목은 파일에만 기록되며 오류 수에 포함되지 않습니다.

    Examples:
        >>> error_log = ErrorLogger(Path("logs/errors"), log_type="crawler")
        >>> error_log.log_error("page_navigation", exc, {"page": 4})
        >>> summary = error_log.finalize({"found": 120})
        >>> summary["total_errors"]
        1
    """

    def __init__(self, log_dir: Path, log_type: str = "crawler"):
        """
        Args:
            log_dir: 오류 로그 디렉토리
            log_type: 파일명 접두사 (crawler, detail 등)
        """
        self.log_dir = Path(log_dir)
        self.log_type = log_type
        self.started_at = datetime.now()
        self._errors: List[ErrorLogEntry] = []

        timestamp = self.started_at.strftime("%Y%m%dT%H%M%S")
        self.log_file = self.log_dir / f"{log_type}-{timestamp}.jsonl"
        self.summary_file = self.log_dir / f"{log_type}-{timestamp}-summary.json"

    @property
    def errors(self) -> List[ErrorLogEntry]:
        """기록된 오류 목록"""
        return list(self._errors)

    @property
    def error_count(self) -> int:
        """기록된 오류 수"""
        return len(self._errors)

    def log_error(
        self,
        context: str,
        error: BaseException | str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ErrorLogEntry:
        """
        오류 기록

        Args:
            context: 발생 위치 (예: "page_navigation", "detail_fetch", "persistence")
            error: 예외 또는 오류 메시지
            metadata: 추가 정보 (페이지 번호, 참조번호 등)

        Returns:
            기록된 ErrorLogEntry
        """
        entry = ErrorLogEntry(
            level="error",
            context=context,
            error=str(error),
            error_type=type(error).__name__ if isinstance(error, BaseException) else None,
            sequence_number=len(self._errors) + 1,
            metadata=metadata or {},
        )
        self._errors.append(entry)
        self._write(entry)

        logger.debug(f"[{self.log_type}] {context}: {entry.error}")
        return entry

    def log_warning(
        self,
        context: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """경고 기록 (오류 수에 포함되지 않음)"""
        self._write(ErrorLogEntry(
            level="warning",
            context=context,
            error=message,
            metadata=metadata or {},
        ))

    def log_info(
        self,
        context: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """정보 기록 (오류 수에 포함되지 않음)"""
        self._write(ErrorLogEntry(
            level="info",
            context=context,
            error=message,
            metadata=metadata or {},
        ))

    def errors_by_context(self) -> Dict[str, int]:
        """문맥별 오류 수 (많은 순)"""
        counts = Counter(entry.context for entry in self._errors)
        return dict(counts.most_common())

    def finalize(self, summary: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        실행 종료 요약 작성

        Args:
            summary: 호출 측 요약 정보 (CrawlStats 등)

        Returns:
            요약 딕셔너리 (summary 파일에 기록된 내용과 동일)
        """
        ended_at = datetime.now()
        result: Dict[str, Any] = {
            "log_type": self.log_type,
            "started_at": self.started_at.isoformat(),
            "ended_at": ended_at.isoformat(),
            "duration_seconds": round((ended_at - self.started_at).total_seconds(), 2),
            "total_errors": len(self._errors),
            "errors_by_context": self.errors_by_context(),
            "errors": [
                {
                    "timestamp": entry.timestamp.isoformat(),
                    "context": entry.context,
                    "message": entry.error,
                    "metadata": entry.metadata,
                }
                for entry in self._errors
            ],
            "summary": summary or {},
        }

        self.log_dir.mkdir(parents=True, exist_ok=True)
        with open(self.summary_file, "w", encoding="utf-8") as f:
            json.dump(result, f, ensure_ascii=False, indent=2, default=str)

        if self._errors:
            logger.warning(
                f"오류 {len(self._errors)}건 기록됨: {self.summary_file} "
                f"({', '.join(f'{k}={v}' for k, v in result['errors_by_context'].items())})"
            )
        return result

    def _write(self, entry: ErrorLogEntry) -> None:
        """JSONL 파일에 한 줄 추가"""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        with open(self.log_file, "a", encoding="utf-8") as f:
            f.write(entry.model_dump_json() + "\n")

    @staticmethod
    def clean_old_logs(log_dir: Path, days: int = 7) -> int:
        """
        오래된 로그 파일 삭제

        Args:
            log_dir: 오류 로그 디렉토리
            days: 보관 기간 (일)

        Returns:
            삭제된 파일 수
        """
        log_dir = Path(log_dir)
        if not log_dir.exists():
            return 0

        cutoff = time.time() - days * 86400
        removed = 0
        for path in log_dir.iterdir():
            if path.is_file() and path.stat().st_mtime < cutoff:
                path.unlink()
                removed += 1
                logger.info(f"오래된 로그 삭제: {path.name}")
        return removed
