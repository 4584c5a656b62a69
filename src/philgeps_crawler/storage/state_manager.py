"""
상태 관리자 모듈

크롤링 상태를 파일로 저장/로드하여 중단점에서 재시작할 수 있도록 합니다.
저장은 임시 파일 작성 후 os.replace로 교체하는 원자적 방식이며,
교체 직전의 파일은 .backup.json으로 보관됩니다.
"""

import json
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from philgeps_crawler.models.crawl_state import BatchRecord, CrawlState
from philgeps_crawler.utils.logger import get_logger

logger = get_logger(__name__)


class StateManager:
    """
    크롤링 상태 관리자

    상태 파일을 통해 크롤링 진행 상황을 영속화합니다.
    오류 발생 시에도 마지막으로 저장이 확인된 배치 다음부터 재시작할 수 있습니다.
    """

    def __init__(self, state_file: Path):
        """
        Args:
            state_file: 상태 파일 경로
        """
        self.state_file = Path(state_file)
        self.backup_file = self.state_file.with_suffix(".backup.json")
        self.tmp_file = self.state_file.with_suffix(".tmp")
        self._state: Optional[CrawlState] = None

    @property
    def state(self) -> CrawlState:
        """현재 상태 (없으면 새로 생성)"""
        if self._state is None:
            self._state = CrawlState(
                run_id=datetime.now().strftime("%Y%m%d_%H%M%S")
            )
        return self._state

    def initialize(
        self,
        run_id: str,
        start_page: int = 1,
        end_page: Optional[int] = None,
        resume: bool = True,
    ) -> CrawlState:
        """
        상태 초기화

        resume=True이고 완료되지 않은 이전 상태가 같은 범위이며 남은 페이지가 있을 때만
        그 상태를 이어서 사용합니다. 범위가 다르면 새 상태로 시작합니다.

        Args:
            run_id: 실행 ID
            start_page: 요청 시작 페이지
            end_page: 요청 종료 페이지 (None이면 저장된 범위를 따름)
            resume: True면 이전 상태에서 재시작, False면 새로 시작

        Returns:
            초기화된 상태
        """
        if resume and self.state_file.exists():
            loaded = self.load()
            if loaded and not loaded.is_completed:
                if not loaded.matches_range(start_page, end_page):
                    logger.warning(
                        f"요청 범위 {start_page}-{end_page}가 미완료 실행 범위 "
                        f"{loaded.start_page}-{loaded.end_page}와 달라 새로 시작합니다"
                    )
                elif not loaded.has_remaining_pages:
                    logger.info("이전 상태에 남은 페이지가 없어 새로 시작합니다")
                else:
                    logger.info(
                        f"이전 상태에서 재시작: "
                        f"마지막 완료 페이지 {loaded.last_completed_page}, "
                        f"재시도 대기 {len(loaded.failed_pages)}페이지"
                    )
                    self._state = loaded
                    self._state.run_id = run_id
                    return self._state

        # 새 상태 생성
        self._state = CrawlState(
            run_id=run_id,
            start_page=start_page,
            end_page=end_page,
            last_completed_page=start_page - 1,
        )
        logger.info(f"새 크롤링 시작: {run_id}")
        return self._state

    def load(self) -> Optional[CrawlState]:
        """
        상태 파일 로드

        본 파일이 손상된 경우 백업 파일에서 복원을 시도합니다.

        Returns:
            로드된 상태 또는 None (파일 없거나 오류 시)
        """
        if not self.state_file.exists():
            logger.debug(f"상태 파일 없음: {self.state_file}")
            return None

        try:
            state = self._read(self.state_file)
            logger.info(f"상태 로드 완료: {self.state_file}")
            return state

        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.error(f"상태 로드 실패: {e}")

            # 백업에서 복원 시도
            if self.backup_file.exists():
                logger.info("백업에서 복원 시도...")
                try:
                    state = self._read(self.backup_file)
                    shutil.copy(self.backup_file, self.state_file)
                    return state
                except (OSError, json.JSONDecodeError, ValidationError) as be:
                    logger.error(f"백업 복원 실패: {be}")

            return None

    def save(self) -> bool:
        """
        상태 파일 원자적 저장

        Returns:
            저장 성공 여부
        """
        if self._state is None:
            return False

        try:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)

            # 기존 파일 백업
            if self.state_file.exists():
                shutil.copy(self.state_file, self.backup_file)

            with open(self.tmp_file, "w", encoding="utf-8") as f:
                f.write(self._state.model_dump_json(indent=2))
                f.flush()
                os.fsync(f.fileno())

            os.replace(self.tmp_file, self.state_file)

            logger.debug(f"상태 저장 완료: {self.state_file}")
            return True

        except OSError as e:
            logger.error(f"상태 저장 실패: {e}")
            return False

    def record_batch(self, record: BatchRecord) -> None:
        """배치 결과 반영 후 저장"""
        self.state.record_batch(record)
        self.save()

    def mark_page_recovered(self, page: int, opportunities: int = 0) -> None:
        """재시도 성공 페이지 처리 후 저장"""
        self.state.mark_page_recovered(page, opportunities)
        self.save()

    def abandon_page(self, page: int, error: Optional[str] = None) -> None:
        """재시도 실패 페이지 처리 후 저장"""
        self.state.abandon_page(page, error)
        self.save()

    def set_total_pages(self, total_pages: int) -> None:
        """전체 페이지 수 기록"""
        self.state.total_pages = total_pages

    def record_error(self, error: str) -> None:
        """오류 기록"""
        self.state.record_error(error)

    def mark_completed(self) -> None:
        """크롤링 완료 처리"""
        self.state.mark_completed()
        self.save()

    def get_resume_page(self) -> int:
        """
        재시작 페이지 반환

        Returns:
            last_completed_page + 1 (요청 시작 페이지 이상)
        """
        return self.state.next_page

    def cleanup(self, remove_backup: bool = True) -> None:
        """
        상태 파일 정리

        Args:
            remove_backup: 백업 파일도 삭제할지 여부
        """
        if self.state_file.exists():
            self.state_file.unlink()
            logger.info(f"상태 파일 삭제: {self.state_file}")

        if remove_backup and self.backup_file.exists():
            self.backup_file.unlink()
            logger.debug(f"백업 파일 삭제: {self.backup_file}")

        self._state = None

    @staticmethod
    def _read(path: Path) -> CrawlState:
        with open(path, "r", encoding="utf-8") as f:
            return CrawlState.model_validate(json.load(f))
