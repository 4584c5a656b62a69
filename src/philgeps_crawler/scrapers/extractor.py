"""
목록 페이지 추출기

렌더링된 검색 결과 HTML을 BeautifulSoup(lxml)으로 파싱하여 Opportunity 목록을 만듭니다.
부수 효과는 로깅뿐입니다.

결과 행 구조:
    cells[0]  게시일 (DD/MM/YYYY)
    cells[1]  마감일 (DD/MM/YYYY H:MM AM|PM)
    cells[2]  제목 링크 + ", 카테고리, 기관명"
"""

import math
import re
from typing import List, Optional

from bs4 import BeautifulSoup, Tag
from pydantic import BaseModel, Field

from philgeps_crawler.exceptions import ExtractionSkip
from philgeps_crawler.models.opportunity import Opportunity
from philgeps_crawler.utils.logger import get_logger
from philgeps_crawler.utils.parser import ParserUtils

logger = get_logger(__name__)


DETAIL_LINK_MARKER = "SplashBidNoticeAbstractUI.aspx"
TABLE_TEXT_MARKERS = ("Publish Date", "Closing Date")
TOTAL_PATTERN = re.compile(r"([\d,]+)\s+opportunit(?:y|ies)\s+found", re.IGNORECASE)


class ListingSummary(BaseModel):
    """목록 페이지 요약 정보"""

    total_opportunities: Optional[int] = Field(default=None, description="전체 공고 수")
    max_visible_page: Optional[int] = Field(default=None, description="보이는 최대 페이지 번호")
    rows_on_page: int = Field(default=0, description="현재 페이지 행 수")

    def estimate_total_pages(self, default_total_pages: int = 100) -> int:
        """
        전체 페이지 수 추정

        max(보이는 최대 페이지, ceil(전체 공고 수 / 페이지당 행 수))를 반환합니다.
        둘 다 알 수 없으면 default_total_pages를 사용합니다.

        Examples:
            >>> summary = ListingSummary(total_opportunities=95, max_visible_page=3, rows_on_page=20)
            >>> summary.estimate_total_pages()
            5
        """
        candidates = []
        if self.max_visible_page:
            candidates.append(self.max_visible_page)
        if self.total_opportunities and self.rows_on_page:
            candidates.append(math.ceil(self.total_opportunities / self.rows_on_page))

        if not candidates:
            return default_total_pages
        return max(candidates)


class Extractor:
    """
    검색 결과 HTML 추출기

    Examples:
        >>> extractor = Extractor(base_url="https://notices.philgeps.gov.ph/GEPSNONPILOT/Tender/")
        >>> opportunities = extractor.extract(html, source_url=search_url)
        >>> summary = extractor.parse_summary(html)
    """

    def __init__(self, base_url: str):
        """
        Args:
            base_url: 상대 상세 링크를 절대 경로로 바꿀 기준 URL
        """
        self.base_url = base_url

    def extract(self, html: str, source_url: Optional[str] = None) -> List[Opportunity]:
        """
        목록 HTML에서 레코드 추출

        필수 필드(제목, 링크, refID)가 없는 행은 건너뜁니다.
        같은 페이지 내 중복 참조번호는 첫 행만 남깁니다.

        Args:
            html: 렌더링된 HTML
            source_url: 수집 원본 URL

        Returns:
            Opportunity 리스트
        """
        soup = BeautifulSoup(html, "lxml")
        table = self._find_results_table(soup)
        if table is None:
            logger.warning("결과 테이블을 찾을 수 없음")
            return []

        opportunities: List[Opportunity] = []
        seen: set = set()

        for index, row in enumerate(table.find_all("tr")):
            try:
                opportunity = self._parse_row(row, index, source_url)
            except ExtractionSkip as e:
                logger.debug(f"행 건너뜀 #{index}: {e.reason}")
                continue

            if opportunity.reference_number in seen:
                continue
            seen.add(opportunity.reference_number)
            opportunities.append(opportunity)

        logger.debug(f"{len(opportunities)}건 추출")
        return opportunities

    def parse_summary(self, html: str) -> ListingSummary:
        """
        목록 페이지 요약 파싱

        - "N opportunities found" 문구에서 전체 공고 수
        - 숫자로 된 페이지 링크 중 최대값
        - 현재 페이지 행 수
        """
        soup = BeautifulSoup(html, "lxml")

        total = None
        match = TOTAL_PATTERN.search(soup.get_text(" "))
        if match:
            total = int(match.group(1).replace(",", ""))

        page_numbers = [
            int(text)
            for text in (ParserUtils.clean_text(a.get_text()) for a in soup.find_all("a"))
            if text.isdigit()
        ]

        rows = len(self.extract(html))

        return ListingSummary(
            total_opportunities=total,
            max_visible_page=max(page_numbers) if page_numbers else None,
            rows_on_page=rows,
        )

    # === 내부 헬퍼 메서드 ===

    def _find_results_table(self, soup: BeautifulSoup) -> Optional[Tag]:
        """
        결과 테이블 탐색

        표식 문구나 상세 링크를 포함한 테이블 중, 그런 테이블을 하위에 두지 않은
        가장 안쪽의 첫 테이블을 반환합니다.
        """
        candidates = [t for t in soup.find_all("table") if self._is_results_table(t)]
        for table in candidates:
            nested = any(
                other is not table and any(p is table for p in other.parents)
                for other in candidates
            )
            if not nested:
                return table
        return None

    @staticmethod
    def _is_results_table(table: Tag) -> bool:
        text = table.get_text(" ")
        if any(marker in text for marker in TABLE_TEXT_MARKERS):
            return True
        return table.find("a", href=lambda h: h and DETAIL_LINK_MARKER in h) is not None

    def _parse_row(self, row: Tag, index: int, source_url: Optional[str]) -> Opportunity:
        """
        결과 행 파싱

        Raises:
            ExtractionSkip: 헤더 행이거나 필수 필드가 없는 경우
        """
        if row.find("th") is not None:
            raise ExtractionSkip("header row", index)

        cells = row.find_all("td", recursive=False)
        if len(cells) < 3:
            raise ExtractionSkip("fewer than 3 cells", index)

        link = row.find("a", href=lambda h: h and DETAIL_LINK_MARKER in h)
        if link is None:
            raise ExtractionSkip("no detail link", index)

        title = ParserUtils.clean_text(link.get_text(" "))
        href = link.get("href")
        if not title or not href:
            raise ExtractionSkip("missing title or link", index)

        reference_number = ParserUtils.extract_reference_number(href)
        if not reference_number:
            raise ExtractionSkip("missing refID", index)

        segments = ParserUtils.split_trailing_segments(cells[2].get_text(" "), title)

        return Opportunity(
            reference_number=reference_number,
            title=title,
            category=segments[0] if len(segments) > 0 else None,
            procuring_entity=segments[1] if len(segments) > 1 else None,
            publish_date=ParserUtils.parse_date(cells[0].get_text(" ")),
            closing_date=ParserUtils.parse_date(cells[1].get_text(" ")),
            detail_url=ParserUtils.normalize_url(href, self.base_url),
            source_url=source_url,
        )
