"""
상세 페이지 보강기

상세 페이지(SplashBidNoticeAbstractUI.aspx)를 aiohttp로 가져와
두 칸짜리 라벨/값 행을 ITB/RFQ 필드로 매핑합니다.

라벨은 소문자로 바꾸고 콜론을 제거한 뒤 동의어 테이블로 조회합니다.
알 수 없는 라벨은 무시하며, 일치 항목이 없어도 정상 결과(빈 결과)입니다.
"""

import asyncio
import re
from typing import Any, Dict, List, Optional, Tuple

import aiohttp
from bs4 import BeautifulSoup, Tag

from philgeps_crawler.config import BrowserConfig, DetailConfig
from philgeps_crawler.exceptions import DetailFetchError
from philgeps_crawler.models.opportunity import (
    EnrichmentResult,
    ITBDetails,
    Opportunity,
    RFQDetails,
)
from philgeps_crawler.utils.logger import get_logger
from philgeps_crawler.utils.parser import ParserUtils

logger = get_logger(__name__)


# 값 변환 방식
TEXT, BUDGET, INT, EMAIL, PHONE = "text", "budget", "int", "email", "phone"

# 라벨 -> [(그룹, 필드, 변환 방식), ...]
Target = Tuple[str, str, str]

LABEL_MAP: Dict[str, List[Target]] = {
    # 식별/분류
    "solicitation number": [("itb", "solicitation_number", TEXT), ("rfq", "solicitation_number", TEXT)],
    "solicitation no.": [("itb", "solicitation_number", TEXT), ("rfq", "solicitation_number", TEXT)],
    "rfq number": [("rfq", "solicitation_number", TEXT)],
    "reference number": [("rfq", "solicitation_number", TEXT)],
    "trade agreement": [("itb", "trade_agreement", TEXT), ("rfq", "trade_agreement", TEXT)],
    "procurement mode": [("itb", "procurement_mode", TEXT), ("rfq", "procurement_mode", TEXT)],
    "mode of procurement": [("itb", "procurement_mode", TEXT), ("rfq", "procurement_mode", TEXT)],
    "classification": [("itb", "classification", TEXT)],
    "category": [("itb", "category", TEXT), ("rfq", "business_category", TEXT)],
    "business category": [("rfq", "business_category", TEXT)],
    "notice type": [("rfq", "notice_type", TEXT)],
    "request type": [("rfq", "request_type", TEXT)],
    "status": [("itb", "status", TEXT), ("rfq", "status", TEXT)],
    "title": [("rfq", "title", TEXT)],
    "funding source": [("rfq", "funding_source", TEXT)],
    "source of fund": [("rfq", "funding_source", TEXT)],
    "source of funds": [("rfq", "funding_source", TEXT)],

    # 예산/납품
    "approved budget for the contract": [("itb", "approved_budget", BUDGET), ("rfq", "approved_budget", BUDGET)],
    "approved budget": [("itb", "approved_budget", BUDGET), ("rfq", "approved_budget", BUDGET)],
    "delivery period": [("itb", "delivery_period", TEXT), ("rfq", "delivery_period", TEXT)],
    "area of delivery": [("itb", "area_of_delivery", TEXT), ("rfq", "area_of_delivery", TEXT)],
    "area(s) of delivery": [("itb", "area_of_delivery", TEXT), ("rfq", "area_of_delivery", TEXT)],
    "place of delivery": [("rfq", "area_of_delivery", TEXT)],
    "payment terms": [("rfq", "payment_terms", TEXT)],
    "terms of payment": [("rfq", "payment_terms", TEXT)],

    # 기관/담당자
    "client agency": [("itb", "client_agency", TEXT), ("rfq", "client_agency", TEXT)],
    "procuring entity": [("itb", "client_agency", TEXT), ("rfq", "client_agency", TEXT)],
    "contact person": [("itb", "contact_person", TEXT), ("rfq", "contact_person", TEXT)],
    "designation": [("itb", "contact_designation", TEXT)],
    "address": [("itb", "contact_address", TEXT)],
    "telephone no.": [("itb", "contact_phone", PHONE), ("rfq", "contact_number", PHONE)],
    "telephone": [("itb", "contact_phone", PHONE), ("rfq", "contact_number", PHONE)],
    "contact number": [("itb", "contact_phone", PHONE), ("rfq", "contact_number", PHONE)],
    "phone": [("itb", "contact_phone", PHONE), ("rfq", "contact_number", PHONE)],
    "e-mail address": [("itb", "contact_email", EMAIL)],
    "email address": [("itb", "contact_email", EMAIL)],
    "e-mail": [("itb", "contact_email", EMAIL)],
    "email": [("itb", "contact_email", EMAIL)],
    "created by": [("itb", "created_by", TEXT)],
    "bac chairman": [("itb", "bac_chairman", TEXT)],
    "bac secretariat": [("itb", "bac_secretariat", TEXT)],

    # 일정
    "date published": [("itb", "date_posted", TEXT), ("rfq", "published_date", TEXT)],
    "date posted": [("itb", "date_posted", TEXT), ("rfq", "published_date", TEXT)],
    "publish date": [("itb", "date_posted", TEXT), ("rfq", "published_date", TEXT)],
    "last updated": [("itb", "date_last_updated", TEXT)],
    "date last updated": [("itb", "date_last_updated", TEXT)],
    "open date": [("rfq", "open_date", TEXT)],
    "closing date / time": [("itb", "closing_date", TEXT), ("rfq", "close_date", TEXT)],
    "closing date/time": [("itb", "closing_date", TEXT), ("rfq", "close_date", TEXT)],
    "closing date": [("itb", "closing_date", TEXT), ("rfq", "close_date", TEXT)],
    "submission deadline": [("rfq", "submission_deadline", TEXT)],
    "deadline of submission": [("rfq", "submission_deadline", TEXT)],
    "opening date / time": [("itb", "opening_date", TEXT), ("rfq", "opening_date", TEXT)],
    "opening date": [("itb", "opening_date", TEXT), ("rfq", "opening_date", TEXT)],
    "bid opening": [("itb", "opening_date", TEXT), ("rfq", "opening_date", TEXT)],
    "pre-bid conference": [("itb", "pre_bid_conference", TEXT), ("rfq", "pre_bid_conference", TEXT)],

    # 문서/요건
    "bid supplements": [("itb", "bid_supplements", INT)],
    "document request list": [("itb", "document_request_list", INT)],
    "bid documents": [("itb", "bidding_documents_fee", TEXT)],
    "bidding documents": [("itb", "bidding_documents_fee", TEXT)],
    "eligibility requirements": [("itb", "eligibility", TEXT), ("rfq", "eligibility_criteria", TEXT)],
    "eligibility criteria": [("itb", "eligibility", TEXT), ("rfq", "eligibility_criteria", TEXT)],
    "technical specifications": [("rfq", "technical_specifications", TEXT)],
    "additional requirements": [("rfq", "additional_requirements", TEXT)],
    "special instructions": [("rfq", "special_instructions", TEXT)],
    "required documents": [("rfq", "required_documents", TEXT)],
    "description": [("itb", "description", TEXT)],
}

# 본문(설명) 블록으로 인정하는 최소 길이
MIN_DESCRIPTION_LENGTH = 80


def normalize_label(label: str) -> str:
    """라벨 정규화 (소문자, 콜론 제거, 공백 정리)"""
    return ParserUtils.clean_text(label.replace(":", "")).lower()


def coerce_value(kind: str, value: str) -> Any:
    """변환 방식에 따라 값 변환 (변환 불가 시 None)"""
    if kind == BUDGET:
        return ParserUtils.parse_budget(value)
    if kind == INT:
        return ParserUtils.parse_int(value)
    if kind == EMAIL:
        return ParserUtils.extract_email(value)
    if kind == PHONE:
        return ParserUtils.extract_phone(value)
    return value or None


class DetailEnricher:
    """
    상세 페이지 보강기

    하나의 aiohttp.ClientSession을 공유하며, 요청 사이에 detail.request_delay 만큼 대기합니다.

    Examples:
        >>> async with DetailEnricher(detail_config) as enricher:
        ...     result = await enricher.enrich(opportunity)
        ...     opportunity = opportunity.with_enrichment(result)
    """

    def __init__(
        self,
        config: Optional[DetailConfig] = None,
        user_agent: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Args:
            config: 상세 수집 설정
            user_agent: User-Agent 문자열
            session: 외부에서 주입한 세션 (테스트용, 닫지 않음)
        """
        self.config = config or DetailConfig()
        self.user_agent = user_agent or BrowserConfig().user_agent
        self._session = session
        self._owns_session = session is None
        self._last_request_at: Optional[float] = None

    async def __aenter__(self) -> "DetailEnricher":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={
                    "User-Agent": self.user_agent,
                    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                    "Accept-Language": "en-US,en;q=0.9",
                },
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """세션 종료"""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def enrich(self, opportunity: Opportunity) -> EnrichmentResult:
        """
        상세 페이지 보강

        Args:
            opportunity: detail_url이 있는 레코드

        Returns:
            매핑된 필드만 담긴 EnrichmentResult

        Raises:
            DetailFetchError: 네트워크 오류, 2xx 이외 상태, 파싱 실패 시
        """
        url = opportunity.detail_url
        if not url:
            raise DetailFetchError(
                "Opportunity has no detail_url",
                reference_number=opportunity.reference_number,
            )

        await self._pace()
        html = await self._fetch(url, opportunity.reference_number)

        try:
            result = self.parse_detail_page(html)
        except Exception as e:
            raise DetailFetchError(
                f"Failed to parse detail page: {e}",
                url=url,
                reference_number=opportunity.reference_number,
            ) from e

        logger.debug(
            f"상세 보강 [{opportunity.reference_number}]: {result.matched_labels}개 라벨 매핑"
        )
        return result

    async def _pace(self) -> None:
        """요청 간 최소 간격 유지"""
        loop = asyncio.get_running_loop()
        if self._last_request_at is not None and self.config.request_delay > 0:
            elapsed = loop.time() - self._last_request_at
            remaining = self.config.request_delay - elapsed
            if remaining > 0:
                await asyncio.sleep(remaining)
        self._last_request_at = loop.time()

    async def _fetch(self, url: str, reference_number: str) -> str:
        """상세 페이지 HTML 가져오기"""
        session = self._get_session()
        try:
            async with session.get(url) as response:
                if not 200 <= response.status < 300:
                    raise DetailFetchError(
                        f"HTTP {response.status}",
                        url=url,
                        reference_number=reference_number,
                        status_code=response.status,
                    )
                # 잘못된 바이트는 U+FFFD로 대체 (라벨 매핑은 나머지 텍스트로 진행)
                return await response.text(errors="replace")
        except LookupError as e:
            raise DetailFetchError(
                f"Unknown charset: {e}",
                url=url,
                reference_number=reference_number,
            ) from e
        except asyncio.TimeoutError as e:
            raise DetailFetchError(
                f"Timed out after {self.config.request_timeout}s",
                url=url,
                reference_number=reference_number,
            ) from e
        except aiohttp.ClientError as e:
            raise DetailFetchError(
                f"Request failed: {e}",
                url=url,
                reference_number=reference_number,
            ) from e

    # === 파싱 ===

    @classmethod
    def parse_detail_page(cls, html: str) -> EnrichmentResult:
        """
        상세 페이지 HTML 파싱

        Args:
            html: 상세 페이지 HTML

        Returns:
            EnrichmentResult (일치 항목 없으면 두 그룹 모두 None)
        """
        soup = BeautifulSoup(html, "lxml")
        groups: Dict[str, Dict[str, Any]] = {"itb": {}, "rfq": {}}
        matched = 0

        for label, value in cls._label_value_rows(soup):
            targets = LABEL_MAP.get(normalize_label(label))
            if not targets:
                continue

            applied = False
            for group, field, kind in targets:
                if field in groups[group]:
                    continue
                coerced = coerce_value(kind, value)
                if coerced is None:
                    continue
                groups[group][field] = coerced
                applied = True
            if applied:
                matched += 1

        cls._split_contact_person(groups["itb"])

        description = cls._extract_description(soup)
        if description and "description" not in groups["itb"]:
            groups["itb"]["description"] = description
            matched += 1

        return EnrichmentResult(
            itb=ITBDetails(**groups["itb"]) if groups["itb"] else None,
            rfq=RFQDetails(**groups["rfq"]) if groups["rfq"] else None,
            matched_labels=matched,
        )

    @staticmethod
    def _label_value_rows(soup: BeautifulSoup) -> List[Tuple[str, str]]:
        """모든 테이블의 두 칸 라벨/값 행"""
        rows: List[Tuple[str, str]] = []
        for row in soup.find_all("tr"):
            cells = row.find_all("td", recursive=False)
            if len(cells) != 2:
                continue
            label = ParserUtils.clean_text(cells[0].get_text(" "))
            value = ParserUtils.clean_text(cells[1].get_text(" "))
            if label and value:
                rows.append((label, value))
        return rows

    @staticmethod
    def _split_contact_person(itb: Dict[str, Any]) -> None:
        """
        담당자 칸에 이메일/전화번호가 이어 붙은 경우 분리
        """
        person = itb.get("contact_person")
        if not person:
            return

        email = ParserUtils.extract_email(person)
        if email:
            itb.setdefault("contact_email", email)
            person = person.replace(email, " ")

        phone = ParserUtils.extract_phone(person)
        if phone:
            itb.setdefault("contact_phone", phone)
            person = person.replace(phone, " ")

        person = re.sub(r"\(\s*\)", " ", person)
        person = ParserUtils.clean_text(person).strip(" ,;-/")
        if person:
            itb["contact_person"] = person
        else:
            del itb["contact_person"]

    @staticmethod
    def _extract_description(soup: BeautifulSoup) -> Optional[str]:
        """
        공고 본문 추출

        id에 "Description"이 들어간 span을 우선 사용하고,
        없으면 "invitation"이 포함된 가장 긴 텍스트 블록을 사용합니다.
        """
        span = soup.select_one("span[id*=Description]")
        if isinstance(span, Tag):
            text = ParserUtils.clean_text(span.get_text(" "))
            if text:
                return text

        best: Optional[str] = None
        for cell in soup.find_all("td"):
            if cell.find("table") is not None:
                continue
            text = ParserUtils.clean_text(cell.get_text(" "))
            if len(text) < MIN_DESCRIPTION_LENGTH or "invitation" not in text.lower():
                continue
            if best is None or len(text) > len(best):
                best = text
        return best
