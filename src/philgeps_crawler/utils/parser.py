"""
파싱 유틸리티

텍스트 파싱, 데이터 변환 관련 유틸리티 함수를 제공합니다.
브라우저 없이 독립적으로 테스트 가능한 순수 함수 모음입니다.
"""

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, Tuple
from urllib.parse import parse_qsl, urljoin, urlparse


class ParserUtils:
    """
    파싱 유틸리티 클래스

    금액, 날짜, 참조번호, postback 인자 등의 문자열 파싱을 담당합니다.
    모든 메서드는 정적 메서드로 구현되어 상태를 갖지 않습니다.

    Examples:
        >>> ParserUtils.parse_budget("PHP 1,234,567.50")
        Decimal('1234567.50')

        >>> ParserUtils.parse_date("30/10/2026 02:00 PM")
        datetime.datetime(2026, 10, 30, 14, 0)
    """

    # DD/MM/YYYY [H:MM AM|PM]
    DATE_PATTERN = re.compile(
        r"^(\d{1,2})/(\d{1,2})/(\d{4})(?:\s+(\d{1,2}):(\d{2})\s*([AaPp][Mm]))?"
    )

    # 통화 표시 앞뒤의 금액 ("PHP 1,000.00", "₱500", "1,000 PHP")
    CURRENCY_AMOUNT_PATTERNS = (
        re.compile(r"(?:PHP|₱)\s*(\d[\d,]*(?:\.\d+)?)", re.IGNORECASE),
        re.compile(r"(\d[\d,]*(?:\.\d+)?)\s*(?:PHP|₱)", re.IGNORECASE),
    )
    # 통화 표시가 없을 때는 문자열 전체가 금액이어야 함
    PLAIN_AMOUNT_PATTERN = re.compile(r"\d[\d,]*(?:\.\d+)?")

    # 날짜처럼 보이는 문자열 (카테고리/기관명 분리 시 제외 대상)
    DATE_LIKE_PATTERNS = (
        re.compile(r"\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}"),
        re.compile(r"\d{4}[/\-]\d{1,2}[/\-]\d{1,2}"),
    )

    # __doPostBack('target','argument')
    POSTBACK_PATTERN = re.compile(
        r"__doPostBack\(\s*['\"]([^'\"]*)['\"]\s*,\s*['\"]([^'\"]*)['\"]\s*\)"
    )

    EMAIL_PATTERN = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")
    PHONE_PATTERN = re.compile(r"\+?\d[\d\s()\-/]{5,}\d")

    @staticmethod
    def clean_text(text: Optional[str]) -> str:
        """
        텍스트 정리 (공백, 줄바꿈 정규화)

        연속된 공백/줄바꿈을 단일 공백으로 변환하고 앞뒤 공백을 제거합니다.

        Args:
            text: 원본 텍스트

        Returns:
            정리된 텍스트

        Examples:
            >>> ParserUtils.clean_text("  hello   world  ")
            'hello world'

            >>> ParserUtils.clean_text("line1\\n\\n  line2")
            'line1 line2'
        """
        if not text:
            return ""
        text = re.sub(r"\s+", " ", text.replace("\xa0", " "))
        return text.strip()

    @staticmethod
    def parse_budget(text: Optional[str]) -> Optional[Decimal]:
        """
        금액 문자열 파싱

        통화 표시(PHP, ₱) 바로 옆의 금액을 읽습니다. 통화 표시가 없으면 문자열 전체가
        숫자(천 단위 구분자 허용)일 때만 변환합니다. 음수는 받지 않습니다.

        Args:
            text: 금액 문자열 (예: "PHP 1,234,567.50", "₱ 500,000")

        Returns:
            파싱된 Decimal 값 또는 None (파싱 실패 시)

        Examples:
            >>> ParserUtils.parse_budget("₱ 500,000")
            Decimal('500000')

            >>> ParserUtils.parse_budget("Lot 2 - PHP 500,000")
            Decimal('500000')

            >>> ParserUtils.parse_budget("N/A")
            None
        """
        if not text:
            return None

        amount = None
        for pattern in ParserUtils.CURRENCY_AMOUNT_PATTERNS:
            match = pattern.search(text)
            if match:
                amount = match.group(1)
                break
        else:
            stripped = text.strip()
            if ParserUtils.PLAIN_AMOUNT_PATTERN.fullmatch(stripped):
                amount = stripped

        if amount is None:
            return None

        try:
            return Decimal(amount.replace(",", ""))
        except InvalidOperation:
            return None

    @staticmethod
    def parse_date(text: Optional[str]) -> Optional[datetime]:
        """
        날짜/시간 문자열 파싱

        DD/MM/YYYY 형식에 선택적인 "H:MM AM|PM" 시간이 붙은 문자열을 변환합니다.
        12 AM은 0시, 12 PM은 12시로 처리합니다.

        Args:
            text: 날짜/시간 문자열

        Returns:
            파싱된 datetime 또는 None (파싱 실패 시)

        Examples:
            >>> ParserUtils.parse_date("26/05/2025")
            datetime.datetime(2025, 5, 26, 0, 0)

            >>> ParserUtils.parse_date("30/10/2026 12:15 AM")
            datetime.datetime(2026, 10, 30, 0, 15)
        """
        if not text:
            return None

        match = ParserUtils.DATE_PATTERN.match(ParserUtils.clean_text(text))
        if not match:
            return None

        day, month, year, hour, minute, ampm = match.groups()
        hours = int(hour) if hour else 0
        if ampm:
            ampm = ampm.upper()
            if ampm == "PM" and hours != 12:
                hours += 12
            elif ampm == "AM" and hours == 12:
                hours = 0

        try:
            return datetime(
                int(year), int(month), int(day), hours, int(minute) if minute else 0
            )
        except ValueError:
            return None

    @staticmethod
    def is_date_like(text: Optional[str]) -> bool:
        """날짜처럼 보이는 문자열인지 확인"""
        if not text:
            return False
        return any(p.search(text) for p in ParserUtils.DATE_LIKE_PATTERNS)

    @staticmethod
    def extract_reference_number(href: Optional[str]) -> Optional[str]:
        """
        상세 링크에서 참조번호(refID 쿼리 파라미터) 추출

        파라미터 이름은 대소문자를 구분하지 않습니다.

        Args:
            href: 상세 페이지 링크

        Returns:
            참조번호 또는 None

        Examples:
            >>> ParserUtils.extract_reference_number(
            ...     "SplashBidNoticeAbstractUI.aspx?menuIndex=3&refID=12345"
            ... )
            '12345'
        """
        if not href:
            return None

        for key, value in parse_qsl(urlparse(href).query, keep_blank_values=True):
            if key.lower() == "refid":
                value = value.strip()
                return value or None
        return None

    @staticmethod
    def normalize_url(url: Optional[str], base_url: str) -> str:
        """
        URL 정규화

        상대 경로를 base_url 기준 절대 경로로 변환합니다.

        Args:
            url: 상대 또는 절대 URL
            base_url: 기준 URL

        Returns:
            정규화된 절대 URL

        Examples:
            >>> ParserUtils.normalize_url(
            ...     "SplashBidNoticeAbstractUI.aspx?refID=1",
            ...     "https://notices.philgeps.gov.ph/GEPSNONPILOT/Tender/",
            ... )
            'https://notices.philgeps.gov.ph/GEPSNONPILOT/Tender/SplashBidNoticeAbstractUI.aspx?refID=1'
        """
        if not url:
            return ""
        if url.startswith(("http://", "https://")):
            return url
        return urljoin(base_url, url)

    @staticmethod
    def parse_postback_args(script: Optional[str]) -> Optional[Tuple[str, str]]:
        """
        __doPostBack 호출에서 (target, argument) 추출

        Args:
            script: onclick 또는 href 스크립트 문자열

        Returns:
            (target, argument) 튜플 또는 None

        Examples:
            >>> ParserUtils.parse_postback_args(
            ...     "javascript:__doPostBack('pgCtrlDetailedSearch$nextLB','')"
            ... )
            ('pgCtrlDetailedSearch$nextLB', '')
        """
        if not script:
            return None
        match = ParserUtils.POSTBACK_PATTERN.search(script)
        if not match:
            return None
        return match.group(1), match.group(2)

    @staticmethod
    def split_trailing_segments(cell_text: str, title: str) -> list[str]:
        """
        제목 뒤에 이어지는 쉼표 구분 텍스트 분리

        날짜처럼 보이는 조각과 빈 조각은 제외합니다.

        Args:
            cell_text: 제목이 포함된 셀 전체 텍스트
            title: 제목 텍스트

        Returns:
            남은 조각 리스트 (보통 [카테고리, 기관명])

        Examples:
            >>> ParserUtils.split_trailing_segments(
            ...     "Supply of Laptops, Information Technology, DepEd", "Supply of Laptops"
            ... )
            ['Information Technology', 'DepEd']
        """
        text = ParserUtils.clean_text(cell_text)
        title = ParserUtils.clean_text(title)

        index = text.find(title) if title else -1
        after = text[index + len(title):] if index >= 0 else text

        segments = [s.strip() for s in after.split(",")]
        return [s for s in segments if s and not ParserUtils.is_date_like(s)]

    @staticmethod
    def parse_int(text: Optional[str]) -> Optional[int]:
        """문자열에서 첫 정수 추출"""
        if not text:
            return None
        match = re.search(r"\d+", text.replace(",", ""))
        return int(match.group(0)) if match else None

    @staticmethod
    def extract_email(text: Optional[str]) -> Optional[str]:
        """문자열에서 이메일 주소 추출"""
        if not text:
            return None
        match = ParserUtils.EMAIL_PATTERN.search(text)
        return match.group(0) if match else None

    @staticmethod
    def extract_phone(text: Optional[str]) -> Optional[str]:
        """문자열에서 전화번호 추출"""
        if not text:
            return None
        match = ParserUtils.PHONE_PATTERN.search(text)
        return ParserUtils.clean_text(match.group(0)) if match else None
