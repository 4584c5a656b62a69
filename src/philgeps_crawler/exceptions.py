"""
도메인 예외 정의

크롤링 파이프라인에서 발생하는 예외를 정의합니다.
모든 예외는 PhilGEPSCrawlerException을 상속하며 details 딕셔너리로 문맥을 전달합니다.

처리 원칙:
    - NavigationError / DetailFetchError: 페이지/항목 단위로 기록 후 계속 진행
    - ExtractionSkip: 오류가 아님 (필수 필드 없는 행 건너뛰기)
    - PersistenceError: 오류 카운트 증가 후 계속 진행
    - ConfigError: 시작 시점에 치명적 (0이 아닌 종료 코드)
"""

from typing import Optional


class PhilGEPSCrawlerException(Exception):
    """
    기본 예외 클래스

    모든 philgeps_crawler 예외의 기본 클래스입니다.
    상세 정보를 담을 수 있는 details 딕셔너리를 제공합니다.
    """

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


class NavigationError(PhilGEPSCrawlerException):
    """
    페이지네이션 전환 실패

    postback 트리거를 찾지 못했거나, 타임아웃 내에 새 결과 행이
    나타나지 않은 경우 발생합니다.

    Attributes:
        page_number: 이동하려던 페이지 번호
        url: 현재 페이지 URL

    Examples:
        >>> raise NavigationError(
        ...     "No new rows after postback",
        ...     page_number=4,
        ... )
    """

    def __init__(
        self,
        message: str,
        page_number: Optional[int] = None,
        url: Optional[str] = None,
    ):
        details = {}
        if page_number is not None:
            details["page_number"] = page_number
        if url:
            details["url"] = url

        super().__init__(message, details)
        self.page_number = page_number
        self.url = url


class ExtractionSkip(PhilGEPSCrawlerException):
    """
    행 건너뛰기 신호

    제목, 링크, 참조번호 등 필수 필드가 없는 행에서 발생합니다.
    Extractor 내부에서만 사용되며 오류로 집계되지 않습니다.
    """

    def __init__(self, reason: str, row_index: Optional[int] = None):
        details = {"row_index": row_index} if row_index is not None else None
        super().__init__(reason, details)
        self.reason = reason
        self.row_index = row_index


class DetailFetchError(PhilGEPSCrawlerException):
    """
    상세 페이지 수집 실패

    네트워크 오류, 비정상 HTTP 상태, 파싱 실패 시 발생합니다.
    호출 측에서 기록 후 다른 항목 처리를 계속해야 합니다.

    Attributes:
        url: 상세 페이지 URL
        reference_number: 대상 공고 참조번호
        status_code: HTTP 상태 코드 (있는 경우)

    Examples:
        >>> raise DetailFetchError(
        ...     "HTTP 503",
        ...     url="https://notices.philgeps.gov.ph/...refID=123",
        ...     reference_number="123",
        ...     status_code=503,
        ... )
    """

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        reference_number: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        details = {}
        if url:
            details["url"] = url
        if reference_number:
            details["reference_number"] = reference_number
        if status_code is not None:
            details["status_code"] = status_code

        super().__init__(message, details)
        self.url = url
        self.reference_number = reference_number
        self.status_code = status_code


class PersistenceError(PhilGEPSCrawlerException):
    """
    저장소 오류

    레코드 저장/조회 중 발생하는 오류입니다.
    파일 I/O 오류, SQLite 제약 조건 위반, 직렬화 오류 등이 해당됩니다.

    Examples:
        >>> raise PersistenceError(
        ...     "Failed to upsert opportunity",
        ...     reference_number="12345",
        ... )
    """

    def __init__(self, message: str, reference_number: Optional[str] = None):
        details = {"reference_number": reference_number} if reference_number else None
        super().__init__(message, details)
        self.reference_number = reference_number


class ConfigError(PhilGEPSCrawlerException):
    """
    설정 오류

    잘못된 페이지 범위, 파싱할 수 없는 환경 변수 값 등에서 발생합니다.

    Examples:
        >>> raise ConfigError("start_page must be >= 1", field_name="start_page")
    """

    def __init__(self, message: str, field_name: Optional[str] = None):
        details = {"field_name": field_name} if field_name else None
        super().__init__(message, details)
        self.field_name = field_name
