"""
재시도 로직 모듈

네트워크 오류, 타임아웃 등의 일시적 장애에 대한 재시도 로직을 제공합니다.
지수 백오프(exponential backoff)와 가산 지터(additive jitter)를 지원합니다.

k번째 시도(k >= 2) 전 대기 시간:
    base_delay * multiplier^(k-1) + uniform(0, max_jitter)
"""

import asyncio
import functools
import inspect
import random
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

from philgeps_crawler.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class RetryError(Exception):
    """재시도 실패 예외"""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_exception: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.attempts = attempts
        self.last_exception = last_exception


def compute_backoff_delay(
    attempt: int,
    base_delay: float,
    multiplier: float = 2.0,
    max_jitter: float = 0.0,
) -> float:
    """
    재시도 대기 시간 계산

    Args:
        attempt: 다음에 수행할 시도 번호 (2부터 시작)
        base_delay: 기본 대기 시간 (초)
        multiplier: 지수 배수
        max_jitter: 최대 지터 (초)

    Returns:
        대기 시간 (초)

    Examples:
        >>> compute_backoff_delay(2, 5.0, 2.0, 0.0)
        10.0
        >>> compute_backoff_delay(3, 5.0, 2.0, 0.0)
        20.0
    """
    delay = base_delay * (multiplier ** (attempt - 1))
    if max_jitter > 0:
        delay += random.uniform(0, max_jitter)
    return delay


def compute_pacing_delay(base_delay: float, max_jitter: float = 0.0) -> float:
    """
    요청 간 고정 대기 시간 계산 (base_delay + uniform(0, max_jitter))

    Args:
        base_delay: 기본 대기 시간 (초)
        max_jitter: 최대 지터 (초)

    Returns:
        대기 시간 (초)
    """
    if max_jitter > 0:
        return base_delay + random.uniform(0, max_jitter)
    return base_delay


async def retry_async(
    func: Callable[..., T],
    *args: Any,
    max_attempts: int = 3,
    base_delay: float = 5.0,
    multiplier: float = 2.0,
    max_jitter: float = 3.0,
    retry_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[int, Exception], None]] = None,
    **kwargs: Any,
) -> T:
    """
    비동기 함수 재시도 실행

    Args:
        func: 실행할 비동기 함수
        *args: 함수 인자
        max_attempts: 최대 시도 횟수 (첫 시도 포함)
        base_delay: 기본 대기 시간 (초)
        multiplier: 지수 배수
        max_jitter: 최대 지터 (초)
        retry_exceptions: 재시도할 예외 타입들
        on_retry: 재시도 시 콜백 함수 (다음 시도 번호, exception)
        **kwargs: 함수 키워드 인자

    Returns:
        함수 실행 결과

    Raises:
        RetryError: 모든 시도 실패 시

    Examples:
        >>> await retry_async(navigator.go_to_page, 4, max_attempts=3)
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1 (got {max_attempts})")

    last_exception: Optional[Exception] = None

    for attempt in range(1, max_attempts + 1):
        try:
            result = func(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            return result

        except retry_exceptions as e:
            last_exception = e

            if attempt == max_attempts:
                logger.error(f"모든 재시도 실패 ({max_attempts}회 시도): {e}")
                raise RetryError(
                    f"최대 시도 횟수({max_attempts})를 초과했습니다",
                    attempts=attempt,
                    last_exception=e,
                ) from e

            next_attempt = attempt + 1
            delay = compute_backoff_delay(next_attempt, base_delay, multiplier, max_jitter)

            logger.warning(
                f"재시도 {next_attempt}/{max_attempts}: {e.__class__.__name__}: {e} "
                f"({delay:.1f}초 후 재시도)"
            )

            if on_retry:
                on_retry(next_attempt, e)

            await asyncio.sleep(delay)

    raise RetryError(
        "예상치 못한 재시도 루프 종료",
        attempts=max_attempts,
        last_exception=last_exception,
    )


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 5.0,
    multiplier: float = 2.0,
    max_jitter: float = 3.0,
    retry_exceptions: Tuple[Type[Exception], ...] = (Exception,),
):
    """
    재시도 데코레이터

    Usage:
        @with_retry(max_attempts=3)
        async def fetch_detail():
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry_async(
                func,
                *args,
                max_attempts=max_attempts,
                base_delay=base_delay,
                multiplier=multiplier,
                max_jitter=max_jitter,
                retry_exceptions=retry_exceptions,
                **kwargs,
            )
        return wrapper
    return decorator
