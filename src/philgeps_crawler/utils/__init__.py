"""유틸리티 패키지"""

from philgeps_crawler.utils.browser import BrowserManager
from philgeps_crawler.utils.error_logger import ErrorLogger
from philgeps_crawler.utils.logger import CrawlLogger, get_logger, reset_loggers, setup_logger, JsonFormatter
from philgeps_crawler.utils.metrics import CrawlerMetrics, get_metrics, init_metrics
from philgeps_crawler.utils.parser import ParserUtils
from philgeps_crawler.utils.retry import (
    RetryError,
    compute_backoff_delay,
    compute_pacing_delay,
    retry_async,
    with_retry,
)

__all__ = [
    # retry
    "retry_async",
    "with_retry",
    "RetryError",
    "compute_backoff_delay",
    "compute_pacing_delay",
    # logger
    "setup_logger",
    "get_logger",
    "reset_loggers",
    "CrawlLogger",
    "JsonFormatter",
    "ErrorLogger",
    # metrics
    "CrawlerMetrics",
    "get_metrics",
    "init_metrics",
    # browser
    "BrowserManager",
    # parser
    "ParserUtils",
]
