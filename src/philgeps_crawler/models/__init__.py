"""데이터 모델 패키지"""

from philgeps_crawler.models.opportunity import (
    EnrichmentResult,
    ITBDetails,
    Opportunity,
    RFQDetails,
    UpsertResult,
)
from philgeps_crawler.models.crawl_state import (
    BatchRecord,
    CrawlState,
)
from philgeps_crawler.models.crawl_history import (
    CrawlHistory,
    CrawlStats,
    ErrorLogEntry,
)

__all__ = [
    "Opportunity",
    "ITBDetails",
    "RFQDetails",
    "EnrichmentResult",
    "UpsertResult",
    "BatchRecord",
    "CrawlState",
    "CrawlHistory",
    "CrawlStats",
    "ErrorLogEntry",
]
