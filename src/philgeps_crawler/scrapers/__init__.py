"""스크래퍼 패키지"""

from philgeps_crawler.scrapers.base import BaseScraper
from philgeps_crawler.scrapers.navigator import Navigator, NavigatorState
from philgeps_crawler.scrapers.extractor import Extractor, ListingSummary
from philgeps_crawler.scrapers.detail_enricher import DetailEnricher

__all__ = [
    "BaseScraper",
    "Navigator",
    "NavigatorState",
    "Extractor",
    "ListingSummary",
    "DetailEnricher",
]
