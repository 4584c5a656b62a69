"""
PhilGEPS 입찰 공고 크롤러 패키지

PhilGEPS(필리핀 정부 전자조달 시스템) 공개 입찰 검색 결과를 수집하여
표준 스키마로 저장하는 크롤러입니다.

주요 기능:
- ASP.NET postback 페이지네이션 (Playwright 기반)
- 배치 단위 수집, 중단점 저장 및 재시작
- 페이지별 지수 백오프 재시도와 서킷 브레이커
- 상세 페이지(ITB/RFQ) 보강 (선택)
- null을 덮어쓰지 않는 upsert (JSON/SQLite)
- interval/cron 스케줄링 지원
"""

__version__ = "1.0.0"

from philgeps_crawler.config import CrawlerConfig
from philgeps_crawler.models.opportunity import Opportunity
from philgeps_crawler.models.crawl_history import CrawlStats
from philgeps_crawler.service import CrawlerControl, CrawlerService, run_crawler

__all__ = [
    "CrawlerConfig",
    "CrawlerControl",
    "CrawlerService",
    "CrawlStats",
    "Opportunity",
    "run_crawler",
]
