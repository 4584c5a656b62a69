"""스케줄러 패키지"""

from philgeps_crawler.scheduler.cron import CrawlScheduler, run_scheduled

__all__ = [
    "CrawlScheduler",
    "run_scheduled",
]
