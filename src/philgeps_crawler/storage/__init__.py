"""저장소 패키지"""

from philgeps_crawler.storage.state_manager import StateManager
from philgeps_crawler.storage.control_store import ControlSettings, ControlStore
from philgeps_crawler.storage.repository_interface import (
    InMemoryRepository,
    OpportunityRepository,
    SearchFilters,
)
from philgeps_crawler.storage.json_storage import JsonOpportunityRepository
from philgeps_crawler.storage.sqlite_storage import SqliteOpportunityRepository
from philgeps_crawler.storage.gateway import PersistenceGateway, create_repository

__all__ = [
    "StateManager",
    "ControlSettings",
    "ControlStore",
    "OpportunityRepository",
    "InMemoryRepository",
    "SearchFilters",
    "JsonOpportunityRepository",
    "SqliteOpportunityRepository",
    "PersistenceGateway",
    "create_repository",
]
