"""
Storage package: SQLite schema, migrations and the store used by the engine.
"""

from llm_rank_watcher.storage.models import (
    AnalysisRun,
    CompetitorResult,
    Item,
    Provider,
    Query,
    RankingAttempt,
    RunStatus,
)
from llm_rank_watcher.storage.store import AnalysisStore, SQLiteStore, sync_config

__all__ = [
    "AnalysisRun",
    "AnalysisStore",
    "CompetitorResult",
    "Item",
    "Provider",
    "Query",
    "RankingAttempt",
    "RunStatus",
    "SQLiteStore",
    "sync_config",
]
