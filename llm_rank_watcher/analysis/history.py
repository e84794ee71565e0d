"""
Read-side views over completed runs: ranking history and the weekly cadence check.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from llm_rank_watcher.storage.models import AnalysisRun, RankingAttempt, RunStatus
from llm_rank_watcher.storage.store import SQLiteStore
from llm_rank_watcher.utils.time import format_timestamp, start_of_week, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankHistoryPoint:
    """
    Tracked item's standing for one query in one completed run.

    Attributes:
        run_id: Completed run
        run_date: When the run was created
        total_attempts: Attempts recorded for the query in that run
        successful_attempts: Attempts whose model call succeeded
        times_found: Attempts in which the tracked item was located
        average_rank: Mean found rank (None if never found)
        best_rank: Lowest found rank (None if never found)
        worst_rank: Highest found rank (None if never found)
        appearance_rate: times_found / total_attempts as a percentage
    """

    run_id: str
    run_date: str
    total_attempts: int
    successful_attempts: int
    times_found: int
    average_rank: float | None
    best_rank: int | None
    worst_rank: int | None
    appearance_rate: float


@dataclass(frozen=True)
class WeeklyAnalysisCheck:
    can_run: bool
    current_week_run: AnalysisRun | None = None
    next_allowed_at: str | None = None


def summarize_attempts(run: AnalysisRun, attempts: list[RankingAttempt]) -> RankHistoryPoint:
    """Fold one run's attempts for a query into a history point."""
    ranks = [a.target_rank for a in attempts if a.target_rank is not None]
    total = len(attempts)
    return RankHistoryPoint(
        run_id=run.id,
        run_date=run.created_at,
        total_attempts=total,
        successful_attempts=sum(1 for a in attempts if a.success),
        times_found=len(ranks),
        average_rank=round(sum(ranks) / len(ranks), 2) if ranks else None,
        best_rank=min(ranks) if ranks else None,
        worst_rank=max(ranks) if ranks else None,
        appearance_rate=round(len(ranks) / total * 100, 2) if total else 0.0,
    )


def ranking_history(store: SQLiteStore, query_id: int, limit: int = 10) -> list[RankHistoryPoint]:
    """
    Tracked item's rank for a query across the most recent completed runs.

    Args:
        store: Store to read from
        query_id: Query to summarize
        limit: Maximum number of runs

    Returns:
        History points oldest first; runs without attempts for the query
        are left out. Empty if the query does not exist.
    """
    query = store.get_query(query_id)
    if query is None:
        logger.warning(f"Ranking history requested for unknown query {query_id}")
        return []

    runs = store.list_runs(query.item_id, status=RunStatus.COMPLETED, limit=limit)

    by_run: dict[str, list[RankingAttempt]] = {}
    for attempt in store.list_query_attempts(query_id, [run.id for run in runs]):
        by_run.setdefault(attempt.run_id, []).append(attempt)

    return [
        summarize_attempts(run, by_run[run.id]) for run in reversed(runs) if run.id in by_run
    ]


def check_weekly_analysis(
    store: SQLiteStore, item_id: int, now: datetime | None = None
) -> WeeklyAnalysisCheck:
    """
    Check whether the item already has a completed run this week.

    Weeks start Monday 00:00 UTC.

    Args:
        store: Store to read from
        item_id: Item to check
        now: Reference time (defaults to the current UTC time)

    Returns:
        WeeklyAnalysisCheck; when a run exists, can_run is False and
        next_allowed_at is the start of the following week
    """
    week_start = start_of_week(now or utc_now())
    existing = store.find_completed_run_since(item_id, format_timestamp(week_start))

    if existing is None:
        return WeeklyAnalysisCheck(can_run=True)

    return WeeklyAnalysisCheck(
        can_run=False,
        current_week_run=existing,
        next_allowed_at=format_timestamp(week_start + timedelta(days=7)),
    )
