"""
Competitor aggregation: per-query statistics over a run's attempts.

For every query in a run, all attempts carrying a parsed ranking (failed
attempts included, with an empty ranking) are folded into one row per
distinct name:

- average_rank: mean of the ranks at which the name appeared
- best_rank / worst_rank: min / max of those ranks
- appearance_rate: appearances / attempts considered, as a percentage
- weighted_score: average_rank * (2 - appearance fraction); lower is better,
  so a name ranked well but rarely scores worse than one ranked well always

Rows for a (run, query) are replaced wholesale on every aggregation, which
makes re-running aggregation idempotent.
"""

import logging
from dataclasses import dataclass, field

from llm_rank_watcher.exceptions import PersistenceError
from llm_rank_watcher.storage.models import CompetitorResult, RankingAttempt
from llm_rank_watcher.storage.store import AnalysisStore

logger = logging.getLogger(__name__)


@dataclass
class _NameTally:
    display_name: str
    ranks: list[int] = field(default_factory=list)
    providers: list[str] = field(default_factory=list)
    is_target: bool = False


def is_target_name(name: str, target_name: str) -> bool:
    """True if either name contains the other, ignoring case and outer whitespace."""
    candidate = name.strip().lower()
    target = target_name.strip().lower()
    if not candidate or not target:
        return False
    return candidate in target or target in candidate


def weighted_score(average_rank: float, appearance_fraction: float) -> float:
    """
    Combine rank and consistency into one score (lower is better).

    Example:
        >>> weighted_score(2.0, 1.0)
        2.0
        >>> weighted_score(2.0, 0.5)
        3.0
    """
    return round(average_rank * (2.0 - appearance_fraction), 2)


def compute_competitor_results(
    run_id: str,
    query_id: int,
    attempts: list[RankingAttempt],
    target_name: str,
) -> list[CompetitorResult]:
    """
    Compute competitor rows for one (run, query).

    Args:
        run_id: Run the attempts belong to
        query_id: Query the attempts belong to
        attempts: Attempts with non-null parsed_ranking, in insertion order
        target_name: Tracked item's name

    Returns:
        One CompetitorResult per distinct (trimmed) name, in first-seen order
    """
    total_attempts = len(attempts)
    tallies: dict[str, _NameTally] = {}

    for attempt in attempts:
        for index, raw_name in enumerate(attempt.parsed_ranking or []):
            key = raw_name.strip()
            if not key:
                continue
            tally = tallies.get(key)
            if tally is None:
                tally = _NameTally(display_name=key, is_target=is_target_name(key, target_name))
                tallies[key] = tally
            tally.ranks.append(index + 1)
            if attempt.provider_name not in tally.providers:
                tally.providers.append(attempt.provider_name)

    results = []
    for tally in tallies.values():
        appearances = len(tally.ranks)
        average = sum(tally.ranks) / appearances
        fraction = appearances / total_attempts
        results.append(
            CompetitorResult(
                run_id=run_id,
                query_id=query_id,
                name=tally.display_name,
                average_rank=round(average, 2),
                best_rank=min(tally.ranks),
                worst_rank=max(tally.ranks),
                appearances=appearances,
                total_attempts=total_attempts,
                appearance_rate=round(fraction * 100, 2),
                weighted_score=weighted_score(average, fraction),
                llm_providers=tally.providers,
                raw_ranks=tally.ranks,
                is_target=tally.is_target,
            )
        )
    return results


class CompetitorAggregator:
    """Recompute and persist competitor rows for a whole run."""

    def __init__(self, store: AnalysisStore):
        self._store = store

    def aggregate(self, run_id: str) -> int:
        """
        Aggregate every query of the run.

        A failed write for one query is logged and the remaining queries are
        still aggregated.

        Args:
            run_id: Run to aggregate

        Returns:
            Total number of competitor rows inserted

        Raises:
            PersistenceError: If the run, its item or its attempts cannot be read
        """
        run = self._store.get_run(run_id)
        if run is None:
            raise PersistenceError(f"Run {run_id} does not exist")
        item = self._store.get_item(run.item_id)
        if item is None:
            raise PersistenceError(f"Item {run.item_id} of run {run_id} does not exist")

        by_query: dict[int, list[RankingAttempt]] = {}
        for attempt in self._store.list_ranked_attempts(run_id):
            by_query.setdefault(attempt.query_id, []).append(attempt)

        inserted = 0
        for query_id, attempts in by_query.items():
            results = compute_competitor_results(run_id, query_id, attempts, item.name)
            try:
                inserted += self._store.replace_competitor_results(run_id, query_id, results)
            except PersistenceError as e:
                logger.error(
                    f"Failed to save competitor results for run {run_id} query {query_id}: {e}"
                )

        logger.info(
            f"Aggregated {inserted} competitor rows across {len(by_query)} queries "
            f"for run {run_id}"
        )
        return inserted
