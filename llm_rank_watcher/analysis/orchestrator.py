"""
Analysis orchestrator: drives one run over every active query and provider.

A run moves pending -> running -> completed, or to failed when an
unexpected exception escapes the loop. Work is strictly sequential:

    for each active query (creation order, snapshotted at start):
        for each active provider (name order):
            attempts 1..K, paced by inter_attempt_delay_seconds
            pause inter_provider_delay_seconds
        bulk-save the query's attempts, checkpoint completed_queries
    mark completed, then aggregate competitor results

Every attempt produces a RankingAttempt record, successful or not. When an
attempt fails with a credential-looking error, the provider's remaining
attempts for that query are recorded as skipped instead of being called.

Progress checkpoints and bulk saves are best-effort: a store failure is
logged and the run continues. Callers poll the run row for progress.

Example:
    >>> orchestrator = AnalysisOrchestrator(store, runner, aggregator, settings)
    >>> handle = await orchestrator.start_analysis(item_id)
    >>> handle.run_id
    '2025-11-02T08-00-00Z-3f9c2a1b'
    >>> await handle.task
    <RunStatus.COMPLETED: 'completed'>
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from llm_rank_watcher.analysis.aggregator import CompetitorAggregator
from llm_rank_watcher.analysis.attempt_runner import AttemptOutcome, AttemptRunner
from llm_rank_watcher.config.schema import AnalysisSettings
from llm_rank_watcher.exceptions import (
    AnalysisPreconditionError,
    PersistenceError,
    RunFatalError,
    RunStateError,
    is_auth_error_message,
)
from llm_rank_watcher.storage.models import Provider, Query, RankingAttempt, RunStatus
from llm_rank_watcher.storage.store import AnalysisStore
from llm_rank_watcher.utils.logging import log_with_context
from llm_rank_watcher.utils.time import utc_timestamp

logger = logging.getLogger(__name__)

SKIPPED_AUTH_MESSAGE = "Skipped due to authentication error: {error}"


@dataclass
class AnalysisHandle:
    """Returned by start_analysis; the task resolves to the run's final status."""

    run_id: str
    task: asyncio.Task


@dataclass
class _Progress:
    total_calls: int
    completed_calls: int = 0


class AnalysisOrchestrator:
    """
    Start analysis runs and execute them in the background.

    Attributes:
        settings: Attempts per provider, request size, pacing and checkpointing
    """

    def __init__(
        self,
        store: AnalysisStore,
        attempt_runner: AttemptRunner,
        aggregator: CompetitorAggregator,
        settings: AnalysisSettings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._store = store
        self._runner = attempt_runner
        self._aggregator = aggregator
        self._sleep = sleep
        self.settings = settings
        self._tasks: set[asyncio.Task] = set()

    async def start_analysis(self, item_id: int, owner_id: str | None = None) -> AnalysisHandle:
        """
        Validate preconditions, create the run row and start it in the background.

        Must be called from a running event loop. Mutual exclusion between
        runs of the same item is the caller's job (see
        SQLiteStore.get_running_run).

        Args:
            item_id: Item to analyse
            owner_id: If given, must match the item's owner

        Returns:
            AnalysisHandle with the new run id and its task

        Raises:
            AnalysisPreconditionError: Unknown item, owner mismatch, or no
                active queries or providers (no run row is created)
        """
        item = self._store.get_item(item_id)
        if item is None:
            raise AnalysisPreconditionError(f"Item {item_id} does not exist")
        if owner_id is not None and item.owner_id != owner_id:
            raise AnalysisPreconditionError(f"Item {item_id} does not belong to {owner_id!r}")

        queries = self._store.list_active_queries(item_id)
        if not queries:
            raise AnalysisPreconditionError(f"No active queries for item {item.name!r}")

        providers = self._store.list_active_providers()
        if not providers:
            raise AnalysisPreconditionError("No active providers configured")

        total_calls = len(queries) * len(providers) * self.settings.attempts_per_provider
        run = self._store.create_run(item_id, len(queries), total_calls)

        log_with_context(
            logger,
            logging.INFO,
            f"Starting analysis for {item.name!r}",
            context={
                "queries": len(queries),
                "providers": [provider.name for provider in providers],
                "total_llm_calls": total_calls,
            },
            run_id=run.id,
        )

        task = asyncio.create_task(
            self.execute_run(run.id, item.name, queries, providers),
            name=f"analysis-{run.id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return AnalysisHandle(run_id=run.id, task=task)

    async def execute_run(
        self,
        run_id: str,
        target_name: str,
        queries: list[Query],
        providers: list[Provider],
    ) -> RunStatus:
        """
        Execute a pending run to completion.

        Args:
            run_id: Pending run to execute
            target_name: Tracked item's name
            queries: Query snapshot, in processing order
            providers: Provider snapshot, in processing order

        Returns:
            RunStatus.COMPLETED or RunStatus.FAILED

        Raises:
            RunStateError: If the run does not exist or is not pending
        """
        run = self._store.get_run(run_id)
        if run is None:
            raise RunStateError(f"Run {run_id} does not exist")
        if run.status != RunStatus.PENDING:
            raise RunStateError(f"Run {run_id} is {run.status} and cannot be started")

        progress = _Progress(total_calls=run.total_llm_calls)

        try:
            self._store.update_run(run_id, status=RunStatus.RUNNING, started_at=utc_timestamp())

            for query_number, query in enumerate(queries, start=1):
                records: list[RankingAttempt] = []
                for provider in providers:
                    await self._run_provider(
                        run_id, query, provider, target_name, progress, records
                    )
                    await self._sleep(self.settings.inter_provider_delay_seconds)

                self._save_attempts(run_id, query, records)
                self._checkpoint(run_id, completed_queries=query_number)

            self._store.update_run(
                run_id,
                status=RunStatus.COMPLETED,
                completed_queries=len(queries),
                completed_llm_calls=progress.total_calls,
                completed_at=utc_timestamp(),
            )
        except Exception as e:
            fatal = e if isinstance(e, RunFatalError) else RunFatalError(str(e) or type(e).__name__)
            log_with_context(
                logger,
                logging.ERROR,
                f"Analysis run failed: {fatal}",
                context={"completed_llm_calls": progress.completed_calls},
                run_id=run_id,
            )
            self._mark_failed(run_id, str(fatal))
            return RunStatus.FAILED

        log_with_context(logger, logging.INFO, "Analysis run completed", run_id=run_id)

        try:
            self._aggregator.aggregate(run_id)
        except Exception as e:
            log_with_context(
                logger, logging.ERROR, f"Competitor aggregation failed: {e}", run_id=run_id
            )

        return RunStatus.COMPLETED

    async def _run_provider(
        self,
        run_id: str,
        query: Query,
        provider: Provider,
        target_name: str,
        progress: _Progress,
        records: list[RankingAttempt],
    ) -> None:
        attempts = self.settings.attempts_per_provider

        for attempt_number in range(1, attempts + 1):
            outcome = await self._runner.run(
                provider, query.text, target_name, self.settings.request_count
            )
            records.append(_attempt_record(run_id, query, provider, attempt_number, outcome))
            progress.completed_calls += 1

            if (
                progress.completed_calls % self.settings.checkpoint_every == 0
                or progress.completed_calls == progress.total_calls
            ):
                self._checkpoint(run_id, completed_llm_calls=progress.completed_calls)

            if not outcome.success and is_auth_error_message(outcome.error):
                skipped_message = SKIPPED_AUTH_MESSAGE.format(error=outcome.error)
                for skipped_number in range(attempt_number + 1, attempts + 1):
                    records.append(
                        _attempt_record(
                            run_id,
                            query,
                            provider,
                            skipped_number,
                            AttemptOutcome(success=False, error=skipped_message),
                        )
                    )
                progress.completed_calls += attempts - attempt_number
                self._checkpoint(run_id, completed_llm_calls=progress.completed_calls)

                log_with_context(
                    logger,
                    logging.WARNING,
                    f"{provider.name} rejected credentials; skipping remaining attempts",
                    context={
                        "query_id": query.id,
                        "attempt": attempt_number,
                        "skipped": attempts - attempt_number,
                        "error": outcome.error,
                    },
                    run_id=run_id,
                )
                break

            if attempt_number < attempts:
                await self._sleep(self.settings.inter_attempt_delay_seconds)

    def _checkpoint(self, run_id: str, **fields) -> bool:
        """Patch progress counters; False (and a log line) if the write failed."""
        try:
            self._store.update_run(run_id, **fields)
        except PersistenceError as e:
            log_with_context(
                logger,
                logging.WARNING,
                f"Progress checkpoint failed: {e}",
                context=fields,
                run_id=run_id,
            )
            return False
        return True

    def _save_attempts(self, run_id: str, query: Query, records: list[RankingAttempt]) -> None:
        try:
            saved = self._store.insert_attempts(records)
        except PersistenceError as e:
            log_with_context(
                logger,
                logging.ERROR,
                f"Failed to save {len(records)} ranking attempts: {e}",
                context={"query_id": query.id},
                run_id=run_id,
            )
            return
        logger.debug(f"Saved {saved} attempts for query {query.id} of run {run_id}")

    def _mark_failed(self, run_id: str, message: str) -> None:
        try:
            self._store.update_run(
                run_id,
                status=RunStatus.FAILED,
                error_message=message,
                completed_at=utc_timestamp(),
            )
        except (PersistenceError, RunStateError) as e:
            log_with_context(
                logger, logging.ERROR, f"Could not mark run as failed: {e}", run_id=run_id
            )


def _attempt_record(
    run_id: str,
    query: Query,
    provider: Provider,
    attempt_number: int,
    outcome: AttemptOutcome,
) -> RankingAttempt:
    return RankingAttempt(
        run_id=run_id,
        query_id=query.id,
        provider_id=provider.id,
        provider_name=provider.name,
        attempt_number=attempt_number,
        parsed_ranking=list(outcome.ranked_names),
        target_rank=outcome.found_rank,
        found_name=outcome.found_name,
        success=outcome.success,
        error_message=outcome.error,
        response_time_ms=outcome.response_time_ms,
    )
