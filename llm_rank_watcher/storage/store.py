"""
Store object used by the analysis engine.

SQLiteStore wraps the SQL functions in storage.db with one short-lived
connection per operation, converts rows into the dataclasses from
storage.models, and re-raises every sqlite3.Error as PersistenceError so
callers only deal with the package's exception hierarchy.

Operations are synchronous. Each one is a single small transaction, so the
orchestrator calls them directly from the event loop.

Example:
    >>> store = SQLiteStore("./output/rank_watcher.db")
    >>> item_id = sync_config(store, config)
    >>> run = store.create_run(item_id, total_queries=3, total_llm_calls=60)
    >>> store.update_run(run.id, status=RunStatus.RUNNING)
"""

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Protocol

from llm_rank_watcher.config.providers import ProviderId
from llm_rank_watcher.config.schema import RuntimeConfig
from llm_rank_watcher.exceptions import (
    DatabaseInitError,
    PersistenceError,
    RunStateError,
)
from llm_rank_watcher.storage import db
from llm_rank_watcher.storage.models import (
    AnalysisRun,
    CompetitorResult,
    Item,
    Provider,
    Query,
    RankingAttempt,
    RunStatus,
)
from llm_rank_watcher.utils.time import new_run_id

logger = logging.getLogger(__name__)

OPEN_RUN_STATUSES = (RunStatus.PENDING, RunStatus.RUNNING)


class AnalysisStore(Protocol):
    """Store operations the orchestrator and aggregator depend on."""

    def get_item(self, item_id: int) -> Item | None: ...

    def list_active_queries(self, item_id: int) -> list[Query]: ...

    def list_active_providers(self) -> list[Provider]: ...

    def create_run(
        self, item_id: int, total_queries: int, total_llm_calls: int
    ) -> AnalysisRun: ...

    def update_run(self, run_id: str, **fields: Any) -> None: ...

    def get_run(self, run_id: str) -> AnalysisRun | None: ...

    def insert_attempts(self, attempts: list[RankingAttempt]) -> int: ...

    def list_ranked_attempts(self, run_id: str) -> list[RankingAttempt]: ...

    def replace_competitor_results(
        self, run_id: str, query_id: int, results: list[CompetitorResult]
    ) -> int: ...


class SQLiteStore:
    """
    SQLite-backed implementation of AnalysisStore plus the read operations
    used by the CLI (status polling, competitor tables, history).

    Attributes:
        db_path: Path to the database file
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        try:
            db.init_db_if_needed(db_path)
        except (sqlite3.Error, OSError, ValueError) as e:
            raise DatabaseInitError(f"Failed to initialize database {db_path}: {e}") from e

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = db.connect(self.db_path)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open database {self.db_path}: {e}") from e

        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------

    def upsert_item(self, name: str, owner_id: str) -> int:
        with self._connect() as conn:
            return db.upsert_item(conn, name, owner_id)

    def get_item(self, item_id: int) -> Item | None:
        with self._connect() as conn:
            row = db.get_item(conn, item_id)
        return _item_from_row(row) if row else None

    def find_item(self, name: str, owner_id: str) -> Item | None:
        with self._connect() as conn:
            row = db.find_item(conn, name, owner_id)
        return _item_from_row(row) if row else None

    def upsert_query(self, item_id: int, text: str, active: bool = True) -> int:
        with self._connect() as conn:
            return db.upsert_query(conn, item_id, text, active)

    def set_query_active(self, query_id: int, active: bool) -> None:
        with self._connect() as conn:
            try:
                db.set_query_active(conn, query_id, active)
            except ValueError as e:
                raise PersistenceError(str(e)) from e

    def get_query(self, query_id: int) -> Query | None:
        with self._connect() as conn:
            row = db.get_query(conn, query_id)
        return _query_from_row(row) if row else None

    def list_queries(self, item_id: int) -> list[Query]:
        """All queries of the item, active or not, in creation order."""
        with self._connect() as conn:
            rows = db.list_queries(conn, item_id, active_only=False)
        return [_query_from_row(row) for row in rows]

    def list_active_queries(self, item_id: int) -> list[Query]:
        with self._connect() as conn:
            rows = db.list_queries(conn, item_id, active_only=True)
        return [_query_from_row(row) for row in rows]

    def upsert_provider(
        self, canonical_id: ProviderId, name: str, default_model: str, active: bool = True
    ) -> int:
        with self._connect() as conn:
            return db.upsert_provider(conn, str(canonical_id), name, default_model, active)

    def list_providers(self) -> list[Provider]:
        with self._connect() as conn:
            rows = db.list_providers(conn, active_only=False)
        return [_provider_from_row(row) for row in rows]

    def list_active_providers(self) -> list[Provider]:
        with self._connect() as conn:
            rows = db.list_providers(conn, active_only=True)
        return [_provider_from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Analysis runs
    # ------------------------------------------------------------------

    def create_run(
        self,
        item_id: int,
        total_queries: int,
        total_llm_calls: int,
        run_id: str | None = None,
    ) -> AnalysisRun:
        """Insert a pending run and return it."""
        run_id = run_id or new_run_id()
        with self._connect() as conn:
            db.insert_analysis_run(
                conn, run_id, item_id, RunStatus.PENDING.value, total_queries, total_llm_calls
            )
            row = db.get_analysis_run(conn, run_id)
        return _run_from_row(row)

    def update_run(self, run_id: str, **fields: Any) -> None:
        """
        Patch a run; only the given fields change.

        Args:
            run_id: Run to patch
            **fields: Column values (status may be a RunStatus)

        Raises:
            RunStateError: If the status change is not a legal transition
            PersistenceError: If the run does not exist or the write fails
        """
        if "status" in fields:
            fields["status"] = RunStatus(fields["status"]).value

        with self._connect() as conn:
            row = db.get_analysis_run(conn, run_id)
            if row is None:
                raise PersistenceError(f"Run {run_id} does not exist")

            current = RunStatus(row["status"])
            if "status" in fields:
                target = RunStatus(fields["status"])
                if not current.can_transition_to(target):
                    raise RunStateError(
                        f"Run {run_id} is {current} and cannot move to {target}"
                    )
            elif current.is_terminal:
                raise RunStateError(f"Run {run_id} is {current} and cannot be updated")

            try:
                db.update_analysis_run(conn, run_id, fields)
            except ValueError as e:
                raise PersistenceError(str(e)) from e

    def get_run(self, run_id: str) -> AnalysisRun | None:
        with self._connect() as conn:
            row = db.get_analysis_run(conn, run_id)
        return _run_from_row(row) if row else None

    def get_running_run(self, item_id: int) -> AnalysisRun | None:
        """Newest pending or running run of the item, if any."""
        with self._connect() as conn:
            rows = db.list_analysis_runs(
                conn, item_id, statuses=[s.value for s in OPEN_RUN_STATUSES], limit=1
            )
        return _run_from_row(rows[0]) if rows else None

    def get_latest_run(
        self, item_id: int, status: RunStatus | None = None
    ) -> AnalysisRun | None:
        """Newest run of the item, optionally restricted to one status."""
        statuses = [RunStatus(status).value] if status is not None else None
        with self._connect() as conn:
            rows = db.list_analysis_runs(conn, item_id, statuses=statuses, limit=1)
        return _run_from_row(rows[0]) if rows else None

    def list_runs(
        self,
        item_id: int,
        status: RunStatus | None = None,
        limit: int | None = None,
    ) -> list[AnalysisRun]:
        """Runs of the item, newest first."""
        statuses = [RunStatus(status).value] if status is not None else None
        with self._connect() as conn:
            rows = db.list_analysis_runs(conn, item_id, statuses=statuses, limit=limit)
        return [_run_from_row(row) for row in rows]

    def find_completed_run_since(self, item_id: int, since: str) -> AnalysisRun | None:
        with self._connect() as conn:
            row = db.find_completed_run_since(conn, item_id, since)
        return _run_from_row(row) if row else None

    # ------------------------------------------------------------------
    # Attempts and competitor results
    # ------------------------------------------------------------------

    def insert_attempts(self, attempts: list[RankingAttempt]) -> int:
        """Append attempt rows in one transaction; returns rows inserted."""
        if not attempts:
            return 0
        with self._connect() as conn:
            return db.insert_ranking_attempts(
                conn,
                [
                    {
                        "run_id": a.run_id,
                        "query_id": a.query_id,
                        "provider_id": a.provider_id,
                        "provider_name": a.provider_name,
                        "attempt_number": a.attempt_number,
                        "parsed_ranking": a.parsed_ranking,
                        "target_rank": a.target_rank,
                        "found_name": a.found_name,
                        "success": a.success,
                        "error_message": a.error_message,
                        "response_time_ms": a.response_time_ms,
                    }
                    for a in attempts
                ],
            )

    def list_ranked_attempts(self, run_id: str) -> list[RankingAttempt]:
        with self._connect() as conn:
            rows = db.list_ranked_attempts(conn, run_id)
        return [_attempt_from_row(row) for row in rows]

    def list_attempts(self, run_id: str, query_id: int | None = None) -> list[RankingAttempt]:
        with self._connect() as conn:
            rows = db.list_attempts(conn, run_id, query_id)
        return [_attempt_from_row(row) for row in rows]

    def list_query_attempts(self, query_id: int, run_ids: list[str]) -> list[RankingAttempt]:
        with self._connect() as conn:
            rows = db.list_query_attempts_by_run(conn, query_id, run_ids)
        return [_attempt_from_row(row) for row in rows]

    def replace_competitor_results(
        self, run_id: str, query_id: int, results: list[CompetitorResult]
    ) -> int:
        """Delete the (run, query) rows and insert results, atomically."""
        with self._connect() as conn:
            deleted = db.delete_competitor_results(conn, run_id, query_id)
            if deleted:
                logger.debug(
                    f"Replaced {deleted} competitor rows for run {run_id} query {query_id}"
                )
            return db.insert_competitor_results(
                conn,
                [
                    {
                        "run_id": result.run_id,
                        "query_id": result.query_id,
                        "name": result.name,
                        "average_rank": result.average_rank,
                        "best_rank": result.best_rank,
                        "worst_rank": result.worst_rank,
                        "appearances": result.appearances,
                        "total_attempts": result.total_attempts,
                        "appearance_rate": result.appearance_rate,
                        "weighted_score": result.weighted_score,
                        "llm_providers": result.llm_providers,
                        "raw_ranks": result.raw_ranks,
                        "is_target": result.is_target,
                    }
                    for result in results
                ],
            )

    def get_competitor_results(
        self, query_id: int, run_id: str | None = None
    ) -> list[CompetitorResult]:
        """
        Competitor rows for a query, best weighted score first.

        Without run_id, the newest completed run of the query's item is used;
        an empty list is returned when there is none.
        """
        if run_id is None:
            with self._connect() as conn:
                query_row = db.get_query(conn, query_id)
            if query_row is None:
                return []
            latest = self.get_latest_run(query_row["item_id"], RunStatus.COMPLETED)
            if latest is None:
                return []
            run_id = latest.id

        with self._connect() as conn:
            rows = db.list_competitor_results(conn, run_id, query_id)
        return [_competitor_from_row(row) for row in rows]


def sync_config(store: SQLiteStore, config: RuntimeConfig) -> int:
    """
    Mirror the YAML configuration into the reference tables.

    Queries and providers listed in the config are upserted with their
    active flags; ones that disappeared from the config are deactivated
    rather than deleted, so their history stays readable.

    Args:
        store: Target store
        config: Loaded runtime configuration

    Returns:
        The item id
    """
    item_id = store.upsert_item(config.item.name, config.item.owner)

    configured_texts = set()
    for query in config.queries:
        store.upsert_query(item_id, query.text, query.active)
        configured_texts.add(query.text)

    for query in store.list_queries(item_id):
        if query.active and query.text not in configured_texts:
            logger.info(f"Deactivating query no longer in config: {query.text!r}")
            store.set_query_active(query.id, False)

    configured_providers = set()
    for provider in config.providers:
        store.upsert_provider(
            provider.provider_id, provider.display_name, provider.model_name, provider.active
        )
        configured_providers.add(provider.provider_id)

    for provider in store.list_providers():
        if provider.active and provider.canonical_id not in configured_providers:
            logger.info(f"Deactivating provider no longer in config: {provider.name}")
            store.upsert_provider(
                provider.canonical_id, provider.name, provider.default_model, active=False
            )

    logger.debug(
        f"Synced config for item {config.item.name!r} (id={item_id}): "
        f"{len(config.queries)} queries, {len(config.providers)} providers"
    )
    return item_id


# ============================================================================
# Row conversion
# ============================================================================


def _item_from_row(row: sqlite3.Row) -> Item:
    return Item(
        id=row["id"], name=row["name"], owner_id=row["owner_id"], created_at=row["created_at"]
    )


def _query_from_row(row: sqlite3.Row) -> Query:
    return Query(
        id=row["id"],
        item_id=row["item_id"],
        text=row["text"],
        active=bool(row["active"]),
        created_at=row["created_at"],
    )


def _provider_from_row(row: sqlite3.Row) -> Provider:
    return Provider(
        id=row["id"],
        canonical_id=ProviderId(row["canonical_id"]),
        name=row["name"],
        default_model=row["default_model"],
        active=bool(row["active"]),
    )


def _run_from_row(row: sqlite3.Row) -> AnalysisRun:
    return AnalysisRun(
        id=row["id"],
        item_id=row["item_id"],
        status=RunStatus(row["status"]),
        total_queries=row["total_queries"],
        completed_queries=row["completed_queries"],
        total_llm_calls=row["total_llm_calls"],
        completed_llm_calls=row["completed_llm_calls"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        error_message=row["error_message"],
        created_at=row["created_at"],
    )


def _attempt_from_row(row: sqlite3.Row) -> RankingAttempt:
    parsed = row["parsed_ranking"]
    return RankingAttempt(
        id=row["id"],
        run_id=row["run_id"],
        query_id=row["query_id"],
        provider_id=row["provider_id"],
        provider_name=row["provider_name"],
        attempt_number=row["attempt_number"],
        parsed_ranking=None if parsed is None else json.loads(parsed),
        target_rank=row["target_rank"],
        found_name=row["found_name"],
        success=bool(row["success"]),
        error_message=row["error_message"],
        response_time_ms=row["response_time_ms"],
        created_at=row["created_at"],
    )


def _competitor_from_row(row: sqlite3.Row) -> CompetitorResult:
    return CompetitorResult(
        id=row["id"],
        run_id=row["run_id"],
        query_id=row["query_id"],
        name=row["name"],
        average_rank=row["average_rank"],
        best_rank=row["best_rank"],
        worst_rank=row["worst_rank"],
        appearances=row["appearances"],
        total_attempts=row["total_attempts"],
        appearance_rate=row["appearance_rate"],
        weighted_score=row["weighted_score"],
        llm_providers=json.loads(row["llm_providers"]),
        raw_ranks=json.loads(row["raw_ranks"]),
        is_target=bool(row["is_target"]),
        created_at=row["created_at"],
    )
