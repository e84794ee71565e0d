"""
SQLite schema management and SQL operations for LLM Rank Watcher.

This module owns the database layout: schema versioning, sequential
migrations, and one function per SQL statement the store needs. Functions
take an open connection and never commit; the caller (storage.store)
decides transaction boundaries.

The database tracks:
- items / queries / providers: reference data synced from config
- analysis_runs: one row per run with status and progress counters
- ranking_attempts: append-only per-call outcomes (parsed ranking as JSON)
- competitor_results: derived per-(run, query, name) statistics

Example usage:
    >>> init_db_if_needed("./output/rank_watcher.db")
    >>> with sqlite3.connect("./output/rank_watcher.db") as conn:
    ...     run = get_analysis_run(conn, "2025-11-02T08-00-00Z-3f9c2a1b")

Security:
    - ALL queries use parameterized statements
    - NO API keys are ever stored in the database
"""

import json
import logging
import sqlite3
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from ..utils.time import utc_timestamp

logger = logging.getLogger(__name__)

# Current schema version - increment when migrations are added
CURRENT_SCHEMA_VERSION = 2

# Columns update_analysis_run() may patch
RUN_PATCHABLE_COLUMNS = frozenset(
    {
        "status",
        "total_queries",
        "completed_queries",
        "total_llm_calls",
        "completed_llm_calls",
        "started_at",
        "completed_at",
        "error_message",
    }
)


def connect(db_path: str) -> sqlite3.Connection:
    """Open a connection with row access by column name and foreign keys on."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db_if_needed(db_path: str) -> None:
    """
    Initialize SQLite database with schema versioning.

    Creates the database file and parent directory if needed, then applies
    any pending migrations. Idempotent.

    Args:
        db_path: Filesystem path to SQLite database file

    Raises:
        sqlite3.Error: If database creation or migration fails
        ValueError: If the database schema is newer than this software
    """
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = connect(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
        """)
        conn.commit()

        current_version = get_schema_version(conn)

        if current_version < CURRENT_SCHEMA_VERSION:
            logger.info(
                f"Database schema upgrade needed: "
                f"v{current_version} -> v{CURRENT_SCHEMA_VERSION}"
            )
            apply_migrations(conn, current_version, CURRENT_SCHEMA_VERSION)
        elif current_version > CURRENT_SCHEMA_VERSION:
            raise ValueError(
                f"Database schema version {current_version} is newer than "
                f"expected {CURRENT_SCHEMA_VERSION}. Update your software or "
                f"use a different database file."
            )
        else:
            logger.debug(f"Database schema is current (v{CURRENT_SCHEMA_VERSION})")
    finally:
        conn.close()


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Return the highest applied schema version (0 for a fresh database)."""
    result = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    return result if result is not None else 0


def apply_migrations(conn: sqlite3.Connection, from_version: int, to_version: int) -> None:
    """
    Apply schema migrations from one version to another.

    Each migration runs in its own transaction together with its
    schema_version row; a failing migration is rolled back and leaves the
    database at the previous version.

    Raises:
        sqlite3.Error: If any migration SQL fails
        ValueError: If from_version > to_version (downgrades not supported)
    """
    if from_version > to_version:
        raise ValueError(
            f"Cannot downgrade schema from v{from_version} to v{to_version}. "
            f"Downgrades are not supported. Use a database backup instead."
        )

    migrations = {1: _migrate_to_v1, 2: _migrate_to_v2}

    for target_version in range(from_version + 1, to_version + 1):
        migration = migrations.get(target_version)
        if migration is None:
            raise ValueError(f"No migration defined for version {target_version}")

        logger.info(f"Applying migration to schema version {target_version}")
        try:
            conn.execute("BEGIN")
            migration(conn)
            conn.execute(
                "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                (target_version, utc_timestamp()),
            )
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Migration to version {target_version} failed: {e}", exc_info=True)
            raise sqlite3.Error(
                f"Failed to migrate database to version {target_version}: {e}"
            ) from e


def _migrate_to_v1(conn: sqlite3.Connection) -> None:
    """
    Create the core tables.

    UNIQUE(run_id, query_id, provider_id, attempt_number) keeps attempts
    append-only per slot; UNIQUE(run_id, query_id, name) on competitor
    results makes re-aggregation a strict replace.
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            owner_id TEXT NOT NULL,
            created_at TEXT NOT NULL,
            UNIQUE(owner_id, name)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS queries (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            item_id INTEGER NOT NULL,
            text TEXT NOT NULL,
            active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            FOREIGN KEY (item_id) REFERENCES items(id),
            UNIQUE(item_id, text)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS providers (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            canonical_id TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL,
            default_model TEXT NOT NULL,
            active INTEGER NOT NULL DEFAULT 1
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS analysis_runs (
            id TEXT PRIMARY KEY,
            item_id INTEGER NOT NULL,
            status TEXT NOT NULL
                CHECK (status IN ('pending', 'running', 'completed', 'failed')),
            total_queries INTEGER NOT NULL DEFAULT 0,
            completed_queries INTEGER NOT NULL DEFAULT 0,
            total_llm_calls INTEGER NOT NULL DEFAULT 0,
            completed_llm_calls INTEGER NOT NULL DEFAULT 0,
            started_at TEXT,
            completed_at TEXT,
            error_message TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY (item_id) REFERENCES items(id)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS ranking_attempts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            run_id TEXT NOT NULL,
            query_id INTEGER NOT NULL,
            provider_id INTEGER NOT NULL,
            provider_name TEXT NOT NULL,
            attempt_number INTEGER NOT NULL,
            parsed_ranking TEXT,
            target_rank INTEGER,
            found_name TEXT,
            success INTEGER NOT NULL,
            error_message TEXT,
            response_time_ms INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            FOREIGN KEY (run_id) REFERENCES analysis_runs(id),
            FOREIGN KEY (query_id) REFERENCES queries(id),
            FOREIGN KEY (provider_id) REFERENCES providers(id),
            UNIQUE(run_id, query_id, provider_id, attempt_number)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS competitor_results (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            run_id TEXT NOT NULL,
            query_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            average_rank REAL NOT NULL,
            best_rank INTEGER NOT NULL,
            worst_rank INTEGER NOT NULL,
            appearances INTEGER NOT NULL,
            total_attempts INTEGER NOT NULL,
            appearance_rate REAL NOT NULL,
            weighted_score REAL NOT NULL,
            llm_providers TEXT NOT NULL,
            raw_ranks TEXT NOT NULL,
            is_target INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            FOREIGN KEY (run_id) REFERENCES analysis_runs(id),
            FOREIGN KEY (query_id) REFERENCES queries(id),
            UNIQUE(run_id, query_id, name)
        )
    """)


def _migrate_to_v2(conn: sqlite3.Connection) -> None:
    """Add indexes for status polling, aggregation reads and history."""
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_runs_item_status
        ON analysis_runs(item_id, status, created_at)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_attempts_run_query
        ON ranking_attempts(run_id, query_id)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_attempts_query
        ON ranking_attempts(query_id)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_competitors_query_run
        ON competitor_results(query_id, run_id, weighted_score)
    """)


# ============================================================================
# Reference data
# ============================================================================


def upsert_item(conn: sqlite3.Connection, name: str, owner_id: str) -> int:
    """Insert the item if missing and return its id."""
    conn.execute(
        "INSERT OR IGNORE INTO items (name, owner_id, created_at) VALUES (?, ?, ?)",
        (name, owner_id, utc_timestamp()),
    )
    row = conn.execute(
        "SELECT id FROM items WHERE owner_id = ? AND name = ?", (owner_id, name)
    ).fetchone()
    return row["id"]


def get_item(conn: sqlite3.Connection, item_id: int) -> sqlite3.Row | None:
    return conn.execute(
        "SELECT id, name, owner_id, created_at FROM items WHERE id = ?", (item_id,)
    ).fetchone()


def find_item(conn: sqlite3.Connection, name: str, owner_id: str) -> sqlite3.Row | None:
    return conn.execute(
        "SELECT id, name, owner_id, created_at FROM items WHERE owner_id = ? AND name = ?",
        (owner_id, name),
    ).fetchone()


def upsert_query(conn: sqlite3.Connection, item_id: int, text: str, active: bool) -> int:
    """
    Insert the query if missing, update its active flag, and return its id.

    Existing queries keep their id and created_at, so creation order is
    stable across config syncs.
    """
    conn.execute(
        """
        INSERT INTO queries (item_id, text, active, created_at) VALUES (?, ?, ?, ?)
        ON CONFLICT(item_id, text) DO UPDATE SET active = excluded.active
        """,
        (item_id, text, int(active), utc_timestamp()),
    )
    row = conn.execute(
        "SELECT id FROM queries WHERE item_id = ? AND text = ?", (item_id, text)
    ).fetchone()
    return row["id"]


def set_query_active(conn: sqlite3.Connection, query_id: int, active: bool) -> None:
    cursor = conn.execute(
        "UPDATE queries SET active = ? WHERE id = ?", (int(active), query_id)
    )
    if cursor.rowcount == 0:
        raise ValueError(f"Cannot update query_id={query_id}: query does not exist")


def list_queries(
    conn: sqlite3.Connection, item_id: int, active_only: bool = True
) -> list[sqlite3.Row]:
    """Return the item's queries in creation order."""
    sql = "SELECT id, item_id, text, active, created_at FROM queries WHERE item_id = ?"
    if active_only:
        sql += " AND active = 1"
    return conn.execute(sql + " ORDER BY created_at, id", (item_id,)).fetchall()


def get_query(conn: sqlite3.Connection, query_id: int) -> sqlite3.Row | None:
    return conn.execute(
        "SELECT id, item_id, text, active, created_at FROM queries WHERE id = ?",
        (query_id,),
    ).fetchone()


def upsert_provider(
    conn: sqlite3.Connection,
    canonical_id: str,
    name: str,
    default_model: str,
    active: bool,
) -> int:
    """Insert or refresh a provider row keyed by canonical id; return its id."""
    conn.execute(
        """
        INSERT INTO providers (canonical_id, name, default_model, active)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(canonical_id) DO UPDATE SET
            name = excluded.name,
            default_model = excluded.default_model,
            active = excluded.active
        """,
        (canonical_id, name, default_model, int(active)),
    )
    row = conn.execute(
        "SELECT id FROM providers WHERE canonical_id = ?", (canonical_id,)
    ).fetchone()
    return row["id"]


def list_providers(conn: sqlite3.Connection, active_only: bool = True) -> list[sqlite3.Row]:
    """Return providers ordered by display name."""
    sql = "SELECT id, canonical_id, name, default_model, active FROM providers"
    if active_only:
        sql += " WHERE active = 1"
    return conn.execute(sql + " ORDER BY name, id").fetchall()


# ============================================================================
# Analysis runs
# ============================================================================

_RUN_COLUMNS = """
    id, item_id, status, total_queries, completed_queries, total_llm_calls,
    completed_llm_calls, started_at, completed_at, error_message, created_at
"""


def insert_analysis_run(
    conn: sqlite3.Connection,
    run_id: str,
    item_id: int,
    status: str,
    total_queries: int,
    total_llm_calls: int,
) -> None:
    conn.execute(
        """
        INSERT INTO analysis_runs (
            id, item_id, status, total_queries, completed_queries,
            total_llm_calls, completed_llm_calls, created_at
        ) VALUES (?, ?, ?, ?, 0, ?, 0, ?)
        """,
        (run_id, item_id, status, total_queries, total_llm_calls, utc_timestamp()),
    )
    logger.debug(
        f"Inserted run {run_id} for item {item_id}: "
        f"{total_queries} queries, {total_llm_calls} calls"
    )


def update_analysis_run(conn: sqlite3.Connection, run_id: str, fields: dict[str, Any]) -> None:
    """
    Patch the given columns of a run; other columns are left untouched.

    Raises:
        ValueError: If a field is not patchable or run_id does not exist
    """
    unknown = set(fields) - RUN_PATCHABLE_COLUMNS
    if unknown:
        raise ValueError(f"Cannot patch analysis_runs columns: {sorted(unknown)}")
    if not fields:
        return

    columns = sorted(fields)
    assignments = ", ".join(f"{column} = ?" for column in columns)
    cursor = conn.execute(
        f"UPDATE analysis_runs SET {assignments} WHERE id = ?",
        [fields[column] for column in columns] + [run_id],
    )
    if cursor.rowcount == 0:
        raise ValueError(f"Cannot update run_id={run_id}: run does not exist")


def get_analysis_run(conn: sqlite3.Connection, run_id: str) -> sqlite3.Row | None:
    return conn.execute(
        f"SELECT {_RUN_COLUMNS} FROM analysis_runs WHERE id = ?", (run_id,)
    ).fetchone()


def list_analysis_runs(
    conn: sqlite3.Connection,
    item_id: int,
    statuses: Iterable[str] | None = None,
    limit: int | None = None,
) -> list[sqlite3.Row]:
    """Return the item's runs newest first, optionally filtered by status."""
    sql = f"SELECT {_RUN_COLUMNS} FROM analysis_runs WHERE item_id = ?"
    params: list[Any] = [item_id]

    if statuses is not None:
        statuses = list(statuses)
        sql += f" AND status IN ({', '.join('?' for _ in statuses)})"
        params.extend(statuses)

    sql += " ORDER BY created_at DESC, id DESC"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)

    return conn.execute(sql, params).fetchall()


def find_completed_run_since(
    conn: sqlite3.Connection, item_id: int, since: str
) -> sqlite3.Row | None:
    """Return the newest completed run created at or after since."""
    return conn.execute(
        f"""
        SELECT {_RUN_COLUMNS} FROM analysis_runs
        WHERE item_id = ? AND status = 'completed' AND created_at >= ?
        ORDER BY created_at DESC
        LIMIT 1
        """,
        (item_id, since),
    ).fetchone()


# ============================================================================
# Ranking attempts
# ============================================================================


def insert_ranking_attempts(conn: sqlite3.Connection, attempts: list[dict[str, Any]]) -> int:
    """
    Bulk-insert attempt rows.

    Args:
        conn: Active SQLite database connection
        attempts: Dicts with the ranking_attempts columns (parsed_ranking as list)

    Returns:
        Number of rows inserted
    """
    timestamp = utc_timestamp()
    conn.executemany(
        """
        INSERT INTO ranking_attempts (
            run_id, query_id, provider_id, provider_name, attempt_number,
            parsed_ranking, target_rank, found_name, success, error_message,
            response_time_ms, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                attempt["run_id"],
                attempt["query_id"],
                attempt["provider_id"],
                attempt["provider_name"],
                attempt["attempt_number"],
                None
                if attempt["parsed_ranking"] is None
                else json.dumps(attempt["parsed_ranking"]),
                attempt["target_rank"],
                attempt["found_name"],
                int(attempt["success"]),
                attempt["error_message"],
                attempt["response_time_ms"],
                timestamp,
            )
            for attempt in attempts
        ],
    )
    return len(attempts)


_ATTEMPT_COLUMNS = """
    id, run_id, query_id, provider_id, provider_name, attempt_number,
    parsed_ranking, target_rank, found_name, success, error_message,
    response_time_ms, created_at
"""


def list_ranked_attempts(conn: sqlite3.Connection, run_id: str) -> list[sqlite3.Row]:
    """Return the run's attempts that carry parsed ranking data, in insert order."""
    return conn.execute(
        f"""
        SELECT {_ATTEMPT_COLUMNS} FROM ranking_attempts
        WHERE run_id = ? AND parsed_ranking IS NOT NULL
        ORDER BY id
        """,
        (run_id,),
    ).fetchall()


def list_attempts(
    conn: sqlite3.Connection, run_id: str, query_id: int | None = None
) -> list[sqlite3.Row]:
    sql = f"SELECT {_ATTEMPT_COLUMNS} FROM ranking_attempts WHERE run_id = ?"
    params: list[Any] = [run_id]
    if query_id is not None:
        sql += " AND query_id = ?"
        params.append(query_id)
    return conn.execute(sql + " ORDER BY id", params).fetchall()


def list_query_attempts_by_run(
    conn: sqlite3.Connection, query_id: int, run_ids: list[str]
) -> list[sqlite3.Row]:
    """Return attempts of one query across several runs."""
    if not run_ids:
        return []
    placeholders = ", ".join("?" for _ in run_ids)
    return conn.execute(
        f"""
        SELECT {_ATTEMPT_COLUMNS} FROM ranking_attempts
        WHERE query_id = ? AND run_id IN ({placeholders})
        ORDER BY id
        """,
        [query_id, *run_ids],
    ).fetchall()


# ============================================================================
# Competitor results
# ============================================================================


def delete_competitor_results(conn: sqlite3.Connection, run_id: str, query_id: int) -> int:
    cursor = conn.execute(
        "DELETE FROM competitor_results WHERE run_id = ? AND query_id = ?",
        (run_id, query_id),
    )
    return cursor.rowcount


def insert_competitor_results(conn: sqlite3.Connection, rows: list[dict[str, Any]]) -> int:
    timestamp = utc_timestamp()
    conn.executemany(
        """
        INSERT INTO competitor_results (
            run_id, query_id, name, average_rank, best_rank, worst_rank,
            appearances, total_attempts, appearance_rate, weighted_score,
            llm_providers, raw_ranks, is_target, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                row["run_id"],
                row["query_id"],
                row["name"],
                row["average_rank"],
                row["best_rank"],
                row["worst_rank"],
                row["appearances"],
                row["total_attempts"],
                row["appearance_rate"],
                row["weighted_score"],
                json.dumps(row["llm_providers"]),
                json.dumps(row["raw_ranks"]),
                int(row["is_target"]),
                timestamp,
            )
            for row in rows
        ],
    )
    return len(rows)


def list_competitor_results(
    conn: sqlite3.Connection, run_id: str, query_id: int
) -> list[sqlite3.Row]:
    """Return competitor rows ordered by weighted score (best first)."""
    return conn.execute(
        """
        SELECT id, run_id, query_id, name, average_rank, best_rank, worst_rank,
               appearances, total_attempts, appearance_rate, weighted_score,
               llm_providers, raw_ranks, is_target, created_at
        FROM competitor_results
        WHERE run_id = ? AND query_id = ?
        ORDER BY weighted_score ASC, average_rank ASC, name ASC
        """,
        (run_id, query_id),
    ).fetchall()
