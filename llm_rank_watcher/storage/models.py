"""
Domain records persisted by the store.

These dataclasses are what the store returns and accepts; the analysis
engine never sees sqlite rows directly.

Run lifecycle:
    pending -> running -> completed
                      \\-> failed
completed and failed are terminal.
"""

from dataclasses import dataclass, field
from enum import StrEnum

from llm_rank_watcher.config.providers import ProviderId


class RunStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)

    def can_transition_to(self, target: "RunStatus") -> bool:
        """
        Check whether moving from this status to target is legal.

        Staying in the same non-terminal status is allowed so progress
        patches may repeat the current status.
        """
        if self == target:
            return not self.is_terminal
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.PENDING: frozenset({RunStatus.RUNNING, RunStatus.FAILED}),
    RunStatus.RUNNING: frozenset({RunStatus.COMPLETED, RunStatus.FAILED}),
    RunStatus.COMPLETED: frozenset(),
    RunStatus.FAILED: frozenset(),
}


@dataclass(frozen=True)
class Item:
    """A tracked business/product."""

    id: int
    name: str
    owner_id: str
    created_at: str


@dataclass(frozen=True)
class Query:
    """A natural-language ranking query belonging to an item."""

    id: int
    item_id: int
    text: str
    active: bool
    created_at: str


@dataclass(frozen=True)
class Provider:
    """
    Provider reference row.

    Attributes:
        id: Store identifier
        canonical_id: Which back-end the gateway should call
        name: Display name, also the stable ordering key
        default_model: Model used for ranking calls
        active: Only active providers are queried
    """

    id: int
    canonical_id: ProviderId
    name: str
    default_model: str
    active: bool


@dataclass(frozen=True)
class AnalysisRun:
    """One execution over all active queries x active providers for an item."""

    id: str
    item_id: int
    status: RunStatus
    total_queries: int
    completed_queries: int
    total_llm_calls: int
    completed_llm_calls: int
    started_at: str | None
    completed_at: str | None
    error_message: str | None
    created_at: str

    @property
    def progress(self) -> float:
        """Fraction of LLM calls completed, in [0, 1]."""
        if self.total_llm_calls <= 0:
            return 0.0
        return min(self.completed_llm_calls / self.total_llm_calls, 1.0)


@dataclass
class RankingAttempt:
    """
    Outcome of one (run, query, provider, attempt number) call.

    parsed_ranking is [] for failed attempts and None only for rows written
    by an interrupted process before parsing (never by this engine).
    """

    run_id: str
    query_id: int
    provider_id: int
    provider_name: str
    attempt_number: int
    parsed_ranking: list[str] | None
    target_rank: int | None
    found_name: str | None
    success: bool
    error_message: str | None = None
    response_time_ms: int = 0
    id: int | None = None
    created_at: str | None = None

    def __post_init__(self):
        if self.attempt_number < 1:
            raise ValueError(f"attempt_number must be >= 1, got: {self.attempt_number}")
        if self.target_rank is not None:
            ranking_length = len(self.parsed_ranking or [])
            if not 1 <= self.target_rank <= ranking_length:
                raise ValueError(
                    f"target_rank {self.target_rank} outside parsed ranking "
                    f"of length {ranking_length}"
                )


@dataclass
class CompetitorResult:
    """Aggregated statistics for one name within one (run, query)."""

    run_id: str
    query_id: int
    name: str
    average_rank: float
    best_rank: int
    worst_rank: int
    appearances: int
    total_attempts: int
    appearance_rate: float
    weighted_score: float
    llm_providers: list[str] = field(default_factory=list)
    raw_ranks: list[int] = field(default_factory=list)
    is_target: bool = False
    id: int | None = None
    created_at: str | None = None
