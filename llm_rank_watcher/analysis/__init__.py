"""
Analysis package: attempts, run orchestration, aggregation, history,
query suggestions and source discovery.
"""

from llm_rank_watcher.analysis.aggregator import (
    CompetitorAggregator,
    compute_competitor_results,
)
from llm_rank_watcher.analysis.attempt_runner import (
    AttemptOutcome,
    AttemptRunner,
    build_ranking_prompt,
    truncation_limit,
)
from llm_rank_watcher.analysis.history import (
    RankHistoryPoint,
    WeeklyAnalysisCheck,
    check_weekly_analysis,
    ranking_history,
)
from llm_rank_watcher.analysis.orchestrator import AnalysisHandle, AnalysisOrchestrator
from llm_rank_watcher.analysis.sources import (
    BlindSpotReport,
    SourceDiscoverer,
    SourceInfo,
    analyze_blind_spots,
)
from llm_rank_watcher.analysis.suggestions import QuerySuggester, QuerySuggestion

__all__ = [
    "AnalysisHandle",
    "AnalysisOrchestrator",
    "AttemptOutcome",
    "AttemptRunner",
    "BlindSpotReport",
    "CompetitorAggregator",
    "QuerySuggester",
    "QuerySuggestion",
    "RankHistoryPoint",
    "SourceDiscoverer",
    "SourceInfo",
    "WeeklyAnalysisCheck",
    "analyze_blind_spots",
    "build_ranking_prompt",
    "check_weekly_analysis",
    "compute_competitor_results",
    "ranking_history",
    "truncation_limit",
]
