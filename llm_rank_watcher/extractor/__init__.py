"""
Extractor package: turn raw model answers into ranked names and find the
tracked item in them.

Public API:
    - parse_ranked_list: numbered-list extraction plus near-duplicate removal
    - find_best_match / similarity_score: fuzzy location of the tracked item
    - NameStandardizer / StandardizationCache: optional canonical-name pass
"""

from llm_rank_watcher.extractor.fuzzy_match import (
    MatchResult,
    find_best_match,
    similarity_score,
)
from llm_rank_watcher.extractor.parser import (
    deduplicate_names,
    extract_names,
    normalize_name,
    parse_ranked_list,
)
from llm_rank_watcher.extractor.standardizer import (
    NameStandardizer,
    StandardizationCache,
)

__all__ = [
    "MatchResult",
    "NameStandardizer",
    "StandardizationCache",
    "deduplicate_names",
    "extract_names",
    "find_best_match",
    "normalize_name",
    "parse_ranked_list",
    "similarity_score",
]
