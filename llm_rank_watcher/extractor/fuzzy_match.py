"""
Fuzzy name matching: locate the tracked item in a ranked list.

Scoring (case- and surrounding-whitespace-insensitive):
- 1.0 when the names are identical
- 0.8 when either name contains the other
- otherwise the word-overlap ratio: target words having some candidate word
  that contains it or is contained by it, divided by the larger word count;
  ratios below WORD_OVERLAP_THRESHOLD count as 0

The thresholds are tunable heuristics kept for compatibility with existing
rankings; short targets (one or two words) reach the overlap threshold
easily.

Example:
    >>> find_best_match("Wild Rover Tours", ["Dublin Walks", "Wild Rover Tours Ltd"])
    MatchResult(rank=2, name='Wild Rover Tours Ltd', score=0.8)
"""

from dataclasses import dataclass

EXACT_MATCH_SCORE = 1.0
CONTAINS_MATCH_SCORE = 0.8
WORD_OVERLAP_THRESHOLD = 0.6


@dataclass(frozen=True)
class MatchResult:
    """
    Best match of a target name within a ranked list.

    Attributes:
        rank: 1-based position of the match, or None when not found
        name: Matched list entry, or None when not found
        score: Similarity score of the match (0.0 when not found)
    """

    rank: int | None
    name: str | None
    score: float = 0.0

    @property
    def found(self) -> bool:
        return self.rank is not None


NOT_FOUND = MatchResult(rank=None, name=None, score=0.0)


def similarity_score(target: str, candidate: str) -> float:
    """
    Score how likely candidate refers to target, in [0, 1].

    Args:
        target: Name being looked for
        candidate: Name from a ranked list

    Returns:
        1.0, 0.8, a word-overlap ratio >= WORD_OVERLAP_THRESHOLD, or 0.0.
        Empty names never match.

    Example:
        >>> similarity_score("Acme", "ACME ")
        1.0
        >>> similarity_score("Acme", "Acme Bakery")
        0.8
        >>> similarity_score("Old Town Bakery", "Bakery Old Towne")
        1.0
        >>> similarity_score("Acme Bakery Dublin", "Globex Bakery Cork")
        0.0
    """
    target_norm = target.lower().strip()
    candidate_norm = candidate.lower().strip()

    if not target_norm or not candidate_norm:
        return 0.0

    if target_norm == candidate_norm:
        return EXACT_MATCH_SCORE

    if target_norm in candidate_norm or candidate_norm in target_norm:
        return CONTAINS_MATCH_SCORE

    target_words = target_norm.split()
    candidate_words = candidate_norm.split()

    overlapping = sum(
        1
        for word in target_words
        if any(word in other or other in word for other in candidate_words)
    )
    ratio = overlapping / max(len(target_words), len(candidate_words))

    return ratio if ratio >= WORD_OVERLAP_THRESHOLD else 0.0


def find_best_match(target: str, candidates: list[str]) -> MatchResult:
    """
    Find the highest-scoring candidate for target.

    Every candidate is scored; only a strictly higher score replaces the
    current best, so ties keep the earliest position.

    Args:
        target: Name being looked for
        candidates: Ranked list of names

    Returns:
        MatchResult with 1-based rank and name, or NOT_FOUND if nothing scores above 0
    """
    best_score = 0.0
    best_index = None

    for index, candidate in enumerate(candidates):
        score = similarity_score(target, candidate)
        if score > best_score:
            best_score = score
            best_index = index

    if best_index is None:
        return NOT_FOUND

    return MatchResult(rank=best_index + 1, name=candidates[best_index], score=best_score)
