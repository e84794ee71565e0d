"""
Tests for extractor.fuzzy_match module.
"""

import pytest

from llm_rank_watcher.extractor.fuzzy_match import (
    CONTAINS_MATCH_SCORE,
    EXACT_MATCH_SCORE,
    NOT_FOUND,
    MatchResult,
    find_best_match,
    similarity_score,
)


class TestSimilarityScore:
    """Test suite for similarity_score()."""

    def test_exact_match_ignores_case_and_outer_whitespace(self):
        assert similarity_score("Acme Bakery", "  acme BAKERY ") == EXACT_MATCH_SCORE

    def test_substring_either_direction(self):
        assert similarity_score("Acme", "Acme Bakery Cork") == CONTAINS_MATCH_SCORE
        assert similarity_score("Acme Bakery Cork", "acme bakery") == CONTAINS_MATCH_SCORE

    @pytest.mark.parametrize(
        ("a", "b"),
        [
            ("Acme", "ACME"),
            ("Acme", "Acme Bakery"),
            ("Wild Rover Tours", "The Wild Rover Tours Ltd"),
        ],
    )
    def test_symmetric_for_exact_and_substring(self, a, b):
        assert similarity_score(a, b) == similarity_score(b, a)

    def test_word_overlap_above_threshold(self):
        # 2 of 3 target words overlap: 2/3 >= 0.6
        score = similarity_score("Acme Bakery Dublin", "Bakery Acme Cork")

        assert score == pytest.approx(2 / 3)

    def test_word_overlap_uses_larger_word_count(self):
        # 2 overlapping words / max(2, 4) = 0.5 < 0.6
        assert similarity_score("Acme Bakery", "Bakery of Acme Town") == 0.0

    def test_word_overlap_counts_partial_words(self):
        # "tour" is contained in "tours"; 3/3 words overlap
        assert similarity_score("Wild Rover Tour", "Rover Wild Tours") == 1.0

    def test_word_overlap_below_threshold_is_zero(self):
        assert similarity_score("Acme Bakery Dublin", "Globex Bakery Cork") == 0.0

    def test_unrelated_names(self):
        assert similarity_score("Acme", "Globex") == 0.0

    def test_empty_names_never_match(self):
        assert similarity_score("", "Acme") == 0.0
        assert similarity_score("Acme", "   ") == 0.0


class TestFindBestMatch:
    """Test suite for find_best_match()."""

    def test_returns_one_based_rank_and_name(self):
        result = find_best_match("Acme", ["Globex", "Initech", "Acme"])

        assert result == MatchResult(rank=3, name="Acme", score=EXACT_MATCH_SCORE)
        assert result.found

    def test_prefers_higher_score_over_earlier_position(self):
        result = find_best_match("Acme", ["Acme Bakery", "Globex", "ACME"])

        assert result.rank == 3
        assert result.name == "ACME"

    def test_ties_keep_first_found(self):
        result = find_best_match("Acme", ["Acme Bakery", "Acme Cafe"])

        assert result.rank == 1
        assert result.name == "Acme Bakery"

    def test_not_found(self):
        result = find_best_match("Acme", ["Globex", "Initech"])

        assert result == NOT_FOUND
        assert result.rank is None
        assert result.name is None
        assert not result.found

    def test_empty_list(self):
        assert find_best_match("Acme", []) == NOT_FOUND
