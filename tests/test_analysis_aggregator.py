"""
Tests for analysis.aggregator module.

Tests cover:
- Per-name statistics (average, best, worst, appearances, rates)
- Weighted score formula and its monotonicity in appearance rate
- Failed attempts counting in the denominator
- Target detection
- CompetitorAggregator: per-query grouping, idempotence, write failures
"""

import pytest

from llm_rank_watcher.analysis.aggregator import (
    CompetitorAggregator,
    compute_competitor_results,
    is_target_name,
    weighted_score,
)
from llm_rank_watcher.config.providers import ProviderId
from llm_rank_watcher.exceptions import PersistenceError
from llm_rank_watcher.storage import RankingAttempt, SQLiteStore


def attempt(ranking, provider_name="OpenAI", number=1, query_id=1, success=True):
    return RankingAttempt(
        run_id="run-1",
        query_id=query_id,
        provider_id=1,
        provider_name=provider_name,
        attempt_number=number,
        parsed_ranking=ranking,
        target_rank=None,
        found_name=None,
        success=success,
    )


def by_name(results):
    return {result.name: result for result in results}


class TestIsTargetName:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("Acme Bakery", True),
            ("acme bakery cork", True),
            ("ACME", True),
            (" Acme Bakery ", True),
            ("Globex", False),
            ("", False),
        ],
    )
    def test_substring_either_direction(self, name, expected):
        assert is_target_name(name, "Acme Bakery") is expected


class TestWeightedScore:
    def test_always_present(self):
        assert weighted_score(2.0, 1.0) == 2.0

    def test_half_present(self):
        assert weighted_score(2.0, 0.5) == 3.0

    def test_rounded_to_two_places(self):
        assert weighted_score(8 / 3, 1.0) == 2.67

    def test_decreases_as_appearance_rate_grows(self):
        scores = [weighted_score(3.0, fraction) for fraction in (0.1, 0.4, 0.7, 1.0)]

        assert scores == sorted(scores, reverse=True)


class TestComputeCompetitorResults:
    """Test suite for compute_competitor_results()."""

    def test_statistics(self):
        attempts = [
            attempt(["Globex", "Acme Bakery", "Initech"], number=1),
            attempt(["Globex", "Acme Bakery"], number=2),
            attempt(["Initech", "Globex", "Umbrella", "Acme Bakery"], "Google Gemini", number=1),
        ]

        results = by_name(compute_competitor_results("run-1", 7, attempts, "Acme Bakery"))

        acme = results["Acme Bakery"]
        assert acme.raw_ranks == [2, 2, 4]
        assert acme.average_rank == 2.67
        assert acme.best_rank == 2
        assert acme.worst_rank == 4
        assert acme.appearances == 3
        assert acme.total_attempts == 3
        assert acme.appearance_rate == 100.0
        assert acme.weighted_score == 2.67
        assert acme.is_target
        assert acme.llm_providers == ["OpenAI", "Google Gemini"]
        assert acme.run_id == "run-1"
        assert acme.query_id == 7

        umbrella = results["Umbrella"]
        assert umbrella.appearances == 1
        assert umbrella.appearance_rate == 33.33
        # 3.0 * (2 - 1/3)
        assert umbrella.weighted_score == 5.0
        assert not umbrella.is_target

    def test_failed_attempts_count_in_denominator(self):
        attempts = [
            attempt(["Acme"], number=1),
            attempt([], number=2, success=False),
        ]

        result = by_name(compute_competitor_results("run-1", 1, attempts, "Globex"))["Acme"]

        assert result.total_attempts == 2
        assert result.appearance_rate == 50.0
        assert result.weighted_score == 1.5

    def test_weighted_score_uses_unrounded_average(self):
        attempts = [attempt(["A", "B"]), attempt(["B", "A"], number=2), attempt(["B"], number=3)]

        # A: ranks [1, 2] -> avg 1.5, fraction 2/3 -> 1.5 * 4/3 = 2.0
        # B: ranks [2, 1, 1] -> avg 4/3, fraction 1 -> 1.33
        results = by_name(compute_competitor_results("run-1", 1, attempts, "Z"))

        assert results["A"].weighted_score == 2.0
        assert results["B"].weighted_score == 1.33

    def test_names_are_keyed_after_trimming(self):
        attempts = [attempt(["Acme "]), attempt([" Acme"], number=2)]

        results = compute_competitor_results("run-1", 1, attempts, "Globex")

        assert [r.name for r in results] == ["Acme"]
        assert results[0].appearances == 2

    def test_case_variants_stay_separate(self):
        attempts = [attempt(["Acme"]), attempt(["ACME"], number=2)]

        results = compute_competitor_results("run-1", 1, attempts, "Globex")

        assert [r.name for r in results] == ["Acme", "ACME"]

    def test_no_attempts(self):
        assert compute_competitor_results("run-1", 1, [], "Acme") == []

    def test_only_failed_attempts(self):
        attempts = [attempt([], success=False), attempt([], number=2, success=False)]

        assert compute_competitor_results("run-1", 1, attempts, "Acme") == []


class TestCompetitorAggregator:
    """Test suite for CompetitorAggregator.aggregate()."""

    @pytest.fixture
    def store(self, tmp_path):
        return SQLiteStore(str(tmp_path / "rank.db"))

    @pytest.fixture
    def run_setup(self, store):
        item_id = store.upsert_item("Acme Bakery", "local")
        q1 = store.upsert_query(item_id, "best bakeries")
        q2 = store.upsert_query(item_id, "best cafes")
        provider_id = store.upsert_provider(ProviderId.OPENAI, "OpenAI", "gpt-5-nano")
        run = store.create_run(item_id, 2, 4)

        def make(query_id, number, ranking):
            return RankingAttempt(
                run_id=run.id,
                query_id=query_id,
                provider_id=provider_id,
                provider_name="OpenAI",
                attempt_number=number,
                parsed_ranking=ranking,
                target_rank=None,
                found_name=None,
                success=True,
            )

        store.insert_attempts(
            [
                make(q1, 1, ["Globex", "Acme Bakery"]),
                make(q1, 2, ["Acme Bakery", "Globex"]),
                make(q2, 1, ["Initech"]),
                make(q2, 2, []),
            ]
        )
        return run, q1, q2

    def test_groups_by_query(self, store, run_setup):
        run, q1, q2 = run_setup

        inserted = CompetitorAggregator(store).aggregate(run.id)

        assert inserted == 3
        assert {r.name for r in store.get_competitor_results(q1, run.id)} == {
            "Acme Bakery",
            "Globex",
        }
        (initech,) = store.get_competitor_results(q2, run.id)
        assert initech.total_attempts == 2
        assert initech.appearance_rate == 50.0

    def test_target_flag_persisted(self, store, run_setup):
        run, q1, _ = run_setup

        CompetitorAggregator(store).aggregate(run.id)

        flags = {r.name: r.is_target for r in store.get_competitor_results(q1, run.id)}
        assert flags == {"Acme Bakery": True, "Globex": False}

    def test_is_idempotent(self, store, run_setup):
        run, q1, _ = run_setup
        aggregator = CompetitorAggregator(store)

        aggregator.aggregate(run.id)
        first = [(r.name, r.weighted_score) for r in store.get_competitor_results(q1, run.id)]
        aggregator.aggregate(run.id)
        second = [(r.name, r.weighted_score) for r in store.get_competitor_results(q1, run.id)]

        assert first == second
        assert len(second) == 2

    def test_unknown_run(self, store):
        with pytest.raises(PersistenceError, match="does not exist"):
            CompetitorAggregator(store).aggregate("run-404")

    def test_write_failure_for_one_query_does_not_stop_others(
        self, store, run_setup, monkeypatch, caplog
    ):
        run, q1, q2 = run_setup
        original = store.replace_competitor_results

        def flaky_replace(run_id, query_id, results):
            if query_id == q1:
                raise PersistenceError("database is locked")
            return original(run_id, query_id, results)

        monkeypatch.setattr(store, "replace_competitor_results", flaky_replace)

        inserted = CompetitorAggregator(store).aggregate(run.id)

        assert inserted == 1
        assert store.get_competitor_results(q1, run.id) == []
        assert len(store.get_competitor_results(q2, run.id)) == 1
        assert "database is locked" in caplog.text
