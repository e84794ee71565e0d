"""
Tests for utils.console module.

Tests cover:
- OutputMode validation, buffering and flushing
- Message helpers in text, quiet and JSON modes
- Spinner and progress bar fallbacks
- Competitor, run and history tables in all modes
- Query suggestion, source and blind spot output
- Run summary flushing the JSON document
"""

import json
from unittest.mock import patch

import pytest
from rich.progress import Progress

from llm_rank_watcher.analysis.history import RankHistoryPoint
from llm_rank_watcher.analysis.sources import BlindSpotReport, SourceInfo
from llm_rank_watcher.analysis.suggestions import QuerySuggestion
from llm_rank_watcher.storage.models import AnalysisRun, CompetitorResult, RunStatus
from llm_rank_watcher.utils.console import (
    NoOpProgress,
    OutputMode,
    create_progress_bar,
    error,
    info,
    output_mode,
    print_blind_spots,
    print_competitor_table,
    print_history_table,
    print_run_summary,
    print_runs_table,
    print_sources_table,
    print_suggestions_table,
    spinner,
    success,
    warning,
)


@pytest.fixture(autouse=True)
def reset_output_mode():
    output_mode.reset()
    yield
    output_mode.reset()


@pytest.fixture
def run():
    return AnalysisRun(
        id="2025-01-06T09-00-00Z-abcd1234",
        item_id=1,
        status=RunStatus.COMPLETED,
        total_queries=1,
        completed_queries=1,
        total_llm_calls=6,
        completed_llm_calls=6,
        started_at="2025-01-06T09:00:01Z",
        completed_at="2025-01-06T09:02:00Z",
        error_message=None,
        created_at="2025-01-06T09:00:00Z",
    )


@pytest.fixture
def competitors():
    return [
        CompetitorResult(
            run_id="r",
            query_id=1,
            name="Globex",
            average_rank=1.0,
            best_rank=1,
            worst_rank=1,
            appearances=3,
            total_attempts=3,
            appearance_rate=100.0,
            weighted_score=1.0,
            llm_providers=["OpenAI"],
            raw_ranks=[1, 1, 1],
        ),
        CompetitorResult(
            run_id="r",
            query_id=1,
            name="Acme Bakery",
            average_rank=2.67,
            best_rank=2,
            worst_rank=4,
            appearances=3,
            total_attempts=3,
            appearance_rate=100.0,
            weighted_score=2.67,
            llm_providers=["OpenAI", "Google Gemini"],
            raw_ranks=[2, 2, 4],
            is_target=True,
        ),
    ]


class TestOutputMode:
    def test_defaults(self):
        mode = OutputMode()

        assert mode.is_human()
        assert not mode.is_agent()
        assert mode.quiet is False

    def test_invalid_format(self):
        with pytest.raises(ValueError, match="Invalid format: xml"):
            OutputMode(format_type="xml")

    def test_append_and_buffered(self):
        mode = OutputMode(format_type="json")

        mode.append_json("warnings", "a")
        mode.append_json("warnings", "b")
        mode.buffered("competitors", {})["q"] = []

        assert mode.buffered("warnings") == ["a", "b"]
        assert mode.buffered("competitors") == {"q": []}

    def test_flush_writes_json_and_clears(self, capsys):
        mode = OutputMode(format_type="json")
        mode.add_json("status", "success")
        mode.add_json("count", 2)

        mode.flush_json()
        mode.flush_json()

        assert json.loads(capsys.readouterr().out) == {"status": "success", "count": 2}

    def test_flush_is_noop_in_text_mode(self, capsys):
        mode = OutputMode(format_type="text")
        mode.add_json("status", "success")

        mode.flush_json()

        assert capsys.readouterr().out == ""

    def test_reset(self):
        mode = OutputMode(format_type="json", quiet=True)
        mode.add_json("k", "v")

        mode.reset()

        assert mode.is_human()
        assert mode.quiet is False
        assert mode.buffered("k") is None


class TestMessages:
    """success(), error(), warning() and info() in every mode."""

    @patch("llm_rank_watcher.utils.console.console")
    def test_success_text(self, mock_console):
        success("Config loaded")

        mock_console.print.assert_called_once()
        assert "Config loaded" in mock_console.print.call_args[0][0]

    def test_success_json(self):
        output_mode.format = "json"

        success("done")

        assert output_mode.buffered("status") == "success"
        assert output_mode.buffered("message") == "done"

    @patch("llm_rank_watcher.utils.console.console_err")
    def test_error_text_goes_to_stderr(self, mock_console_err):
        error("boom")

        assert "boom" in mock_console_err.print.call_args[0][0]

    def test_error_json(self):
        output_mode.format = "json"

        error("boom")

        assert output_mode.buffered("status") == "error"
        assert output_mode.buffered("error") == "boom"

    def test_warnings_accumulate_in_json(self):
        output_mode.format = "json"

        warning("first")
        warning("second")

        assert output_mode.buffered("warnings") == ["first", "second"]

    @patch("llm_rank_watcher.utils.console.console")
    def test_info_suppressed_when_quiet(self, mock_console):
        output_mode.quiet = True

        info("hidden")

        mock_console.print.assert_not_called()

    @patch("llm_rank_watcher.utils.console.console")
    def test_info_silent_in_json(self, mock_console):
        output_mode.format = "json"

        info("hidden")

        mock_console.print.assert_not_called()
        assert output_mode.buffered("message") is None


class TestProgress:
    def test_spinner_yields_none_in_json(self):
        output_mode.format = "json"

        with spinner("Loading") as status:
            assert status is None

    def test_progress_bar_in_text_mode(self):
        assert isinstance(create_progress_bar(), Progress)

    @pytest.mark.parametrize(("fmt", "quiet"), [("json", False), ("text", True)])
    def test_noop_progress_otherwise(self, fmt, quiet):
        output_mode.format = fmt
        output_mode.quiet = quiet

        with create_progress_bar() as progress:
            assert isinstance(progress, NoOpProgress)
            task = progress.add_task("Analysing", total=10)
            progress.update(task, completed=5)
            progress.advance(task)


class TestCompetitorTable:
    def test_json_grouped_by_query(self, competitors):
        output_mode.format = "json"

        print_competitor_table("best bakeries", competitors)
        print_competitor_table("best cafes", competitors[:1])

        buffered = output_mode.buffered("competitors")
        assert list(buffered) == ["best bakeries", "best cafes"]
        assert buffered["best bakeries"][1]["name"] == "Acme Bakery"
        assert buffered["best bakeries"][1]["is_target"] is True
        assert "raw_ranks" not in buffered["best bakeries"][0]

    def test_quiet_prints_tab_separated(self, competitors, capsys):
        output_mode.quiet = True

        print_competitor_table("best bakeries", competitors)

        lines = capsys.readouterr().out.splitlines()
        assert lines == ["Globex\t1.00\t100.00\t1.00", "Acme Bakery\t2.67\t100.00\t2.67"]

    @patch("llm_rank_watcher.utils.console.console")
    def test_text_renders_table(self, mock_console, competitors):
        print_competitor_table("best bakeries", competitors)

        table = mock_console.print.call_args[0][0]
        assert table.title == "Competitors: best bakeries"
        assert table.row_count == 2


class TestRunsAndHistory:
    def test_runs_json(self, run):
        output_mode.format = "json"

        print_runs_table([run])

        (entry,) = output_mode.buffered("runs")
        assert entry["run_id"] == run.id
        assert entry["status"] == "completed"

    def test_runs_quiet(self, run, capsys):
        output_mode.quiet = True

        print_runs_table([run])

        assert capsys.readouterr().out == f"{run.id}\tcompleted\t6\t6\n"

    def test_history_json(self):
        output_mode.format = "json"
        point = RankHistoryPoint(
            run_id="r1",
            run_date="2025-01-06T09:00:00Z",
            total_attempts=3,
            successful_attempts=3,
            times_found=0,
            average_rank=None,
            best_rank=None,
            worst_rank=None,
            appearance_rate=0.0,
        )

        print_history_table("best bakeries", [point])

        assert output_mode.buffered("query") == "best bakeries"
        assert output_mode.buffered("history")[0]["average_rank"] is None

    def test_history_quiet_uses_dash_for_missing_rank(self, capsys):
        output_mode.quiet = True
        point = RankHistoryPoint("r1", "2025-01-06T09:00:00Z", 3, 3, 0, None, None, None, 0.0)

        print_history_table("q", [point])

        assert capsys.readouterr().out == "r1\t-\t0\t3\n"


class TestRunSummary:
    def test_json_flushes_buffer_with_run_fields(self, run, competitors, capsys):
        output_mode.format = "json"
        warning("OPENAI_API_KEY is not set")
        print_competitor_table("best bakeries", competitors)

        print_run_summary(run, competitor_rows=2)

        data = json.loads(capsys.readouterr().out)
        assert data["run_id"] == run.id
        assert data["run_status"] == "completed"
        assert data["competitor_rows"] == 2
        assert data["warnings"] == ["OPENAI_API_KEY is not set"]
        assert "best bakeries" in data["competitors"]
        assert "error_message" not in data

    def test_quiet(self, run, capsys):
        output_mode.quiet = True

        print_run_summary(run, competitor_rows=2)

        assert capsys.readouterr().out == f"{run.id}\tcompleted\t6\t6\n"

    @patch("llm_rank_watcher.utils.console.console")
    def test_text_failed_run_panel(self, mock_console, run):
        failed = AnalysisRun(**{**vars(run), "status": RunStatus.FAILED, "error_message": "boom"})

        print_run_summary(failed, competitor_rows=0)

        panel = mock_console.print.call_args[0][0]
        assert "Failed" in panel.title
        assert "boom" in panel.renderable


TRIPADVISOR = SourceInfo(
    platform="TripAdvisor",
    url="https://www.tripadvisor.com",
    description="Traveller reviews",
    importance="high",
    category="Review Platform",
)
YELP = SourceInfo("Yelp", "https://www.yelp.com", "Local reviews", "medium", "Review Platform")


class TestSuggestionsAndSources:
    def test_suggestions_json(self):
        output_mode.format = "json"

        print_suggestions_table(
            "Acme Bakery", [QuerySuggestion("best bakeries in Cork", "open ranking")]
        )

        assert output_mode.buffered("item") == "Acme Bakery"
        assert output_mode.buffered("suggestions") == [
            {"text": "best bakeries in Cork", "reasoning": "open ranking"}
        ]

    def test_suggestions_quiet_prints_query_text_only(self, capsys):
        output_mode.quiet = True

        print_suggestions_table(
            "Acme Bakery",
            [QuerySuggestion("best bakeries in Cork", "a"), QuerySuggestion("top cafes Cork", "b")],
        )

        assert capsys.readouterr().out == "best bakeries in Cork\ntop cafes Cork\n"

    @patch("llm_rank_watcher.utils.console.console")
    def test_suggestions_text_renders_table(self, mock_console):
        print_suggestions_table("Acme Bakery", [QuerySuggestion("best bakeries in Cork", "a")])

        table = mock_console.print.call_args[0][0]
        assert table.title == "Suggested Queries: Acme Bakery"
        assert table.row_count == 1

    def test_sources_json_keyed_by_title(self):
        output_mode.format = "json"

        print_sources_table("best bakeries", [TRIPADVISOR])
        print_sources_table("Acme Bakery", [YELP])

        buffered = output_mode.buffered("sources")
        assert list(buffered) == ["best bakeries", "Acme Bakery"]
        assert buffered["best bakeries"][0]["importance"] == "high"

    def test_sources_quiet(self, capsys):
        output_mode.quiet = True

        print_sources_table("best bakeries", [TRIPADVISOR])

        assert capsys.readouterr().out == (
            "best bakeries\tTripAdvisor\thigh\thttps://www.tripadvisor.com\n"
        )

    def test_blind_spots_json(self):
        output_mode.format = "json"
        report = BlindSpotReport(
            missing_platforms=[TRIPADVISOR],
            underutilized_platforms=[YELP],
            opportunities=[TRIPADVISOR],
        )

        print_blind_spots("best bakeries", report)

        blind_spots = output_mode.buffered("blind_spots")["best bakeries"]
        assert [s["platform"] for s in blind_spots["opportunities"]] == ["TripAdvisor"]
        assert [s["platform"] for s in blind_spots["underutilized_platforms"]] == ["Yelp"]

    @patch("llm_rank_watcher.utils.console.console")
    def test_blind_spots_text_panel(self, mock_console):
        report = BlindSpotReport([TRIPADVISOR], [], [TRIPADVISOR])

        print_blind_spots("best bakeries", report)

        panel = mock_console.print.call_args[0][0]
        assert "Blind Spots: best bakeries" in panel.title
        assert "TripAdvisor" in panel.renderable
