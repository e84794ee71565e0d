"""
Rich console helpers for the CLI's two output modes.

Text mode (--format text) renders spinners, progress bars, tables and
panels with Rich. JSON mode (--format json) renders nothing while the
command runs; messages and data are buffered and written to stdout as one
JSON document by flush_json() (or by print_run_summary()).

Quiet mode (--quiet) keeps text mode's data output but drops info lines
and decorations, printing tab-separated values where a panel would go.

Example:
    >>> output_mode.format = "text"
    >>> with spinner("Loading config..."):
    ...     config = load_config(path)
    >>> success("Config loaded")
"""

from __future__ import annotations

import json
import sys
from collections.abc import Sequence
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

if TYPE_CHECKING:
    from llm_rank_watcher.analysis.history import RankHistoryPoint
    from llm_rank_watcher.analysis.sources import BlindSpotReport, SourceInfo
    from llm_rank_watcher.analysis.suggestions import QuerySuggestion
    from llm_rank_watcher.storage.models import AnalysisRun, CompetitorResult


class OutputMode:
    """
    Current output format, set once from CLI flags.

    Attributes:
        format: "text" or "json"
        quiet: Suppress info lines and decorations in text mode
    """

    def __init__(self, format_type: str = "text", quiet: bool = False):
        if format_type not in ["text", "json"]:
            raise ValueError(f"Invalid format: {format_type}. Must be 'text' or 'json'")

        self.format = format_type
        self.quiet = quiet
        self._json_buffer: dict[str, Any] = {}

    def is_human(self) -> bool:
        return self.format == "text"

    def is_agent(self) -> bool:
        return self.format == "json"

    def add_json(self, key: str, value: Any) -> None:
        """Buffer a key for the JSON document written by flush_json()."""
        self._json_buffer[key] = value

    def append_json(self, key: str, value: Any) -> None:
        """Append value to the list buffered under key."""
        self._json_buffer.setdefault(key, []).append(value)

    def buffered(self, key: str, default: Any = None) -> Any:
        return self._json_buffer.setdefault(key, default)

    def flush_json(self) -> None:
        """Write the buffered JSON document to stdout (JSON mode only) and clear it."""
        if self.is_agent() and self._json_buffer:
            json.dump(self._json_buffer, sys.stdout, indent=2, default=str)
            sys.stdout.write("\n")
            sys.stdout.flush()
            self._json_buffer.clear()

    def reset(self) -> None:
        """Back to text mode with an empty buffer (used between CLI invocations in tests)."""
        self.format = "text"
        self.quiet = False
        self._json_buffer.clear()


output_mode = OutputMode()

console = Console()
console_err = Console(stderr=True)


@contextmanager
def spinner(message: str):
    """Show a spinner while the block runs (text mode only)."""
    if output_mode.is_human() and not output_mode.quiet:
        with console.status(f"[bold blue]{message}", spinner="dots") as status:
            yield status
    else:
        yield None


def create_progress_bar() -> Progress | NoOpProgress:
    """
    Progress bar for a running analysis.

    Returns a Rich Progress in text mode and a NoOpProgress otherwise, so
    callers never branch on the mode.
    """
    if output_mode.is_human() and not output_mode.quiet:
        return Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TextColumn("{task.completed}/{task.total} calls"),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        )
    return NoOpProgress()


class NoOpProgress:
    """Progress stand-in with the subset of Rich's API the CLI uses."""

    def __enter__(self):
        return self

    def __exit__(self, *args):
        pass

    def add_task(self, _description: str, total: float | None = None, **_fields) -> int:
        return 0

    def update(self, _task_id: int, **_fields) -> None:
        pass

    def advance(self, _task_id: int, _advance: float = 1.0) -> None:
        pass


def success(message: str) -> None:
    if output_mode.is_human():
        console.print(f"[green]✓[/green] {message}")
    elif output_mode.is_agent():
        output_mode.add_json("status", "success")
        output_mode.add_json("message", message)


def error(message: str) -> None:
    """Red message on stderr in text mode; status/error keys in JSON mode."""
    if output_mode.is_human():
        console_err.print(f"[red]✗[/red] {message}", style="red")
    elif output_mode.is_agent():
        output_mode.add_json("status", "error")
        output_mode.add_json("error", message)


def warning(message: str) -> None:
    if output_mode.is_human():
        console.print(f"[yellow]⚠[/yellow] {message}", style="yellow")
    elif output_mode.is_agent():
        output_mode.append_json("warnings", message)


def info(message: str) -> None:
    if output_mode.is_human() and not output_mode.quiet:
        console.print(f"[blue]ℹ[/blue] {message}")


def print_banner(version: str) -> None:
    if not output_mode.is_human() or output_mode.quiet:
        return

    banner = f"""
[bold cyan]╔{"═" * 39}╗
║   LLM Rank Watcher v{version:<17} ║
║   Track where LLMs rank your item     ║
╚{"═" * 39}╝[/bold cyan]
"""
    console.print(banner)


def _rank(value: float | int | None) -> str:
    if value is None:
        return "-"
    return f"{value:.2f}" if isinstance(value, float) else str(value)


def print_competitor_table(query_text: str, results: Sequence[CompetitorResult]) -> None:
    """
    Competitor standings for one query, best weighted score first.

    The tracked item's row is highlighted. In JSON mode the rows are
    buffered under "competitors", grouped by query text.
    """
    if output_mode.is_agent():
        competitors = output_mode.buffered("competitors", {})
        competitors[query_text] = [
            {
                "name": r.name,
                "average_rank": r.average_rank,
                "best_rank": r.best_rank,
                "worst_rank": r.worst_rank,
                "appearances": r.appearances,
                "total_attempts": r.total_attempts,
                "appearance_rate": r.appearance_rate,
                "weighted_score": r.weighted_score,
                "llm_providers": r.llm_providers,
                "is_target": r.is_target,
            }
            for r in results
        ]
        return

    if output_mode.quiet:
        for r in results:
            print(f"{r.name}\t{r.average_rank:.2f}\t{r.appearance_rate:.2f}\t{r.weighted_score:.2f}")
        return

    table = Table(title=f"Competitors: {query_text}", box=box.ROUNDED)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Avg rank", justify="right")
    table.add_column("Best/Worst", justify="center")
    table.add_column("Appearance", justify="right")
    table.add_column("Score", justify="right", style="green")
    table.add_column("Providers", style="magenta")

    for position, r in enumerate(results, start=1):
        name = f"[bold yellow]{r.name} ★[/bold yellow]" if r.is_target else r.name
        table.add_row(
            str(position),
            name,
            f"{r.average_rank:.2f}",
            f"{r.best_rank}/{r.worst_rank}",
            f"{r.appearance_rate:.0f}% ({r.appearances}/{r.total_attempts})",
            f"{r.weighted_score:.2f}",
            ", ".join(r.llm_providers),
        )

    console.print(table)


def print_runs_table(runs: Sequence[AnalysisRun]) -> None:
    if output_mode.is_agent():
        output_mode.add_json(
            "runs",
            [
                {
                    "run_id": run.id,
                    "status": str(run.status),
                    "completed_queries": run.completed_queries,
                    "total_queries": run.total_queries,
                    "completed_llm_calls": run.completed_llm_calls,
                    "total_llm_calls": run.total_llm_calls,
                    "started_at": run.started_at,
                    "completed_at": run.completed_at,
                    "error_message": run.error_message,
                }
                for run in runs
            ],
        )
        return

    if output_mode.quiet:
        for run in runs:
            print(f"{run.id}\t{run.status}\t{run.completed_llm_calls}\t{run.total_llm_calls}")
        return

    status_styles = {"completed": "green", "failed": "red", "running": "blue", "pending": "yellow"}

    table = Table(title="Analysis Runs", box=box.ROUNDED)
    table.add_column("Run ID", style="cyan", no_wrap=True)
    table.add_column("Status", justify="center")
    table.add_column("Queries", justify="right")
    table.add_column("Calls", justify="right")
    table.add_column("Completed at")
    table.add_column("Error", style="red")

    for run in runs:
        style = status_styles.get(str(run.status), "white")
        table.add_row(
            run.id,
            f"[{style}]{run.status}[/{style}]",
            f"{run.completed_queries}/{run.total_queries}",
            f"{run.completed_llm_calls}/{run.total_llm_calls}",
            run.completed_at or "-",
            run.error_message or "",
        )

    console.print(table)


def print_history_table(query_text: str, points: Sequence[RankHistoryPoint]) -> None:
    if output_mode.is_agent():
        output_mode.add_json("query", query_text)
        output_mode.add_json("history", [vars(point) for point in points])
        return

    if output_mode.quiet:
        for p in points:
            print(f"{p.run_id}\t{_rank(p.average_rank)}\t{p.times_found}\t{p.total_attempts}")
        return

    table = Table(title=f"Ranking History: {query_text}", box=box.ROUNDED)
    table.add_column("Run date", style="cyan", no_wrap=True)
    table.add_column("Avg rank", justify="right")
    table.add_column("Best", justify="right")
    table.add_column("Worst", justify="right")
    table.add_column("Found", justify="right")
    table.add_column("Appearance", justify="right", style="green")

    for p in points:
        table.add_row(
            p.run_date,
            _rank(p.average_rank),
            _rank(p.best_rank),
            _rank(p.worst_rank),
            f"{p.times_found}/{p.total_attempts}",
            f"{p.appearance_rate:.0f}%",
        )

    console.print(table)


def print_suggestions_table(item_name: str, suggestions: Sequence[QuerySuggestion]) -> None:
    if output_mode.is_agent():
        output_mode.add_json("item", item_name)
        output_mode.add_json("suggestions", [vars(s) for s in suggestions])
        return

    if output_mode.quiet:
        for s in suggestions:
            print(s.text)
        return

    table = Table(title=f"Suggested Queries: {item_name}", box=box.ROUNDED)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Query", style="cyan")
    table.add_column("Why it ranks", style="dim")

    for position, s in enumerate(suggestions, start=1):
        table.add_row(str(position), s.text, s.reasoning)

    console.print(table)


def _source_rows(sources: Sequence[SourceInfo]) -> list[dict[str, str]]:
    return [vars(source) for source in sources]


def print_sources_table(title: str, sources: Sequence[SourceInfo]) -> None:
    """
    One table of discovered sources.

    In JSON mode the rows are buffered under "sources", keyed by title.
    """
    if output_mode.is_agent():
        output_mode.buffered("sources", {})[title] = _source_rows(sources)
        return

    if output_mode.quiet:
        for s in sources:
            print(f"{title}\t{s.platform}\t{s.importance}\t{s.url}")
        return

    importance_styles = {"high": "bold green", "medium": "yellow", "low": "dim"}

    table = Table(title=f"Sources: {title}", box=box.ROUNDED)
    table.add_column("Platform", style="cyan")
    table.add_column("Importance", justify="center")
    table.add_column("Category", style="magenta")
    table.add_column("URL", style="blue")
    table.add_column("Description")

    for s in sources:
        style = importance_styles.get(s.importance, "white")
        table.add_row(
            s.platform,
            f"[{style}]{s.importance}[/{style}]",
            s.category,
            s.url,
            s.description,
        )

    console.print(table)


def print_blind_spots(query: str, report: BlindSpotReport) -> None:
    """Blind spots for one query, keyed by query text in JSON mode."""
    if output_mode.is_agent():
        output_mode.buffered("blind_spots", {})[query] = {
            "missing_platforms": _source_rows(report.missing_platforms),
            "underutilized_platforms": _source_rows(report.underutilized_platforms),
            "opportunities": _source_rows(report.opportunities),
        }
        return

    if output_mode.quiet:
        for s in report.opportunities:
            print(f"{query}\topportunity\t{s.platform}\t{s.url}")
        return

    def names(sources: Sequence[SourceInfo]) -> str:
        return ", ".join(s.platform for s in sources) or "-"

    summary_text = f"""
[bold]Opportunities (high importance, not present):[/bold] {names(report.opportunities)}
[bold]Missing platforms:[/bold] {names(report.missing_platforms)}
[bold]Present but not used for this query:[/bold] {names(report.underutilized_platforms)}
"""
    console.print(
        Panel(
            summary_text.strip(),
            title=f"[bold yellow]Blind Spots: {query}[/bold yellow]",
            border_style="yellow",
            box=box.ROUNDED,
        )
    )


def print_run_summary(run: AnalysisRun, competitor_rows: int) -> None:
    """
    Final summary of a finished run.

    JSON mode flushes everything buffered so far together with the run
    fields; quiet mode prints one tab-separated line.
    """
    if output_mode.is_agent():
        output_mode.add_json("run_id", run.id)
        output_mode.add_json("run_status", str(run.status))
        output_mode.add_json("completed_llm_calls", run.completed_llm_calls)
        output_mode.add_json("total_llm_calls", run.total_llm_calls)
        output_mode.add_json("competitor_rows", competitor_rows)
        if run.error_message:
            output_mode.add_json("error_message", run.error_message)
        output_mode.flush_json()
        return

    if output_mode.quiet:
        print(f"{run.id}\t{run.status}\t{run.completed_llm_calls}\t{run.total_llm_calls}")
        return

    summary_text = f"""
[bold]Run ID:[/bold] {run.id}
[bold]Queries:[/bold] {run.completed_queries}/{run.total_queries}
[bold]LLM calls:[/bold] {run.completed_llm_calls}/{run.total_llm_calls}
[bold]Competitor rows:[/bold] {competitor_rows}
"""
    if run.error_message:
        summary_text += f"[bold]Error:[/bold] {run.error_message}\n"

    if run.status == "completed":
        border_style = "green"
        title = "[bold green]✓ Analysis Completed[/bold green]"
    else:
        border_style = "red"
        title = f"[bold red]✗ Analysis {str(run.status).title()}[/bold red]"

    console.print(
        Panel(summary_text.strip(), title=title, border_style=border_style, box=box.ROUNDED)
    )
