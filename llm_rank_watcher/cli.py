"""
CLI entrypoint for LLM Rank Watcher.

Commands:
    run: Run an analysis for the configured item and show competitor standings
    validate: Validate configuration without calling any provider
    status: List recent analysis runs
    competitors: Show competitor standings from a completed run
    history: Show how the item's rank for a query moved across runs
    suggest-queries: Ask a provider for ranking queries worth tracking
    sources: Discover the platforms behind each query and where the item is missing

Output modes:
    --format text: Rich spinners, progress bar, tables (default)
    --format json: One JSON document on stdout, no decorations
    --quiet: Tab-separated values for shell scripts

Exit codes:
    0: Success
    1: Configuration error (invalid YAML, unknown provider)
    2: Database error (cannot create/access SQLite)
    3: Analysis run failed
    4: Analysis rejected (nothing active, already running, weekly limit)

Examples:
    llm-rank-watcher validate --config rank.config.yaml
    llm-rank-watcher run --config rank.config.yaml
    llm-rank-watcher run --config rank.config.yaml --dry-run --format json
    llm-rank-watcher competitors --config rank.config.yaml --query "best bakeries in Cork"
    llm-rank-watcher suggest-queries --config rank.config.yaml --count 8
    llm-rank-watcher sources --config rank.config.yaml --provider perplexity

Security:
    - API keys are read from environment variables only
    - Error messages never include API keys
"""

import asyncio
import os
from importlib.metadata import PackageNotFoundError
from pathlib import Path

import typer
from rich.traceback import install as install_rich_traceback

from llm_rank_watcher.analysis.aggregator import CompetitorAggregator
from llm_rank_watcher.analysis.attempt_runner import AttemptRunner
from llm_rank_watcher.analysis.history import check_weekly_analysis, ranking_history
from llm_rank_watcher.analysis.orchestrator import AnalysisOrchestrator
from llm_rank_watcher.analysis.sources import (
    DEFAULT_SOURCE_MODEL,
    DEFAULT_SOURCE_PROVIDER,
    SourceDiscoverer,
    SourceInfo,
    analyze_blind_spots,
)
from llm_rank_watcher.analysis.suggestions import DEFAULT_SUGGESTION_COUNT, QuerySuggester
from llm_rank_watcher.config.loader import load_config, missing_api_key_variables
from llm_rank_watcher.config.providers import (
    NormalizedProvider,
    ProviderId,
    get_provider_info,
    normalize_provider,
)
from llm_rank_watcher.config.schema import RuntimeConfig
from llm_rank_watcher.exceptions import (
    AnalysisPreconditionError,
    ConfigFileNotFoundError,
    ConfigurationError,
    DatabaseError,
)
from llm_rank_watcher.extractor.standardizer import NameStandardizer, StandardizationCache
from llm_rank_watcher.gateway import LLMGateway, MockGateway, ProviderGateway
from llm_rank_watcher.storage.models import AnalysisRun, Item, Query, RunStatus
from llm_rank_watcher.storage.store import SQLiteStore, sync_config
from llm_rank_watcher.utils.console import (
    create_progress_bar,
    error,
    info,
    output_mode,
    print_banner,
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
from llm_rank_watcher.utils.logging import setup_logging

install_rich_traceback(show_locals=False)

# Exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_DB_ERROR = 2
EXIT_RUN_FAILED = 3
EXIT_REJECTED = 4

# Seconds between run-row polls while the progress bar is shown
POLL_INTERVAL_SECONDS = 0.5

DRY_RUN_COMPETITORS = [
    "Northside Collective",
    "Harbour & Co",
    "Riverside Studio",
    "Granite Works",
    "Lantern House",
    "Copperfield",
    "Blue Door Group",
]

app = typer.Typer(
    name="llm-rank-watcher",
    help="Track where LLMs rank your business for the queries you care about",
    add_completion=False,
)

CONFIG_OPTION = typer.Option(
    ...,
    "--config",
    "-c",
    help="Path to YAML configuration file",
    exists=True,
    file_okay=True,
    dir_okay=False,
)
FORMAT_OPTION = typer.Option(
    "text",
    "--format",
    "-f",
    help="Output format: 'text' (human-friendly) or 'json' (machine-readable)",
)
QUIET_OPTION = typer.Option(False, "--quiet", "-q", help="Minimal output (tab-separated values)")
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Enable debug logging")


def _set_output(format: str, quiet: bool = False, verbose: bool = False) -> None:
    if format not in ("text", "json"):
        raise typer.BadParameter(f"Invalid format {format!r}; use 'text' or 'json'")
    output_mode.reset()
    output_mode.format = format
    output_mode.quiet = quiet
    # Suppress JSON logs in human mode
    setup_logging(verbose=verbose, quiet_logs=output_mode.is_human())


def _fail(message: str, exit_code: int) -> typer.Exit:
    """Report an error (flushing JSON mode output) and build the Exit to raise."""
    error(message)
    output_mode.flush_json()
    return typer.Exit(exit_code)


def _load(config: Path) -> RuntimeConfig:
    try:
        with spinner("Loading configuration..."):
            return load_config(config)
    except ConfigFileNotFoundError as e:
        raise _fail(f"Configuration file not found: {e}", EXIT_CONFIG_ERROR)
    except ConfigurationError as e:
        raise _fail(f"Configuration validation failed: {e}", EXIT_CONFIG_ERROR)


def _open_store(runtime_config: RuntimeConfig) -> SQLiteStore:
    db_path = runtime_config.analysis_settings.sqlite_db_path
    try:
        with spinner("Initializing database..."):
            return SQLiteStore(db_path)
    except DatabaseError as e:
        raise _fail(f"Failed to initialize database: {e}", EXIT_DB_ERROR)


def _find_item(store: SQLiteStore, runtime_config: RuntimeConfig) -> Item:
    try:
        item = store.find_item(runtime_config.item.name, runtime_config.item.owner)
    except DatabaseError as e:
        raise _fail(f"Database error: {e}", EXIT_DB_ERROR)
    if item is None:
        info(f"No analysis has been run yet for {runtime_config.item.name!r}")
        output_mode.add_json("item", runtime_config.item.name)
        output_mode.add_json("runs", [])
        output_mode.flush_json()
        raise typer.Exit(EXIT_SUCCESS)
    return item


def _select_queries(store: SQLiteStore, item: Item, query_text: str | None) -> list[Query]:
    queries = store.list_active_queries(item.id)
    if query_text is None:
        return queries
    selected = [q for q in store.list_queries(item.id) if q.text == query_text]
    if not selected:
        raise _fail(f"Query not found: {query_text!r}", EXIT_CONFIG_ERROR)
    return selected


def dry_run_response(target_name: str, count: int) -> str:
    """Canned numbered answer used by --dry-run; the item sits at rank 3."""
    names = DRY_RUN_COMPETITORS[:2] + [target_name] + DRY_RUN_COMPETITORS[2:]
    return "\n".join(f"{index}. {name}" for index, name in enumerate(names[:count], start=1))


def build_gateway(runtime_config: RuntimeConfig, dry_run: bool) -> LLMGateway:
    if dry_run:
        return MockGateway(
            default_response=dry_run_response(
                runtime_config.item.name, runtime_config.analysis_settings.request_count
            )
        )
    return ProviderGateway(
        runtime_config.api_keys(),
        timeout=runtime_config.analysis_settings.request_timeout_seconds,
    )


def _resolve_assistant(
    runtime_config: RuntimeConfig, provider: str
) -> tuple[NormalizedProvider, str]:
    """Resolve a --provider value to a canonical provider and its API key."""
    try:
        normalized = normalize_provider(provider)
    except ConfigurationError as e:
        raise _fail(str(e), EXIT_CONFIG_ERROR)

    # Configured providers may read a custom variable; fall back to the conventional one
    env_var = get_provider_info(normalized.id).env_api_key
    api_key = runtime_config.api_keys().get(normalized.id) or os.environ.get(env_var)
    if not api_key:
        raise _fail(f"No API key for {normalized.display_name}; set {env_var}", EXIT_CONFIG_ERROR)
    return normalized, api_key


def build_assistant_gateway(
    runtime_config: RuntimeConfig, provider_id: ProviderId, api_key: str
) -> LLMGateway:
    """Gateway for one-off assistant calls (query suggestions, source discovery)."""
    return ProviderGateway(
        {provider_id: api_key},
        timeout=runtime_config.analysis_settings.request_timeout_seconds,
    )


def build_orchestrator(
    runtime_config: RuntimeConfig,
    store: SQLiteStore,
    gateway: LLMGateway,
    dry_run: bool = False,
) -> AnalysisOrchestrator:
    """Wire the attempt runner, standardizer and aggregator for one CLI run."""
    settings = runtime_config.analysis_settings
    standardizer = None
    std_provider = runtime_config.standardization_provider
    if std_provider is not None and not dry_run:
        standardizer = NameStandardizer(
            gateway,
            StandardizationCache(),
            provider_id=std_provider.provider_id,
            model=std_provider.model_name,
            max_names=runtime_config.standardization.max_names,
            timeout=settings.request_timeout_seconds,
        )

    if dry_run:
        settings = settings.model_copy(
            update={"inter_attempt_delay_seconds": 0.0, "inter_provider_delay_seconds": 0.0}
        )

    runner = AttemptRunner(
        gateway,
        standardizer=standardizer,
        reasoning_effort=settings.reasoning_effort,
        timeout=settings.request_timeout_seconds,
    )
    return AnalysisOrchestrator(store, runner, CompetitorAggregator(store), settings)


async def _run_with_progress(
    orchestrator: AnalysisOrchestrator, store: SQLiteStore, item: Item
) -> AnalysisRun:
    handle = await orchestrator.start_analysis(item.id, item.owner_id)

    progress = create_progress_bar()
    with progress:
        task_id = progress.add_task(f"Analysing {item.name}", total=None)
        while not handle.task.done():
            await asyncio.wait({handle.task}, timeout=POLL_INTERVAL_SECONDS)
            run = store.get_run(handle.run_id)
            if run is not None:
                progress.update(
                    task_id, total=run.total_llm_calls, completed=run.completed_llm_calls
                )

    await handle.task
    return store.get_run(handle.run_id)


@app.command()
def run(
    config: Path = CONFIG_OPTION,
    format: str = FORMAT_OPTION,
    quiet: bool = QUIET_OPTION,
    verbose: bool = VERBOSE_OPTION,
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Use canned answers instead of calling providers (no API keys needed)",
    ),
    force: bool = typer.Option(
        False, "--force", help="Ignore the weekly limit from analysis_settings"
    ),
):
    """
    Run an analysis: ask every active provider every active query.

    Steps:
    1. Load configuration and sync the item, queries and providers to SQLite
    2. Refuse if a run is in progress (or the weekly limit is reached)
    3. Run all attempts sequentially with a live progress bar
    4. Print competitor standings per query

    Exit codes:
      0: Run completed
      1: Configuration error
      2: Database error
      3: Run failed
      4: Run rejected
    """
    _set_output(format, quiet, verbose)
    print_banner(_read_version())

    runtime_config = _load(config)
    success(
        f"Loaded {len(runtime_config.queries)} queries, "
        f"{len(runtime_config.providers)} providers"
    )

    store = _open_store(runtime_config)
    try:
        item_id = sync_config(store, runtime_config)
        item = store.get_item(item_id)
        success(f"Database ready: {runtime_config.analysis_settings.sqlite_db_path}")

        if runtime_config.analysis_settings.weekly_limit and not force:
            check = check_weekly_analysis(store, item_id)
            if not check.can_run:
                raise _fail(
                    f"An analysis already completed this week "
                    f"({check.current_week_run.id}); next run allowed from "
                    f"{check.next_allowed_at}",
                    EXIT_REJECTED,
                )

        running = store.get_running_run(item_id)
        if running is not None:
            raise _fail(
                f"Analysis {running.id} is already {running.status} for {item.name!r}",
                EXIT_REJECTED,
            )
    except DatabaseError as e:
        raise _fail(f"Database error: {e}", EXIT_DB_ERROR)

    if dry_run:
        warning("Dry run: providers are not called, answers are canned")
    else:
        for provider in runtime_config.providers:
            if provider.active and not provider.api_key:
                warning(f"No API key for {provider.display_name}; its attempts will be skipped")

    gateway = build_gateway(runtime_config, dry_run)
    orchestrator = build_orchestrator(runtime_config, store, gateway, dry_run)

    try:
        final_run = asyncio.run(_run_with_progress(orchestrator, store, item))
    except AnalysisPreconditionError as e:
        raise _fail(f"Analysis rejected: {e}", EXIT_REJECTED)
    except DatabaseError as e:
        raise _fail(f"Database error: {e}", EXIT_DB_ERROR)

    competitor_rows = 0
    if final_run.status == RunStatus.COMPLETED:
        for query in store.list_active_queries(item_id):
            results = store.get_competitor_results(query.id, final_run.id)
            competitor_rows += len(results)
            print_competitor_table(query.text, results)

    print_run_summary(final_run, competitor_rows)

    if final_run.status != RunStatus.COMPLETED:
        raise typer.Exit(EXIT_RUN_FAILED)
    raise typer.Exit(EXIT_SUCCESS)


@app.command()
def validate(
    config: Path = CONFIG_OPTION,
    format: str = FORMAT_OPTION,
):
    """
    Validate configuration file without calling any provider.

    Checks YAML syntax, required fields, provider aliases and models, and
    reports API key environment variables that are not set.

    Exit codes:
      0: Configuration is valid
      1: Configuration is invalid
    """
    _set_output(format)

    runtime_config = _load(config)
    missing = missing_api_key_variables(config)

    success("Configuration is valid")
    info(f"Item: {runtime_config.item.name}")
    info(f"Queries: {len(runtime_config.queries)}")
    info(
        "Providers: "
        + ", ".join(f"{p.display_name} ({p.model_name})" for p in runtime_config.providers)
    )
    for variable in missing:
        warning(f"Environment variable {variable} is not set")

    output_mode.add_json("valid", True)
    output_mode.add_json("item", runtime_config.item.name)
    output_mode.add_json("queries_count", len(runtime_config.queries))
    output_mode.add_json(
        "providers", [str(p.provider_id) for p in runtime_config.providers]
    )
    output_mode.add_json("missing_api_keys", missing)
    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


@app.command()
def status(
    config: Path = CONFIG_OPTION,
    format: str = FORMAT_OPTION,
    quiet: bool = QUIET_OPTION,
    limit: int = typer.Option(10, "--limit", "-n", min=1, help="Number of runs to show"),
):
    """List the most recent analysis runs, newest first."""
    _set_output(format, quiet)
    runtime_config = _load(config)
    store = _open_store(runtime_config)
    item = _find_item(store, runtime_config)

    try:
        runs = store.list_runs(item.id, limit=limit)
    except DatabaseError as e:
        raise _fail(f"Database error: {e}", EXIT_DB_ERROR)

    if not runs:
        info(f"No analysis has been run yet for {item.name!r}")
    print_runs_table(runs)
    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


@app.command()
def competitors(
    config: Path = CONFIG_OPTION,
    format: str = FORMAT_OPTION,
    quiet: bool = QUIET_OPTION,
    query: str | None = typer.Option(
        None, "--query", help="Only this query (default: every active query)"
    ),
    run_id: str | None = typer.Option(
        None, "--run-id", help="Run to read (default: latest completed run)"
    ),
):
    """Show competitor standings, best weighted score first."""
    _set_output(format, quiet)
    runtime_config = _load(config)
    store = _open_store(runtime_config)
    item = _find_item(store, runtime_config)

    try:
        if run_id is None:
            latest = store.get_latest_run(item.id, RunStatus.COMPLETED)
            if latest is None:
                info(f"No completed analysis run yet for {item.name!r}")
                output_mode.add_json("run_id", None)
                output_mode.flush_json()
                raise typer.Exit(EXIT_SUCCESS)
            run_id = latest.id
        output_mode.add_json("run_id", run_id)

        for selected in _select_queries(store, item, query):
            results = store.get_competitor_results(selected.id, run_id)
            if not results:
                info(f"No competitor results for {selected.text!r}")
                continue
            print_competitor_table(selected.text, results)
    except DatabaseError as e:
        raise _fail(f"Database error: {e}", EXIT_DB_ERROR)

    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


@app.command()
def history(
    config: Path = CONFIG_OPTION,
    query: str = typer.Option(..., "--query", help="Query text as written in the config"),
    format: str = FORMAT_OPTION,
    quiet: bool = QUIET_OPTION,
    limit: int = typer.Option(10, "--limit", "-n", min=1, help="Number of runs to include"),
):
    """Show the item's rank for one query across completed runs, oldest first."""
    _set_output(format, quiet)
    runtime_config = _load(config)
    store = _open_store(runtime_config)
    item = _find_item(store, runtime_config)

    try:
        selected = _select_queries(store, item, query)[0]
        points = ranking_history(store, selected.id, limit=limit)
    except DatabaseError as e:
        raise _fail(f"Database error: {e}", EXIT_DB_ERROR)

    if not points:
        info(f"No completed runs include {query!r}")
    print_history_table(selected.text, points)
    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


@app.command("suggest-queries")
def suggest_queries(
    config: Path = CONFIG_OPTION,
    format: str = FORMAT_OPTION,
    quiet: bool = QUIET_OPTION,
    provider: str = typer.Option(
        "openai", "--provider", "-p", help="Provider asked for suggestions"
    ),
    count: int = typer.Option(
        DEFAULT_SUGGESTION_COUNT, "--count", "-n", min=1, help="Number of queries to suggest"
    ),
):
    """
    Suggest ranking queries worth tracking for the configured item.

    Uses the item's name and, when set, its location and business_type.
    Suggestions are printed only; add the ones you want to the config.

    Exit codes:
      0: Done (an empty list means the provider gave nothing usable)
      1: Configuration error or missing API key
    """
    _set_output(format, quiet)
    runtime_config = _load(config)
    normalized, api_key = _resolve_assistant(runtime_config, provider)

    gateway = build_assistant_gateway(runtime_config, normalized.id, api_key)
    suggester = QuerySuggester(
        gateway,
        provider_id=normalized.id,
        model=normalized.model,
        timeout=runtime_config.analysis_settings.request_timeout_seconds,
    )
    item = runtime_config.item

    with spinner(f"Asking {normalized.display_name} for query suggestions..."):
        suggestions = asyncio.run(
            suggester.suggest(item.name, item.location, item.business_type, count)
        )

    if not suggestions:
        warning(f"{normalized.display_name} returned no usable query suggestions")
    print_suggestions_table(item.name, suggestions)
    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


async def _discover_sources(
    discoverer: SourceDiscoverer,
    business_name: str,
    location: str | None,
    query_texts: list[str],
) -> tuple[list[SourceInfo], dict[str, list[SourceInfo]]]:
    business_sources = await discoverer.discover_business_sources(business_name, location)
    query_sources = {}
    for text in query_texts:
        query_sources[text] = await discoverer.discover_query_sources(text)
    return business_sources, query_sources


@app.command()
def sources(
    config: Path = CONFIG_OPTION,
    format: str = FORMAT_OPTION,
    quiet: bool = QUIET_OPTION,
    query: str | None = typer.Option(
        None, "--query", help="Only this query (default: every active query)"
    ),
    provider: str = typer.Option(
        str(DEFAULT_SOURCE_PROVIDER), "--provider", "-p", help="Provider used for discovery"
    ),
):
    """
    Discover which platforms inform each query, and where the item is missing.

    Lists the item's own online presence, the sources the provider would use
    to rank businesses for each query, and per query the blind spots: high
    importance platforms where the item has no presence.

    Exit codes:
      0: Done
      1: Configuration error or missing API key
    """
    _set_output(format, quiet)
    runtime_config = _load(config)
    normalized, api_key = _resolve_assistant(runtime_config, provider)

    if query is None:
        query_texts = [q.text for q in runtime_config.queries if q.active]
    else:
        query_texts = [query]

    gateway = build_assistant_gateway(runtime_config, normalized.id, api_key)
    model = normalized.model
    if normalized.id == DEFAULT_SOURCE_PROVIDER:
        model = DEFAULT_SOURCE_MODEL
    discoverer = SourceDiscoverer(
        gateway,
        provider_id=normalized.id,
        model=model,
        timeout=runtime_config.analysis_settings.request_timeout_seconds,
    )
    item = runtime_config.item

    with spinner(f"Discovering sources with {normalized.display_name}..."):
        business_sources, query_sources = asyncio.run(
            _discover_sources(discoverer, item.name, item.location, query_texts)
        )

    if not business_sources:
        warning(f"No online presence found for {item.name!r}")
    print_sources_table(item.name, business_sources)

    for text, found in query_sources.items():
        if not found:
            info(f"No sources found for {text!r}")
            continue
        print_sources_table(text, found)
        print_blind_spots(text, analyze_blind_spots(found, business_sources))

    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-V", help="Show version and exit"),
):
    """
    LLM Rank Watcher: measure where LLMs rank your business.

    Each run asks every configured provider every query several times,
    locates your business in the numbered answers, and aggregates
    competitor standings per query.
    """
    if version:
        from rich.console import Console

        Console().print(f"[bold cyan]llm-rank-watcher[/bold cyan] version {_read_version()}")
        raise typer.Exit(EXIT_SUCCESS)

    if ctx.invoked_subcommand is None:
        from rich.console import Console

        console = Console()
        console.print("[yellow]Use --help to see available commands[/yellow]")
        console.print()
        console.print("Quick start:")
        console.print("  llm-rank-watcher validate --config rank.config.yaml")
        console.print("  llm-rank-watcher run --config rank.config.yaml --dry-run")


def _read_version() -> str:
    """Version from installed package metadata."""
    try:
        from importlib.metadata import version

        return version("llm-rank-watcher")
    except PackageNotFoundError:
        return "0.1.0"


if __name__ == "__main__":
    app()
