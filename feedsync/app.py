"""Typer CLI entrypoint for feedsync."""

from __future__ import annotations

import os
import re
import sys
import threading
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from .config import (
    ConfigLocator,
    ConfigRepository,
    LogLevel,
    ScheduleConfig,
    ScheduleType,
    SyncConfig,
    require_store_settings,
    require_sync_settings,
)
from .engine.fetcher import FetchScheduler
from .engine.items import Source
from .engine.quality import QualityReport, QualityRow, quality_report
from .engine.state import PersistedState, StateStore
from .errors import ConfigError
from .logging_conf import component_logger, configure_logging, tail_log
from .orchestrator import RunSummary, SyncOrchestrator
from .scheduler import APSchedulerAdapter
from .store import NotionRecordStore, RecordStore
from .ui import ProgressReporter

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_TIMEOUT = 2

IMPORT_KEY_PREFIX = "_notion_import_"

app = typer.Typer(
    help="Synchronize RSS/Atom subscriptions into a Notion database.",
    no_args_is_help=True,
    rich_markup_mode=None,
)
state_app = typer.Typer(
    name="state",
    help="Local dedup state maintenance.",
    no_args_is_help=True,
    rich_markup_mode=None,
)
feed_app = typer.Typer(
    name="feed",
    help="Feed diagnostics.",
    no_args_is_help=True,
    rich_markup_mode=None,
)
config_app = typer.Typer(
    name="config",
    help="Configuration file helpers.",
    no_args_is_help=True,
    rich_markup_mode=None,
)
log_app = typer.Typer(
    name="log",
    help="Log viewing.",
    no_args_is_help=True,
    rich_markup_mode=None,
)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository


def build_state(home: Optional[Path] = None) -> AppState:
    locator = ConfigLocator(project_root=home) if home else ConfigLocator()
    return AppState(repository=ConfigRepository(locator))


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state()
        ctx.obj = state
    return state


def build_store(config: SyncConfig) -> RecordStore:
    return NotionRecordStore(config.notion, logger=component_logger("notion"))


def build_fetcher(config: SyncConfig) -> FetchScheduler:
    return FetchScheduler(config.fetch, logger=component_logger("fetcher"))


def _on_timeout(minutes: float, exit_fn: Callable[[int], None]) -> None:
    component_logger("app").error("global_timeout", minutes=minutes)
    exit_fn(EXIT_TIMEOUT)


def arm_global_timeout(
    minutes: float,
    exit_fn: Callable[[int], None] = os._exit,
) -> threading.Timer:
    """Start a daemon timer that hard-exits the process with code 2."""

    timer = threading.Timer(minutes * 60, _on_timeout, args=(minutes, exit_fn))
    timer.daemon = True
    timer.start()
    component_logger("app").info("global_timeout_armed", minutes=minutes)
    return timer


def _progress_default_enabled() -> bool:
    return bool(getattr(sys.stdout, "isatty", lambda: False)())


def _load_config(state: AppState, overrides: dict[str, object] | None = None) -> SyncConfig:
    try:
        return state.repository.load(overrides)
    except ConfigError as exc:
        console.print(f"Configuration error: {exc}", style="red")
        raise typer.Exit(code=EXIT_FAILURE) from exc


def _init_logging(state: AppState, config: SyncConfig) -> None:
    locator = state.repository.locator
    locator.ensure_directories()
    configure_logging(config.log_level, locator.logs_dir, force=True)


def run_sync_once(config: SyncConfig, *, progress_enabled: bool = False) -> RunSummary:
    """Run one full pass with production collaborators; raises on fatal errors."""

    store = build_store(config)
    orchestrator = SyncOrchestrator(config, store, progress=ProgressReporter(enabled=progress_enabled))
    try:
        return orchestrator.run()
    finally:
        orchestrator.close()
        store.close()


def _render_summary(summary: RunSummary) -> Table:
    table = Table(title="Sync summary", box=box.SIMPLE_HEAD)
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", style="green", justify="right")
    rows = [
        ("Sources", summary.sources_total),
        ("Auto-disabled sources", summary.sources_skipped),
        ("New items", summary.new_items),
        ("Deferred by cap", summary.deferred_items),
        ("Records created", summary.created),
        ("Publish failures", summary.publish_failures),
        ("Fetch failures", summary.fetch_failures),
        ("Dead links dropped", summary.link_drops),
        ("Classifier fallbacks", summary.classify_fallbacks),
        ("Archived by age", summary.age_archived),
        ("Archived by cap", summary.cap_archived),
        ("Archive failures", summary.archive_failures),
    ]
    for label, value in rows:
        table.add_row(label, str(value))
    return table


def _render_timings(summary: RunSummary) -> Table:
    table = Table(title="Phase timings", box=box.SIMPLE_HEAD)
    table.add_column("Phase", style="cyan")
    table.add_column("Seconds", style="yellow", justify="right")
    for label, seconds in summary.metrics.sorted_timings():
        table.add_row(label, f"{seconds:.2f}")
    return table


def _render_ai_cost(summary: RunSummary, model: str) -> Table:
    ai = summary.metrics.ai
    table = Table(title=f"Classifier usage · {model}", box=box.SIMPLE_HEAD)
    table.add_column("Calls", justify="right")
    table.add_column("Input tokens", justify="right")
    table.add_column("Output tokens", justify="right")
    table.add_column("Cost (USD)", style="green", justify="right")
    table.add_column("Monthly estimate", style="yellow", justify="right")
    table.add_row(
        str(ai.calls),
        f"{ai.input_tokens:,}",
        f"{ai.output_tokens:,}",
        f"${ai.cost_usd:.4f}",
        f"${ai.monthly_estimate:.2f}",
    )
    return table


def _render_jobs_table(jobs: list[dict]) -> Table:
    table = Table(title="Scheduled jobs", box=box.SIMPLE_HEAD)
    table.add_column("Job", style="cyan", no_wrap=True)
    table.add_column("Next run", style="green")
    table.add_column("Trigger", style="magenta", overflow="fold")
    for job in jobs:
        table.add_row(
            str(job.get("id", "-")),
            str(job.get("next_run_time", "-")),
            str(job.get("trigger", "-")),
        )
    return table


def _quality_table(title: str, rows: list[QualityRow], style: str) -> Table:
    table = Table(title=title, box=box.SIMPLE_HEAD)
    table.add_column("Quality", style=style, justify="right")
    table.add_column("Kept", justify="right")
    table.add_column("Source", style="cyan", overflow="fold")
    for row in rows:
        table.add_row(f"{row.quality_ratio * 100:.0f}%", f"{row.kept}/{row.total}", row.identity[:60])
    return table


def _print_quality_report(report: QualityReport) -> None:
    if report.empty:
        console.print("No feed quality statistics recorded yet.", style="dim")
        return
    console.print(_quality_table("Best performing feeds", report.best, "green"))
    if report.worst:
        console.print(_quality_table("Worst performing feeds", report.worst, "red"))
    if report.low_quality_count:
        console.print(
            f"{report.low_quality_count} feeds kept under 10% of 10+ items; "
            "consider removing them from the OPML list.",
            style="yellow",
        )


app.add_typer(state_app, name="state", help="Rebuild or inspect the local dedup state.")
app.add_typer(feed_app, name="feed", help="Inspect a single feed.")
app.add_typer(config_app, name="config", help="Create the configuration file.")
app.add_typer(log_app, name="log", help="Show recent log lines.")


@app.callback()
def main(
    ctx: typer.Context,
    home: Optional[Path] = typer.Option(
        None,
        "--home",
        envvar="FEEDSYNC_HOME",
        help="Project home holding data/ and logs/ (defaults to the current directory).",
    ),
) -> None:
    ctx.obj = build_state(home)


@app.command("sync", help="Run one synchronization pass.")
def sync(
    ctx: typer.Context,
    opml: Optional[Path] = typer.Option(None, "--opml", help="OPML subscription list."),
    db: Optional[str] = typer.Option(None, "--db", help="Notion database id."),
    quiet: bool = typer.Option(False, "--quiet", help="Errors only, no tables or progress."),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging."),
) -> None:
    state = _get_state(ctx)
    overrides: dict[str, object] = {"opml_path": opml, "notion.database_id": db}
    if quiet:
        overrides["log_level"] = LogLevel.QUIET.value
    elif verbose:
        overrides["log_level"] = LogLevel.VERBOSE.value
    config = _load_config(state, overrides)
    try:
        require_sync_settings(config)
    except ConfigError as exc:
        console.print(f"Configuration error: {exc}", style="red")
        raise typer.Exit(code=EXIT_FAILURE) from exc
    _init_logging(state, config)
    logger = component_logger("app")

    timer = arm_global_timeout(config.global_timeout_minutes)
    try:
        summary = run_sync_once(config, progress_enabled=not quiet and _progress_default_enabled())
    except ConfigError as exc:
        console.print(f"Configuration error: {exc}", style="red")
        raise typer.Exit(code=EXIT_FAILURE) from exc
    except Exception as exc:  # noqa: BLE001
        logger.exception("sync_failed", error=str(exc))
        console.print(f"Sync failed: {exc}", style="red")
        raise typer.Exit(code=EXIT_FAILURE) from exc
    finally:
        timer.cancel()

    if quiet:
        return
    console.print(_render_summary(summary))
    if summary.metrics.timings:
        console.print(_render_timings(summary))
    if summary.metrics.ai.calls:
        console.print(_render_ai_cost(summary, config.ai.model))
    _print_quality_report(quality_report(StateStore(config.state_file).load()))
    console.print("Sync completed.", style="green")


def _wait_forever() -> None:
    threading.Event().wait()


@app.command("serve", help="Run the sync periodically on a cron or interval schedule.")
def serve(
    ctx: typer.Context,
    cron: Optional[str] = typer.Option(None, "--cron", help="Crontab expression, e.g. '0,30 * * * *'."),
    interval: Optional[int] = typer.Option(None, "--interval", help="Interval in seconds."),
    run_now: bool = typer.Option(False, "--run-now", help="Also run one pass immediately."),
) -> None:
    if cron and interval:
        console.print("Use either --cron or --interval, not both.", style="red")
        raise typer.Exit(code=EXIT_FAILURE)
    state = _get_state(ctx)
    config = _load_config(state)
    try:
        require_sync_settings(config)
        if cron:
            config = config.model_copy(update={"schedule": ScheduleConfig(type=ScheduleType.CRON, value=cron)})
        elif interval:
            config = config.model_copy(
                update={"schedule": ScheduleConfig(type=ScheduleType.INTERVAL, value=interval)}
            )
    except (ConfigError, ValueError) as exc:
        console.print(f"Configuration error: {exc}", style="red")
        raise typer.Exit(code=EXIT_FAILURE) from exc
    _init_logging(state, config)
    logger = component_logger("app")

    def _job() -> None:
        try:
            summary = run_sync_once(config)
            logger.info("scheduled_sync_completed", created=summary.created, new_items=summary.new_items)
        except Exception as exc:  # noqa: BLE001
            logger.exception("sync_failed", error=str(exc))

    adapter = APSchedulerAdapter()
    try:
        adapter.schedule_sync(config.schedule, _job)
    except ValueError as exc:
        console.print(f"Invalid schedule: {exc}", style="red")
        raise typer.Exit(code=EXIT_FAILURE) from exc
    adapter.start()
    console.print(_render_jobs_table(adapter.list_jobs()))
    console.print("Press Ctrl+C to stop.", style="cyan")
    if run_now:
        _job()
    try:
        _wait_forever()
    except KeyboardInterrupt:
        console.print("Stopping scheduler.", style="yellow")
    finally:
        adapter.remove_sync()
        adapter.shutdown()


@app.command("report", help="Show the feed quality report from the local state.")
def report(
    ctx: typer.Context,
    limit: int = typer.Option(10, "--limit", help="Rows per table."),
) -> None:
    state = _get_state(ctx)
    config = _load_config(state)
    _print_quality_report(quality_report(StateStore(config.state_file).load(), limit=limit))


def import_key(source: str | None) -> str:
    return IMPORT_KEY_PREFIX + re.sub(r"[^a-zA-Z0-9]", "_", source or "Unknown")


@state_app.command("rebuild", help="Rebuild the dedup state from the records already in Notion.")
def state_rebuild(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", help="Overwrite an existing state file without asking."),
) -> None:
    state = _get_state(ctx)
    config = _load_config(state)
    try:
        require_store_settings(config)
    except ConfigError as exc:
        console.print(f"Configuration error: {exc}", style="red")
        raise typer.Exit(code=EXIT_FAILURE) from exc
    _init_logging(state, config)
    if config.state_file.exists() and not yes:
        if not typer.confirm(f"Overwrite {config.state_file}?", default=False):
            console.print("Cancelled.", style="yellow")
            raise typer.Exit(code=EXIT_OK)

    store = build_store(config)
    rebuilt = PersistedState()
    urls: dict[str, str] = {}
    fetched = 0
    try:
        for page in store.iter_pages(page_size=config.retention.page_size):
            fetched += len(page)
            for record in page:
                if record.url:
                    urls[record.url] = record.source or "Unknown"
    except Exception as exc:  # noqa: BLE001
        component_logger("app").error("state_rebuild_failed", error=str(exc))
        console.print(f"Rebuild failed: {exc}", style="red")
        raise typer.Exit(code=EXIT_FAILURE) from exc
    finally:
        store.close()

    # Feed URLs are unknown here, so entries are keyed by the stored source name.
    for url, source in urls.items():
        rebuilt.ensure(import_key(source)).mark_seen(url)
    StateStore(config.state_file, logger=component_logger("state")).save(rebuilt)

    table = Table(title="State rebuilt", box=box.SIMPLE_HEAD)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    table.add_row("Records scanned", str(fetched))
    table.add_row("URLs marked seen", str(len(urls)))
    table.add_row("Sources", str(len(rebuilt.sources)))
    console.print(table)
    console.print(f"Wrote {config.state_file}", style="green")


@feed_app.command("inspect", help="Fetch one feed and show its most recent entries.")
def feed_inspect(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="Feed URL."),
    limit: int = typer.Option(10, "--limit", help="Entries to show."),
) -> None:
    state = _get_state(ctx)
    config = _load_config(state)
    fetcher = build_fetcher(config)
    try:
        items = fetcher.fetch_source(Source(identity=url, display_name=url))
    except Exception as exc:  # noqa: BLE001
        console.print(f"Error: {exc}", style="red")
        raise typer.Exit(code=EXIT_FAILURE) from exc
    finally:
        fetcher.close()

    console.print(f"Feed: {url}", style="cyan")
    console.print(f"Total items: {len(items)}")
    now = datetime.now(timezone.utc)
    table = Table(title=f"Recent items (first {min(limit, len(items))})", box=box.SIMPLE_HEAD)
    table.add_column("#", justify="right")
    table.add_column("Age (days)", justify="right", style="yellow")
    table.add_column("Title", overflow="fold")
    table.add_column("Link", overflow="fold", style="cyan")
    table.add_column("Id", overflow="fold", style="dim")
    for index, item in enumerate(items[:limit], start=1):
        age = (now - item.published_at).days
        table.add_row(
            str(index),
            str(age),
            item.title[:70],
            (item.canonical_url or "NO LINK")[:70],
            item.id[:70],
        )
    console.print(table)

    by_year = Counter(item.published_at.year for item in items)
    years = Table(title="Items by year", box=box.SIMPLE_HEAD)
    years.add_column("Year", style="cyan")
    years.add_column("Items", justify="right")
    for year, count in sorted(by_year.items(), reverse=True):
        years.add_row(str(year), str(count))
    console.print(years)


@config_app.command("init", help="Write a configuration file with default values.")
def config_init(
    ctx: typer.Context,
    opml: Optional[Path] = typer.Option(None, "--opml", help="OPML subscription list."),
    db: Optional[str] = typer.Option(None, "--db", help="Notion database id."),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file."),
) -> None:
    state = _get_state(ctx)
    path = state.repository.locator.config_path()
    if path.exists() and not force:
        console.print(f"{path} already exists; use --force to overwrite.", style="yellow")
        raise typer.Exit(code=EXIT_FAILURE)
    config = SyncConfig(opml_path=opml)
    if db:
        config = config.model_copy(update={"notion": config.notion.model_copy(update={"database_id": db})})
    written = state.repository.save(config)
    console.print(f"Wrote {written}", style="green")
    console.print("Secrets (NOTION_TOKEN, OPENAI_API_KEY) are read from the environment or .env.", style="dim")


@log_app.command("show", help="Show the most recent log lines.")
def log_show(
    ctx: typer.Context,
    errors: bool = typer.Option(False, "--errors", help="Show error.log instead of feedsync.log."),
    tail: int = typer.Option(100, "--tail", help="Number of lines."),
) -> None:
    state = _get_state(ctx)
    path = state.repository.locator.logs_dir / ("error.log" if errors else "feedsync.log")
    lines = tail_log(path, tail)
    if not lines:
        console.print("No log lines yet.", style="dim")
        return
    console.print(f"{path.name} · last {len(lines)} lines", style="cyan")
    console.print("".join(lines), markup=False, highlight=False)


def cli() -> None:
    app()


__all__ = ["app", "arm_global_timeout", "cli", "import_key", "run_sync_once"]


if __name__ == "__main__":  # pragma: no cover
    cli()
