"""Main CLI entry point for activity-pipeline."""

import json
import sys
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import typer
from dotenv import load_dotenv
from pydantic import ValidationError as PayloadValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from activity_pipeline import __version__
from activity_pipeline.analysis import BaseAnalyzer, HttpAnalyzer, RecordingAnalyzer
from activity_pipeline.compaction import CompactionEngine
from activity_pipeline.config import PersistenceConfig, PipelineConfig, load_pipeline_config
from activity_pipeline.constants import (
    DEFAULT_DATA_DIR,
    DEFAULT_PERSISTENCE_NAMESPACE,
    RESULTS_DB_FILENAME,
)
from activity_pipeline.events.models import RawEvent, RawEventPayload
from activity_pipeline.exceptions import PipelineError
from activity_pipeline.logging_setup import configure_logging
from activity_pipeline.pipeline import ActivityPipeline, PersistenceGuard, ThreadingScheduler
from activity_pipeline.storage import SqliteResultStore

# Load .env file from current directory if it exists
load_dotenv(Path.cwd() / ".env", verbose=False)

app = typer.Typer(
    name="activity-pipeline",
    help="Compact activity events and batch them for analysis.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()
err_console = Console(stderr=True)


def print_error(message: str) -> None:
    err_console.print(f"[bold red]Error:[/bold red] {message}")


def print_info(message: str) -> None:
    console.print(f"[cyan]{message}[/cyan]")


def print_success(message: str) -> None:
    console.print(f"[green]{message}[/green]")


# =============================================================================
# Input helpers
# =============================================================================


def _iter_records(path: Path) -> Iterator[Any]:
    """Yield raw records from a JSON array or a JSONL file."""
    text = path.read_text(encoding="utf-8")
    stripped = text.lstrip()
    if stripped.startswith("["):
        try:
            records = json.loads(stripped)
        except json.JSONDecodeError as e:
            print_error(f"Invalid JSON array in {path}: {e.msg} at line {e.lineno}")
            raise typer.Exit(code=1) from e
        yield from records
        return
    for line_no, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            yield json.loads(line)
        except json.JSONDecodeError as e:
            print_error(f"{path}:{line_no}: invalid JSON ({e.msg}), skipping")


def read_raw_events(path: Path) -> tuple[list[RawEvent], int]:
    """Read raw events from a file.

    Returns:
        Tuple of (valid events, number of skipped records).
    """
    now = datetime.now(UTC)
    events: list[RawEvent] = []
    skipped = 0
    for record in _iter_records(path):
        if not isinstance(record, dict):
            skipped += 1
            continue
        try:
            payload = RawEventPayload.model_validate(record)
        except PayloadValidationError:
            skipped += 1
            continue
        events.append(RawEvent.from_payload(payload, now))
    return events, skipped


def _load_config(config_file: Path | None) -> PipelineConfig:
    if config_file is None:
        return PipelineConfig()
    if not config_file.exists():
        print_error(f"Config file not found: {config_file}")
        raise typer.Exit(code=1)
    return load_pipeline_config(config_file)


def _require_file(path: Path) -> None:
    if not path.is_file():
        print_error(f"Input file not found: {path}")
        raise typer.Exit(code=1)


# =============================================================================
# Commands
# =============================================================================


@app.command("compact")
def compact(
    file: Path = typer.Argument(..., help="JSON array or JSONL file of raw events"),
    config_file: Path | None = typer.Option(
        None, "--config", "-c", help="YAML config file with an activity_pipeline section"
    ),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Write optimized events to this JSON file"
    ),
) -> None:
    """Compact a file of raw events and report the reduction."""
    _require_file(file)
    config = _load_config(config_file)
    raw_events, skipped = read_raw_events(file)

    engine = CompactionEngine(config.compaction)
    optimized, stats = engine.compact_with_stats(raw_events)

    table = Table(title="Compaction")
    table.add_column("Stage", style="cyan")
    table.add_column("Events", justify="right", style="green")
    table.add_row("Raw", str(stats.raw_count))
    table.add_row("Normalized", str(stats.normalized_count))
    table.add_row("After useless-event removal", str(stats.after_useless_removal))
    table.add_row("After text coalescing", str(stats.after_text_coalescing))
    table.add_row("After snapshot filter", str(stats.after_snapshot_filter))
    table.add_row("After network coalescing", str(stats.after_network_coalescing))
    console.print(table)

    if skipped:
        print_info(f"Skipped {skipped} malformed records")
    print_info(
        f"Estimated tokens: {stats.original_tokens} -> {stats.optimized_tokens} "
        f"({stats.reduction_percent}% reduction)"
    )

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(
            json.dumps([event.to_dict() for event in optimized], indent=2),
            encoding="utf-8",
        )
        print_success(f"Wrote {len(optimized)} optimized events to {output}")


@app.command("replay")
def replay(
    file: Path = typer.Argument(..., help="JSON array or JSONL file of raw events"),
    session_id: str = typer.Option("replay", "--session", "-s", help="Session identifier"),
    config_file: Path | None = typer.Option(
        None, "--config", "-c", help="YAML config file with an activity_pipeline section"
    ),
    endpoint: str | None = typer.Option(
        None, "--endpoint", "-e", help="Analysis service URL (records locally when unset)"
    ),
    chunk_size: int = typer.Option(
        0, "--chunk-size", "-n", min=0, help="Flush after every N raw events (0: once at stop)"
    ),
    persist: bool = typer.Option(
        False, "--persist", help="Write snapshots and results to the data directory"
    ),
) -> None:
    """Run a file of raw events through a full pipeline session."""
    _require_file(file)
    config = _load_config(config_file)
    config.persistence.enabled = persist
    raw_events, skipped = read_raw_events(file)

    endpoint = endpoint or config.analyzer.endpoint
    analyzer: BaseAnalyzer
    if endpoint:
        analyzer = HttpAnalyzer(
            endpoint,
            api_key=config.analyzer.get_api_key(),
            timeout=config.analyzer.timeout,
        )
    else:
        analyzer = RecordingAnalyzer()

    result_store = None
    if persist:
        result_store = SqliteResultStore(config.persistence.get_data_dir() / RESULTS_DB_FILENAME)

    pipeline = ActivityPipeline(
        analyzer,
        config=config,
        scheduler=ThreadingScheduler(),
        result_store=result_store,
    )
    pipeline.start(session_id)
    try:
        for index, event in enumerate(raw_events, start=1):
            pipeline.add_raw_event(event)
            if chunk_size and index % chunk_size == 0:
                pipeline.trigger_manual_flush()
        export = pipeline.stop()
    finally:
        pipeline.close()

    table = Table(title=f"Session {session_id}")
    table.add_column("Chunk", justify="right", style="cyan")
    table.add_column("Events", justify="right")
    table.add_column("Raw", justify="right")
    table.add_column("Summary")
    for outcome in export.results:
        summary = outcome.payload.get("summary_text") or json.dumps(outcome.payload)[:80]
        table.add_row(
            str(outcome.chunk.chunk_number),
            str(len(outcome.chunk.optimized_events)),
            str(outcome.chunk.raw_event_count),
            str(summary),
        )
    console.print(table)

    raw_stats = export.metrics.get("raw_data_snapshot", {})
    if skipped:
        print_info(f"Skipped {skipped} malformed records")
    print_info(
        f"{raw_stats.get('total_raw_events', 0)} raw events -> "
        f"{raw_stats.get('optimized_events', 0)} optimized "
        f"(ratio {raw_stats.get('compression_ratio', 1.0)})"
    )
    if export.optimized_events:
        print_error(f"{len(export.optimized_events)} events were not delivered")
        raise typer.Exit(code=1)


@app.command("recover")
def recover(
    data_dir: Path = typer.Option(
        Path(DEFAULT_DATA_DIR), "--data-dir", "-d", help="Directory holding snapshot files"
    ),
    namespace: str = typer.Option(
        DEFAULT_PERSISTENCE_NAMESPACE, "--namespace", help="Snapshot file name prefix"
    ),
    purge: bool = typer.Option(False, "--purge", help="Delete stale or unreadable snapshots"),
) -> None:
    """List sessions that can be recovered from crash snapshots."""
    guard = PersistenceGuard(
        PersistenceConfig(data_dir=str(data_dir), namespace=namespace),
        ThreadingScheduler(),
        clock=lambda: datetime.now(UTC),
    )

    if purge:
        removed = guard.purge_stale()
        print_success(f"Removed {removed} stale snapshots")

    session_ids = guard.list_recoverable()
    if not session_ids:
        print_info(f"No recoverable sessions in {data_dir}")
        return

    table = Table(title="Recoverable Sessions")
    table.add_column("Session", style="cyan")
    table.add_column("Saved", style="green")
    table.add_column("Chunk", justify="right")
    table.add_column("Raw events", justify="right")
    table.add_column("Retained events", justify="right")
    for session_id in session_ids:
        snapshot = guard.load_snapshot(session_id)
        if snapshot is None:
            continue
        table.add_row(
            session_id,
            snapshot.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            str(snapshot.chunk_number),
            str(len(snapshot.raw_buffer)),
            str(len(snapshot.optimized_buffer)),
        )
    console.print(table)


@app.command("version")
def version() -> None:
    """Show version information."""
    console.print(
        Panel(
            f"[bold cyan]activity-pipeline[/bold cyan] version [green]{__version__}[/green]",
            title="Version",
            style="cyan",
        )
    )


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", "-l", help="Logging level"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
) -> None:
    """activity-pipeline - compaction and interval batching of activity events."""
    configure_logging("DEBUG" if debug else log_level)


def cli_main() -> None:
    """Entry point for the ``activity-pipeline`` command."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled by user[/yellow]")
        sys.exit(130)
    except PipelineError as e:
        print_error(str(e))
        sys.exit(1)


if __name__ == "__main__":
    cli_main()
