"""CLI commands for running the analysis pipeline over a notes file."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, NoReturn, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from metawave.analysis.patterns import Granularity
from metawave.errors import InsightPersistError, MetawaveError
from metawave.errors.user_messages import format_error_for_cli
from metawave.models.analysis import AnalysisResult, PatternBucket, ScoringReport
from metawave.orchestrator.config import ConfigurationManager, MetawaveConfig
from metawave.orchestrator.pipeline import AnalysisOrchestrator
from metawave.orchestrator.state import JsonAnalysisStateStore
from metawave.storage.json_store import JsonInsightSink, JsonNoteStore

from .config import DEFAULT_CONFIG_PATH

console = Console()
analysis_app = typer.Typer(help="Run metacognitive analysis")

STATE_FILE = "analysis_state.json"
INSIGHTS_FILE = "insights.json"

_WEEKDAYS = {1: "Sun", 2: "Mon", 3: "Tue", 4: "Wed", 5: "Thu", 6: "Fri", 7: "Sat"}


def _load_config(config_path: Path, workspace: Optional[Path]) -> MetawaveConfig:
    config = ConfigurationManager(config_path).load()
    if workspace is not None:
        config.workspace_path = Path(workspace).expanduser()
    return config


def _build_orchestrator(
    config_path: Path, workspace: Optional[Path], notes: Optional[Path]
) -> AnalysisOrchestrator:
    config = _load_config(config_path, workspace)
    workspace_path = config.workspace_path
    notes_path = Path(notes) if notes else workspace_path / "notes.json"
    return AnalysisOrchestrator.from_config(
        config,
        JsonNoteStore(notes_path),
        JsonInsightSink(workspace_path / INSIGHTS_FILE),
        state_store=JsonAnalysisStateStore(workspace_path / STATE_FILE),
    )


def _fail(error: Exception) -> NoReturn:
    console.print(f"[red]{escape(format_error_for_cli(error))}[/red]")
    raise typer.Exit(code=1)


def _print_scoring(report: ScoringReport) -> None:
    table = Table(title="Emotion Scoring")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Candidates", str(report.total))
    table.add_row("Scored", str(report.scored))
    table.add_row("Failed", str(report.failed))
    table.add_row("Batches", f"{report.batches_completed}/{report.batches_total}")
    table.add_row("Coverage", f"{report.coverage:.0%}")
    console.print(table)
    if report.cancelled:
        reason = "timed out" if report.timed_out else "was cancelled"
        console.print(f"[yellow]Scoring {reason}; remaining notes run next time[/yellow]")


def _print_result(result: AnalysisResult) -> None:
    _print_scoring(result.scoring)

    stats = result.statistics
    console.print(
        f"[bold cyan]Notes[/bold cyan] {stats.total_notes} total, "
        f"{stats.scored_notes} scored, "
        f"avg valence {stats.average_valence:+.2f}, avg arousal {stats.average_arousal:.2f}"
    )

    if result.clusters:
        table = Table(title=f"Loops ({len(result.clusters)})")
        table.add_column("Topic", style="green")
        table.add_column("Notes", justify="right")
        table.add_column("Strength", justify="right")
        for cluster in result.clusters:
            table.add_row(cluster.topic, str(cluster.note_count), f"{cluster.strength:.2f}")
        console.print(table)
    else:
        console.print("[yellow]No loops detected[/yellow]")

    table = Table(title="Bias Signals")
    table.add_column("Bias", style="magenta")
    table.add_column("Score", justify="right")
    for signal, score in result.bias_signals.items():
        table.add_row(signal.label, f"{score:.2f}")
    console.print(table)

    _print_predictions(result.predictions)
    console.print(f"[green]{len(result.insights)} insights saved[/green]")


def _print_predictions(predictions: list) -> None:
    if not predictions:
        console.print("[yellow]Not enough data for predictions[/yellow]")
        return
    table = Table(title="Predictions")
    table.add_column("Type", style="cyan")
    table.add_column("Prediction")
    table.add_column("Confidence", justify="right")
    table.add_column("Impact", style="yellow")
    for prediction in predictions:
        table.add_row(
            prediction.type.value,
            prediction.message,
            f"{prediction.confidence:.0%}",
            prediction.impact.value,
        )
    console.print(table)


def _emit_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2))


@analysis_app.command("score")
def score_command(
    notes: Optional[Path] = typer.Option(None, "--notes", "-n", help="Notes JSON file"),
    workspace: Optional[Path] = typer.Option(None, "--workspace", "-w", help="Workspace directory"),
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Path to config file"),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON output"),
) -> None:
    """Score notes changed since the last run."""
    try:
        orchestrator = _build_orchestrator(config_path, workspace, notes)
        report = asyncio.run(orchestrator.run_incremental_scoring())
    except MetawaveError as e:
        _fail(e)

    if json_output:
        _emit_json(report.to_dict())
    else:
        _print_scoring(report)


@analysis_app.command("run")
def run_command(
    notes: Optional[Path] = typer.Option(None, "--notes", "-n", help="Notes JSON file"),
    workspace: Optional[Path] = typer.Option(None, "--workspace", "-w", help="Workspace directory"),
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Path to config file"),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON output"),
) -> None:
    """Run a comprehensive analysis pass and save insights."""
    try:
        orchestrator = _build_orchestrator(config_path, workspace, notes)
        result = asyncio.run(orchestrator.run_comprehensive_analysis())
    except InsightPersistError as e:
        if e.result is not None and not json_output:
            _print_result(e.result)
        _fail(e)
    except MetawaveError as e:
        _fail(e)

    if json_output:
        _emit_json(result.to_dict())
    else:
        _print_result(result)


@analysis_app.command("predict")
def predict_command(
    notes: Optional[Path] = typer.Option(None, "--notes", "-n", help="Notes JSON file"),
    workspace: Optional[Path] = typer.Option(None, "--workspace", "-w", help="Workspace directory"),
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Path to config file"),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON output"),
) -> None:
    """Show predictions for the current notes without saving anything."""
    try:
        orchestrator = _build_orchestrator(config_path, workspace, notes)
        predictions = asyncio.run(orchestrator.predict())
    except MetawaveError as e:
        _fail(e)

    if json_output:
        _emit_json([p.to_dict() for p in predictions])
    else:
        _print_predictions(predictions)


@analysis_app.command("patterns")
def patterns_command(
    granularity: Granularity = typer.Option(
        Granularity.HOURLY, "--granularity", "-g", help="hourly, weekly or daily"
    ),
    days: Optional[int] = typer.Option(None, "--days", min=1, help="Days shown for daily buckets"),
    notes: Optional[Path] = typer.Option(None, "--notes", "-n", help="Notes JSON file"),
    workspace: Optional[Path] = typer.Option(None, "--workspace", "-w", help="Workspace directory"),
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Path to config file"),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON output"),
) -> None:
    """Show note activity and mood by hour, weekday or day."""
    try:
        orchestrator = _build_orchestrator(config_path, workspace, notes)
        buckets = asyncio.run(orchestrator.aggregate_patterns(granularity, days=days))
    except MetawaveError as e:
        _fail(e)

    if json_output:
        _emit_json([b.to_dict() for b in buckets])
        return

    table = Table(title=f"{granularity.value.capitalize()} Patterns")
    table.add_column("Bucket", style="cyan")
    table.add_column("Notes", justify="right")
    table.add_column("Valence", justify="right")
    table.add_column("Arousal", justify="right")
    table.add_column("Mood", style="green")
    for bucket in buckets:
        table.add_row(
            _bucket_label(granularity, bucket),
            str(bucket.count),
            f"{bucket.average_valence:+.2f}" if bucket.scored_count else "-",
            f"{bucket.average_arousal:.2f}" if bucket.scored_count else "-",
            bucket.dominant_emotion or "-",
        )
    console.print(table)


def _bucket_label(granularity: Granularity, bucket: PatternBucket) -> str:
    if granularity == Granularity.HOURLY:
        return f"{bucket.key:02d}:00"
    if granularity == Granularity.WEEKLY:
        return _WEEKDAYS[bucket.key]
    return str(bucket.key)


@analysis_app.command("status")
def status_command(
    workspace: Optional[Path] = typer.Option(None, "--workspace", "-w", help="Workspace directory"),
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Path to config file"),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON output"),
) -> None:
    """Show when scoring and comprehensive analysis last completed."""
    try:
        config = _load_config(config_path, workspace)
    except MetawaveError as e:
        _fail(e)

    state = JsonAnalysisStateStore(config.workspace_path / STATE_FILE).load()
    if json_output:
        _emit_json(state.to_dict())
        return

    emotion = state.last_emotion_analysis_date
    comprehensive = state.last_comprehensive_analysis_date
    console.print("[bold cyan]Analysis Watermarks[/bold cyan]")
    console.print(f"  Emotion scoring:  {emotion.isoformat() if emotion else 'never'}")
    console.print(f"  Comprehensive:    {comprehensive.isoformat() if comprehensive else 'never'}")
