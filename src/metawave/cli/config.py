"""CLI commands for managing MetaWave configuration."""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from metawave.errors import MetawaveError
from metawave.errors.user_messages import format_error_for_cli
from metawave.orchestrator.config import DEFAULT_HOME, ConfigurationManager, MetawaveConfig

DEFAULT_CONFIG_PATH = DEFAULT_HOME / "config.yaml"

console = Console()
config_app = typer.Typer(help="Manage MetaWave configuration")


@config_app.command("init")
def init_config(
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Path to config file"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file"),
) -> None:
    """Write a configuration file with default values."""
    manager = ConfigurationManager(config_path)
    if config_path.exists() and not force:
        console.print(f"[yellow]Configuration already exists at {config_path}[/yellow]")
        console.print("Use --force to overwrite")
        raise typer.Exit(code=1)

    manager.save(MetawaveConfig())
    console.print(f"[green]Configuration initialized at {config_path}[/green]")


@config_app.command("show")
def show_config(
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Path to config file"),
) -> None:
    """Display the effective configuration, including environment overrides."""
    try:
        config = ConfigurationManager(config_path).load()
    except MetawaveError as e:
        console.print(f"[red]{escape(format_error_for_cli(e))}[/red]")
        raise typer.Exit(code=1)

    typer.echo(json.dumps(config.model_dump(mode="json"), indent=2))


@config_app.command("validate")
def validate_config(
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Path to config file"),
) -> None:
    """Validate configuration file for correctness."""
    errors = ConfigurationManager(config_path).validate()
    if errors:
        console.print(f"[red]Configuration invalid at {config_path}[/red]")
        for error in errors:
            console.print(f"  - {error}")
        raise typer.Exit(code=1)

    console.print(f"[green]Configuration valid at {config_path}[/green]")
