"""Command line entry points for MetaWave."""

from typer import Typer

from .analysis import analysis_app
from .config import config_app


cli = Typer(help="MetaWave metacognitive analysis tools")
cli.add_typer(analysis_app, name="analysis")
cli.add_typer(config_app, name="config")

__all__ = ["cli", "analysis_app", "config_app"]
