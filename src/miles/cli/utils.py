"""
Shared helpers for the CLI commands.
"""

from __future__ import annotations

import platform
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import typer
from rich.console import Console

from miles._version import __version__
from miles.converters import build_app_spec
from miles.core.errors import MilesError
from miles.core.manifest import MilesConfig, load_manifest
from miles.models.model import Model
from miles.runtime.model_loader import load_models, split_modules
from miles.runtime.repository import DatabaseManager
from miles.specs import AppSpec

console = Console()

MODELS_HELP = "Model modules, comma-separated (default: [project].models in miles.toml)"
MANIFEST_HELP = "Path to miles.toml or its directory"


def get_version() -> str:
    return __version__


def version_callback(value: bool) -> None:
    """Display version and environment information."""
    if value:
        console.print(f"[bold]Miles[/bold] {get_version()}")
        console.print(
            f"Python {platform.python_version()} ({platform.python_implementation()})",
            style="dim",
        )
        raise typer.Exit()


@contextmanager
def cli_errors() -> Iterator[None]:
    """Print Miles errors in red and exit with code 1."""
    try:
        yield
    except MilesError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1) from e


@dataclass
class Project:
    """Loaded configuration and models for a CLI invocation."""

    config: MilesConfig
    models: list[type[Model]]

    def app_spec(self) -> AppSpec:
        return build_app_spec(
            self.models,
            name=self.config.project.name,
            version=self.config.project.version,
        )

    def database(self) -> DatabaseManager:
        return DatabaseManager(self.config.database.path)


def load_project(models: str | None = None, manifest: Path | None = None) -> Project:
    """
    Load miles.toml (plus env overrides) and import the model modules.

    Raises:
        ConfigError: If the manifest is invalid or the models cannot be imported
    """
    config = load_manifest(manifest)
    modules = split_modules(models) or config.project.models
    return Project(config=config, models=load_models(modules, root=config.root))
