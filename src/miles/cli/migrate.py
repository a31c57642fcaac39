"""
Schema and migration commands.

- schema: Print the DDL derived from the models
- migrate plan: Show pending migration steps
- migrate apply: Apply pending steps
- migrate history: Show applied steps
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from miles.cli.utils import MANIFEST_HELP, MODELS_HELP, cli_errors, console, load_project
from miles.core.manifest import load_manifest
from miles.runtime.migrations import MigrationHistory, MigrationPlan, auto_migrate, plan_migrations
from miles.runtime.repository import DatabaseManager
from miles.runtime.schema import render_schema

migrate_app = typer.Typer(
    help="Database migration commands",
    no_args_is_help=True,
)


def schema_command(
    models: str | None = typer.Option(None, "--models", "-m", help=MODELS_HELP),
    manifest: Path | None = typer.Option(None, "--manifest", help=MANIFEST_HELP),
) -> None:
    """Print the SQLite schema derived from the models."""
    with cli_errors():
        project = load_project(models, manifest)
        typer.echo(render_schema(project.app_spec()))


def _print_plan(plan: MigrationPlan) -> None:
    if plan.is_empty and not plan.warnings:
        console.print("[green]Database schema is up to date[/green]")
        return

    if plan.steps:
        table = Table(title="Pending Migration Steps")
        table.add_column("Action", style="cyan")
        table.add_column("Table")
        table.add_column("Column")
        table.add_column("Destructive")

        for step in plan.steps:
            table.add_row(
                step.action.value,
                step.table,
                step.column or "-",
                "[red]yes[/red]" if step.is_destructive else "no",
            )
        console.print(table)

    for warning in plan.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")


@migrate_app.command(name="plan")
def plan_command(
    models: str | None = typer.Option(None, "--models", "-m", help=MODELS_HELP),
    manifest: Path | None = typer.Option(None, "--manifest", help=MANIFEST_HELP),
    strict: bool = typer.Option(
        False,
        "--strict",
        help="Exit with code 1 if destructive steps are pending",
    ),
) -> None:
    """Show the migration steps needed to match the models."""
    with cli_errors():
        project = load_project(models, manifest)
        plan = plan_migrations(project.database(), project.app_spec().entities)

    _print_plan(plan)
    if strict and plan.has_destructive:
        pending = ", ".join(step.describe() for step in plan.destructive_steps)
        console.print(f"[red]Destructive changes pending:[/red] {pending}")
        raise typer.Exit(1)


@migrate_app.command(name="apply")
def apply_command(
    models: str | None = typer.Option(None, "--models", "-m", help=MODELS_HELP),
    manifest: Path | None = typer.Option(None, "--manifest", help=MANIFEST_HELP),
    allow_destructive: bool = typer.Option(
        False,
        "--allow-destructive",
        help="Also drop columns that are no longer declared",
    ),
) -> None:
    """Apply pending migration steps in one transaction."""
    with cli_errors():
        project = load_project(models, manifest)
        result = auto_migrate(
            project.database(),
            project.app_spec().entities,
            allow_destructive=allow_destructive,
        )

    if not result.executed:
        console.print("[green]Nothing to apply[/green]")
    for step in result.executed:
        console.print(f"  [green]✓[/green] {step.describe()}")
    for warning in result.plan.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")
    if result.summary()["has_pending_destructive"]:
        console.print("Destructive steps skipped; rerun with --allow-destructive to apply them")


@migrate_app.command(name="history")
def history_command(
    manifest: Path | None = typer.Option(None, "--manifest", help=MANIFEST_HELP),
    limit: int = typer.Option(50, "--limit", "-n", help="Number of entries to show"),
) -> None:
    """Show applied migration steps, most recent first."""
    with cli_errors():
        config = load_manifest(manifest)
        history = MigrationHistory(DatabaseManager(config.database.path)).get_history()

    if not history:
        console.print("[yellow]No migrations recorded[/yellow]")
        return

    table = Table(title="Migration History")
    table.add_column("Applied", style="dim")
    table.add_column("Action", style="cyan")
    table.add_column("Table")
    table.add_column("Column")

    for entry in history[:limit]:
        table.add_row(
            entry["applied_at"][:19].replace("T", " "),
            entry["action"],
            entry["table_name"],
            entry["column_name"] or "-",
        )
    console.print(table)
