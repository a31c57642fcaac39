"""
Client generation commands.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from miles.cli.utils import MANIFEST_HELP, MODELS_HELP, cli_errors, console, load_project
from miles.codegen import ReactGenerator

generate_app = typer.Typer(
    help="Generate client bindings",
    no_args_is_help=True,
)


@generate_app.command(name="client")
def client_command(
    models: str | None = typer.Option(None, "--models", "-m", help=MODELS_HELP),
    manifest: Path | None = typer.Option(None, "--manifest", help=MANIFEST_HELP),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Output directory (default: [client].output_dir)"
    ),
    api_url: str | None = typer.Option(
        None, "--api-url", help="API base URL baked into the client"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="List files without writing"),
) -> None:
    """Generate the React + TypeScript client for the models."""
    with cli_errors():
        project = load_project(models, manifest)
        config = project.config
        output_dir = output or config.client.output_dir
        generator = ReactGenerator(
            project.app_spec(),
            output_dir,
            api_url=api_url or config.client.api_url,
            dry_run=dry_run,
        )
        result = generator.generate()

    for error in result.errors:
        console.print(f"[red]Error:[/red] {error}")
    if not result.success:
        raise typer.Exit(1)

    table = Table(title="Would generate" if dry_run else "Generated")
    table.add_column("File", style="cyan")
    table.add_column("Lines", justify="right")
    for path in result.files_created:
        content = result.contents.get(path, "")
        table.add_row(str(path.relative_to(output_dir)), str(content.count("\n")))
    console.print(table)

    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")
    if not dry_run:
        console.print(f"\nNext: cd {output_dir} && npm install && npm run dev")
