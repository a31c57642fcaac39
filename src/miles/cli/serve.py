"""
Server commands.

- serve: Run the REST API with uvicorn
- openapi: Print the OpenAPI document of the generated API
"""

from __future__ import annotations

import json
import os
from pathlib import Path

import typer

from miles.cli.utils import MANIFEST_HELP, MODELS_HELP, cli_errors, console, load_project
from miles.core.logging import setup_logging
from miles.runtime.server import create_app, run_server


def serve_command(
    models: str | None = typer.Option(None, "--models", "-m", help=MODELS_HELP),
    manifest: Path | None = typer.Option(None, "--manifest", help=MANIFEST_HELP),
    host: str | None = typer.Option(None, "--host", help="Host to bind to"),
    port: int | None = typer.Option(None, "--port", "-p", help="Port to bind to"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
) -> None:
    """Serve the REST API for the models."""
    with cli_errors():
        project = load_project(models, manifest)
        config = project.config
        log_dir = setup_logging(config.logging.dir, config.logging.level)

        host = host or config.server.host
        port = port or config.server.port

        console.print(f"[bold]{config.project.name}[/bold] {config.project.version}")
        console.print(f"  Models:   {', '.join(m.__name__ for m in project.models)}")
        console.print(f"  Database: {config.database.path}")
        console.print(f"  API:      http://{host}:{port}{config.server.api_prefix}")
        console.print(f"  Docs:     http://{host}:{port}/docs")
        console.print(f"  Logs:     {log_dir}", style="dim")

        if reload:
            # Reload workers rebuild the app from the environment
            if models:
                os.environ["MILES_MODELS"] = models
            if manifest:
                os.environ["MILES_MANIFEST"] = str(manifest)
            run_server(
                "miles.runtime.server:app_factory",
                host=host,
                port=port,
                reload=True,
                factory=True,
            )
            return

        app = create_app(project.models, config)

    run_server(app, host=host, port=port)


def openapi_command(
    models: str | None = typer.Option(None, "--models", "-m", help=MODELS_HELP),
    manifest: Path | None = typer.Option(None, "--manifest", help=MANIFEST_HELP),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write to file"),
) -> None:
    """Print the OpenAPI document for the models."""
    with cli_errors():
        project = load_project(models, manifest)
        app = create_app(project.models, project.config, db_path=":memory:")
        document = json.dumps(app.openapi(), indent=2)

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(document + "\n", encoding="utf-8")
        console.print(f"[green]Wrote[/green] {output}")
    else:
        typer.echo(document)
