"""
Miles CLI.

- migrate.py: schema and migration commands
- serve.py: serve and openapi commands
- generate.py: client generation commands
- utils.py: shared utilities
"""

from __future__ import annotations

import typer

from miles.cli.generate import generate_app
from miles.cli.migrate import migrate_app, schema_command
from miles.cli.serve import openapi_command, serve_command
from miles.cli.utils import console, get_version, version_callback

app = typer.Typer(
    help="""Miles - models in, REST API and React client out

Commands:
  • schema, migrate: SQLite schema and migrations
  • serve, openapi: REST API
  • generate client: React + TypeScript bindings
""",
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and environment information",
    ),
) -> None:
    """Miles CLI main callback for global options."""
    pass


@app.command(name="version")
def version_command() -> None:
    """Show the installed Miles version."""
    console.print(get_version())


app.command(name="schema")(schema_command)
app.command(name="serve")(serve_command)
app.command(name="openapi")(openapi_command)
app.add_typer(migrate_app, name="migrate")
app.add_typer(generate_app, name="generate")


def main(argv: list[str] | None = None) -> None:
    app(args=argv, standalone_mode=True)


__all__ = [
    "app",
    "main",
    "migrate_app",
    "generate_app",
    "get_version",
    "version_callback",
]
