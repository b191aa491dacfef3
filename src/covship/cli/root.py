from __future__ import annotations

from typing import Annotated

import typer
from typer.main import get_command

from covship import __version__
from covship.cli import completion, upload


def _show_version(value: bool) -> None:
    if value:
        typer.echo(f"covship {__version__}")
        raise typer.Exit


def create_app() -> typer.Typer:
    app = typer.Typer(help="Discover coverage reports and upload them with CI build metadata.")

    @app.callback()
    def _root(
        *,
        version: Annotated[
            bool,
            typer.Option("--version", help="Show version and exit", callback=_show_version, is_eager=True),
        ] = False,
    ) -> None:
        """Upload coverage reports from a CI build."""

    upload.register(app)
    completion.register(app)

    return app


def main() -> None:
    app = create_app()
    get_command(app)()


# Click-compatible object for tooling that imports it
cli = get_command(create_app())

__all__ = ["cli", "create_app", "main"]
