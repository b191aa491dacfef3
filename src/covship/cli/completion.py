from __future__ import annotations

from typing import Annotated, Literal

import typer

from covship.cli.exit_codes import EXIT_OK

ShellName = Literal["bash", "zsh", "fish"]


def register(app: typer.Typer) -> None:
    @app.command("completion")
    def completion(
        shell: Annotated[
            ShellName,
            typer.Argument(..., help="Shell name: bash, zsh, or fish."),
        ],
    ) -> None:
        """Print a shell completion script."""
        from covship.scripts import build_completion_script

        typer.echo(build_completion_script(shell))
        raise typer.Exit(code=EXIT_OK)


__all__ = ["register"]
