"""Helpers for generating CLI artefacts such as shell completion scripts."""

from __future__ import annotations

from typing import Literal

import click
from click.shell_completion import BashComplete, FishComplete, ShellComplete, ZshComplete

ShellName = Literal["bash", "zsh", "fish"]

_COMPLETE_CLASSES: dict[ShellName, type[ShellComplete]] = {
    "bash": BashComplete,
    "zsh": ZshComplete,
    "fish": FishComplete,
}

_COMPLETE_VAR = "_COVSHIP_COMPLETE"


def _collect_option_flags(command: click.Command) -> tuple[str, ...]:
    flags: list[str] = []
    commands = [command]
    if isinstance(command, click.Group):
        commands.extend(command.commands.values())
    for cmd in commands:
        for param in cmd.params:
            if isinstance(param, click.Option):
                flags.extend(param.opts)
                flags.extend(param.secondary_opts)
    return tuple(sorted({flag for flag in flags if flag}))


def build_completion_script(shell: ShellName) -> str:
    """Return a shell completion script for *shell*, headed by the known flags."""
    from covship.cli.root import cli

    complete = _COMPLETE_CLASSES[shell](cli, {}, "covship", _COMPLETE_VAR)
    header = "# covship options: " + " ".join(_collect_option_flags(cli))
    return f"{header}\n{complete.source()}"


__all__ = ["build_completion_script"]
