from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import click
import click.utils as click_utils
import typer

from covship import logger
from covship.cli.exit_codes import EXIT_FAILURE, EXIT_OK, EXIT_USAGE
from covship.core.config import DEFAULT_ENDPOINT, DEFAULT_MAX_ATTEMPTS, LOG_FORMAT, load_config, read_token
from covship.core.pipeline import UploadOptions, run_pipeline
from covship.errors import CovshipError, NoReportsError, UploadError
from covship.render.summary import render_summary

if TYPE_CHECKING:
    from collections.abc import Mapping

    from covship.core.pipeline import PipelineResult

_BOOL_FALSE = False


def _configure_logging(*, quiet: bool, verbose: bool, debug: bool) -> None:
    level = logging.ERROR if quiet else (logging.DEBUG if (verbose or debug) else logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    if debug:
        logger.debug("debug logging enabled")


def _use_color(*, color: bool, no_color: bool) -> bool:
    # CLI flags take precedence over terminal detection.
    if no_color:
        return False
    if color:
        return True
    is_tty = bool(getattr(sys.stdout, "isatty", lambda: False)())
    return is_tty and not click_utils.should_strip_ansi(sys.stdout)


def _collect_overrides(**values: str | list[str] | None) -> dict[str, object]:
    """Keep only the flags that were actually given, even if given as ``""``."""
    return {name: value for name, value in values.items() if value is not None}


def _fail(exc: CovshipError, *, strict: bool, debug: bool) -> None:
    typer.echo(f"ERROR: {exc}", err=True)
    if isinstance(exc, UploadError) and exc.outcome.body:
        typer.echo(exc.outcome.body, err=True)
    if isinstance(exc, NoReportsError):
        typer.echo("Tip: pass report paths with --file, or pipe a report with --stdin", err=True)
    if debug:
        raise exc
    raise typer.Exit(code=EXIT_FAILURE if strict else EXIT_OK)


def _build_options(
    *,
    root: Path,
    token: str | None,
    url: str,
    config: Path | None,
    include: list[str],
    exclude: list[str],
    files: list[Path],
    stdin: bool,
    search: bool,
    detect: bool,
    overrides: Mapping[str, object],
    max_attempts: int,
    dry_run: bool,
) -> UploadOptions:
    file_config = load_config(root, config)
    raw_token = token if token is not None else file_config.token
    return UploadOptions(
        root=root,
        token=read_token(raw_token or "", base=Path.cwd()),
        endpoint=url,
        include=tuple(include),
        exclude=tuple(exclude),
        files=tuple(files),
        stdin_bytes=click.get_binary_stream("stdin").read() if stdin else None,
        search=search,
        detect=detect,
        overrides=overrides,
        fallbacks=file_config.fallbacks(),
        max_attempts=max_attempts,
        dry_run=dry_run,
    )


def upload_cmd(
    # input
    root: Annotated[
        Path | None,
        typer.Option("--root", help="Project directory to search. Defaults to the current directory."),
    ] = None,
    files: Annotated[
        list[Path] | None,
        typer.Option("-f", "--file", help="Upload this report instead of searching (repeatable)."),
    ] = None,
    include: Annotated[
        list[str] | None,
        typer.Option("-i", "--include", help="Extra report name glob (repeatable)."),
    ] = None,
    exclude: Annotated[
        list[str] | None,
        typer.Option("-x", "--exclude", help="Glob of paths to skip while searching (repeatable)."),
    ] = None,
    stdin: Annotated[
        bool,
        typer.Option("--stdin", help="Read a single report from standard input instead of searching."),
    ] = _BOOL_FALSE,
    search: Annotated[
        bool,
        typer.Option("--search/--no-search", help="Search the project tree for reports."),
    ] = True,
    detect: Annotated[
        bool,
        typer.Option("--detect/--no-detect", help="Detect the CI provider from the environment."),
    ] = True,
    # service
    token: Annotated[
        str | None,
        typer.Option("-t", "--token", envvar="COVSHIP_TOKEN", help="Upload token, or @FILE to read it from a file."),
    ] = None,
    url: Annotated[
        str,
        typer.Option("-u", "--url", envvar="COVSHIP_URL", help="Coverage service endpoint."),
    ] = DEFAULT_ENDPOINT,
    config: Annotated[
        Path | None,
        typer.Option("--config", help="Config file. Defaults to .covship.toml or [tool.covship] in pyproject.toml."),
    ] = None,
    max_attempts: Annotated[
        int,
        typer.Option("--max-attempts", help="Upload attempts before giving up on server errors.", min=1),
    ] = DEFAULT_MAX_ATTEMPTS,
    # metadata overrides
    slug: Annotated[
        str | None,
        typer.Option("-r", "--slug", envvar="COVSHIP_SLUG", help="Repository slug, e.g. owner/repo."),
    ] = None,
    commit: Annotated[str | None, typer.Option("-c", "--commit", help="Commit sha.")] = None,
    branch: Annotated[str | None, typer.Option("-b", "--branch", help="Branch name.")] = None,
    tag: Annotated[str | None, typer.Option("--tag", help="Git tag.")] = None,
    pr: Annotated[str | None, typer.Option("--pr", help="Pull request number.")] = None,
    build: Annotated[str | None, typer.Option("--build", help="Build number.")] = None,
    build_url: Annotated[str | None, typer.Option("--build-url", help="Link to the build.")] = None,
    job: Annotated[str | None, typer.Option("--job", help="CI job id.")] = None,
    service: Annotated[str | None, typer.Option("--service", help="CI service name.")] = None,
    labels: Annotated[
        list[str] | None,
        typer.Option("-F", "--label", help="Label this upload (repeatable)."),
    ] = None,
    # behaviour
    strict: Annotated[
        bool,
        typer.Option("--strict", "--required", help="Exit 1 when the upload fails."),
    ] = _BOOL_FALSE,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Collect everything but do not upload."),
    ] = _BOOL_FALSE,
    quiet: Annotated[bool, typer.Option("-q", "--quiet", help="Only log errors.")] = _BOOL_FALSE,
    verbose: Annotated[bool, typer.Option("-v", "--verbose", help="Emit diagnostic logging.")] = _BOOL_FALSE,
    debug: Annotated[bool, typer.Option("--debug", help="Show full tracebacks for errors.")] = _BOOL_FALSE,
    color: Annotated[bool, typer.Option("--color", help="Force color output.")] = _BOOL_FALSE,
    no_color: Annotated[bool, typer.Option("--no-color", help="Disable color output.")] = _BOOL_FALSE,
) -> None:
    """Collect coverage reports and upload them."""
    if stdin and files:
        typer.echo("ERROR: --stdin cannot be combined with --file", err=True)
        raise typer.Exit(code=EXIT_USAGE)
    _configure_logging(quiet=quiet, verbose=verbose, debug=debug)

    overrides = _collect_overrides(
        slug=slug,
        commit=commit,
        branch=branch,
        tag=tag,
        pull_request_id=pr,
        build_id=build,
        build_url=build_url,
        service_job_id=job,
        service_name=service,
        labels=labels,
    )

    result: PipelineResult | None = None
    try:
        opts = _build_options(
            root=(root or Path.cwd()).resolve(),
            token=token,
            url=url,
            config=config,
            include=include or [],
            exclude=exclude or [],
            files=files or [],
            stdin=stdin,
            search=search,
            detect=detect,
            overrides=overrides,
            max_attempts=max_attempts,
            dry_run=dry_run,
        )
        result = run_pipeline(opts, env=os.environ)
    except CovshipError as exc:
        _fail(exc, strict=strict, debug=debug)

    if result is not None and not quiet:
        typer.echo(render_summary(result, color=_use_color(color=color, no_color=no_color)))
    raise typer.Exit(code=EXIT_OK)


def register(app: typer.Typer) -> None:
    app.command("upload")(upload_cmd)


__all__ = ["register"]
