from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from covship._meta import logger
from covship.core.ci import resolve
from covship.core.config import BACKOFF_UNIT, DEFAULT_ENDPOINT, DEFAULT_MAX_ATTEMPTS
from covship.core.discover import discover
from covship.core.git import read_git_context
from covship.core.payload import staged_payload
from covship.core.upload import Success, build_query, redact, upload, upload_url
from covship.errors import NoReportsError, UploadError

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from pathlib import Path

    from covship.core.discover import NormalizedBlock
    from covship.core.git import GitContext
    from covship.core.metadata import BuildMetadata
    from covship.core.upload import Transport


@dataclass(frozen=True, slots=True)
class UploadOptions:
    """Fully resolved inputs for one run."""

    root: Path
    token: str = ""
    endpoint: str = DEFAULT_ENDPOINT
    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()
    files: tuple[Path, ...] = ()
    stdin_bytes: bytes | None = None
    search: bool = True
    detect: bool = True
    overrides: Mapping[str, object] = field(default_factory=dict)
    fallbacks: Mapping[str, object] = field(default_factory=dict)
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_unit: float = BACKOFF_UNIT
    dry_run: bool = False


@dataclass(frozen=True, slots=True)
class PipelineResult:
    metadata: BuildMetadata
    blocks: tuple[NormalizedBlock, ...]
    files_found: int
    url: str
    payload_size: int
    compressed_size: int
    outcome: Success | None = None


def run_pipeline(
    opts: UploadOptions,
    *,
    env: Mapping[str, str],
    git: GitContext | None = None,
    transport: Transport | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> PipelineResult:
    """Resolve metadata, collect reports and upload them.

    Raises :class:`NoReportsError` before any network activity when there is
    nothing to upload, and :class:`UploadError` when the upload fails.
    """
    git_ctx = read_git_context(opts.root) if git is None else git
    metadata = resolve(env, git_ctx, opts.overrides, fallbacks=opts.fallbacks, detect=opts.detect)
    logger.info("Service: %s", metadata.service_name or "none detected")

    blocks, found = discover(
        opts.root,
        opts.include,
        opts.exclude,
        opts.stdin_bytes,
        files=opts.files,
        search=opts.search,
    )
    if not blocks:
        msg = (
            f"no coverage reports found under {opts.root}"
            if not found
            else f"found {found} coverage report(s) but all were empty or unreadable"
        )
        raise NoReportsError(msg)
    logger.info("Found %d coverage report(s)", len(blocks))

    url = upload_url(opts.endpoint, redact(build_query(metadata, opts.token)))
    with staged_payload(blocks) as staged:
        result = PipelineResult(
            metadata=metadata,
            blocks=tuple(blocks),
            files_found=found,
            url=url,
            payload_size=staged.raw_size,
            compressed_size=staged.compressed_size,
        )
        if opts.dry_run:
            logger.info("Dry run, skipping upload")
            return result
        outcome = upload(
            metadata,
            staged.read(),
            opts.endpoint,
            opts.token,
            opts.max_attempts,
            transport=transport,
            sleep=sleep,
            backoff_unit=opts.backoff_unit,
        )

    if not isinstance(outcome, Success):
        raise UploadError(outcome.reason or "upload failed", outcome)
    return replace(result, outcome=outcome)


__all__ = ["PipelineResult", "UploadOptions", "run_pipeline"]
