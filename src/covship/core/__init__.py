"""Core pipeline: CI resolution, report discovery, payload assembly and upload."""

from covship.core.ci import resolve
from covship.core.config import LOG_FORMAT, FileConfig, load_config, read_token
from covship.core.discover import FormatKind, NormalizedBlock, ReportCandidate, discover
from covship.core.git import GitContext, parse_remote_url, read_git_context
from covship.core.metadata import BuildMetadata
from covship.core.payload import staged_payload
from covship.core.pipeline import PipelineResult, UploadOptions, run_pipeline
from covship.core.upload import (
    RetryableFailure,
    Success,
    TerminalFailure,
    UploadOutcome,
    build_query,
    upload,
)
from covship.errors import ConfigError, CovshipError, NoReportsError, UploadError

__all__ = [
    "LOG_FORMAT",
    "BuildMetadata",
    "ConfigError",
    "CovshipError",
    "FileConfig",
    "FormatKind",
    "GitContext",
    "NoReportsError",
    "NormalizedBlock",
    "PipelineResult",
    "ReportCandidate",
    "RetryableFailure",
    "Success",
    "TerminalFailure",
    "UploadError",
    "UploadOptions",
    "UploadOutcome",
    "build_query",
    "discover",
    "load_config",
    "parse_remote_url",
    "read_git_context",
    "read_token",
    "resolve",
    "run_pipeline",
    "staged_payload",
    "upload",
]
