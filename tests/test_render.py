from __future__ import annotations

from covship.core.discover import FormatKind, NormalizedBlock
from covship.core.metadata import BuildMetadata
from covship.core.pipeline import PipelineResult
from covship.core.upload import Success
from covship.render.summary import render_summary

BLOCK = NormalizedBlock.wrap("coverage.xml", FormatKind.PLAIN, b"<coverage/>")


def _result(outcome: Success | None = None) -> PipelineResult:
    return PipelineResult(
        metadata=BuildMetadata(service_name="gitlab", commit="abc123", branch="main"),
        blocks=(BLOCK,),
        files_found=2,
        url="https://cov.example.com/coverage?token=<secret>",
        payload_size=2048,
        compressed_size=300,
        outcome=outcome,
    )


def test_summary_lists_reports_and_metadata() -> None:
    out = render_summary(_result(Success("https://cov.example.com/r/1", 1.234, 2)), color=False)
    assert "Coverage Reports" in out
    assert "coverage.xml" in out
    assert "1 of 2 uploaded" in out
    assert "2.0 KiB" in out
    assert "service: gitlab" in out
    assert "https://cov.example.com/r/1" in out
    assert "uploaded in 1.23s after 2 attempt(s)" in out
    assert "\x1b[" not in out


def test_dry_run_summary() -> None:
    out = render_summary(_result(), color=False)
    assert "dry run https://cov.example.com/coverage?token=<secret>" in out
    assert "payload: 2048 bytes (300 gzipped)" in out


def test_color_output_uses_ansi() -> None:
    assert "\x1b[" in render_summary(_result(), color=True)
