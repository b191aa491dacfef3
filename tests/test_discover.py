from __future__ import annotations

import logging
from pathlib import Path

import pytest

from covship.core.discover import (
    SENTINEL,
    STDIN_LABEL,
    FormatKind,
    NormalizedBlock,
    ReportCandidate,
    ReportFinder,
    discover,
    inspect,
    is_report_name,
    normalize,
)

from tests.conftest import GCOV_SAMPLE


def _rel(root: Path, blocks: list[NormalizedBlock]) -> list[str]:
    return [Path(b.source).relative_to(root).as_posix() for b in blocks]


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("coverage.xml", True),
        ("Coverage.XML", True),
        ("lcov.info", True),
        ("app.lcov", True),
        ("foo.c.gcov", True),
        ("jacocoTestReport.xml", True),
        ("cobertura.xml", True),
        ("coverage_helpers.py", False),
        (".coverage", False),
        (".coverage.host.123", False),
        (".coveragerc", False),
        ("coverage.yml", False),
        ("coverage.png", False),
        ("readme.md", False),
        ("results.json", False),
    ],
)
def test_is_report_name(name: str, expected: bool) -> None:
    assert is_report_name(name) is expected


def test_extra_patterns_match_name_or_relative_path() -> None:
    assert is_report_name("results.json", "out/results.json", extra=("results.json",))
    assert is_report_name("a.json", "reports/a.json", extra=("reports/*.json",))
    assert not is_report_name("a.json", "other/a.json", extra=("reports/*.json",))
    # built-in negatives still apply
    assert not is_report_name("cov.py", "cov.py", extra=("*.py",))


def test_walk_finds_reports_and_prunes_noise(report_tree) -> None:
    root = report_tree(
        {
            "coverage.xml": "<coverage/>",
            "build/lcov.info": "TN:\n",
            "node_modules/pkg/coverage.xml": "<vendored/>",
            ".git/coverage.xml": "<git/>",
            ".venv/lib/coverage.xml": "<venv/>",
            "src/coverage_report.py": "print()",
            "docs/readme.md": "# hi",
            ".coverage": "sqlite",
        }
    )
    blocks, found = discover(root)
    assert found == 2
    assert _rel(root, blocks) == ["coverage.xml", "build/lcov.info"]


def test_walk_order_is_deterministic(report_tree) -> None:
    root = report_tree(
        {
            "b/coverage.xml": "b",
            "a/coverage.xml": "a",
            "coverage.xml": "root",
            "a/z/lcov.info": "z",
        }
    )
    paths = [p.relative_to(root).as_posix() for p in ReportFinder(root).walk()]
    assert paths == ["coverage.xml", "a/coverage.xml", "a/z/lcov.info", "b/coverage.xml"]


def test_user_excludes_prune_directories_and_files(report_tree) -> None:
    root = report_tree(
        {
            "keep/coverage.xml": "k",
            "skip/coverage.xml": "s",
            "keep/old-coverage.xml": "o",
        }
    )
    blocks, found = discover(root, exclude=("skip/", "old-*"))
    assert found == 1
    assert _rel(root, blocks) == ["keep/coverage.xml"]


def test_user_includes_add_files(report_tree) -> None:
    root = report_tree({"out/results.json": "{}", "coverage.xml": "x"})
    blocks, _ = discover(root, include=("out/*.json",))
    assert _rel(root, blocks) == ["coverage.xml", "out/results.json"]


def test_blocks_end_with_sentinel(report_tree) -> None:
    root = report_tree({"coverage.xml": "<coverage/>"})
    blocks, _ = discover(root)
    assert blocks[0].data == b"<coverage/>\n" + SENTINEL
    assert blocks[0].format_kind is FormatKind.PLAIN


def test_content_passes_through_verbatim(report_tree) -> None:
    raw = b"SF:a.c\r\nDA:1,1\r\nend_of_record\n"
    root = report_tree({"lcov.info": raw})
    blocks, _ = discover(root)
    assert blocks[0].data == raw + SENTINEL


def test_gcov_reports_are_condensed(report_tree) -> None:
    root = report_tree({"src/foo.c.gcov": GCOV_SAMPLE})
    blocks, _ = discover(root)
    assert blocks[0].format_kind is FormatKind.GCOV
    assert blocks[0].data == b"foo.c:\n1:3:\nfunc\n" + SENTINEL


def test_empty_reports_count_as_found_but_are_skipped(report_tree, caplog: pytest.LogCaptureFixture) -> None:
    root = report_tree({"coverage.xml": "", "lcov.info": "TN:\n"})
    with caplog.at_level(logging.INFO, logger="covship"):
        blocks, found = discover(root)
    assert found == 2
    assert _rel(root, blocks) == ["lcov.info"]
    assert "Skipped empty report" in caplog.text


def test_unreadable_report_is_skipped_with_warning(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    path = tmp_path / "coverage.xml"
    path.write_text("x", encoding="utf-8")
    candidate = ReportCandidate(path=path, byte_length=1, format_kind=FormatKind.PLAIN)

    def denied(self: Path) -> bytes:
        raise PermissionError(13, "Permission denied", str(self))

    monkeypatch.setattr(Path, "read_bytes", denied)
    with caplog.at_level(logging.WARNING, logger="covship"):
        assert normalize(candidate) is None
    assert "Ignored" in caplog.text


def test_stdin_bypasses_search(report_tree) -> None:
    root = report_tree({"coverage.xml": "ignored"})
    blocks, found = discover(root, stdin_bytes=b"from stdin")
    assert found == 1
    assert blocks == [NormalizedBlock(STDIN_LABEL, FormatKind.PLAIN, b"from stdin\n" + SENTINEL)]


def test_empty_stdin_falls_back_to_search(report_tree) -> None:
    root = report_tree({"coverage.xml": "x"})
    blocks, _ = discover(root, stdin_bytes=b"")
    assert _rel(root, blocks) == ["coverage.xml"]


def test_explicit_files_skip_the_walk(report_tree, caplog: pytest.LogCaptureFixture) -> None:
    root = report_tree({"coverage.xml": "walked", "custom/data.out": "named"})
    with caplog.at_level(logging.WARNING, logger="covship"):
        blocks, found = discover(root, files=(root / "custom/data.out", root / "missing.xml"))
    assert found == 1
    assert _rel(root, blocks) == ["custom/data.out"]
    assert "missing.xml" in caplog.text


def test_search_disabled_finds_nothing(report_tree) -> None:
    root = report_tree({"coverage.xml": "x"})
    assert discover(root, search=False) == ([], 0)


def test_inspect_rejects_directories(tmp_path: Path) -> None:
    assert inspect(tmp_path) is None
    assert inspect(tmp_path / "nope") is None


def test_unreadable_directories_are_reported(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    missing = tmp_path / "gone"
    with caplog.at_level(logging.WARNING, logger="covship"):
        assert list(ReportFinder(missing).walk()) == []
    assert "Ignored" in caplog.text
    assert "gone" in caplog.text
