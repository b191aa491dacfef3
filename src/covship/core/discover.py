"""Locate coverage reports under a project tree and normalize them for upload."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import StrEnum
from fnmatch import fnmatch
from pathlib import Path
from typing import TYPE_CHECKING

from pathspec import PathSpec

from covship._meta import logger
from covship.core.gcov import condense_bytes

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

SENTINEL = b"# end_of_file #\n"
STDIN_LABEL = "<stdin>"

# Whole subtrees that are never descended into.
PRUNED_DIRS: tuple[str, ...] = (
    ".git/",
    ".hg/",
    ".svn/",
    ".bzr/",
    "node_modules/",
    "bower_components/",
    "jspm_packages/",
    "vendor/",
    "__pycache__/",
    ".tox/",
    ".nox/",
    ".venv/",
    "venv/",
    "virtualenv/",
    "virtualenvs/",
    "env/",
    "envs/",
    ".env/",
    "site-packages/",
    "*.egg-info/",
    ".mypy_cache/",
    ".pytest_cache/",
    ".ruff_cache/",
    ".yarn-cache/",
    ".gradle/",
    ".cache/",
    "htmlcov/",
    "**/build/lib/",
    "**/js/generated/coverage/",
    "**/coverage/instrumented/",
)

# File names that look like coverage reports.
REPORT_PATTERNS: tuple[str, ...] = (
    "*coverage*",
    "*.gcov",
    "*.lcov",
    "*.lst",
    "clover.xml",
    "cobertura.xml",
    "jacoco*.xml",
    "lcov.info",
    "*.lcov.info",
    "gcov.info",
    "luacov.report.out",
    "nosetests.xml",
    "report.xml",
)

# File names that match the positive set by accident.
IGNORED_PATTERNS: tuple[str, ...] = (
    ".coverage",
    ".coverage.*",
    ".coveragerc",
    "coverage.db",
    "coverage.jade",
    "include.lst",
    "inputfiles.lst",
    "createdfiles.lst",
    "scoverage.measurements.*",
    "test_*_coverage.txt",
    "conftest_*.c.gcov",
    # source
    "*.c",
    "*.cpp",
    "*.h",
    "*.hpp",
    "*.py",
    "*.pyc",
    "*.js",
    "*.ts",
    "*.go",
    "*.rs",
    "*.rb",
    "*.java",
    "*.class",
    "*.sh",
    "*.sql",
    "*.psql",
    "*.less",
    "*.css",
    "*.html",
    # config and docs
    "*.cfg",
    "*.ini",
    "*.yml",
    "*.yaml",
    "*.toml",
    "*.xcconfig",
    "*.md",
    "*.rst",
    # binaries, archives, images
    "*.o",
    "*.so",
    "*.dll",
    "*.exe",
    "*.egg",
    "*.whl",
    "*.data",
    "*.gcno",
    "*.gcda",
    "*.zip",
    "*.gz",
    "*.tgz",
    "*.tar.gz",
    "*.png",
    "*.jpg",
    "*.jpeg",
    "*.gif",
    "*.svg",
)


class FormatKind(StrEnum):
    """How a report's bytes are prepared for upload."""

    PLAIN = "plain"
    GCOV = "gcov"

    @classmethod
    def of(cls, path: Path) -> FormatKind:
        return cls.GCOV if path.name.endswith(".gcov") else cls.PLAIN


@dataclass(frozen=True, slots=True)
class ReportCandidate:
    path: Path
    byte_length: int
    format_kind: FormatKind


@dataclass(frozen=True, slots=True)
class NormalizedBlock:
    """One report's upload-ready bytes, terminated by :data:`SENTINEL`."""

    source: str
    format_kind: FormatKind
    data: bytes

    @classmethod
    def wrap(cls, source: str, format_kind: FormatKind, content: bytes) -> NormalizedBlock:
        if content and not content.endswith(b"\n"):
            content += b"\n"
        return cls(source=source, format_kind=format_kind, data=content + SENTINEL)


def _matches(label: str, patterns: Sequence[str]) -> bool:
    return any(fnmatch(label, pat) for pat in patterns)


def is_report_name(name: str, rel: str = "", *, extra: Sequence[str] = ()) -> bool:
    """Whether a file called *name* should be treated as a coverage report.

    Built-in patterns look at the lowercased file name only; caller-supplied
    *extra* patterns may also match the root-relative path *rel*.
    """
    lowered = name.lower()
    wanted = _matches(lowered, REPORT_PATTERNS) or _matches(name, extra) or (bool(rel) and _matches(rel, extra))
    return wanted and not _matches(lowered, IGNORED_PATTERNS)


def _walk_error(exc: OSError) -> None:
    logger.warning("Ignored %s: %s", exc.filename, exc.strerror or exc)


class ReportFinder:
    """Walk a tree, pruning excluded directories, and select report files."""

    def __init__(
        self,
        root: Path,
        include: Sequence[str] = (),
        exclude: Sequence[str] = (),
    ) -> None:
        self.root = root
        self._include = tuple(include)
        self._prune = PathSpec.from_lines("gitwildmatch", [*PRUNED_DIRS, *exclude])
        self._exclude = PathSpec.from_lines("gitwildmatch", list(exclude))

    def _rel(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def _pruned(self, directory: Path) -> bool:
        return self._prune.match_file(self._rel(directory) + "/")

    def walk(self) -> Iterator[Path]:
        """Yield report-like files in deterministic (sorted) order."""
        for current, dirs, files in os.walk(self.root, onerror=_walk_error):
            here = Path(current)
            kept = []
            for d in sorted(dirs):
                if self._pruned(here / d):
                    logger.debug("pruned %s", here / d)
                    continue
                kept.append(d)
            dirs[:] = kept
            for name in sorted(files):
                path = here / name
                rel = self._rel(path)
                if self._exclude.match_file(rel):
                    continue
                if is_report_name(name, rel, extra=self._include):
                    yield path

    def candidates(self) -> Iterator[ReportCandidate]:
        for path in self.walk():
            candidate = inspect(path)
            if candidate is not None:
                yield candidate


def inspect(path: Path) -> ReportCandidate | None:
    """Stat *path*; unreadable paths are reported and skipped."""
    try:
        size = path.stat().st_size
    except OSError as exc:
        logger.warning("Ignored %s: %s", path, exc)
        return None
    if not path.is_file():
        logger.warning("Ignored %s: not a regular file", path)
        return None
    return ReportCandidate(path=path, byte_length=size, format_kind=FormatKind.of(path))


def normalize(candidate: ReportCandidate) -> NormalizedBlock | None:
    """Read and rewrite one candidate; ``None`` when it is empty or unreadable."""
    if candidate.byte_length == 0:
        logger.info("Skipped empty report %s", candidate.path)
        return None
    try:
        content = candidate.path.read_bytes()
    except OSError as exc:
        logger.warning("Ignored %s: %s", candidate.path, exc)
        return None
    if not content:
        logger.info("Skipped empty report %s", candidate.path)
        return None
    if candidate.format_kind is FormatKind.GCOV:
        content = condense_bytes(content)
    logger.debug("+ %s bytes=%d", candidate.path, len(content))
    return NormalizedBlock.wrap(str(candidate.path), candidate.format_kind, content)


def discover(
    root: Path,
    include: Sequence[str] = (),
    exclude: Sequence[str] = (),
    stdin_bytes: bytes | None = None,
    *,
    files: Sequence[Path] = (),
    search: bool = True,
) -> tuple[list[NormalizedBlock], int]:
    """Collect normalized report blocks and the number of report files found.

    Non-empty *stdin_bytes* is the only input when given. Otherwise explicit
    *files* are used in order, or, failing that, the tree under *root* is
    searched. Blocks appear in discovery order.
    """
    if stdin_bytes:
        logger.info("Reading coverage report from stdin")
        return [NormalizedBlock.wrap(STDIN_LABEL, FormatKind.PLAIN, stdin_bytes)], 1

    if files:
        found = [c for c in (inspect(Path(f)) for f in files) if c is not None]
    elif search:
        found = list(ReportFinder(root, include, exclude).candidates())
    else:
        logger.info("Searching for reports disabled")
        found = []

    blocks = [b for b in (normalize(c) for c in found) if b is not None]
    return blocks, len(found)


__all__ = [
    "IGNORED_PATTERNS",
    "PRUNED_DIRS",
    "REPORT_PATTERNS",
    "SENTINEL",
    "FormatKind",
    "NormalizedBlock",
    "ReportCandidate",
    "ReportFinder",
    "discover",
    "inspect",
    "is_report_name",
    "normalize",
]
