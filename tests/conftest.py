from __future__ import annotations

from collections.abc import Callable, Mapping
from pathlib import Path

import pytest
from typer.testing import CliRunner

from covship.core.git import GitContext
from covship.core.upload import TransportResponse

GCOV_SAMPLE = "foo.c:\n    1:   3:int x;\n    -:   4:}\nfunction main called 2 returned 1\n"

SHA_A = "a" * 40
SHA_B = "b" * 40


@pytest.fixture
def cli_runner() -> CliRunner:
    """Return a Typer CLI runner for invoking the command-line interface."""
    return CliRunner()


@pytest.fixture
def git_ctx() -> GitContext:
    return GitContext(
        root="/work/project",
        commit=SHA_A,
        commit_timestamp="1700000000",
        branch="main",
        author_name="Ada Lovelace",
        author_email="ada@example.com",
        committer_name="Ada Lovelace",
        committer_email="ada@example.com",
        message="Add parser",
        remotes=(("origin", "git@github.com:acme/widgets.git"), ("fork", "https://gitlab.com/ada/widgets.git")),
    )


@pytest.fixture
def report_tree(tmp_path: Path) -> Callable[[Mapping[str, str | bytes]], Path]:
    """Write ``{relative path: content}`` under ``tmp_path`` and return the root."""

    def build(files: Mapping[str, str | bytes]) -> Path:
        for rel, content in files.items():
            path = tmp_path / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                path.write_bytes(content)
            else:
                path.write_text(content, encoding="utf-8")
        return tmp_path

    return build


class FakeTransport:
    """Replays canned ``(status, body)`` responses and records each request."""

    def __init__(self, *responses: tuple[int, str]) -> None:
        self._responses = list(responses)
        self.calls: list[tuple[str, bytes, dict[str, str]]] = []

    def __call__(self, url: str, body: bytes, headers: Mapping[str, str]) -> TransportResponse:
        self.calls.append((url, body, dict(headers)))
        status, text = self._responses.pop(0)
        return TransportResponse(body=text, status=status, elapsed=0.25)


@pytest.fixture
def fake_transport() -> Callable[..., FakeTransport]:
    return FakeTransport


@pytest.fixture
def sleeps() -> list[float]:
    return []
