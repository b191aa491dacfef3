"""Read-only access to the repository state of the build being uploaded."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from git import Repo
from git.exc import GitError, InvalidGitRepositoryError, NoSuchPathError

from covship._meta import logger

if TYPE_CHECKING:
    from pathlib import Path

_MERGE_COMMIT_RE = re.compile(r"^Merge\s(?P<head>\w{40})\sinto\s(?P<base>\w{40})$")


@dataclass(frozen=True, slots=True)
class GitContext:
    """Snapshot of the repository metadata the resolver needs.

    A build outside any repository is represented by the all-empty default.
    """

    root: str = ""
    commit: str = ""
    commit_timestamp: str = ""
    branch: str = ""
    tag: str = ""
    author_name: str = ""
    author_email: str = ""
    committer_name: str = ""
    committer_email: str = ""
    message: str = ""
    remotes: tuple[tuple[str, str], ...] = ()

    @property
    def remote_url(self) -> str:
        """URL of ``origin``, or of the first remote when there is no origin."""
        for name, url in self.remotes:
            if name == "origin":
                return url
        return self.remotes[0][1] if self.remotes else ""

    @property
    def merged_head(self) -> str:
        """Head sha of a ``Merge <sha> into <sha>`` commit, else ``""``."""
        m = _MERGE_COMMIT_RE.match(self.message.strip())
        return m.group("head") if m else ""


def parse_remote_url(url: str) -> tuple[str, str]:
    """Derive ``(repo_host, slug)`` from a git remote URL.

    ``https://github.com/owner/repo.git`` and ``git@github.com:owner/repo.git``
    both give ``("github", "owner/repo")``.
    """
    url = url.strip()
    if not url:
        return "", ""
    if "//" in url:
        parts = url.split("/")
        host = parts[2] if len(parts) > 2 else ""  # noqa: PLR2004
        host = host.rsplit("@", 1)[-1]
        host = host.removesuffix(".com")
        slug = "/".join(parts[3:5])
    else:
        user_host, _, path = url.partition(":")
        host = user_host.rsplit("@", 1)[-1].split(".", 1)[0]
        slug = path.lstrip("/")
    slug = slug.removesuffix(".git")
    if slug == "/":
        slug = ""
    return host, slug


def _head_tag(repo: Repo, sha: str) -> str:
    for tag in repo.tags:
        try:
            if tag.commit.hexsha == sha:
                return tag.name
        except ValueError:
            continue
    return ""


def _remotes(repo: Repo) -> tuple[tuple[str, str], ...]:
    out: list[tuple[str, str]] = []
    for remote in repo.remotes:
        try:
            out.append((remote.name, remote.url))
        except (GitError, AttributeError):
            logger.debug("remote %s has no url", remote.name)
    return tuple(out)


def read_git_context(path: Path) -> GitContext:
    """Read repository metadata for *path*; never raises for a missing repo."""
    try:
        repo = Repo(path, search_parent_directories=True)
    except (InvalidGitRepositoryError, NoSuchPathError):
        logger.debug("no git repository found at %s", path)
        return GitContext()

    with repo:
        root = str(repo.working_tree_dir or "")
        remotes = _remotes(repo)
        try:
            if not repo.head.is_valid():
                return GitContext(root=root, remotes=remotes)
            head = repo.head.commit
            branch = "" if repo.head.is_detached else repo.active_branch.name
            return GitContext(
                root=root,
                commit=head.hexsha,
                commit_timestamp=str(head.committed_date),
                branch=branch,
                tag=_head_tag(repo, head.hexsha),
                author_name=head.author.name or "",
                author_email=head.author.email or "",
                committer_name=head.committer.name or "",
                committer_email=head.committer.email or "",
                message=str(head.message).strip(),
                remotes=remotes,
            )
        except (GitError, ValueError, TypeError) as exc:
            logger.debug("failed to read git metadata: %s", exc)
            return GitContext(root=root, remotes=remotes)


__all__ = ["GitContext", "parse_remote_url", "read_git_context"]
