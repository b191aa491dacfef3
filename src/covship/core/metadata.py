"""Canonical description of a build's CI context and git state."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

LABEL_SEPARATOR = ","
REMOTE_FIELD_SEPARATOR = ","
REMOTE_SEPARATOR = ";"


def join_labels(labels: tuple[str, ...]) -> str:
    return LABEL_SEPARATOR.join(labels)


def split_labels(text: str) -> tuple[str, ...]:
    """Turn ``"a, b,,c"`` into ``("a", "b", "c")``."""
    return tuple(part.strip() for part in text.split(LABEL_SEPARATOR) if part.strip())


def join_remotes(remotes: tuple[tuple[str, str], ...]) -> str:
    """Serialize named remotes as ``name,url;name,url``."""
    return REMOTE_SEPARATOR.join(f"{name}{REMOTE_FIELD_SEPARATOR}{url}" for name, url in remotes)


@dataclass(frozen=True, slots=True)
class BuildMetadata:
    """Normalized build record sent alongside the coverage payload.

    Every scalar field is a string and absence is the empty string, because the
    record is flattened into a query string. ``labels`` and ``git_remotes`` are
    ordered sequences that serialize to ``a,b`` and ``name,url;name,url``.
    """

    service_name: str = ""
    service_job_id: str = ""
    pull_request_id: str = ""
    repo_host: str = ""
    slug: str = ""
    build_id: str = ""
    build_url: str = ""
    labels: tuple[str, ...] = ()
    git_root: str = ""
    git_remotes: tuple[tuple[str, str], ...] = ()
    commit: str = ""
    commit_timestamp: str = ""
    branch: str = ""
    tag: str = ""
    author_name: str = ""
    author_email: str = ""
    committer_name: str = ""
    committer_email: str = ""
    message: str = ""
    run_at_timestamp: str = ""

    @classmethod
    def field_names(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    def updated(self, changes: Mapping[str, object]) -> BuildMetadata:
        """Return a copy with *changes* applied; unknown keys are rejected."""
        unknown = set(changes) - set(self.field_names())
        if unknown:
            msg = f"unknown build metadata field(s): {', '.join(sorted(unknown))}"
            raise KeyError(msg)
        return replace(self, **_coerce(changes))

    def is_empty(self, name: str) -> bool:
        return not getattr(self, name)

    def as_pairs(self) -> list[tuple[str, str]]:
        """Flatten into ``(key, value)`` string pairs in declaration order."""
        pairs: list[tuple[str, str]] = []
        for name in self.field_names():
            value = getattr(self, name)
            if name == "labels":
                value = join_labels(value)
            elif name == "git_remotes":
                value = join_remotes(value)
            pairs.append((name, value))
        return pairs


def _coerce(changes: Mapping[str, object]) -> dict[str, object]:
    out: dict[str, object] = {}
    for name, value in changes.items():
        if name == "labels":
            out[name] = split_labels(value) if isinstance(value, str) else tuple(value or ())  # type: ignore[arg-type]
        elif name == "git_remotes":
            out[name] = tuple((str(n), str(u)) for n, u in (value or ()))  # type: ignore[union-attr]
        else:
            out[name] = "" if value is None else str(value)
    return out


__all__ = [
    "BuildMetadata",
    "join_labels",
    "join_remotes",
    "split_labels",
]
