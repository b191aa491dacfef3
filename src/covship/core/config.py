"""Central configuration, constants and the config-file reader for ``covship``."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path
from tomllib import TOMLDecodeError

from covship.core.metadata import split_labels
from covship.errors import ConfigError

# Default logging format used by the CLI entry point.
LOG_FORMAT = "%(levelname)s: %(message)s"

DEFAULT_ENDPOINT = "https://api.covship.io"
DEFAULT_MAX_ATTEMPTS = 4
# Seconds slept after failed attempt ``n`` is ``BACKOFF_UNIT * n``.
BACKOFF_UNIT = 10.0
HTTP_TIMEOUT = 60.0

CONFIG_FILENAME = ".covship.toml"


@dataclass(frozen=True, slots=True)
class FileConfig:
    """The three values a config file may supply."""

    token: str = ""
    slug: str = ""
    labels: tuple[str, ...] = ()

    def fallbacks(self) -> dict[str, object]:
        """Build-metadata fields this config can fill."""
        return {"slug": self.slug, "labels": self.labels}


def _find_project_root(start: Path) -> Path:
    """Heuristic project root finder: walks upward looking for a config, pyproject.toml or .git."""
    cur = start.resolve()
    for p in (cur, *cur.parents):
        if (p / CONFIG_FILENAME).exists() or (p / "pyproject.toml").exists() or (p / ".git").exists():
            return p
    return cur


def _read_toml(path: Path) -> dict[str, object]:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except (TOMLDecodeError, UnicodeError) as exc:
        msg = f"invalid config file {path}: {exc}"
        raise ConfigError(msg) from exc


def _table(path: Path) -> dict[str, object] | None:
    if path.name == "pyproject.toml":
        tool = _read_toml(path).get("tool", {})
        section = tool.get("covship") if isinstance(tool, dict) else None
        return section if isinstance(section, dict) else None
    return _read_toml(path)


def _as_str(value: object, key: str, path: Path) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        msg = f"{path}: '{key}' must be a string"
        raise ConfigError(msg)
    return value.strip()


def _as_labels(value: object, path: Path) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return split_labels(value)
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return tuple(v.strip() for v in value if v.strip())
    msg = f"{path}: 'labels' must be a string or a list of strings"
    raise ConfigError(msg)


def load_config(start: Path, explicit: Path | None = None) -> FileConfig:
    """Load ``token``/``slug``/``labels`` from the project's config file.

    *explicit* names a file directly. Otherwise ``.covship.toml`` is preferred
    over ``[tool.covship]`` in ``pyproject.toml`` at the project root. Missing
    files give an empty config; unreadable or malformed ones raise
    :class:`ConfigError`.
    """
    if explicit is not None:
        if not explicit.is_file():
            msg = f"config file not found: {explicit}"
            raise ConfigError(msg)
        candidates = [explicit]
    else:
        root = _find_project_root(start)
        candidates = [root / CONFIG_FILENAME, root / "pyproject.toml"]

    for path in candidates:
        if not path.is_file():
            continue
        try:
            data = _table(path)
        except OSError as exc:
            msg = f"failed to read config file {path}: {exc}"
            raise ConfigError(msg) from exc
        if data is None:
            continue
        return FileConfig(
            token=_as_str(data.get("token"), "token", path),
            slug=_as_str(data.get("slug"), "slug", path),
            labels=_as_labels(data.get("labels"), path),
        )
    return FileConfig()


def read_token(token: str, *, base: Path) -> str:
    """Resolve ``@path`` tokens by reading the named file."""
    if not token.startswith("@"):
        return token.strip()
    path = Path(token[1:])
    if not path.is_absolute():
        path = base / path
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError as exc:
        msg = f"failed to read token file {path}: {exc}"
        raise ConfigError(msg) from exc


__all__ = [
    "BACKOFF_UNIT",
    "CONFIG_FILENAME",
    "DEFAULT_ENDPOINT",
    "DEFAULT_MAX_ATTEMPTS",
    "HTTP_TIMEOUT",
    "LOG_FORMAT",
    "FileConfig",
    "load_config",
    "read_token",
]
