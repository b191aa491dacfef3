"""Concatenate normalized report blocks and gzip them for upload."""

from __future__ import annotations

import contextlib
import gzip
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from covship._meta import logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from covship.core.discover import NormalizedBlock


@dataclass(frozen=True, slots=True)
class StagedPayload:
    """Temporary files backing one run's upload body."""

    raw_path: Path
    compressed_path: Path
    raw_size: int
    compressed_size: int

    def read(self) -> bytes:
        return self.compressed_path.read_bytes()


def assemble(blocks: Iterable[NormalizedBlock]) -> bytes:
    """Concatenate *blocks* in order; each already ends with the sentinel."""
    return b"".join(block.data for block in blocks)


def compress(data: bytes) -> bytes:
    return gzip.compress(data)


def _unlink(path: Path) -> None:
    with contextlib.suppress(FileNotFoundError):
        path.unlink()


@contextlib.contextmanager
def staged_payload(blocks: Iterable[NormalizedBlock], *, directory: Path | None = None) -> Iterator[StagedPayload]:
    """Write the assembled payload and its gzip form to exclusive temp files.

    Both files are removed when the context exits, whatever the exit path.
    """
    raw = assemble(blocks)
    fd, raw_name = tempfile.mkstemp(prefix="covship-", suffix=".txt", dir=directory)
    raw_path = Path(raw_name)
    compressed_path = raw_path.with_name(raw_path.name + ".gz")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(raw)
        with compressed_path.open("xb") as fh:
            fh.write(compress(raw))
        staged = StagedPayload(
            raw_path=raw_path,
            compressed_path=compressed_path,
            raw_size=raw_path.stat().st_size,
            compressed_size=compressed_path.stat().st_size,
        )
        logger.debug("payload staged: %d bytes, %d compressed", staged.raw_size, staged.compressed_size)
        yield staged
    finally:
        _unlink(raw_path)
        _unlink(compressed_path)


__all__ = ["StagedPayload", "assemble", "compress", "staged_payload"]
