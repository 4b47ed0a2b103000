# === NAVMAP v1 ===
# {
#   "module": "DataShed.storage.io",
#   "purpose": "Atomic write, JSONL and quarantine helpers for shed files.",
#   "sections": [
#     {"id": "atomic-write", "name": "atomic_write", "anchor": "function-atomic-write", "kind": "function"},
#     {"id": "atomic-write-bytes", "name": "atomic_write_bytes", "anchor": "function-atomic-write-bytes", "kind": "function"},
#     {"id": "fsync-directory", "name": "fsync_directory", "anchor": "function-fsync-directory", "kind": "function"},
#     {"id": "iter-jsonl", "name": "iter_jsonl", "anchor": "function-iter-jsonl", "kind": "function"},
#     {"id": "jsonl-save", "name": "jsonl_save", "anchor": "function-jsonl-save", "kind": "function"},
#     {"id": "quarantine-artifact", "name": "quarantine_artifact", "anchor": "function-quarantine-artifact", "kind": "function"},
#     {"id": "sha256-file", "name": "sha256_file", "anchor": "function-sha256-file", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Atomic file primitives shared by the ledger, content store and archiver.

**Atomicity guarantee:** every writer in this module writes to a temporary file
in the destination directory, fsyncs it, renames it over the destination with
:func:`os.replace` and fsyncs the directory. Readers therefore observe either
the previous file or the complete new one, never a partial write. Temporary
files are removed on any failure.
"""

from __future__ import annotations

import contextlib
import hashlib
import logging
import os
import uuid
from pathlib import Path
from typing import Iterable, Iterator, Mapping, TextIO

import jsonlines

__all__ = [
    "atomic_write",
    "atomic_write_bytes",
    "fsync_directory",
    "iter_jsonl",
    "jsonl_save",
    "quarantine_artifact",
    "sha256_file",
]

logger = logging.getLogger(__name__)

_READ_SIZE = 65536


def fsync_directory(path: Path) -> None:
    """Flush directory metadata so a completed rename survives a crash."""

    if os.name != "posix":
        return
    fd = os.open(str(path), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def _tmp_sibling(path: Path) -> Path:
    return path.with_name(f".{path.name}.tmp.{uuid.uuid4().hex}")


@contextlib.contextmanager
def atomic_write(path: Path, *, newline: str | None = None) -> Iterator[TextIO]:
    """Write text to a temporary file and atomically replace ``path``."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = _tmp_sibling(path)
    try:
        with tmp.open("w", encoding="utf-8", newline=newline) as handle:
            yield handle
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp, path)
        fsync_directory(path.parent)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def atomic_write_bytes(path: Path, chunks: Iterable[bytes]) -> int:
    """Write ``chunks`` to ``path`` atomically and return the byte count."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = _tmp_sibling(path)
    written = 0
    try:
        with tmp.open("wb") as handle:
            for chunk in chunks:
                if chunk:
                    handle.write(chunk)
                    written += len(chunk)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp, path)
        fsync_directory(path.parent)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    return written


def iter_jsonl(path: Path) -> Iterator[dict]:
    """Stream JSON objects from ``path``; a missing file yields nothing."""

    if not path.exists():
        return
    with jsonlines.open(path, mode="r") as reader:
        for obj in reader.iter(type=dict, skip_empty=True):
            yield obj


def jsonl_save(path: Path, rows: Iterable[Mapping]) -> int:
    """Atomically replace ``path`` with ``rows`` serialised as JSON lines."""

    count = 0
    with atomic_write(path) as handle:
        writer = jsonlines.Writer(handle, sort_keys=True, compact=True)
        for row in rows:
            writer.write(dict(row))
            count += 1
        writer.close()
    return count


def sha256_file(path: Path) -> str:
    """Compute the SHA-256 of ``path`` by streaming it in 64 KiB chunks."""

    hasher = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(_READ_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def quarantine_artifact(path: Path, reason: str) -> Path:
    """Move ``path`` to a ``.quarantine`` sibling for operator review."""

    original = Path(path)
    candidate = original.parent / f"{original.name}.quarantine"
    counter = 1
    while candidate.exists():
        candidate = original.parent / f"{original.name}.quarantine{counter}"
        counter += 1

    original.rename(candidate)
    logger.warning(
        "Quarantined artifact",
        extra={
            "extra_fields": {
                "path": str(original),
                "quarantine_path": str(candidate),
                "reason": reason,
            }
        },
    )
    return candidate
