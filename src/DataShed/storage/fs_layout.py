"""Filesystem layout of the content-addressed document store.

Documents live under ``<root>/<id[0:2]>/<id[2:4]>/<id>.txt``. The two-level
fan-out keeps every directory below 256 entries per level, so even millions of
documents never produce hot directories.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

from DataShed.addressing import is_content_id

logger = logging.getLogger(__name__)

DOCUMENT_SUFFIX = ".txt"


def cas_path(root_dir: str | Path, doc_id: str) -> Path:
    """Generate the store path for ``doc_id``.

    Example:
        cas_path("/shed/data", "e3b0c44298fc1c14...")
        -> "/shed/data/e3/b0/e3b0c44298fc1c14....txt"

    Raises:
        ValueError: If ``doc_id`` is not a 64-char lowercase hex digest
    """
    if not is_content_id(doc_id):
        raise ValueError(f"Invalid content id: {doc_id!r}")

    return Path(root_dir) / doc_id[:2] / doc_id[2:4] / f"{doc_id}{DOCUMENT_SUFFIX}"


def id_from_path(path: str | Path) -> str | None:
    """Return the content id encoded in a store path, or ``None`` for foreign files."""

    p = Path(path)
    if p.suffix != DOCUMENT_SUFFIX:
        return None
    stem = p.stem
    if not is_content_id(stem):
        return None
    if p.parent.name != stem[2:4] or p.parent.parent.name != stem[:2]:
        return None
    return stem


def iter_store_files(root_dir: str | Path) -> Iterator[Path]:
    """Yield every regular ``*.txt`` file below ``root_dir`` in sorted order."""

    root = Path(root_dir)
    if not root.is_dir():
        return
    for path in sorted(root.glob(f"*/*/*{DOCUMENT_SUFFIX}")):
        if path.is_file():
            yield path
