"""Candidate sources.

Both readers are lazy and restartable: calling them again on the same input
yields the same candidates in the same order.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import jsonlines

from DataShed.models import Candidate

__all__ = ["iter_directory", "iter_jsonl"]

logger = logging.getLogger(__name__)


def iter_directory(path: str | Path, pattern: str = "**/*.txt") -> Iterator[Candidate]:
    """Yield one candidate per file matching ``pattern`` below ``path``.

    The file stem (typically the authority record number) becomes the
    ``source_ref``; the relative path is passed along as a hint.
    """

    root = Path(path)
    if not root.is_dir():
        raise NotADirectoryError(f"Not a directory: {root}")
    for file in sorted(root.glob(pattern)):
        if not file.is_file():
            continue
        yield Candidate(
            content=file.read_bytes(),
            source_ref=file.stem,
            hints={"path": file.relative_to(root).as_posix()},
        )


def iter_jsonl(
    path: str | Path,
    *,
    text_field: str = "text",
    ref_field: str = "source_ref",
    encoding: str = "utf-8",
) -> Iterator[Candidate]:
    """Yield candidates from a JSON-lines file.

    Each object must carry ``text_field`` (a string) and ``ref_field``; all
    remaining keys become hints. Lines lacking either field are skipped with a
    warning.
    """

    with jsonlines.open(Path(path), mode="r") as reader:
        for line_no, obj in enumerate(reader.iter(type=dict, skip_empty=True), start=1):
            text = obj.get(text_field)
            ref = obj.get(ref_field)
            if not isinstance(text, str) or ref is None:
                logger.warning(f"{path}:{line_no}: missing '{text_field}' or '{ref_field}', skipped")
                continue
            hints = {k: v for k, v in obj.items() if k not in (text_field, ref_field)}
            yield Candidate(content=text.encode(encoding), source_ref=str(ref), hints=hints)
