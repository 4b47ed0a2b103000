# === NAVMAP v1 ===
# {
#   "module": "DataShed.storage.content_store",
#   "purpose": "Idempotent content-addressed file tree owning document bytes.",
#   "sections": [
#     {"id": "putresult", "name": "PutResult", "anchor": "class-putresult", "kind": "class"},
#     {"id": "contentstore", "name": "ContentStore", "anchor": "class-contentstore", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Content-addressed document store.

The store exclusively owns document bytes. Every file is written under the
path derived from its content id (see :mod:`DataShed.storage.fs_layout`) using
the temp-file + fsync + rename discipline from :mod:`DataShed.storage.io`.

Writes are idempotent: when the target already exists it holds the same bytes
by construction, so the write is skipped. Concurrent writers of the same id may
race on the final rename; each produces identical bytes, so any winner is
correct.

Bytes written ahead of their ledger commit are *staged* (:meth:`ContentStore.stage`)
until the writer calls :meth:`ContentStore.release`. Cleanup skips staged ids.
"""

from __future__ import annotations

import logging
import os
import threading
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet, Iterable, Iterator, List, Optional

from DataShed.addressing import StreamingContentHasher
from DataShed.errors import DocumentNotFound, StoreIOError
from DataShed.storage.fs_layout import cas_path, id_from_path, iter_store_files
from DataShed.storage.io import atomic_write_bytes

__all__ = ["PutResult", "ContentStore"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PutResult:
    """Outcome of :meth:`ContentStore.put`."""

    doc_id: str
    path: Path
    written: bool
    bytes: int


class ContentStore:
    """Sharded file tree addressed by content id."""

    def __init__(self, root_dir: str | Path) -> None:
        self.root_dir = Path(root_dir)
        self._staged: Counter = Counter()
        self._staged_lock = threading.Lock()

    def path_for(self, doc_id: str) -> Path:
        """Return the path at which ``doc_id`` is (or would be) stored."""

        return cas_path(self.root_dir, doc_id)

    def exists(self, doc_id: str) -> bool:
        return self.path_for(doc_id).is_file()

    def put(self, doc_id: str, data: bytes) -> PutResult:
        """Store ``data`` under ``doc_id`` unless it is already present.

        Raises:
            StoreIOError: If the file cannot be written.
        """

        path = self.path_for(doc_id)
        if path.is_file():
            logger.debug(f"Store hit, skipping write: {doc_id}")
            return PutResult(doc_id=doc_id, path=path, written=False, bytes=len(data))
        try:
            size = atomic_write_bytes(path, [data])
        except OSError as e:
            raise StoreIOError(f"Failed to store {doc_id}: {e}", ids=[doc_id]) from e
        logger.debug(f"Stored {doc_id} ({size} bytes)")
        return PutResult(doc_id=doc_id, path=path, written=True, bytes=size)

    def stage(self, doc_id: str, data: bytes) -> PutResult:
        """:meth:`put` ``data`` and mark ``doc_id`` as awaiting its ledger commit."""

        with self._staged_lock:
            self._staged[doc_id] += 1
        try:
            return self.put(doc_id, data)
        except BaseException:
            self.release([doc_id])
            raise

    def release(self, ids: Iterable[str]) -> None:
        """Drop one staging mark per id."""

        with self._staged_lock:
            for doc_id in ids:
                if self._staged[doc_id] <= 1:
                    self._staged.pop(doc_id, None)
                else:
                    self._staged[doc_id] -= 1

    def staged(self) -> FrozenSet[str]:
        with self._staged_lock:
            return frozenset(self._staged)

    def get(self, doc_id: str) -> bytes:
        """Return the stored bytes of ``doc_id``.

        Raises:
            DocumentNotFound: If nothing is stored under ``doc_id``.
            StoreIOError: If the file exists but cannot be read.
        """

        path = self.path_for(doc_id)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise DocumentNotFound(doc_id) from e
        except OSError as e:
            raise StoreIOError(f"Failed to read {doc_id}: {e}", ids=[doc_id]) from e

    def iter_chunks(self, doc_id: str, chunk_size: int = 65536) -> Iterator[bytes]:
        """Stream the stored bytes of ``doc_id``."""

        path = self.path_for(doc_id)
        try:
            with path.open("rb") as handle:
                for chunk in iter(lambda: handle.read(chunk_size), b""):
                    yield chunk
        except FileNotFoundError as e:
            raise DocumentNotFound(doc_id) from e

    def digest(self, doc_id: str) -> str:
        """Recompute the SHA-256 of the stored file."""

        hasher = StreamingContentHasher()
        for chunk in self.iter_chunks(doc_id):
            hasher.update(chunk)
        return hasher.hexdigest()

    def size(self, doc_id: str) -> Optional[int]:
        """Return the stored size in bytes or ``None`` if missing."""

        try:
            return self.path_for(doc_id).stat().st_size
        except FileNotFoundError:
            return None

    def iter_ids(self) -> Iterator[str]:
        """Yield the id of every well-formed file in the store (sorted)."""

        for path in iter_store_files(self.root_dir):
            doc_id = id_from_path(path)
            if doc_id is not None:
                yield doc_id

    def remove(self, doc_id: str) -> bool:
        """Delete the stored file of ``doc_id``; return ``True`` if it existed."""

        path = self.path_for(doc_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StoreIOError(f"Failed to remove {doc_id}: {e}", ids=[doc_id]) from e
        for parent in (path.parent, path.parent.parent):
            try:
                parent.rmdir()
            except OSError:
                break
        return True

    def stray_files(self) -> List[Path]:
        """Return files under the store root that do not follow the layout."""

        if not self.root_dir.is_dir():
            return []
        strays = []
        for dirpath, _dirnames, filenames in os.walk(self.root_dir):
            for name in filenames:
                path = Path(dirpath) / name
                if id_from_path(path) is None:
                    strays.append(path)
        return sorted(strays)
