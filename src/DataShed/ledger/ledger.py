# === NAVMAP v1 ===
# {
#   "module": "DataShed.ledger.ledger",
#   "purpose": "Authoritative id -> DocumentRecord map persisted as an auditable CSV file.",
#   "sections": [
#     {"id": "ledger", "name": "Ledger", "anchor": "class-ledger", "kind": "class"},
#     {"id": "read-ledger-file", "name": "read_ledger_file", "anchor": "function-read-ledger-file", "kind": "function"},
#     {"id": "write-ledger-file", "name": "write_ledger_file", "anchor": "function-write-ledger-file", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Document ledger.

Responsibilities
----------------
- Own the status of every document. Records are kept in insertion order;
  inserts append, status changes replace the record in place, nothing is
  deleted.
- Persist the full record set as ``ledger.csv`` (one header row, one row per
  document) through an atomic temp-file + rename, so the file on disk is always
  a complete snapshot.
- Serialize mutations. A :class:`threading.RLock` guards the working copy inside
  the process and a :class:`filelock.FileLock` on ``ledger.csv.lock`` guards the
  file across processes.

Design Notes
------------
- Every mutation happens inside a unit of work (:meth:`Ledger.transaction`).
  Leaving the outermost unit flushes the working copy; an exception rolls the
  working copy back to the last committed snapshot.
- Readers use :meth:`Ledger.snapshot`, which returns the committed mapping by
  reference. A snapshot is never mutated after publication, so readers never
  see a half-applied unit of work and never block writers.
- Documents selected into an in-flight bundle can be locked with
  :meth:`Ledger.lock_ids`; status changes on them raise
  :class:`~DataShed.errors.DocumentLocked` unless made by the lock owner.
"""

from __future__ import annotations

import contextlib
import csv
import logging
import os
import threading
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from filelock import FileLock, Timeout

from DataShed.errors import DocumentLocked, DocumentNotFound, LedgerIOError
from DataShed.models import LEDGER_FIELDS, DocumentRecord, Status, utcnow
from DataShed.storage.io import atomic_write

__all__ = ["Ledger", "read_ledger_file", "write_ledger_file"]

logger = logging.getLogger(__name__)

_Signature = Optional[Tuple[int, int, int]]


def read_ledger_file(path: Path) -> Dict[str, DocumentRecord]:
    """Load ``path`` into an ordered ``id -> record`` mapping.

    Raises:
        LedgerIOError: If the file cannot be read or is malformed.
    """

    records: Dict[str, DocumentRecord] = {}
    if not path.exists():
        return records
    try:
        with path.open("r", encoding="utf-8", newline="") as handle:
            reader = csv.DictReader(handle)
            missing = [name for name in LEDGER_FIELDS if name not in (reader.fieldnames or [])]
            if missing:
                raise LedgerIOError(f"Ledger {path} lacks columns: {', '.join(missing)}")
            for line_no, row in enumerate(reader, start=2):
                try:
                    record = DocumentRecord.from_row(row)
                except (KeyError, ValueError) as e:
                    raise LedgerIOError(
                        f"Malformed ledger row {line_no} in {path}: {e}",
                        ids=[row.get("id") or ""],
                    ) from e
                if record.id in records:
                    raise LedgerIOError(
                        f"Duplicate ledger id on row {line_no} in {path}", ids=[record.id]
                    )
                records[record.id] = record
    except OSError as e:
        raise LedgerIOError(f"Failed to read ledger {path}: {e}") from e
    return records


def write_ledger_file(path: Path, records: Iterable[DocumentRecord]) -> int:
    """Atomically replace ``path`` with ``records``; return the row count."""

    count = 0
    with atomic_write(path, newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=list(LEDGER_FIELDS), lineterminator="\n")
        writer.writeheader()
        for record in records:
            writer.writerow(record.to_row())
            count += 1
    return count


def _file_signature(path: Path) -> _Signature:
    try:
        st = path.stat()
    except FileNotFoundError:
        return None
    return (st.st_ino, st.st_size, st.st_mtime_ns)


class Ledger:
    """Authoritative mapping from content id to :class:`DocumentRecord`.

    Lifecycle: :meth:`open` -> operate -> :meth:`close` (or use it as a
    context manager).

    Example:
        >>> with Ledger.open(root / "ledger.csv") as ledger:  # doctest: +SKIP
        ...     with ledger.transaction():
        ...         ledger.insert(record)
    """

    def __init__(self, path: str | Path, *, lock_timeout_s: float = 30.0) -> None:
        self.path = Path(path)
        self.lock_timeout_s = lock_timeout_s
        self._lock = threading.RLock()
        self._file_lock = FileLock(str(self.path) + ".lock", timeout=lock_timeout_s)
        self._records: Dict[str, DocumentRecord] = {}
        self._committed: Mapping[str, DocumentRecord] = MappingProxyType({})
        self._dirty: Dict[str, None] = {}
        self._depth = 0
        self._signature: _Signature = None
        self._locked: Dict[str, str] = {}
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @classmethod
    def open(cls, path: str | Path, *, lock_timeout_s: float = 30.0) -> "Ledger":
        """Open (or create in memory) the ledger stored at ``path``."""

        ledger = cls(path, lock_timeout_s=lock_timeout_s)
        ledger._load()
        logger.debug(f"Opened ledger {ledger.path} with {len(ledger)} records")
        return ledger

    def _load(self) -> None:
        with self._lock:
            records = read_ledger_file(self.path)
            self._signature = _file_signature(self.path)
            self._records = records
            self._committed = MappingProxyType(dict(records))
            self._dirty.clear()

    def refresh(self) -> bool:
        """Reload from disk when another process committed; return ``True`` if reloaded."""

        with self._lock:
            if self._depth:
                return False
            if _file_signature(self.path) == self._signature:
                return False
            self._load()
            logger.info(f"Reloaded ledger {self.path} after external change")
            return True

    def flush(self) -> None:
        """Commit pending changes outside of a unit of work."""

        with self.transaction():
            pass

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            if self._dirty and not self._depth:
                self.flush()
            self._closed = True

    def __enter__(self) -> "Ledger":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Units of work
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def transaction(self) -> Iterator["Ledger"]:
        """Run a unit of work; nested units join the outermost one.

        Raises:
            LedgerIOError: If the file lock cannot be acquired or the flush fails.
        """

        with self._lock:
            if self._depth == 0:
                self._begin()
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if self._depth == 0:
                    self._rollback()
                    self._file_lock.release()
                raise
            self._depth -= 1
            if self._depth == 0:
                try:
                    self._commit()
                except BaseException:
                    self._rollback()
                    raise
                finally:
                    self._file_lock.release()

    def _begin(self) -> None:
        try:
            self._file_lock.acquire()
        except Timeout as e:
            raise LedgerIOError(
                f"Timed out after {self.lock_timeout_s}s waiting for ledger lock {self._file_lock.lock_file}"
            ) from e
        try:
            if _file_signature(self.path) != self._signature:
                self._load()
                logger.info(f"Reloaded ledger {self.path} after external change")
        except BaseException:
            self._file_lock.release()
            raise

    def _commit(self) -> None:
        if not self._dirty:
            return
        ids = list(self._dirty)
        try:
            count = write_ledger_file(self.path, self._records.values())
        except OSError as e:
            raise LedgerIOError(f"Failed to write ledger {self.path}: {e}", ids=ids) from e
        self._signature = _file_signature(self.path)
        self._committed = MappingProxyType(dict(self._records))
        self._dirty.clear()
        logger.debug(f"Committed {len(ids)} ledger changes ({count} records)")

    def _rollback(self) -> None:
        if self._dirty:
            logger.warning(f"Rolling back {len(self._dirty)} uncommitted ledger changes")
        self._records = dict(self._committed)
        self._dirty.clear()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def insert(self, record: DocumentRecord) -> bool:
        """Insert ``record`` unless its id exists; return ``True`` when inserted."""

        with self.transaction():
            if record.id in self._records:
                return False
            self._records[record.id] = record
            self._dirty[record.id] = None
            return True

    def transition(
        self,
        doc_id: str,
        target: Status,
        *,
        reason: Optional[str] = None,
        archived_in: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> DocumentRecord:
        """Move ``doc_id`` to ``target`` and return the updated record.

        Raises:
            DocumentNotFound: If ``doc_id`` is unknown.
            DocumentLocked: If ``doc_id`` is locked by another owner.
            InvalidTransition: If the state machine forbids the change.
        """

        with self.transaction():
            current = self._records.get(doc_id)
            if current is None:
                raise DocumentNotFound(doc_id)
            holder = self._locked.get(doc_id)
            if holder is not None and holder != owner:
                raise DocumentLocked(doc_id, current.status, target)
            reviewed_at = None if target is Status.ARCHIVED else utcnow()
            updated = current.with_status(
                target, reviewed_at=reviewed_at, archived_in=archived_in, reason=reason
            )
            self._records[doc_id] = updated
            self._dirty[doc_id] = None
            return updated

    # ------------------------------------------------------------------
    # Provisional locks
    # ------------------------------------------------------------------

    def lock_ids(self, ids: Iterable[str], owner: str) -> List[str]:
        """Lock ``ids`` for ``owner``; all-or-nothing.

        Raises:
            DocumentLocked: If any id is already held by another owner.
        """

        with self._lock:
            wanted = list(ids)
            for doc_id in wanted:
                holder = self._locked.get(doc_id)
                if holder is not None and holder != owner:
                    record = self._records.get(doc_id)
                    status = record.status if record else None
                    raise DocumentLocked(doc_id, status, Status.ARCHIVED)
            for doc_id in wanted:
                self._locked[doc_id] = owner
            return wanted

    def unlock_ids(self, ids: Iterable[str], owner: str) -> None:
        with self._lock:
            for doc_id in ids:
                if self._locked.get(doc_id) == owner:
                    del self._locked[doc_id]

    def is_locked(self, doc_id: str) -> bool:
        return doc_id in self._locked

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> Mapping[str, DocumentRecord]:
        """Return the last committed state (read-only, never mutated)."""

        return self._committed

    def get(self, doc_id: str) -> DocumentRecord:
        """Return the current record of ``doc_id`` (including uncommitted work).

        Raises:
            DocumentNotFound: If ``doc_id`` is unknown.
        """

        with self._lock:
            record = self._records.get(doc_id)
        if record is None:
            raise DocumentNotFound(doc_id)
        return record

    def contains(self, doc_id: str) -> bool:
        """Return ``True`` if ``doc_id`` is committed (lock-free dedup probe)."""

        return doc_id in self._committed

    def __contains__(self, doc_id: object) -> bool:
        return isinstance(doc_id, str) and self.contains(doc_id)

    def __len__(self) -> int:
        return len(self._committed)

    def __iter__(self) -> Iterator[DocumentRecord]:
        return iter(list(self._committed.values()))

    def counts(self) -> Dict[Status, int]:
        """Return committed record counts per status."""

        totals = {status: 0 for status in Status}
        for record in self._committed.values():
            totals[record.status] += 1
        return totals

    def archived_bundle_ids(self) -> set:
        """Return every bundle id referenced by a committed record."""

        return {r.archived_in for r in self._committed.values() if r.archived_in}

    def __repr__(self) -> str:
        return f"Ledger(path={os.fspath(self.path)!r}, records={len(self)})"
