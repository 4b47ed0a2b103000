# === NAVMAP v1 ===
# {
#   "module": "DataShed.pipeline.importer",
#   "purpose": "Parallel candidate import with deduplication and serialized ledger commits.",
#   "sections": [
#     {"id": "importsummary", "name": "ImportSummary", "anchor": "class-importsummary", "kind": "class"},
#     {"id": "create-executor", "name": "create_executor", "anchor": "function-create-executor", "kind": "function"},
#     {"id": "importpipeline", "name": "ImportPipeline", "anchor": "class-importpipeline", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Import pipeline.

Worker threads handle each candidate independently:

1. address the raw bytes (:class:`~DataShed.addressing.ContentAddresser`);
   a committed id is a duplicate and stops here;
2. validate the canonical text and build the ledger record;
3. write the canonical bytes to the content store (idempotent) and keep them
   staged until their batch is committed.

The calling thread is the only ledger writer. It consumes results in
submission order and commits them in units of ``batch_size`` through
:meth:`Ledger.insert`, which is insert-if-absent: a candidate that lost a race
against an identical one committed earlier is counted as a duplicate.

At most ``workers * 2`` candidates are in flight, so arbitrarily large
candidate streams are consumed lazily. A run holds ``locks/import.lock`` so
that cleanup never races an import in another process.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from collections import Counter, deque
from concurrent import futures
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from filelock import FileLock, Timeout

from DataShed.addressing import ContentAddresser
from DataShed.config.models import ImportConfig
from DataShed.errors import EncodingError, LedgerIOError, ShedBusy, StoreIOError
from DataShed.ledger.ledger import Ledger
from DataShed.logging import log_event
from DataShed.models import Candidate, DocumentRecord, Status, utcnow
from DataShed.storage.content_store import ContentStore
from DataShed.validation.validator import Reject, Validator

__all__ = ["IMPORT_LOCK", "ImportSummary", "ImportPipeline", "create_executor"]

logger = logging.getLogger(__name__)

IMPORT_LOCK = "import.lock"

CandidateLike = Union[Candidate, Tuple[bytes, str], Tuple[bytes, str, Dict[str, Any]]]

# Outcome labels reported to progress callbacks.
OUTCOME_ACCEPTED = "accepted"
OUTCOME_REJECTED = "rejected"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_ENCODING_ERROR = "encoding_error"


@dataclass
class ImportSummary:
    """Counts per outcome of one :meth:`ImportPipeline.run`."""

    seen: int = 0
    imported: int = 0
    accepted: int = 0
    rejected: int = 0
    duplicates: int = 0
    encoding_errors: int = 0
    rejections: Counter = field(default_factory=Counter)
    failed_refs: List[str] = field(default_factory=list)
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seen": self.seen,
            "imported": self.imported,
            "accepted": self.accepted,
            "rejected": self.rejected,
            "duplicates": self.duplicates,
            "encoding_errors": self.encoding_errors,
            "rejections": dict(self.rejections),
            "cancelled": self.cancelled,
        }


@dataclass(frozen=True)
class _Prepared:
    """Result of the worker half of a candidate."""

    source_ref: str
    outcome: str
    record: Optional[DocumentRecord] = None
    reason: Optional[str] = None


def create_executor(workers: int) -> Optional[futures.Executor]:
    """Return a thread pool for ``workers`` or ``None`` to run inline."""

    if workers <= 1:
        return None
    return futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="datashed-import")


def _as_candidate(item: CandidateLike) -> Candidate:
    if isinstance(item, Candidate):
        return item
    content, source_ref, *rest = item
    return Candidate(content=content, source_ref=str(source_ref), hints=rest[0] if rest else {})


class ImportPipeline:
    """Populate the ledger and content store from candidate documents."""

    def __init__(
        self,
        ledger: Ledger,
        store: ContentStore,
        addresser: Optional[ContentAddresser] = None,
        validator: Optional[Validator] = None,
        config: Optional[ImportConfig] = None,
        lock_path: Optional[Path] = None,
    ) -> None:
        self.ledger = ledger
        self.store = store
        self.addresser = addresser or ContentAddresser()
        self.validator = validator or Validator()
        self.config = config or ImportConfig()
        self.lock_path = Path(lock_path) if lock_path is not None else None
        self._cancel = threading.Event()
        self._unreleased: Counter = Counter()
        self._unreleased_lock = threading.Lock()

    def cancel(self) -> None:
        """Stop feeding new candidates; in-flight ones are still committed."""

        self._cancel.set()

    @contextlib.contextmanager
    def _exclusive(self) -> Iterator[None]:
        if self.lock_path is None:
            yield
            return
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        lock = FileLock(str(self.lock_path), timeout=self.config.lock_timeout_s)
        try:
            lock.acquire()
        except Timeout as e:
            raise ShedBusy(f"Import lock {self.lock_path} is held") from e
        try:
            yield
        finally:
            lock.release()

    def _release(self, ids: Iterable[str]) -> None:
        ids = list(ids)
        with self._unreleased_lock:
            for doc_id in ids:
                self._unreleased[doc_id] -= 1
                if self._unreleased[doc_id] <= 0:
                    del self._unreleased[doc_id]
        self.store.release(ids)

    # ------------------------------------------------------------------
    # Worker half
    # ------------------------------------------------------------------

    def prepare(self, candidate: Candidate) -> _Prepared:
        """Address, validate and store one candidate (thread-safe)."""

        try:
            addressed = self.addresser.address(candidate.content, source_ref=candidate.source_ref)
        except EncodingError as e:
            logger.warning(f"Skipping {candidate.source_ref}: {e}")
            return _Prepared(candidate.source_ref, OUTCOME_ENCODING_ERROR)

        if self.ledger.contains(addressed.id):
            logger.debug(f"Duplicate {addressed.id} from {candidate.source_ref}")
            return _Prepared(candidate.source_ref, OUTCOME_DUPLICATE)

        verdict = self.validator.validate(addressed.text)
        record = DocumentRecord(
            id=addressed.id,
            status=Status.PENDING,
            source_ref=candidate.source_ref,
            length_bytes=addressed.length_bytes,
            imported_at=utcnow(),
        )
        if isinstance(verdict, Reject):
            record = record.with_status(Status.DISCARDED, reason=verdict.reason.value)
            outcome, reason = OUTCOME_REJECTED, verdict.reason.value
            logger.debug(f"Rejected {addressed.id} ({verdict.reason}): {verdict.detail}")
        else:
            record = replace(
                record,
                detected_language=verdict.language,
                lang_score=verdict.score,
                warnings=verdict.warnings,
            )
            if self.config.auto_promote:
                record = record.with_status(Status.READY)
            outcome, reason = OUTCOME_ACCEPTED, None

        self.store.stage(addressed.id, addressed.canonical)
        with self._unreleased_lock:
            self._unreleased[addressed.id] += 1
        return _Prepared(candidate.source_ref, outcome, record, reason)

    # ------------------------------------------------------------------
    # Writer half
    # ------------------------------------------------------------------

    def _commit(self, batch: List[_Prepared], summary: ImportSummary) -> None:
        if not batch:
            return
        pending = [p for p in batch if p.record is not None]
        try:
            with self.ledger.transaction():
                inserted = [p for p in pending if self.ledger.insert(p.record)]
        finally:
            self._release(p.record.id for p in pending)
        for prepared in batch:
            if prepared.outcome == OUTCOME_ENCODING_ERROR:
                summary.encoding_errors += 1
                summary.failed_refs.append(prepared.source_ref)
            elif prepared.outcome == OUTCOME_DUPLICATE:
                summary.duplicates += 1
        summary.duplicates += len(pending) - len(inserted)
        for prepared in inserted:
            summary.imported += 1
            if prepared.outcome == OUTCOME_ACCEPTED:
                summary.accepted += 1
            else:
                summary.rejected += 1
                summary.rejections[prepared.reason] += 1
        logger.debug(f"Committed import batch: {len(inserted)} new of {len(batch)}")

    def run(
        self,
        candidates: Iterable[CandidateLike],
        *,
        progress: Optional[Callable[[str], None]] = None,
    ) -> ImportSummary:
        """Import ``candidates`` and return the outcome counts.

        Args:
            candidates: Lazy sequence of candidates or ``(bytes, source_ref[, hints])`` tuples.
            progress: Called with the outcome label of every finished candidate.

        Raises:
            ShedBusy: Another import or a clean kept the import lock past the timeout.
            LedgerIOError: A batch could not be committed. Earlier batches stay committed.
            StoreIOError: A document could not be written; its batch is not committed.
        """

        with self._exclusive():
            try:
                return self._run(candidates, progress)
            finally:
                with self._unreleased_lock:
                    leftover = list(self._unreleased.elements())
                if leftover:
                    self._release(leftover)

    def _run(
        self,
        candidates: Iterable[CandidateLike],
        progress: Optional[Callable[[str], None]],
    ) -> ImportSummary:
        self._cancel.clear()
        summary = ImportSummary()
        workers = self.config.resolved_workers()
        window = max(1, workers * 2)
        batch_size = self.config.batch_size
        batch: List[_Prepared] = []
        in_flight: Deque[futures.Future] = deque()
        executor = create_executor(workers)
        iterator = iter(candidates)
        exhausted = False

        def collect(prepared: _Prepared) -> None:
            batch.append(prepared)
            if progress is not None:
                progress(prepared.outcome)
            if len(batch) >= batch_size:
                self._commit(batch, summary)
                batch.clear()

        logger.info(f"Starting import with {workers} worker(s), batch size {batch_size}")
        try:
            while True:
                while not exhausted and len(in_flight) < window and not self._cancel.is_set():
                    try:
                        candidate = _as_candidate(next(iterator))
                    except StopIteration:
                        exhausted = True
                        break
                    summary.seen += 1
                    if executor is None:
                        collect(self.prepare(candidate))
                    else:
                        in_flight.append(executor.submit(self.prepare, candidate))
                if not in_flight:
                    break
                collect(in_flight.popleft().result())
            if self._cancel.is_set() and not exhausted:
                summary.cancelled = True
            self._commit(batch, summary)
            batch.clear()
        except KeyboardInterrupt:
            logger.warning("Import interrupted, committing finished candidates")
            summary.cancelled = True
            for future in in_flight:
                future.cancel()
            for future in in_flight:
                if future.done() and not future.cancelled() and future.exception() is None:
                    batch.append(future.result())
            self._commit(batch, summary)
        except (LedgerIOError, StoreIOError) as e:
            logger.error(f"Import batch aborted, affected ids: {list(e.ids)}: {e}")
            for future in in_flight:
                future.cancel()
            raise
        finally:
            if executor is not None:
                executor.shutdown(wait=True, cancel_futures=True)

        log_event(
            logger,
            "info",
            f"Import finished: seen={summary.seen} imported={summary.imported} "
            f"accepted={summary.accepted} rejected={summary.rejected} "
            f"duplicates={summary.duplicates} encoding_errors={summary.encoding_errors}",
            **summary.to_dict(),
        )
        return summary
