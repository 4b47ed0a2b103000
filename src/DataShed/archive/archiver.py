# === NAVMAP v1 ===
# {
#   "module": "DataShed.archive.archiver",
#   "purpose": "Seal ready documents into verified, reproducible bundles and commit them to the ledger.",
#   "sections": [
#     {"id": "selector", "name": "Selector", "anchor": "class-selector", "kind": "class"},
#     {"id": "builtbundle", "name": "BuiltBundle", "anchor": "class-builtbundle", "kind": "class"},
#     {"id": "archiver", "name": "Archiver", "anchor": "class-archiver", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Archiver.

``seal(selector)`` runs these steps while holding the archive lock (a thread
lock plus ``locks/archive.lock``):

1. snapshot the matching ids in sorted order, lock them in the ledger and
   drop any that stopped matching before the lock was taken;
2. stream their bytes into ``tmp/<token>.tar.gz.part`` and fsync it;
3. re-open the archive and verify every member and the manifest digest;
   a mismatch quarantines the file and raises
   :class:`~DataShed.errors.ArchiveIntegrityError`;
4. rename the archive into ``bundles/`` and write the manifest sidecar;
5. in one ledger unit of work, move every member ``ready -> archived`` and
   record the bundle. The ledger flush is the commit point.

Until step 5 commits, the ledger is untouched; any failure removes the archive
files and releases the member locks, so no committed bundle ever references a
partial archive.
"""

from __future__ import annotations

import contextlib
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import FrozenSet, Iterable, Iterator, List, Mapping, Optional

from filelock import FileLock, Timeout

from DataShed.archive.format import Manifest, verify_archive, write_archive
from DataShed.config.models import ArchiveConfig
from DataShed.errors import ArchiveBusy, ArchiveIntegrityError, NothingToArchive
from DataShed.ledger.bundles import BundleRegistry
from DataShed.ledger.ledger import Ledger
from DataShed.logging import get_logger
from DataShed.models import BundleRecord, DocumentRecord, Status, utcnow
from DataShed.storage.content_store import ContentStore
from DataShed.storage.io import atomic_write_bytes, fsync_directory, quarantine_artifact, sha256_file

__all__ = ["Selector", "BuiltBundle", "Archiver"]

logger = logging.getLogger(__name__)

BUNDLES_DIR = "bundles"
TMP_DIR = "tmp"
LOCKS_DIR = "locks"
ARCHIVE_SUFFIX = ".tar.gz"
SIDECAR_SUFFIX = ".manifest.json"


@dataclass(frozen=True)
class Selector:
    """Which documents to seal.

    All given predicates must hold. ``limit`` is applied after sorting by id.
    """

    status: Status = Status.READY
    imported_after: Optional[datetime] = None
    imported_before: Optional[datetime] = None
    source_prefix: Optional[str] = None
    language: Optional[str] = None
    ids: Optional[FrozenSet[str]] = None
    limit: Optional[int] = None

    def matches(self, record: DocumentRecord) -> bool:
        if record.status is not self.status:
            return False
        if self.ids is not None and record.id not in self.ids:
            return False
        if self.imported_after is not None and record.imported_at < self.imported_after:
            return False
        if self.imported_before is not None and record.imported_at >= self.imported_before:
            return False
        if self.source_prefix is not None and not record.source_ref.startswith(self.source_prefix):
            return False
        if self.language is not None and record.detected_language != self.language:
            return False
        return True

    def select(self, records: Mapping[str, DocumentRecord]) -> List[str]:
        """Return the sorted ids of matching ``records``."""

        ids = sorted(doc_id for doc_id, record in records.items() if self.matches(record))
        if self.limit is not None:
            ids = ids[: self.limit]
        return ids


@dataclass(frozen=True)
class BuiltBundle:
    """An archive written and verified but not (yet) committed."""

    manifest: Manifest
    path: Path
    archive_sha256: str
    size_bytes: int

    @property
    def bundle_id(self) -> str:
        return self.manifest.bundle_id


class Archiver:
    """Seal documents into bundles under ``<root>/bundles``."""

    def __init__(
        self,
        ledger: Ledger,
        store: ContentStore,
        registry: BundleRegistry,
        root: str | Path,
        config: Optional[ArchiveConfig] = None,
    ) -> None:
        self.ledger = ledger
        self.store = store
        self.registry = registry
        self.root = Path(root)
        self.config = config or ArchiveConfig()
        self.bundles_dir = self.root / BUNDLES_DIR
        self.tmp_dir = self.root / TMP_DIR
        self._thread_lock = threading.Lock()
        lock_path = self.root / LOCKS_DIR / "archive.lock"
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        self._file_lock = FileLock(str(lock_path), timeout=self.config.lock_timeout_s)

    @contextlib.contextmanager
    def exclusive(self) -> Iterator[None]:
        """Hold the archive lock (thread lock, then ``locks/archive.lock``).

        Raises:
            ArchiveBusy: The lock is not free within ``lock_timeout_s``.
        """

        timeout = self.config.lock_timeout_s
        acquired = (
            self._thread_lock.acquire(blocking=False)
            if timeout == 0
            else self._thread_lock.acquire(timeout=timeout)
        )
        if not acquired:
            raise ArchiveBusy("Another seal is in progress in this process")
        try:
            try:
                self._file_lock.acquire()
            except Timeout as e:
                raise ArchiveBusy(f"Archive lock {self._file_lock.lock_file} is held") from e
            try:
                yield
            finally:
                self._file_lock.release()
        finally:
            self._thread_lock.release()

    def archive_path(self, bundle_id: str) -> Path:
        return self.bundles_dir / f"{bundle_id}{ARCHIVE_SUFFIX}"

    def sidecar_path(self, bundle_id: str) -> Path:
        return self.bundles_dir / f"{bundle_id}{SIDECAR_SUFFIX}"

    def select(self, selector: Selector) -> List[str]:
        return selector.select(self.ledger.snapshot())

    # ------------------------------------------------------------------
    # Build (no ledger changes)
    # ------------------------------------------------------------------

    def build_bundle(self, ids: Iterable[str], path: Optional[Path] = None) -> BuiltBundle:
        """Write and verify the bundle of ``ids`` without committing anything.

        The archive goes to ``path`` or to a fresh ``tmp/*.tar.gz.part`` file.
        Building the same ids twice yields identical bytes and digests.

        Raises:
            NothingToArchive: ``ids`` is empty.
            ArchiveIntegrityError: Stored bytes or the written archive are
                inconsistent; the file is quarantined.
        """

        members = sorted(set(ids))
        if not members:
            raise NothingToArchive("No documents to bundle")
        target = path or self.tmp_dir / f"{uuid.uuid4().hex}{ARCHIVE_SUFFIX}.part"
        try:
            manifest = write_archive(
                target, members, self.store.get, compression_level=self.config.compression_level
            )
            if self.config.verify_after_write:
                verify_archive(
                    target,
                    bundle_id=manifest.bundle_id,
                    expected_digest=manifest.manifest_digest,
                    expected_members=members,
                )
        except ArchiveIntegrityError as e:
            if target.exists():
                e.quarantine_path = str(quarantine_artifact(target, reason=str(e)))
            raise
        except BaseException:
            target.unlink(missing_ok=True)
            raise
        return BuiltBundle(
            manifest=manifest,
            path=target,
            archive_sha256=sha256_file(target),
            size_bytes=target.stat().st_size,
        )

    # ------------------------------------------------------------------
    # Seal
    # ------------------------------------------------------------------

    def seal(self, selector: Optional[Selector] = None) -> BundleRecord:
        """Seal the documents matched by ``selector`` (default: all ready ones).

        Raises:
            ArchiveBusy: Another seal holds the archive lock.
            NothingToArchive: The selector matched nothing.
            ArchiveIntegrityError: Verification failed; members stay ``ready``.
            LedgerIOError: The commit failed; nothing was archived.
        """

        selector = selector or Selector()
        if selector.status is not Status.READY:
            raise ValueError("Only ready documents can be sealed")

        with self.exclusive():
            self.ledger.refresh()
            self.registry.reload(referenced=self.ledger.archived_bundle_ids())
            ids = self.select(selector)
            if not ids:
                raise NothingToArchive("No documents match the selector")

            owner = uuid.uuid4().hex
            self.ledger.lock_ids(ids, owner)
            # A review may have moved an id between the snapshot and the lock.
            current = [doc_id for doc_id in ids if selector.matches(self.ledger.get(doc_id))]
            if len(current) < len(ids):
                dropped = sorted(set(ids) - set(current))
                self.ledger.unlock_ids(dropped, owner)
                logger.info(f"Dropped {len(dropped)} document(s) changed before the seal lock")
                ids = current
            if not ids:
                raise NothingToArchive("No documents match the selector")
            log = get_logger(__name__, context={"seal": owner})
            log.info(f"Sealing {len(ids)} documents")
            built: Optional[BuiltBundle] = None
            placed: List[Path] = []
            committed = False
            try:
                built = self.build_bundle(ids)
                bundle_id = built.bundle_id
                final = self.archive_path(bundle_id)
                final.parent.mkdir(parents=True, exist_ok=True)
                built.path.replace(final)
                placed.append(final)
                fsync_directory(final.parent)
                sidecar = self.sidecar_path(bundle_id)
                atomic_write_bytes(sidecar, [built.manifest.to_bytes()])
                placed.append(sidecar)

                record = BundleRecord(
                    bundle_id=bundle_id,
                    created_at=utcnow(),
                    members=tuple(ids),
                    manifest_digest=built.manifest.manifest_digest,
                    archive_path=final.relative_to(self.root).as_posix(),
                    archive_sha256=built.archive_sha256,
                    size_bytes=built.size_bytes,
                )
                with self.ledger.transaction():
                    for doc_id in ids:
                        self.ledger.transition(
                            doc_id, Status.ARCHIVED, archived_in=bundle_id, owner=owner
                        )
                    self.registry.add(record)
                committed = True
            finally:
                self.ledger.unlock_ids(ids, owner)
                if not committed:
                    self._abort(built, placed)

        log.bind(bundle_id=record.bundle_id).info(
            f"Sealed bundle {record.bundle_id}: {len(ids)} documents, {record.size_bytes} bytes"
        )
        return record

    def _abort(self, built: Optional[BuiltBundle], placed: List[Path]) -> None:
        if built is not None:
            self.registry.discard(built.bundle_id)
            if built.path.exists():
                built.path.unlink()
        for path in placed:
            path.unlink(missing_ok=True)
        logger.warning("Seal aborted, ledger left unchanged")

    # ------------------------------------------------------------------
    # Verification of committed bundles
    # ------------------------------------------------------------------

    def verify_bundle(self, bundle_id: str, *, quarantine: bool = False) -> Manifest:
        """Re-check a committed bundle against its record.

        Raises:
            BundleNotFound: Unknown bundle id.
            ArchiveIntegrityError: The archive is missing or does not match.
        """

        record = self.registry.get(bundle_id)
        path = self.root / record.archive_path
        try:
            if not path.is_file():
                raise ArchiveIntegrityError(f"Archive {path} is missing", bundle_id=bundle_id)
            actual = sha256_file(path)
            if actual != record.archive_sha256:
                raise ArchiveIntegrityError(
                    f"Archive checksum {actual} != recorded {record.archive_sha256}",
                    bundle_id=bundle_id,
                )
            return verify_archive(
                path,
                bundle_id=bundle_id,
                expected_digest=record.manifest_digest,
                expected_members=record.members,
            )
        except ArchiveIntegrityError as e:
            if quarantine and path.is_file():
                e.quarantine_path = str(quarantine_artifact(path, reason=str(e)))
            raise
