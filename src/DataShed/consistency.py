"""Consistency checks between the ledger, the content store and the bundles.

Provides:
  - Missing file detection (ledger rows without stored bytes)
  - Changed file detection (stored bytes no longer match the id)
  - Untracked file detection (stored files no ledger row references)
  - Orphaned bundle archives and leftover temporary files
  - ``clean`` to remove untracked files

``clean(dry_run=False)`` deletes only while it holds the archive lock, the
import lock and a ledger unit of work, and never touches ids the store still
holds as staged. A seal or import in flight makes it fail with
:class:`~DataShed.errors.ShedBusy` instead of deleting their files.

Check depth is chosen with :class:`Mode`:

- ``permissive``: existence only;
- ``strict``: plus the SHA-256 of every file equals its id;
- ``pedantic``: plus size matches ``length_bytes`` and bytes are canonical.
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional

from filelock import FileLock, Timeout

from DataShed.addressing import ContentAddresser
from DataShed.archive.archiver import ARCHIVE_SUFFIX, SIDECAR_SUFFIX, Archiver
from DataShed.errors import DocumentNotFound, ShedBusy
from DataShed.ledger.bundles import BundleRegistry
from DataShed.ledger.ledger import Ledger
from DataShed.storage.content_store import ContentStore

__all__ = ["Mode", "ConsistencyReport", "ConsistencyChecker"]

logger = logging.getLogger(__name__)


class Mode(str, Enum):
    PERMISSIVE = "permissive"
    STRICT = "strict"
    PEDANTIC = "pedantic"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class MissingFile:
    doc_id: str
    status: str
    reason: str = "File not found"


@dataclass(frozen=True)
class ChangedFile:
    doc_id: str
    check: str
    expected: str
    actual: str


@dataclass(frozen=True)
class UntrackedFile:
    path: str
    size_bytes: int
    reason: str = "Not referenced by the ledger"


@dataclass
class ConsistencyReport:
    """Result of :meth:`ConsistencyChecker.check`."""

    mode: Mode
    checked: int = 0
    missing: List[MissingFile] = field(default_factory=list)
    changed: List[ChangedFile] = field(default_factory=list)
    untracked: List[UntrackedFile] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not (self.missing or self.changed or self.untracked)

    def to_dict(self) -> Dict[str, object]:
        return {
            "mode": self.mode.value,
            "checked": self.checked,
            "missing": [m.doc_id for m in self.missing],
            "changed": [{"id": c.doc_id, "check": c.check} for c in self.changed],
            "untracked": [u.path for u in self.untracked],
            "ok": self.ok,
        }


class ConsistencyChecker:
    """Compare ledger, content store and bundle directory."""

    def __init__(
        self,
        ledger: Ledger,
        store: ContentStore,
        addresser: Optional[ContentAddresser] = None,
        registry: Optional[BundleRegistry] = None,
        root: Optional[Path] = None,
        archiver: Optional[Archiver] = None,
        import_lock: Optional[Path] = None,
    ) -> None:
        self.ledger = ledger
        self.store = store
        self.addresser = addresser or ContentAddresser()
        self.registry = registry
        self.root = Path(root) if root is not None else None
        self.archiver = archiver
        self.import_lock = Path(import_lock) if import_lock is not None else None

    def check(
        self,
        mode: Mode = Mode.STRICT,
        *,
        progress: Optional[Callable[[str], None]] = None,
    ) -> ConsistencyReport:
        """Run the checks of ``mode`` over every committed ledger row."""

        mode = Mode(mode)
        report = ConsistencyReport(mode=mode)
        snapshot = self.ledger.snapshot()
        logger.info(f"Checking {len(snapshot)} documents ({mode.value})")

        for doc_id, record in snapshot.items():
            report.checked += 1
            if progress is not None:
                progress(doc_id)
            size = self.store.size(doc_id)
            if size is None:
                report.missing.append(MissingFile(doc_id=doc_id, status=record.status.value))
                continue
            if mode is Mode.PERMISSIVE:
                continue
            try:
                digest = self.store.digest(doc_id)
            except DocumentNotFound:
                report.missing.append(MissingFile(doc_id=doc_id, status=record.status.value))
                continue
            if digest != doc_id:
                report.changed.append(ChangedFile(doc_id, "digest", doc_id, digest))
                continue
            if mode is Mode.PEDANTIC:
                if size != record.length_bytes:
                    report.changed.append(
                        ChangedFile(doc_id, "size", str(record.length_bytes), str(size))
                    )
                    continue
                data = self.store.get(doc_id)
                if not self._is_canonical(data):
                    report.changed.append(ChangedFile(doc_id, "canonical", "canonical", "not canonical"))

        report.untracked.extend(self._untracked(snapshot.keys()))
        logger.info(
            f"Consistency check: missing={len(report.missing)} changed={len(report.changed)} "
            f"untracked={len(report.untracked)}"
        )
        return report

    def _is_canonical(self, data: bytes) -> bool:
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            return False
        return self.addresser.canonicalize_text(text).encode("utf-8") == data

    def _untracked(self, known) -> List[UntrackedFile]:
        found: List[UntrackedFile] = []
        known = set(known) | self.store.staged()
        for doc_id in self.store.iter_ids():
            if doc_id not in known:
                path = self.store.path_for(doc_id)
                found.append(UntrackedFile(path=str(path), size_bytes=path.stat().st_size))
        for path in self.store.stray_files():
            found.append(UntrackedFile(str(path), path.stat().st_size, "Not a store file"))
        if self.registry is not None and self.root is not None:
            bundles_dir = self.root / "bundles"
            if bundles_dir.is_dir():
                for path in sorted(bundles_dir.iterdir()):
                    bundle_id = path.name.split(".", 1)[0]
                    is_bundle_file = path.name.endswith((ARCHIVE_SUFFIX, SIDECAR_SUFFIX))
                    if is_bundle_file and bundle_id not in self.registry:
                        found.append(
                            UntrackedFile(str(path), path.stat().st_size, "Bundle never committed")
                        )
            tmp_dir = self.root / "tmp"
            if tmp_dir.is_dir():
                for path in sorted(tmp_dir.glob("*.part")):
                    found.append(UntrackedFile(str(path), path.stat().st_size, "Leftover partial file"))
        return found

    @contextlib.contextmanager
    def _exclusive(self) -> Iterator[None]:
        with contextlib.ExitStack() as stack:
            if self.archiver is not None:
                stack.enter_context(self.archiver.exclusive())
            if self.import_lock is not None:
                lock = FileLock(str(self.import_lock), timeout=0)
                try:
                    lock.acquire()
                except Timeout as e:
                    raise ShedBusy(f"An import holds {self.import_lock}") from e
                stack.callback(lock.release)
            stack.enter_context(self.ledger.transaction())
            if self.registry is not None:
                self.registry.reload(referenced=self.ledger.archived_bundle_ids())
            yield

    def clean(self, *, dry_run: bool = True) -> List[UntrackedFile]:
        """Delete untracked files; with ``dry_run`` only report them.

        Raises:
            ShedBusy: A seal or an import is in progress (only when deleting).
            LedgerIOError: The ledger lock could not be taken.
        """

        if dry_run:
            untracked = self._untracked(self.ledger.snapshot().keys())
            for item in untracked:
                logger.info(f"Would remove {item.path} ({item.reason})")
            return untracked

        with self._exclusive():
            untracked = self._untracked(self.ledger.snapshot().keys())
            for item in untracked:
                Path(item.path).unlink(missing_ok=True)
                logger.info(f"Removed {item.path} ({item.reason})")
        return untracked
