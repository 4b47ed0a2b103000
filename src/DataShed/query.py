"""Read-only query surface for front ends (pager, HTTP browser, CLI listings).

Besides listings and reads, :meth:`LedgerQuery.grep` narrows the ledger to the
documents whose text matches a regular expression.

Every read goes through the ledger's committed snapshot, so callers never
observe a half-applied unit of work and never block writers. Nothing here
mutates state.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from DataShed.archive.format import MANIFEST_NAME, Manifest, read_archive
from DataShed.errors import ArchiveIntegrityError, DocumentNotFound
from DataShed.ledger.bundles import BundleRegistry
from DataShed.ledger.ledger import Ledger
from DataShed.models import BundleRecord, DocumentRecord, Status
from DataShed.storage.content_store import ContentStore

__all__ = ["LedgerQuery", "ShedSummary"]

logger = logging.getLogger(__name__)


@dataclass
class ShedSummary:
    documents: int = 0
    by_status: Dict[str, int] = field(default_factory=dict)
    bytes_total: int = 0
    languages: Dict[str, int] = field(default_factory=dict)
    warnings: Dict[str, int] = field(default_factory=dict)
    rejections: Dict[str, int] = field(default_factory=dict)
    bundles: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "documents": self.documents,
            "by_status": dict(self.by_status),
            "bytes_total": self.bytes_total,
            "languages": dict(self.languages),
            "warnings": dict(self.warnings),
            "rejections": dict(self.rejections),
            "bundles": self.bundles,
        }


class LedgerQuery:
    """Read-only views over the ledger, content store and bundle registry."""

    def __init__(self, ledger: Ledger, store: ContentStore, registry: BundleRegistry, root: str | Path) -> None:
        self._ledger = ledger
        self._store = store
        self._registry = registry
        self._root = Path(root)

    def list(
        self,
        *,
        status: Optional[Status] = None,
        source_prefix: Optional[str] = None,
        language: Optional[str] = None,
        imported_after: Optional[datetime] = None,
        imported_before: Optional[datetime] = None,
        bundle_id: Optional[str] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[DocumentRecord]:
        """Return committed records in ledger order that match every filter."""

        matches: List[DocumentRecord] = []
        for record in self._ledger.snapshot().values():
            if status is not None and record.status is not status:
                continue
            if source_prefix is not None and not record.source_ref.startswith(source_prefix):
                continue
            if language is not None and record.detected_language != language:
                continue
            if imported_after is not None and record.imported_at < imported_after:
                continue
            if imported_before is not None and record.imported_at >= imported_before:
                continue
            if bundle_id is not None and record.archived_in != bundle_id:
                continue
            matches.append(record)
        end = None if limit is None else offset + limit
        return matches[offset:end]

    def grep(
        self,
        pattern: str,
        *,
        ignore_case: bool = False,
        invert: bool = False,
        max_bytes: Optional[int] = None,
        status: Optional[Status] = None,
        source_prefix: Optional[str] = None,
        language: Optional[str] = None,
        bundle_id: Optional[str] = None,
        progress: Optional[Callable[[str], None]] = None,
    ) -> List[DocumentRecord]:
        """Return the records whose stored text matches ``pattern``.

        The result is a sub-index: committed records in ledger order, narrowed
        first by the same filters as :meth:`list`.

        Args:
            pattern: Regular expression searched anywhere in the text.
            ignore_case: Match case-insensitively (Unicode aware).
            invert: Keep the documents that do *not* match.
            max_bytes: Search only the first ``max_bytes`` bytes; ``None`` or
                ``0`` searches the whole document.
            progress: Called with every searched id.

        Raises:
            ValueError: ``pattern`` is not a valid regular expression.
        """

        try:
            regex = re.compile(pattern, re.IGNORECASE if ignore_case else 0)
        except re.error as e:
            raise ValueError(f"Invalid pattern {pattern!r}: {e}") from e

        candidates = self.list(
            status=status, source_prefix=source_prefix, language=language, bundle_id=bundle_id
        )
        hits: List[DocumentRecord] = []
        for record in candidates:
            if progress is not None:
                progress(record.id)
            try:
                data = self._store.get(record.id)
            except DocumentNotFound:
                logger.warning(f"Skipping {record.id}: no stored content")
                continue
            if max_bytes:
                data = data[:max_bytes]
            text = data.decode("utf-8", errors="ignore")
            if (regex.search(text) is not None) != invert:
                hits.append(record)
        logger.debug(f"grep {pattern!r}: {len(hits)} of {len(candidates)} documents")
        return hits

    def get(self, doc_id: str) -> DocumentRecord:
        record = self._ledger.snapshot().get(doc_id)
        if record is None:
            raise DocumentNotFound(doc_id)
        return record

    def resolve(self, prefix: str) -> str:
        """Expand a unique id prefix (at least 4 characters) to the full id.

        Raises:
            DocumentNotFound: No id starts with ``prefix``.
            ValueError: ``prefix`` is too short or ambiguous.
        """

        prefix = prefix.strip().lower()
        snapshot = self._ledger.snapshot()
        if prefix in snapshot:
            return prefix
        if len(prefix) < 4:
            raise ValueError(f"Id prefix too short: {prefix!r}")
        matches = [doc_id for doc_id in snapshot if doc_id.startswith(prefix)]
        if not matches:
            raise DocumentNotFound(prefix)
        if len(matches) > 1:
            raise ValueError(f"Ambiguous id prefix {prefix!r} ({len(matches)} matches)")
        return matches[0]

    def read_bytes(self, doc_id: str) -> bytes:
        """Return the stored bytes of a document known to the ledger."""

        self.get(doc_id)
        return self._store.get(doc_id)

    def read_text(self, doc_id: str) -> str:
        return self.read_bytes(doc_id).decode("utf-8")

    def bundles(self) -> List[BundleRecord]:
        return self._registry.all()

    def bundle(self, bundle_id: str) -> BundleRecord:
        return self._registry.get(bundle_id)

    def bundle_manifest(self, bundle_id: str) -> Manifest:
        """Return a bundle's manifest, from the sidecar or else from the archive."""

        record = self._registry.get(bundle_id)
        archive = self._root / record.archive_path
        sidecar = archive.with_name(f"{bundle_id}.manifest.json")
        if sidecar.is_file():
            return Manifest.from_bytes(sidecar.read_bytes())
        logger.debug(f"No manifest sidecar for {bundle_id}, reading archive")
        for name, data in read_archive(archive):
            if name == MANIFEST_NAME:
                return Manifest.from_bytes(data)
        raise ArchiveIntegrityError(f"Archive {archive} has no manifest", bundle_id=bundle_id)

    def summary(self) -> ShedSummary:
        snapshot = self._ledger.snapshot()
        by_status: Counter = Counter({s.value: 0 for s in Status})
        languages: Counter = Counter()
        warnings: Counter = Counter()
        rejections: Counter = Counter()
        total = 0
        for record in snapshot.values():
            by_status[record.status.value] += 1
            total += record.length_bytes
            languages[record.detected_language or "unknown"] += 1
            warnings.update(record.warnings)
            if record.status is Status.DISCARDED and record.reason:
                rejections[record.reason] += 1
        return ShedSummary(
            documents=len(snapshot),
            by_status=dict(by_status),
            bytes_total=total,
            languages=dict(languages),
            warnings=dict(warnings),
            rejections=dict(rejections),
            bundles=len(self._registry),
        )
