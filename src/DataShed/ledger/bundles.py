"""Registry of committed bundles persisted as ``bundles.jsonl``.

The ledger file is the commit point of a seal: a bundle record is written
before the ledger flush that marks its members archived. On load, records that
no ledger row references belong to a seal that never committed and are dropped.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

from DataShed.errors import BundleNotFound, LedgerIOError
from DataShed.models import BundleRecord
from DataShed.storage.io import iter_jsonl, jsonl_save

__all__ = ["BundleRegistry"]

logger = logging.getLogger(__name__)


class BundleRegistry:
    """Ordered ``bundle_id -> BundleRecord`` mapping backed by a JSONL file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._bundles: Dict[str, BundleRecord] = {}

    @classmethod
    def load(cls, path: str | Path, *, referenced: Optional[Iterable[str]] = None) -> "BundleRegistry":
        """Load the registry, keeping only bundles in ``referenced`` when given."""

        registry = cls(path)
        registry.reload(referenced=referenced)
        return registry

    def reload(self, *, referenced: Optional[Iterable[str]] = None) -> None:
        keep = set(referenced) if referenced is not None else None
        bundles: Dict[str, BundleRecord] = {}
        try:
            for row in iter_jsonl(self.path):
                record = BundleRecord.from_dict(row)
                if keep is not None and record.bundle_id not in keep:
                    logger.warning(
                        f"Ignoring uncommitted bundle {record.bundle_id} (no ledger row references it)"
                    )
                    continue
                bundles[record.bundle_id] = record
        except (OSError, ValueError, KeyError) as e:
            raise LedgerIOError(f"Failed to read bundle registry {self.path}: {e}") from e
        with self._lock:
            self._bundles = bundles

    def add(self, record: BundleRecord) -> None:
        """Persist ``record`` (replacing an existing entry with the same id)."""

        with self._lock:
            bundles = dict(self._bundles)
            bundles[record.bundle_id] = record
            self._save(bundles, ids=record.members)
            self._bundles = bundles

    def discard(self, bundle_id: str) -> bool:
        """Drop an uncommitted bundle record; return ``True`` if it was present."""

        with self._lock:
            if bundle_id not in self._bundles:
                return False
            bundles = {k: v for k, v in self._bundles.items() if k != bundle_id}
            self._save(bundles, ids=())
            self._bundles = bundles
            return True

    def _save(self, bundles: Dict[str, BundleRecord], ids: Iterable[str]) -> None:
        try:
            jsonl_save(self.path, (b.to_dict() for b in bundles.values()))
        except OSError as e:
            raise LedgerIOError(f"Failed to write bundle registry {self.path}: {e}", ids=ids) from e

    def get(self, bundle_id: str) -> BundleRecord:
        try:
            return self._bundles[bundle_id]
        except KeyError:
            raise BundleNotFound(bundle_id) from None

    def all(self) -> List[BundleRecord]:
        return list(self._bundles.values())

    def __contains__(self, bundle_id: object) -> bool:
        return bundle_id in self._bundles

    def __iter__(self) -> Iterator[BundleRecord]:
        return iter(self.all())

    def __len__(self) -> int:
        return len(self._bundles)
