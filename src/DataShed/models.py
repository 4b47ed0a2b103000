# === NAVMAP v1 ===
# {
#   "module": "DataShed.models",
#   "purpose": "Document status state machine and ledger record types.",
#   "sections": [
#     {"id": "status", "name": "Status", "anchor": "class-status", "kind": "class"},
#     {"id": "transition", "name": "transition", "anchor": "function-transition", "kind": "function"},
#     {"id": "documentrecord", "name": "DocumentRecord", "anchor": "class-documentrecord", "kind": "class"},
#     {"id": "bundlerecord", "name": "BundleRecord", "anchor": "class-bundlerecord", "kind": "class"},
#     {"id": "candidate", "name": "Candidate", "anchor": "class-candidate", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Document status state machine and ledger record types.

State Machine Diagram::

  PENDING ──(promote / auto-promote)──→ READY ──(seal)──→ ARCHIVED
     │  ↑                                 │
     │  └────────(reinstate)───────┐      │
     └──(discard / reject)──→ DISCARDED ←─┘ (discard)

``ARCHIVED`` is terminal. ``DISCARDED`` is terminal unless reinstated. Every
edge is listed in :data:`ALLOWED_TRANSITIONS`; :func:`transition` rejects the
rest with :class:`~DataShed.errors.InvalidTransition`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from DataShed.errors import InvalidTransition

__all__ = [
    "Status",
    "ALLOWED_TRANSITIONS",
    "can_transition",
    "transition",
    "DocumentRecord",
    "BundleRecord",
    "Candidate",
    "LEDGER_FIELDS",
    "utcnow",
]


def utcnow() -> datetime:
    """Return the current UTC time truncated to seconds."""

    return datetime.now(timezone.utc).replace(microsecond=0)


class Status(str, Enum):
    """Lifecycle status of a document."""

    PENDING = "pending"
    READY = "ready"
    DISCARDED = "discarded"
    ARCHIVED = "archived"

    def __str__(self) -> str:
        return self.value


ALLOWED_TRANSITIONS: Mapping[Status, FrozenSet[Status]] = {
    Status.PENDING: frozenset({Status.READY, Status.DISCARDED}),
    Status.READY: frozenset({Status.DISCARDED, Status.ARCHIVED}),
    Status.DISCARDED: frozenset({Status.PENDING}),
    Status.ARCHIVED: frozenset(),
}


def can_transition(current: Status, target: Status) -> bool:
    """Return ``True`` when ``current -> target`` is an edge of the state machine."""

    return target in ALLOWED_TRANSITIONS[current]


def transition(current: Status, target: Status, *, doc_id: Optional[str] = None) -> Status:
    """Validate ``current -> target`` and return the new status.

    Raises:
        InvalidTransition: If the edge is not part of the state machine.
    """

    if not can_transition(current, target):
        raise InvalidTransition(current, target, doc_id)
    return target


LEDGER_FIELDS: Tuple[str, ...] = (
    "id",
    "status",
    "source_ref",
    "length_bytes",
    "detected_language",
    "lang_score",
    "imported_at",
    "reviewed_at",
    "archived_in",
    "reason",
    "warnings",
)


def _fmt_time(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_time(value: str) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class DocumentRecord:
    """One row of the ledger.

    Records are immutable; status changes produce a new record via
    :meth:`with_status` which the ledger swaps in place of the old one.
    """

    id: str
    status: Status
    source_ref: str
    length_bytes: int
    imported_at: datetime
    detected_language: Optional[str] = None
    lang_score: Optional[float] = None
    reviewed_at: Optional[datetime] = None
    archived_in: Optional[str] = None
    reason: Optional[str] = None
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    def with_status(
        self,
        target: Status,
        *,
        reviewed_at: Optional[datetime] = None,
        archived_in: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> "DocumentRecord":
        """Return a copy moved to ``target`` after checking the state machine."""

        new_status = transition(self.status, target, doc_id=self.id)
        changes: Dict[str, Any] = {"status": new_status, "reason": reason}
        if reviewed_at is not None:
            changes["reviewed_at"] = reviewed_at
        if new_status is Status.ARCHIVED:
            changes["archived_in"] = archived_in
            changes["reason"] = self.reason
        return replace(self, **changes)

    def to_row(self) -> Dict[str, str]:
        """Serialise the record into flat CSV cells (nulls become empty cells)."""

        return {
            "id": self.id,
            "status": self.status.value,
            "source_ref": self.source_ref,
            "length_bytes": str(self.length_bytes),
            "detected_language": self.detected_language or "",
            "lang_score": "" if self.lang_score is None else f"{self.lang_score:.4f}",
            "imported_at": _fmt_time(self.imported_at),
            "reviewed_at": _fmt_time(self.reviewed_at),
            "archived_in": self.archived_in or "",
            "reason": self.reason or "",
            "warnings": ";".join(self.warnings),
        }

    @classmethod
    def from_row(cls, row: Mapping[str, str]) -> "DocumentRecord":
        """Rebuild a record from CSV cells produced by :meth:`to_row`."""

        imported_at = _parse_time(row["imported_at"])
        if imported_at is None:
            raise ValueError(f"Ledger row without imported_at: {row.get('id')}")
        score = row.get("lang_score") or ""
        warnings = row.get("warnings") or ""
        return cls(
            id=row["id"],
            status=Status(row["status"]),
            source_ref=row["source_ref"],
            length_bytes=int(row["length_bytes"]),
            imported_at=imported_at,
            detected_language=row.get("detected_language") or None,
            lang_score=float(score) if score else None,
            reviewed_at=_parse_time(row.get("reviewed_at") or ""),
            archived_in=row.get("archived_in") or None,
            reason=row.get("reason") or None,
            warnings=tuple(w for w in warnings.split(";") if w),
        )


@dataclass(frozen=True)
class BundleRecord:
    """A sealed, immutable bundle of archived documents."""

    bundle_id: str
    created_at: datetime
    members: Tuple[str, ...]
    manifest_digest: str
    archive_path: str
    archive_sha256: str
    size_bytes: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bundle_id": self.bundle_id,
            "created_at": _fmt_time(self.created_at),
            "members": list(self.members),
            "manifest_digest": self.manifest_digest,
            "archive_path": self.archive_path,
            "archive_sha256": self.archive_sha256,
            "size_bytes": self.size_bytes,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BundleRecord":
        created_at = _parse_time(str(data["created_at"]))
        if created_at is None:
            raise ValueError(f"Bundle record without created_at: {data.get('bundle_id')}")
        return cls(
            bundle_id=str(data["bundle_id"]),
            created_at=created_at,
            members=tuple(data["members"]),
            manifest_digest=str(data["manifest_digest"]),
            archive_path=str(data["archive_path"]),
            archive_sha256=str(data["archive_sha256"]),
            size_bytes=int(data["size_bytes"]),
        )


@dataclass(frozen=True)
class Candidate:
    """A document offered for import by the dataset pipeline.

    Attributes:
        content: Raw document bytes.
        source_ref: Opaque back-reference to the originating authority record.
        hints: Optional metadata from the producer; never interpreted here.
    """

    content: bytes
    source_ref: str
    hints: Mapping[str, Any] = field(default_factory=dict)
