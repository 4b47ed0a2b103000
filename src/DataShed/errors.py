# === NAVMAP v1 ===
# {
#   "module": "DataShed.errors",
#   "purpose": "Error taxonomy shared by ledger, pipeline, review and archive code.",
#   "sections": [
#     {"id": "datashederror", "name": "DataShedError", "anchor": "class-datashederror", "kind": "class"},
#     {"id": "encodingerror", "name": "EncodingError", "anchor": "class-encodingerror", "kind": "class"},
#     {"id": "validationrejection", "name": "ValidationRejection", "anchor": "class-validationrejection", "kind": "class"},
#     {"id": "invalidtransition", "name": "InvalidTransition", "anchor": "class-invalidtransition", "kind": "class"},
#     {"id": "ledgerioerror", "name": "LedgerIOError", "anchor": "class-ledgerioerror", "kind": "class"},
#     {"id": "archiveintegrityerror", "name": "ArchiveIntegrityError", "anchor": "class-archiveintegrityerror", "kind": "class"},
#     {"id": "shedbusy", "name": "ShedBusy", "anchor": "class-shedbusy", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Error taxonomy for the document shed.

Responsibilities
----------------
- Give every failure mode of the shed a dedicated exception type so callers
  can tell per-candidate problems (:class:`EncodingError`) from caller mistakes
  (:class:`InvalidTransition`) and persistence failures
  (:class:`LedgerIOError`, :class:`StoreIOError`).
- Carry the affected document ids on I/O errors so operators can retry a unit
  of work safely.

Design Notes
------------
- :class:`ValidationRejection` and :class:`DuplicateContent` describe outcomes
  that are recorded rather than raised during imports; they exist so that
  callers validating single documents can raise them explicitly.
"""

from __future__ import annotations

from typing import Iterable, Optional, Tuple

__all__ = [
    "DataShedError",
    "ConfigError",
    "EncodingError",
    "ValidationRejection",
    "DuplicateContent",
    "DocumentNotFound",
    "BundleNotFound",
    "InvalidTransition",
    "DocumentLocked",
    "LedgerIOError",
    "StoreIOError",
    "ArchiveIntegrityError",
    "ShedBusy",
    "ArchiveBusy",
    "NothingToArchive",
]


class DataShedError(Exception):
    """Base class for all errors raised by DataShed."""


class ConfigError(DataShedError):
    """Raised when a shed configuration cannot be loaded or validated."""


class EncodingError(DataShedError):
    """Raised when raw candidate bytes cannot be decoded as text.

    Attributes:
        encoding: Encoding that was attempted.
        source_ref: Back-reference of the offending candidate, if known.
    """

    def __init__(self, message: str, *, encoding: str, source_ref: Optional[str] = None) -> None:
        super().__init__(message)
        self.encoding = encoding
        self.source_ref = source_ref


class ValidationRejection(DataShedError):
    """A document failed a content check (recorded as ``discarded`` on import)."""

    def __init__(self, reason: str, detail: str = "") -> None:
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason
        self.detail = detail


class DuplicateContent(DataShedError):
    """Content with the same identifier already exists in the ledger."""

    def __init__(self, doc_id: str) -> None:
        super().__init__(f"Duplicate content: {doc_id}")
        self.doc_id = doc_id


class DocumentNotFound(DataShedError, KeyError):
    """No ledger entry exists for the requested id."""

    def __init__(self, doc_id: str) -> None:
        super().__init__(f"Unknown document: {doc_id}")
        self.doc_id = doc_id

    def __str__(self) -> str:
        return self.args[0]


class BundleNotFound(DataShedError, KeyError):
    """No committed bundle exists with the requested id."""

    def __init__(self, bundle_id: str) -> None:
        super().__init__(f"Unknown bundle: {bundle_id}")
        self.bundle_id = bundle_id

    def __str__(self) -> str:
        return self.args[0]


class InvalidTransition(DataShedError):
    """A status change is not permitted by the document state machine.

    Attributes:
        doc_id: Affected document (``None`` when checking states only).
        current: Current status value.
        target: Requested status value.
    """

    def __init__(self, current: object, target: object, doc_id: Optional[str] = None) -> None:
        current_name = getattr(current, "value", current)
        target_name = getattr(target, "value", target)
        where = f" for {doc_id}" if doc_id else ""
        super().__init__(f"Invalid transition{where}: {current_name} -> {target_name}")
        self.doc_id = doc_id
        self.current = current
        self.target = target


class DocumentLocked(InvalidTransition):
    """The document is part of an in-flight bundle and cannot change status."""

    def __init__(self, doc_id: str, current: object, target: object) -> None:
        super().__init__(current, target, doc_id)
        self.args = (f"Document {doc_id} is locked by an in-flight seal",)


class _PersistenceError(DataShedError):
    def __init__(self, message: str, ids: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.ids: Tuple[str, ...] = tuple(ids)


class LedgerIOError(_PersistenceError):
    """Reading or writing the ledger file failed; the unit of work was not applied."""


class StoreIOError(_PersistenceError):
    """Reading or writing the content store failed."""


class ArchiveIntegrityError(DataShedError):
    """A bundle archive does not match its manifest.

    Attributes:
        bundle_id: Bundle whose archive failed verification.
        quarantine_path: Where the rejected archive was moved, if it was.
    """

    def __init__(self, message: str, *, bundle_id: str, quarantine_path: Optional[str] = None) -> None:
        super().__init__(message)
        self.bundle_id = bundle_id
        self.quarantine_path = quarantine_path


class ShedBusy(DataShedError):
    """A conflicting import, seal or clean holds one of the shed locks."""


class ArchiveBusy(ShedBusy):
    """Another seal operation holds the archive lock."""


class NothingToArchive(DataShedError):
    """The selector matched no documents."""
