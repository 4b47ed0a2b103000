"""State machine and ledger record tests."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from DataShed.errors import InvalidTransition, LedgerIOError
from DataShed.ledger.bundles import BundleRegistry
from DataShed.models import (
    ALLOWED_TRANSITIONS,
    LEDGER_FIELDS,
    BundleRecord,
    DocumentRecord,
    Status,
    can_transition,
    transition,
)

EDGES = {
    (Status.PENDING, Status.READY),
    (Status.PENDING, Status.DISCARDED),
    (Status.READY, Status.DISCARDED),
    (Status.READY, Status.ARCHIVED),
    (Status.DISCARDED, Status.PENDING),
}

IMPORTED_AT = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _record(status: Status = Status.PENDING) -> DocumentRecord:
    return DocumentRecord(
        id="a" * 64,
        status=status,
        source_ref="gnd-1",
        length_bytes=42,
        imported_at=IMPORTED_AT,
    )


@pytest.mark.parametrize("current", list(Status))
@pytest.mark.parametrize("target", list(Status))
def test_transition_table(current: Status, target: Status) -> None:
    """Exactly the five documented edges are allowed."""

    allowed = (current, target) in EDGES
    assert can_transition(current, target) is allowed
    if allowed:
        assert transition(current, target) is target
    else:
        with pytest.raises(InvalidTransition):
            transition(current, target)


def test_archived_is_terminal() -> None:
    assert ALLOWED_TRANSITIONS[Status.ARCHIVED] == frozenset()


def test_with_status_sets_archived_in_only_when_archiving() -> None:
    ready = _record().with_status(Status.READY)
    assert ready.archived_in is None

    archived = ready.with_status(Status.ARCHIVED, archived_in="0123456789abcdef")
    assert archived.status is Status.ARCHIVED
    assert archived.archived_in == "0123456789abcdef"


def test_with_status_records_reason_and_review_time() -> None:
    reviewed = datetime(2024, 6, 1, tzinfo=timezone.utc)
    discarded = _record().with_status(Status.DISCARDED, reason="rating:I", reviewed_at=reviewed)
    assert discarded.reason == "rating:I"
    assert discarded.reviewed_at == reviewed

    reinstated = discarded.with_status(Status.PENDING)
    assert reinstated.reason is None


def test_with_status_rejects_invalid_edge() -> None:
    with pytest.raises(InvalidTransition) as excinfo:
        _record().with_status(Status.ARCHIVED, archived_in="x")
    assert excinfo.value.doc_id == "a" * 64


def test_row_serialisation() -> None:
    """Rows hold every ledger column; nulls become empty cells."""

    record = DocumentRecord(
        id="b" * 64,
        status=Status.READY,
        source_ref="gnd-7",
        length_bytes=120,
        imported_at=IMPORTED_AT,
        detected_language="ger",
        lang_score=0.91234,
        warnings=("low_alpha_ratio", "low_type_token_ratio"),
    )
    row = record.to_row()
    assert tuple(row) == LEDGER_FIELDS
    assert row["imported_at"] == "2024-05-01T12:00:00Z"
    assert row["lang_score"] == "0.9123"
    assert row["reviewed_at"] == ""
    assert row["warnings"] == "low_alpha_ratio;low_type_token_ratio"

    restored = DocumentRecord.from_row(row)
    assert restored.warnings == record.warnings
    assert restored.imported_at == IMPORTED_AT
    assert restored.lang_score == pytest.approx(0.9123)
    assert restored.archived_in is None


def test_bundle_record_dict_roundtrip() -> None:
    record = BundleRecord(
        bundle_id="0123456789abcdef",
        created_at=IMPORTED_AT,
        members=("a" * 64, "b" * 64),
        manifest_digest="0123456789abcdef" + "0" * 48,
        archive_path="bundles/0123456789abcdef.tar.gz",
        archive_sha256="f" * 64,
        size_bytes=512,
    )
    assert BundleRecord.from_dict(record.to_dict()) == record


def test_bundle_record_without_created_at_is_rejected(tmp_path: Path) -> None:
    data = {
        "bundle_id": "0123456789abcdef",
        "created_at": "",
        "members": ["a" * 64],
        "manifest_digest": "0123456789abcdef" + "0" * 48,
        "archive_path": "bundles/0123456789abcdef.tar.gz",
        "archive_sha256": "f" * 64,
        "size_bytes": 512,
    }
    with pytest.raises(ValueError, match="created_at"):
        BundleRecord.from_dict(data)

    registry_file = tmp_path / "bundles.jsonl"
    registry_file.write_text(json.dumps(data) + "\n", encoding="utf-8")
    with pytest.raises(LedgerIOError):
        BundleRegistry.load(registry_file)
