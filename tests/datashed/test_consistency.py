"""Consistency checks between ledger, store and bundle directory."""

from __future__ import annotations

import pytest
from filelock import FileLock

from DataShed.consistency import Mode
from DataShed.errors import ArchiveBusy, ShedBusy
from DataShed.models import Candidate, DocumentRecord, Status, utcnow
from DataShed.pipeline.importer import IMPORT_LOCK
from DataShed.shed import Shed

from .conftest import GERMAN_TEXTS, content_id


def test_clean_shed_is_consistent(shed: Shed, ready: list[str]) -> None:
    shed.archiver().seal()
    for mode in Mode:
        report = shed.checker().check(mode)
        assert report.ok, report.to_dict()
        assert report.checked == len(ready)


def test_missing_file(shed: Shed, imported: list[str]) -> None:
    shed.store.remove(imported[0])
    report = shed.checker().check(Mode.PERMISSIVE)
    assert [m.doc_id for m in report.missing] == [imported[0]]
    assert report.missing[0].status == "pending"
    assert not report.ok


def test_changed_content_needs_strict_mode(shed: Shed, imported: list[str]) -> None:
    shed.store.path_for(imported[0]).write_bytes(b"anders\n")
    assert shed.checker().check(Mode.PERMISSIVE).ok

    report = shed.checker().check(Mode.STRICT)
    assert [(c.doc_id, c.check) for c in report.changed] == [(imported[0], "digest")]


def test_pedantic_detects_non_canonical_bytes(shed: Shed) -> None:
    """A stored file that hashes to its id but is not canonical is flagged."""

    raw = b"nicht kanonisch  \r\n"
    doc_id = content_id(raw.decode("utf-8"))
    shed.store.put(doc_id, raw)
    shed.ledger.insert(
        DocumentRecord(
            id=doc_id,
            status=Status.PENDING,
            source_ref="manual",
            length_bytes=len(raw),
            imported_at=utcnow(),
        )
    )
    assert shed.checker().check(Mode.STRICT).ok

    report = shed.checker().check(Mode.PEDANTIC)
    assert [(c.doc_id, c.check) for c in report.changed] == [(doc_id, "canonical")]


def test_untracked_files(shed: Shed, imported: list[str]) -> None:
    orphan = "Nicht im Ledger.\n"
    shed.store.put(content_id(orphan), orphan.encode("utf-8"))
    (shed.layout.data / "README").write_text("stray", encoding="utf-8")
    (shed.layout.tmp / "abc.tar.gz.part").write_bytes(b"partial")
    (shed.layout.bundles / "0123456789abcdef.tar.gz").write_bytes(b"never committed")

    report = shed.checker().check(Mode.PERMISSIVE)
    reasons = sorted(u.reason for u in report.untracked)
    assert reasons == [
        "Bundle never committed",
        "Leftover partial file",
        "Not a store file",
        "Not referenced by the ledger",
    ]


def test_clean_dry_run_then_apply(shed: Shed, imported: list[str]) -> None:
    orphan = "Nicht im Ledger.\n"
    orphan_id = content_id(orphan)
    shed.store.put(orphan_id, orphan.encode("utf-8"))

    listed = shed.checker().clean(dry_run=True)
    assert len(listed) == 1
    assert shed.store.exists(orphan_id)

    removed = shed.checker().clean(dry_run=False)
    assert len(removed) == 1
    assert not shed.store.exists(orphan_id)
    assert all(shed.store.exists(i) for i in imported)
    assert shed.checker().check(Mode.STRICT).ok


def test_progress_callback(shed: Shed, imported: list[str]) -> None:
    seen = []
    shed.checker().check(Mode.STRICT, progress=seen.append)
    assert seen == imported


def test_clean_keeps_bytes_staged_for_an_import(shed: Shed) -> None:
    text = GERMAN_TEXTS[2]
    pipeline = shed.pipeline()
    prepared = pipeline.prepare(Candidate(text.encode("utf-8"), "gnd-002"))

    assert shed.checker().clean(dry_run=False) == []
    shed.ledger.insert(prepared.record)

    report = shed.checker().check(Mode.STRICT)
    assert report.missing == []
    assert report.ok


def test_clean_refuses_while_an_import_runs(shed: Shed, german_candidates) -> None:
    checker = shed.checker()
    refused = []

    def progress(outcome: str) -> None:
        if not refused:
            with pytest.raises(ShedBusy):
                checker.clean(dry_run=False)
            refused.append(outcome)

    summary = shed.pipeline().run(german_candidates, progress=progress)

    assert refused
    assert summary.imported == len(GERMAN_TEXTS)
    assert shed.store.staged() == frozenset()
    assert shed.checker().check(Mode.STRICT).ok


def test_clean_refuses_while_a_seal_commits(
    shed: Shed, ready: list[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    checker = shed.checker()
    real_add = shed.registry.add
    refused = []

    def clean_then_add(record) -> None:
        try:
            checker.clean(dry_run=False)
        except ArchiveBusy:
            refused.append(record.bundle_id)
        real_add(record)

    monkeypatch.setattr(shed.registry, "add", clean_then_add)
    record = shed.archiver().seal()

    assert refused == [record.bundle_id]
    assert shed.archiver().verify_bundle(record.bundle_id).ids == record.members
    assert shed.checker().check(Mode.STRICT).ok


def test_clean_refuses_while_another_process_imports(shed: Shed, imported: list[str]) -> None:
    orphan = "Nicht im Ledger.\n"
    shed.store.put(content_id(orphan), orphan.encode("utf-8"))

    with FileLock(str(shed.layout.locks / IMPORT_LOCK)):
        with pytest.raises(ShedBusy):
            shed.checker().clean(dry_run=False)
        assert len(shed.checker().clean(dry_run=True)) == 1

    assert shed.store.exists(content_id(orphan))
    assert len(shed.checker().clean(dry_run=False)) == 1
