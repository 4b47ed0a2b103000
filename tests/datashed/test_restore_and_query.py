"""Restoring bundles into a store and the read-only query surface."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from DataShed.archive.restore import restore_bundle
from DataShed.consistency import Mode
from DataShed.errors import ArchiveIntegrityError, BundleNotFound, DocumentNotFound
from DataShed.models import Status, utcnow
from DataShed.shed import Shed
from DataShed.storage.content_store import ContentStore

from .conftest import GERMAN_TEXTS


class TestRestore:
    def test_restore_missing_members(self, shed: Shed, ready: list[str]) -> None:
        record = shed.archiver().seal()
        for doc_id in ready:
            shed.store.remove(doc_id)
        assert len(shed.checker().check(Mode.PERMISSIVE).missing) == len(ready)

        ids = restore_bundle(shed.root / record.archive_path, shed.store)

        assert ids == sorted(ready)
        assert shed.checker().check(Mode.PEDANTIC).ok

    def test_restore_into_empty_store(self, shed: Shed, ready: list[str], tmp_path: Path) -> None:
        record = shed.archiver().seal()
        target = ContentStore(tmp_path / "elsewhere")
        restore_bundle(
            shed.root / record.archive_path,
            target,
            expected_digest=record.manifest_digest,
            bundle_id=record.bundle_id,
        )
        assert sorted(target.iter_ids()) == sorted(ready)

    def test_damaged_archive_restores_nothing(self, shed: Shed, ready: list[str], tmp_path: Path) -> None:
        record = shed.archiver().seal()
        damaged = tmp_path / "damaged.tar.gz"
        data = (shed.root / record.archive_path).read_bytes()
        damaged.write_bytes(data[: len(data) // 2])
        target = ContentStore(tmp_path / "elsewhere")

        with pytest.raises(ArchiveIntegrityError):
            restore_bundle(damaged, target)
        assert list(target.iter_ids()) == []


class TestQuery:
    def test_list_filters(self, shed: Shed, ready: list[str]) -> None:
        shed.review().discard(ready[0], reason="review")
        query = shed.query()

        assert [r.id for r in query.list(status=Status.DISCARDED)] == [ready[0]]
        assert len(query.list(status=Status.READY)) == len(ready) - 1
        assert [r.id for r in query.list(source_prefix="gnd-001")] == [ready[1]]
        assert len(query.list(language="ger")) == len(ready)
        assert query.list(language="eng") == []
        assert [r.id for r in query.list(offset=1, limit=2)] == ready[1:3]

    def test_list_by_import_time_and_bundle(self, shed: Shed, ready: list[str]) -> None:
        query = shed.query()
        now = utcnow()
        assert len(query.list(imported_after=now - timedelta(minutes=5))) == len(ready)
        assert query.list(imported_before=now - timedelta(minutes=5)) == []

        record = shed.archiver().seal()
        assert len(query.list(bundle_id=record.bundle_id)) == len(ready)

    def test_read_document(self, shed: Shed, imported: list[str]) -> None:
        query = shed.query()
        assert query.read_text(imported[0]) == GERMAN_TEXTS[0]
        assert query.get(imported[0]).source_ref == "gnd-000"
        with pytest.raises(DocumentNotFound):
            query.read_bytes("e" * 64)

    def test_grep(self, shed: Shed, imported: list[str]) -> None:
        query = shed.query()

        assert [r.id for r in query.grep("Leipzig")] == [imported[1]]
        assert query.grep("leipzig") == []
        assert [r.id for r in query.grep("GEGRÜNDET", ignore_case=True)] == [imported[1]]
        assert [r.id for r in query.grep("^Die")] == [imported[0], imported[3]]
        assert len(query.grep("Leipzig", invert=True)) == len(imported) - 1

        shed.review().promote(imported[3])
        assert [r.id for r in query.grep("^Die", status=Status.READY)] == [imported[3]]

    def test_grep_max_bytes(self, shed: Shed, imported: list[str]) -> None:
        query = shed.query()
        assert query.grep("Jahrhundert", max_bytes=10) == []
        assert [r.id for r in query.grep("Jahrhundert", max_bytes=0)] == [imported[0]]
        assert [r.id for r in query.grep("Bibliothek", max_bytes=20)] == [imported[0]]

    def test_grep_skips_missing_content_and_bad_patterns(self, shed: Shed, imported: list[str]) -> None:
        query = shed.query()
        shed.store.remove(imported[4])
        assert query.grep("Studium") == []
        with pytest.raises(ValueError, match="Invalid pattern"):
            query.grep("(")

    def test_resolve_prefix(self, shed: Shed, imported: list[str]) -> None:
        query = shed.query()
        assert query.resolve(imported[0][:12]) == imported[0]
        assert query.resolve(imported[0].upper()) == imported[0]
        with pytest.raises(ValueError):
            query.resolve("ab")
        with pytest.raises(DocumentNotFound):
            query.resolve("zzzzzz")

    def test_bundle_manifest_falls_back_to_archive(self, shed: Shed, ready: list[str]) -> None:
        record = shed.archiver().seal()
        (shed.layout.bundles / f"{record.bundle_id}.manifest.json").unlink()
        manifest = shed.query().bundle_manifest(record.bundle_id)
        assert manifest.ids == record.members

    def test_unknown_bundle(self, shed: Shed) -> None:
        with pytest.raises(BundleNotFound):
            shed.query().bundle("0" * 16)

    def test_summary(self, shed: Shed, imported: list[str]) -> None:
        shed.pipeline().run([(b"zu kurz", "short")])
        shed.review().promote(imported[0])
        summary = shed.query().summary()

        assert summary.documents == len(imported) + 1
        assert summary.by_status == {"pending": 4, "ready": 1, "discarded": 1, "archived": 0}
        assert summary.rejections == {"LengthOutOfBounds": 1}
        assert summary.languages["ger"] == len(imported)
        assert summary.bundles == 0
        assert summary.to_dict()["documents"] == len(imported) + 1
