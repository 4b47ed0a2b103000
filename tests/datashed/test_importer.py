# === NAVMAP v1 ===
# {
#   "module": "tests.datashed.test_importer",
#   "purpose": "Import pipeline: dedup, rejection, idempotence, crash recovery, concurrency",
#   "sections": [
#     {"id": "tests", "name": "Test Cases", "anchor": "TST", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""Import pipeline: dedup, rejection, idempotence, crash recovery, concurrency."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from DataShed.consistency import Mode
from DataShed.errors import LedgerIOError
from DataShed.models import Candidate, Status
from DataShed.pipeline.importer import ImportPipeline
from DataShed.pipeline.sources import iter_directory, iter_jsonl
from DataShed.shed import Shed

from .conftest import GERMAN_TEXTS, content_id


class TestDeduplication:
    def test_identical_bytes_from_two_sources_import_once(self, shed: Shed) -> None:
        data = GERMAN_TEXTS[0].encode("utf-8")
        summary = shed.pipeline().run(
            [Candidate(data, "gnd-a"), Candidate(data, "gnd-b")]
        )
        assert summary.seen == 2
        assert summary.imported == 1
        assert summary.duplicates == 1
        assert len(shed.ledger) == 1
        assert shed.ledger.get(content_id(GERMAN_TEXTS[0])).source_ref == "gnd-a"

    def test_canonically_equal_variants_are_duplicates(self, shed: Shed) -> None:
        text = GERMAN_TEXTS[1]
        variant = text.replace("\n", "   \r\n\r\n")
        summary = shed.pipeline().run(
            [Candidate(text.encode("utf-8"), "a"), Candidate(variant.encode("utf-8"), "b")]
        )
        assert summary.imported == 1
        assert summary.duplicates == 1

    def test_reimport_is_idempotent(self, shed: Shed, german_candidates) -> None:
        first = shed.pipeline().run(german_candidates)
        ledger_bytes = shed.layout.ledger.read_bytes()
        second = shed.pipeline().run(german_candidates)

        assert first.imported == len(GERMAN_TEXTS)
        assert second.imported == 0
        assert second.duplicates == len(GERMAN_TEXTS)
        assert shed.layout.ledger.read_bytes() == ledger_bytes

    def test_tuples_are_accepted_as_candidates(self, shed: Shed) -> None:
        summary = shed.pipeline().run([(GERMAN_TEXTS[2].encode("utf-8"), 42)])
        assert summary.imported == 1
        assert shed.ledger.get(content_id(GERMAN_TEXTS[2])).source_ref == "42"


class TestValidationOutcomes:
    def test_short_document_is_recorded_as_discarded(self, shed: Shed) -> None:
        summary = shed.pipeline().run([Candidate(b"zu kurz", "gnd-short")])
        record = shed.ledger.get(content_id("zu kurz\n"))

        assert summary.rejected == 1
        assert summary.rejections == {"LengthOutOfBounds": 1}
        assert record.status is Status.DISCARDED
        assert record.reason == "LengthOutOfBounds"
        assert shed.store.exists(record.id)

    def test_accepted_documents_are_pending_with_language(self, shed: Shed, imported) -> None:
        for doc_id in imported:
            record = shed.ledger.get(doc_id)
            assert record.status is Status.PENDING
            assert record.detected_language == "ger"
            assert record.lang_score == 0.95
            assert record.length_bytes == len(shed.store.get(doc_id))

    def test_auto_promote(self, tmp_path: Path, detector) -> None:
        from DataShed.config.models import DataShedConfig

        config = DataShedConfig.model_validate({"importer": {"workers": 1, "auto_promote": True}})
        with Shed.init(tmp_path / "auto", config=config, detector=detector) as shed:
            shed.pipeline().run([Candidate(GERMAN_TEXTS[0].encode("utf-8"), "a")])
            assert shed.ledger.get(content_id(GERMAN_TEXTS[0])).status is Status.READY

    def test_encoding_errors_are_counted_not_recorded(self, shed: Shed) -> None:
        summary = shed.pipeline().run(
            [Candidate(b"Ung\xfcltiges Latin-1 ohne Deklaration", "gnd-latin1")]
        )
        assert summary.encoding_errors == 1
        assert summary.failed_refs == ["gnd-latin1"]
        assert summary.imported == 0
        assert len(shed.ledger) == 0
        assert list(shed.store.iter_ids()) == []

    def test_progress_receives_every_outcome(self, shed: Shed, german_candidates) -> None:
        outcomes = []
        shed.pipeline().run(
            german_candidates + [Candidate(b"\xff", "bad")], progress=outcomes.append
        )
        assert outcomes.count("accepted") == len(GERMAN_TEXTS)
        assert outcomes.count("encoding_error") == 1

    def test_summary_dict(self, shed: Shed, german_candidates) -> None:
        summary = shed.pipeline().run(german_candidates)
        payload = summary.to_dict()
        assert payload["imported"] == len(GERMAN_TEXTS)
        assert json.loads(json.dumps(payload)) == payload


class TestCrashRecovery:
    def test_store_write_without_ledger_commit_is_recovered(self, shed: Shed) -> None:
        """Content stored before a crash is committed exactly once on re-run."""

        text = GERMAN_TEXTS[3]
        doc_id = content_id(text)
        shed.store.put(doc_id, text.encode("utf-8"))
        assert shed.checker().check(Mode.PERMISSIVE).untracked

        summary = shed.pipeline().run([Candidate(text.encode("utf-8"), "gnd-3")])

        assert summary.imported == 1
        assert [r.id for r in shed.ledger] == [doc_id]
        assert shed.checker().check(Mode.STRICT).ok

    def test_failed_commit_leaves_ledger_unchanged(
        self, shed: Shed, german_candidates, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        import DataShed.ledger.ledger as ledger_module

        real_write = ledger_module.write_ledger_file

        def broken_write(path, records):
            raise OSError("disk full")

        monkeypatch.setattr(ledger_module, "write_ledger_file", broken_write)
        with pytest.raises(LedgerIOError):
            shed.pipeline().run(german_candidates)
        assert len(shed.ledger) == 0

        monkeypatch.setattr(ledger_module, "write_ledger_file", real_write)
        summary = shed.pipeline().run(german_candidates)
        assert summary.imported == len(GERMAN_TEXTS)
        assert len(shed.ledger) == len(GERMAN_TEXTS)
        assert shed.checker().check(Mode.STRICT).ok

    def test_cancel_stops_feeding_candidates(self, shed: Shed, german_candidates) -> None:
        pipeline = shed.pipeline()
        outcomes = []

        def progress(outcome: str) -> None:
            outcomes.append(outcome)
            if len(outcomes) == 2:
                pipeline.cancel()

        summary = pipeline.run(german_candidates, progress=progress)
        assert summary.cancelled is True
        assert summary.imported == 2
        assert len(shed.ledger) == 2


class TestConcurrency:
    def test_workers_import_every_document_once(self, shed: Shed) -> None:
        texts = [f"Dokument Nummer {i} beschreibt eine Person aus Berlin.\n" for i in range(60)]
        candidates = [Candidate(t.encode("utf-8"), f"gnd-{i}") for i, t in enumerate(texts)]
        candidates += candidates[:20]
        pipeline = ImportPipeline(
            shed.ledger,
            shed.store,
            shed.addresser,
            shed.validator,
            shed.config.importer.model_copy(update={"workers": 4, "batch_size": 7}),
        )

        summary = pipeline.run(candidates)

        assert summary.seen == 80
        assert summary.imported == 60
        assert summary.duplicates == 20
        assert [r.source_ref for r in shed.ledger] == [f"gnd-{i}" for i in range(60)]
        assert sorted(shed.store.iter_ids()) == sorted(content_id(t) for t in texts)
        assert shed.store.staged() == frozenset()


class TestSources:
    def test_iter_directory(self, tmp_path: Path) -> None:
        (tmp_path / "sub").mkdir()
        (tmp_path / "118540238.txt").write_bytes(b"eins")
        (tmp_path / "sub" / "118607626.txt").write_bytes(b"zwei")
        (tmp_path / "ignored.md").write_bytes(b"drei")

        candidates = list(iter_directory(tmp_path))
        assert [c.source_ref for c in candidates] == ["118540238", "118607626"]
        assert candidates[1].hints == {"path": "sub/118607626.txt"}

    def test_iter_directory_requires_directory(self, tmp_path: Path) -> None:
        with pytest.raises(NotADirectoryError):
            list(iter_directory(tmp_path / "missing"))

    def test_iter_jsonl_skips_incomplete_lines(self, tmp_path: Path) -> None:
        path = tmp_path / "records.jsonl"
        lines = [
            {"source_ref": "gnd-1", "text": "Erster Text", "year": 1901},
            {"source_ref": "gnd-2"},
            {"id": "gnd-3", "text": "Dritter Text"},
        ]
        path.write_text("\n".join(json.dumps(line) for line in lines) + "\n", encoding="utf-8")

        candidates = list(iter_jsonl(path))
        assert [(c.source_ref, c.content) for c in candidates] == [("gnd-1", "Erster Text".encode())]
        assert candidates[0].hints == {"year": 1901}

        by_id = list(iter_jsonl(path, ref_field="id"))
        assert [c.source_ref for c in by_id] == ["gnd-3"]
