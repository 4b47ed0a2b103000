# === NAVMAP v1 ===
# {
#   "module": "tests.datashed.test_cli",
#   "purpose": "End-to-end CLI runs through typer's CliRunner",
#   "sections": [
#     {"id": "fixtures", "name": "Fixtures", "anchor": "FIX", "kind": "fixtures"},
#     {"id": "tests", "name": "Test Cases", "anchor": "TST", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""End-to-end CLI runs through typer's CliRunner."""

from __future__ import annotations

import csv
import io
import json
import os
from pathlib import Path

import pytest
from typer.testing import CliRunner

from DataShed.cli import app

from .conftest import GERMAN_TEXTS, FakeDetector, content_id

runner = CliRunner()


@pytest.fixture(autouse=True)
def _fake_detection(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "DataShed.validation.validator.get_detector", lambda languages: FakeDetector()
    )
    for key in list(os.environ):
        if key.startswith("DATASHED_"):
            monkeypatch.delenv(key)


@pytest.fixture
def root(tmp_path: Path) -> Path:
    path = tmp_path / "shed"
    result = runner.invoke(app, ["init", str(path), "--name", "cli"])
    assert result.exit_code == 0, result.output
    return path


@pytest.fixture
def populated(root: Path, tmp_path: Path) -> Path:
    sources = tmp_path / "incoming"
    sources.mkdir()
    for i, text in enumerate(GERMAN_TEXTS):
        (sources / f"gnd-{i:03d}.txt").write_text(text, encoding="utf-8")
    result = runner.invoke(app, ["-q", "-C", str(root), "import", str(sources)])
    assert result.exit_code == 0, result.output
    return root


def _run(root: Path, *args: str):
    return runner.invoke(app, ["-q", "-C", str(root), *args])


def test_init(root: Path) -> None:
    assert (root / "datashed.yaml").is_file()
    for name in ("data", "bundles", "tmp", "locks"):
        assert (root / name).is_dir()


def test_init_twice_fails(root: Path) -> None:
    result = runner.invoke(app, ["init", str(root)])
    assert result.exit_code == 1
    assert "Error" in result.output


def test_not_a_shed(tmp_path: Path) -> None:
    result = _run(tmp_path / "nowhere", "list")
    assert result.exit_code == 1
    assert "Not a datashed" in result.output


def test_import_and_list_json(populated: Path) -> None:
    result = _run(populated, "list", "--json")
    assert result.exit_code == 0, result.output
    rows = [json.loads(line) for line in result.stdout.splitlines() if line.strip()]
    assert [row["id"] for row in rows] == [content_id(t) for t in GERMAN_TEXTS]
    assert {row["status"] for row in rows} == {"pending"}
    assert rows[0]["source_ref"] == "gnd-000"


def test_promote_by_prefix_and_seal(populated: Path) -> None:
    ids = [content_id(t) for t in GERMAN_TEXTS]
    result = _run(populated, "promote", *(doc_id[:12] for doc_id in ids))
    assert result.exit_code == 0, result.output
    assert f"Promoted {len(ids)} of {len(ids)}" in result.output

    result = _run(populated, "seal", "--limit", "3")
    assert result.exit_code == 0, result.output
    assert "Sealed bundle" in result.output

    result = _run(populated, "list", "--json", "--status", "archived")
    assert len([line for line in result.stdout.splitlines() if line.strip()]) == 3

    assert _run(populated, "bundles").exit_code == 0
    assert _run(populated, "verify-bundle").exit_code == 0
    assert _run(populated, "verify", "--mode", "pedantic").exit_code == 0


def test_promote_unknown_id_fails(populated: Path) -> None:
    result = _run(populated, "promote", "f" * 64)
    assert result.exit_code == 1
    assert "Promoted 0 of 1" in result.output


def test_discard_from_file(populated: Path, tmp_path: Path) -> None:
    ids_file = tmp_path / "ids.txt"
    ids_file.write_text(content_id(GERMAN_TEXTS[0]) + "\n\n", encoding="utf-8")
    result = _run(populated, "discard", "--from-file", str(ids_file), "--reason", "garbled")
    assert result.exit_code == 0, result.output

    result = _run(populated, "show", content_id(GERMAN_TEXTS[0])[:10])
    assert "status: discarded" in result.output
    assert "reason: garbled" in result.output


def test_cat_writes_stored_bytes(populated: Path) -> None:
    result = _run(populated, "cat", content_id(GERMAN_TEXTS[1]))
    assert result.exit_code == 0
    assert result.stdout_bytes == GERMAN_TEXTS[1].encode("utf-8")


def test_summary_json(populated: Path) -> None:
    result = _run(populated, "summary", "--json")
    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["documents"] == len(GERMAN_TEXTS)
    assert payload["by_status"]["pending"] == len(GERMAN_TEXTS)


def test_status_reports_missing_files(populated: Path) -> None:
    assert _run(populated, "status").exit_code == 0

    doc_id = content_id(GERMAN_TEXTS[2])
    (populated / "data" / doc_id[:2] / doc_id[2:4] / f"{doc_id}.txt").unlink()
    result = _run(populated, "status")
    assert result.exit_code == 1
    assert f"missing:   {doc_id}" in result.output


def test_clean_dry_run_keeps_files(populated: Path) -> None:
    partial = populated / "tmp" / "leftover.tar.gz.part"
    partial.write_bytes(b"x")

    result = _run(populated, "clean")
    assert result.exit_code == 0
    assert "would remove 1 file(s)" in result.output
    assert partial.exists()

    result = _run(populated, "clean", "--apply")
    assert "removed 1 file(s)" in result.output
    assert not partial.exists()


def test_grep_prints_matching_subindex(populated: Path, tmp_path: Path) -> None:
    result = _run(populated, "grep", "-i", "LEIPZIG")
    assert result.exit_code == 0, result.output
    rows = list(csv.DictReader(io.StringIO(result.stdout)))
    assert [row["id"] for row in rows] == [content_id(GERMAN_TEXTS[1])]

    hits = tmp_path / "hits.csv"
    assert _run(populated, "grep", "^Die", "--output", str(hits)).exit_code == 0
    result = _run(populated, "grep", "Leipzig", "--output", str(hits), "--append")
    assert result.exit_code == 0, result.output
    with hits.open(encoding="utf-8", newline="") as handle:
        assert [row["source_ref"] for row in csv.DictReader(handle)] == ["gnd-000", "gnd-003", "gnd-001"]


def test_grep_rejects_bad_pattern(populated: Path) -> None:
    result = _run(populated, "grep", "(")
    assert result.exit_code == 1
    assert "Invalid pattern" in result.output


def test_config_commands(root: Path, tmp_path: Path) -> None:
    result = _run(root, "config", "validate")
    assert result.exit_code == 0, result.output

    result = _run(root, "config", "show", "--raw")
    assert json.loads(result.stdout)["metadata"]["name"] == "cli"

    schema_file = tmp_path / "schema.json"
    result = runner.invoke(app, ["config", "schema", "--output", str(schema_file)])
    assert result.exit_code == 0
    assert "properties" in json.loads(schema_file.read_text(encoding="utf-8"))

    bad = tmp_path / "bad.yaml"
    bad.write_text("importer:\n  workers: many\n", encoding="utf-8")
    result = runner.invoke(app, ["config", "validate", str(bad)])
    assert result.exit_code == 1
