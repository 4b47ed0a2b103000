"""Content store layout, idempotent writes and housekeeping."""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from DataShed.errors import DocumentNotFound
from DataShed.storage.content_store import ContentStore
from DataShed.storage.fs_layout import cas_path, id_from_path

DATA = b"Ein gespeicherter Text.\n"
DOC_ID = hashlib.sha256(DATA).hexdigest()


@pytest.fixture
def store(tmp_path: Path) -> ContentStore:
    return ContentStore(tmp_path / "data")


def test_path_is_sharded_by_id_prefix(tmp_path: Path) -> None:
    path = cas_path(tmp_path, DOC_ID)
    assert path == tmp_path / DOC_ID[:2] / DOC_ID[2:4] / f"{DOC_ID}.txt"
    assert id_from_path(path) == DOC_ID


def test_invalid_ids_are_refused(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        cas_path(tmp_path, "../../etc/passwd")


def test_put_then_get(store: ContentStore) -> None:
    result = store.put(DOC_ID, DATA)
    assert result.written is True
    assert result.bytes == len(DATA)
    assert store.get(DOC_ID) == DATA
    assert store.exists(DOC_ID)
    assert store.size(DOC_ID) == len(DATA)
    assert store.digest(DOC_ID) == DOC_ID
    assert b"".join(store.iter_chunks(DOC_ID, chunk_size=4)) == DATA


def test_second_put_is_a_no_op(store: ContentStore) -> None:
    store.put(DOC_ID, DATA)
    mtime = store.path_for(DOC_ID).stat().st_mtime_ns
    assert store.put(DOC_ID, DATA).written is False
    assert store.path_for(DOC_ID).stat().st_mtime_ns == mtime


def test_missing_document(store: ContentStore) -> None:
    with pytest.raises(DocumentNotFound):
        store.get(DOC_ID)
    with pytest.raises(DocumentNotFound):
        store.digest(DOC_ID)
    assert store.size(DOC_ID) is None


def test_no_temporary_files_remain(store: ContentStore) -> None:
    store.put(DOC_ID, DATA)
    files = [p for p in store.root_dir.rglob("*") if p.is_file()]
    assert files == [store.path_for(DOC_ID)]


def test_remove_prunes_empty_shards(store: ContentStore) -> None:
    store.put(DOC_ID, DATA)
    assert store.remove(DOC_ID) is True
    assert store.remove(DOC_ID) is False
    assert not (store.root_dir / DOC_ID[:2]).exists()


def test_iter_ids_and_stray_files(store: ContentStore) -> None:
    other = b"Noch ein Text.\n"
    other_id = hashlib.sha256(other).hexdigest()
    store.put(DOC_ID, DATA)
    store.put(other_id, other)
    stray = store.root_dir / "notes.md"
    stray.write_text("scratch", encoding="utf-8")

    assert sorted(store.iter_ids()) == sorted([DOC_ID, other_id])
    assert store.stray_files() == [stray]
