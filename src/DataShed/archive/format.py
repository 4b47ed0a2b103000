# === NAVMAP v1 ===
# {
#   "module": "DataShed.archive.format",
#   "purpose": "Byte-stable tar.gz bundle writer, manifest codec and archive verification.",
#   "sections": [
#     {"id": "manifestentry", "name": "ManifestEntry", "anchor": "class-manifestentry", "kind": "class"},
#     {"id": "manifest", "name": "Manifest", "anchor": "class-manifest", "kind": "class"},
#     {"id": "write-archive", "name": "write_archive", "anchor": "function-write-archive", "kind": "function"},
#     {"id": "read-archive", "name": "read_archive", "anchor": "function-read-archive", "kind": "function"},
#     {"id": "verify-archive", "name": "verify_archive", "anchor": "function-verify-archive", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Bundle container format.

A bundle is a USTAR tar stream inside gzip. Entries are ``<id>.txt`` in sorted
id order followed by ``manifest.json``. Everything that could vary between
runs is pinned: the gzip header carries no file name and mtime ``0``, tar
entries have mtime ``0``, uid/gid ``0``, mode ``0644`` and empty owner names.
Building the same member set twice therefore yields byte-identical archives
(for a given zlib build and compression level).

The manifest digest is the SHA-256 of all member contents concatenated in
sorted id order; the bundle id is its first 16 hex characters.
"""

from __future__ import annotations

import gzip
import hashlib
import io
import json
import logging
import os
import tarfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from DataShed.errors import ArchiveIntegrityError

__all__ = [
    "MANIFEST_NAME",
    "MANIFEST_FORMAT",
    "ManifestEntry",
    "Manifest",
    "bundle_id_for",
    "write_archive",
    "read_archive",
    "verify_archive",
]

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
MANIFEST_FORMAT = 1
MEMBER_SUFFIX = ".txt"
BUNDLE_ID_LENGTH = 16


@dataclass(frozen=True)
class ManifestEntry:
    id: str
    size: int
    digest: str

    def to_dict(self) -> Dict[str, object]:
        return {"id": self.id, "size": self.size, "digest": self.digest}


@dataclass(frozen=True)
class Manifest:
    """Member list and digest of a bundle."""

    manifest_digest: str
    members: Tuple[ManifestEntry, ...]

    @property
    def bundle_id(self) -> str:
        return bundle_id_for(self.manifest_digest)

    @property
    def ids(self) -> Tuple[str, ...]:
        return tuple(m.id for m in self.members)

    def to_bytes(self) -> bytes:
        payload = {
            "format": MANIFEST_FORMAT,
            "manifest_digest": self.manifest_digest,
            "members": [m.to_dict() for m in self.members],
        }
        return (json.dumps(payload, sort_keys=True, indent=2) + "\n").encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "Manifest":
        payload = json.loads(data.decode("utf-8"))
        if payload.get("format") != MANIFEST_FORMAT:
            raise ValueError(f"Unsupported manifest format: {payload.get('format')!r}")
        members = tuple(
            ManifestEntry(id=str(m["id"]), size=int(m["size"]), digest=str(m["digest"]))
            for m in payload["members"]
        )
        return cls(manifest_digest=str(payload["manifest_digest"]), members=members)


def bundle_id_for(manifest_digest: str) -> str:
    return manifest_digest[:BUNDLE_ID_LENGTH]


def _tarinfo(name: str, size: int) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.size = size
    info.mtime = 0
    info.mode = 0o644
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    info.type = tarfile.REGTYPE
    return info


def write_archive(
    path: Path,
    ids: Sequence[str],
    read: Callable[[str], bytes],
    *,
    compression_level: int = 6,
) -> Manifest:
    """Write the bundle for ``ids`` to ``path`` and fsync it.

    ``read`` returns the stored bytes of an id. Members whose bytes do not hash
    to their id abort the write with :class:`ArchiveIntegrityError`.
    """

    ordered = sorted(set(ids))
    concat = hashlib.sha256()
    entries: List[ManifestEntry] = []
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as raw:
        with gzip.GzipFile(
            filename="", mode="wb", fileobj=raw, compresslevel=compression_level, mtime=0
        ) as gz:
            with tarfile.open(fileobj=gz, mode="w", format=tarfile.USTAR_FORMAT) as tar:
                for doc_id in ordered:
                    data = read(doc_id)
                    digest = hashlib.sha256(data).hexdigest()
                    if digest != doc_id:
                        raise ArchiveIntegrityError(
                            f"Stored content of {doc_id} hashes to {digest}",
                            bundle_id="",
                        )
                    concat.update(data)
                    entries.append(ManifestEntry(id=doc_id, size=len(data), digest=digest))
                    tar.addfile(_tarinfo(f"{doc_id}{MEMBER_SUFFIX}", len(data)), io.BytesIO(data))
                manifest = Manifest(manifest_digest=concat.hexdigest(), members=tuple(entries))
                body = manifest.to_bytes()
                tar.addfile(_tarinfo(MANIFEST_NAME, len(body)), io.BytesIO(body))
        raw.flush()
        os.fsync(raw.fileno())
    logger.debug(f"Wrote bundle {manifest.bundle_id} with {len(entries)} members to {path}")
    return manifest


def read_archive(path: Path) -> Iterator[Tuple[str, bytes]]:
    """Yield ``(entry name, bytes)`` pairs in archive order."""

    with tarfile.open(path, mode="r:gz") as tar:
        for info in tar:
            if not info.isfile():
                raise ValueError(f"Unexpected tar entry type for {info.name}")
            handle = tar.extractfile(info)
            if handle is None:
                raise ValueError(f"Unreadable tar entry {info.name}")
            yield info.name, handle.read()


def verify_archive(
    path: Path,
    *,
    bundle_id: str = "",
    expected_digest: Optional[str] = None,
    expected_members: Optional[Iterable[str]] = None,
) -> Manifest:
    """Re-read ``path`` and check every member against the embedded manifest.

    Checks: member names are sorted ``<id>.txt`` entries followed by the
    manifest; each member hashes to its id and matches the manifest size and
    digest; the recomputed concatenation digest equals the manifest digest (and
    ``expected_digest`` / ``expected_members`` when given).

    Raises:
        ArchiveIntegrityError: On any mismatch or unreadable archive.
    """

    def fail(message: str) -> ArchiveIntegrityError:
        return ArchiveIntegrityError(f"{path.name}: {message}", bundle_id=bundle_id)

    concat = hashlib.sha256()
    seen: List[ManifestEntry] = []
    manifest: Optional[Manifest] = None
    try:
        for name, data in read_archive(path):
            if manifest is not None:
                raise fail(f"entry {name} follows the manifest")
            if name == MANIFEST_NAME:
                manifest = Manifest.from_bytes(data)
                continue
            if not name.endswith(MEMBER_SUFFIX):
                raise fail(f"unexpected entry {name}")
            doc_id = name[: -len(MEMBER_SUFFIX)]
            digest = hashlib.sha256(data).hexdigest()
            if digest != doc_id:
                raise fail(f"member {doc_id} hashes to {digest}")
            if seen and seen[-1].id >= doc_id:
                raise fail(f"member {doc_id} out of order")
            concat.update(data)
            seen.append(ManifestEntry(id=doc_id, size=len(data), digest=digest))
    except ArchiveIntegrityError:
        raise
    except (OSError, EOFError, tarfile.TarError, zlib.error, ValueError, KeyError) as e:
        raise fail(f"unreadable archive ({e})") from e

    if manifest is None:
        raise fail("missing manifest")
    if tuple(seen) != manifest.members:
        raise fail("members do not match the manifest")
    if concat.hexdigest() != manifest.manifest_digest:
        raise fail("manifest digest mismatch")
    if expected_digest is not None and manifest.manifest_digest != expected_digest:
        raise fail(f"manifest digest {manifest.manifest_digest} != recorded {expected_digest}")
    if expected_members is not None and manifest.ids != tuple(sorted(expected_members)):
        raise fail("membership differs from the bundle record")
    return manifest
