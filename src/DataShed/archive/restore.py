"""Restore bundle members into a content store.

The archive is verified completely before the first member is written, so a
damaged bundle never leaves a partially restored store behind.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from DataShed.archive.format import MANIFEST_NAME, MEMBER_SUFFIX, read_archive, verify_archive
from DataShed.storage.content_store import ContentStore

__all__ = ["restore_bundle"]

logger = logging.getLogger(__name__)


def restore_bundle(
    archive: str | Path,
    store: ContentStore,
    *,
    expected_digest: Optional[str] = None,
    bundle_id: str = "",
) -> List[str]:
    """Verify ``archive`` and write its members into ``store``.

    Members already present are left alone (writes are idempotent).

    Returns:
        The ids of all members, in archive order.

    Raises:
        ArchiveIntegrityError: The archive failed verification.
        StoreIOError: A member could not be written.
    """

    path = Path(archive)
    manifest = verify_archive(path, bundle_id=bundle_id, expected_digest=expected_digest)
    written = 0
    for name, data in read_archive(path):
        if name == MANIFEST_NAME:
            continue
        doc_id = name[: -len(MEMBER_SUFFIX)]
        if store.put(doc_id, data).written:
            written += 1
    logger.info(
        f"Restored bundle {manifest.bundle_id}: {len(manifest.members)} members, {written} written"
    )
    return list(manifest.ids)
