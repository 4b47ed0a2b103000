# === NAVMAP v1 ===
# {
#   "module": "DataShed.addressing",
#   "purpose": "Canonicalization and content identifiers for shed documents.",
#   "sections": [
#     {"id": "addressed", "name": "Addressed", "anchor": "class-addressed", "kind": "class"},
#     {"id": "contentaddresser", "name": "ContentAddresser", "anchor": "class-contentaddresser", "kind": "class"},
#     {"id": "streamingcontenthasher", "name": "StreamingContentHasher", "anchor": "class-streamingcontenthasher", "kind": "class"},
#     {"id": "is-content-id", "name": "is_content_id", "anchor": "function-is-content-id", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Canonicalization and content identifiers.

A document's identifier is the SHA-256 digest of its *canonical* UTF-8 bytes.
Canonicalization decodes the raw bytes, unifies line endings, applies the
configured Unicode normalization form and, by default, the trailing
whitespace rule:

- every line is right-stripped,
- trailing blank lines are dropped,
- non-empty text ends with exactly one ``"\\n"``.

Two inputs that differ only in normalization form or trailing whitespace
therefore share an identifier; any other difference changes it.
"""

from __future__ import annotations

import hashlib
import re
import unicodedata
from dataclasses import dataclass
from typing import Optional, Tuple

from DataShed.config.models import AddressingConfig
from DataShed.errors import EncodingError

__all__ = ["Addressed", "ContentAddresser", "StreamingContentHasher", "is_content_id"]

_CONTENT_ID = re.compile(r"^[0-9a-f]{64}$")
_BOM = "\ufeff"


def is_content_id(value: str) -> bool:
    """Return ``True`` when ``value`` looks like a content identifier."""

    return bool(_CONTENT_ID.match(value))


@dataclass(frozen=True)
class Addressed:
    """Result of addressing a raw document."""

    id: str
    text: str
    canonical: bytes

    @property
    def length_bytes(self) -> int:
        return len(self.canonical)


class ContentAddresser:
    """Pure function object mapping raw bytes to ``(id, canonical bytes)``."""

    def __init__(self, config: Optional[AddressingConfig] = None) -> None:
        self.config = config or AddressingConfig()

    def decode(self, raw: bytes, *, source_ref: Optional[str] = None) -> str:
        """Decode ``raw`` under the configured encoding.

        Raises:
            EncodingError: If ``raw`` is not valid text in that encoding.
        """

        try:
            text = raw.decode(self.config.encoding)
        except UnicodeDecodeError as e:
            raise EncodingError(
                f"Cannot decode content as {self.config.encoding}: {e.reason} at byte {e.start}",
                encoding=self.config.encoding,
                source_ref=source_ref,
            ) from e
        if text.startswith(_BOM):
            text = text[1:]
        return text

    def canonicalize_text(self, text: str) -> str:
        """Apply the canonicalization rule to already decoded text."""

        text = text.replace("\r\n", "\n").replace("\r", "\n")
        text = unicodedata.normalize(self.config.normalization, text)
        if self.config.strip_trailing_whitespace:
            lines = [line.rstrip() for line in text.split("\n")]
            while lines and not lines[-1]:
                lines.pop()
            text = "\n".join(lines) + "\n" if lines else ""
        return text

    def canonicalize(self, raw: bytes, *, source_ref: Optional[str] = None) -> str:
        """Decode and canonicalize ``raw``."""

        return self.canonicalize_text(self.decode(raw, source_ref=source_ref))

    def address(self, raw: bytes, *, source_ref: Optional[str] = None) -> Addressed:
        """Canonicalize ``raw`` and compute its content identifier."""

        text = self.canonicalize(raw, source_ref=source_ref)
        canonical = text.encode("utf-8")
        return Addressed(id=hashlib.sha256(canonical).hexdigest(), text=text, canonical=canonical)

    def content_id(self, raw: bytes) -> Tuple[str, bytes]:
        """Return ``(id, canonical bytes)`` for ``raw``."""

        addressed = self.address(raw)
        return addressed.id, addressed.canonical

    def is_canonical(self, raw: bytes) -> bool:
        """Return ``True`` when ``raw`` already is in canonical form."""

        try:
            return self.address(raw).canonical == raw
        except EncodingError:
            return False


class StreamingContentHasher:
    """Incrementally hash stored canonical bytes (used by verification)."""

    def __init__(self) -> None:
        self._hasher = hashlib.sha256()
        self.size = 0

    def update(self, chunk: bytes) -> None:
        if chunk:
            self._hasher.update(chunk)
            self.size += len(chunk)

    def hexdigest(self) -> str:
        return self._hasher.hexdigest()
