"""Language detection over a configured allow-list.

Codes are ISO 639-2/B (``ger``, ``eng``, ...), matching the values stored in
the ``detected_language`` column. Detection is delegated to ``lingua``; the
detector is built once per allow-list and shared between worker threads.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Optional, Protocol, Sequence, Tuple

from lingua import Language, LanguageDetectorBuilder

__all__ = [
    "SUPPORTED_LANGUAGES",
    "Detection",
    "LanguageDetector",
    "LinguaDetector",
    "get_detector",
]

logger = logging.getLogger(__name__)

SUPPORTED_LANGUAGES: Dict[str, Language] = {
    "ger": Language.GERMAN,
    "eng": Language.ENGLISH,
    "fre": Language.FRENCH,
    "spa": Language.SPANISH,
    "ita": Language.ITALIAN,
    "dut": Language.DUTCH,
    "lat": Language.LATIN,
    "por": Language.PORTUGUESE,
    "pol": Language.POLISH,
    "swe": Language.SWEDISH,
    "dan": Language.DANISH,
}

_CODES: Dict[Language, str] = {language: code for code, language in SUPPORTED_LANGUAGES.items()}


@dataclass(frozen=True)
class Detection:
    """Most likely language and its confidence in ``[0, 1]``."""

    language: str
    confidence: float


class LanguageDetector(Protocol):
    """Anything that can pick the most likely language out of an allow-list."""

    def detect(self, text: str) -> Optional[Detection]: ...


class LinguaDetector:
    """:class:`LanguageDetector` backed by a ``lingua`` detector."""

    def __init__(self, languages: Sequence[str]) -> None:
        codes = tuple(sorted({code.lower() for code in languages}))
        unknown = [code for code in codes if code not in SUPPORTED_LANGUAGES]
        if unknown:
            raise ValueError(f"Unsupported languages: {unknown}")
        if len(codes) < 2:
            raise ValueError("At least two languages are required for detection")
        self.languages: Tuple[str, ...] = codes
        self._detector = LanguageDetectorBuilder.from_languages(
            *(SUPPORTED_LANGUAGES[code] for code in codes)
        ).build()

    def detect(self, text: str) -> Optional[Detection]:
        values = self._detector.compute_language_confidence_values(text)
        if not values:
            return None
        best = values[0]
        code = _CODES.get(best.language)
        if code is None:
            return None
        return Detection(language=code, confidence=float(best.value))


@lru_cache(maxsize=8)
def _cached_detector(languages: Tuple[str, ...]) -> LinguaDetector:
    logger.debug(f"Building language detector for {', '.join(languages)}")
    return LinguaDetector(languages)


def get_detector(languages: Sequence[str]) -> LinguaDetector:
    """Return a shared detector for ``languages`` (order-insensitive)."""

    return _cached_detector(tuple(sorted({code.lower() for code in languages})))
