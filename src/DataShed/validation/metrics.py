"""Text quality metrics used for soft validator warnings.

All metrics are defined on already canonicalized text. They never reject a
document; :class:`~DataShed.validation.validator.Validator` turns values past
the configured thresholds into warnings.
"""

from __future__ import annotations

import re
import unicodedata
from collections import Counter
from typing import Dict, Optional

import numpy as np

__all__ = [
    "LETTER_PROFILES",
    "alpha_ratio",
    "invalid_char_ratio",
    "letter_frequencies",
    "letter_frequency_distance",
    "type_token_ratio",
]

_WORD = re.compile(r"\w+", re.UNICODE)
_EXEMPT = frozenset("\n\t\r")

# Relative letter frequencies of German and English text, in alphabet order.
LETTER_PROFILES: Dict[str, tuple[str, np.ndarray]] = {
    "ger": (
        "abcdefghijklmnopqrstuvwxyzßäöü",
        np.array(
            [
                0.06006, 0.02148, 0.02690, 0.04718, 0.16006, 0.01832, 0.03064,
                0.04249, 0.07752, 0.00297, 0.01536, 0.03787, 0.02798, 0.09660,
                0.02684, 0.01049, 0.00028, 0.07737, 0.06343, 0.06369, 0.03820,
                0.00918, 0.01427, 0.00051, 0.00107, 0.01237, 0.00170, 0.00548,
                0.00269, 0.00683,
            ]
        ),
    ),
    "eng": (
        "abcdefghijklmnopqrstuvwxyz",
        np.array(
            [
                0.08167, 0.01492, 0.02782, 0.04253, 0.12702, 0.02228, 0.02015,
                0.06094, 0.06966, 0.00253, 0.01772, 0.04025, 0.02406, 0.06749,
                0.07507, 0.01929, 0.00950, 0.05987, 0.06327, 0.09056, 0.02758,
                0.00978, 0.02360, 0.00250, 0.01974, 0.00074,
            ]
        ),
    ),
}


def alpha_ratio(text: str) -> float:
    """Share of alphabetic characters; ``0.0`` for empty text."""

    if not text:
        return 0.0
    return sum(1 for c in text if c.isalpha()) / len(text)


def type_token_ratio(text: str) -> float:
    """Unique lower-cased words divided by all words; ``0.0`` without words."""

    words = [w.lower() for w in _WORD.findall(text)]
    if not words:
        return 0.0
    return len(set(words)) / len(words)


def invalid_char_ratio(text: str, categories: frozenset[str] | set[str]) -> float:
    """Share of characters whose general category is in ``categories``.

    Line feeds, tabs and carriage returns are never counted as invalid.
    """

    if not text:
        return 0.0
    invalid = sum(
        1 for c in text if c not in _EXEMPT and unicodedata.category(c) in categories
    )
    return invalid / len(text)


def letter_frequencies(text: str, alphabet: str) -> np.ndarray:
    """Relative frequencies of the letters of ``alphabet`` in ``text``.

    The text is NFC-normalized and lower-cased first; characters outside the
    alphabet are ignored. Without any alphabet letter the result is all zeros.
    """

    normalized = unicodedata.normalize("NFC", text).lower()
    counts = Counter(c for c in normalized if c in alphabet)
    total = sum(counts.values())
    if total == 0:
        return np.zeros(len(alphabet))
    return np.array([counts.get(c, 0) / total for c in alphabet], dtype=float)


def letter_frequency_distance(text: str, language: Optional[str]) -> Optional[float]:
    """Euclidean distance to the letter profile of ``language``.

    Returns ``None`` when no profile exists for ``language``.
    """

    if language is None or language not in LETTER_PROFILES:
        return None
    alphabet, profile = LETTER_PROFILES[language]
    observed = letter_frequencies(text, alphabet)
    return float(np.linalg.norm(observed - profile))
