# === NAVMAP v1 ===
# {
#   "module": "DataShed.validation.validator",
#   "purpose": "Ordered content checks producing Accept/Reject verdicts for imported documents.",
#   "sections": [
#     {"id": "rejectreason", "name": "RejectReason", "anchor": "class-rejectreason", "kind": "class"},
#     {"id": "accept", "name": "Accept", "anchor": "class-accept", "kind": "class"},
#     {"id": "reject", "name": "Reject", "anchor": "class-reject", "kind": "class"},
#     {"id": "validator", "name": "Validator", "anchor": "class-validator", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Document validator.

Checks run in order and stop at the first failure:

1. length: non-empty and ``min_len <= len(text) <= max_len`` characters;
2. character classes: share of disallowed Unicode categories at most
   ``max_invalid_ratio``;
3. language: best guess over the allow-list. A guess below
   ``min_language_confidence`` leaves the language unset and only rejects in
   ``strict_language`` mode.

Accepted documents carry soft warnings from :mod:`DataShed.validation.metrics`.
The validator holds no mutable state besides the lazily built detector, so one
instance is shared by all import workers.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Union

from DataShed.config.models import ValidationConfig
from DataShed.errors import ValidationRejection
from DataShed.validation import metrics
from DataShed.validation.language import LanguageDetector, get_detector

__all__ = ["RejectReason", "SoftWarning", "Accept", "Reject", "Verdict", "Validator"]

logger = logging.getLogger(__name__)


class RejectReason(str, Enum):
    """Why a document was rejected."""

    LENGTH_OUT_OF_BOUNDS = "LengthOutOfBounds"
    INVALID_CHARACTER_RATIO = "InvalidCharacterRatio"
    UNSUPPORTED_LANGUAGE = "UnsupportedLanguage"

    def __str__(self) -> str:
        return self.value


class SoftWarning(str, Enum):
    """Soft findings that never reject a document."""

    LOW_ALPHA_RATIO = "low_alpha_ratio"
    LETTER_FREQUENCY_OUTLIER = "letter_frequency_outlier"
    LOW_TYPE_TOKEN_RATIO = "low_type_token_ratio"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Accept:
    language: Optional[str] = None
    score: Optional[float] = None
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    accepted = True


@dataclass(frozen=True)
class Reject:
    reason: RejectReason
    detail: str = ""

    accepted = False

    def to_exception(self) -> ValidationRejection:
        return ValidationRejection(self.reason.value, self.detail)


Verdict = Union[Accept, Reject]


class Validator:
    """Apply the configured checks to canonical text."""

    def __init__(
        self,
        config: Optional[ValidationConfig] = None,
        detector: Optional[LanguageDetector] = None,
    ) -> None:
        self.config = config or ValidationConfig()
        self._categories = frozenset(self.config.disallowed_categories)
        self._detector = detector
        self._detector_lock = threading.Lock()

    @property
    def detector(self) -> LanguageDetector:
        if self._detector is None:
            with self._detector_lock:
                if self._detector is None:
                    self._detector = get_detector(self.config.languages)
        return self._detector

    def validate(self, text: str) -> Verdict:
        """Return the verdict for ``text``."""

        cfg = self.config
        length = len(text)
        if length == 0:
            return Reject(RejectReason.LENGTH_OUT_OF_BOUNDS, "empty after normalization")
        if not (cfg.min_len <= length <= cfg.max_len):
            return Reject(
                RejectReason.LENGTH_OUT_OF_BOUNDS,
                f"length {length} outside [{cfg.min_len}, {cfg.max_len}]",
            )

        ratio = metrics.invalid_char_ratio(text, self._categories)
        if ratio > cfg.max_invalid_ratio:
            return Reject(
                RejectReason.INVALID_CHARACTER_RATIO,
                f"invalid character ratio {ratio:.4f} > {cfg.max_invalid_ratio}",
            )

        language: Optional[str] = None
        score: Optional[float] = None
        detection = self.detector.detect(text)
        if detection is not None and detection.language in cfg.languages:
            score = round(detection.confidence, 4)
            if detection.confidence >= cfg.min_language_confidence:
                language = detection.language
        if language is None and cfg.strict_language:
            found = f"{detection.language} ({detection.confidence:.2f})" if detection else "none"
            return Reject(RejectReason.UNSUPPORTED_LANGUAGE, f"no confident language, best guess {found}")

        return Accept(language=language, score=score, warnings=self._warnings(text, language))

    def validate_or_raise(self, text: str) -> Accept:
        """Like :meth:`validate` but raise :class:`ValidationRejection` on reject."""

        verdict = self.validate(text)
        if isinstance(verdict, Reject):
            raise verdict.to_exception()
        return verdict

    def _warnings(self, text: str, language: Optional[str]) -> Tuple[str, ...]:
        cfg = self.config
        found = []
        if metrics.alpha_ratio(text) < cfg.min_alpha_ratio:
            found.append(SoftWarning.LOW_ALPHA_RATIO.value)
        distance = metrics.letter_frequency_distance(text, language)
        if distance is not None and distance > cfg.max_letter_frequency_distance:
            found.append(SoftWarning.LETTER_FREQUENCY_OUTLIER.value)
        if metrics.type_token_ratio(text) < cfg.min_type_token_ratio:
            found.append(SoftWarning.LOW_TYPE_TOKEN_RATIO.value)
        return tuple(found)
