"""Document validation: length, character classes, language and quality metrics."""

from DataShed.validation.language import SUPPORTED_LANGUAGES, Detection, LinguaDetector, get_detector
from DataShed.validation.validator import Accept, Reject, RejectReason, Validator, Verdict

__all__ = [
    "SUPPORTED_LANGUAGES",
    "Accept",
    "Detection",
    "LinguaDetector",
    "Reject",
    "RejectReason",
    "Validator",
    "Verdict",
    "get_detector",
]
