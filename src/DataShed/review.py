# === NAVMAP v1 ===
# {
#   "module": "DataShed.review",
#   "purpose": "Operator and rule-driven review transitions (promote, discard, reinstate, ratings).",
#   "sections": [
#     {"id": "outcome", "name": "Outcome", "anchor": "class-outcome", "kind": "class"},
#     {"id": "batchresult", "name": "BatchResult", "anchor": "class-batchresult", "kind": "class"},
#     {"id": "reviewworkflow", "name": "ReviewWorkflow", "anchor": "class-reviewworkflow", "kind": "class"},
#     {"id": "read-ratings", "name": "read_ratings", "anchor": "function-read-ratings", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Review workflow.

Single-document operations check the state machine before mutating and commit
on success; a failed check raises and leaves the ledger untouched.

Bulk operations apply the same contract per id and never fail as a whole for
a bad id: every id gets an :class:`Outcome` in the :class:`BatchResult`. An id
given more than once is applied and reported once. All successful changes of
one bulk call are committed together.

Quality ratings map onto the same transitions:

======  =================================
Rating  Effect
======  =================================
C, C-   promote (``pending -> ready``)
I       discard with reason ``rating:I``
P+/P/P- no change (``skipped``)
======  =================================
"""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from DataShed.errors import DocumentLocked, DocumentNotFound, InvalidTransition
from DataShed.ledger.ledger import Ledger
from DataShed.models import DocumentRecord, Status

__all__ = ["Outcome", "BatchResult", "ReviewWorkflow", "RATINGS", "read_ratings"]

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    OK = "ok"
    INVALID_TRANSITION = "invalid_transition"
    NOT_FOUND = "not_found"
    LOCKED = "locked"
    SKIPPED = "skipped"

    def __str__(self) -> str:
        return self.value


@dataclass
class BatchResult:
    """Per-id outcomes of a bulk review operation."""

    outcomes: Dict[str, Outcome] = field(default_factory=dict)
    messages: Dict[str, str] = field(default_factory=dict)

    def record(self, doc_id: str, outcome: Outcome, message: str = "") -> None:
        self.outcomes[doc_id] = outcome
        if message:
            self.messages[doc_id] = message

    @property
    def succeeded(self) -> List[str]:
        return [i for i, o in self.outcomes.items() if o is Outcome.OK]

    @property
    def failed(self) -> List[str]:
        return [i for i, o in self.outcomes.items() if o not in (Outcome.OK, Outcome.SKIPPED)]

    @property
    def ok(self) -> bool:
        return not self.failed

    def counts(self) -> Dict[str, int]:
        totals: Dict[str, int] = {}
        for outcome in self.outcomes.values():
            totals[outcome.value] = totals.get(outcome.value, 0) + 1
        return totals


# Rating -> (target status, reason); ``None`` means no change.
RATINGS: Mapping[str, Optional[Tuple[Status, Optional[str]]]] = {
    "C": (Status.READY, None),
    "C-": (Status.READY, None),
    "I": (Status.DISCARDED, "rating:I"),
    "P+": None,
    "P": None,
    "P-": None,
}


def read_ratings(path: Union[str, Path]) -> List[Tuple[str, str]]:
    """Read ``(id, rating)`` pairs from a CSV file with ``id,rating[,comment]`` columns.

    Raises:
        ValueError: On missing columns or unknown ratings.
    """

    pairs: List[Tuple[str, str]] = []
    with Path(path).open("r", encoding="utf-8", newline="") as handle:
        reader = csv.DictReader(handle)
        if not reader.fieldnames or not {"id", "rating"} <= set(reader.fieldnames):
            raise ValueError(f"{path}: expected columns 'id' and 'rating'")
        for line_no, row in enumerate(reader, start=2):
            rating = (row.get("rating") or "").strip()
            if rating not in RATINGS:
                raise ValueError(f"{path}:{line_no}: unknown rating {rating!r}")
            pairs.append(((row.get("id") or "").strip(), rating))
    return pairs


class ReviewWorkflow:
    """Status transitions driven by review decisions."""

    def __init__(self, ledger: Ledger) -> None:
        self.ledger = ledger

    def promote(self, doc_id: str) -> DocumentRecord:
        """Approve a pending document for archival (``pending -> ready``)."""

        return self.apply(doc_id, Status.READY)

    def discard(self, doc_id: str, reason: Optional[str] = None) -> DocumentRecord:
        """Reject a pending or ready document."""

        return self.apply(doc_id, Status.DISCARDED, reason=reason or "review")

    def reinstate(self, doc_id: str) -> DocumentRecord:
        """Undo a discard (``discarded -> pending``)."""

        return self.apply(doc_id, Status.PENDING)

    def apply(self, doc_id: str, target: Status, *, reason: Optional[str] = None) -> DocumentRecord:
        """Move ``doc_id`` to ``target``.

        Raises:
            InvalidTransition: ``target`` is not reachable, or is ``archived``
                (reserved for the archiver).
            DocumentLocked: The document is part of an in-flight seal.
            DocumentNotFound: Unknown id.
        """

        if target is Status.ARCHIVED:
            current = self.ledger.get(doc_id).status
            raise InvalidTransition(current, target, doc_id)
        record = self.ledger.transition(doc_id, target, reason=reason)
        logger.info(f"{doc_id}: -> {target.value}" + (f" ({reason})" if reason else ""))
        return record

    # ------------------------------------------------------------------
    # Bulk variants
    # ------------------------------------------------------------------

    def _bulk(self, items: Iterable[Tuple[str, Callable[[str], object]]]) -> BatchResult:
        result = BatchResult()
        with self.ledger.transaction():
            for doc_id, op in items:
                if doc_id in result.outcomes:
                    continue
                try:
                    op(doc_id)
                except DocumentNotFound as e:
                    result.record(doc_id, Outcome.NOT_FOUND, str(e))
                except DocumentLocked as e:
                    result.record(doc_id, Outcome.LOCKED, str(e))
                except InvalidTransition as e:
                    result.record(doc_id, Outcome.INVALID_TRANSITION, str(e))
                else:
                    result.record(doc_id, Outcome.OK)
        if result.failed:
            logger.warning(f"Bulk review: {len(result.failed)} of {len(result.outcomes)} failed")
        return result

    def promote_many(self, ids: Iterable[str]) -> BatchResult:
        return self._bulk((doc_id, self.promote) for doc_id in ids)

    def discard_many(self, ids: Iterable[str], reason: Optional[str] = None) -> BatchResult:
        return self._bulk((doc_id, lambda i: self.discard(i, reason)) for doc_id in ids)

    def reinstate_many(self, ids: Iterable[str]) -> BatchResult:
        return self._bulk((doc_id, self.reinstate) for doc_id in ids)

    def apply_ratings(self, ratings: Iterable[Tuple[str, str]]) -> BatchResult:
        """Apply ``(id, rating)`` pairs; unknown ratings raise ``ValueError`` up front."""

        pairs = list(ratings)
        for _, rating in pairs:
            if rating not in RATINGS:
                raise ValueError(f"Unknown rating: {rating!r}")

        result = BatchResult()
        actionable = []
        seen = set()
        for doc_id, rating in pairs:
            if doc_id in seen:
                continue
            seen.add(doc_id)
            effect = RATINGS[rating]
            if effect is None:
                result.record(doc_id, Outcome.SKIPPED, f"rating {rating}")
            else:
                target, reason = effect
                actionable.append((doc_id, lambda i, t=target, r=reason: self.apply(i, t, reason=r)))
        applied = self._bulk(actionable)
        result.outcomes.update(applied.outcomes)
        result.messages.update(applied.messages)
        return result
