# === NAVMAP v1 ===
# {
#   "module": "tests.datashed.conftest",
#   "purpose": "Shared fixtures for the DataShed test suite",
#   "sections": [
#     {"id": "fakedetector", "name": "FakeDetector", "anchor": "class-fakedetector", "kind": "class"},
#     {"id": "fixtures", "name": "Fixtures", "anchor": "FIX", "kind": "fixtures"}
#   ]
# }
# === /NAVMAP ===

"""Shared fixtures for the DataShed suite.

Language detection is replaced by :class:`FakeDetector` so tests never load
the real language models.
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Dict, Iterator, Optional

import pytest

from DataShed.config.models import DataShedConfig
from DataShed.models import Candidate
from DataShed.shed import Shed
from DataShed.validation.language import Detection

GERMAN_TEXTS = [
    "Die Bibliothek sammelt Handschriften aus dem achtzehnten Jahrhundert.\n",
    "Der Verlag wurde in Leipzig gegründet und zog später nach Berlin um.\n",
    "Seine Briefe an die Schwester sind im Stadtarchiv überliefert worden.\n",
    "Die Sammlung umfasst Karten, Drucke und zahlreiche Zeichnungen.\n",
    "Nach dem Studium arbeitete sie als Lehrerin in einer kleinen Stadt.\n",
]


class FakeDetector:
    """Deterministic stand-in for the lingua detector.

    Texts containing a key of ``overrides`` are reported with that detection;
    everything else gets ``default``.
    """

    def __init__(
        self,
        default: Optional[Detection] = Detection("ger", 0.95),
        overrides: Optional[Dict[str, Optional[Detection]]] = None,
    ) -> None:
        self.default = default
        self.overrides = dict(overrides or {})
        self.calls = 0

    def detect(self, text: str) -> Optional[Detection]:
        self.calls += 1
        for marker, detection in self.overrides.items():
            if marker in text:
                return detection
        return self.default


def content_id(text: str) -> str:
    """Id of already canonical ``text``."""

    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@pytest.fixture(autouse=True)
def _reset_datashed_logging() -> Iterator[None]:
    """Undo handler changes made by ``setup_logging`` (the CLI calls it)."""

    yield
    logger = logging.getLogger("DataShed")
    for handler in list(logger.handlers):
        if getattr(handler, "_datashed_managed", False):
            logger.removeHandler(handler)
            handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def detector() -> FakeDetector:
    return FakeDetector()


@pytest.fixture
def shed_config() -> DataShedConfig:
    """Single worker, small batches: deterministic and fast."""

    return DataShedConfig.model_validate({"importer": {"workers": 1, "batch_size": 2}})


@pytest.fixture
def shed(tmp_path: Path, shed_config: DataShedConfig, detector: FakeDetector) -> Iterator[Shed]:
    with Shed.init(tmp_path / "shed", name="test", config=shed_config, detector=detector) as opened:
        yield opened


@pytest.fixture
def german_candidates() -> list[Candidate]:
    return [
        Candidate(content=text.encode("utf-8"), source_ref=f"gnd-{i:03d}")
        for i, text in enumerate(GERMAN_TEXTS)
    ]


@pytest.fixture
def imported(shed: Shed, german_candidates: list[Candidate]) -> list[str]:
    """Import the German texts and return their ids in input order."""

    shed.pipeline().run(german_candidates)
    return [content_id(text) for text in GERMAN_TEXTS]


@pytest.fixture
def ready(shed: Shed, imported: list[str]) -> list[str]:
    """Imported and promoted ids."""

    result = shed.review().promote_many(imported)
    assert result.ok
    return imported
