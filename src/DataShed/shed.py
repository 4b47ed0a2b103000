# === NAVMAP v1 ===
# {
#   "module": "DataShed.shed",
#   "purpose": "Shed directory layout, initialisation, discovery and component wiring.",
#   "sections": [
#     {"id": "shedlayout", "name": "ShedLayout", "anchor": "class-shedlayout", "kind": "class"},
#     {"id": "discover-root", "name": "discover_root", "anchor": "function-discover-root", "kind": "function"},
#     {"id": "shed", "name": "Shed", "anchor": "class-shed", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""A shed is a directory holding config, ledger, content store and bundles::

    <root>/datashed.yaml
    <root>/ledger.csv
    <root>/bundles.jsonl
    <root>/data/ab/cd/<id>.txt
    <root>/bundles/<bundle_id>.tar.gz
    <root>/bundles/<bundle_id>.manifest.json
    <root>/tmp/
    <root>/locks/

:class:`Shed` owns one :class:`~DataShed.ledger.Ledger` and hands it to every
component explicitly; there is no module-level state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from DataShed.addressing import ContentAddresser
from DataShed.archive.archiver import Archiver
from DataShed.config.loader import load_config, save_config
from DataShed.config.models import DataShedConfig
from DataShed.consistency import ConsistencyChecker
from DataShed.errors import ConfigError
from DataShed.ledger.bundles import BundleRegistry
from DataShed.ledger.ledger import Ledger, write_ledger_file
from DataShed.pipeline.importer import IMPORT_LOCK, ImportPipeline
from DataShed.query import LedgerQuery
from DataShed.review import ReviewWorkflow
from DataShed.storage.content_store import ContentStore
from DataShed.validation.language import LanguageDetector
from DataShed.validation.validator import Validator

__all__ = ["CONFIG_FILE", "ShedLayout", "Shed", "discover_root"]

logger = logging.getLogger(__name__)

CONFIG_FILE = "datashed.yaml"


@dataclass(frozen=True)
class ShedLayout:
    """Well-known paths below a shed root."""

    root: Path

    @property
    def config(self) -> Path:
        return self.root / CONFIG_FILE

    @property
    def ledger(self) -> Path:
        return self.root / "ledger.csv"

    @property
    def bundles_file(self) -> Path:
        return self.root / "bundles.jsonl"

    @property
    def data(self) -> Path:
        return self.root / "data"

    @property
    def bundles(self) -> Path:
        return self.root / "bundles"

    @property
    def tmp(self) -> Path:
        return self.root / "tmp"

    @property
    def locks(self) -> Path:
        return self.root / "locks"

    def directories(self):
        return (self.data, self.bundles, self.tmp, self.locks)


def discover_root(start: Optional[Path] = None) -> Path:
    """Return the nearest directory at or above ``start`` holding ``datashed.yaml``.

    Raises:
        ConfigError: If no shed is found.
    """

    current = (start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / CONFIG_FILE).is_file():
            return candidate
    raise ConfigError(f"Not a datashed (or any parent up to the root): {current}")


class Shed:
    """An opened shed with all components wired to one ledger."""

    def __init__(
        self,
        root: Path,
        config: DataShedConfig,
        *,
        detector: Optional[LanguageDetector] = None,
    ) -> None:
        self.layout = ShedLayout(Path(root))
        self.root = self.layout.root
        self.config = config
        self.ledger = Ledger.open(self.layout.ledger, lock_timeout_s=config.ledger.lock_timeout_s)
        self.registry = BundleRegistry.load(
            self.layout.bundles_file, referenced=self.ledger.archived_bundle_ids()
        )
        self.store = ContentStore(self.layout.data)
        self.addresser = ContentAddresser(config.addressing)
        self.validator = Validator(config.validation, detector=detector)
        self._archiver: Optional[Archiver] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @classmethod
    def init(
        cls,
        root: Path,
        *,
        name: Optional[str] = None,
        config: Optional[DataShedConfig] = None,
        force: bool = False,
        detector: Optional[LanguageDetector] = None,
    ) -> "Shed":
        """Create the shed layout at ``root`` and open it.

        Raises:
            ConfigError: ``root`` already holds a shed and ``force`` is off.
        """

        layout = ShedLayout(Path(root))
        if layout.config.exists() and not force:
            raise ConfigError(f"{layout.root} already contains a datashed")
        config = config or DataShedConfig()
        if name is not None or not config.metadata.name:
            metadata = config.metadata.model_copy(update={"name": name or layout.root.resolve().name})
            config = config.model_copy(update={"metadata": metadata})
        layout.root.mkdir(parents=True, exist_ok=True)
        for directory in layout.directories():
            directory.mkdir(exist_ok=True)
        save_config(config, layout.config)
        if not layout.ledger.exists():
            write_ledger_file(layout.ledger, [])
        if not layout.bundles_file.exists():
            layout.bundles_file.touch()
        logger.info(f"Initialized datashed '{config.metadata.name}' in {layout.root}")
        return cls(layout.root, config, detector=detector)

    @classmethod
    def open(
        cls,
        root: Optional[Path] = None,
        *,
        cli_overrides: Optional[Dict[str, Any]] = None,
        detector: Optional[LanguageDetector] = None,
    ) -> "Shed":
        """Open the shed at ``root`` (or the one containing the working directory)."""

        resolved = Path(root) if root is not None else discover_root()
        layout = ShedLayout(resolved)
        if not layout.config.is_file():
            raise ConfigError(f"Not a datashed: {resolved} (missing {CONFIG_FILE})")
        config = load_config(layout.config, cli_overrides=cli_overrides)
        return cls(resolved, config, detector=detector)

    def close(self) -> None:
        self.ledger.close()

    def __enter__(self) -> "Shed":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    def pipeline(self) -> ImportPipeline:
        return ImportPipeline(
            self.ledger,
            self.store,
            self.addresser,
            self.validator,
            self.config.importer,
            lock_path=self.layout.locks / IMPORT_LOCK,
        )

    def review(self) -> ReviewWorkflow:
        return ReviewWorkflow(self.ledger)

    def archiver(self) -> Archiver:
        if self._archiver is None:
            self._archiver = Archiver(
                self.ledger, self.store, self.registry, self.root, self.config.archive
            )
        return self._archiver

    def query(self) -> LedgerQuery:
        return LedgerQuery(self.ledger, self.store, self.registry, self.root)

    def checker(self) -> ConsistencyChecker:
        return ConsistencyChecker(
            self.ledger,
            self.store,
            self.addresser,
            registry=self.registry,
            root=self.root,
            archiver=self.archiver(),
            import_lock=self.layout.locks / IMPORT_LOCK,
        )
