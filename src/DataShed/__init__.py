# === NAVMAP v1 ===
# {
#   "module": "DataShed",
#   "purpose": "Package initialization for DataShed",
#   "sections": [
#     {"id": "getattr", "name": "__getattr__", "anchor": "function-getattr", "kind": "function"},
#     {"id": "dir", "name": "__dir__", "anchor": "function-dir", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Public API for DataShed, a content-addressed store of curated text documents.

Documents are imported, validated, reviewed and finally sealed into
reproducible bundles. Exports are resolved lazily so that ``import DataShed``
does not load the language models or numpy.
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any, Dict, Tuple

__version__ = "0.3.0"

_EXPORT_MAP: Dict[str, Tuple[str, str]] = {
    "Shed": ("DataShed.shed", "Shed"),
    "ShedLayout": ("DataShed.shed", "ShedLayout"),
    "DataShedConfig": ("DataShed.config.models", "DataShedConfig"),
    "load_config": ("DataShed.config.loader", "load_config"),
    "ContentAddresser": ("DataShed.addressing", "ContentAddresser"),
    "ContentStore": ("DataShed.storage.content_store", "ContentStore"),
    "Ledger": ("DataShed.ledger.ledger", "Ledger"),
    "BundleRegistry": ("DataShed.ledger.bundles", "BundleRegistry"),
    "Validator": ("DataShed.validation.validator", "Validator"),
    "ImportPipeline": ("DataShed.pipeline.importer", "ImportPipeline"),
    "ReviewWorkflow": ("DataShed.review", "ReviewWorkflow"),
    "Archiver": ("DataShed.archive.archiver", "Archiver"),
    "Selector": ("DataShed.archive.archiver", "Selector"),
    "restore_bundle": ("DataShed.archive.restore", "restore_bundle"),
    "LedgerQuery": ("DataShed.query", "LedgerQuery"),
    "ConsistencyChecker": ("DataShed.consistency", "ConsistencyChecker"),
    "Candidate": ("DataShed.models", "Candidate"),
    "DocumentRecord": ("DataShed.models", "DocumentRecord"),
    "BundleRecord": ("DataShed.models", "BundleRecord"),
    "Status": ("DataShed.models", "Status"),
    "DataShedError": ("DataShed.errors", "DataShedError"),
}

__all__ = [*_EXPORT_MAP, "__version__"]

if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from DataShed.addressing import ContentAddresser
    from DataShed.archive.archiver import Archiver, Selector
    from DataShed.archive.restore import restore_bundle
    from DataShed.config.loader import load_config
    from DataShed.config.models import DataShedConfig
    from DataShed.consistency import ConsistencyChecker
    from DataShed.errors import DataShedError
    from DataShed.ledger.bundles import BundleRegistry
    from DataShed.ledger.ledger import Ledger
    from DataShed.models import BundleRecord, Candidate, DocumentRecord, Status
    from DataShed.pipeline.importer import ImportPipeline
    from DataShed.query import LedgerQuery
    from DataShed.review import ReviewWorkflow
    from DataShed.shed import Shed, ShedLayout
    from DataShed.storage.content_store import ContentStore
    from DataShed.validation.validator import Validator


def __getattr__(name: str) -> Any:
    """Lazily import public exports."""

    target = _EXPORT_MAP.get(name)
    if target is None:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
    module_name, attribute = target
    value = getattr(import_module(module_name), attribute)
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    return sorted(set(globals()) | set(__all__))
