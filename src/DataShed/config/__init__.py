"""Configuration models and loader for DataShed."""

from __future__ import annotations

from .loader import export_config_schema, load_config, save_config, validate_config_file
from .models import (
    AddressingConfig,
    ArchiveConfig,
    DataShedConfig,
    ImportConfig,
    LedgerConfig,
    LoggingConfig,
    ShedMetadata,
    ValidationConfig,
)

__all__ = [
    "AddressingConfig",
    "ArchiveConfig",
    "DataShedConfig",
    "ImportConfig",
    "LedgerConfig",
    "LoggingConfig",
    "ShedMetadata",
    "ValidationConfig",
    "export_config_schema",
    "load_config",
    "save_config",
    "validate_config_file",
]
