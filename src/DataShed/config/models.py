"""
Pydantic v2 Configuration Models for DataShed

Provides strict, typed configuration for every shed subsystem:
- Shed metadata (name, version, description, authors)
- Content addressing (encoding, Unicode normalization, whitespace policy)
- Validation thresholds (length bounds, character classes, language)
- Import runtime (worker count, batch size, auto-promotion)
- Archive settings (compression level, lock timeout)
- Ledger locking
- Logging
- Top-level DataShedConfig as single source of truth

All models use extra="forbid" for strict validation. Environment variables
and CLI overrides follow: file < env < CLI precedence.
"""

from __future__ import annotations

from typing import ClassVar, FrozenSet, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

UNICODE_CATEGORIES: FrozenSet[str] = frozenset(
    "Lu Ll Lt Lm Lo Mn Mc Me Nd Nl No Pc Pd Ps Pe Pi Pf Po "
    "Sm Sc Sk So Zs Zl Zp Cc Cf Cs Co Cn".split()
)

# ============================================================================
# Shed Metadata
# ============================================================================


class ShedMetadata(BaseModel):
    """Descriptive metadata stored in ``datashed.yaml``."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    name: str = Field(default="", description="Name of the shed")
    version: str = Field(default="0.1.0", description="Version of the shed contents")
    description: Optional[str] = Field(default=None, description="A short blurb about the shed")
    authors: List[str] = Field(default_factory=list, description="People or organizations")


# ============================================================================
# Core Policies
# ============================================================================


class AddressingConfig(BaseModel):
    """Canonicalization rule applied before hashing document content."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", frozen=True)

    encoding: str = Field(default="utf-8", description="Encoding used to decode raw bytes")
    normalization: Literal["NFC", "NFKC", "NFD", "NFKD"] = Field(
        default="NFC", description="Unicode normalization form"
    )
    strip_trailing_whitespace: bool = Field(
        default=True,
        description="Right-strip lines, drop trailing blank lines, end with one newline",
    )

    @field_validator("encoding")
    @classmethod
    def validate_encoding(cls, v: str) -> str:
        import codecs

        try:
            codecs.lookup(v)
        except LookupError as e:
            raise ValueError(f"Unknown encoding: {v}") from e
        return v


class ValidationConfig(BaseModel):
    """Thresholds for the validator checks.

    Defaults are conservative choices for short authority-record texts; they
    are configuration, not constants, and can be overridden per shed.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", frozen=True)

    min_len: int = Field(default=20, description="Minimum length in characters")
    max_len: int = Field(default=100_000, description="Maximum length in characters")
    disallowed_categories: List[str] = Field(
        default_factory=lambda: ["Cc", "Cn", "Cs", "Co"],
        description="Unicode general categories counted as invalid",
    )
    max_invalid_ratio: float = Field(
        default=0.01, description="Maximum share of characters in disallowed categories"
    )
    languages: List[str] = Field(
        default_factory=lambda: ["ger", "eng"],
        description="Allow-list of ISO 639-2/B language codes",
    )
    min_language_confidence: float = Field(
        default=0.5, description="Below this confidence detected_language is null"
    )
    strict_language: bool = Field(
        default=False, description="Reject documents without a confident allowed language"
    )
    min_alpha_ratio: float = Field(
        default=0.5, description="Warn when the share of alphabetic characters is lower"
    )
    max_letter_frequency_distance: float = Field(
        default=0.12, description="Warn when the letter distribution is further from the profile"
    )
    min_type_token_ratio: float = Field(
        default=0.2, description="Warn when the type-token ratio is lower"
    )

    @field_validator("min_len")
    @classmethod
    def validate_min_len(cls, v: int) -> int:
        if v < 1:
            raise ValueError("min_len must be >= 1")
        return v

    @field_validator(
        "max_invalid_ratio",
        "min_language_confidence",
        "min_alpha_ratio",
        "min_type_token_ratio",
    )
    @classmethod
    def validate_ratio(cls, v: float) -> float:
        if not (0.0 <= v <= 1.0):
            raise ValueError("ratios must be within 0.0-1.0")
        return v

    @field_validator("disallowed_categories")
    @classmethod
    def validate_categories(cls, v: List[str]) -> List[str]:
        unknown = set(v) - UNICODE_CATEGORIES
        if unknown:
            raise ValueError(f"Unknown Unicode categories: {sorted(unknown)}")
        return v

    @field_validator("languages")
    @classmethod
    def validate_languages(cls, v: List[str]) -> List[str]:
        from DataShed.validation.language import SUPPORTED_LANGUAGES

        codes = [code.lower() for code in v]
        unsupported = set(codes) - set(SUPPORTED_LANGUAGES)
        if unsupported:
            raise ValueError(
                f"Unsupported languages: {sorted(unsupported)}. "
                f"Must be in {sorted(SUPPORTED_LANGUAGES)}"
            )
        if len(set(codes)) < 2:
            raise ValueError("languages must list at least two distinct codes")
        return codes

    @model_validator(mode="after")
    def validate_bounds(self) -> "ValidationConfig":
        if self.max_len < self.min_len:
            raise ValueError("max_len must be >= min_len")
        return self


class ImportConfig(BaseModel):
    """Runtime options of the import pipeline."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    workers: int = Field(
        default=0, description="Worker threads; 0 uses the number of available CPUs"
    )
    batch_size: int = Field(default=500, description="Candidates committed per unit of work")
    auto_promote: bool = Field(
        default=False, description="Move accepted documents straight to ready"
    )
    lock_timeout_s: float = Field(
        default=300.0, description="Seconds to wait for an import running in another process"
    )

    @field_validator("lock_timeout_s")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v < 0:
            raise ValueError("lock_timeout_s must be >= 0")
        return v

    @field_validator("workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        if v < 0:
            raise ValueError("workers must be >= 0")
        return v

    @field_validator("batch_size")
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("batch_size must be >= 1")
        return v

    def resolved_workers(self) -> int:
        """Return the effective worker count (``0`` means all CPUs)."""

        if self.workers:
            return self.workers
        import os

        return max(1, os.cpu_count() or 1)


class ArchiveConfig(BaseModel):
    """Bundle creation settings."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    compression_level: int = Field(default=6, description="gzip level (1 fast - 9 best)")
    lock_timeout_s: float = Field(
        default=0.0, description="Seconds to wait for the archive lock (0 = fail fast)"
    )
    verify_after_write: bool = Field(
        default=True, description="Re-read and verify archives before committing"
    )

    @field_validator("compression_level")
    @classmethod
    def validate_level(cls, v: int) -> int:
        if not (1 <= v <= 9):
            raise ValueError("compression_level must be 1-9")
        return v

    @field_validator("lock_timeout_s")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v < 0:
            raise ValueError("lock_timeout_s must be >= 0")
        return v


class LedgerConfig(BaseModel):
    """Ledger file locking."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    lock_timeout_s: float = Field(
        default=30.0, description="Seconds to wait for the cross-process ledger lock"
    )

    @field_validator("lock_timeout_s")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v < 0:
            raise ValueError("lock_timeout_s must be >= 0")
        return v


class LoggingConfig(BaseModel):
    """Logging output."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Root log level"
    )
    json_format: bool = Field(default=False, description="Emit JSON log lines")
    file: Optional[str] = Field(default=None, description="Optional JSONL log file")

    @field_validator("level", mode="before")
    @classmethod
    def upper_level(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v


# ============================================================================
# Top-Level Configuration
# ============================================================================


class DataShedConfig(BaseModel):
    """
    Single source of truth for DataShed configuration.

    Loaded from file (YAML/JSON), overlaid with environment variables,
    and finally overridden by CLI arguments. Precedence: file < env < CLI.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", validate_assignment=True)

    metadata: ShedMetadata = Field(default_factory=ShedMetadata, description="Shed metadata")
    addressing: AddressingConfig = Field(
        default_factory=AddressingConfig, description="Canonicalization rule"
    )
    validation: ValidationConfig = Field(
        default_factory=ValidationConfig, description="Validator thresholds"
    )
    importer: ImportConfig = Field(default_factory=ImportConfig, description="Import runtime")
    archive: ArchiveConfig = Field(default_factory=ArchiveConfig, description="Bundle settings")
    ledger: LedgerConfig = Field(default_factory=LedgerConfig, description="Ledger locking")
    logging: LoggingConfig = Field(default_factory=LoggingConfig, description="Logging output")

    def config_hash(self) -> str:
        """
        Compute deterministic SHA256 hash of config for reproducibility.

        Returns:
            Hex-encoded SHA256 hash of normalized config JSON.
        """
        import hashlib
        import json

        normalized = json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(normalized.encode()).hexdigest()
