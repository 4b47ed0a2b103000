# === NAVMAP v1 ===
# {
#   "module": "DataShed.config.loader",
#   "purpose": "Compose the shed configuration from file, environment and CLI layers.",
#   "sections": [
#     {"id": "read-config-file", "name": "read_config_file", "anchor": "function-read-config-file", "kind": "function"},
#     {"id": "env-layer", "name": "env_layer", "anchor": "function-env-layer", "kind": "function"},
#     {"id": "deep-merge", "name": "_deep_merge", "anchor": "function-deep-merge", "kind": "function"},
#     {"id": "load-config", "name": "load_config", "anchor": "function-load-config", "kind": "function"},
#     {"id": "save-config", "name": "save_config", "anchor": "function-save-config", "kind": "function"},
#     {"id": "export-config-schema", "name": "export_config_schema", "anchor": "function-export-config-schema", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""
Shed configuration layers.

A shed's effective configuration is composed from three layers, later layers
winning key by key:

1. ``<shed>/datashed.yaml`` (or any ``.yaml``/``.yml``/``.json`` file)
2. ``DATASHED_*`` environment variables
3. overrides passed by the CLI

Environment keys nest on double underscores and values are parsed as JSON
when they can be::

    DATASHED_VALIDATION__MIN_LEN=50               ->  validation.min_len = 50
    DATASHED_VALIDATION__LANGUAGES='["ger","eng"]' ->  validation.languages = [...]
    DATASHED_METADATA__NAME=gnd                   ->  metadata.name = "gnd"
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import yaml
from pydantic import ValidationError

from DataShed.errors import ConfigError

from .models import DataShedConfig

logger = logging.getLogger(__name__)

ENV_PREFIX = "DATASHED_"


def _parse_yaml(text: str) -> Any:
    try:
        return yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML: {e}") from e


def _parse_json(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON: {e}") from e


_PARSERS: Dict[str, Callable[[str], Any]] = {
    ".yaml": _parse_yaml,
    ".yml": _parse_yaml,
    ".json": _parse_json,
}


def read_config_file(path: str | Path) -> Dict[str, Any]:
    """Return the raw mapping stored in a config file.

    Raises:
        ConfigError: Missing or unreadable file, unknown suffix, or a document
            whose root is not a mapping.
    """

    source = Path(path)
    parser = _PARSERS.get(source.suffix.lower())
    if parser is None:
        raise ConfigError(f"Unsupported config format {source.suffix!r} for {source} (use .yaml or .json)")
    try:
        text = source.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {source}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read config file {source}: {e}") from e
    try:
        data = parser(text)
    except ConfigError as e:
        raise ConfigError(f"{source}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config root must be a mapping: {source}")
    return data


def _env_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def env_layer(environ: Optional[Mapping[str, str]] = None, prefix: str = ENV_PREFIX) -> Dict[str, Any]:
    """Translate ``prefix``-ed variables of ``environ`` into a nested mapping."""

    environ = os.environ if environ is None else environ
    layer: Dict[str, Any] = {}
    for key in sorted(environ):
        if not key.startswith(prefix):
            continue
        path = key[len(prefix) :].lower().split("__")
        node = layer
        for part in path[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[path[-1]] = _env_value(environ[key])
        logger.debug(f"Environment override {key} -> {'.'.join(path)}")
    return layer


def _deep_merge(base: Dict[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge ``overlay`` into ``base`` in place; nested mappings merge key by key."""

    for key, value in overlay.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        elif isinstance(value, Mapping):
            base[key] = _deep_merge({}, value)
        else:
            base[key] = value
    return base


def load_config(
    path: str | Path | None = None,
    env_prefix: str = ENV_PREFIX,
    cli_overrides: Mapping[str, Any] | None = None,
) -> DataShedConfig:
    """Compose and validate the configuration (file < environment < CLI).

    Raises:
        ConfigError: A layer cannot be read or the merged result is invalid.
    """

    data: Dict[str, Any] = read_config_file(path) if path else {}
    layers = ["file"] if path else []
    env = env_layer(prefix=env_prefix)
    if env:
        _deep_merge(data, env)
        layers.append("env")
    if cli_overrides:
        _deep_merge(data, cli_overrides)
        layers.append("cli")

    try:
        config = DataShedConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration ({'+'.join(layers) or 'defaults'}): {e}") from e

    logger.debug(
        f"Configuration from {'+'.join(layers) or 'defaults'}, hash {config.config_hash()[:8]}"
    )
    return config


def save_config(config: DataShedConfig, path: str | Path) -> Path:
    """Write ``config`` as YAML (or JSON for ``.json`` paths) and return the path."""

    from DataShed.storage.io import atomic_write

    target = Path(path)
    payload = config.model_dump(mode="json")
    with atomic_write(target) as handle:
        if target.suffix.lower() == ".json":
            json.dump(payload, handle, indent=2, sort_keys=True)
            handle.write("\n")
        else:
            yaml.safe_dump(payload, handle, sort_keys=False, allow_unicode=True)
    return target


def validate_config_file(path: str | Path) -> bool:
    """Return ``True`` when ``path`` loads into a valid configuration.

    Raises:
        ConfigError: If it does not.
    """

    load_config(path=path)
    return True


def export_config_schema() -> Dict[str, Any]:
    """JSON Schema of :class:`DataShedConfig`."""

    return DataShedConfig.model_json_schema()
