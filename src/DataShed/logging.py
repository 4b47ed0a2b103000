"""Structured logging helpers for DataShed.

Modules log through ``logging.getLogger(__name__)``. Structured fields travel
in ``extra={"extra_fields": {...}}`` and become top-level keys of the JSON
lines written by :class:`JSONFormatter`. :func:`setup_logging` wires console
and optional file handlers for the CLI; every handler it installs is marked so
a later call (or a test) can remove exactly those.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

__all__ = ["JSONFormatter", "StructuredLogger", "get_logger", "log_event", "setup_logging"]

_ROOT_LOGGER = "DataShed"
_MANAGED = "_datashed_managed"
_PLAIN_FORMAT = "%(levelname)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record: time, level, logger, message, then fields."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: Dict[str, Any] = {
            "ts": created.strftime("%Y-%m-%dT%H:%M:%S.") + f"{created.microsecond // 1000:03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        fields = getattr(record, "extra_fields", None)
        if isinstance(fields, Mapping):
            for key, value in fields.items():
                entry.setdefault(key, value)
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class StructuredLogger(logging.LoggerAdapter):
    """Adapter attaching a fixed context (seal owner, bundle id, ...) to every record."""

    def __init__(self, logger: logging.Logger, context: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(logger, {})
        self.context: Dict[str, Any] = {k: v for k, v in (context or {}).items() if v is not None}

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        fields = {**self.context, **(extra.get("extra_fields") or {})}
        extra["extra_fields"] = fields
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **fields: object) -> "StructuredLogger":
        """Return a new adapter with ``fields`` added (``None`` values dropped)."""

        return StructuredLogger(self.logger, {**self.context, **fields})


def get_logger(name: str, *, context: Optional[Mapping[str, Any]] = None) -> StructuredLogger:
    return StructuredLogger(logging.getLogger(name), context)


def log_event(
    logger: Union[logging.Logger, logging.LoggerAdapter], level: str, message: str, **fields: object
) -> None:
    """Log ``message`` at ``level`` with ``fields`` as structured data."""

    logger.log(logging.getLevelName(level.upper()), message, extra={"extra_fields": fields})


def _managed(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _MANAGED, True)
    return handler


def setup_logging(
    *,
    level: str = "INFO",
    json_format: bool = False,
    log_file: Optional[Union[str, Path]] = None,
    stream=None,
) -> logging.Logger:
    """Configure the ``DataShed`` logger hierarchy.

    Handlers installed by an earlier call are replaced, so the CLI can call
    this once per command invocation.

    Args:
        level: Log level name.
        json_format: Emit JSON lines on the console instead of plain text.
        log_file: Optional path receiving JSON lines regardless of ``json_format``.
        stream: Console stream (defaults to ``sys.stderr``).
    """

    root = logging.getLogger(_ROOT_LOGGER)
    numeric = logging.getLevelName(level.upper())
    root.setLevel(numeric if isinstance(numeric, int) else logging.INFO)

    for handler in [h for h in root.handlers if getattr(h, _MANAGED, False)]:
        root.removeHandler(handler)
        handler.close()

    console = _managed(logging.StreamHandler(stream or sys.stderr))
    console.setFormatter(JSONFormatter() if json_format else logging.Formatter(_PLAIN_FORMAT))
    root.addHandler(console)

    if log_file is not None:
        target = Path(log_file)
        target.parent.mkdir(parents=True, exist_ok=True)
        sink = _managed(logging.FileHandler(target, encoding="utf-8"))
        sink.setFormatter(JSONFormatter())
        root.addHandler(sink)

    root.propagate = False
    return root
