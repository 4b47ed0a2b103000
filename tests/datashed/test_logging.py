"""JSON logging and structured fields."""

from __future__ import annotations

import io
import json
import logging
from pathlib import Path

from DataShed.logging import get_logger, log_event, setup_logging
from DataShed.shed import Shed


def _lines(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


def test_json_console_carries_extra_fields() -> None:
    stream = io.StringIO()
    setup_logging(level="DEBUG", json_format=True, stream=stream)

    log_event(logging.getLogger("DataShed.test"), "warning", "disk nearly full", free_bytes=42)
    get_logger("DataShed.test", context={"seal": "abc"}).bind(bundle_id=None, step=2).info("step")

    first, second = _lines(stream)
    assert first["level"] == "WARNING"
    assert first["message"] == "disk nearly full"
    assert first["free_bytes"] == 42
    assert second["seal"] == "abc"
    assert second["step"] == 2
    assert "bundle_id" not in second


def test_setup_replaces_previous_handlers(tmp_path: Path) -> None:
    setup_logging(stream=io.StringIO())
    setup_logging(stream=io.StringIO(), log_file=tmp_path / "logs" / "shed.jsonl")
    managed = [h for h in logging.getLogger("DataShed").handlers if getattr(h, "_datashed_managed", False)]
    assert len(managed) == 2
    assert (tmp_path / "logs" / "shed.jsonl").exists()


def test_bind_does_not_change_parent() -> None:
    parent = get_logger("DataShed.test", context={"a": 1})
    child = parent.bind(b=2, c=None)
    assert child.context == {"a": 1, "b": 2}
    assert parent.context == {"a": 1}


def test_import_summary_is_logged_with_fields(shed: Shed, german_candidates) -> None:
    stream = io.StringIO()
    setup_logging(level="INFO", json_format=True, stream=stream)
    shed.pipeline().run(german_candidates)

    finished = [line for line in _lines(stream) if line["message"].startswith("Import finished")]
    assert len(finished) == 1
    assert finished[0]["imported"] == len(german_candidates)
    assert finished[0]["cancelled"] is False
