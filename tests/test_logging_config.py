"""Tests for logging setup and formatters."""

from __future__ import annotations

import io
import json
import logging
from typing import Any

from infra.config import clear_settings_cache
from infra.logging_config import JsonFormatter, TextFormatter, setup_logging


def _record(msg: str, **extra: Any) -> logging.LogRecord:
    record = logging.LogRecord("pipeline.shipper", logging.INFO, __file__, 10, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_emits_valid_json_with_extras() -> None:
    formatter = JsonFormatter(extra_fields={"app": "logship"})

    payload = json.loads(formatter.format(_record('quote " and newline \n', table="logs")))

    assert payload["message"] == 'quote " and newline \n'
    assert payload["level"] == "INFO"
    assert payload["logger"] == "pipeline.shipper"
    assert payload["table"] == "logs"
    assert payload["app"] == "logship"


def test_text_formatter_layout() -> None:
    line = TextFormatter().format(_record("shipper_started table=logs"))

    assert line.endswith("| INFO | pipeline.shipper | shipper_started table=logs")


def test_setup_logging_override_writes_to_given_stream(monkeypatch: Any) -> None:
    monkeypatch.setenv("LOGSHIP_LOG_JSON", "1")
    clear_settings_cache()
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    stream = io.StringIO()
    try:
        handler = setup_logging(level="warning", override_root_handlers=True, stream=stream)
        logging.getLogger("pipeline.record_transform").warning("record_insert_failed table=logs")
        logging.getLogger("pipeline.record_transform").info("not shown")
    finally:
        root.removeHandler(handler)
        for h in saved_handlers:
            root.addHandler(h)
        root.setLevel(saved_level)

    lines = stream.getvalue().splitlines()
    assert len(lines) == 1
    assert json.loads(lines[0])["message"] == "record_insert_failed table=logs"
