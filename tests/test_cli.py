"""End-to-end tests for the logship command line."""

from __future__ import annotations

import io
import json
import logging
import sys
from pathlib import Path
from typing import Any

import pytest

import cli
import pipeline.shipper as shipper_mod
from infra.config import clear_settings_cache


class _Pool:
    """Pool stand-in whose connection records inserts."""

    def __init__(self) -> None:
        self.inserts: list[tuple[str, tuple[Any, ...]]] = []

    def getconn(self) -> _Pool:
        return self

    def putconn(self, conn: Any) -> None:
        return

    def cursor(self) -> _Pool:
        return self

    def __enter__(self) -> _Pool:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # type: ignore[no-untyped-def]
        return False

    def execute(self, sql: str, params: Any) -> None:
        self.inserts.append((sql, tuple(params)))

    rowcount = 1

    def commit(self) -> None:
        return

    def rollback(self) -> None:
        return


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: Any, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    for name in ("LOGSHIP_CONFIG", "LOGSHIP_QUIET", "DB_URL", "DB__URL", "SHIPPER__QUIET"):
        monkeypatch.delenv(name, raising=False)
    clear_settings_cache()


def _stdin(monkeypatch: Any, text: str) -> None:
    monkeypatch.setattr("sys.stdin", io.TextIOWrapper(io.BytesIO(text.encode("utf-8")), encoding="utf-8"))


def test_cli_ships_and_echoes(monkeypatch: Any, capsys: Any, tmp_path: Path) -> None:
    config = tmp_path / "logship.json"
    config.write_text(json.dumps({"table": "logs", "columns": {"log": "*", "name": "name"}}), encoding="utf-8")
    pool = _Pool()
    monkeypatch.setattr(shipper_mod, "open_pool", lambda kwargs, maxconn: pool)
    _stdin(monkeypatch, '{"name":"svc"}\n')

    code = cli.main(["-c", str(config)])

    assert code == 0
    assert capsys.readouterr().out == '{"name":"svc"}\n'
    assert pool.inserts == [
        ('INSERT INTO "logs" ("log", "name") VALUES (%s, %s) ON CONFLICT DO NOTHING', ('{"name":"svc"}', "svc"))
    ]


def test_cli_quiet_flag(monkeypatch: Any, capsys: Any, tmp_path: Path) -> None:
    config = tmp_path / "logship.json"
    config.write_text(json.dumps({"table": "logs", "columns": {"log": "*"}}), encoding="utf-8")
    monkeypatch.setattr(shipper_mod, "open_pool", lambda kwargs, maxconn: _Pool())
    _stdin(monkeypatch, "a\nb\n")

    assert cli.main(["--config", str(config), "--quiet"]) == 0
    assert capsys.readouterr().out == ""


def test_cli_without_config_degrades_to_echo(monkeypatch: Any, capsys: Any, caplog: Any) -> None:
    caplog.set_level(logging.ERROR)
    _stdin(monkeypatch, "hello\n\nworld\n")

    code = cli.main([])

    assert code == 0
    assert capsys.readouterr().out == "hello\n\nworld\n"
    assert any("DATABASE OUTPUT DISABLED" in r.getMessage() for r in caplog.records)


def test_cli_config_from_env(monkeypatch: Any, capsys: Any, tmp_path: Path) -> None:
    config = tmp_path / "env.json"
    config.write_text(json.dumps({"table": "logs", "columns": {"log": "*"}}), encoding="utf-8")
    monkeypatch.setenv("LOGSHIP_CONFIG", str(config))
    monkeypatch.setenv("LOGSHIP_QUIET", "1")
    pool = _Pool()
    monkeypatch.setattr(shipper_mod, "open_pool", lambda kwargs, maxconn: pool)
    _stdin(monkeypatch, "x\n")

    assert cli.main([]) == 0
    assert capsys.readouterr().out == ""
    assert len(pool.inserts) == 1


def test_cli_version(capsys: Any) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--version"])

    assert excinfo.value.code == 0
    assert "logship 0.1.0" in capsys.readouterr().out


def test_cli_echo_keeps_raw_bytes_and_line_endings(monkeypatch: Any) -> None:
    raw = b"caf\xe9 latin-1\r\n\r\n{\"ok\":true}\n"
    monkeypatch.setattr("sys.stdin", io.TextIOWrapper(io.BytesIO(raw), encoding="utf-8"))
    sink = io.BytesIO()
    monkeypatch.setattr("sys.stdout", io.TextIOWrapper(sink, encoding="utf-8", newline=""))

    code = cli.main([])
    sys.stdout.flush()

    assert code == 0
    assert sink.getvalue() == raw


def test_cli_undecodable_line_fails_insert_but_stream_continues(
    monkeypatch: Any, tmp_path: Path, caplog: Any
) -> None:
    config = tmp_path / "logship.json"
    config.write_text(json.dumps({"table": "logs", "columns": {"log": "*"}}), encoding="utf-8")
    pool = _Pool()
    pool.execute = _reject_surrogates(pool.execute)  # type: ignore[method-assign]
    monkeypatch.setattr(shipper_mod, "open_pool", lambda kwargs, maxconn: pool)
    monkeypatch.setattr(
        "sys.stdin", io.TextIOWrapper(io.BytesIO(b"bad \xff\ngood\n"), encoding="utf-8")
    )
    caplog.set_level(logging.ERROR)

    assert cli.main(["-c", str(config), "-q"]) == 0
    assert pool.inserts == [('INSERT INTO "logs" ("log") VALUES (%s) ON CONFLICT DO NOTHING', ("good",))]
    assert any("record_insert_failed" in r.getMessage() for r in caplog.records)


def _reject_surrogates(execute: Any) -> Any:
    """Mimic psycopg2 failing to encode undecodable input."""

    def _execute(sql: str, params: Any) -> None:
        for value in params:
            value.encode("utf-8")
        execute(sql, params)

    return _execute
