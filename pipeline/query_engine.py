"""Query engine construction and per-record insert handling.

An engine is chosen once at startup from the column mapping:

- passthrough: every column is the raw-record marker; each record is inserted
  as-is into every column, nothing is parsed.
- structured: every column is a field path; each record is parsed as JSON
  and the extracted values are inserted. Records that do not parse are not
  inserted at all.
- hybrid: both kinds of columns. Records that parse get the full row;
  records that do not parse fall back to a passthrough engine over the raw
  columns only.

The INSERT text is built once per engine and every value is a bound
parameter. Conflicting rows are skipped with ``ON CONFLICT DO NOTHING``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from contracts.errors import (
    DuplicateColumnError,
    NoColumnsError,
    NoTableError,
    NoUsableColumnsError,
)
from contracts.interfaces import StatementExecutor
from pipeline.field_extractor import MISSING, extract_segments, split_path
from version import DEFAULT_DELIMITER, RAW_RECORD_MARKER

_LOGGER = logging.getLogger(__name__)


class EngineVariant(str, Enum):
    PASSTHROUGH = "passthrough"
    STRUCTURED = "structured"
    HYBRID = "hybrid"


class InsertOutcome(str, Enum):
    """What happened to one record on the database side."""

    INSERTED = "inserted"
    IGNORED = "ignored"  # conflict skipped by ON CONFLICT DO NOTHING
    DROPPED = "dropped"  # unparsable record, structured engine
    FALLBACK = "fallback"  # unparsable record inserted over raw columns only


def _qident(name: str) -> str:
    """Quote an identifier for Postgres SQL (double quotes).

    ``%`` is doubled as well: the text goes through psycopg2 parameter
    formatting.
    """
    return '"' + name.replace('"', '""').replace("%", "%%") + '"'


def _qtable(table: str) -> str:
    """Quote a possibly schema-qualified table name, part by part."""
    return ".".join(_qident(part) for part in table.split("."))


@dataclass(frozen=True)
class PreparedStatement:
    table: str
    columns: tuple[str, ...]
    sql: str

    @classmethod
    def for_columns(cls, table: str, columns: Sequence[str]) -> PreparedStatement:
        cols = tuple(columns)
        placeholders = ", ".join(["%s"] * len(cols))
        sql = (
            f"INSERT INTO {_qtable(table)} ({', '.join(_qident(c) for c in cols)}) "
            f"VALUES ({placeholders}) ON CONFLICT DO NOTHING"
        )
        return cls(table=table, columns=cols, sql=sql)


@dataclass(frozen=True)
class FieldColumn:
    name: str
    path: str
    segments: tuple[str, ...]


def _bind_value(value: Any) -> Any:
    """Adapt an extracted JSON value to a psycopg2 parameter."""
    if value is MISSING or value is None:
        return None
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return value


def _parse_record(record: str) -> Any:
    return json.loads(record)


@dataclass(frozen=True)
class Engine:
    """Immutable prepared insert plus the per-record handler for one variant."""

    variant: EngineVariant
    statement: PreparedStatement
    passthrough_columns: tuple[str, ...] = ()
    field_columns: tuple[FieldColumn, ...] = ()
    fallback: Engine | None = None
    log: logging.Logger = field(default=_LOGGER, repr=False, compare=False)

    def row_for(self, record: str, parsed: Any = MISSING) -> tuple[Any, ...]:
        """Build the bound parameters for *record* in statement column order."""
        raw = (record,) * len(self.passthrough_columns)
        if not self.field_columns:
            return raw
        values = tuple(_bind_value(extract_segments(c.segments, parsed)) for c in self.field_columns)
        return raw + values

    def _insert(self, executor: StatementExecutor, params: tuple[Any, ...]) -> InsertOutcome:
        rowcount = executor.execute(self.statement.sql, params)
        return InsertOutcome.INSERTED if rowcount != 0 else InsertOutcome.IGNORED

    def handle(self, record: str, executor: StatementExecutor) -> InsertOutcome:
        """Insert one record.

        ``DatabaseError`` from the executor propagates; the caller decides
        what a failed insert means for the stream.
        """
        if self.variant is EngineVariant.PASSTHROUGH:
            return self._insert(executor, self.row_for(record))

        try:
            parsed = _parse_record(record)
        except (ValueError, RecursionError) as exc:
            if self.fallback is not None:
                self.log.debug("record_parse_fallback table=%s error=%s", self.statement.table, exc)
                outcome = self.fallback.handle(record, executor)
                return InsertOutcome.FALLBACK if outcome is InsertOutcome.INSERTED else outcome
            self.log.warning("record_parse_failed table=%s error=%s", self.statement.table, exc)
            return InsertOutcome.DROPPED

        return self._insert(executor, self.row_for(record, parsed))


def _column_pairs(columns: Mapping[str, Any] | Sequence[tuple[str, Any]]) -> list[tuple[Any, Any]]:
    if isinstance(columns, Mapping):
        return list(columns.items())
    return [tuple(pair) for pair in columns]  # type: ignore[misc]


def build_engine(
    table: str | None,
    columns: Mapping[str, Any] | Sequence[tuple[str, Any]] | None,
    delimiter: str = DEFAULT_DELIMITER,
    *,
    log: logging.Logger | None = None,
) -> Engine:
    """Classify the column mapping and return the matching engine.

    Raises ``NoTableError``, ``NoColumnsError``, ``DuplicateColumnError`` or
    ``NoUsableColumnsError``; all are ``ConfigError``.
    """
    log = log or _LOGGER
    if table is None or not str(table).strip():
        raise NoTableError("no table configured")
    if not columns:
        raise NoColumnsError("no columns configured")
    delimiter = delimiter or DEFAULT_DELIMITER

    pairs = _column_pairs(columns)
    seen: set[Any] = set()
    for name, _ in pairs:
        if name in seen:
            raise DuplicateColumnError(str(name))
        seen.add(name)

    passthrough: list[str] = []
    fields: list[FieldColumn] = []
    for name, source in pairs:
        if not isinstance(name, str) or not name:
            log.warning("column_ignored column=%r reason=invalid_name", name)
            continue
        if source == RAW_RECORD_MARKER:
            passthrough.append(name)
        elif isinstance(source, str) and source:
            fields.append(FieldColumn(name=name, path=source, segments=split_path(source, delimiter)))
        else:
            log.warning("column_ignored column=%s reason=invalid_source source=%r", name, source)

    if not passthrough and not fields:
        raise NoUsableColumnsError("no column maps to '*' or to a field path")

    raw_engine = None
    if passthrough:
        raw_engine = Engine(
            variant=EngineVariant.PASSTHROUGH,
            statement=PreparedStatement.for_columns(table, passthrough),
            passthrough_columns=tuple(passthrough),
            log=log,
        )
        if not fields:
            return raw_engine

    variant = EngineVariant.HYBRID if raw_engine is not None else EngineVariant.STRUCTURED
    return Engine(
        variant=variant,
        statement=PreparedStatement.for_columns(table, passthrough + [c.name for c in fields]),
        passthrough_columns=tuple(passthrough),
        field_columns=tuple(fields),
        fallback=raw_engine,
        log=log,
    )
