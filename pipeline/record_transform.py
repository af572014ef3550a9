"""Per-record transform: echo the line, then hand it to the query engine."""

from __future__ import annotations

import logging
import sys
from dataclasses import asdict, dataclass
from typing import TextIO

from apps.backend.db_metrics import count_insert_outcome
from contracts.errors import DatabaseError
from contracts.interfaces import StatementExecutor
from pipeline.query_engine import Engine, InsertOutcome

logger = logging.getLogger(__name__)


@dataclass
class ShipperStats:
    """Running per-outcome counters for one stream."""

    records: int = 0
    inserted: int = 0
    ignored: int = 0
    fallback: int = 0
    dropped: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class RecordTransform:
    """Processes records one at a time, in arrival order.

    With no engine or no executor the transform is in degraded mode: records
    are only echoed. Otherwise each record is echoed first and then inserted;
    a ``DatabaseError`` is logged and the record still counts as processed.
    """

    def __init__(
        self,
        engine: Engine | None = None,
        executor: StatementExecutor | None = None,
        *,
        output: TextIO | None = None,
        quiet: bool = False,
        log: logging.Logger | None = None,
    ) -> None:
        self.engine = engine
        self.executor = executor
        self.output = output if output is not None else sys.stdout
        self.quiet = quiet
        self.log = log or logger
        self.stats = ShipperStats()

    @property
    def degraded(self) -> bool:
        return self.engine is None or self.executor is None

    def echo(self, record: str, terminator: str = "\n") -> None:
        if self.quiet:
            return
        self.output.write(record + terminator)
        self.output.flush()

    def process(self, record: str, terminator: str = "\n") -> InsertOutcome | None:
        """Echo and insert one record; return the outcome (None if nothing ran).

        *terminator* is the line ending read with the record and is echoed
        back verbatim. Blank records are echoed but never inserted.
        """
        self.echo(record, terminator)
        if not record:
            return None
        self.stats.records += 1
        engine, executor = self.engine, self.executor
        if engine is None or executor is None:
            return None

        try:
            outcome = engine.handle(record, executor)
        except DatabaseError as exc:
            self.stats.failed += 1
            count_insert_outcome("failed")
            self.log.error("record_insert_failed table=%s error=%s", engine.statement.table, exc)
            return None

        setattr(self.stats, outcome.value, getattr(self.stats, outcome.value) + 1)
        count_insert_outcome(outcome.value)
        return outcome
