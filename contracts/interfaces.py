"""
Protocol definitions for dependency injection.

The query engines only need something that can run one parameterized
statement; production code passes ``apps.backend.db.PooledExecutor`` and
tests pass small recording fakes.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class StatementExecutor(Protocol):
    """Protocol for running a single parameterized statement."""

    def execute(self, sql: str, params: Sequence[Any]) -> int:
        """Run *sql* with bound *params* and return the affected row count.

        Implementations raise ``contracts.errors.DatabaseError`` on failure.
        """
        ...
