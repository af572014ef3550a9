"""Exception taxonomy shared by the shipper layers.

Configuration problems are fatal to the database path only: the orchestrator
catches ``ConfigError`` and ``DatabaseError`` at startup and degrades to
echo-only mode. Per-record ``DatabaseError`` is logged and the stream goes on.
"""

from __future__ import annotations


class ConfigError(ValueError):
    """Base configuration error."""


class ConfigFileError(ConfigError):
    """Raised when the configuration file is missing, unreadable or invalid."""


class NoTableError(ConfigError):
    """Raised when no target table is configured."""


class NoColumnsError(ConfigError):
    """Raised when the column mapping is absent or empty."""


class NoUsableColumnsError(ConfigError):
    """Raised when no mapping entry is a raw-record marker or a field path."""


class DuplicateColumnError(ConfigError):
    """Raised when the same column name is mapped more than once."""

    def __init__(self, column: str) -> None:
        super().__init__(f"column {column!r} is mapped more than once")
        self.column = column


class DatabaseError(RuntimeError):
    """Raised when a pool cannot be opened or a statement fails."""
