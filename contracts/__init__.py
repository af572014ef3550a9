"""Contracts shared across layers.

The contracts package defines:
- the exception taxonomy (configuration vs database failures)
- Protocol definitions for dependency injection
"""

from contracts.errors import (
    ConfigError,
    ConfigFileError,
    DatabaseError,
    DuplicateColumnError,
    NoColumnsError,
    NoTableError,
    NoUsableColumnsError,
)
from contracts.interfaces import StatementExecutor

__all__ = [
    "ConfigError",
    "ConfigFileError",
    "DatabaseError",
    "DuplicateColumnError",
    "NoColumnsError",
    "NoTableError",
    "NoUsableColumnsError",
    "StatementExecutor",
]
