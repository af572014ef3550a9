"""Resolve delimited field paths against a parsed JSON record."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Final

from version import DEFAULT_DELIMITER


class _Missing:
    """Type of the ``MISSING`` sentinel."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


# Returned when a path does not resolve; distinct from a present JSON null.
MISSING: Final = _Missing()


def split_path(path: str, delimiter: str = DEFAULT_DELIMITER) -> tuple[str, ...]:
    return tuple(path.split(delimiter))


def _step(current: Any, segment: str) -> Any:
    if isinstance(current, Mapping):
        return current.get(segment, MISSING)
    if isinstance(current, list):
        if not (segment.isascii() and segment.isdigit()):
            return MISSING
        index = int(segment)
        if index >= len(current):
            return MISSING
        return current[index]
    return MISSING


def extract_segments(segments: tuple[str, ...], record: Any) -> Any:
    """Walk pre-split *segments* through *record*; see ``extract``."""
    current = record
    for segment in segments:
        if current is None or current is MISSING:
            return MISSING
        current = _step(current, segment)
    return current


def extract(path: str, record: Any, delimiter: str = DEFAULT_DELIMITER) -> Any:
    """Return the value at *path* inside *record*, or ``MISSING``.

    Mappings are indexed by key and lists by all-digit segments, so
    ``"a.3.g"`` reads ``record["a"][3]["g"]``. A null or absent value at any
    intermediate step, an out-of-range index or descending into a scalar all
    short-circuit to ``MISSING``; nothing here raises.
    """
    return extract_segments(split_path(path, delimiter), record)
