"""Pipeline orchestration: input lines -> record transform -> output.

Startup decides once between active mode (engine + pool) and degraded mode
(echo only). Any configuration or pool failure selects degraded mode and
prints a single banner; the stream itself is never refused.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any, TextIO

from apps.backend.db import PooledExecutor, open_pool
from contracts.errors import ConfigError, DatabaseError
from infra.config import Settings, get_settings, load_shipper_config
from pipeline.record_transform import RecordTransform, ShipperStats
from pipeline.query_engine import build_engine

logger = logging.getLogger(__name__)

PoolFactory = Callable[..., Any]

_BANNER_RULE = "*" * 72


def split_lines(stream: TextIO) -> Iterator[tuple[str, str]]:
    """Yield ``(record, terminator)`` pairs from *stream* as they arrive.

    Exactly one ``\\n`` and at most one ``\\r`` before it form the terminator;
    a final line without newline has an empty one. Blank lines are yielded too.
    """
    for line in iter(stream.readline, ""):
        if line.endswith("\r\n"):
            yield line[:-2], "\r\n"
        elif line.endswith("\n"):
            yield line[:-1], "\n"
        else:
            yield line, ""


def degraded_banner(reason: BaseException | str) -> str:
    return "\n".join(
        [
            _BANNER_RULE,
            "logship: DATABASE OUTPUT DISABLED",
            f"reason: {reason}",
            "records are passed through to stdout only",
            _BANNER_RULE,
        ]
    )


def build_transform(
    config_path: str | Path | None,
    *,
    quiet: bool = False,
    output: TextIO | None = None,
    settings: Settings | None = None,
    pool_factory: PoolFactory | None = None,
    log: logging.Logger | None = None,
) -> RecordTransform:
    """Load configuration, build the engine and open the pool.

    Returns an active transform, or a degraded one when any step fails.
    """
    log = log or logger
    settings = settings or get_settings()
    pool_factory = pool_factory or open_pool
    try:
        config = load_shipper_config(config_path)
        engine = build_engine(config.table, config.columns, config.delimiter)
        connect_kwargs: Mapping[str, Any] = config.connection_kwargs(settings.db)
        pool = pool_factory(connect_kwargs, maxconn=config.pool_size(settings.db))
    except (ConfigError, DatabaseError) as exc:
        log.critical("%s", degraded_banner(exc))
        return RecordTransform(output=output, quiet=quiet, log=log)

    log.info(
        "shipper_started table=%s variant=%s columns=%s",
        engine.statement.table,
        engine.variant.value,
        ",".join(engine.statement.columns),
    )
    return RecordTransform(engine, PooledExecutor(pool), output=output, quiet=quiet, log=log)


def run(stream: TextIO, transform: RecordTransform) -> ShipperStats:
    """Drive *transform* over every record of *stream*, strictly in order."""
    for record, terminator in split_lines(stream):
        transform.process(record, terminator)

    stats = transform.stats
    logger.info(
        "shipper_finished degraded=%s %s",
        transform.degraded,
        " ".join(f"{k}={v}" for k, v in stats.as_dict().items()),
    )
    return stats
