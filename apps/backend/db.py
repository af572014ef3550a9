"""
db.py

Tiny DB helper module for PostgreSQL (psycopg2) with connection pooling.

The shipper opens one process-global SimpleConnectionPool at startup and
reuses it for every record; the pool is only released at process exit.
Each insert runs on a pooled connection and is committed on its own, so one
failing record never poisons the next one.
"""

from __future__ import annotations

import atexit
import logging
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any

import psycopg2
from psycopg2.pool import SimpleConnectionPool

from apps.backend.db_metrics import measure_query
from contracts.errors import DatabaseError

logger = logging.getLogger(__name__)

# Keep a single global pool per process.
_POOL: Any = None


def open_pool(connect_kwargs: Mapping[str, Any], *, maxconn: int = 10) -> Any:
    """Open the process-global pool, replacing any previous one.

    ``minconn=1`` makes psycopg2 connect immediately, so bad credentials or an
    unreachable host surface here as ``DatabaseError`` rather than on the
    first record.
    """
    global _POOL
    _close_pool()
    try:
        _POOL = SimpleConnectionPool(minconn=1, maxconn=maxconn, **dict(connect_kwargs))
    except psycopg2.Error as exc:
        raise DatabaseError(f"cannot open connection pool: {exc}".strip()) from exc
    logger.info("db_pool_opened maxconn=%s", maxconn)
    return _POOL


def _close_pool() -> None:
    """Close the pool on process exit."""
    global _POOL
    try:
        if _POOL is not None:
            _POOL.closeall()
    except psycopg2.Error:
        pass
    finally:
        _POOL = None


atexit.register(_close_pool)


@contextmanager
def db_conn(pool: Any) -> Iterator[Any]:
    """Yield a pooled psycopg2 connection.

    Callers should NOT close the connection; it is returned to the pool.
    Any open transaction is rolled back before the connection goes back.
    """
    conn = pool.getconn()
    try:
        yield conn
    finally:
        try:
            conn.rollback()
        except Exception:
            pass
        try:
            pool.putconn(conn)
        except Exception:
            try:
                conn.close()
            except Exception:
                pass


def _query_name(sql: str, *, operation: str) -> str:
    """Return a stable query operation label for metrics/logging."""
    text = " ".join(str(sql or "").strip().split())
    if not text:
        return operation
    first_token = text.split(" ", 1)[0].lower()
    return f"{operation}:{first_token}"


def execute_conn(conn: Any, sql: str, params: Sequence[Any] | None = None) -> int:
    """Execute a statement on an existing connection and return its rowcount."""
    with conn.cursor() as cur:
        with measure_query(_query_name(sql, operation="execute_conn")):
            cur.execute(sql, params or ())
        return int(cur.rowcount)


class PooledExecutor:
    """``StatementExecutor`` backed by a psycopg2 pool.

    Every call checks out a connection, executes, commits and returns the
    connection. Driver errors and unadaptable values are rolled back and
    re-raised as ``DatabaseError``.
    """

    def __init__(self, pool: Any) -> None:
        self._pool = pool

    def execute(self, sql: str, params: Sequence[Any]) -> int:
        try:
            with db_conn(self._pool) as conn:
                try:
                    rowcount = execute_conn(conn, sql, params)
                    conn.commit()
                except Exception:
                    try:
                        conn.rollback()
                    except Exception:
                        pass
                    raise
        except (psycopg2.Error, ValueError) as exc:
            # ValueError: values psycopg2 cannot adapt (NUL bytes, lone surrogates).
            raise DatabaseError(str(exc).strip() or exc.__class__.__name__) from exc
        return rowcount
