"""
db.py

Small PostgreSQL (psycopg2) helper module for the status store.

Pooling
-------
Every reconciliation tick reads and conditionally writes one status row, so
connections come from a process-global SimpleConnectionPool instead of being
opened per tick. Callers borrow a connection with ``db_conn()`` and run the
*_conn helpers against it.
"""

from __future__ import annotations

import atexit
import json
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Sequence, Tuple

from infra.config import get_settings

# Keep a single global pool per process.
_POOL = None
_POOL_DSN: Optional[str] = None


def _db_url() -> str:
    url = get_settings().db.url
    if not url:
        raise RuntimeError("DB_URL is not set")
    return url


def _get_pool():
    """Return a process-global psycopg2 pool, creating it on first use."""
    global _POOL, _POOL_DSN

    dsn = _db_url()
    if _POOL is not None and _POOL_DSN == dsn:
        return _POOL

    from psycopg2.pool import SimpleConnectionPool  # type: ignore

    db_cfg = get_settings().db
    _POOL = SimpleConnectionPool(
        minconn=1,
        maxconn=int(db_cfg.pool_maxconn),
        dsn=dsn,
        connect_timeout=int(db_cfg.connect_timeout),
    )
    _POOL_DSN = dsn
    return _POOL


def _close_pool() -> None:
    """Close the pool on process exit."""
    global _POOL
    try:
        if _POOL is not None:
            _POOL.closeall()
    except Exception:
        pass
    finally:
        _POOL = None


atexit.register(_close_pool)


@contextmanager
def db_conn() -> Iterator[Any]:
    """Yield a pooled psycopg2 connection.

    - Callers should NOT close the connection; it is returned to the pool.
    - Any open transaction is rolled back before the connection goes back,
      so an uncommitted status write never leaks into the next borrower.
    """
    pool = _get_pool()
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


def execute_conn(conn: Any, sql: str, params: Optional[Sequence[Any]] = None) -> int:
    """Execute a statement on an existing connection; return the affected row count."""
    with conn.cursor() as cur:
        cur.execute(sql, params or ())
        return int(cur.rowcount or 0)


def fetch_one_conn(conn: Any, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Tuple[Any, ...]]:
    """Execute a query on an existing connection and return one row (or None)."""
    with conn.cursor() as cur:
        cur.execute(sql, params or ())
        return cur.fetchone()


def _cols_from_description(desc: Any) -> list[str]:
    """Extract column names from cursor.description safely."""
    if not desc:
        return []
    cols: list[str] = []
    for i, d in enumerate(desc):
        name = None
        try:
            name = d[0]
        except (IndexError, KeyError, TypeError):
            name = None
        cols.append(str(name) if name else f"col_{i}")
    return cols


def fetch_one_dict_conn(conn: Any, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[dict[str, Any]]:
    """Execute a query and return one row as a dict (or None)."""
    with conn.cursor() as cur:
        cur.execute(sql, params or ())
        row = cur.fetchone()
        if row is None:
            return None
        cols = _cols_from_description(getattr(cur, "description", None))
        if not cols:
            return None
        return dict(zip(cols, row, strict=False))


def to_jsonb(value: Any) -> str:
    """Serialize a Python object to a JSON string suitable for ::jsonb."""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def from_jsonb(value: Any) -> Any:
    """Decode a JSON/JSONB column value; psycopg2 may already return a dict."""
    if value is None or isinstance(value, (dict, list)):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        value = bytes(value).decode("utf-8")
    return json.loads(str(value))
