"""Tests for pooled DB connection lifecycle and the *_conn helpers."""

from __future__ import annotations

from typing import Any

import pytest

import apps.backend.db as db_mod
from infra.config import DatabaseConfig, Settings


class _FakeCursor:
    def __init__(self, conn: "_FakeConn") -> None:
        self._conn = conn
        self.rowcount = conn.rowcount
        self.description = conn.description

    def __enter__(self) -> "_FakeCursor":
        return self

    def __exit__(self, *exc: object) -> None:
        return None

    def execute(self, sql: str, params: Any) -> None:
        self._conn.executed.append((sql, tuple(params)))

    def fetchone(self) -> Any:
        return self._conn.row


class _FakeConn:
    """Minimal fake psycopg2 connection."""

    def __init__(self, *, rollback_raises: bool = False) -> None:
        self.rollback_calls = 0
        self.close_calls = 0
        self.executed: list[tuple[str, tuple[Any, ...]]] = []
        self.rowcount = 0
        self.row: Any = None
        self.description: Any = None
        self._rollback_raises = rollback_raises

    def cursor(self) -> _FakeCursor:
        return _FakeCursor(self)

    def rollback(self) -> None:
        self.rollback_calls += 1
        if self._rollback_raises:
            raise RuntimeError("rollback failed")

    def close(self) -> None:
        self.close_calls += 1


class _FakePool:
    def __init__(self, conn: _FakeConn, *, put_raises: bool = False) -> None:
        self._conn = conn
        self.put_calls = 0
        self._put_raises = put_raises

    def getconn(self) -> _FakeConn:
        return self._conn

    def putconn(self, conn: _FakeConn) -> None:
        assert conn is self._conn
        self.put_calls += 1
        if self._put_raises:
            raise RuntimeError("putconn failed")


def test_uncommitted_status_write_is_rolled_back_on_return(monkeypatch: Any) -> None:
    """A borrower that raises mid-transaction must not leak its write."""
    conn = _FakeConn()
    pool = _FakePool(conn)
    monkeypatch.setattr(db_mod, "_get_pool", lambda: pool)

    with pytest.raises(ValueError):
        with db_mod.db_conn() as acquired:
            assert acquired is conn
            db_mod.execute_conn(acquired, "UPDATE deployment_status SET version = version + 1")
            raise ValueError("tick failed")

    assert conn.rollback_calls == 1
    assert pool.put_calls == 1
    assert conn.close_calls == 0


def test_db_conn_still_returns_connection_when_rollback_fails(monkeypatch: Any) -> None:
    conn = _FakeConn(rollback_raises=True)
    pool = _FakePool(conn)
    monkeypatch.setattr(db_mod, "_get_pool", lambda: pool)

    with db_mod.db_conn():
        pass

    assert pool.put_calls == 1
    assert conn.close_calls == 0


def test_db_conn_closes_when_putconn_fails(monkeypatch: Any) -> None:
    conn = _FakeConn()
    pool = _FakePool(conn, put_raises=True)
    monkeypatch.setattr(db_mod, "_get_pool", lambda: pool)

    with db_mod.db_conn():
        pass

    assert pool.put_calls == 1
    assert conn.close_calls == 1


def test_missing_db_url_is_reported(monkeypatch: Any) -> None:
    monkeypatch.setattr(db_mod, "get_settings", lambda: Settings(db=DatabaseConfig(url=None)))

    with pytest.raises(RuntimeError, match="DB_URL is not set"):
        db_mod._db_url()  # pylint: disable=protected-access


def test_execute_conn_returns_rowcount() -> None:
    conn = _FakeConn()
    conn.rowcount = 1

    assert db_mod.execute_conn(conn, "UPDATE t SET x = %s WHERE id = %s", (1, "a")) == 1
    assert conn.executed == [("UPDATE t SET x = %s WHERE id = %s", (1, "a"))]


def test_fetch_one_dict_conn_maps_columns() -> None:
    conn = _FakeConn()
    conn.row = ("prod-db", 4)
    conn.description = [("name",), ("version",)]

    assert db_mod.fetch_one_dict_conn(conn, "SELECT name, version FROM t") == {
        "name": "prod-db",
        "version": 4,
    }

    conn.row = None
    assert db_mod.fetch_one_dict_conn(conn, "SELECT 1") is None


@pytest.mark.parametrize(
    "raw",
    [
        {"plan": []},
        '{"plan": []}',
        b'{"plan": []}',
    ],
)
def test_from_jsonb_accepts_driver_representations(raw: Any) -> None:
    assert db_mod.from_jsonb(raw) == {"plan": []}


def test_to_jsonb_is_compact() -> None:
    assert db_mod.to_jsonb({"memberID": "PRMR-1", "params": {}}) == '{"memberID":"PRMR-1","params":{}}'
