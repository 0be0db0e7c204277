"""Persisted deployment status with optimistic concurrency.

Writers read a status together with its version and write back only if the
version is unchanged. No lock is held between the read and the write.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from contextlib import AbstractContextManager
from threading import Lock
from typing import Any, Protocol

from pydantic import ValidationError

from apps.backend.db import db_conn, execute_conn, fetch_one_dict_conn, from_jsonb, to_jsonb
from contracts.deployment import Deployment, DeploymentSpec, DeploymentStatus, dump_status
from services.reconcile.errors import (
    DeploymentNotFoundError,
    StatusConflictError,
    StatusDecodeError,
)


class StatusStore(Protocol):
    """Versioned status persistence."""

    def get(self, name: str) -> tuple[Deployment, int]:
        """Return the deployment and its current version."""

    def update(self, name: str, status: DeploymentStatus, expected_version: int) -> int:
        """Write ``status`` if the version is still ``expected_version``; return the new version."""


def _decode(name: str, spec: Any, status: Any) -> Deployment:
    try:
        return Deployment(
            name=name,
            spec=DeploymentSpec.model_validate(spec or {}),
            status=DeploymentStatus.model_validate(status or {}),
        )
    except (ValidationError, ValueError) as exc:
        raise StatusDecodeError(f"cannot decode status of deployment {name!r}: {exc}") from exc


class InMemoryStatusStore:
    """Thread-safe store keeping serialized documents, for tests and local runs."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._rows: dict[str, tuple[str, str, int]] = {}

    def put(self, deployment: Deployment) -> int:
        """Create or replace a deployment unconditionally; return its version."""
        spec = deployment.spec.model_dump_json(by_alias=True)
        status = json.dumps(dump_status(deployment.status))
        with self._lock:
            version = self._rows[deployment.name][2] + 1 if deployment.name in self._rows else 1
            self._rows[deployment.name] = (spec, status, version)
        return version

    def get(self, name: str) -> tuple[Deployment, int]:
        with self._lock:
            row = self._rows.get(name)
        if row is None:
            raise DeploymentNotFoundError(name)
        spec, status, version = row
        return _decode(name, json.loads(spec), json.loads(status)), version

    def update(self, name: str, status: DeploymentStatus, expected_version: int) -> int:
        payload = json.dumps(dump_status(status))
        with self._lock:
            row = self._rows.get(name)
            if row is None:
                raise DeploymentNotFoundError(name)
            spec, _, version = row
            if version != expected_version:
                raise StatusConflictError(name, expected_version)
            self._rows[name] = (spec, payload, version + 1)
            return version + 1

    def version(self, name: str) -> int:
        with self._lock:
            row = self._rows.get(name)
        if row is None:
            raise DeploymentNotFoundError(name)
        return row[2]

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._rows)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS deployment_status (
  name        TEXT PRIMARY KEY,
  spec        JSONB NOT NULL DEFAULT '{}'::jsonb,
  status      JSONB NOT NULL DEFAULT '{}'::jsonb,
  version     BIGINT NOT NULL DEFAULT 1,
  updated_at  TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""


def ensure_schema(conn: Any) -> None:
    """Create the status table when missing."""
    execute_conn(conn, SCHEMA_SQL)
    conn.commit()


class PostgresStatusStore:
    """Status rows in PostgreSQL, guarded by a ``version`` column."""

    def __init__(self, *, conn_factory: Callable[[], AbstractContextManager[Any]] = db_conn) -> None:
        self._conn_factory = conn_factory

    def create(self, deployment: Deployment) -> int:
        """Insert a new deployment row; return its version."""
        with self._conn_factory() as conn:
            rowcount = execute_conn(
                conn,
                """
                INSERT INTO deployment_status (name, spec, status, version, updated_at)
                VALUES (%s, %s::jsonb, %s::jsonb, 1, now())
                ON CONFLICT (name) DO NOTHING
                """,
                (
                    deployment.name,
                    to_jsonb(deployment.spec.model_dump(mode="json", by_alias=True)),
                    to_jsonb(dump_status(deployment.status)),
                ),
            )
            conn.commit()
        if rowcount != 1:
            raise StatusConflictError(deployment.name, 0)
        return 1

    def get(self, name: str) -> tuple[Deployment, int]:
        with self._conn_factory() as conn:
            row = fetch_one_dict_conn(
                conn,
                "SELECT name, spec, status, version FROM deployment_status WHERE name = %s",
                (name,),
            )
        if row is None:
            raise DeploymentNotFoundError(name)
        try:
            spec = from_jsonb(row.get("spec"))
            status = from_jsonb(row.get("status"))
        except (TypeError, ValueError) as exc:
            raise StatusDecodeError(f"cannot decode status of deployment {name!r}: {exc}") from exc
        return _decode(name, spec, status), int(row.get("version") or 0)

    def update(self, name: str, status: DeploymentStatus, expected_version: int) -> int:
        with self._conn_factory() as conn:
            rowcount = execute_conn(
                conn,
                """
                UPDATE deployment_status
                SET
                  status = %s::jsonb,
                  updated_at = now(),
                  version = version + 1
                WHERE name = %s
                  AND version = %s
                """,
                (to_jsonb(dump_status(status)), name, int(expected_version)),
            )
            if rowcount != 1:
                raise StatusConflictError(name, expected_version)
            conn.commit()
        return int(expected_version) + 1
