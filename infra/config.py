"""Centralized application configuration with schema validation.

This module is intentionally compatibility-first:
- Supports flat environment names (for example ``DB_URL``).
- Supports nested names (for example ``DB__URL``) for consistency.
- Optionally reads a local ``.env`` file before process env values.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from threading import Lock

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class DatabaseConfig(BaseModel):
    """Database connection settings for the status store."""

    model_config = ConfigDict(frozen=True)

    url: str | None = Field(default=None, description="Postgres connection URL")
    pool_maxconn: int = Field(default=10, ge=1, le=100)
    connect_timeout: int = Field(default=5, ge=1, le=60)


class LoggingSettings(BaseModel):
    """Repository-wide logging settings."""

    model_config = ConfigDict(frozen=True)

    level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)
    override_root_handlers: bool = Field(default=False)

    @field_validator("level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        text = str(value or "").strip().upper()
        if text in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            return text
        return "INFO"


class ReconcileConfig(BaseModel):
    """Plan executor defaults."""

    model_config = ConfigDict(frozen=True)

    default_action_timeout_seconds: float = Field(default=600.0, ge=0.0)
    call_timeout_seconds: float = Field(default=15.0, gt=0.0)
    tick_timeout_seconds: float = Field(default=120.0, gt=0.0)
    failure_backoff_seconds: float = Field(default=60.0, ge=0.0)
    timeout_retry_limit: int = Field(default=1, ge=0, le=100)
    drop_plan_on_abort: bool = Field(default=False)
    action_timeouts: dict[str, float] = Field(default_factory=dict)

    @field_validator("action_timeouts", mode="before")
    @classmethod
    def _parse_action_timeouts(cls, value: object) -> dict[str, float]:
        """Accept a mapping or ``Type=seconds,Type=seconds`` text."""
        if value is None:
            return {}
        if isinstance(value, Mapping):
            return {str(k).strip(): float(v) for k, v in value.items() if str(k).strip()}
        if not isinstance(value, str):
            raise TypeError("reconcile.action_timeouts must be a mapping or 'Type=seconds' list")
        out: dict[str, float] = {}
        for part in value.split(","):
            item = part.strip()
            if not item:
                continue
            if "=" not in item:
                raise ValueError(f"invalid action timeout entry: {item!r}")
            key, raw = item.split("=", 1)
            seconds = float(raw.strip())
            if seconds < 0:
                raise ValueError(f"action timeout must be >= 0: {item!r}")
            out[key.strip()] = seconds
        return out


class MetricsConfig(BaseModel):
    """Prometheus exporter settings."""

    model_config = ConfigDict(frozen=True)

    port: int | None = Field(default=None, ge=1, le=65535)


class WorkerConfig(BaseModel):
    """Control-loop worker defaults."""

    model_config = ConfigDict(frozen=True)

    deployments: list[str] = Field(default_factory=list)
    interval_seconds: float = Field(default=30.0, gt=0.0)
    requeue_seconds: float = Field(default=2.0, gt=0.0)
    max_concurrency: int = Field(default=4, ge=1, le=64)
    backend: str | None = Field(default=None)

    @field_validator("deployments", mode="before")
    @classmethod
    def _normalize_deployments(cls, value: object) -> list[str]:
        """Accept list or comma-separated string and normalize to unique ordered list."""
        if value is None:
            return []
        if isinstance(value, str):
            items = [part.strip() for part in value.split(",") if part.strip()]
        elif isinstance(value, list):
            items = [str(part).strip() for part in value if str(part).strip()]
        else:
            raise TypeError("worker.deployments must be a list[str] or comma-separated string")
        seen: set[str] = set()
        ordered: list[str] = []
        for name in items:
            if name not in seen:
                seen.add(name)
                ordered.append(name)
        return ordered

    @field_validator("backend", mode="before")
    @classmethod
    def _normalize_backend(cls, value: object) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None


class Settings(BaseModel):
    """Top-level settings model."""

    model_config = ConfigDict(frozen=True)

    db: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    reconcile: ReconcileConfig = Field(default_factory=ReconcileConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)

    @classmethod
    def from_env(
        cls,
        *,
        env: Mapping[str, str] | None = None,
        env_file: str = ".env",
    ) -> Settings:
        """Build settings from `.env` then environment variables."""
        runtime_env = os.environ if env is None else env
        merged_env = _merge_env(_load_dotenv(Path(env_file)), runtime_env)
        payload = _build_payload(merged_env)
        return cls.model_validate(payload)


def _load_dotenv(path: Path) -> dict[str, str]:
    """Parse a minimal `.env` file format."""
    if not path.exists() or not path.is_file():
        return {}

    values: dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, raw_value = line.split("=", 1)
        key_clean = key.strip()
        value = raw_value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        if key_clean:
            values[key_clean] = value
    return values


def _merge_env(dotenv_values: Mapping[str, str], runtime_env: Mapping[str, str]) -> dict[str, str]:
    """Return env map where process env overrides `.env` values."""
    merged = {str(k): str(v) for k, v in dotenv_values.items()}
    for key, value in runtime_env.items():
        merged[str(key)] = str(value)
    return merged


def _first_non_empty(env: Mapping[str, str], *keys: str) -> str | None:
    """Return the first non-empty value for the provided keys."""
    for key in keys:
        value = str(env.get(key, "")).strip()
        if value:
            return value
    return None


def _build_payload(env: Mapping[str, str]) -> dict[str, object]:
    """Build nested settings payload from env values."""
    db = {
        "url": _first_non_empty(env, "DB__URL", "DB_URL"),
        "pool_maxconn": _first_non_empty(env, "DB__POOL_MAXCONN", "DB_POOL_MAXCONN"),
        "connect_timeout": _first_non_empty(env, "DB__CONNECT_TIMEOUT", "DB_CONNECT_TIMEOUT"),
    }
    logging_settings = {
        "level": _first_non_empty(env, "LOGGING__LEVEL", "CLUSTERPLAN_LOG_LEVEL"),
        "json_logs": _first_non_empty(env, "LOGGING__JSON_LOGS", "CLUSTERPLAN_LOG_JSON"),
        "override_root_handlers": _first_non_empty(
            env, "LOGGING__OVERRIDE_ROOT_HANDLERS", "CLUSTERPLAN_LOG_OVERRIDE"
        ),
    }
    reconcile = {
        "default_action_timeout_seconds": _first_non_empty(
            env, "RECONCILE__DEFAULT_ACTION_TIMEOUT_SECONDS", "DEFAULT_ACTION_TIMEOUT"
        ),
        "call_timeout_seconds": _first_non_empty(
            env, "RECONCILE__CALL_TIMEOUT_SECONDS", "CALL_TIMEOUT"
        ),
        "tick_timeout_seconds": _first_non_empty(
            env, "RECONCILE__TICK_TIMEOUT_SECONDS", "TICK_TIMEOUT"
        ),
        "failure_backoff_seconds": _first_non_empty(
            env, "RECONCILE__FAILURE_BACKOFF_SECONDS", "FAILURE_BACKOFF"
        ),
        "timeout_retry_limit": _first_non_empty(
            env, "RECONCILE__TIMEOUT_RETRY_LIMIT", "TIMEOUT_RETRY_LIMIT"
        ),
        "drop_plan_on_abort": _first_non_empty(
            env, "RECONCILE__DROP_PLAN_ON_ABORT", "DROP_PLAN_ON_ABORT"
        ),
        "action_timeouts": _first_non_empty(env, "RECONCILE__ACTION_TIMEOUTS", "ACTION_TIMEOUTS"),
    }
    metrics = {
        "port": _first_non_empty(env, "METRICS__PORT", "METRICS_PORT"),
    }
    worker = {
        "deployments": _first_non_empty(env, "WORKER__DEPLOYMENTS", "DEPLOYMENTS"),
        "interval_seconds": _first_non_empty(env, "WORKER__INTERVAL_SECONDS", "RECONCILE_INTERVAL"),
        "requeue_seconds": _first_non_empty(env, "WORKER__REQUEUE_SECONDS", "REQUEUE_INTERVAL"),
        "max_concurrency": _first_non_empty(env, "WORKER__MAX_CONCURRENCY", "MAX_CONCURRENCY"),
        "backend": _first_non_empty(env, "WORKER__BACKEND", "CLUSTER_BACKEND"),
    }
    return {
        "db": {k: v for k, v in db.items() if v is not None},
        "logging": {k: v for k, v in logging_settings.items() if v is not None},
        "reconcile": {k: v for k, v in reconcile.items() if v is not None},
        "metrics": {k: v for k, v in metrics.items() if v is not None},
        "worker": {k: v for k, v in worker.items() if v is not None},
    }


_SETTINGS_LOCK = Lock()
_SETTINGS_CACHE: Settings | None = None


def get_settings(*, reload: bool = False) -> Settings:
    """Return cached settings, optionally forcing reload from env."""
    global _SETTINGS_CACHE
    with _SETTINGS_LOCK:
        if reload or _SETTINGS_CACHE is None:
            _SETTINGS_CACHE = Settings.from_env()
        return _SETTINGS_CACHE


def clear_settings_cache() -> None:
    """Clear in-process settings cache."""
    global _SETTINGS_CACHE
    with _SETTINGS_LOCK:
        _SETTINGS_CACHE = None


__all__ = [
    "DatabaseConfig",
    "LoggingSettings",
    "MetricsConfig",
    "ReconcileConfig",
    "Settings",
    "WorkerConfig",
    "get_settings",
    "clear_settings_cache",
    "ValidationError",
]
