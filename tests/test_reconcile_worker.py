"""Unit tests for the reconcile worker loop and CLI."""
# pylint: disable=protected-access

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from apps.worker import reconcile_worker
from contracts.deployment import ActionType, Deployment, new_action
from infra.config import Settings, WorkerConfig
from services.reconcile.base import ActionImpl
from services.reconcile.reconciler import Reconciler
from services.reconcile.registry import ActionRegistry
from services.reconcile.status_store import InMemoryStatusStore
from tests.fakes import FakeBackend, FixedClock, deployment, make_metrics, settings_with


def _reconciler(*names: str, plan_for: str | None = None) -> Reconciler:
    store = InMemoryStatusStore()
    for name in names:
        plan = [new_action(ActionType.IDLE)] if name == plan_for else []
        store.put(deployment(name, plan=plan))
    return Reconciler(
        store=store,
        backend=FakeBackend(),
        metrics=make_metrics(),
        settings=settings_with(),
        clock=FixedClock(),
    )


def _options(*names: str, once: bool = True) -> reconcile_worker.ReconcileWorkerOptions:
    return reconcile_worker.ReconcileWorkerOptions(
        deployments=names,
        once=once,
        interval_seconds=30.0,
        requeue_seconds=2.0,
        max_concurrency=2,
    )


def test_run_ticks_keeps_order_and_isolates_missing_deployments() -> None:
    reconciler = _reconciler("alpha", "beta", plan_for="beta")

    results = asyncio.run(
        reconcile_worker.run_ticks(["alpha", "missing", "beta"], reconciler, max_concurrency=2)
    )

    assert [r.deployment if r else None for r in results] == ["alpha", None, "beta"]
    assert results[2] is not None and results[2].committed is True


class _MalformedPayloadAction(ActionImpl):
    def start(self) -> bool:
        raise ValueError("backend returned malformed payload")


class _BrokenReadStore(InMemoryStatusStore):
    def get(self, name: str) -> tuple[Deployment, int]:
        if name == "alpha":
            raise RuntimeError("connection reset while reading status")
        return super().get(name)


def test_untyped_action_error_does_not_stop_the_pass() -> None:
    store = InMemoryStatusStore()
    store.put(deployment("alpha", plan=[new_action(ActionType.IDLE)]))
    store.put(deployment("beta"))
    registry = ActionRegistry()
    registry.register(ActionType.IDLE, _MalformedPayloadAction)
    reconciler = Reconciler(
        store=store,
        backend=FakeBackend(),
        registry=registry.freeze(),
        metrics=make_metrics(),
        settings=settings_with(),
        clock=FixedClock(),
    )

    stats = reconcile_worker.run_pass(_options("alpha", "beta"), reconciler)

    assert stats.ticks == 2
    assert stats.failed == 0
    assert len(store.get("alpha")[0].status.plan) == 1


def test_escaping_tick_error_only_fails_its_deployment() -> None:
    store = _BrokenReadStore()
    store.put(deployment("alpha"))
    store.put(deployment("beta", plan=[new_action(ActionType.IDLE)]))
    reconciler = Reconciler(
        store=store,
        backend=FakeBackend(),
        metrics=make_metrics(),
        settings=settings_with(),
        clock=FixedClock(),
    )

    results = asyncio.run(reconcile_worker.run_ticks(["alpha", "beta"], reconciler))

    assert results[0] is None
    assert results[1] is not None and results[1].committed is True
    assert store.get("beta")[0].status.plan == []


def test_run_ticks_rejects_zero_concurrency() -> None:
    with pytest.raises(ValueError):
        asyncio.run(reconcile_worker.run_ticks(["a"], _reconciler("a"), max_concurrency=0))


def test_run_pass_summarizes_results() -> None:
    stats = reconcile_worker.run_pass(_options("alpha", "beta", "gone"), _reconciler("alpha", "beta", plan_for="alpha"))

    assert stats.ticks == 3
    assert stats.committed == 1
    assert stats.failed == 1
    assert stats.conflicts == 0
    assert stats.call_again is False


def test_run_loop_requeues_quickly_when_asked_to_call_again(monkeypatch: Any) -> None:
    passes = iter(
        [
            reconcile_worker.ReconcilePassStats(1, 1, 0, 0, True),
            reconcile_worker.ReconcilePassStats(1, 0, 0, 0, False),
        ]
    )
    sleeps: list[float] = []

    def _sleep(seconds: float) -> None:
        sleeps.append(seconds)
        if len(sleeps) == 2:
            raise KeyboardInterrupt

    monkeypatch.setattr(reconcile_worker, "run_pass", lambda options, reconciler: next(passes))

    with pytest.raises(KeyboardInterrupt):
        reconcile_worker.run_loop(_options("alpha", once=False), _reconciler("alpha"), sleep=_sleep)

    assert sleeps == [2.0, 30.0]


def test_run_loop_once_does_not_sleep() -> None:
    sleeps: list[float] = []

    stats = reconcile_worker.run_loop(_options("alpha"), _reconciler("alpha"), sleep=sleeps.append)

    assert stats.ticks == 1
    assert sleeps == []


def test_load_backend_builds_from_module_path() -> None:
    backend = reconcile_worker.load_backend("tests.fakes:FakeBackend")
    assert isinstance(backend, FakeBackend)

    with pytest.raises(ValueError):
        reconcile_worker.load_backend("tests.fakes.FakeBackend")


def _patch_main(monkeypatch: Any, settings: Settings) -> dict[str, Any]:
    captured: dict[str, Any] = {}
    monkeypatch.setattr(reconcile_worker, "setup_logging", lambda: None)
    monkeypatch.setattr(reconcile_worker, "get_settings", lambda **_: settings)
    monkeypatch.setattr(
        reconcile_worker,
        "build_reconciler",
        lambda settings, backend: captured.setdefault("backend", backend),
    )

    def _run_loop(options: Any, reconciler: Any) -> None:
        captured["options"] = options

    monkeypatch.setattr(reconcile_worker, "run_loop", _run_loop)
    return captured


def test_main_requires_deployments(monkeypatch: Any) -> None:
    _patch_main(monkeypatch, Settings())

    with pytest.raises(SystemExit, match="Missing --deployment"):
        reconcile_worker.main(["--backend", "tests.fakes:FakeBackend"])


def test_main_requires_backend(monkeypatch: Any) -> None:
    _patch_main(monkeypatch, Settings())

    with pytest.raises(SystemExit, match="Missing --backend"):
        reconcile_worker.main(["--deployment", "prod-db"])


def test_main_uses_env_defaults_and_cli_overrides(monkeypatch: Any) -> None:
    settings = Settings(
        worker=WorkerConfig(deployments=["a", "b"], backend="tests.fakes:FakeBackend", max_concurrency=3)
    )
    captured = _patch_main(monkeypatch, settings)

    reconcile_worker.main(["--once", "--interval", "5"])

    options = captured["options"]
    assert options.deployments == ("a", "b")
    assert options.once is True
    assert options.interval_seconds == 5.0
    assert options.max_concurrency == 3
    assert isinstance(captured["backend"], FakeBackend)


def test_main_init_schema_creates_table(monkeypatch: Any) -> None:
    settings = Settings(worker=WorkerConfig(deployments=["a"], backend="tests.fakes:FakeBackend"))
    _patch_main(monkeypatch, settings)
    conns: list[object] = []

    class _Ctx:
        def __enter__(self) -> object:
            conn = object()
            conns.append(conn)
            return conn

        def __exit__(self, *exc: object) -> None:
            return None

    created: list[object] = []
    monkeypatch.setattr(reconcile_worker, "db_conn", _Ctx)
    monkeypatch.setattr(reconcile_worker, "ensure_schema", created.append)

    reconcile_worker.main(["--once", "--init-schema"])

    assert created == conns
    assert len(created) == 1
