"""Control-loop worker: run reconciliation ticks for configured deployments."""

from __future__ import annotations

import argparse
import asyncio
import importlib
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from prometheus_client import start_http_server

from apps.backend.db import db_conn
from infra.config import Settings, get_settings
from infra.logging_config import StructuredLogger, setup_logging
from services.reconcile.context import ClusterBackend
from services.reconcile.errors import ConfigurationError, DeploymentNotFoundError, ReconcileError
from services.reconcile.events import LoggingEventSink
from services.reconcile.reconciler import Reconciler, TickResult
from services.reconcile.status_store import PostgresStatusStore, ensure_schema
from version import ENGINE_NAME, ENGINE_VERSION

logger = StructuredLogger(__name__)


@dataclass(frozen=True)
class ReconcileWorkerOptions:
    """Input options for one worker run."""

    deployments: tuple[str, ...]
    once: bool = False
    interval_seconds: float = 30.0
    requeue_seconds: float = 2.0
    max_concurrency: int = 4


@dataclass(frozen=True)
class ReconcilePassStats:
    """Summary of one pass over all deployments."""

    ticks: int
    committed: int
    conflicts: int
    failed: int
    call_again: bool


def load_backend(path: str) -> ClusterBackend:
    """Build a cluster backend from a ``module:callable`` path."""
    module_name, sep, attr = str(path or "").partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"backend must look like 'package.module:factory', got {path!r}")
    module = importlib.import_module(module_name)
    factory: Callable[[], Any] = getattr(module, attr)
    return factory()


def _tick_one(reconciler: Reconciler, name: str) -> TickResult | None:
    """Run one tick; fatal deployment errors are logged and do not stop the pass."""
    try:
        return reconciler.tick(name)
    except DeploymentNotFoundError:
        logger.error("deployment_not_found", deployment=name)
    except ConfigurationError as exc:
        logger.exception("deployment_configuration_error", deployment=name, error=str(exc))
    except ReconcileError as exc:
        logger.exception("deployment_tick_failed", deployment=name, error=str(exc))
    except Exception as exc:
        logger.exception("deployment_tick_crashed", deployment=name, error=str(exc))
    return None


async def run_ticks(
    names: Sequence[str],
    reconciler: Reconciler,
    *,
    max_concurrency: int = 4,
) -> list[TickResult | None]:
    """Tick many deployments concurrently with stable ordering."""
    if max_concurrency < 1:
        raise ValueError("max_concurrency must be >= 1")
    semaphore = asyncio.Semaphore(max_concurrency)

    async def _run_one(name: str) -> TickResult | None:
        async with semaphore:
            return await asyncio.to_thread(_tick_one, reconciler, name)

    return list(await asyncio.gather(*(_run_one(name) for name in names)))


def run_pass(options: ReconcileWorkerOptions, reconciler: Reconciler) -> ReconcilePassStats:
    """Tick every deployment once."""
    results = asyncio.run(
        run_ticks(options.deployments, reconciler, max_concurrency=options.max_concurrency)
    )
    done = [r for r in results if r is not None]
    return ReconcilePassStats(
        ticks=len(results),
        committed=sum(1 for r in done if r.committed),
        conflicts=sum(1 for r in done if r.conflict),
        failed=len(results) - len(done),
        call_again=any(r.call_again for r in done),
    )


def run_loop(
    options: ReconcileWorkerOptions,
    reconciler: Reconciler,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> ReconcilePassStats:
    """Run passes until interrupted, or exactly one pass with ``once``."""
    while True:
        stats = run_pass(options, reconciler)
        logger.info(
            "reconcile_pass_done",
            ticks=stats.ticks,
            committed=stats.committed,
            conflicts=stats.conflicts,
            failed=stats.failed,
        )
        if options.once:
            return stats
        sleep(options.requeue_seconds if stats.call_again else options.interval_seconds)


def build_reconciler(settings: Settings, backend: ClusterBackend) -> Reconciler:
    return Reconciler(
        store=PostgresStatusStore(),
        backend=backend,
        event_sink=LoggingEventSink(),
        settings=settings,
    )


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for the reconcile worker."""
    parser = argparse.ArgumentParser(description="Reconcile deployment plans.")
    parser.add_argument(
        "--deployment",
        action="append",
        default=None,
        help="Deployment name; repeatable (or DEPLOYMENTS env var, comma-separated).",
    )
    parser.add_argument(
        "--backend",
        default=None,
        help="Cluster backend factory as 'module:callable' (or CLUSTER_BACKEND env var).",
    )
    parser.add_argument("--once", action="store_true", help="Run a single pass and exit.")
    parser.add_argument(
        "--init-schema",
        action="store_true",
        help="Create the deployment_status table when missing before reconciling.",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between passes when no deployment asked to be called again.",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging()
    settings = get_settings(reload=True)
    worker_cfg = settings.worker

    deployments = tuple(args.deployment or worker_cfg.deployments)
    if not deployments:
        raise SystemExit("Missing --deployment (or DEPLOYMENTS env var).")
    backend_path = str(args.backend or worker_cfg.backend or "").strip()
    if not backend_path:
        raise SystemExit("Missing --backend (or CLUSTER_BACKEND env var).")

    if settings.metrics.port is not None:
        start_http_server(settings.metrics.port)
        logger.info("metrics_exporter_started", port=settings.metrics.port)

    if args.init_schema:
        with db_conn() as conn:
            ensure_schema(conn)
        logger.info("status_schema_ready")

    reconciler = build_reconciler(settings, load_backend(backend_path))
    options = ReconcileWorkerOptions(
        deployments=deployments,
        once=bool(args.once),
        interval_seconds=float(args.interval or worker_cfg.interval_seconds),
        requeue_seconds=float(worker_cfg.requeue_seconds),
        max_concurrency=int(worker_cfg.max_concurrency),
    )
    logger.info(
        "reconcile_worker_started",
        engine=ENGINE_NAME,
        engine_version=ENGINE_VERSION,
        deployments=list(deployments),
        once=options.once,
    )
    try:
        run_loop(options, reconciler)
    except KeyboardInterrupt:
        logger.info("reconcile_worker_stopped")


if __name__ == "__main__":
    main()
