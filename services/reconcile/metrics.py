"""Prometheus counters for plan generation and execution.

Each ``ReconcileMetrics`` owns its collectors on the registry it was given, so
tests can build isolated instances on a fresh ``CollectorRegistry``. The
process-wide instance lives on the default registry.
"""

from __future__ import annotations

from threading import Lock

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge

OUTCOME_SUCCEEDED = "succeeded"
OUTCOME_ABORTED = "aborted"
OUTCOME_TIMEOUT = "timeout"

PHASE_START = "start"
PHASE_PROGRESS = "progress"


class ReconcileMetrics:
    """Counters labelled by deployment name, action type and plan kind."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        registry = REGISTRY if registry is None else registry
        self.registry = registry
        self.actions_generated = Counter(
            "clusterplan_actions_generated_total",
            "Number of actions added to a plan",
            ["deployment", "action", "plan"],
            registry=registry,
        )
        self.actions_finished = Counter(
            "clusterplan_actions_finished_total",
            "Number of actions removed from a plan, by outcome",
            ["deployment", "action", "plan", "outcome"],
            registry=registry,
        )
        self.action_errors = Counter(
            "clusterplan_action_errors_total",
            "Number of transient action failures",
            ["deployment", "action", "plan", "phase"],
            registry=registry,
        )
        self.actions_current = Gauge(
            "clusterplan_actions_current",
            "Actions currently in progress",
            ["deployment", "group", "member", "action", "plan"],
            registry=registry,
        )

    def generated(self, deployment: str, action: str, plan: str) -> None:
        self.actions_generated.labels(deployment, action, plan).inc()

    def finished(self, deployment: str, action: str, plan: str, outcome: str) -> None:
        self.actions_finished.labels(deployment, action, plan, outcome).inc()

    def error(self, deployment: str, action: str, plan: str, phase: str) -> None:
        self.action_errors.labels(deployment, action, plan, phase).inc()

    def set_current(
        self,
        deployment: str,
        group: str,
        member: str,
        action: str,
        plan: str,
        value: float,
    ) -> None:
        self.actions_current.labels(deployment, group, member, action, plan).set(value)


_DEFAULT_LOCK = Lock()
_DEFAULT_METRICS: ReconcileMetrics | None = None


def get_default_metrics() -> ReconcileMetrics:
    """Return the process-wide metrics bound to the default registry."""
    global _DEFAULT_METRICS
    with _DEFAULT_LOCK:
        if _DEFAULT_METRICS is None:
            _DEFAULT_METRICS = ReconcileMetrics()
        return _DEFAULT_METRICS
