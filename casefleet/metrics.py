"""Prometheus metrics for the coordination layer."""

from fastapi import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, generate_latest

lease_attempts = Counter(
    "casefleet_lease_attempts_total",
    "Lease acquisition attempts by outcome",
    ["outcome"],
)
cooldowns_applied = Counter(
    "casefleet_cooldowns_applied_total",
    "Work items parked after reaching the consecutive error limit",
)
worker_outcomes = Counter(
    "casefleet_worker_outcomes_total",
    "Work item outcomes reported by update workers",
    ["fuero", "result"],
)
stats_write_failures = Counter(
    "casefleet_stats_write_failures_total",
    "Best-effort statistics writes that failed",
    ["operation"],
)
scaling_decisions = Counter(
    "casefleet_scaling_decisions_total",
    "Autoscaling recommendations by action",
    ["fuero", "action"],
)
pending_backlog = Gauge(
    "casefleet_pending_backlog",
    "Eligible work items per fuero at the last manager cycle",
    ["fuero"],
)
optimal_workers = Gauge(
    "casefleet_optimal_workers",
    "Recommended worker count per fuero at the last manager cycle",
    ["fuero"],
)


async def metrics_endpoint() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
