"""Centralised Prometheus metric definitions for the advisory lock coordinator."""

from __future__ import annotations

from prometheus_client import Counter, Histogram


LOCK_ATTEMPTS_TOTAL = Counter(
    "advisory_lock_attempts_total",
    "Advisory lock attempts by outcome",
    labelnames=["outcome"],
)

LOCK_ACTION_DURATION = Histogram(
    "advisory_lock_action_duration_seconds",
    "Time spent running guarded actions while holding the lock",
    buckets=[0.01, 0.05, 0.1, 0.5, 1, 2, 5, 10, 30, 60, 300],
)

LOCK_REGISTRATIONS_TOTAL = Counter(
    "advisory_lock_registrations_total",
    "Component instances wired to the advisory lock service at startup",
)


__all__ = [
    "LOCK_ACTION_DURATION",
    "LOCK_ATTEMPTS_TOTAL",
    "LOCK_REGISTRATIONS_TOTAL",
]
