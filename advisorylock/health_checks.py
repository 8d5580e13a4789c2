"""
Health reporting for advisory lock attempts.
"""
from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Dict, Optional

from cachetools import LRUCache

from advisorylock.utils.time_utils import now_utc

if TYPE_CHECKING:  # pragma: no cover - typing only
    from advisorylock.service import LockResult


class AdvisoryLockHealthCheck:
    """Track lock attempt outcomes for monitoring."""

    def __init__(self, max_tracked_locks: int = 1000):
        self._last_outcomes: LRUCache = LRUCache(maxsize=max_tracked_locks)
        self._ran_count = 0
        self._skipped_count = 0
        self._failed_count = 0

    def record(self, result: "LockResult") -> None:
        """Record the outcome of one lock attempt."""

        if result.ran:
            self._ran_count += 1
        elif result.skipped:
            self._skipped_count += 1
        else:
            self._failed_count += 1

        entry: Dict[str, Any] = {
            "outcome": result.outcome.value,
            "recorded_at": time.time(),
            "error": str(result.error) if result.error is not None else None,
        }
        self._last_outcomes[result.lock_id] = entry

    def last_outcome(self, lock_id: int) -> Optional[Dict[str, Any]]:
        entry = self._last_outcomes.get(lock_id)
        return dict(entry) if entry is not None else None

    def get_health_status(self) -> Dict[str, Any]:
        """
        Return health status for monitoring.

        Returns:
            {
                "status": "healthy" | "degraded" | "unhealthy",
                "total_attempts": int,
                "failure_rate": float,
                "tracked_locks": int,
                "last_check": ISO timestamp
            }

        Skipped attempts are contention, not failures, and do not count
        against the failure rate.
        """

        total = self._ran_count + self._skipped_count + self._failed_count
        failure_rate = self._failed_count / total if total > 0 else 0.0

        if failure_rate > 0.1:
            status = "unhealthy"
        elif failure_rate > 0.05:
            status = "degraded"
        else:
            status = "healthy"

        return {
            "status": status,
            "total_attempts": total,
            "ran_count": self._ran_count,
            "skipped_count": self._skipped_count,
            "failed_count": self._failed_count,
            "failure_rate": round(failure_rate, 4),
            "tracked_locks": len(self._last_outcomes),
            "last_check": now_utc().isoformat(),
        }


__all__ = ["AdvisoryLockHealthCheck"]
