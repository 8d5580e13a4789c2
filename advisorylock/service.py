"""Transaction-scoped PostgreSQL advisory lock coordination.

Every attempt runs on its own connection::

    connect -> BEGIN -> SELECT pg_try_advisory_xact_lock($1)
        locked = false -> COMMIT                      (skipped)
        locked = true  -> action() -> COMMIT          (ran)
        any error      -> ROLLBACK                    (failed)
    release (always, exactly once)

The lock is never unlocked explicitly; it ends with the transaction, so a
crashed process releases it when its connection drops.  Contention is not an
error: the losing instance simply does nothing.  Failures are logged and never
raised to the caller, which is usually a scheduler or timer.
"""

from __future__ import annotations

import inspect
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Sequence

from advisorylock.hashing import hash_key
from advisorylock.metrics import LOCK_ACTION_DURATION, LOCK_ATTEMPTS_TOTAL
from advisorylock.query_runner import DataSource, QueryRunner
from advisorylock.utils.logging_helpers import ContextLoggerAdapter, LoggerLike, ensure_logger

if TYPE_CHECKING:  # pragma: no cover - typing only
    from advisorylock.health_checks import AdvisoryLockHealthCheck


TRY_LOCK_SQL = "SELECT pg_try_advisory_xact_lock($1) AS locked"

GuardedAction = Callable[[], Awaitable[Any]]


class LockQueryError(RuntimeError):
    """Raised when the try-lock statement returns an unexpected result."""


class LockOutcome(str, Enum):
    RAN = "ran"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class LockResult:
    lock_id: int
    outcome: LockOutcome
    error: Optional[Exception] = None

    @property
    def ran(self) -> bool:
        return self.outcome is LockOutcome.RAN

    @property
    def skipped(self) -> bool:
        return self.outcome is LockOutcome.SKIPPED

    @property
    def failed(self) -> bool:
        return self.outcome is LockOutcome.FAILED


def _is_locked(rows: Sequence[Any]) -> bool:
    if not rows:
        raise LockQueryError("pg_try_advisory_xact_lock returned no rows")
    return bool(rows[0]["locked"])


class AdvisoryLockService:
    """Runs guarded actions only on the instance that wins the advisory lock."""

    hash_key = staticmethod(hash_key)

    def __init__(
        self,
        data_source: DataSource,
        *,
        logger: Optional[LoggerLike] = None,
        health_check: Optional["AdvisoryLockHealthCheck"] = None,
    ) -> None:
        self._data_source = data_source
        self._logger = ensure_logger(logger, __name__)
        self._health_check = health_check

    @property
    def data_source(self) -> DataSource:
        return self._data_source

    async def with_lock(self, lock_id: int, action: GuardedAction) -> None:
        """Try to take ``lock_id`` and run ``action`` while holding it.

        Returns ``None`` whether the action ran, was skipped because another
        instance holds the lock, or failed.  Use :meth:`run_with_lock` to
        observe which of the three happened.
        """

        await self.run_with_lock(lock_id, action)

    async def run_with_lock(self, lock_id: int, action: GuardedAction) -> LockResult:
        log = self._logger.for_lock(lock_id)
        runner: Optional[QueryRunner] = None
        in_transaction = False

        try:
            runner = self._data_source.create_query_runner()
            await runner.connect()
            await runner.start_transaction()
            in_transaction = True

            rows = await runner.query(TRY_LOCK_SQL, [lock_id])
            if not _is_locked(rows):
                in_transaction = False
                await runner.commit_transaction()
                log.debug(
                    "Advisory lock held elsewhere; skipping (lock_id=%s)",
                    lock_id,
                    extra={"event_type": "advisory_lock_skipped", "outcome": LockOutcome.SKIPPED.value},
                )
                result = LockResult(lock_id, LockOutcome.SKIPPED)
            else:
                started = time.perf_counter()
                try:
                    outcome = action()
                    if inspect.isawaitable(outcome):
                        await outcome
                finally:
                    LOCK_ACTION_DURATION.observe(time.perf_counter() - started)
                # A failed COMMIT ends the transaction server-side as well.
                in_transaction = False
                await runner.commit_transaction()
                log.debug(
                    "Advisory lock job completed (lock_id=%s)",
                    lock_id,
                    extra={"event_type": "advisory_lock_ran", "outcome": LockOutcome.RAN.value},
                )
                result = LockResult(lock_id, LockOutcome.RAN)
        except Exception as exc:
            if in_transaction and runner is not None:
                await self._rollback(runner, log)
            log.error(
                "Advisory lock job failed (lock_id=%s): %s",
                lock_id,
                exc,
                extra={
                    "event_type": "advisory_lock_failed",
                    "outcome": LockOutcome.FAILED.value,
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )
            result = LockResult(lock_id, LockOutcome.FAILED, error=exc)
        finally:
            if runner is not None:
                await self._release(runner, log)

        self._record(result)
        return result

    async def _rollback(self, runner: QueryRunner, log: ContextLoggerAdapter) -> None:
        try:
            await runner.rollback_transaction()
        except Exception as exc:
            log.warning(
                "Advisory lock rollback failed: %s",
                exc,
                extra={"event_type": "advisory_lock_rollback_failed", "error_type": type(exc).__name__},
            )

    async def _release(self, runner: QueryRunner, log: ContextLoggerAdapter) -> None:
        try:
            await runner.release()
        except Exception as exc:
            log.warning(
                "Advisory lock connection release failed: %s",
                exc,
                extra={"event_type": "advisory_lock_release_failed", "error_type": type(exc).__name__},
            )

    def _record(self, result: LockResult) -> None:
        LOCK_ATTEMPTS_TOTAL.labels(outcome=result.outcome.value).inc()
        if self._health_check is not None:
            self._health_check.record(result)


__all__ = [
    "AdvisoryLockService",
    "GuardedAction",
    "LockOutcome",
    "LockQueryError",
    "LockResult",
    "TRY_LOCK_SQL",
]
