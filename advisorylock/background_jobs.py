"""
Interval-driven triggers for guarded jobs.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

from advisorylock.utils.logging_helpers import LoggerLike, ensure_logger


class IntervalJob:
    """Periodically await ``callback``; every instance of the service runs one.

    Pair it with a method decorated by ``with_advisory_lock`` so that only one
    instance actually does the work on each tick.
    """

    def __init__(
        self,
        name: str,
        callback: Callable[[], Awaitable[Any]],
        interval_seconds: float = 60,
        *,
        logger: Optional[LoggerLike] = None,
    ):
        self._name = name
        self._callback = callback
        self._interval = interval_seconds
        self._logger = ensure_logger(logger, __name__).bind(component=name)
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.cycles = 0

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the job loop."""

        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        self._logger.info(
            "Started interval job",
            extra={"event_type": "interval_job_started", "interval_seconds": self._interval},
        )

    async def stop(self) -> None:
        """Stop the job loop gracefully."""

        self._running = False
        task = self._task
        if task is None:
            self._logger.info("Stopped interval job", extra={"event_type": "interval_job_stopped"})
            return

        task.cancel()

        try:
            await task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None
            self._logger.info("Stopped interval job", extra={"event_type": "interval_job_stopped"})

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                self._logger.error(
                    "Interval job cycle failed",
                    extra={
                        "event_type": "interval_job_failed",
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                    exc_info=True,
                )

            if not self._running:
                break

            try:
                await asyncio.sleep(self._interval)
            except asyncio.CancelledError:
                break

    async def run_once(self) -> None:
        """Run a single cycle."""

        started = time.perf_counter()
        try:
            await self._callback()
        finally:
            self.cycles += 1
            self._logger.debug(
                "Interval job cycle finished",
                extra={
                    "event_type": "interval_job_cycle",
                    "duration_seconds": round(time.perf_counter() - started, 4),
                },
            )


__all__ = ["IntervalJob"]
