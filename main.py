#!/usr/bin/env python3

import asyncio
import signal
import sys
from typing import Mapping

from dotenv import load_dotenv

from advisorylock.background_jobs import IntervalJob
from advisorylock.bootstrap import build_services, shutdown_services, start_services
from advisorylock.config import Config
from advisorylock.decorator import with_advisory_lock


def _startup_log_extra(*, stage: str, additional: Mapping[str, object] | None = None) -> dict:
    """Return a structured ``extra`` payload for startup logs."""

    extra = {"category": "startup", "stage": stage, "event_type": f"startup_{stage}"}
    if additional:
        extra.update(dict(additional))
    return extra


def build_heartbeat(lock_key: str, logger):
    """Create a component whose heartbeat runs on one instance at a time."""

    class Heartbeat:
        def __init__(self) -> None:
            self.beats = 0

        @with_advisory_lock(lock_key)
        async def beat(self) -> None:
            self.beats += 1
            logger.info(
                "Heartbeat owned by this instance",
                extra={"event_type": "heartbeat", "lock_key": lock_key, "beats": self.beats},
            )

    return Heartbeat()


async def run(cfg: Config) -> None:
    services = build_services(cfg)
    logger = services.logger.getChild("main")

    heartbeat = services.registry.register(
        "heartbeat", build_heartbeat(cfg.HEARTBEAT_LOCK_KEY, logger)
    )
    registrations = await start_services(services)
    logger.info(
        "Advisory lock worker started",
        extra=_startup_log_extra(
            stage="ready",
            additional={"registered_components": [r.component_name for r in registrations]},
        ),
    )

    job = IntervalJob(
        "heartbeat",
        heartbeat.beat,
        cfg.HEARTBEAT_INTERVAL,
        logger=services.logger.getChild("jobs"),
    )
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop_event.set)
        except NotImplementedError:  # pragma: no cover - Windows event loops
            pass

    await job.start()
    try:
        await stop_event.wait()
    finally:
        await job.stop()
        await shutdown_services(services)
        logger.info(
            "Advisory lock worker stopped",
            extra=_startup_log_extra(stage="shutdown", additional=services.health_check.get_health_status()),
        )


def main() -> None:
    load_dotenv()
    cfg: Config = Config()

    if not cfg.DATABASE_URL:
        sys.stderr.write(
            "Environment variable ADVISORYLOCK_DATABASE_URL is not set. "
            "Add it to your .env file or container environment.\n"
        )
        sys.exit(1)

    asyncio.run(run(cfg))


if __name__ == "__main__":
    main()
