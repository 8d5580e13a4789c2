"""Application composition root for the advisory lock worker."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from advisorylock.config import Config
from advisorylock.health_checks import AdvisoryLockHealthCheck
from advisorylock.logging_config import setup_logging
from advisorylock.query_runner import AsyncpgDataSource, DataSource, SQLAlchemyDataSource
from advisorylock.registrar import AdvisoryLockRegistrar, RegisteredMethod
from advisorylock.registry import ComponentRegistry
from advisorylock.service import AdvisoryLockService
from advisorylock.utils.logging_helpers import ContextLoggerAdapter, enforce_context


@dataclass(frozen=True)
class ApplicationServices:
    """Container for infrastructure dependencies shared across the worker."""

    logger: ContextLoggerAdapter
    data_source: DataSource
    health_check: AdvisoryLockHealthCheck
    lock_service: AdvisoryLockService
    registry: ComponentRegistry
    registrar: AdvisoryLockRegistrar


def _make_service_logger(
    parent_logger: ContextLoggerAdapter, child_name: str, category: str
) -> ContextLoggerAdapter:
    """Return a child logger enriched with the provided ``category`` context."""

    return enforce_context(
        parent_logger.getChild(child_name), {"request_category": category}
    )


def _build_data_source(cfg: Config, logger: ContextLoggerAdapter) -> DataSource:
    if not cfg.DATABASE_URL:
        raise ValueError("ADVISORYLOCK_DATABASE_URL must be set to build the data source")

    if cfg.DB_BACKEND == "sqlalchemy":
        logger.info(
            "Using SQLAlchemy engine for advisory locks",
            extra={"event_type": "data_source_selected", "backend": "sqlalchemy"},
        )
        return SQLAlchemyDataSource(cfg.SQLALCHEMY_URL, echo=cfg.DATABASE_ECHO)

    logger.info(
        "Using asyncpg pool for advisory locks",
        extra={
            "event_type": "data_source_selected",
            "backend": "asyncpg",
            "min_size": cfg.DB_POOL_MIN_SIZE,
            "max_size": cfg.DB_POOL_MAX_SIZE,
        },
    )
    return AsyncpgDataSource(
        cfg.ASYNCPG_DSN,
        min_size=cfg.DB_POOL_MIN_SIZE,
        max_size=cfg.DB_POOL_MAX_SIZE,
        command_timeout=cfg.DB_COMMAND_TIMEOUT,
        logger=logger,
    )


def build_services(
    cfg: Config,
    *,
    registry: Optional[ComponentRegistry] = None,
    data_source: Optional[DataSource] = None,
    configure_logging: bool = True,
) -> ApplicationServices:
    """Initialise logging and the shared lock infrastructure."""

    if configure_logging:
        setup_logging(logging.INFO, debug_mode=cfg.DEBUG)
    logger = enforce_context(logging.getLogger("advisorylock"))

    db_logger = _make_service_logger(logger, "data_source", "database")
    if data_source is None:
        data_source = _build_data_source(cfg, db_logger)

    health_check = AdvisoryLockHealthCheck()
    lock_service = AdvisoryLockService(
        data_source,
        logger=_make_service_logger(logger, "lock_service", "advisory_lock"),
        health_check=health_check,
    )

    registry = registry if registry is not None else ComponentRegistry()
    registrar = AdvisoryLockRegistrar(
        registry,
        lock_service,
        logger=_make_service_logger(logger, "registrar", "startup"),
    )

    return ApplicationServices(
        logger=logger,
        data_source=data_source,
        health_check=health_check,
        lock_service=lock_service,
        registry=registry,
        registrar=registrar,
    )


async def start_services(services: ApplicationServices) -> List[RegisteredMethod]:
    """Startup hook: open the pool, then wire every registered component once.

    Call it after all components have been registered.
    """

    connect = getattr(services.data_source, "connect", None)
    if connect is not None:
        await connect()
    return await services.registrar.on_startup()


async def shutdown_services(services: ApplicationServices) -> None:
    close = getattr(services.data_source, "close", None)
    if close is None:
        return
    try:
        await close()
    except Exception:
        services.logger.exception(
            "Failed to close data source",
            extra={"event_type": "data_source_close_failed"},
        )
