"""Dedicated-connection query runners used by the advisory lock service.

A query runner owns exactly one database connection for its lifetime and
exposes explicit transaction control.  The advisory lock service creates a
fresh runner for every attempt so that the transaction-scoped lock never
shares a connection with the caller.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, Dict, List, Optional, Protocol, Sequence

import asyncpg
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncTransaction, create_async_engine

from advisorylock.utils.logging_helpers import LoggerLike

_POSITIONAL_PARAM = re.compile(r"\$(\d+)")


class QueryRunnerError(RuntimeError):
    """Raised when a runner is used out of order (e.g. query before connect)."""


class QueryRunner(Protocol):
    """Single connection with explicit transaction control."""

    async def connect(self) -> None:
        ...

    async def start_transaction(self) -> None:
        ...

    async def query(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        ...

    async def commit_transaction(self) -> None:
        ...

    async def rollback_transaction(self) -> None:
        ...

    async def release(self) -> None:
        ...


class DataSource(Protocol):
    """Factory handing out independent query runners."""

    def create_query_runner(self) -> QueryRunner:
        ...


# ----------------------------------------------------------------------
# asyncpg
# ----------------------------------------------------------------------


class AsyncpgDataSource:
    """asyncpg pool that hands out one pooled connection per query runner."""

    def __init__(
        self,
        dsn: str,
        *,
        min_size: int = 1,
        max_size: int = 10,
        command_timeout: Optional[float] = 30,
        logger: Optional[LoggerLike] = None,
    ) -> None:
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._command_timeout = command_timeout
        self._logger = logger
        self._pool: Optional[asyncpg.Pool] = None
        self._lock = asyncio.Lock()

    @property
    def pool(self) -> Optional[asyncpg.Pool]:
        return self._pool

    async def connect(self) -> None:
        """Initialise the asyncpg connection pool if required."""

        if self._pool is not None:
            return

        async with self._lock:
            if self._pool is None:
                if self._logger:
                    self._logger.info(
                        "Creating advisory lock connection pool",
                        extra={
                            "event_type": "db_pool_connect",
                            "min_size": self._min_size,
                            "max_size": self._max_size,
                        },
                    )
                self._pool = await asyncpg.create_pool(
                    dsn=self._dsn,
                    min_size=self._min_size,
                    max_size=self._max_size,
                    command_timeout=self._command_timeout,
                )

    async def close(self) -> None:
        """Dispose of the pool."""

        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def acquire(self) -> asyncpg.Connection:
        if self._pool is None:
            await self.connect()
        if self._pool is None:
            raise QueryRunnerError("asyncpg pool is not available")
        return await self._pool.acquire()

    async def release(self, connection: asyncpg.Connection) -> None:
        if self._pool is None:
            # Pool already closed; nothing left to hand the connection back to.
            return
        await self._pool.release(connection)

    def create_query_runner(self) -> "AsyncpgQueryRunner":
        return AsyncpgQueryRunner(self)


class AsyncpgQueryRunner:
    """Query runner bound to one connection borrowed from an asyncpg pool."""

    def __init__(self, data_source: AsyncpgDataSource) -> None:
        self._data_source = data_source
        self._connection: Optional[asyncpg.Connection] = None
        self._transaction: Optional[Any] = None

    @property
    def is_transaction_active(self) -> bool:
        return self._transaction is not None

    def _require_connection(self) -> asyncpg.Connection:
        if self._connection is None:
            raise QueryRunnerError("Query runner is not connected")
        return self._connection

    async def connect(self) -> None:
        if self._connection is None:
            self._connection = await self._data_source.acquire()

    async def start_transaction(self) -> None:
        connection = self._require_connection()
        if self._transaction is not None:
            raise QueryRunnerError("Transaction already started")
        transaction = connection.transaction()
        await transaction.start()
        self._transaction = transaction

    async def query(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        connection = self._require_connection()
        records = await connection.fetch(sql, *params)
        return [dict(record) for record in records]

    async def commit_transaction(self) -> None:
        if self._transaction is None:
            raise QueryRunnerError("No transaction to commit")
        transaction, self._transaction = self._transaction, None
        await transaction.commit()

    async def rollback_transaction(self) -> None:
        if self._transaction is None:
            raise QueryRunnerError("No transaction to roll back")
        transaction, self._transaction = self._transaction, None
        await transaction.rollback()

    async def release(self) -> None:
        connection, self._connection = self._connection, None
        self._transaction = None
        if connection is not None:
            # Pool release resets the connection, ending any dangling transaction.
            await self._data_source.release(connection)


# ----------------------------------------------------------------------
# SQLAlchemy asyncio
# ----------------------------------------------------------------------


def to_named_params(sql: str, params: Sequence[Any]) -> tuple[str, Dict[str, Any]]:
    """Rewrite ``$1``-style placeholders into SQLAlchemy bound parameters."""

    converted = _POSITIONAL_PARAM.sub(lambda match: f":p{match.group(1)}", sql)
    bound = {f"p{index}": value for index, value in enumerate(params, start=1)}
    return converted, bound


class SQLAlchemyDataSource:
    """SQLAlchemy ``AsyncEngine`` handing out one connection per query runner."""

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        engine: Optional[AsyncEngine] = None,
        echo: bool = False,
    ) -> None:
        if engine is None:
            if not url:
                raise ValueError("SQLAlchemyDataSource requires a database URL or an engine")
            engine = create_async_engine(url, echo=echo, pool_pre_ping=True)
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def connect(self) -> None:
        """Engines connect lazily; present for lifecycle symmetry."""

    async def close(self) -> None:
        await self._engine.dispose()

    def create_query_runner(self) -> "SQLAlchemyQueryRunner":
        return SQLAlchemyQueryRunner(self._engine)


class SQLAlchemyQueryRunner:
    """Query runner bound to one ``AsyncConnection`` of an engine."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._connection: Optional[AsyncConnection] = None
        self._transaction: Optional[AsyncTransaction] = None

    @property
    def is_transaction_active(self) -> bool:
        return self._transaction is not None

    def _require_connection(self) -> AsyncConnection:
        if self._connection is None:
            raise QueryRunnerError("Query runner is not connected")
        return self._connection

    async def connect(self) -> None:
        if self._connection is None:
            self._connection = await self._engine.connect()

    async def start_transaction(self) -> None:
        connection = self._require_connection()
        if self._transaction is not None:
            raise QueryRunnerError("Transaction already started")
        self._transaction = await connection.begin()

    async def query(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        connection = self._require_connection()
        statement, bound = to_named_params(sql, params)
        result = await connection.execute(text(statement), bound)
        return [dict(row) for row in result.mappings().all()]

    async def commit_transaction(self) -> None:
        if self._transaction is None:
            raise QueryRunnerError("No transaction to commit")
        transaction, self._transaction = self._transaction, None
        await transaction.commit()

    async def rollback_transaction(self) -> None:
        if self._transaction is None:
            raise QueryRunnerError("No transaction to roll back")
        transaction, self._transaction = self._transaction, None
        await transaction.rollback()

    async def release(self) -> None:
        connection, self._connection = self._connection, None
        self._transaction = None
        if connection is not None:
            await connection.close()


__all__ = [
    "AsyncpgDataSource",
    "AsyncpgQueryRunner",
    "DataSource",
    "QueryRunner",
    "QueryRunnerError",
    "SQLAlchemyDataSource",
    "SQLAlchemyQueryRunner",
    "to_named_params",
]
