from unittest.mock import AsyncMock, MagicMock

import pytest

import advisorylock.query_runner as query_runner_module
from advisorylock.query_runner import (
    AsyncpgDataSource,
    QueryRunnerError,
    SQLAlchemyDataSource,
    to_named_params,
)
from advisorylock.service import TRY_LOCK_SQL, AdvisoryLockService


def _asyncpg_pool(rows=None):
    transaction = MagicMock(name="transaction")
    transaction.start = AsyncMock()
    transaction.commit = AsyncMock()
    transaction.rollback = AsyncMock()

    connection = MagicMock(name="connection")
    connection.transaction = MagicMock(return_value=transaction)
    connection.fetch = AsyncMock(return_value=rows if rows is not None else [{"locked": True}])

    pool = MagicMock(name="pool")
    pool.acquire = AsyncMock(return_value=connection)
    pool.release = AsyncMock()
    pool.close = AsyncMock()
    return pool, connection, transaction


@pytest.fixture
def asyncpg_pool(monkeypatch):
    pool, connection, transaction = _asyncpg_pool()
    create_pool = AsyncMock(return_value=pool)
    monkeypatch.setattr(query_runner_module.asyncpg, "create_pool", create_pool)
    return create_pool, pool, connection, transaction


@pytest.mark.asyncio
async def test_asyncpg_pool_is_created_once(asyncpg_pool):
    create_pool, pool, _, _ = asyncpg_pool
    source = AsyncpgDataSource("postgresql://localhost/app", min_size=2, max_size=5, command_timeout=10)

    await source.connect()
    await source.connect()

    create_pool.assert_awaited_once_with(
        dsn="postgresql://localhost/app", min_size=2, max_size=5, command_timeout=10
    )
    assert source.pool is pool


@pytest.mark.asyncio
async def test_asyncpg_runner_full_cycle(asyncpg_pool):
    _, pool, connection, transaction = asyncpg_pool
    runner = AsyncpgDataSource("postgresql://localhost/app").create_query_runner()

    await runner.connect()
    await runner.start_transaction()
    assert runner.is_transaction_active
    rows = await runner.query(TRY_LOCK_SQL, [12345])
    await runner.commit_transaction()
    await runner.release()

    assert rows == [{"locked": True}]
    connection.fetch.assert_awaited_once_with(TRY_LOCK_SQL, 12345)
    transaction.start.assert_awaited_once()
    transaction.commit.assert_awaited_once()
    transaction.rollback.assert_not_awaited()
    pool.release.assert_awaited_once_with(connection)
    assert not runner.is_transaction_active


@pytest.mark.asyncio
async def test_asyncpg_runner_rollback(asyncpg_pool):
    _, _, _, transaction = asyncpg_pool
    runner = AsyncpgDataSource("postgresql://localhost/app").create_query_runner()

    await runner.connect()
    await runner.start_transaction()
    await runner.rollback_transaction()

    transaction.rollback.assert_awaited_once()
    with pytest.raises(QueryRunnerError):
        await runner.rollback_transaction()


@pytest.mark.asyncio
async def test_asyncpg_runner_requires_connection(asyncpg_pool):
    runner = AsyncpgDataSource("postgresql://localhost/app").create_query_runner()

    with pytest.raises(QueryRunnerError):
        await runner.start_transaction()
    with pytest.raises(QueryRunnerError):
        await runner.query(TRY_LOCK_SQL, [1])
    with pytest.raises(QueryRunnerError):
        await runner.commit_transaction()


@pytest.mark.asyncio
async def test_asyncpg_release_is_noop_without_connection(asyncpg_pool):
    _, pool, _, _ = asyncpg_pool
    runner = AsyncpgDataSource("postgresql://localhost/app").create_query_runner()

    await runner.release()

    pool.release.assert_not_awaited()


@pytest.mark.asyncio
async def test_asyncpg_close_disposes_pool(asyncpg_pool):
    _, pool, _, _ = asyncpg_pool
    source = AsyncpgDataSource("postgresql://localhost/app")
    await source.connect()

    await source.close()

    pool.close.assert_awaited_once()
    assert source.pool is None


@pytest.mark.asyncio
async def test_service_over_asyncpg_source(asyncpg_pool):
    _, pool, connection, transaction = asyncpg_pool
    service = AdvisoryLockService(AsyncpgDataSource("postgresql://localhost/app"))
    action = AsyncMock()

    result = await service.run_with_lock(7, action)

    assert result.ran
    action.assert_awaited_once()
    transaction.commit.assert_awaited_once()
    pool.release.assert_awaited_once_with(connection)


def test_to_named_params_rewrites_placeholders():
    statement, bound = to_named_params("SELECT $1, $2, $1", ["a", 2])

    assert statement == "SELECT :p1, :p2, :p1"
    assert bound == {"p1": "a", "p2": 2}


def _sqlalchemy_engine(rows):
    result = MagicMock(name="result")
    result.mappings.return_value.all.return_value = rows

    transaction = MagicMock(name="transaction")
    transaction.commit = AsyncMock()
    transaction.rollback = AsyncMock()

    connection = MagicMock(name="connection")
    connection.begin = AsyncMock(return_value=transaction)
    connection.execute = AsyncMock(return_value=result)
    connection.close = AsyncMock()

    engine = MagicMock(name="engine")
    engine.connect = AsyncMock(return_value=connection)
    engine.dispose = AsyncMock()
    return engine, connection, transaction


@pytest.mark.asyncio
async def test_sqlalchemy_runner_full_cycle():
    engine, connection, transaction = _sqlalchemy_engine([{"locked": False}])
    source = SQLAlchemyDataSource(engine=engine)
    runner = source.create_query_runner()

    await runner.connect()
    await runner.start_transaction()
    rows = await runner.query(TRY_LOCK_SQL, [42])
    await runner.commit_transaction()
    await runner.release()

    assert rows == [{"locked": False}]
    statement, bound = connection.execute.await_args.args
    assert str(statement) == "SELECT pg_try_advisory_xact_lock(:p1) AS locked"
    assert bound == {"p1": 42}
    transaction.commit.assert_awaited_once()
    connection.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_sqlalchemy_runner_rollback_and_release():
    engine, connection, transaction = _sqlalchemy_engine([{"locked": True}])
    runner = SQLAlchemyDataSource(engine=engine).create_query_runner()

    await runner.connect()
    await runner.start_transaction()
    await runner.rollback_transaction()
    await runner.release()
    await runner.release()

    transaction.rollback.assert_awaited_once()
    connection.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_sqlalchemy_source_close_disposes_engine():
    engine, _, _ = _sqlalchemy_engine([])
    source = SQLAlchemyDataSource(engine=engine)

    await source.connect()
    await source.close()

    engine.dispose.assert_awaited_once()


def test_sqlalchemy_source_requires_url_or_engine():
    with pytest.raises(ValueError):
        SQLAlchemyDataSource()


@pytest.mark.asyncio
async def test_asyncpg_acquire_without_pool_raises_query_runner_error(monkeypatch):
    monkeypatch.setattr(query_runner_module.asyncpg, "create_pool", AsyncMock(return_value=None))
    runner = AsyncpgDataSource("postgresql://localhost/app").create_query_runner()

    with pytest.raises(QueryRunnerError):
        await runner.connect()
