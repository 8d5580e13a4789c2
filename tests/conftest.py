"""Pytest configuration shared across the test suite."""

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
from unittest.mock import AsyncMock, MagicMock

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


import pytest

from advisorylock.service import AdvisoryLockService


class InMemoryAdvisoryLockDatabase:
    """Data source emulating transaction-scoped advisory locks.

    Locks are owned by the runner whose transaction took them and disappear
    when that transaction commits or rolls back, or when the runner is
    released.
    """

    def __init__(self) -> None:
        self.held: Dict[int, "InMemoryQueryRunner"] = {}
        self.runners: List["InMemoryQueryRunner"] = []
        self.statements: List[tuple] = []

    def create_query_runner(self) -> "InMemoryQueryRunner":
        runner = InMemoryQueryRunner(self)
        self.runners.append(runner)
        return runner

    @property
    def connections_acquired(self) -> int:
        return sum(1 for runner in self.runners if runner.connected_count)

    @property
    def connections_released(self) -> int:
        return sum(runner.release_count for runner in self.runners)

    def _drop_locks_of(self, runner: "InMemoryQueryRunner") -> None:
        for lock_id in [key for key, owner in self.held.items() if owner is runner]:
            del self.held[lock_id]


class InMemoryQueryRunner:
    def __init__(self, database: InMemoryAdvisoryLockDatabase) -> None:
        self._database = database
        self.connected_count = 0
        self.release_count = 0
        self.commits = 0
        self.rollbacks = 0
        self.in_transaction = False

    async def connect(self) -> None:
        self.connected_count += 1

    async def start_transaction(self) -> None:
        self.in_transaction = True

    async def query(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        self._database.statements.append((sql, list(params)))
        lock_id = params[0]
        owner = self._database.held.get(lock_id)
        if owner is None:
            self._database.held[lock_id] = self
            return [{"locked": True}]
        return [{"locked": owner is self}]

    async def commit_transaction(self) -> None:
        self.commits += 1
        self.in_transaction = False
        self._database._drop_locks_of(self)

    async def rollback_transaction(self) -> None:
        self.rollbacks += 1
        self.in_transaction = False
        self._database._drop_locks_of(self)

    async def release(self) -> None:
        self.release_count += 1
        self._database._drop_locks_of(self)


def build_mock_query_runner(locked: Optional[bool] = True) -> MagicMock:
    runner = MagicMock(name="query_runner")
    runner.connect = AsyncMock(return_value=None)
    runner.start_transaction = AsyncMock(return_value=None)
    runner.commit_transaction = AsyncMock(return_value=None)
    runner.rollback_transaction = AsyncMock(return_value=None)
    runner.release = AsyncMock(return_value=None)
    runner.query = AsyncMock(return_value=[{"locked": locked}])
    return runner


@pytest.fixture
def query_runner() -> MagicMock:
    return build_mock_query_runner()


@pytest.fixture
def data_source(query_runner) -> MagicMock:
    source = MagicMock(name="data_source")
    source.create_query_runner = MagicMock(return_value=query_runner)
    return source


@pytest.fixture
def lock_service(data_source) -> AdvisoryLockService:
    return AdvisoryLockService(data_source)


@pytest.fixture
def lock_database() -> InMemoryAdvisoryLockDatabase:
    return InMemoryAdvisoryLockDatabase()
