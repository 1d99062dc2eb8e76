"""Pytest configuration and fixtures."""

import pytest
import pytest_asyncio

from sqldao.database import Database
from sqldao.pool import DbPool
from sqldao.transaction import Transaction
from tests.fakes import FakeConnector


# Configure pytest-asyncio to auto-detect async tests
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture
def anyio_backend():
    """Use asyncio as the async backend."""
    return "asyncio"


@pytest.fixture
def connector() -> FakeConnector:
    """Connector handing out in-memory fake connections."""
    return FakeConnector()


@pytest_asyncio.fixture
async def pool(connector: FakeConnector):
    """Pool of up to four fake connections."""
    pool = DbPool(connector, min_size=0, max_size=4, acquire_timeout=1.0, name="test")
    yield pool
    await pool.close(force=True)


@pytest_asyncio.fixture
async def sqlite_db(tmp_path):
    """Database on a fresh SQLite file, with a ``publisher`` table."""
    db = Database(f"sqlite:///{tmp_path / 'sqldao.db'}")
    await db.open()

    async def create_schema() -> None:
        await Transaction.current().db.execute(
            "create table publisher ("
            " id integer primary key autoincrement,"
            " name text not null,"
            " email text not null"
            ")"
        )

    await db.with_transaction(create_schema)
    yield db
    await db.close(force=True)
