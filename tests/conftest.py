"""Shared fixtures: a fresh SQLite database per test."""

import pytest
import pytest_asyncio

from searchengine.storage.database import DatabaseManager
from searchengine.storage.index_store import IndexStore
from searchengine.utils.config import DatabaseConfig


@pytest.fixture
def database_config(tmp_path):
    return DatabaseConfig(
        url=f"sqlite+aiosqlite:///{tmp_path}/test.db",
        max_retries=20,
        retry_delay=0.01,
    )


@pytest_asyncio.fixture
async def database(database_config):
    db = DatabaseManager(database_config)
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def index_store(database):
    return IndexStore(database)
