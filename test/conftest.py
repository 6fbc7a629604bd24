"""
Pytest configuration and fixtures for consent store tests
"""

import os
import sys
from collections.abc import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))  # noqa: PTH100, PTH118, PTH119, PTH120

from consent_store.config import Settings  # noqa: E402
from consent_store.db.adapters.memory_adapter import MemoryAdapter  # noqa: E402
from consent_store.db.adapters.sql_adapter import SQLAlchemyAdapter  # noqa: E402
from consent_store.options import ConsentOptions  # noqa: E402
from consent_store.registry import ConsentRegistry  # noqa: E402
from consent_store.services.consent_service import ConsentWorkflow  # noqa: E402
from helpers import TEST_SECRET, seed_purposes  # noqa: E402

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


def make_sqlite_engine():
    # One shared connection so every operation sees the same in-memory database
    return create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)


async def make_sqlite_adapter(options: ConsentOptions | None = None, dialect: str | None = None) -> SQLAlchemyAdapter:
    adapter = SQLAlchemyAdapter(make_sqlite_engine(), options, dialect=dialect)
    await adapter.create_schema()
    return adapter


@pytest.fixture
def test_settings() -> Settings:
    """Development settings that never read a .env file"""
    return Settings(_env_file=None, environment="test", secret=TEST_SECRET, database_url=None)


@pytest.fixture
def memory_adapter() -> MemoryAdapter:
    return MemoryAdapter(ConsentOptions())


@pytest.fixture
async def sqlite_adapter() -> AsyncGenerator[SQLAlchemyAdapter, None]:
    adapter = await make_sqlite_adapter(ConsentOptions())
    yield adapter
    await adapter.close()


@pytest.fixture(params=["memory", "sqlite"])
async def adapter(request) -> AsyncGenerator:
    """Every contract test runs against both backends"""
    if request.param == "memory":
        yield MemoryAdapter(ConsentOptions())
        return
    sql_adapter = await make_sqlite_adapter(ConsentOptions())
    yield sql_adapter
    await sql_adapter.close()


@pytest.fixture
async def registry(adapter) -> ConsentRegistry:
    registry = ConsentRegistry(adapter)
    await seed_purposes(registry, "analytics", "marketing", "necessary")
    return registry


@pytest.fixture
def workflow(registry, test_settings) -> ConsentWorkflow:
    return ConsentWorkflow(registry, settings=test_settings)


@pytest.fixture
async def adapter_factory() -> AsyncGenerator:
    """Build adapters with custom options; SQL engines are disposed afterwards"""
    built = []

    async def build(kind: str = "sqlite", options: ConsentOptions | None = None, dialect: str | None = None):
        if kind == "memory":
            return MemoryAdapter(options)
        sql_adapter = await make_sqlite_adapter(options, dialect=dialect)
        built.append(sql_adapter)
        return sql_adapter

    yield build
    for sql_adapter in built:
        await sql_adapter.close()
