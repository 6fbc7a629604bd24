"""
Adapter factory.

Chooses the storage backend from Settings: a SQLAlchemyAdapter on an async
engine when DATABASE_URL is set, otherwise the in-memory adapter.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from consent_store.config import Settings, get_settings
from consent_store.db.adapters.base import Adapter
from consent_store.db.adapters.memory_adapter import MemoryAdapter
from consent_store.db.adapters.sql_adapter import SQLAlchemyAdapter
from consent_store.exceptions import ConfigurationError
from consent_store.options import AdvancedOptions, ConsentOptions

logger = logging.getLogger(__name__)


def create_engine(settings: Settings) -> AsyncEngine:
    if not settings.database_url:
        raise ConfigurationError("DATABASE_URL is not set", setting="database_url")

    # SQLite (aiosqlite) uses a static pool; pool sizing only applies to server databases
    if settings.database_url.startswith("sqlite"):
        return create_async_engine(settings.database_url, echo=settings.sql_echo)

    if settings.environment == "production":
        return create_async_engine(
            settings.database_url,
            echo=settings.sql_echo,
            pool_size=20,
            max_overflow=50,
            pool_timeout=60,
            pool_recycle=1800,
        )
    return create_async_engine(
        settings.database_url,
        echo=settings.sql_echo,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
    )


def default_options(settings: Settings) -> ConsentOptions:
    return ConsentOptions(
        app_name=settings.app_name,
        secret=settings.secret,
        advanced=AdvancedOptions(default_find_many_limit=settings.default_find_many_limit),
    )


def get_adapter(options: ConsentOptions | None = None, settings: Settings | None = None) -> Adapter:
    """
    Build the adapter for the configured database.

    Without a database URL the in-memory adapter is returned; data is lost
    when the process exits.
    """
    settings = settings or get_settings()
    options = options or default_options(settings)

    if not settings.database_url:
        logger.warning("DATABASE_URL not set; using the in-memory adapter (data is not persisted)")
        return MemoryAdapter(options)

    engine = create_engine(settings)
    adapter = SQLAlchemyAdapter(engine, options)
    logger.info("Using %s database adapter", adapter.dialect.name)
    return adapter
