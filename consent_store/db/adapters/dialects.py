"""
Dialect strategies.

One strategy per supported engine, chosen once when the adapter is built:

    SQLiteDialect    RETURNING, booleans as 0/1, dates as ISO strings
    MySQLDialect     no RETURNING (insert/update then select), native types
    PostgresDialect  RETURNING, native types
    MSSQLDialect     OUTPUT (via .returning()), booleans as 0/1, native dates

Pagination syntax (LIMIT/OFFSET, TOP, OFFSET ... FETCH) is rendered by the
SQLAlchemy dialect itself; strategies only guarantee an ORDER BY is present
whenever an offset is used.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any, ClassVar

from sqlalchemy import (
    Boolean,
    ColumnElement,
    DateTime,
    Float,
    Integer,
    Select,
    SmallInteger,
    String,
    Table,
    Text,
    insert,
    select,
    update,
)
from sqlalchemy.dialects import mysql
from sqlalchemy.ext.asyncio import AsyncConnection
from sqlalchemy.types import TypeEngine

from consent_store.db.fields import FieldSpec, FieldType, OnDelete
from consent_store.db.transform import StorageRules
from consent_store.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Lookup used to re-read a row on dialects without RETURNING
NaturalKey = tuple[ColumnElement[Any], Any]

_INDEXABLE_STRING_LENGTH = 255


class DialectStrategy(ABC):
    name: ClassVar[str]
    supports_returning: ClassVar[bool]
    rules: ClassVar[StorageRules]

    # ── Column types ──────────────────────────────────────────────────────────

    def id_type(self, database_generated: bool) -> TypeEngine[Any]:
        return Integer() if database_generated else String(_INDEXABLE_STRING_LENGTH)

    @abstractmethod
    def boolean_type(self) -> TypeEngine[Any]: ...

    @abstractmethod
    def date_type(self) -> TypeEngine[Any]: ...

    def column_type(self, spec: FieldSpec) -> TypeEngine[Any]:
        if spec.type == FieldType.BOOLEAN:
            return self.boolean_type()
        if spec.type == FieldType.DATE:
            return self.date_type()
        if spec.type == FieldType.NUMBER:
            return Integer() if spec.references is not None else Float()
        if spec.type in (FieldType.JSON, FieldType.STRING_ARRAY):
            return Text()
        if spec.unique or spec.sortable or spec.references is not None:
            return String(_INDEXABLE_STRING_LENGTH)
        return Text()

    def on_delete(self, action: OnDelete, self_reference: bool) -> str:
        return action.value.upper()

    # ── Statements ────────────────────────────────────────────────────────────

    def paginate(
        self,
        stmt: Select[Any],
        order_by: Sequence[ColumnElement[Any]],
        id_column: ColumnElement[Any],
        limit: int | None,
        offset: int | None,
    ) -> Select[Any]:
        if offset and not order_by:
            order_by = [id_column.asc()]
        if order_by:
            stmt = stmt.order_by(*order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)
        return stmt

    async def insert(
        self,
        conn: AsyncConnection,
        table: Table,
        values: Mapping[str, Any],
        natural_key: NaturalKey | None,
    ) -> Mapping[str, Any] | None:
        result = await conn.execute(insert(table).values(dict(values)).returning(*table.c))
        return result.mappings().first()

    async def update(
        self,
        conn: AsyncConnection,
        table: Table,
        where: ColumnElement[bool],
        values: Mapping[str, Any],
        id_column: ColumnElement[Any],
    ) -> Mapping[str, Any] | None:
        result = await conn.execute(update(table).where(where).values(dict(values)).returning(*table.c))
        return result.mappings().first()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class SQLiteDialect(DialectStrategy):
    name = "sqlite"
    supports_returning = True
    rules = StorageRules(native_boolean=False, native_date=False)

    def boolean_type(self) -> TypeEngine[Any]:
        return Integer()

    def date_type(self) -> TypeEngine[Any]:
        return String(64)


class PostgresDialect(DialectStrategy):
    name = "postgresql"
    supports_returning = True
    rules = StorageRules(native_boolean=True, native_date=True)

    def boolean_type(self) -> TypeEngine[Any]:
        return Boolean()

    def date_type(self) -> TypeEngine[Any]:
        return DateTime(timezone=True)


class MSSQLDialect(DialectStrategy):
    name = "mssql"
    supports_returning = True
    rules = StorageRules(native_boolean=False, native_date=True)

    def boolean_type(self) -> TypeEngine[Any]:
        return SmallInteger()

    def date_type(self) -> TypeEngine[Any]:
        return DateTime(timezone=True)

    def on_delete(self, action: OnDelete, self_reference: bool) -> str:
        # SQL Server has no RESTRICT and rejects cascading self references
        if action == OnDelete.RESTRICT or self_reference:
            return OnDelete.NO_ACTION.value.upper()
        return action.value.upper()


class MySQLDialect(DialectStrategy):
    name = "mysql"
    supports_returning = False
    rules = StorageRules(native_boolean=True, native_date=True)

    def boolean_type(self) -> TypeEngine[Any]:
        return Boolean()

    def date_type(self) -> TypeEngine[Any]:
        # Plain DATETIME drops microseconds
        return DateTime().with_variant(mysql.DATETIME(fsp=6), "mysql")

    async def insert(
        self,
        conn: AsyncConnection,
        table: Table,
        values: Mapping[str, Any],
        natural_key: NaturalKey | None,
    ) -> Mapping[str, Any] | None:
        result = await conn.execute(insert(table).values(dict(values)))
        if natural_key is None:
            primary_key = result.inserted_primary_key
            if primary_key is None or primary_key[0] is None:
                raise ConfigurationError(f"Cannot locate row inserted into '{table.name}': no natural key available")
            id_column = next(iter(table.primary_key.columns))
            natural_key = (id_column, primary_key[0])
        column, value = natural_key
        logger.debug("Select-after-insert on %s by %s", table.name, column)
        found = await conn.execute(select(table).where(column == value).limit(1))
        return found.mappings().first()

    async def update(
        self,
        conn: AsyncConnection,
        table: Table,
        where: ColumnElement[bool],
        values: Mapping[str, Any],
        id_column: ColumnElement[Any],
    ) -> Mapping[str, Any] | None:
        # The written values may no longer match the where clause, so pin the ids first
        ids = (await conn.execute(select(id_column).where(where))).scalars().all()
        if not ids:
            return None
        await conn.execute(update(table).where(id_column.in_(ids)).values(dict(values)))
        logger.debug("Select-after-update on %s for %d row(s)", table.name, len(ids))
        found = await conn.execute(select(table).where(id_column.in_(ids)).order_by(id_column).limit(1))
        return found.mappings().first()


_DIALECTS: dict[str, type[DialectStrategy]] = {
    "sqlite": SQLiteDialect,
    "mysql": MySQLDialect,
    "mariadb": MySQLDialect,
    "postgresql": PostgresDialect,
    "postgres": PostgresDialect,
    "mssql": MSSQLDialect,
}


def get_dialect(dialect: str | DialectStrategy) -> DialectStrategy:
    """Strategy for a SQLAlchemy dialect name, e.g. ``engine.dialect.name``."""
    if isinstance(dialect, DialectStrategy):
        return dialect
    try:
        return _DIALECTS[dialect.lower()]()
    except KeyError:
        raise ConfigurationError(f"Unsupported database dialect '{dialect}'", setting="database_url") from None
