"""
SQLAlchemy adapter

Implements the Generic Adapter Contract on SQLAlchemy Core with an
AsyncEngine. Dialect differences are confined to the DialectStrategy picked
at construction; nothing here branches on the engine name per call.

Each operation runs in its own ``engine.begin()`` block unless the adapter
was bound to a connection by ``transaction()``.
"""

from __future__ import annotations

import copy
import logging
import operator as op
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from typing import Any

import sqlalchemy as sa
from sqlalchemy import ColumnElement, Table
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from consent_store.db.adapters.base import Adapter, SortBy, Where
from consent_store.db.adapters.dialects import DialectStrategy, NaturalKey, get_dialect
from consent_store.db.adapters.sql_schema import build_tables
from consent_store.db.schema import ID_FIELD, TableSchema
from consent_store.db.transform import StorageRules, to_storage, transform_input, transform_output
from consent_store.db.where import Operator, WhereCondition, normalize_where
from consent_store.exceptions import InvalidWhereClauseError
from consent_store.options import ConsentOptions

logger = logging.getLogger(__name__)

_COMPARISONS = {
    Operator.EQ: op.eq,
    Operator.NE: op.ne,
    Operator.LT: op.lt,
    Operator.LTE: op.le,
    Operator.GT: op.gt,
    Operator.GTE: op.ge,
}


def _predicate(table: Table, schema: TableSchema, condition: WhereCondition, rules: StorageRules) -> ColumnElement[bool]:
    if not schema.has_field(condition.field):
        raise InvalidWhereClauseError(
            f"Unknown field '{condition.field}' on model '{schema.entity_name}'",
            condition,
        )
    spec = schema.fields[condition.field]
    column = table.c[spec.column_name(condition.field)]

    if condition.operator == Operator.CONTAINS:
        return column.contains(condition.value, autoescape=True)
    if condition.operator == Operator.STARTS_WITH:
        return column.startswith(condition.value, autoescape=True)
    if condition.operator == Operator.ENDS_WITH:
        return column.endswith(condition.value, autoescape=True)
    if condition.operator == Operator.IN:
        return column.in_([to_storage(value, spec, rules) for value in condition.value])

    value = to_storage(condition.value, spec, rules)
    if value is None and condition.operator == Operator.EQ:
        return column.is_(None)
    if value is None and condition.operator == Operator.NE:
        return column.is_not(None)
    return _COMPARISONS[condition.operator](column, value)


def build_where_clause(
    table: Table,
    schema: TableSchema,
    where: Where | None,
    rules: StorageRules,
) -> ColumnElement[bool] | None:
    """
    Translate a where list into one SQL expression.

    AND conditions are conjoined and the OR conditions form one disjunction
    that is ANDed onto them. Returns None for an empty list.
    """
    and_group, or_group = normalize_where(where)
    conjunction = [_predicate(table, schema, condition, rules) for condition in and_group]
    disjunction = [_predicate(table, schema, condition, rules) for condition in or_group]

    if disjunction:
        conjunction.append(sa.or_(*disjunction))
    if not conjunction:
        return None
    if len(conjunction) == 1:
        return conjunction[0]
    return sa.and_(*conjunction)


class SQLAlchemyAdapter(Adapter):
    """
    Dialect-aware SQL adapter.

    Args:
        engine:  AsyncEngine for sqlite, mysql, postgresql or mssql.
        options: Store options (table names, extra fields, id mode).
        dialect: Strategy override, name or instance. Defaults to the
                 engine's dialect.
    """

    adapter_id = "sqlalchemy"

    def __init__(
        self,
        engine: AsyncEngine,
        options: ConsentOptions | None = None,
        dialect: str | DialectStrategy | None = None,
    ) -> None:
        super().__init__(options)
        self.engine = engine
        self.dialect = get_dialect(dialect or engine.dialect.name)
        self.rules = self.dialect.rules
        self.metadata, self.tables = build_tables(self.schemas, self.dialect, self.ids.database_generated)
        self._connection: AsyncConnection | None = None
        logger.debug("SQLAlchemyAdapter ready (dialect=%s, tables=%d)", self.dialect.name, len(self.tables))

    # ── Connection scope ──────────────────────────────────────────────────────

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[AsyncConnection]:
        if self._connection is not None:
            yield self._connection
        else:
            async with self.engine.begin() as conn:
                yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SQLAlchemyAdapter]:
        """
        Yield a copy of this adapter bound to one connection and transaction.

        Commits when the block exits normally and rolls back on error. Nested
        calls join the outer transaction.
        """
        if self._connection is not None:
            yield self
            return
        async with self.engine.begin() as conn:
            bound = copy.copy(self)
            bound._connection = conn
            yield bound

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(self.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _table(self, model: str) -> tuple[TableSchema, Table]:
        return self.schema(model), self.tables[model]

    def _where(self, table: Table, schema: TableSchema, where: Where | None) -> ColumnElement[bool] | None:
        return build_where_clause(table, schema, where, self.rules)

    def _required_where(self, table: Table, schema: TableSchema, where: Where | None) -> ColumnElement[bool]:
        clause = self._where(table, schema, where)
        if clause is None:
            raise InvalidWhereClauseError(f"Refusing to modify every row of '{schema.entity_name}' without a where clause")
        return clause

    def _id_column(self, schema: TableSchema, table: Table) -> Any:
        return table.c[schema.column_name(ID_FIELD)]

    def _natural_key(
        self,
        schema: TableSchema,
        table: Table,
        values: dict[str, Any],
        unique_field: str | None,
    ) -> NaturalKey | None:
        id_column = schema.column_name(ID_FIELD)
        if values.get(id_column) is not None:
            return table.c[id_column], values[id_column]
        if unique_field is not None:
            column = schema.column_name(unique_field)
            if values.get(column) is not None:
                return table.c[column], values[column]
        return None

    # ── Contract ──────────────────────────────────────────────────────────────

    async def create(
        self,
        model: str,
        data: dict[str, Any],
        select: Iterable[str] | None = None,
        unique_field: str | None = None,
    ) -> dict[str, Any]:
        schema, table = self._table(model)
        values = transform_input(schema, data, "create", self.rules, self.ids)
        async with self._connect() as conn:
            row = await self.dialect.insert(conn, table, values, self._natural_key(schema, table, values, unique_field))
        return transform_output(schema, row, self.rules, select)  # type: ignore[return-value]

    async def find_one(
        self,
        model: str,
        where: Where,
        select: Iterable[str] | None = None,
    ) -> dict[str, Any] | None:
        schema, table = self._table(model)
        stmt = sa.select(table)
        clause = self._where(table, schema, where)
        if clause is not None:
            stmt = stmt.where(clause)
        async with self._connect() as conn:
            row = (await conn.execute(stmt.limit(1))).mappings().first()
        return transform_output(schema, row, self.rules, select)

    async def find_many(
        self,
        model: str,
        where: Where | None = None,
        limit: int | None = None,
        offset: int | None = None,
        sort_by: SortBy | None = None,
    ) -> list[dict[str, Any]]:
        schema, table = self._table(model)
        id_column = self._id_column(schema, table)
        stmt = sa.select(table)
        clause = self._where(table, schema, where)
        if clause is not None:
            stmt = stmt.where(clause)

        order_by = []
        if sort_by is not None:
            column = table.c[schema.column_name(sort_by.field)]
            order_by.append(column.desc() if sort_by.descending else column.asc())
            if sort_by.field != ID_FIELD:
                order_by.append(id_column.asc())

        stmt = self.dialect.paginate(stmt, order_by, id_column, limit or self.default_limit, offset)
        async with self._connect() as conn:
            rows = (await conn.execute(stmt)).mappings().all()
        return [transform_output(schema, row, self.rules) for row in rows]  # type: ignore[misc]

    async def update(self, model: str, where: Where, update: dict[str, Any]) -> dict[str, Any] | None:
        schema, table = self._table(model)
        clause = self._required_where(table, schema, where)
        values = transform_input(schema, update, "update", self.rules)
        if not values:
            return await self.find_one(model, where)
        async with self._connect() as conn:
            row = await self.dialect.update(conn, table, clause, values, self._id_column(schema, table))
        return transform_output(schema, row, self.rules)

    async def update_many(self, model: str, where: Where, update: dict[str, Any]) -> list[dict[str, Any]]:
        schema, table = self._table(model)
        clause = self._required_where(table, schema, where)
        values = transform_input(schema, update, "update", self.rules)
        id_column = self._id_column(schema, table)

        async with self._connect() as conn:
            ids = (await conn.execute(sa.select(id_column).where(clause))).scalars().all()
            if not ids:
                return []
            if values:
                await conn.execute(sa.update(table).where(id_column.in_(ids)).values(values))
            rows = (await conn.execute(sa.select(table).where(id_column.in_(ids)).order_by(id_column))).mappings().all()
        return [transform_output(schema, row, self.rules) for row in rows]  # type: ignore[misc]

    async def count(self, model: str, where: Where | None = None) -> int:
        schema, table = self._table(model)
        stmt = sa.select(sa.func.count(self._id_column(schema, table)))
        clause = self._where(table, schema, where)
        if clause is not None:
            stmt = stmt.where(clause)
        async with self._connect() as conn:
            return int((await conn.execute(stmt)).scalar_one())

    async def delete(self, model: str, where: Where) -> None:
        await self.delete_many(model, where)

    async def delete_many(self, model: str, where: Where) -> int:
        schema, table = self._table(model)
        clause = self._required_where(table, schema, where)
        async with self._connect() as conn:
            result = await conn.execute(sa.delete(table).where(clause))
        return result.rowcount

