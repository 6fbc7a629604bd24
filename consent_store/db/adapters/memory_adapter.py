"""
In-memory adapter

A dict-of-lists backend implementing the full adapter contract. Used for
development, tests, and as the fallback when no database URL is configured.
Rows are stored by column name exactly like the SQL backends, with native
booleans, dates and JSON values.

The store is process local and not shared between instances.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import operator as op
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import asynccontextmanager
from itertools import count as counter
from typing import Any

from consent_store.db.adapters.base import Adapter, SortBy, Where
from consent_store.db.schema import ID_FIELD, TableSchema
from consent_store.db.transform import StorageRules, dumps, to_storage, transform_input, transform_output
from consent_store.db.where import Operator, WhereCondition, normalize_where
from consent_store.exceptions import ConflictError, InvalidWhereClauseError
from consent_store.options import ConsentOptions

logger = logging.getLogger(__name__)

Row = dict[str, Any]
Conditions = tuple[list[WhereCondition], list[WhereCondition]]

_COMPARISONS: dict[Operator, Callable[[Any, Any], bool]] = {
    Operator.LT: op.lt,
    Operator.LTE: op.le,
    Operator.GT: op.gt,
    Operator.GTE: op.ge,
}


def _as_text(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return dumps(value)
    return str(value)


class MemoryAdapter(Adapter):
    """
    Adapter keeping every table in a Python list.

    ``transaction()`` snapshots all tables and restores them if the block
    raises, so units of work behave like the SQL backend.
    """

    adapter_id = "memory"
    rules = StorageRules(native_boolean=True, native_date=True, native_json=True)

    def __init__(self, options: ConsentOptions | None = None) -> None:
        super().__init__(options)
        self._tables: dict[str, list[Row]] = {name: [] for name in self.schemas.names()}
        self._sequences = {name: counter(1) for name in self.schemas.names()}
        self._lock = asyncio.Lock()
        self._in_transaction = False

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _rows(self, model: str) -> tuple[TableSchema, list[Row]]:
        return self.schema(model), self._tables[model]

    def _conditions(self, schema: TableSchema, where: Where | None) -> Conditions:
        """Normalize ``where`` and check every field before any row is scanned."""
        and_group, or_group = normalize_where(where)
        for condition in and_group + or_group:
            if not schema.has_field(condition.field):
                raise InvalidWhereClauseError(
                    f"Unknown field '{condition.field}' on model '{schema.entity_name}'",
                    condition,
                )
        return and_group, or_group

    def _matches(self, schema: TableSchema, row: Row, conditions: Conditions) -> bool:
        and_group, or_group = conditions
        if not all(self._evaluate(schema, row, condition) for condition in and_group):
            return False
        if or_group and not any(self._evaluate(schema, row, condition) for condition in or_group):
            return False
        return True

    def _evaluate(self, schema: TableSchema, row: Row, condition: WhereCondition) -> bool:
        spec = schema.fields[condition.field]
        actual = row.get(spec.column_name(condition.field))

        if condition.operator in (Operator.CONTAINS, Operator.STARTS_WITH, Operator.ENDS_WITH):
            if actual is None:
                return False
            text = _as_text(actual)
            if condition.operator == Operator.CONTAINS:
                return condition.value in text
            if condition.operator == Operator.STARTS_WITH:
                return text.startswith(condition.value)
            return text.endswith(condition.value)

        if condition.operator == Operator.IN:
            return actual in [to_storage(value, spec, self.rules) for value in condition.value]

        expected = to_storage(condition.value, spec, self.rules)
        if condition.operator == Operator.EQ:
            return actual == expected
        if condition.operator == Operator.NE:
            return actual != expected
        # SQL semantics: comparisons with NULL never match
        if actual is None or expected is None:
            return False
        return _COMPARISONS[condition.operator](actual, expected)

    def _output(self, schema: TableSchema, row: Row | None, select: Iterable[str] | None = None) -> Row | None:
        return transform_output(schema, copy.deepcopy(row), self.rules, select)

    def _require_where(self, schema: TableSchema, where: Where | None) -> None:
        if not where:
            raise InvalidWhereClauseError(f"Refusing to modify every row of '{schema.entity_name}' without a where clause")

    def _check_unique(self, schema: TableSchema, rows: list[Row], candidate: Row) -> None:
        for key, spec in schema.fields.items():
            if not spec.unique:
                continue
            column = spec.column_name(key)
            value = candidate.get(column)
            if value is None:
                continue
            if any(row is not candidate and row.get(column) == value for row in rows):
                raise ConflictError(
                    f"Duplicate value for unique field '{key}' on '{schema.entity_name}'",
                    details={"model": schema.entity_name, "field": key},
                )

    # ── Unit of work ──────────────────────────────────────────────────────────

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[MemoryAdapter]:
        if self._in_transaction:
            yield self
            return
        async with self._lock:
            snapshot = copy.deepcopy(self._tables)
            self._in_transaction = True
            try:
                yield self
            except BaseException:
                logger.debug("Rolling back in-memory transaction")
                self._tables = snapshot
                raise
            finally:
                self._in_transaction = False

    # ── Contract ──────────────────────────────────────────────────────────────

    async def create(
        self,
        model: str,
        data: dict[str, Any],
        select: Iterable[str] | None = None,
        unique_field: str | None = None,
    ) -> dict[str, Any]:
        schema, rows = self._rows(model)
        row = copy.deepcopy(transform_input(schema, data, "create", self.rules, self.ids))
        id_column = schema.column_name(ID_FIELD)
        if row.get(id_column) is None:
            row[id_column] = next(self._sequences[model])
        # Every column exists on every row, as in a SQL table
        for key, spec in schema.fields.items():
            row.setdefault(spec.column_name(key), None)
        self._check_unique(schema, rows, row)
        rows.append(row)
        return self._output(schema, row, select)  # type: ignore[return-value]

    async def find_one(
        self,
        model: str,
        where: Where,
        select: Iterable[str] | None = None,
    ) -> dict[str, Any] | None:
        schema, rows = self._rows(model)
        conditions = self._conditions(schema, where)
        for row in rows:
            if self._matches(schema, row, conditions):
                return self._output(schema, row, select)
        return None

    async def find_many(
        self,
        model: str,
        where: Where | None = None,
        limit: int | None = None,
        offset: int | None = None,
        sort_by: SortBy | None = None,
    ) -> list[dict[str, Any]]:
        schema, rows = self._rows(model)
        conditions = self._conditions(schema, where)
        matched = [row for row in rows if self._matches(schema, row, conditions)]

        id_column = schema.column_name(ID_FIELD)
        if sort_by is not None:
            column = schema.column_name(sort_by.field)
            matched.sort(key=lambda row: str(row[id_column]))
            # None sorts first ascending, like SQLite and MySQL
            matched.sort(
                key=lambda row: (row.get(column) is not None, row.get(column)),
                reverse=sort_by.descending,
            )
        elif offset:
            matched.sort(key=lambda row: row[id_column])

        start = offset or 0
        end = start + (limit or self.default_limit)
        return [self._output(schema, row) for row in matched[start:end]]  # type: ignore[misc]

    async def update(self, model: str, where: Where, update: dict[str, Any]) -> dict[str, Any] | None:
        schema, rows = self._rows(model)
        self._require_where(schema, where)
        conditions = self._conditions(schema, where)
        values = copy.deepcopy(transform_input(schema, update, "update", self.rules))
        first: Row | None = None
        for row in rows:
            if self._matches(schema, row, conditions):
                row.update(values)
                self._check_unique(schema, rows, row)
                first = first or row
        return self._output(schema, first)

    async def update_many(self, model: str, where: Where, update: dict[str, Any]) -> list[dict[str, Any]]:
        schema, rows = self._rows(model)
        self._require_where(schema, where)
        conditions = self._conditions(schema, where)
        values = transform_input(schema, update, "update", self.rules)
        updated = []
        for row in rows:
            if self._matches(schema, row, conditions):
                row.update(copy.deepcopy(values))
                updated.append(row)
        return [self._output(schema, row) for row in updated]  # type: ignore[misc]

    async def count(self, model: str, where: Where | None = None) -> int:
        schema, rows = self._rows(model)
        conditions = self._conditions(schema, where)
        return sum(1 for row in rows if self._matches(schema, row, conditions))

    async def delete(self, model: str, where: Where) -> None:
        await self.delete_many(model, where)

    async def delete_many(self, model: str, where: Where) -> int:
        schema, rows = self._rows(model)
        self._require_where(schema, where)
        conditions = self._conditions(schema, where)
        kept = [row for row in rows if not self._matches(schema, row, conditions)]
        removed = len(rows) - len(kept)
        self._tables[model] = kept
        return removed
