"""
Generic Adapter Contract

Every storage backend implements Adapter. Entity adapters and the hook
pipeline only ever talk to this interface, which keeps them independent of
the database engine.

Models are addressed by entity name ("consent", "user", ...). Payloads and
results use field keys; storage column names never leave the adapter.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from consent_store.db.ids import IdStrategy
from consent_store.db.schema import SchemaRegistry, TableSchema
from consent_store.db.transform import StorageRules
from consent_store.db.where import WhereInput
from consent_store.options import DEFAULT_FIND_MANY_LIMIT, ConsentOptions

Where = Sequence[WhereInput]


class SortDirection(str, enum.Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class SortBy:
    field: str
    direction: SortDirection | str = SortDirection.ASC

    @property
    def descending(self) -> bool:
        return SortDirection(self.direction) == SortDirection.DESC


class Adapter(ABC):
    """
    Abstract storage backend.

    Subclasses set ``adapter_id`` and ``rules`` and implement every CRUD
    operation. ``transaction()`` must yield an adapter whose operations all
    run in one transaction scope.
    """

    adapter_id: str = "abstract"
    rules: StorageRules

    def __init__(self, options: ConsentOptions | None = None) -> None:
        self.options = options or ConsentOptions()
        self.schemas = SchemaRegistry(self.options)
        self.ids = IdStrategy(self.options.advanced.generate_id)
        self.default_limit = self.options.advanced.default_find_many_limit or DEFAULT_FIND_MANY_LIMIT

    def schema(self, model: str) -> TableSchema:
        return self.schemas.get(model)

    # ── Contract ──────────────────────────────────────────────────────────────

    @abstractmethod
    async def create(
        self,
        model: str,
        data: dict[str, Any],
        select: Iterable[str] | None = None,
        unique_field: str | None = None,
    ) -> dict[str, Any]:
        """Insert one row and return it as stored."""

    @abstractmethod
    async def find_one(
        self,
        model: str,
        where: Where,
        select: Iterable[str] | None = None,
    ) -> dict[str, Any] | None: ...

    @abstractmethod
    async def find_many(
        self,
        model: str,
        where: Where | None = None,
        limit: int | None = None,
        offset: int | None = None,
        sort_by: SortBy | None = None,
    ) -> list[dict[str, Any]]:
        """
        Rows matching ``where``.

        ``limit`` defaults to the configured cap (100). With an offset and no
        ``sort_by`` rows are ordered by id so pages never overlap.
        """

    @abstractmethod
    async def update(self, model: str, where: Where, update: dict[str, Any]) -> dict[str, Any] | None:
        """Update matching rows and return the first one, or None if nothing matched."""

    @abstractmethod
    async def update_many(self, model: str, where: Where, update: dict[str, Any]) -> list[dict[str, Any]]: ...

    @abstractmethod
    async def count(self, model: str, where: Where | None = None) -> int: ...

    @abstractmethod
    async def delete(self, model: str, where: Where) -> None: ...

    @abstractmethod
    async def delete_many(self, model: str, where: Where) -> int:
        """Delete matching rows and return how many were removed."""

    @abstractmethod
    def transaction(self) -> Any:
        """Async context manager yielding an adapter bound to one transaction."""

    async def create_schema(self) -> None:  # noqa: B027
        """Create missing tables. Backends without DDL do nothing."""

    async def close(self) -> None:  # noqa: B027
        """Release pooled resources."""

