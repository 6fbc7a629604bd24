"""
Entity adapter base class.

Entity adapters are thin typed facades: reads go straight to the storage
adapter, writes go through the hook pipeline. A None from the pipeline for a
row that still matches means a hook vetoed the write and is turned into
HookRejectedError here, so callers never mistake a rejection for success.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, ClassVar

from consent_store.db.adapters.base import Adapter, SortBy, Where
from consent_store.db.hooks.pipeline import ContextInput, HookPipeline
from consent_store.db.where import eq
from consent_store.exceptions import HookRejectedError

Record = dict[str, Any]


class EntityAdapter:
    model: ClassVar[str]

    def __init__(self, adapter: Adapter, pipeline: HookPipeline | None = None) -> None:
        self.adapter = adapter
        self.pipeline = pipeline or HookPipeline(adapter)

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def _find_by_id(self, record_id: Any) -> Record | None:
        if record_id is None:
            return None
        return await self.adapter.find_one(self.model, [eq("id", record_id)])

    async def _find_one(self, where: Where) -> Record | None:
        return await self.adapter.find_one(self.model, where)

    async def _find_many(
        self,
        where: Where | None = None,
        limit: int | None = None,
        offset: int | None = None,
        sort_by: SortBy | None = None,
    ) -> list[Record]:
        return await self.adapter.find_many(self.model, where, limit=limit, offset=offset, sort_by=sort_by)

    async def _find_all(self, where: Where | None = None, model: str | None = None) -> list[Record]:
        """Every match, read page by page in id order."""
        model = model or self.model
        page_size = self.adapter.default_limit
        rows: list[Record] = []
        while True:
            page = await self.adapter.find_many(model, where, limit=page_size, offset=len(rows))
            rows.extend(page)
            if len(page) < page_size:
                return rows

    async def _count(self, where: Where | None = None) -> int:
        return await self.adapter.count(self.model, where)

    # ── Writes ────────────────────────────────────────────────────────────────

    async def _create(
        self,
        data: Mapping[str, Any],
        context: ContextInput = None,
        unique_field: str | None = None,
    ) -> Record:
        created = await self.pipeline.create_with_hooks(data, self.model, unique_field=unique_field, context=context)
        if created is None:
            raise HookRejectedError(self.model, "create")
        return created

    async def _update(self, data: Mapping[str, Any], where: Where, context: ContextInput = None) -> Record | None:
        """
        Update through the hooks. Returns None when nothing matched ``where``.

        The pipeline answers None both for "no row" and for a veto. A miss is
        told apart by counting again: a row changed by a concurrent writer no
        longer matches and is reported as a miss, not a rejection.
        """
        if await self.adapter.count(self.model, where) == 0:
            return None
        updated = await self.pipeline.update_with_hooks(data, where, self.model, context=context)
        if updated is None:
            if await self.adapter.count(self.model, where) == 0:
                return None
            raise HookRejectedError(self.model, "update")
        return updated
