from __future__ import annotations

from typing import Any

from consent_store.db.fields import utcnow
from consent_store.db.hooks.pipeline import ContextInput
from consent_store.db.tables import CONSENT_PURPOSE, CONSENT_PURPOSE_JUNCTION
from consent_store.db.where import WhereCondition, eq
from consent_store.entities.base import EntityAdapter, Record
from consent_store.exceptions import ConflictError

# Once a consent references a purpose these fields describe what the user agreed to
IMMUTABLE_WHEN_REFERENCED = frozenset({"code", "name", "description", "is_essential", "data_category", "legal_basis"})


class PurposeAdapter(EntityAdapter):
    model = CONSENT_PURPOSE

    async def create_purpose(self, data: dict[str, Any], context: ContextInput = None) -> Record:
        return await self._create(data, context, unique_field="code")

    async def find_purpose_by_id(self, purpose_id: Any) -> Record | None:
        return await self._find_by_id(purpose_id)

    async def find_purpose_by_code(self, code: str) -> Record | None:
        return await self._find_one([eq("code", code)])

    async def find_purposes_by_codes(self, codes: list[str]) -> list[Record]:
        if not codes:
            return []
        return await self._find_many([WhereCondition("code", list(codes), "in")], limit=len(codes))

    async def find_purposes_by_ids(self, purpose_ids: list[Any]) -> list[Record]:
        if not purpose_ids:
            return []
        return await self._find_many([WhereCondition("id", list(purpose_ids), "in")], limit=len(purpose_ids))

    async def list_active_purposes(self) -> list[Record]:
        return await self._find_all([eq("is_active", True)])

    async def is_referenced(self, purpose_id: Any) -> bool:
        return await self.adapter.count(CONSENT_PURPOSE_JUNCTION, [eq("purpose_id", purpose_id)]) > 0

    async def update_purpose(self, purpose_id: Any, data: dict[str, Any], context: ContextInput = None) -> Record | None:
        locked = IMMUTABLE_WHEN_REFERENCED.intersection(data)
        if locked and await self.is_referenced(purpose_id):
            raise ConflictError(
                "Purpose is referenced by a consent; only metadata fields may change",
                details={"purpose_id": purpose_id, "fields": sorted(locked)},
            )
        return await self._update({**data, "updated_at": utcnow()}, [eq("id", purpose_id)], context)
