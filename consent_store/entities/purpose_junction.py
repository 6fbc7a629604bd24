from __future__ import annotations

from typing import Any

from consent_store.db.hooks.pipeline import ContextInput
from consent_store.db.tables import CONSENT_PURPOSE_JUNCTION
from consent_store.db.where import eq
from consent_store.entities.base import EntityAdapter, Record


class PurposeJunctionAdapter(EntityAdapter):
    model = CONSENT_PURPOSE_JUNCTION

    async def create_purpose_junction(
        self,
        consent_id: Any,
        purpose_id: Any,
        is_accepted: bool,
        context: ContextInput = None,
    ) -> Record:
        return await self._create(
            {"consent_id": consent_id, "purpose_id": purpose_id, "is_accepted": is_accepted},
            context,
        )

    async def find_by_consent_id(self, consent_id: Any) -> list[Record]:
        return await self._find_all([eq("consent_id", consent_id)])

    async def find_accepted_purpose_ids(self, consent_id: Any) -> list[Any]:
        rows = await self._find_all([eq("consent_id", consent_id), eq("is_accepted", True)])
        return [row["purpose_id"] for row in rows]
