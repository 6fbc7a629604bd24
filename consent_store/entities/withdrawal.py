from __future__ import annotations

from typing import Any

from consent_store.db.adapters.base import SortBy
from consent_store.db.hooks.pipeline import ContextInput
from consent_store.db.tables import CONSENT_WITHDRAWAL
from consent_store.db.where import WhereCondition, eq
from consent_store.entities.base import EntityAdapter, Record

DEFAULT_METHOD = "api"


class WithdrawalAdapter(EntityAdapter):
    model = CONSENT_WITHDRAWAL

    async def create_withdrawal(self, data: dict[str, Any], context: ContextInput = None) -> Record:
        payload = {"method": DEFAULT_METHOD, **data}
        return await self._create(payload, context)

    async def find_withdrawal_by_id(self, withdrawal_id: Any) -> Record | None:
        return await self._find_by_id(withdrawal_id)

    async def find_withdrawals_by_consent_id(self, consent_id: Any) -> list[Record]:
        return await self._find_many([eq("consent_id", consent_id)], sort_by=SortBy("created_at"))

    async def find_withdrawals_by_consent_ids(self, consent_ids: list[Any]) -> list[Record]:
        if not consent_ids:
            return []
        return await self._find_many([WhereCondition("consent_id", list(consent_ids), "in")], sort_by=SortBy("created_at"))
