from __future__ import annotations

from typing import Any

from consent_store.db.adapters.base import SortBy
from consent_store.db.hooks.pipeline import ContextInput
from consent_store.db.tables import CONSENT_AUDIT_LOG
from consent_store.db.where import WhereCondition, eq
from consent_store.entities.base import EntityAdapter, Record

# Audit actions written by the consent workflow
ACTION_CONSENT_CREATED = "consent_created"
ACTION_CONSENT_DEACTIVATED = "consent_deactivated"
ACTION_WITHDRAW_CONSENT = "withdraw_consent"
ACTION_WITHDRAW_CONSENT_FAILED = "withdraw_consent_failed"

RESOURCE_CONSENT = "consent"


class AuditLogAdapter(EntityAdapter):
    model = CONSENT_AUDIT_LOG

    async def create_audit_log(self, data: dict[str, Any], context: ContextInput = None) -> Record:
        return await self._create(data, context)

    async def find_audit_logs_by_resource(
        self,
        resource_type: str,
        resource_id: Any,
        limit: int | None = None,
    ) -> list[Record]:
        return await self._find_many(
            [eq("resource_type", resource_type), eq("resource_id", str(resource_id))],
            limit=limit,
            sort_by=SortBy("created_at"),
        )

    async def find_audit_logs_by_resources(self, resource_type: str, resource_ids: list[Any]) -> list[Record]:
        if not resource_ids:
            return []
        return await self._find_many(
            [eq("resource_type", resource_type), WhereCondition("resource_id", [str(i) for i in resource_ids], "in")],
            sort_by=SortBy("created_at"),
        )

    async def find_audit_logs_by_user(self, user_id: Any, limit: int | None = None) -> list[Record]:
        return await self._find_many([eq("user_id", user_id)], limit=limit, sort_by=SortBy("created_at"))
