from __future__ import annotations

from typing import Any

from consent_store.db.adapters.base import SortBy
from consent_store.db.hooks.pipeline import ContextInput
from consent_store.db.tables import CONSENT
from consent_store.db.where import WhereCondition, eq
from consent_store.entities.base import EntityAdapter, Record

NEWEST_FIRST = SortBy("given_at", "desc")


class ConsentAdapter(EntityAdapter):
    model = CONSENT

    async def create_consent(self, data: dict[str, Any], context: ContextInput = None) -> Record:
        return await self._create(data, context)

    async def find_consent(self, consent_id: Any) -> Record | None:
        return await self._find_by_id(consent_id)

    async def find_consents_by_ids(self, consent_ids: list[Any]) -> list[Record]:
        if not consent_ids:
            return []
        return await self._find_many([WhereCondition("id", list(consent_ids), "in")], limit=len(consent_ids))

    async def find_user_consents(
        self,
        user_id: Any,
        domain_id: Any | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Record]:
        """All consents of a user, newest first, optionally for one domain."""
        where = [eq("user_id", user_id)]
        if domain_id is not None:
            where.append(eq("domain_id", domain_id))
        return await self._find_many(where, limit=limit, offset=offset, sort_by=NEWEST_FIRST)

    async def count_user_consents(self, user_id: Any, domain_id: Any | None = None) -> int:
        where = [eq("user_id", user_id)]
        if domain_id is not None:
            where.append(eq("domain_id", domain_id))
        return await self._count(where)

    async def find_active_consents(self, user_id: Any, domain_id: Any) -> list[Record]:
        return await self._find_many(
            [eq("user_id", user_id), eq("domain_id", domain_id), eq("is_active", True)],
            sort_by=NEWEST_FIRST,
        )

    async def deactivate_consent(self, consent_id: Any, context: ContextInput = None) -> Record | None:
        """
        Set is_active=False on an active consent.

        The update is guarded by is_active=True, so None means the consent
        does not exist or was already inactive.
        """
        return await self._update({"is_active": False}, [eq("id", consent_id), eq("is_active", True)], context)
