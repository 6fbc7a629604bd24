"""
User entity adapter.

Users are created on their first consent interaction and are never deleted.
"""

from __future__ import annotations

import logging
from typing import Any

from consent_store.db.hooks.pipeline import ContextInput
from consent_store.db.tables import USER
from consent_store.db.where import eq
from consent_store.entities.base import EntityAdapter, Record
from consent_store.exceptions import ConflictError, UserNotFoundError

logger = logging.getLogger(__name__)

ANONYMOUS_PROVIDER = "anonymous"
EXTERNAL_PROVIDER = "external"


class UserAdapter(EntityAdapter):
    model = USER

    async def create_user(self, data: dict[str, Any], context: ContextInput = None) -> Record:
        return await self._create(data, context)

    async def find_user_by_id(self, user_id: Any) -> Record | None:
        return await self._find_by_id(user_id)

    async def find_user_by_external_id(self, external_id: str) -> Record | None:
        return await self._find_one([eq("external_id", external_id)])

    async def update_user(self, user_id: Any, data: dict[str, Any], context: ContextInput = None) -> Record | None:
        return await self._update(data, [eq("id", user_id)], context)

    async def find_or_create_user(
        self,
        user_id: Any | None = None,
        external_id: str | None = None,
        ip_address: str | None = None,
        context: ContextInput = None,
    ) -> Record:
        """
        Resolve the subject of a consent.

        - both ids:      they must point at the same user
        - user id:       the user must exist
        - external id:   found, or created as an identified user
        - no id:         a new anonymous user is created
        """
        if user_id is not None and external_id is not None:
            by_id = await self.find_user_by_id(user_id)
            by_external_id = await self.find_user_by_external_id(external_id)
            if by_id is None or by_external_id is None:
                raise UserNotFoundError(details={"user_id": user_id, "external_id": external_id})
            if by_id["id"] != by_external_id["id"]:
                raise ConflictError(
                    "Provided user_id and external_id do not match the same user",
                    details={"user_id": user_id, "external_id": external_id, "matched_user_id": by_external_id["id"]},
                )
            return by_id

        if user_id is not None:
            user = await self.find_user_by_id(user_id)
            if user is None:
                raise UserNotFoundError(user_id)
            return user

        if external_id is not None:
            user = await self.find_user_by_external_id(external_id)
            if user is not None:
                return user
            logger.info("Creating user for external id %s", external_id)
            return await self.create_user(
                {
                    "external_id": external_id,
                    "identity_provider": EXTERNAL_PROVIDER,
                    "last_ip_address": ip_address,
                    "is_identified": True,
                },
                context,
            )

        logger.info("Creating new anonymous user")
        return await self.create_user(
            {
                "identity_provider": ANONYMOUS_PROVIDER,
                "last_ip_address": ip_address or "unknown",
                "is_identified": False,
            },
            context,
        )
