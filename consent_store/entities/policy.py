"""
Consent policy entity adapter.

Policies are append-only: publishing a new version inserts a new row and
older versions are never rewritten. The only permitted update is
deactivating a version.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any

from consent_store.db.adapters.base import SortBy
from consent_store.db.fields import utcnow
from consent_store.db.hooks.pipeline import ContextInput
from consent_store.db.tables import CONSENT_POLICY
from consent_store.db.where import eq
from consent_store.entities.base import EntityAdapter, Record

logger = logging.getLogger(__name__)

DEFAULT_POLICY_VERSION = "1.0.0"


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class PolicyAdapter(EntityAdapter):
    model = CONSENT_POLICY

    async def create_policy(self, data: dict[str, Any], context: ContextInput = None) -> Record:
        payload = dict(data)
        payload.setdefault("content_hash", content_hash(payload.get("content", "")))
        payload.setdefault("effective_date", utcnow())
        return await self._create(payload, context)

    async def find_policy_by_id(self, policy_id: Any) -> Record | None:
        return await self._find_by_id(policy_id)

    async def find_latest_policy(self, name: str) -> Record | None:
        """Newest active version of a policy by effective date."""
        policies = await self._find_many(
            [eq("name", name), eq("is_active", True)],
            limit=1,
            sort_by=SortBy("effective_date", "desc"),
        )
        return policies[0] if policies else None

    async def find_policy_version(self, name: str, version: str) -> Record | None:
        policies = await self._find_many(
            [eq("name", name), eq("version", version)],
            limit=1,
            sort_by=SortBy("effective_date", "desc"),
        )
        return policies[0] if policies else None

    async def find_or_create_policy(self, name: str, context: ContextInput = None) -> Record:
        existing = await self.find_latest_policy(name)
        if existing is not None:
            return existing
        logger.info("Creating placeholder policy '%s'", name)
        content = f"Placeholder policy for {name}"
        return await self.create_policy(
            {
                "name": name,
                "version": DEFAULT_POLICY_VERSION,
                "content": content,
                "content_hash": content_hash(content),
            },
            context,
        )

    async def publish_version(self, name: str, version: str, content: str, context: ContextInput = None) -> Record:
        """Add a new version; earlier versions stay untouched."""
        return await self.create_policy({"name": name, "version": version, "content": content}, context)

    async def deactivate_policy(self, policy_id: Any, context: ContextInput = None) -> Record | None:
        return await self._update({"is_active": False, "expiration_date": utcnow()}, [eq("id", policy_id)], context)
