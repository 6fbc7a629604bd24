from __future__ import annotations

import logging
from typing import Any

from consent_store.db.hooks.pipeline import ContextInput
from consent_store.db.tables import DOMAIN
from consent_store.db.where import eq
from consent_store.entities.base import EntityAdapter, Record

logger = logging.getLogger(__name__)


def normalize_domain(name: str) -> str:
    """Lower-case host without scheme, path or trailing dot."""
    name = name.strip().lower()
    if "://" in name:
        name = name.split("://", 1)[1]
    return name.split("/", 1)[0].rstrip(".")


class DomainAdapter(EntityAdapter):
    model = DOMAIN

    async def create_domain(self, data: dict[str, Any], context: ContextInput = None) -> Record:
        payload = dict(data)
        payload["domain"] = normalize_domain(payload["domain"])
        if "is_pattern" not in payload:
            payload["is_pattern"] = "*" in payload["domain"]
        return await self._create(payload, context, unique_field="domain")

    async def find_domain_by_id(self, domain_id: Any) -> Record | None:
        return await self._find_by_id(domain_id)

    async def find_domain_by_name(self, name: str) -> Record | None:
        return await self._find_one([eq("domain", normalize_domain(name))])

    async def find_or_create_domain(self, name: str, context: ContextInput = None) -> Record:
        existing = await self.find_domain_by_name(name)
        if existing is not None:
            return existing
        logger.info("Creating domain %s on first use", normalize_domain(name))
        return await self.create_domain(
            {"domain": name, "description": f"Auto-created domain for {normalize_domain(name)}"},
            context,
        )

    async def update_domain(self, domain_id: Any, data: dict[str, Any], context: ContextInput = None) -> Record | None:
        return await self._update(data, [eq("id", domain_id)], context)
