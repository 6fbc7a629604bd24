"""
Consent Registry

Aggregates the entity adapters of one storage adapter and adds the
operations that span several entities. A registry can be re-bound to a
transaction with unit_of_work(); every entity adapter of the bound registry
then shares that transaction.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from consent_store.db.adapters.base import Adapter
from consent_store.db.fields import utcnow
from consent_store.db.hooks.pipeline import ContextInput, HookPipeline
from consent_store.db.hooks.registry import HookRegistry
from consent_store.entities import (
    AuditLogAdapter,
    ConsentAdapter,
    ConsentRecordAdapter,
    DomainAdapter,
    GeoLocationAdapter,
    PolicyAdapter,
    PurposeAdapter,
    PurposeJunctionAdapter,
    UserAdapter,
    WithdrawalAdapter,
)
from consent_store.exceptions import ConsentAlreadyWithdrawnError, ConsentNotFoundError, PartialWithdrawalError

logger = logging.getLogger(__name__)


class ConsentRegistry:
    def __init__(self, adapter: Adapter, hooks: HookRegistry | None = None) -> None:
        self.adapter = adapter
        self.pipeline = HookPipeline(adapter, hooks)

        self.users = UserAdapter(adapter, self.pipeline)
        self.domains = DomainAdapter(adapter, self.pipeline)
        self.purposes = PurposeAdapter(adapter, self.pipeline)
        self.policies = PolicyAdapter(adapter, self.pipeline)
        self.consents = ConsentAdapter(adapter, self.pipeline)
        self.purpose_junctions = PurposeJunctionAdapter(adapter, self.pipeline)
        self.records = ConsentRecordAdapter(adapter, self.pipeline)
        self.withdrawals = WithdrawalAdapter(adapter, self.pipeline)
        self.audit_logs = AuditLogAdapter(adapter, self.pipeline)
        self.geo_locations = GeoLocationAdapter(adapter, self.pipeline)

    def bind(self, adapter: Adapter) -> ConsentRegistry:
        """A registry over ``adapter`` sharing this registry's hooks."""
        return ConsentRegistry(adapter, self.pipeline.hooks)

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[ConsentRegistry]:
        """
        Run a block of registry calls in one transaction.

        Commits on normal exit, rolls back when the block raises.
        """
        async with self.adapter.transaction() as bound:
            yield self.bind(bound)

    # ── Cross-entity operations ───────────────────────────────────────────────

    async def find_consent_by_id(self, consent_id: Any) -> dict[str, Any] | None:
        """The consent together with its user: ``{"consent": ..., "user": ...}``."""
        consent = await self.consents.find_consent(consent_id)
        if consent is None:
            return None
        user = await self.users.find_user_by_id(consent["user_id"])
        return {"consent": consent, "user": user}

    async def revoke_consent(
        self,
        consent_id: Any,
        reason: str | None = None,
        method: str = "api",
        actor: str | None = None,
        metadata: dict[str, Any] | None = None,
        context: ContextInput = None,
        revoked_at: datetime | None = None,
    ) -> dict[str, Any]:
        """
        Deactivate an active consent and record the withdrawal.

        ``revoked_at`` defaults to now; callers that also write evidence pass
        their own timestamp so every row of the withdrawal agrees.

        Returns ``{"consent": <deactivated consent>, "withdrawal": <row>}``.

        Raises:
            ConsentNotFoundError:         no consent with that id.
            ConsentAlreadyWithdrawnError: the consent is already inactive.
            PartialWithdrawalError:       deactivated, but the withdrawal row
                                          could not be written.
        """
        deactivated = await self.consents.deactivate_consent(consent_id, context)
        if deactivated is None:
            if await self.consents.find_consent(consent_id) is None:
                raise ConsentNotFoundError(consent_id)
            raise ConsentAlreadyWithdrawnError(consent_id)

        try:
            withdrawal = await self.withdrawals.create_withdrawal(
                {
                    "consent_id": consent_id,
                    "revoked_at": revoked_at or utcnow(),
                    "revocation_reason": reason,
                    "method": method,
                    "actor": actor,
                    "metadata": metadata or {},
                },
                context,
            )
        except Exception as exc:
            logger.error("Consent %s deactivated but its withdrawal row was not written: %s", consent_id, exc)
            raise PartialWithdrawalError(consent_id, ["deactivate_consent"], "create_withdrawal") from exc
        logger.info("Consent %s revoked (withdrawal %s)", consent_id, withdrawal["id"])
        return {"consent": deactivated, "withdrawal": withdrawal}
