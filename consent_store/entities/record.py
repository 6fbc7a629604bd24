"""
Consent record entity adapter.

Records are append-only evidence of what happened to a consent, how and from
where. Records have no update or delete operation.
"""

from __future__ import annotations

import enum
from typing import Any

from consent_store.db.adapters.base import SortBy
from consent_store.db.hooks.pipeline import ContextInput
from consent_store.db.tables import CONSENT_RECORD
from consent_store.db.where import eq
from consent_store.entities.base import EntityAdapter, Record
from consent_store.exceptions import ValidationError


class RecordType(str, enum.Enum):
    FORM_SUBMISSION = "form_submission"
    API_CALL = "api_call"
    BANNER_INTERACTION = "banner_interaction"
    PREFERENCE_CENTER = "preference_center"
    VERBAL_CONSENT = "verbal_consent"
    OFFLINE_CONSENT = "offline_consent"
    PARTNER_CONSENT = "partner_consent"
    IMPLIED_CONSENT = "implied_consent"
    CONSENT_MIGRATION = "consent_migration"
    WITHDRAWAL = "withdrawal"
    OTHER = "other"


class ConsentRecordAdapter(EntityAdapter):
    model = CONSENT_RECORD

    async def create_consent_record(self, data: dict[str, Any], context: ContextInput = None) -> Record:
        payload = dict(data)
        try:
            payload["record_type"] = RecordType(payload.get("record_type")).value
        except ValueError:
            raise ValidationError(f"Unknown record type '{payload.get('record_type')}'", field="record_type") from None
        return await self._create(payload, context)

    async def find_records_by_consent_id(self, consent_id: Any) -> list[Record]:
        return await self._find_many([eq("consent_id", consent_id)], sort_by=SortBy("created_at"))
