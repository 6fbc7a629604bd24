"""
In-memory adapter specifics
"""

from datetime import datetime, timedelta, timezone

import pytest

from consent_store.db.adapters.memory_adapter import MemoryAdapter
from consent_store.db.tables import CONSENT, CONSENT_PURPOSE, USER
from consent_store.db.where import eq
from consent_store.exceptions import ConflictError
from consent_store.options import AdvancedOptions, ConsentOptions


class TestMemoryAdapter:
    async def test_results_are_copies(self, memory_adapter):
        consent = await memory_adapter.create(
            CONSENT, {"user_id": "u", "domain_id": "d", "policy_id": "p", "preferences": {"analytics": True}}
        )
        consent["preferences"]["analytics"] = False
        found = await memory_adapter.find_one(CONSENT, [eq("id", consent["id"])])
        assert found["preferences"] == {"analytics": True}

    async def test_input_is_not_aliased(self, memory_adapter):
        preferences = {"analytics": True}
        consent = await memory_adapter.create(
            CONSENT, {"user_id": "u", "domain_id": "d", "policy_id": "p", "preferences": preferences}
        )
        preferences["analytics"] = False
        found = await memory_adapter.find_one(CONSENT, [eq("id", consent["id"])])
        assert found["preferences"] == {"analytics": True}

    async def test_unset_fields_read_as_none(self, memory_adapter):
        user = await memory_adapter.create(USER, {})
        assert user["external_id"] is None
        assert user["is_identified"] is False

    async def test_sequence_ids(self):
        adapter = MemoryAdapter(ConsentOptions(advanced=AdvancedOptions(generate_id=False)))
        first = await adapter.create(USER, {})
        second = await adapter.create(USER, {})
        assert (first["id"], second["id"]) == (1, 2)

    async def test_unique_conflict_on_update(self, memory_adapter):
        await memory_adapter.create(CONSENT_PURPOSE, {"code": "a", "name": "A", "description": "x"})
        second = await memory_adapter.create(CONSENT_PURPOSE, {"code": "b", "name": "B", "description": "y"})
        with pytest.raises(ConflictError) as exc_info:
            await memory_adapter.update(CONSENT_PURPOSE, [eq("id", second["id"])], {"code": "a"})
        assert exc_info.value.details == {"model": CONSENT_PURPOSE, "field": "code"}

    async def test_comparisons_with_null_never_match(self, memory_adapter):
        now = datetime.now(timezone.utc)
        await memory_adapter.create(
            CONSENT,
            {"user_id": "u", "domain_id": "d", "policy_id": "p", "preferences": {}, "valid_until": now},
        )
        await memory_adapter.create(CONSENT, {"user_id": "u", "domain_id": "d", "policy_id": "p", "preferences": {}})
        later = now + timedelta(days=1)
        rows = await memory_adapter.find_many(CONSENT, [{"field": "valid_until", "value": later, "operator": "lt"}])
        assert len(rows) == 1
        rows = await memory_adapter.find_many(CONSENT, [{"field": "valid_until", "value": None, "operator": "lt"}])
        assert rows == []

    async def test_rollback_restores_deleted_rows(self, memory_adapter):
        await memory_adapter.create(USER, {"id": "a"})
        with pytest.raises(ValueError):
            async with memory_adapter.transaction() as tx:
                await tx.delete(USER, [eq("id", "a")])
                raise ValueError("undo")
        assert await memory_adapter.count(USER) == 1

    async def test_transaction_yields_same_store(self, memory_adapter):
        async with memory_adapter.transaction() as tx:
            assert tx is memory_adapter
