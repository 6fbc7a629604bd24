"""
Consent workflow tests

Tests the consent use cases end to end on both storage backends:

    TestSetConsent        — user/domain/policy resolution, junctions, evidence
    TestWithdrawConsent   — by id and by user + domain, conflicts, audit pairing
    TestPartialWithdrawal — failures after the consent was deactivated
    TestAtomicWorkflows   — the same failures inside one unit of work
    TestConsentReceipt    — receipt content and HMAC signature
    TestVerifyConsent     — preference and policy requirements
    TestConsentPolicy     — current policy and the user's consent status
    TestConsentHistory    — consents, withdrawals, records and audit logs
    TestRequestParsing    — camelCase wire format and validation errors
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from consent_store.config import Settings
from consent_store.db.adapters.memory_adapter import MemoryAdapter
from consent_store.db.hooks import DatabaseHooks, EntityHooks, HookRegistry, MutationHook, Reject
from consent_store.db.tables import CONSENT, CONSENT_RECORD, CONSENT_WITHDRAWAL, USER
from consent_store.entities.audit_log import (
    ACTION_CONSENT_CREATED,
    ACTION_CONSENT_DEACTIVATED,
    ACTION_WITHDRAW_CONSENT,
    ACTION_WITHDRAW_CONSENT_FAILED,
    RESOURCE_CONSENT,
)
from consent_store.exceptions import (
    ConfigurationError,
    ConflictError,
    ConsentAlreadyWithdrawnError,
    ConsentNotFoundError,
    HookRejectedError,
    PartialWithdrawalError,
    PolicyNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from consent_store.options import AdvancedOptions, ConsentOptions
from consent_store.registry import ConsentRegistry
from consent_store.schemas import SetConsentRequest
from consent_store.services.consent_service import (
    ConsentWorkflow,
    get_consent_workflow,
    is_granted,
    verify_receipt_signature,
)
from helpers import TEST_SECRET, seed_purposes

COOKIE_CONSENT = {
    "externalId": "ext-1",
    "domain": "example.com",
    "preferences": {"analytics": True, "marketing": False},
}


def reject_when(model: str, predicate) -> HookRegistry:
    hooks = HookRegistry()
    hooks.add(
        DatabaseHooks(
            {model: EntityHooks(create=MutationHook(before=lambda payload, ctx: Reject() if predicate(payload) else None))}
        )
    )
    return hooks


async def audit_actions(registry: ConsentRegistry, consent_id) -> list[str]:
    logs = await registry.audit_logs.find_audit_logs_by_resource(RESOURCE_CONSENT, consent_id)
    return sorted(log["action"] for log in logs)


# ══════════════════════════════════════════════════════════════════════════════
# 1. TestSetConsent
# ══════════════════════════════════════════════════════════════════════════════


class TestSetConsent:
    async def test_creates_consent_and_evidence(self, workflow, registry):
        response = await workflow.set_consent({**COOKIE_CONSENT, "domain": "https://Example.com/"})

        assert response.domain == "example.com"
        assert response.is_active is True
        assert response.consent_type.value == "cookie_banner"
        assert response.external_id == "ext-1"
        assert response.deactivated_consent_ids == []
        assert response.metadata == {"consent_type": "cookie_banner"}

        user = await registry.users.find_user_by_external_id("ext-1")
        assert user["id"] == response.user_id
        assert user["is_identified"] is True

        records = await registry.records.find_records_by_consent_id(response.id)
        assert [record["id"] for record in records] == [response.record_id]
        assert records[0]["record_type"] == "api_call"
        assert records[0]["content"]["preferences"] == {"analytics": True, "marketing": False}

        assert await audit_actions(registry, response.id) == [ACTION_CONSENT_CREATED]

    async def test_purpose_junctions(self, workflow, registry):
        response = await workflow.set_consent(COOKIE_CONSENT)
        accepted = await registry.purpose_junctions.find_accepted_purpose_ids(response.id)
        analytics = await registry.purposes.find_purpose_by_code("analytics")
        assert accepted == [analytics["id"]]
        assert len(await registry.purpose_junctions.find_by_consent_id(response.id)) == 2

    async def test_default_policy_per_consent_type(self, workflow, registry):
        response = await workflow.set_consent(COOKIE_CONSENT)
        policy = await registry.policies.find_policy_by_id(response.policy_id)
        assert policy["name"] == "cookie banner"
        assert policy["version"] == "1.0.0"

        again = await workflow.set_consent({**COOKIE_CONSENT, "domain": "other.com"})
        assert again.policy_id == response.policy_id

    async def test_policy_based_type_without_policy_id(self, workflow, registry):
        response = await workflow.set_consent(
            {"externalId": "ext-1", "domain": "example.com", "consentType": "privacy_policy"}
        )
        policy = await registry.policies.find_policy_by_id(response.policy_id)
        assert policy["name"] == "privacy policy"
        assert await registry.purpose_junctions.find_by_consent_id(response.id) == []

    async def test_explicit_policy(self, workflow, registry):
        policy = await registry.policies.publish_version("privacy policy", "2.0.0", "We keep your data safe.")
        response = await workflow.set_consent(
            {"externalId": "ext-1", "domain": "example.com", "consentType": "privacy_policy", "policyId": policy["id"]}
        )
        assert response.policy_id == policy["id"]

    async def test_unknown_policy(self, workflow):
        with pytest.raises(PolicyNotFoundError):
            await workflow.set_consent({**COOKIE_CONSENT, "policyId": "missing"})

    async def test_inactive_policy(self, workflow, registry):
        policy = await registry.policies.publish_version("cookie banner", "0.9.0", "Old banner")
        await registry.policies.deactivate_policy(policy["id"])
        with pytest.raises(ValidationError) as exc_info:
            await workflow.set_consent({**COOKIE_CONSENT, "policyId": policy["id"]})
        assert exc_info.value.details["field"] == "policy_id"

    async def test_unknown_purpose_rejected_before_any_write(self, workflow, registry):
        with pytest.raises(ValidationError) as exc_info:
            await workflow.set_consent({**COOKIE_CONSENT, "preferences": {"analytics": True, "profiling": True}})
        assert exc_info.value.details["unknown_purposes"] == ["profiling"]
        assert await registry.adapter.count(USER) == 0

    async def test_auto_create_purposes(self, test_settings):
        registry = ConsentRegistry(MemoryAdapter(ConsentOptions(auto_create_purposes=True)))
        workflow = ConsentWorkflow(registry, settings=test_settings)
        response = await workflow.set_consent({**COOKIE_CONSENT, "preferences": {"profiling": True}})
        purpose = await registry.purposes.find_purpose_by_code("profiling")
        assert purpose is not None
        assert await registry.purpose_junctions.find_accepted_purpose_ids(response.id) == [purpose["id"]]

    async def test_single_active_consent_per_user_and_domain(self, workflow, registry):
        first = await workflow.set_consent(COOKIE_CONSENT)
        second = await workflow.set_consent({**COOKIE_CONSENT, "preferences": {"analytics": False}})

        assert second.deactivated_consent_ids == [first.id]
        active = await registry.consents.find_active_consents(second.user_id, second.domain_id)
        assert [consent["id"] for consent in active] == [second.id]
        assert ACTION_CONSENT_DEACTIVATED in await audit_actions(registry, first.id)

    async def test_other_domain_stays_active(self, workflow, registry):
        first = await workflow.set_consent(COOKIE_CONSENT)
        second = await workflow.set_consent({**COOKIE_CONSENT, "domain": "shop.example.com"})
        assert second.deactivated_consent_ids == []
        assert (await registry.consents.find_consent(first.id))["is_active"] is True

    async def test_anonymous_user(self, workflow, registry):
        response = await workflow.set_consent(
            {"domain": "example.com", "preferences": {"necessary": True}, "ipAddress": "10.0.0.1"}
        )
        user = await registry.users.find_user_by_id(response.user_id)
        assert user["identity_provider"] == "anonymous"
        assert user["is_identified"] is False
        assert user["last_ip_address"] == "10.0.0.1"

    async def test_existing_user_by_id(self, workflow):
        first = await workflow.set_consent(COOKIE_CONSENT)
        second = await workflow.set_consent(
            {"userId": first.user_id, "domain": "other.com", "preferences": {"analytics": True}}
        )
        assert second.user_id == first.user_id

    async def test_unknown_user_id(self, workflow):
        with pytest.raises(UserNotFoundError):
            await workflow.set_consent({"userId": "missing", "domain": "example.com", "preferences": {"analytics": True}})

    async def test_mismatched_identifiers(self, workflow):
        first = await workflow.set_consent(COOKIE_CONSENT)
        await workflow.set_consent({**COOKIE_CONSENT, "externalId": "ext-2"})
        with pytest.raises(ConflictError):
            await workflow.set_consent({**COOKIE_CONSENT, "userId": first.user_id, "externalId": "ext-2"})

    async def test_geo_location_link(self, workflow, registry):
        response = await workflow.set_consent(
            {
                **COOKIE_CONSENT,
                "geoLocation": {"countryCode": "de", "countryName": "Germany", "regulatoryZones": ["eu", "eea"]},
            }
        )
        consents = await registry.geo_locations.find_consents_by_regulatory_zone("EU")
        assert [consent["id"] for consent in consents] == [response.id]
        assert await registry.geo_locations.find_consents_by_regulatory_zone("CCPA") == []

    @pytest.mark.parametrize("kind", ["memory", "sqlite"])
    async def test_zone_lookup_reads_past_default_limit(self, adapter_factory, test_settings, kind):
        options = ConsentOptions(advanced=AdvancedOptions(default_find_many_limit=2))
        registry = ConsentRegistry(await adapter_factory(kind, options))
        await seed_purposes(registry, "analytics", "marketing")
        workflow = ConsentWorkflow(registry, settings=test_settings)

        granted = []
        for index, country in enumerate(["de", "fr", "it", "de", "fr"]):
            response = await workflow.set_consent(
                {
                    **COOKIE_CONSENT,
                    "externalId": f"ext-{index}",
                    "geoLocation": {"countryCode": country, "countryName": country.upper(), "regulatoryZones": ["eu"]},
                }
            )
            granted.append(response.id)

        assert len(await registry.geo_locations.find_geo_locations_by_zone("EU")) == 3
        consents = await registry.geo_locations.find_consents_by_regulatory_zone("EU")
        assert sorted(consent["id"] for consent in consents) == sorted(granted)

    async def test_record_metadata(self, workflow, registry):
        response = await workflow.set_consent(
            {**COOKIE_CONSENT, "deviceInfo": "Firefox", "metadata": {"source": "banner"}, "recordType": "banner_interaction"}
        )
        record = (await registry.records.find_records_by_consent_id(response.id))[0]
        assert record["record_type"] == "banner_interaction"
        assert record["record_metadata"] == {"device_info": "Firefox", "source": "banner"}


# ══════════════════════════════════════════════════════════════════════════════
# 2. TestWithdrawConsent
# ══════════════════════════════════════════════════════════════════════════════


class TestWithdrawConsent:
    async def test_grant_then_withdraw_by_id(self, workflow, registry):
        granted_at = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        consent = await workflow.set_consent(
            {**COOKIE_CONSENT, "preferences": {"analytics": granted_at, "marketing": None}}
        )
        analytics = await registry.purposes.find_purpose_by_code("analytics")
        assert await registry.purpose_junctions.find_accepted_purpose_ids(consent.id) == [analytics["id"]]

        response = await workflow.withdraw_consent({"consentId": consent.id, "reason": "no longer needed"})
        assert response.success is True
        assert response.data.consent_ids == [consent.id]
        assert len(response.data.withdrawal_ids) == 1

        found = await registry.find_consent_by_id(consent.id)
        assert found["consent"]["is_active"] is False
        assert found["user"]["external_id"] == "ext-1"

        withdrawals = await registry.withdrawals.find_withdrawals_by_consent_id(consent.id)
        assert [row["id"] for row in withdrawals] == response.data.withdrawal_ids
        assert withdrawals[0]["revocation_reason"] == "no longer needed"
        assert withdrawals[0]["method"] == "api"
        assert withdrawals[0]["actor"] == "system"
        assert withdrawals[0]["revoked_at"] == response.data.revoked_at

    async def test_second_withdrawal_is_conflict(self, workflow):
        consent = await workflow.set_consent(COOKIE_CONSENT)
        await workflow.withdraw_consent({"consentId": consent.id})
        with pytest.raises(ConsentAlreadyWithdrawnError) as exc_info:
            await workflow.withdraw_consent({"consentId": consent.id})
        assert exc_info.value.status_code == 409
        assert not isinstance(exc_info.value, ConsentNotFoundError)

    async def test_unknown_consent(self, workflow):
        with pytest.raises(ConsentNotFoundError):
            await workflow.withdraw_consent({"consentId": "missing"})

    async def test_audit_and_record_pairing(self, workflow, registry):
        consent = await workflow.set_consent(COOKIE_CONSENT)
        await workflow.withdraw_consent({"consentId": consent.id, "method": "email", "actor": "support"})

        logs = await registry.audit_logs.find_audit_logs_by_resource(RESOURCE_CONSENT, consent.id)
        withdraw_log = next(log for log in logs if log["action"] == ACTION_WITHDRAW_CONSENT)
        assert withdraw_log["actor"] == "support"
        assert withdraw_log["changes"]["before"] == {
            "is_active": True,
            "preferences": {"analytics": True, "marketing": False},
        }
        assert withdraw_log["changes"]["after"]["is_active"] is False
        assert withdraw_log["changes"]["after"]["preferences"] == {"analytics": None, "marketing": None}

        records = await registry.records.find_records_by_consent_id(consent.id)
        withdrawal_record = next(record for record in records if record["record_type"] == "withdrawal")
        assert withdrawal_record["record_type_detail"] == "email withdrawal"
        assert withdrawal_record["content"]["identifier_type"] == "consent_id"

    async def test_withdraw_by_external_id_and_domain(self, workflow, registry):
        consent = await workflow.set_consent(COOKIE_CONSENT)
        response = await workflow.withdraw_consent({"externalId": "ext-1", "domain": "Example.com"})
        assert response.data.consent_ids == [consent.id]
        assert (await registry.consents.find_consent(consent.id))["is_active"] is False

    async def test_withdraw_by_user_after_withdrawal_is_conflict(self, workflow):
        consent = await workflow.set_consent(COOKIE_CONSENT)
        await workflow.withdraw_consent({"externalId": "ext-1", "domain": "example.com"})
        with pytest.raises(ConsentAlreadyWithdrawnError) as exc_info:
            await workflow.withdraw_consent({"externalId": "ext-1", "domain": "example.com"})
        assert exc_info.value.details["consent_id"] == consent.id

    async def test_withdraw_by_user_id(self, workflow):
        consent = await workflow.set_consent(COOKIE_CONSENT)
        response = await workflow.withdraw_consent({"userId": consent.user_id, "domain": "example.com"})
        assert response.data.consent_ids == [consent.id]

    async def test_unknown_user(self, workflow):
        with pytest.raises(UserNotFoundError):
            await workflow.withdraw_consent({"externalId": "nobody", "domain": "example.com"})

    async def test_no_consent_on_domain(self, workflow):
        await workflow.set_consent(COOKIE_CONSENT)
        with pytest.raises(ConsentNotFoundError):
            await workflow.withdraw_consent({"externalId": "ext-1", "domain": "unknown.com"})

    async def test_registry_revoke_guards_state(self, workflow, registry):
        consent = await workflow.set_consent(COOKIE_CONSENT)
        revoked = await registry.revoke_consent(consent.id, reason="direct")
        assert revoked["consent"]["is_active"] is False
        assert revoked["withdrawal"]["consent_id"] == consent.id
        with pytest.raises(ConsentAlreadyWithdrawnError):
            await registry.revoke_consent(consent.id)
        with pytest.raises(ConsentNotFoundError):
            await registry.revoke_consent("missing")

    async def test_concurrent_withdrawals_conflict(self, workflow):
        consent = await workflow.set_consent(COOKIE_CONSENT)
        results = await asyncio.gather(
            workflow.withdraw_consent({"consentId": consent.id}),
            workflow.withdraw_consent({"consentId": consent.id}),
            return_exceptions=True,
        )
        outcomes = sorted(type(result).__name__ for result in results)
        assert outcomes == ["ConsentAlreadyWithdrawnError", "WithdrawConsentResponse"]

    async def test_row_changed_between_count_and_update(self, adapter, test_settings):
        async def withdraw_elsewhere(payload, ctx):
            # Another writer deactivates the consent after the guard was counted
            await adapter.update(ctx.model, ctx.where, {"is_active": False})

        hooks = HookRegistry()
        hooks.add(DatabaseHooks({CONSENT: EntityHooks(update=MutationHook(before=withdraw_elsewhere))}))
        registry = ConsentRegistry(adapter, hooks)
        await seed_purposes(registry, "analytics", "marketing")
        workflow = ConsentWorkflow(registry, settings=test_settings)

        consent = await workflow.set_consent(COOKIE_CONSENT)
        with pytest.raises(ConsentAlreadyWithdrawnError) as exc_info:
            await workflow.withdraw_consent({"consentId": consent.id})
        assert exc_info.value.status_code == 409
        assert not isinstance(exc_info.value, HookRejectedError)


# ══════════════════════════════════════════════════════════════════════════════
# 3. TestPartialWithdrawal
# ══════════════════════════════════════════════════════════════════════════════


class TestPartialWithdrawal:
    async def test_record_step_failure(self, adapter, test_settings):
        hooks = reject_when(CONSENT_RECORD, lambda payload: payload.get("record_type") == "withdrawal")
        registry = ConsentRegistry(adapter, hooks)
        await seed_purposes(registry, "analytics", "marketing")
        workflow = ConsentWorkflow(registry, settings=test_settings, atomic=False)
        consent = await workflow.set_consent(COOKIE_CONSENT)

        with pytest.raises(PartialWithdrawalError) as exc_info:
            await workflow.withdraw_consent({"consentId": consent.id})
        assert exc_info.value.completed_steps == ["revoke_consent"]
        assert exc_info.value.failed_step == "create_consent_record"
        assert isinstance(exc_info.value.__cause__, HookRejectedError)

        # The deactivation is not undone
        assert (await registry.consents.find_consent(consent.id))["is_active"] is False
        logs = await registry.audit_logs.find_audit_logs_by_resource(RESOURCE_CONSENT, consent.id)
        failed = next(log for log in logs if log["action"] == ACTION_WITHDRAW_CONSENT_FAILED)
        assert failed["changes"]["failed_step"] == "create_consent_record"
        assert ACTION_WITHDRAW_CONSENT not in {log["action"] for log in logs}

    async def test_withdrawal_row_failure(self, adapter, test_settings):
        hooks = reject_when(CONSENT_WITHDRAWAL, lambda payload: True)
        registry = ConsentRegistry(adapter, hooks)
        await seed_purposes(registry, "analytics", "marketing")
        workflow = ConsentWorkflow(registry, settings=test_settings, atomic=False)
        consent = await workflow.set_consent(COOKIE_CONSENT)

        with pytest.raises(PartialWithdrawalError) as exc_info:
            await workflow.withdraw_consent({"consentId": consent.id})
        assert exc_info.value.completed_steps == ["deactivate_consent"]
        assert exc_info.value.failed_step == "create_withdrawal"
        assert ACTION_WITHDRAW_CONSENT_FAILED in await audit_actions(registry, consent.id)


# ══════════════════════════════════════════════════════════════════════════════
# 4. TestAtomicWorkflows
# ══════════════════════════════════════════════════════════════════════════════


class TestAtomicWorkflows:
    async def test_failure_rolls_back_deactivation(self, adapter, test_settings):
        hooks = reject_when(CONSENT_RECORD, lambda payload: payload.get("record_type") == "withdrawal")
        registry = ConsentRegistry(adapter, hooks)
        await seed_purposes(registry, "analytics", "marketing")
        workflow = ConsentWorkflow(registry, settings=test_settings, atomic=True)
        consent = await workflow.set_consent(COOKIE_CONSENT)

        with pytest.raises(HookRejectedError):
            await workflow.withdraw_consent({"consentId": consent.id})

        assert (await registry.consents.find_consent(consent.id))["is_active"] is True
        assert await registry.withdrawals.find_withdrawals_by_consent_id(consent.id) == []
        assert await audit_actions(registry, consent.id) == [ACTION_CONSENT_CREATED]

    async def test_withdrawal_row_failure_rolls_back(self, adapter, test_settings):
        hooks = reject_when(CONSENT_WITHDRAWAL, lambda payload: True)
        registry = ConsentRegistry(adapter, hooks)
        await seed_purposes(registry, "analytics", "marketing")
        workflow = ConsentWorkflow(registry, settings=test_settings, atomic=True)
        consent = await workflow.set_consent(COOKIE_CONSENT)

        with pytest.raises(HookRejectedError):
            await workflow.withdraw_consent({"consentId": consent.id})
        assert (await registry.consents.find_consent(consent.id))["is_active"] is True

    async def test_set_consent_rolls_back(self, adapter, test_settings):
        hooks = reject_when(CONSENT_RECORD, lambda payload: True)
        registry = ConsentRegistry(adapter, hooks)
        await seed_purposes(registry, "analytics", "marketing")
        workflow = ConsentWorkflow(registry, settings=test_settings, atomic=True)

        with pytest.raises(HookRejectedError):
            await workflow.set_consent(COOKIE_CONSENT)
        assert await registry.adapter.count(USER) == 0

    def test_atomic_from_settings(self, registry):
        settings = Settings(_env_file=None, environment="test", secret=TEST_SECRET, atomic_workflows=True)
        assert ConsentWorkflow(registry, settings=settings).atomic is True
        assert ConsentWorkflow(registry, settings=settings, atomic=False).atomic is False


# ══════════════════════════════════════════════════════════════════════════════
# 5. TestConsentReceipt
# ══════════════════════════════════════════════════════════════════════════════


class TestConsentReceipt:
    async def test_receipt_content(self, workflow):
        consent = await workflow.set_consent(
            {**COOKIE_CONSENT, "deviceInfo": "Firefox", "ipAddress": "10.0.0.1", "metadata": {"source": "banner"}}
        )
        response = await workflow.generate_receipt(consent.id)
        receipt = response.receipt

        assert response.receipt_id == receipt.consent_receipt_id
        assert receipt.consent_receipt_id.startswith("CR")
        assert len(receipt.consent_receipt_id) == 12
        assert receipt.subject.id == str(consent.user_id)
        assert receipt.subject.id_type == "external_id"
        assert receipt.policy_url == "https://example.com/privacy"
        assert receipt.data_controller.id == "example.com"
        assert receipt.data_controller.name == "consent-store"
        assert receipt.collection_method == "api_call"
        assert receipt.metadata["device_info"] == "Firefox"
        assert receipt.metadata["ip_address"] == "10.0.0.1"
        assert receipt.metadata["source"] == "banner"

        services = {service.purposes[0].purpose: service for service in receipt.services}
        assert set(services) == {"analytics", "marketing"}
        assert services["analytics"].service == "Analytics"
        assert services["analytics"].purposes[0].purpose_description == "Analytics cookies"
        assert services["analytics"].purposes[0].purpose_category == ["analytics"]

    async def test_signature_verifies(self, workflow):
        consent = await workflow.set_consent(COOKIE_CONSENT)
        receipt = (await workflow.generate_receipt(consent.id)).receipt
        assert receipt.signature is not None
        assert verify_receipt_signature(receipt, TEST_SECRET)
        assert not verify_receipt_signature(receipt, TEST_SECRET[::-1])

    async def test_tampered_receipt_fails(self, workflow):
        consent = await workflow.set_consent(COOKIE_CONSENT)
        receipt = (await workflow.generate_receipt(consent.id)).receipt
        tampered = receipt.model_copy(update={"jurisdiction": "CCPA"})
        assert not verify_receipt_signature(tampered, TEST_SECRET)

    async def test_unsigned_receipt(self, workflow):
        consent = await workflow.set_consent(COOKIE_CONSENT)
        receipt = (await workflow.generate_receipt(consent.id, include_signature=False)).receipt
        assert receipt.signature is None
        assert not verify_receipt_signature(receipt, TEST_SECRET)

    async def test_signing_requires_secret(self, registry):
        settings = Settings(_env_file=None, environment="test", secret=None, database_url=None)
        workflow = ConsentWorkflow(registry, settings=settings)
        consent = await workflow.set_consent(COOKIE_CONSENT)
        with pytest.raises(ConfigurationError):
            await workflow.generate_receipt(consent.id)
        unsigned = await workflow.generate_receipt(consent.id, include_signature=False)
        assert unsigned.receipt.signature is None

    async def test_wire_format(self, workflow):
        consent = await workflow.set_consent(COOKIE_CONSENT)
        payload = (await workflow.generate_receipt(consent.id)).receipt.model_dump(mode="json", by_alias=True)
        assert "consentReceiptID" in payload
        assert "policyURL" in payload
        assert "on_behalf" in payload["dataController"]
        assert payload["jurisdiction"] == "GDPR"

    async def test_unknown_consent(self, workflow):
        with pytest.raises(ConsentNotFoundError):
            await workflow.generate_receipt("missing")


# ══════════════════════════════════════════════════════════════════════════════
# 6. TestVerifyConsent
# ══════════════════════════════════════════════════════════════════════════════


class TestVerifyConsent:
    async def test_required_preference_met(self, workflow):
        consent = await workflow.set_consent(COOKIE_CONSENT)
        response = await workflow.verify_consent(
            {"externalId": "ext-1", "domain": "example.com", "requiredPreferences": {"analytics": True}}
        )
        assert response.data.verified is True
        assert response.data.identified_by == "external_id"
        assert response.data.consent_details.id == consent.id
        assert response.data.verification_results.has_active_consent is True

    async def test_required_preference_declined(self, workflow):
        await workflow.set_consent(COOKIE_CONSENT)
        response = await workflow.verify_consent(
            {"externalId": "ext-1", "domain": "example.com", "requiredPreferences": {"marketing": True}}
        )
        assert response.data.verified is False
        assert response.data.verification_results.has_active_consent is True
        assert response.data.verification_results.meets_preference_requirements is False

    async def test_exact_match(self, workflow):
        await workflow.set_consent(COOKIE_CONSENT)
        exact = {"externalId": "ext-1", "domain": "example.com", "requireExactMatch": True}
        declined = await workflow.verify_consent({**exact, "requiredPreferences": {"marketing": False}})
        missing = await workflow.verify_consent({**exact, "requiredPreferences": {"necessary": False}})
        assert declined.data.verified is True
        assert missing.data.verified is False

    async def test_policy_version(self, workflow):
        consent = await workflow.set_consent(COOKIE_CONSENT)
        base = {"externalId": "ext-1", "domain": "example.com"}
        assert (await workflow.verify_consent({**base, "policyVersion": "1.0.0"})).data.verified is True
        assert (await workflow.verify_consent({**base, "policyVersion": str(consent.policy_id)})).data.verified is True
        mismatch = await workflow.verify_consent({**base, "policyVersion": "2.0.0"})
        assert mismatch.data.verified is False
        assert mismatch.data.verification_results.matches_policy_version is False

    async def test_unknown_user(self, workflow):
        response = await workflow.verify_consent({"externalId": "nobody", "domain": "example.com"})
        assert response.data.verified is False
        assert response.data.identified_by is None

    async def test_no_consent_on_domain(self, workflow):
        consent = await workflow.set_consent(COOKIE_CONSENT)
        response = await workflow.verify_consent({"userId": consent.user_id, "domain": "other.com"})
        assert response.data.verified is False
        assert response.data.identified_by == "user_id"
        assert response.data.consent_details is None

    async def test_withdrawn_consent_not_verified(self, workflow):
        consent = await workflow.set_consent(COOKIE_CONSENT)
        await workflow.withdraw_consent({"consentId": consent.id})
        response = await workflow.verify_consent({"externalId": "ext-1", "domain": "example.com"})
        assert response.data.verified is False
        assert response.data.verification_results.has_active_consent is False

    @pytest.mark.parametrize(
        "decision,expected",
        [(True, True), ("2024-05-01T12:00:00Z", True), (1, True), (False, False), (None, False)],
    )
    def test_is_granted(self, decision, expected):
        assert is_granted(decision) is expected


# ══════════════════════════════════════════════════════════════════════════════
# 7. TestConsentPolicy
# ══════════════════════════════════════════════════════════════════════════════


class TestConsentPolicy:
    async def test_latest_policy_with_purposes(self, workflow):
        consent = await workflow.set_consent(COOKIE_CONSENT)
        response = await workflow.get_consent_policy({"domain": "example.com"})
        assert response.success is True
        policy = response.data.policy
        assert policy.id == consent.policy_id
        assert policy.name == "cookie banner"
        assert policy.version == "1.0.0"
        assert [purpose.code for purpose in policy.available_preferences] == ["analytics", "marketing", "necessary"]
        assert response.data.user_consent_status is None

    async def test_newer_version_needs_renewal(self, workflow, registry):
        consent = await workflow.set_consent(COOKIE_CONSENT)
        published = await registry.policies.publish_version("cookie banner", "2.0.0", "Updated cookie notice")

        response = await workflow.get_consent_policy({"domain": "example.com", "externalId": "ext-1"})
        assert response.data.policy.id == published["id"]
        status = response.data.user_consent_status
        assert status.has_consent is True
        assert status.consent_id == consent.id
        assert status.current_preferences == {"analytics": True, "marketing": False}
        assert status.needs_renewal is True
        assert status.identified_by == "external_id"

    async def test_current_consent_needs_no_renewal(self, workflow):
        consent = await workflow.set_consent(COOKIE_CONSENT)
        response = await workflow.get_consent_policy({"domain": "example.com", "userId": consent.user_id})
        status = response.data.user_consent_status
        assert status.needs_renewal is False
        assert status.identified_by == "user_id"
        assert status.consented_at == consent.given_at

    async def test_specific_version_without_purposes(self, workflow, registry):
        await registry.policies.publish_version("privacy policy", "1.0.0", "First")
        await registry.policies.publish_version("privacy policy", "2.0.0", "Second")
        response = await workflow.get_consent_policy(
            {"domain": "example.com", "consentType": "privacy_policy", "version": "1.0.0", "includePreferences": False}
        )
        assert response.data.policy.content == "First"
        assert response.data.policy.available_preferences is None

    async def test_missing_policy_is_not_created(self, workflow, registry):
        with pytest.raises(PolicyNotFoundError) as exc_info:
            await workflow.get_consent_policy({"domain": "example.com", "consentType": "dpa"})
        assert exc_info.value.status_code == 404
        assert await registry.policies.find_latest_policy("dpa") is None

    async def test_user_without_consent_on_domain(self, workflow):
        await workflow.set_consent(COOKIE_CONSENT)
        response = await workflow.get_consent_policy({"domain": "other.com", "externalId": "ext-1"})
        status = response.data.user_consent_status
        assert status.has_consent is False
        assert status.current_preferences is None
        assert status.needs_renewal is True

    async def test_withdrawn_consent_is_not_reported(self, workflow):
        consent = await workflow.set_consent(COOKIE_CONSENT)
        await workflow.withdraw_consent({"consentId": consent.id})
        response = await workflow.get_consent_policy({"domain": "example.com", "externalId": "ext-1"})
        assert response.data.user_consent_status.has_consent is False

    async def test_unknown_user_id_falls_back_to_external_id(self, workflow):
        await workflow.set_consent(COOKIE_CONSENT)
        response = await workflow.get_consent_policy(
            {"domain": "example.com", "userId": "missing", "externalId": "ext-1"}
        )
        assert response.data.user_consent_status.identified_by == "external_id"

    async def test_unknown_user_has_no_status(self, workflow):
        await workflow.set_consent(COOKIE_CONSENT)
        response = await workflow.get_consent_policy({"domain": "example.com", "externalId": "nobody"})
        assert response.data.user_consent_status is None

    async def test_wire_format(self, workflow):
        await workflow.set_consent(COOKIE_CONSENT)
        response = await workflow.get_consent_policy({"domain": "example.com", "externalId": "ext-1"})
        payload = response.model_dump(mode="json", by_alias=True)
        assert {"availablePreferences", "contentHash", "effectiveDate"} <= set(payload["data"]["policy"])
        assert {"hasConsent", "needsRenewal", "identifiedBy"} <= set(payload["data"]["userConsentStatus"])


# ══════════════════════════════════════════════════════════════════════════════
# 8. TestConsentHistory
# ══════════════════════════════════════════════════════════════════════════════


class TestConsentHistory:
    async def test_history(self, workflow):
        first = await workflow.set_consent(COOKIE_CONSENT)
        second = await workflow.set_consent({**COOKIE_CONSENT, "preferences": {"analytics": False}})
        await workflow.withdraw_consent({"consentId": second.id, "reason": "opt out"})

        history = await workflow.get_consent_history({"externalId": "ext-1"})
        assert history.user_id == first.user_id
        assert history.pagination.total == 2
        assert [entry.id for entry in history.consents] == [second.id, first.id]
        assert all(entry.is_active is False for entry in history.consents)
        assert history.consents[0].domain == "example.com"

        withdrawals = history.consents[0].withdrawals
        assert len(withdrawals) == 1
        assert withdrawals[0].reason == "opt out"
        assert history.consents[1].withdrawals == []
        assert {record.type for record in history.consents[0].records} == {"api_call", "withdrawal"}

        actions = sorted(log.action for log in history.audit_logs)
        assert actions == sorted(
            [ACTION_CONSENT_CREATED, ACTION_CONSENT_CREATED, ACTION_CONSENT_DEACTIVATED, ACTION_WITHDRAW_CONSENT]
        )

    async def test_pagination(self, workflow):
        await workflow.set_consent(COOKIE_CONSENT)
        latest = await workflow.set_consent(COOKIE_CONSENT)
        history = await workflow.get_consent_history({"externalId": "ext-1", "limit": 1})
        assert [entry.id for entry in history.consents] == [latest.id]
        assert history.pagination.total == 2
        assert history.pagination.limit == 1

    async def test_domain_filter(self, workflow):
        await workflow.set_consent(COOKIE_CONSENT)
        other = await workflow.set_consent({**COOKIE_CONSENT, "domain": "other.com"})
        history = await workflow.get_consent_history({"externalId": "ext-1", "domain": "other.com"})
        assert [entry.id for entry in history.consents] == [other.id]
        assert history.pagination.total == 1

    async def test_unknown_domain_is_empty(self, workflow):
        await workflow.set_consent(COOKIE_CONSENT)
        history = await workflow.get_consent_history({"externalId": "ext-1", "domain": "unknown.com"})
        assert history.consents == []
        assert history.pagination.total == 0

    async def test_unknown_user(self, workflow):
        with pytest.raises(UserNotFoundError):
            await workflow.get_consent_history({"externalId": "nobody"})


# ══════════════════════════════════════════════════════════════════════════════
# 9. TestRequestParsing
# ══════════════════════════════════════════════════════════════════════════════


class TestRequestParsing:
    async def test_response_uses_camel_case(self, workflow):
        response = await workflow.set_consent(COOKIE_CONSENT)
        payload = response.model_dump(mode="json", by_alias=True)
        assert {"userId", "domainId", "policyId", "recordId", "givenAt", "deactivatedConsentIds"} <= set(payload)

    async def test_snake_case_accepted(self, workflow):
        response = await workflow.set_consent(
            SetConsentRequest(external_id="ext-1", domain="example.com", preferences={"analytics": True})
        )
        assert response.external_id == "ext-1"

    async def test_invalid_mapping(self, workflow):
        with pytest.raises(ValidationError) as exc_info:
            await workflow.withdraw_consent({"reason": "no identifier"})
        assert exc_info.value.details["errors"]

    async def test_cookie_banner_needs_preferences(self, workflow):
        with pytest.raises(ValidationError):
            await workflow.set_consent({"externalId": "ext-1", "domain": "example.com"})

    async def test_domain_required_with_user(self, workflow):
        with pytest.raises(ValidationError):
            await workflow.withdraw_consent({"externalId": "ext-1"})

    async def test_history_limit_bounds(self, workflow):
        with pytest.raises(ValidationError):
            await workflow.get_consent_history({"externalId": "ext-1", "limit": 0})

    async def test_valid_until_needs_timezone(self, workflow, registry):
        with pytest.raises(ValidationError):
            await workflow.set_consent({**COOKIE_CONSENT, "validUntil": "2030-01-01T00:00:00"})
        response = await workflow.set_consent({**COOKIE_CONSENT, "validUntil": "2030-01-01T00:00:00Z"})
        consent = await registry.consents.find_consent(response.id)
        assert consent["valid_until"] == datetime(2030, 1, 1, tzinfo=timezone.utc)


class TestWorkflowFactory:
    @pytest.fixture
    def logging_calls(self, monkeypatch) -> list[tuple]:
        calls: list[tuple] = []
        monkeypatch.setattr(
            "consent_store.services.consent_service.setup_logging", lambda *args, **kwargs: calls.append(args)
        )
        return calls

    def test_memory_workflow(self, test_settings, logging_calls):
        workflow = get_consent_workflow(settings=test_settings)
        assert isinstance(workflow.registry.adapter, MemoryAdapter)
        assert workflow.settings is test_settings

    def test_logging_configured_from_settings(self, test_settings, logging_calls):
        settings = test_settings.model_copy(update={"log_level": "DEBUG", "log_json": False})
        get_consent_workflow(settings=settings)
        assert logging_calls == [("DEBUG", False)]

    def test_logging_left_to_application(self, test_settings, logging_calls):
        get_consent_workflow(settings=test_settings, configure_logging=False)
        assert logging_calls == []
