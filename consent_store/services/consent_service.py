"""
Consent Workflow Service

Implements the consent use cases on top of the entity registry: set consent,
withdraw consent, consent receipts, verification, policy lookup and history.

Every state change of a consent is paired with an evidence record and/or an
audit log row. Steps run one after another; with atomic workflows enabled
each use case runs inside one unit of work instead.
"""

import hashlib
import hmac
import json
import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from consent_store.config import Settings, get_settings
from consent_store.database import get_adapter
from consent_store.db.fields import utcnow
from consent_store.db.hooks.pipeline import ContextInput
from consent_store.db.ids import generate_id
from consent_store.entities.audit_log import (
    ACTION_CONSENT_CREATED,
    ACTION_CONSENT_DEACTIVATED,
    ACTION_WITHDRAW_CONSENT,
    ACTION_WITHDRAW_CONSENT_FAILED,
    RESOURCE_CONSENT,
)
from consent_store.entities.base import Record
from consent_store.entities.record import RecordType
from consent_store.exceptions import (
    ConfigurationError,
    ConsentAlreadyWithdrawnError,
    ConsentNotFoundError,
    DomainNotFoundError,
    PartialWithdrawalError,
    PolicyNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from consent_store.logging_config import setup_logging
from consent_store.options import ConsentOptions
from consent_store.registry import ConsentRegistry
from consent_store.schemas.consent import (
    AuditLogEntry,
    AvailablePurpose,
    ConsentDetails,
    ConsentHistoryEntry,
    ConsentHistoryRequest,
    ConsentHistoryResponse,
    ConsentPolicyData,
    ConsentPolicyRequest,
    ConsentPolicyResponse,
    ConsentReceipt,
    ConsentReceiptResponse,
    ConsentType,
    DataController,
    Pagination,
    PolicySummary,
    ReceiptPurpose,
    ReceiptService,
    ReceiptSubject,
    RecordEntry,
    SetConsentRequest,
    SetConsentResponse,
    UserConsentStatus,
    VerificationData,
    VerificationResults,
    VerifyConsentRequest,
    VerifyConsentResponse,
    WithdrawalData,
    WithdrawalEntry,
    WithdrawConsentRequest,
    WithdrawConsentResponse,
)

logger = logging.getLogger(__name__)

RequestT = TypeVar("RequestT", bound=BaseModel)

POLICY_BASED_TYPES = frozenset({ConsentType.PRIVACY_POLICY, ConsentType.DPA, ConsentType.TERMS_OF_SERVICE})
RECEIPT_ID_LENGTH = 10
DEFAULT_ACTOR = "system"


def _parse(model: type[RequestT], request: RequestT | Mapping[str, Any]) -> RequestT:
    if isinstance(request, model):
        return request
    try:
        return model.model_validate(request)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Invalid {model.__name__}",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc


def policy_name(consent_type: ConsentType) -> str:
    """Policies are named after their consent type: "privacy policy", "cookie banner"."""
    return consent_type.value.replace("_", " ")


def is_granted(decision: Any) -> bool:
    """A preference value counts as granted unless it is null or false."""
    return decision is not None and decision is not False


def receipt_signature(receipt: ConsentReceipt, secret: str) -> str:
    """HMAC-SHA256 over the canonical JSON of the receipt without its signature."""
    payload = json.dumps(
        receipt.model_dump(mode="json", by_alias=True, exclude={"signature"}),
        sort_keys=True,
        separators=(",", ":"),
    )
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_receipt_signature(receipt: ConsentReceipt, secret: str) -> bool:
    if not receipt.signature:
        return False
    return hmac.compare_digest(receipt.signature, receipt_signature(receipt, secret))


class ConsentWorkflow:
    """Consent use cases composed from the entity adapters."""

    def __init__(
        self,
        registry: ConsentRegistry,
        settings: Settings | None = None,
        atomic: bool | None = None,
    ):
        self.registry = registry
        self.settings = settings or get_settings()
        self.atomic = self.settings.atomic_workflows if atomic is None else atomic

    @asynccontextmanager
    async def _scope(self) -> AsyncIterator[ConsentRegistry]:
        if not self.atomic:
            yield self.registry
            return
        async with self.registry.unit_of_work() as registry:
            yield registry

    @property
    def _options(self) -> ConsentOptions:
        return self.registry.adapter.options

    # ============== Set Consent ==============

    async def set_consent(
        self,
        request: SetConsentRequest | Mapping[str, Any],
        context: ContextInput = None,
    ) -> SetConsentResponse:
        """
        Record a consent decision.

        Earlier active consents of the same user on the same domain are
        deactivated first, so at most one consent per (user, domain) is active.
        """
        request = _parse(SetConsentRequest, request)
        async with self._scope() as registry:
            purposes = await self._resolve_purposes(registry, request.preferences)

            user = await registry.users.find_or_create_user(
                user_id=request.user_id,
                external_id=request.external_id,
                ip_address=request.ip_address,
                context=context,
            )
            domain = await registry.domains.find_or_create_domain(request.domain, context)
            policy = await self._resolve_policy(registry, request, context)

            missing = [code for code in request.preferences if code not in purposes]
            for code in missing:
                purposes[code] = await registry.purposes.create_purpose(
                    {
                        "code": code,
                        "name": code,
                        "description": f"Auto-created purpose for {code}",
                        "data_category": "functional",
                        "legal_basis": "consent",
                    },
                    context,
                )

            deactivated = await self._deactivate_previous(registry, user, domain, request.actor, context)

            now = utcnow()
            consent = await registry.consents.create_consent(
                {
                    "user_id": user["id"],
                    "domain_id": domain["id"],
                    "policy_id": policy["id"],
                    "preferences": request.preferences,
                    "metadata": {**request.metadata, "consent_type": request.consent_type.value},
                    "ip_address": request.ip_address,
                    "region": request.region,
                    "given_at": now,
                    "valid_until": request.valid_until,
                    "is_active": True,
                },
                context,
            )

            for code, decision in request.preferences.items():
                await registry.purpose_junctions.create_purpose_junction(
                    consent["id"], purposes[code]["id"], is_granted(decision), context
                )

            if request.geo_location is not None:
                location = await registry.geo_locations.find_or_create_geo_location(
                    request.geo_location.model_dump(), context
                )
                await registry.geo_locations.link_consent_geo_location(consent["id"], location["id"], context)

            record = await registry.records.create_consent_record(
                {
                    "consent_id": consent["id"],
                    "record_type": request.record_type,
                    "record_type_detail": request.record_type_detail,
                    "content": {
                        "consent_type": request.consent_type.value,
                        "preferences": request.preferences,
                        "policy_id": policy["id"],
                    },
                    "ip_address": request.ip_address,
                    "record_metadata": {"device_info": request.device_info, **request.metadata},
                },
                context,
            )

            await registry.audit_logs.create_audit_log(
                {
                    "action": ACTION_CONSENT_CREATED,
                    "user_id": user["id"],
                    "resource_type": RESOURCE_CONSENT,
                    "resource_id": str(consent["id"]),
                    "actor": request.actor or DEFAULT_ACTOR,
                    "changes": {
                        "after": {
                            "is_active": True,
                            "preferences": request.preferences,
                            "domain_id": domain["id"],
                            "policy_id": policy["id"],
                            "record_id": record["id"],
                        }
                    },
                    "device_info": request.device_info,
                    "ip_address": request.ip_address,
                },
                context,
            )

        logger.info(
            "Consent %s set for user %s on %s",
            consent["id"],
            user["id"],
            domain["domain"],
            extra={"consent_id": consent["id"], "user_id": user["id"], "domain": domain["domain"]},
        )
        return SetConsentResponse(
            id=consent["id"],
            user_id=user["id"],
            external_id=user.get("external_id"),
            domain_id=domain["id"],
            domain=domain["domain"],
            consent_type=request.consent_type,
            is_active=consent["is_active"],
            policy_id=policy["id"],
            record_id=record["id"],
            preferences=consent["preferences"],
            metadata=consent.get("metadata") or {},
            given_at=consent["given_at"],
            deactivated_consent_ids=deactivated,
        )

    async def _resolve_purposes(self, registry: ConsentRegistry, preferences: Mapping[str, Any]) -> dict[str, Record]:
        """Known purposes by code. Unknown codes are rejected unless auto-creation is enabled."""
        found = await registry.purposes.find_purposes_by_codes(list(preferences))
        purposes = {purpose["code"]: purpose for purpose in found}
        unknown = sorted(set(preferences) - set(purposes))
        if unknown and not self._options.auto_create_purposes:
            raise ValidationError(
                "Preferences reference unknown purposes",
                field="preferences",
                details={"unknown_purposes": unknown},
            )
        return purposes

    async def _resolve_policy(
        self,
        registry: ConsentRegistry,
        request: SetConsentRequest,
        context: ContextInput,
    ) -> Record:
        if request.policy_id is not None:
            policy = await registry.policies.find_policy_by_id(request.policy_id)
            if policy is None:
                raise PolicyNotFoundError(request.policy_id)
            if not policy["is_active"]:
                raise ValidationError("Consent policy is no longer active", field="policy_id")
            return policy
        if request.consent_type in POLICY_BASED_TYPES:
            logger.debug("No policy id given for %s consent; using the latest version", request.consent_type.value)
        return await registry.policies.find_or_create_policy(policy_name(request.consent_type), context)

    async def _deactivate_previous(
        self,
        registry: ConsentRegistry,
        user: Record,
        domain: Record,
        actor: str | None,
        context: ContextInput,
    ) -> list[Any]:
        deactivated = []
        for previous in await registry.consents.find_active_consents(user["id"], domain["id"]):
            if await registry.consents.deactivate_consent(previous["id"], context) is None:
                # Deactivated concurrently
                continue
            await registry.audit_logs.create_audit_log(
                {
                    "action": ACTION_CONSENT_DEACTIVATED,
                    "user_id": user["id"],
                    "resource_type": RESOURCE_CONSENT,
                    "resource_id": str(previous["id"]),
                    "actor": actor or DEFAULT_ACTOR,
                    "changes": {"before": {"is_active": True}, "after": {"is_active": False}},
                },
                context,
            )
            deactivated.append(previous["id"])
        if deactivated:
            logger.info("Deactivated %d earlier consent(s) for user %s", len(deactivated), user["id"])
        return deactivated

    # ============== Withdraw Consent ==============

    async def withdraw_consent(
        self,
        request: WithdrawConsentRequest | Mapping[str, Any],
        context: ContextInput = None,
    ) -> WithdrawConsentResponse:
        """
        Withdraw one consent by id, or every active consent of a user on a domain.

        Raises:
            ConsentNotFoundError:         nothing to withdraw.
            UserNotFoundError:            the user identifier is unknown.
            ConsentAlreadyWithdrawnError: the consent(s) are already inactive.
            PartialWithdrawalError:       a consent was deactivated but its
                                          evidence or audit rows are missing.
        """
        request = _parse(WithdrawConsentRequest, request)
        revoked_at = utcnow()
        async with self._scope() as registry:
            targets = await self._withdrawal_targets(registry, request)
            withdrawal_ids = []
            for consent in targets:
                withdrawal = await self._withdraw_one(registry, consent, request, revoked_at, context)
                withdrawal_ids.append(withdrawal["id"])

        consent_ids = [consent["id"] for consent in targets]
        logger.info(
            "Withdrew %d consent(s) via %s",
            len(consent_ids),
            request.identifier_type,
            extra={"operation": "withdraw_consent"},
        )
        return WithdrawConsentResponse(
            success=True,
            data=WithdrawalData(withdrawal_ids=withdrawal_ids, consent_ids=consent_ids, revoked_at=revoked_at),
        )

    async def _withdrawal_targets(self, registry: ConsentRegistry, request: WithdrawConsentRequest) -> list[Record]:
        if request.consent_id is not None:
            consent = await registry.consents.find_consent(request.consent_id)
            if consent is None:
                raise ConsentNotFoundError(request.consent_id)
            if not consent["is_active"]:
                raise ConsentAlreadyWithdrawnError(request.consent_id)
            return [consent]

        user = await self._find_user(registry, request.user_id, request.external_id)
        if user is None:
            raise UserNotFoundError(details={request.identifier_type: request.user_id or request.external_id})

        domain = await registry.domains.find_domain_by_name(request.domain)
        if domain is None:
            raise ConsentNotFoundError(details={"user_id": user["id"], "domain": request.domain})

        active = await registry.consents.find_active_consents(user["id"], domain["id"])
        if active:
            return active

        latest = await registry.consents.find_user_consents(user["id"], domain["id"], limit=1)
        if not latest:
            raise ConsentNotFoundError(details={"user_id": user["id"], "domain": request.domain})
        raise ConsentAlreadyWithdrawnError(latest[0]["id"])

    async def _withdraw_one(
        self,
        registry: ConsentRegistry,
        consent: Record,
        request: WithdrawConsentRequest,
        revoked_at: datetime,
        context: ContextInput,
    ) -> Record:
        actor = request.actor or DEFAULT_ACTOR
        try:
            revoked = await registry.revoke_consent(
                consent["id"],
                reason=request.reason,
                method=request.method,
                actor=actor,
                metadata=request.metadata,
                context=context,
                revoked_at=revoked_at,
            )
        except PartialWithdrawalError as exc:
            if self.atomic and exc.__cause__ is not None:
                # Rolled back by the unit of work; report the underlying failure
                raise exc.__cause__ from None
            await self._audit_failed_withdrawal(registry, consent, exc.failed_step, exc.completed_steps, exc, context)
            raise
        completed = ["revoke_consent"]
        preferences = consent.get("preferences") or {}

        step = "create_consent_record"
        try:
            await registry.records.create_consent_record(
                {
                    "consent_id": consent["id"],
                    "record_type": RecordType.WITHDRAWAL,
                    "record_type_detail": f"{request.method} withdrawal",
                    "content": {
                        "reason": request.reason,
                        "method": request.method,
                        "identifier_type": request.identifier_type,
                        "preferences": preferences,
                        "withdrawn_at": revoked_at,
                    },
                    "ip_address": request.ip_address,
                    "record_metadata": {"device_info": request.device_info, **request.metadata},
                },
                context,
            )
            completed.append(step)

            step = "create_audit_log"
            await registry.audit_logs.create_audit_log(
                {
                    "action": ACTION_WITHDRAW_CONSENT,
                    "user_id": consent["user_id"],
                    "resource_type": RESOURCE_CONSENT,
                    "resource_id": str(consent["id"]),
                    "actor": actor,
                    "device_info": request.device_info,
                    "ip_address": request.ip_address,
                    "changes": {
                        "before": {"is_active": True, "preferences": preferences},
                        "after": {
                            "is_active": False,
                            "preferences": {key: None for key in preferences},
                            "revoked_at": revoked_at,
                        },
                    },
                },
                context,
            )
            completed.append(step)
        except Exception as exc:
            if self.atomic:
                # The unit of work rolls the revocation back
                raise
            logger.error(
                "Withdrawal of consent %s stopped at %s after %s: %s",
                consent["id"],
                step,
                completed,
                exc,
                extra={"consent_id": consent["id"], "step": step},
            )
            await self._audit_failed_withdrawal(registry, consent, step, completed, exc, context)
            raise PartialWithdrawalError(consent["id"], completed, step) from exc

        return revoked["withdrawal"]

    async def _audit_failed_withdrawal(
        self,
        registry: ConsentRegistry,
        consent: Record,
        failed_step: str,
        completed: list[str],
        error: Exception,
        context: ContextInput,
    ) -> None:
        try:
            await registry.audit_logs.create_audit_log(
                {
                    "action": ACTION_WITHDRAW_CONSENT_FAILED,
                    "user_id": consent["user_id"],
                    "resource_type": RESOURCE_CONSENT,
                    "resource_id": str(consent["id"]),
                    "actor": DEFAULT_ACTOR,
                    "changes": {
                        "completed_steps": completed,
                        "failed_step": failed_step,
                        "error": str(error),
                    },
                },
                context,
            )
        except Exception:
            # The PartialWithdrawalError raised by the caller still reports the failure
            logger.exception("Could not audit the failed withdrawal of consent %s", consent["id"])

    # ============== Receipts ==============

    async def generate_receipt(self, consent_id: Any, include_signature: bool = True) -> ConsentReceiptResponse:
        """
        Build a consent receipt: proof of who consented to what, when and how.

        The signature is an HMAC-SHA256 of the canonical receipt JSON keyed
        with the configured secret.
        """
        registry = self.registry
        found = await registry.find_consent_by_id(consent_id)
        if found is None:
            raise ConsentNotFoundError(consent_id)
        consent, user = found["consent"], found["user"]
        if user is None:
            raise UserNotFoundError(details={"consent_id": consent_id})

        domain = await registry.domains.find_domain_by_id(consent["domain_id"])
        if domain is None:
            raise DomainNotFoundError(consent["domain_id"])

        records = await registry.records.find_records_by_consent_id(consent_id)
        preferences = consent.get("preferences") or {}
        purposes = {p["code"]: p for p in await registry.purposes.find_purposes_by_codes(list(preferences))}

        termination = (
            f"As specified in policy {consent['policy_id']}" if consent.get("policy_id") else "Until consent is withdrawn"
        )
        services = []
        for code, decision in preferences.items():
            purpose = purposes.get(code)
            service_name = purpose["name"] if purpose else code.capitalize()
            description = (
                purpose["description"]
                if purpose
                else f"{'Enabled' if is_granted(decision) else 'Disabled'} {code} tracking and functionality"
            )
            category = purpose.get("data_category") if purpose else None
            services.append(
                ReceiptService(
                    service=service_name,
                    purposes=[
                        ReceiptPurpose(
                            purpose=code,
                            purpose_description=description,
                            purpose_category=[category or service_name],
                            termination=termination,
                        )
                    ],
                )
            )

        first_record = records[0] if records else None
        record_metadata = (first_record or {}).get("record_metadata") or {}
        receipt_id = f"CR{generate_id(RECEIPT_ID_LENGTH)}"
        receipt = ConsentReceipt(
            consent_timestamp=consent["given_at"],
            collection_method=(
                (first_record.get("record_type_detail") or first_record["record_type"]) if first_record else "API"
            ),
            consent_receipt_id=receipt_id,
            public_key=self.settings.receipt_public_key or "not-configured",
            subject=ReceiptSubject(
                id=str(user["id"]),
                id_type="external_id" if user.get("external_id") else "user_id",
            ),
            data_controller=DataController(id=domain["domain"], name=self._options.app_name or domain["domain"]),
            policy_url=f"https://{domain['domain']}/privacy",
            services=services,
            metadata={
                "device_info": record_metadata.get("device_info") or "Not recorded",
                "ip_address": consent.get("ip_address") or "Not recorded",
                "policy_id": consent.get("policy_id"),
                **(consent.get("metadata") or {}),
            },
        )

        if include_signature:
            secret = self._options.secret or self.settings.secret
            if not secret:
                raise ConfigurationError("Signing receipts requires a secret", setting="secret")
            receipt.signature = receipt_signature(receipt, secret)

        return ConsentReceiptResponse(receipt=receipt, receipt_id=receipt_id, timestamp=utcnow())

    # ============== Verification ==============

    async def verify_consent(self, request: VerifyConsentRequest | Mapping[str, Any]) -> VerifyConsentResponse:
        """Check for an active consent on a domain that meets the required purpose decisions."""
        request = _parse(VerifyConsentRequest, request)
        registry = self.registry

        user = await self._find_user(registry, request.user_id, request.external_id)
        if user is None:
            return VerifyConsentResponse(data=VerificationData())
        identified_by = "user_id" if request.user_id is not None else "external_id"

        domain = await registry.domains.find_domain_by_name(request.domain)
        active = await registry.consents.find_active_consents(user["id"], domain["id"]) if domain else []
        if not active:
            return VerifyConsentResponse(data=VerificationData(identified_by=identified_by))
        consent = active[0]

        decisions = await self._purpose_decisions(registry, consent["id"])
        meets_requirements = self._meets_requirements(
            decisions, request.required_preferences or {}, request.require_exact_match
        )

        matches_policy = True
        if request.policy_version is not None:
            policy = await registry.policies.find_policy_by_id(consent["policy_id"])
            matches_policy = policy is not None and request.policy_version in (str(policy["id"]), policy["version"])

        return VerifyConsentResponse(
            data=VerificationData(
                verified=consent["is_active"] and meets_requirements and matches_policy,
                consent_details=ConsentDetails(
                    id=consent["id"],
                    given_at=consent["given_at"],
                    policy_id=consent["policy_id"],
                    preferences=consent.get("preferences") or {},
                ),
                identified_by=identified_by,
                verification_results=VerificationResults(
                    has_active_consent=consent["is_active"],
                    meets_preference_requirements=meets_requirements,
                    matches_policy_version=matches_policy,
                ),
            )
        )

    async def _purpose_decisions(self, registry: ConsentRegistry, consent_id: Any) -> dict[str, bool]:
        """Purpose code -> accepted, from the consent's junction rows."""
        junctions = await registry.purpose_junctions.find_by_consent_id(consent_id)
        purposes = await registry.purposes.find_purposes_by_ids([row["purpose_id"] for row in junctions])
        codes = {purpose["id"]: purpose["code"] for purpose in purposes}
        return {codes[row["purpose_id"]]: row["is_accepted"] for row in junctions if row["purpose_id"] in codes}

    @staticmethod
    def _meets_requirements(decisions: Mapping[str, bool], required: Mapping[str, bool], exact: bool) -> bool:
        for code, wanted in required.items():
            if exact:
                if code not in decisions or decisions[code] != wanted:
                    return False
            elif wanted and not decisions.get(code, False):
                return False
        return True

    # ============== Policy ==============

    async def get_consent_policy(self, request: ConsentPolicyRequest | Mapping[str, Any]) -> ConsentPolicyResponse:
        """
        The policy a domain should present, and optionally where a user stands.

        Reads only: a missing policy is reported, never created. An unknown
        domain is not an error because nothing has been consented on it yet.

        Raises:
            PolicyNotFoundError: no active policy (or no such version) exists.
        """
        request = _parse(ConsentPolicyRequest, request)
        registry = self.registry

        name = policy_name(request.consent_type)
        if request.version is not None:
            policy = await registry.policies.find_policy_version(name, request.version)
        else:
            policy = await registry.policies.find_latest_policy(name)
        if policy is None:
            raise PolicyNotFoundError(request.version or name)

        available = None
        if request.include_preferences:
            available = [
                AvailablePurpose(
                    code=purpose["code"],
                    name=purpose["name"],
                    description=purpose["description"],
                    is_essential=purpose["is_essential"],
                )
                for purpose in sorted(await registry.purposes.list_active_purposes(), key=lambda row: row["code"])
            ]

        data = ConsentPolicyData(
            domain=request.domain,
            policy=PolicySummary(
                id=policy["id"],
                name=policy["name"],
                version=policy["version"],
                content=policy["content"],
                content_hash=policy["content_hash"],
                effective_date=policy["effective_date"],
                available_preferences=available,
            ),
        )
        if request.user_id is not None or request.external_id is not None:
            data.user_consent_status = await self._user_consent_status(registry, request, policy)
        return ConsentPolicyResponse(data=data)

    async def _user_consent_status(
        self,
        registry: ConsentRegistry,
        request: ConsentPolicyRequest,
        policy: Record,
    ) -> UserConsentStatus | None:
        # user_id first, external_id when the user id is unknown
        user, identified_by = None, None
        if request.user_id is not None:
            user = await registry.users.find_user_by_id(request.user_id)
            identified_by = "user_id"
        if user is None and request.external_id is not None:
            user = await registry.users.find_user_by_external_id(request.external_id)
            identified_by = "external_id"
        if user is None:
            return None

        domain = await registry.domains.find_domain_by_name(request.domain)
        active = await registry.consents.find_active_consents(user["id"], domain["id"]) if domain else []
        if not active:
            return UserConsentStatus(identified_by=identified_by)
        consent = active[0]
        return UserConsentStatus(
            has_consent=True,
            consent_id=consent["id"],
            current_preferences=consent.get("preferences") or {},
            consented_at=consent["given_at"],
            needs_renewal=str(consent["policy_id"]) != str(policy["id"]),
            identified_by=identified_by,
        )

    # ============== History ==============

    async def get_consent_history(
        self,
        request: ConsentHistoryRequest | Mapping[str, Any],
    ) -> ConsentHistoryResponse:
        """All consents of a user, newest first, with withdrawals, records and audit logs."""
        request = _parse(ConsentHistoryRequest, request)
        registry = self.registry

        user = await self._find_user(registry, request.user_id, request.external_id)
        if user is None:
            raise UserNotFoundError(request.user_id, details={"external_id": request.external_id})

        empty = ConsentHistoryResponse(
            user_id=user["id"],
            consents=[],
            audit_logs=[],
            pagination=Pagination(limit=request.limit, offset=request.offset, total=0),
        )
        domain_id = None
        if request.domain:
            domain = await registry.domains.find_domain_by_name(request.domain)
            if domain is None:
                return empty
            domain_id = domain["id"]

        total = await registry.consents.count_user_consents(user["id"], domain_id)
        consents = await registry.consents.find_user_consents(
            user["id"], domain_id, limit=request.limit, offset=request.offset
        )
        if not consents:
            return empty.model_copy(update={"pagination": Pagination(limit=request.limit, offset=request.offset, total=total)})

        consent_ids = [consent["id"] for consent in consents]
        withdrawals: dict[Any, list[WithdrawalEntry]] = {}
        for row in await registry.withdrawals.find_withdrawals_by_consent_ids(consent_ids):
            withdrawals.setdefault(row["consent_id"], []).append(
                WithdrawalEntry(
                    id=row["id"],
                    revoked_at=row["revoked_at"],
                    reason=row.get("revocation_reason"),
                    method=row["method"],
                    actor=row.get("actor"),
                )
            )

        domains: dict[Any, str | None] = {}
        entries = []
        for consent in consents:
            if consent["domain_id"] not in domains:
                domain = await registry.domains.find_domain_by_id(consent["domain_id"])
                domains[consent["domain_id"]] = domain["domain"] if domain else None
            records = await registry.records.find_records_by_consent_id(consent["id"])
            entries.append(
                ConsentHistoryEntry(
                    id=consent["id"],
                    domain=domains[consent["domain_id"]],
                    domain_id=consent["domain_id"],
                    preferences=consent.get("preferences") or {},
                    policy_id=consent["policy_id"],
                    given_at=consent["given_at"],
                    is_active=consent["is_active"],
                    metadata=consent.get("metadata") or {},
                    withdrawals=withdrawals.get(consent["id"], []),
                    records=[
                        RecordEntry(
                            id=record["id"],
                            type=record["record_type"],
                            type_detail=record.get("record_type_detail"),
                            content=record.get("content"),
                            created_at=record["created_at"],
                        )
                        for record in records
                    ],
                )
            )

        audit_logs = await registry.audit_logs.find_audit_logs_by_resources(RESOURCE_CONSENT, consent_ids)
        return ConsentHistoryResponse(
            user_id=user["id"],
            consents=entries,
            audit_logs=[
                AuditLogEntry(
                    id=log["id"],
                    timestamp=log["timestamp"],
                    action=log["action"],
                    resource_type=log["resource_type"],
                    resource_id=log["resource_id"],
                    actor=log.get("actor"),
                    changes=log.get("changes"),
                )
                for log in audit_logs
            ],
            pagination=Pagination(limit=request.limit, offset=request.offset, total=total),
        )

    # ============== Helpers ==============

    @staticmethod
    async def _find_user(registry: ConsentRegistry, user_id: Any, external_id: str | None) -> Record | None:
        if user_id is not None:
            return await registry.users.find_user_by_id(user_id)
        if external_id is not None:
            return await registry.users.find_user_by_external_id(external_id)
        return None


def get_consent_workflow(
    options: ConsentOptions | None = None,
    settings: Settings | None = None,
    configure_logging: bool = True,
) -> ConsentWorkflow:
    """
    Wire adapter, registry and workflow from settings.

    Unless ``configure_logging`` is False, root logging is set up from
    ``settings.log_level`` and ``settings.log_json``. Applications that own
    their logging configuration pass False.
    """
    settings = settings or get_settings()
    if configure_logging:
        setup_logging(settings.log_level, settings.log_json)
    adapter = get_adapter(options, settings)
    return ConsentWorkflow(ConsentRegistry(adapter), settings=settings)
