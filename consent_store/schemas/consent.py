"""
Consent Workflow Schemas

Pydantic models for the consent workflow requests and responses. Field names
are snake_case in Python and camelCase on the wire.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from consent_store.entities.record import RecordType

Identifier = str | int


class ConsentType(str, Enum):
    COOKIE_BANNER = "cookie_banner"
    PRIVACY_POLICY = "privacy_policy"
    DPA = "dpa"
    TERMS_OF_SERVICE = "terms_of_service"
    MARKETING_COMMUNICATIONS = "marketing_communications"
    AGE_VERIFICATION = "age_verification"
    OTHER = "other"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============== Requests ==============


class GeoLocationInput(CamelModel):
    country_code: str = Field(..., min_length=2, max_length=2, description="ISO 3166-1 alpha-2 country code")
    country_name: str = Field(..., description="Country display name")
    region_code: str | None = Field(None, description="ISO 3166-2 subdivision code")
    region_name: str | None = None
    regulatory_zones: list[str] = Field(default_factory=list, description="e.g. EU, EEA, CCPA")


class SetConsentRequest(CamelModel):
    """Request to record a consent decision for a user on a domain"""

    user_id: Identifier | None = Field(None, description="Existing user id")
    external_id: str | None = Field(None, description="Id of the user in an external identity system")
    domain: str = Field(..., min_length=1, description="Domain the consent applies to")
    consent_type: ConsentType = Field(ConsentType.COOKIE_BANNER, description="Kind of consent collected")
    preferences: dict[str, Any] = Field(
        default_factory=dict,
        description="Purpose code -> decision. null or false means declined",
    )
    policy_id: Identifier | None = Field(None, description="Policy version shown to the user")
    metadata: dict[str, Any] = Field(default_factory=dict)
    ip_address: str | None = None
    device_info: str | None = None
    region: str | None = None
    valid_until: AwareDatetime | None = None
    record_type: RecordType = Field(RecordType.API_CALL, description="How the consent was collected")
    record_type_detail: str | None = None
    geo_location: GeoLocationInput | None = None
    actor: str | None = None

    @model_validator(mode="after")
    def check_preferences(self) -> "SetConsentRequest":
        if self.consent_type == ConsentType.COOKIE_BANNER and not self.preferences:
            raise ValueError("cookie_banner consent requires at least one preference")
        return self


class WithdrawConsentRequest(CamelModel):
    """
    Request to withdraw consent.

    Either a consent id, or a user id / external id together with a domain
    (withdraws every active consent of that user on that domain).
    """

    consent_id: Identifier | None = None
    user_id: Identifier | None = None
    external_id: str | None = None
    domain: str | None = None
    reason: str | None = Field(None, description="Free text reason given by the user")
    method: str = Field("api", min_length=1, max_length=50, description="Channel the withdrawal came through")
    actor: str | None = Field(None, description="Who performed the withdrawal")
    metadata: dict[str, Any] = Field(default_factory=dict)
    ip_address: str | None = None
    device_info: str | None = None

    @model_validator(mode="after")
    def check_identifier(self) -> "WithdrawConsentRequest":
        if self.consent_id is not None:
            return self
        if self.user_id is None and self.external_id is None:
            raise ValueError("One of consent_id, user_id or external_id is required")
        if not self.domain:
            raise ValueError("domain is required when withdrawing by user")
        return self

    @property
    def identifier_type(self) -> str:
        if self.consent_id is not None:
            return "consent_id"
        return "user_id" if self.user_id is not None else "external_id"


class VerifyConsentRequest(CamelModel):
    """Request to check whether a user holds a matching active consent"""

    user_id: Identifier | None = None
    external_id: str | None = None
    domain: str = Field(..., min_length=1)
    required_preferences: dict[str, bool] | None = Field(
        None, description="Purpose code -> required decision"
    )
    require_exact_match: bool = Field(
        False, description="Require every listed purpose to be present with exactly that decision"
    )
    policy_version: str | None = Field(None, description="Policy id or version the consent must reference")

    @model_validator(mode="after")
    def check_identifier(self) -> "VerifyConsentRequest":
        if self.user_id is None and self.external_id is None:
            raise ValueError("One of user_id or external_id is required")
        return self


class ConsentHistoryRequest(CamelModel):
    user_id: Identifier | None = None
    external_id: str | None = None
    domain: str | None = None
    limit: int = Field(100, gt=0, le=1000)
    offset: int = Field(0, ge=0)

    @model_validator(mode="after")
    def check_identifier(self) -> "ConsentHistoryRequest":
        if self.user_id is None and self.external_id is None:
            raise ValueError("One of user_id or external_id is required")
        return self


class ConsentPolicyRequest(CamelModel):
    """
    Request for the policy a domain should present.

    When a user identifier is given the response also reports that user's
    consent on the domain.
    """

    domain: str = Field(..., min_length=1)
    consent_type: ConsentType = Field(ConsentType.COOKIE_BANNER, description="Policy family to look up")
    version: str | None = Field(None, description="Specific version; the latest active one when omitted")
    include_preferences: bool = Field(True, description="List the purposes a user can decide on")
    user_id: Identifier | None = None
    external_id: str | None = None


# ============== Responses ==============


class SetConsentResponse(CamelModel):
    id: Identifier = Field(..., description="Id of the new consent")
    user_id: Identifier
    external_id: str | None = None
    domain_id: Identifier
    domain: str
    consent_type: ConsentType
    is_active: bool = True
    policy_id: Identifier
    record_id: Identifier = Field(..., description="Evidence record written with the consent")
    preferences: dict[str, Any]
    metadata: dict[str, Any] = Field(default_factory=dict)
    given_at: datetime
    deactivated_consent_ids: list[Identifier] = Field(
        default_factory=list, description="Earlier consents replaced by this one"
    )


class WithdrawalData(CamelModel):
    withdrawal_ids: list[Identifier]
    consent_ids: list[Identifier]
    revoked_at: datetime


class WithdrawConsentResponse(CamelModel):
    success: bool = True
    data: WithdrawalData


class ReceiptPurpose(CamelModel):
    purpose: str
    purpose_description: str
    consent_type: str = "EXPLICIT"
    purpose_category: list[str] = Field(default_factory=list)
    termination: str
    third_party_disclosure: bool = False
    third_party_name: str | None = None


class ReceiptService(CamelModel):
    service: str
    purposes: list[ReceiptPurpose]


class ReceiptSubject(CamelModel):
    id: str
    id_type: str


class DataController(CamelModel):
    id: str
    name: str
    on_behalf: list[str] = Field(default_factory=list, alias="on_behalf")


class ConsentReceipt(CamelModel):
    """Standard consent receipt (Kantara consent receipt layout)"""

    version: str = "1.0.0"
    jurisdiction: str = "GDPR"
    consent_timestamp: datetime
    collection_method: str
    consent_receipt_id: str = Field(..., alias="consentReceiptID")
    public_key: str
    subject: ReceiptSubject
    data_controller: DataController
    policy_url: str = Field(..., alias="policyURL")
    services: list[ReceiptService]
    sensitive: bool = False
    spi_cat: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    signature: str | None = None


class ConsentReceiptResponse(CamelModel):
    receipt: ConsentReceipt
    receipt_id: str
    timestamp: datetime


class ConsentDetails(CamelModel):
    id: Identifier
    given_at: datetime
    policy_id: Identifier
    preferences: dict[str, Any]


class VerificationResults(CamelModel):
    has_active_consent: bool = False
    meets_preference_requirements: bool = False
    matches_policy_version: bool = False


class VerificationData(CamelModel):
    verified: bool = False
    consent_details: ConsentDetails | None = None
    identified_by: str | None = None
    verification_results: VerificationResults = Field(default_factory=VerificationResults)


class VerifyConsentResponse(CamelModel):
    success: bool = True
    data: VerificationData


class WithdrawalEntry(CamelModel):
    id: Identifier
    revoked_at: datetime
    reason: str | None = None
    method: str
    actor: str | None = None


class RecordEntry(CamelModel):
    id: Identifier
    type: str
    type_detail: str | None = None
    content: Any = None
    created_at: datetime


class ConsentHistoryEntry(CamelModel):
    id: Identifier
    domain: str | None = None
    domain_id: Identifier
    preferences: dict[str, Any]
    policy_id: Identifier
    given_at: datetime
    is_active: bool
    metadata: dict[str, Any] = Field(default_factory=dict)
    withdrawals: list[WithdrawalEntry] = Field(default_factory=list)
    records: list[RecordEntry] = Field(default_factory=list)


class AuditLogEntry(CamelModel):
    id: Identifier
    timestamp: datetime
    action: str
    resource_type: str
    resource_id: str
    actor: str | None = None
    changes: Any = None


class Pagination(CamelModel):
    limit: int
    offset: int
    total: int


class ConsentHistoryResponse(CamelModel):
    user_id: Identifier
    consents: list[ConsentHistoryEntry]
    audit_logs: list[AuditLogEntry]
    pagination: Pagination


class AvailablePurpose(CamelModel):
    code: str
    name: str
    description: str
    is_essential: bool = False


class PolicySummary(CamelModel):
    id: Identifier
    name: str
    version: str
    content: str
    content_hash: str
    effective_date: datetime
    available_preferences: list[AvailablePurpose] | None = None


class UserConsentStatus(CamelModel):
    has_consent: bool = False
    consent_id: Identifier | None = None
    current_preferences: dict[str, Any] | None = None
    consented_at: datetime | None = None
    needs_renewal: bool = Field(True, description="No consent yet, or it references another policy version")
    identified_by: str


class ConsentPolicyData(CamelModel):
    domain: str
    policy: PolicySummary
    user_consent_status: UserConsentStatus | None = None


class ConsentPolicyResponse(CamelModel):
    success: bool = True
    data: ConsentPolicyData
