"""
Core Table Definitions

The built-in entities of the consent store and their core fields. The order
value drives table creation order so referenced tables come first.

These definitions are never mutated: the schema assembler copies them and
layers configuration and plugin extensions on top.
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType

from consent_store.db.fields import (
    FieldSpec,
    OnDelete,
    boolean_field,
    date_field,
    json_field,
    reference_field,
    string_array_field,
    string_field,
)

# ── Entity names ──────────────────────────────────────────────────────────────
USER = "user"
CONSENT_PURPOSE = "consent_purpose"
CONSENT_POLICY = "consent_policy"
DOMAIN = "domain"
GEO_LOCATION = "geo_location"
CONSENT = "consent"
CONSENT_PURPOSE_JUNCTION = "consent_purpose_junction"
CONSENT_RECORD = "consent_record"
CONSENT_GEO_LOCATION = "consent_geo_location"
CONSENT_WITHDRAWAL = "consent_withdrawal"
CONSENT_AUDIT_LOG = "consent_audit_log"


def _user_fields() -> dict[str, FieldSpec]:
    return {
        "is_identified": boolean_field(default=False),
        "external_id": string_field(sortable=True),
        "identity_provider": string_field(),
        "last_ip_address": string_field(),
        "created_at": date_field(required=True, auto_now=True),
        "updated_at": date_field(required=True, auto_now=True),
    }


def _purpose_fields() -> dict[str, FieldSpec]:
    return {
        "code": string_field(required=True, unique=True),
        "name": string_field(required=True),
        "description": string_field(required=True),
        "is_essential": boolean_field(default=False),
        "data_category": string_field(),
        "legal_basis": string_field(),
        "is_active": boolean_field(default=True),
        "created_at": date_field(required=True, auto_now=True),
        "updated_at": date_field(required=True, auto_now=True),
    }


def _policy_fields() -> dict[str, FieldSpec]:
    return {
        "version": string_field(required=True),
        "name": string_field(required=True),
        "effective_date": date_field(required=True),
        "expiration_date": date_field(),
        "content": string_field(required=True),
        "content_hash": string_field(required=True),
        "is_active": boolean_field(default=True),
        "created_at": date_field(required=True, auto_now=True),
    }


def _domain_fields() -> dict[str, FieldSpec]:
    return {
        "domain": string_field(required=True, unique=True),
        "is_pattern": boolean_field(default=False),
        "pattern_type": string_field(),
        "parent_domain_id": reference_field(DOMAIN, required=False, on_delete=OnDelete.SET_NULL),
        "description": string_field(),
        "is_active": boolean_field(default=True),
        "created_at": date_field(required=True, auto_now=True),
        "updated_at": date_field(required=True, auto_now=True),
    }


def _geo_location_fields() -> dict[str, FieldSpec]:
    return {
        "country_code": string_field(required=True),
        "country_name": string_field(required=True),
        "region_code": string_field(),
        "region_name": string_field(),
        "regulatory_zones": string_array_field(),
        "created_at": date_field(required=True, auto_now=True),
    }


def _consent_fields() -> dict[str, FieldSpec]:
    return {
        "user_id": reference_field(USER),
        "domain_id": reference_field(DOMAIN),
        "preferences": json_field(required=True),
        "metadata": json_field(),
        "policy_id": reference_field(CONSENT_POLICY, on_delete=OnDelete.RESTRICT),
        "ip_address": string_field(),
        "region": string_field(),
        "given_at": date_field(required=True, auto_now=True, sortable=True),
        "valid_until": date_field(),
        "is_active": boolean_field(default=True),
    }


def _purpose_junction_fields() -> dict[str, FieldSpec]:
    return {
        "consent_id": reference_field(CONSENT),
        "purpose_id": reference_field(CONSENT_PURPOSE),
        "is_accepted": boolean_field(),
    }


def _record_fields() -> dict[str, FieldSpec]:
    return {
        "consent_id": reference_field(CONSENT),
        "record_type": string_field(required=True),
        "record_type_detail": string_field(),
        "content": json_field(required=True),
        "ip_address": string_field(),
        "record_metadata": json_field(),
        "created_at": date_field(required=True, auto_now=True, sortable=True),
    }


def _consent_geo_location_fields() -> dict[str, FieldSpec]:
    return {
        "consent_id": reference_field(CONSENT),
        "geo_location_id": reference_field(GEO_LOCATION),
        "created_at": date_field(required=True, auto_now=True),
    }


def _withdrawal_fields() -> dict[str, FieldSpec]:
    return {
        "consent_id": reference_field(CONSENT),
        "revoked_at": date_field(required=True, auto_now=True),
        "revocation_reason": string_field(),
        "method": string_field(required=True),
        "actor": string_field(),
        "metadata": json_field(),
        "created_at": date_field(required=True, auto_now=True, sortable=True),
    }


def _audit_log_fields() -> dict[str, FieldSpec]:
    return {
        "timestamp": date_field(required=True, auto_now=True),
        "action": string_field(required=True),
        "user_id": reference_field(USER, required=False, on_delete=OnDelete.SET_NULL),
        "resource_type": string_field(required=True),
        "resource_id": string_field(required=True),
        "actor": string_field(),
        "changes": json_field(),
        "device_info": string_field(),
        "ip_address": string_field(),
        "created_at": date_field(required=True, auto_now=True, sortable=True),
    }


# entity name -> (creation order, core field factory)
CORE_TABLES: Mapping[str, tuple[int, object]] = MappingProxyType(
    {
        USER: (1, _user_fields),
        CONSENT_PURPOSE: (2, _purpose_fields),
        CONSENT_POLICY: (3, _policy_fields),
        DOMAIN: (4, _domain_fields),
        GEO_LOCATION: (5, _geo_location_fields),
        CONSENT: (6, _consent_fields),
        CONSENT_PURPOSE_JUNCTION: (7, _purpose_junction_fields),
        CONSENT_RECORD: (8, _record_fields),
        CONSENT_GEO_LOCATION: (9, _consent_geo_location_fields),
        CONSENT_WITHDRAWAL: (10, _withdrawal_fields),
        CONSENT_AUDIT_LOG: (11, _audit_log_fields),
    }
)


def core_fields(entity_name: str) -> dict[str, FieldSpec]:
    """Return a fresh copy of the core field set for a built-in entity."""
    _, factory = CORE_TABLES[entity_name]
    return factory()  # type: ignore[operator]
