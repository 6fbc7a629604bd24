"""
Input/Output Transform

Converts application values to their storage representation and back, driven
by the resolved TableSchema and the StorageRules of the active dialect.

Representation rules:
    boolean   -> 0/1 when the dialect has no native boolean
    date      -> ISO-8601 string (UTC) when the dialect has no native date type
    string[]  -> JSON text unless the backend stores structures natively
    json      -> JSON text unless the backend stores structures natively

Dates are normalised to timezone-aware UTC in both directions, so a value read
back always compares equal to the value written. A naive datetime has no
defined instant and is refused on the way in; naive values coming back from a
driver (MySQL DATETIME, MSSQL DATETIME2) are UTC because that is all we write.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Literal

from consent_store.db.fields import FieldSpec, FieldType
from consent_store.db.ids import IdStrategy
from consent_store.db.schema import ID_FIELD, TableSchema
from consent_store.exceptions import ValidationError

Action = Literal["create", "update"]


@dataclass(frozen=True)
class StorageRules:
    native_boolean: bool
    native_date: bool
    native_json: bool = False


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return _as_utc(value).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps(value: Any) -> str:
    return json.dumps(value, default=_json_default, sort_keys=True)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        return _as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    raise TypeError(f"Cannot interpret {value!r} as a date")


def _require_aware(value: Any) -> None:
    if isinstance(value, str) and "T" in value:
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if isinstance(value, datetime) and value.tzinfo is None:
        raise ValidationError(f"Datetime {value.isoformat()} has no timezone", details={"value": value.isoformat()})


def to_storage(value: Any, field: FieldSpec, rules: StorageRules) -> Any:
    """Application value -> storage value."""
    if value is None:
        return None

    if field.type == FieldType.BOOLEAN:
        if rules.native_boolean:
            return bool(value)
        return 1 if value else 0

    if field.type == FieldType.DATE:
        _require_aware(value)
        moment = _parse_datetime(value)
        return moment if rules.native_date else moment.isoformat()

    if field.type in (FieldType.JSON, FieldType.STRING_ARRAY):
        if rules.native_json:
            return value
        return dumps(value)

    if field.type == FieldType.NUMBER and isinstance(value, str) and value.isdigit():
        return int(value)

    return value


def from_storage(value: Any, field: FieldSpec, rules: StorageRules) -> Any:
    """Storage value -> application value. Exact inverse of to_storage."""
    if value is None:
        return None

    if field.type == FieldType.BOOLEAN:
        return bool(value)

    if field.type == FieldType.DATE:
        return _parse_datetime(value)

    if field.type in (FieldType.JSON, FieldType.STRING_ARRAY):
        if isinstance(value, (str, bytes)) and not rules.native_json:
            return json.loads(value)
        return value

    return value


def transform_input(
    schema: TableSchema,
    data: Mapping[str, Any],
    action: Action,
    rules: StorageRules,
    ids: IdStrategy | None = None,
) -> dict[str, Any]:
    """
    Project an application payload onto storage columns.

    Keys that are not fields of the schema are ignored. This is a permissive
    projection, not a validation step: request validation happens before a
    payload reaches the persistence layer.

    Defaults are applied on create only, and only when the value is missing.
    Fields marked ``input=False`` are dropped unless a default fills them.
    """
    row: dict[str, Any] = {}

    if action == "create" and ids is not None:
        new_id = ids.resolve(schema.entity_name, data)
        if new_id is not None:
            row[schema.column_name(ID_FIELD)] = new_id

    for key, spec in schema.fields.items():
        if key == ID_FIELD:
            continue

        value = data.get(key) if spec.input else None
        if action == "create":
            if value is None and spec.has_default():
                value = spec.get_default()
            elif value is None and (key not in data or not spec.input):
                continue
        elif not spec.input or key not in data:
            continue

        row[spec.column_name(key)] = to_storage(value, spec, rules)

    return row


def transform_output(
    schema: TableSchema,
    row: Mapping[str, Any] | None,
    rules: StorageRules,
    select: Iterable[str] | None = None,
) -> dict[str, Any] | None:
    """Map a storage row back to field keys, hiding non-returned fields."""
    if row is None:
        return None

    wanted = set(select) if select else None
    result: dict[str, Any] = {}
    for key, spec in schema.fields.items():
        if not spec.returned:
            continue
        if wanted is not None and key not in wanted:
            continue
        column = spec.column_name(key)
        if column in row:
            result[key] = from_storage(row[column], spec, rules)
    return result
