"""
Field Definitions

FieldSpec describes one persisted attribute of an entity: its storage type,
whether it is required, how its default is produced, which column it lives in
and whether it takes part in input/output. Entities are plain dicts of
FieldSpec keyed by the application-level field name.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable


class FieldType(str, enum.Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    STRING_ARRAY = "string[]"
    JSON = "json"


class OnDelete(str, enum.Enum):
    CASCADE = "cascade"
    SET_NULL = "set null"
    RESTRICT = "restrict"
    NO_ACTION = "no action"


@dataclass(frozen=True)
class FieldReference:
    """Foreign key target: another model's field (usually ``id``)."""

    model: str
    field: str = "id"
    on_delete: OnDelete = OnDelete.CASCADE


@dataclass(frozen=True)
class FieldSpec:
    """
    Declarative description of a single field.

    Attributes:
        type:          Storage type, see FieldType.
        required:      Whether the column is NOT NULL.
        default_value: Literal default or zero-argument callable; only applied on create.
        field_name:    Storage column name. None means "same as the field key".
        input:         False excludes the field from create/update payloads.
        returned:      False excludes the field from read output.
        references:    Optional foreign key target.
        unique:        Adds a unique constraint on the column.
        sortable:      Hint for the adapter that the column may be indexed.
    """

    type: FieldType
    required: bool = False
    default_value: Any = None
    field_name: str | None = None
    input: bool = True
    returned: bool = True
    references: FieldReference | None = None
    unique: bool = False
    sortable: bool = False

    def column_name(self, key: str) -> str:
        return self.field_name or key

    def has_default(self) -> bool:
        return self.default_value is not None

    def get_default(self) -> Any:
        if callable(self.default_value):
            return self.default_value()
        return self.default_value

    def renamed(self, field_name: str) -> FieldSpec:
        return replace(self, field_name=field_name)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Field factories ───────────────────────────────────────────────────────────
# Short constructors keep the core table definitions readable.


def string_field(required: bool = False, **kwargs: Any) -> FieldSpec:
    return FieldSpec(type=FieldType.STRING, required=required, **kwargs)


def number_field(required: bool = False, **kwargs: Any) -> FieldSpec:
    return FieldSpec(type=FieldType.NUMBER, required=required, **kwargs)


def boolean_field(default: bool | None = None, required: bool = True, **kwargs: Any) -> FieldSpec:
    return FieldSpec(type=FieldType.BOOLEAN, required=required, default_value=default, **kwargs)


def date_field(required: bool = False, auto_now: bool = False, **kwargs: Any) -> FieldSpec:
    default: Callable[[], datetime] | None = utcnow if auto_now else None
    return FieldSpec(type=FieldType.DATE, required=required, default_value=default, **kwargs)


def json_field(required: bool = False, **kwargs: Any) -> FieldSpec:
    return FieldSpec(type=FieldType.JSON, required=required, **kwargs)


def string_array_field(required: bool = False, **kwargs: Any) -> FieldSpec:
    return FieldSpec(type=FieldType.STRING_ARRAY, required=required, **kwargs)


def reference_field(
    model: str,
    required: bool = True,
    on_delete: OnDelete = OnDelete.CASCADE,
    **kwargs: Any,
) -> FieldSpec:
    """Foreign key column. Its storage type follows the id mode of the adapter."""
    return FieldSpec(
        type=FieldType.STRING,
        required=required,
        references=FieldReference(model=model, on_delete=on_delete),
        **kwargs,
    )
