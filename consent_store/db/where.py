"""
Abstract filter conditions.

A ``where`` argument is a flat list of WhereCondition. Grouping follows one
fixed policy: AND-connected conditions are conjoined, OR-connected conditions
form a single disjunction, and the two groups are combined with AND:

    (a AND b) AND (c OR d)

Nested groups cannot be expressed.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Union

from consent_store.exceptions import InvalidWhereClauseError


class Operator(str, enum.Enum):
    EQ = "eq"
    NE = "ne"
    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"
    IN = "in"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"


class Connector(str, enum.Enum):
    AND = "AND"
    OR = "OR"


PATTERN_OPERATORS = frozenset({Operator.CONTAINS, Operator.STARTS_WITH, Operator.ENDS_WITH})


@dataclass(frozen=True)
class WhereCondition:
    field: str
    value: Any
    operator: Operator | str = Operator.EQ
    connector: Connector | str = Connector.AND


WhereInput = Union[WhereCondition, Mapping[str, Any]]


def _coerce(condition: WhereInput) -> WhereCondition:
    if isinstance(condition, Mapping):
        if "field" not in condition:
            raise InvalidWhereClauseError("Where condition is missing 'field'", condition)
        condition = WhereCondition(
            field=condition["field"],
            value=condition.get("value"),
            operator=condition.get("operator") or Operator.EQ,
            connector=condition.get("connector") or Connector.AND,
        )

    try:
        operator = Operator(condition.operator)
    except ValueError:
        raise InvalidWhereClauseError(f"Unknown where operator '{condition.operator}'", condition) from None
    raw_connector = condition.connector
    try:
        connector = Connector(raw_connector.upper() if isinstance(raw_connector, str) else raw_connector)
    except ValueError:
        raise InvalidWhereClauseError(f"Unknown where connector '{condition.connector}'", condition) from None

    value = condition.value
    if operator == Operator.IN and not isinstance(value, (list, tuple, set, frozenset)):
        value = [value]
    if operator in PATTERN_OPERATORS and not isinstance(value, str):
        raise InvalidWhereClauseError(f"Operator '{operator.value}' requires a string value", condition)

    return WhereCondition(field=condition.field, value=value, operator=operator, connector=connector)


def normalize_where(
    where: Iterable[WhereInput] | None,
) -> tuple[list[WhereCondition], list[WhereCondition]]:
    """Validate a where list and split it into (and_group, or_group)."""
    and_group: list[WhereCondition] = []
    or_group: list[WhereCondition] = []
    for raw in where or ():
        condition = _coerce(raw)
        if condition.connector == Connector.OR:
            or_group.append(condition)
        else:
            and_group.append(condition)
    return and_group, or_group


def eq(field: str, value: Any) -> WhereCondition:
    return WhereCondition(field=field, value=value)

