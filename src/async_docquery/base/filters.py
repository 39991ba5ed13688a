# src/async_docquery/base/filters.py

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Tuple, Union

from .exceptions import (
    InvalidArgumentError,
    InvalidFilterValueError,
    SentinelValueRejectedError,
)
from .field_path import FieldPath
from .values import Value, ValueSerializer

log = logging.getLogger(__name__)


# --- Operators ---
class FilterOperator(Enum):
    """Comparison operators accepted by ``Query.where``."""

    EQUAL = "EQUAL"
    LESS_THAN = "LESS_THAN"
    LESS_THAN_OR_EQUAL = "LESS_THAN_OR_EQUAL"
    GREATER_THAN = "GREATER_THAN"
    GREATER_THAN_OR_EQUAL = "GREATER_THAN_OR_EQUAL"


class UnaryOperator(Enum):
    IS_NULL = "IS_NULL"
    IS_NAN = "IS_NAN"


# Shorthand accepted in place of the enum members.
_OPERATOR_ALIASES: Dict[str, FilterOperator] = {
    "==": FilterOperator.EQUAL,
    "<": FilterOperator.LESS_THAN,
    "<=": FilterOperator.LESS_THAN_OR_EQUAL,
    ">": FilterOperator.GREATER_THAN,
    ">=": FilterOperator.GREATER_THAN_OR_EQUAL,
}


def resolve_operator(op: Union[str, FilterOperator]) -> FilterOperator:
    if isinstance(op, FilterOperator):
        return op
    if isinstance(op, str):
        if op in _OPERATOR_ALIASES:
            return _OPERATOR_ALIASES[op]
        try:
            return FilterOperator[op.upper()]
        except KeyError:
            pass
    raise InvalidArgumentError(f"No operator for {op!r}.")


# --- Filter variants ---
@dataclass(frozen=True)
class FieldFilter:
    """Compares a field against a serialized value."""

    field: FieldPath
    op: FilterOperator
    value: Value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fieldFilter": {
                "field": {"fieldPath": self.field.to_api_string()},
                "op": self.op.value,
                "value": self.value.to_dict(),
            }
        }


@dataclass(frozen=True)
class UnaryFilter:
    """Tests a field for null or NaN."""

    field: FieldPath
    op: UnaryOperator

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unaryFilter": {
                "field": {"fieldPath": self.field.to_api_string()},
                "op": self.op.value,
            }
        }


Filter = Union[FieldFilter, UnaryFilter]


@dataclass(frozen=True)
class CompositeFilter:
    """Conjunction of filters, kept in declaration order."""

    filters: Tuple[Filter, ...]
    op: str = "AND"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "compositeFilter": {
                "op": self.op,
                "filters": [f.to_dict() for f in self.filters],
            }
        }


def _unary_operator_for(value: Any):
    if value is None:
        return UnaryOperator.IS_NULL
    if isinstance(value, float) and math.isnan(value):
        return UnaryOperator.IS_NAN
    return None


def build_filter(
    field: Union[str, FieldPath], op: Union[str, FilterOperator], value: Any
) -> Filter:
    """
    Creates a filter from a raw Python value.

    ``None`` and NaN produce a :class:`UnaryFilter` and are only allowed with the
    equality operator. Any other value is serialized into a
    :class:`FieldFilter`; the delete and server-timestamp sentinels are rejected.

    Raises:
        InvalidArgumentError: If ``field`` or ``op`` is invalid.
        InvalidFilterValueError: If None/NaN is used with a non-equality operator.
        SentinelValueRejectedError: If ``value`` serializes to a sentinel.
    """
    if field is None:
        raise InvalidArgumentError("field must not be None.")
    field_path = FieldPath.coerce(field)
    operator = resolve_operator(op)

    unary_op = _unary_operator_for(value)
    if unary_op is not None:
        if operator is not FilterOperator.EQUAL:
            raise InvalidFilterValueError()
        log.debug(f"Creating unary filter {unary_op.name} on {field_path}")
        return UnaryFilter(field_path, unary_op)

    serialized = ValueSerializer.serialize(value)
    if serialized.is_sentinel():
        raise SentinelValueRejectedError("Sentinel values cannot be specified in filters.")
    log.debug(f"Creating field filter {field_path} {operator.name} {serialized!r}")
    return FieldFilter(field_path, operator, serialized)


def is_equality_filter(filter_: Filter) -> bool:
    """Unary filters are always equality filters; field filters are when op is EQUAL."""
    if isinstance(filter_, UnaryFilter):
        return True
    return filter_.op is FilterOperator.EQUAL
