# src/async_docquery/base/values.py

"""
Wire value representation and the serializer that produces it.

``ValueSerializer.serialize`` turns arbitrary Python values (scalars, dicts,
lists, dataclasses, Pydantic models, document references) into immutable,
hashable :class:`Value` objects. The same module defines the two write-only
sentinels, ``DELETE_FIELD`` and ``SERVER_TIMESTAMP``, which serialize to
sentinel values that the query layer rejects, and the cross-type ordering used
when comparing values client-side.
"""

import base64
import logging
import math
import struct
from dataclasses import asdict, dataclass, is_dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from .exceptions import InvalidArgumentError
from .field_path import FieldPath

log = logging.getLogger(__name__)

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


class ValueType(Enum):
    """Wire value kinds, named after their JSON field names."""

    NULL = "nullValue"
    BOOLEAN = "booleanValue"
    INTEGER = "integerValue"
    DOUBLE = "doubleValue"
    TIMESTAMP = "timestampValue"
    STRING = "stringValue"
    BYTES = "bytesValue"
    REFERENCE = "referenceValue"
    GEO_POINT = "geoPointValue"
    ARRAY = "arrayValue"
    MAP = "mapValue"
    # Write-only markers; never valid on the read side.
    DELETE_SENTINEL = "deleteSentinel"
    SERVER_TIMESTAMP_SENTINEL = "serverTimestampSentinel"


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float

    def __post_init__(self):
        if not -90.0 <= self.latitude <= 90.0:
            raise InvalidArgumentError(
                f"Latitude must be in [-90, 90], got {self.latitude}."
            )
        if not -180.0 <= self.longitude <= 180.0:
            raise InvalidArgumentError(
                f"Longitude must be in [-180, 180], got {self.longitude}."
            )


class Sentinel:
    """A write-only marker value such as ``DELETE_FIELD``."""

    __slots__ = ("_name",)

    def __init__(self, name: str):
        self._name = name

    def __repr__(self) -> str:
        return self._name


DELETE_FIELD = Sentinel("DELETE_FIELD")
SERVER_TIMESTAMP = Sentinel("SERVER_TIMESTAMP")


@dataclass(frozen=True, eq=False)
class Value:
    """
    An immutable serialized value.

    ``data`` holds the payload for ``type``: arrays are tuples of Values, maps
    are key-sorted tuples of ``(key, Value)`` pairs, references are full
    document names, timestamps are UTC-aware datetimes.
    """

    type: ValueType
    data: Any = None

    def is_delete_sentinel(self) -> bool:
        return self.type is ValueType.DELETE_SENTINEL

    def is_server_timestamp_sentinel(self) -> bool:
        return self.type is ValueType.SERVER_TIMESTAMP_SENTINEL

    def is_sentinel(self) -> bool:
        return self.is_delete_sentinel() or self.is_server_timestamp_sentinel()

    def is_nan(self) -> bool:
        return self.type is ValueType.DOUBLE and math.isnan(self.data)

    def map_fields(self) -> Dict[str, "Value"]:
        if self.type is not ValueType.MAP:
            raise TypeError(f"Value of type {self.type.name} is not a map.")
        return dict(self.data)

    def to_dict(self) -> Dict[str, Any]:
        """Returns the JSON wire form of this value."""
        t = self.type
        if t is ValueType.NULL:
            return {t.value: None}
        if t is ValueType.INTEGER:
            # 64-bit integers travel as strings in JSON.
            return {t.value: str(self.data)}
        if t is ValueType.DOUBLE:
            if math.isnan(self.data):
                return {t.value: "NaN"}
            if math.isinf(self.data):
                return {t.value: "Infinity" if self.data > 0 else "-Infinity"}
            return {t.value: self.data}
        if t is ValueType.TIMESTAMP:
            return {t.value: self.data.isoformat().replace("+00:00", "Z")}
        if t is ValueType.BYTES:
            return {t.value: base64.b64encode(self.data).decode("ascii")}
        if t is ValueType.GEO_POINT:
            return {
                t.value: {
                    "latitude": self.data.latitude,
                    "longitude": self.data.longitude,
                }
            }
        if t is ValueType.ARRAY:
            return {t.value: {"values": [v.to_dict() for v in self.data]}}
        if t is ValueType.MAP:
            return {t.value: {"fields": {k: v.to_dict() for k, v in self.data}}}
        if self.is_sentinel():
            raise InvalidArgumentError(
                f"Sentinel value {t.name} has no wire representation."
            )
        return {t.value: self.data}

    def _identity(self) -> Tuple[ValueType, Any]:
        # Doubles compare by bit pattern: NaN equals NaN, 0.0 differs from -0.0.
        t = self.type
        if t is ValueType.DOUBLE:
            return t, struct.pack("<d", self.data)
        if t is ValueType.ARRAY:
            return t, tuple(v._identity() for v in self.data)
        if t is ValueType.MAP:
            return t, tuple((k, v._identity()) for k, v in self.data)
        return t, self.data

    def __eq__(self, other: object) -> bool:
        if other is self:
            return True
        if not isinstance(other, Value):
            return NotImplemented
        return self._identity() == other._identity()

    def __hash__(self) -> int:
        return hash(self._identity())

    def __repr__(self) -> str:
        return f"Value({self.type.name}, {self.data!r})"


NULL_VALUE = Value(ValueType.NULL)


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _model_to_dict(data: Any) -> Optional[Dict[str, Any]]:
    """Converts dataclasses and Pydantic models to plain dicts, or returns None."""
    if is_dataclass(data) and not isinstance(data, type):
        return asdict(data)
    if hasattr(data, "model_dump") and callable(getattr(data, "model_dump")):
        # Pydantic v2; json mode keeps aliases and turns URLs/enums into scalars.
        return data.model_dump(mode="json", by_alias=True)
    return None


class ValueSerializer:
    """Converts between Python values and :class:`Value`."""

    @classmethod
    def serialize(cls, data: Any) -> Value:
        return cls._serialize(data, in_array=False)

    @classmethod
    def _serialize(cls, data: Any, in_array: bool) -> Value:
        # Imported here to avoid a cycle: references build on field paths only.
        from .references import DocumentReference

        if isinstance(data, Value):
            return data
        if data is None:
            return NULL_VALUE
        if isinstance(data, Sentinel):
            if in_array:
                raise InvalidArgumentError(
                    f"Sentinel value {data!r} cannot be used inside an array."
                )
            if data is DELETE_FIELD:
                return Value(ValueType.DELETE_SENTINEL)
            return Value(ValueType.SERVER_TIMESTAMP_SENTINEL)
        if isinstance(data, bool):
            return Value(ValueType.BOOLEAN, data)
        if isinstance(data, Enum):
            return cls._serialize(data.value, in_array)
        if isinstance(data, int):
            if not _INT64_MIN <= data <= _INT64_MAX:
                raise InvalidArgumentError(
                    f"Integer {data} does not fit in a signed 64-bit value."
                )
            return Value(ValueType.INTEGER, data)
        if isinstance(data, float):
            return Value(ValueType.DOUBLE, data)
        if isinstance(data, datetime):
            return Value(ValueType.TIMESTAMP, _to_utc(data))
        if isinstance(data, date):
            return Value(
                ValueType.TIMESTAMP,
                datetime(data.year, data.month, data.day, tzinfo=timezone.utc),
            )
        if isinstance(data, str):
            return Value(ValueType.STRING, data)
        if isinstance(data, (bytes, bytearray, memoryview)):
            return Value(ValueType.BYTES, bytes(data))
        if isinstance(data, DocumentReference):
            return Value(ValueType.REFERENCE, data.full_path)
        if isinstance(data, GeoPoint):
            return Value(ValueType.GEO_POINT, data)
        if isinstance(data, Mapping):
            return cls._serialize_map(data)
        if isinstance(data, (list, tuple, set, frozenset)):
            items = data if not isinstance(data, (set, frozenset)) else sorted(data, key=repr)
            return Value(
                ValueType.ARRAY,
                tuple(cls._serialize(item, in_array=True) for item in items),
            )

        as_dict = _model_to_dict(data)
        if as_dict is not None:
            log.debug(f"Serializing {type(data).__name__} instance as a map value")
            return cls._serialize_map(as_dict)

        raise InvalidArgumentError(
            f"Unable to serialize value of type {type(data).__name__}."
        )

    @classmethod
    def _serialize_map(cls, data: Mapping) -> Value:
        fields = []
        for key, item in data.items():
            if not isinstance(key, str):
                raise InvalidArgumentError(
                    f"Map keys must be strings, got {type(key).__name__}."
                )
            fields.append((key, cls._serialize(item, in_array=False)))
        fields.sort(key=lambda pair: pair[0])
        return Value(ValueType.MAP, tuple(fields))

    @classmethod
    def serialize_fields(cls, data: Mapping[str, Any]) -> Dict[str, Value]:
        """Serializes the top level of a document's data."""
        return dict(cls._serialize_map(data).data)

    @classmethod
    def deserialize(cls, value: Value, database=None) -> Any:
        """
        Converts ``value`` back to a Python value.

        References become :class:`DocumentReference` objects when ``database``
        is given, otherwise their full document name is returned.
        """
        t = value.type
        if t is ValueType.NULL:
            return None
        if t is ValueType.ARRAY:
            return [cls.deserialize(v, database) for v in value.data]
        if t is ValueType.MAP:
            return {k: cls.deserialize(v, database) for k, v in value.data}
        if t is ValueType.REFERENCE:
            if database is None:
                return value.data
            return database.document_from_full_path(value.data)
        if t is ValueType.DELETE_SENTINEL:
            return DELETE_FIELD
        if t is ValueType.SERVER_TIMESTAMP_SENTINEL:
            return SERVER_TIMESTAMP
        return value.data


def extract_field(fields: Optional[Mapping[str, Value]], path: FieldPath) -> Optional[Value]:
    """Walks ``path`` through nested map values; None when any step is missing."""
    if fields is None:
        return None
    current: Optional[Value] = None
    container: Mapping[str, Value] = fields
    for segment in path.segments:
        if container is None or segment not in container:
            return None
        current = container[segment]
        container = dict(current.data) if current.type is ValueType.MAP else None
    return current


# --- Cross-type ordering ---
_TYPE_RANK = {
    ValueType.NULL: 0,
    ValueType.BOOLEAN: 1,
    ValueType.INTEGER: 2,
    ValueType.DOUBLE: 2,
    ValueType.TIMESTAMP: 3,
    ValueType.STRING: 4,
    ValueType.BYTES: 5,
    ValueType.REFERENCE: 6,
    ValueType.GEO_POINT: 7,
    ValueType.ARRAY: 8,
    ValueType.MAP: 9,
}


def type_rank(value: Value) -> int:
    try:
        return _TYPE_RANK[value.type]
    except KeyError:
        raise InvalidArgumentError(
            f"Sentinel value {value.type.name} cannot be compared."
        ) from None


def _cmp(a: Any, b: Any) -> int:
    return (a > b) - (a < b)


def _compare_numbers(a: Value, b: Value) -> int:
    a_nan = a.is_nan()
    b_nan = b.is_nan()
    # NaN sorts before every other number.
    if a_nan or b_nan:
        return _cmp(not a_nan, not b_nan)
    return _cmp(a.data, b.data)


def compare_values(a: Value, b: Value) -> int:
    """Total order over values: -1, 0 or 1."""
    rank_a, rank_b = type_rank(a), type_rank(b)
    if rank_a != rank_b:
        return _cmp(rank_a, rank_b)
    t = a.type
    if t in (ValueType.INTEGER, ValueType.DOUBLE):
        return _compare_numbers(a, b)
    if t is ValueType.NULL:
        return 0
    if t is ValueType.REFERENCE:
        return _cmp(tuple(a.data.split("/")), tuple(b.data.split("/")))
    if t is ValueType.GEO_POINT:
        return _cmp(
            (a.data.latitude, a.data.longitude), (b.data.latitude, b.data.longitude)
        )
    if t is ValueType.ARRAY:
        return _compare_sequences(a.data, b.data)
    if t is ValueType.MAP:
        return _compare_maps(a.data, b.data)
    return _cmp(a.data, b.data)


def _compare_sequences(left: Tuple[Value, ...], right: Tuple[Value, ...]) -> int:
    for x, y in zip(left, right):
        result = compare_values(x, y)
        if result:
            return result
    return _cmp(len(left), len(right))


def _compare_maps(left, right) -> int:
    for (key_a, val_a), (key_b, val_b) in zip(left, right):
        result = _cmp(key_a, key_b) or compare_values(val_a, val_b)
        if result:
            return result
    return _cmp(len(left), len(right))
