# src/async_docquery/base/structured_query.py

import base64
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from .field_path import DOCUMENT_ID, FieldPath
from .filters import CompositeFilter, Filter, is_equality_filter
from .values import Value


class Direction(Enum):
    ASCENDING = "ASCENDING"
    DESCENDING = "DESCENDING"


@dataclass(frozen=True)
class Ordering:
    """A single sort key; queries compose several as then-by keys."""

    field: FieldPath
    direction: Direction = Direction.ASCENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": {"fieldPath": self.field.to_api_string()},
            "direction": self.direction.value,
        }


@dataclass(frozen=True)
class Cursor:
    """
    A position in a query's sort order.

    For a start cursor ``before=True`` means start-at (inclusive) and
    ``before=False`` start-after. For an end cursor ``before=True`` means
    end-before (exclusive) and ``before=False`` end-at.
    """

    values: Tuple[Value, ...]
    before: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"values": [v.to_dict() for v in self.values], "before": self.before}


@dataclass(frozen=True)
class StructuredQuery:
    """The canonical, collection-scoped descriptor produced by ``Query.lower()``."""

    collection_id: str
    where: Optional[Union[Filter, CompositeFilter]] = None
    order_by: Tuple[Ordering, ...] = ()
    select: Optional[Tuple[FieldPath, ...]] = None
    start_at: Optional[Cursor] = None
    end_at: Optional[Cursor] = None
    offset: int = 0
    limit: Optional[int] = None

    def effective_orderings(self) -> Tuple[Ordering, ...]:
        """
        The total order a backend applies: the explicit orderings, or an
        implicit ascending ordering per inequality-filtered field when there are
        none, followed by a document-id tie-break in the last direction.
        """
        orderings = self.order_by
        if not orderings and self.where is not None:
            filters = (
                self.where.filters
                if isinstance(self.where, CompositeFilter)
                else (self.where,)
            )
            fields = []
            for f in filters:
                if not is_equality_filter(f) and f.field not in fields:
                    fields.append(f.field)
            orderings = tuple(Ordering(field) for field in fields)
        if not any(o.field == DOCUMENT_ID for o in orderings):
            last = orderings[-1].direction if orderings else Direction.ASCENDING
            orderings = orderings + (Ordering(DOCUMENT_ID, last),)
        return orderings

    def to_dict(self) -> Dict[str, Any]:
        """Returns the JSON wire form; unset sections are omitted."""
        body: Dict[str, Any] = {"from": [{"collectionId": self.collection_id}]}
        if self.select is not None:
            body["select"] = {
                "fields": [{"fieldPath": p.to_api_string()} for p in self.select]
            }
        if self.where is not None:
            body["where"] = self.where.to_dict()
        if self.order_by:
            body["orderBy"] = [o.to_dict() for o in self.order_by]
        if self.start_at is not None:
            body["startAt"] = self.start_at.to_dict()
        if self.end_at is not None:
            body["endAt"] = self.end_at.to_dict()
        if self.offset:
            body["offset"] = self.offset
        if self.limit is not None:
            body["limit"] = self.limit
        return body


@dataclass(frozen=True)
class RunQueryRequest:
    """A structured query addressed to a parent resource, optionally in a transaction."""

    parent: str
    structured_query: StructuredQuery
    transaction: Optional[bytes] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "parent": self.parent,
            "structuredQuery": self.structured_query.to_dict(),
        }
        if self.transaction is not None:
            body["transaction"] = base64.b64encode(self.transaction).decode("ascii")
        return body
