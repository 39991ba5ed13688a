# src/async_docquery/base/query.py

import asyncio
import logging
from logging import LoggerAdapter
from typing import (
    Any,
    AsyncGenerator,
    Optional,
    Tuple,
    Union,
)

from .exceptions import (
    InvalidArgumentError,
    InvalidCursorValuesError,
    InvalidDocumentIdCursorValueError,
    MissingSnapshotFieldError,
    OrderingAfterCursorError,
    SentinelValueRejectedError,
    SnapshotCollectionMismatchError,
)
from .field_path import DOCUMENT_ID, FieldPath, field_paths
from .filters import (
    CompositeFilter,
    Filter,
    FilterOperator,
    build_filter,
    is_equality_filter,
)
from .references import CollectionReference, DocumentReference, validate_id
from .snapshot import DocumentSnapshot, QuerySnapshot, assemble_query_snapshot
from .structured_query import (
    Cursor,
    Direction,
    Ordering,
    RunQueryRequest,
    StructuredQuery,
)
from .values import Value, ValueSerializer

# --- Setup Logging ---
log = logging.getLogger(__name__)
_default_logger = LoggerAdapter(log, {})

FieldPathLike = Union[str, FieldPath]

# Sentinel for "argument not supplied" in _with(); None is a meaningful value.
_UNSET = object()


def _resolve_direction(direction: Union[None, str, Direction]) -> Direction:
    if direction is None:
        return Direction.ASCENDING
    if isinstance(direction, Direction):
        return direction
    if isinstance(direction, str):
        try:
            return Direction[direction.upper()]
        except KeyError:
            pass
    raise InvalidArgumentError(f"Invalid ordering direction: {direction!r}.")


def _check_count(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidArgumentError(f"{name} must be a non-negative integer.")
    return value


def _checked_serialize(value: Any) -> Value:
    serialized = ValueSerializer.serialize(value)
    if serialized.is_sentinel():
        raise SentinelValueRejectedError("Cursor values cannot contain sentinel values.")
    return serialized


class Query:
    """
    An immutable query against a single collection.

    Every builder method returns a new ``Query``; the receiver is never
    modified. Unchanged tuples (orderings, filters, projections) are shared
    between the old and new query, so builder chains stay cheap. Two queries
    are equal when they target the same collection and every section (offset,
    limit, orderings, filters, projections, cursors) is equal.

    Example:
        >>> rooms = db.collection("rooms")
        >>> q = rooms.where("score", ">", 10).order_by("score").limit(20)
        >>> snapshot = await q.get()
        >>> next_page = q.start_after(snapshot[-1])
    """

    __slots__ = (
        "_collection",
        "_offset",
        "_limit",
        "_orderings",
        "_filters",
        "_projections",
        "_start_at",
        "_end_at",
    )

    def __init__(
        self,
        collection: CollectionReference,
        offset: int = 0,
        limit: Optional[int] = None,
        orderings: Tuple[Ordering, ...] = (),
        filters: Optional[Tuple[Filter, ...]] = None,
        projections: Optional[Tuple[FieldPath, ...]] = None,
        start_at: Optional[Cursor] = None,
        end_at: Optional[Cursor] = None,
    ):
        if not isinstance(collection, CollectionReference):
            raise InvalidArgumentError(
                f"A query requires a CollectionReference, got {type(collection).__name__}."
            )
        self._collection = collection
        self._offset = offset
        self._limit = limit
        self._orderings = orderings
        self._filters = filters
        self._projections = projections
        self._start_at = start_at
        self._end_at = end_at

    def _with(
        self,
        offset=_UNSET,
        limit=_UNSET,
        orderings=_UNSET,
        filters=_UNSET,
        projections=_UNSET,
        start_at=_UNSET,
        end_at=_UNSET,
    ) -> "Query":
        """Copies every section verbatim except the ones passed in."""
        return Query(
            self._collection,
            self._offset if offset is _UNSET else offset,
            self._limit if limit is _UNSET else limit,
            self._orderings if orderings is _UNSET else orderings,
            self._filters if filters is _UNSET else filters,
            self._projections if projections is _UNSET else projections,
            self._start_at if start_at is _UNSET else start_at,
            self._end_at if end_at is _UNSET else end_at,
        )

    # --- Read-only sections ---

    @property
    def collection(self) -> CollectionReference:
        return self._collection

    @property
    def offset_value(self) -> int:
        return self._offset

    @property
    def limit_value(self) -> Optional[int]:
        return self._limit

    @property
    def orderings(self) -> Tuple[Ordering, ...]:
        return self._orderings

    @property
    def filters(self) -> Optional[Tuple[Filter, ...]]:
        return self._filters

    @property
    def projections(self) -> Optional[Tuple[FieldPath, ...]]:
        return self._projections

    @property
    def start_cursor(self) -> Optional[Cursor]:
        return self._start_at

    @property
    def end_cursor(self) -> Optional[Cursor]:
        return self._end_at

    # --- Builder ---

    def select(self, *paths: FieldPathLike) -> "Query":
        """
        Replaces the projection with ``paths``.

        With no paths only the document id is selected, so results remain
        identifiable.
        """
        if any(p is None for p in paths):
            raise InvalidArgumentError("Field paths must not contain a None element.")
        projections = field_paths(paths)
        if not projections:
            projections = (DOCUMENT_ID,)
        log.debug(f"Setting projection: {[str(p) for p in projections]}")
        return self._with(projections=projections)

    def where(
        self,
        field_path: FieldPathLike,
        op: Union[str, FilterOperator],
        value: Any,
    ) -> "Query":
        """Adds a filter; filters are combined with AND in declaration order."""
        new_filter = build_filter(field_path, op, value)
        filters = (self._filters or ()) + (new_filter,)
        log.debug(f"Added filter {new_filter!r}; {len(filters)} filter(s) in total")
        return self._with(filters=filters)

    def order_by(
        self,
        field_path: FieldPathLike,
        direction: Union[None, str, Direction] = None,
    ) -> "Query":
        """
        Adds a subordinate ordering (then-by), ascending unless told otherwise.

        Raises:
            OrderingAfterCursorError: If a start or end cursor is already set.
        """
        if field_path is None:
            raise InvalidArgumentError("field_path must not be None.")
        if self._start_at is not None or self._end_at is not None:
            raise OrderingAfterCursorError()
        ordering = Ordering(FieldPath.coerce(field_path), _resolve_direction(direction))
        log.debug(f"Appending ordering {ordering.field} {ordering.direction.name}")
        return self._with(orderings=self._orderings + (ordering,))

    def order_by_descending(self, field_path: FieldPathLike) -> "Query":
        return self.order_by(field_path, Direction.DESCENDING)

    def limit(self, count: int) -> "Query":
        """Replaces the maximum number of results."""
        return self._with(limit=_check_count(count, "Limit"))

    def offset(self, count: int) -> "Query":
        """Replaces the number of results to skip."""
        return self._with(offset=_check_count(count, "Offset"))

    # --- Cursors ---

    def start_at(self, *values: Any) -> "Query":
        """Starts at the given values (or snapshot), inclusive."""
        return self._with_cursor(values, before=True, start=True)

    def start_after(self, *values: Any) -> "Query":
        """Starts after the given values (or snapshot), exclusive."""
        return self._with_cursor(values, before=False, start=True)

    def end_before(self, *values: Any) -> "Query":
        """Ends before the given values (or snapshot), exclusive."""
        return self._with_cursor(values, before=True, start=False)

    def end_at(self, *values: Any) -> "Query":
        """Ends at the given values (or snapshot), inclusive."""
        return self._with_cursor(values, before=False, start=False)

    def _with_cursor(self, values: Tuple[Any, ...], before: bool, start: bool) -> "Query":
        if len(values) == 1 and isinstance(values[0], DocumentSnapshot):
            cursor, orderings = self._cursor_from_snapshot(values[0], before)
        else:
            cursor, orderings = self._cursor_from_values(values, before), self._orderings
        if start:
            return self._with(orderings=orderings, start_at=cursor)
        return self._with(orderings=orderings, end_at=cursor)

    def _cursor_from_values(self, values: Tuple[Any, ...], before: bool) -> Cursor:
        if not values:
            raise InvalidCursorValuesError(
                "Cannot specify an empty set of values for a start/end query cursor."
            )
        if len(values) > len(self._orderings):
            raise InvalidCursorValuesError(
                "Too many cursor values specified. The specified values must match "
                f"the ordering constraints of the query. {len(values)} specified for "
                f"a query with {len(self._orderings)} ordering constraints."
            )

        converted = []
        for ordering, value in zip(self._orderings, values):
            if ordering.field == DOCUMENT_ID:
                value = self._resolve_document_id_value(value)
            converted.append(_checked_serialize(value))
        log.debug(f"Built cursor from {len(converted)} value(s), before={before}")
        return Cursor(tuple(converted), before)

    def _resolve_document_id_value(self, value: Any) -> DocumentReference:
        # Strings are ids relative to this collection; references must be direct children.
        if isinstance(value, str):
            try:
                validate_id(value, "document id cursor value")
            except InvalidArgumentError as e:
                raise InvalidDocumentIdCursorValueError(str(e)) from e
            return self._collection.document(value)
        if isinstance(value, DocumentReference):
            if value.parent != self._collection:
                raise InvalidDocumentIdCursorValueError(
                    "A DocumentReference cursor value for a document ID must be a "
                    "direct child of the query's collection."
                )
            return value
        raise InvalidDocumentIdCursorValueError()

    def _cursor_from_snapshot(
        self, snapshot: DocumentSnapshot, before: bool
    ) -> Tuple[Cursor, Tuple[Ordering, ...]]:
        """
        Builds a cursor positioned at ``snapshot``.

        Returns the cursor together with the orderings it was built against.
        These may extend the query's own orderings: with no explicit orderings
        every inequality filter contributes an implicit ascending ordering, and
        a document-id ordering is appended (in the direction of the last
        explicit ordering) whenever one is missing, so the position is total.
        """
        if snapshot.reference.parent != self._collection:
            raise SnapshotCollectionMismatchError()

        orderings = self._orderings
        if not orderings and self._filters:
            implicit = tuple(
                Ordering(f.field, Direction.ASCENDING)
                for f in self._filters
                if not is_equality_filter(f)
            )
            orderings = orderings + implicit

        if not any(o.field == DOCUMENT_ID for o in orderings):
            last_direction = (
                orderings[-1].direction if orderings else Direction.ASCENDING
            )
            orderings = orderings + (Ordering(DOCUMENT_ID, last_direction),)

        values = []
        for ordering in orderings:
            if ordering.field == DOCUMENT_ID:
                value = ValueSerializer.serialize(snapshot.reference)
            else:
                value = snapshot.extract_value(ordering.field)
                if value is None:
                    raise MissingSnapshotFieldError(ordering.field)
            values.append(_checked_serialize(value))

        log.debug(
            f"Built cursor from snapshot {snapshot.reference.path!r} over "
            f"{[str(o.field) for o in orderings]}, before={before}"
        )
        return Cursor(tuple(values), before), orderings

    # --- Lowering ---

    def lower(self) -> StructuredQuery:
        """Produces the canonical structured query descriptor."""
        where = None
        if self._filters:
            if len(self._filters) == 1:
                where = self._filters[0]
            else:
                where = CompositeFilter(self._filters)
        return StructuredQuery(
            collection_id=self._collection.id,
            where=where,
            order_by=self._orderings,
            select=self._projections,
            start_at=self._start_at,
            end_at=self._end_at,
            offset=self._offset,
            limit=self._limit,
        )

    def to_request(self, transaction_id: Optional[bytes] = None) -> RunQueryRequest:
        return RunQueryRequest(
            parent=self._collection.parent_path,
            structured_query=self.lower(),
            transaction=transaction_id,
        )

    # --- Execution ---

    async def stream(
        self,
        transaction_id: Optional[bytes] = None,
        logger: Optional[LoggerAdapter] = None,
    ) -> AsyncGenerator[DocumentSnapshot, None]:
        """
        Yields matching documents as they arrive.

        Each iteration issues a new request; nothing is sent until the first
        item is requested.
        """
        logger = logger or _default_logger
        request = self.to_request(transaction_id)
        logger.debug(f"Streaming query: {request.structured_query!r}")
        database = self._collection.database
        responses = database.transport.run_query(request, logger)
        try:
            async for response in responses:
                if response.document is None:
                    continue
                yield DocumentSnapshot.for_document(
                    database, response.document, response.read_time
                )
        finally:
            await responses.aclose()

    async def get(
        self,
        transaction_id: Optional[bytes] = None,
        timeout: Optional[float] = None,
        logger: Optional[LoggerAdapter] = None,
    ) -> QuerySnapshot:
        """
        Runs the query and collects every result.

        Args:
            transaction_id: Optional transaction to read within.
            timeout: Seconds to wait; defaults to the database settings.
            logger: Logger adapter for recording operations.

        Raises:
            MissingReadTimestampError: If the transport never reported a read time.
            asyncio.TimeoutError: If ``timeout`` elapses first.
        """
        logger = logger or _default_logger
        database = self._collection.database
        if timeout is None:
            timeout = database.settings.default_timeout
        request = self.to_request(transaction_id)
        logger.info(f"Running query on {self._collection.path!r}")
        logger.debug(f"Structured query: {request.structured_query!r}")
        responses = database.transport.run_query(request, logger)
        return await asyncio.wait_for(
            assemble_query_snapshot(self, responses, logger), timeout
        )

    # --- Equality ---

    def _key(self):
        return (
            self._collection,
            self._offset,
            self._limit,
            self._orderings,
            self._filters,
            self._projections,
            self._start_at,
            self._end_at,
        )

    def __eq__(self, other: object) -> bool:
        if other is self:
            return True
        if type(other) is not Query:
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __setattr__(self, name, value):
        if hasattr(self, name):
            raise AttributeError("Query objects are immutable.")
        object.__setattr__(self, name, value)

    def __repr__(self) -> str:
        parts = [f"collection={self._collection.path!r}"]
        if self._filters:
            parts.append(f"filters={list(self._filters)!r}")
        if self._orderings:
            parts.append(
                "orderings="
                + repr([f"{o.field} {o.direction.name}" for o in self._orderings])
            )
        if self._projections is not None:
            parts.append(f"projections={[str(p) for p in self._projections]!r}")
        if self._offset:
            parts.append(f"offset={self._offset!r}")
        if self._limit is not None:
            parts.append(f"limit={self._limit!r}")
        if self._start_at is not None:
            parts.append(f"start_at={self._start_at!r}")
        if self._end_at is not None:
            parts.append(f"end_at={self._end_at!r}")
        return f"Query({', '.join(parts)})"
