# src/async_docquery/db_implementations/mongodb_transport.py

import logging
from datetime import datetime, timezone
from logging import LoggerAdapter
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

# --- Motor Driver Import ---
from motor.motor_asyncio import (AsyncIOMotorClient, AsyncIOMotorCollection,
                                 AsyncIOMotorDatabase)
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

# --- Framework Imports ---
from async_docquery.base.exceptions import InvalidArgumentError, TransportError
from async_docquery.base.field_path import DOCUMENT_ID, FieldPath
from async_docquery.base.filters import (CompositeFilter, FieldFilter,
                                         FilterOperator, UnaryFilter,
                                         UnaryOperator)
from async_docquery.base.interfaces import Transport
from async_docquery.base.references import DocumentReference
from async_docquery.base.snapshot import Document, RunQueryResponse
from async_docquery.base.structured_query import (Cursor, Direction, Ordering,
                                                  RunQueryRequest,
                                                  StructuredQuery)
from async_docquery.base.values import (GeoPoint, Value, ValueSerializer,
                                        ValueType)

# Reserved top-level keys of a stored record; user data lives under FIELDS_KEY.
ID_KEY = "_id"
PARENT_KEY = "_parent"
CREATE_TIME_KEY = "_create_time"
UPDATE_TIME_KEY = "_update_time"
FIELDS_KEY = "fields"

REFERENCE_KEY = "__ref__"
GEO_POINT_KEY = "__geo__"

_COMPARISON_OPERATORS = {
    FilterOperator.EQUAL: "$eq",
    FilterOperator.LESS_THAN: "$lt",
    FilterOperator.LESS_THAN_OR_EQUAL: "$lte",
    FilterOperator.GREATER_THAN: "$gt",
    FilterOperator.GREATER_THAN_OR_EQUAL: "$gte",
}


# --- Value conversion ---
def to_mongo(value: Value) -> Any:
    """Converts a :class:`Value` to its BSON-compatible storage form."""
    t = value.type
    if t is ValueType.REFERENCE:
        return {REFERENCE_KEY: value.data}
    if t is ValueType.GEO_POINT:
        return {GEO_POINT_KEY: [value.data.latitude, value.data.longitude]}
    if t is ValueType.ARRAY:
        return [to_mongo(v) for v in value.data]
    if t is ValueType.MAP:
        return {k: to_mongo(v) for k, v in value.data}
    if value.is_sentinel():
        raise InvalidArgumentError(
            f"Sentinel value {t.name} cannot be stored by this transport."
        )
    if t is ValueType.NULL:
        return None
    return value.data


def from_mongo(raw: Any) -> Value:
    """Converts a stored BSON value back to a :class:`Value`."""
    if isinstance(raw, dict):
        if set(raw) == {REFERENCE_KEY}:
            return Value(ValueType.REFERENCE, raw[REFERENCE_KEY])
        if set(raw) == {GEO_POINT_KEY}:
            latitude, longitude = raw[GEO_POINT_KEY]
            return Value(ValueType.GEO_POINT, GeoPoint(latitude, longitude))
        return Value(
            ValueType.MAP,
            tuple(sorted(((k, from_mongo(v)) for k, v in raw.items()), key=lambda p: p[0])),
        )
    if isinstance(raw, datetime) and raw.tzinfo is None:
        # Motor returns naive datetimes unless the client is tz-aware.
        return Value(ValueType.TIMESTAMP, raw.replace(tzinfo=timezone.utc))
    if isinstance(raw, list):
        return Value(ValueType.ARRAY, tuple(from_mongo(v) for v in raw))
    if isinstance(raw, bytes):
        return Value(ValueType.BYTES, bytes(raw))
    return ValueSerializer.serialize(raw)


def _utc(raw: Optional[datetime]) -> Optional[datetime]:
    if raw is None or raw.tzinfo is not None:
        return raw
    return raw.replace(tzinfo=timezone.utc)


def record_to_document(record: Dict[str, Any]) -> Document:
    fields = record.get(FIELDS_KEY) or {}
    return Document(
        name=record[ID_KEY],
        fields={k: from_mongo(v) for k, v in fields.items()},
        create_time=_utc(record.get(CREATE_TIME_KEY)),
        update_time=_utc(record.get(UPDATE_TIME_KEY)),
    )


# --- Query translation ---
def mongo_path(field: FieldPath) -> str:
    """Maps a field path to the dotted path of the stored record."""
    if field == DOCUMENT_ID:
        return ID_KEY
    for segment in field.segments:
        if "." in segment or segment.startswith("$"):
            raise InvalidArgumentError(
                f"Field path segment {segment!r} cannot be addressed in MongoDB."
            )
    return ".".join((FIELDS_KEY,) + field.segments)


def _operand(field: FieldPath, value: Value) -> Any:
    # Document-id comparisons work on the plain stored name.
    if field == DOCUMENT_ID and value.type is ValueType.REFERENCE:
        return value.data
    return to_mongo(value)


def translate_filter(filter_) -> Dict[str, Any]:
    if isinstance(filter_, CompositeFilter):
        parts = [translate_filter(f) for f in filter_.filters]
        if len(parts) == 1:
            return parts[0]
        return {"$and": parts}
    path = mongo_path(filter_.field)
    if isinstance(filter_, UnaryFilter):
        if filter_.op is UnaryOperator.IS_NULL:
            return {path: {"$type": "null"}}
        return {path: {"$eq": float("nan")}}
    if isinstance(filter_, FieldFilter):
        mongo_op = _COMPARISON_OPERATORS.get(filter_.op)
        if mongo_op is None:
            raise ValueError(f"Unsupported query operator for MongoDB: {filter_.op!r}")
        return {path: {mongo_op: _operand(filter_.field, filter_.value)}}
    raise TypeError(f"Unknown filter type: {type(filter_)}")


def translate_cursor(
    cursor: Cursor, orderings: Tuple[Ordering, ...], is_start: bool
) -> Dict[str, Any]:
    """
    Expands a cursor into a disjunction over its ordering prefix.

    Each branch pins the leading fields to the cursor values and moves past the
    cursor on the next one. The all-equal branch is added for start-at and
    end-at, which include the cursor position.
    """
    pairs = list(zip(orderings, cursor.values))
    branches: List[Dict[str, Any]] = []
    for index, (ordering, value) in enumerate(pairs):
        branch = {
            mongo_path(o.field): {"$eq": _operand(o.field, v)}
            for o, v in pairs[:index]
        }
        forward = (ordering.direction is Direction.ASCENDING) == is_start
        branch[mongo_path(ordering.field)] = {
            "$gt" if forward else "$lt": _operand(ordering.field, value)
        }
        branches.append(branch)
    inclusive = cursor.before if is_start else not cursor.before
    if inclusive:
        branches.append(
            {mongo_path(o.field): {"$eq": _operand(o.field, v)} for o, v in pairs}
        )
    if len(branches) == 1:
        return branches[0]
    return {"$or": branches}


def translate_query(parent: str, query: StructuredQuery) -> Dict[str, Any]:
    """Translates a structured query into find() arguments."""
    orderings = query.effective_orderings()
    conditions: List[Dict[str, Any]] = [{PARENT_KEY: parent}]
    if query.where is not None:
        conditions.append(translate_filter(query.where))
    for ordering in orderings:
        if ordering.field != DOCUMENT_ID:
            conditions.append({mongo_path(ordering.field): {"$exists": True}})
    if query.start_at is not None:
        conditions.append(translate_cursor(query.start_at, orderings, is_start=True))
    if query.end_at is not None:
        conditions.append(translate_cursor(query.end_at, orderings, is_start=False))

    projection = None
    if query.select is not None:
        projection = {CREATE_TIME_KEY: 1, UPDATE_TIME_KEY: 1}
        for path in query.select:
            if path != DOCUMENT_ID:
                projection[mongo_path(path)] = 1

    return {
        "filter": conditions[0] if len(conditions) == 1 else {"$and": conditions},
        "sort": [
            (mongo_path(o.field), ASCENDING if o.direction is Direction.ASCENDING else DESCENDING)
            for o in orderings
        ],
        "skip": query.offset,
        "limit": query.limit,
        "projection": projection,
    }


class MongoDBTransport(Transport):
    """
    Transport that evaluates structured queries with MongoDB using Motor.

    Each queried collection id maps to one MongoDB collection. Records keep
    the full document name as ``_id`` and the parent resource in ``_parent``,
    so subcollections sharing an id are told apart by their parent.
    """

    def __init__(self, client: AsyncIOMotorClient, database_name: str):
        """
        Args:
            client: An instance of AsyncIOMotorClient.
            database_name: The name of the MongoDB database holding the collections.
        """
        if not isinstance(client, AsyncIOMotorClient):
            raise TypeError("client must be an instance of AsyncIOMotorClient")

        self._client = client
        self._database_name = database_name
        self._db: AsyncIOMotorDatabase = client[database_name]
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._logger.info(f"Transport instance created for db '{database_name}'.")

    def _collection(self, collection_id: str) -> AsyncIOMotorCollection:
        return self._db[collection_id]

    async def store(
        self,
        reference: DocumentReference,
        data: Dict[str, Any],
        logger: LoggerAdapter,
    ) -> None:
        fields = {k: to_mongo(v) for k, v in ValueSerializer.serialize_fields(data).items()}
        now = datetime.now(timezone.utc)
        try:
            await self._collection(reference.parent.id).update_one(
                {ID_KEY: reference.full_path},
                {
                    "$set": {
                        PARENT_KEY: reference.parent.parent_path,
                        FIELDS_KEY: fields,
                        UPDATE_TIME_KEY: now,
                    },
                    "$setOnInsert": {CREATE_TIME_KEY: now},
                },
                upsert=True,
            )
            logger.debug(f"Stored document {reference.path!r} in MongoDB")
        except PyMongoError as e:
            self._handle_db_error(e, f"storing document {reference.path}")

    async def run_query(
        self, request: RunQueryRequest, logger: LoggerAdapter
    ) -> AsyncGenerator[RunQueryResponse, None]:
        query = request.structured_query
        read_time = datetime.now(timezone.utc)
        if request.transaction is not None:
            logger.warning("MongoDBTransport ignores transaction ids; reading latest data.")

        query_parts = translate_query(request.parent, query)
        logger.debug(f"MongoDB query parts: {query_parts}")

        emitted = 0
        try:
            mongo_cursor = self._collection(query.collection_id).find(
                query_parts["filter"], projection=query_parts["projection"]
            )
            mongo_cursor = mongo_cursor.sort(query_parts["sort"])
            if query_parts["skip"] > 0:
                mongo_cursor = mongo_cursor.skip(query_parts["skip"])
            if query_parts["limit"] is not None:
                if query_parts["limit"] == 0:
                    yield RunQueryResponse(read_time=read_time)
                    return
                mongo_cursor = mongo_cursor.limit(query_parts["limit"])
            try:
                async for record in mongo_cursor:
                    yield RunQueryResponse(record_to_document(record), read_time)
                    emitted += 1
            finally:
                await mongo_cursor.close()
        except PyMongoError as db_error:
            self._handle_db_error(db_error, "running query")

        logger.info(f"MongoDB query returned {emitted} document(s)")
        if not emitted:
            yield RunQueryResponse(read_time=read_time)

    async def close(self) -> None:
        self._client.close()

    def _handle_db_error(self, error: Exception, context: str = "operation") -> None:
        self._logger.error(f"MongoDB error during {context}: {error}", exc_info=True)
        raise TransportError(
            f"An unexpected MongoDB error occurred during {context}"
        ) from error
