# src/async_docquery/memory/base.py

import asyncio
import logging
from datetime import datetime, timezone
from functools import cmp_to_key
from logging import LoggerAdapter
from typing import (
    Any,
    AsyncGenerator,
    Callable,
    Dict,
    List,
    Optional,
    Tuple,
)

from async_docquery.base.field_path import DOCUMENT_ID, FieldPath
from async_docquery.base.filters import (
    CompositeFilter,
    FilterOperator,
    UnaryFilter,
    UnaryOperator,
)
from async_docquery.base.interfaces import Transport
from async_docquery.base.references import DocumentReference
from async_docquery.base.snapshot import Document, RunQueryResponse
from async_docquery.base.structured_query import (
    Cursor,
    Direction,
    Ordering,
    RunQueryRequest,
    StructuredQuery,
)
from async_docquery.base.values import (
    Value,
    ValueSerializer,
    ValueType,
    compare_values,
    extract_field,
    type_rank,
)

log = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _document_value(document: Document, field: FieldPath) -> Optional[Value]:
    """Value of ``field`` in ``document``; the document-id field yields its name."""
    if field == DOCUMENT_ID:
        return Value(ValueType.REFERENCE, document.name)
    return extract_field(document.fields, field)


def _matches_filter(document: Document, filter_) -> bool:
    if isinstance(filter_, CompositeFilter):
        return all(_matches_filter(document, f) for f in filter_.filters)

    value = _document_value(document, filter_.field)
    if value is None:
        return False

    if isinstance(filter_, UnaryFilter):
        if filter_.op is UnaryOperator.IS_NULL:
            return value.type is ValueType.NULL
        return value.is_nan()

    return _check_operator(filter_.op, value, filter_.value)


def _check_operator(op: FilterOperator, actual: Value, expected: Value) -> bool:
    # Comparisons only match values of the same type class, and NaN matches nothing.
    if type_rank(actual) != type_rank(expected):
        return False
    if actual.is_nan() or expected.is_nan():
        return False
    result = compare_values(actual, expected)
    if op is FilterOperator.EQUAL:
        return result == 0
    if op is FilterOperator.LESS_THAN:
        return result < 0
    if op is FilterOperator.LESS_THAN_OR_EQUAL:
        return result <= 0
    if op is FilterOperator.GREATER_THAN:
        return result > 0
    if op is FilterOperator.GREATER_THAN_OR_EQUAL:
        return result >= 0
    raise ValueError(f"Unsupported operator: {op}")


def _compare_documents(
    left: Document, right: Document, orderings: Tuple[Ordering, ...]
) -> int:
    for ordering in orderings:
        result = compare_values(
            _document_value(left, ordering.field), _document_value(right, ordering.field)
        )
        if ordering.direction is Direction.DESCENDING:
            result = -result
        if result:
            return result
    return 0


def _compare_to_cursor(
    document: Document, cursor: Cursor, orderings: Tuple[Ordering, ...]
) -> int:
    for ordering, cursor_value in zip(orderings, cursor.values):
        result = compare_values(_document_value(document, ordering.field), cursor_value)
        if ordering.direction is Direction.DESCENDING:
            result = -result
        if result:
            return result
    return 0


def _within_cursors(
    document: Document, query: StructuredQuery, orderings: Tuple[Ordering, ...]
) -> bool:
    if query.start_at is not None:
        position = _compare_to_cursor(document, query.start_at, orderings)
        if position < 0 or (position == 0 and not query.start_at.before):
            return False
    if query.end_at is not None:
        position = _compare_to_cursor(document, query.end_at, orderings)
        if position > 0 or (position == 0 and query.end_at.before):
            return False
    return True


def _project(document: Document, select: Optional[Tuple[FieldPath, ...]]) -> Document:
    if select is None:
        return document
    nested: Dict[str, Any] = {}
    for path in select:
        if path == DOCUMENT_ID:
            continue
        value = extract_field(document.fields, path)
        if value is None:
            continue
        target = nested
        for segment in path.segments[:-1]:
            target = target.setdefault(segment, {})
        target[path.segments[-1]] = value
    return Document(
        name=document.name,
        fields=ValueSerializer.serialize_fields(nested),
        create_time=document.create_time,
        update_time=document.update_time,
    )


class InMemoryTransport(Transport):
    """
    Evaluates structured queries against documents held in a dict.

    Useful for tests and for running query logic without a server. Documents
    missing an ordering field are excluded from ordered results, comparisons
    only match values of the same type class, and every stream reports the
    read time taken when the query starts.
    """

    def __init__(self, clock: Callable[[], datetime] = _utc_now):
        self._store: Dict[str, Document] = {}
        self._clock = clock

    async def store(
        self,
        reference: DocumentReference,
        data: Dict[str, Any],
        logger: LoggerAdapter,
    ) -> None:
        now = self._clock()
        existing = self._store.get(reference.full_path)
        self._store[reference.full_path] = Document(
            name=reference.full_path,
            fields=ValueSerializer.serialize_fields(data),
            create_time=existing.create_time if existing else now,
            update_time=now,
        )
        logger.debug(f"Stored document {reference.path!r} in memory")

    async def run_query(
        self, request: RunQueryRequest, logger: LoggerAdapter
    ) -> AsyncGenerator[RunQueryResponse, None]:
        await asyncio.sleep(0)
        read_time = self._clock()
        query = request.structured_query
        logger.debug(f"In-memory run_query under {request.parent!r}: {query!r}")

        documents = self._filter_documents(request.parent, query)
        orderings = query.effective_orderings()
        documents = self._sort_documents(documents, orderings)
        documents = [d for d in documents if _within_cursors(d, query, orderings)]
        end = None if query.limit is None else query.offset + query.limit
        page = documents[query.offset : end]

        logger.info(f"In-memory query matched {len(page)} document(s)")
        if not page:
            yield RunQueryResponse(read_time=read_time)
            return
        for document in page:
            await asyncio.sleep(0)
            yield RunQueryResponse(_project(document, query.select), read_time)

    def _filter_documents(self, parent: str, query: StructuredQuery) -> List[Document]:
        prefix = f"{parent}/{query.collection_id}"
        candidates = [
            doc for name, doc in self._store.items() if name.rsplit("/", 1)[0] == prefix
        ]
        if query.where is None:
            return candidates
        return [doc for doc in candidates if _matches_filter(doc, query.where)]

    def _sort_documents(
        self, documents: List[Document], orderings: Tuple[Ordering, ...]
    ) -> List[Document]:
        # Documents lacking any ordered field are not part of an ordered result.
        present = [
            doc
            for doc in documents
            if all(_document_value(doc, o.field) is not None for o in orderings)
        ]
        return sorted(
            present,
            key=cmp_to_key(lambda a, b: _compare_documents(a, b, orderings)),
        )
