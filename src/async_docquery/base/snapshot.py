# src/async_docquery/base/snapshot.py

import logging
from dataclasses import dataclass, field
from datetime import datetime
from logging import LoggerAdapter
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncGenerator,
    Dict,
    Iterator,
    List,
    Optional,
    Tuple,
    Union,
)

from .exceptions import MissingReadTimestampError
from .field_path import FieldPath
from .references import DocumentReference
from .values import Value, ValueSerializer, extract_field

if TYPE_CHECKING:
    from .client import DocumentDatabase
    from .query import Query

log = logging.getLogger(__name__)


# --- Transport-level records ---
@dataclass(frozen=True)
class Document:
    """A document as returned by a transport: full name plus serialized fields."""

    name: str
    fields: Dict[str, Value] = field(default_factory=dict)
    create_time: Optional[datetime] = None
    update_time: Optional[datetime] = None


@dataclass(frozen=True)
class RunQueryResponse:
    """One streamed element of a query response; either part may be absent."""

    document: Optional[Document] = None
    read_time: Optional[datetime] = None


# --- User-facing snapshots ---
class DocumentSnapshot:
    """An immutable view of a document at a point in time."""

    def __init__(
        self,
        reference: DocumentReference,
        data: Optional[Dict[str, Value]],
        read_time: Optional[datetime] = None,
        create_time: Optional[datetime] = None,
        update_time: Optional[datetime] = None,
    ):
        self._reference = reference
        self._data = data
        self._read_time = read_time
        self._create_time = create_time
        self._update_time = update_time

    @classmethod
    def for_document(
        cls,
        database: "DocumentDatabase",
        document: Document,
        read_time: Optional[datetime],
    ) -> "DocumentSnapshot":
        reference = database.document_from_full_path(document.name)
        return cls(
            reference,
            dict(document.fields),
            read_time=read_time,
            create_time=document.create_time,
            update_time=document.update_time,
        )

    @classmethod
    def from_dict(
        cls,
        reference: DocumentReference,
        data: Optional[Dict[str, Any]],
        read_time: Optional[datetime] = None,
    ) -> "DocumentSnapshot":
        """Builds a snapshot from plain Python data (useful for tests and caches)."""
        fields = None if data is None else ValueSerializer.serialize_fields(data)
        return cls(reference, fields, read_time=read_time)

    @property
    def reference(self) -> DocumentReference:
        return self._reference

    @property
    def id(self) -> str:
        return self._reference.id

    @property
    def exists(self) -> bool:
        return self._data is not None

    @property
    def read_time(self) -> Optional[datetime]:
        return self._read_time

    @property
    def create_time(self) -> Optional[datetime]:
        return self._create_time

    @property
    def update_time(self) -> Optional[datetime]:
        return self._update_time

    def extract_value(self, field_path: Union[str, FieldPath]) -> Optional[Value]:
        """Returns the serialized value at ``field_path``, or None if absent."""
        return extract_field(self._data, FieldPath.coerce(field_path))

    def get(self, field_path: Union[str, FieldPath], default: Any = None) -> Any:
        value = self.extract_value(field_path)
        if value is None:
            return default
        return ValueSerializer.deserialize(value, self._reference.database)

    def to_dict(self) -> Optional[Dict[str, Any]]:
        if self._data is None:
            return None
        database = self._reference.database
        return {k: ValueSerializer.deserialize(v, database) for k, v in self._data.items()}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DocumentSnapshot):
            return NotImplemented
        return (
            self._reference == other._reference
            and self._data == other._data
            and self._update_time == other._update_time
        )

    def __hash__(self) -> int:
        return hash((self._reference, self._update_time))

    def __repr__(self) -> str:
        return f"DocumentSnapshot({self._reference.path!r}, exists={self.exists})"


class QuerySnapshot:
    """The documents matched by one execution of a query, with its read time."""

    def __init__(
        self, query: "Query", documents: List[DocumentSnapshot], read_time: datetime
    ):
        self._query = query
        self._documents: Tuple[DocumentSnapshot, ...] = tuple(documents)
        self._read_time = read_time

    @property
    def query(self) -> "Query":
        return self._query

    @property
    def documents(self) -> Tuple[DocumentSnapshot, ...]:
        return self._documents

    @property
    def read_time(self) -> datetime:
        return self._read_time

    @property
    def empty(self) -> bool:
        return not self._documents

    def __len__(self) -> int:
        return len(self._documents)

    def __iter__(self) -> Iterator[DocumentSnapshot]:
        return iter(self._documents)

    def __getitem__(self, index: int) -> DocumentSnapshot:
        return self._documents[index]

    def __repr__(self) -> str:
        return f"QuerySnapshot(size={len(self._documents)}, read_time={self._read_time!r})"


async def assemble_query_snapshot(
    query: "Query",
    responses: AsyncGenerator[RunQueryResponse, None],
    logger: LoggerAdapter,
) -> QuerySnapshot:
    """
    Folds a response stream into a :class:`QuerySnapshot`.

    The first read time seen anywhere in the stream becomes the snapshot's read
    time; responses without a document (progress heartbeats) only contribute
    their read time. The stream is closed on every exit path, including
    cancellation.

    Raises:
        MissingReadTimestampError: If the stream ends without any read time.
    """
    database = query.collection.database
    read_time: Optional[datetime] = None
    documents: List[DocumentSnapshot] = []
    try:
        async for response in responses:
            if response.document is not None:
                documents.append(
                    DocumentSnapshot.for_document(
                        database, response.document, response.read_time
                    )
                )
            if read_time is None and response.read_time is not None:
                read_time = response.read_time
    finally:
        await responses.aclose()

    if read_time is None:
        logger.error(f"Query stream for {query.collection.path!r} ended without a read time")
        raise MissingReadTimestampError()

    logger.info(
        f"Assembled query snapshot for {query.collection.path!r}: "
        f"{len(documents)} document(s) read at {read_time.isoformat()}"
    )
    return QuerySnapshot(query, documents, read_time)
