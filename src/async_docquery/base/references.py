# src/async_docquery/base/references.py

import logging
import uuid
from typing import TYPE_CHECKING, Any, Optional, Tuple

from .exceptions import InvalidArgumentError

if TYPE_CHECKING:
    from .client import DocumentDatabase
    from .query import Query

log = logging.getLogger(__name__)


def generate_id() -> str:
    """Generate a new random document ID."""
    return uuid.uuid4().hex[:20]


def validate_id(value: Any, name: str = "id") -> str:
    """Checks that ``value`` can be used as a single document or collection id."""
    if not isinstance(value, str):
        raise InvalidArgumentError(
            f"{name} must be a string, got {type(value).__name__}."
        )
    if not value:
        raise InvalidArgumentError(f"{name} must not be empty.")
    if "/" in value:
        raise InvalidArgumentError(f"{name} {value!r} must not contain '/'.")
    if value in (".", ".."):
        raise InvalidArgumentError(f"{name} {value!r} is reserved.")
    return value


def split_path(path: str) -> Tuple[str, ...]:
    """Splits a slash-separated relative path into validated segments."""
    if not isinstance(path, str) or not path:
        raise InvalidArgumentError("A path must be a non-empty string.")
    segments = tuple(path.strip("/").split("/"))
    for segment in segments:
        validate_id(segment, "path segment")
    return segments


class _Reference:
    __slots__ = ("_database", "_segments")

    def __init__(self, database: "DocumentDatabase", segments: Tuple[str, ...]):
        self._database = database
        self._segments = segments

    @property
    def database(self) -> "DocumentDatabase":
        return self._database

    @property
    def id(self) -> str:
        return self._segments[-1]

    @property
    def segments(self) -> Tuple[str, ...]:
        return self._segments

    @property
    def path(self) -> str:
        """Path relative to the database's documents root."""
        return "/".join(self._segments)

    @property
    def full_path(self) -> str:
        return f"{self._database.documents_path}/{self.path}"

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return (
            self._database.documents_path == other._database.documents_path
            and self._segments == other._segments
        )

    def __hash__(self) -> int:
        return hash((type(self).__name__, self._database.documents_path, self._segments))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.path!r})"


class DocumentReference(_Reference):
    """A reference to a single document, identified by an even-length path."""

    __slots__ = ()

    def __init__(self, database: "DocumentDatabase", segments: Tuple[str, ...]):
        if len(segments) % 2 != 0 or not segments:
            raise InvalidArgumentError(
                f"A document path must have an even number of segments, got {'/'.join(segments)!r}."
            )
        super().__init__(database, segments)

    @property
    def parent(self) -> "CollectionReference":
        return CollectionReference(self._database, self._segments[:-1])

    def collection(self, collection_id: str) -> "CollectionReference":
        validate_id(collection_id, "collection_id")
        return CollectionReference(self._database, self._segments + (collection_id,))


class CollectionReference(_Reference):
    """
    A reference to a collection, identified by an odd-length path.

    A collection is also the starting point for queries: every builder method
    available on :class:`~async_docquery.base.query.Query` can be called here
    and returns a new query over this collection.
    """

    __slots__ = ()

    def __init__(self, database: "DocumentDatabase", segments: Tuple[str, ...]):
        if len(segments) % 2 != 1:
            raise InvalidArgumentError(
                f"A collection path must have an odd number of segments, got {'/'.join(segments)!r}."
            )
        super().__init__(database, segments)

    @property
    def parent(self) -> Optional[DocumentReference]:
        """The owning document, or None for a root collection."""
        if len(self._segments) == 1:
            return None
        return DocumentReference(self._database, self._segments[:-1])

    @property
    def parent_path(self) -> str:
        """Full name of the resource that owns this collection."""
        parent = self.parent
        return parent.full_path if parent is not None else self._database.documents_path

    def document(self, document_id: Optional[str] = None) -> DocumentReference:
        """Returns a child document reference; a random id is used when omitted."""
        if document_id is None:
            document_id = generate_id()
            log.debug(f"Generated document id {document_id!r} under {self.path!r}")
        validate_id(document_id, "document_id")
        return DocumentReference(self._database, self._segments + (document_id,))

    # --- Query entry points ---

    def query(self) -> "Query":
        """Returns the base query that matches every document in this collection."""
        from .query import Query

        return Query(self)

    def select(self, *field_paths) -> "Query":
        return self.query().select(*field_paths)

    def where(self, field_path, op, value) -> "Query":
        return self.query().where(field_path, op, value)

    def order_by(self, field_path, direction=None) -> "Query":
        return self.query().order_by(field_path, direction)

    def order_by_descending(self, field_path) -> "Query":
        return self.query().order_by_descending(field_path)

    def limit(self, count: int) -> "Query":
        return self.query().limit(count)

    def offset(self, count: int) -> "Query":
        return self.query().offset(count)

    def start_at(self, *values) -> "Query":
        return self.query().start_at(*values)

    def start_after(self, *values) -> "Query":
        return self.query().start_after(*values)

    def end_before(self, *values) -> "Query":
        return self.query().end_before(*values)

    def end_at(self, *values) -> "Query":
        return self.query().end_at(*values)

    def stream(self, *args, **kwargs):
        return self.query().stream(*args, **kwargs)

    async def get(self, *args, **kwargs):
        return await self.query().get(*args, **kwargs)
