# src/async_docquery/base/client.py

import logging
import os
from dataclasses import dataclass
from typing import Optional

from .exceptions import InvalidArgumentError
from .interfaces import Transport
from .references import CollectionReference, DocumentReference, split_path, validate_id

log = logging.getLogger(__name__)

DEFAULT_DATABASE_ID = "(default)"


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection-independent settings for a :class:`DocumentDatabase`."""

    project_id: str
    database_id: str = DEFAULT_DATABASE_ID
    default_timeout: Optional[float] = None

    def __post_init__(self):
        validate_id(self.project_id, "project_id")
        validate_id(self.database_id, "database_id")
        if self.default_timeout is not None and self.default_timeout < 0:
            raise InvalidArgumentError("default_timeout must be a non-negative number or None.")

    @classmethod
    def from_env(cls, prefix: str = "DOCQUERY_") -> "DatabaseSettings":
        """
        Reads settings from ``<prefix>PROJECT_ID``, ``<prefix>DATABASE_ID`` and
        ``<prefix>DEFAULT_TIMEOUT``.
        """
        project_id = os.getenv(f"{prefix}PROJECT_ID")
        if not project_id:
            raise InvalidArgumentError(f"Environment variable {prefix}PROJECT_ID is not set.")
        timeout = os.getenv(f"{prefix}DEFAULT_TIMEOUT")
        return cls(
            project_id=project_id,
            database_id=os.getenv(f"{prefix}DATABASE_ID", DEFAULT_DATABASE_ID),
            default_timeout=float(timeout) if timeout else None,
        )


class DocumentDatabase:
    """
    Root of all references for one database, and owner of its transport.

    References compare equal only when they belong to databases with the same
    documents path.
    """

    def __init__(self, settings: DatabaseSettings, transport: Optional[Transport] = None):
        self._settings = settings
        self._transport = transport
        log.info(
            f"DocumentDatabase created for {self.database_path!r} "
            f"(transport: {type(transport).__name__ if transport else 'none'})"
        )

    @property
    def settings(self) -> DatabaseSettings:
        return self._settings

    @property
    def transport(self) -> Transport:
        if self._transport is None:
            raise RuntimeError("This DocumentDatabase has no transport configured.")
        return self._transport

    @property
    def database_path(self) -> str:
        return f"projects/{self._settings.project_id}/databases/{self._settings.database_id}"

    @property
    def documents_path(self) -> str:
        return f"{self.database_path}/documents"

    def collection(self, path: str) -> CollectionReference:
        """Returns a reference to the collection at slash-separated ``path``."""
        return CollectionReference(self, split_path(path))

    def document(self, path: str) -> DocumentReference:
        """Returns a reference to the document at slash-separated ``path``."""
        return DocumentReference(self, split_path(path))

    def document_from_full_path(self, full_path: str) -> DocumentReference:
        """Converts a full document name back into a reference in this database."""
        prefix = self.documents_path + "/"
        if not full_path.startswith(prefix):
            raise InvalidArgumentError(
                f"Document name {full_path!r} does not belong to database {self.database_path!r}."
            )
        return self.document(full_path[len(prefix):])

    async def close(self) -> None:
        if self._transport is not None:
            await self._transport.close()

    def __repr__(self) -> str:
        return f"DocumentDatabase({self.database_path!r})"
