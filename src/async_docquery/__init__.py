# src/async_docquery/__init__.py

"""
Async Document Query Library Initialization.

This package provides an immutable, fluent query builder for hierarchical
document databases, together with an asynchronous execution pipeline that
streams results through a pluggable transport.

It initializes a logger with a NullHandler and makes the database handle,
references, query builder, snapshots, exceptions, and transport
implementations available at the top level.
"""

import logging

# --------------------------------------------------------------------------
# Logging Setup
# --------------------------------------------------------------------------
# Library logs are discarded unless the consuming application configures
# logging for the "async_docquery" logger.
logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())
logger.propagate = False

# --------------------------------------------------------------------------
# Database and Reference Exports
# --------------------------------------------------------------------------
from .base.client import DatabaseSettings, DocumentDatabase
from .base.references import CollectionReference, DocumentReference

# --------------------------------------------------------------------------
# Query Building Exports
# --------------------------------------------------------------------------
# Query is the immutable builder; StructuredQuery is its lowered form.
from .base.field_path import DOCUMENT_ID, FieldPath
from .base.filters import FilterOperator, UnaryOperator
from .base.query import Query
from .base.structured_query import Direction, RunQueryRequest, StructuredQuery
from .base.values import DELETE_FIELD, SERVER_TIMESTAMP, GeoPoint

# --------------------------------------------------------------------------
# Result Exports
# --------------------------------------------------------------------------
from .base.snapshot import DocumentSnapshot, QuerySnapshot

# --------------------------------------------------------------------------
# Exception Exports
# --------------------------------------------------------------------------
from .base.exceptions import (
    DocumentQueryError,
    InvalidArgumentError,
    InvalidCursorValuesError,
    InvalidDocumentIdCursorValueError,
    InvalidFilterValueError,
    MissingReadTimestampError,
    MissingSnapshotFieldError,
    OrderingAfterCursorError,
    SentinelValueRejectedError,
    SnapshotCollectionMismatchError,
    TransportError,
)

# --------------------------------------------------------------------------
# Transport Exports
# --------------------------------------------------------------------------
# Users can import them like: from async_docquery import MongoDBTransport
from .base.interfaces import Transport
from .memory.base import InMemoryTransport
from .db_implementations.mongodb_transport import MongoDBTransport

__all__ = [
    # Database
    "DatabaseSettings",
    "DocumentDatabase",
    "CollectionReference",
    "DocumentReference",
    # Query
    "Query",
    "FieldPath",
    "DOCUMENT_ID",
    "FilterOperator",
    "UnaryOperator",
    "Direction",
    "StructuredQuery",
    "RunQueryRequest",
    "GeoPoint",
    "DELETE_FIELD",
    "SERVER_TIMESTAMP",
    # Results
    "DocumentSnapshot",
    "QuerySnapshot",
    # Exceptions
    "DocumentQueryError",
    "InvalidArgumentError",
    "InvalidCursorValuesError",
    "InvalidDocumentIdCursorValueError",
    "InvalidFilterValueError",
    "MissingReadTimestampError",
    "MissingSnapshotFieldError",
    "OrderingAfterCursorError",
    "SentinelValueRejectedError",
    "SnapshotCollectionMismatchError",
    "TransportError",
    # Transports
    "Transport",
    "InMemoryTransport",
    "MongoDBTransport",
    # Logging
    "logger",
]
