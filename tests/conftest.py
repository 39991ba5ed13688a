# tests/conftest.py
import asyncio
import logging
import os
import uuid
from datetime import datetime, timezone
from logging import LoggerAdapter
from typing import Any, AsyncGenerator, Dict, List, Optional

import motor.motor_asyncio
import pymongo
import pytest
import pytest_asyncio
from pydantic import BaseModel, Field
from pymongo.errors import ConnectionFailure, PyMongoError

from async_docquery.base.client import DatabaseSettings, DocumentDatabase
from async_docquery.base.interfaces import Transport
from async_docquery.base.references import DocumentReference
from async_docquery.base.snapshot import RunQueryResponse
from async_docquery.base.structured_query import RunQueryRequest
from async_docquery.db_implementations.mongodb_transport import MongoDBTransport
from async_docquery.memory.base import InMemoryTransport

# Silence verbose loggers
logging.getLogger("pymongo").setLevel(logging.ERROR)
logging.getLogger("motor").setLevel(logging.ERROR)


# --- Constants ---
TEST_PROJECT_ID = "pytest-project"
TEST_MONGO_DB_NAME = "pytest_async_docquery_db"
MONGO_URI = os.getenv("TEST_MONGO_URI", "mongodb://localhost:27017")

# --- List of available implementation keys ---
TRANSPORT_IMPLEMENTATIONS = ["memory", "mongodb"]


# --- Availability Checks ---
def is_mongodb_available():
    """Check if MongoDB is available (basic check)."""
    client = pymongo.MongoClient(MONGO_URI, serverSelectionTimeoutMS=1000)
    try:
        client.admin.command("ping")
        logging.info(f"MongoDB found and responsive at {MONGO_URI}")
        return True
    except PyMongoError as e:
        logging.warning(
            f"MongoDB not found or not responsive at {MONGO_URI}: {e}. "
            "Skipping MongoDB tests."
        )
        return False
    finally:
        client.close()


AVAILABLE_IMPLEMENTATIONS = ["memory"]
if is_mongodb_available():
    AVAILABLE_IMPLEMENTATIONS.append("mongodb")


# --- Logger Fixture ---


@pytest.fixture(scope="session")
def logger():
    """Create a test logger."""
    _logger = logging.getLogger("test_docquery_logger")
    if not _logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        handler.setFormatter(formatter)
        handler.setLevel(logging.DEBUG)
        _logger.addHandler(handler)
        _logger.setLevel(logging.DEBUG)
        _logger.propagate = False
    return logging.LoggerAdapter(_logger, {})


# --- Database Fixtures ---


@pytest.fixture
def settings() -> DatabaseSettings:
    return DatabaseSettings(project_id=TEST_PROJECT_ID)


@pytest.fixture
def bare_database(settings) -> DocumentDatabase:
    """A database without a transport, for building queries only."""
    return DocumentDatabase(settings)


@pytest.fixture
def rooms(bare_database):
    return bare_database.collection("rooms")


# MongoDB Client Fixture (Function Scoped)
@pytest_asyncio.fixture(scope="function")
async def motor_client():
    """Provides a real Motor client connected for each test."""
    if "mongodb" not in AVAILABLE_IMPLEMENTATIONS:
        pytest.skip("MongoDB not available or connection failed.")

    client = motor.motor_asyncio.AsyncIOMotorClient(MONGO_URI, tz_aware=True)
    try:
        await client.admin.command("ping")
        logging.debug("Motor client created for test function scope.")
        yield client
    except ConnectionFailure as e:
        pytest.skip(
            f"Skipping MongoDB test: Could not connect to MongoDB at {MONGO_URI}: {e}"
        )
    finally:
        client.close()
        logging.debug("Motor client closed for test function scope.")


@pytest_asyncio.fixture(scope="function")
async def clean_mongo_db(motor_client):
    """Drops every collection of the test database before the test runs."""
    db = motor_client[TEST_MONGO_DB_NAME]
    collections = await db.list_collection_names()
    logging.debug(
        f"Cleaning MongoDB database '{TEST_MONGO_DB_NAME}'. "
        f"Dropping collections: {collections}"
    )
    for name in collections:
        if not name.startswith("system."):
            await db.drop_collection(name)
    yield motor_client


# --- Transport Factories ---


@pytest.fixture
def memory_transport_factory():
    def _create() -> Transport:
        return InMemoryTransport()

    return _create


@pytest.fixture
def mongodb_transport_factory(clean_mongo_db):
    def _create() -> Transport:
        return MongoDBTransport(client=clean_mongo_db, database_name=TEST_MONGO_DB_NAME)

    return _create


@pytest.fixture(params=AVAILABLE_IMPLEMENTATIONS)
def transport_factory(request):
    """Parametrized fixture to get the correct factory based on implementation key."""
    impl_key = request.param
    if impl_key == "memory":
        yield request.getfixturevalue("memory_transport_factory")
    elif impl_key == "mongodb":
        yield request.getfixturevalue("mongodb_transport_factory")
    else:
        raise ValueError(f"Unknown transport implementation key: {impl_key}")


@pytest.fixture
def database(settings, transport_factory) -> DocumentDatabase:
    """A database wired to each available transport in turn."""
    return DocumentDatabase(settings, transport_factory())


async def store_all(
    database: DocumentDatabase,
    collection_path: str,
    documents: Dict[str, Dict[str, Any]],
    logger: LoggerAdapter,
) -> None:
    collection = database.collection(collection_path)
    for document_id, data in documents.items():
        await database.transport.store(collection.document(document_id), data, logger)


# --- Scripted transport for pipeline tests ---


class ScriptedTransport(Transport):
    """
    Replays a fixed list of responses for every request.

    Records each request, how many streams were opened and closed, and can
    pause forever after the scripted responses to simulate a stalled server.
    """

    def __init__(
        self,
        responses: List[RunQueryResponse],
        stall: bool = False,
        error: Optional[Exception] = None,
    ):
        self.responses = responses
        self.stall = stall
        self.error = error
        self.requests: List[RunQueryRequest] = []
        self.opened = 0
        self.closed = 0

    async def run_query(
        self, request: RunQueryRequest, logger: LoggerAdapter
    ) -> AsyncGenerator[RunQueryResponse, None]:
        self.requests.append(request)
        self.opened += 1
        try:
            for response in self.responses:
                await asyncio.sleep(0)
                yield response
            if self.error is not None:
                raise self.error
            if self.stall:
                await asyncio.Event().wait()
        finally:
            self.closed += 1

    async def store(
        self, reference: DocumentReference, data: Dict[str, Any], logger: LoggerAdapter
    ) -> None:
        raise NotImplementedError


READ_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


# --- Test Models ---


class Occupant(BaseModel):
    name: str
    age: int = 30


class Room(BaseModel):
    """A sample model serialized through Pydantic."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    floor: int = 1
    occupants: List[Occupant] = Field(default_factory=list)
