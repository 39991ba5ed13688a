# tests/base/test_query_execution_pipeline.py

import asyncio
from datetime import timedelta

import pytest

from async_docquery.base.client import DatabaseSettings, DocumentDatabase
from async_docquery.base.exceptions import MissingReadTimestampError, TransportError
from async_docquery.base.snapshot import Document, RunQueryResponse, assemble_query_snapshot
from async_docquery.base.values import ValueSerializer
from tests.conftest import READ_TIME, TEST_PROJECT_ID, ScriptedTransport


def _database(transport, default_timeout=None):
    return DocumentDatabase(
        DatabaseSettings(project_id=TEST_PROJECT_ID, default_timeout=default_timeout),
        transport,
    )


def _document(database, path, data):
    return Document(
        name=database.document(path).full_path,
        fields=ValueSerializer.serialize_fields(data),
        create_time=READ_TIME - timedelta(days=1),
        update_time=READ_TIME - timedelta(hours=1),
    )


async def test_get_collects_documents_and_read_time(logger):
    transport = ScriptedTransport([])
    database = _database(transport)
    transport.responses = [
        RunQueryResponse(_document(database, "rooms/r1", {"a": 1}), READ_TIME),
        RunQueryResponse(_document(database, "rooms/r2", {"a": 2}), READ_TIME),
    ]

    snapshot = await database.collection("rooms").where("a", ">", 0).get(logger=logger)

    assert snapshot.read_time == READ_TIME
    assert [d.id for d in snapshot] == ["r1", "r2"]
    assert snapshot[0].get("a") == 1
    assert snapshot[0].read_time == READ_TIME
    assert snapshot[1].update_time == READ_TIME - timedelta(hours=1)
    assert snapshot.query == database.collection("rooms").where("a", ">", 0)
    assert transport.closed == 1


async def test_first_read_time_wins(logger):
    later = READ_TIME + timedelta(seconds=5)
    transport = ScriptedTransport([])
    database = _database(transport)
    transport.responses = [
        RunQueryResponse(read_time=None),
        RunQueryResponse(_document(database, "rooms/r1", {}), READ_TIME),
        RunQueryResponse(_document(database, "rooms/r2", {}), later),
    ]
    snapshot = await database.collection("rooms").get(logger=logger)
    assert snapshot.read_time == READ_TIME


async def test_heartbeat_only_stream_yields_empty_snapshot(logger):
    transport = ScriptedTransport([RunQueryResponse(read_time=READ_TIME)])
    snapshot = await _database(transport).collection("rooms").get(logger=logger)
    assert snapshot.empty
    assert len(snapshot) == 0
    assert snapshot.read_time == READ_TIME


async def test_missing_read_time_is_an_error(logger):
    transport = ScriptedTransport([])
    database = _database(transport)
    transport.responses = [RunQueryResponse(_document(database, "rooms/r1", {}), None)]
    with pytest.raises(MissingReadTimestampError):
        await database.collection("rooms").get(logger=logger)
    assert transport.closed == 1


async def test_empty_stream_is_an_error(logger):
    with pytest.raises(MissingReadTimestampError):
        await _database(ScriptedTransport([])).collection("rooms").get(logger=logger)


async def test_transport_errors_propagate_and_close_stream(logger):
    transport = ScriptedTransport(
        [RunQueryResponse(read_time=READ_TIME)], error=TransportError("boom")
    )
    with pytest.raises(TransportError, match="boom"):
        await _database(transport).collection("rooms").get(logger=logger)
    assert transport.closed == 1


async def test_timeout_cancels_the_stream(logger):
    transport = ScriptedTransport([RunQueryResponse(read_time=READ_TIME)], stall=True)
    with pytest.raises(asyncio.TimeoutError):
        await _database(transport).collection("rooms").get(timeout=0.05, logger=logger)
    assert transport.closed == 1


async def test_default_timeout_comes_from_settings(logger):
    transport = ScriptedTransport([], stall=True)
    database = _database(transport, default_timeout=0.05)
    with pytest.raises(asyncio.TimeoutError):
        await database.collection("rooms").get(logger=logger)


async def test_caller_cancellation_propagates(logger):
    transport = ScriptedTransport([RunQueryResponse(read_time=READ_TIME)], stall=True)
    task = asyncio.create_task(_database(transport).collection("rooms").get(logger=logger))
    while transport.opened == 0:
        await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert transport.closed == 1


async def test_stream_is_cold_and_repeatable(logger):
    transport = ScriptedTransport([])
    database = _database(transport)
    transport.responses = [
        RunQueryResponse(read_time=READ_TIME),
        RunQueryResponse(_document(database, "rooms/r1", {"a": 1}), READ_TIME),
    ]
    query = database.collection("rooms").limit(5)

    stream = query.stream(logger=logger)
    assert transport.opened == 0

    first = [doc.id async for doc in stream]
    second = [doc.id async for doc in query.stream(logger=logger)]
    assert first == second == ["r1"]
    assert transport.opened == 2
    assert transport.requests[0] == query.to_request()


async def test_abandoned_stream_closes_transport(logger):
    transport = ScriptedTransport([])
    database = _database(transport)
    transport.responses = [
        RunQueryResponse(_document(database, "rooms/r1", {}), READ_TIME),
        RunQueryResponse(_document(database, "rooms/r2", {}), READ_TIME),
    ]
    stream = database.collection("rooms").stream(logger=logger)
    first = await stream.__anext__()
    await stream.aclose()
    assert first.id == "r1"
    assert transport.closed == 1


async def test_stream_passes_transaction_id(logger):
    transport = ScriptedTransport([RunQueryResponse(read_time=READ_TIME)])
    database = _database(transport)
    await database.collection("rooms").get(transaction_id=b"tx", logger=logger)
    assert transport.requests[0].transaction == b"tx"


async def test_assembly_closes_the_response_generator(bare_database, logger):
    closed = []

    async def responses():
        try:
            yield RunQueryResponse()
        finally:
            closed.append(True)

    with pytest.raises(MissingReadTimestampError):
        await assemble_query_snapshot(bare_database.collection("rooms").query(), responses(), logger)
    assert closed == [True]
