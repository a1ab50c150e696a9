"""Tests for the service log context, JSON formatter and request-ID middleware."""

import json
import logging

import pytest
from httpx import AsyncClient

from netapp.core.logging import ContextFilter, JSONFormatter, log_context


def _record(msg="Fault study complete", **extra):
    record = logging.LogRecord("netengine.fault.short_circuit", logging.INFO, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def _formatted(record):
    ContextFilter().filter(record)
    return json.loads(JSONFormatter().format(record))


class TestLogContext:

    def test_bound_fields_reach_engine_records(self):
        with log_context(job_id="abc123", study="fault_study"):
            entry = _formatted(_record())
        assert entry["job_id"] == "abc123"
        assert entry["study"] == "fault_study"
        assert entry["logger"] == "netengine.fault.short_circuit"

    def test_context_is_dropped_after_the_block(self):
        with log_context(job_id="abc123"):
            pass
        entry = _formatted(_record())
        assert "job_id" not in entry

    def test_nested_blocks_merge(self):
        with log_context(request_id="r1"), log_context(job_id="j1"):
            entry = _formatted(_record())
        assert (entry["request_id"], entry["job_id"]) == ("r1", "j1")

    def test_explicit_extra_wins(self):
        with log_context(study="harmonics"):
            entry = _formatted(_record(study="load_flow"))
        assert entry["study"] == "load_flow"


@pytest.mark.asyncio
async def test_request_id_echoed(client: AsyncClient):
    resp = await client.get("/api/v1/standards/grid-codes", headers={"X-Request-ID": "req-42"})
    assert resp.headers["X-Request-ID"] == "req-42"


@pytest.mark.asyncio
async def test_request_id_generated(client: AsyncClient, caplog):
    with caplog.at_level(logging.INFO, logger="netapp.access"):
        resp = await client.get("/api/v1/standards/grid-codes")
    rid = resp.headers["X-Request-ID"]
    assert len(rid) == 8
    (access,) = [r for r in caplog.records if r.name == "netapp.access"]
    assert access.status_code == 200
    assert access.path == "/api/v1/standards/grid-codes"
