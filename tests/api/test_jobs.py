"""Tests for background job submission, polling and cancellation."""

from unittest.mock import MagicMock, patch

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio

_TASK = "netapp.worker.tasks.run_analysis_study"
_RESULT = "netapp.api.v1.jobs.AsyncResult"


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


@patch(_TASK)
async def test_submit_job(mock_task, client: AsyncClient, ring_payload):
    mock_task.delay.return_value = MagicMock(id="job-123")
    resp = await client.post(
        "/api/v1/analysis/jobs",
        json={"study": "contingency", "payload": {"network": ring_payload}},
    )
    assert resp.status_code == 202
    assert resp.json() == {"job_id": "job-123", "study": "contingency", "status": "queued"}
    mock_task.delay.assert_called_once_with("contingency", {"network": ring_payload})


@patch(_TASK)
async def test_invalid_payload_not_queued(mock_task, client: AsyncClient):
    resp = await client.post(
        "/api/v1/analysis/jobs",
        json={"study": "short_circuit", "payload": {"network": {"buses": []}}},
    )
    assert resp.status_code == 422
    mock_task.delay.assert_not_called()


async def test_unknown_study(client: AsyncClient, two_bus_payload):
    resp = await client.post(
        "/api/v1/analysis/jobs",
        json={"study": "stability", "payload": {"network": two_bus_payload}},
    )
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------


@patch(_RESULT)
async def test_job_completed(mock_result, client: AsyncClient):
    mock_result.return_value = MagicMock(
        state="SUCCESS",
        result={"status": "completed", "study": "load_flow", "result": {"converged": True}},
    )
    resp = await client.get("/api/v1/analysis/jobs/job-123")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "completed"
    assert data["result"] == {"converged": True}


@patch(_RESULT)
async def test_job_cancelled_by_worker(mock_result, client: AsyncClient):
    mock_result.return_value = MagicMock(
        state="SUCCESS", result={"status": "cancelled", "study": "harmonics", "result": None},
    )
    resp = await client.get("/api/v1/analysis/jobs/job-123")
    assert resp.json()["status"] == "cancelled"
    assert resp.json()["result"] is None


@patch(_RESULT)
async def test_job_failed(mock_result, client: AsyncClient):
    mock_result.return_value = MagicMock(state="FAILURE", result=RuntimeError("worker lost"))
    resp = await client.get("/api/v1/analysis/jobs/job-123")
    data = resp.json()
    assert data["status"] == "failed"
    assert data["error"] == "worker lost"


@pytest.mark.parametrize("state,expected", [
    ("PENDING", "pending"),
    ("STARTED", "running"),
    ("REVOKED", "cancelled"),
])
async def test_job_in_progress(client: AsyncClient, state, expected):
    with patch(_RESULT) as mock_result:
        mock_result.return_value = MagicMock(state=state)
        resp = await client.get("/api/v1/analysis/jobs/job-123")
    assert resp.json()["status"] == expected


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


@patch("netapp.worker.tasks.request_cancellation")
async def test_cancel_job(mock_cancel, client: AsyncClient):
    resp = await client.delete("/api/v1/analysis/jobs/job-123")
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelling"
    mock_cancel.assert_called_once_with("job-123")
