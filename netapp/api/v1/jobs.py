"""Background analysis jobs.

Provides:
- POST /analysis/jobs: queue any study on the Celery worker
- GET /analysis/jobs/{job_id}: poll a job
- DELETE /analysis/jobs/{job_id}: cancel a job
"""

from celery.result import AsyncResult
from fastapi import APIRouter, HTTPException, status
from pydantic import ValidationError

from netapp.schemas.analysis import JobRequest, JobStatus, JobSubmitted
from netapp.services.studies import STUDIES
from netapp.worker import celery_app

router = APIRouter()

_STATES = {
    "PENDING": "pending",
    "RECEIVED": "pending",
    "STARTED": "running",
    "RETRY": "running",
    "FAILURE": "failed",
    "REVOKED": "cancelled",
}


@router.post("/jobs", response_model=JobSubmitted, status_code=status.HTTP_202_ACCEPTED)
async def submit_job(body: JobRequest):
    """Validate the study payload now, run the study on the worker."""
    from netapp.worker.tasks import run_analysis_study

    request_model, _ = STUDIES[body.study]
    try:
        request_model.model_validate(body.payload)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=e.errors(include_url=False, include_context=False),
        )

    task = run_analysis_study.delay(body.study, body.payload)
    return JobSubmitted(job_id=task.id, study=body.study, status="queued")


@router.get("/jobs/{job_id}", response_model=JobStatus)
async def get_job(job_id: str):
    result = AsyncResult(job_id, app=celery_app)
    if result.state == "SUCCESS":
        outcome = result.result or {}
        return JobStatus(
            job_id=job_id,
            status=outcome.get("status", "completed"),
            result=outcome.get("result"),
        )
    if result.state == "FAILURE":
        return JobStatus(job_id=job_id, status="failed", error=str(result.result))
    return JobStatus(job_id=job_id, status=_STATES.get(result.state, result.state.lower()))


@router.delete("/jobs/{job_id}", response_model=JobStatus)
async def cancel_job(job_id: str):
    """Request cancellation; a running study stops at its next iteration check."""
    from netapp.worker.tasks import request_cancellation

    request_cancellation(job_id)
    return JobStatus(job_id=job_id, status="cancelling")
