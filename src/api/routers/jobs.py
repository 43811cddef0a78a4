"""
Jobs router for grant job control.

Endpoints:
- GET /jobs/{job_name}/status
- POST /jobs/{job_name}/run    one invocation
- POST /jobs/{job_name}/start  enable continuous mode, then run
- POST /jobs/{job_name}/stop   disable continuous mode, cancel re-invocations

Run and start block until the invocation ends, so they are plain (threadpool)
handlers.
"""

import logging

from fastapi import APIRouter, HTTPException

from src.grants.entities import StepResult
from src.grants.errors import ConfigurationError, JobNotFoundError

from ..schemas.jobs import (
    JobStatusResponse,
    JobStopResponse,
    StepResultResponse,
)
from .._service_state import get_grant_service


logger = logging.getLogger(__name__)

router = APIRouter()


def _to_response(result: StepResult) -> StepResultResponse:
    return StepResultResponse(**result.to_dict())


@router.get("/{job_name}/status", response_model=JobStatusResponse)
def job_status(job_name: str):
    """Current cursor, continuous flag and next scheduled run."""
    try:
        return JobStatusResponse(**get_grant_service().status(job_name))
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{job_name}/run", response_model=StepResultResponse)
def run_job(job_name: str):
    """Run one invocation of the job."""
    try:
        return _to_response(get_grant_service().run_once(job_name))
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/{job_name}/start", response_model=StepResultResponse)
def start_job(job_name: str):
    """Enable continuous mode and run the first invocation."""
    try:
        return _to_response(get_grant_service().start(job_name))
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/{job_name}/stop", response_model=JobStopResponse)
def stop_job(job_name: str):
    """
    Stop automatic resumption.

    Idempotent; completed grants are not rolled back and the cursor is kept.
    """
    try:
        removed = get_grant_service().stop(job_name)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return JobStopResponse(
        job_name=job_name,
        success=True,
        cancelled_triggers=removed,
        message="Continuous mode disabled",
    )
