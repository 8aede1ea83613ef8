"""Generation job API endpoints.

- POST /api/jobs - Submit a generation request (returns immediately with the job id)
- GET /api/jobs - List the caller's jobs, newest first
- GET /api/jobs/{job_id} - Read one job's status

The caller's identity comes from the X-Owner-Id header set upstream.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from mediagen.api.dependencies import get_current_owner_id, get_job_service
from mediagen.models.generation_job import JobStatus
from mediagen.services.exceptions import (
    ForbiddenError,
    InsufficientCreditsError,
    NotFoundError,
    ValidationError,
)
from mediagen.services.jobs import JobService, JobStatusView

logger = structlog.get_logger()
router = APIRouter(prefix="/api/jobs", tags=["jobs"])


# Request/Response Models


class SubmitJobRequest(BaseModel):
    """Request model for a generation submission."""

    prompt: str = Field(..., description="Text prompt for generation")
    mode: str = Field(
        ...,
        description="Generation mode (image, video, first_last_frame_video)",
    )
    auxiliary_inputs: list[str] = Field(
        default_factory=list,
        description="Input image URLs, one per slot the mode requires (start, end)",
    )


class SubmitJobResponse(BaseModel):
    job_id: UUID = Field(..., description="Identifier of the created job")


class JobStatusResponse(BaseModel):
    """Response model for a job status read."""

    job_id: UUID
    status: JobStatus = Field(
        ...,
        description="pending, processing, completed or failed",
    )
    mode: str
    created_at: datetime
    result_url: Optional[str] = Field(
        default=None,
        description="Permanent URL of the result (completed jobs only)",
    )
    error: Optional[str] = Field(
        default=None,
        description="Failure reason (failed jobs only)",
    )

    @classmethod
    def from_view(cls, view: JobStatusView) -> "JobStatusResponse":
        return cls(
            job_id=view.job_id,
            status=view.status,
            mode=view.mode.value,
            created_at=view.created_at,
            result_url=view.result_url,
            error=view.error,
        )


class JobsResponse(BaseModel):
    """Response model for paginated jobs list."""

    jobs: list[JobStatusResponse]
    total: int = Field(..., description="Total number of jobs matching query (across all pages)")
    offset: int
    limit: int


# API Endpoints


@router.post("", response_model=SubmitJobResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_job(
    request: SubmitJobRequest,
    owner_id: UUID = Depends(get_current_owner_id),
    job_service: JobService = Depends(get_job_service),
) -> SubmitJobResponse:
    """Submit a generation request.

    Debits the mode's credit cost and creates a pending job. Generation runs
    asynchronously; poll GET /api/jobs/{job_id} for the outcome.

    Raises:
        HTTPException 400: Invalid prompt, mode or auxiliary inputs
        HTTPException 402: Not enough credits
    """
    try:
        job_id = await job_service.submit(
            owner_id=owner_id,
            prompt=request.prompt,
            mode=request.mode,
            auxiliary_inputs=request.auxiliary_inputs,
        )
    except ValidationError as e:
        logger.info("job_submission_rejected", owner_id=str(owner_id), error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except InsufficientCreditsError as e:
        raise HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=str(e))

    return SubmitJobResponse(job_id=job_id)


@router.get("", response_model=JobsResponse, status_code=status.HTTP_200_OK)
async def list_jobs(
    status_filter: Optional[JobStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    owner_id: UUID = Depends(get_current_owner_id),
    job_service: JobService = Depends(get_job_service),
) -> JobsResponse:
    """List the caller's jobs, newest first, optionally filtered by status."""
    views, total = await job_service.list_jobs(
        owner_id, status=status_filter, limit=limit, offset=offset
    )
    return JobsResponse(
        jobs=[JobStatusResponse.from_view(view) for view in views],
        total=total,
        offset=offset,
        limit=limit,
    )


@router.get("/{job_id}", response_model=JobStatusResponse, status_code=status.HTTP_200_OK)
async def get_job_status(
    job_id: UUID,
    owner_id: UUID = Depends(get_current_owner_id),
    job_service: JobService = Depends(get_job_service),
) -> JobStatusResponse:
    """Read one job's status. Safe to call at any frequency.

    Raises:
        HTTPException 403: Job belongs to another owner
        HTTPException 404: Job not found
    """
    try:
        view = await job_service.get_status(job_id, owner_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ForbiddenError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))

    return JobStatusResponse.from_view(view)
