"""
Job endpoints: enqueue a clip-generation job and read its status.

The dashboard polls these routes while the worker makes progress.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from clipworker.auth import verify_api_key
from clipworker.schemas.requests import EnqueueJobRequest
from clipworker.schemas.responses import JobResponse
from clipworker.services.job_queue import JobQueue
from clipworker.services.project_service import ProjectService

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# Dependencies
# ============================================================================


async def get_job_queue(request: Request) -> JobQueue:
    """Get the job queue from app state (initialized at startup)."""
    if not hasattr(request.app.state, "job_queue"):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job queue not initialized",
        )
    return request.app.state.job_queue


async def get_project_service(request: Request) -> ProjectService:
    """Get the project store from app state (initialized at startup)."""
    if not hasattr(request.app.state, "project_service"):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Project store not initialized",
        )
    return request.app.state.project_service


# ============================================================================
# Endpoints
# ============================================================================


@router.post("/jobs", response_model=JobResponse, status_code=status.HTTP_202_ACCEPTED)
async def enqueue_job(
    body: EnqueueJobRequest,
    queue: JobQueue = Depends(get_job_queue),
    projects: ProjectService = Depends(get_project_service),
    _: None = Depends(verify_api_key),
) -> JobResponse:
    """
    Queue clip generation for a project.

    Returns the project's active job instead of a new one if a conversion is
    already queued or running.
    """
    if not projects.project_exists(body.project_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Project {body.project_id} not found",
        )

    job = queue.enqueue(body.project_id, body.source_media_url)
    projects.update_task_progress(body.project_id, "clips", job.progress, job.status.value)
    logger.info(f"Enqueued job {job.id} for project {body.project_id}")
    return JobResponse.from_job(job)


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job_status(
    job_id: str,
    queue: JobQueue = Depends(get_job_queue),
    _: None = Depends(verify_api_key),
) -> JobResponse:
    """Get the current state of a job."""
    job = queue.get_job(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found",
        )
    return JobResponse.from_job(job)


@router.get("/projects/{project_id}/job", response_model=JobResponse)
async def get_project_job(
    project_id: str,
    queue: JobQueue = Depends(get_job_queue),
    _: None = Depends(verify_api_key),
) -> JobResponse:
    """Get the most recent job for a project."""
    job = queue.get_job_for_project(project_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No job found for project {project_id}",
        )
    return JobResponse.from_job(job)
