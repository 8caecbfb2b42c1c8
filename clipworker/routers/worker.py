"""
Worker endpoint invoked by the external scheduler.

Each POST processes at most one queued job and blocks until that job reaches
a terminal state (or is removed). The scheduler keeps calling until the
response says there is nothing left to do.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from clipworker.auth import verify_worker_secret
from clipworker.schemas.responses import ErrorResponse, WorkerRunResponse
from clipworker.services.klap_worker import KlapWorker, WorkerOutcome

logger = logging.getLogger(__name__)

router = APIRouter()


async def get_klap_worker(request: Request) -> KlapWorker:
    """Get the worker from app state (initialized at startup)."""
    if not hasattr(request.app.state, "klap_worker"):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Worker not initialized",
        )
    return request.app.state.klap_worker


@router.post(
    "/klap",
    response_model=WorkerRunResponse,
    response_model_exclude_none=True,
    responses={500: {"model": ErrorResponse}},
)
async def run_klap_worker(
    worker: KlapWorker = Depends(get_klap_worker),
    _: None = Depends(verify_worker_secret),
):
    """
    Process the next queued clip-generation job.

    Returns ``{"message": "No jobs to process"}`` when the queue is empty.
    """
    try:
        result = await worker.run_once()
    except Exception as e:
        # Only reachable before a job is claimed (queue store unavailable)
        logger.exception(f"Worker invocation failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": str(e)},
        )

    if result.reclaimed_jobs:
        logger.info(f"Reclaimed {result.reclaimed_jobs} stale jobs")

    if result.outcome == WorkerOutcome.NO_WORK:
        return WorkerRunResponse(message=result.message)

    return WorkerRunResponse(
        success=result.success,
        job_id=result.job_id,
        outcome=result.outcome.value,
        message=result.message,
        clips_count=result.clips_count if result.outcome == WorkerOutcome.COMPLETED else None,
    )
