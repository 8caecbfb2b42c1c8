"""
Health check endpoints for the clip worker.
"""

from fastapi import APIRouter, Request

from clipworker import __version__
from clipworker.config import get_settings
from clipworker.database import ping
from clipworker.schemas.responses import HealthResponse, ReadinessResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Basic health check endpoint.

    Returns 200 if the service is running.
    """
    return HealthResponse(
        status="healthy",
        version=__version__,
    )


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request):
    """
    Readiness check endpoint.

    The worker is ready when its database answers. A missing vendor key is
    reported but does not block readiness, since enqueue and status routes
    still work.
    """
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        database = "not_initialized"
    else:
        database = "ok" if ping(engine) else "unavailable"

    return ReadinessResponse(
        ready=database == "ok",
        database=database,
        klap_configured=bool(get_settings().klap_api_key),
        details={"queue": "ready" if hasattr(request.app.state, "job_queue") else "not_initialized"},
    )
