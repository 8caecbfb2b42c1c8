"""
Pydantic schemas for request/response models.
"""

from clipworker.schemas.requests import EnqueueJobRequest
from clipworker.schemas.responses import (
    ClipResponse,
    ErrorResponse,
    HealthResponse,
    JobResponse,
    ReadinessResponse,
    WorkerRunResponse,
)

__all__ = [
    "EnqueueJobRequest",
    "ClipResponse",
    "JobResponse",
    "WorkerRunResponse",
    "ErrorResponse",
    "HealthResponse",
    "ReadinessResponse",
]
