"""
Response schemas for the clip worker API.

Field names are camelCase on the wire to match the dashboard client.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from clipworker.models import Clip, Job


class ClipResponse(BaseModel):
    """A stored clip."""

    id: str
    title: str
    description: str = ""
    start_time: float = Field(..., alias="startTime")
    end_time: float = Field(..., alias="endTime")
    duration: float
    thumbnail_url: str = Field(..., alias="thumbnailUrl")
    tags: list[str] = Field(default_factory=list)
    virality_score: float = Field(..., ge=0.0, le=1.0, alias="viralityScore")
    export_url: str = Field(..., alias="exportUrl")
    transcript: str = ""

    class Config:
        populate_by_name = True

    @classmethod
    def from_clip(cls, clip: Clip) -> "ClipResponse":
        return cls(
            id=clip.id,
            title=clip.title,
            description=clip.description,
            start_time=clip.start_time,
            end_time=clip.end_time,
            duration=clip.duration,
            thumbnail_url=clip.thumbnail_url,
            tags=clip.tags,
            virality_score=clip.virality_score,
            export_url=clip.export_url,
            transcript=clip.transcript,
        )


class JobResponse(BaseModel):
    """Current state of a clip-generation job."""

    job_id: str = Field(..., alias="jobId")
    project_id: str = Field(..., alias="projectId")
    status: str = Field(..., description="queued, processing, completed or failed")
    progress: int = Field(..., ge=0, le=100)
    attempts: int = 0
    external_task_id: Optional[str] = Field(default=None, alias="externalTaskId")
    external_folder_id: Optional[str] = Field(default=None, alias="externalFolderId")
    error: Optional[str] = None
    clips: list[ClipResponse] = Field(default_factory=list)
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")
    started_at: Optional[datetime] = Field(default=None, alias="startedAt")

    class Config:
        populate_by_name = True

    @classmethod
    def from_job(cls, job: Job) -> "JobResponse":
        return cls(
            job_id=job.id,
            project_id=job.project_id,
            status=job.status.value,
            progress=job.progress,
            attempts=job.attempts,
            external_task_id=job.external_task_id,
            external_folder_id=job.external_folder_id,
            error=job.error,
            clips=[ClipResponse.from_clip(c) for c in job.result],
            created_at=job.created_at,
            updated_at=job.updated_at,
            started_at=job.started_at,
        )


class WorkerRunResponse(BaseModel):
    """Outcome of one worker invocation; only ``message`` is set when idle."""

    success: Optional[bool] = None
    job_id: Optional[str] = Field(default=None, alias="jobId")
    outcome: Optional[str] = None
    message: str
    clips_count: Optional[int] = Field(default=None, alias="clipsCount")

    class Config:
        populate_by_name = True


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service status")
    version: str = Field(..., description="Service version")


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool = Field(..., description="Whether the service is ready to accept requests")
    database: str = Field(..., description="Database status")
    klap_configured: bool = Field(..., alias="klapConfigured")
    details: dict[str, Any] = Field(default_factory=dict)

    class Config:
        populate_by_name = True
