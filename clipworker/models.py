"""
Domain records for clip-generation jobs.

These are the worker's working copies. The canonical state lives in the
``clip_jobs`` table and is only changed through :class:`JobQueue`.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class JobStatus(str, Enum):
    """Status of a clip-generation job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class Clip:
    """A fully persisted clip produced by the pipeline."""

    id: str
    title: str
    description: str
    start_time: float
    end_time: float
    duration: float
    thumbnail_url: str
    tags: list[str]
    virality_score: float
    export_url: str
    transcript: str = ""
    vendor_clip_id: Optional[str] = None
    vendor_folder_id: Optional[str] = None
    raw_metadata: dict[str, Any] = field(default_factory=dict)
    created_at: Optional[str] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = datetime.utcnow().isoformat()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Clip":
        return cls(**data)


@dataclass
class Job:
    """Transient copy of a job record held during one worker invocation."""

    id: str
    project_id: str
    source_media_url: str
    status: JobStatus
    progress: int = 0
    attempts: int = 0
    external_task_id: Optional[str] = None
    external_folder_id: Optional[str] = None
    last_polled_at: Optional[datetime] = None
    error: Optional[str] = None
    result: list[Clip] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
