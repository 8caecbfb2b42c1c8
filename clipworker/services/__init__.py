"""
Services for the clip worker.

Includes:
- Job queue and project store (SQLAlchemy)
- Klap API client, clip pipeline and worker loop
- S3 storage and webhook notifications
"""

from clipworker.services.clip_pipeline import ClipPipeline
from clipworker.services.job_queue import JobQueue
from clipworker.services.klap_client import KlapClient
from clipworker.services.klap_worker import KlapWorker, WorkerOutcome, WorkerResult
from clipworker.services.progress_sink import JobProgressSink
from clipworker.services.project_service import ProjectNotFoundError, ProjectService
from clipworker.services.storage_service import StorageService
from clipworker.services.webhook_service import WebhookService

__all__ = [
    # Persistence
    "JobQueue",
    "ProjectService",
    "ProjectNotFoundError",
    # Clip generation
    "KlapClient",
    "ClipPipeline",
    "KlapWorker",
    "WorkerOutcome",
    "WorkerResult",
    "JobProgressSink",
    # Delivery
    "StorageService",
    "WebhookService",
]
