"""
Progress Sink - Write path for job progress and terminal state.

The dashboard polls the job record; the project's ``clips`` task mirrors the
same percentage for project pages. Terminal events can also be pushed to a
webhook. Only the job record is authoritative: project and webhook writes are
best-effort.
"""

import logging
from typing import Optional

from clipworker.models import Clip, Job, JobStatus
from clipworker.services.job_queue import JobQueue
from clipworker.services.project_service import ProjectService
from clipworker.services.webhook_service import WebhookService

logger = logging.getLogger(__name__)

CLIPS_TASK = "clips"


class LostClaimError(Exception):
    """The job is no longer processing under this worker's claim."""


class JobProgressSink:
    """
    Records progress and terminal outcomes for jobs.

    Args:
        queue: Job queue holding the canonical job records
        projects: Project store to mirror task progress onto
        webhook_service: Optional notifier for terminal events
        webhook_url: Callback URL; notifications are skipped when unset
    """

    def __init__(
        self,
        queue: JobQueue,
        projects: ProjectService,
        webhook_service: Optional[WebhookService] = None,
        webhook_url: Optional[str] = None,
    ):
        self.queue = queue
        self.projects = projects
        self.webhook_service = webhook_service
        self.webhook_url = webhook_url

    async def report(
        self,
        job: Job,
        progress: int,
        external_task_id: Optional[str] = None,
        external_folder_id: Optional[str] = None,
    ) -> None:
        """
        Record progress (never backwards) and optional vendor ids.

        Raises:
            LostClaimError: If the job left processing (reclaimed, failed or deleted)
        """
        progress = max(job.progress, min(int(progress), 100))
        updated = self.queue.update(
            job.id,
            progress=progress,
            external_task_id=external_task_id,
            external_folder_id=external_folder_id,
        )
        if updated is None:
            raise LostClaimError(f"Job {job.id} is no longer processing")

        job.progress = updated.progress
        job.external_task_id = updated.external_task_id
        job.external_folder_id = updated.external_folder_id
        job.last_polled_at = updated.last_polled_at

        self._mirror_task(job.project_id, job.progress, "processing")

    async def completed(self, job: Job, clips: list[Clip]) -> None:
        if not self.queue.complete(job.id, clips):
            raise LostClaimError(f"Job {job.id} is no longer processing; result discarded")
        job.status = JobStatus.COMPLETED
        job.progress = 100
        job.result = list(clips)
        await self._notify(job, "job.completed", clips_count=len(clips))

    async def failed(self, job: Job, reason: str) -> None:
        if not self.queue.fail(job.id, reason):
            # Someone else already settled the job; their outcome stands
            logger.warning(f"Job {job.id} not marked failed: no longer processing")
            return
        job.status = JobStatus.FAILED
        job.error = reason
        self._mirror_task(job.project_id, job.progress, "failed")
        await self._notify(job, "job.failed", error=reason)

    def _mirror_task(self, project_id: str, progress: int, status: str) -> None:
        try:
            self.projects.update_task_progress(project_id, CLIPS_TASK, progress, status)
        except Exception as e:
            # Project progress is eventually consistent; the job record is not
            logger.warning(f"Failed to mirror progress onto project {project_id}: {e}")

    async def _notify(
        self,
        job: Job,
        event: str,
        error: Optional[str] = None,
        clips_count: Optional[int] = None,
    ) -> None:
        if not self.webhook_service or not self.webhook_url:
            return
        payload = self.webhook_service.build_payload(
            event=event,
            job_id=job.id,
            project_id=job.project_id,
            status=job.status.value,
            progress_percent=job.progress,
            error=error,
            clips_count=clips_count,
        )
        result = await self.webhook_service.send(self.webhook_url, payload)
        if not result.success:
            logger.warning(f"Notification {event} for job {job.id} not delivered: {result.error}")
