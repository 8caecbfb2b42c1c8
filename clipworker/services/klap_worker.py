"""
Klap Worker - Processes one clip-generation job per invocation.

Each call to :meth:`KlapWorker.run_once`:
1. Reclaims stale jobs left behind by crashed workers
2. Claims the oldest queued job
3. Creates (or resumes) the vendor task
4. Polls the task within a fixed attempt budget and a hard time ceiling
5. Runs the clip pipeline and completes the job

Every terminal outcome is written to the job record. Once a job is claimed
nothing is raised to the caller, so one bad job never blocks the next
invocation. A worker that finds its claim gone (the job was reclaimed as
stale or otherwise settled) stops without touching the record.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from clipworker.config import Settings, get_settings
from clipworker.models import Job
from clipworker.services.clip_pipeline import (
    ClipPipeline,
    NoClipsError,
    ProjectGoneError,
)
from clipworker.services.job_queue import JobQueue
from clipworker.services.klap_client import (
    KlapAPIError,
    KlapClient,
    RateLimitError,
    TaskCreationError,
    TaskState,
    TransientError,
)
from clipworker.services.progress_sink import JobProgressSink, LostClaimError
from clipworker.services.project_service import ProjectService

logger = logging.getLogger(__name__)


class WorkerOutcome(str, Enum):
    NO_WORK = "no_work"
    COMPLETED = "completed"
    FAILED = "failed"
    REMOVED = "removed"
    LOST = "lost"


@dataclass
class WorkerResult:
    """Outcome of one worker invocation."""

    outcome: WorkerOutcome
    message: str
    job_id: Optional[str] = None
    clips_count: int = 0
    reclaimed_jobs: int = 0

    @property
    def success(self) -> bool:
        return self.outcome in (WorkerOutcome.COMPLETED, WorkerOutcome.REMOVED)


class JobFailure(Exception):
    """Ends the current job with a recorded reason."""


class KlapWorker:
    """
    Single-job driver for the clip-generation pipeline.

    Args:
        queue: Durable job queue
        klap_client: Vendor API client
        pipeline: Clip pipeline run once the task is ready
        projects: Project store
        progress: Progress sink writing job state
        settings: Polling policy (defaults to application settings)
    """

    def __init__(
        self,
        queue: JobQueue,
        klap_client: KlapClient,
        pipeline: ClipPipeline,
        projects: ProjectService,
        progress: JobProgressSink,
        settings: Optional[Settings] = None,
    ):
        self.queue = queue
        self.klap_client = klap_client
        self.pipeline = pipeline
        self.projects = projects
        self.progress = progress
        self.settings = settings or get_settings()
        self._clock = time.monotonic

    async def run_once(self) -> WorkerResult:
        """
        Process at most one queued job.

        Storage errors raised before a job is claimed propagate; after the
        claim every outcome is recorded on the job. The invocation ceiling is
        measured from here, so polling and extraction share one budget.
        """
        started = self._clock()
        reclaimed = self.queue.cleanup_stale_jobs()

        job = self.queue.dequeue_next()
        if job is None:
            return WorkerResult(
                outcome=WorkerOutcome.NO_WORK,
                message="No jobs to process",
                reclaimed_jobs=reclaimed,
            )

        logger.info(f"Processing job {job.id} for project {job.project_id}")
        try:
            result = await self._process(job, started)
        except Exception as e:
            logger.exception(f"Job {job.id} crashed: {e}")
            await self.progress.failed(job, f"Unexpected worker error: {e}")
            result = WorkerResult(
                outcome=WorkerOutcome.FAILED,
                message=f"Unexpected worker error: {e}",
                job_id=job.id,
            )

        result.reclaimed_jobs = reclaimed
        return result

    async def _process(self, job: Job, started: float) -> WorkerResult:
        poll_deadline = started + self.settings.poll_window_seconds
        hard_deadline = started + self.settings.max_invocation_seconds

        try:
            if not self.projects.project_exists(job.project_id):
                raise ProjectGoneError(f"Project {job.project_id} no longer exists")

            task_id = await self._ensure_task(job)
            folder_id = await self._poll_until_ready(job, task_id, poll_deadline)

            if not self.projects.project_exists(job.project_id):
                raise ProjectGoneError(f"Project {job.project_id} was deleted while the task was processing")

            await self.progress.report(
                job, self.settings.progress_task_ready, external_folder_id=folder_id
            )
            self._write_project(job.project_id, klap_folder_id=folder_id)

            async def on_clip_progress(value: int) -> None:
                await self.progress.report(job, value)

            clips = await self.pipeline.run(
                job,
                folder_id,
                on_progress=on_clip_progress,
                expired=lambda: self._clock() >= hard_deadline,
            )
            await self.progress.completed(job, clips)

        except LostClaimError as e:
            # The record belongs to whoever settled it; leave it untouched
            logger.warning(f"Abandoning job {job.id}: {e}")
            return WorkerResult(
                outcome=WorkerOutcome.LOST,
                message=f"Job abandoned: {e}",
                job_id=job.id,
            )
        except ProjectGoneError as e:
            logger.info(f"Removing orphaned job {job.id}: {e}")
            self.queue.remove_job(job.id, job.project_id)
            return WorkerResult(
                outcome=WorkerOutcome.REMOVED,
                message=f"Job removed: {e}",
                job_id=job.id,
            )
        except (JobFailure, NoClipsError, KlapAPIError) as e:
            logger.warning(f"Job {job.id} failed: {e}")
            await self.progress.failed(job, str(e))
            return WorkerResult(
                outcome=WorkerOutcome.FAILED,
                message=str(e),
                job_id=job.id,
            )

        return WorkerResult(
            outcome=WorkerOutcome.COMPLETED,
            message=f"Job processed successfully with {len(clips)} clips",
            job_id=job.id,
            clips_count=len(clips),
        )

    async def _ensure_task(self, job: Job) -> str:
        """Create the vendor task, or resume the one already bound to the job."""
        if job.external_task_id:
            logger.info(f"Job {job.id}: resuming Klap task {job.external_task_id}")
            return job.external_task_id

        try:
            task_id = await self.klap_client.create_task(job.source_media_url)
        except TaskCreationError as e:
            raise JobFailure(str(e)) from e

        await self.progress.report(
            job, self.settings.progress_task_created, external_task_id=task_id
        )
        self._write_project(job.project_id, klap_task_id=task_id)
        return task_id

    async def _poll_until_ready(self, job: Job, task_id: str, deadline: float) -> str:
        """
        Poll the vendor task until it is ready.

        Returns:
            Output folder id

        Raises:
            JobFailure: If the vendor reports failure or the budget runs out
        """
        settings = self.settings
        max_attempts = settings.max_poll_attempts
        floor = settings.progress_task_created
        span = settings.progress_task_ready - floor

        attempts = 0
        last_error: Optional[str] = None

        while attempts < max_attempts and self._clock() < deadline:
            try:
                status = await self.klap_client.get_task_status(task_id)
            except RateLimitError as e:
                attempts += settings.rate_limit_attempt_cost
                last_error = str(e)
                # Honour the vendor's Retry-After when it asks for longer
                cooldown = max(settings.rate_limit_cooldown_seconds, e.retry_after or 0)
                logger.warning(
                    f"Job {job.id}: rate limited, cooling down "
                    f"{cooldown:.0f}s ({attempts}/{max_attempts} attempts used)"
                )
                await self._sleep(cooldown, deadline)
                continue
            except TransientError as e:
                attempts += 1
                last_error = str(e)
                logger.warning(f"Job {job.id}: transient poll error ({attempts}/{max_attempts}): {e}")
                await self._sleep(settings.poll_interval_seconds, deadline)
                continue

            if status.state == TaskState.READY and status.output_folder_id:
                logger.info(f"Job {job.id}: Klap task {task_id} ready, folder {status.output_folder_id}")
                return status.output_folder_id

            if status.state == TaskState.FAILED:
                raise JobFailure(f"Clip generation failed: {status.error or 'unknown vendor error'}")

            attempts += 1
            # Stay below the ready milestone until the task actually is ready
            progress = min(floor + (span * attempts) // max_attempts, settings.progress_task_ready - 1)
            await self.progress.report(job, progress)
            await self._sleep(settings.poll_interval_seconds, deadline)

        reason = f"Clip generation timed out after {attempts} poll attempts"
        if last_error:
            reason = f"{reason} (last error: {last_error})"
        raise JobFailure(reason)

    async def _sleep(self, seconds: float, deadline: float) -> None:
        remaining = deadline - self._clock()
        if remaining > 0:
            await asyncio.sleep(min(seconds, remaining))

    def _write_project(self, project_id: str, **fields) -> None:
        try:
            self.projects.update_project(project_id, **fields)
        except Exception as e:
            logger.warning(f"Failed to store {', '.join(fields)} on project {project_id}: {e}")
