"""
Job Queue - Durable store of clip-generation jobs.

The ``clip_jobs`` table is the queue. Every operation is a short transaction
keyed by job id; the only cross-worker race is the claim in
:meth:`JobQueue.dequeue_next`, which the database settles with a conditional
UPDATE so that exactly one invocation owns a job.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import sessionmaker

from clipworker.database import JobRecord
from clipworker.models import Clip, Job, JobStatus

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (JobStatus.QUEUED.value, JobStatus.PROCESSING.value)


def _to_job(record: JobRecord) -> Job:
    return Job(
        id=record.id,
        project_id=record.project_id,
        source_media_url=record.source_media_url,
        status=JobStatus(record.status),
        progress=record.progress or 0,
        attempts=record.attempts or 0,
        external_task_id=record.external_task_id,
        external_folder_id=record.external_folder_id,
        last_polled_at=record.last_polled_at,
        error=record.error,
        result=[Clip.from_dict(c) for c in (record.result or [])],
        created_at=record.created_at,
        updated_at=record.updated_at,
        started_at=record.started_at,
    )


class JobQueue:
    """
    Durable job queue backed by SQLAlchemy.

    Args:
        session_factory: sessionmaker bound to the queue database
        stale_after_seconds: heartbeat age after which a processing job is
            considered abandoned by its worker
    """

    def __init__(self, session_factory: sessionmaker, stale_after_seconds: float):
        self._session_factory = session_factory
        self.stale_after_seconds = stale_after_seconds

    def enqueue(self, project_id: str, source_media_url: str) -> Job:
        """
        Create a queued job for a project.

        If the project already has a queued or processing job, that job is
        returned instead of queueing a duplicate conversion.
        """
        with self._session_factory.begin() as session:
            existing = session.execute(
                select(JobRecord)
                .where(JobRecord.project_id == project_id, JobRecord.status.in_(ACTIVE_STATUSES))
                .order_by(JobRecord.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            if existing is not None:
                logger.info(f"Returning existing active job {existing.id} for project {project_id}")
                return _to_job(existing)

            now = datetime.utcnow()
            record = JobRecord(
                id=f"job_{uuid.uuid4().hex}",
                project_id=project_id,
                source_media_url=source_media_url,
                status=JobStatus.QUEUED.value,
                progress=0,
                attempts=0,
                created_at=now,
                updated_at=now,
            )
            session.add(record)
            session.flush()
            logger.info(f"Job {record.id} queued for project {project_id}")
            return _to_job(record)

    def dequeue_next(self) -> Optional[Job]:
        """
        Atomically claim the oldest queued job and move it to processing.

        Returns None only when no job is queued. A lost race means another
        worker claimed that candidate, so the loop moves on to the next one.
        """
        while True:
            with self._session_factory.begin() as session:
                candidate_id = session.execute(
                    select(JobRecord.id)
                    .where(JobRecord.status == JobStatus.QUEUED.value)
                    .order_by(JobRecord.created_at, JobRecord.id)
                    .limit(1)
                    .with_for_update(skip_locked=True)
                ).scalar_one_or_none()
                if candidate_id is None:
                    return None

                now = datetime.utcnow()
                claimed = session.execute(
                    update(JobRecord)
                    .where(
                        JobRecord.id == candidate_id,
                        JobRecord.status == JobStatus.QUEUED.value,
                    )
                    .values(
                        status=JobStatus.PROCESSING.value,
                        attempts=JobRecord.attempts + 1,
                        last_polled_at=now,
                        started_at=now,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if claimed.rowcount != 1:
                    logger.debug(f"Lost claim race for job {candidate_id}, retrying")
                    continue

                record = session.get(JobRecord, candidate_id)
                logger.info(f"Claimed job {candidate_id} (attempt {record.attempts})")
                return _to_job(record)

    def update(
        self,
        job_id: str,
        progress: Optional[int] = None,
        external_task_id: Optional[str] = None,
        external_folder_id: Optional[str] = None,
    ) -> Optional[Job]:
        """
        Merge progress/vendor ids into a processing job and refresh its heartbeat.

        Progress never moves backwards and the external task id is written
        only once. Returns None if the job no longer exists or is not
        processing.
        """
        with self._session_factory.begin() as session:
            record = session.get(JobRecord, job_id)
            if record is None:
                logger.warning(f"Job {job_id} not found for update")
                return None
            if record.status != JobStatus.PROCESSING.value:
                logger.warning(f"Ignoring update for job {job_id} in status {record.status}")
                return None

            if progress is not None:
                record.progress = max(record.progress or 0, min(int(progress), 100))
            if external_task_id is not None:
                if record.external_task_id is None:
                    record.external_task_id = external_task_id
                elif record.external_task_id != external_task_id:
                    logger.warning(
                        f"Job {job_id} already bound to task {record.external_task_id}, "
                        f"ignoring {external_task_id}"
                    )
            if external_folder_id is not None:
                record.external_folder_id = external_folder_id

            now = datetime.utcnow()
            record.last_polled_at = now
            record.updated_at = now
            return _to_job(record)

    def complete(self, job_id: str, clips: list[Clip]) -> bool:
        """Mark a processing job completed with its clips. Terminal."""
        with self._session_factory.begin() as session:
            record = session.get(JobRecord, job_id)
            if record is None or record.status != JobStatus.PROCESSING.value:
                logger.warning(f"Cannot complete job {job_id}: not processing")
                return False

            now = datetime.utcnow()
            record.status = JobStatus.COMPLETED.value
            record.progress = 100
            record.result = [clip.to_dict() for clip in clips]
            record.error = None
            record.last_polled_at = now
            record.updated_at = now
        logger.info(f"Job {job_id} completed with {len(clips)} clips")
        return True

    def fail(self, job_id: str, reason: str) -> bool:
        """Mark a processing job failed with a reason. Terminal."""
        with self._session_factory.begin() as session:
            record = session.get(JobRecord, job_id)
            if record is None:
                logger.warning(f"Job {job_id} not found, cannot mark failed")
                return False
            if record.status != JobStatus.PROCESSING.value:
                logger.warning(f"Cannot fail job {job_id} in status {record.status}: not processing")
                return False

            record.status = JobStatus.FAILED.value
            record.error = reason
            record.updated_at = datetime.utcnow()
        logger.info(f"Job {job_id} failed: {reason}")
        return True

    def remove_job(self, job_id: str, project_id: str) -> bool:
        """Hard-delete a job whose owning project no longer exists."""
        with self._session_factory.begin() as session:
            record = session.get(JobRecord, job_id)
            if record is None or record.project_id != project_id:
                return False
            session.delete(record)
        logger.info(f"Removed job {job_id} for project {project_id}")
        return True

    def cleanup_stale_jobs(self) -> int:
        """
        Fail processing jobs whose worker stopped sending heartbeats.

        Returns:
            Number of jobs reclaimed
        """
        now = datetime.utcnow()
        cutoff = now - timedelta(seconds=self.stale_after_seconds)
        with self._session_factory.begin() as session:
            result = session.execute(
                update(JobRecord)
                .where(
                    JobRecord.status == JobStatus.PROCESSING.value,
                    JobRecord.last_polled_at < cutoff,
                )
                .values(
                    status=JobStatus.FAILED.value,
                    error=(
                        f"Job timed out: no worker heartbeat for "
                        f"{self.stale_after_seconds:.0f} seconds"
                    ),
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            count = result.rowcount or 0
        if count:
            logger.warning(f"Reclaimed {count} stale job(s)")
        return count

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._session_factory() as session:
            record = session.get(JobRecord, job_id)
            return _to_job(record) if record else None

    def get_job_for_project(self, project_id: str) -> Optional[Job]:
        """Latest job for a project, whatever its status."""
        with self._session_factory() as session:
            record = session.execute(
                select(JobRecord)
                .where(JobRecord.project_id == project_id)
                .order_by(JobRecord.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            return _to_job(record) if record else None
