"""
Clip Pipeline - Turns a ready vendor folder into persisted clips.

For each clip reference, sequentially:
1. Fetch details (best effort)
2. Export the clip to a downloadable URL
3. Download the exported bytes
4. Upload the bytes to durable storage
5. Assemble the Clip record

A clip that fails at any step from 2 to 4 is dropped and the pipeline moves
on. Clips are processed one at a time because the vendor rate-limits
concurrent exports aggressively.
"""

import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

from clipworker.config import get_settings
from clipworker.models import Clip, Job
from clipworker.services.klap_client import ClipReference, KlapAPIError, KlapClient
from clipworker.services.project_service import ProjectNotFoundError, ProjectService
from clipworker.services.storage_service import StorageService, StorageUploadError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], Awaitable[None]]


class ClipPipelineError(Exception):
    """Base exception for pipeline failures that end the job."""


class NoClipsError(ClipPipelineError):
    """No clip survived the pipeline."""


class ProjectGoneError(ClipPipelineError):
    """The owning project was deleted while the job was running."""


class ClipDownloadError(Exception):
    """An exported clip could not be downloaded."""


def _as_float(value: Any, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _virality_score(details: dict[str, Any]) -> float:
    """Vendor scores are 0-100; clips store 0-1."""
    raw = details.get("virality_score")
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return 0.5
    return max(0.0, min(raw / 100.0, 1.0))


class ClipPipeline:
    """
    Per-folder fan-out from clip references to stored clips.

    Args:
        klap_client: Vendor API client
        storage: Durable storage for clip bytes
        projects: Project store receiving the final clip set
        transport: Optional httpx transport for downloads (tests)
    """

    def __init__(
        self,
        klap_client: KlapClient,
        storage: StorageService,
        projects: ProjectService,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = get_settings()
        self.klap_client = klap_client
        self.storage = storage
        self.projects = projects
        self._transport = transport

    async def run(
        self,
        job: Job,
        folder_id: str,
        on_progress: Optional[ProgressCallback] = None,
        expired: Optional[Callable[[], bool]] = None,
    ) -> list[Clip]:
        """
        Export, store and record every clip of a folder.

        Args:
            job: Job being processed
            folder_id: Vendor output folder holding the clips
            on_progress: Awaited with the overall percentage after each clip
            expired: Checked before each clip; once true the remaining clips are skipped

        Returns:
            Clips in the order of their references, failed ones omitted

        Raises:
            NoClipsError: If the folder is empty or every clip failed
            ProjectGoneError: If the project disappeared before the final write
            KlapAPIError: If the folder cannot be listed
        """
        project_id = job.project_id
        references = await self.klap_client.list_clips(folder_id)
        if not references:
            raise NoClipsError("No clips generated")

        total = len(references)
        start = self.settings.progress_task_ready
        span = self.settings.progress_clips_done - start
        logger.info(f"Job {job.id}: processing {total} clips from folder {folder_id}")

        clips: list[Clip] = []
        for index, clip_ref in enumerate(references):
            if expired is not None and expired():
                logger.warning(
                    f"Job {job.id}: invocation time exhausted, skipping {total - index} of {total} clips"
                )
                if not clips:
                    raise NoClipsError(f"Clip extraction timed out before any of {total} clips were stored")
                break

            clip = await self._process_clip(project_id, folder_id, clip_ref, index)
            if clip is not None:
                clips.append(clip)

            if on_progress is not None:
                await on_progress(start + (span * (index + 1)) // total)

        if not clips:
            raise NoClipsError(f"All {total} clips failed to export")

        logger.info(f"Job {job.id}: {len(clips)}/{total} clips stored")
        self._persist(project_id, clips)
        return clips

    async def _process_clip(
        self,
        project_id: str,
        folder_id: str,
        clip_ref: ClipReference,
        index: int,
    ) -> Optional[Clip]:
        details = await self._fetch_details(folder_id, clip_ref)

        try:
            download_url = await self.klap_client.export_clip(folder_id, clip_ref)
        except KlapAPIError as e:
            logger.error(f"Skipping clip {clip_ref.id}: {e}")
            return None

        try:
            data = await self._download(download_url)
        except ClipDownloadError as e:
            logger.error(f"Skipping clip {clip_ref.id}: {e}")
            return None

        try:
            upload = await self.storage.upload_clip(project_id, index, data)
        except StorageUploadError as e:
            logger.error(f"Skipping clip {clip_ref.id}: {e}")
            return None

        return self._build_clip(project_id, folder_id, clip_ref, index, details, upload.public_url)

    async def _fetch_details(self, folder_id: str, clip_ref: ClipReference) -> dict[str, Any]:
        try:
            details = await self.klap_client.get_clip_details(folder_id, clip_ref)
        except KlapAPIError as e:
            logger.warning(f"Using default metadata for clip {clip_ref.id}: {e}")
            details = {}
        # Listing entries sometimes carry metadata the details call lacks
        return {**clip_ref.raw, **details}

    async def _download(self, url: str) -> bytes:
        """Stream an exported clip into memory."""
        data = bytearray()
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.download_timeout_seconds,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                async with client.stream("GET", url) as response:
                    if response.status_code >= 300:
                        raise ClipDownloadError(f"Failed to download clip: HTTP {response.status_code}")
                    async for chunk in response.aiter_bytes():
                        data.extend(chunk)
        except httpx.HTTPError as e:
            raise ClipDownloadError(f"Failed to download clip: {e}") from e

        if not data:
            raise ClipDownloadError("Downloaded clip is empty")
        return bytes(data)

    def _build_clip(
        self,
        project_id: str,
        folder_id: str,
        clip_ref: ClipReference,
        index: int,
        details: dict[str, Any],
        export_url: str,
    ) -> Clip:
        start_time = _as_float(details.get("start_time"), 0.0)
        end_time = _as_float(details.get("end_time"), 0.0)
        tags = details.get("tags")
        return Clip(
            id=f"{project_id}_clip_{index}",
            title=details.get("title") or details.get("name") or f"Clip {index + 1}",
            description=details.get("virality_score_explanation") or details.get("description") or "",
            start_time=start_time,
            end_time=end_time,
            duration=_as_float(details.get("duration"), 30.0),
            thumbnail_url=details.get("thumbnail") or f"https://klap.app/player/{clip_ref.id}/thumbnail",
            tags=list(tags) if isinstance(tags, list) else [],
            virality_score=_virality_score(details),
            export_url=export_url,
            transcript=details.get("transcript") or details.get("transcript_text") or "",
            vendor_clip_id=clip_ref.id,
            vendor_folder_id=folder_id,
            raw_metadata=details,
        )

    def _persist(self, project_id: str, clips: list[Clip]) -> None:
        """Overwrite the project's clips folder and close its clips task."""
        project = self.projects.get_project(project_id)
        if project is None:
            raise ProjectGoneError(f"Project {project_id} was deleted during clip extraction")

        folders = dict(project.get("folders") or {})
        folders["clips"] = [clip.to_dict() for clip in clips]
        try:
            self.projects.update_project(project_id, folders=folders)
        except ProjectNotFoundError as e:
            raise ProjectGoneError(str(e)) from e

        self.projects.update_task_progress(project_id, "clips", 100, "completed")
