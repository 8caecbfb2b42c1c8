"""
Klap API Client - Thin adapter over the Klap v2 video-to-shorts REST API.

Task-based workflow:
1. Create a video-to-shorts task for a source video URL
2. Poll the task until it is ready and exposes an output folder
3. List the clip references in the folder
4. Export each clip to a downloadable URL

The client keeps no state between calls. Errors are classified so the worker
can tell retryable failures (5xx, network, 429) from fatal ones.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import httpx

from clipworker.config import get_settings

logger = logging.getLogger(__name__)


class KlapAPIError(Exception):
    """Base exception for Klap API failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TaskCreationError(KlapAPIError):
    """The vendor refused or failed to create a task. Fatal for the job."""


class TransientError(KlapAPIError):
    """5xx or network failure. Safe to retry."""


class RateLimitError(KlapAPIError):
    """HTTP 429. Retry only after a cooldown."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class ExportError(KlapAPIError):
    """A clip could not be exported. Fatal for that clip only."""


class TaskState(str, Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


@dataclass
class TaskStatus:
    """Normalized vendor task status."""

    state: TaskState
    output_folder_id: Optional[str] = None
    error: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class ClipReference:
    """Opaque vendor-side identifier of one produced clip."""

    id: str
    raw: dict[str, Any] = field(default_factory=dict)


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class KlapClient:
    """
    Async client for the Klap v2 API.

    Args:
        api_key: Klap API key (defaults to settings)
        base_url: API base URL (defaults to settings)
        transport: Optional httpx transport (used to inject a mock in tests)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = get_settings()
        self.api_key = api_key if api_key is not None else self.settings.klap_api_key
        self.base_url = (base_url or self.settings.klap_api_url).rstrip("/")
        self.timeout = self.settings.klap_request_timeout_seconds
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise KlapAPIError("Clip generation service is not configured: KLAP_API_KEY is missing")
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "User-Agent": f"{self.settings.app_name}/1.0",
        }

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> Any:
        """
        Perform an authenticated request and classify failures.

        Raises:
            RateLimitError: On HTTP 429
            TransientError: On 5xx, timeouts and connection errors
            KlapAPIError: On any other non-2xx response or invalid JSON
        """
        headers = self._headers()
        url = f"{self.base_url}{path}"
        logger.debug(f"Klap request: {method} {url}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, json=json, headers=headers)
        except httpx.TimeoutException as e:
            raise TransientError(f"Klap API request timed out: {method} {path}") from e
        except httpx.RequestError as e:
            raise TransientError(f"Klap API network error: {e}") from e

        if response.status_code == 429:
            raise RateLimitError(
                "Klap API rate limit exceeded",
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )
        if response.status_code >= 500:
            raise TransientError(
                f"Klap API unavailable: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            detail = response.text[:200]
            try:
                body = response.json()
                detail = body.get("message") or body.get("error") or detail
            except ValueError:
                pass
            raise KlapAPIError(
                f"Klap API error: HTTP {response.status_code} - {detail}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise KlapAPIError(f"Klap API returned invalid JSON for {method} {path}") from e

    async def create_task(self, media_url: str) -> str:
        """
        Create a video-to-shorts task.

        Returns:
            Vendor task id

        Raises:
            TaskCreationError: On any failure, including transient ones
        """
        payload = {
            "source_video_url": media_url,
            "language": self.settings.klap_language,
            "max_duration": self.settings.klap_max_clip_duration,
            "max_clip_count": self.settings.klap_max_clip_count,
            "editing_options": {
                "intro_title": False,
            },
        }
        try:
            data = await self._request("POST", "/tasks/video-to-shorts", json=payload)
        except TaskCreationError:
            raise
        except KlapAPIError as e:
            raise TaskCreationError(f"Failed to create Klap task: {e}", status_code=e.status_code) from e

        task_id = data.get("id") if isinstance(data, dict) else None
        if not task_id:
            raise TaskCreationError("Klap task creation returned no task id")

        logger.info(f"Created Klap task {task_id}")
        return task_id

    async def get_task_status(self, task_id: str) -> TaskStatus:
        """Fetch and normalize the status of a task."""
        data = await self._request("GET", f"/tasks/{task_id}")
        if not isinstance(data, dict):
            raise KlapAPIError(f"Unexpected task status payload for {task_id}")

        vendor_status = str(data.get("status", "")).lower()
        if vendor_status == "ready":
            state = TaskState.READY
        elif vendor_status in ("error", "failed"):
            state = TaskState.FAILED
        else:
            state = TaskState.PENDING

        return TaskStatus(
            state=state,
            output_folder_id=data.get("output_id"),
            error=data.get("error") or data.get("message"),
            raw=data,
        )

    async def list_clips(self, folder_id: str) -> list[ClipReference]:
        """List the clip references produced in an output folder."""
        data = await self._request("GET", f"/projects/{folder_id}")
        if isinstance(data, dict):
            # Some responses wrap the list
            data = data.get("projects") or data.get("clips") or []

        references = []
        for item in data or []:
            if isinstance(item, str) and item:
                references.append(ClipReference(id=item))
            elif isinstance(item, dict) and item.get("id"):
                references.append(ClipReference(id=str(item["id"]), raw=item))
            else:
                logger.warning(f"Skipping clip entry without id in folder {folder_id}: {item!r}")
        return references

    async def get_clip_details(self, folder_id: str, clip_ref: ClipReference) -> dict[str, Any]:
        """Fetch clip metadata (title, timings, virality score...)."""
        data = await self._request("GET", f"/projects/{folder_id}/{clip_ref.id}")
        return data if isinstance(data, dict) else {}

    async def export_clip(self, folder_id: str, clip_ref: ClipReference) -> str:
        """
        Export a clip and wait for its downloadable URL.

        Raises:
            ExportError: If the export fails, errors or does not finish in time
        """
        base_path = f"/projects/{folder_id}/{clip_ref.id}/exports"
        try:
            export_task = await self._request("POST", base_path, json={})
            export_id = export_task.get("id") if isinstance(export_task, dict) else None
            if not export_id:
                raise ExportError(f"Export for clip {clip_ref.id} returned no export id")

            last_status = None
            for _ in range(self.settings.export_max_polls):
                result = await self._request("GET", f"{base_path}/{export_id}")
                if not isinstance(result, dict):
                    result = {}
                last_status = result.get("status")
                if last_status == "ready" and result.get("src_url"):
                    logger.info(f"Exported clip {clip_ref.id}")
                    return result["src_url"]
                if last_status in ("error", "failed"):
                    raise ExportError(
                        f"Export failed for clip {clip_ref.id}: {result.get('error') or 'unknown reason'}"
                    )
                await asyncio.sleep(self.settings.export_poll_interval_seconds)
        except ExportError:
            raise
        except KlapAPIError as e:
            raise ExportError(f"Export failed for clip {clip_ref.id}: {e}", status_code=e.status_code) from e

        raise ExportError(f"Export timed out for clip {clip_ref.id} (last status: {last_status})")
