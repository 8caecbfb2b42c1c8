"""
Webhook Service - HTTP client for sending job notifications to a callback URL.

This service handles webhook delivery with:
- Automatic retries with exponential backoff
- Configurable timeouts
- HMAC-SHA256 signature for authenticity
"""

import asyncio
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from clipworker.config import get_settings

logger = logging.getLogger(__name__)


@dataclass
class WebhookResult:
    """Result of a webhook delivery attempt."""

    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    attempts: int = 0


@dataclass
class WebhookPayload:
    """Standardized webhook payload structure."""

    event: str  # job.completed, job.failed
    timestamp: str  # ISO 8601
    job_id: str
    project_id: str
    status: str
    progress_percent: int
    error: Optional[str] = None
    clips_count: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values for optional fields."""
        data = {
            "event": self.event,
            "timestamp": self.timestamp,
            "job_id": self.job_id,
            "project_id": self.project_id,
            "status": self.status,
            "progress_percent": self.progress_percent,
        }
        if self.error:
            data["error"] = self.error
        if self.clips_count is not None:
            data["clips_count"] = self.clips_count
        return data


class WebhookService:
    """
    Service for delivering webhook notifications with retry logic.

    Args:
        timeout_seconds: HTTP request timeout
        max_retries: Maximum number of delivery attempts
        retry_delay_seconds: Base delay between retries (exponential backoff)
        transport: Optional httpx transport (used to inject a mock in tests)
    """

    def __init__(
        self,
        timeout_seconds: float = 10.0,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout_seconds
        self.max_retries = max_retries
        self.retry_delay = retry_delay_seconds
        self._transport = transport

        settings = get_settings()
        self._app_name = settings.app_name
        self._webhook_secret = settings.webhook_secret
        if not self._webhook_secret:
            logger.warning("WEBHOOK_SECRET not configured - webhooks will not be signed")

    def _sign_payload(self, payload_json: str) -> str:
        """
        Generate HMAC-SHA256 signature for a webhook payload.

        Returns:
            Signature string in format: sha256=<hex-signature>
        """
        if not self._webhook_secret:
            return ""

        signature = hmac.new(
            self._webhook_secret.encode("utf-8"),
            payload_json.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return f"sha256={signature}"

    async def send(
        self,
        url: str,
        payload: WebhookPayload,
        headers: Optional[dict[str, str]] = None,
    ) -> WebhookResult:
        """
        Send a webhook with automatic retries.

        Args:
            url: The callback URL to send the webhook to
            payload: The webhook payload to send
            headers: Optional additional headers

        Returns:
            WebhookResult with success status and details
        """
        if not url:
            return WebhookResult(success=False, error="No callback URL provided")

        # Serialize to JSON once for consistent signing
        payload_json = json.dumps(payload.to_dict(), separators=(",", ":"), sort_keys=True)

        default_headers = {
            "Content-Type": "application/json",
            "User-Agent": f"{self._app_name}/1.0",
            "X-Webhook-Event": payload.event,
            "X-Job-Id": payload.job_id,
        }

        signature = self._sign_payload(payload_json)
        if signature:
            default_headers["X-Clipworker-Signature"] = signature

        if headers:
            default_headers.update(headers)

        last_error: Optional[str] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    response = await client.post(
                        url,
                        content=payload_json,
                        headers=default_headers,
                    )

                    if response.status_code < 300:
                        logger.info(
                            f"Webhook delivered: {payload.event} for job {payload.job_id} "
                            f"(attempt {attempt}, status {response.status_code})"
                        )
                        return WebhookResult(
                            success=True,
                            status_code=response.status_code,
                            attempts=attempt,
                        )
                    else:
                        last_error = f"HTTP {response.status_code}: {response.text[:200]}"
                        logger.warning(
                            f"Webhook failed: {url} (attempt {attempt}, {last_error})"
                        )

            except httpx.TimeoutException:
                last_error = "Request timed out"
                logger.warning(f"Webhook timeout: {url} (attempt {attempt})")

            except httpx.RequestError as e:
                last_error = f"Request error: {str(e)}"
                logger.warning(f"Webhook error: {url} (attempt {attempt}, {last_error})")

            # Wait before retry (exponential backoff)
            if attempt < self.max_retries:
                delay = self.retry_delay * (2 ** (attempt - 1))
                await asyncio.sleep(delay)

        logger.error(
            f"Webhook failed after {self.max_retries} attempts: {url} "
            f"(job {payload.job_id}, event {payload.event})"
        )
        return WebhookResult(
            success=False,
            error=last_error,
            attempts=self.max_retries,
        )

    def build_payload(
        self,
        event: str,
        job_id: str,
        project_id: str,
        status: str,
        progress_percent: int,
        error: Optional[str] = None,
        clips_count: Optional[int] = None,
    ) -> WebhookPayload:
        """Build a standardized webhook payload."""
        return WebhookPayload(
            event=event,
            timestamp=datetime.now(timezone.utc).isoformat(),
            job_id=job_id,
            project_id=project_id,
            status=status,
            progress_percent=progress_percent,
            error=error,
            clips_count=clips_count,
        )


# Global singleton instance
_webhook_service: Optional[WebhookService] = None


def get_webhook_service() -> WebhookService:
    """Get or create the global webhook service instance."""
    global _webhook_service
    if _webhook_service is None:
        _webhook_service = WebhookService()
    return _webhook_service
