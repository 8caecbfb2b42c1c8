"""
Storage Service - Persists exported clip bytes to S3.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from clipworker.config import get_settings

logger = logging.getLogger(__name__)


@dataclass
class UploadResult:
    """Result of S3 upload operation."""

    public_url: str
    bucket: str
    key: str
    file_size_bytes: int
    content_type: str


class StorageUploadError(Exception):
    """Exception raised when an upload to durable storage fails."""
    pass


class StorageService:
    """
    Durable object storage for clip files.

    Objects are written under ``{storage_prefix}/{project_id}/clips/`` and
    addressed by a public URL (CDN base URL when configured, otherwise the
    virtual-hosted S3 URL).
    """

    def __init__(self, bucket: Optional[str] = None):
        self.settings = get_settings()
        self.bucket = bucket or self.settings.s3_bucket
        self._client = None

    @property
    def client(self):
        """Lazy-initialize S3 client."""
        if self._client is None:
            config = {
                "region_name": self.settings.aws_region,
            }
            if self.settings.aws_access_key_id and self.settings.aws_secret_access_key:
                config["aws_access_key_id"] = self.settings.aws_access_key_id
                config["aws_secret_access_key"] = self.settings.aws_secret_access_key

            self._client = boto3.client("s3", **config)

        return self._client

    def clip_key(self, project_id: str, clip_index: int) -> str:
        timestamp = datetime.utcnow().strftime("%Y%m%d%H%M%S%f")
        return f"{self.settings.storage_prefix}/{project_id}/clips/clip_{clip_index}_{timestamp}.mp4"

    def public_url(self, key: str) -> str:
        if self.settings.storage_public_base_url:
            return f"{self.settings.storage_public_base_url.rstrip('/')}/{key}"
        return f"https://{self.bucket}.s3.{self.settings.aws_region}.amazonaws.com/{key}"

    async def upload(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> UploadResult:
        """
        Upload bytes to S3 and return their public location.

        Raises:
            StorageUploadError: If the upload fails
        """
        logger.info(f"Uploading {len(data) / 1024 / 1024:.2f} MB to s3://{self.bucket}/{key}")

        # Upload (use thread pool for sync boto3 call)
        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(
                None,
                lambda: self.client.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=data,
                    ContentType=content_type,
                ),
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to upload to S3: {e}")
            raise StorageUploadError(f"Failed to upload {key}: {e}") from e

        return UploadResult(
            public_url=self.public_url(key),
            bucket=self.bucket,
            key=key,
            file_size_bytes=len(data),
            content_type=content_type,
        )

    async def upload_clip(self, project_id: str, clip_index: int, data: bytes) -> UploadResult:
        """Upload one exported clip video for a project."""
        return await self.upload(self.clip_key(project_id, clip_index), data, content_type="video/mp4")
