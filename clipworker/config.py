"""
Configuration module using Pydantic Settings for environment variable management.

Only deployment-specific values are exposed as environment variables. Vendor
request options, export polling and progress milestones are hardcoded so every
worker instance behaves the same way.
"""

from functools import lru_cache
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings.

    The polling budget (interval x attempts) must fit inside the per-request
    ceiling of the hosting platform, otherwise the worker would be killed
    mid-poll and leave the job for stale reclamation.
    """

    # ============================================================
    # ENVIRONMENT VARIABLES
    # ============================================================

    # Application
    app_name: str = "clipworker"
    debug: bool = False
    log_level: str = "INFO"

    # Persistence
    database_url: str = "sqlite:///./clipworker.db"

    # Security
    worker_secret: Optional[str] = None  # Bearer secret for the scheduler-invoked worker route
    api_key: Optional[str] = None  # X-API-Key for enqueue/status routes (dev mode when unset)

    # Klap (video-to-shorts vendor)
    klap_api_key: Optional[str] = None
    klap_api_url: str = "https://api.klap.app/v2"

    # AWS S3
    aws_region: str = "us-east-1"
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    s3_bucket: str = "clipworker-media"
    storage_prefix: str = "videos"
    storage_public_base_url: Optional[str] = None  # CDN in front of the bucket, if any

    # Notifications
    notification_webhook_url: Optional[str] = None
    webhook_secret: Optional[str] = None  # Secret for signing outgoing webhooks

    # Polling policy
    poll_interval_seconds: float = 5.0
    max_poll_attempts: int = 50
    rate_limit_cooldown_seconds: float = 30.0
    rate_limit_attempt_cost: int = 6
    max_invocation_seconds: float = 300.0  # Hosting platform request ceiling
    extraction_headroom_seconds: float = 40.0  # Reserved after polling for clip export and upload

    # ============================================================
    # HARDCODED SETTINGS (not configurable via env vars)
    # ============================================================

    # Vendor task options
    @property
    def klap_language(self) -> str:
        return "en"

    @property
    def klap_max_clip_duration(self) -> int:
        return 30  # Seconds per generated short

    @property
    def klap_max_clip_count(self) -> int:
        return 10

    @property
    def klap_request_timeout_seconds(self) -> float:
        return 30.0

    # Export polling (per clip)
    @property
    def export_poll_interval_seconds(self) -> float:
        return 3.0

    @property
    def export_max_polls(self) -> int:
        return 20

    # Clip download
    @property
    def download_timeout_seconds(self) -> float:
        return 120.0

    # Progress milestones
    @property
    def progress_task_created(self) -> int:
        return 25

    @property
    def progress_task_ready(self) -> int:
        return 50

    @property
    def progress_clips_done(self) -> int:
        return 90

    # Stale job reclamation
    @property
    def stale_job_timeout_seconds(self) -> float:
        # No heartbeat for a whole invocation window means the worker is gone
        return self.max_invocation_seconds

    @property
    def max_poll_seconds(self) -> float:
        return self.poll_interval_seconds * self.max_poll_attempts

    @property
    def poll_window_seconds(self) -> float:
        # Polling must end early enough to leave room for clip extraction
        return self.max_invocation_seconds - self.extraction_headroom_seconds

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    @model_validator(mode="after")
    def validate_polling_budget(self) -> "Settings":
        """Reject polling budgets that cannot fit in a single invocation."""
        if self.max_poll_attempts < 1:
            raise ValueError("max_poll_attempts must be at least 1")
        if self.rate_limit_attempt_cost < 1:
            raise ValueError("rate_limit_attempt_cost must be at least 1")
        if self.extraction_headroom_seconds <= 0:
            raise ValueError("extraction_headroom_seconds must be positive")
        if self.max_poll_seconds > self.poll_window_seconds:
            raise ValueError(
                f"Polling budget ({self.poll_interval_seconds}s x {self.max_poll_attempts} attempts "
                f"= {self.max_poll_seconds:.0f}s) exceeds max_invocation_seconds "
                f"({self.max_invocation_seconds:.0f}s) minus extraction_headroom_seconds "
                f"({self.extraction_headroom_seconds:.0f}s)"
            )
        return self


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
