"""Configuration models for core domain components.

This module provides Pydantic-based configuration classes that consolidate
settings for domain managers, enabling dependency injection and testability.
"""

from typing import Optional
from pydantic import BaseModel, Field


class OrchestratorConfig(BaseModel):
    """Configuration for the task lifecycle (submission, polling, archival).

    Tests typically shrink ``poll_interval`` and ``retry_delay`` to keep
    scenarios fast; production values match the provider's pacing.
    """

    poll_interval: float = Field(
        default=10.0,
        gt=0,
        description="Interval in seconds between remote status checks"
    )

    poll_timeout: Optional[float] = Field(
        default=1800.0,
        gt=0,
        description="Wall-clock budget in seconds for one lifecycle (None for no timeout)"
    )

    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout in seconds for a single provider request"
    )

    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries after the first submission attempt for transient errors"
    )

    retry_delay: float = Field(
        default=5.0,
        ge=0,
        description="Fixed delay in seconds between submission attempts"
    )

    max_consecutive_poll_errors: Optional[int] = Field(
        default=None,
        ge=1,
        description="Consecutive transient poll failures tolerated (default max_retries + 1)"
    )

    download_timeout: float = Field(
        default=120.0,
        gt=0,
        description="Timeout in seconds for downloading a generated artifact"
    )

    max_artifact_bytes: int = Field(
        default=500 * 1024 * 1024,  # 500 MB
        gt=0,
        description="Largest artifact accepted for archival"
    )

    archive_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for download and upload during archival"
    )

    archive_retry_base_wait: float = Field(
        default=1.0,
        ge=0,
        description="Base wait time in seconds for exponential backoff during archival"
    )

    archive_retry_max_wait: float = Field(
        default=5.0,
        ge=0,
        description="Maximum wait time in seconds between archival attempts"
    )

    verify_archive_size: bool = Field(
        default=True,
        description="Compare stored object size with the downloaded size"
    )

    archive_thumbnails: bool = Field(
        default=True,
        description="Copy the remote thumbnail into storage (best effort)"
    )

    storage_prefix: str = Field(
        default="videos",
        min_length=1,
        description="Key prefix for archived artifacts"
    )

    storage_quota_bytes: int = Field(
        default=1024 * 1024 * 1024,  # 1 GB
        gt=0,
        description="Per-owner storage allowance reported by storage usage queries"
    )

    model_config = {
        "frozen": True,
        "extra": "forbid",
    }

    @property
    def max_submit_attempts(self) -> int:
        return self.max_retries + 1

    @property
    def poll_error_tolerance(self) -> int:
        if self.max_consecutive_poll_errors is not None:
            return self.max_consecutive_poll_errors
        return self.max_retries + 1

    @classmethod
    def from_app_settings(cls, settings) -> "OrchestratorConfig":
        """Factory method to construct config from GenTaskSettings instance.

        Args:
            settings: GenTaskSettings instance from core.settings

        Returns:
            OrchestratorConfig with values from app settings
        """
        return cls(
            poll_interval=settings.GENTASK_POLL_INTERVAL,
            poll_timeout=settings.GENTASK_POLL_TIMEOUT,
            request_timeout=settings.GENTASK_REQUEST_TIMEOUT,
            max_retries=settings.GENTASK_MAX_RETRIES,
            retry_delay=settings.GENTASK_RETRY_DELAY,
            download_timeout=settings.GENTASK_DOWNLOAD_TIMEOUT,
            max_artifact_bytes=settings.GENTASK_MAX_ARTIFACT_BYTES,
            verify_archive_size=settings.GENTASK_VERIFY_ARCHIVE_SIZE,
            archive_thumbnails=settings.GENTASK_ARCHIVE_THUMBNAILS,
            storage_prefix=settings.GENTASK_STORAGE_PREFIX,
            storage_quota_bytes=settings.GENTASK_STORAGE_QUOTA_BYTES,
            # archive_max_attempts, archive_retry_base_wait and
            # archive_retry_max_wait use defaults
        )
