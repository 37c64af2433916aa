from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from imgcdn.ingest.models import SizeProfile

DEFAULT_SIZE_PROFILES: dict[str, Optional[int]] = {
    "original": None,
    "large": 1200,
    "medium": 800,
    "small": 400,
    "thumbnail": 200,
}


class Settings(BaseSettings):
    """Centralised runtime configuration for the imgcdn pipeline and API."""

    model_config = SettingsConfigDict(
        env_prefix="IMGCDN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "imgcdn API"
    environment: str = Field(default="development", description="Deployment environment label.")
    version: str = Field(default="0.1.0", description="API version for metadata and OpenAPI.")
    log_level: str = Field(default="info")
    log_format: Literal["json", "console"] = Field(default="json", description="structlog renderer.")

    storage_backend: Literal["local", "memory"] = Field(default="local", description="Active object store.")
    storage_root: Path = Field(default_factory=lambda: Path("storage"), description="Root for the local object store.")
    store_timeout_s: float | None = Field(
        default=None,
        gt=0,
        description="Deadline applied to every object store call; unset disables the wrapper.",
    )

    incoming_bucket: str = "originals"
    incoming_prefix: str = "uploads"
    processed_bucket: str = "originals"
    processed_prefix: str = "processed"
    archive_prefix: str = "archive"
    derivative_bucket: str = "images"
    derivative_prefix: str = "webp"
    vector_prefix: str = "svg"

    size_profiles: dict[str, Optional[int]] = Field(
        default_factory=lambda: dict(DEFAULT_SIZE_PROFILES),
        description="Ordered profile name -> target width (null keeps the source width).",
    )
    webp_quality: int = Field(default=80, ge=1, le=100, description="Quality used for every raster profile.")
    max_derivative_bytes: int = Field(default=20 * 1024 * 1024, ge=1, description="Upper bound for one encoded derivative.")
    profile_workers: int = Field(default=1, ge=1, description="Thread fan-out across profiles within one ingest.")

    allowed_mime_types: tuple[str, ...] = Field(
        default=("image/jpeg", "image/png", "image/webp", "image/svg+xml"),
        description="MIME types admitted by the upload intake.",
    )
    max_upload_size_bytes: int = Field(default=10 * 1024 * 1024, description="Hard limit for uploads.")
    upload_cache_control: str = "max-age=3600"
    immutable_cache_control: str = "public, max-age=31536000, immutable"
    public_base_url: str = Field(default="http://localhost:8000/storage", description="Base for delivery URLs.")

    scan_page_size: int = Field(default=100, ge=1, description="Page size used when listing incoming objects.")
    scan_default_limit: int = Field(default=10, ge=1)

    job_queue_backend: Literal["immediate", "inline", "rq"] = Field(
        default="immediate",
        description="Backend for ingest jobs (inline executes inline; rq schedules via Redis).",
    )
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis URL for background jobs.")
    job_queue_name: str = "imgcdn-jobs"

    @field_validator("size_profiles")
    @classmethod
    def _check_profiles(cls, value: dict[str, Optional[int]]) -> dict[str, Optional[int]]:
        if not value:
            raise ValueError("at least one size profile is required")
        for name, width in value.items():
            if not name or "/" in name:
                raise ValueError(f"invalid profile name: {name!r}")
            if width is not None and width <= 0:
                raise ValueError(f"profile {name!r} must have a positive width")
        return value

    @field_validator("incoming_prefix", "processed_prefix", "archive_prefix", "derivative_prefix", "vector_prefix")
    @classmethod
    def _strip_prefix(cls, value: str) -> str:
        return value.strip("/")

    @property
    def normalized_job_backend(self) -> str:
        if self.job_queue_backend == "inline":
            return "immediate"
        return self.job_queue_backend

    @property
    def profiles(self) -> tuple[SizeProfile, ...]:
        return tuple(SizeProfile(name=name, width=width) for name, width in self.size_profiles.items())


@lru_cache()
def get_settings() -> Settings:
    load_dotenv(".env", override=False)

    _ENV_ALIAS_MAP = {
        "IMGCDN_ENV": "IMGCDN_ENVIRONMENT",
        "IMGCDN_JOB_BACKEND": "IMGCDN_JOB_QUEUE_BACKEND",
        "IMGCDN_QUALITY": "IMGCDN_WEBP_QUALITY",
    }

    for source, target in _ENV_ALIAS_MAP.items():
        value = os.getenv(source)
        if value:
            os.environ[target] = value

    return Settings()


__all__ = ["DEFAULT_SIZE_PROFILES", "Settings", "get_settings"]
