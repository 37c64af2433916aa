from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    status: str = Field(default="ok", description="Health status indicator.")
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class EnvCheckResponse(BaseModel):
    pillow: bool
    webp: bool
    storage: bool


class BucketStatsResponse(BaseModel):
    bucket: str
    total_files: int
    total_size: int
    file_types: Dict[str, int]


class StorageStatsResponse(BaseModel):
    buckets: List[BucketStatsResponse]


class JobAcceptedResponse(BaseModel):
    job_id: str
    type: str
    status: str = Field(description="queued | succeeded | failed")
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class UploadResponse(BaseModel):
    bucket: str
    key: str = Field(..., json_schema_extra={"example": "uploads/1718000000000-a1b2c3d4e5f6.jpg"})
    correlation_id: str
    job: Optional[JobAcceptedResponse] = None


class IngestRunRequest(BaseModel):
    bucket: Optional[str] = Field(default=None, json_schema_extra={"example": "originals"})
    key: str = Field(..., min_length=1, json_schema_extra={"example": "uploads/1718000000000-a1b2c3d4e5f6.jpg"})
    correlation_id: Optional[str] = None


class ScanRequest(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1, le=1000)


class ObjectMetadataResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    bucket: str
    key: str
    size: int
    content_type: Optional[str] = None
    cache_control: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class DeliveryResponse(BaseModel):
    filename: str
    processed: bool
    versions: Dict[str, str] = Field(default_factory=dict)
    srcset: str = ""
    sizes: str
    default_url: Optional[str] = None


class FileEntryResponse(BaseModel):
    key: str
    size: int
    last_modified: datetime


class FileListResponse(BaseModel):
    bucket: str
    prefix: str
    limit: int
    offset: int
    items: List[FileEntryResponse] = Field(default_factory=list)


class MetadataUpdateRequest(BaseModel):
    metadata: Dict[str, Any] = Field(..., min_length=1, json_schema_extra={"example": {"alt": "Team photo"}})


class MetadataUpdateResponse(BaseModel):
    bucket: str
    key: str
    state: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ArchiveRequest(BaseModel):
    key: str = Field(..., min_length=1, json_schema_extra={"example": "processed/1718000000000-a1b2c3d4e5f6.jpg"})


class MoveOutcomeResponse(BaseModel):
    status: str = Field(description="moved | duplicated | already_moved")
    src_bucket: str
    src_key: str
    dst_bucket: str
    dst_key: str
    warning: Optional[str] = None


class ImageListResponse(BaseModel):
    limit: int
    offset: int
    items: List[DeliveryResponse] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[Any] = None


__all__ = [
    "HealthResponse",
    "EnvCheckResponse",
    "BucketStatsResponse",
    "StorageStatsResponse",
    "UploadResponse",
    "IngestRunRequest",
    "ScanRequest",
    "JobAcceptedResponse",
    "ObjectMetadataResponse",
    "DeliveryResponse",
    "FileEntryResponse",
    "FileListResponse",
    "MetadataUpdateRequest",
    "MetadataUpdateResponse",
    "ArchiveRequest",
    "MoveOutcomeResponse",
    "ImageListResponse",
    "ErrorResponse",
]
