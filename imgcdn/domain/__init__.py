"""Domain entities and pipeline errors reused by the API and CLI."""

from imgcdn.ingest.errors import (
    DerivativeError,
    PatchFailed,
    PipelineError,
    RelocationError,
    SourceMissing,
    UploadValidationError,
)
from imgcdn.ingest.models import (
    AssetRef,
    Derivative,
    ErrorKind,
    IngestError,
    IngestResult,
    MoveOutcome,
    MoveStatus,
    SizeProfile,
    Stage,
)

__all__ = [
    "AssetRef",
    "Derivative",
    "ErrorKind",
    "IngestError",
    "IngestResult",
    "MoveOutcome",
    "MoveStatus",
    "SizeProfile",
    "Stage",
    "DerivativeError",
    "PatchFailed",
    "PipelineError",
    "RelocationError",
    "SourceMissing",
    "UploadValidationError",
]
