from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Optional

__all__ = [
    "Stage",
    "ErrorKind",
    "MoveStatus",
    "PatchState",
    "SizeProfile",
    "AssetRef",
    "Derivative",
    "GeneratedDerivative",
    "ProfileFailure",
    "GenerationReport",
    "MoveOutcome",
    "PatchResult",
    "IngestError",
    "IngestResult",
]


class Stage(str, enum.Enum):
    incoming = "incoming"
    processed = "processed"
    archived = "archived"


class ErrorKind(str, enum.Enum):
    validation_error = "validation_error"
    source_missing = "source_missing"
    destination_write_failed = "destination_write_failed"
    patch_failed = "patch_failed"
    codec_error = "codec_error"
    unsupported_format = "unsupported_format"
    oversize_result = "oversize_result"
    partial_success = "partial_success"
    # A store call failed for a reason other than a missing object (timeouts included).
    store_error = "store_error"
    internal_error = "internal_error"


class MoveStatus(str, enum.Enum):
    moved = "moved"
    # Destination written but the source could not be removed.
    duplicated = "duplicated"
    # Another worker relocated the source first.
    already_moved = "already_moved"


class PatchState(str, enum.Enum):
    reading = "reading"
    writing_temp = "writing_temp"
    deleting_original = "deleting_original"
    renaming = "renaming"
    done = "done"


@dataclass(frozen=True, slots=True)
class SizeProfile:
    """A named target width; ``width=None`` keeps the source dimensions."""

    name: str
    width: Optional[int] = None


@dataclass(frozen=True, slots=True)
class AssetRef:
    bucket: str
    key: str
    correlation_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Derivative:
    profile: str
    width: Optional[int]
    height: Optional[int]
    format: str
    size_bytes: int
    bucket: str
    key: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "profile": self.profile,
            "width": self.width,
            "height": self.height,
            "format": self.format,
            "size_bytes": self.size_bytes,
            "bucket": self.bucket,
            "key": self.key,
        }


@dataclass(frozen=True, slots=True)
class GeneratedDerivative:
    derivative: Derivative
    data: bytes
    content_type: str


@dataclass(frozen=True, slots=True)
class ProfileFailure:
    profile: str
    kind: ErrorKind
    message: str


@dataclass(slots=True)
class GenerationReport:
    """Per-profile outcome of one generation pass, in profile order."""

    derivatives: list[Derivative] = field(default_factory=list)
    failures: list[ProfileFailure] = field(default_factory=list)

    @property
    def succeeded(self) -> list[str]:
        return [item.profile for item in self.derivatives]

    @property
    def partial(self) -> bool:
        return bool(self.failures) and bool(self.derivatives)


@dataclass(frozen=True, slots=True)
class MoveOutcome:
    status: MoveStatus
    src_bucket: str
    src_key: str
    dst_bucket: str
    dst_key: str
    warning: Optional[str] = None


@dataclass(frozen=True, slots=True)
class PatchResult:
    bucket: str
    key: str
    metadata: dict[str, Any]
    state: PatchState = PatchState.done
    move: Optional[MoveOutcome] = None


@dataclass(frozen=True, slots=True)
class IngestError:
    kind: ErrorKind
    message: str
    profile: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "profile": self.profile}


@dataclass(slots=True)
class IngestResult:
    asset: AssetRef
    success: bool = False
    stage: Stage = Stage.incoming
    derivatives: list[Derivative] = field(default_factory=list)
    errors: list[IngestError] = field(default_factory=list)
    processed_key: Optional[str] = None
    relocation: Optional[MoveStatus] = None
    already_processed: bool = False

    @property
    def versions(self) -> list[str]:
        return [item.profile for item in self.derivatives]

    @property
    def partial(self) -> bool:
        return any(error.kind == ErrorKind.partial_success for error in self.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset": {
                "bucket": self.asset.bucket,
                "key": self.asset.key,
                "correlation_id": self.asset.correlation_id,
            },
            "success": self.success,
            "stage": self.stage.value,
            "derivatives": [item.to_dict() for item in self.derivatives],
            "errors": [error.to_dict() for error in self.errors],
            "processed_key": self.processed_key,
            "relocation": self.relocation.value if self.relocation else None,
            "already_processed": self.already_processed,
            "versions": self.versions,
        }
