from __future__ import annotations

from typing import Optional

from .models import ErrorKind, PatchState

__all__ = [
    "PipelineError",
    "UploadValidationError",
    "RelocationError",
    "SourceMissing",
    "DestinationWriteFailed",
    "PatchFailed",
    "DerivativeError",
    "UnsupportedFormat",
    "CodecError",
    "OversizeResult",
]


class PipelineError(Exception):
    """Base class for typed pipeline failures; ``kind`` feeds :class:`IngestError`."""

    kind: ErrorKind


class UploadValidationError(PipelineError):
    kind = ErrorKind.validation_error

    def __init__(self, code: str, message: str | None = None):
        super().__init__(message or code)
        self.code = code


class RelocationError(PipelineError):
    def __init__(self, message: str, *, bucket: str, key: str):
        super().__init__(message)
        self.bucket = bucket
        self.key = key


class SourceMissing(RelocationError):
    kind = ErrorKind.source_missing


class DestinationWriteFailed(RelocationError):
    kind = ErrorKind.destination_write_failed


class PatchFailed(PipelineError):
    """Raised with the state the patch state machine stopped in.

    ``unsafe`` is true only when the object may be reachable solely at its
    ``_temp`` key (failure while renaming).
    """

    kind = ErrorKind.patch_failed

    def __init__(self, message: str, *, bucket: str, key: str, state: PatchState):
        super().__init__(message)
        self.bucket = bucket
        self.key = key
        self.state = state

    @property
    def unsafe(self) -> bool:
        return self.state == PatchState.renaming


class DerivativeError(PipelineError):
    def __init__(self, message: str, *, profile: Optional[str] = None):
        super().__init__(message)
        self.profile = profile


class UnsupportedFormat(DerivativeError):
    kind = ErrorKind.unsupported_format


class CodecError(DerivativeError):
    kind = ErrorKind.codec_error


class OversizeResult(DerivativeError):
    kind = ErrorKind.oversize_result
