from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional

from imgcdn.core.logging import get_logger
from imgcdn.core.storage import ObjectExists, ObjectStore

from .asset_id import CORRELATION_KEY, compute_sha256, incoming_filename, new_correlation_id
from .errors import UploadValidationError
from .formats import CONTENT_TYPE_TO_FORMAT, FORMAT_TO_CONTENT_TYPE, detect_format
from .models import AssetRef

__all__ = ["UploadIntake"]

_EXTENSIONS = {"jpeg": "jpg", "png": "png", "webp": "webp", "gif": "gif", "svg": "svg"}
_RESERVED_KEYS = {CORRELATION_KEY, "originalName", "uploadedAt", "processed", "contentHash", "contentType"}


class UploadIntake:
    """Validates uploads and admits them to the Incoming stage."""

    def __init__(
        self,
        store: ObjectStore,
        *,
        bucket: str,
        prefix: str,
        allowed_mime_types: Iterable[str],
        max_size_bytes: int,
        cache_control: str = "max-age=3600",
    ):
        self.store = store
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.allowed_mime_types = frozenset(item.lower() for item in allowed_mime_types)
        self.max_size_bytes = max_size_bytes
        self.cache_control = cache_control
        self.logger = get_logger(component="upload_intake")

    def validate(self, data: bytes, declared_mime: Optional[str], declared_size: Optional[int]) -> str:
        """Check an upload against the allow-list and size limits.

        Returns:
            The normalised MIME type.

        Raises:
            UploadValidationError: ``unsupported_type``, ``upload_too_large``,
                ``empty_upload``, ``size_mismatch`` or ``content_type_mismatch``.
        """
        mime = (declared_mime or "").split(";")[0].strip().lower()
        if mime not in self.allowed_mime_types:
            raise UploadValidationError("unsupported_type", f"type not allowed: {declared_mime!r}")
        if declared_size is not None and declared_size > self.max_size_bytes:
            raise UploadValidationError("upload_too_large", f"declared size {declared_size} exceeds {self.max_size_bytes}")
        if len(data) > self.max_size_bytes:
            raise UploadValidationError("upload_too_large", f"upload of {len(data)} bytes exceeds {self.max_size_bytes}")
        if not data:
            raise UploadValidationError("empty_upload")
        if declared_size is not None and declared_size != len(data):
            raise UploadValidationError("size_mismatch", f"declared {declared_size} bytes, received {len(data)}")

        detected = detect_format(data)
        expected = CONTENT_TYPE_TO_FORMAT.get(mime)
        if detected is None or (expected is not None and detected != expected):
            raise UploadValidationError(
                "content_type_mismatch", f"declared {mime}, content looks like {detected or 'unknown'}"
            )
        return FORMAT_TO_CONTENT_TYPE.get(detected, mime)

    def admit(
        self,
        data: bytes,
        filename: str,
        declared_mime: Optional[str],
        declared_size: Optional[int],
        metadata: Mapping[str, Any] | None = None,
    ) -> AssetRef:
        """Validate and store an upload under the incoming prefix; never overwrites."""
        content_type = self.validate(data, declared_mime, declared_size)
        extension = _EXTENSIONS.get(CONTENT_TYPE_TO_FORMAT.get(content_type, ""), "bin")
        correlation_id = new_correlation_id()

        extra = {key: value for key, value in (metadata or {}).items() if key not in _RESERVED_KEYS}
        object_metadata: dict[str, Any] = {
            **extra,
            CORRELATION_KEY: correlation_id,
            "originalName": filename,
            "uploadedAt": datetime.now(timezone.utc),
            "processed": False,
            "contentHash": compute_sha256(data),
            "contentType": content_type,
        }

        for _ in range(3):
            key = f"{self.prefix}/{incoming_filename(filename, extension=extension)}"
            try:
                self.store.put(
                    self.bucket,
                    key,
                    data,
                    object_metadata,
                    content_type=content_type,
                    cache_control=self.cache_control,
                    upsert=False,
                )
            except ObjectExists:
                continue
            self.logger.info(
                "upload_admitted", bucket=self.bucket, key=key, correlation_id=correlation_id, size_bytes=len(data)
            )
            return AssetRef(bucket=self.bucket, key=key, correlation_id=correlation_id)
        raise UploadValidationError("key_collision", "could not allocate a unique incoming key")
