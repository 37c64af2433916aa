from __future__ import annotations

import secrets
from datetime import datetime, timezone
from hashlib import sha256
from pathlib import PurePosixPath
from typing import Optional
from uuid import uuid4

__all__ = [
    "CORRELATION_KEY",
    "compute_sha256",
    "new_correlation_id",
    "correlation_id_of",
    "incoming_filename",
]

CORRELATION_KEY = "correlationId"


def compute_sha256(data: bytes) -> str:
    """Return the hexadecimal SHA256 digest of ``data``.

    Args:
        data: The raw bytes.

    Returns:
        The hexadecimal SHA256 digest.
    """
    return sha256(data).hexdigest()


def new_correlation_id() -> str:
    """Return a fresh correlation id carried in every object written for an asset."""
    return f"asset:{uuid4().hex}"


def correlation_id_of(metadata: dict) -> Optional[str]:
    value = metadata.get(CORRELATION_KEY)
    return str(value) if value else None


def incoming_filename(original_name: str, *, now: Optional[datetime] = None, extension: Optional[str] = None) -> str:
    """Build a collision-resistant file name for an upload.

    Args:
        original_name: The client supplied file name; only its extension is kept.
        now: Clock override for tests.
        extension: Extension to use when the original name has none.

    Returns:
        ``<epoch milliseconds>-<random>.<ext>``.
    """
    moment = now or datetime.now(timezone.utc)
    millis = int(moment.timestamp() * 1000)
    suffix = PurePosixPath(original_name or "").suffix.lstrip(".").lower() or (extension or "bin")
    return f"{millis}-{secrets.token_hex(6)}.{suffix}"
