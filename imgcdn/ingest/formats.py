from __future__ import annotations

import re
from typing import Optional

__all__ = [
    "VECTOR_FORMATS",
    "RASTER_FORMATS",
    "FORMAT_TO_CONTENT_TYPE",
    "CONTENT_TYPE_TO_FORMAT",
    "detect_format",
    "is_vector",
    "is_raster",
]

VECTOR_FORMATS = frozenset({"svg"})
RASTER_FORMATS = frozenset({"jpeg", "png", "webp", "gif"})

FORMAT_TO_CONTENT_TYPE = {
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "gif": "image/gif",
    "svg": "image/svg+xml",
}
CONTENT_TYPE_TO_FORMAT = {value: key for key, value in FORMAT_TO_CONTENT_TYPE.items()}
CONTENT_TYPE_TO_FORMAT["image/jpg"] = "jpeg"

_SVG_ROOT = re.compile(rb"<svg[\s>]", re.IGNORECASE)


def detect_format(data: bytes, content_type: Optional[str] = None) -> Optional[str]:
    """Detect the image format from magic bytes, falling back to the declared content type.

    Returns ``None`` when neither the bytes nor the content type identify a known format.
    """
    if data[:3] == b"\xff\xd8\xff":
        return "jpeg"
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return "png"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "gif"
    if _looks_like_svg(data):
        return "svg"
    if content_type:
        return CONTENT_TYPE_TO_FORMAT.get(content_type.split(";")[0].strip().lower())
    return None


def _looks_like_svg(data: bytes) -> bool:
    head = data[:1024].lstrip(b"\xef\xbb\xbf \t\r\n")
    if not head.startswith(b"<"):
        return False
    return _SVG_ROOT.search(head) is not None


def is_vector(fmt: Optional[str]) -> bool:
    return fmt in VECTOR_FORMATS


def is_raster(fmt: Optional[str]) -> bool:
    return fmt in RASTER_FORMATS
