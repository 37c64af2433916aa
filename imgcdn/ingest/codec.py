"""WebP re-encoding primitive built on Pillow."""

from __future__ import annotations

import io
import re
from dataclasses import dataclass
from typing import Optional, Protocol
from xml.etree import ElementTree

from PIL import Image

from .errors import CodecError

__all__ = ["EncodedImage", "Codec", "encode_webp", "svg_dimensions", "webp_supported"]

OUTPUT_FORMAT = "webp"
OUTPUT_CONTENT_TYPE = "image/webp"


@dataclass(frozen=True, slots=True)
class EncodedImage:
    data: bytes
    width: int
    height: int


class Codec(Protocol):
    def __call__(self, data: bytes, target_width: Optional[int], quality: int) -> EncodedImage: ...


def encode_webp(data: bytes, target_width: Optional[int], quality: int) -> EncodedImage:
    """Decode ``data``, shrink it to ``target_width`` if narrower and re-encode as WebP.

    Never upscales: a target at or above the source width keeps the source size.
    Aspect ratio is preserved.

    Raises:
        CodecError: The bytes cannot be decoded or the encoder fails.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            frame = _prepare_mode(img)
            if target_width is not None and frame.width > target_width:
                ratio = target_width / frame.width
                new_height = max(1, round(frame.height * ratio))
                frame = frame.resize((target_width, new_height), Image.LANCZOS)
            buf = io.BytesIO()
            frame.save(buf, format="WEBP", quality=quality, method=4)
            return EncodedImage(data=buf.getvalue(), width=frame.width, height=frame.height)
    except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as exc:
        raise CodecError(f"encode failed: {exc}") from exc


def _prepare_mode(img: Image.Image) -> Image.Image:
    if img.mode in ("RGB", "RGBA"):
        return img.copy()
    has_alpha = img.mode in ("LA", "PA") or (img.mode == "P" and "transparency" in img.info)
    return img.convert("RGBA" if has_alpha else "RGB")


_LENGTH = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*(px)?\s*$")


def svg_dimensions(data: bytes) -> tuple[Optional[int], Optional[int]]:
    """Best-effort pixel size of an SVG document from its root attributes or viewBox."""
    try:
        root = ElementTree.fromstring(data)
    except ElementTree.ParseError:
        return None, None
    width = _parse_length(root.get("width"))
    height = _parse_length(root.get("height"))
    if (width is None or height is None) and root.get("viewBox"):
        parts = root.get("viewBox", "").replace(",", " ").split()
        if len(parts) == 4:
            try:
                width = width or round(float(parts[2]))
                height = height or round(float(parts[3]))
            except ValueError:
                pass
    return width, height


def _parse_length(raw: Optional[str]) -> Optional[int]:
    if not raw:
        return None
    match = _LENGTH.match(raw)
    if not match:
        return None
    return round(float(match.group(1)))


def webp_supported() -> bool:
    from PIL import features

    return bool(features.check("webp"))
