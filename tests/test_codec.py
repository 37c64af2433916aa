from __future__ import annotations

import io

import pytest
from PIL import Image

from imgcdn.ingest.codec import encode_webp, svg_dimensions
from imgcdn.ingest.errors import CodecError
from imgcdn.ingest.formats import detect_format

from tests.helpers import SVG_DOC, make_image


def _decoded_size(data: bytes) -> tuple[int, int]:
    with Image.open(io.BytesIO(data)) as img:
        return img.size


def test_shrinks_to_target_width_and_keeps_aspect(jpeg_2000):
    encoded = encode_webp(jpeg_2000, 1200, 80)
    assert (encoded.width, encoded.height) == (1200, 900)
    assert detect_format(encoded.data) == "webp"
    assert _decoded_size(encoded.data) == (1200, 900)


@pytest.mark.parametrize("target", [None, 100, 4000])
def test_never_upscales(target):
    encoded = encode_webp(make_image("PNG", (100, 100)), target, 80)
    assert (encoded.width, encoded.height) == (100, 100)


def test_handles_alpha_and_palette_sources():
    rgba = encode_webp(make_image("PNG", (40, 20), mode="RGBA"), 20, 80)
    assert (rgba.width, rgba.height) == (20, 10)
    palette = encode_webp(make_image("GIF", (40, 20), mode="P"), None, 80)
    assert (palette.width, palette.height) == (40, 20)


def test_undecodable_bytes_raise_codec_error():
    with pytest.raises(CodecError):
        encode_webp(b"\xff\xd8\xff not really a jpeg", 200, 80)


def test_svg_dimensions():
    assert svg_dimensions(SVG_DOC) == (120, 80)
    assert svg_dimensions(b'<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 64 32"/>') == (64, 32)
    assert svg_dimensions(b"<svg") == (None, None)
