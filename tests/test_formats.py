from __future__ import annotations

import pytest

from imgcdn.ingest.formats import detect_format, is_raster, is_vector

from tests.helpers import SVG_DOC, make_image


@pytest.mark.parametrize(
    ("fmt", "expected"),
    [("JPEG", "jpeg"), ("PNG", "png"), ("WEBP", "webp"), ("GIF", "gif")],
)
def test_detects_raster_formats_from_magic_bytes(fmt, expected):
    assert detect_format(make_image(fmt)) == expected


def test_magic_bytes_win_over_declared_type():
    assert detect_format(make_image("PNG"), "image/jpeg") == "png"


def test_detects_svg_with_and_without_prolog():
    assert detect_format(SVG_DOC) == "svg"
    assert detect_format(b'<svg xmlns="http://www.w3.org/2000/svg"/>') == "svg"


def test_falls_back_to_content_type():
    assert detect_format(b"not an image", "image/jpg") == "jpeg"
    assert detect_format(b"not an image", "application/pdf") is None
    assert detect_format(b"not an image") is None


def test_vector_and_raster_predicates():
    assert is_vector("svg")
    assert not is_vector("png")
    assert is_raster("jpeg")
    assert not is_raster(None)
