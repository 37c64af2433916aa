from __future__ import annotations

import pytest

from imgcdn.ingest import intake as intake_module
from imgcdn.ingest.errors import UploadValidationError
from imgcdn.services.ingest_service import create_intake

from tests.helpers import SVG_DOC, make_image


@pytest.fixture()
def intake(settings, store):
    return create_intake(settings, store)


def test_admit_stores_upload_with_tracking_metadata(intake, store):
    data = make_image("JPEG", (32, 32))

    asset = intake.admit(data, "Beach.jpg", "image/jpeg", len(data), {"album": "summer", "processed": True})

    assert asset.bucket == "originals"
    assert asset.key.startswith("uploads/") and asset.key.endswith(".jpg")
    stored = store.get(asset.bucket, asset.key)
    assert stored.data == data
    assert stored.content_type == "image/jpeg"
    assert stored.cache_control == "max-age=3600"
    assert stored.metadata["correlationId"] == asset.correlation_id
    assert stored.metadata["originalName"] == "Beach.jpg"
    assert stored.metadata["processed"] is False
    assert stored.metadata["album"] == "summer"
    assert len(stored.metadata["contentHash"]) == 64
    assert "uploadedAt" in stored.metadata


def test_admit_accepts_svg(intake, store):
    asset = intake.admit(SVG_DOC, "logo.svg", "image/svg+xml", len(SVG_DOC))
    assert asset.key.endswith(".svg")
    assert store.get(asset.bucket, asset.key).content_type == "image/svg+xml"


@pytest.mark.parametrize(
    ("data", "mime", "size", "code"),
    [
        (make_image("GIF"), "image/gif", None, "unsupported_type"),
        (b"", "image/jpeg", 0, "empty_upload"),
        (make_image("JPEG"), "image/jpeg", 5, "size_mismatch"),
        (make_image("PNG"), "image/jpeg", None, "content_type_mismatch"),
        (b"plain text", "image/png", None, "content_type_mismatch"),
    ],
)
def test_validation_codes(intake, store, data, mime, size, code):
    with pytest.raises(UploadValidationError) as info:
        intake.admit(data, "file", mime, size)
    assert info.value.code == code
    assert store.list("originals", "uploads/") == []


def test_size_limits(settings, store):
    intake = create_intake(settings.model_copy(update={"max_upload_size_bytes": 100}), store)
    big = b"\x89PNG\r\n\x1a\n" + b"0" * 200

    with pytest.raises(UploadValidationError) as declared:
        intake.validate(b"x", "image/png", 101)
    assert declared.value.code == "upload_too_large"

    with pytest.raises(UploadValidationError) as actual:
        intake.validate(big, "image/png", None)
    assert actual.value.code == "upload_too_large"


def test_declared_type_parameters_are_ignored(intake):
    assert intake.validate(make_image("PNG"), "image/png; charset=binary", None) == "image/png"


def test_never_overwrites_existing_upload(intake, store, monkeypatch):
    monkeypatch.setattr(intake_module, "incoming_filename", lambda name, extension=None: "fixed.jpg")
    data = make_image("JPEG")
    first = intake.admit(data, "a.jpg", "image/jpeg", None)

    with pytest.raises(UploadValidationError) as info:
        intake.admit(data, "b.jpg", "image/jpeg", None)

    assert info.value.code == "key_collision"
    assert store.get(first.bucket, first.key).metadata["originalName"] == "a.jpg"
