from __future__ import annotations

from pathlib import PurePosixPath

import pytest
from fastapi.testclient import TestClient

from imgcdn.api import deps
from imgcdn.core.storage import DeadlineObjectStore
from imgcdn.ingest.metadata_patch import temp_key
from imgcdn.main import create_app

from tests.helpers import make_image

BASE = "https://cdn.test/storage"


def _upload(client, data: bytes, *, name="photo.jpg", mime="image/jpeg", process=False):
    return client.post(
        "/v1/ingest/upload",
        files={"file": (name, data, mime)},
        data={"process_immediately": "true" if process else "false"},
    )


@pytest.fixture()
def small_limit_client(monkeypatch, configure_environment):
    monkeypatch.setenv("IMGCDN_MAX_UPLOAD_SIZE_BYTES", "50")
    app = create_app()
    with TestClient(app) as client:
        yield client


def test_v1_health_ok(client):
    resp = client.get("/v1/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_admin_env_check(client):
    resp = client.get("/v1/admin/env-check")
    assert resp.status_code == 200
    assert resp.json() == {"pillow": True, "webp": True, "storage": True}


def test_upload_and_process_immediately(client):
    resp = _upload(client, make_image("JPEG", (1600, 1200)), process=True)
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["bucket"] == "originals"
    assert body["key"].startswith("uploads/")
    assert body["correlation_id"].startswith("asset:")

    job = body["job"]
    assert job["type"] == "ingest"
    assert job["status"] == "succeeded"
    assert job["result"]["success"] is True
    assert job["result"]["versions"] == ["original", "large", "medium", "small", "thumbnail"]
    assert job["result"]["asset"]["correlation_id"] == body["correlation_id"]

    filename = PurePosixPath(body["key"]).name
    meta = client.get(f"/v1/assets/originals/processed/{filename}")
    assert meta.status_code == 200
    assert meta.json()["metadata"]["processed"] is True
    assert meta.json()["content_type"] == "image/jpeg"

    view = client.get(f"/v1/images/{filename}")
    assert view.status_code == 200
    payload = view.json()
    stem = PurePosixPath(filename).stem
    assert payload["processed"] is True
    assert payload["versions"]["thumbnail"] == f"{BASE}/images/webp/thumbnail/{stem}.webp"
    assert payload["srcset"].count("w,") == 3
    assert payload["default_url"] == f"{BASE}/images/webp/medium/{stem}.webp"


def test_upload_without_processing_then_run(client):
    upload = _upload(client, make_image("PNG", (300, 300)), name="icon.png", mime="image/png")
    assert upload.status_code == 201
    assert upload.json()["job"] is None
    key = upload.json()["key"]

    resp = client.post("/v1/ingest/run", json={"key": key})

    assert resp.status_code == 202
    job = resp.json()
    assert job["status"] == "succeeded"
    assert job["result"]["processed_key"] == f"processed/{PurePosixPath(key).name}"

    again = client.post("/v1/ingest/run", json={"key": key}).json()
    assert again["result"]["already_processed"] is True


def test_scan_processes_pending_uploads(client):
    for _ in range(2):
        assert _upload(client, make_image("JPEG", (500, 400))).status_code == 201

    resp = client.post("/v1/ingest/scan", json={"limit": 5})

    assert resp.status_code == 202
    result = resp.json()["result"]
    assert result["scanned"] == 2
    assert result["succeeded"] == 2

    stats = client.get("/v1/admin/stats").json()["buckets"]
    by_bucket = {item["bucket"]: item for item in stats}
    assert by_bucket["originals"]["file_types"] == {"jpg": 2}
    assert by_bucket["images"]["total_files"] == 10


def test_upload_rejects_unsupported_type(client):
    resp = _upload(client, make_image("GIF"), name="anim.gif", mime="image/gif")
    assert resp.status_code == 415
    assert resp.json()["detail"]["error"] == "unsupported_type"


def test_upload_rejects_mismatched_content(client):
    resp = _upload(client, make_image("PNG"), name="fake.jpg", mime="image/jpeg")
    assert resp.status_code == 422
    assert resp.json()["detail"]["error"] == "content_type_mismatch"


def test_upload_rejects_oversize(small_limit_client):
    resp = _upload(small_limit_client, make_image("JPEG", (64, 64)))
    assert resp.status_code == 413
    assert resp.json()["detail"]["error"] == "upload_too_large"


def test_missing_objects_return_404(client):
    assert client.get("/v1/assets/originals/uploads/nope.jpg").status_code == 404
    assert client.get("/v1/images/nope.jpg").status_code == 404


def test_run_for_missing_asset_reports_failure(client):
    resp = client.post("/v1/ingest/run", json={"key": "uploads/nope.jpg"})
    assert resp.status_code == 202
    result = resp.json()["result"]
    assert result["success"] is False
    assert result["errors"][0]["kind"] == "source_missing"


@pytest.fixture()
def faulty_client(configure_environment, faulty_store):
    app = create_app()
    app.dependency_overrides[deps.get_store] = lambda: faulty_store
    with TestClient(app) as client:
        yield client


def _processed_filename(client) -> str:
    upload = _upload(client, make_image("JPEG", (900, 600)), process=True)
    assert upload.status_code == 201
    return PurePosixPath(upload.json()["key"]).name


def test_list_files_pages_by_prefix(client):
    keys = sorted(
        _upload(client, make_image("PNG", (40, 40)), name="p.png", mime="image/png").json()["key"] for _ in range(3)
    )

    resp = client.get("/v1/files", params={"bucket": "originals", "prefix": "uploads/", "limit": 2, "offset": 1})

    assert resp.status_code == 200
    body = resp.json()
    assert (body["bucket"], body["prefix"], body["limit"], body["offset"]) == ("originals", "uploads/", 2, 1)
    assert [item["key"] for item in body["items"]] == keys[1:]
    assert all(item["size"] > 0 for item in body["items"])

    assert client.get("/v1/files").status_code == 422


def test_delete_file(client):
    key = _upload(client, make_image("PNG", (40, 40)), name="p.png", mime="image/png").json()["key"]

    assert client.delete(f"/v1/files/originals/{key}").status_code == 204
    assert client.get(f"/v1/assets/originals/{key}").status_code == 404
    assert client.delete(f"/v1/files/originals/{key}").status_code == 404


def test_update_metadata_merges_through_patch(client):
    key = _upload(client, make_image("PNG", (40, 40)), name="p.png", mime="image/png").json()["key"]

    resp = client.put(f"/v1/assets/originals/{key}/metadata", json={"metadata": {"alt": "Logo", "processed": False}})

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["state"] == "done"
    assert body["metadata"]["alt"] == "Logo"
    assert body["metadata"]["originalName"] == "p.png"

    stored = client.get(f"/v1/assets/originals/{key}").json()
    assert stored["metadata"]["alt"] == "Logo"
    assert stored["content_type"] == "image/png"
    assert client.get("/v1/files", params={"bucket": "originals", "prefix": f"{key}_temp"}).json()["items"] == []


def test_update_metadata_validation_and_missing(client):
    assert client.put("/v1/assets/originals/uploads/nope.jpg/metadata", json={"metadata": {"a": 1}}).status_code == 404
    assert client.put("/v1/assets/originals/uploads/nope.jpg/metadata", json={"metadata": {}}).status_code == 422


def test_update_metadata_store_failure_is_retryable(faulty_client, faulty_store):
    faulty_store.put("originals", "docs/a.txt", b"hello", {"owner": "ops"})
    faulty_store.fail("put", "originals", temp_key("docs/a.txt"))

    resp = faulty_client.put("/v1/assets/originals/docs/a.txt/metadata", json={"metadata": {"alt": "x"}})

    assert resp.status_code == 503
    detail = resp.json()["detail"]
    assert (detail["error"], detail["state"], detail["unsafe"]) == ("patch_failed", "writing_temp", False)
    assert faulty_store.get("originals", "docs/a.txt").metadata == {"owner": "ops"}


def test_update_metadata_failed_rename_conflicts_then_heals(faulty_client, faulty_store):
    faulty_store.put("originals", "docs/a.txt", b"hello", {"owner": "ops"})
    faulty_store.fail("put", "originals", "docs/a.txt")

    resp = faulty_client.put("/v1/assets/originals/docs/a.txt/metadata", json={"metadata": {"alt": "x"}})

    assert resp.status_code == 409
    assert resp.json()["detail"]["state"] == "renaming"
    assert resp.json()["detail"]["unsafe"] is True
    assert not faulty_store.exists("originals", "docs/a.txt")

    healed = faulty_client.get("/v1/assets/originals/docs/a.txt")
    assert healed.status_code == 200
    assert healed.json()["metadata"] == {"owner": "ops", "alt": "x"}


def test_store_failure_on_read_maps_to_503(faulty_client, faulty_store):
    faulty_store.put("originals", "docs/a.txt", b"hello")
    faulty_store.fail("get", "originals", "docs/a.txt")

    resp = faulty_client.get("/v1/assets/originals/docs/a.txt")

    assert resp.status_code == 503
    assert resp.json()["detail"]["error"] == "store_error"


def test_archive_processed_original(client):
    filename = _processed_filename(client)

    resp = client.post("/v1/ingest/archive", json={"key": f"processed/{filename}"})

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["status"] == "moved"
    assert body["dst_key"] == f"archive/{filename}"
    archived = client.get(f"/v1/assets/originals/archive/{filename}").json()
    assert archived["metadata"]["stage"] == "archived"
    assert client.get(f"/v1/images/{filename}").status_code == 404

    assert client.post("/v1/ingest/archive", json={"key": f"processed/{filename}"}).status_code == 404


def test_list_images(client):
    filename = _processed_filename(client)

    resp = client.get("/v1/images", params={"limit": 5})

    assert resp.status_code == 200
    items = resp.json()["items"]
    assert [item["filename"] for item in items] == [filename]
    assert items[0]["processed"] is True
    assert items[0]["srcset"]


def test_shutdown_closes_store(monkeypatch, configure_environment):
    monkeypatch.setenv("IMGCDN_STORE_TIMEOUT_S", "5")
    with TestClient(create_app()) as client:
        store = client.app.state.store
        assert isinstance(store, DeadlineObjectStore)
        assert client.get("/v1/health").status_code == 200

    with pytest.raises(RuntimeError):
        store.list("originals")
