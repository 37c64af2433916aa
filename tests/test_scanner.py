from __future__ import annotations

from imgcdn.ingest.models import ErrorKind
from imgcdn.services.ingest_service import IngestCoordinator
from imgcdn.services.scanner import PendingSetScanner, process_pending, process_scan_job

from tests.helpers import make_image


def _seed(store, key, processed=False, data=b"x"):
    store.put("originals", key, data, {"processed": processed, "correlationId": f"asset:{key}"})


def test_scan_returns_unprocessed_in_key_order(settings, store):
    _seed(store, "uploads/3.jpg")
    _seed(store, "uploads/1.jpg")
    _seed(store, "uploads/2.jpg", processed=True)
    _seed(store, "uploads/4.jpg_temp")
    _seed(store, "processed/5.jpg")

    found = PendingSetScanner.from_settings(settings, store).scan(10)

    assert [item.key for item in found] == ["uploads/1.jpg", "uploads/3.jpg"]
    assert found[0].correlation_id == "asset:uploads/1.jpg"


def test_scan_respects_limit_across_pages(store):
    for index in range(7):
        _seed(store, f"uploads/{index}.jpg")
    scanner = PendingSetScanner(store, bucket="originals", prefix="uploads", page_size=2)

    assert len(scanner.scan(5)) == 5
    assert len(scanner.scan(50)) == 7
    assert scanner.scan(0) == []


def test_scan_job_processes_pending(settings, store):
    store.put("originals", "uploads/a.png", make_image("PNG", (300, 200)), {"processed": False})
    store.put("originals", "uploads/b.png", b"not an image", {"processed": False})

    summary = process_scan_job({"limit": 5}, settings, store)

    assert summary["scanned"] == 2
    assert summary["succeeded"] == 1
    assert store.exists("originals", "processed/a.png")
    assert store.exists("originals", "uploads/b.png")
    assert PendingSetScanner.from_settings(settings, store).scan(5)[0].key == "uploads/b.png"


def _seed_images(store, *names):
    for name in names:
        store.put("originals", f"uploads/{name}", make_image("JPEG", (300, 200)), {"processed": False})


def test_store_failure_on_one_asset_does_not_stop_the_batch(settings, faulty_store):
    _seed_images(faulty_store, "a.jpg", "b.jpg", "c.jpg")
    # The scanner's own read goes through; the coordinator's read fails.
    faulty_store.fail("get", "originals", "uploads/a.jpg", skip=1)

    results = process_pending(
        IngestCoordinator(settings, faulty_store), PendingSetScanner.from_settings(settings, faulty_store), 10
    )

    assert [item.asset.key for item in results] == ["uploads/a.jpg", "uploads/b.jpg", "uploads/c.jpg"]
    assert [item.success for item in results] == [False, True, True]
    assert results[0].errors[0].kind == ErrorKind.store_error
    assert faulty_store.exists("originals", "uploads/a.jpg")
    assert faulty_store.exists("originals", "processed/b.jpg")
    assert faulty_store.exists("originals", "processed/c.jpg")


def test_unreadable_entry_is_skipped_by_scan(settings, faulty_store):
    _seed(faulty_store, "uploads/a.jpg")
    _seed(faulty_store, "uploads/b.jpg")
    faulty_store.fail("get", "originals", "uploads/a.jpg")

    found = PendingSetScanner.from_settings(settings, faulty_store).scan(10)

    assert [item.key for item in found] == ["uploads/b.jpg"]


class _CrashingCoordinator(IngestCoordinator):
    def ingest(self, asset):
        if asset.key == "uploads/a.jpg":
            raise RuntimeError("worker bug")
        return super().ingest(asset)


def test_crashing_ingest_is_recorded_and_batch_continues(settings, store):
    _seed_images(store, "a.jpg", "b.jpg")

    results = process_pending(_CrashingCoordinator(settings, store), PendingSetScanner.from_settings(settings, store), 10)

    assert [item.success for item in results] == [False, True]
    assert results[0].errors[0].kind == ErrorKind.internal_error
    assert results[0].errors[0].message == "worker bug"
    assert store.exists("originals", "processed/b.jpg")
