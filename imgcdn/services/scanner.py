from __future__ import annotations

from typing import Any

from imgcdn.core.config import Settings
from imgcdn.core.logging import get_logger
from imgcdn.core.storage import ObjectNotFound, ObjectStore, StoreError
from imgcdn.ingest.asset_id import correlation_id_of
from imgcdn.ingest.metadata_patch import TEMP_SUFFIX
from imgcdn.ingest.models import AssetRef, ErrorKind, IngestError, IngestResult

from .ingest_service import IngestCoordinator


class PendingSetScanner:
    """Lists Incoming originals that are not yet marked ``processed``.

    No locking: two scanners may hand out the same ref, and the coordinator
    tolerates the resulting duplicate ingests.
    """

    def __init__(self, store: ObjectStore, *, bucket: str, prefix: str, page_size: int = 100):
        self.store = store
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.page_size = page_size
        self.logger = get_logger(component="pending_scanner")

    @classmethod
    def from_settings(cls, settings: Settings, store: ObjectStore) -> "PendingSetScanner":
        return cls(
            store,
            bucket=settings.incoming_bucket,
            prefix=settings.incoming_prefix,
            page_size=settings.scan_page_size,
        )

    def scan(self, limit: int) -> list[AssetRef]:
        pending: list[AssetRef] = []
        if limit <= 0:
            return pending
        list_prefix = f"{self.prefix}/" if self.prefix else ""
        offset = 0
        while len(pending) < limit:
            page = self.store.list(self.bucket, list_prefix, limit=self.page_size, offset=offset)
            for entry in page:
                if entry.key.endswith(TEMP_SUFFIX):
                    continue
                try:
                    stored = self.store.get(self.bucket, entry.key)
                except ObjectNotFound:
                    # Relocated by another worker between list and get.
                    continue
                except StoreError as exc:
                    self.logger.warning("pending_scan_read_failed", key=entry.key, error=str(exc))
                    continue
                if stored.metadata.get("processed") is True:
                    continue
                pending.append(
                    AssetRef(bucket=self.bucket, key=entry.key, correlation_id=correlation_id_of(stored.metadata))
                )
                if len(pending) >= limit:
                    break
            if len(page) < self.page_size:
                break
            offset += self.page_size
        self.logger.info("pending_scan_completed", found=len(pending), limit=limit)
        return pending


def process_pending(coordinator: IngestCoordinator, scanner: PendingSetScanner, limit: int) -> list[IngestResult]:
    """Scan and feed every pending ref to the coordinator independently.

    A crash while ingesting one ref is logged and recorded as that ref's failed
    result; the remaining refs are still processed.
    """
    logger = get_logger(component="pending_scanner")
    results: list[IngestResult] = []
    for asset in scanner.scan(limit):
        try:
            results.append(coordinator.ingest(asset))
        except Exception as exc:
            logger.exception("pending_ingest_crashed", key=asset.key, correlation_id=asset.correlation_id)
            results.append(
                IngestResult(asset=asset, errors=[IngestError(kind=ErrorKind.internal_error, message=str(exc))])
            )
    return results


def process_scan_job(payload: dict[str, Any], settings: Settings, store: ObjectStore) -> dict[str, Any]:
    limit = int(payload.get("limit") or settings.scan_default_limit)
    coordinator = IngestCoordinator(settings, store)
    scanner = PendingSetScanner.from_settings(settings, store)
    results = process_pending(coordinator, scanner, limit)
    return {
        "scanned": len(results),
        "succeeded": sum(1 for item in results if item.success),
        "results": [item.to_dict() for item in results],
    }


__all__ = ["PendingSetScanner", "process_pending", "process_scan_job"]
