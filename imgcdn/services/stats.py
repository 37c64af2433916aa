from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Iterable

from imgcdn.core.config import Settings
from imgcdn.core.storage import ObjectStore


@dataclass(slots=True)
class BucketStats:
    bucket: str
    total_files: int = 0
    total_size: int = 0
    file_types: dict[str, int] = field(default_factory=dict)


def collect_bucket_stats(store: ObjectStore, bucket: str, *, page_size: int = 1000) -> BucketStats:
    """Walk every page of ``bucket`` and tally counts, bytes and extensions."""
    stats = BucketStats(bucket=bucket)
    extensions: Counter[str] = Counter()
    offset = 0
    while True:
        page = store.list(bucket, "", limit=page_size, offset=offset)
        for entry in page:
            stats.total_files += 1
            stats.total_size += entry.size
            extensions[PurePosixPath(entry.key).suffix.lstrip(".").lower() or "none"] += 1
        if len(page) < page_size:
            break
        offset += page_size
    stats.file_types = dict(sorted(extensions.items()))
    return stats


def pipeline_buckets(settings: Settings) -> list[str]:
    return _unique([settings.incoming_bucket, settings.processed_bucket, settings.derivative_bucket])


def collect_storage_stats(settings: Settings, store: ObjectStore) -> list[BucketStats]:
    return [collect_bucket_stats(store, bucket, page_size=settings.scan_page_size) for bucket in pipeline_buckets(settings)]


def _unique(items: Iterable[str]) -> list[str]:
    seen: list[str] = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen


__all__ = ["BucketStats", "collect_bucket_stats", "collect_storage_stats", "pipeline_buckets"]
