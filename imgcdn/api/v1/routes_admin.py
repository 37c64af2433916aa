from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends

from imgcdn.api import deps
from imgcdn.core.config import Settings
from imgcdn.core.logging import get_logger
from imgcdn.core.storage import ObjectStore, StoreError
from imgcdn.ingest.codec import webp_supported
from imgcdn.services.stats import collect_storage_stats

from .schemas import BucketStatsResponse, EnvCheckResponse, StorageStatsResponse


router = APIRouter(prefix="/admin", tags=["admin"])
logger = get_logger(component="admin_api")


def _probe_store(store: ObjectStore, bucket: str) -> bool:
    try:
        store.list(bucket, "", limit=1)
    except StoreError as exc:
        logger.warning("store_probe_failed", bucket=bucket, error=str(exc))
        return False
    return True


@router.get("/env-check", response_model=EnvCheckResponse, summary="Validate imaging toolchain and store")
async def env_check(
    store: deps.StoreDependency,
    settings: Settings = Depends(deps.get_app_settings),
) -> EnvCheckResponse:
    reachable = await asyncio.to_thread(_probe_store, store, settings.incoming_bucket)
    return EnvCheckResponse(pillow=True, webp=webp_supported(), storage=reachable)


@router.get("/stats", response_model=StorageStatsResponse, summary="Per-bucket storage statistics")
async def storage_stats(
    store: deps.StoreDependency,
    settings: Settings = Depends(deps.get_app_settings),
) -> StorageStatsResponse:
    stats = await asyncio.to_thread(collect_storage_stats, settings, store)
    return StorageStatsResponse(
        buckets=[
            BucketStatsResponse(
                bucket=item.bucket,
                total_files=item.total_files,
                total_size=item.total_size,
                file_types=item.file_types,
            )
            for item in stats
        ]
    )


__all__ = ["router"]
