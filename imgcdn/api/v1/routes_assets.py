from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Query, status

from imgcdn.api import deps
from imgcdn.core.storage import ObjectNotFound, StoreError
from imgcdn.ingest.errors import PatchFailed
from imgcdn.ingest.metadata_patch import MetadataPatcher
from imgcdn.services.delivery import DeliveryService, DeliveryView
from imgcdn.services.files import FileService

from . import schemas


router = APIRouter(tags=["assets"])


def _delivery_response(view: DeliveryView) -> schemas.DeliveryResponse:
    return schemas.DeliveryResponse(
        filename=view.filename,
        processed=view.processed,
        versions=view.versions,
        srcset=view.srcset,
        sizes=view.sizes,
        default_url=view.default_url,
    )


@router.get("/assets/{bucket}/{key:path}", response_model=schemas.ObjectMetadataResponse)
async def get_object_metadata(bucket: str, key: str, store: deps.StoreDependency) -> schemas.ObjectMetadataResponse:
    patcher = MetadataPatcher(store)
    try:
        stored = await asyncio.to_thread(patcher.get_with_recovery, bucket, key)
    except StoreError as exc:
        raise deps.store_http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return schemas.ObjectMetadataResponse(
        bucket=stored.bucket,
        key=stored.key,
        size=stored.size,
        content_type=stored.content_type,
        cache_control=stored.cache_control,
        metadata=stored.metadata,
    )


@router.put("/assets/{bucket}/{key:path}/metadata", response_model=schemas.MetadataUpdateResponse)
async def update_object_metadata(
    bucket: str,
    key: str,
    payload: schemas.MetadataUpdateRequest,
    files: FileService = Depends(deps.get_files),
) -> schemas.MetadataUpdateResponse:
    try:
        result = await asyncio.to_thread(files.update_metadata, bucket, key, payload.metadata)
    except PatchFailed as exc:
        raise deps.patch_http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return schemas.MetadataUpdateResponse(
        bucket=result.bucket,
        key=result.key,
        state=result.state.value,
        metadata=result.metadata,
    )


@router.get("/images", response_model=schemas.ImageListResponse)
async def list_images(
    limit: int = Query(default=20, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    delivery: DeliveryService = Depends(deps.get_delivery),
) -> schemas.ImageListResponse:
    try:
        views = await asyncio.to_thread(delivery.list_images, limit=limit, offset=offset)
    except StoreError as exc:
        raise deps.store_http_error(exc) from exc
    return schemas.ImageListResponse(limit=limit, offset=offset, items=[_delivery_response(view) for view in views])


@router.get("/images/{filename}", response_model=schemas.DeliveryResponse)
async def describe_image(
    filename: str,
    delivery: DeliveryService = Depends(deps.get_delivery),
) -> schemas.DeliveryResponse:
    try:
        view = await asyncio.to_thread(delivery.describe, filename)
    except ObjectNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="image_not_found")
    except StoreError as exc:
        raise deps.store_http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _delivery_response(view)


__all__ = ["router"]
