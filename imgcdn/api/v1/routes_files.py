from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Query, status

from imgcdn.api import deps
from imgcdn.core.storage import StoreError
from imgcdn.services.files import FileService

from . import schemas


router = APIRouter(prefix="/files", tags=["files"])


@router.get("", response_model=schemas.FileListResponse)
async def list_files(
    bucket: str = Query(..., min_length=1),
    prefix: str = Query(default=""),
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    files: FileService = Depends(deps.get_files),
) -> schemas.FileListResponse:
    try:
        entries = await asyncio.to_thread(files.list_files, bucket, prefix, limit=limit, offset=offset)
    except StoreError as exc:
        raise deps.store_http_error(exc) from exc
    return schemas.FileListResponse(
        bucket=bucket,
        prefix=prefix,
        limit=limit,
        offset=offset,
        items=[
            schemas.FileEntryResponse(key=entry.key, size=entry.size, last_modified=entry.last_modified)
            for entry in entries
        ],
    )


@router.delete("/{bucket}/{key:path}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_file(bucket: str, key: str, files: FileService = Depends(deps.get_files)) -> None:
    try:
        await asyncio.to_thread(files.delete_file, bucket, key)
    except StoreError as exc:
        raise deps.store_http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


__all__ = ["router"]
