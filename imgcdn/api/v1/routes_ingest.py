from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from imgcdn.api import deps
from imgcdn.core.config import Settings
from imgcdn.core.jobs import JobHandle, JobType
from imgcdn.core.storage import StoreError
from imgcdn.ingest.errors import DestinationWriteFailed, PatchFailed, SourceMissing, UploadValidationError
from imgcdn.ingest.intake import UploadIntake
from imgcdn.ingest.models import AssetRef
from imgcdn.services.ingest_service import IngestCoordinator

from . import schemas


router = APIRouter(prefix="/ingest", tags=["ingest"])


def _accepted(handle: JobHandle) -> schemas.JobAcceptedResponse:
    return schemas.JobAcceptedResponse(
        job_id=handle.job_id,
        type=handle.job_type.value,
        status=handle.status.value,
        result=handle.result,
        error=handle.error,
    )


@router.post("/upload", response_model=schemas.UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_image(
    jobs: deps.JobsDependency,
    file: UploadFile = File(...),
    process_immediately: bool = Form(default=False),
    intake: UploadIntake = Depends(deps.get_intake),
    settings: Settings = Depends(deps.get_app_settings),
) -> schemas.UploadResponse:
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="filename_required")

    # One byte past the limit is enough to reject oversize bodies.
    data = await file.read(settings.max_upload_size_bytes + 1)
    await file.close()
    try:
        asset = await asyncio.to_thread(intake.admit, data, file.filename, file.content_type, file.size)
    except UploadValidationError as exc:
        raise deps.validation_http_error(exc) from exc

    response = schemas.UploadResponse(bucket=asset.bucket, key=asset.key, correlation_id=asset.correlation_id or "")
    if process_immediately:
        handle = await jobs.enqueue(
            JobType.ingest,
            {"bucket": asset.bucket, "key": asset.key, "correlation_id": asset.correlation_id},
        )
        response.job = _accepted(handle)
    return response


@router.post("/run", response_model=schemas.JobAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def run_ingest(
    payload: schemas.IngestRunRequest,
    jobs: deps.JobsDependency,
    settings: Settings = Depends(deps.get_app_settings),
) -> schemas.JobAcceptedResponse:
    handle = await jobs.enqueue(
        JobType.ingest,
        {
            "bucket": payload.bucket or settings.incoming_bucket,
            "key": payload.key,
            "correlation_id": payload.correlation_id,
        },
    )
    return _accepted(handle)


@router.post("/scan", response_model=schemas.JobAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def scan_pending(
    payload: schemas.ScanRequest,
    jobs: deps.JobsDependency,
    settings: Settings = Depends(deps.get_app_settings),
) -> schemas.JobAcceptedResponse:
    handle = await jobs.enqueue(JobType.scan, {"limit": payload.limit or settings.scan_default_limit})
    return _accepted(handle)


@router.post("/archive", response_model=schemas.MoveOutcomeResponse)
async def archive_processed(
    payload: schemas.ArchiveRequest,
    coordinator: IngestCoordinator = Depends(deps.get_coordinator),
    settings: Settings = Depends(deps.get_app_settings),
) -> schemas.MoveOutcomeResponse:
    asset = AssetRef(bucket=settings.processed_bucket, key=payload.key)
    try:
        outcome = await asyncio.to_thread(coordinator.archive, asset)
    except SourceMissing as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="processed_original_not_found") from exc
    except DestinationWriteFailed as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": exc.kind.value, "message": str(exc)},
        ) from exc
    except PatchFailed as exc:
        raise deps.patch_http_error(exc) from exc
    except StoreError as exc:
        raise deps.store_http_error(exc) from exc
    return schemas.MoveOutcomeResponse(
        status=outcome.status.value,
        src_bucket=outcome.src_bucket,
        src_key=outcome.src_key,
        dst_bucket=outcome.dst_bucket,
        dst_key=outcome.dst_key,
        warning=outcome.warning,
    )


__all__ = ["router"]
