from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from imgcdn.core.config import Settings, get_settings
from imgcdn.core.jobs import BaseJobBackend
from imgcdn.core.storage import ObjectNotFound, ObjectStore, StoreError
from imgcdn.ingest.errors import PatchFailed, UploadValidationError
from imgcdn.ingest.intake import UploadIntake
from imgcdn.ingest.models import PatchState
from imgcdn.services.delivery import DeliveryService
from imgcdn.services.files import FileService
from imgcdn.services.ingest_service import IngestCoordinator, create_intake


def get_store(request: Request) -> ObjectStore:
    store: ObjectStore = request.app.state.store
    return store


def get_app_settings() -> Settings:
    return get_settings()


def get_jobs(request: Request) -> BaseJobBackend:
    backend: BaseJobBackend = request.app.state.jobs
    return backend


def get_intake(
    store: ObjectStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
) -> UploadIntake:
    return create_intake(settings, store)


def get_delivery(
    store: ObjectStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
) -> DeliveryService:
    return DeliveryService(settings, store)


def get_files(store: ObjectStore = Depends(get_store)) -> FileService:
    return FileService(store)


def get_coordinator(
    store: ObjectStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
) -> IngestCoordinator:
    return IngestCoordinator(settings, store)


StoreDependency = Annotated[ObjectStore, Depends(get_store)]
JobsDependency = Annotated[BaseJobBackend, Depends(get_jobs)]


_VALIDATION_STATUS = {
    "upload_too_large": status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    "unsupported_type": status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
}


def validation_http_error(exc: UploadValidationError) -> HTTPException:
    code = _VALIDATION_STATUS.get(exc.code, status.HTTP_422_UNPROCESSABLE_ENTITY)
    return HTTPException(status_code=code, detail={"error": exc.code, "message": str(exc)})


def patch_http_error(exc: PatchFailed) -> HTTPException:
    if exc.state == PatchState.reading and isinstance(exc.__cause__, ObjectNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="object_not_found")
    # Only a failed rename leaves the object parked at its temp key; the next read heals it.
    code = status.HTTP_409_CONFLICT if exc.unsafe else status.HTTP_503_SERVICE_UNAVAILABLE
    return HTTPException(
        status_code=code,
        detail={"error": exc.kind.value, "state": exc.state.value, "unsafe": exc.unsafe, "message": str(exc)},
    )


def store_http_error(exc: StoreError) -> HTTPException:
    if isinstance(exc, ObjectNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="object_not_found")
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"error": "store_error", "message": str(exc)},
    )


__all__ = [
    "get_store",
    "get_app_settings",
    "get_jobs",
    "get_intake",
    "get_delivery",
    "get_files",
    "get_coordinator",
    "StoreDependency",
    "JobsDependency",
    "validation_http_error",
    "patch_http_error",
    "store_http_error",
]
