from __future__ import annotations

from typing import Any

from imgcdn.core.config import get_settings
from imgcdn.core.logging import configure_logging, get_logger
from imgcdn.core.storage import ObjectStore, get_object_store
from imgcdn.services.ingest_service import process_ingest_job
from imgcdn.services.scanner import process_scan_job

_shared_store: ObjectStore | None = None


def bind_store(store: ObjectStore | None) -> None:
    """Share one store instance with inline jobs (required for the in-memory backend)."""
    global _shared_store
    _shared_store = store


def run_job(job_type: str, payload: dict[str, Any]) -> dict[str, Any]:
    """Entry-point executed by the job backend (RQ or inline)."""

    settings = get_settings()
    store = _shared_store
    owned = store is None
    if store is None:
        configure_logging(settings.log_level, renderer=settings.log_format)
        store = get_object_store(settings)
    logger = get_logger(job_type=job_type)

    try:
        if job_type == "ingest":
            return process_ingest_job(payload, settings, store)
        if job_type == "scan":
            return process_scan_job(payload, settings, store)
    except Exception:
        logger.exception("job_failed", payload=payload)
        raise
    finally:
        if owned:
            store.close()
    raise ValueError(f"Unknown job type: {job_type}")


__all__ = ["bind_store", "run_job"]
