from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from imgcdn.api.v1 import get_api_router
from imgcdn.core.config import get_settings
from imgcdn.core.jobs import get_job_backend
from imgcdn.core.logging import configure_logging, get_logger
from imgcdn.core.storage import get_object_store
from imgcdn.workers.tasks import bind_store

logger = get_logger(component="app")


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level, renderer=settings.log_format)
    store = get_object_store(settings)
    jobs = get_job_backend()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.settings = settings
        app.state.store = store
        app.state.jobs = jobs
        # Inline jobs must see the same store as the request handlers.
        bind_store(store)
        logger.info("app_started", storage_backend=settings.storage_backend, job_backend=settings.normalized_job_backend)
        try:
            yield
        finally:
            bind_store(None)
            store.close()
            logger.info("app_stopped")

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        lifespan=lifespan,
        openapi_url="/openapi.json",
        docs_url="/docs",
    )

    app.include_router(get_api_router())
    return app


__all__ = ["create_app"]
