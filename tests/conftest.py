from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from imgcdn.core.config import Settings, get_settings
from imgcdn.core.jobs import get_job_backend
from imgcdn.core.storage import MemoryObjectStore
from imgcdn.main import create_app
from imgcdn.workers.tasks import bind_store

from tests.helpers import SCENARIO_PROFILES, FaultyStore, make_image


@pytest.fixture(autouse=True)
def configure_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("IMGCDN_ENVIRONMENT", "test")
    monkeypatch.setenv("IMGCDN_LOG_LEVEL", "debug")
    monkeypatch.setenv("IMGCDN_LOG_FORMAT", "console")
    monkeypatch.setenv("IMGCDN_STORAGE_BACKEND", "memory")
    monkeypatch.setenv("IMGCDN_STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("IMGCDN_JOB_QUEUE_BACKEND", "inline")
    monkeypatch.setenv("IMGCDN_PUBLIC_BASE_URL", "https://cdn.test/storage")
    for name in ("IMGCDN_ENV", "IMGCDN_JOB_BACKEND", "IMGCDN_QUALITY"):
        monkeypatch.delenv(name, raising=False)

    get_settings.cache_clear()
    get_job_backend.cache_clear()
    yield
    bind_store(None)
    get_job_backend.cache_clear()
    get_settings.cache_clear()


@pytest.fixture()
def settings() -> Settings:
    return Settings(size_profiles=dict(SCENARIO_PROFILES))


@pytest.fixture()
def store() -> MemoryObjectStore:
    return MemoryObjectStore()


@pytest.fixture()
def faulty_store() -> FaultyStore:
    return FaultyStore()


@pytest.fixture()
def jpeg_2000() -> bytes:
    return make_image("JPEG", (2000, 1500))


@pytest.fixture()
def client(configure_environment):
    app = create_app()
    with TestClient(app) as client:
        yield client
