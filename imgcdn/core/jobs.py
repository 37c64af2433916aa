from __future__ import annotations

import asyncio
import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Optional
from uuid import uuid4

from redis import Redis
from rq import Queue

from .config import get_settings


class JobType(str, enum.Enum):
    ingest = "ingest"
    scan = "scan"


class JobStatus(str, enum.Enum):
    queued = "queued"
    succeeded = "succeeded"
    failed = "failed"


@dataclass(slots=True)
class JobHandle:
    job_id: str
    job_type: JobType
    status: JobStatus
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None


class BaseJobBackend(ABC):
    @abstractmethod
    async def enqueue(self, job_type: JobType, payload: dict[str, Any]) -> JobHandle: ...


class ImmediateJobBackend(BaseJobBackend):
    """Runs the job inline on a worker thread and returns its outcome."""

    async def enqueue(self, job_type: JobType, payload: dict[str, Any]) -> JobHandle:
        from imgcdn.workers.tasks import run_job

        job_id = uuid4().hex
        try:
            result = await asyncio.to_thread(run_job, job_type.value, payload)
        except Exception as exc:
            return JobHandle(job_id=job_id, job_type=job_type, status=JobStatus.failed, error=str(exc))
        return JobHandle(job_id=job_id, job_type=job_type, status=JobStatus.succeeded, result=result)


class RQJobBackend(BaseJobBackend):
    def __init__(self, queue: Queue):
        self.queue = queue

    async def enqueue(self, job_type: JobType, payload: dict[str, Any]) -> JobHandle:  # pragma: no cover - exercised via worker
        from imgcdn.workers.tasks import run_job

        job = self.queue.enqueue(run_job, job_type.value, payload)
        return JobHandle(job_id=job.id, job_type=job_type, status=JobStatus.queued)


@lru_cache()
def get_job_backend() -> BaseJobBackend:
    settings = get_settings()
    backend = settings.normalized_job_backend
    if backend == "immediate":
        return ImmediateJobBackend()
    if backend == "rq":  # pragma: no cover - requires redis
        connection = Redis.from_url(settings.redis_url)
        return RQJobBackend(Queue(settings.job_queue_name, connection=connection))
    raise ValueError(f"Unsupported job backend: {settings.job_queue_backend}")


__all__ = ["JobType", "JobStatus", "JobHandle", "BaseJobBackend", "ImmediateJobBackend", "RQJobBackend", "get_job_backend"]
