from __future__ import annotations

import json
import os
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Mapping, TypeVar
from uuid import uuid4

from .config import Settings

T = TypeVar("T")

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class StoreError(Exception):
    """A store call failed; no guarantee about what the store holds afterwards."""


class ObjectNotFound(StoreError):
    def __init__(self, bucket: str, key: str):
        super().__init__(f"{bucket}/{key}")
        self.bucket = bucket
        self.key = key


class ObjectExists(StoreError):
    def __init__(self, bucket: str, key: str):
        super().__init__(f"{bucket}/{key}")
        self.bucket = bucket
        self.key = key


class StoreTimeout(StoreError):
    pass


@dataclass(slots=True)
class ObjectInfo:
    key: str
    size: int
    last_modified: datetime


@dataclass(slots=True)
class StoredObject:
    bucket: str
    key: str
    data: bytes
    metadata: dict[str, Any] = field(default_factory=dict)
    content_type: str = DEFAULT_CONTENT_TYPE
    cache_control: str | None = None

    @property
    def size(self) -> int:
        return len(self.data)


def normalise_metadata(metadata: Mapping[str, Any] | None) -> dict[str, Any]:
    """Return a JSON-compatible copy of ``metadata`` with timestamps as ISO strings."""
    result: dict[str, Any] = {}
    for key, value in (metadata or {}).items():
        result[str(key)] = _normalise_value(value)
    return result


def _normalise_value(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_normalise_value(item) for item in value]
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    return str(value)


def _check_key(key: str) -> str:
    path = PurePosixPath(key)
    if not key or key.startswith("/") or any(part in {"", ".", ".."} for part in key.split("/")):
        raise ValueError(f"invalid object key: {key!r}")
    return path.as_posix()


class ObjectStore(ABC):
    """Four-primitive object store: put, get, delete, list. Nothing spans keys atomically."""

    @abstractmethod
    def put(
        self,
        bucket: str,
        key: str,
        data: bytes,
        metadata: Mapping[str, Any] | None = None,
        *,
        content_type: str | None = None,
        cache_control: str | None = None,
        upsert: bool = False,
    ) -> ObjectInfo: ...

    @abstractmethod
    def get(self, bucket: str, key: str) -> StoredObject: ...

    @abstractmethod
    def delete(self, bucket: str, key: str) -> None: ...

    @abstractmethod
    def list(self, bucket: str, prefix: str = "", *, limit: int = 100, offset: int = 0) -> list[ObjectInfo]: ...

    def exists(self, bucket: str, key: str) -> bool:
        try:
            self.get(bucket, key)
        except ObjectNotFound:
            return False
        return True

    def close(self) -> None:
        """Release resources held by the store; a no-op for most backends."""


class LocalObjectStore(ObjectStore):
    """Filesystem-backed store; bytes and metadata live in parallel trees under ``base_path``."""

    def __init__(self, base_path: Path):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _data_path(self, bucket: str, key: str) -> Path:
        return self.base_path / "objects" / bucket / _check_key(key)

    def _meta_path(self, bucket: str, key: str) -> Path:
        return self.base_path / "meta" / bucket / f"{_check_key(key)}.json"

    def put(
        self,
        bucket: str,
        key: str,
        data: bytes,
        metadata: Mapping[str, Any] | None = None,
        *,
        content_type: str | None = None,
        cache_control: str | None = None,
        upsert: bool = False,
    ) -> ObjectInfo:
        data_path = self._data_path(bucket, key)
        if not upsert and data_path.exists():
            raise ObjectExists(bucket, key)
        envelope = {
            "metadata": normalise_metadata(metadata),
            "content_type": content_type or DEFAULT_CONTENT_TYPE,
            "cache_control": cache_control,
        }
        try:
            self._atomic_write(self._meta_path(bucket, key), json.dumps(envelope, sort_keys=True).encode("utf-8"))
            self._atomic_write(data_path, data)
        except OSError as exc:
            raise StoreError(f"put failed for {bucket}/{key}: {exc}") from exc
        stat = data_path.stat()
        return ObjectInfo(key=key, size=stat.st_size, last_modified=_mtime(stat.st_mtime))

    def get(self, bucket: str, key: str) -> StoredObject:
        data_path = self._data_path(bucket, key)
        try:
            data = data_path.read_bytes()
        except FileNotFoundError:
            raise ObjectNotFound(bucket, key) from None
        except OSError as exc:
            raise StoreError(f"get failed for {bucket}/{key}: {exc}") from exc
        try:
            envelope = json.loads(self._meta_path(bucket, key).read_text(encoding="utf-8"))
        except FileNotFoundError:
            # Metadata is written before data and removed after it, so a missing
            # envelope here means a concurrent delete.
            raise ObjectNotFound(bucket, key) from None
        except (OSError, ValueError) as exc:
            raise StoreError(f"unreadable metadata for {bucket}/{key}: {exc}") from exc
        if not isinstance(envelope, dict):
            raise StoreError(f"unreadable metadata for {bucket}/{key}: not an object")
        return StoredObject(
            bucket=bucket,
            key=key,
            data=data,
            metadata=envelope.get("metadata") or {},
            content_type=envelope.get("content_type") or DEFAULT_CONTENT_TYPE,
            cache_control=envelope.get("cache_control"),
        )

    def delete(self, bucket: str, key: str) -> None:
        try:
            self._data_path(bucket, key).unlink(missing_ok=True)
            self._meta_path(bucket, key).unlink(missing_ok=True)
        except OSError as exc:
            raise StoreError(f"delete failed for {bucket}/{key}: {exc}") from exc

    def list(self, bucket: str, prefix: str = "", *, limit: int = 100, offset: int = 0) -> list[ObjectInfo]:
        root = self.base_path / "objects" / bucket
        if not root.exists():
            return []
        entries: list[ObjectInfo] = []
        for path in root.rglob("*"):
            if not path.is_file() or path.name.startswith(".tmp-"):
                continue
            key = path.relative_to(root).as_posix()
            if not key.startswith(prefix):
                continue
            stat = path.stat()
            entries.append(ObjectInfo(key=key, size=stat.st_size, last_modified=_mtime(stat.st_mtime)))
        entries.sort(key=lambda item: item.key)
        return entries[offset : offset + limit]

    @staticmethod
    def _atomic_write(path: Path, payload: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".tmp-{uuid4().hex}")
        tmp.write_bytes(payload)
        os.replace(tmp, path)


class MemoryObjectStore(ObjectStore):
    """Process-local store, used for tests and single-process deployments."""

    def __init__(self) -> None:
        self._objects: dict[tuple[str, str], tuple[StoredObject, datetime]] = {}
        self._lock = threading.Lock()

    def put(
        self,
        bucket: str,
        key: str,
        data: bytes,
        metadata: Mapping[str, Any] | None = None,
        *,
        content_type: str | None = None,
        cache_control: str | None = None,
        upsert: bool = False,
    ) -> ObjectInfo:
        _check_key(key)
        stored = StoredObject(
            bucket=bucket,
            key=key,
            data=bytes(data),
            metadata=normalise_metadata(metadata),
            content_type=content_type or DEFAULT_CONTENT_TYPE,
            cache_control=cache_control,
        )
        now = datetime.now(timezone.utc)
        with self._lock:
            if not upsert and (bucket, key) in self._objects:
                raise ObjectExists(bucket, key)
            self._objects[(bucket, key)] = (stored, now)
        return ObjectInfo(key=key, size=stored.size, last_modified=now)

    def get(self, bucket: str, key: str) -> StoredObject:
        with self._lock:
            entry = self._objects.get((bucket, key))
        if entry is None:
            raise ObjectNotFound(bucket, key)
        stored = entry[0]
        return StoredObject(
            bucket=stored.bucket,
            key=stored.key,
            data=stored.data,
            metadata=dict(stored.metadata),
            content_type=stored.content_type,
            cache_control=stored.cache_control,
        )

    def delete(self, bucket: str, key: str) -> None:
        with self._lock:
            self._objects.pop((bucket, key), None)

    def list(self, bucket: str, prefix: str = "", *, limit: int = 100, offset: int = 0) -> list[ObjectInfo]:
        with self._lock:
            entries = [
                ObjectInfo(key=key, size=stored.size, last_modified=modified)
                for (owner, key), (stored, modified) in self._objects.items()
                if owner == bucket and key.startswith(prefix)
            ]
        entries.sort(key=lambda item: item.key)
        return entries[offset : offset + limit]


class DeadlineObjectStore(ObjectStore):
    """Wraps another store and fails any call that runs longer than ``timeout_s``.

    A timed-out call raises :class:`StoreTimeout`; callers treat it exactly like
    the wrapped call failing. The underlying call is not cancelled.
    """

    def __init__(self, inner: ObjectStore, timeout_s: float, *, max_workers: int = 8):
        self.inner = inner
        self.timeout_s = timeout_s
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="store-deadline")

    def _call(self, operation: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        future = self._executor.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=self.timeout_s)
        except FutureTimeout:
            raise StoreTimeout(f"{operation} exceeded {self.timeout_s}s") from None

    def put(
        self,
        bucket: str,
        key: str,
        data: bytes,
        metadata: Mapping[str, Any] | None = None,
        *,
        content_type: str | None = None,
        cache_control: str | None = None,
        upsert: bool = False,
    ) -> ObjectInfo:
        return self._call(
            "put",
            self.inner.put,
            bucket,
            key,
            data,
            metadata,
            content_type=content_type,
            cache_control=cache_control,
            upsert=upsert,
        )

    def get(self, bucket: str, key: str) -> StoredObject:
        return self._call("get", self.inner.get, bucket, key)

    def delete(self, bucket: str, key: str) -> None:
        self._call("delete", self.inner.delete, bucket, key)

    def list(self, bucket: str, prefix: str = "", *, limit: int = 100, offset: int = 0) -> list[ObjectInfo]:
        return self._call("list", self.inner.list, bucket, prefix, limit=limit, offset=offset)

    def close(self) -> None:
        self._executor.shutdown(wait=False)
        self.inner.close()


def _mtime(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def get_object_store(settings: Settings) -> ObjectStore:
    store: ObjectStore
    if settings.storage_backend == "local":
        store = LocalObjectStore(base_path=Path(settings.storage_root))
    elif settings.storage_backend == "memory":
        store = MemoryObjectStore()
    else:
        raise ValueError(f"Unsupported storage backend: {settings.storage_backend}")
    if settings.store_timeout_s:
        store = DeadlineObjectStore(store, settings.store_timeout_s)
    return store


__all__ = [
    "StoreError",
    "ObjectNotFound",
    "ObjectExists",
    "StoreTimeout",
    "ObjectInfo",
    "StoredObject",
    "ObjectStore",
    "LocalObjectStore",
    "MemoryObjectStore",
    "DeadlineObjectStore",
    "normalise_metadata",
    "get_object_store",
]
