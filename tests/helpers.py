from __future__ import annotations

import io
from dataclasses import dataclass
from fnmatch import fnmatch
from typing import Any, Mapping

from PIL import Image

from imgcdn.core.storage import MemoryObjectStore, ObjectInfo, ObjectStore, StoredObject, StoreError

SCENARIO_PROFILES = {"original": None, "large": 1200, "thumb": 200}


def make_image(fmt: str = "JPEG", size: tuple[int, int] = (64, 48), *, mode: str = "RGB") -> bytes:
    """Render a solid-colour image with Pillow and return its encoded bytes."""
    colour: Any = (200, 30, 30, 128) if mode == "RGBA" else (200, 30, 30)
    if mode == "P":
        image = Image.new("RGB", size, (200, 30, 30)).convert("P")
    else:
        image = Image.new(mode, size, colour)
    buf = io.BytesIO()
    image.save(buf, format=fmt)
    return buf.getvalue()


SVG_DOC = b'<?xml version="1.0"?>\n<svg xmlns="http://www.w3.org/2000/svg" width="120" height="80"><rect width="120" height="80"/></svg>'


@dataclass
class Fault:
    operation: str
    bucket: str
    pattern: str
    skip: int = 0
    times: int | None = 1


class FaultyStore(ObjectStore):
    """Memory store that raises ``StoreError`` for scripted operations.

    ``fail("put", "originals", "processed/*", skip=1)`` lets the first matching put
    through and fails the next one.
    """

    def __init__(self, inner: ObjectStore | None = None):
        self.inner = inner or MemoryObjectStore()
        self.faults: list[Fault] = []
        self.calls: list[tuple[str, str, str]] = []

    def fail(self, operation: str, bucket: str, pattern: str, *, skip: int = 0, times: int | None = 1) -> Fault:
        fault = Fault(operation, bucket, pattern, skip=skip, times=times)
        self.faults.append(fault)
        return fault

    def clear(self) -> None:
        self.faults.clear()

    def _check(self, operation: str, bucket: str, key: str) -> None:
        self.calls.append((operation, bucket, key))
        for fault in self.faults:
            if fault.operation != operation or fault.bucket != bucket or not fnmatch(key, fault.pattern):
                continue
            if fault.skip > 0:
                fault.skip -= 1
                continue
            if fault.times is not None:
                if fault.times <= 0:
                    continue
                fault.times -= 1
            raise StoreError(f"injected {operation} failure for {bucket}/{key}")

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
        self._check("put", bucket, key)
        return self.inner.put(
            bucket, key, data, metadata, content_type=content_type, cache_control=cache_control, upsert=upsert
        )

    def get(self, bucket: str, key: str) -> StoredObject:
        self._check("get", bucket, key)
        return self.inner.get(bucket, key)

    def delete(self, bucket: str, key: str) -> None:
        self._check("delete", bucket, key)
        self.inner.delete(bucket, key)

    def list(self, bucket: str, prefix: str = "", *, limit: int = 100, offset: int = 0) -> list[ObjectInfo]:
        self._check("list", bucket, prefix)
        return self.inner.list(bucket, prefix, limit=limit, offset=offset)


def snapshot(store: ObjectStore, *buckets: str) -> dict[tuple[str, str], tuple[bytes, dict[str, Any]]]:
    """Capture bytes and metadata of every object in ``buckets``."""
    state: dict[tuple[str, str], tuple[bytes, dict[str, Any]]] = {}
    for bucket in buckets:
        for entry in store.list(bucket, "", limit=10_000):
            stored = store.get(bucket, entry.key)
            state[(bucket, entry.key)] = (stored.data, stored.metadata)
    return state
