from __future__ import annotations

from typing import Any, Mapping

from imgcdn.core.logging import get_logger
from imgcdn.core.storage import ObjectInfo, ObjectNotFound, ObjectStore
from imgcdn.ingest.metadata_patch import MetadataPatcher, temp_key
from imgcdn.ingest.models import PatchResult


class FileService:
    """Raw object management: listing, deletion and metadata updates for any bucket."""

    def __init__(self, store: ObjectStore):
        self.store = store
        self.patcher = MetadataPatcher(store)
        self.logger = get_logger(component="file_service")

    def list_files(self, bucket: str, prefix: str = "", *, limit: int = 100, offset: int = 0) -> list[ObjectInfo]:
        return self.store.list(bucket, prefix, limit=limit, offset=offset)

    def delete_file(self, bucket: str, key: str) -> None:
        """Delete ``key`` together with any ``_temp`` twin a self-healing read would restore.

        Raises:
            ObjectNotFound: Neither the key nor its temp twin exists.
        """
        if not (self.store.exists(bucket, key) or self.store.exists(bucket, temp_key(key))):
            raise ObjectNotFound(bucket, key)
        self.store.delete(bucket, key)
        self.store.delete(bucket, temp_key(key))
        self.logger.info("file_deleted", bucket=bucket, key=key)

    def update_metadata(self, bucket: str, key: str, metadata: Mapping[str, Any]) -> PatchResult:
        """Merge ``metadata`` into the object's metadata.

        Raises:
            PatchFailed: See :meth:`MetadataPatcher.patch`.
        """
        return self.patcher.patch(bucket, key, metadata)


__all__ = ["FileService"]
