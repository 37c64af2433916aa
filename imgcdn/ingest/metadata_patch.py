"""Read-merge-write-rename metadata updates for a store without in-place patching.

The patch runs as a small state machine::

    reading -> writing_temp -> deleting_original -> renaming -> done

Between ``deleting_original`` and the end of ``renaming`` there is a documented
inconsistency window: a crash there leaves the object reachable only at
``<key>_temp``. Every reader that gets ``ObjectNotFound`` for a key therefore
probes the temp key and finishes the rename itself (see
:meth:`MetadataPatcher.get_with_recovery`).
"""

from __future__ import annotations

from typing import Any, Mapping

from imgcdn.core.logging import get_logger
from imgcdn.core.storage import ObjectNotFound, ObjectStore, StoredObject, StoreError, normalise_metadata

from .errors import PatchFailed, RelocationError
from .models import PatchResult, PatchState
from .relocator import Relocator

__all__ = ["TEMP_SUFFIX", "temp_key", "MetadataPatcher"]

TEMP_SUFFIX = "_temp"


def temp_key(key: str) -> str:
    return f"{key}{TEMP_SUFFIX}"


class MetadataPatcher:
    def __init__(self, store: ObjectStore, relocator: Relocator | None = None):
        self.store = store
        self.relocator = relocator or Relocator(store)
        self.logger = get_logger(component="metadata_patcher")

    def get_with_recovery(self, bucket: str, key: str) -> StoredObject:
        """Read ``key``; if it is missing but ``<key>_temp`` exists, complete the rename first.

        Raises:
            ObjectNotFound: Neither the key nor its temp twin exists.
        """
        try:
            return self.store.get(bucket, key)
        except ObjectNotFound:
            pass

        try:
            self.store.get(bucket, temp_key(key))
        except ObjectNotFound:
            raise ObjectNotFound(bucket, key) from None

        self.logger.warning("patch_recovery_rename", bucket=bucket, key=key)
        try:
            self.relocator.move(bucket, temp_key(key), bucket, key)
        except RelocationError as exc:
            # A concurrent reader may have finished the rename already.
            if not self.store.exists(bucket, key):
                raise StoreError(f"recovery rename failed for {bucket}/{key}: {exc}") from exc
        return self.store.get(bucket, key)

    def patch(self, bucket: str, key: str, delta: Mapping[str, Any]) -> PatchResult:
        """Merge ``delta`` into the metadata of ``bucket/key``; delta wins on conflicts.

        Raises:
            PatchFailed: with ``state`` set to the step that failed. Failures while
                ``reading``, ``writing_temp`` or ``deleting_original`` leave the
                original object intact; a failure while ``renaming`` leaves it at
                the temp key until a self-healing read or a retry completes it.
        """
        log = self.logger.bind(bucket=bucket, key=key)
        state = PatchState.reading
        try:
            current = self.get_with_recovery(bucket, key)
        except StoreError as exc:
            raise self._failed(state, bucket, key, exc) from exc

        merged = {**current.metadata, **normalise_metadata(delta)}
        staging_key = temp_key(key)

        state = PatchState.writing_temp
        try:
            self.store.put(
                bucket,
                staging_key,
                current.data,
                merged,
                content_type=current.content_type,
                cache_control=current.cache_control,
                upsert=True,
            )
        except StoreError as exc:
            raise self._failed(state, bucket, key, exc) from exc

        state = PatchState.deleting_original
        try:
            self.store.delete(bucket, key)
        except StoreError as exc:
            raise self._failed(state, bucket, key, exc) from exc

        state = PatchState.renaming
        try:
            outcome = self.relocator.move(bucket, staging_key, bucket, key)
        except RelocationError as exc:
            log.error("patch_unsafe_window", temp_key=staging_key, error=str(exc))
            raise self._failed(state, bucket, key, exc) from exc

        log.info("metadata_patched", fields=sorted(delta))
        return PatchResult(bucket=bucket, key=key, metadata=merged, state=PatchState.done, move=outcome)

    def _failed(self, state: PatchState, bucket: str, key: str, exc: Exception) -> PatchFailed:
        self.logger.warning("metadata_patch_failed", bucket=bucket, key=key, state=state.value, error=str(exc))
        return PatchFailed(f"patch failed while {state.value}: {exc}", bucket=bucket, key=key, state=state)
