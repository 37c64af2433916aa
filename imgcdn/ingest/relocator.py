from __future__ import annotations

from imgcdn.core.logging import get_logger
from imgcdn.core.storage import ObjectNotFound, ObjectStore, StoreError

from .errors import DestinationWriteFailed, SourceMissing
from .models import MoveOutcome, MoveStatus

__all__ = ["Relocator", "DEFAULT_MOVE_CACHE_CONTROL"]

DEFAULT_MOVE_CACHE_CONTROL = "public, max-age=31536000, immutable"


class Relocator:
    """Emulates a move between bucket/key pairs as get, put, then delete.

    The source is never deleted before the destination write is acknowledged, so
    any failure leaves either the untouched source or a duplicate, never a loss.
    """

    def __init__(self, store: ObjectStore, *, cache_control: str = DEFAULT_MOVE_CACHE_CONTROL):
        self.store = store
        self.cache_control = cache_control
        self.logger = get_logger(component="relocator")

    def move(self, src_bucket: str, src_key: str, dst_bucket: str, dst_key: str) -> MoveOutcome:
        """Move one object.

        Returns:
            ``MoveStatus.moved``, or ``MoveStatus.duplicated`` when the stale
            source could not be deleted after the destination was written.

        Raises:
            SourceMissing: Nothing exists at the source.
            DestinationWriteFailed: The destination put failed; the source is intact.
        """
        log = self.logger.bind(src=f"{src_bucket}/{src_key}", dst=f"{dst_bucket}/{dst_key}")
        try:
            source = self.store.get(src_bucket, src_key)
        except ObjectNotFound as exc:
            raise SourceMissing(f"source missing: {src_bucket}/{src_key}", bucket=src_bucket, key=src_key) from exc
        except StoreError as exc:
            # Nothing written yet; reported as a retryable move failure.
            raise DestinationWriteFailed(
                f"could not read source {src_bucket}/{src_key}: {exc}", bucket=dst_bucket, key=dst_key
            ) from exc

        if (src_bucket, src_key) == (dst_bucket, dst_key):
            return MoveOutcome(MoveStatus.moved, src_bucket, src_key, dst_bucket, dst_key)

        try:
            self.store.put(
                dst_bucket,
                dst_key,
                source.data,
                source.metadata,
                content_type=source.content_type,
                cache_control=self.cache_control,
                upsert=True,
            )
        except StoreError as exc:
            log.error("relocation_destination_write_failed", error=str(exc))
            raise DestinationWriteFailed(
                f"destination write failed: {dst_bucket}/{dst_key}: {exc}", bucket=dst_bucket, key=dst_key
            ) from exc

        try:
            self.store.delete(src_bucket, src_key)
        except StoreError as exc:
            log.warning("relocation_source_delete_failed", error=str(exc))
            return MoveOutcome(
                MoveStatus.duplicated,
                src_bucket,
                src_key,
                dst_bucket,
                dst_key,
                warning=f"stale source left at {src_bucket}/{src_key}: {exc}",
            )

        log.info("relocation_completed")
        return MoveOutcome(MoveStatus.moved, src_bucket, src_key, dst_bucket, dst_key)
