from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Any, Callable

from imgcdn.core.config import Settings
from imgcdn.core.logging import get_logger
from imgcdn.core.storage import ObjectNotFound, ObjectStore, StoredObject, StoreError
from imgcdn.ingest.asset_id import CORRELATION_KEY, correlation_id_of, new_correlation_id
from imgcdn.ingest.codec import Codec, encode_webp
from imgcdn.ingest.derivatives import VECTOR_PROFILE, DerivativeGenerator, DerivativeLayout
from imgcdn.ingest.errors import DestinationWriteFailed, PatchFailed, RelocationError, SourceMissing
from imgcdn.ingest.formats import detect_format, is_vector
from imgcdn.ingest.intake import UploadIntake
from imgcdn.ingest.metadata_patch import MetadataPatcher, temp_key
from imgcdn.ingest.models import (
    AssetRef,
    Derivative,
    ErrorKind,
    GeneratedDerivative,
    IngestError,
    IngestResult,
    MoveOutcome,
    MoveStatus,
    Stage,
)
from imgcdn.ingest.relocator import Relocator


class IngestCoordinator:
    """Drives one asset from Incoming to Processed.

    Generates every configured derivative, relocates the original and patches
    its metadata. The coordinator is the only component that decides stage
    transitions; the relocator and patcher it calls hold no state.
    """

    def __init__(
        self,
        settings: Settings,
        store: ObjectStore,
        *,
        codec: Codec = encode_webp,
        clock: Callable[[], datetime] | None = None,
    ):
        self.settings = settings
        self.store = store
        self.profiles = settings.profiles
        self.layout = DerivativeLayout(
            settings.derivative_bucket,
            raster_prefix=settings.derivative_prefix,
            vector_prefix=settings.vector_prefix,
        )
        self.generator = DerivativeGenerator(
            self.layout,
            quality=settings.webp_quality,
            codec=codec,
            max_output_bytes=settings.max_derivative_bytes,
        )
        self.relocator = Relocator(store, cache_control=settings.immutable_cache_control)
        self.patcher = MetadataPatcher(store, self.relocator)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = get_logger(component="ingest_coordinator")

    def processed_key(self, asset: AssetRef) -> str:
        return f"{self.settings.processed_prefix}/{PurePosixPath(asset.key).name}"

    def archive_key(self, asset: AssetRef) -> str:
        return f"{self.settings.archive_prefix}/{PurePosixPath(asset.key).name}"

    def ingest(self, asset: AssetRef) -> IngestResult:
        """Run the pipeline for ``asset``; failures come back inside the result."""
        result = IngestResult(asset=asset)
        log = self.logger.bind(bucket=asset.bucket, key=asset.key, correlation_id=asset.correlation_id)
        try:
            return self._ingest(asset, result, log)
        except StoreError as exc:
            # Anything already written is keyed deterministically, so a retry converges.
            log.error("ingest_store_error", error=str(exc), error_type=type(exc).__name__)
            result.success = False
            result.errors.append(IngestError(kind=ErrorKind.store_error, message=str(exc)))
            return result

    def _ingest(self, asset: AssetRef, result: IngestResult, log: Any) -> IngestResult:
        if (asset.bucket, asset.key) == (self.settings.processed_bucket, self.processed_key(asset)):
            return self._continue_downstream(asset, result)

        try:
            source = self.store.get(asset.bucket, asset.key)
        except ObjectNotFound:
            log.info("ingest_source_not_incoming")
            return self._continue_downstream(asset, result)

        correlation_id = asset.correlation_id or correlation_id_of(source.metadata) or new_correlation_id()
        result.asset = replace(asset, correlation_id=correlation_id)
        source_format = detect_format(source.data, source.content_type)
        base_name = self.layout.base_name(asset.key)
        log.info("ingest_started", correlation_id=correlation_id, format=source_format)

        if is_vector(source_format):
            return self._ingest_vector(result, source, source_format, base_name)
        return self._ingest_raster(result, source, source_format, base_name, relocate=True)

    def archive(self, asset: AssetRef) -> MoveOutcome:
        """Move a processed original to the archive prefix.

        Raises:
            SourceMissing: The processed original does not exist.
            DestinationWriteFailed: The archive copy could not be written.
            PatchFailed: The archived copy exists but its stage marker was not updated.
        """
        bucket = self.settings.processed_bucket
        source_key = self.processed_key(asset)
        destination_key = self.archive_key(asset)
        try:
            self.patcher.get_with_recovery(bucket, source_key)
        except ObjectNotFound as exc:
            raise SourceMissing(f"nothing to archive at {bucket}/{source_key}", bucket=bucket, key=source_key) from exc

        outcome = self.relocator.move(bucket, source_key, bucket, destination_key)
        self.patcher.patch(bucket, destination_key, {"stage": Stage.archived.value, "archivedAt": self.clock()})
        self.logger.info("asset_archived", key=destination_key, status=outcome.status.value)
        return outcome

    def _ingest_raster(
        self,
        result: IngestResult,
        source: StoredObject,
        source_format: str | None,
        base_name: str,
        *,
        relocate: bool,
    ) -> IngestResult:
        correlation_id = result.asset.correlation_id
        log = self.logger.bind(key=result.asset.key, correlation_id=correlation_id)
        report = self.generator.generate_all(
            source.data,
            source_format,
            self.profiles,
            base_name,
            on_generated=self._derivative_writer(correlation_id, source.key),
            max_workers=self.settings.profile_workers,
        )
        result.derivatives = list(report.derivatives)
        result.errors.extend(
            IngestError(kind=failure.kind, message=failure.message, profile=failure.profile)
            for failure in report.failures
        )
        if not report.derivatives:
            log.error("ingest_no_derivatives", failures=len(report.failures))
            return result

        processed_bucket = self.settings.processed_bucket
        processed_key = self.processed_key(result.asset)
        if relocate:
            try:
                outcome = self.relocator.move(source.bucket, source.key, processed_bucket, processed_key)
            except SourceMissing as exc:
                if self._present(processed_bucket, processed_key):
                    log.info("ingest_already_moved", processed_key=processed_key)
                    result.relocation = MoveStatus.already_moved
                    result.stage = Stage.processed
                    result.processed_key = processed_key
                    result.success = True
                    self._flag_partial(result)
                    return result
                result.errors.append(IngestError(kind=exc.kind, message=str(exc)))
                return result
            except RelocationError as exc:
                log.error("ingest_relocation_failed", error=str(exc))
                result.errors.append(IngestError(kind=exc.kind, message=str(exc)))
                return result
            result.relocation = outcome.status
            if outcome.warning:
                log.warning("ingest_relocation_duplicated", warning=outcome.warning)

        result.stage = Stage.processed
        result.processed_key = processed_key
        delta: dict[str, Any] = {
            "processed": True,
            "processedAt": self.clock(),
            "versions": report.succeeded,
            "stage": Stage.processed.value,
            CORRELATION_KEY: correlation_id,
        }
        try:
            self.patcher.patch(processed_bucket, processed_key, delta)
        except PatchFailed as exc:
            log.error("ingest_patch_failed", state=exc.state.value, unsafe=exc.unsafe)
            result.errors.append(IngestError(kind=exc.kind, message=str(exc)))
            return result

        result.success = True
        self._flag_partial(result)
        log.info("ingest_completed", versions=report.succeeded, partial=result.partial)
        return result

    def _ingest_vector(
        self,
        result: IngestResult,
        source: StoredObject,
        source_format: str | None,
        base_name: str,
    ) -> IngestResult:
        generated = self.generator.generate(source.data, source_format, VECTOR_PROFILE, base_name)
        derivative = generated.derivative
        try:
            outcome = self.relocator.move(source.bucket, source.key, derivative.bucket, derivative.key)
            result.relocation = outcome.status
        except SourceMissing as exc:
            if not self.store.exists(derivative.bucket, derivative.key):
                result.errors.append(IngestError(kind=exc.kind, message=str(exc)))
                return result
            result.relocation = MoveStatus.already_moved
        except RelocationError as exc:
            result.errors.append(IngestError(kind=exc.kind, message=str(exc)))
            return result

        result.derivatives = [derivative]
        result.stage = Stage.processed
        result.processed_key = derivative.key
        result.success = True
        self.logger.info("ingest_vector_relocated", key=derivative.key, correlation_id=result.asset.correlation_id)
        return result

    def _continue_downstream(self, asset: AssetRef, result: IngestResult) -> IngestResult:
        """Handle an asset whose incoming copy is gone: finished, half-finished, or lost."""
        processed_bucket = self.settings.processed_bucket
        processed_key = self.processed_key(asset)
        base_name = self.layout.base_name(asset.key)
        try:
            processed = self.patcher.get_with_recovery(processed_bucket, processed_key)
        except ObjectNotFound:
            processed = None

        if processed is not None:
            correlation_id = asset.correlation_id or correlation_id_of(processed.metadata) or new_correlation_id()
            result.asset = replace(asset, correlation_id=correlation_id)
            result.relocation = MoveStatus.already_moved
            if processed.metadata.get("processed") is True:
                recorded = self._recorded_derivatives(processed.metadata, base_name)
                if recorded is not None:
                    result.derivatives = recorded
                    result.stage = Stage.processed
                    result.processed_key = processed_key
                    result.already_processed = True
                    result.success = True
                    self._flag_partial(result)
                    return result
                self.logger.warning("ingest_repairing_missing_versions", key=processed_key)
            else:
                self.logger.info("ingest_resuming_after_relocation", key=processed_key)
            source_format = detect_format(processed.data, processed.content_type)
            return self._ingest_raster(result, processed, source_format, base_name, relocate=False)

        vector_key = self.layout.vector_key(base_name)
        try:
            vector = self.store.get(self.layout.bucket, vector_key)
        except ObjectNotFound:
            vector = None
        if vector is not None:
            generated = self.generator.generate(vector.data, "svg", VECTOR_PROFILE, base_name)
            result.asset = replace(asset, correlation_id=asset.correlation_id or correlation_id_of(vector.metadata))
            result.derivatives = [generated.derivative]
            result.relocation = MoveStatus.already_moved
            result.stage = Stage.processed
            result.processed_key = vector_key
            result.already_processed = True
            result.success = True
            return result

        result.errors.append(
            IngestError(kind=ErrorKind.source_missing, message=f"source missing: {asset.bucket}/{asset.key}")
        )
        return result

    def _recorded_derivatives(self, metadata: dict[str, Any], base_name: str) -> list[Derivative] | None:
        """Reload derivatives named in ``versions``; ``None`` if any of them is missing."""
        derivatives: list[Derivative] = []
        for name in metadata.get("versions") or []:
            key = self.layout.raster_key(name, base_name)
            try:
                stored = self.store.get(self.layout.bucket, key)
            except ObjectNotFound:
                return None
            derivatives.append(
                Derivative(
                    profile=name,
                    width=_as_int(stored.metadata.get("width")),
                    height=_as_int(stored.metadata.get("height")),
                    format=str(stored.metadata.get("format") or "webp"),
                    size_bytes=stored.size,
                    bucket=self.layout.bucket,
                    key=key,
                )
            )
        return derivatives

    def _derivative_writer(self, correlation_id: str | None, source_key: str) -> Callable[[GeneratedDerivative], None]:
        def write(generated: GeneratedDerivative) -> None:
            derivative = generated.derivative
            metadata = {
                CORRELATION_KEY: correlation_id,
                "profile": derivative.profile,
                "width": derivative.width,
                "height": derivative.height,
                "format": derivative.format,
                "sourceKey": source_key,
            }
            try:
                self.store.put(
                    derivative.bucket,
                    derivative.key,
                    generated.data,
                    metadata,
                    content_type=generated.content_type,
                    cache_control=self.settings.immutable_cache_control,
                    upsert=True,
                )
            except StoreError as exc:
                raise DestinationWriteFailed(
                    f"derivative write failed: {derivative.bucket}/{derivative.key}: {exc}",
                    bucket=derivative.bucket,
                    key=derivative.key,
                ) from exc

        return write

    def _flag_partial(self, result: IngestResult) -> None:
        if len(result.derivatives) < len(self.profiles):
            result.errors.append(
                IngestError(
                    kind=ErrorKind.partial_success,
                    message=f"{len(result.derivatives)} of {len(self.profiles)} profiles generated",
                )
            )

    def _present(self, bucket: str, key: str) -> bool:
        return self.store.exists(bucket, key) or self.store.exists(bucket, temp_key(key))


def _as_int(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def create_intake(settings: Settings, store: ObjectStore) -> UploadIntake:
    return UploadIntake(
        store,
        bucket=settings.incoming_bucket,
        prefix=settings.incoming_prefix,
        allowed_mime_types=settings.allowed_mime_types,
        max_size_bytes=settings.max_upload_size_bytes,
        cache_control=settings.upload_cache_control,
    )


def process_ingest_job(payload: dict[str, Any], settings: Settings, store: ObjectStore) -> dict[str, Any]:
    logger = get_logger(job_type="ingest", key=payload.get("key"))
    asset = AssetRef(
        bucket=payload.get("bucket") or settings.incoming_bucket,
        key=payload["key"],
        correlation_id=payload.get("correlation_id"),
    )
    result = IngestCoordinator(settings, store).ingest(asset)
    if not result.success:
        logger.warning("ingest_job_unsuccessful", errors=[error.kind.value for error in result.errors])
    return result.to_dict()


__all__ = [
    "IngestCoordinator",
    "create_intake",
    "process_ingest_job",
]
