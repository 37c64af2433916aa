from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from pathlib import PurePosixPath
from typing import Callable, Optional, Sequence

from imgcdn.core.logging import get_logger

from .codec import OUTPUT_CONTENT_TYPE, OUTPUT_FORMAT, Codec, encode_webp, svg_dimensions
from .errors import CodecError, DerivativeError, DestinationWriteFailed, OversizeResult, UnsupportedFormat
from .formats import FORMAT_TO_CONTENT_TYPE, is_raster, is_vector
from .models import Derivative, GeneratedDerivative, GenerationReport, ProfileFailure, SizeProfile

__all__ = [
    "VECTOR_PROFILE",
    "DerivativeLayout",
    "DerivativeGenerator",
]

VECTOR_PROFILE = SizeProfile(name="original", width=None)

OnGenerated = Callable[[GeneratedDerivative], None]


class DerivativeLayout:
    """Deterministic destination keys for derivatives of one asset base name."""

    def __init__(self, bucket: str, raster_prefix: str = "webp", vector_prefix: str = "svg"):
        self.bucket = bucket
        self.raster_prefix = raster_prefix.strip("/")
        self.vector_prefix = vector_prefix.strip("/")

    def raster_key(self, profile: str, base_name: str) -> str:
        return f"{self.raster_prefix}/{profile}/{base_name}.{OUTPUT_FORMAT}"

    def vector_key(self, base_name: str) -> str:
        return f"{self.vector_prefix}/{base_name}.svg"

    @staticmethod
    def base_name(key: str) -> str:
        return PurePosixPath(key).stem


class DerivativeGenerator:
    """Produces one derivative per size profile from an asset's bytes.

    Raster sources are re-encoded with a single quality for every profile and
    never upscaled. Vector sources bypass the codec and yield exactly one
    byte-identical ``original`` derivative.
    """

    def __init__(
        self,
        layout: DerivativeLayout,
        *,
        quality: int = 80,
        codec: Codec = encode_webp,
        max_output_bytes: Optional[int] = None,
    ):
        if not 1 <= quality <= 100:
            raise ValueError("quality must be between 1 and 100")
        self.layout = layout
        self.quality = quality
        self.codec = codec
        self.max_output_bytes = max_output_bytes
        self.logger = get_logger(component="derivative_generator")

    def generate(
        self,
        data: bytes,
        source_format: Optional[str],
        profile: SizeProfile,
        base_name: str,
    ) -> GeneratedDerivative:
        if is_vector(source_format):
            return self._pass_through(data, source_format, base_name)
        if not is_raster(source_format):
            raise UnsupportedFormat(f"unsupported source format: {source_format}", profile=profile.name)

        try:
            encoded = self.codec(data, profile.width, self.quality)
        except CodecError as exc:
            exc.profile = profile.name
            raise
        if self.max_output_bytes is not None and len(encoded.data) > self.max_output_bytes:
            raise OversizeResult(
                f"{profile.name} derivative is {len(encoded.data)} bytes (limit {self.max_output_bytes})",
                profile=profile.name,
            )

        derivative = Derivative(
            profile=profile.name,
            width=encoded.width,
            height=encoded.height,
            format=OUTPUT_FORMAT,
            size_bytes=len(encoded.data),
            bucket=self.layout.bucket,
            key=self.layout.raster_key(profile.name, base_name),
        )
        return GeneratedDerivative(derivative=derivative, data=encoded.data, content_type=OUTPUT_CONTENT_TYPE)

    def generate_all(
        self,
        data: bytes,
        source_format: Optional[str],
        profiles: Sequence[SizeProfile],
        base_name: str,
        *,
        on_generated: OnGenerated | None = None,
        max_workers: int = 1,
    ) -> GenerationReport:
        """Attempt every profile and collect successes and failures in profile order.

        ``on_generated`` runs inside each profile's task right after encoding; a
        :class:`DestinationWriteFailed` it raises counts as that profile's failure.
        With ``max_workers > 1`` profiles run on a thread pool and are all joined
        before this returns.
        """
        targets = [VECTOR_PROFILE] if is_vector(source_format) else list(profiles)

        def run(profile: SizeProfile) -> Derivative | ProfileFailure:
            try:
                generated = self.generate(data, source_format, profile, base_name)
                if on_generated is not None:
                    on_generated(generated)
            except (DerivativeError, DestinationWriteFailed) as exc:
                self.logger.warning(
                    "derivative_failed", profile=profile.name, kind=exc.kind.value, error=str(exc)
                )
                return ProfileFailure(profile=profile.name, kind=exc.kind, message=str(exc))
            return generated.derivative

        if max_workers > 1 and len(targets) > 1:
            with ThreadPoolExecutor(max_workers=min(max_workers, len(targets)), thread_name_prefix="derivative") as pool:
                outcomes = list(pool.map(run, targets))
        else:
            outcomes = [run(profile) for profile in targets]

        report = GenerationReport()
        for outcome in outcomes:
            if isinstance(outcome, ProfileFailure):
                report.failures.append(outcome)
            else:
                report.derivatives.append(outcome)
        return report

    def _pass_through(self, data: bytes, source_format: Optional[str], base_name: str) -> GeneratedDerivative:
        width, height = svg_dimensions(data)
        derivative = Derivative(
            profile=VECTOR_PROFILE.name,
            width=width,
            height=height,
            format=source_format or "svg",
            size_bytes=len(data),
            bucket=self.layout.bucket,
            key=self.layout.vector_key(base_name),
        )
        return GeneratedDerivative(
            derivative=derivative,
            data=data,
            content_type=FORMAT_TO_CONTENT_TYPE.get(source_format or "svg", "image/svg+xml"),
        )
