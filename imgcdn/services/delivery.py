"""Public URLs and responsive ``srcset`` values for processed images."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import quote

from imgcdn.core.config import Settings
from imgcdn.core.storage import ObjectNotFound, ObjectStore
from imgcdn.ingest.derivatives import DerivativeLayout
from imgcdn.ingest.metadata_patch import TEMP_SUFFIX, MetadataPatcher

DEFAULT_SIZES = "(max-width: 768px) 100vw, 50vw"


@dataclass(slots=True)
class DeliveryView:
    filename: str
    processed: bool
    versions: dict[str, str] = field(default_factory=dict)
    srcset: str = ""
    sizes: str = DEFAULT_SIZES
    default_url: Optional[str] = None


def public_url(base_url: str, bucket: str, key: str) -> str:
    return f"{base_url.rstrip('/')}/{quote(bucket)}/{quote(key)}"


def build_srcset(urls_by_width: list[tuple[int, str]]) -> str:
    return ", ".join(f"{url} {width}w" for width, url in sorted(urls_by_width))


class DeliveryService:
    def __init__(self, settings: Settings, store: ObjectStore):
        self.settings = settings
        self.store = store
        self.patcher = MetadataPatcher(store)
        self.layout = DerivativeLayout(
            settings.derivative_bucket,
            raster_prefix=settings.derivative_prefix,
            vector_prefix=settings.vector_prefix,
        )

    def describe(self, filename: str) -> DeliveryView:
        """Describe the variants of the processed original named ``filename``.

        Raises:
            ObjectNotFound: No processed original with that name exists.
        """
        key = f"{self.settings.processed_prefix}/{filename}"
        stored = self.patcher.get_with_recovery(self.settings.processed_bucket, key)
        view = DeliveryView(filename=filename, processed=stored.metadata.get("processed") is True)
        if not view.processed:
            return view

        base_name = self.layout.base_name(filename)
        targets = dict(self.settings.size_profiles)
        # Shrink-only resizing can give several profiles the same real width;
        # the later (smaller) profile keeps the srcset slot.
        by_width: dict[int, str] = {}
        for name in stored.metadata.get("versions") or []:
            derivative_key = self.layout.raster_key(name, base_name)
            url = public_url(self.settings.public_base_url, self.layout.bucket, derivative_key)
            view.versions[name] = url
            if not targets.get(name):
                continue
            width = self._stored_width(derivative_key)
            if width:
                by_width[width] = url

        with_width = sorted(by_width.items())
        view.srcset = build_srcset(with_width)
        view.default_url = _pick_default(view.versions, with_width)
        return view

    def list_images(self, *, limit: int = 20, offset: int = 0) -> list[DeliveryView]:
        """Describe processed originals in key order, one page at a time."""
        prefix = f"{self.settings.processed_prefix}/"
        views: list[DeliveryView] = []
        for entry in self.store.list(self.settings.processed_bucket, prefix, limit=limit, offset=offset):
            filename = entry.key[len(prefix) :]
            if filename.endswith(TEMP_SUFFIX):
                continue
            try:
                views.append(self.describe(filename))
            except ObjectNotFound:
                # Archived between list and read.
                continue
        return views

    def _stored_width(self, key: str) -> Optional[int]:
        try:
            derivative = self.store.get(self.layout.bucket, key)
        except ObjectNotFound:
            return None
        try:
            return int(derivative.metadata["width"])
        except (KeyError, TypeError, ValueError):
            return None


def _pick_default(versions: dict[str, str], with_width: list[tuple[int, str]]) -> Optional[str]:
    if not versions:
        return None
    if with_width:
        ordered = sorted(with_width)
        return ordered[len(ordered) // 2][1]
    return next(iter(versions.values()))


__all__ = ["DEFAULT_SIZES", "DeliveryView", "DeliveryService", "public_url", "build_srcset"]
