"""
Multi-resolution thumbnails for an asset.

Every size is oriented before resizing, never enlarged, lightly sharpened and
re-encoded with fixed lossy parameters. Output names are deterministic
(`{size}_{baseName}_{assetId}.{ext}`), so an existing file means the work was
already done and only the database pointer needs repairing.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Sequence

from PIL import Image

from media_gallery.errors import BatchGenerationFailure, NotFound
from media_gallery.utils.imaging import RasterCodec
from media_gallery.utils.storage import LocalFileStorage

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThumbnailSpec:
    name: str
    max_edge: int
    quality: int


THUMBNAIL_SIZES: tuple[ThumbnailSpec, ...] = (
    ThumbnailSpec("micro", 32, 75),  # blur placeholder source
    ThumbnailSpec("small", 250, 88),  # 1x gallery tile
    ThumbnailSpec("medium", 500, 92),  # 2x gallery tile
    ThumbnailSpec("large", 800, 94),  # lightbox
)
SIZES_BY_NAME = {spec.name: spec for spec in THUMBNAIL_SIZES}


def base_name(filename: str) -> str:
    return PurePath(filename).stem


def thumbnail_filename(size: str, filename: str, asset_id: int | str, ext: str = "webp") -> str:
    return f"{size}_{base_name(filename)}_{asset_id}.{ext}"


class _SourceImage:
    """Decode the source at most once per batch, shared read-only by the size workers."""

    def __init__(self, codec: RasterCodec, path: Path) -> None:
        self._codec = codec
        self._path = path
        self._lock = threading.Lock()
        self._oriented: Image.Image | None = None
        self._error: Exception | None = None

    def oriented(self) -> Image.Image:
        with self._lock:
            if self._error is not None:
                raise self._error
            if self._oriented is None:
                try:
                    image = self._codec.decode(self._path)
                    code = self._codec.read_orientation(image)
                    self._oriented = self._codec.orient(image, code)
                except Exception as exc:
                    self._error = exc
                    raise
            return self._oriented


class ThumbnailGenerator:
    """Render the fixed size table for one source file."""

    def __init__(
        self,
        storage: LocalFileStorage,
        codec: RasterCodec | None = None,
        sizes: Sequence[ThumbnailSpec] = THUMBNAIL_SIZES,
        fmt: str = "webp",
        public_prefix: str = "/thumbs",
        max_workers: int = 4,
    ) -> None:
        self.storage = storage
        self.codec = codec or RasterCodec()
        self.sizes = tuple(sizes)
        self.fmt = fmt.lower()
        self.public_prefix = "/" + public_prefix.strip("/")
        self.max_workers = max(1, max_workers)

    def public_path(self, name: str) -> str:
        return f"{self.public_prefix}/{name}"

    def thumbnail_path(self, asset_id: int | str, filename: str, size: str) -> str:
        return self.public_path(thumbnail_filename(size, filename, asset_id, self.fmt))

    def thumbnails_exist(self, asset_id: int | str, filename: str) -> bool:
        """True when the large rendition is on disk."""
        return self.storage.exists(thumbnail_filename("large", filename, asset_id, self.fmt))

    def generate(self, source_path: Path, asset_id: int | str, filename: str) -> dict[str, str]:
        """Return {size name: public path}; any failing size fails the whole batch."""
        source_path = Path(source_path)
        if not source_path.exists():
            raise NotFound(source_path)
        self.storage.ensure_root()
        source = _SourceImage(self.codec, source_path)

        results: dict[str, str] = {}
        failures: dict[str, BaseException] = {}
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(self.sizes))) as executor:
            futures = {
                spec.name: executor.submit(self._render, source, spec, asset_id, filename) for spec in self.sizes
            }
            for name, future in futures.items():
                exc = future.exception()
                if exc is not None:
                    failures[name] = exc
                else:
                    results[name] = future.result()
        if failures:
            raise BatchGenerationFailure(asset_id, failures)
        return results

    def generate_single(
        self, source_path: Path, asset_id: int | str, filename: str, size: str = "large"
    ) -> str:
        spec = SIZES_BY_NAME.get(size)
        if spec is None:
            raise ValueError(f"Unknown thumbnail size: {size}")
        source_path = Path(source_path)
        if not source_path.exists():
            raise NotFound(source_path)
        self.storage.ensure_root()
        return self._render(_SourceImage(self.codec, source_path), spec, asset_id, filename)

    def delete_thumbnails(self, asset_id: int | str, filename: str) -> int:
        """Remove every size; missing files are ignored. Returns the number removed."""
        removed = 0
        for spec in self.sizes:
            if self.storage.delete(thumbnail_filename(spec.name, filename, asset_id, self.fmt)):
                removed += 1
        return removed

    def _render(self, source: _SourceImage, spec: ThumbnailSpec, asset_id: int | str, filename: str) -> str:
        name = thumbnail_filename(spec.name, filename, asset_id, self.fmt)
        if self.storage.exists(name):
            LOGGER.debug("Thumbnail %s already present, skipping encode", name)
            return self.public_path(name)
        resized = self.codec.fit_inside(source.oriented(), spec.max_edge)
        data = self.codec.encode_lossy(self.codec.sharpen(resized), spec.quality, self.fmt)
        self.storage.write(name, data)
        LOGGER.debug("Wrote %s (%dx%d, q=%d)", name, resized.width, resized.height, spec.quality)
        return self.public_path(name)
