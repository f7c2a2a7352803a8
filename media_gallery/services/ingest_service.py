"""
Ingest service: uploads, directory rescans and explicit re-processing.

Responsibilities implemented here:
- Store uploaded originals and record a media_asset row per file.
- Run the derived-asset pipeline for images; failures during upload and rescan
  are logged and never undo the ingest.
- Explicit re-extraction and regeneration surface failures to the caller.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path, PurePath
from typing import Iterable

from media_gallery.errors import PipelineError
from media_gallery.models.repositories import MediaAsset, MediaAssetRepository
from media_gallery.services.pipeline import MediaPipeline, ProcessingOutcome
from media_gallery.utils.imaging import image_dimensions
from media_gallery.utils.storage import LocalFileStorage

LOGGER = logging.getLogger(__name__)

MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".tiff": "image/tiff",
    ".mp4": "video/mp4",
    ".avi": "video/x-msvideo",
    ".mov": "video/quicktime",
    ".mkv": "video/x-matroska",
    ".webm": "video/webm",
    ".m4v": "video/x-m4v",
}
SUPPORTED_EXTENSIONS = set(MIME_TYPES)


def mime_type_for(filename: str) -> str:
    return MIME_TYPES.get(PurePath(filename).suffix.lower(), "application/octet-stream")


@dataclass
class ScanReport:
    scanned: int = 0
    added: int = 0
    skipped_existing: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class RegenerationReport:
    processed: int = 0
    failed: dict[int, str] = field(default_factory=dict)


class IngestService:
    """Bring files into the gallery and keep their derived assets current."""

    def __init__(self, conn: sqlite3.Connection, originals: LocalFileStorage, pipeline: MediaPipeline) -> None:
        self.conn = conn
        self.originals = originals
        self.assets = MediaAssetRepository(conn)
        self.pipeline = pipeline

    def upload(self, filename: str, data: bytes) -> MediaAsset:
        """Save an uploaded file and derive what we can; derivation failures are non-fatal."""
        name = PurePath(filename).name
        if name in ("", ".", ".."):
            raise ValueError(f"Upload needs a filename, got {filename!r}")
        name = self._available_name(name)
        path = self.originals.write(name, data)
        asset_id = self._record(path, name, len(data))
        return self.assets.get(asset_id)

    def rescan(self, root: Path | None = None, recursive: bool = True) -> ScanReport:
        """Index files under `root` not yet recorded; one bad file never stops the scan."""
        root = Path(root) if root is not None else self.originals.root
        if not root.is_dir():
            raise NotADirectoryError(f"Scan root {root} is not a directory")
        report = ScanReport()
        for path in self._iter_media(root, recursive):
            report.scanned += 1
            resolved = str(path.resolve())
            try:
                if self.assets.get_by_path(resolved) is not None:
                    report.skipped_existing += 1
                    continue
                self._record(path, path.name, path.stat().st_size)
                report.added += 1
            except Exception as exc:
                LOGGER.exception("Failed to ingest %s", path)
                report.errors.append(f"{path}: {exc}")
        LOGGER.info(
            "Rescan of %s finished: scanned=%d added=%d skipped=%d errors=%d",
            root,
            report.scanned,
            report.added,
            report.skipped_existing,
            len(report.errors),
        )
        return report

    def reextract(self, asset_id: int) -> bool:
        asset = self._image_asset(asset_id)
        return self.pipeline.extract_and_store_metadata(asset.id, Path(asset.original_path))

    def regenerate(self, asset_id: int) -> ProcessingOutcome:
        """Thumbnails, blur hash and displayed dimensions for one asset, raising on any failure."""
        asset = self._image_asset(asset_id)
        source = Path(asset.original_path)
        outcome = ProcessingOutcome(asset_id=asset.id)
        outcome.thumbnails = self.pipeline.generate_thumbnails(asset.id, source, asset.filename)
        outcome.blur_hash = self.pipeline.store_blur_hash(asset.id, source)
        width, height = image_dimensions(self.pipeline.thumbnails.codec, source)
        if (width, height) != (asset.width, asset.height):
            self.assets.update_dimensions(asset.id, width, height)
        return outcome

    def regenerate_missing(self) -> RegenerationReport:
        """Regenerate every image that has no thumbnail pointer yet."""
        report = RegenerationReport()
        for asset in self.assets.list_missing_thumbnails():
            try:
                self.regenerate(asset.id)
                report.processed += 1
            except Exception as exc:
                LOGGER.exception("Thumbnail regeneration failed for asset %s", asset.id)
                report.failed[asset.id] = str(exc)
        return report

    def _record(self, path: Path, filename: str, size: int) -> int:
        mime_type = mime_type_for(filename)
        width = height = None
        if mime_type.startswith("image/"):
            try:
                width, height = image_dimensions(self.pipeline.thumbnails.codec, path)
            except PipelineError as exc:
                LOGGER.warning("Could not read dimensions of %s: %s", path, exc)
        asset_id = self.assets.add(
            filename=filename,
            original_path=str(path.resolve()),
            mime_type=mime_type,
            file_size=size,
            width=width,
            height=height,
        )
        LOGGER.info("Added media file %s (%s)", filename, asset_id)
        if mime_type.startswith("image/"):
            self.pipeline.process_asset(asset_id, fatal=False)
        return asset_id

    def _available_name(self, name: str) -> str:
        """`name`, or `stem-N.ext` when an original with that name is already stored."""
        candidate = PurePath(name)
        counter = 1
        while self.originals.exists(candidate.name):
            candidate = PurePath(f"{PurePath(name).stem}-{counter}{PurePath(name).suffix}")
            counter += 1
        return candidate.name

    def _image_asset(self, asset_id: int) -> MediaAsset:
        asset = self.assets.get(asset_id)
        if not asset.is_image:
            raise ValueError(f"Asset {asset_id} is not an image ({asset.mime_type})")
        return asset

    def _iter_media(self, root: Path, recursive: bool) -> Iterable[Path]:
        thumbs_root = self.pipeline.thumbnails.storage.root.resolve()
        iterator = root.rglob("*") if recursive else root.glob("*")
        for path in sorted(iterator):
            if not path.is_file() or path.suffix.lower() not in SUPPORTED_EXTENSIONS:
                continue
            if path.name.startswith("."):
                continue
            if thumbs_root in path.resolve().parents:
                continue
            yield path
