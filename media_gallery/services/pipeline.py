"""
Derived-asset pipeline: EXIF record, thumbnails and blur hash for one asset.

The three operations run synchronously in the caller's thread and raise on
failure. `process_asset` runs all of them and decides, per caller, whether a
failure is fatal (explicit user action) or only logged (upload, rescan).
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path

from media_gallery.errors import NotFound
from media_gallery.models.repositories import ExifRecordRepository, MediaAssetRepository
from media_gallery.services.blurhash_service import BlurHashEncoder
from media_gallery.services.metadata_extractor import MetadataExtractor
from media_gallery.services.thumbnail_service import ThumbnailGenerator

LOGGER = logging.getLogger(__name__)


@dataclass
class ProcessingOutcome:
    asset_id: int
    exif_stored: bool = False
    thumbnails: dict[str, str] = field(default_factory=dict)
    blur_hash: str | None = None
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


class MediaPipeline:
    """Extraction and generation against one relational store."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        thumbnails: ThumbnailGenerator,
        extractor: MetadataExtractor | None = None,
        blur: BlurHashEncoder | None = None,
    ) -> None:
        self.assets = MediaAssetRepository(conn)
        self.exif = ExifRecordRepository(conn)
        self.thumbnails = thumbnails
        self.extractor = extractor or MetadataExtractor()
        self.blur = blur or BlurHashEncoder(codec=thumbnails.codec)

    def extract_and_store_metadata(self, asset_id: int, source_path: Path) -> bool:
        """Upsert the ExifRecord; returns False when the file has no EXIF."""
        record = self.extractor.build_record(Path(source_path))
        if record is None:
            LOGGER.info("No EXIF data for asset %s", asset_id)
            return False
        self.exif.upsert(asset_id, record)
        LOGGER.info("Stored EXIF for asset %s (camera=%s)", asset_id, record.camera)
        return True

    def generate_thumbnails(self, asset_id: int, source_path: Path, filename: str) -> dict[str, str]:
        paths = self.thumbnails.generate(Path(source_path), asset_id, filename)
        self.assets.update_thumbnails(asset_id, paths)
        return paths

    def generate_blur_hash(self, source_path: Path) -> str:
        source_path = Path(source_path)
        if not source_path.exists():
            raise NotFound(source_path)
        return self.blur.encode(source_path)

    def store_blur_hash(self, asset_id: int, source_path: Path) -> str:
        value = self.generate_blur_hash(source_path)
        self.assets.update_blur_hash(asset_id, value)
        return value

    def process_asset(self, asset_id: int, fatal: bool = False) -> ProcessingOutcome:
        """Run every step for an image asset; with fatal=False failures are logged and collected."""
        asset = self.assets.get(asset_id)
        outcome = ProcessingOutcome(asset_id=asset_id)
        source = Path(asset.original_path)
        steps = (
            ("exif", lambda: self.extract_and_store_metadata(asset_id, source)),
            ("thumbnails", lambda: self.generate_thumbnails(asset_id, source, asset.filename)),
            ("blur_hash", lambda: self.store_blur_hash(asset_id, source)),
        )
        for name, step in steps:
            try:
                result = step()
            except Exception as exc:
                if fatal:
                    raise
                LOGGER.exception("Derived %s failed for asset %s (%s)", name, asset_id, asset.filename)
                outcome.errors[name] = str(exc)
                continue
            if name == "exif":
                outcome.exif_stored = bool(result)
            elif name == "thumbnails":
                outcome.thumbnails = result
            else:
                outcome.blur_hash = result
        return outcome
