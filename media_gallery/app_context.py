"""
Application bootstrap helpers.

Responsibilities:
- Locate/load configuration.
- Resolve database and media paths and initialize the schema.
- Configure logging layout tied to the DB root.
- Wire the derived-asset pipeline, ingest service and preview queue.
"""

from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from media_gallery.config.loader import load_config
from media_gallery.logging.setup import setup_logging
from media_gallery.models.db import initialize_database
from media_gallery.services.blurhash_service import BlurHashEncoder
from media_gallery.services.ingest_service import IngestService
from media_gallery.services.metadata_extractor import MetadataExtractor
from media_gallery.services.pipeline import MediaPipeline
from media_gallery.services.preview_queue import PreviewQueue, render_preview
from media_gallery.services.thumbnail_service import ThumbnailGenerator
from media_gallery.utils.imaging import RasterCodec
from media_gallery.utils.storage import LocalFileStorage

ENV_CONFIG_DIR = "MEDIA_GALLERY_CONFIG_DIR"
ENV_DB_PATH = "MEDIA_GALLERY_DB_PATH"


@dataclass
class AppContext:
    """Shared application context passed into the CLI."""

    config: dict[str, Any]
    config_path: Path
    db_path: Path
    conn: sqlite3.Connection
    originals: LocalFileStorage
    thumbs: LocalFileStorage
    pipeline: MediaPipeline
    ingest: IngestService
    previews: PreviewQueue

    def close(self) -> None:
        self.previews.close(wait_for_pending=False)
        self.conn.close()


def default_config_dir() -> Path:
    """Return the directory to hold config files, honoring env override."""
    override = os.getenv(ENV_CONFIG_DIR)
    if override:
        return Path(override)
    return Path.home() / ".media_gallery"


def default_config_path() -> Path:
    return default_config_dir() / "config.toml"


def _resolve(path: str | Path, root: Path) -> Path:
    path = Path(path).expanduser()
    return path if path.is_absolute() else root / path


def resolve_db_path(config: dict[str, Any], base_dir: Path | None = None) -> Path:
    """
    Determine the database path using env override, config, and base_dir.
    Relative paths resolve against base_dir or CWD.
    """
    override = os.getenv(ENV_DB_PATH)
    db_path = override or config.get("db", {}).get("path", "gallery.db")
    return _resolve(db_path, base_dir or Path.cwd())


def resolve_media_paths(config: dict[str, Any], base_dir: Path | None = None) -> tuple[Path, Path]:
    """Originals and thumbnail directories, relative ones anchored at base_dir or CWD."""
    media = config.get("media", {})
    root = base_dir or Path.cwd()
    return (
        _resolve(media.get("originals_path", "data/originals"), root),
        _resolve(media.get("thumbs_path", "data/thumbs"), root),
    )


def build_pipeline(conn: sqlite3.Connection, config: dict[str, Any], thumbs: LocalFileStorage) -> MediaPipeline:
    codec = RasterCodec()
    thumb_cfg = config.get("thumbnails", {})
    blur_cfg = config.get("blurhash", {})
    generator = ThumbnailGenerator(
        thumbs,
        codec=codec,
        fmt=str(thumb_cfg.get("format", "webp")),
        public_prefix=str(config.get("media", {}).get("public_prefix", "/thumbs")),
        max_workers=int(thumb_cfg.get("workers", 4)),
    )
    blur = BlurHashEncoder(
        codec=codec,
        edge=int(blur_cfg.get("edge", 32)),
        components_x=int(blur_cfg.get("components_x", 4)),
        components_y=int(blur_cfg.get("components_y", 4)),
    )
    return MediaPipeline(conn, generator, extractor=MetadataExtractor(), blur=blur)


def build_preview_queue(config: dict[str, Any]) -> PreviewQueue:
    preview_cfg = config.get("preview", {})
    codec = RasterCodec()
    max_edge = int(preview_cfg.get("max_edge", 64))
    quality = int(preview_cfg.get("quality", 70))
    return PreviewQueue(
        generate=lambda source: render_preview(source, codec, max_edge, quality),
        max_concurrent=int(preview_cfg.get("max_concurrent", 3)),
        pause_seconds=float(preview_cfg.get("pause_seconds", 0.01)),
    )


def initialize_app(
    config_path: Path | None = None,
    db_path: Path | None = None,
    base_dir: Path | None = None,
    configure_logging: bool = True,
) -> AppContext:
    """
    Load configuration, set up logging, initialize the database schema, and return an AppContext.
    """
    config_path = config_path or default_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config = load_config(config_path)

    resolved_db_path = db_path or resolve_db_path(config, base_dir=base_dir)
    resolved_db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = initialize_database(resolved_db_path)

    if configure_logging:
        log_dir = resolved_db_path.parent / "logs"
        setup_logging(log_dir=log_dir, level=str(config.get("logging", {}).get("level", "INFO")))

    originals_dir, thumbs_dir = resolve_media_paths(config, base_dir=base_dir)
    originals = LocalFileStorage(originals_dir)
    thumbs = LocalFileStorage(thumbs_dir)
    originals.ensure_root()
    thumbs.ensure_root()

    pipeline = build_pipeline(conn, config, thumbs)
    return AppContext(
        config=config,
        config_path=config_path,
        db_path=resolved_db_path,
        conn=conn,
        originals=originals,
        thumbs=thumbs,
        pipeline=pipeline,
        ingest=IngestService(conn, originals, pipeline),
        previews=build_preview_queue(config),
    )
