"""
Database repositories for media assets and their EXIF records.

These are intentionally lightweight wrappers around sqlite3 connections to keep
business logic in services while centralizing SQL and schema assumptions.
Every write commits on its own so a reader sees either the previous or the
fully new state of a row.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Mapping

THUMBNAIL_COLUMNS = {
    "micro": "thumb_micro",
    "small": "thumb_small",
    "medium": "thumb_medium",
    "large": "thumb_large",
}


@dataclass
class MediaAsset:
    id: int
    filename: str
    original_path: str
    mime_type: str
    file_size: int = 0
    width: int | None = None
    height: int | None = None
    thumbnail_paths: dict[str, str] = field(default_factory=dict)
    blur_hash: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


@dataclass
class GpsPosition:
    latitude: float
    longitude: float


@dataclass
class ExifRecord:
    """Derived camera fields plus the sanitized raw tag tree."""

    camera: str | None = None
    lens: str | None = None
    focal_length: float | None = None
    aperture: float | None = None
    shutter_speed: str | None = None
    iso: int | None = None
    date_taken: str | None = None
    gps: GpsPosition | None = None
    raw: Any = None


def _row_to_asset(row: sqlite3.Row) -> MediaAsset:
    paths = {size: row[column] for size, column in THUMBNAIL_COLUMNS.items() if row[column]}
    return MediaAsset(
        id=int(row["id"]),
        filename=row["filename"],
        original_path=row["original_path"],
        mime_type=row["mime_type"],
        file_size=int(row["file_size"] or 0),
        width=row["width"],
        height=row["height"],
        thumbnail_paths=paths,
        blur_hash=row["blur_hash"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class MediaAssetRepository:
    """Access to media_asset rows."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def add(
        self,
        filename: str,
        original_path: str,
        mime_type: str,
        file_size: int,
        width: int | None = None,
        height: int | None = None,
    ) -> int:
        with self.conn:
            cursor = self.conn.execute(
                """
                INSERT INTO media_asset (filename, original_path, file_size, mime_type, width, height)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (filename, original_path, file_size, mime_type, width, height),
            )
        return int(cursor.lastrowid)

    def get(self, asset_id: int) -> MediaAsset:
        row = self.conn.execute("SELECT * FROM media_asset WHERE id = ?", (asset_id,)).fetchone()
        if row is None:
            raise KeyError(f"Media asset {asset_id} not found")
        return _row_to_asset(row)

    def get_by_path(self, original_path: str) -> MediaAsset | None:
        row = self.conn.execute(
            "SELECT * FROM media_asset WHERE original_path = ?", (original_path,)
        ).fetchone()
        return _row_to_asset(row) if row else None

    def list_missing_thumbnails(self) -> list[MediaAsset]:
        """Images with no thumbnail pointer recorded yet."""
        rows = self.conn.execute(
            """
            SELECT * FROM media_asset
            WHERE (thumbnail_path IS NULL OR thumbnail_path = '')
              AND mime_type LIKE 'image/%'
            ORDER BY id
            """
        ).fetchall()
        return [_row_to_asset(row) for row in rows]

    def update_thumbnails(self, asset_id: int, paths: Mapping[str, str]) -> None:
        """Point-update every size pointer in one statement."""
        unknown = set(paths) - set(THUMBNAIL_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown thumbnail sizes: {sorted(unknown)}")
        assignments = [f"{THUMBNAIL_COLUMNS[size]} = ?" for size in paths]
        values: list[object] = list(paths.values())
        # Legacy single pointer follows the largest rendition available.
        for size in ("large", "medium", "small", "micro"):
            if size in paths:
                assignments.append("thumbnail_path = ?")
                values.append(paths[size])
                break
        assignments.append("updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now')")
        with self.conn:
            self.conn.execute(
                f"UPDATE media_asset SET {', '.join(assignments)} WHERE id = ?",
                (*values, asset_id),
            )

    def update_blur_hash(self, asset_id: int, blur_hash: str) -> None:
        with self.conn:
            self.conn.execute(
                "UPDATE media_asset SET blur_hash = ?, updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now') WHERE id = ?",
                (blur_hash, asset_id),
            )

    def update_dimensions(self, asset_id: int, width: int, height: int) -> None:
        with self.conn:
            self.conn.execute(
                "UPDATE media_asset SET width = ?, height = ? WHERE id = ?",
                (width, height, asset_id),
            )


class ExifRecordRepository:
    """One exif_record per media asset, written by upsert."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def upsert(self, media_id: int, record: ExifRecord) -> None:
        """Insert or replace every field for `media_id` in a single statement."""
        gps = record.gps
        with self.conn:
            self.conn.execute(
                """
                INSERT INTO exif_record (
                    media_id, camera, lens, focal_length, aperture, shutter_speed,
                    iso, date_taken, gps_latitude, gps_longitude, raw_exif
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(media_id) DO UPDATE SET
                    camera = excluded.camera,
                    lens = excluded.lens,
                    focal_length = excluded.focal_length,
                    aperture = excluded.aperture,
                    shutter_speed = excluded.shutter_speed,
                    iso = excluded.iso,
                    date_taken = excluded.date_taken,
                    gps_latitude = excluded.gps_latitude,
                    gps_longitude = excluded.gps_longitude,
                    raw_exif = excluded.raw_exif,
                    updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now')
                """,
                (
                    media_id,
                    record.camera,
                    record.lens,
                    record.focal_length,
                    record.aperture,
                    record.shutter_speed,
                    record.iso,
                    record.date_taken,
                    gps.latitude if gps else None,
                    gps.longitude if gps else None,
                    json.dumps(record.raw) if record.raw is not None else None,
                ),
            )

    def get(self, media_id: int) -> ExifRecord | None:
        row = self.conn.execute(
            "SELECT * FROM exif_record WHERE media_id = ?", (media_id,)
        ).fetchone()
        if row is None:
            return None
        gps = None
        if row["gps_latitude"] is not None and row["gps_longitude"] is not None:
            gps = GpsPosition(float(row["gps_latitude"]), float(row["gps_longitude"]))
        return ExifRecord(
            camera=row["camera"],
            lens=row["lens"],
            focal_length=row["focal_length"],
            aperture=row["aperture"],
            shutter_speed=row["shutter_speed"],
            iso=row["iso"],
            date_taken=row["date_taken"],
            gps=gps,
            raw=json.loads(row["raw_exif"]) if row["raw_exif"] else None,
        )
