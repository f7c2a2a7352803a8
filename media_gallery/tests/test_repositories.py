from __future__ import annotations

from pathlib import Path

import pytest

from media_gallery.models.db import initialize_database
from media_gallery.models.repositories import (
    ExifRecord,
    ExifRecordRepository,
    GpsPosition,
    MediaAssetRepository,
)


def _repos(tmp_path: Path) -> tuple[MediaAssetRepository, ExifRecordRepository]:
    conn = initialize_database(tmp_path / "gallery.db")
    return MediaAssetRepository(conn), ExifRecordRepository(conn)


def test_add_and_get_media_asset(tmp_path: Path) -> None:
    assets, _ = _repos(tmp_path)

    asset_id = assets.add("a.jpg", "/photos/a.jpg", "image/jpeg", 1234, width=20, height=10)
    asset = assets.get(asset_id)

    assert asset.filename == "a.jpg"
    assert asset.file_size == 1234
    assert (asset.width, asset.height) == (20, 10)
    assert asset.thumbnail_paths == {}
    assert asset.blur_hash is None
    assert asset.is_image
    assert assets.get_by_path("/photos/a.jpg").id == asset_id
    assert assets.get_by_path("/photos/missing.jpg") is None


def test_get_unknown_asset_raises_key_error(tmp_path: Path) -> None:
    assets, _ = _repos(tmp_path)
    with pytest.raises(KeyError):
        assets.get(404)


def test_update_thumbnails_sets_every_pointer(tmp_path: Path) -> None:
    assets, _ = _repos(tmp_path)
    asset_id = assets.add("a.jpg", "/photos/a.jpg", "image/jpeg", 1)
    paths = {
        "micro": "/thumbs/micro_a_1.webp",
        "small": "/thumbs/small_a_1.webp",
        "medium": "/thumbs/medium_a_1.webp",
        "large": "/thumbs/large_a_1.webp",
    }

    assets.update_thumbnails(asset_id, paths)

    assert assets.get(asset_id).thumbnail_paths == paths
    legacy = assets.conn.execute("SELECT thumbnail_path FROM media_asset WHERE id = ?", (asset_id,)).fetchone()[0]
    assert legacy == "/thumbs/large_a_1.webp"


def test_update_thumbnails_rejects_unknown_size(tmp_path: Path) -> None:
    assets, _ = _repos(tmp_path)
    asset_id = assets.add("a.jpg", "/photos/a.jpg", "image/jpeg", 1)

    with pytest.raises(ValueError):
        assets.update_thumbnails(asset_id, {"huge": "/thumbs/huge.webp"})
    assert assets.get(asset_id).thumbnail_paths == {}


def test_list_missing_thumbnails_only_returns_images(tmp_path: Path) -> None:
    assets, _ = _repos(tmp_path)
    done = assets.add("done.jpg", "/p/done.jpg", "image/jpeg", 1)
    todo = assets.add("todo.png", "/p/todo.png", "image/png", 1)
    assets.add("clip.mp4", "/p/clip.mp4", "video/mp4", 1)
    assets.update_thumbnails(done, {"large": "/thumbs/large_done_1.webp"})

    missing = assets.list_missing_thumbnails()

    assert [asset.id for asset in missing] == [todo]


def test_update_blur_hash_and_dimensions(tmp_path: Path) -> None:
    assets, _ = _repos(tmp_path)
    asset_id = assets.add("a.jpg", "/photos/a.jpg", "image/jpeg", 1)

    assets.update_blur_hash(asset_id, "LEHV6nWB2yk8pyo0adR*.7kCMdnj")
    assets.update_dimensions(asset_id, 640, 480)

    asset = assets.get(asset_id)
    assert asset.blur_hash == "LEHV6nWB2yk8pyo0adR*.7kCMdnj"
    assert (asset.width, asset.height) == (640, 480)


def test_exif_upsert_replaces_all_fields(tmp_path: Path) -> None:
    assets, exif = _repos(tmp_path)
    asset_id = assets.add("a.jpg", "/photos/a.jpg", "image/jpeg", 1)

    exif.upsert(
        asset_id,
        ExifRecord(
            camera="Acme X100",
            aperture=2.8,
            shutter_speed="1/250",
            iso=200,
            gps=GpsPosition(52.5, 13.4),
            raw={"Make": "Acme", "Exif": {"FNumber": 2.8}},
        ),
    )
    exif.upsert(asset_id, ExifRecord(camera="Other Body", iso=400))

    stored = exif.get(asset_id)
    assert stored is not None
    assert stored.camera == "Other Body"
    assert stored.iso == 400
    assert stored.aperture is None
    assert stored.shutter_speed is None
    assert stored.gps is None
    assert stored.raw is None
    count = assets.conn.execute("SELECT COUNT(*) FROM exif_record WHERE media_id = ?", (asset_id,)).fetchone()[0]
    assert count == 1


def test_exif_raw_tree_round_trips_as_json(tmp_path: Path) -> None:
    assets, exif = _repos(tmp_path)
    asset_id = assets.add("a.jpg", "/photos/a.jpg", "image/jpeg", 1)
    raw = {"Make": "Acme", "Exif": {"FNumber": 2.8, "ISOSpeedRatings": 200}}

    exif.upsert(asset_id, ExifRecord(camera="Acme", gps=GpsPosition(1.5, -2.25), raw=raw))

    stored = exif.get(asset_id)
    assert stored.raw == raw
    assert stored.gps == GpsPosition(1.5, -2.25)
    assert exif.get(asset_id + 1) is None
