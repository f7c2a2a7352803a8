from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
from PIL import Image

from media_gallery import app_context
from media_gallery.app import main
from media_gallery.app_context import AppContext, initialize_app, resolve_db_path, resolve_media_paths
from media_gallery.logging.setup import LOG_FILENAME, setup_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


def _write_config(path: Path, library: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        f"""
        [media]
        originals_path = "{(library / 'originals').as_posix()}"
        thumbs_path = "{(library / 'thumbs').as_posix()}"

        [thumbnails]
        workers = 2
        """,
        encoding="utf-8",
    )
    return path


def test_resolve_db_path_handles_relative(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.delenv(app_context.ENV_DB_PATH, raising=False)
    config = {"db": {"path": "gallery.db"}}
    assert resolve_db_path(config, base_dir=tmp_path) == tmp_path / "gallery.db"


def test_resolve_media_paths_anchor_relative_paths(tmp_path: Path) -> None:
    config = {"media": {"originals_path": "data/originals", "thumbs_path": "/srv/thumbs"}}
    originals, thumbs = resolve_media_paths(config, base_dir=tmp_path)
    assert originals == tmp_path / "data" / "originals"
    assert thumbs == Path("/srv/thumbs")


def test_initialize_app_honors_env_paths(monkeypatch, tmp_path: Path) -> None:
    config_dir = tmp_path / "cfg"
    db_path = tmp_path / "custom" / "gallery.db"
    monkeypatch.setenv(app_context.ENV_CONFIG_DIR, str(config_dir))
    monkeypatch.setenv(app_context.ENV_DB_PATH, str(db_path))
    monkeypatch.setenv("MEDIA_ORIGINALS_PATH", str(tmp_path / "env-originals"))
    monkeypatch.delenv("MEDIA_THUMBS_PATH", raising=False)

    context: AppContext = initialize_app(base_dir=tmp_path, configure_logging=False)
    try:
        assert context.db_path == db_path
        assert context.config_path.parent == config_dir
        assert db_path.exists()
        assert context.originals.root == tmp_path / "env-originals"
        assert context.thumbs.root == tmp_path / "data" / "thumbs"
        assert context.thumbs.root.is_dir()
        assert context.pipeline.thumbnails.public_prefix == "/thumbs"
        assert context.previews.max_concurrent == 3
        tables = {
            row[0]
            for row in context.conn.execute("SELECT name FROM sqlite_master WHERE type='table';").fetchall()
        }
        assert {"media_asset", "exif_record"} <= tables
    finally:
        context.close()


def test_initialize_app_reads_config_file(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.delenv("MEDIA_ORIGINALS_PATH", raising=False)
    monkeypatch.delenv("MEDIA_THUMBS_PATH", raising=False)
    config_path = _write_config(tmp_path / "cfg" / "config.toml", tmp_path / "library")

    context = initialize_app(config_path=config_path, db_path=tmp_path / "g.db", configure_logging=False)
    try:
        assert context.originals.root == tmp_path / "library" / "originals"
        assert context.pipeline.thumbnails.max_workers == 2
        assert context.ingest.pipeline is context.pipeline
    finally:
        context.close()


def test_setup_logging_writes_rotating_file(tmp_path: Path, restore_logging) -> None:
    log_path = setup_logging(log_dir=tmp_path / "logs", level="debug")

    logging.getLogger("media_gallery.test").info("hello from the gallery")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert log_path == tmp_path / "logs" / LOG_FILENAME
    assert "hello from the gallery" in log_path.read_text(encoding="utf-8")
    assert logging.getLogger("PIL").level >= logging.INFO


def test_cli_upload_and_regenerate(monkeypatch, tmp_path: Path, capsys, restore_logging) -> None:
    monkeypatch.delenv("MEDIA_ORIGINALS_PATH", raising=False)
    monkeypatch.delenv("MEDIA_THUMBS_PATH", raising=False)
    library = tmp_path / "library"
    config_path = _write_config(tmp_path / "cfg" / "config.toml", library)
    db_path = tmp_path / "db" / "gallery.db"
    photo = tmp_path / "incoming" / "beach.jpg"
    photo.parent.mkdir()
    Image.new("RGB", (120, 80), color="orange").save(photo, format="JPEG")
    base_args = ["--config", str(config_path), "--db", str(db_path)]

    assert main([*base_args, "upload", str(photo)]) == 0
    uploaded = json.loads(capsys.readouterr().out)
    assert uploaded["filename"] == "beach.jpg"
    assert (uploaded["width"], uploaded["height"]) == (120, 80)
    assert uploaded["thumbnail_paths"]["large"] == f"/thumbs/large_beach_{uploaded['id']}.webp"

    assert main([*base_args, "regenerate", str(uploaded["id"])]) == 0
    regenerated = json.loads(capsys.readouterr().out)
    assert regenerated["blur_hash"] == uploaded["blur_hash"]

    assert main([*base_args, "rescan"]) == 0
    assert json.loads(capsys.readouterr().out)["skipped_existing"] == 1

    assert main([*base_args, "regenerate-missing"]) == 0
    assert json.loads(capsys.readouterr().out) == {"processed": 0, "failed": {}}

    assert main([*base_args, "reextract", "999"]) == 1
    assert "error" in json.loads(capsys.readouterr().err.strip().splitlines()[-1])
    assert (db_path.parent / "logs" / LOG_FILENAME).exists()
