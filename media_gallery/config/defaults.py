"""
Default configuration values.
"""

from __future__ import annotations

DEFAULTS: dict[str, object] = {
    "db": {"path": "gallery.db"},
    "media": {
        "originals_path": "data/originals",
        "thumbs_path": "data/thumbs",
        "public_prefix": "/thumbs",
    },
    "thumbnails": {"format": "webp", "workers": 4},
    "blurhash": {"edge": 32, "components_x": 4, "components_y": 4},
    "preview": {"max_concurrent": 3, "pause_seconds": 0.01, "max_edge": 64, "quality": 70},
    "logging": {"level": "info"},
}
