"""
File storage capability rooted at a directory.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from media_gallery.errors import NotFound

LOGGER = logging.getLogger(__name__)


class LocalFileStorage:
    """read/write/exists/delete against paths under `root` (absolute paths pass through)."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def path_for(self, name: str | Path) -> Path:
        path = Path(name)
        return path if path.is_absolute() else self.root / path

    def ensure_root(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def exists(self, name: str | Path) -> bool:
        return self.path_for(name).is_file()

    def read(self, name: str | Path) -> bytes:
        path = self.path_for(name)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFound(path) from exc

    def write(self, name: str | Path, data: bytes) -> Path:
        """Write via a sibling temp file so readers never see a partial file."""
        path = self.path_for(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return path

    def delete(self, name: str | Path) -> bool:
        path = self.path_for(name)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        LOGGER.debug("Deleted %s", path)
        return True
