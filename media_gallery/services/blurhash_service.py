"""
Blur-hash placeholders computed from a tiny oriented downsample of the source.
"""

from __future__ import annotations

import logging
from pathlib import Path

import blurhash

from media_gallery.utils.imaging import RasterCodec

LOGGER = logging.getLogger(__name__)

BLUR_EDGE = 32
COMPONENTS_X = 4
COMPONENTS_Y = 4


class BlurHashEncoder:
    """Same orientation handling as the thumbnails, so both agree on which way is up."""

    def __init__(
        self,
        codec: RasterCodec | None = None,
        edge: int = BLUR_EDGE,
        components_x: int = COMPONENTS_X,
        components_y: int = COMPONENTS_Y,
    ) -> None:
        self.codec = codec or RasterCodec()
        self.edge = edge
        self.components_x = components_x
        self.components_y = components_y

    def raster(self, source_path: Path):
        """Oriented RGBA pixels scaled so the long edge is `edge` pixels."""
        image = self.codec.decode(Path(source_path))
        oriented = self.codec.orient(image, self.codec.read_orientation(image))
        small = self.codec.fit_inside(oriented, self.edge, enlarge=True)
        return self.codec.raw_rgba(small)

    def encode(self, source_path: Path) -> str:
        pixels = self.raster(source_path)
        height, width = pixels.shape[:2]
        # the encoder reads colour channels only; alpha stays in the raster
        value = blurhash.encode(pixels[:, :, :3].tolist(), self.components_x, self.components_y)
        LOGGER.debug("Blur hash for %s from %dx%d raster: %s", source_path, width, height, value)
        return value
