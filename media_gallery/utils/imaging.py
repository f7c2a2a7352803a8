"""
Raster codec capability backed by Pillow: decode, orientation, resize, sharpen, encode.
"""

from __future__ import annotations

from io import BytesIO
from pathlib import Path

import numpy as np
from PIL import Image, ImageFilter, UnidentifiedImageError

from media_gallery.errors import DecodeError, NotFound
from media_gallery.utils.orientation import (
    ORIENTATION_TAG,
    apply_orientation,
    normalize_orientation_code,
    transform_for,
)

# Fixed lossy encode parameters: 4:2:0 chroma, no near-lossless, constant alpha quality.
WEBP_PARAMS: dict[str, object] = {"method": 6, "lossless": False, "alpha_quality": 90}
JPEG_PARAMS: dict[str, object] = {"optimize": True, "subsampling": "4:2:0"}

SHARPEN = ImageFilter.UnsharpMask(radius=0.5, percent=60, threshold=2)


class RasterCodec:
    """Stateless image operations; subclass to observe or replace individual steps."""

    resample = Image.Resampling.LANCZOS

    def decode(self, path: Path) -> Image.Image:
        path = Path(path)
        if not path.exists():
            raise NotFound(path)
        try:
            with Image.open(path) as image:
                image.load()
                # keep EXIF reachable after the file handle closes
                decoded = image.copy()
                decoded.getexif().update(image.getexif())
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
            raise DecodeError(f"Cannot decode {path}: {exc}") from exc
        return decoded

    def decode_bytes(self, data: bytes) -> Image.Image:
        try:
            with Image.open(BytesIO(data)) as image:
                image.load()
                decoded = image.copy()
                decoded.getexif().update(image.getexif())
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
            raise DecodeError(f"Cannot decode image bytes: {exc}") from exc
        return decoded

    def read_orientation(self, image: Image.Image) -> int:
        return normalize_orientation_code(image.getexif().get(ORIENTATION_TAG))

    def orient(self, image: Image.Image, code: int) -> Image.Image:
        return apply_orientation(image, code)

    def fit_inside(self, image: Image.Image, edge: int, enlarge: bool = False) -> Image.Image:
        """Scale so both sides are <= edge, keeping aspect ratio."""
        width, height = image.size
        longest = max(width, height)
        if longest <= edge and not enlarge:
            return image.copy()
        scale = edge / float(longest)
        size = (max(1, round(width * scale)), max(1, round(height * scale)))
        return image.resize(size, self.resample)

    def sharpen(self, image: Image.Image) -> Image.Image:
        if image.mode not in ("RGB", "RGBA", "L"):
            image = image.convert("RGBA" if "A" in image.getbands() else "RGB")
        return image.filter(SHARPEN)

    def encode_lossy(self, image: Image.Image, quality: int, fmt: str = "webp") -> bytes:
        fmt = fmt.upper()
        buffer = BytesIO()
        if fmt == "WEBP":
            if image.mode not in ("RGB", "RGBA"):
                image = image.convert("RGBA" if "A" in image.getbands() else "RGB")
            image.save(buffer, format="WEBP", quality=quality, **WEBP_PARAMS)
        elif fmt in ("JPEG", "JPG"):
            if image.mode != "RGB":
                image = image.convert("RGB")
            image.save(buffer, format="JPEG", quality=quality, **JPEG_PARAMS)
        else:
            raise ValueError(f"Unsupported lossy format: {fmt}")
        return buffer.getvalue()

    def raw_rgba(self, image: Image.Image) -> np.ndarray:
        """Pixel array of shape (height, width, 4)."""
        return np.asarray(image.convert("RGBA"), dtype=np.uint8)


def image_dimensions(codec: RasterCodec, path: Path) -> tuple[int, int]:
    """Width and height after orientation correction."""
    image = codec.decode(path)
    return transform_for(codec.read_orientation(image)).oriented_size(*image.size)
