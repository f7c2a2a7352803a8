"""
EXIF orientation codes mapped to pixel-space transforms.

Both the thumbnail and blur-hash paths go through `apply_orientation` before any
resize, so they always agree on which way is up.
"""

from __future__ import annotations

from dataclasses import dataclass

from PIL import Image

ORIENTATION_TAG = 0x0112

_ROTATIONS = {
    90: Image.Transpose.ROTATE_270,  # Pillow rotates counter-clockwise
    180: Image.Transpose.ROTATE_180,
    270: Image.Transpose.ROTATE_90,
}


@dataclass(frozen=True)
class OrientationTransform:
    """Clockwise rotation followed by an optional mirror."""

    code: int
    rotate: int = 0
    flip_horizontal: bool = False
    flip_vertical: bool = False

    @property
    def is_identity(self) -> bool:
        return not (self.rotate or self.flip_horizontal or self.flip_vertical)

    @property
    def swaps_axes(self) -> bool:
        return self.rotate in (90, 270)

    def steps(self) -> tuple[Image.Transpose, ...]:
        ops: list[Image.Transpose] = []
        if self.rotate:
            ops.append(_ROTATIONS[self.rotate])
        if self.flip_horizontal:
            ops.append(Image.Transpose.FLIP_LEFT_RIGHT)
        if self.flip_vertical:
            ops.append(Image.Transpose.FLIP_TOP_BOTTOM)
        return tuple(ops)

    def oriented_size(self, width: int, height: int) -> tuple[int, int]:
        return (height, width) if self.swaps_axes else (width, height)

    def apply(self, image: Image.Image) -> Image.Image:
        for method in self.steps():
            image = image.transpose(method)
        return image


IDENTITY = OrientationTransform(code=1)

TRANSFORMS: dict[int, OrientationTransform] = {
    1: IDENTITY,
    2: OrientationTransform(code=2, flip_horizontal=True),
    3: OrientationTransform(code=3, rotate=180),
    4: OrientationTransform(code=4, flip_vertical=True),
    5: OrientationTransform(code=5, rotate=90, flip_horizontal=True),
    6: OrientationTransform(code=6, rotate=90),
    7: OrientationTransform(code=7, rotate=270, flip_horizontal=True),
    8: OrientationTransform(code=8, rotate=270),
}


def normalize_orientation_code(value: object) -> int:
    """Coerce a raw tag value to 1-8; absent or unrecognized values mean 1."""
    if isinstance(value, (tuple, list)) and value:
        value = value[0]
    try:
        code = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 1
    return code if code in TRANSFORMS else 1


def transform_for(code: object) -> OrientationTransform:
    return TRANSFORMS[normalize_orientation_code(code)]


def apply_orientation(image: Image.Image, code: object) -> Image.Image:
    """Return `image` rotated/flipped for display according to `code`."""
    return transform_for(code).apply(image)
