from __future__ import annotations

from pathlib import Path

import pytest
from PIL import Image, ImageOps

from media_gallery.services.blurhash_service import BlurHashEncoder
from media_gallery.services.thumbnail_service import ThumbnailGenerator
from media_gallery.utils.storage import LocalFileStorage


def _marked_source(path: Path, orientation: int) -> Path:
    """64x32 black PNG with a white block in the top-left corner."""
    image = Image.new("RGB", (64, 32), color="black")
    image.paste((255, 255, 255), (0, 0, 16, 8))
    exif = Image.Exif()
    exif[274] = orientation
    image.save(path, format="PNG", exif=exif.tobytes())
    return path


def _bright_corner(image: Image.Image) -> tuple[str, str]:
    gray = image.convert("L")
    width, height = gray.size
    boxes = {
        ("top", "left"): (0, 0, width // 2, height // 2),
        ("top", "right"): (width // 2, 0, width, height // 2),
        ("bottom", "left"): (0, height // 2, width // 2, height),
        ("bottom", "right"): (width // 2, height // 2, width, height),
    }

    def brightness(box: tuple[int, int, int, int]) -> float:
        region = gray.crop(box)
        return sum(region.getdata()) / (region.width * region.height)

    return max(boxes, key=lambda corner: brightness(boxes[corner]))


@pytest.mark.parametrize("code", range(1, 9))
def test_thumbnail_and_blur_raster_agree_with_displayed_image(tmp_path: Path, code: int) -> None:
    source = _marked_source(tmp_path / f"marked_{code}.png", code)
    with Image.open(source) as opened:
        displayed = ImageOps.exif_transpose(opened)
    expected = _bright_corner(displayed)

    generator = ThumbnailGenerator(LocalFileStorage(tmp_path / "thumbs"))
    paths = generator.generate(source, code, source.name)
    with Image.open(generator.storage.path_for(Path(paths["micro"]).name)) as micro:
        micro.load()
        assert micro.size == (displayed.width // 2, displayed.height // 2)
        assert _bright_corner(micro) == expected

    raster = Image.fromarray(BlurHashEncoder().raster(source))
    assert raster.size == micro.size
    assert _bright_corner(raster) == expected
