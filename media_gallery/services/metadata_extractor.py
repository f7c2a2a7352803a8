"""
EXIF tag-tree extraction and derivation of the camera fields stored per asset.

`extract` returns the raw tree: IFD0 tags at the top level keyed by tag name
(numeric id as a string when Pillow has no name), the Exif sub-IFD under
"Exif" and GPS tags under "GPSInfo". Field lookups also accept trees produced
by other readers, where a tag may sit at the top level by name, by numeric id,
or inside a section.
"""

from __future__ import annotations

import datetime as dt
import logging
import math
from pathlib import Path
from typing import Any, Mapping

from PIL import ExifTags, Image, UnidentifiedImageError

from media_gallery.errors import ExtractionError, NotFound
from media_gallery.models.repositories import ExifRecord, GpsPosition
from media_gallery.services.sanitizer import DataSanitizer, sanitize_string

LOGGER = logging.getLogger(__name__)

SECTIONS = ("Exif", "GPSInfo")
_SUB_IFDS = (
    (ExifTags.IFD.Exif, "Exif", ExifTags.TAGS),
    (ExifTags.IFD.GPSInfo, "GPSInfo", ExifTags.GPSTAGS),
)
# IFD0 pointer tags replaced by the sections they point to
_POINTER_TAGS = {int(ExifTags.IFD.Exif), int(ExifTags.IFD.GPSInfo)}

EXIF_DATE_FORMAT = "%Y:%m:%d %H:%M:%S"


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not sanitize_string(value):
        return False
    if isinstance(value, (tuple, list)) and not value:
        return False
    return True


def lookup(tree: Mapping[str, Any], name: str, tag_id: int | None = None, section: str | None = None) -> Any:
    """Find a tag by name, then numeric id, then inside the nested sections."""
    keys: list[Any] = [name]
    if tag_id is not None:
        keys.extend([tag_id, str(tag_id)])
    scopes: list[Mapping[str, Any]] = [tree]
    for sec in ((section,) if section else SECTIONS):
        nested = tree.get(sec)
        if isinstance(nested, Mapping):
            scopes.append(nested)
    for scope in scopes:
        for key in keys:
            value = scope.get(key)
            if _is_present(value):
                return value
    return None


def _first(value: Any) -> Any:
    if isinstance(value, (tuple, list)):
        return value[0] if value else None
    return value


def as_float(value: Any) -> float | None:
    value = _first(value)
    if value is None or isinstance(value, (bytes, bytearray, bool)):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, ZeroDivisionError):
        return None
    return number if math.isfinite(number) else None


def as_int(value: Any) -> int | None:
    number = as_float(value)
    return int(round(number)) if number is not None else None


def as_text(value: Any) -> str | None:
    if isinstance(value, (bytes, bytearray)):
        value = bytes(value).decode("utf-8", errors="ignore")
    if value is None:
        return None
    text = sanitize_string(str(value))
    return text or None


def format_shutter_speed(exposure_time: Any) -> str | None:
    """1/250 style for sub-second exposures, seconds ("2s") from one second up."""
    seconds = as_float(exposure_time)
    if seconds is None or seconds <= 0:
        return None
    if seconds >= 1:
        return f"{seconds:g}s"
    # round half up, matching how camera UIs print the denominator
    return f"1/{math.floor(1 / seconds + 0.5)}"


def format_capture_date(value: Any) -> str | None:
    if isinstance(value, dt.datetime):
        return value.isoformat()
    text = as_text(value)
    if text is None:
        return None
    try:
        return dt.datetime.strptime(text[:19], EXIF_DATE_FORMAT).isoformat()
    except ValueError:
        return text


def _dms_to_degrees(value: Any, ref: Any) -> float | None:
    if isinstance(value, (tuple, list)):
        parts = [as_float(part) for part in value]
        if not parts or any(part is None for part in parts):
            return None
        degrees = sum(part / 60**index for index, part in enumerate(parts))  # type: ignore[operator]
    else:
        degrees = as_float(value)
        if degrees is None:
            return None
    ref_text = as_text(ref)
    if ref_text and ref_text[0].upper() in ("S", "W"):
        degrees = -abs(degrees)
    return degrees


def derive_gps(tree: Mapping[str, Any]) -> GpsPosition | None:
    latitude = as_float(lookup(tree, "latitude"))
    longitude = as_float(lookup(tree, "longitude"))
    if latitude is None or longitude is None:
        latitude = _dms_to_degrees(
            lookup(tree, "GPSLatitude", 2, section="GPSInfo"),
            lookup(tree, "GPSLatitudeRef", 1, section="GPSInfo"),
        )
        longitude = _dms_to_degrees(
            lookup(tree, "GPSLongitude", 4, section="GPSInfo"),
            lookup(tree, "GPSLongitudeRef", 3, section="GPSInfo"),
        )
    if latitude is None or longitude is None:
        return None
    return GpsPosition(latitude=latitude, longitude=longitude)


def derive_fields(tree: Mapping[str, Any]) -> ExifRecord:
    """Flat, human-meaningful fields from a raw tag tree (raw left unset)."""
    make = as_text(lookup(tree, "Make", 271))
    model = as_text(lookup(tree, "Model", 272))
    camera = f"{make or ''} {model or ''}".strip() or None

    iso = lookup(tree, "ISOSpeedRatings", 34855) or lookup(tree, "ISO") or lookup(tree, "PhotographicSensitivity")
    return ExifRecord(
        camera=camera,
        lens=as_text(lookup(tree, "LensModel", 42036)),
        focal_length=as_float(lookup(tree, "FocalLength", 37386)),
        aperture=as_float(lookup(tree, "FNumber", 33437)),
        shutter_speed=format_shutter_speed(lookup(tree, "ExposureTime", 33434)),
        iso=as_int(iso),
        date_taken=format_capture_date(lookup(tree, "DateTimeOriginal", 36867) or lookup(tree, "DateTime", 306)),
        gps=derive_gps(tree),
    )


class MetadataExtractor:
    """Read EXIF with Pillow and build ExifRecords with a sanitized raw tree."""

    def __init__(self, sanitizer: DataSanitizer | None = None) -> None:
        self.sanitizer = sanitizer or DataSanitizer()

    def extract(self, path: Path) -> dict[str, Any] | None:
        """Raw tag tree, or None when the file carries no tags."""
        path = Path(path)
        if not path.exists():
            raise NotFound(path)
        try:
            with Image.open(path) as image:
                exif = image.getexif()
                tree: dict[str, Any] = {
                    ExifTags.TAGS.get(tag_id, str(tag_id)): value
                    for tag_id, value in exif.items()
                    if tag_id not in _POINTER_TAGS
                }
                for ifd_id, section, names in _SUB_IFDS:
                    entries = exif.get_ifd(ifd_id)
                    if entries:
                        tree[section] = {names.get(tag_id, str(tag_id)): value for tag_id, value in entries.items()}
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
            raise ExtractionError(f"Cannot read EXIF from {path}: {exc}") from exc
        if not tree:
            LOGGER.debug("No EXIF tags in %s", path)
            return None
        return tree

    def build_record(self, path: Path) -> ExifRecord | None:
        tree = self.extract(path)
        if tree is None:
            return None
        record = derive_fields(tree)
        record.raw = self.sanitizer.sanitize(tree)
        return record
