"""
Error taxonomy for the derived-asset pipeline.

Ingest and rescan callers catch these and log them; explicit re-extraction and
regeneration let them reach the user.
"""

from __future__ import annotations

from typing import Mapping


class PipelineError(Exception):
    """Base class for media pipeline failures."""


class NotFound(PipelineError, FileNotFoundError):
    """Source file missing at extraction/generation time."""

    def __init__(self, path: object) -> None:
        super().__init__(f"Source file not found: {path}")
        self.path = path


class DecodeError(PipelineError):
    """The raster codec could not parse the source."""


class ExtractionError(DecodeError):
    """Metadata could not be read from an otherwise present file."""


class BatchGenerationFailure(PipelineError):
    """One or more thumbnail sizes failed; the whole batch for the asset is discarded."""

    def __init__(self, asset_id: int | str, failures: Mapping[str, BaseException]) -> None:
        self.asset_id = asset_id
        self.failures = dict(failures)
        detail = ", ".join(f"{size}: {exc}" for size, exc in self.failures.items())
        super().__init__(f"Thumbnail generation failed for asset {asset_id} ({detail})")

    @property
    def failed_sizes(self) -> list[str]:
        return list(self.failures)
