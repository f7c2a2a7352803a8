"""
Configuration loading: TOML file merged over defaults, then environment overrides.
"""

from __future__ import annotations

import copy
import os
import tomllib
from pathlib import Path
from typing import Any, Mapping

from media_gallery.config.defaults import DEFAULTS

# Environment names kept compatible with the original gallery backend.
ENV_ORIGINALS_PATH = "MEDIA_ORIGINALS_PATH"
ENV_THUMBS_PATH = "MEDIA_THUMBS_PATH"


def _deep_merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    merged: dict[str, Any] = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def apply_env_overrides(config: dict[str, Any], environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Return a copy of `config` with media paths taken from the environment when set."""
    env = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    if env.get(ENV_ORIGINALS_PATH):
        overrides.setdefault("media", {})["originals_path"] = env[ENV_ORIGINALS_PATH]
    if env.get(ENV_THUMBS_PATH):
        overrides.setdefault("media", {})["thumbs_path"] = env[ENV_THUMBS_PATH]
    return _deep_merge(config, overrides)


def load_config(path: Path, environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """
    Load a TOML config file and merge it over defaults.
    Missing files return defaults; malformed files raise ValueError.
    """
    if path.is_dir():
        raise IsADirectoryError(f"Config path points to a directory: {path}")

    user_config: dict[str, Any] = {}
    if path.exists():
        try:
            with path.open("rb") as fh:
                user_config = tomllib.load(fh)
        except tomllib.TOMLDecodeError as exc:
            raise ValueError(f"Invalid config file {path}: {exc}") from exc

    return apply_env_overrides(_deep_merge(DEFAULTS, user_config), environ)
