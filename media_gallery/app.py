"""
Command-line entry point.

Bootstraps configuration, logging and database initialization, then runs one
ingest or maintenance command and prints its result as JSON.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Sequence

from media_gallery.app_context import AppContext, initialize_app
from media_gallery.errors import PipelineError

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="media-gallery", description="Media gallery ingest and maintenance")
    parser.add_argument("--config", type=Path, help="Path to config.toml")
    parser.add_argument("--db", type=Path, help="Database file (overrides config)")
    sub = parser.add_subparsers(dest="command", required=True)

    upload = sub.add_parser("upload", help="Store a file as a new original and derive its assets")
    upload.add_argument("file", type=Path)

    rescan = sub.add_parser("rescan", help="Index files not yet recorded")
    rescan.add_argument("directory", type=Path, nargs="?")
    rescan.add_argument("--no-recursive", action="store_true")

    reextract = sub.add_parser("reextract", help="Re-read EXIF for one asset")
    reextract.add_argument("asset_id", type=int)

    regenerate = sub.add_parser("regenerate", help="Rebuild thumbnails and blur hash for one asset")
    regenerate.add_argument("asset_id", type=int)

    sub.add_parser("regenerate-missing", help="Rebuild assets for every image without thumbnails")
    return parser


def run_command(context: AppContext, args: argparse.Namespace) -> dict:
    ingest = context.ingest
    if args.command == "upload":
        asset = ingest.upload(args.file.name, args.file.read_bytes())
        return asdict(asset)
    if args.command == "rescan":
        return asdict(ingest.rescan(args.directory, recursive=not args.no_recursive))
    if args.command == "reextract":
        return {"asset_id": args.asset_id, "exif_stored": ingest.reextract(args.asset_id)}
    if args.command == "regenerate":
        outcome = ingest.regenerate(args.asset_id)
        return {"asset_id": outcome.asset_id, "thumbnails": outcome.thumbnails, "blur_hash": outcome.blur_hash}
    if args.command == "regenerate-missing":
        return asdict(ingest.regenerate_missing())
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    context = initialize_app(config_path=args.config, db_path=args.db)
    try:
        result = run_command(context, args)
    except (PipelineError, KeyError, ValueError, OSError) as exc:
        LOGGER.error("%s failed: %s", args.command, exc)
        print(json.dumps({"error": str(exc)}), file=sys.stderr)
        return 1
    finally:
        context.close()
    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
