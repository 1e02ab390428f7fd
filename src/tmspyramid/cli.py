"""Command-line interface for tmspyramid."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

import jsonschema

from tmspyramid import __version__
from tmspyramid.config import RESAMPLING_CHOICES, load_build_options, options_with_overrides
from tmspyramid.errors import PyramidError
from tmspyramid.logging_utils import LogOptions, configure_logging
from tmspyramid.tiles.export import export_tile
from tmspyramid.tiles.metadata import load_metadata
from tmspyramid.tiles.pipeline import build_pyramid
from tmspyramid.tiles.storage import PartitionReader, list_partitions

LOGGER = logging.getLogger("tmspyramid.cli")


def _add_build_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the build subcommand."""
    build = subparsers.add_parser("build", help="Build coarse zoom levels from the finest zoom.")
    build.add_argument("pyramid", help="Pyramid directory holding metadata.json.")
    build.add_argument(
        "--jobs",
        type=int,
        help="Worker threads (0 = one per CPU).",
    )
    build.add_argument(
        "--resampling",
        choices=RESAMPLING_CHOICES,
        help="Downsampling rule applied between zoom levels.",
    )
    build.add_argument(
        "--block-size",
        type=int,
        help="Target partition size in bytes.",
    )
    build.add_argument(
        "--config",
        help="JSON file with build options.",
    )


def _add_info_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the info subcommand."""
    info = subparsers.add_parser("info", help="Print the pyramid descriptor and partition counts.")
    info.add_argument("pyramid", help="Pyramid directory holding metadata.json.")


def _add_export_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the export subcommand."""
    export = subparsers.add_parser("export", help="Export one tile as a GeoTIFF.")
    export.add_argument("pyramid", help="Pyramid directory holding metadata.json.")
    export.add_argument("--zoom", type=int, required=True, help="Zoom level of the tile.")
    export.add_argument("--tile-id", type=int, required=True, help="Tile id at that zoom.")
    export.add_argument("--output", required=True, help="Destination GeoTIFF path.")


def _add_version_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the version subcommand."""
    subparsers.add_parser("version", help="Print the current version.")


def _pyramid_info(pyramid: Path) -> dict[str, object]:
    """Summarize a pyramid's descriptor and stored partitions."""
    meta = load_metadata(pyramid)
    zooms = {}
    for zoom in sorted(meta.raster_metadata):
        partitions = list_partitions(pyramid, zoom)
        zooms[str(zoom)] = {
            "partitions": len(partitions),
            "tiles": sum(len(PartitionReader(path)) for path in partitions),
        }
    return {"metadata": meta.as_dict(), "zooms": zooms}


def _run_build(args: argparse.Namespace) -> int:
    options = load_build_options(Path(args.config) if args.config else None)
    options = options_with_overrides(
        options,
        jobs=args.jobs,
        resampling=args.resampling,
        block_size=args.block_size,
    )
    result = build_pyramid(Path(args.pyramid), options=options)
    for zoom, count in sorted(result.tile_counts().items()):
        LOGGER.info("Zoom %d: %d tile(s)", zoom, count, extra={"zoom": zoom})
    return 0


def main(argv: list[str] | None = None) -> int:
    """Run the CLI entrypoint and return an exit code."""
    parser = argparse.ArgumentParser(
        prog="tmspyramid",
        description="TMSPYRAMID geodetic tile pyramid builder",
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (repeatable).",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Reduce log output to warnings and errors.",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit logs as JSON on stderr.",
    )
    parser.add_argument(
        "--log-file",
        help="Optional path for JSON log output.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_build_parser(subparsers)
    _add_info_parser(subparsers)
    _add_export_parser(subparsers)
    _add_version_parser(subparsers)

    args = parser.parse_args(argv)
    log_file_value = getattr(args, "log_file", None)
    log_options = LogOptions(
        verbose=getattr(args, "verbose", 0) or 0,
        quiet=bool(getattr(args, "quiet", False)),
        log_file=Path(log_file_value) if log_file_value else None,
        json_console=bool(getattr(args, "log_json", False)),
    )
    configure_logging(log_options)

    if args.command == "version":
        print(__version__)
        return 0
    try:
        if args.command == "build":
            return _run_build(args)
        if args.command == "info":
            print(json.dumps(_pyramid_info(Path(args.pyramid)), indent=2, sort_keys=True))
            return 0
        path = export_tile(Path(args.pyramid), args.zoom, args.tile_id, Path(args.output))
        LOGGER.info("Exported tile %d to %s", args.tile_id, path, extra={"zoom": args.zoom})
        return 0
    except (PyramidError, KeyError, FileNotFoundError, jsonschema.ValidationError) as exc:
        LOGGER.error("%s failed: %s", args.command, exc)
        return 1
