"""Pyramid metadata descriptor loading, derivation, and persistence."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

import jsonschema

from tmspyramid.contracts import SCHEMA_VERSION, validate_metadata
from tmspyramid.errors import MetadataError
from tmspyramid.tiles.models import GeoExtent, PixelRange, PixelType, TileRange
from tmspyramid.tiles.tiling import MAX_ZOOM, extent_to_pixel_range, extent_to_tile_range

METADATA_FILENAME = "metadata.json"

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ZoomMetadata:
    """Pixel and tile extents of the dataset at one zoom."""

    pixel_extent: PixelRange
    tile_extent: TileRange


@dataclass(frozen=True)
class PyramidMetadata:
    """Geometry and pixel type of a tile pyramid."""

    extent: GeoExtent
    tile_size: int
    max_zoom: int
    pixel_type: PixelType
    raster_metadata: Mapping[int, ZoomMetadata] = field(default_factory=dict)

    def zoom_metadata(self, zoom: int) -> ZoomMetadata:
        try:
            return self.raster_metadata[zoom]
        except KeyError:
            raise MetadataError(f"No raster metadata for zoom {zoom}") from None

    def as_dict(self) -> dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "extent": _rect_dict(self.extent),
            "tile_size": self.tile_size,
            "max_zoom": self.max_zoom,
            "pixel_type": self.pixel_type.value,
            "raster_metadata": {
                str(zoom): {
                    "pixel_extent": _rect_dict(item.pixel_extent),
                    "tile_extent": _rect_dict(item.tile_extent),
                }
                for zoom, item in sorted(self.raster_metadata.items())
            },
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PyramidMetadata":
        raw_zooms = data.get("raster_metadata") or {}
        raster_metadata = {
            int(zoom): ZoomMetadata(
                pixel_extent=PixelRange(**_int_rect(item["pixel_extent"])),
                tile_extent=TileRange(**_int_rect(item["tile_extent"])),
            )
            for zoom, item in raw_zooms.items()
        }
        extent = data["extent"]
        return cls(
            extent=GeoExtent(
                xmin=float(extent["xmin"]),
                ymin=float(extent["ymin"]),
                xmax=float(extent["xmax"]),
                ymax=float(extent["ymax"]),
            ),
            tile_size=int(data["tile_size"]),
            max_zoom=int(data["max_zoom"]),
            pixel_type=PixelType(data["pixel_type"]),
            raster_metadata=raster_metadata,
        )


def _rect_dict(rect: Any) -> dict[str, Any]:
    return {"xmin": rect.xmin, "ymin": rect.ymin, "xmax": rect.xmax, "ymax": rect.ymax}


def _int_rect(raw: Mapping[str, Any]) -> dict[str, int]:
    return {key: int(raw[key]) for key in ("xmin", "ymin", "xmax", "ymax")}


def zoom_metadata_for(extent: GeoExtent, zoom: int, tile_size: int) -> ZoomMetadata:
    """Derive the pixel and tile extents of a dataset extent at a zoom."""
    return ZoomMetadata(
        pixel_extent=extent_to_pixel_range(extent, zoom, tile_size),
        tile_extent=extent_to_tile_range(extent, zoom, tile_size),
    )


def fill_raster_metadata(meta: PyramidMetadata) -> PyramidMetadata:
    """Return metadata with per-zoom extents recomputed for every coarser zoom.

    The finest zoom keeps its recorded entry and is derived only when absent.
    """
    raster_metadata = dict(meta.raster_metadata)
    for zoom in range(1, meta.max_zoom):
        raster_metadata[zoom] = zoom_metadata_for(meta.extent, zoom, meta.tile_size)
    if meta.max_zoom not in raster_metadata:
        raster_metadata[meta.max_zoom] = zoom_metadata_for(
            meta.extent, meta.max_zoom, meta.tile_size
        )
    return replace(meta, raster_metadata=raster_metadata)


def check_finest_extent(meta: PyramidMetadata) -> None:
    """Raise MetadataError when the recorded finest tile extent exceeds the derived one.

    Coarse zooms are always derived from the extent, so a finest entry reaching
    past it would route fragments outside every coarse partition.
    """
    recorded = meta.zoom_metadata(meta.max_zoom).tile_extent
    derived = zoom_metadata_for(meta.extent, meta.max_zoom, meta.tile_size).tile_extent
    if recorded.intersection(derived) != recorded:
        raise MetadataError(
            f"Recorded tile extent {recorded} at max zoom {meta.max_zoom} is not inside "
            f"{derived} derived from the extent"
        )


def validate_geometry(meta: PyramidMetadata) -> None:
    """Raise MetadataError when the pyramid geometry cannot be built."""
    if meta.tile_size < 1:
        raise MetadataError(f"Tile size must be positive, got {meta.tile_size}")
    if not 1 <= meta.max_zoom <= MAX_ZOOM:
        raise MetadataError(f"Max zoom must be between 1 and {MAX_ZOOM}, got {meta.max_zoom}")
    extent = meta.extent
    if not (-180.0 <= extent.xmin < extent.xmax <= 180.0):
        raise MetadataError(f"Invalid longitude range in extent: {extent.as_tuple()}")
    if not (-90.0 <= extent.ymin < extent.ymax <= 90.0):
        raise MetadataError(f"Invalid latitude range in extent: {extent.as_tuple()}")
    reduction = 1 << (meta.max_zoom - 1)
    if meta.tile_size % reduction:
        raise MetadataError(
            f"Tile size {meta.tile_size} cannot be halved {meta.max_zoom - 1} times; "
            f"it must be a multiple of {reduction}"
        )


def metadata_path(pyramid_dir: Path) -> Path:
    return Path(pyramid_dir) / METADATA_FILENAME


def load_metadata(pyramid_dir: Path) -> PyramidMetadata:
    """Load and validate the metadata descriptor of a pyramid."""
    path = metadata_path(pyramid_dir)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise MetadataError(f"Missing pyramid metadata: {path}") from None
    except (OSError, json.JSONDecodeError) as exc:
        raise MetadataError(f"Unreadable pyramid metadata {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise MetadataError(f"Pyramid metadata must be a JSON object: {path}")
    try:
        validate_metadata(payload)
    except jsonschema.ValidationError as exc:
        raise MetadataError(f"Invalid pyramid metadata {path}: {exc.message}") from exc
    return PyramidMetadata.from_dict(payload)


def save_metadata(meta: PyramidMetadata, pyramid_dir: Path) -> Path:
    """Write the metadata descriptor atomically and return its path."""
    path = metadata_path(pyramid_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(json.dumps(meta.as_dict(), indent=2, sort_keys=True), encoding="utf-8")
    os.replace(tmp_path, path)
    LOGGER.debug("Saved pyramid metadata to %s", path)
    return path
