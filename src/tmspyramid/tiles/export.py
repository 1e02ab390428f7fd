"""GeoTIFF export of individual pyramid tiles."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import rasterio
from rasterio.transform import from_bounds

from tmspyramid.tiles.metadata import PyramidMetadata, load_metadata
from tmspyramid.tiles.models import PixelType, Tile
from tmspyramid.tiles.partition import read_splits
from tmspyramid.tiles.storage import read_tile
from tmspyramid.tiles.tiling import tile_to_extent


def write_tile_geotiff(tile: Tile, meta: PyramidMetadata, output_path: Path) -> Path:
    """Write a tile as a single-band north-up GeoTIFF in EPSG:4326."""
    extent = tile_to_extent(tile.tile_id, tile.zoom, meta.tile_size)
    data = tile.payload.data
    if tile.payload.pixel_type is PixelType.BIT:
        data = data.astype(np.uint8)
    size = tile.payload.size
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with rasterio.open(
        output_path,
        "w",
        driver="GTiff",
        height=size,
        width=size,
        count=1,
        dtype=data.dtype,
        crs="EPSG:4326",
        transform=from_bounds(*extent.as_tuple(), width=size, height=size),
        nodata=float("nan") if tile.payload.pixel_type.is_float else None,
    ) as dataset:
        dataset.write(data, 1)
    return output_path


def export_tile(pyramid_dir: Path, zoom: int, tile_id: int, output_path: Path) -> Path:
    """Look up a stored tile and export it as GeoTIFF."""
    meta = load_metadata(pyramid_dir)
    tile = read_tile(pyramid_dir, zoom, tile_id, read_splits(pyramid_dir, zoom))
    if tile is None:
        raise KeyError(f"Tile {tile_id} not found at zoom {zoom} in {pyramid_dir}")
    return write_tile_geotiff(tile, meta, output_path)
