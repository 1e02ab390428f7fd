from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable

import numpy as np

from tmspyramid.tiles.metadata import PyramidMetadata, fill_raster_metadata, save_metadata
from tmspyramid.tiles.models import GeoExtent, PixelType, RasterPayload, Tile
from tmspyramid.tiles.storage import write_zoom_level
from tmspyramid.tiles.tiling import encode_tile_id

# Four 90x90 degree tiles at zoom 2 that nest under tile 0 of zoom 1.
QUAD_EXTENT = GeoExtent(-180.0, -90.0, 0.0, 90.0)


def make_metadata(
    *,
    extent: GeoExtent = QUAD_EXTENT,
    tile_size: int = 4,
    max_zoom: int = 2,
    pixel_type: PixelType = PixelType.INT16,
    filled: bool = True,
) -> PyramidMetadata:
    meta = PyramidMetadata(
        extent=extent,
        tile_size=tile_size,
        max_zoom=max_zoom,
        pixel_type=pixel_type,
    )
    return fill_raster_metadata(meta) if filled else meta


def constant_tile(
    column: int,
    row: int,
    value: float,
    meta: PyramidMetadata,
) -> Tile:
    payload = RasterPayload.constant(meta.pixel_type, meta.tile_size, value)
    return Tile(
        tile_id=encode_tile_id(column, row, meta.max_zoom),
        zoom=meta.max_zoom,
        payload=payload,
    )


def finest_tiles(meta: PyramidMetadata, *, seed: int = 0) -> list[Tile]:
    """Return random tiles covering the finest zoom's tile extent."""
    rng = np.random.default_rng(seed)
    extent = meta.zoom_metadata(meta.max_zoom).tile_extent
    tiles = []
    for row in range(extent.ymin, extent.ymax + 1):
        for column in range(extent.xmin, extent.xmax + 1):
            data = rng.integers(0, 1000, size=(meta.tile_size, meta.tile_size))
            payload = RasterPayload(meta.pixel_type, data.astype(meta.pixel_type.dtype))
            tiles.append(
                Tile(encode_tile_id(column, row, meta.max_zoom), meta.max_zoom, payload)
            )
    return tiles


def seed_pyramid(root: Path, meta: PyramidMetadata, tiles: Iterable[Tile]) -> Path:
    """Write a descriptor and the finest zoom level of a pyramid."""
    save_metadata(meta, root)
    write_zoom_level(root, meta.max_zoom, tiles)
    return root


def with_src_env(base_env: dict[str, str] | None = None) -> dict[str, str]:
    """Return an environment with repo src/ on PYTHONPATH."""
    env = dict(base_env or os.environ)
    repo_root = Path(__file__).resolve().parents[1]
    src_path = repo_root / "src"
    if src_path.exists():
        existing = env.get("PYTHONPATH", "")
        entries = [entry for entry in existing.split(os.pathsep) if entry]
        src_str = str(src_path)
        if src_str not in entries:
            entries.insert(0, src_str)
        env["PYTHONPATH"] = os.pathsep.join(entries)
    return env
