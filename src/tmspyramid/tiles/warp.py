"""Warp one finest-zoom tile into a chain of downsampled fragments."""

from __future__ import annotations

from dataclasses import dataclass
from functools import reduce

import numpy as np
from rasterio.crs import CRS
from rasterio.enums import Resampling
from rasterio.transform import from_bounds
from rasterio.warp import reproject

from tmspyramid.errors import ConsistencyError, UnsupportedPixelType
from tmspyramid.tiles.metadata import PyramidMetadata
from tmspyramid.tiles.models import Fragment, GeoExtent, RasterPayload, Tile
from tmspyramid.tiles.tiling import (
    encode_tile_id,
    fragment_size_at_zoom,
    lat_lon_to_tile_address,
    tile_to_extent,
)

GEODETIC_CRS = CRS.from_epsg(4326)
RESAMPLING_METHODS = (Resampling.nearest, Resampling.average)


@dataclass(frozen=True)
class _WarpState:
    payload: RasterPayload
    extent: GeoExtent
    fragments: tuple[Fragment, ...] = ()


def resample_payload(
    payload: RasterPayload,
    extent: GeoExtent,
    size: int,
    *,
    resampling: Resampling = Resampling.average,
) -> RasterPayload:
    """Resample a payload to ``size`` x ``size`` pixels over the same extent."""
    if not payload.pixel_type.is_numeric:
        raise UnsupportedPixelType(f"Cannot resample pixel type {payload.pixel_type.value}")
    if resampling not in RESAMPLING_METHODS:
        raise ValueError(f"Unsupported resampling method: {resampling.name}")
    bounds = extent.as_tuple()
    destination = np.zeros((size, size), dtype=payload.pixel_type.dtype)
    reproject(
        source=payload.data,
        destination=destination,
        src_transform=from_bounds(*bounds, payload.size, payload.size),
        src_crs=GEODETIC_CRS,
        dst_transform=from_bounds(*bounds, size, size),
        dst_crs=GEODETIC_CRS,
        resampling=resampling,
    )
    return RasterPayload(payload.pixel_type, destination)


def _warp_step(
    state: _WarpState,
    zoom: int,
    *,
    origin: Tile,
    corner: tuple[float, float],
    meta: PyramidMetadata,
    resampling: Resampling,
) -> _WarpState:
    """Fold step: shrink the previous fragment to the next coarser zoom."""
    size = fragment_size_at_zoom(meta.tile_size, meta.max_zoom, zoom)
    lat, lon = corner
    column, row = lat_lon_to_tile_address(lat, lon, zoom, meta.tile_size)
    payload = resample_payload(state.payload, state.extent, size, resampling=resampling)
    fragment = Fragment(
        origin_tile_id=origin.tile_id,
        target_zoom=zoom,
        target_tile_id=encode_tile_id(column, row, zoom),
        payload=payload,
    )
    return _WarpState(payload, state.extent, state.fragments + (fragment,))


def warp_tile(
    tile: Tile,
    meta: PyramidMetadata,
    *,
    resampling: Resampling = Resampling.average,
) -> tuple[Fragment, ...]:
    """Return one fragment per coarser zoom, from max_zoom - 1 down to 1.

    Every fragment keeps the finest tile's footprint; only its pixel count
    shrinks. Target tiles are addressed from the finest tile's south-west
    corner, which nests inside exactly one tile at every coarser zoom.
    """
    if tile.zoom != meta.max_zoom:
        raise ConsistencyError(f"Tile {tile.tile_id} is at zoom {tile.zoom}, not {meta.max_zoom}")
    if tile.payload.pixel_type is not meta.pixel_type:
        raise ConsistencyError(
            f"Tile {tile.tile_id} has pixel type {tile.payload.pixel_type.value}, "
            f"expected {meta.pixel_type.value}"
        )
    if tile.payload.size != meta.tile_size:
        raise ConsistencyError(
            f"Tile {tile.tile_id} has size {tile.payload.size}, expected {meta.tile_size}"
        )
    if not meta.pixel_type.is_numeric:
        raise UnsupportedPixelType(f"Cannot warp pixel type {meta.pixel_type.value}")
    if meta.max_zoom <= 1:
        return ()

    extent = tile_to_extent(tile.tile_id, tile.zoom, meta.tile_size)
    corner = (extent.ymin, extent.xmin)
    initial = _WarpState(tile.payload, extent)
    final = reduce(
        lambda state, zoom: _warp_step(
            state,
            zoom,
            origin=tile,
            corner=corner,
            meta=meta,
            resampling=resampling,
        ),
        range(meta.max_zoom - 1, 0, -1),
        initial,
    )
    return final.fragments
