"""Geodetic TMS tile addressing and coordinate helpers.

Zoom 1 covers the world with two 180x180 degree tiles; every zoom doubles the
tile count in both directions. Columns grow eastward from -180 and rows grow
northward from -90. Tile ids are ``row * num_x_tiles(zoom) + column``.
"""

from __future__ import annotations

import math

from tmspyramid.tiles.models import GeoExtent, PixelRange, PixelType, TileRange

MAX_ZOOM = 22
DEFAULT_TILE_SIZE = 512


def _check_zoom(zoom: int) -> None:
    if not 1 <= zoom <= MAX_ZOOM:
        raise ValueError(f"Zoom must be between 1 and {MAX_ZOOM}, got {zoom}")


def num_x_tiles(zoom: int) -> int:
    """Return the number of tile columns at a zoom."""
    _check_zoom(zoom)
    return 1 << zoom


def num_y_tiles(zoom: int) -> int:
    """Return the number of tile rows at a zoom."""
    _check_zoom(zoom)
    return 1 << (zoom - 1)


def resolution(zoom: int, tile_size: int) -> float:
    """Return degrees per pixel at a zoom."""
    return 360.0 / (num_x_tiles(zoom) * tile_size)


def encode_tile_id(column: int, row: int, zoom: int) -> int:
    """Encode a column/row address into a tile id."""
    width = num_x_tiles(zoom)
    if not 0 <= column < width:
        raise ValueError(f"Column {column} out of range at zoom {zoom}")
    if not 0 <= row < num_y_tiles(zoom):
        raise ValueError(f"Row {row} out of range at zoom {zoom}")
    return row * width + column


def decode_tile_id(tile_id: int, zoom: int) -> tuple[int, int]:
    """Decode a tile id into (column, row)."""
    width = num_x_tiles(zoom)
    if not 0 <= tile_id < width * num_y_tiles(zoom):
        raise ValueError(f"Tile id {tile_id} out of range at zoom {zoom}")
    row, column = divmod(tile_id, width)
    return column, row


def lat_lon_to_pixels(lat: float, lon: float, zoom: int, tile_size: int) -> tuple[float, float]:
    """Return pixel coordinates measured from the south-west corner of the world."""
    scale = num_x_tiles(zoom) * tile_size
    return (180.0 + lon) * scale / 360.0, (90.0 + lat) * scale / 360.0


def lat_lon_to_pixel_upper_left(
    lat: float, lon: float, zoom: int, tile_size: int
) -> tuple[float, float]:
    """Return pixel coordinates measured from the north-west corner of the world."""
    scale = num_x_tiles(zoom) * tile_size
    return (180.0 + lon) * scale / 360.0, (90.0 - lat) * scale / 360.0


def _clamp(value: int, upper: int) -> int:
    return max(0, min(upper, value))


def lat_lon_to_tile_address(lat: float, lon: float, zoom: int, tile_size: int) -> tuple[int, int]:
    """Return the (column, row) of the tile containing a point.

    Tiles are half-open, so a point on a shared edge belongs to the tile whose
    minimum edge it lies on. The east and north world edges fold into the last
    column and row.
    """
    px, py = lat_lon_to_pixels(lat, lon, zoom, tile_size)
    column = _clamp(math.floor(px / tile_size), num_x_tiles(zoom) - 1)
    row = _clamp(math.floor(py / tile_size), num_y_tiles(zoom) - 1)
    return column, row


def tile_to_extent(tile_id: int, zoom: int, tile_size: int) -> GeoExtent:
    """Return the geographic extent of a tile."""
    column, row = decode_tile_id(tile_id, zoom)
    span = 360.0 / num_x_tiles(zoom)
    return GeoExtent(
        xmin=column * span - 180.0,
        ymin=row * span - 90.0,
        xmax=(column + 1) * span - 180.0,
        ymax=(row + 1) * span - 90.0,
    )


def extent_to_tile_range(extent: GeoExtent, zoom: int, tile_size: int) -> TileRange:
    """Return the inclusive tile range intersecting an extent.

    The maximum edges are exclusive so an extent that ends on a tile boundary
    does not pull in the neighbouring tile.
    """
    min_px, min_py = lat_lon_to_pixels(extent.ymin, extent.xmin, zoom, tile_size)
    max_px, max_py = lat_lon_to_pixels(extent.ymax, extent.xmax, zoom, tile_size)
    last_column = num_x_tiles(zoom) - 1
    last_row = num_y_tiles(zoom) - 1
    xmin = _clamp(math.floor(min_px / tile_size), last_column)
    ymin = _clamp(math.floor(min_py / tile_size), last_row)
    xmax = _clamp(math.ceil(max_px / tile_size) - 1, last_column)
    ymax = _clamp(math.ceil(max_py / tile_size) - 1, last_row)
    return TileRange(xmin, ymin, max(xmin, xmax), max(ymin, ymax))


def extent_to_pixel_range(extent: GeoExtent, zoom: int, tile_size: int) -> PixelRange:
    """Return the pixel rectangle covered by an extent at a zoom."""
    min_px, min_py = lat_lon_to_pixels(extent.ymin, extent.xmin, zoom, tile_size)
    max_px, max_py = lat_lon_to_pixels(extent.ymax, extent.xmax, zoom, tile_size)
    return PixelRange(int(min_px), int(min_py), int(max_px), int(max_py))


def fragment_size_at_zoom(tile_size: int, max_zoom: int, zoom: int) -> int:
    """Return the side length of one finest tile's footprint at a coarser zoom."""
    if zoom > max_zoom:
        raise ValueError(f"Zoom {zoom} is finer than max zoom {max_zoom}")
    return max(1, tile_size // (1 << (max_zoom - zoom)))


def child_tile_range(column: int, row: int, zoom: int, max_zoom: int) -> TileRange:
    """Return the block of finest-zoom tiles nested under a coarse tile."""
    factor = 1 << (max_zoom - zoom)
    return TileRange(
        column * factor,
        row * factor,
        (column + 1) * factor - 1,
        (row + 1) * factor - 1,
    )


def tile_size_bytes(tile_size: int, pixel_type: PixelType) -> int:
    """Return the uncompressed size of one tile payload."""
    return tile_size * tile_size * pixel_type.byte_size
