"""Composite warped fragments into complete coarse-zoom tiles."""

from __future__ import annotations

import logging
from typing import Iterable

import numpy as np

from tmspyramid.errors import ConsistencyError, UnsupportedPixelType
from tmspyramid.tiles.metadata import PyramidMetadata
from tmspyramid.tiles.models import Fragment, RasterPayload, Tile, TileRange
from tmspyramid.tiles.tiling import (
    child_tile_range,
    decode_tile_id,
    encode_tile_id,
    fragment_size_at_zoom,
    lat_lon_to_pixel_upper_left,
    tile_to_extent,
)

LOGGER = logging.getLogger(__name__)


def expected_origins(zoom: int, tile_id: int, meta: PyramidMetadata) -> frozenset[int]:
    """Return the finest tile ids that must contribute to a coarse tile."""
    column, row = decode_tile_id(tile_id, zoom)
    children = child_tile_range(column, row, zoom, meta.max_zoom)
    finest = meta.zoom_metadata(meta.max_zoom).tile_extent
    present: TileRange | None = children.intersection(finest)
    if present is None:
        return frozenset()
    return frozenset(
        encode_tile_id(child_column, child_row, meta.max_zoom)
        for child_row in range(present.ymin, present.ymax + 1)
        for child_column in range(present.xmin, present.xmax + 1)
    )


def _paste_offset(
    fragment: Fragment,
    corner: tuple[float, float],
    meta: PyramidMetadata,
) -> tuple[int, int]:
    """Return the (dx, dy) pixel offset of a fragment inside its target tile."""
    origin = tile_to_extent(fragment.origin_tile_id, meta.max_zoom, meta.tile_size)
    px, py = lat_lon_to_pixel_upper_left(
        origin.ymax, origin.xmin, fragment.target_zoom, meta.tile_size
    )
    return int(round(px - corner[0])), int(round(py - corner[1]))


def stitch_tile(
    zoom: int,
    tile_id: int,
    fragments: Iterable[Fragment],
    meta: PyramidMetadata,
) -> Tile:
    """Paste every fragment addressed to (zoom, tile_id) into one full tile.

    Raises ConsistencyError when a fragment has the wrong size or pixel type,
    belongs to another tile, overlaps pixels already written, or when a finest
    tile inside the dataset extent did not contribute.
    """
    if not meta.pixel_type.is_numeric:
        raise UnsupportedPixelType(f"Cannot stitch pixel type {meta.pixel_type.value}")
    target = tile_to_extent(tile_id, zoom, meta.tile_size)
    corner = lat_lon_to_pixel_upper_left(target.ymax, target.xmin, zoom, meta.tile_size)
    fragment_size = fragment_size_at_zoom(meta.tile_size, meta.max_zoom, zoom)
    expected = expected_origins(zoom, tile_id, meta)

    payload = RasterPayload.empty(meta.pixel_type, meta.tile_size)
    data = payload.data
    covered = np.zeros(data.shape, dtype=bool)
    seen: set[int] = set()

    for fragment in fragments:
        if fragment.key != (zoom, tile_id):
            raise ConsistencyError(
                f"Fragment for {fragment.key} routed to tile {(zoom, tile_id)}"
            )
        if fragment.payload.pixel_type is not meta.pixel_type:
            raise ConsistencyError(
                f"Fragment from tile {fragment.origin_tile_id} has pixel type "
                f"{fragment.payload.pixel_type.value}, expected {meta.pixel_type.value}"
            )
        if fragment.payload.size != fragment_size:
            raise ConsistencyError(
                f"Fragment from tile {fragment.origin_tile_id} has size "
                f"{fragment.payload.size}, expected {fragment_size} at zoom {zoom}"
            )
        if fragment.origin_tile_id not in expected:
            raise ConsistencyError(
                f"Fragment origin {fragment.origin_tile_id} does not nest under "
                f"tile {tile_id} at zoom {zoom}"
            )
        dx, dy = _paste_offset(fragment, corner, meta)
        if not (
            0 <= dx <= meta.tile_size - fragment_size and 0 <= dy <= meta.tile_size - fragment_size
        ):
            raise ConsistencyError(
                f"Fragment from tile {fragment.origin_tile_id} lands outside tile "
                f"{tile_id} at offset ({dx}, {dy})"
            )
        window = (slice(dy, dy + fragment_size), slice(dx, dx + fragment_size))
        if fragment.origin_tile_id in seen or covered[window].any():
            raise ConsistencyError(
                f"Fragment from tile {fragment.origin_tile_id} overlaps pixels already "
                f"written to tile {tile_id} at zoom {zoom}"
            )
        data[window] = fragment.payload.data
        covered[window] = True
        seen.add(fragment.origin_tile_id)

    missing = expected - seen
    if missing:
        raise ConsistencyError(
            f"Tile {tile_id} at zoom {zoom} is missing fragments from "
            f"{len(missing)} finest tile(s): {sorted(missing)[:8]}"
        )
    LOGGER.debug(
        "Stitched %d fragment(s) into tile %d",
        len(seen),
        tile_id,
        extra={"zoom": zoom},
    )
    return Tile(tile_id=tile_id, zoom=zoom, payload=payload)
