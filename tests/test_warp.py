from __future__ import annotations

import numpy as np
import pytest
from rasterio.enums import Resampling

from tests.utils import QUAD_EXTENT, constant_tile, finest_tiles, make_metadata
from tmspyramid.errors import ConsistencyError, UnsupportedPixelType
from tmspyramid.tiles.models import GeoExtent, PixelType, RasterPayload, Tile
from tmspyramid.tiles.tiling import encode_tile_id
from tmspyramid.tiles.warp import resample_payload, warp_tile


def test_warp_single_zoom_pyramid_yields_nothing() -> None:
    meta = make_metadata(extent=GeoExtent(-180.0, -90.0, 180.0, 90.0), max_zoom=1)
    tile = constant_tile(0, 0, 5, meta)
    assert warp_tile(tile, meta) == ()


def test_warp_emits_one_fragment_per_coarser_zoom() -> None:
    meta = make_metadata(tile_size=8, max_zoom=3)
    tile = constant_tile(5, 3, 9, meta)

    fragments = warp_tile(tile, meta)

    assert [fragment.target_zoom for fragment in fragments] == [2, 1]
    assert [fragment.payload.size for fragment in fragments] == [4, 2]
    assert [fragment.target_tile_id for fragment in fragments] == [
        encode_tile_id(2, 1, 2),
        encode_tile_id(1, 0, 1),
    ]
    assert all(fragment.origin_tile_id == tile.tile_id for fragment in fragments)
    for fragment in fragments:
        assert (fragment.payload.data == 9).all()
        assert fragment.payload.pixel_type is PixelType.INT16


def test_warp_average_downsamples_blocks() -> None:
    meta = make_metadata(pixel_type=PixelType.FLOAT32)
    data = np.arange(16, dtype=np.float32).reshape(4, 4)
    tile = Tile(encode_tile_id(0, 0, 2), 2, RasterPayload(PixelType.FLOAT32, data))

    (fragment,) = warp_tile(tile, meta)

    expected = np.array([[2.5, 4.5], [10.5, 12.5]], dtype=np.float32)
    assert np.allclose(fragment.payload.data, expected)


def test_warp_nearest_keeps_source_values() -> None:
    meta = make_metadata()
    (tile,) = finest_tiles(meta, seed=3)[:1]

    (fragment,) = warp_tile(tile, meta, resampling=Resampling.nearest)

    assert fragment.payload.size == 2
    assert set(np.unique(fragment.payload.data)) <= set(np.unique(tile.payload.data))


def test_warp_is_deterministic() -> None:
    meta = make_metadata(tile_size=8, max_zoom=3)
    tile = finest_tiles(meta, seed=7)[0]

    first = warp_tile(tile, meta)
    second = warp_tile(tile, meta)

    assert first == second


def test_warp_rejects_tile_at_wrong_zoom() -> None:
    meta = make_metadata(tile_size=8, max_zoom=3)
    payload = RasterPayload.constant(PixelType.INT16, 8, 1)
    with pytest.raises(ConsistencyError, match="not 3"):
        warp_tile(Tile(0, 2, payload), meta)


def test_warp_rejects_pixel_type_mismatch() -> None:
    meta = make_metadata()
    payload = RasterPayload.constant(PixelType.UINT8, 4, 1)
    with pytest.raises(ConsistencyError, match="pixel type"):
        warp_tile(Tile(0, 2, payload), meta)


def test_warp_rejects_wrong_tile_size() -> None:
    meta = make_metadata()
    payload = RasterPayload.constant(PixelType.INT16, 8, 1)
    with pytest.raises(ConsistencyError, match="size"):
        warp_tile(Tile(0, 2, payload), meta)


def test_warp_rejects_bit_tiles() -> None:
    meta = make_metadata(pixel_type=PixelType.BIT)
    payload = RasterPayload.constant(PixelType.BIT, 4, True)
    with pytest.raises(UnsupportedPixelType):
        warp_tile(Tile(0, 2, payload), meta)


def test_resample_payload_rejects_other_methods() -> None:
    payload = RasterPayload.constant(PixelType.INT16, 4, 1)
    with pytest.raises(ValueError, match="Unsupported resampling"):
        resample_payload(payload, QUAD_EXTENT, 2, resampling=Resampling.bilinear)


@pytest.mark.parametrize(
    ("column", "row", "targets"),
    [
        (2, 1, [encode_tile_id(1, 0, 2), encode_tile_id(0, 0, 1)]),
        (4, 2, [encode_tile_id(2, 1, 2), encode_tile_id(1, 0, 1)]),
    ],
)
def test_warp_corner_on_coarse_boundary_uses_half_open_tiles(
    column, row, targets
) -> None:
    meta = make_metadata(extent=GeoExtent(-180.0, -90.0, 180.0, 90.0), tile_size=8, max_zoom=3)
    fragments = warp_tile(constant_tile(column, row, 1, meta), meta)
    assert [fragment.target_tile_id for fragment in fragments] == targets
