from __future__ import annotations

import math

import numpy as np
import pytest
import rasterio

from tests.utils import constant_tile, make_metadata, seed_pyramid
from tmspyramid.tiles.export import export_tile, write_tile_geotiff
from tmspyramid.tiles.models import PixelType, RasterPayload, Tile
from tmspyramid.tiles.pipeline import build_pyramid


def test_export_built_tile(tmp_path) -> None:
    meta = make_metadata()
    tiles = [
        constant_tile(0, 0, 1, meta),
        constant_tile(1, 0, 2, meta),
        constant_tile(0, 1, 3, meta),
        constant_tile(1, 1, 4, meta),
    ]
    pyramid = seed_pyramid(tmp_path / "pyramid", meta, tiles)
    build_pyramid(pyramid)

    path = export_tile(pyramid, 1, 0, tmp_path / "out" / "tile.tif")

    with rasterio.open(path) as dataset:
        assert dataset.crs.to_epsg() == 4326
        assert tuple(dataset.bounds) == pytest.approx((-180.0, -90.0, 0.0, 90.0))
        assert (dataset.width, dataset.height) == (4, 4)
        data = dataset.read(1)
    assert data[0, 0] == 3
    assert data[3, 3] == 2


def test_export_missing_tile(tmp_path) -> None:
    meta = make_metadata()
    pyramid = seed_pyramid(tmp_path, meta, [constant_tile(0, 0, 1, meta)])
    with pytest.raises(KeyError, match="not found"):
        export_tile(pyramid, 2, 1, tmp_path / "missing.tif")


def test_write_float_tile_sets_nan_nodata(tmp_path) -> None:
    meta = make_metadata(pixel_type=PixelType.FLOAT32)
    payload = RasterPayload.empty(PixelType.FLOAT32, 4)
    path = write_tile_geotiff(Tile(0, 2, payload), meta, tmp_path / "float.tif")

    with rasterio.open(path) as dataset:
        assert math.isnan(dataset.nodata)
        assert np.isnan(dataset.read(1)).all()


def test_write_bit_tile_as_bytes(tmp_path) -> None:
    meta = make_metadata(pixel_type=PixelType.BIT)
    payload = RasterPayload.constant(PixelType.BIT, 4, True)
    path = write_tile_geotiff(Tile(0, 2, payload), meta, tmp_path / "bit.tif")

    with rasterio.open(path) as dataset:
        assert dataset.dtypes[0] == "uint8"
        assert (dataset.read(1) == 1).all()
