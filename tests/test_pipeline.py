from __future__ import annotations

from dataclasses import replace

import pytest

from tests.utils import constant_tile, finest_tiles, make_metadata, seed_pyramid
from tmspyramid.config import BuildOptions
from tmspyramid.errors import ConsistencyError, MetadataError
from tmspyramid.tiles.engine import LocalEngine
from tmspyramid.tiles.metadata import load_metadata, metadata_path, save_metadata
from tmspyramid.tiles.models import GeoExtent, TileRange
from tmspyramid.tiles.partition import read_splits, splits_path
from tmspyramid.tiles.pipeline import build_pyramid
from tmspyramid.tiles.storage import iter_zoom_tiles, list_partitions, read_tile
from tmspyramid.tiles.tiling import encode_tile_id


def _quad_pyramid(root):
    meta = make_metadata()
    tiles = [
        constant_tile(0, 0, 1, meta),
        constant_tile(1, 0, 2, meta),
        constant_tile(0, 1, 3, meta),
        constant_tile(1, 1, 4, meta),
    ]
    return seed_pyramid(root, meta, tiles)


def _graded_pyramid(root, *, filled: bool = True):
    meta = make_metadata(tile_size=8, max_zoom=3)
    tiles = [
        constant_tile(column, row, 10 * row + column + 1, meta)
        for row in range(4)
        for column in range(4)
    ]
    seed_pyramid(root, meta, tiles)
    if not filled:
        save_metadata(replace(meta, raster_metadata={}), root)
    return meta


def _snapshot(root, zoom):
    return {
        path.name: ((path / "data").read_bytes(), (path / "index").read_bytes())
        for path in list_partitions(root, zoom)
    }


def test_build_quad_pyramid(tmp_path) -> None:
    _quad_pyramid(tmp_path)

    result = build_pyramid(tmp_path, options=BuildOptions(jobs=2))

    assert result.tile_counts() == {1: 1}
    tile = read_tile(tmp_path, 1, 0, read_splits(tmp_path, 1))
    data = tile.payload.data
    assert (data[0:2, 0:2] == 3).all()
    assert (data[0:2, 2:4] == 4).all()
    assert (data[2:4, 0:2] == 1).all()
    assert (data[2:4, 2:4] == 2).all()
    assert [item.tile_id for item in iter_zoom_tiles(tmp_path, 1)] == [0]


def test_build_is_idempotent(tmp_path) -> None:
    _graded_pyramid(tmp_path)
    options = BuildOptions(jobs=3, block_size=128)

    build_pyramid(tmp_path, options=options)
    first = {zoom: _snapshot(tmp_path, zoom) for zoom in (1, 2)}
    build_pyramid(tmp_path, options=options)
    second = {zoom: _snapshot(tmp_path, zoom) for zoom in (1, 2)}

    assert first == second


def test_build_multi_zoom_partitions(tmp_path) -> None:
    _graded_pyramid(tmp_path)

    result = build_pyramid(
        tmp_path,
        options=BuildOptions(block_size=128, resampling="nearest"),
        engine=LocalEngine(1),
    )

    assert result.tile_counts() == {1: 1, 2: 4}
    assert result.plan.num_partitions == 3
    assert [path.name for path in list_partitions(tmp_path, 2)] == ["part-00000", "part-00001"]
    assert read_splits(tmp_path, 2) == (1,)
    assert splits_path(tmp_path, 1).read_text(encoding="utf-8") == ""

    coarse = read_tile(tmp_path, 1, 0, read_splits(tmp_path, 1)).payload.data
    for row in range(4):
        for column in range(4):
            top = (3 - row) * 2
            left = column * 2
            assert (coarse[top : top + 2, left : left + 2] == 10 * row + column + 1).all()

    upper_right = read_tile(tmp_path, 2, encode_tile_id(1, 1, 2), read_splits(tmp_path, 2))
    data = upper_right.payload.data
    assert (data[0:4, 0:4] == 33).all()
    assert (data[4:8, 4:8] == 24).all()


def test_build_writes_metadata_after_success(tmp_path) -> None:
    _graded_pyramid(tmp_path, filled=False)
    assert load_metadata(tmp_path).raster_metadata == {}

    result = build_pyramid(tmp_path)

    stored = load_metadata(tmp_path)
    assert sorted(stored.raster_metadata) == [1, 2, 3]
    assert stored == result.metadata


def test_build_failure_leaves_metadata_untouched(tmp_path) -> None:
    meta = make_metadata(extent=GeoExtent(-180.0, -90.0, -90.0, 0.0))
    outside = make_metadata()
    seed_pyramid(
        tmp_path,
        meta,
        [constant_tile(0, 0, 1, meta), constant_tile(1, 0, 2, outside)],
    )
    save_metadata(replace(meta, raster_metadata={}), tmp_path)
    before = metadata_path(tmp_path).read_bytes()

    with pytest.raises(ConsistencyError, match="outside the dataset extent"):
        build_pyramid(tmp_path)

    assert metadata_path(tmp_path).read_bytes() == before
    assert not splits_path(tmp_path, 1).exists()
    assert list_partitions(tmp_path, 1) == []


def test_rebuild_removes_stale_partitions(tmp_path) -> None:
    _graded_pyramid(tmp_path)
    build_pyramid(tmp_path, options=BuildOptions(block_size=128))
    assert len(list_partitions(tmp_path, 2)) == 2

    build_pyramid(tmp_path, options=BuildOptions(block_size=1 << 20))

    assert [path.name for path in list_partitions(tmp_path, 2)] == ["part-00000"]
    assert read_splits(tmp_path, 2) == ()
    assert len(list(iter_zoom_tiles(tmp_path, 2))) == 4


def test_build_requires_finest_tiles(tmp_path) -> None:
    save_metadata(make_metadata(), tmp_path)
    with pytest.raises(MetadataError, match="No tiles"):
        build_pyramid(tmp_path)


def test_build_rejects_invalid_geometry(tmp_path) -> None:
    meta = make_metadata(tile_size=6, max_zoom=3)
    seed_pyramid(tmp_path, meta, finest_tiles(meta)[:1])
    with pytest.raises(MetadataError, match="multiple of 4"):
        build_pyramid(tmp_path)


def test_build_single_zoom_pyramid_writes_nothing(tmp_path) -> None:
    meta = make_metadata(extent=GeoExtent(-180.0, -90.0, 180.0, 90.0), max_zoom=1)
    seed_pyramid(tmp_path, meta, [constant_tile(0, 0, 1, meta)])

    result = build_pyramid(tmp_path)

    assert result.tile_counts() == {}
    assert result.partitions == ()
    assert load_metadata(tmp_path) == meta


def test_build_rejects_recorded_finest_extent_past_derived(tmp_path) -> None:
    meta = make_metadata()
    wide = replace(meta.zoom_metadata(2), tile_extent=TileRange(0, 0, 2, 1))
    recorded = replace(meta, raster_metadata={**meta.raster_metadata, 2: wide})
    tiles = [constant_tile(column, row, 1, meta) for row in range(2) for column in range(3)]
    seed_pyramid(tmp_path, recorded, tiles)

    with pytest.raises(MetadataError, match="not inside"):
        build_pyramid(tmp_path)

    assert list_partitions(tmp_path, 1) == []
