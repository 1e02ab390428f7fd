"""Pyramid build pipeline: warp finest tiles, shuffle fragments, stitch, write."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from time import perf_counter
from typing import Mapping

from rasterio.enums import Resampling

from tmspyramid.config import BuildOptions, resampling_method
from tmspyramid.errors import ConsistencyError, MetadataError
from tmspyramid.tiles.engine import LocalEngine
from tmspyramid.tiles.metadata import (
    PyramidMetadata,
    check_finest_extent,
    fill_raster_metadata,
    load_metadata,
    save_metadata,
    validate_geometry,
)
from tmspyramid.tiles.models import Fragment, Tile
from tmspyramid.tiles.partition import PartitionPlan, plan_partitions, write_splits
from tmspyramid.tiles.stitch import stitch_tile
from tmspyramid.tiles.storage import (
    SortedAppendSink,
    default_block_size,
    iter_zoom_tiles,
    partition_path,
    remove_partitions,
)
from tmspyramid.tiles.tiling import decode_tile_id
from tmspyramid.tiles.warp import warp_tile

LOGGER = logging.getLogger(__name__)

GroupKey = tuple[int, int]


@dataclass(frozen=True)
class BuildContext:
    """Read-only values every pipeline stage needs."""

    pyramid_dir: Path
    metadata: PyramidMetadata
    plan: PartitionPlan
    resampling: Resampling
    compression_level: int


@dataclass(frozen=True)
class PartitionResult:
    """One committed partition file."""

    zoom: int
    index: int
    local_index: int
    path: Path
    tile_count: int


@dataclass(frozen=True)
class PyramidResult:
    """Outputs from a pyramid build."""

    pyramid_dir: Path
    metadata: PyramidMetadata
    plan: PartitionPlan
    partitions: tuple[PartitionResult, ...]
    seconds: float = 0.0

    def tile_counts(self) -> dict[int, int]:
        """Return the number of tiles written per zoom."""
        counts = {zoom: 0 for zoom in self.plan.zooms}
        for partition in self.partitions:
            counts[partition.zoom] += partition.tile_count
        return counts


def prepare_metadata(pyramid_dir: Path) -> PyramidMetadata:
    """Load the descriptor, check its geometry, and derive per-zoom extents."""
    meta = load_metadata(pyramid_dir)
    validate_geometry(meta)
    meta = fill_raster_metadata(meta)
    check_finest_extent(meta)
    return meta


def _check_finest_tile(tile: Tile, meta: PyramidMetadata) -> Tile:
    column, row = decode_tile_id(tile.tile_id, tile.zoom)
    if not meta.zoom_metadata(meta.max_zoom).tile_extent.contains(column, row):
        raise ConsistencyError(
            f"Tile {tile.tile_id} at zoom {tile.zoom} lies outside the dataset extent"
        )
    return tile


def warp_stage(context: BuildContext, tile: Tile) -> tuple[Fragment, ...]:
    """Warp one finest tile into its fragments."""
    _check_finest_tile(tile, context.metadata)
    return warp_tile(tile, context.metadata, resampling=context.resampling)


def write_partition(
    context: BuildContext,
    index: int,
    groups: Mapping[GroupKey, list[Fragment]],
) -> PartitionResult:
    """Stitch every group routed to a partition and append them in tile-id order."""
    zoom, local_index = context.plan.locate(index)
    path = partition_path(context.pyramid_dir, zoom, local_index)
    log_extra = {"zoom": zoom, "partition": local_index}
    with SortedAppendSink(path, compression_level=context.compression_level) as sink:
        for key in sorted(groups, key=lambda item: item[1]):
            if key[0] != zoom:
                raise ConsistencyError(f"Group {key} routed to partition {index} of zoom {zoom}")
            tile = stitch_tile(zoom, key[1], groups[key], context.metadata)
            sink.append(tile.tile_id, tile.payload)
        tile_count = sink.count
    LOGGER.info("Wrote %d tile(s) to %s", tile_count, path.name, extra=log_extra)
    return PartitionResult(
        zoom=zoom,
        index=index,
        local_index=local_index,
        path=path,
        tile_count=tile_count,
    )


def _finalize(
    pyramid_dir: Path,
    meta: PyramidMetadata,
    plan: PartitionPlan,
    results: list[PartitionResult],
) -> None:
    """Drop stale partitions, persist splits, then mark the pyramid complete."""
    for zoom in plan.zooms:
        keep = [result.path for result in results if result.zoom == zoom]
        for removed in remove_partitions(pyramid_dir, zoom, keep=keep):
            LOGGER.debug("Removed stale partition %s", removed, extra={"zoom": zoom})
    write_splits(plan, pyramid_dir)
    save_metadata(meta, pyramid_dir)


def build_pyramid(
    pyramid_dir: Path,
    *,
    options: BuildOptions | None = None,
    engine: LocalEngine | None = None,
) -> PyramidResult:
    """Build zoom levels 1..max_zoom-1 from the tiles stored at max_zoom.

    The metadata descriptor is rewritten only after every partition of every
    zoom has been committed.
    """
    start = perf_counter()
    pyramid_dir = Path(pyramid_dir)
    options = options or BuildOptions()
    engine = engine or LocalEngine(options.jobs)

    meta = prepare_metadata(pyramid_dir)
    block_size = (
        options.block_size if options.block_size is not None else default_block_size(pyramid_dir)
    )
    LOGGER.info("Using block size %d bytes", block_size)
    plan = plan_partitions(meta, block_size)
    context = engine.broadcast(
        BuildContext(
            pyramid_dir=pyramid_dir,
            metadata=meta,
            plan=plan,
            resampling=resampling_method(options.resampling),
            compression_level=options.compression_level,
        )
    )

    finest = list(iter_zoom_tiles(pyramid_dir, meta.max_zoom))
    if not finest:
        raise MetadataError(f"No tiles stored at max zoom {meta.max_zoom} in {pyramid_dir}")
    LOGGER.info(
        "Warping %d tile(s) from zoom %d into %d partition(s)",
        len(finest),
        meta.max_zoom,
        plan.num_partitions,
    )

    warped = engine.parallel_map(finest, lambda tile: warp_stage(context.value, tile))
    fragments = [fragment for chain in warped for fragment in chain]
    partitions = engine.group_by_partition(
        fragments,
        lambda fragment: fragment.key,
        lambda key: plan.partition_of(*key),
        plan.num_partitions,
    )
    work = [(index, groups) for index, groups in enumerate(partitions) if groups]
    results = engine.parallel_map(
        work,
        lambda item: write_partition(context.value, item[0], item[1]),
    )

    _finalize(pyramid_dir, meta, plan, results)
    seconds = perf_counter() - start
    LOGGER.info(
        "Built %d zoom level(s) with %d tile(s) in %.2fs",
        len(plan.zooms),
        sum(result.tile_count for result in results),
        seconds,
    )
    return PyramidResult(
        pyramid_dir=pyramid_dir,
        metadata=meta,
        plan=plan,
        partitions=tuple(results),
        seconds=seconds,
    )
