"""Row-aligned tile-id range partitioning across coarse zoom levels."""

from __future__ import annotations

import logging
from bisect import bisect_left
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from tmspyramid.tiles.metadata import PyramidMetadata
from tmspyramid.tiles.models import TileRange
from tmspyramid.tiles.tiling import encode_tile_id, tile_size_bytes

SPLITS_FILENAME = "splits"

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ZoomPartitions:
    """Split points of one zoom; partition i covers (splits[i-1], splits[i]]."""

    zoom: int
    offset: int
    first_tile_id: int
    last_tile_id: int
    splits: tuple[int, ...]

    @property
    def count(self) -> int:
        return len(self.splits) + 1

    def ranges(self) -> list[tuple[int, int]]:
        """Return inclusive (first, last) tile-id ranges in partition order."""
        starts = [self.first_tile_id] + [split + 1 for split in self.splits]
        ends = list(self.splits) + [self.last_tile_id]
        return list(zip(starts, ends))

    def local_index(self, tile_id: int) -> int:
        if not self.first_tile_id <= tile_id <= self.last_tile_id:
            raise ValueError(
                f"Tile id {tile_id} outside zoom {self.zoom} range "
                f"[{self.first_tile_id}, {self.last_tile_id}]"
            )
        return bisect_left(self.splits, tile_id)


def compute_splits(
    tile_extent: TileRange,
    zoom: int,
    tile_bytes: int,
    block_size: int,
) -> tuple[int, ...]:
    """Return split points so each range holds about one block of tiles.

    Splits fall on row ends, so every partition holds whole rows of the
    zoom's tile extent.
    """
    if block_size <= 0 or tile_bytes <= 0:
        return ()
    tiles_per_block = block_size // tile_bytes
    if tiles_per_block >= tile_extent.count:
        return ()
    rows_per_split = max(1, tiles_per_block // tile_extent.width)
    return tuple(
        encode_tile_id(tile_extent.xmax, row, zoom)
        for row in range(tile_extent.ymin, tile_extent.ymax, rows_per_split)
    )


@dataclass(frozen=True)
class PartitionPlan:
    """Immutable mapping from (zoom, tile id) to a global partition index."""

    zooms: Mapping[int, ZoomPartitions]

    @property
    def num_partitions(self) -> int:
        return sum(item.count for item in self.zooms.values())

    def for_zoom(self, zoom: int) -> ZoomPartitions:
        try:
            return self.zooms[zoom]
        except KeyError:
            raise ValueError(f"Zoom {zoom} is not part of the partition plan") from None

    def partition_for_zoom(self, zoom: int, tile_id: int) -> int:
        """Return the partition index within a zoom."""
        return self.for_zoom(zoom).local_index(tile_id)

    def partition_of(self, zoom: int, tile_id: int) -> int:
        """Return the global partition index of a tile."""
        item = self.for_zoom(zoom)
        return item.offset + item.local_index(tile_id)

    def locate(self, index: int) -> tuple[int, int]:
        """Return (zoom, local index) for a global partition index."""
        for zoom in sorted(self.zooms):
            item = self.zooms[zoom]
            if item.offset <= index < item.offset + item.count:
                return zoom, index - item.offset
        raise ValueError(f"Partition index {index} out of range")

    def ranges(self, zoom: int) -> list[tuple[int, int]]:
        return self.for_zoom(zoom).ranges()


def plan_partitions(meta: PyramidMetadata, block_size: int) -> PartitionPlan:
    """Build the partition plan for every zoom below max_zoom."""
    tile_bytes = tile_size_bytes(meta.tile_size, meta.pixel_type)
    zooms: dict[int, ZoomPartitions] = {}
    offset = 0
    for zoom in range(1, meta.max_zoom):
        tile_extent = meta.zoom_metadata(zoom).tile_extent
        first_tile_id, last_tile_id = tile_extent.tile_id_range(zoom)
        item = ZoomPartitions(
            zoom=zoom,
            offset=offset,
            first_tile_id=first_tile_id,
            last_tile_id=last_tile_id,
            splits=compute_splits(tile_extent, zoom, tile_bytes, block_size),
        )
        zooms[zoom] = item
        offset += item.count
        LOGGER.debug(
            "Zoom %d: %d tile(s) in %d partition(s)",
            zoom,
            tile_extent.count,
            item.count,
            extra={"zoom": zoom},
        )
    return PartitionPlan(zooms=zooms)


def splits_path(pyramid_dir: Path, zoom: int) -> Path:
    return Path(pyramid_dir) / str(zoom) / SPLITS_FILENAME


def write_splits(plan: PartitionPlan, pyramid_dir: Path) -> list[Path]:
    """Persist the split points of every zoom, one tile id per line."""
    paths = []
    for zoom, item in sorted(plan.zooms.items()):
        path = splits_path(pyramid_dir, zoom)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("".join(f"{split}\n" for split in item.splits), encoding="utf-8")
        paths.append(path)
    return paths


def read_splits(pyramid_dir: Path, zoom: int) -> tuple[int, ...]:
    """Read the split points of a zoom; a missing file means one partition."""
    path = splits_path(pyramid_dir, zoom)
    if not path.exists():
        return ()
    lines = path.read_text(encoding="utf-8").split()
    return tuple(int(line) for line in lines)
