"""Tile pyramid geometry, warp, stitch, and partitioning helpers."""

from tmspyramid.tiles.engine import Broadcast, LocalEngine
from tmspyramid.tiles.export import export_tile, write_tile_geotiff
from tmspyramid.tiles.metadata import (
    PyramidMetadata,
    ZoomMetadata,
    fill_raster_metadata,
    load_metadata,
    save_metadata,
    validate_geometry,
)
from tmspyramid.tiles.models import (
    Fragment,
    GeoExtent,
    PixelRange,
    PixelType,
    RasterPayload,
    Tile,
    TileAddress,
    TileRange,
)
from tmspyramid.tiles.partition import PartitionPlan, ZoomPartitions, plan_partitions
from tmspyramid.tiles.pipeline import PartitionResult, PyramidResult, build_pyramid
from tmspyramid.tiles.stitch import stitch_tile
from tmspyramid.tiles.storage import (
    PartitionReader,
    SortedAppendSink,
    default_block_size,
    iter_zoom_tiles,
    read_tile,
    write_zoom_level,
)
from tmspyramid.tiles.warp import warp_tile

__all__ = [
    "Broadcast",
    "Fragment",
    "GeoExtent",
    "LocalEngine",
    "PartitionPlan",
    "PartitionReader",
    "PartitionResult",
    "PixelRange",
    "PixelType",
    "PyramidMetadata",
    "PyramidResult",
    "RasterPayload",
    "SortedAppendSink",
    "Tile",
    "TileAddress",
    "TileRange",
    "ZoomMetadata",
    "ZoomPartitions",
    "build_pyramid",
    "default_block_size",
    "export_tile",
    "fill_raster_metadata",
    "iter_zoom_tiles",
    "load_metadata",
    "plan_partitions",
    "read_tile",
    "save_metadata",
    "stitch_tile",
    "validate_geometry",
    "warp_tile",
    "write_tile_geotiff",
    "write_zoom_level",
]
