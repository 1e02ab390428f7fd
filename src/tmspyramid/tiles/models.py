"""Data models shared by the tiling, warp, and stitch helpers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

import numpy as np

from tmspyramid.errors import ConsistencyError

Bounds = Tuple[float, float, float, float]


class PixelType(Enum):
    """Closed set of pixel kinds a pyramid can store."""

    BIT = "bit"
    UINT8 = "uint8"
    INT16 = "int16"
    UINT16 = "uint16"
    INT32 = "int32"
    FLOAT32 = "float32"
    FLOAT64 = "float64"

    @property
    def dtype(self) -> np.dtype:
        if self is PixelType.BIT:
            return np.dtype(bool)
        return np.dtype(self.value)

    @property
    def code(self) -> int:
        """Return the one-byte code used in partition records."""
        return _PIXEL_CODES[self]

    @property
    def byte_size(self) -> int:
        return self.dtype.itemsize

    @property
    def is_float(self) -> bool:
        return self in (PixelType.FLOAT32, PixelType.FLOAT64)

    @property
    def is_numeric(self) -> bool:
        """Return False for kinds that cannot be resampled or composited."""
        return self is not PixelType.BIT

    @property
    def nodata(self) -> float | int | bool:
        """Return the fill value of a freshly allocated payload."""
        if self is PixelType.BIT:
            return False
        if self.is_float:
            return float("nan")
        return 0

    @classmethod
    def from_code(cls, code: int) -> "PixelType":
        for pixel_type, value in _PIXEL_CODES.items():
            if value == code:
                return pixel_type
        raise ValueError(f"Unknown pixel type code: {code}")


_PIXEL_CODES = {
    PixelType.BIT: 0,
    PixelType.UINT8: 1,
    PixelType.INT16: 2,
    PixelType.UINT16: 3,
    PixelType.INT32: 4,
    PixelType.FLOAT32: 5,
    PixelType.FLOAT64: 6,
}


@dataclass(frozen=True)
class GeoExtent:
    """Geographic rectangle in degrees (EPSG:4326)."""

    xmin: float
    ymin: float
    xmax: float
    ymax: float

    @property
    def width(self) -> float:
        return self.xmax - self.xmin

    @property
    def height(self) -> float:
        return self.ymax - self.ymin

    def as_tuple(self) -> Bounds:
        return (self.xmin, self.ymin, self.xmax, self.ymax)

    def contains_point(self, lon: float, lat: float) -> bool:
        """Return True when the point lies in the half-open extent [min, max)."""
        return self.xmin <= lon < self.xmax and self.ymin <= lat < self.ymax


@dataclass(frozen=True)
class TileRange:
    """Inclusive column/row rectangle of tiles at one zoom."""

    xmin: int
    ymin: int
    xmax: int
    ymax: int

    @property
    def width(self) -> int:
        return self.xmax - self.xmin + 1

    @property
    def height(self) -> int:
        return self.ymax - self.ymin + 1

    @property
    def count(self) -> int:
        return self.width * self.height

    def contains(self, column: int, row: int) -> bool:
        return self.xmin <= column <= self.xmax and self.ymin <= row <= self.ymax

    def intersection(self, other: "TileRange") -> "TileRange | None":
        """Return the overlapping rectangle, or None when disjoint."""
        xmin = max(self.xmin, other.xmin)
        ymin = max(self.ymin, other.ymin)
        xmax = min(self.xmax, other.xmax)
        ymax = min(self.ymax, other.ymax)
        if xmin > xmax or ymin > ymax:
            return None
        return TileRange(xmin, ymin, xmax, ymax)

    def tile_id_range(self, zoom: int) -> tuple[int, int]:
        """Return the first and last tile ids covered at a zoom."""
        from tmspyramid.tiles.tiling import encode_tile_id

        return (
            encode_tile_id(self.xmin, self.ymin, zoom),
            encode_tile_id(self.xmax, self.ymax, zoom),
        )


@dataclass(frozen=True)
class PixelRange:
    """Integer pixel rectangle at one zoom, measured from the south-west origin."""

    xmin: int
    ymin: int
    xmax: int
    ymax: int


@dataclass(frozen=True)
class TileAddress:
    """Column/row/zoom address of a tile."""

    column: int
    row: int
    zoom: int

    @property
    def tile_id(self) -> int:
        from tmspyramid.tiles.tiling import encode_tile_id

        return encode_tile_id(self.column, self.row, self.zoom)

    @classmethod
    def from_tile_id(cls, tile_id: int, zoom: int) -> "TileAddress":
        from tmspyramid.tiles.tiling import decode_tile_id

        column, row = decode_tile_id(tile_id, zoom)
        return cls(column, row, zoom)


@dataclass(frozen=True, eq=False)
class RasterPayload:
    """Square pixel grid tagged with its pixel type; row 0 is the northern edge."""

    pixel_type: PixelType
    data: np.ndarray

    def __post_init__(self) -> None:
        if self.data.ndim != 2 or self.data.shape[0] != self.data.shape[1]:
            raise ConsistencyError(f"Payload must be a square grid, got shape {self.data.shape}")
        if self.data.dtype != self.pixel_type.dtype:
            raise ConsistencyError(
                f"Payload dtype {self.data.dtype} does not match pixel type {self.pixel_type.value}"
            )

    @property
    def size(self) -> int:
        return int(self.data.shape[0])

    @classmethod
    def empty(cls, pixel_type: PixelType, size: int) -> "RasterPayload":
        """Allocate a payload filled with the pixel type's no-data value."""
        return cls.constant(pixel_type, size, pixel_type.nodata)

    @classmethod
    def constant(cls, pixel_type: PixelType, size: int, value: float) -> "RasterPayload":
        data = np.full((size, size), value, dtype=pixel_type.dtype)
        return cls(pixel_type, data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RasterPayload):
            return NotImplemented
        return self.pixel_type is other.pixel_type and np.array_equal(
            self.data, other.data, equal_nan=self.pixel_type.is_float
        )

    __hash__ = None  # type: ignore[assignment]


@dataclass(frozen=True)
class Fragment:
    """Downsampled contribution of one finest tile to one coarse tile."""

    origin_tile_id: int
    target_zoom: int
    target_tile_id: int
    payload: RasterPayload

    @property
    def key(self) -> tuple[int, int]:
        return (self.target_zoom, self.target_tile_id)


@dataclass(frozen=True)
class Tile:
    """A complete tile at one zoom level."""

    tile_id: int
    zoom: int
    payload: RasterPayload
