"""Sorted, record-compressed partition files keyed by tile id.

Each partition is a directory ``<pyramid>/<zoom>/part-NNNNN`` holding a
``data`` file of records and an ``index`` file with one (tile id, offset)
entry per record.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import struct
import zlib
from bisect import bisect_left
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator

import numpy as np

from tmspyramid.config import DEFAULT_BLOCK_SIZE, ENV_BLOCK_SIZE
from tmspyramid.errors import ConfigError, ConsistencyError, OrderingViolation
from tmspyramid.tiles.models import PixelType, RasterPayload, Tile

DATA_MAGIC = b"TPYRDAT1"
INDEX_MAGIC = b"TPYRIDX1"
RECORD_HEADER = struct.Struct("<qBIII")
INDEX_ENTRY = struct.Struct("<qQ")
PARTITION_PATTERN = re.compile(r"^part-(\d{5})$")

LOGGER = logging.getLogger(__name__)


def default_block_size(path: Path) -> int:
    """Return the target partition size in bytes for a pyramid location."""
    raw = os.environ.get(ENV_BLOCK_SIZE)
    if raw:
        try:
            return int(raw)
        except ValueError:
            raise ConfigError(f"{ENV_BLOCK_SIZE} must be an integer, got {raw!r}") from None
    return DEFAULT_BLOCK_SIZE


def zoom_dir(pyramid_dir: Path, zoom: int) -> Path:
    return Path(pyramid_dir) / str(zoom)


def partition_path(pyramid_dir: Path, zoom: int, index: int) -> Path:
    return zoom_dir(pyramid_dir, zoom) / f"part-{index:05d}"


def list_partitions(pyramid_dir: Path, zoom: int) -> list[Path]:
    """Return committed partition directories of a zoom in index order."""
    root = zoom_dir(pyramid_dir, zoom)
    if not root.is_dir():
        return []
    return sorted(
        path for path in root.iterdir() if path.is_dir() and PARTITION_PATTERN.match(path.name)
    )


def _encode_payload(payload: RasterPayload, level: int) -> bytes:
    little = payload.pixel_type.dtype.newbyteorder("<")
    return zlib.compress(payload.data.astype(little, copy=False).tobytes(), level)


def _decode_payload(code: int, width: int, height: int, blob: bytes) -> RasterPayload:
    pixel_type = PixelType.from_code(code)
    little = pixel_type.dtype.newbyteorder("<")
    raw = zlib.decompress(blob)
    if len(raw) != width * height * little.itemsize:
        raise ConsistencyError(f"Record holds {len(raw)} bytes, expected {width}x{height}")
    data = np.frombuffer(raw, dtype=little).reshape(height, width).astype(pixel_type.dtype)
    return RasterPayload(pixel_type, data)


def _read_record(handle: BinaryIO) -> tuple[int, RasterPayload] | None:
    header = handle.read(RECORD_HEADER.size)
    if not header:
        return None
    if len(header) != RECORD_HEADER.size:
        raise ConsistencyError("Truncated record header in partition data")
    tile_id, code, width, height, length = RECORD_HEADER.unpack(header)
    blob = handle.read(length)
    if len(blob) != length:
        raise ConsistencyError(f"Truncated record for tile {tile_id}")
    return tile_id, _decode_payload(code, width, height, blob)


class SortedAppendSink:
    """Append-only writer for one partition; keys must strictly increase.

    Records go to a temporary directory that ``close`` moves into place, so a
    partition is either complete or absent. Leaving a ``with`` block through an
    exception discards the partial output.
    """

    def __init__(self, path: Path, *, compression_level: int = 6) -> None:
        self.path = Path(path)
        self.compression_level = compression_level
        self._tmp_path = self.path.with_name(self.path.name + ".tmp")
        if self._tmp_path.exists():
            shutil.rmtree(self._tmp_path)
        self._tmp_path.mkdir(parents=True)
        self._data = open(self._tmp_path / "data", "wb")
        self._index = open(self._tmp_path / "index", "wb")
        self._data.write(DATA_MAGIC)
        self._index.write(INDEX_MAGIC)
        self._offset = len(DATA_MAGIC)
        self._last_key: int | None = None
        self._closed = False
        self.count = 0

    def __enter__(self) -> "SortedAppendSink":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self.abort()

    def append(self, tile_id: int, payload: RasterPayload) -> None:
        """Append one record; raises OrderingViolation on a non-increasing key."""
        if self._closed:
            raise ValueError(f"Sink for {self.path} is closed")
        if self._last_key is not None and tile_id <= self._last_key:
            raise OrderingViolation(
                f"Tile id {tile_id} appended after {self._last_key} in {self.path.name}"
            )
        blob = _encode_payload(payload, self.compression_level)
        header = RECORD_HEADER.pack(
            tile_id, payload.pixel_type.code, payload.size, payload.size, len(blob)
        )
        self._index.write(INDEX_ENTRY.pack(tile_id, self._offset))
        self._data.write(header)
        self._data.write(blob)
        self._offset += len(header) + len(blob)
        self._last_key = tile_id
        self.count += 1

    def _close_handles(self) -> None:
        self._data.close()
        self._index.close()
        self._closed = True

    def close(self) -> Path:
        """Commit the partition and return its path."""
        if self._closed:
            return self.path
        self._close_handles()
        if self.path.exists():
            shutil.rmtree(self.path)
        os.replace(self._tmp_path, self.path)
        LOGGER.debug("Committed %d record(s) to %s", self.count, self.path)
        return self.path

    def abort(self) -> None:
        """Discard everything appended so far."""
        if not self._closed:
            self._close_handles()
        shutil.rmtree(self._tmp_path, ignore_errors=True)


class PartitionReader:
    """Random and sequential access to a committed partition."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._keys: list[int] = []
        self._offsets: list[int] = []
        raw = (self.path / "index").read_bytes()
        if not raw.startswith(INDEX_MAGIC):
            raise ConsistencyError(f"Bad partition index in {self.path}")
        for tile_id, offset in INDEX_ENTRY.iter_unpack(raw[len(INDEX_MAGIC):]):
            self._keys.append(tile_id)
            self._offsets.append(offset)

    def __len__(self) -> int:
        return len(self._keys)

    def keys(self) -> list[int]:
        return list(self._keys)

    def get(self, tile_id: int) -> RasterPayload | None:
        position = bisect_left(self._keys, tile_id)
        if position == len(self._keys) or self._keys[position] != tile_id:
            return None
        with (self.path / "data").open("rb") as handle:
            handle.seek(self._offsets[position])
            record = _read_record(handle)
        if record is None:
            raise ConsistencyError(f"Index points past the end of {self.path}")
        return record[1]

    def __iter__(self) -> Iterator[tuple[int, RasterPayload]]:
        with (self.path / "data").open("rb") as handle:
            if handle.read(len(DATA_MAGIC)) != DATA_MAGIC:
                raise ConsistencyError(f"Bad partition data in {self.path}")
            while True:
                record = _read_record(handle)
                if record is None:
                    return
                yield record


def iter_zoom_tiles(pyramid_dir: Path, zoom: int) -> Iterator[Tile]:
    """Yield every stored tile of a zoom in partition and key order."""
    for path in list_partitions(pyramid_dir, zoom):
        for tile_id, payload in PartitionReader(path):
            yield Tile(tile_id=tile_id, zoom=zoom, payload=payload)


def read_tile(
    pyramid_dir: Path,
    zoom: int,
    tile_id: int,
    splits: tuple[int, ...] = (),
) -> Tile | None:
    """Look up one tile using the zoom's split points to pick the partition."""
    path = partition_path(pyramid_dir, zoom, bisect_left(splits, tile_id))
    if not path.is_dir():
        return None
    payload = PartitionReader(path).get(tile_id)
    if payload is None:
        return None
    return Tile(tile_id=tile_id, zoom=zoom, payload=payload)


def remove_partitions(pyramid_dir: Path, zoom: int, keep: Iterable[Path] = ()) -> list[Path]:
    """Delete committed partitions of a zoom that are not in ``keep``."""
    kept = {Path(path) for path in keep}
    removed = []
    for path in list_partitions(pyramid_dir, zoom):
        if path not in kept:
            shutil.rmtree(path)
            removed.append(path)
    return removed


def write_zoom_level(
    pyramid_dir: Path,
    zoom: int,
    tiles: Iterable[Tile],
    *,
    compression_level: int = 6,
) -> Path:
    """Replace a zoom's contents with one partition holding ``tiles``."""
    ordered = sorted(tiles, key=lambda tile: tile.tile_id)
    path = partition_path(pyramid_dir, zoom, 0)
    with SortedAppendSink(path, compression_level=compression_level) as sink:
        for tile in ordered:
            if tile.zoom != zoom:
                raise ConsistencyError(f"Tile {tile.tile_id} is at zoom {tile.zoom}, not {zoom}")
            sink.append(tile.tile_id, tile.payload)
    remove_partitions(pyramid_dir, zoom, keep=[path])
    return path
