"""8x8 4bpp tile codec, flip helpers and the deduplicating tile arena."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

from .errors import TruncatedDataError

# Packed layout: 8 rows x 4 bytes, two pixels per byte, high nibble first.
TILE_SIZE = 8
TILE_BYTES = 32

Tile = Tuple[Tuple[int, ...], ...]

BLANK_TILE: Tile = tuple(tuple(0 for _ in range(TILE_SIZE)) for _ in range(TILE_SIZE))


class FlipVariants(NamedTuple):
    horizontal: Tile
    vertical: Tile
    both: Tile


@dataclass(frozen=True)
class TileMatch:
    """Arena slot plus the flips a map cell needs to reproduce the candidate."""

    index: int
    h_flip: bool = False
    v_flip: bool = False


def make_tile(rows: Iterable[Iterable[int]]) -> Tile:
    tile = tuple(tuple(row) for row in rows)
    if len(tile) != TILE_SIZE or any(len(row) != TILE_SIZE for row in tile):
        raise ValueError("A tile must be exactly 8 rows of 8 pixels")
    return tile


def decode_tile(data: bytes | bytearray | memoryview, offset: int = 0) -> Tile:
    if offset < 0 or offset + TILE_BYTES > len(data):
        raise TruncatedDataError("tile", offset, TILE_BYTES, len(data))
    rows = []
    for row in range(TILE_SIZE):
        pixels: List[int] = []
        for col in range(TILE_SIZE // 2):
            byte = data[offset + row * 4 + col]
            pixels.append((byte >> 4) & 0x0F)
            pixels.append(byte & 0x0F)
        rows.append(tuple(pixels))
    return tuple(rows)


def encode_tile(tile: Sequence[Sequence[int]]) -> bytes:
    """Pack a tile into 32 bytes. Index bits above the low nibble are dropped."""

    out = bytearray(TILE_BYTES)
    for row in range(TILE_SIZE):
        for col in range(TILE_SIZE // 2):
            hi = tile[row][col * 2] & 0x0F
            lo = tile[row][col * 2 + 1] & 0x0F
            out[row * 4 + col] = (hi << 4) | lo
    return bytes(out)


def flip_horizontal(tile: Tile) -> Tile:
    return tuple(tuple(reversed(row)) for row in tile)


def flip_vertical(tile: Tile) -> Tile:
    return tuple(reversed(tile))


def flip_variants(tile: Tile) -> FlipVariants:
    horizontal = flip_horizontal(tile)
    vertical = flip_vertical(tile)
    return FlipVariants(horizontal, vertical, flip_horizontal(vertical))


def tiles_equal(a: Sequence[Sequence[int]], b: Sequence[Sequence[int]]) -> bool:
    for y in range(TILE_SIZE):
        for x in range(TILE_SIZE):
            if a[y][x] != b[y][x]:
                return False
    return True


class TileArena:
    """Append-only tile store with flip-aware lookup.

    Every stored tile registers its four orientations in a dictionary keyed by
    tile content. A key keeps the first slot that produced it, and orientations
    are registered in the order exact, horizontal, vertical, both, so a lookup
    gives the same answer as scanning the slots in order and testing the four
    orientations of each one. Any 8x8 nested sequence is accepted and stored
    as a tuple of tuples.
    """

    def __init__(self, tiles: Iterable[Sequence[Sequence[int]]] = ()):
        self._tiles: List[Tile] = []
        self._lookup: Dict[Tile, TileMatch] = {}
        for tile in tiles:
            self.append(tile)

    def __len__(self) -> int:
        return len(self._tiles)

    def __getitem__(self, index: int) -> Tile:
        return self._tiles[index]

    @property
    def tiles(self) -> List[Tile]:
        return list(self._tiles)

    def find(self, candidate: Sequence[Sequence[int]]) -> Optional[TileMatch]:
        return self._lookup.get(make_tile(candidate))

    def append(self, tile: Sequence[Sequence[int]]) -> int:
        tile = make_tile(tile)
        index = len(self._tiles)
        self._tiles.append(tile)
        variants = flip_variants(tile)
        for key, match in (
            (tile, TileMatch(index)),
            (variants.horizontal, TileMatch(index, h_flip=True)),
            (variants.vertical, TileMatch(index, v_flip=True)),
            (variants.both, TileMatch(index, h_flip=True, v_flip=True)),
        ):
            self._lookup.setdefault(key, match)
        return index

    def add(self, candidate: Sequence[Sequence[int]]) -> TileMatch:
        candidate = make_tile(candidate)
        match = self._lookup.get(candidate)
        if match is not None:
            return match
        return TileMatch(self.append(candidate))
