"""JIM tile/map container codec.

Reference: JIM layout (all multi-byte fields big-endian)
Offset                | Size          | Notes
----------------------|---------------|-------------------------------------------------
0                     | 4             | Offset of the palette table
4                     | 4             | Offset of the map
8                     | 2             | Tile count N
10                    | 32 × N        | 8×8 tiles, 4bpp, high nibble first
palette offset        | 128           | 4 palettes × 16 colours × 2 bytes (0BBB0GGG0RRR0)
map offset            | 4             | Map width, map height (in cells)
map offset + 4        | 2 × W × H     | Cell words, row-major

Cell word: bit15 priority | bits14-13 palette | bit12 vflip | bit11 hflip | bits10-0 tile

There is no magic number, version or checksum. Any buffer long enough for the
offsets it declares is accepted unless ``strict`` parsing is requested.
"""

from __future__ import annotations

import json
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from .color import Color, decode_hardware_color, encode_hardware_color
from .errors import (
    ConversionError,
    ImplausibleStructureError,
    TileIndexOverflowError,
    TruncatedDataError,
)
from .tiles import BLANK_TILE, TILE_BYTES, Tile, decode_tile, encode_tile

HEADER_SIZE = 10
PALETTE_COUNT = 4
COLORS_PER_PALETTE = 16
PALETTE_TABLE_SIZE = PALETTE_COUNT * COLORS_PER_PALETTE * 2
MAP_HEADER_SIZE = 4
MAX_TILE_INDEX = 0x7FF

Palette = List[Color]


@dataclass(frozen=True)
class MapCell:
    tile_index: int = 0
    palette_index: int = 0
    h_flip: bool = False
    v_flip: bool = False
    priority: bool = False

    @classmethod
    def from_word(cls, word: int) -> "MapCell":
        return cls(
            tile_index=word & MAX_TILE_INDEX,
            palette_index=(word >> 13) & 0x03,
            h_flip=bool((word >> 11) & 1),
            v_flip=bool((word >> 12) & 1),
            priority=bool((word >> 15) & 1),
        )

    def to_word(self, strict: bool = False) -> int:
        """Pack the cell. Tile indices above 2047 are truncated unless ``strict``."""

        if strict and not 0 <= self.tile_index <= MAX_TILE_INDEX:
            raise TileIndexOverflowError(
                f"Tile index {self.tile_index} does not fit in 11 bits (max {MAX_TILE_INDEX})"
            )
        word = self.tile_index & MAX_TILE_INDEX
        if self.h_flip:
            word |= 1 << 11
        if self.v_flip:
            word |= 1 << 12
        word |= (self.palette_index & 0x03) << 13
        if self.priority:
            word |= 1 << 15
        return word


def _default_palettes() -> List[Palette]:
    return [[(0, 0, 0)] * COLORS_PER_PALETTE for _ in range(PALETTE_COUNT)]


@dataclass
class NativeDocument:
    """Decoded JIM contents: four palettes, a tile arena and a cell map."""

    palettes: List[Palette] = field(default_factory=_default_palettes)
    tiles: List[Tile] = field(default_factory=list)
    map_width: int = 0
    map_height: int = 0
    cells: List[List[MapCell]] = field(default_factory=list)

    def tile_at(self, index: int) -> Tile:
        """Return the tile in slot ``index``, or a blank tile when out of range."""

        if 0 <= index < len(self.tiles):
            return self.tiles[index]
        return BLANK_TILE

    def palette_at(self, index: int) -> Palette:
        if 0 <= index < len(self.palettes):
            return self.palettes[index]
        return self.palettes[0]


def _require(data: bytes, offset: int, size: int, what: str) -> None:
    if offset < 0 or offset + size > len(data):
        raise TruncatedDataError(what, offset, size, len(data))


def parse_jim(data: bytes | bytearray, strict: bool = False) -> NativeDocument:
    """Decode a JIM buffer.

    ``strict`` additionally rejects layouts this codec would never produce
    (tables that overlap or leave gaps, trailing bytes) with
    :class:`ImplausibleStructureError`. Short buffers always raise
    :class:`TruncatedDataError`.
    """

    data = bytes(data)
    _require(data, 0, HEADER_SIZE, "JIM header")
    pal_offset, map_offset, tile_count = struct.unpack_from(">IIH", data, 0)

    if strict:
        expected_pal = HEADER_SIZE + tile_count * TILE_BYTES
        if pal_offset != expected_pal:
            raise ImplausibleStructureError(
                f"Palette offset {pal_offset:#x} does not follow {tile_count} tiles "
                f"(expected {expected_pal:#x})"
            )
        if map_offset != pal_offset + PALETTE_TABLE_SIZE:
            raise ImplausibleStructureError(
                f"Map offset {map_offset:#x} does not follow the palette table "
                f"(expected {pal_offset + PALETTE_TABLE_SIZE:#x})"
            )

    _require(data, HEADER_SIZE, tile_count * TILE_BYTES, "tile table")
    tiles = [decode_tile(data, HEADER_SIZE + i * TILE_BYTES) for i in range(tile_count)]

    _require(data, pal_offset, PALETTE_TABLE_SIZE, "palette table")
    words = struct.unpack_from(f">{PALETTE_COUNT * COLORS_PER_PALETTE}H", data, pal_offset)
    palettes = [
        [decode_hardware_color(w) for w in words[p * COLORS_PER_PALETTE : (p + 1) * COLORS_PER_PALETTE]]
        for p in range(PALETTE_COUNT)
    ]

    _require(data, map_offset, MAP_HEADER_SIZE, "map header")
    map_width, map_height = struct.unpack_from(">HH", data, map_offset)
    cells_offset = map_offset + MAP_HEADER_SIZE
    cell_count = map_width * map_height
    _require(data, cells_offset, cell_count * 2, "map cells")
    cell_words = struct.unpack_from(f">{cell_count}H", data, cells_offset)

    if strict and cells_offset + cell_count * 2 != len(data):
        raise ImplausibleStructureError(
            f"{len(data) - cells_offset - cell_count * 2} unexpected bytes after the map"
        )

    cells = [
        [MapCell.from_word(cell_words[y * map_width + x]) for x in range(map_width)]
        for y in range(map_height)
    ]
    return NativeDocument(
        palettes=palettes,
        tiles=tiles,
        map_width=map_width,
        map_height=map_height,
        cells=cells,
    )


def serialize_jim(doc: NativeDocument, strict_tile_index: bool = False) -> bytes:
    tile_count = len(doc.tiles)
    pal_offset = HEADER_SIZE + tile_count * TILE_BYTES
    map_offset = pal_offset + PALETTE_TABLE_SIZE
    total_size = map_offset + MAP_HEADER_SIZE + doc.map_width * doc.map_height * 2

    if tile_count > 0xFFFF:
        raise ConversionError(f"{tile_count} tiles do not fit in the 16-bit tile count")
    if len(doc.palettes) != PALETTE_COUNT or any(
        len(palette) != COLORS_PER_PALETTE for palette in doc.palettes
    ):
        raise ConversionError("A JIM document needs exactly 4 palettes of 16 colours")
    if len(doc.cells) != doc.map_height or any(len(row) != doc.map_width for row in doc.cells):
        raise ConversionError(
            f"Map rows do not match the declared {doc.map_width}x{doc.map_height} size"
        )

    out = bytearray(total_size)
    struct.pack_into(">IIH", out, 0, pal_offset, map_offset, tile_count)

    offset = HEADER_SIZE
    for tile in doc.tiles:
        out[offset : offset + TILE_BYTES] = encode_tile(tile)
        offset += TILE_BYTES

    words = [encode_hardware_color(color) for palette in doc.palettes for color in palette]
    struct.pack_into(f">{len(words)}H", out, pal_offset, *words)

    struct.pack_into(">HH", out, map_offset, doc.map_width, doc.map_height)
    cell_words = [cell.to_word(strict=strict_tile_index) for row in doc.cells for cell in row]
    struct.pack_into(f">{len(cell_words)}H", out, map_offset + MAP_HEADER_SIZE, *cell_words)

    return bytes(out)


def generate_metadata(doc: NativeDocument) -> Dict[str, Any]:
    """Summarise a document as plain JSON-compatible data."""

    return {
        "map_width": doc.map_width,
        "map_height": doc.map_height,
        "num_tiles": len(doc.tiles),
        "palettes": [[[r, g, b] for (r, g, b) in palette] for palette in doc.palettes],
        "cells": [
            [
                {
                    "tile": cell.tile_index,
                    "palette": cell.palette_index,
                    "hflip": int(cell.h_flip),
                    "vflip": int(cell.v_flip),
                    "priority": int(cell.priority),
                }
                for cell in row
            ]
            for row in doc.cells
        ],
    }


def metadata_to_json(doc: NativeDocument, indent: int | None = 2) -> str:
    return json.dumps(generate_metadata(doc), indent=indent)


def read_jim(path: str | Path, strict: bool = False) -> NativeDocument:
    path = Path(path)
    try:
        data = path.read_bytes()
    except FileNotFoundError as exc:
        raise ConversionError(f"Input file not found: {path}") from exc
    except OSError as exc:
        raise ConversionError(f"Failed to read JIM: {path}") from exc
    return parse_jim(data, strict=strict)


def write_jim(path: str | Path, doc: NativeDocument, strict_tile_index: bool = False) -> Path:
    path = Path(path)
    data = serialize_jim(doc, strict_tile_index=strict_tile_index)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    except OSError as exc:
        raise ConversionError(f"Failed to write JIM: {path}") from exc
    return path
