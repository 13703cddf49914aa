"""Aseprite sprite document codec (first frame, 8bpp indexed only).

Reference: file layout (all multi-byte fields little-endian)
Region        | Offset   | Notes
--------------|----------|-----------------------------------------------------
File header   | 0        | 128 bytes; magic 0xA5E0 at +4, width +8, height +10,
              |          | colour depth +12
Frame header  | 128      | 16 bytes; magic 0xF1FA at +4, chunk count u16 at +6
              |          | (old) and u32 at +12 (new, 0 means "use old")
Chunks        | 144      | u32 length, u16 type, payload; next chunk starts at
              |          | chunk start + length

Interpreted chunks:
- 0x2019 palette: u32 count, u32 first, u32 last, 8 reserved, then entries of
  u16 flags, R, G, B, A (+ u16-prefixed name when flags bit 0 is set)
- 0x2005 cel: u16 layer, s16 x, s16 y, u8 opacity, u16 type, s16 z-index,
  5 reserved, then for type 2 u16 width, u16 height and a zlib stream
"""

from __future__ import annotations

import struct
import warnings
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from .color import Color
from .errors import (
    CelDecompressionWarning,
    ConversionError,
    ImplausibleStructureError,
    InvalidMagicError,
    TruncatedDataError,
    UnsupportedColorDepthError,
)

FILE_MAGIC = 0xA5E0
FRAME_MAGIC = 0xF1FA
FILE_HEADER_SIZE = 128
FRAME_HEADER_SIZE = 16
CHUNK_HEADER_SIZE = 6

CHUNK_LAYER = 0x2004
CHUNK_CEL = 0x2005
CHUNK_PALETTE = 0x2019

CEL_COMPRESSED_IMAGE = 2
INDEXED_DEPTH = 8
PALETTE_SLOTS = 256
PALETTE_ENTRY_HAS_NAME = 0x0001

MAX_DIMENSION = 0xFFFF
LAYER_NAME = "Layer 1"
FRAME_DURATION_MS = 100
GRID_SIZE = 8


@dataclass
class SpriteDocument:
    """Indexed image with up to 256 palette entries."""

    width: int
    height: int
    palette: List[Color] = field(default_factory=list)
    pixels: bytes = b""

    def pixel(self, x: int, y: int) -> int:
        if 0 <= x < self.width and 0 <= y < self.height:
            return self.pixels[y * self.width + x]
        return 0


class _Reader:
    """Bounds-checked little-endian reads over an immutable buffer."""

    def __init__(self, data: bytes):
        self.data = data

    def unpack(self, fmt: str, offset: int, what: str) -> tuple:
        size = struct.calcsize(fmt)
        if offset < 0 or offset + size > len(self.data):
            raise TruncatedDataError(what, offset, size, len(self.data))
        return struct.unpack_from(fmt, self.data, offset)


def _read_palette_chunk(reader: _Reader, start: int, end: int, palette: List[Color]) -> None:
    count, first = reader.unpack("<II", start + 6, "palette chunk header")
    offset = start + 26
    for entry in range(count):
        if offset + 6 > end:
            break
        flags, r, g, b, _alpha = reader.unpack("<HBBBB", offset, "palette entry")
        slot = first + entry
        if slot < PALETTE_SLOTS:
            palette[slot] = (r, g, b)
        offset += 6
        if flags & PALETTE_ENTRY_HAS_NAME:
            if offset + 2 > end:
                break
            (name_len,) = reader.unpack("<H", offset, "palette entry name")
            offset += 2 + name_len


def _read_cel_chunk(
    reader: _Reader,
    start: int,
    end: int,
    canvas: bytearray,
    width: int,
    height: int,
) -> None:
    x_pos, y_pos, _opacity, cel_type = reader.unpack("<hhBH", start + 8, "cel chunk header")
    if cel_type != CEL_COMPRESSED_IMAGE:
        return

    cel_width, cel_height = reader.unpack("<HH", start + 22, "cel size")
    payload = reader.data[start + 26 : end]
    try:
        cel_pixels = zlib.decompress(payload)
    except zlib.error as exc:
        warnings.warn(
            f"Skipping cel at offset {start:#x}: failed to decompress pixel data ({exc})",
            CelDecompressionWarning,
            stacklevel=3,
        )
        return

    available = len(cel_pixels)
    for cy in range(cel_height):
        dest_y = y_pos + cy
        if dest_y < 0 or dest_y >= height:
            continue
        for cx in range(cel_width):
            dest_x = x_pos + cx
            if dest_x < 0 or dest_x >= width:
                continue
            src = cy * cel_width + cx
            canvas[dest_y * width + dest_x] = cel_pixels[src] if src < available else 0


def parse_aseprite(data: bytes | bytearray) -> SpriteDocument:
    """Decode the first frame of an 8bpp Aseprite file.

    Structural problems (bad magic, unsupported depth, short buffer) raise a
    :class:`~jim_converter.errors.StructuralParseError`. A cel whose payload
    cannot be inflated is skipped with a :class:`CelDecompressionWarning`.
    """

    reader = _Reader(bytes(data))

    (magic,) = reader.unpack("<H", 4, "file header")
    if magic != FILE_MAGIC:
        raise InvalidMagicError(f"Invalid Aseprite file header (magic {magic:#06x})")
    width, height, depth = reader.unpack("<HHH", 8, "file header")
    if depth != INDEXED_DEPTH:
        raise UnsupportedColorDepthError(
            f"Only 8bpp (indexed) Aseprite files are supported, got {depth}bpp"
        )

    palette: List[Color] = [(0, 0, 0)] * PALETTE_SLOTS
    canvas = bytearray(width * height)

    offset = FILE_HEADER_SIZE
    _frame_size, frame_magic, old_chunks = reader.unpack("<IHH", offset, "frame header")
    if frame_magic != FRAME_MAGIC:
        raise InvalidMagicError(f"Invalid frame header (magic {frame_magic:#06x})")
    (chunk_count,) = reader.unpack("<I", offset + 12, "frame header")
    if chunk_count == 0:
        chunk_count = old_chunks

    offset += FRAME_HEADER_SIZE
    for _ in range(chunk_count):
        chunk_start = offset
        chunk_size, chunk_type = reader.unpack("<IH", chunk_start, "chunk header")
        if chunk_size < CHUNK_HEADER_SIZE:
            raise ImplausibleStructureError(
                f"Chunk at offset {chunk_start:#x} declares {chunk_size} bytes, "
                f"smaller than its own header"
            )
        chunk_end = chunk_start + chunk_size

        if chunk_type == CHUNK_PALETTE:
            _read_palette_chunk(reader, chunk_start, chunk_end, palette)
        elif chunk_type == CHUNK_CEL:
            _read_cel_chunk(reader, chunk_start, chunk_end, canvas, width, height)

        offset = chunk_end

    return SpriteDocument(width=width, height=height, palette=palette, pixels=bytes(canvas))


def _transparent_slot(index: int, color_count: int) -> bool:
    # 64 colours means four flattened 16-colour banks, each with its own index 0.
    if color_count == 64:
        return index % 16 == 0
    return index == 0


def _palette_chunk(palette: List[Color], transparent_on_zero: bool) -> bytes:
    count = len(palette)
    body = bytearray(struct.pack("<III8x", count, 0, max(count - 1, 0)))
    for index, (r, g, b) in enumerate(palette):
        alpha = 0 if transparent_on_zero and _transparent_slot(index, count) else 255
        body += struct.pack("<HBBBB", 0, r, g, b, alpha)
    return struct.pack("<IH", CHUNK_HEADER_SIZE + len(body), CHUNK_PALETTE) + body


def _layer_chunk(name: str = LAYER_NAME) -> bytes:
    name_bytes = name.encode("utf-8")
    # flags=visible, type=image, child level, default w/h, blend=normal, opacity
    body = struct.pack("<HHHHHHB3x", 1, 0, 0, 0, 0, 0, 255)
    body += struct.pack("<H", len(name_bytes)) + name_bytes
    return struct.pack("<IH", CHUNK_HEADER_SIZE + len(body), CHUNK_LAYER) + body


def _cel_chunk(width: int, height: int, pixels: bytes) -> bytes:
    body = struct.pack("<HhhBHh5xHH", 0, 0, 0, 255, CEL_COMPRESSED_IMAGE, 0, width, height)
    body += zlib.compress(pixels)
    return struct.pack("<IH", CHUNK_HEADER_SIZE + len(body), CHUNK_CEL) + body


def serialize_aseprite(doc: SpriteDocument, transparent_on_zero: bool = True) -> bytes:
    """Write ``doc`` as a single-frame, single-layer 8bpp Aseprite file.

    Palette colours are written as given. With ``transparent_on_zero`` the
    transparent slots (index 0, or every 16th index for a 64-colour palette)
    get alpha 0 and the header's transparent index is 0; otherwise it is 255.
    """

    if len(doc.pixels) != doc.width * doc.height:
        raise ConversionError(
            f"Pixel buffer holds {len(doc.pixels)} bytes, expected {doc.width * doc.height}"
        )
    if not 0 <= doc.width <= MAX_DIMENSION or not 0 <= doc.height <= MAX_DIMENSION:
        raise ConversionError(
            f"Sprite size {doc.width}x{doc.height} does not fit the 16-bit Aseprite header "
            f"(max {MAX_DIMENSION} pixels per side)"
        )
    if len(doc.palette) > PALETTE_SLOTS:
        raise ConversionError(f"Palette has {len(doc.palette)} entries (max {PALETTE_SLOTS})")

    chunks = [
        _palette_chunk(list(doc.palette), transparent_on_zero),
        _layer_chunk(),
        _cel_chunk(doc.width, doc.height, bytes(doc.pixels)),
    ]
    chunk_bytes = b"".join(chunks)
    frame_size = FRAME_HEADER_SIZE + len(chunk_bytes)
    frame_header = struct.pack(
        "<IHHH2xI", frame_size, FRAME_MAGIC, len(chunks), FRAME_DURATION_MS, len(chunks)
    )

    header = bytearray(FILE_HEADER_SIZE)
    struct.pack_into(
        "<IHHHHHI",
        header,
        0,
        FILE_HEADER_SIZE + frame_size,
        FILE_MAGIC,
        1,
        doc.width,
        doc.height,
        INDEXED_DEPTH,
        1,  # layer opacity is valid
    )
    struct.pack_into("<H", header, 18, FRAME_DURATION_MS)
    header[28] = 0 if transparent_on_zero else 255
    struct.pack_into("<HBB", header, 32, len(doc.palette), 1, 1)
    struct.pack_into("<hhHH", header, 36, 0, 0, GRID_SIZE, GRID_SIZE)

    return bytes(header) + frame_header + chunk_bytes


def read_aseprite(path: str | Path) -> SpriteDocument:
    path = Path(path)
    try:
        data = path.read_bytes()
    except FileNotFoundError as exc:
        raise ConversionError(f"Input file not found: {path}") from exc
    except OSError as exc:
        raise ConversionError(f"Failed to read Aseprite file: {path}") from exc
    return parse_aseprite(data)
