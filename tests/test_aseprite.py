import struct
import zlib

import pytest

from jim_converter.aseprite import SpriteDocument, parse_aseprite, read_aseprite, serialize_aseprite
from jim_converter.errors import (
    CelDecompressionWarning,
    ConversionError,
    ImplausibleStructureError,
    InvalidMagicError,
    TruncatedDataError,
    UnsupportedColorDepthError,
)


def _chunk(chunk_type: int, body: bytes) -> bytes:
    return struct.pack("<IH", 6 + len(body), chunk_type) + body


def _palette_chunk(first: int, entries, names=None) -> bytes:
    names = names or {}
    body = struct.pack("<III8x", len(entries), first, first + len(entries) - 1)
    for i, (r, g, b) in enumerate(entries):
        name = names.get(i)
        body += struct.pack("<HBBBB", 1 if name else 0, r, g, b, 255)
        if name:
            encoded = name.encode("utf-8")
            body += struct.pack("<H", len(encoded)) + encoded
    return _chunk(0x2019, body)


def _cel_chunk(x: int, y: int, width: int, height: int, pixels: bytes, payload: bytes | None = None) -> bytes:
    body = struct.pack("<HhhBHh5xHH", 0, x, y, 255, 2, 0, width, height)
    body += zlib.compress(pixels) if payload is None else payload
    return _chunk(0x2005, body)


def _make_ase_bytes(
    width: int,
    height: int,
    chunks,
    depth: int = 8,
    use_old_count: bool = False,
    file_magic: int = 0xA5E0,
    frame_magic: int = 0xF1FA,
) -> bytes:
    chunk_bytes = b"".join(chunks)
    frame_size = 16 + len(chunk_bytes)
    new_count = 0 if use_old_count else len(chunks)
    frame = struct.pack("<IHHH2xI", frame_size, frame_magic, len(chunks), 100, new_count)
    header = bytearray(128)
    struct.pack_into("<IHHHHH", header, 0, 128 + frame_size, file_magic, 1, width, height, depth)
    return bytes(header) + frame + chunk_bytes


def test_parse_palette_and_cel() -> None:
    pixels = bytes(range(1, 17))
    data = _make_ase_bytes(
        4,
        4,
        [
            _palette_chunk(0, [(10, 20, 30), (40, 50, 60), (70, 80, 90)], names={1: "skin"}),
            _chunk(0x2007, b"\x00" * 10),  # colour profile, not interpreted
            _cel_chunk(0, 0, 4, 4, pixels),
        ],
    )

    doc = parse_aseprite(data)
    assert (doc.width, doc.height) == (4, 4)
    assert doc.pixels == pixels
    assert len(doc.palette) == 256
    assert doc.palette[:3] == [(10, 20, 30), (40, 50, 60), (70, 80, 90)]
    assert doc.palette[3] == (0, 0, 0)


def test_palette_first_index_and_overflow_slots() -> None:
    data = _make_ase_bytes(1, 1, [_palette_chunk(254, [(1, 1, 1), (2, 2, 2), (3, 3, 3)])])

    doc = parse_aseprite(data)
    assert doc.palette[254] == (1, 1, 1)
    assert doc.palette[255] == (2, 2, 2)
    assert len(doc.palette) == 256


def test_cel_is_clipped_to_canvas() -> None:
    cel = bytes([1, 2, 3, 4, 5, 6, 7, 8, 9])
    data = _make_ase_bytes(4, 4, [_cel_chunk(-1, 2, 3, 3, cel)])

    doc = parse_aseprite(data)
    # Column -1 and row 4 fall outside; the rest lands at (0..1, 2..3).
    assert doc.pixels[2 * 4 : 2 * 4 + 4] == bytes([2, 3, 0, 0])
    assert doc.pixels[3 * 4 : 3 * 4 + 4] == bytes([5, 6, 0, 0])
    assert doc.pixels[: 2 * 4] == bytes(8)


def test_old_chunk_count_is_used_when_new_field_is_zero() -> None:
    data = _make_ase_bytes(2, 1, [_cel_chunk(0, 0, 2, 1, b"\x07\x08")], use_old_count=True)

    assert parse_aseprite(data).pixels == b"\x07\x08"


def test_bad_cel_is_skipped_with_warning() -> None:
    data = _make_ase_bytes(
        2,
        1,
        [
            _cel_chunk(0, 0, 2, 1, b"", payload=b"not a zlib stream"),
            _cel_chunk(1, 0, 1, 1, b"\x09"),
        ],
    )

    with pytest.warns(CelDecompressionWarning):
        doc = parse_aseprite(data)
    assert doc.pixels == b"\x00\x09"


def test_non_compressed_cel_types_are_ignored() -> None:
    body = struct.pack("<HhhBHh5xHH", 0, 0, 0, 255, 0, 0, 1, 1) + b"\x05"
    data = _make_ase_bytes(1, 1, [_chunk(0x2005, body)])

    assert parse_aseprite(data).pixels == b"\x00"


def test_invalid_file_magic() -> None:
    with pytest.raises(InvalidMagicError):
        parse_aseprite(_make_ase_bytes(1, 1, [], file_magic=0x1234))


def test_invalid_frame_magic() -> None:
    with pytest.raises(InvalidMagicError):
        parse_aseprite(_make_ase_bytes(1, 1, [], frame_magic=0x1234))


@pytest.mark.parametrize("depth", [16, 32])
def test_only_indexed_depth_is_supported(depth: int) -> None:
    with pytest.raises(UnsupportedColorDepthError):
        parse_aseprite(_make_ase_bytes(1, 1, [], depth=depth))


def test_truncated_buffers() -> None:
    data = _make_ase_bytes(2, 1, [_cel_chunk(0, 0, 2, 1, b"\x01\x02")])

    with pytest.raises(TruncatedDataError):
        parse_aseprite(data[:3])
    with pytest.raises(TruncatedDataError):
        parse_aseprite(data[:140])
    with pytest.raises(TruncatedDataError):
        parse_aseprite(data[:150])


def test_chunk_shorter_than_header_is_rejected() -> None:
    data = bytearray(_make_ase_bytes(1, 1, [_chunk(0x2007, b"")]))
    struct.pack_into("<I", data, 144, 2)

    with pytest.raises(ImplausibleStructureError):
        parse_aseprite(bytes(data))


def test_serialize_round_trip() -> None:
    palette = [(c * 36 % 256, 252 - c * 36 % 256, 108) for c in range(16)]
    pixels = bytes((x * 3 + y) % 16 for y in range(5) for x in range(7))
    doc = SpriteDocument(width=7, height=5, palette=palette, pixels=pixels)

    parsed = parse_aseprite(serialize_aseprite(doc))
    assert (parsed.width, parsed.height) == (7, 5)
    assert parsed.pixels == pixels
    assert parsed.palette[:16] == palette


def test_serialize_layout() -> None:
    doc = SpriteDocument(width=2, height=2, palette=[(1, 2, 3)] * 16, pixels=bytes(4))
    data = serialize_aseprite(doc)

    size, magic, frames, width, height, depth = struct.unpack_from("<IHHHHH", data, 0)
    assert (size, magic, frames, width, height, depth) == (len(data), 0xA5E0, 1, 2, 2, 8)
    assert data[28] == 0
    assert struct.unpack_from("<H", data, 32)[0] == 16

    frame_size, frame_magic, old_count = struct.unpack_from("<IHH", data, 128)
    assert frame_size == len(data) - 128
    assert frame_magic == 0xF1FA
    assert old_count == 3
    assert struct.unpack_from("<I", data, 140)[0] == 3

    chunk_types = []
    offset = 144
    while offset < len(data):
        length, chunk_type = struct.unpack_from("<IH", data, offset)
        chunk_types.append(chunk_type)
        offset += length
    assert chunk_types == [0x2019, 0x2004, 0x2005]
    assert offset == len(data)


def _palette_alphas(data: bytes) -> list:
    count = struct.unpack_from("<I", data, 144 + 6)[0]
    return [data[144 + 26 + i * 6 + 5] for i in range(count)]


def test_transparent_slots() -> None:
    small = SpriteDocument(width=1, height=1, palette=[(0, 0, 0)] * 16, pixels=b"\x00")
    large = SpriteDocument(width=1, height=1, palette=[(0, 0, 0)] * 64, pixels=b"\x00")

    alphas = _palette_alphas(serialize_aseprite(small))
    assert alphas[0] == 0
    assert all(a == 255 for a in alphas[1:])

    alphas = _palette_alphas(serialize_aseprite(large))
    assert [i for i, a in enumerate(alphas) if a == 0] == [0, 16, 32, 48]

    opaque = serialize_aseprite(large, transparent_on_zero=False)
    assert all(a == 255 for a in _palette_alphas(opaque))
    assert opaque[28] == 255


def test_serialize_rejects_bad_pixel_buffer() -> None:
    with pytest.raises(ConversionError):
        serialize_aseprite(SpriteDocument(width=2, height=2, palette=[], pixels=b"\x00"))


def test_read_aseprite(tmp_path) -> None:
    path = tmp_path / "logo.aseprite"
    path.write_bytes(_make_ase_bytes(1, 1, [_cel_chunk(0, 0, 1, 1, b"\x03")]))

    assert read_aseprite(path).pixels == b"\x03"
    with pytest.raises(ConversionError):
        read_aseprite(tmp_path / "missing.aseprite")


def test_short_cel_payload_fills_missing_pixels_with_zero() -> None:
    data = _make_ase_bytes(
        2,
        2,
        [
            _cel_chunk(0, 0, 2, 2, b"\x01\x02\x03\x04"),
            _cel_chunk(0, 0, 2, 2, b"\x09"),
        ],
    )

    assert parse_aseprite(data).pixels == b"\x09\x00\x00\x00"


def test_serialize_layer_chunk_layout() -> None:
    doc = SpriteDocument(width=1, height=1, palette=[(0, 0, 0)], pixels=b"\x00")
    data = serialize_aseprite(doc)

    palette_length = struct.unpack_from("<I", data, 144)[0]
    layer = 144 + palette_length
    length, chunk_type, flags = struct.unpack_from("<IHH", data, layer)
    assert (length, chunk_type, flags) == (31, 0x2004, 1)
    assert struct.unpack_from("<H", data, layer + 22)[0] == 7
    assert data[layer + 24 : layer + 31] == b"Layer 1"
    assert struct.unpack_from("<H", data, layer + 31 + 4)[0] == 0x2005


def test_serialize_rejects_oversized_sprite() -> None:
    doc = SpriteDocument(width=0x10000, height=1, palette=[(0, 0, 0)], pixels=bytes(0x10000))

    with pytest.raises(ConversionError, match="16-bit"):
        serialize_aseprite(doc)
