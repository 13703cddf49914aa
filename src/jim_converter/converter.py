"""Conversions between Aseprite documents, raster images and JIM documents."""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Sequence, Tuple, Union

from PIL import Image, ImageDraw

from .aseprite import MAX_DIMENSION, SpriteDocument, read_aseprite, serialize_aseprite
from .color import Color, nearest_palette_index_with_distance, snap_to_hardware
from .errors import ConversionError, PixelLossWarning
from .jim import (
    COLORS_PER_PALETTE,
    PALETTE_COUNT,
    MapCell,
    NativeDocument,
    Palette,
    read_jim,
    serialize_jim,
)
from .tiles import TILE_SIZE, Tile, TileArena

TILES_PER_ROW = 16
EXPORT_MODES = ("map", "tileset")
PALETTE_BACKGROUND: Color = (0x1E, 0x29, 0x3B)

RasterPixels = Union[bytes, bytearray, memoryview, Sequence[Sequence[int]]]


@dataclass
class ConvertOptions:
    """Options for Aseprite -> JIM conversion."""

    deduplicate: bool = True
    report_pixel_loss: bool = False


@dataclass
class ExportOptions:
    """Options for JIM -> Aseprite export."""

    mode: str = "map"  # map, tileset
    palette_index: int = -1  # -1 keeps all four palettes (map mode only)
    transparent_on_zero: bool = True


# ---------------------------------------------------------------------------
# Aseprite -> JIM
# ---------------------------------------------------------------------------


def _validate_sprite(doc: SpriteDocument) -> None:
    if doc.width < 0 or doc.height < 0:
        raise ConversionError(f"Invalid sprite size {doc.width}x{doc.height}")
    if len(doc.pixels) != doc.width * doc.height:
        raise ConversionError(
            f"Sprite pixel buffer holds {len(doc.pixels)} bytes, "
            f"expected {doc.width * doc.height} for {doc.width}x{doc.height}"
        )


def build_hardware_palettes(source: Sequence[Color]) -> List[Palette]:
    """Take the first 64 source colours as 4 banks of 16, snapped to hardware levels."""

    palettes: List[Palette] = []
    for bank in range(PALETTE_COUNT):
        palette: Palette = []
        for offset in range(COLORS_PER_PALETTE):
            index = bank * COLORS_PER_PALETTE + offset
            color = source[index] if index < len(source) else (0, 0, 0)
            palette.append(snap_to_hardware(color))
        palettes.append(palette)
    return palettes


def _choose_bank(block: List[List[int]]) -> int:
    counts = [0] * PALETTE_COUNT
    for row in block:
        for index in row:
            if index == 0:
                continue
            bank = index // COLORS_PER_PALETTE
            if bank < PALETTE_COUNT:
                counts[bank] += 1

    best_bank = 0
    best_count = -1
    for bank, count in enumerate(counts):
        if count > best_count:
            best_bank = bank
            best_count = count
    return best_bank


def _normalize_block(block: List[List[int]], bank: int) -> Tuple[Tile, int]:
    """Map global indices to 0-15 within ``bank``; others become 0.

    Returns the tile and the number of non-zero pixels that were dropped.
    """

    lost = 0
    rows = []
    for row in block:
        out = []
        for index in row:
            if index == 0:
                out.append(0)
            elif index // COLORS_PER_PALETTE == bank:
                out.append(index % COLORS_PER_PALETTE)
            else:
                out.append(0)
                lost += 1
        rows.append(tuple(out))
    return tuple(rows), lost


def convert_aseprite_to_jim(
    doc: SpriteDocument, options: ConvertOptions | None = None
) -> NativeDocument:
    """Convert an indexed sprite into a JIM document.

    Each 8x8 block takes the palette bank (0-3) holding most of its non-zero
    pixels. Pixels from other banks are replaced by index 0. Blocks are
    deduplicated against earlier ones, including flipped matches, unless
    ``options.deduplicate`` is false.
    """

    options = options or ConvertOptions()
    _validate_sprite(doc)

    palettes = build_hardware_palettes(doc.palette)
    map_width = (doc.width + TILE_SIZE - 1) // TILE_SIZE
    map_height = (doc.height + TILE_SIZE - 1) // TILE_SIZE

    arena = TileArena()
    cells: List[List[MapCell]] = []
    for map_y in range(map_height):
        row: List[MapCell] = []
        for map_x in range(map_width):
            block = [
                [doc.pixel(map_x * TILE_SIZE + x, map_y * TILE_SIZE + y) for x in range(TILE_SIZE)]
                for y in range(TILE_SIZE)
            ]
            bank = _choose_bank(block)
            tile, lost = _normalize_block(block, bank)
            if lost and options.report_pixel_loss:
                warnings.warn(
                    f"Block ({map_x},{map_y}): {lost} pixel(s) outside palette {bank} "
                    "were replaced by index 0",
                    PixelLossWarning,
                    stacklevel=2,
                )

            if options.deduplicate:
                match = arena.add(tile)
                row.append(
                    MapCell(
                        tile_index=match.index,
                        palette_index=bank,
                        h_flip=match.h_flip,
                        v_flip=match.v_flip,
                    )
                )
            else:
                row.append(MapCell(tile_index=arena.append(tile), palette_index=bank))
        cells.append(row)

    return NativeDocument(
        palettes=palettes,
        tiles=arena.tiles,
        map_width=map_width,
        map_height=map_height,
        cells=cells,
    )


def convert_aseprite_file_to_jim(path: str | Path, options: ConvertOptions | None = None) -> bytes:
    return serialize_jim(convert_aseprite_to_jim(read_aseprite(path), options))


# ---------------------------------------------------------------------------
# Raster -> JIM (re-import with fixed palettes)
# ---------------------------------------------------------------------------


def _coerce_rgb_pixels(pixels: RasterPixels, width: int, height: int) -> List[Color]:
    count = width * height
    if isinstance(pixels, (bytes, bytearray, memoryview)):
        data = bytes(pixels)
        if count == 0 and not data:
            return []
        if count == 0 or len(data) not in (count * 3, count * 4):
            raise ConversionError(
                f"Raster buffer of {len(data)} bytes is not RGB or RGBA for {width}x{height}"
            )
        channels = len(data) // count
        return [
            (data[i], data[i + 1], data[i + 2]) for i in range(0, len(data), channels)
        ]

    values = list(pixels)
    if len(values) != count:
        raise ConversionError(
            f"Raster holds {len(values)} pixels, expected {count} for {width}x{height}"
        )
    return [(p[0], p[1], p[2]) for p in values]


def _quantize_block(
    block: List[Color], palettes: Sequence[Palette], caches: List[Dict[Color, Tuple[int, float]]]
) -> Tuple[int, Tile]:
    best_palette = 0
    best_error = float("inf")
    best_indices: List[int] = []
    for palette_index, palette in enumerate(palettes):
        cache = caches[palette_index]
        error = 0.0
        indices = []
        for rgb in block:
            hit = cache.get(rgb)
            if hit is None:
                hit = nearest_palette_index_with_distance(rgb, palette)
                cache[rgb] = hit
            indices.append(hit[0])
            error += hit[1]
        if error < best_error:
            best_error = error
            best_palette = palette_index
            best_indices = indices

    tile = tuple(
        tuple(best_indices[y * TILE_SIZE : (y + 1) * TILE_SIZE]) for y in range(TILE_SIZE)
    )
    return best_palette, tile


def reimport_raster_into_jim(
    existing: NativeDocument, pixels: RasterPixels, width: int, height: int
) -> NativeDocument:
    """Rebuild tiles and map of ``existing`` from a true-colour raster.

    The four existing palettes are kept. For every 8x8 block the palette with
    the smallest summed squared RGB error wins (first palette on ties) and its
    nearest-colour indices become the tile. Priority bits are cleared.
    """

    rgb = _coerce_rgb_pixels(pixels, width, height)
    need_w = existing.map_width * TILE_SIZE
    need_h = existing.map_height * TILE_SIZE
    if width < need_w or height < need_h:
        raise ConversionError(
            f"Image is {width}x{height} but the map needs at least {need_w}x{need_h}"
        )
    if len(existing.palettes) != PALETTE_COUNT or any(
        len(palette) != COLORS_PER_PALETTE for palette in existing.palettes
    ):
        raise ConversionError("The existing document must have exactly 4 palettes of 16 colours")

    palettes = [list(palette) for palette in existing.palettes]
    caches: List[Dict[Color, Tuple[int, float]]] = [{} for _ in palettes]
    arena = TileArena()
    cells: List[List[MapCell]] = []

    for map_y in range(existing.map_height):
        row: List[MapCell] = []
        for map_x in range(existing.map_width):
            block = [
                rgb[(map_y * TILE_SIZE + y) * width + map_x * TILE_SIZE + x]
                for y in range(TILE_SIZE)
                for x in range(TILE_SIZE)
            ]
            palette_index, tile = _quantize_block(block, palettes, caches)
            match = arena.add(tile)
            row.append(
                MapCell(
                    tile_index=match.index,
                    palette_index=palette_index,
                    h_flip=match.h_flip,
                    v_flip=match.v_flip,
                )
            )
        cells.append(row)

    return NativeDocument(
        palettes=palettes,
        tiles=arena.tiles,
        map_width=existing.map_width,
        map_height=existing.map_height,
        cells=cells,
    )


def reimport_image_into_jim(existing: NativeDocument, image: Image.Image) -> NativeDocument:
    image = image.convert("RGB")
    width, height = image.size
    return reimport_raster_into_jim(existing, image.tobytes(), width, height)


def reimport_png_into_jim(existing: NativeDocument, path: str | Path) -> NativeDocument:
    path = Path(path)
    try:
        with Image.open(path) as img:
            return reimport_image_into_jim(existing, img)
    except FileNotFoundError as exc:
        raise ConversionError(f"Input file not found: {path}") from exc
    except OSError as exc:
        raise ConversionError(f"Failed to read image: {path}") from exc


# ---------------------------------------------------------------------------
# JIM -> indexed pixels (export) and RGBA (rendering)
# ---------------------------------------------------------------------------


def cell_pixels(doc: NativeDocument, cell: MapCell) -> List[List[int]]:
    """Return the 8x8 indices a cell displays, with its flips applied."""

    tile = doc.tile_at(cell.tile_index)
    return [
        [
            tile[7 - ty if cell.v_flip else ty][7 - tx if cell.h_flip else tx]
            for tx in range(TILE_SIZE)
        ]
        for ty in range(TILE_SIZE)
    ]


def _tileset_grid(tile_count: int) -> Tuple[int, int]:
    if tile_count == 0:
        return 1, 1
    cols = min(tile_count, TILES_PER_ROW)
    rows = (tile_count + TILES_PER_ROW - 1) // TILES_PER_ROW
    return cols, rows


def build_export_document(
    doc: NativeDocument, options: ExportOptions | None = None
) -> SpriteDocument:
    """Lay out a JIM document as an indexed sprite.

    ``map`` mode draws the map; with ``palette_index`` -1 the four palettes
    are flattened into 64 colours and each pixel is offset by its cell's
    palette, otherwise pixels keep raw 0-15 indices and only the selected
    palette is exported. ``tileset`` mode draws the tile arena 16 per row.
    """

    options = options or ExportOptions()
    if options.mode not in EXPORT_MODES:
        raise ConversionError(f"Unknown export mode: {options.mode}")

    if options.mode == "map":
        width = doc.map_width * TILE_SIZE
        height = doc.map_height * TILE_SIZE
        if width > MAX_DIMENSION or height > MAX_DIMENSION:
            raise ConversionError(
                f"A {doc.map_width}x{doc.map_height} map is {width}x{height} pixels, "
                f"larger than an Aseprite sprite allows (max {MAX_DIMENSION} per side)"
            )
        pixels = bytearray(width * height)
        flatten = options.palette_index < 0
        if flatten:
            palette = [color for p in doc.palettes for color in p]
        else:
            palette = list(doc.palette_at(options.palette_index))

        for map_y in range(doc.map_height):
            for map_x in range(doc.map_width):
                cell = doc.cells[map_y][map_x]
                offset = cell.palette_index * COLORS_PER_PALETTE if flatten else 0
                for ty, line in enumerate(cell_pixels(doc, cell)):
                    base = (map_y * TILE_SIZE + ty) * width + map_x * TILE_SIZE
                    for tx, index in enumerate(line):
                        pixels[base + tx] = (offset + index) & 0xFF
    else:
        cols, rows = _tileset_grid(len(doc.tiles))
        width = cols * TILE_SIZE
        height = rows * TILE_SIZE
        pixels = bytearray(width * height)
        palette = list(doc.palette_at(max(options.palette_index, 0)))

        for i, tile in enumerate(doc.tiles):
            tile_x = (i % TILES_PER_ROW) * TILE_SIZE
            tile_y = (i // TILES_PER_ROW) * TILE_SIZE
            for ty in range(TILE_SIZE):
                base = (tile_y + ty) * width + tile_x
                for tx in range(TILE_SIZE):
                    pixels[base + tx] = tile[ty][tx] & 0xFF

    return SpriteDocument(width=width, height=height, palette=palette, pixels=bytes(pixels))


def export_jim_to_aseprite(doc: NativeDocument, options: ExportOptions | None = None) -> bytes:
    options = options or ExportOptions()
    sprite = build_export_document(doc, options)
    return serialize_aseprite(sprite, transparent_on_zero=options.transparent_on_zero)


def export_jim_file_to_aseprite(path: str | Path, options: ExportOptions | None = None) -> bytes:
    return export_jim_to_aseprite(read_jim(path), options)


def _rgba(palette: Sequence[Color], index: int, transparent: bool) -> Tuple[int, int, int, int]:
    r, g, b = palette[index] if index < len(palette) else (0, 0, 0)
    return (r, g, b, 0 if transparent and index == 0 else 255)


def render_map_image(
    doc: NativeDocument, palette_index: int | None = None, transparent: bool = True
) -> Image.Image:
    """Render the map to RGBA. ``palette_index`` >= 0 overrides every cell's palette."""

    width = doc.map_width * TILE_SIZE
    height = doc.map_height * TILE_SIZE
    data = [(0, 0, 0, 0)] * (width * height)

    for map_y in range(doc.map_height):
        for map_x in range(doc.map_width):
            cell = doc.cells[map_y][map_x]
            if palette_index is not None and palette_index >= 0:
                palette = doc.palette_at(palette_index)
            else:
                palette = doc.palette_at(cell.palette_index)
            for ty, line in enumerate(cell_pixels(doc, cell)):
                base = (map_y * TILE_SIZE + ty) * width + map_x * TILE_SIZE
                for tx, index in enumerate(line):
                    data[base + tx] = _rgba(palette, index, transparent)

    image = Image.new("RGBA", (width, height))
    image.putdata(data)
    return image


def render_tileset_image(
    doc: NativeDocument, palette_index: int = 0, spacing: int = 0, transparent: bool = True
) -> Image.Image:
    count = len(doc.tiles)
    cols = count if count < TILES_PER_ROW else TILES_PER_ROW
    rows = (count + TILES_PER_ROW - 1) // TILES_PER_ROW
    width = max(1, cols * TILE_SIZE + max(cols - 1, 0) * spacing)
    height = max(1, rows * TILE_SIZE + max(rows - 1, 0) * spacing)

    palette = doc.palette_at(palette_index)
    data = [(0, 0, 0, 0)] * (width * height)
    for i, tile in enumerate(doc.tiles):
        tile_x = (i % TILES_PER_ROW) * (TILE_SIZE + spacing)
        tile_y = (i // TILES_PER_ROW) * (TILE_SIZE + spacing)
        for ty in range(TILE_SIZE):
            base = (tile_y + ty) * width + tile_x
            for tx in range(TILE_SIZE):
                data[base + tx] = _rgba(palette, tile[ty][tx], transparent)

    image = Image.new("RGBA", (width, height))
    image.putdata(data)
    return image


def render_palettes_image(doc: NativeDocument, swatch_size: int = 16) -> Image.Image:
    """Draw the four palettes as rows of 16 swatches."""

    image = Image.new(
        "RGB", (COLORS_PER_PALETTE * swatch_size, PALETTE_COUNT * swatch_size), PALETTE_BACKGROUND
    )
    draw = ImageDraw.Draw(image)
    for p_idx, palette in enumerate(doc.palettes):
        for c_idx, color in enumerate(palette):
            left = c_idx * swatch_size
            top = p_idx * swatch_size
            draw.rectangle(
                (left, top, left + swatch_size - 1, top + swatch_size - 1), fill=tuple(color)
            )
    return image


def export_jim_file_to_png(
    path: str | Path, palette_index: int | None = None, transparent: bool = True
) -> Image.Image:
    return render_map_image(read_jim(path), palette_index=palette_index, transparent=transparent)
