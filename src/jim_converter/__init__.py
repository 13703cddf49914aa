"""Convert between JIM tile/map binaries and Aseprite sprite documents.

This package parses and writes the Mega Drive style JIM container (4bpp tile
atlas, four 9-bit palettes and a cell map) and 8bpp Aseprite files, and
converts between them with flip-aware tile deduplication. It can be invoked
through the CLI (``python -m jim_converter``) or imported.
"""

from .aseprite import SpriteDocument, parse_aseprite, read_aseprite, serialize_aseprite
from .color import (
    Color,
    decode_hardware_color,
    encode_hardware_color,
    nearest_palette_index,
    snap_to_hardware,
)
from .converter import (
    ConvertOptions,
    ExportOptions,
    build_export_document,
    convert_aseprite_file_to_jim,
    convert_aseprite_to_jim,
    export_jim_file_to_aseprite,
    export_jim_file_to_png,
    export_jim_to_aseprite,
    reimport_image_into_jim,
    reimport_png_into_jim,
    reimport_raster_into_jim,
    render_map_image,
    render_palettes_image,
    render_tileset_image,
)
from .errors import (
    CelDecompressionWarning,
    ConversionError,
    ImplausibleStructureError,
    InvalidMagicError,
    JimConverterError,
    JimConverterWarning,
    PixelLossWarning,
    StructuralParseError,
    TileIndexOverflowError,
    TruncatedDataError,
    UnsupportedColorDepthError,
)
from .jim import (
    MapCell,
    NativeDocument,
    generate_metadata,
    metadata_to_json,
    parse_jim,
    read_jim,
    serialize_jim,
    write_jim,
)
from .tiles import (
    BLANK_TILE,
    Tile,
    TileArena,
    TileMatch,
    decode_tile,
    encode_tile,
    flip_variants,
    make_tile,
    tiles_equal,
)

__all__ = [
    "BLANK_TILE",
    "CelDecompressionWarning",
    "Color",
    "ConversionError",
    "ConvertOptions",
    "ExportOptions",
    "ImplausibleStructureError",
    "InvalidMagicError",
    "JimConverterError",
    "JimConverterWarning",
    "MapCell",
    "NativeDocument",
    "PixelLossWarning",
    "SpriteDocument",
    "StructuralParseError",
    "Tile",
    "TileArena",
    "TileIndexOverflowError",
    "TileMatch",
    "TruncatedDataError",
    "UnsupportedColorDepthError",
    "build_export_document",
    "convert_aseprite_file_to_jim",
    "convert_aseprite_to_jim",
    "decode_hardware_color",
    "decode_tile",
    "encode_hardware_color",
    "encode_tile",
    "export_jim_file_to_aseprite",
    "export_jim_file_to_png",
    "export_jim_to_aseprite",
    "flip_variants",
    "generate_metadata",
    "make_tile",
    "metadata_to_json",
    "nearest_palette_index",
    "parse_aseprite",
    "parse_jim",
    "read_aseprite",
    "read_jim",
    "reimport_image_into_jim",
    "reimport_png_into_jim",
    "reimport_raster_into_jim",
    "render_map_image",
    "render_palettes_image",
    "render_tileset_image",
    "serialize_aseprite",
    "serialize_jim",
    "snap_to_hardware",
    "tiles_equal",
    "write_jim",
]
