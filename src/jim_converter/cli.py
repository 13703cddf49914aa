"""Command line interface for the JIM / Aseprite converter."""

from __future__ import annotations

import argparse
import sys
import warnings
from io import BytesIO
from pathlib import Path
from typing import Callable

from .converter import (
    ConvertOptions,
    ExportOptions,
    convert_aseprite_file_to_jim,
    export_jim_file_to_aseprite,
    reimport_png_into_jim,
    render_map_image,
    render_tileset_image,
)
from .errors import ConversionError, JimConverterError
from .jim import metadata_to_json, read_jim, serialize_jim


def resolve_output(input_path: Path, output: str | None, extension: str) -> Path:
    if output:
        return Path(output)
    return input_path.with_suffix(extension)


def write_output(target: Path, force: bool, produce: Callable[[], bytes]) -> None:
    if target.exists() and not force:
        raise ConversionError(
            f"Output file already exists (use --force to overwrite):\n{target}"
        )
    data = produce()
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)
    print(f"wrote {target}")


def palette_selector(text: str) -> int:
    value = int(text)
    if not -1 <= value <= 3:
        raise argparse.ArgumentTypeError("palette must be between -1 and 3")
    return value


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-o",
        "--output",
        help="Destination file (defaults to the input name with a new extension)",
    )
    parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Overwrite existing files without prompting",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=(
            "Convert between JIM tile/map binaries and 8bpp Aseprite documents.\n"
            "JIM palettes hold 4 x 16 colours with 3 bits per channel; colours coming from "
            "Aseprite are snapped down to those levels and 8x8 tiles are deduplicated, "
            "including flipped copies."
        ),
        formatter_class=argparse.RawTextHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    to_ase = sub.add_parser("to-aseprite", help="Export a .jim file as .aseprite")
    to_ase.add_argument("input", help="Source .jim file")
    to_ase.add_argument(
        "--mode",
        choices=["map", "tileset"],
        default="map",
        help="Export the assembled map or the raw tile set",
    )
    to_ase.add_argument(
        "--palette",
        type=palette_selector,
        default=-1,
        help="Palette 0-3, or -1 to keep all four palettes as 64 colours (map mode)",
    )
    to_ase.add_argument(
        "--opaque",
        action="store_true",
        help="Do not mark colour 0 of each palette as transparent",
    )
    _add_common(to_ase)

    to_jim = sub.add_parser("to-jim", help="Convert an 8bpp .aseprite file to .jim")
    to_jim.add_argument("input", help="Source .aseprite/.ase file")
    to_jim.add_argument(
        "--no-dedup",
        action="store_true",
        help="Store every 8x8 block as its own tile",
    )
    to_jim.add_argument(
        "--report-loss",
        action="store_true",
        help="Warn about pixels dropped because they use another palette than their block",
    )
    _add_common(to_jim)

    to_png = sub.add_parser("to-png", help="Render a .jim file to PNG")
    to_png.add_argument("input", help="Source .jim file")
    to_png.add_argument(
        "--palette",
        type=palette_selector,
        default=-1,
        help="Force palette 0-3 for every cell, or -1 to use each cell's palette",
    )
    to_png.add_argument("--tileset", action="store_true", help="Render the tile set instead of the map")
    to_png.add_argument("--spacing", type=int, default=0, help="Gap between tiles in tileset mode")
    to_png.add_argument("--opaque", action="store_true", help="Draw colour 0 opaque")
    _add_common(to_png)

    reimport = sub.add_parser(
        "reimport",
        help="Rebuild tiles and map of a .jim file from an edited image, keeping its palettes",
    )
    reimport.add_argument(
        "input", help="Source .jim file providing the palettes (output defaults to <name>.reimport.jim)"
    )
    reimport.add_argument("image", help="Edited PNG (at least map width x 8 by map height x 8)")
    _add_common(reimport)

    metadata = sub.add_parser("metadata", help="Dump map, tile and palette info as JSON")
    metadata.add_argument("input", help="Source .jim file")
    _add_common(metadata)

    return parser


def run(args: argparse.Namespace) -> None:
    source = Path(args.input)

    if args.command == "to-aseprite":
        options = ExportOptions(
            mode=args.mode,
            palette_index=args.palette,
            transparent_on_zero=not args.opaque,
        )
        target = resolve_output(source, args.output, ".aseprite")
        write_output(target, args.force, lambda: export_jim_file_to_aseprite(source, options))
    elif args.command == "to-jim":
        options = ConvertOptions(deduplicate=not args.no_dedup, report_pixel_loss=args.report_loss)
        target = resolve_output(source, args.output, ".jim")
        write_output(target, args.force, lambda: convert_aseprite_file_to_jim(source, options))
    elif args.command == "to-png":
        target = resolve_output(source, args.output, ".png")

        def produce_png() -> bytes:
            doc = read_jim(source)
            if args.tileset:
                image = render_tileset_image(
                    doc, max(args.palette, 0), spacing=args.spacing, transparent=not args.opaque
                )
            else:
                image = render_map_image(doc, args.palette, transparent=not args.opaque)
            buffer = BytesIO()
            image.save(buffer, format="PNG")
            return buffer.getvalue()

        write_output(target, args.force, produce_png)
    elif args.command == "reimport":
        target = resolve_output(source, args.output, ".reimport.jim")
        write_output(
            target,
            args.force,
            lambda: serialize_jim(reimport_png_into_jim(read_jim(source), args.image)),
        )
    elif args.command == "metadata":
        target = resolve_output(source, args.output, ".json")
        write_output(target, args.force, lambda: metadata_to_json(read_jim(source)).encode("utf-8"))
    else:  # pragma: no cover
        raise ConversionError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            run(args)
        for warning in caught:
            print(f"Warning: {warning.message}")
        return 0
    except JimConverterError as exc:
        print(exc, file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
