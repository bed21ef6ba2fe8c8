#!/usr/bin/env python3

"""
tmx2lua - Convert Tiled maps (.tmx) to Lua tables

Usage:
    python -m tmx_lua <map.tmx> [output.lua] [options]

Examples:
    python -m tmx_lua levels/level1.tmx
    python -m tmx_lua levels/level1.tmx build/level1.lua --format tiled
    python -m tmx_lua world.tmx --polygon-format pairs --layer-images all
"""

import argparse
import logging
import sys
from pathlib import Path

from . import __version__
from .errors import ExportError, TmxLoadError
from .export import FILE_EXTENSION, supports_file, write_lua_map
from .lua.options import DataFormat, ExportOptions, LayerImages, PolygonFormat
from .tmx_loader import load_map


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tmx2lua",
        description="Convert a Tiled map (.tmx) into a Lua table",
    )
    parser.add_argument("input", type=Path, help="TMX map to convert")
    parser.add_argument("output", type=Path, nargs="?",
                        help="Destination (default: input with .lua extension)")
    parser.add_argument("--format", dest="data_format",
                        choices=[f.value for f in DataFormat],
                        default=DataFormat.MOAI.value,
                        help="Output layout (default: moai)")
    parser.add_argument("--polygon-format",
                        choices=[f.value for f in PolygonFormat],
                        default=PolygonFormat.SEQUENCE.value,
                        help="How polygon points are written (default: sequence)")
    parser.add_argument("--nested-offset", action="store_true",
                        help="Write the tile offset as a tileoffset table")
    parser.add_argument("--layer-images",
                        choices=[m.value for m in LayerImages],
                        default=LayerImages.FIRST.value,
                        help="Tileset images listed per tile layer (default: first)")
    parser.add_argument("--no-special-tiles", action="store_true",
                        help="Do not write the specialtiles lookup tables")
    parser.add_argument("--tiled-version", default=None,
                        help="Value written as tiledversion")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Show debug messages")
    return parser


def options_from_args(args: argparse.Namespace) -> ExportOptions:
    options = ExportOptions(
        data_format=DataFormat(args.data_format),
        polygon_format=PolygonFormat(args.polygon_format),
        flatten_tile_offset=not args.nested_offset,
        layer_images=LayerImages(args.layer_images),
        special_tiles=not args.no_special_tiles,
    )
    if args.tiled_version:
        options.tiled_version = args.tiled_version
    return options


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(levelname)s - %(name)s - %(message)s'
    )

    source_path = args.input
    if not source_path.exists():
        print(f"Error: File '{source_path}' not found")
        return 1

    output_path = args.output or source_path.with_suffix(FILE_EXTENSION)
    if not supports_file(output_path):
        logging.getLogger(__name__).warning(
            "Output file '%s' does not have the %s extension", output_path, FILE_EXTENSION)

    try:
        tiled_map = load_map(source_path)
        write_lua_map(tiled_map, output_path, options_from_args(args))
    except (TmxLoadError, ExportError) as e:
        print(f"Error: {e}")
        return 1

    print(f"Wrote {output_path} (tmx2lua {__version__})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
