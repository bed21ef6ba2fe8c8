"""
TMX to Lua exporter

Writes Tiled maps as Lua tables (MOAI friendly or plain Tiled layout).

Requirements:
    pip install numpy pillow
    pip install zstandard      (only for zstd compressed TMX layers)
"""

from .errors import (
    ExportError, GidMapperError, TableWriterError, TmxLoadError, TmxLuaError,
)
from .export import NAME_FILTER, render_lua_map, write_lua_map
from .lua import (
    DataFormat, ExportOptions, GidMapper, LayerImages, LuaTableWriter,
    MapSerializer, PolygonFormat,
)
from .tmx_loader import load_map, load_tileset

__version__ = "1.0.0"
__all__ = [
    "ExportError",
    "GidMapperError",
    "TableWriterError",
    "TmxLoadError",
    "TmxLuaError",
    "NAME_FILTER",
    "render_lua_map",
    "write_lua_map",
    "DataFormat",
    "ExportOptions",
    "GidMapper",
    "LayerImages",
    "LuaTableWriter",
    "MapSerializer",
    "PolygonFormat",
    "load_map",
    "load_tileset",
]
