"""Lua table output: writer, GID mapping and map traversal"""

from .table_writer import LuaTableWriter
from .gid_mapper import GidMapper
from .options import DataFormat, ExportOptions, LayerImages, PolygonFormat
from .serializer import MapSerializer

__all__ = [
    "LuaTableWriter",
    "GidMapper",
    "DataFormat",
    "ExportOptions",
    "LayerImages",
    "PolygonFormat",
    "MapSerializer",
]
