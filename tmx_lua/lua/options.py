"""
Output dialects of the Lua exporter.

The defaults describe the MOAI friendly format: tilesets keyed by image
file name, layers keyed by name with a stacking priority, polygons as flat
coordinate sequences and the tile offset flattened into the tileset.
DataFormat.TILED switches to the plain Tiled Lua layout (positional
tilesets and layers carrying a name entry, firstgid, map-wide ids).
"""

from dataclasses import dataclass
from enum import Enum

DEFAULT_TILED_VERSION = "0.11.0"


class DataFormat(str, Enum):
    MOAI = "moai"
    TILED = "tiled"


class PolygonFormat(str, Enum):
    """
    How polygon and polyline points are written.

    SEQUENCE:  { 0, 0, 5, 0, 5, 5, }               (integer truncated)
    FULL:      { { x = 0, y = 0, }, { x = 5, y = 0, }, ... }
    PAIRS:     { { 0, 0, }, { 5, 0, }, ... }
    OPTIMAL:   { x = { 0, 5, 5, }, y = { 0, 0, 5, }, }
    """
    SEQUENCE = "sequence"
    FULL = "full"
    PAIRS = "pairs"
    OPTIMAL = "optimal"


class LayerImages(str, Enum):
    """Which tileset images a tile layer lists (MOAI format only)."""
    FIRST = "first"      # image = "x.png" when the layer uses one tileset
    ALL = "all"          # images = { "x.png", "y.png", }
    NONE = "none"


@dataclass
class ExportOptions:
    data_format: DataFormat = DataFormat.MOAI
    polygon_format: PolygonFormat = PolygonFormat.SEQUENCE
    flatten_tile_offset: bool = True
    layer_images: LayerImages = LayerImages.FIRST
    special_tiles: bool = True
    tiled_version: str = DEFAULT_TILED_VERSION

    @property
    def moai(self) -> bool:
        return self.data_format == DataFormat.MOAI
