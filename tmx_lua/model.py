"""
In-memory model of a Tiled map, as consumed by the Lua exporter.

=============================================================================
OBJECT GRAPH
=============================================================================

    TiledMap
    ├── properties
    ├── tilesets[]          (Tileset)
    │   ├── tiles[]         (Tile: properties, image, terrain, animation,
    │   │                    embedded ObjectGroup)
    │   └── terrains[]      (Terrain)
    └── layers[]            (TileLayer | ObjectGroup | ImageLayer)
        ├── TileLayer.cells[]       (Cell -> Tileset + local tile id)
        └── ObjectGroup.objects[]   (MapObject, optionally with a Cell)

Unlike the TMX file itself, tile layers do not store Global IDs. Each Cell
points directly at its Tileset and the local tile index inside it. GIDs are
only computed when the map is written out (see tmx_lua.lua.gid_mapper).

=============================================================================
PATHS
=============================================================================

Every file reference (tileset image, external tileset file, tile image,
image layer image) is stored as an absolute path, or a path relative to the
current working directory. The exporter rewrites them relative to the
directory of the output file.

=============================================================================
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


# =============================================================================
# ENUMERATIONS
# =============================================================================

class Orientation(str, Enum):
    ORTHOGONAL = "orthogonal"
    ISOMETRIC = "isometric"
    STAGGERED = "staggered"
    HEXAGONAL = "hexagonal"


class StaggerAxis(str, Enum):
    X = "x"
    Y = "y"


class StaggerIndex(str, Enum):
    ODD = "odd"
    EVEN = "even"


class LayerType(str, Enum):
    """Discriminator stored on every layer; values are the Lua type names."""
    TILE = "tilelayer"
    OBJECT = "objectgroup"
    IMAGE = "imagelayer"


class ObjectShape(str, Enum):
    RECTANGLE = "rectangle"
    POLYGON = "polygon"
    POLYLINE = "polyline"
    ELLIPSE = "ellipse"


# =============================================================================
# COLOR
# =============================================================================

@dataclass(frozen=True)
class Color:
    """
    RGBA color with 8-bit channels.

    Tiled writes colors as "#RRGGBB" or "#AARRGGBB" (alpha first). Both
    forms, with or without the leading '#', are accepted by from_hex().
    """
    red: int
    green: int
    blue: int
    alpha: int = 255

    @classmethod
    def from_hex(cls, text: str) -> 'Color':
        value = text.strip().lstrip('#')
        if len(value) == 6:
            return cls(int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16))
        if len(value) == 8:
            return cls(int(value[2:4], 16), int(value[4:6], 16),
                       int(value[6:8], 16), int(value[0:2], 16))
        raise ValueError(f"Invalid color: {text!r}")

    def name(self, include_alpha: bool = False) -> str:
        """Hex name, "#rrggbb" or "#aarrggbb" when include_alpha is set."""
        if include_alpha:
            return f"#{self.alpha:02x}{self.red:02x}{self.green:02x}{self.blue:02x}"
        return f"#{self.red:02x}{self.green:02x}{self.blue:02x}"


# =============================================================================
# PROPERTY CLASS
# =============================================================================

@dataclass
class Property:
    """
    Custom property attached to a map, tileset, tile, terrain, layer or
    object.

    ==========================================================================
    SUPPORTED TYPES
    ==========================================================================

    - string: Text value (default)
    - int:    Integer number
    - float:  Decimal number
    - bool:   True/False
    - color:  Color instance
    - file:   File path (kept as written in the source file)
    - object: Reference to another object by ID (int)

    The value is stored already converted to the matching Python type, so
    the exporter can format it without looking at the type name.
    ==========================================================================
    """
    name: str                    # Property name (key)
    type: str = "string"         # Value type
    value: Any = ""              # The actual value


Properties = Dict[str, Property]


def make_properties(**values: Any) -> Properties:
    """
    Build a property dict from keyword arguments, inferring each type.

    Example:
        make_properties(solid=True, damage=10, label="spikes")
    """
    properties: Properties = {}
    for name, value in values.items():
        if isinstance(value, bool):
            prop_type = "bool"
        elif isinstance(value, int):
            prop_type = "int"
        elif isinstance(value, float):
            prop_type = "float"
        elif isinstance(value, Color):
            prop_type = "color"
        else:
            prop_type = "string"
        properties[name] = Property(name=name, type=prop_type, value=value)
    return properties


# =============================================================================
# IMAGE, FRAME, TERRAIN
# =============================================================================

@dataclass
class Image:
    """Image reference used by tilesets and individual tiles."""
    source: str                          # Path to image file
    width: Optional[int] = None          # Image width (pixels)
    height: Optional[int] = None         # Image height (pixels)

    @property
    def has_size(self) -> bool:
        return bool(self.width) and bool(self.height)


@dataclass
class Frame:
    """One step of a tile animation."""
    tile_id: int                         # Local tile ID within the tileset
    duration: int                        # Milliseconds


@dataclass
class Terrain:
    name: str
    tile_id: int = -1                    # Tile representing the terrain
    properties: Properties = field(default_factory=dict)


# =============================================================================
# TILE CLASS
# =============================================================================

# Corner order used by Tile.terrain
TOP_LEFT, TOP_RIGHT, BOTTOM_LEFT, BOTTOM_RIGHT = range(4)


@dataclass(eq=False)
class Tile:
    """
    Individual tile within a tileset.

    ==========================================================================
    TERRAIN
    ==========================================================================

    terrain is either None (no terrain information at all) or a 4-tuple
    with the terrain index of each corner:

        (top-left, top-right, bottom-left, bottom-right)

    A corner without terrain is -1. A tuple made only of -1 values counts
    as unset too.

    probability is None unless the tile overrides the default terrain
    probability.
    ==========================================================================
    """
    id: int                                          # Local tile ID (within tileset)
    properties: Properties = field(default_factory=dict)
    image: Optional[Image] = None                    # Image (for collection tilesets)
    object_group: Optional['ObjectGroup'] = None     # Collision shapes
    terrain: Optional[Tuple[int, int, int, int]] = None
    probability: Optional[float] = None
    frames: List[Frame] = field(default_factory=list)

    @property
    def image_source(self) -> str:
        return self.image.source if self.image else ""

    @property
    def is_animated(self) -> bool:
        return bool(self.frames)

    @property
    def has_terrain(self) -> bool:
        return self.terrain is not None and any(t != -1 for t in self.terrain)

    def corner_terrain_id(self, corner: int) -> int:
        if self.terrain is None:
            return -1
        return self.terrain[corner]


# =============================================================================
# TILESET CLASS
# =============================================================================

@dataclass(eq=False)
class Tileset:
    """
    Tileset collection - a set of tile graphics.

    A tileset owns a fixed list of tiles; the tile at index i has local id
    i. Once placed in a map, the tileset covers the GID range
    [firstgid, firstgid + tile_count), where firstgid depends on the tile
    counts of the tilesets before it.

    Tilesets compare by identity. Cells and the GID mapper use the tileset
    object itself as a key, so two tilesets with identical attributes are
    still distinct.

    file_name is set for external tilesets (loaded from a .tsx file). The
    exporter always writes the full tileset anyway, since the external file
    is XML.
    """
    name: str                                        # Tileset name
    tile_width: int                                  # Tile width in pixels
    tile_height: int                                 # Tile height in pixels
    spacing: int = 0                                 # Pixels between tiles
    margin: int = 0                                  # Pixels around edge
    file_name: str = ""                              # TSX file path (if external)
    image: Optional[Image] = None                    # Spritesheet image
    tile_offset: Tuple[int, int] = (0, 0)            # Drawing offset (x, y)
    transparent_color: Optional[Color] = None
    tiles: List[Tile] = field(default_factory=list)
    terrains: List[Terrain] = field(default_factory=list)
    properties: Properties = field(default_factory=dict)

    @property
    def tile_count(self) -> int:
        return len(self.tiles)

    @property
    def image_source(self) -> str:
        return self.image.source if self.image else ""

    @property
    def image_width(self) -> int:
        return (self.image.width or 0) if self.image else 0

    @property
    def image_height(self) -> int:
        return (self.image.height or 0) if self.image else 0

    def tile_at(self, tile_id: int) -> Optional[Tile]:
        if 0 <= tile_id < len(self.tiles):
            return self.tiles[tile_id]
        return None


# =============================================================================
# CELL
# =============================================================================

@dataclass
class Cell:
    """
    One grid position of a tile layer (or the tile of a tile object).

    An empty cell has no tileset. Flip flags do not change which tile is
    referenced; the GID mapper encodes them in the high bits of the id.
    """
    tileset: Optional[Tileset] = None
    tile_id: int = -1
    flipped_horizontally: bool = False
    flipped_vertically: bool = False
    flipped_anti_diagonally: bool = False

    @property
    def is_empty(self) -> bool:
        return self.tileset is None

    @property
    def tile(self) -> Optional[Tile]:
        if self.tileset is None:
            return None
        return self.tileset.tile_at(self.tile_id)


# =============================================================================
# LAYERS
# =============================================================================

@dataclass
class Layer:
    """Attributes shared by every layer type."""
    name: str = ""                                   # Layer name
    x: int = 0                                       # Position offset (tiles)
    y: int = 0
    visible: bool = True                             # Is layer rendered?
    opacity: float = 1.0                             # Transparency
    properties: Properties = field(default_factory=dict)


@dataclass
class TileLayer(Layer):
    """
    Tile layer - a grid of cells.

    Cells are stored row-major in a flat list: index = y * width + x.
    Use cell_at(x, y) and set_cell(x, y, cell) rather than indexing directly.
    """
    width: int = 0                                   # Width in tiles
    height: int = 0                                  # Height in tiles
    cells: List[Cell] = field(default_factory=list)
    layer_type: LayerType = field(default=LayerType.TILE, init=False)

    def __post_init__(self):
        if not self.cells:
            self.cells = [Cell() for _ in range(self.width * self.height)]
        elif len(self.cells) != self.width * self.height:
            raise ValueError(
                f"Layer '{self.name}' expects {self.width * self.height} cells, "
                f"got {len(self.cells)}"
            )

    def cell_at(self, x: int, y: int) -> Cell:
        if 0 <= x < self.width and 0 <= y < self.height:
            return self.cells[y * self.width + x]
        return Cell()  # Out of bounds = empty

    def set_cell(self, x: int, y: int, cell: Cell):
        if 0 <= x < self.width and 0 <= y < self.height:
            self.cells[y * self.width + x] = cell

    def used_tilesets(self) -> List[Tileset]:
        """Tilesets referenced by at least one cell, in first-use order."""
        seen: Dict[int, Tileset] = {}
        for cell in self.cells:
            if cell.tileset is not None and id(cell.tileset) not in seen:
                seen[id(cell.tileset)] = cell.tileset
        return list(seen.values())


@dataclass
class MapObject:
    """
    Object in an object group.

    polygon holds the points of polygon and polyline objects, relative to
    the object position. cell is set for tile objects only.
    """
    id: int = 0                                      # Unique object ID
    name: str = ""                                   # Object name
    type: str = ""                                   # Object type/class
    shape: ObjectShape = ObjectShape.RECTANGLE
    x: float = 0                                     # X position
    y: float = 0                                     # Y position
    width: float = 0                                 # Width (0 for points)
    height: float = 0                                # Height (0 for points)
    rotation: float = 0                              # Rotation in degrees
    visible: bool = True                             # Is object visible?
    polygon: List[Tuple[float, float]] = field(default_factory=list)
    cell: Cell = field(default_factory=Cell)
    properties: Properties = field(default_factory=dict)


@dataclass
class ObjectGroup(Layer):
    """Object layer, also used for the collision shapes of a single tile."""
    objects: List[MapObject] = field(default_factory=list)
    layer_type: LayerType = field(default=LayerType.OBJECT, init=False)


@dataclass
class ImageLayer(Layer):
    image_source: str = ""
    transparent_color: Optional[Color] = None
    layer_type: LayerType = field(default=LayerType.IMAGE, init=False)


AnyLayer = Union[TileLayer, ObjectGroup, ImageLayer]


# =============================================================================
# MAP
# =============================================================================

@dataclass
class TiledMap:
    """
    Complete Tiled map - the root of the object graph.

    hex_side_length is only meaningful for hexagonal maps, stagger_axis and
    stagger_index for staggered and hexagonal maps. background_color is
    None when the map has no background color.
    """
    orientation: Orientation = Orientation.ORTHOGONAL
    width: int = 0                                   # Map width in tiles
    height: int = 0                                  # Map height in tiles
    tile_width: int = 0                              # Tile width in pixels
    tile_height: int = 0                             # Tile height in pixels
    hex_side_length: int = 0
    stagger_axis: StaggerAxis = StaggerAxis.Y
    stagger_index: StaggerIndex = StaggerIndex.ODD
    background_color: Optional[Color] = None
    next_object_id: int = 1
    tilesets: List[Tileset] = field(default_factory=list)
    layers: List[AnyLayer] = field(default_factory=list)
    properties: Properties = field(default_factory=dict)

    def get_layer_by_name(self, name: str) -> Optional[AnyLayer]:
        for layer in self.layers:
            if layer.name == name:
                return layer
        return None


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def create_empty_map(width: int, height: int, tile_width: int, tile_height: int,
                     orientation: Orientation = Orientation.ORTHOGONAL) -> TiledMap:
    """Create an empty map ready for adding tilesets and layers."""
    return TiledMap(
        orientation=orientation,
        width=width,
        height=height,
        tile_width=tile_width,
        tile_height=tile_height,
    )


def create_tileset(name: str, tile_width: int, tile_height: int, tile_count: int,
                   image: Optional[Image] = None) -> Tileset:
    """Create a tileset with tile_count plain tiles (ids 0..tile_count-1)."""
    return Tileset(
        name=name,
        tile_width=tile_width,
        tile_height=tile_height,
        image=image,
        tiles=[Tile(id=i) for i in range(tile_count)],
    )


def create_layer(name: str, width: int, height: int) -> TileLayer:
    """Create a tile layer filled with empty cells."""
    return TileLayer(name=name, width=width, height=height)
