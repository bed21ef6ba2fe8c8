"""
Depth-first walk of a TiledMap, written through a LuaTableWriter.

=============================================================================
TRAVERSAL ORDER
=============================================================================

    return {
      version / luaversion / tiledversion
      orientation, width, height, cell size, nextobjectid
      [hexsidelength] [staggeraxis, staggerindex] [backgroundcolor]
      properties
      tilesets      -> terrains, tiles (only the interesting ones)
      layers        -> tile layers (data rows), object groups (objects),
                       image layers
    }

Every tileset is registered with a fresh GidMapper before anything that
may reference a tile is written. The mapper and the writer are created per
call to serialize() and handed down explicitly, so one MapSerializer can be
used for several maps, even from several threads.

=============================================================================
DIALECTS
=============================================================================

See tmx_lua.lua.options. The MOAI format (default) keys tilesets by image
file name and layers by layer name, and writes tile layer ids relative to
the layer's tileset. The TILED format writes everything positionally with
map-wide GIDs.

The object group embedded in a tile is written under the bare key
objectGroup in both formats. Older exporters keyed it by the group name in
the MOAI format, a key that is empty for most tile collision groups.
=============================================================================
"""

import logging
import os
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Set, TextIO, Tuple

from ..model import (
    ImageLayer, LayerType, MapObject, ObjectGroup, ObjectShape,
    Orientation, Properties, StaggerAxis, StaggerIndex, Tile, TileLayer,
    TiledMap, Tileset,
)
from .gid_mapper import GidMapper
from .options import ExportOptions, LayerImages, PolygonFormat
from .table_writer import LuaTableWriter

logger = logging.getLogger(__name__)

FORMAT_VERSION = "1.1"
LUA_VERSION = "5.1"

Points = Sequence[Tuple[float, float]]


def include_tile(tile: Tile) -> bool:
    """Only tiles carrying extra information are written out."""
    if tile.properties:
        return True
    if tile.image_source:
        return True
    if tile.object_group is not None:
        return True
    if tile.is_animated:
        return True
    if tile.has_terrain:
        return True
    if tile.probability is not None:
        return True
    return False


# =============================================================================
# POLYGON FORMATS
# =============================================================================

def write_polygon_sequence(writer: LuaTableWriter, key: str, points: Points):
    writer.write_start_table(key)
    writer.set_suppress_newlines(True)
    for x, y in points:
        writer.write_value(int(x))
        writer.write_value(int(y))
    writer.write_end_table()
    writer.set_suppress_newlines(False)


def write_polygon_full(writer: LuaTableWriter, key: str, points: Points):
    writer.write_start_table(key)
    for x, y in points:
        writer.write_start_table()
        writer.set_suppress_newlines(True)
        writer.write_key_and_value("x", x)
        writer.write_key_and_value("y", y)
        writer.write_end_table()
        writer.set_suppress_newlines(False)
    writer.write_end_table()


def write_polygon_pairs(writer: LuaTableWriter, key: str, points: Points):
    writer.write_start_table(key)
    for x, y in points:
        writer.write_start_table()
        writer.set_suppress_newlines(True)
        writer.write_value(x)
        writer.write_value(y)
        writer.write_end_table()
        writer.set_suppress_newlines(False)
    writer.write_end_table()


def write_polygon_optimal(writer: LuaTableWriter, key: str, points: Points):
    writer.write_start_table(key)
    for axis in (0, 1):
        writer.write_start_table("xy"[axis])
        writer.set_suppress_newlines(True)
        for point in points:
            writer.write_value(point[axis])
        writer.write_end_table()
        writer.set_suppress_newlines(False)
    writer.write_end_table()


POLYGON_WRITERS: Dict[PolygonFormat, Callable[[LuaTableWriter, str, Points], None]] = {
    PolygonFormat.SEQUENCE: write_polygon_sequence,
    PolygonFormat.FULL: write_polygon_full,
    PolygonFormat.PAIRS: write_polygon_pairs,
    PolygonFormat.OPTIMAL: write_polygon_optimal,
}


# =============================================================================
# SERIALIZER
# =============================================================================

class MapSerializer:
    """
    Writes a TiledMap as a Lua table.

    Parameters:
    -----------
    map_dir : str or Path
        Directory of the output file; every file reference is written
        relative to it
    options : ExportOptions, optional
        Output dialect (defaults to the MOAI format)
    """

    def __init__(self, map_dir, options: Optional[ExportOptions] = None):
        self.map_dir = str(map_dir)
        self.options = options or ExportOptions()
        self._layer_writers = {
            LayerType.TILE: self._write_tile_layer,
            LayerType.OBJECT: self._write_object_group,
            LayerType.IMAGE: self._write_image_layer,
        }

    def serialize(self, tiled_map: TiledMap, device: TextIO):
        writer = LuaTableWriter(device)
        gid_mapper = GidMapper()

        writer.write_start_document()
        self._write_map(writer, gid_mapper, tiled_map)
        writer.write_end_document()

    # -----------------------------------------------------------------
    # PATHS
    # -----------------------------------------------------------------

    def relative_path(self, path: str) -> str:
        """
        Path relative to the output directory, with forward slashes.

        os.path.relpath() fails for paths on another drive (Windows); the
        absolute path is written instead.
        """
        if not path:
            return ""
        try:
            relative = os.path.relpath(path, self.map_dir)
        except ValueError:
            logger.debug("No relative path from %s to %s, writing it as is",
                         self.map_dir, path)
            return Path(os.path.abspath(path)).as_posix()
        return relative.replace(os.sep, "/")

    def image_file_name(self, path: str) -> str:
        return self.relative_path(path).split("/")[-1]

    # -----------------------------------------------------------------
    # MAP
    # -----------------------------------------------------------------

    def _write_map(self, writer: LuaTableWriter, gid_mapper: GidMapper,
                   tiled_map: TiledMap):
        options = self.options
        writer.write_start_table()

        writer.write_key_and_value("version", FORMAT_VERSION)
        writer.write_key_and_value("luaversion", LUA_VERSION)
        writer.write_key_and_value("tiledversion", options.tiled_version)

        orientation = Orientation(tiled_map.orientation)
        writer.write_key_and_value("orientation", orientation.value)
        writer.write_key_and_value("width", tiled_map.width)
        writer.write_key_and_value("height", tiled_map.height)
        if options.moai:
            writer.write_key_and_value("cellwidth", tiled_map.tile_width)
            writer.write_key_and_value("cellheight", tiled_map.tile_height)
        else:
            writer.write_key_and_value("tilewidth", tiled_map.tile_width)
            writer.write_key_and_value("tileheight", tiled_map.tile_height)
        writer.write_key_and_value("nextobjectid", tiled_map.next_object_id)

        if orientation == Orientation.HEXAGONAL:
            writer.write_key_and_value("hexsidelength", tiled_map.hex_side_length)

        if orientation in (Orientation.STAGGERED, Orientation.HEXAGONAL):
            writer.write_key_and_value("staggeraxis", StaggerAxis(tiled_map.stagger_axis).value)
            writer.write_key_and_value("staggerindex",
                                       StaggerIndex(tiled_map.stagger_index).value)

        if tiled_map.background_color is not None:
            # Example: backgroundcolor = { 255, 200, 100, }
            writer.write_color("backgroundcolor", tiled_map.background_color)

        self._write_properties(writer, tiled_map.properties)

        # Register first: tile objects inside tilesets may reference any of them
        first_gids: List[int] = []
        first_gid = 1
        for tileset in tiled_map.tilesets:
            gid_mapper.register(tileset, first_gid)
            first_gids.append(first_gid)
            first_gid += tileset.tile_count

        writer.write_start_table("tilesets")
        self._check_unique_keys(
            "tileset",
            [self.image_file_name(t.image_source) for t in tiled_map.tilesets if t.image_source],
        )
        for tileset, tileset_first_gid in zip(tiled_map.tilesets, first_gids):
            self._write_tileset(writer, gid_mapper, tileset, tileset_first_gid)
        writer.write_end_table()

        writer.write_start_table("layers")
        self._check_unique_keys("layer", [layer.name for layer in tiled_map.layers])
        for prio, layer in enumerate(tiled_map.layers, start=1):
            self._layer_writers[LayerType(layer.layer_type)](writer, gid_mapper, layer, prio)
        writer.write_end_table()

        writer.write_end_table()

    def _check_unique_keys(self, kind: str, keys: List[str]):
        # MOAI keyed tables silently keep only the last entry of a name
        if not self.options.moai:
            return
        seen: Set[str] = set()
        for key in keys:
            if key in seen:
                logger.warning("Duplicate %s key %r, only the last one will be "
                               "visible when loading the Lua file", kind, key)
            seen.add(key)

    def _write_properties(self, writer: LuaTableWriter, properties: Properties):
        writer.write_start_table("properties")
        for name, prop in properties.items():
            writer.write_quoted_key_and_value(name, prop.value)
        writer.write_end_table()

    # -----------------------------------------------------------------
    # TILESETS
    # -----------------------------------------------------------------

    def _write_tileset(self, writer: LuaTableWriter, gid_mapper: GidMapper,
                       tileset: Tileset, first_gid: int):
        moai = self.options.moai
        image_source = tileset.image_source

        if moai and image_source:
            writer.write_quoted_start_table(self.image_file_name(image_source))
        else:
            writer.write_start_table()
        writer.write_key_and_value("name", tileset.name)
        if not moai:
            writer.write_key_and_value("firstgid", first_gid)

        if tileset.file_name:
            writer.write_key_and_value("filename", self.relative_path(tileset.file_name))

        # Everything is written even for external tilesets, since the
        # external file is a .tsx (XML) file.
        writer.write_key_and_value("tilewidth", tileset.tile_width)
        writer.write_key_and_value("tileheight", tileset.tile_height)
        writer.write_key_and_value("spacing", tileset.spacing)
        writer.write_key_and_value("margin", tileset.margin)

        if image_source:
            if not moai:
                writer.write_key_and_value("image", self.relative_path(image_source))
            writer.write_key_and_value("imagewidth", tileset.image_width)
            writer.write_key_and_value("imageheight", tileset.image_height)
            if moai:
                writer.write_key_and_value(
                    "deckwidth", _deck_size(tileset.image_width, tileset.tile_width))
                writer.write_key_and_value(
                    "deckheight", _deck_size(tileset.image_height, tileset.tile_height))

        if tileset.transparent_color is not None:
            writer.write_key_and_value("transparentcolor", tileset.transparent_color.name())

        offset_x, offset_y = tileset.tile_offset
        if self.options.flatten_tile_offset:
            writer.write_key_and_value("xoffset", offset_x)
            writer.write_key_and_value("yoffset", offset_y)
        else:
            writer.write_start_table("tileoffset")
            writer.write_key_and_value("x", offset_x)
            writer.write_key_and_value("y", offset_y)
            writer.write_end_table()

        self._write_properties(writer, tileset.properties)

        writer.write_start_table("terrains")
        for terrain in tileset.terrains:
            writer.write_start_table()
            writer.write_key_and_value("name", terrain.name)
            writer.write_key_and_value("tile", terrain.tile_id)
            self._write_properties(writer, terrain.properties)
            writer.write_end_table()
        writer.write_end_table()

        writer.write_start_table("tiles")
        for index, tile in enumerate(tileset.tiles):
            # For brevity only write tiles with interesting properties
            if include_tile(tile):
                self._write_tile(writer, gid_mapper, tile, index)
        writer.write_end_table()

        writer.write_end_table()

    def _write_tile(self, writer: LuaTableWriter, gid_mapper: GidMapper,
                    tile: Tile, index: int):
        if self.options.moai:
            writer.write_quoted_start_table(f"id = {index + 1}")
        else:
            writer.write_start_table()
            writer.write_key_and_value("id", index)

        if tile.properties:
            self._write_properties(writer, tile.properties)

        if tile.image_source:
            writer.write_key_and_value("image", self.relative_path(tile.image_source))
            if tile.image.has_size:
                writer.write_key_and_value("width", tile.image.width)
                writer.write_key_and_value("height", tile.image.height)

        if tile.has_terrain:
            writer.write_start_table("terrain")
            writer.set_suppress_newlines(True)
            for corner in range(4):
                writer.write_value(tile.corner_terrain_id(corner))
            writer.write_end_table()
            writer.set_suppress_newlines(False)

        if tile.probability is not None:
            writer.write_key_and_value("probability", tile.probability)

        if tile.object_group is not None:
            self._write_object_group(writer, gid_mapper, tile.object_group, 0,
                                     key="objectGroup")

        if tile.is_animated:
            writer.write_start_table("animation")
            for frame in tile.frames:
                writer.write_start_table()
                # Strings, as in the files read by existing MOAI loaders
                writer.write_key_and_value("tileid", str(frame.tile_id))
                writer.write_key_and_value("duration", str(frame.duration))
                writer.write_end_table()
            writer.write_end_table()

        writer.write_end_table()

    # -----------------------------------------------------------------
    # LAYERS
    # -----------------------------------------------------------------

    def _start_layer(self, writer: LuaTableWriter, name: str, prio: int,
                     key: Optional[str] = None):
        """Open a layer table: keyed by name (MOAI) or positional with a name."""
        if self.options.moai:
            if key is None:
                writer.write_quoted_start_table(name)
            else:
                writer.write_start_table(key)
            if prio:
                writer.write_key_and_value("prio", prio)
        else:
            writer.write_start_table(key)
            writer.write_key_and_value("name", name)

    def _write_tile_layer(self, writer: LuaTableWriter, gid_mapper: GidMapper,
                          layer: TileLayer, prio: int):
        moai = self.options.moai
        self._start_layer(writer, layer.name, prio)
        writer.write_key_and_value("type", LayerType.TILE.value)

        if moai:
            self._write_layer_images(writer, gid_mapper, layer)

        writer.write_key_and_value("x", layer.x)
        writer.write_key_and_value("y", layer.y)
        writer.write_key_and_value("width", layer.width)
        writer.write_key_and_value("height", layer.height)
        writer.write_key_and_value("visible", layer.visible)
        writer.write_key_and_value("opacity", layer.opacity)
        self._write_properties(writer, layer.properties)

        writer.write_key_and_value("encoding", "lua")

        if moai and self.options.special_tiles:
            self._write_special_tiles(writer, gid_mapper, layer)

        writer.write_start_table("data")
        if moai:
            # One table per row: { row, id, id, ... }
            for y in range(layer.height):
                writer.prepare_new_line()
                writer.set_suppress_newlines(True)
                writer.write_start_table()
                writer.write_value(y + 1)
                for x in range(layer.width):
                    writer.write_value(gid_mapper.cell_to_gid_origin(layer.cell_at(x, y)))
                writer.write_end_table()
                writer.set_suppress_newlines(False)
        else:
            writer.set_suppress_newlines(True)
            for y in range(layer.height):
                writer.prepare_new_line()
                for x in range(layer.width):
                    writer.write_value(gid_mapper.cell_to_gid(layer.cell_at(x, y)))
            writer.set_suppress_newlines(False)
        writer.write_end_table()

        writer.write_end_table()

    def _write_layer_images(self, writer: LuaTableWriter, gid_mapper: GidMapper,
                            layer: TileLayer):
        used = {id(tileset) for tileset in layer.used_tilesets()}
        used_tilesets = [t for t in gid_mapper.tilesets() if id(t) in used]

        mode = self.options.layer_images
        if mode == LayerImages.FIRST:
            if len(used_tilesets) == 1 and used_tilesets[0].image_source:
                writer.write_key_and_value(
                    "image", self.image_file_name(used_tilesets[0].image_source))
        elif mode == LayerImages.ALL:
            writer.write_start_table("images")
            for tileset in used_tilesets:
                if tileset.image_source:
                    writer.write_value(self.image_file_name(tileset.image_source))
            writer.write_end_table()

    def _write_special_tiles(self, writer: LuaTableWriter, gid_mapper: GidMapper,
                             layer: TileLayer):
        """
        Sparse lookup of the cells whose tile has properties.

        Keys are "y = R, x = C" (1-based), in row-major order. The same ids
        are in the data table; this only saves a scan at load time.
        """
        started = False
        for y in range(layer.height):
            for x in range(layer.width):
                cell = layer.cell_at(x, y)
                tile = cell.tile
                if tile is None or not tile.properties:
                    continue
                if not started:
                    writer.write_start_table("specialtiles")
                    started = True
                writer.write_quoted_start_table(f"y = {y + 1}, x = {x + 1}")
                writer.write_key_and_value("id", gid_mapper.cell_to_gid_origin(cell))
                writer.write_end_table()
        if started:
            writer.write_end_table()

    def _write_object_group(self, writer: LuaTableWriter, gid_mapper: GidMapper,
                            group: ObjectGroup, prio: int, key: Optional[str] = None):
        self._start_layer(writer, group.name, prio, key)
        writer.write_key_and_value("type", LayerType.OBJECT.value)
        writer.write_key_and_value("visible", group.visible)
        writer.write_key_and_value("opacity", group.opacity)
        self._write_properties(writer, group.properties)

        writer.write_start_table("objects")
        for map_object in group.objects:
            self._write_map_object(writer, gid_mapper, map_object)
        writer.write_end_table()

        writer.write_end_table()

    def _write_image_layer(self, writer: LuaTableWriter, gid_mapper: GidMapper,
                           layer: ImageLayer, prio: int):
        self._start_layer(writer, layer.name, prio)
        writer.write_key_and_value("type", LayerType.IMAGE.value)
        writer.write_key_and_value("x", layer.x)
        writer.write_key_and_value("y", layer.y)
        writer.write_key_and_value("visible", layer.visible)
        writer.write_key_and_value("opacity", layer.opacity)
        writer.write_key_and_value("image", self.relative_path(layer.image_source))

        if layer.transparent_color is not None:
            writer.write_key_and_value("transparentcolor", layer.transparent_color.name())

        self._write_properties(writer, layer.properties)

        writer.write_end_table()

    # -----------------------------------------------------------------
    # OBJECTS
    # -----------------------------------------------------------------

    def _write_map_object(self, writer: LuaTableWriter, gid_mapper: GidMapper,
                          map_object: MapObject):
        writer.write_start_table()
        if not self.options.moai:
            writer.write_key_and_value("id", map_object.id)
        writer.write_key_and_value("name", map_object.name)
        writer.write_key_and_value("type", map_object.type)
        writer.write_key_and_value("shape", ObjectShape(map_object.shape).value)

        writer.write_key_and_value("x", map_object.x)
        writer.write_key_and_value("y", map_object.y)
        writer.write_key_and_value("width", map_object.width)
        writer.write_key_and_value("height", map_object.height)
        writer.write_key_and_value("rotation", map_object.rotation)

        if not map_object.cell.is_empty:
            writer.write_key_and_value("gid", gid_mapper.cell_to_gid(map_object.cell))

        writer.write_key_and_value("visible", map_object.visible)

        self._write_properties(writer, map_object.properties)

        if map_object.polygon:
            key = "polygon" if map_object.shape == ObjectShape.POLYGON else "polyline"
            POLYGON_WRITERS[self.options.polygon_format](writer, key, map_object.polygon)

        writer.write_end_table()


def _deck_size(image_size: int, tile_size: int) -> int:
    return image_size // tile_size if tile_size else 0
