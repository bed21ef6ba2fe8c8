"""
Reader for TMX maps and TSX tilesets (Tiled Map Format).

=============================================================================
WHAT IS READ
=============================================================================

    <map orientation="orthogonal" width="100" height="100"
         tilewidth="32" tileheight="32" nextobjectid="5">

        <tileset firstgid="1" name="terrain" tilewidth="32" tileheight="32"
                 tilecount="64" columns="8">
            <image source="terrain.png" width="256" height="256"/>
            <tile id="3" terrain="0,0,,1"> ... </tile>
        </tileset>
        <tileset firstgid="65" source="objects.tsx"/>

        <layer name="Ground" width="100" height="100">
            <data encoding="csv">1,2,3,4,5,...</data>
        </layer>

        <objectgroup name="Collisions">
            <object id="1" x="100" y="200" width="32" height="32"/>
            <object id="2" x="0" y="0"><polygon points="0,0 5,0 5,5"/></object>
        </objectgroup>

        <imagelayer name="Sky"><image source="sky.png"/></imagelayer>
    </map>

The result is a tmx_lua.model.TiledMap. Tile layers are converted from
GIDs to Cells (tileset + local id + flip flags) with a GidMapper filled
from the firstgid attributes of the file.

=============================================================================
DATA ENCODINGS
=============================================================================

- XML (deprecated):  <tile gid="1"/><tile gid="2"/>...
- CSV:               1,2,3,4,...
- Base64:            little-endian uint32 per tile, optionally compressed
                     with zlib, gzip or zstd (zstd needs the zstandard
                     package)

=============================================================================
LIMITATIONS
=============================================================================

- Infinite maps (chunked layer data) are rejected.
- Layer groups are flattened: their children are appended in order, and
  the group's own offset, opacity and visibility are not applied.
- Wang sets, templates and object text are ignored.
=============================================================================
"""

import base64
import dataclasses
import gzip
import logging
import os
import xml.etree.ElementTree as ET
import zlib
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
from PIL import Image as PILImage

from .errors import GidMapperError, TmxLoadError
from .lua.gid_mapper import GidMapper
from .model import (
    AnyLayer, Cell, Color, Frame, Image, ImageLayer, MapObject, ObjectGroup,
    ObjectShape, Orientation, Properties, Property, StaggerAxis, StaggerIndex,
    Terrain, Tile, TileLayer, TiledMap, Tileset,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Tile objects found while reading tilesets, resolved once every tileset
# is registered: (object, raw gid)
_PendingGids = List[Tuple[MapObject, int]]


# =============================================================================
# SMALL HELPERS
# =============================================================================

def _resolve(base_dir: Path, source: str) -> str:
    """Absolute path of a file referenced from a TMX/TSX file."""
    if not source:
        return ""
    return os.path.normpath(os.path.join(str(base_dir), source))


def _int(elem: ET.Element, name: str, default: int = 0) -> int:
    value = elem.get(name)
    return int(float(value)) if value else default


def _float(elem: ET.Element, name: str, default: float = 0.0) -> float:
    value = elem.get(name)
    return float(value) if value else default


def _color(value: Optional[str]) -> Optional[Color]:
    if not value:
        return None
    try:
        return Color.from_hex(value)
    except ValueError as e:
        raise TmxLoadError(str(e)) from e


def _read_xml(filepath: Path) -> ET.Element:
    """Root element of an XML file. A missing file raises FileNotFoundError."""
    try:
        return ET.parse(filepath).getroot()
    except ET.ParseError as e:
        raise TmxLoadError(f"{filepath}: {e}") from e
    except FileNotFoundError:
        raise
    except OSError as e:
        # A directory or an unreadable file
        raise TmxLoadError(f"{filepath}: {e.strerror or e}") from e


def _image_size(path: str) -> Tuple[Optional[int], Optional[int]]:
    """Read the pixel size of an image file, (None, None) if unreadable."""
    try:
        with PILImage.open(path) as image:
            return image.size
    except (OSError, ValueError) as e:
        logger.warning("Could not read image size of %s: %s", path, e)
        return None, None


# =============================================================================
# PROPERTIES AND IMAGES
# =============================================================================

def parse_property(elem: ET.Element) -> Property:
    """
    Parse a property element.

    XML format:
        <property name="solid" type="bool" value="true"/>
        <property name="health" type="int" value="100"/>
        <property name="tint" type="color" value="#ff00ff00"/>
        <property name="description">Multi-line
        text</property>
    """
    prop_type = elem.get('type', 'string')
    value = elem.get('value')
    if value is None:
        value = elem.text or ''

    try:
        if prop_type in ('int', 'object'):
            value = int(float(value)) if value else 0
        elif prop_type == 'float':
            value = float(value) if value else 0.0
        elif prop_type == 'bool':
            value = value.lower() == 'true'
        elif prop_type == 'color':
            # An unset color property is written as an empty string
            value = Color.from_hex(value) if value else ''
    except ValueError as e:
        raise TmxLoadError(f"Invalid {prop_type} property '{elem.get('name')}': {e}") from e

    return Property(name=elem.get('name', ''), type=prop_type, value=value)


def parse_properties(elem: ET.Element) -> Properties:
    properties: Properties = {}
    props_elem = elem.find('properties')
    if props_elem is not None:
        for prop_elem in props_elem.findall('property'):
            prop = parse_property(prop_elem)
            properties[prop.name] = prop
    return properties


def parse_image(elem: ET.Element, base_dir: Path) -> Image:
    """
    Parse an image element, resolving its path against base_dir.

    Width and height are optional in TMX; when missing they are read from
    the image file itself.
    """
    source = _resolve(base_dir, elem.get('source', ''))
    width = _int(elem, 'width') or None
    height = _int(elem, 'height') or None
    if source and (width is None or height is None):
        width, height = _image_size(source)
    return Image(source=source, width=width, height=height)


# =============================================================================
# TILESETS
# =============================================================================

def _parse_terrain_attribute(value: Optional[str]) -> Optional[Tuple[int, int, int, int]]:
    # "0,0,,1": four corners, empty = no terrain
    if not value:
        return None
    corners = [int(part) if part.strip() else -1 for part in value.split(',')]
    if len(corners) != 4:
        raise TmxLoadError(f"Invalid terrain attribute: {value!r}")
    return tuple(corners)


def _parse_tile(elem: ET.Element, base_dir: Path, pending: _PendingGids) -> Tile:
    tile = Tile(id=_int(elem, 'id'))
    tile.properties = parse_properties(elem)

    img_elem = elem.find('image')
    if img_elem is not None:
        tile.image = parse_image(img_elem, base_dir)

    # Collision shapes of the tile
    group_elem = elem.find('objectgroup')
    if group_elem is not None:
        tile.object_group = parse_object_group(group_elem, pending)

    tile.terrain = _parse_terrain_attribute(elem.get('terrain'))
    if elem.get('probability'):
        tile.probability = float(elem.get('probability'))

    anim_elem = elem.find('animation')
    if anim_elem is not None:
        tile.frames = [
            Frame(tile_id=_int(frame, 'tileid'), duration=_int(frame, 'duration'))
            for frame in anim_elem.findall('frame')
        ]
    return tile


def _count_tiles(elem: ET.Element, tileset: Tileset) -> int:
    """
    Number of tiles in a tileset.

    Uses tilecount when present (Tiled 0.13+); otherwise derives it from
    the image size, the same way Tiled slices a spritesheet:

        columns = (imagewidth - 2 * margin + spacing) // (tilewidth + spacing)
    """
    if elem.get('tilecount'):
        return _int(elem, 'tilecount')
    if tileset.image is None or not tileset.image.has_size:
        return 0
    step_x = tileset.tile_width + tileset.spacing
    step_y = tileset.tile_height + tileset.spacing
    if step_x <= 0 or step_y <= 0:
        return 0
    columns = (tileset.image_width - 2 * tileset.margin + tileset.spacing) // step_x
    rows = (tileset.image_height - 2 * tileset.margin + tileset.spacing) // step_y
    return max(columns, 0) * max(rows, 0)


def parse_tileset(elem: ET.Element, base_dir: Path,
                  pending: Optional[_PendingGids] = None) -> Tileset:
    """
    Parse an embedded <tileset> element or the root of a TSX file.

    Parameters:
    -----------
    elem : ET.Element
        The <tileset> element
    base_dir : Path
        Directory of the file containing elem, for relative image paths
    pending : list, optional
        Collects tile objects of tile collision groups, whose gid can only
        be resolved once the whole map is known
    """
    if pending is None:
        pending = []

    tileset = Tileset(
        name=elem.get('name', ''),
        tile_width=_int(elem, 'tilewidth'),
        tile_height=_int(elem, 'tileheight'),
        spacing=_int(elem, 'spacing'),
        margin=_int(elem, 'margin'),
    )
    tileset.properties = parse_properties(elem)

    offset_elem = elem.find('tileoffset')
    if offset_elem is not None:
        tileset.tile_offset = (_int(offset_elem, 'x'), _int(offset_elem, 'y'))

    img_elem = elem.find('image')
    if img_elem is not None:
        tileset.image = parse_image(img_elem, base_dir)
        tileset.transparent_color = _color(img_elem.get('trans'))

    terrains_elem = elem.find('terraintypes')
    if terrains_elem is not None:
        for terrain_elem in terrains_elem.findall('terrain'):
            tileset.terrains.append(Terrain(
                name=terrain_elem.get('name', ''),
                tile_id=_int(terrain_elem, 'tile', -1),
                properties=parse_properties(terrain_elem),
            ))

    # Only tiles with metadata are listed; the others are plain tiles
    described: Dict[int, Tile] = {}
    for tile_elem in elem.findall('tile'):
        tile = _parse_tile(tile_elem, base_dir, pending)
        described[tile.id] = tile

    tile_count = _count_tiles(elem, tileset)
    if described:
        tile_count = max(tile_count, max(described) + 1)
    tileset.tiles = [described.get(i) or Tile(id=i) for i in range(tile_count)]

    return tileset


def load_tileset(filepath: PathLike) -> Tileset:
    """Load an external tileset (.tsx file)."""
    filepath = Path(filepath).absolute()
    root = _read_xml(filepath)
    try:
        tileset = parse_tileset(root, filepath.parent)
    except ValueError as e:
        raise TmxLoadError(f"{filepath}: {e}") from e
    tileset.file_name = str(filepath)
    return tileset


# =============================================================================
# LAYER DATA
# =============================================================================

def _decode_gids(data_elem: ET.Element) -> np.ndarray:
    encoding = data_elem.get('encoding')
    compression = data_elem.get('compression')

    if encoding == 'csv':
        # "1,2,3,4,\n5,6,7,8,\n..." - trailing commas create empty elements
        text = (data_elem.text or '').replace('\n', '')
        return np.array([int(x) for x in text.split(',') if x.strip()], dtype=np.uint32)

    if encoding == 'base64':
        raw_data = base64.b64decode((data_elem.text or '').strip())

        if compression == 'zlib':
            raw_data = zlib.decompress(raw_data)
        elif compression == 'gzip':
            raw_data = gzip.decompress(raw_data)
        elif compression == 'zstd':
            try:
                import zstandard as zstd
            except ImportError:
                raise TmxLoadError(
                    "zstandard library required for zstd compression. "
                    "Install with: pip install zstandard"
                ) from None
            try:
                raw_data = zstd.ZstdDecompressor().decompressobj().decompress(raw_data)
            except zstd.ZstdError as e:
                raise TmxLoadError(f"Corrupt zstd layer data: {e}") from e
        elif compression:
            raise TmxLoadError(f"Unsupported compression: {compression}")

        # Each tile is 4 bytes (little-endian uint32)
        return np.frombuffer(raw_data, dtype='<u4').astype(np.uint32)

    if encoding is None:
        return np.array([_int(tile, 'gid') for tile in data_elem.findall('tile')],
                        dtype=np.uint32)

    raise TmxLoadError(f"Unsupported encoding: {encoding}")


def decode_layer_data(data_elem: ET.Element, width: int, height: int) -> np.ndarray:
    """
    Decode the GIDs of a tile layer.

    Returns:
    --------
    np.ndarray : uint32 array of width * height GIDs, row-major, flip flags
        still included

    Raises:
    -------
    TmxLoadError : Unsupported encoding, or data that does not decode
        (non-numeric csv, bad base64, corrupt compressed stream)
    """
    if data_elem.find('chunk') is not None:
        raise TmxLoadError("Infinite maps (chunked layer data) are not supported")

    # binascii.Error is a ValueError; gzip reports bad streams as OSError or EOFError
    try:
        gids = _decode_gids(data_elem)
    except (ValueError, OverflowError, zlib.error, OSError, EOFError) as e:
        raise TmxLoadError(f"Invalid layer data: {e}") from e

    if gids.size != width * height:
        raise TmxLoadError(
            f"Layer data has {gids.size} tiles, expected {width * height}"
        )
    return gids


def _gids_to_cells(gids: np.ndarray, gid_mapper: GidMapper) -> List[Cell]:
    # Maps reuse few distinct tiles: convert each distinct gid once
    unique, inverse = np.unique(gids, return_inverse=True)
    try:
        unique_cells = [gid_mapper.gid_to_cell(int(gid)) for gid in unique]
    except GidMapperError as e:
        raise TmxLoadError(str(e)) from e
    return [dataclasses.replace(unique_cells[i]) for i in inverse.ravel()]


# =============================================================================
# LAYERS
# =============================================================================

def parse_tile_layer(elem: ET.Element, gid_mapper: GidMapper) -> TileLayer:
    width = _int(elem, 'width')
    height = _int(elem, 'height')
    layer = TileLayer(
        name=elem.get('name', ''),
        x=_int(elem, 'x'),
        y=_int(elem, 'y'),
        width=width,
        height=height,
        # '1' is default for visible (absent means visible)
        visible=elem.get('visible', '1') == '1',
        opacity=_float(elem, 'opacity', 1.0),
        properties=parse_properties(elem),
    )

    data_elem = elem.find('data')
    if data_elem is not None:
        gids = decode_layer_data(data_elem, width, height)
        layer.cells = _gids_to_cells(gids, gid_mapper)
    return layer


def _parse_points(value: str) -> List[Tuple[float, float]]:
    # "0,0 5,0 5,5"
    points = []
    for pair in value.split():
        try:
            x, y = pair.split(',')
            points.append((float(x), float(y)))
        except ValueError:
            raise TmxLoadError(f"Invalid point {pair!r} in {value!r}") from None
    return points


def parse_map_object(elem: ET.Element, pending: _PendingGids) -> MapObject:
    obj = MapObject(
        id=_int(elem, 'id'),
        name=elem.get('name', ''),
        type=elem.get('type', elem.get('class', '')),
        x=_float(elem, 'x'),
        y=_float(elem, 'y'),
        width=_float(elem, 'width'),
        height=_float(elem, 'height'),
        rotation=_float(elem, 'rotation'),
        visible=elem.get('visible', '1') == '1',
        properties=parse_properties(elem),
    )

    polygon = elem.find('polygon')
    polyline = elem.find('polyline')
    if polygon is not None:
        obj.shape = ObjectShape.POLYGON
        obj.polygon = _parse_points(polygon.get('points', ''))
    elif polyline is not None:
        obj.shape = ObjectShape.POLYLINE
        obj.polygon = _parse_points(polyline.get('points', ''))
    elif elem.find('ellipse') is not None:
        obj.shape = ObjectShape.ELLIPSE

    # GID only present for tile objects
    if elem.get('gid'):
        pending.append((obj, int(elem.get('gid'))))
    return obj


def parse_object_group(elem: ET.Element, pending: _PendingGids) -> ObjectGroup:
    group = ObjectGroup(
        name=elem.get('name', ''),
        x=_int(elem, 'x'),
        y=_int(elem, 'y'),
        visible=elem.get('visible', '1') == '1',
        opacity=_float(elem, 'opacity', 1.0),
        properties=parse_properties(elem),
    )
    for obj_elem in elem.findall('object'):
        group.objects.append(parse_map_object(obj_elem, pending))
    return group


def parse_image_layer(elem: ET.Element, base_dir: Path) -> ImageLayer:
    layer = ImageLayer(
        name=elem.get('name', ''),
        x=_int(elem, 'x'),
        y=_int(elem, 'y'),
        visible=elem.get('visible', '1') == '1',
        opacity=_float(elem, 'opacity', 1.0),
        properties=parse_properties(elem),
    )
    img_elem = elem.find('image')
    if img_elem is not None:
        layer.image_source = _resolve(base_dir, img_elem.get('source', ''))
        layer.transparent_color = _color(img_elem.get('trans'))
    return layer


def _parse_layers(parent: ET.Element, base_dir: Path, gid_mapper: GidMapper,
                  pending: _PendingGids) -> List[AnyLayer]:
    layers: List[AnyLayer] = []
    for elem in parent:
        if elem.tag == 'layer':
            layers.append(parse_tile_layer(elem, gid_mapper))
        elif elem.tag == 'objectgroup':
            layers.append(parse_object_group(elem, pending))
        elif elem.tag == 'imagelayer':
            layers.append(parse_image_layer(elem, base_dir))
        elif elem.tag == 'group':
            logger.info("Flattening layer group '%s'", elem.get('name', ''))
            layers.extend(_parse_layers(elem, base_dir, gid_mapper, pending))
    return layers


# =============================================================================
# MAP
# =============================================================================

def _load_map_tilesets(root: ET.Element, base_dir: Path,
                       pending: _PendingGids) -> List[Tuple[int, Tileset]]:
    entries = sorted(root.findall('tileset'), key=lambda e: _int(e, 'firstgid'))
    tilesets: List[Tuple[int, Tileset]] = []

    for index, tileset_elem in enumerate(entries):
        firstgid = _int(tileset_elem, 'firstgid', 1)
        source = tileset_elem.get('source')

        if not source:
            tilesets.append((firstgid, parse_tileset(tileset_elem, base_dir, pending)))
            continue

        # The TMX only contains a reference; actual data is in the TSX
        tsx_path = base_dir / source
        try:
            tsx_root = _read_xml(tsx_path)
        except FileNotFoundError:
            logger.warning("External tileset not found: %s", tsx_path)
            # Placeholder covering the range up to the next tileset
            if index + 1 < len(entries):
                tile_count = _int(entries[index + 1], 'firstgid') - firstgid
            else:
                tile_count = 0
            tileset = Tileset(
                name=Path(source).stem,
                tile_width=_int(root, 'tilewidth'),
                tile_height=_int(root, 'tileheight'),
                tiles=[Tile(id=i) for i in range(max(tile_count, 0))],
            )
        else:
            tileset = parse_tileset(tsx_root, tsx_path.parent, pending)
        tileset.file_name = os.path.normpath(str(tsx_path))
        tilesets.append((firstgid, tileset))

    return tilesets


def load_map(filepath: PathLike) -> TiledMap:
    """
    Load a TMX file from disk.

    Parameters:
    -----------
    filepath : str or Path
        Path to the .tmx file

    Returns:
    --------
    TiledMap : Parsed map object, file references made absolute

    Raises:
    -------
    FileNotFoundError : If the TMX file doesn't exist
    TmxLoadError : If the file is unreadable, malformed or uses unsupported
        features
    """
    filepath = Path(filepath).absolute()
    base_dir = filepath.parent

    root = _read_xml(filepath)

    if root.tag != 'map':
        raise TmxLoadError(f"{filepath}: not a TMX map")
    if root.get('infinite', '0') == '1':
        raise TmxLoadError(f"{filepath}: infinite maps are not supported")

    # -----------------------------------------------------------------
    # MAP ATTRIBUTES
    # -----------------------------------------------------------------
    try:
        tiled_map = TiledMap(
            orientation=Orientation(root.get('orientation', 'orthogonal')),
            width=_int(root, 'width'),
            height=_int(root, 'height'),
            tile_width=_int(root, 'tilewidth'),
            tile_height=_int(root, 'tileheight'),
            hex_side_length=_int(root, 'hexsidelength'),
            stagger_axis=StaggerAxis(root.get('staggeraxis', 'y')),
            stagger_index=StaggerIndex(root.get('staggerindex', 'odd')),
            background_color=_color(root.get('backgroundcolor')),
            next_object_id=_int(root, 'nextobjectid', 1),
        )
    except ValueError as e:
        raise TmxLoadError(f"{filepath}: {e}") from e
    tiled_map.properties = parse_properties(root)

    # -----------------------------------------------------------------
    # TILESETS
    # -----------------------------------------------------------------
    pending: _PendingGids = []
    gid_mapper = GidMapper()
    try:
        for firstgid, tileset in _load_map_tilesets(root, base_dir, pending):
            gid_mapper.register(tileset, firstgid)
            tiled_map.tilesets.append(tileset)
    except (GidMapperError, ValueError) as e:
        raise TmxLoadError(f"{filepath}: {e}") from e

    # -----------------------------------------------------------------
    # LAYERS
    # -----------------------------------------------------------------
    try:
        tiled_map.layers = _parse_layers(root, base_dir, gid_mapper, pending)
    except ValueError as e:
        # Non-numeric attributes
        raise TmxLoadError(f"{filepath}: {e}") from e

    # Tile objects, now that every tileset is known
    try:
        for obj, gid in pending:
            obj.cell = gid_mapper.gid_to_cell(gid)
    except GidMapperError as e:
        raise TmxLoadError(f"{filepath}: {e}") from e

    logger.debug("Loaded %s: %d tilesets, %d layers",
                 filepath, len(tiled_map.tilesets), len(tiled_map.layers))
    return tiled_map
