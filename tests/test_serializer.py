import io
import logging
import re

import pytest

from tmx_lua.errors import GidMapperError
from tmx_lua.export import render_lua_map
from tmx_lua.lua.gid_mapper import GidMapper
from tmx_lua.lua.options import DataFormat, ExportOptions, LayerImages, PolygonFormat
from tmx_lua.lua.serializer import MapSerializer, include_tile
from tmx_lua.model import (
    Cell, Color, Frame, Image, ImageLayer, MapObject, ObjectGroup, ObjectShape,
    Orientation, StaggerAxis, Terrain, Tile, create_empty_map, create_layer,
    create_tileset, make_properties,
)

TILED = ExportOptions(data_format=DataFormat.TILED)


def data_rows(output):
    """Rows of the first data table of a rendered map, as lists of ints."""
    start = output.index("data = {\n")
    end = output.index("\n      },", start)
    rows = []
    for line in output[start:end].splitlines()[1:]:
        rows.append([int(n) for n in re.findall(r"\d+", line)])
    return rows


def test_simple_map_moai(simple_map):
    assert render_lua_map(simple_map) == (
        'return {\n'
        '  version = "1.1",\n'
        '  luaversion = "5.1",\n'
        '  tiledversion = "0.11.0",\n'
        '  orientation = "orthogonal",\n'
        '  width = 2,\n'
        '  height = 1,\n'
        '  cellwidth = 32,\n'
        '  cellheight = 32,\n'
        '  nextobjectid = 1,\n'
        '  properties = {},\n'
        '  tilesets = {\n'
        '    {\n'
        '      name = "tiles",\n'
        '      tilewidth = 32,\n'
        '      tileheight = 32,\n'
        '      spacing = 0,\n'
        '      margin = 0,\n'
        '      xoffset = 0,\n'
        '      yoffset = 0,\n'
        '      properties = {},\n'
        '      terrains = {},\n'
        '      tiles = {},\n'
        '    },\n'
        '  },\n'
        '  layers = {\n'
        '    ["Ground"] = {\n'
        '      prio = 1,\n'
        '      type = "tilelayer",\n'
        '      x = 0,\n'
        '      y = 0,\n'
        '      width = 2,\n'
        '      height = 1,\n'
        '      visible = true,\n'
        '      opacity = 1,\n'
        '      properties = {},\n'
        '      encoding = "lua",\n'
        '      data = {\n'
        '        { 1, 1, 0, },\n'
        '      },\n'
        '    },\n'
        '  },\n'
        '}\n'
    )


def test_simple_map_tiled(simple_map):
    output = render_lua_map(simple_map, options=TILED)
    assert "  tilewidth = 32,\n" in output
    assert "cellwidth" not in output
    assert "      firstgid = 1,\n" in output
    assert '      name = "Ground",\n' in output
    assert "prio" not in output
    assert "      data = {\n        1, 0,\n      },\n" in output


def test_serialize_is_repeatable(two_tileset_map):
    serializer = MapSerializer(".")
    first, second = io.StringIO(), io.StringIO()
    serializer.serialize(two_tileset_map, first)
    serializer.serialize(two_tileset_map, second)
    assert first.getvalue() == second.getvalue()


@pytest.mark.parametrize("options", [ExportOptions(), TILED])
def test_braces_are_balanced(two_tileset_map, options):
    output = render_lua_map(two_tileset_map, options=options)
    assert output.count("{") == output.count("}")
    assert output.startswith("return {\n")
    assert output.endswith("\n}\n")


def test_first_gids_follow_tile_counts():
    tiled_map = create_empty_map(1, 1, 8, 8)
    tiled_map.tilesets.extend([
        create_tileset("a", 8, 8, 4),
        create_tileset("b", 8, 8, 2),
        create_tileset("c", 8, 8, 3),
    ])
    output = render_lua_map(tiled_map, options=TILED)
    assert re.findall(r"firstgid = (\d+)", output) == ["1", "5", "7"]


def test_tiled_data_round_trips(two_tileset_map):
    output = render_lua_map(two_tileset_map, options=TILED)
    layer = two_tileset_map.layers[0]

    mapper = GidMapper()
    first_gid = 1
    for tileset in two_tileset_map.tilesets:
        mapper.register(tileset, first_gid)
        first_gid += tileset.tile_count

    rows = data_rows(output)
    assert len(rows) == layer.height
    for y, row in enumerate(rows):
        assert [mapper.gid_to_cell(gid) for gid in row] == layer.cells[y * 3:(y + 1) * 3]


def test_moai_data_uses_origin_ids(two_tileset_map):
    rows = data_rows(render_lua_map(two_tileset_map))
    assert rows == [
        [1, 1, 4, 1],
        [2, 3, 0, 2 | 0x80000000],
    ]


def test_flip_flags_in_map_wide_ids(two_tileset_map):
    rows = data_rows(render_lua_map(two_tileset_map, options=TILED))
    assert rows[1][2] == 2 | 0x80000000


def test_unregistered_tileset_raises(simple_map):
    simple_map.layers[0].set_cell(1, 0, Cell(create_tileset("stray", 32, 32, 1), 0))
    with pytest.raises(GidMapperError):
        render_lua_map(simple_map)


# -----------------------------------------------------------------
# Objects
# -----------------------------------------------------------------

def test_rectangle_object_has_no_gid(object_map):
    object_map.layers[0].objects.append(
        MapObject(id=1, name="door", x=10, y=20, width=30, height=40))
    output = render_lua_map(object_map)
    assert '      type = "objectgroup",\n' in output
    assert '          shape = "rectangle",\n' in output
    assert "          x = 10,\n          y = 20,\n" in output
    assert "          width = 30,\n          height = 40,\n" in output
    assert "gid" not in output


def test_object_ids_only_in_tiled_format(object_map):
    object_map.layers[0].objects.append(MapObject(id=7))
    assert "id = 7," not in render_lua_map(object_map)
    assert "          id = 7,\n" in render_lua_map(object_map, options=TILED)


def test_polygon_object(object_map):
    object_map.layers[0].objects.append(MapObject(
        id=1, shape=ObjectShape.POLYGON, polygon=[(0, 0), (5.7, 0.2), (5, 5.9)]))
    output = render_lua_map(object_map)
    assert '          shape = "polygon",\n' in output
    assert "          polygon = { 0, 0, 5, 0, 5, 5, },\n" in output


def test_polyline_key(object_map):
    object_map.layers[0].objects.append(MapObject(
        shape=ObjectShape.POLYLINE, polygon=[(0, 0), (3, 4)]))
    output = render_lua_map(object_map)
    assert "polyline = { 0, 0, 3, 4, }," in output
    assert "polygon =" not in output


@pytest.mark.parametrize("polygon_format,expected", [
    (PolygonFormat.FULL, [
        "          polygon = {\n",
        "            { x = 0, y = 0, },\n",
        "            { x = 5, y = 0, },\n",
        "            { x = 5, y = 5, },\n",
    ]),
    (PolygonFormat.PAIRS, [
        "            { 0, 0, },\n",
        "            { 5, 0, },\n",
    ]),
    (PolygonFormat.OPTIMAL, [
        "            x = { 0, 5, 5, },\n",
        "            y = { 0, 0, 5, },\n",
    ]),
])
def test_polygon_formats(object_map, polygon_format, expected):
    object_map.layers[0].objects.append(MapObject(
        shape=ObjectShape.POLYGON, polygon=[(0, 0), (5, 0), (5, 5)]))
    output = render_lua_map(object_map, options=ExportOptions(polygon_format=polygon_format))
    for fragment in expected:
        assert fragment in output


def test_tile_object_uses_map_wide_gid(object_map):
    first = create_tileset("first", 32, 32, 3)
    second = create_tileset("second", 32, 32, 2)
    object_map.tilesets.extend([first, second])
    object_map.layers[0].objects.append(MapObject(cell=Cell(second, 1)))
    assert "          gid = 5,\n" in render_lua_map(object_map)


# -----------------------------------------------------------------
# Tilesets and tiles
# -----------------------------------------------------------------

def test_include_tile():
    assert not include_tile(Tile(id=0))
    assert not include_tile(Tile(id=0, terrain=(-1, -1, -1, -1)))
    assert include_tile(Tile(id=0, properties=make_properties(solid=True)))
    assert include_tile(Tile(id=0, image=Image("a.png")))
    assert include_tile(Tile(id=0, object_group=ObjectGroup()))
    assert include_tile(Tile(id=0, frames=[Frame(1, 100)]))
    assert include_tile(Tile(id=0, terrain=(0, -1, -1, -1)))
    assert include_tile(Tile(id=0, probability=0.5))


@pytest.fixture
def detailed_tileset_map():
    tiled_map = create_empty_map(1, 1, 16, 16)
    tileset = create_tileset("details", 16, 16, 5)
    tileset.terrains.append(Terrain(name="grass", tile_id=2))
    tileset.tiles[1] = Tile(id=1, properties=make_properties(kind="spike"))
    tileset.tiles[2] = Tile(id=2, terrain=(0, 0, -1, 0))
    tileset.tiles[3] = Tile(id=3, frames=[Frame(3, 100), Frame(4, 150)])
    tileset.tiles[4] = Tile(id=4, object_group=ObjectGroup(
        objects=[MapObject(x=1, y=2, width=3, height=4)]))
    tiled_map.tilesets.append(tileset)
    return tiled_map


def test_only_interesting_tiles_are_written(detailed_tileset_map):
    output = render_lua_map(detailed_tileset_map)
    assert '["id = 1"]' not in output
    assert '        ["id = 2"] = {\n' in output
    assert '["id = 3"]' in output
    assert '["id = 4"]' in output
    assert '["id = 5"]' in output


def test_tile_details(detailed_tileset_map):
    output = render_lua_map(detailed_tileset_map)
    assert '            ["kind"] = "spike",\n' in output
    assert "          terrain = { 0, 0, -1, 0, },\n" in output
    assert '              tileid = "3",\n              duration = "100",\n' in output
    assert "          objectGroup = {\n" in output
    assert '            type = "objectgroup",\n' in output
    assert '          name = "grass",\n          tile = 2,\n' in output


def test_tile_ids_in_tiled_format(detailed_tileset_map):
    output = render_lua_map(detailed_tileset_map, options=TILED)
    assert re.findall(r"^ {10}id = (\d+),$", output, re.MULTILINE) == ["1", "2", "3", "4"]
    assert '\n            name = "",\n' in output


def test_tileset_image(tmp_path):
    tiled_map = create_empty_map(1, 1, 32, 32)
    image = Image(str(tmp_path / "gfx" / "tiles.png"), 64, 32)
    tileset = create_tileset("tiles", 32, 32, 2, image)
    tileset.transparent_color = Color(255, 0, 255)
    tiled_map.tilesets.append(tileset)
    layer = create_layer("Ground", 1, 1)
    layer.set_cell(0, 0, Cell(tileset, 1))
    tiled_map.layers.append(layer)

    moai = render_lua_map(tiled_map, tmp_path)
    assert '    ["tiles.png"] = {\n' in moai
    assert "      imagewidth = 64,\n      imageheight = 32,\n" in moai
    assert "      deckwidth = 2,\n      deckheight = 1,\n" in moai
    assert '      transparentcolor = "#ff00ff",\n' in moai
    assert '      image = "tiles.png",\n' in moai

    tiled = render_lua_map(tiled_map, tmp_path, TILED)
    assert '      image = "gfx/tiles.png",\n' in tiled
    assert "deckwidth" not in tiled


def test_layer_images_modes(tmp_path):
    tiled_map = create_empty_map(2, 1, 8, 8)
    first = create_tileset("first", 8, 8, 1, Image(str(tmp_path / "a.png"), 8, 8))
    second = create_tileset("second", 8, 8, 1, Image(str(tmp_path / "b.png"), 8, 8))
    tiled_map.tilesets.extend([first, second])
    layer = create_layer("Both", 2, 1)
    layer.set_cell(0, 0, Cell(second, 0))
    layer.set_cell(1, 0, Cell(first, 0))
    tiled_map.layers.append(layer)

    first_only = render_lua_map(tiled_map, tmp_path)
    assert 'image = "' not in first_only

    every = render_lua_map(tiled_map, tmp_path, ExportOptions(layer_images=LayerImages.ALL))
    assert '      images = {\n        "a.png",\n        "b.png",\n      },\n' in every

    none = render_lua_map(tiled_map, tmp_path, ExportOptions(layer_images=LayerImages.NONE))
    assert "images" not in none


def test_nested_tile_offset(simple_map):
    simple_map.tilesets[0].tile_offset = (4, -2)
    output = render_lua_map(simple_map, options=ExportOptions(flatten_tile_offset=False))
    assert "      tileoffset = {\n        x = 4,\n        y = -2,\n      },\n" in output
    assert "xoffset" not in output

    flat = render_lua_map(simple_map)
    assert "      xoffset = 4,\n      yoffset = -2,\n" in flat


def test_duplicate_layer_names_warn(simple_map, caplog):
    simple_map.layers.append(create_layer("Ground", 2, 1))
    with caplog.at_level(logging.WARNING, logger="tmx_lua.lua.serializer"):
        render_lua_map(simple_map)
    assert "Duplicate layer key 'Ground'" in caplog.text


# -----------------------------------------------------------------
# Special tiles
# -----------------------------------------------------------------

def test_special_tiles(special_tile_map):
    output = render_lua_map(special_tile_map)
    assert output.index("specialtiles = {") < output.index("data = {")
    assert '        ["y = 1, x = 1"] = {\n          id = 2,\n        },\n' in output
    assert '        ["y = 2, x = 2"] = {\n          id = 2,\n        },\n' in output
    assert '["y = 1, x = 2"]' not in output
    assert output.index('["y = 1, x = 1"]') < output.index('["y = 2, x = 2"]')


def test_special_tiles_can_be_disabled(special_tile_map):
    assert "specialtiles" not in render_lua_map(
        special_tile_map, options=ExportOptions(special_tiles=False))
    assert "specialtiles" not in render_lua_map(special_tile_map, options=TILED)


def test_no_special_tiles_without_properties(simple_map):
    assert "specialtiles" not in render_lua_map(simple_map)


# -----------------------------------------------------------------
# Map level
# -----------------------------------------------------------------

def test_map_properties_and_background():
    tiled_map = create_empty_map(1, 1, 8, 8)
    tiled_map.background_color = Color(255, 200, 100)
    tiled_map.properties = make_properties(
        gravity=9.5, lives=3, hard=False, tint=Color(17, 34, 51))
    tiled_map.properties.update(make_properties(**{"spawn point": "north"}))
    output = render_lua_map(tiled_map)
    assert "  backgroundcolor = { 255, 200, 100, },\n" in output
    assert '    ["gravity"] = 9.5,\n' in output
    assert '    ["lives"] = 3,\n' in output
    assert '    ["hard"] = false,\n' in output
    assert '    ["tint"] = "#ff112233",\n' in output
    assert '    ["spawn point"] = "north",\n' in output


def test_hexagonal_map_attributes():
    tiled_map = create_empty_map(1, 1, 8, 8, Orientation.HEXAGONAL)
    tiled_map.hex_side_length = 6
    tiled_map.stagger_axis = StaggerAxis.X
    output = render_lua_map(tiled_map)
    assert '  orientation = "hexagonal",\n' in output
    assert "  hexsidelength = 6,\n" in output
    assert '  staggeraxis = "x",\n  staggerindex = "odd",\n' in output


def test_orthogonal_map_has_no_stagger(simple_map):
    output = render_lua_map(simple_map)
    assert "stagger" not in output
    assert "hexsidelength" not in output


def test_layers_keep_order_and_priority(tmp_path, simple_map):
    simple_map.layers.append(ObjectGroup(name="Things"))
    simple_map.layers.append(ImageLayer(
        name="Sky", image_source=str(tmp_path / "img" / "sky.png"),
        transparent_color=Color(0, 0, 0), opacity=0.5))
    output = render_lua_map(simple_map, tmp_path)

    assert re.findall(r'\["(\w+)"\] = \{\n\s+prio = (\d+),', output) == [
        ("Ground", "1"), ("Things", "2"), ("Sky", "3")]
    assert '      type = "imagelayer",\n' in output
    assert '      image = "img/sky.png",\n' in output
    assert '      transparentcolor = "#000000",\n' in output
    assert "      opacity = 0.5,\n" in output


def test_tiled_version_option(simple_map):
    output = render_lua_map(simple_map, options=ExportOptions(tiled_version="1.2.3"))
    assert '  tiledversion = "1.2.3",\n' in output


def test_relative_path(tmp_path):
    serializer = MapSerializer(tmp_path / "maps")
    assert serializer.relative_path(str(tmp_path / "maps" / "a.png")) == "a.png"
    assert serializer.relative_path(str(tmp_path / "gfx" / "b.png")) == "../gfx/b.png"
    assert serializer.relative_path("") == ""
    assert serializer.image_file_name(str(tmp_path / "gfx" / "b.png")) == "b.png"


def test_relative_path_falls_back_to_absolute(tmp_path, monkeypatch, caplog):
    def no_relative_path(path, start):
        raise ValueError("path is on mount 'D:', start on mount 'C:'")

    monkeypatch.setattr("os.path.relpath", no_relative_path)
    serializer = MapSerializer(tmp_path / "maps")

    with caplog.at_level(logging.DEBUG, logger="tmx_lua.lua.serializer"):
        result = serializer.relative_path(str(tmp_path / "a.png"))

    assert result == (tmp_path / "a.png").as_posix()
    assert any(record.levelno == logging.DEBUG and "No relative path" in record.getMessage()
               for record in caplog.records)


def test_object_properties_precede_points(object_map):
    object_map.layers[0].objects.append(MapObject(
        shape=ObjectShape.POLYGON, polygon=[(0, 0), (5, 0), (5, 5)],
        properties=make_properties(weight=2)))
    output = render_lua_map(object_map)
    assert output.index('["weight"] = 2,') < output.index("polygon = {")
