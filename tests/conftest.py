import pytest

from tmx_lua.model import (
    Cell, ObjectGroup, Tile, create_empty_map, create_layer, create_tileset,
    make_properties,
)


@pytest.fixture
def simple_map():
    """2x1 map, one single-tile tileset, cells [tile, empty]."""
    tiled_map = create_empty_map(2, 1, 32, 32)
    tileset = create_tileset("tiles", 32, 32, 1)
    tiled_map.tilesets.append(tileset)

    layer = create_layer("Ground", 2, 1)
    layer.set_cell(0, 0, Cell(tileset, 0))
    tiled_map.layers.append(layer)
    return tiled_map


@pytest.fixture
def two_tileset_map():
    """3x2 map using two tilesets (4 and 3 tiles) in one layer."""
    tiled_map = create_empty_map(3, 2, 16, 16)
    first = create_tileset("first", 16, 16, 4)
    second = create_tileset("second", 16, 16, 3)
    tiled_map.tilesets.extend([first, second])

    layer = create_layer("Mixed", 3, 2)
    layer.set_cell(0, 0, Cell(first, 0))
    layer.set_cell(1, 0, Cell(first, 3))
    layer.set_cell(2, 0, Cell(second, 0))
    layer.set_cell(0, 1, Cell(second, 2))
    layer.set_cell(2, 1, Cell(first, 1, flipped_horizontally=True))
    tiled_map.layers.append(layer)
    return tiled_map


@pytest.fixture
def object_map():
    tiled_map = create_empty_map(4, 4, 32, 32)
    tiled_map.layers.append(ObjectGroup(name="Objects"))
    return tiled_map


@pytest.fixture
def special_tile_map():
    """2x2 map whose second tile carries properties."""
    tiled_map = create_empty_map(2, 2, 8, 8)
    tileset = create_tileset("props", 8, 8, 2)
    tileset.tiles[1] = Tile(id=1, properties=make_properties(solid=True))
    tiled_map.tilesets.append(tileset)

    layer = create_layer("Walls", 2, 2)
    layer.set_cell(0, 0, Cell(tileset, 1))
    layer.set_cell(1, 0, Cell(tileset, 0))
    layer.set_cell(1, 1, Cell(tileset, 1))
    tiled_map.layers.append(layer)
    return tiled_map
