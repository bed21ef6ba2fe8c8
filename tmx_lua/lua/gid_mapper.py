"""
Conversion between cells and flattened tile ids.

=============================================================================
GLOBAL TILE IDs (GIDs)
=============================================================================

Tiles are referenced by Global IDs across all tilesets:

    Tileset A (firstgid=1):   tiles 1-100
    Tileset B (firstgid=101): tiles 101-200

    GID 0 = empty tile (no graphic)
    GID 50 = tile 49 from tileset A
    GID 150 = tile 49 from tileset B (150 - 101 = 49)

Local tile ID within tileset = GID - tileset.firstgid

=============================================================================
ORIGIN IDs
=============================================================================

Layers that use a single tileset image can be written with ids relative to
that tileset instead: origin id = local tile id + 1, so the first tile of
the tileset is always 1, whatever its firstgid. 0 is still the empty cell.

=============================================================================
FLIP FLAGS
=============================================================================

The three highest bits of an id carry the flip state of the cell, the same
way Tiled stores them in TMX files:

    bit 31  flipped horizontally
    bit 30  flipped vertically
    bit 29  flipped anti-diagonally

=============================================================================
"""

import bisect
from typing import Dict, List

from ..errors import GidMapperError
from ..model import Cell, Tileset

FLIPPED_HORIZONTALLY_FLAG = 0x80000000
FLIPPED_VERTICALLY_FLAG = 0x40000000
FLIPPED_ANTI_DIAGONALLY_FLAG = 0x20000000
FLIP_FLAGS = (FLIPPED_HORIZONTALLY_FLAG
              | FLIPPED_VERTICALLY_FLAG
              | FLIPPED_ANTI_DIAGONALLY_FLAG)


def flip_bits(cell: Cell) -> int:
    bits = 0
    if cell.flipped_horizontally:
        bits |= FLIPPED_HORIZONTALLY_FLAG
    if cell.flipped_vertically:
        bits |= FLIPPED_VERTICALLY_FLAG
    if cell.flipped_anti_diagonally:
        bits |= FLIPPED_ANTI_DIAGONALLY_FLAG
    return bits


def _cell_with_flags(tileset: Tileset, tile_id: int, flags: int) -> Cell:
    return Cell(
        tileset=tileset,
        tile_id=tile_id,
        flipped_horizontally=bool(flags & FLIPPED_HORIZONTALLY_FLAG),
        flipped_vertically=bool(flags & FLIPPED_VERTICALLY_FLAG),
        flipped_anti_diagonally=bool(flags & FLIPPED_ANTI_DIAGONALLY_FLAG),
    )


class GidMapper:
    """
    Table of tileset -> firstgid assignments for one map.

    Tilesets must be registered in ascending firstgid order. After that the
    mapper is only queried, in both directions:

        mapper = GidMapper()
        mapper.register(terrain, 1)      # 64 tiles: 1..64
        mapper.register(objects, 65)

        mapper.cell_to_gid(Cell(objects, 3))    # -> 68
        mapper.gid_to_cell(68)                  # -> Cell(objects, 3)

    Querying a cell whose tileset was never registered raises
    GidMapperError: the map references a tileset it does not contain.
    """

    def __init__(self):
        self._first_gids: List[int] = []
        self._tilesets: List[Tileset] = []
        self._by_tileset: Dict[int, int] = {}   # id(tileset) -> firstgid

    def __len__(self) -> int:
        return len(self._tilesets)

    def __contains__(self, tileset: Tileset) -> bool:
        return id(tileset) in self._by_tileset

    def clear(self):
        self._first_gids.clear()
        self._tilesets.clear()
        self._by_tileset.clear()

    def register(self, tileset: Tileset, first_gid: int):
        """Record that tileset covers [first_gid, first_gid + tile_count)."""
        if tileset in self:
            raise GidMapperError(f"Tileset '{tileset.name}' registered twice")
        if first_gid < 1:
            raise GidMapperError(f"Invalid firstgid {first_gid} for tileset '{tileset.name}'")
        if self._tilesets:
            previous = self._tilesets[-1]
            previous_end = self._first_gids[-1] + previous.tile_count
            if first_gid < previous_end:
                raise GidMapperError(
                    f"Tileset '{tileset.name}' firstgid {first_gid} overlaps "
                    f"tileset '{previous.name}' (ends at {previous_end - 1})"
                )
        self._first_gids.append(first_gid)
        self._tilesets.append(tileset)
        self._by_tileset[id(tileset)] = first_gid

    def first_gid(self, tileset: Tileset) -> int:
        try:
            return self._by_tileset[id(tileset)]
        except KeyError:
            raise GidMapperError(
                f"Tileset '{tileset.name}' is not part of this map"
            ) from None

    def tilesets(self) -> List[Tileset]:
        """Registered tilesets, in registration order."""
        return list(self._tilesets)

    # -----------------------------------------------------------------
    # CELL -> ID
    # -----------------------------------------------------------------

    def cell_to_gid(self, cell: Cell) -> int:
        """Map-wide id of a cell, 0 for an empty cell."""
        if cell.is_empty:
            return 0
        return (self.first_gid(cell.tileset) + cell.tile_id) | flip_bits(cell)

    def cell_to_gid_origin(self, cell: Cell) -> int:
        """Id relative to the cell's own tileset (first tile = 1)."""
        if cell.is_empty:
            return 0
        # Still validated: a cell of a foreign tileset means a broken map
        self.first_gid(cell.tileset)
        return (cell.tile_id + 1) | flip_bits(cell)

    # -----------------------------------------------------------------
    # ID -> CELL
    # -----------------------------------------------------------------

    def gid_to_cell(self, gid: int) -> Cell:
        """
        Find the tileset whose range contains gid.

        Binary search on the firstgid list: the candidate is the tileset
        with the largest firstgid <= gid. Empty tilesets share their
        firstgid with the next tileset, and bisect_right skips past them.
        """
        flags = gid & FLIP_FLAGS
        gid &= ~FLIP_FLAGS
        if gid == 0:
            return Cell()

        index = bisect.bisect_right(self._first_gids, gid) - 1
        if index < 0:
            raise GidMapperError(f"GID {gid} is below the first tileset")

        tileset = self._tilesets[index]
        tile_id = gid - self._first_gids[index]
        if tile_id >= tileset.tile_count:
            raise GidMapperError(
                f"GID {gid} is outside every tileset "
                f"(tileset '{tileset.name}' has {tileset.tile_count} tiles)"
            )
        return _cell_with_flags(tileset, tile_id, flags)

    def origin_to_cell(self, tile_id: int, tileset: Tileset) -> Cell:
        """Reverse of cell_to_gid_origin() for a layer using tileset."""
        flags = tile_id & FLIP_FLAGS
        tile_id &= ~FLIP_FLAGS
        if tile_id == 0:
            return Cell()
        if tileset not in self:
            raise GidMapperError(f"Tileset '{tileset.name}' is not part of this map")
        if tile_id > tileset.tile_count:
            raise GidMapperError(
                f"Tile {tile_id} is outside tileset '{tileset.name}' "
                f"({tileset.tile_count} tiles)"
            )
        return _cell_with_flags(tileset, tile_id - 1, flags)
