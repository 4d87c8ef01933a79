"""
SPDX-License-Identifier: GPL-3.0-only
Copyright © 2025 Keystone Intelligence LLC
Licensed under GPL v3 (see LICENSE file for details)
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
from PIL import Image

from errors import InvalidValueError, RasterTooSmallError

# state index -> direction -> frame -> tile
TileGrid = List[List[List[Image.Image]]]


@dataclass(frozen=True)
class TilePosition:
    state: int
    direction: int
    frame: int
    column: int
    row: int


class SpritesheetLayout:
    """
    Maps (state, direction, frame) to a cell of the spritesheet grid.

    States are placed in declaration order. Inside a state every direction
    starts a new row and its frames run left to right, wrapping at `columns`.
    This is not BYOND's own arrangement, so sheets written by BYOND do not
    generally slice correctly with this layout.

    Attributes:
        tile_width: Width of every frame tile.
        tile_height: Height of every frame tile.
        counts: (dirs, frame_count) for each state.
        columns: Number of tiles per grid row.
        rows: Number of grid rows.
    """
    def __init__(self, tile_width: int, tile_height: int, counts: Sequence[Tuple[int, int]],
                 column_cap: Optional[int] = None):
        if tile_width < 1 or tile_height < 1:
            raise InvalidValueError("Tile size must be positive", field="width/height",
                                    found=(tile_width, tile_height))
        if column_cap is not None and column_cap < 1:
            raise InvalidValueError("Column cap must be positive", field="column_cap", found=column_cap)

        self.tile_width = tile_width
        self.tile_height = tile_height
        self.counts = [(int(dirs), int(frames)) for dirs, frames in counts]

        widest = max((frames for _, frames in self.counts), default=1)
        self.columns = max(1, min(widest, column_cap) if column_cap else widest)
        self._positions = self._compute_positions()
        self.rows = max(1, max((p.row for p in self._positions.values()), default=-1) + 1)

    @classmethod
    def for_raster(cls, tile_width: int, tile_height: int, counts: Sequence[Tuple[int, int]],
                   raster_width: int) -> "SpritesheetLayout":
        """
        Layout used when slicing an existing raster: the raster's width in
        tiles caps the columns, so a sheet built by compose() slices back
        into the same cells.
        """
        return cls(tile_width, tile_height, counts, column_cap=max(1, raster_width // tile_width))

    def _compute_positions(self) -> Dict[Tuple[int, int, int], TilePosition]:
        positions = {}
        row = 0
        for state_index, (dirs, frames) in enumerate(self.counts):
            rows_per_direction = -(-frames // self.columns)
            for direction in range(dirs):
                for frame in range(frames):
                    positions[(state_index, direction, frame)] = TilePosition(
                        state=state_index,
                        direction=direction,
                        frame=frame,
                        column=frame % self.columns,
                        row=row + frame // self.columns,
                    )
                row += rows_per_direction
        return positions

    @property
    def sheet_size(self) -> Tuple[int, int]:
        return self.columns * self.tile_width, self.rows * self.tile_height

    def positions(self) -> List[TilePosition]:
        """All tile positions in layout order."""
        return list(self._positions.values())

    def origin(self, state: int, direction: int, frame: int) -> Tuple[int, int]:
        position = self._positions[(state, direction, frame)]
        return position.column * self.tile_width, position.row * self.tile_height

    def slice(self, raster: Image.Image) -> TileGrid:
        """
        Cuts the raster into tiles.

        Returns:
            tiles[state][direction][frame], each an RGBA image of the tile size.

        Raises:
            RasterTooSmallError: If the raster is smaller than the grid.
        """
        needed_width, needed_height = self.sheet_size
        if raster.width < needed_width or raster.height < needed_height:
            raise RasterTooSmallError("Raster is smaller than the state layout requires",
                                      expected=(needed_width, needed_height), found=raster.size)

        raster = raster.convert("RGBA")
        tiles: TileGrid = [[[None] * frames for _ in range(dirs)] for dirs, frames in self.counts]
        for position in self._positions.values():
            x, y = self.origin(position.state, position.direction, position.frame)
            tiles[position.state][position.direction][position.frame] = raster.crop(
                (x, y, x + self.tile_width, y + self.tile_height)
            )
        return tiles

    def compose(self, tiles: TileGrid) -> Image.Image:
        """
        Pastes every tile at its origin on a transparent RGBA sheet.
        """
        sheet = Image.new("RGBA", self.sheet_size, (0, 0, 0, 0))
        for position in self._positions.values():
            tile = tiles[position.state][position.direction][position.frame]
            sheet.paste(tile.convert("RGBA"), self.origin(position.state, position.direction, position.frame))
        return sheet
