"""
SPDX-License-Identifier: GPL-3.0-only
Copyright © 2025 Keystone Intelligence LLC
Licensed under GPL v3 (see LICENSE file for details)
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from io import BytesIO
from typing import List, Optional, Tuple
from PIL import Image, ImageFilter, UnidentifiedImageError

import dmi_metadata
import png_chunks
from config import (DEFAULT_ICON_HEIGHT, DEFAULT_ICON_WIDTH, DIRECTION_NAMES, DMI_VERSION, METADATA_CHUNK_TAG,
                    PIXEL_CHUNK_TAG, VALID_DIRECTION_COUNTS)
from dmi_metadata import DmiMetadata, OpaqueDirective, StateMetadata
from errors import FormatError, InvalidValueError, MissingFieldError
from spritesheet import SpritesheetLayout

# everything Pillow raises for an unreadable or oversized image
IMAGE_ERRORS = (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError)

# standard deviation of the gaussian kernel, in source pixels per output pixel
GAUSSIAN_SIGMA = 0.5


class ResizeMethod(Enum):
    NEAREST = "nearest"
    BOX = "box"
    TRIANGLE = "triangle"
    HAMMING = "hamming"
    CATMULLROM = "catmullrom"
    GAUSSIAN = "gaussian"
    LANCZOS3 = "lanczos3"

    @property
    def resample(self) -> Image.Resampling:
        return {
            ResizeMethod.NEAREST: Image.Resampling.NEAREST,
            ResizeMethod.BOX: Image.Resampling.BOX,
            ResizeMethod.TRIANGLE: Image.Resampling.BILINEAR,
            ResizeMethod.HAMMING: Image.Resampling.HAMMING,
            ResizeMethod.CATMULLROM: Image.Resampling.BICUBIC,
            ResizeMethod.GAUSSIAN: Image.Resampling.BILINEAR,
            ResizeMethod.LANCZOS3: Image.Resampling.LANCZOS,
        }[self]

    @classmethod
    def from_name(cls, name: str) -> "ResizeMethod":
        try:
            return cls(name.lower())
        except ValueError:
            raise InvalidValueError("Unknown resize method", field="method",
                                    expected=[m.value for m in cls], found=name) from None

    def resize_tile(self, tile: Image.Image, size: Tuple[int, int]) -> Image.Image:
        if self is ResizeMethod.GAUSSIAN:
            # Pillow has no gaussian kernel: blur by the scale factor, then interpolate
            scale = max(tile.width / size[0], tile.height / size[1], 1.0)
            tile = tile.filter(ImageFilter.GaussianBlur(radius=GAUSSIAN_SIGMA * scale))
        return tile.resize(size, self.resample)


def blank_tile(width: int, height: int) -> Image.Image:
    return Image.new("RGBA", (width, height), (0, 0, 0, 0))


def crop_tile(tile: Image.Image, x: int, y: int, width: int, height: int) -> Image.Image:
    """Sub-rectangle of the tile; anything outside the tile comes back transparent."""
    out = blank_tile(width, height)
    out.paste(tile, (-x, -y))
    return out


def expand_tile(tile: Image.Image, x: int, y: int, width: int, height: int) -> Image.Image:
    """Places the tile at (x, y) on a transparent canvas, discarding what falls outside."""
    out = blank_tile(width, height)
    out.paste(tile, (x, y))
    return out


def overlay_color(rgb: Tuple[int, int, int], tile: Image.Image) -> Image.Image:
    """Composites the tile over an opaque background colour."""
    bottom = Image.new("RGBA", tile.size, (*rgb, 255))
    bottom.alpha_composite(tile.convert("RGBA"))
    return bottom


@dataclass
class State:
    name: str
    dirs: int
    frame_count: int
    delays: List[float]
    loop: int
    rewind: bool
    movement: bool
    hotspots: List[str]
    frames: List[List[Image.Image]]
    extra: List[OpaqueDirective] = field(default_factory=list)

    @classmethod
    def new_blank(cls, name: str, width: int, height: int) -> "State":
        return cls(
            name=name,
            dirs=1,
            frame_count=1,
            delays=[1.0],
            loop=0,
            rewind=False,
            movement=False,
            hotspots=[""],
            frames=[[blank_tile(width, height)]],
        )

    @classmethod
    def from_metadata(cls, metadata: StateMetadata, frames: List[List[Image.Image]]) -> "State":
        return cls(
            name=metadata.name,
            dirs=metadata.dirs,
            frame_count=metadata.frame_count,
            delays=list(metadata.delays),
            loop=metadata.loop,
            rewind=metadata.rewind,
            movement=metadata.movement,
            hotspots=list(metadata.hotspots),
            frames=frames,
            extra=list(metadata.extra),
        )

    def to_metadata(self) -> StateMetadata:
        return StateMetadata(
            name=self.name,
            dirs=self.dirs,
            frame_count=self.frame_count,
            delays=list(self.delays),
            loop=self.loop,
            rewind=self.rewind,
            movement=self.movement,
            hotspots=list(self.hotspots),
            extra=list(self.extra),
        )

    @property
    def tile_size(self) -> Tuple[int, int]:
        return self.frames[0][0].size

    def validate(self):
        """
        Raises InvalidValueError if the fields or the frame grid disagree.
        """
        if self.dirs not in VALID_DIRECTION_COUNTS:
            raise InvalidValueError(f"State '{self.name}' has an invalid direction count", field="dirs",
                                    expected=VALID_DIRECTION_COUNTS, found=self.dirs)
        if self.frame_count < 1:
            raise InvalidValueError(f"State '{self.name}' has no frames", field="frames",
                                    expected=">= 1", found=self.frame_count)
        if len(self.delays) != self.frame_count:
            raise InvalidValueError(f"State '{self.name}' delay count does not match frames", field="delay",
                                    expected=self.frame_count, found=len(self.delays))
        if len(self.hotspots) != self.frame_count:
            raise InvalidValueError(f"State '{self.name}' hotspot count does not match frames", field="hotspot",
                                    expected=self.frame_count, found=len(self.hotspots))
        if len(self.frames) != self.dirs or any(len(row) != self.frame_count for row in self.frames):
            raise InvalidValueError(f"State '{self.name}' frame grid is incomplete", field="frames",
                                    expected=(self.dirs, self.frame_count),
                                    found=(len(self.frames), [len(row) for row in self.frames]))

    def map_tiles(self, fn):
        self.frames = [[fn(tile) for tile in row] for row in self.frames]

    def resize(self, width: int, height: int, method: ResizeMethod = ResizeMethod.NEAREST):
        self.map_tiles(lambda tile: tile if tile.size == (width, height)
                       else method.resize_tile(tile, (width, height)))

    def crop(self, x: int, y: int, width: int, height: int):
        self.map_tiles(lambda tile: crop_tile(tile, x, y, width, height))

    def expand(self, x: int, y: int, width: int, height: int):
        self.map_tiles(lambda tile: expand_tile(tile, x, y, width, height))

    def split_directions(self) -> List["State"]:
        """
        One single-direction state per direction, named after the compass
        direction it came from.
        """
        names = DIRECTION_NAMES[self.dirs]
        states = []
        for direction, row in enumerate(self.frames):
            states.append(State(
                name=f"{self.name} - {names[direction]}" if self.dirs > 1 else self.name,
                dirs=1,
                frame_count=self.frame_count,
                delays=list(self.delays),
                loop=self.loop,
                rewind=self.rewind,
                movement=self.movement,
                hotspots=list(self.hotspots),
                frames=[[tile.copy() for tile in row]],
                extra=list(self.extra),
            ))
        return states


@dataclass
class Dmi:
    name: str
    width: int
    height: int
    states: List[State]
    version: str = DMI_VERSION
    extra: List[OpaqueDirective] = field(default_factory=list)

    @classmethod
    def new(cls, name: str, width: int = DEFAULT_ICON_WIDTH, height: int = DEFAULT_ICON_HEIGHT) -> "Dmi":
        return cls(name=name, width=width, height=height, states=[])

    @classmethod
    def from_bytes(cls, data: bytes, name: str = "") -> "Dmi":
        """
        Decodes a DMI container.

        Raises:
            FormatError: If the container, its description or its raster is malformed.
        """
        description = dmi_metadata.find_description(data)
        if description is None:
            raise MissingFieldError("Could not find DMI metadata in the file", field="Description")

        metadata = dmi_metadata.parse(description[1])
        try:
            raster = Image.open(BytesIO(data))
            raster.load()
        except IMAGE_ERRORS as e:
            raise FormatError(f"Could not decode the raster: {e}") from None

        counts = [(s.dirs, s.frame_count) for s in metadata.states]
        layout = SpritesheetLayout.for_raster(metadata.width, metadata.height, counts, raster.width)
        tiles = layout.slice(raster)
        return cls(
            name=name,
            width=metadata.width,
            height=metadata.height,
            states=[State.from_metadata(s, t) for s, t in zip(metadata.states, tiles)],
            version=metadata.version,
            extra=list(metadata.extra),
        )

    @classmethod
    def open(cls, fpath: str) -> "Dmi":
        with open(fpath, "rb") as f:
            data = f.read()
        name = os.path.splitext(os.path.basename(fpath))[0]
        return cls.from_bytes(data, name=name)

    def metadata(self) -> DmiMetadata:
        return DmiMetadata(
            width=self.width,
            height=self.height,
            states=[s.to_metadata() for s in self.states],
            version=self.version,
            extra=list(self.extra),
        )

    def layout(self, column_cap: Optional[int] = None) -> SpritesheetLayout:
        return SpritesheetLayout(self.width, self.height, [(s.dirs, s.frame_count) for s in self.states],
                                 column_cap=column_cap)

    def validate(self):
        for state in self.states:
            state.validate()
            for row in state.frames:
                for tile in row:
                    if tile.size != (self.width, self.height):
                        raise InvalidValueError(f"State '{state.name}' has a tile of the wrong size",
                                                field="frames", expected=(self.width, self.height),
                                                found=tile.size)

    def to_bytes(self, column_cap: Optional[int] = None) -> bytes:
        """
        Encodes the document: the composed sheet saved as PNG by Pillow, with
        the description chunk inserted before the first IDAT chunk.
        """
        self.validate()
        sheet = self.layout(column_cap).compose([s.frames for s in self.states])
        buffer = BytesIO()
        sheet.save(buffer, format="PNG")
        text = dmi_metadata.serialize(self.metadata())
        chunk = png_chunks.build_chunk(METADATA_CHUNK_TAG, dmi_metadata.encode_ztxt(text))
        return png_chunks.splice_chunk(buffer.getvalue(), chunk, PIXEL_CHUNK_TAG)

    def save(self, fpath: str, column_cap: Optional[int] = None):
        data = self.to_bytes(column_cap)
        with open(fpath, "wb") as f:
            f.write(data)

    @staticmethod
    def _check_canvas(width: int, height: int):
        if width < 1 or height < 1:
            raise InvalidValueError("Canvas size must be positive", field="width/height",
                                    expected=">= 1", found=(width, height))

    def resize(self, width: int, height: int, method: ResizeMethod = ResizeMethod.NEAREST):
        self._check_canvas(width, height)
        for state in self.states:
            state.resize(width, height, method)
        self.width, self.height = width, height

    def crop(self, x: int, y: int, width: int, height: int):
        self._check_canvas(width, height)
        for state in self.states:
            state.crop(x, y, width, height)
        self.width, self.height = width, height

    def expand(self, x: int, y: int, width: int, height: int):
        self._check_canvas(width, height)
        for state in self.states:
            state.expand(x, y, width, height)
        self.width, self.height = width, height
