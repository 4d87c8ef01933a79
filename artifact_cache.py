"""
SPDX-License-Identifier: GPL-3.0-only
Copyright © 2025 Keystone Intelligence LLC
Licensed under GPL v3 (see LICENSE file for details)
"""

import os
import shutil
import hashlib
from typing import List, Tuple
from pydantic import BaseModel, Field
from PIL import Image

from config import DMI_VERSION
from dmi_file import IMAGE_ERRORS, Dmi, State
from errors import CacheError, MissingArtifactError

TILE_EXTENSION = ".png"


# ---------------------------
# Boundary models
# ---------------------------
class SerializedState(BaseModel):
    """A State whose frame tiles are replaced by keys of files in the scratch directory."""
    name: str
    dirs: int
    frame_key: str
    frame_count: int
    delays: List[float]
    loop: int = 0
    rewind: bool = False
    movement: bool = False
    hotspots: List[str]
    frames: List[List[str]] = Field(
        description="Tile keys indexed [direction][frame]."
    )
    extra: List[Tuple[int, str, str]] = []


class SerializedDmi(BaseModel):
    name: str
    width: int
    height: int
    states: List[SerializedState]
    temp: str = Field(description="Scratch directory holding the tile files.")
    version: str = DMI_VERSION
    extra: List[Tuple[int, str, str]] = []


def tile_key(tile: Image.Image) -> str:
    """Content-derived key: identical tiles share a key and a file."""
    tile = tile.convert("RGBA")
    digest = hashlib.sha1(f"{tile.width}x{tile.height}:".encode("ascii"))
    digest.update(tile.tobytes())
    return digest.hexdigest()


def tile_path(temp: str, key: str) -> str:
    return os.path.join(temp, key + TILE_EXTENSION)


def persist_state(state: State, temp: str) -> SerializedState:
    """
    Writes every distinct tile of the state to the scratch directory.
    Tiles whose file already exists are not rewritten.
    """
    state.validate()
    os.makedirs(temp, exist_ok=True)
    keys = []
    for row in state.frames:
        row_keys = []
        for tile in row:
            key = tile_key(tile)
            path = tile_path(temp, key)
            if not os.path.exists(path):
                tile.convert("RGBA").save(path, format="PNG")
            row_keys.append(key)
        keys.append(row_keys)

    frame_key = hashlib.sha1("|".join(",".join(row) for row in keys).encode("ascii")).hexdigest()
    return SerializedState(
        name=state.name,
        dirs=state.dirs,
        frame_key=frame_key,
        frame_count=state.frame_count,
        delays=list(state.delays),
        loop=state.loop,
        rewind=state.rewind,
        movement=state.movement,
        hotspots=list(state.hotspots),
        frames=keys,
        extra=list(state.extra),
    )


def load_tile(temp: str, key: str) -> Image.Image:
    path = tile_path(temp, key)
    if not os.path.isfile(path):
        raise MissingArtifactError(path)
    try:
        with Image.open(path) as img:
            return img.convert("RGBA")
    except IMAGE_ERRORS as e:
        print(f"Error: Could not read cached frame '{path}': {e}")
        raise CacheError(f"Cached frame is unreadable: {path}") from e


def materialize_state(serialized: SerializedState, temp: str) -> State:
    """
    Rebuilds a State from its serialized form.

    Raises:
        MissingArtifactError: If a referenced tile file is absent.
        CacheError: If a tile file exists but cannot be read.
        InvalidValueError: If the counts and frame grid disagree.
    """
    state = State(
        name=serialized.name,
        dirs=serialized.dirs,
        frame_count=serialized.frame_count,
        delays=list(serialized.delays),
        loop=serialized.loop,
        rewind=serialized.rewind,
        movement=serialized.movement,
        hotspots=list(serialized.hotspots),
        frames=[[load_tile(temp, key) for key in row] for row in serialized.frames],
        extra=list(serialized.extra),
    )
    state.validate()
    return state


def persist_dmi(dmi: Dmi, temp: str) -> SerializedDmi:
    os.makedirs(temp, exist_ok=True)
    return SerializedDmi(
        name=dmi.name,
        width=dmi.width,
        height=dmi.height,
        states=[persist_state(state, temp) for state in dmi.states],
        temp=temp,
        version=dmi.version,
        extra=list(dmi.extra),
    )


def materialize_dmi(serialized: SerializedDmi) -> Dmi:
    return Dmi(
        name=serialized.name,
        width=serialized.width,
        height=serialized.height,
        states=[materialize_state(state, serialized.temp) for state in serialized.states],
        version=serialized.version,
        extra=list(serialized.extra),
    )


def purge(path: str, soft: bool):
    """
    Removes a scratch directory.

    Args:
        path: Directory to remove. A missing path is ignored.
        soft: If True, the directory is only removed when it is empty.
    """
    if not os.path.isdir(path):
        return
    if not soft:
        shutil.rmtree(path)
    elif not os.listdir(path):
        os.rmdir(path)
