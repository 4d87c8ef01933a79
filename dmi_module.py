"""
SPDX-License-Identifier: GPL-3.0-only
Copyright © 2025 Keystone Intelligence LLC
Licensed under GPL v3 (see LICENSE file for details)

Operations exposed to the hosting editor. Pixel data never crosses this
boundary: documents and states travel as SerializedDmi / SerializedState
whose tiles live as files in a caller-owned scratch directory.
"""

import os
from enum import Enum
from typing import Optional, Sequence, Tuple
from PIL import Image

import artifact_cache
import clipboard
import dmi_metadata
import png_chunks
from artifact_cache import SerializedDmi, SerializedState
from clipboard import Clipboard, QtClipboard
from collaborators import (BrowserOpener, FilePicker, GitHubUpdateChecker, ProcessQuery,
                           PsutilProcessQuery, QtBrowserOpener, QtFilePicker, UpdateChecker)
from config import DEFAULT_RESIZE_METHOD, EDITOR_PROCESS_NAME, PIXEL_CHUNK_TAG, SCRATCH_ROOT, read_settings
from dmi_file import Dmi, ResizeMethod, State
from dmi_file import overlay_color as _overlay_color
from errors import ExternalError, FormatError, MissingFieldError


class TransformOp(Enum):
    RESIZE = "resize"
    CROP = "crop"
    EXPAND = "expand"


def _require_dir(temp: str):
    if not os.path.isdir(temp):
        raise FileNotFoundError(f"Temp directory does not exist: {temp}")


# ---------------------------
# Documents
# ---------------------------
def decode_container(data: bytes, temp: str, name: str = "") -> SerializedDmi:
    return artifact_cache.persist_dmi(Dmi.from_bytes(data, name=name), temp)


def encode_container(serialized: SerializedDmi) -> bytes:
    return artifact_cache.materialize_dmi(serialized).to_bytes()


def new_file(name: str, width: int, height: int, temp: str) -> SerializedDmi:
    return artifact_cache.persist_dmi(Dmi.new(name, width, height), temp)


def open_file(filename: str, temp: str) -> SerializedDmi:
    if not os.path.isfile(filename):
        raise FileNotFoundError(f"File does not exist: {filename}")
    return artifact_cache.persist_dmi(Dmi.open(filename), temp)


def save_file(serialized: SerializedDmi, filename: str):
    artifact_cache.materialize_dmi(serialized).save(filename)


def new_blank_state(width: int, height: int, temp: str) -> SerializedState:
    _require_dir(temp)
    return artifact_cache.persist_state(State.new_blank("", width, height), temp)


def split_state(state: SerializedState, temp: str) -> Sequence[SerializedState]:
    """Breaks a multi-direction state into one state per direction."""
    _require_dir(temp)
    states = artifact_cache.materialize_state(state, temp).split_directions()
    return [artifact_cache.persist_state(s, temp) for s in states]


# ---------------------------
# Transforms
# ---------------------------
def transform(serialized: SerializedDmi, op: TransformOp, width: int, height: int,
              x: int = 0, y: int = 0, method: str = DEFAULT_RESIZE_METHOD) -> SerializedDmi:
    """
    Applies a resize, crop or expand to every frame and returns the document
    re-serialized into the same scratch directory.
    """
    dmi = artifact_cache.materialize_dmi(serialized)
    if op is TransformOp.RESIZE:
        dmi.resize(width, height, ResizeMethod.from_name(method))
    elif op is TransformOp.CROP:
        dmi.crop(x, y, width, height)
    elif op is TransformOp.EXPAND:
        dmi.expand(x, y, width, height)
    else:
        raise ValueError(f"Unknown transform: {op}")
    return artifact_cache.persist_dmi(dmi, serialized.temp)


def resize(serialized: SerializedDmi, width: int, height: int, method: str = DEFAULT_RESIZE_METHOD) -> SerializedDmi:
    return transform(serialized, TransformOp.RESIZE, width, height, method=method)


def crop(serialized: SerializedDmi, x: int, y: int, width: int, height: int) -> SerializedDmi:
    return transform(serialized, TransformOp.CROP, width, height, x=x, y=y)


def expand(serialized: SerializedDmi, x: int, y: int, width: int, height: int) -> SerializedDmi:
    return transform(serialized, TransformOp.EXPAND, width, height, x=x, y=y)


# ---------------------------
# Spritesheet merge
# ---------------------------
def merge_edited_raster(edited: bytes, original: bytes) -> bytes:
    """
    Puts the original file's description chunk into an externally edited PNG,
    immediately before the edited file's first IDAT chunk, with a freshly
    computed CRC. Description chunks already in the edited file are replaced;
    text chunks with other keywords are kept.

    Raises:
        MissingFieldError: If the original has no description chunk.
        FormatError: If the edited file has no IDAT chunk or either file is malformed.
    """
    description = dmi_metadata.find_description(original)
    if description is None:
        raise MissingFieldError("Could not find DMI metadata in the file", field="Description")
    if png_chunks.find_chunk(edited, PIXEL_CHUNK_TAG) is None:
        raise FormatError("Could not find IDAT chunk in PNG file", field="IDAT")
    source, _ = description
    edited = png_chunks.filter_chunks(edited, lambda chunk: not dmi_metadata.is_description_chunk(chunk))
    return png_chunks.splice_chunk(edited, png_chunks.build_chunk(source.tag, source.payload), PIXEL_CHUNK_TAG)


def merge_spritesheet(png_path: str, dmi_path: str, output_path: str) -> bool:
    for path, kind in ((png_path, "PNG"), (dmi_path, "DMI")):
        if not os.path.exists(path):
            raise FileNotFoundError(f"{kind} file does not exist: {path}")
    with open(png_path, "rb") as f:
        edited = f.read()
    with open(dmi_path, "rb") as f:
        original = f.read()
    merged = merge_edited_raster(edited, original)
    with open(output_path, "wb") as f:
        f.write(merged)
    return True


# ---------------------------
# Clipboard
# ---------------------------
def copy_to_clipboard(state: SerializedState, temp: str, target: Optional[Clipboard] = None):
    _require_dir(temp)
    text = clipboard.encode(artifact_cache.materialize_state(state, temp))
    (target or QtClipboard()).set_text(text)


def paste_from_clipboard(width: int, height: int, temp: str, source: Optional[Clipboard] = None,
                         method: str = DEFAULT_RESIZE_METHOD) -> SerializedState:
    _require_dir(temp)
    text = (source or QtClipboard()).get_text()
    state = clipboard.decode(text, width, height, ResizeMethod.from_name(method))
    return artifact_cache.persist_state(state, temp)


# ---------------------------
# Scratch directories and host helpers
# ---------------------------
def purge_scratch(path: str, soft: bool):
    artifact_cache.purge(path, soft)


def exists(path: str) -> bool:
    return os.path.exists(path)


def cleanup_scratch_root(path: str = SCRATCH_ROOT, query: Optional[ProcessQuery] = None):
    """
    Removes the shared scratch root on exit: softly, then for good once this
    is the only running editor instance.
    """
    purge_scratch(path, soft=True)
    if exists(path) and instances(query) == 1:
        purge_scratch(path, soft=False)


def overlay_color(rgb: Tuple[int, int, int], width: int, height: int, data: bytes) -> Optional[bytes]:
    """
    RGBA bytes of `data` composited over an opaque colour, or None when the
    byte count does not match width x height.
    """
    if len(data) != width * height * 4:
        return None
    tile = Image.frombytes("RGBA", (width, height), bytes(data))
    return _overlay_color(rgb, tile).tobytes()


def instances(query: Optional[ProcessQuery] = None) -> int:
    return (query or PsutilProcessQuery()).count(EDITOR_PROCESS_NAME)


def check_update(checker: Optional[UpdateChecker] = None) -> bool:
    settings = read_settings()
    if not settings.get("Check For Updates", True):
        return False
    checker = checker or GitHubUpdateChecker(settings.get("Repository URL", ""))
    return checker.update_available()


def open_repo(path: Optional[str] = None, opener: Optional[BrowserOpener] = None):
    repository = read_settings().get("Repository URL", "")
    if not repository:
        raise ExternalError("No repository URL is configured")
    url = f"{repository.rstrip('/')}/{path}" if path else repository
    (opener or QtBrowserOpener()).open(url)


def save_dialog(title: str, filename: str, location: str, picker: Optional[FilePicker] = None) -> str:
    """Chosen path, or an empty string when the dialog was cancelled."""
    return (picker or QtFilePicker()).save_file(title, filename, location) or ""
