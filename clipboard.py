"""
SPDX-License-Identifier: GPL-3.0-only
Copyright © 2025 Keystone Intelligence LLC
Licensed under GPL v3 (see LICENSE file for details)
"""

import base64
import binascii
from abc import ABC, abstractmethod
from io import BytesIO
from typing import List, Literal, Tuple
from pydantic import BaseModel, ValidationError
from PIL import Image
from PySide6.QtGui import QGuiApplication

from config import CLIPBOARD_FORMAT
from dmi_file import IMAGE_ERRORS, ResizeMethod, State
from errors import DmiError, ExternalError, InvalidEnvelopeError


class ClipboardState(BaseModel):
    """Self-contained text form of one state, frames inlined as base64 PNG."""
    format: Literal["dmi-state"] = CLIPBOARD_FORMAT
    name: str
    dirs: int
    frame_count: int
    delays: List[float]
    loop: int = 0
    rewind: bool = False
    movement: bool = False
    hotspots: List[str]
    width: int
    height: int
    frames: List[List[str]]
    extra: List[Tuple[int, str, str]] = []


def _tile_to_base64(tile: Image.Image) -> str:
    buffer = BytesIO()
    tile.convert("RGBA").save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("ascii")


def _tile_from_base64(data: str) -> Image.Image:
    raw = base64.b64decode(data, validate=True)
    with Image.open(BytesIO(raw)) as img:
        return img.convert("RGBA")


def encode(state: State) -> str:
    state.validate()
    width, height = state.tile_size
    envelope = ClipboardState(
        name=state.name,
        dirs=state.dirs,
        frame_count=state.frame_count,
        delays=list(state.delays),
        loop=state.loop,
        rewind=state.rewind,
        movement=state.movement,
        hotspots=list(state.hotspots),
        width=width,
        height=height,
        frames=[[_tile_to_base64(tile) for tile in row] for row in state.frames],
        extra=list(state.extra),
    )
    return envelope.model_dump_json()


def decode(text: str, width: int, height: int, method: ResizeMethod = ResizeMethod.NEAREST) -> State:
    """
    Rebuilds a state from clipboard text, resized to width x height when its
    tiles are a different size.

    Raises:
        InvalidEnvelopeError: If the text is not a DMI state envelope.
    """
    try:
        envelope = ClipboardState.model_validate_json(text)
    except ValidationError as e:
        raise InvalidEnvelopeError(f"Clipboard does not hold a DMI state: {e.error_count()} problem(s)") from None

    try:
        frames = [[_tile_from_base64(data) for data in row] for row in envelope.frames]
    except (binascii.Error, *IMAGE_ERRORS) as e:
        raise InvalidEnvelopeError(f"Clipboard frame data is corrupt: {e}") from None

    state = State(
        name=envelope.name,
        dirs=envelope.dirs,
        frame_count=envelope.frame_count,
        delays=envelope.delays,
        loop=envelope.loop,
        rewind=envelope.rewind,
        movement=envelope.movement,
        hotspots=envelope.hotspots,
        frames=frames,
        extra=list(envelope.extra),
    )
    try:
        state.validate()
    except DmiError as e:
        raise InvalidEnvelopeError(f"Clipboard state is inconsistent: {e}") from None

    state.resize(width, height, method)
    return state


class Clipboard(ABC):
    """The system clipboard. Shared by every process, last writer wins."""

    @abstractmethod
    def get_text(self) -> str:
        pass

    @abstractmethod
    def set_text(self, text: str):
        pass


class QtClipboard(Clipboard):
    """Clipboard access through the running Qt application."""

    @staticmethod
    def _clipboard():
        if QGuiApplication.instance() is None:
            raise ExternalError("No Qt application is running; the clipboard is unavailable")
        clipboard = QGuiApplication.clipboard()
        if clipboard is None:
            raise ExternalError("The system clipboard is unavailable")
        return clipboard

    def get_text(self) -> str:
        return self._clipboard().text()

    def set_text(self, text: str):
        self._clipboard().setText(text)
