"""
SPDX-License-Identifier: GPL-3.0-only
Copyright © 2025 Keystone Intelligence LLC
Licensed under GPL v3 (see LICENSE file for details)
"""

import os
import json
import tempfile


APP_NAME = "DMI Editor"
APP_VERSION = "1.0.0"

# --- Container / metadata constants ---
DMI_FILE_EXTENSION = ".dmi"
DMI_VERSION = "4.0"
METADATA_KEYWORD = "Description"
METADATA_CHUNK_TAG = b"zTXt"
PIXEL_CHUNK_TAG = b"IDAT"

# --- New file defaults ---
DEFAULT_ICON_WIDTH = 32
DEFAULT_ICON_HEIGHT = 32
DEFAULT_RESIZE_METHOD = "nearest"
VALID_DIRECTION_COUNTS = (1, 4, 8)
DIRECTION_NAMES = {
    1: ["S"],
    4: ["S", "N", "E", "W"],
    8: ["S", "N", "E", "W", "SE", "SW", "NE", "NW"],
}

# --- Scratch directory ---
SCRATCH_DIR_NAME = "dmi_editor"
SCRATCH_ROOT = os.path.join(tempfile.gettempdir(), SCRATCH_DIR_NAME)
EDITOR_PROCESS_NAME = "aseprite"

# --- Clipboard envelope ---
CLIPBOARD_FORMAT = "dmi-state"

SETTINGS_FILE_NAME = "./.dmisettings"
DEFAULT_SETTINGS = {
    "Repository URL": "",
    "Check For Updates": True,
    "Default Resize Method": DEFAULT_RESIZE_METHOD,
    "Column Cap": None,
}


def load_settings(path: str = SETTINGS_FILE_NAME) -> dict:
    """
    Loads the settings file, creating it from DEFAULT_SETTINGS if it is missing.
    Keys missing from an older file are filled in from the defaults.
    """
    if not os.path.exists(path):
        save_settings(dict(DEFAULT_SETTINGS), path)
    return read_settings(path)


def read_settings(path: str = SETTINGS_FILE_NAME) -> dict:
    """Like load_settings, but never writes: a missing file reads as the defaults."""
    settings = dict(DEFAULT_SETTINGS)
    if not os.path.exists(path):
        return settings
    try:
        with open(path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        print(f"Warning: Settings file '{path}' is not valid JSON ({e}). Using defaults.")
        return settings
    if isinstance(data, dict):
        settings.update(data)
    return settings


def save_settings(settings: dict, path: str = SETTINGS_FILE_NAME):
    with open(path, "w") as f:
        json.dump(settings, f)
