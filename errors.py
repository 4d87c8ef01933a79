"""
SPDX-License-Identifier: GPL-3.0-only
Copyright © 2025 Keystone Intelligence LLC
Licensed under GPL v3 (see LICENSE file for details)
"""

from typing import Optional


class DmiError(Exception):
    """Base class for every error raised by the DMI toolkit."""
    pass


class FormatError(DmiError):
    """Malformed container, chunk, metadata or clipboard content."""

    def __init__(self, message: str, field: Optional[str] = None, offset: Optional[int] = None,
                 expected=None, found=None):
        self.field = field
        self.offset = offset
        self.expected = expected
        self.found = found
        details = []
        if field is not None:
            details.append(f"field '{field}'")
        if offset is not None:
            details.append(f"offset {offset}")
        if expected is not None:
            details.append(f"expected {expected}")
        if found is not None:
            details.append(f"found {found}")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message)


class TruncatedChunkError(FormatError):
    pass


class MissingFieldError(FormatError):
    pass


class InvalidValueError(FormatError):
    pass


class RasterTooSmallError(FormatError):
    pass


class InvalidEnvelopeError(FormatError):
    pass


class CacheError(DmiError):
    pass


class MissingArtifactError(CacheError):
    """A referenced tile file is no longer in the scratch directory."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Cached frame not found: {path}")


class ExternalError(DmiError):
    """Clipboard, dialog, browser or process query failure."""
    pass
