"""
SPDX-License-Identifier: GPL-3.0-only
Copyright © 2025 Keystone Intelligence LLC
Licensed under GPL v3 (see LICENSE file for details)
"""

import zlib
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import png_chunks
from config import DMI_VERSION, METADATA_KEYWORD, VALID_DIRECTION_COUNTS
from errors import FormatError, InvalidValueError, MissingFieldError
from png_chunks import Chunk

BEGIN_MARKER = "# BEGIN DMI"
END_MARKER = "# END DMI"

# (position among the block's written directive lines, key, raw value)
OpaqueDirective = Tuple[int, str, str]

TEXT_CHUNK_TAGS = (b"zTXt", b"tEXt")
STATE_KEYS = ("dirs", "frames", "delay", "loop", "rewind", "movement")


@dataclass
class StateMetadata:
    name: str
    dirs: int
    frame_count: int
    delays: List[float]
    loop: int = 0
    rewind: bool = False
    movement: bool = False
    hotspots: List[str] = field(default_factory=list)
    extra: List[OpaqueDirective] = field(default_factory=list)


@dataclass
class DmiMetadata:
    width: int
    height: int
    states: List[StateMetadata]
    version: str = DMI_VERSION
    extra: List[OpaqueDirective] = field(default_factory=list)


def _quote(name: str) -> str:
    return '"' + name.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _unquote(value: str) -> str:
    if len(value) < 2 or not (value.startswith('"') and value.endswith('"')):
        raise InvalidValueError("State name must be quoted", field="state", found=value)
    out = []
    chars = iter(value[1:-1])
    for ch in chars:
        if ch == "\\":
            ch = next(chars, "\\")
        out.append(ch)
    return "".join(out)


def _parse_int(key: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise InvalidValueError("Expected an integer", field=key, found=value) from None


def _parse_flag(key: str, value: str) -> bool:
    return _parse_int(key, value) != 0


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else repr(float(value))


def _parse_delays(value: str) -> List[float]:
    delays = []
    for item in value.split(","):
        try:
            delay = float(item)
        except ValueError:
            raise InvalidValueError("Expected a number", field="delay", found=item) from None
        if delay < 0:
            raise InvalidValueError("Delay must not be negative", field="delay", found=item)
        delays.append(delay)
    return delays


def _parse_hotspot(value: str) -> Tuple[int, str]:
    parts = [p.strip() for p in value.split(",")]
    if len(parts) != 3:
        raise InvalidValueError("Hotspot must be x,y,frame", field="hotspot", found=value)
    x, y, frame = (_parse_int("hotspot", p) for p in parts)
    return frame, f"{x},{y}"


def _split_directive(line: str, line_number: int) -> Tuple[str, str]:
    key, sep, value = line.partition("=")
    if not sep:
        raise InvalidValueError("Expected 'key = value'", field=f"line {line_number}", found=line)
    return key.strip(), value.strip()


class _StateBuilder:
    """Collects the directive lines of one state block."""

    def __init__(self, name: str):
        self.name = name
        self.values = {}
        self.hotspot_lines: List[Tuple[int, str]] = []
        # known keys seen so far, and for each unknown directive a snapshot of them
        self.seen: Dict[str, int] = {}
        self.unknown: List[Tuple[Dict[str, int], str, str]] = []

    def add(self, key: str, value: str):
        if key == "hotspot":
            self.hotspot_lines.append(_parse_hotspot(value))
        elif key in STATE_KEYS:
            self.values[key] = value
        else:
            self.unknown.append((dict(self.seen), key, value))
            return
        self.seen[key] = self.seen.get(key, 0) + 1

    def _place_unknown(self, state: "StateMetadata") -> List[OpaqueDirective]:
        """
        Positions count only the directive lines serialize() writes back, so
        lines left out as defaults (`delay = 1`, `loop = 0`) do not shift them.
        """
        written = Counter(key for key, _ in _directive_lines(state))
        return [
            (index + sum(min(count, written[key]) for key, count in seen.items()), key, value)
            for index, (seen, key, value) in enumerate(self.unknown)
        ]

    def build(self) -> StateMetadata:
        for required in ("dirs", "frames"):
            if required not in self.values:
                raise MissingFieldError(f"State '{self.name}' is missing a directive", field=required)
        dirs = _parse_int("dirs", self.values["dirs"])
        if dirs not in VALID_DIRECTION_COUNTS:
            raise InvalidValueError(f"State '{self.name}' has an invalid direction count", field="dirs",
                                    expected=VALID_DIRECTION_COUNTS, found=dirs)
        frame_count = _parse_int("frames", self.values["frames"])
        if frame_count < 1:
            raise InvalidValueError(f"State '{self.name}' has no frames", field="frames",
                                    expected=">= 1", found=frame_count)

        if "delay" in self.values:
            delays = _parse_delays(self.values["delay"])
            if len(delays) != frame_count:
                raise InvalidValueError(f"State '{self.name}' delay count does not match frames",
                                        field="delay", expected=frame_count, found=len(delays))
        else:
            delays = [1.0] * frame_count

        hotspots = [""] * frame_count
        for frame, coords in self.hotspot_lines:
            if not 1 <= frame <= frame_count:
                raise InvalidValueError(f"State '{self.name}' hotspot frame out of range",
                                        field="hotspot", expected=f"1..{frame_count}", found=frame)
            hotspots[frame - 1] = coords

        state = StateMetadata(
            name=self.name,
            dirs=dirs,
            frame_count=frame_count,
            delays=delays,
            loop=_parse_int("loop", self.values.get("loop", "0")),
            rewind=_parse_flag("rewind", self.values.get("rewind", "0")),
            movement=_parse_flag("movement", self.values.get("movement", "0")),
            hotspots=hotspots,
        )
        state.extra = self._place_unknown(state)
        return state


def parse(text: str) -> DmiMetadata:
    """
    Parses the DMI description text into a DmiMetadata.

    Raises:
        MissingFieldError: If a marker or required directive is absent.
        InvalidValueError: If a value cannot be parsed or disagrees with the frame count.
    """
    lines = [line.strip() for line in text.replace("\r\n", "\n").split("\n")]
    lines = [line for line in lines if line]
    if not lines or lines[0] != BEGIN_MARKER:
        raise MissingFieldError("Description does not start with the DMI marker", field=BEGIN_MARKER)
    if END_MARKER not in lines:
        raise MissingFieldError("Description is not terminated", field=END_MARKER)

    header = {}
    header_extra: List[OpaqueDirective] = []
    builders: List[_StateBuilder] = []
    for number, line in enumerate(lines[1:lines.index(END_MARKER)], start=2):
        if line.startswith("#"):
            continue
        key, value = _split_directive(line, number)
        if key == "state":
            builders.append(_StateBuilder(_unquote(value)))
        elif builders:
            builders[-1].add(key, value)
        elif key in ("version", "width", "height"):
            header[key] = value
        else:
            header_extra.append((len(header) + len(header_extra), key, value))

    for required in ("version", "width", "height"):
        if required not in header:
            raise MissingFieldError("Description header is missing a directive", field=required)

    return DmiMetadata(
        width=_parse_int("width", header["width"]),
        height=_parse_int("height", header["height"]),
        states=[builder.build() for builder in builders],
        version=header["version"],
        extra=header_extra,
    )


def _place_extra(lines: List[str], extra: List[OpaqueDirective], indent: str) -> List[str]:
    lines = list(lines)
    for position, key, value in extra:
        lines.insert(min(position, len(lines)), f"{indent}{key} = {value}")
    return lines


def _directive_lines(state: StateMetadata) -> List[Tuple[str, str]]:
    """The (key, value) lines written for a state, defaults left out."""
    lines = [("dirs", str(state.dirs)), ("frames", str(state.frame_count))]
    if state.frame_count > 1 or any(delay != 1 for delay in state.delays):
        lines.append(("delay", ",".join(_format_number(d) for d in state.delays)))
    if state.loop:
        lines.append(("loop", str(state.loop)))
    if state.rewind:
        lines.append(("rewind", "1"))
    if state.movement:
        lines.append(("movement", "1"))
    for index, hotspot in enumerate(state.hotspots, start=1):
        if hotspot:
            lines.append(("hotspot", f"{hotspot},{index}"))
    return lines


def _state_lines(state: StateMetadata) -> List[str]:
    if len(state.delays) != state.frame_count:
        raise InvalidValueError(f"State '{state.name}' delay count does not match frames",
                                field="delay", expected=state.frame_count, found=len(state.delays))
    if len(state.hotspots) != state.frame_count:
        raise InvalidValueError(f"State '{state.name}' hotspot count does not match frames",
                                field="hotspot", expected=state.frame_count, found=len(state.hotspots))

    lines = [f"\t{key} = {value}" for key, value in _directive_lines(state)]
    return [f"state = {_quote(state.name)}"] + _place_extra(lines, state.extra, "\t")


def serialize(metadata: DmiMetadata) -> str:
    header = [f"version = {metadata.version}", f"\twidth = {metadata.width}", f"\theight = {metadata.height}"]
    lines = [BEGIN_MARKER] + _place_extra(header, metadata.extra, "\t")
    for state in metadata.states:
        lines.extend(_state_lines(state))
    lines.append(END_MARKER)
    return "\n".join(lines) + "\n"


def encode_ztxt(text: str, keyword: str = METADATA_KEYWORD) -> bytes:
    """Builds a zTXt payload: keyword, null separator, compression method 0, zlib data."""
    return keyword.encode("latin-1") + b"\x00\x00" + zlib.compress(text.encode("utf-8"))


def decode_text_chunk(tag: bytes, payload: bytes) -> Optional[str]:
    """
    Returns the text of a zTXt or tEXt payload if its keyword is the DMI
    description keyword, otherwise None.
    """
    keyword, sep, rest = payload.partition(b"\x00")
    if not sep or keyword.decode("latin-1") != METADATA_KEYWORD:
        return None
    if tag == b"tEXt":
        return rest.decode("utf-8")
    if not rest or rest[0] != 0:
        raise FormatError("Unsupported text compression method", field="zTXt",
                          expected=0, found=rest[0] if rest else None)
    try:
        return zlib.decompress(rest[1:]).decode("utf-8")
    except zlib.error as e:
        raise FormatError(f"Could not decompress DMI description: {e}", field="zTXt") from None


def is_description_chunk(chunk: Chunk) -> bool:
    """True for a zTXt or tEXt chunk carrying the DMI description keyword."""
    keyword, sep, _ = chunk.payload.partition(b"\x00")
    return chunk.tag in TEXT_CHUNK_TAGS and bool(sep) and keyword == METADATA_KEYWORD.encode("latin-1")


def find_description(data: bytes) -> Optional[Tuple[Chunk, str]]:
    """
    Returns the first description chunk of a container together with its
    decoded text, or None if the container has none. Text chunks with other
    keywords are skipped.
    """
    for chunk in png_chunks.iter_chunks(data):
        if is_description_chunk(chunk):
            return chunk, decode_text_chunk(chunk.tag, chunk.payload)
    return None
