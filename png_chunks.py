"""
SPDX-License-Identifier: GPL-3.0-only
Copyright © 2025 Keystone Intelligence LLC
Licensed under GPL v3 (see LICENSE file for details)
"""

import struct
import zlib
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional, Tuple

from errors import FormatError, TruncatedChunkError

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
# length field + tag + crc
CHUNK_OVERHEAD = 12
END_TAG = b"IEND"


@dataclass
class Chunk:
    tag: bytes
    offset: int
    length: int
    payload: bytes
    crc: int

    @property
    def total_length(self) -> int:
        return self.length + CHUNK_OVERHEAD

    @property
    def end(self) -> int:
        return self.offset + self.total_length


def checksum(tag: bytes, payload: bytes) -> int:
    """CRC-32 over the chunk tag followed by its payload."""
    return zlib.crc32(tag + payload) & 0xFFFFFFFF


def build_chunk(tag: bytes, payload: bytes) -> bytes:
    """Returns a complete chunk (length, tag, payload, freshly computed CRC)."""
    if len(tag) != 4:
        raise ValueError(f"Chunk tag must be 4 bytes, got {tag!r}")
    return struct.pack(">I", len(payload)) + tag + payload + struct.pack(">I", checksum(tag, payload))


def verify_chunk(chunk: Chunk) -> bool:
    return checksum(chunk.tag, chunk.payload) == chunk.crc


def iter_chunks(data: bytes) -> Iterator[Chunk]:
    """
    Walks the container one chunk at a time using each chunk's declared length.

    Payload bytes are never inspected for tags, so compressed pixel data that
    happens to contain another chunk's tag cannot produce a false match.
    The walk stops after IEND; anything trailing it is ignored.

    Raises:
        FormatError: If the data does not start with the PNG signature.
        TruncatedChunkError: If a declared length runs past the end of the data.
    """
    if not data.startswith(PNG_SIGNATURE):
        raise FormatError("Not a PNG container", offset=0, expected=PNG_SIGNATURE, found=bytes(data[:8]))

    offset = len(PNG_SIGNATURE)
    size = len(data)
    while offset < size:
        if offset + 8 > size:
            raise TruncatedChunkError("Chunk header runs past end of data", offset=offset,
                                      expected=8, found=size - offset)
        length, tag = struct.unpack(">I4s", data[offset:offset + 8])
        end = offset + length + CHUNK_OVERHEAD
        if end > size:
            raise TruncatedChunkError("Chunk runs past end of data", field=tag.decode("latin-1"),
                                      offset=offset, expected=length + CHUNK_OVERHEAD, found=size - offset)
        payload = bytes(data[offset + 8:offset + 8 + length])
        (crc,) = struct.unpack(">I", data[end - 4:end])
        yield Chunk(tag=tag, offset=offset, length=length, payload=payload, crc=crc)
        if tag == END_TAG:
            return
        offset = end


def find_chunk(data: bytes, tag: bytes) -> Optional[Tuple[int, int]]:
    """
    Returns (offset, total_length) of the first chunk tagged `tag`, or None.
    """
    for chunk in iter_chunks(data):
        if chunk.tag == tag:
            return chunk.offset, chunk.total_length
    return None


def read_chunk(data: bytes, tag: bytes) -> Optional[bytes]:
    """Returns the raw bytes (length + tag + payload + crc) of the first `tag` chunk."""
    location = find_chunk(data, tag)
    if location is None:
        return None
    offset, total_length = location
    return bytes(data[offset:offset + total_length])


def splice_chunk(data: bytes, new_chunk: bytes, before_tag: bytes) -> bytes:
    """
    Inserts `new_chunk` immediately before the first chunk tagged `before_tag`.
    Every other byte of the container is copied unchanged.

    Raises:
        FormatError: If the container has no `before_tag` chunk.
    """
    location = find_chunk(data, before_tag)
    if location is None:
        raise FormatError("Insertion point not found", field=before_tag.decode("latin-1"))
    offset, _ = location
    return bytes(data[:offset]) + new_chunk + bytes(data[offset:])


def filter_chunks(data: bytes, keep: Callable[[Chunk], bool]) -> bytes:
    """Copies the chunks for which `keep` is true, byte for byte and in order."""
    output = bytearray(PNG_SIGNATURE)
    for chunk in iter_chunks(data):
        if keep(chunk):
            output += data[chunk.offset:chunk.end]
    return bytes(output)


def remove_chunks(data: bytes, tag: bytes) -> bytes:
    """Drops every chunk tagged `tag`, keeping the remaining bytes in order."""
    return filter_chunks(data, lambda chunk: chunk.tag != tag)


def assemble(chunks: Iterable[Tuple[bytes, bytes]]) -> bytes:
    """Builds a container from ordered (tag, payload) pairs, recomputing every CRC."""
    output = bytearray(PNG_SIGNATURE)
    for tag, payload in chunks:
        output += build_chunk(tag, payload)
    return bytes(output)
