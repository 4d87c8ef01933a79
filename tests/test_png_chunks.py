import struct
import zlib
import pytest

import png_chunks
from errors import FormatError, TruncatedChunkError


def make_png(idat_payload=None, extra=()):
    ihdr = struct.pack(">IIBBBBB", 1, 1, 8, 6, 0, 0, 0)
    if idat_payload is None:
        idat_payload = zlib.compress(b"\x00\x00\x00\x00\x00")
    return png_chunks.assemble([(b"IHDR", ihdr), *extra, (b"IDAT", idat_payload), (b"IEND", b"")])


def test_checksum_matches_crc32():
    assert png_chunks.checksum(b"IEND", b"") == zlib.crc32(b"IEND") & 0xFFFFFFFF
    assert png_chunks.checksum(b"tEXt", b"abc") == zlib.crc32(b"tEXtabc") & 0xFFFFFFFF

def test_build_chunk_layout():
    chunk = png_chunks.build_chunk(b"tEXt", b"hello")
    assert chunk[:4] == struct.pack(">I", 5)
    assert chunk[4:8] == b"tEXt"
    assert chunk[8:13] == b"hello"
    assert chunk[13:] == struct.pack(">I", png_chunks.checksum(b"tEXt", b"hello"))

def test_build_chunk_rejects_bad_tag():
    with pytest.raises(ValueError):
        png_chunks.build_chunk(b"TOOLONG", b"")

def test_iter_chunks_walks_in_order():
    data = make_png()
    chunks = list(png_chunks.iter_chunks(data))
    assert [c.tag for c in chunks] == [b"IHDR", b"IDAT", b"IEND"]
    assert chunks[0].offset == len(png_chunks.PNG_SIGNATURE)
    assert chunks[-1].end == len(data)
    assert all(png_chunks.verify_chunk(c) for c in chunks)

def test_iter_chunks_requires_signature():
    with pytest.raises(FormatError):
        list(png_chunks.iter_chunks(b"GIF89a" + b"\x00" * 20))

def test_truncated_chunk_raises():
    data = make_png()
    with pytest.raises(TruncatedChunkError):
        list(png_chunks.iter_chunks(data[:-6]))

def test_truncated_header_raises():
    data = png_chunks.PNG_SIGNATURE + b"\x00\x00\x00"
    with pytest.raises(TruncatedChunkError):
        png_chunks.find_chunk(data, b"IHDR")

def test_declared_length_past_end_raises():
    data = png_chunks.PNG_SIGNATURE + struct.pack(">I", 1000) + b"IDAT" + b"\x00" * 10
    with pytest.raises(TruncatedChunkError) as excinfo:
        png_chunks.find_chunk(data, b"IEND")
    assert excinfo.value.offset == 8

def test_find_chunk_ignores_tag_bytes_inside_payload():
    # The IDAT payload looks like the start of a zTXt chunk.
    fake = struct.pack(">I", 4) + b"zTXt" + b"junkjunk"
    data = make_png(idat_payload=fake)
    assert png_chunks.find_chunk(data, b"zTXt") is None

def test_find_chunk_returns_structural_position():
    fake = struct.pack(">I", 4) + b"zTXt" + b"junkjunk"
    real = png_chunks.build_chunk(b"zTXt", b"Description\x00\x00" + zlib.compress(b"x"))
    data = make_png(idat_payload=fake)
    iend_offset, _ = png_chunks.find_chunk(data, b"IEND")
    data = data[:iend_offset] + real + data[iend_offset:]
    assert png_chunks.find_chunk(data, b"zTXt") == (iend_offset, len(real))

def test_read_chunk_returns_raw_bytes():
    text = png_chunks.build_chunk(b"tEXt", b"k\x00v")
    data = make_png(extra=[(b"tEXt", b"k\x00v")])
    assert png_chunks.read_chunk(data, b"tEXt") == text
    assert png_chunks.read_chunk(data, b"zTXt") is None

def test_splice_chunk_inserts_before_tag_and_keeps_other_bytes():
    data = make_png()
    new_chunk = png_chunks.build_chunk(b"zTXt", b"payload")
    idat_offset, _ = png_chunks.find_chunk(data, b"IDAT")
    spliced = png_chunks.splice_chunk(data, new_chunk, b"IDAT")
    assert spliced[:idat_offset] == data[:idat_offset]
    assert spliced[idat_offset:idat_offset + len(new_chunk)] == new_chunk
    assert spliced[idat_offset + len(new_chunk):] == data[idat_offset:]
    assert [c.tag for c in png_chunks.iter_chunks(spliced)] == [b"IHDR", b"zTXt", b"IDAT", b"IEND"]
    assert all(png_chunks.verify_chunk(c) for c in png_chunks.iter_chunks(spliced))

def test_splice_chunk_missing_insertion_point():
    data = png_chunks.assemble([(b"IHDR", b"\x00" * 13), (b"IEND", b"")])
    with pytest.raises(FormatError):
        png_chunks.splice_chunk(data, png_chunks.build_chunk(b"zTXt", b""), b"IDAT")

def test_remove_chunks():
    data = make_png(extra=[(b"tEXt", b"a\x00b"), (b"tEXt", b"c\x00d")])
    stripped = png_chunks.remove_chunks(data, b"tEXt")
    assert [c.tag for c in png_chunks.iter_chunks(stripped)] == [b"IHDR", b"IDAT", b"IEND"]
    assert stripped == make_png()

def test_assemble_recomputes_checksums():
    data = png_chunks.assemble([(b"IHDR", b"\x01" * 13), (b"IEND", b"")])
    assert data.startswith(png_chunks.PNG_SIGNATURE)
    for chunk in png_chunks.iter_chunks(data):
        assert chunk.crc == png_chunks.checksum(chunk.tag, chunk.payload)

def test_walk_stops_at_end_chunk():
    data = make_png() + b"\x00\x00trailing"
    assert [c.tag for c in png_chunks.iter_chunks(data)] == [b"IHDR", b"IDAT", b"IEND"]
    assert png_chunks.find_chunk(data, b"zTXt") is None
    assert png_chunks.remove_chunks(data, b"tEXt") == make_png()

def test_filter_chunks_by_predicate():
    data = make_png(extra=[(b"tEXt", b"a\x00b"), (b"zTXt", b"c\x00\x00")])
    kept = png_chunks.filter_chunks(data, lambda chunk: chunk.payload[:1] != b"a")
    assert [c.tag for c in png_chunks.iter_chunks(kept)] == [b"IHDR", b"zTXt", b"IDAT", b"IEND"]
