"""
PNG Chunk Primitives
====================

Byte-level reading and writing of PNG chunks.

A chunk is ``length (4, big-endian) | type (4) | data (length) | crc (4)``
where the CRC covers type + data. Chunks follow the 8-byte signature and end
with ``IEND``.
"""

import logging
import struct
import zlib
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

from .errors import FormatError, FormatErrorKind, TextChunkError

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

TEXT_CHUNK_TYPE = b"tEXt"
ITXT_CHUNK_TYPE = b"iTXt"
ZTXT_CHUNK_TYPE = b"zTXt"
EXIF_CHUNK_TYPE = b"eXIf"
IEND_CHUNK_TYPE = b"IEND"

TEXT_BEARING_TYPES = (TEXT_CHUNK_TYPE, ITXT_CHUNK_TYPE, ZTXT_CHUNK_TYPE)

# PNG limits chunk data to 2^31 - 1 bytes
MAX_CHUNK_LENGTH = 2 ** 31 - 1


def read_uint32_be(buffer: bytes, offset: int) -> int:
    """Read an unsigned big-endian 32-bit integer."""
    return struct.unpack_from(">I", buffer, offset)[0]


def write_uint32_be(value: int) -> bytes:
    """Pack an unsigned big-endian 32-bit integer."""
    return struct.pack(">I", value & 0xFFFFFFFF)


def bytes_equal(a: bytes, b: bytes) -> bool:
    """Compare two byte sequences."""
    return len(a) == len(b) and bytes(a) == bytes(b)


def crc32(data: bytes) -> int:
    """CRC-32 (IEEE 802.3 polynomial) as used by PNG."""
    return zlib.crc32(data) & 0xFFFFFFFF


def has_png_signature(buffer: bytes) -> bool:
    """Check the 8-byte PNG signature."""
    return len(buffer) >= len(PNG_SIGNATURE) and bytes_equal(buffer[:8], PNG_SIGNATURE)


def is_card_keyword(keyword: str) -> bool:
    """Whether a text chunk keyword marks character card metadata."""
    lowered = keyword.strip().lower()
    return "chara" in lowered or "character" in lowered


@dataclass(frozen=True)
class PngChunk:
    """One chunk as it appeared in the source buffer."""

    chunk_type: bytes
    data: bytes
    crc: int
    offset: int

    @property
    def length(self) -> int:
        return len(self.data)

    @property
    def type_name(self) -> str:
        return self.chunk_type.decode("latin-1")

    @property
    def crc_valid(self) -> bool:
        return crc32(self.chunk_type + self.data) == self.crc

    @property
    def is_text(self) -> bool:
        return self.chunk_type in TEXT_BEARING_TYPES

    @property
    def raw(self) -> bytes:
        """Exact serialized bytes, including the original (possibly wrong) CRC."""
        return write_uint32_be(self.length) + self.chunk_type + self.data + write_uint32_be(self.crc)

    @property
    def keyword(self) -> Optional[str]:
        """Keyword of a text-bearing chunk, or None if absent/undecodable."""
        if not self.is_text:
            return None
        null_index = self.data.find(b"\x00")
        if null_index <= 0:
            return None
        try:
            return self.data[:null_index].decode("utf-8")
        except UnicodeDecodeError:
            return None


def build_chunk(chunk_type: bytes, data: bytes) -> bytes:
    """Serialize a chunk with a freshly computed CRC."""
    if len(chunk_type) != 4:
        raise ValueError(f"Chunk type must be 4 bytes, got {chunk_type!r}")
    if len(data) > MAX_CHUNK_LENGTH:
        raise ValueError("Chunk data too large for a single PNG chunk")
    return write_uint32_be(len(data)) + chunk_type + data + write_uint32_be(crc32(chunk_type + data))


def iter_chunks(buffer: bytes) -> Iterator[PngChunk]:
    """
    Walk chunks from the signature up to and including IEND.

    Raises:
        FormatError: INVALID_SIGNATURE, or MISSING_TERMINATOR when the buffer
            ends (or a chunk is truncated) before IEND.
    """
    if not has_png_signature(buffer):
        raise FormatError(FormatErrorKind.INVALID_SIGNATURE, "Invalid PNG file signature")

    offset = len(PNG_SIGNATURE)
    total = len(buffer)

    while offset < total:
        if offset + 8 > total:
            break
        length = read_uint32_be(buffer, offset)
        chunk_type = bytes(buffer[offset + 4:offset + 8])
        data_start = offset + 8
        data_end = data_start + length
        if data_end + 4 > total:
            logger.debug(f"Truncated {chunk_type!r} chunk at offset {offset}")
            break

        chunk = PngChunk(
            chunk_type=chunk_type,
            data=bytes(buffer[data_start:data_end]),
            crc=read_uint32_be(buffer, data_end),
            offset=offset,
        )
        yield chunk

        if chunk_type == IEND_CHUNK_TYPE:
            return
        offset = data_end + 4

    raise FormatError(FormatErrorKind.MISSING_TERMINATOR, "PNG file is missing IEND chunk")


def parse_text_chunk(data: bytes) -> Tuple[str, str]:
    """
    Parse tEXt data: ``keyword \\0 text``.

    Returns:
        (keyword, text) decoded as UTF-8

    Raises:
        TextChunkError: If the chunk is malformed or not valid UTF-8
    """
    if len(data) < 2:
        raise TextChunkError("Invalid tEXt chunk: data too short")

    null_index = data.find(b"\x00")
    if null_index == -1:
        raise TextChunkError("Invalid tEXt chunk: missing null separator")
    if null_index == 0:
        raise TextChunkError("Invalid tEXt chunk: keyword cannot be empty")

    text_data = data[null_index + 1:]
    if not text_data:
        raise TextChunkError("Invalid tEXt chunk: text data cannot be empty")

    try:
        return data[:null_index].decode("utf-8"), text_data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise TextChunkError(f"Invalid tEXt chunk: failed to decode UTF-8 data - {e}")


def parse_itxt_chunk(data: bytes) -> Tuple[str, str]:
    """
    Parse iTXt data.

    Layout: ``keyword \\0 compression_flag compression_method
    language_tag \\0 translated_keyword \\0 text``.

    Raises:
        TextChunkError: If the chunk is malformed, compressed, or not UTF-8
    """
    if len(data) < 6:
        raise TextChunkError("Invalid iTXt chunk: data too short")

    keyword_end = data.find(b"\x00")
    if keyword_end == -1:
        raise TextChunkError("Invalid iTXt chunk: missing keyword null separator")
    if keyword_end == 0:
        raise TextChunkError("Invalid iTXt chunk: keyword cannot be empty")

    offset = keyword_end + 1
    if offset + 1 >= len(data):
        raise TextChunkError("Invalid iTXt chunk: missing compression information")

    compression_flag = data[offset]
    offset += 2  # compression flag + compression method

    language_end = data.find(b"\x00", offset)
    if language_end != -1:
        offset = language_end + 1
    translated_end = data.find(b"\x00", offset)
    if translated_end != -1:
        offset = translated_end + 1

    if offset >= len(data):
        raise TextChunkError("Invalid iTXt chunk: text data cannot be empty")
    if compression_flag != 0:
        raise TextChunkError("Compressed iTXt chunks are not supported")

    try:
        return data[:keyword_end].decode("utf-8"), data[offset:].decode("utf-8")
    except UnicodeDecodeError as e:
        raise TextChunkError(f"Invalid iTXt chunk: failed to decode UTF-8 data - {e}")


def build_text_chunk(keyword: str, text: str) -> bytes:
    """Build a tEXt chunk (keyword truncated to the 79-byte PNG limit)."""
    keyword_bytes = keyword.encode("utf-8")[:79]
    return build_chunk(TEXT_CHUNK_TYPE, keyword_bytes + b"\x00" + text.encode("utf-8"))
