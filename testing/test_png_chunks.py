"""
Tests for the PNG chunk primitives.

Tests cover:
- Big-endian integers and CRC-32
- Walking chunks from signature to IEND
- Signature / terminator failures
- tEXt and iTXt parsing
"""

import pytest

from card_fixtures import build_itxt_chunk, insert_chunks, make_png
from card_workbench.services.character_cards.errors import FormatError, FormatErrorKind, TextChunkError
from card_workbench.services.character_cards.png_chunks import (
    PNG_SIGNATURE,
    build_chunk,
    build_text_chunk,
    bytes_equal,
    crc32,
    is_card_keyword,
    iter_chunks,
    parse_itxt_chunk,
    parse_text_chunk,
    read_uint32_be,
    write_uint32_be,
)


class TestBinaryPrimitives:
    """Integer, byte and checksum helpers."""

    def test_uint32_round_trip(self):
        """Test big-endian integers read back what was written."""
        assert write_uint32_be(0x01020304) == b"\x01\x02\x03\x04"
        assert read_uint32_be(b"\x00\x01\x02\x03\x04", 1) == 0x01020304
        assert read_uint32_be(write_uint32_be(0xFFFFFFFF), 0) == 0xFFFFFFFF

    def test_crc_matches_png_reference(self):
        """Test the CRC matches the PNG reference value."""
        # Every PNG ends with this IEND CRC
        assert crc32(b"IEND") == 0xAE426082
        assert crc32(b"") == 0

    def test_bytes_equal(self):
        """Test byte comparison."""
        assert bytes_equal(b"abc", bytearray(b"abc"))
        assert not bytes_equal(b"abc", b"abd")
        assert not bytes_equal(b"abc", b"ab")

    def test_build_chunk_layout(self):
        """Test a built chunk has length, type, data and CRC."""
        chunk = build_chunk(b"tEXt", b"a\x00b")
        assert chunk[:4] == b"\x00\x00\x00\x03"
        assert chunk[4:8] == b"tEXt"
        assert chunk[8:11] == b"a\x00b"
        assert read_uint32_be(chunk, 11) == crc32(b"tEXta\x00b")

    def test_build_chunk_rejects_bad_type(self):
        """Test chunk types must be four bytes."""
        with pytest.raises(ValueError):
            build_chunk(b"TXT", b"")

    def test_card_keyword_predicate(self):
        """Test which keywords mark card metadata."""
        assert is_card_keyword("chara")
        assert is_card_keyword("Chara")
        assert is_card_keyword("CHARACTER")
        assert is_card_keyword("my_character_data")
        assert not is_card_keyword("Comment")
        assert not is_card_keyword("parameters")


class TestChunkWalk:
    """iter_chunks over Pillow-written PNGs."""

    def test_walks_from_ihdr_to_iend(self):
        """Test the walk covers IHDR through IEND."""
        chunks = list(iter_chunks(make_png()))
        assert chunks[0].chunk_type == b"IHDR"
        assert chunks[-1].chunk_type == b"IEND"
        assert chunks[0].offset == len(PNG_SIGNATURE)
        assert all(chunk.crc_valid for chunk in chunks)

    def test_raw_reproduces_source_bytes(self):
        """Test raw chunks reproduce the source bytes."""
        png = make_png()
        assert PNG_SIGNATURE + b"".join(c.raw for c in iter_chunks(png)) == png

    def test_stops_at_iend(self):
        """Test the walk stops at IEND."""
        png = make_png() + b"trailing garbage"
        assert list(iter_chunks(png))[-1].chunk_type == b"IEND"

    def test_invalid_signature(self):
        """Test a bad signature is rejected."""
        png = make_png()
        with pytest.raises(FormatError) as exc_info:
            list(iter_chunks(b"\x88" + png[1:]))
        assert exc_info.value.kind == FormatErrorKind.INVALID_SIGNATURE

    def test_missing_iend(self):
        """Test a buffer without IEND is rejected."""
        png = make_png()
        with pytest.raises(FormatError) as exc_info:
            list(iter_chunks(png[:-12]))
        assert exc_info.value.kind == FormatErrorKind.MISSING_TERMINATOR

    def test_truncated_chunk(self):
        """Test a truncated chunk is a missing terminator."""
        png = make_png()
        with pytest.raises(FormatError) as exc_info:
            list(iter_chunks(png[:-6]))
        assert exc_info.value.kind == FormatErrorKind.MISSING_TERMINATOR

    def test_signature_only(self):
        """Test a bare signature is a missing terminator."""
        with pytest.raises(FormatError) as exc_info:
            list(iter_chunks(PNG_SIGNATURE))
        assert exc_info.value.kind == FormatErrorKind.MISSING_TERMINATOR

    def test_bad_crc_is_reported_not_raised(self):
        """Test a bad CRC is reported on the chunk."""
        chunk = bytearray(build_text_chunk("Comment", "hi"))
        chunk[-1] ^= 0xFF
        png = insert_chunks(make_png(), bytes(chunk))
        text_chunk = [c for c in iter_chunks(png) if c.chunk_type == b"tEXt"][0]
        assert not text_chunk.crc_valid
        assert text_chunk.raw == bytes(chunk)

    def test_keyword_property(self):
        """Test the keyword of text and non-text chunks."""
        png = insert_chunks(make_png(), build_text_chunk("chara", "abc"))
        text_chunk = [c for c in iter_chunks(png) if c.is_text][0]
        assert text_chunk.keyword == "chara"
        assert text_chunk.type_name == "tEXt"
        assert text_chunk.length == len(b"chara\x00abc")


class TestTextChunks:
    """tEXt / iTXt payload parsing."""

    def test_parse_text(self):
        """Test tEXt keyword and text are split."""
        assert parse_text_chunk(b"chara\x00eyJ9") == ("chara", "eyJ9")

    def test_parse_text_utf8(self):
        """Test tEXt text is decoded as UTF-8."""
        assert parse_text_chunk("描述\x00角色".encode("utf-8")) == ("描述", "角色")

    @pytest.mark.parametrize("data", [b"", b"x", b"no separator", b"\x00text", b"key\x00"])
    def test_parse_text_malformed(self, data):
        """Test malformed tEXt payloads raise TextChunkError."""
        with pytest.raises(TextChunkError):
            parse_text_chunk(data)

    def test_parse_text_invalid_utf8(self):
        """Test undecodable tEXt raises TextChunkError."""
        with pytest.raises(TextChunkError):
            parse_text_chunk(b"chara\x00\xff\xfe")

    def test_parse_itxt(self):
        """Test iTXt keyword and text are split."""
        chunk = build_itxt_chunk("chara", "payload")
        data = chunk[8:-4]
        assert parse_itxt_chunk(data) == ("chara", "payload")

    def test_parse_itxt_with_language(self):
        """Test iTXt language and translated keyword are skipped."""
        data = b"chara\x00\x00\x00en\x00Chara\x00payload"
        assert parse_itxt_chunk(data) == ("chara", "payload")

    def test_parse_itxt_compressed_rejected(self):
        """Test compressed iTXt is rejected."""
        data = b"chara\x00\x01\x00\x00\x00x\x9c"
        with pytest.raises(TextChunkError, match="Compressed"):
            parse_itxt_chunk(data)

    def test_parse_itxt_truncated(self):
        """Test truncated iTXt raises TextChunkError."""
        with pytest.raises(TextChunkError):
            parse_itxt_chunk(b"chara\x00")

    def test_text_keyword_truncated_to_png_limit(self):
        """Test keywords are cut to 79 bytes."""
        chunk = build_text_chunk("k" * 100, "v")
        keyword, _ = parse_text_chunk(chunk[8:-4])
        assert len(keyword) == 79
