"""
PNG Metadata Handler
===================

Reads and replaces the character card text chunk inside PNG images.

The card is stored SillyTavern-style: a ``tEXt`` chunk with keyword
``chara`` whose text is Base64 of the card JSON. Everything outside the
card chunk is copied through byte-for-byte.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .errors import EncodeSelfCheckError, FormatError, FormatErrorKind, TextChunkError
from .models import CharacterCard
from .normalizer import serialize_card
from .png_chunks import (
    EXIF_CHUNK_TYPE,
    IEND_CHUNK_TYPE,
    ITXT_CHUNK_TYPE,
    PNG_SIGNATURE,
    TEXT_CHUNK_TYPE,
    ZTXT_CHUNK_TYPE,
    PngChunk,
    build_text_chunk,
    has_png_signature,
    is_card_keyword,
    iter_chunks,
    parse_itxt_chunk,
    parse_text_chunk,
)

logger = logging.getLogger(__name__)

CARD_KEYWORD = "chara"


@dataclass
class TextChunkInfo:
    """A successfully decoded text chunk."""
    chunk_type: str
    keyword: str
    text: str


@dataclass
class TextChunkScan:
    """Every decodable text chunk of a PNG plus what was skipped."""
    chunks: List[TextChunkInfo] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    corrupt_text_chunks: int = 0


@dataclass
class CardTextScan:
    """Outcome of scanning a PNG for card metadata."""
    text: str
    keyword: str
    chunk_type: str
    warnings: List[str] = field(default_factory=list)


def decode_card_text(raw_text: str) -> str:
    """
    Base64-decode card chunk text, falling back to the raw text.

    Producers that write plain JSON into the chunk are still readable, and
    Base64 with missing padding is accepted.
    """
    compact = "".join(raw_text.split()).rstrip("=")
    compact += "=" * (-len(compact) % 4)
    try:
        return base64.b64decode(compact, validate=True).decode("utf-8")
    except (binascii.Error, ValueError) as e:
        logger.warning(f"Card chunk is not Base64, using raw text: {e}")
        return raw_text


def encode_card_text(card_json: str) -> str:
    return base64.b64encode(card_json.encode("utf-8")).decode("ascii")


class PNGMetadataHandler:
    """Handle PNG text chunk operations for character card metadata."""

    @staticmethod
    def list_chunks(png_data: bytes) -> List[PngChunk]:
        """All chunks up to IEND, in file order."""
        return list(iter_chunks(png_data))

    @staticmethod
    def read_text_chunks(png_data: bytes) -> TextChunkScan:
        """
        Decode every tEXt/iTXt chunk.

        Malformed or non-UTF-8 chunks are skipped and reported as warnings.
        A card chunk with a bad CRC is fatal.

        Raises:
            FormatError: INVALID_SIGNATURE, MISSING_TERMINATOR, INVALID_CHUNK_CRC
        """
        scan = TextChunkScan()
        warnings = scan.warnings

        for chunk in iter_chunks(png_data):
            if not chunk.crc_valid:
                if chunk.chunk_type in (TEXT_CHUNK_TYPE, ITXT_CHUNK_TYPE):
                    keyword = chunk.keyword
                    if keyword is not None and is_card_keyword(keyword):
                        raise FormatError(
                            FormatErrorKind.INVALID_CHUNK_CRC,
                            "Character card chunk has invalid CRC"
                        )
                    scan.corrupt_text_chunks += 1
                    warnings.append(f"{chunk.type_name} chunk at offset {chunk.offset} has invalid CRC")
                else:
                    # Other tools write imperfect CRCs on image chunks; tolerated
                    logger.debug(f"Ignoring invalid CRC on {chunk.type_name} chunk at offset {chunk.offset}")

            if chunk.chunk_type == TEXT_CHUNK_TYPE:
                parser = parse_text_chunk
            elif chunk.chunk_type == ITXT_CHUNK_TYPE:
                parser = parse_itxt_chunk
            elif chunk.chunk_type == ZTXT_CHUNK_TYPE:
                message = f"Skipping compressed zTXt chunk '{chunk.keyword or '?'}'"
                logger.info(message)
                warnings.append(message)
                continue
            else:
                continue

            try:
                keyword, text = parser(chunk.data)
            except TextChunkError as e:
                logger.debug(f"Skipping {chunk.type_name} chunk at offset {chunk.offset}: {e}")
                warnings.append(str(e))
                continue

            scan.chunks.append(TextChunkInfo(chunk_type=chunk.type_name, keyword=keyword, text=text))

        return scan

    @classmethod
    def read_card_text(cls, png_data: bytes) -> CardTextScan:
        """
        Extract the card text from a PNG.

        Args:
            png_data: PNG file data as bytes

        Returns:
            CardTextScan with the decoded (Base64-unwrapped) card text

        Raises:
            FormatError: If the PNG is malformed or carries no card chunk
        """
        scan = cls.read_text_chunks(png_data)

        for info in scan.chunks:
            if is_card_keyword(info.keyword):
                logger.debug(f"Found {info.chunk_type} chunk with keyword '{info.keyword}'")
                return CardTextScan(
                    text=decode_card_text(info.text),
                    keyword=info.keyword,
                    chunk_type=info.chunk_type,
                    warnings=scan.warnings,
                )

        if scan.corrupt_text_chunks:
            # A damaged chunk whose keyword no longer reads as "chara"
            raise FormatError(
                FormatErrorKind.INVALID_CHUNK_CRC,
                "No readable character card chunk; a text chunk has an invalid CRC"
            )
        raise FormatError(FormatErrorKind.NO_CARD_DATA, "No character card data found in PNG chunks")

    @staticmethod
    def _keep_chunk(chunk: PngChunk, preserve_text_chunks: bool, strip_exif: bool) -> bool:
        if chunk.is_text:
            if not preserve_text_chunks:
                return False
            keyword = chunk.keyword
            return not (keyword is not None and is_card_keyword(keyword))
        if chunk.chunk_type == EXIF_CHUNK_TYPE and strip_exif:
            return False
        return True

    @classmethod
    def write_card_text(
        cls,
        png_data: bytes,
        card_json: str,
        preserve_text_chunks: bool = False,
        strip_exif: bool = False,
    ) -> bytes:
        """
        Replace the card chunk of a PNG.

        Args:
            png_data: Original PNG file data
            card_json: Serialized card JSON (will be Base64-encoded)
            preserve_text_chunks: Keep text chunks unrelated to the card
            strip_exif: Drop eXIf chunks

        Returns:
            New PNG bytes with exactly one ``chara`` tEXt chunk before IEND

        Raises:
            FormatError: If the original PNG is malformed
            EncodeSelfCheckError: If the built PNG fails verification
        """
        if not has_png_signature(png_data):
            raise FormatError(FormatErrorKind.INVALID_SIGNATURE, "Invalid PNG file signature")

        kept: List[bytes] = []
        iend: Optional[bytes] = None
        dropped = 0
        for chunk in iter_chunks(png_data):
            if chunk.chunk_type == IEND_CHUNK_TYPE:
                iend = chunk.raw
                break
            if cls._keep_chunk(chunk, preserve_text_chunks, strip_exif):
                kept.append(chunk.raw)
            else:
                dropped += 1

        card_chunk = build_text_chunk(CARD_KEYWORD, encode_card_text(card_json))
        output = b"".join([PNG_SIGNATURE, *kept, card_chunk, iend])

        logger.debug(
            f"Rebuilt PNG: kept {len(kept)} chunk(s), dropped {dropped}, "
            f"card chunk {len(card_chunk)} bytes, total {len(output)} bytes"
        )
        cls.verify_card_png(output)
        return output

    @classmethod
    def write_card(
        cls,
        png_data: bytes,
        card: CharacterCard,
        preserve_text_chunks: bool = False,
        strip_exif: bool = False,
    ) -> bytes:
        """Normalize and serialize a card, then embed it with write_card_text."""
        return cls.write_card_text(
            png_data,
            serialize_card(card),
            preserve_text_chunks=preserve_text_chunks,
            strip_exif=strip_exif,
        )

    @classmethod
    def verify_card_png(cls, png_data: bytes) -> None:
        """
        Check a PNG produced by write_card_text.

        Raises:
            EncodeSelfCheckError: signature broken, IEND not last, or not
                exactly one readable card chunk
        """
        if not has_png_signature(png_data):
            raise EncodeSelfCheckError("PNG signature is invalid")
        if len(png_data) < 20 or png_data[-8:-4] != IEND_CHUNK_TYPE:
            raise EncodeSelfCheckError("PNG file must end with IEND chunk")

        try:
            chunks = cls.list_chunks(png_data)
        except FormatError as e:
            raise EncodeSelfCheckError(f"Built PNG is not walkable: {e}") from e

        card_chunks = [c for c in chunks if c.is_text and c.keyword is not None and is_card_keyword(c.keyword)]
        if len(card_chunks) != 1:
            raise EncodeSelfCheckError(f"Expected exactly one card chunk, found {len(card_chunks)}")

        chunk = card_chunks[0]
        if chunk.chunk_type != TEXT_CHUNK_TYPE or chunk.keyword != CARD_KEYWORD:
            raise EncodeSelfCheckError(f"Card chunk has unexpected form {chunk.type_name}/{chunk.keyword!r}")
        if not chunk.crc_valid:
            raise EncodeSelfCheckError("Card chunk CRC mismatch")

        try:
            _, text = parse_text_chunk(chunk.data)
            payload = base64.b64decode(text, validate=True).decode("utf-8")
            parsed = json.loads(payload)
        except (TextChunkError, binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise EncodeSelfCheckError(f"Card chunk payload does not decode: {e}") from e
        if not isinstance(parsed, dict) or not isinstance(parsed.get("data"), dict):
            raise EncodeSelfCheckError("Card chunk payload is not a card object")
