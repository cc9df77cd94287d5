"""
Character Card Importer
======================

Load character cards from JSON files or PNG images.
"""

import json
import logging
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from .errors import FormatError, FormatErrorKind
from .format_detector import CardShape, FormatDetector
from .metadata_handler import PNGMetadataHandler
from .models import CARD_SPEC, CARD_SPEC_VERSION, CharacterCard, ParsedCard, SourceFormat

logger = logging.getLogger(__name__)


def _validation_message(error: ValidationError) -> str:
    return ", ".join(
        f"{' → '.join(str(l) for l in err['loc'])}: {err['msg']}"
        for err in error.errors()
    )


def parse_json_card(json_string: str, is_retry: bool = False) -> CharacterCard:
    """
    Parse card JSON in any recognized layout into a V2 card.

    Text that is not JSON but looks like Base64 is decoded once and parsed
    again; a second failure is reported as is.

    Raises:
        FormatError: INVALID_PAYLOAD
    """
    card, _ = _parse_json_card(json_string, is_retry)
    return card


def _parse_json_card(json_string: str, is_retry: bool = False):
    text = json_string.lstrip("\ufeff").strip()

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        if not is_retry and FormatDetector.looks_like_base64(text):
            logger.info("Card text is Base64 encoded, decoding")
            decoded = FormatDetector.decode_base64_text(text)
            return _parse_json_card(decoded, is_retry=True)
        raise FormatError(FormatErrorKind.INVALID_PAYLOAD, f"Invalid JSON syntax: {e}")

    shape, data = FormatDetector.classify(parsed)

    if shape is CardShape.V2:
        payload = dict(parsed)
    else:
        payload = {"spec": CARD_SPEC, "spec_version": CARD_SPEC_VERSION, "data": data}

    try:
        card = CharacterCard.model_validate(payload)
    except ValidationError as e:
        raise FormatError(FormatErrorKind.INVALID_PAYLOAD, f"Invalid card data: {_validation_message(e)}")

    return card, shape


class CharacterCardImporter:
    """Import character cards from PNG or JSON files."""

    @staticmethod
    def import_png(png_data: bytes, source_name: str = "") -> ParsedCard:
        """
        Import a card embedded in a PNG.

        Args:
            png_data: PNG file data as bytes
            source_name: Original file name

        Returns:
            ParsedCard keeping the original PNG bytes for later export

        Raises:
            FormatError: If the PNG is malformed or its card is unreadable
        """
        scan = PNGMetadataHandler.read_card_text(png_data)
        card, shape = _parse_json_card(scan.text)
        return ParsedCard(
            card=card,
            source_format=SourceFormat.PNG,
            source_bytes=bytes(png_data),
            source_name=source_name,
            shape=shape.value,
            warnings=list(scan.warnings),
        )

    @staticmethod
    def import_json(raw: Union[bytes, str], source_name: str = "") -> ParsedCard:
        """
        Import a card from JSON (or Base64-wrapped JSON) text.

        Raises:
            FormatError: If the text is not a recognizable card
        """
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8-sig")
            except UnicodeDecodeError as e:
                raise FormatError(FormatErrorKind.INVALID_PAYLOAD, f"Card file is not UTF-8: {e}")

        card, shape = _parse_json_card(raw)
        warnings = []
        if shape is not CardShape.V2:
            warnings.append(f"Converted {FormatDetector.get_shape_name(shape)} layout to chara_card_v2")
        return ParsedCard(
            card=card,
            source_format=SourceFormat.JSON,
            source_name=source_name,
            shape=shape.value,
            warnings=warnings,
        )

    @classmethod
    def import_bytes(cls, data: bytes, filename: str) -> ParsedCard:
        """
        Import a card from file contents, choosing the parser by extension.

        Raises:
            FormatError: UNSUPPORTED_EXTENSION or any parse failure
        """
        source_format = FormatDetector.detect_file_format(filename)
        logger.info(f"Importing {source_format.value.upper()} card '{filename}'")

        if source_format is SourceFormat.PNG:
            result = cls.import_png(data, filename)
        else:
            result = cls.import_json(data, filename)

        for warning in result.warnings:
            logger.warning(f"{filename}: {warning}")
        logger.info(f"Loaded card '{result.card.data.name or 'unnamed'}' ({result.shape})")
        return result


def parse_card_bytes(data: bytes, filename: str) -> ParsedCard:
    """Parse card file contents; see CharacterCardImporter.import_bytes."""
    return CharacterCardImporter.import_bytes(data, filename)


def parse_card_file(path: Union[str, Path], filename: Optional[str] = None) -> ParsedCard:
    """
    Read and parse a card file from disk.

    Args:
        path: File to read
        filename: Name used for format detection and export naming
            (defaults to the path's name)
    """
    path = Path(path)
    data = path.read_bytes()
    return CharacterCardImporter.import_bytes(data, filename or path.name)
