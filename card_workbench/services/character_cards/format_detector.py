"""
Card Format Detector
===================

Detects the file format of a card and the layout of its JSON payload.
"""

import base64
import binascii
import json
import logging
import re
from enum import Enum
from pathlib import PurePath
from typing import Any, Dict, Optional, Tuple

from .errors import FormatError, FormatErrorKind
from .models import SillyTavernSpec, SourceFormat

logger = logging.getLogger(__name__)

BASE64_PATTERN = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")

# Top-level keys that identify a bare (unwrapped) card object
IDENTIFYING_KEYS = ("name", "description", "personality")


class CardShape(Enum):
    """Recognized JSON layouts of a card."""
    V2 = "chara_card_v2"
    V3 = "chara_card_v3"
    DATA_WRAPPER = "data_wrapper"
    BARE = "bare"


class FormatDetector:
    """Detect card file format and JSON layout."""

    EXTENSIONS = {
        ".png": SourceFormat.PNG,
        ".json": SourceFormat.JSON,
    }

    @classmethod
    def detect_file_format(cls, filename: str) -> SourceFormat:
        """
        Determine the source format from a file name.

        Raises:
            FormatError: UNSUPPORTED_EXTENSION for anything but .png/.json
        """
        suffix = PurePath(filename).suffix.lower()
        source_format = cls.EXTENSIONS.get(suffix)
        if source_format is None:
            raise FormatError(
                FormatErrorKind.UNSUPPORTED_EXTENSION,
                f"Unsupported file format '{suffix or filename}'. Please upload PNG or JSON files."
            )
        return source_format

    @staticmethod
    def looks_like_base64(text: str) -> bool:
        """
        Heuristic: is this text Base64 rather than JSON?

        Two stages: anything that parses as JSON (or starts like an object or
        array) is JSON; otherwise the text must use only the Base64 alphabet,
        be at least 4 characters, and have a length that is a multiple of 4
        (or one more, ending in '='). Very short inputs are ambiguous and
        resolve to JSON.
        """
        trimmed = text.strip()
        if trimmed.startswith("{") or trimmed.startswith("["):
            return False
        if len(trimmed) < 4 or not BASE64_PATTERN.match(trimmed):
            return False
        try:
            json.loads(trimmed)
            return False
        except json.JSONDecodeError:
            pass
        remainder = len(trimmed) % 4
        return remainder == 0 or (remainder == 1 and trimmed.endswith("="))

    @staticmethod
    def decode_base64_text(text: str) -> str:
        """
        Decode Base64 text to UTF-8, tolerating missing or surplus padding.

        Raises:
            FormatError: INVALID_PAYLOAD if the text does not decode
        """
        body = text.strip().rstrip("=")
        body += "=" * (-len(body) % 4)
        try:
            return base64.b64decode(body, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise FormatError(FormatErrorKind.INVALID_PAYLOAD, f"Invalid JSON (base64 encoded): {e}")

    @staticmethod
    def classify(parsed: Any) -> Tuple[CardShape, Dict[str, Any]]:
        """
        Identify the layout of parsed card JSON.

        Returns:
            (shape, data) where data is the object to use as the card's
            ``data`` section

        Raises:
            FormatError: INVALID_PAYLOAD if no layout matches
        """
        if not isinstance(parsed, dict):
            raise FormatError(FormatErrorKind.INVALID_PAYLOAD, "Card data is not a JSON object")

        spec = parsed.get("spec")
        data = parsed.get("data")

        if (
            spec == SillyTavernSpec.V2.value
            and str(parsed.get("spec_version")) == "2.0"
            and isinstance(data, dict)
        ):
            return CardShape.V2, data

        if spec == SillyTavernSpec.V3.value and isinstance(data, dict):
            logger.info("Converting chara_card_v3 card to chara_card_v2 layout")
            return CardShape.V3, data

        if isinstance(data, dict) and any(data.get(key) for key in IDENTIFYING_KEYS):
            logger.info(f"Card has data section but spec '{spec}'; treating as V2")
            return CardShape.DATA_WRAPPER, data

        if any(parsed.get(key) for key in IDENTIFYING_KEYS):
            logger.info("Wrapping bare card object into V2 layout")
            return CardShape.BARE, parsed

        raise FormatError(FormatErrorKind.INVALID_PAYLOAD, "Invalid card format: cannot identify card structure")

    @classmethod
    def get_shape_name(cls, shape: Optional[CardShape]) -> str:
        """Get human-readable layout name."""
        names = {
            CardShape.V2: "SillyTavern V2",
            CardShape.V3: "SillyTavern V3",
            CardShape.DATA_WRAPPER: "Data wrapper (no spec)",
            CardShape.BARE: "Bare character object",
        }
        return names.get(shape, "Unknown")
