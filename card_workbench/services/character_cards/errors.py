"""
Character Card Errors
=====================

Exceptions raised by the card codec and parsers.
"""

from enum import Enum


class FormatErrorKind(str, Enum):
    """Reasons a card file cannot be read."""
    INVALID_SIGNATURE = "invalid_signature"
    MISSING_TERMINATOR = "missing_terminator"
    INVALID_CHUNK_CRC = "invalid_chunk_crc"
    NO_CARD_DATA = "no_card_data"
    INVALID_PAYLOAD = "invalid_payload"
    UNSUPPORTED_EXTENSION = "unsupported_extension"


class FormatError(ValueError):
    """Input file is not a readable character card."""

    def __init__(self, kind: FormatErrorKind, message: str):
        self.kind = kind
        self.message = message
        super().__init__(message)

    def __repr__(self) -> str:
        return f"FormatError({self.kind.value!r}, {self.message!r})"


class TextChunkError(ValueError):
    """A single text chunk is malformed. Recovered by skipping the chunk."""
    pass


class EncodeError(RuntimeError):
    """Base exception for card encoding errors."""
    pass


class EncodeSelfCheckError(EncodeError):
    """A freshly built PNG failed its own verification pass."""
    pass
