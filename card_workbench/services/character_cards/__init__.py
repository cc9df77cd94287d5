"""
Character Card System
====================

Character cards stored as JSON or embedded in PNG images (Base64 card JSON in
a ``chara`` text chunk).

Supports:
- Reading SillyTavern V2/V3 and loosely wrapped card JSON
- Replacing the card chunk of a PNG while keeping every other chunk intact
- Splitting card text into work units and merging edited text back
"""

from .backfill import apply_backfill, extract_marked_content
from .card_exporter import CharacterCardExporter, export_document
from .card_importer import CharacterCardImporter, parse_card_bytes, parse_card_file, parse_json_card
from .errors import EncodeError, EncodeSelfCheckError, FormatError, FormatErrorKind, TextChunkError
from .format_detector import CardShape, FormatDetector
from .metadata_handler import PNGMetadataHandler
from .models import (
    CardData,
    CardField,
    CharacterBook,
    CharacterBookEntry,
    CharacterCard,
    ExportedCard,
    ParsedCard,
    RangeKind,
    SourceFormat,
    TaskRange,
    WorkGroup,
    WorkUnit,
)
from .normalizer import normalize_card, serialize_card
from .prompts import build_external_prompt
from .task_segmenter import count_card_words, generate_work_groups, should_segment

__all__ = [
    'apply_backfill',
    'extract_marked_content',
    'CharacterCardExporter',
    'export_document',
    'CharacterCardImporter',
    'parse_card_bytes',
    'parse_card_file',
    'parse_json_card',
    'EncodeError',
    'EncodeSelfCheckError',
    'FormatError',
    'FormatErrorKind',
    'TextChunkError',
    'CardShape',
    'FormatDetector',
    'PNGMetadataHandler',
    'CardData',
    'CardField',
    'CharacterBook',
    'CharacterBookEntry',
    'CharacterCard',
    'ExportedCard',
    'ParsedCard',
    'RangeKind',
    'SourceFormat',
    'TaskRange',
    'WorkGroup',
    'WorkUnit',
    'normalize_card',
    'serialize_card',
    'build_external_prompt',
    'count_card_words',
    'generate_work_groups',
    'should_segment',
]
