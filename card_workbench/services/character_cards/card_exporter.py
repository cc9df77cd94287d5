"""
Character Card Exporter
======================

Write an edited card back out in the format it came in.
"""

import logging
from pathlib import PurePath
from typing import Optional

from card_workbench.config.models import ExportConfig

from .metadata_handler import PNGMetadataHandler
from .models import CharacterCard, ExportedCard, SourceFormat
from .normalizer import serialize_card

logger = logging.getLogger(__name__)

MEDIA_TYPES = {
    SourceFormat.PNG: "image/png",
    SourceFormat.JSON: "application/json",
}


def export_filename(source_name: Optional[str], card_name: str, output_format: SourceFormat) -> str:
    """
    Name for an exported card.

    The source name keeps its stem with the extension swapped; without one the
    card's name is used.
    """
    extension = f".{output_format.value}"
    if source_name:
        path = PurePath(source_name)
        if path.suffix.lower() in (".png", ".json"):
            return f"{path.stem}{extension}"
        return f"{path.name}{extension}"
    return f"{card_name or 'character'}_converted{extension}"


class CharacterCardExporter:
    """Export edited cards to PNG or JSON."""

    def __init__(self, config: Optional[ExportConfig] = None):
        """
        Initialize exporter.

        Args:
            config: Export settings (defaults apply when omitted)
        """
        self.config = config or ExportConfig()

    def export(
        self,
        card: CharacterCard,
        source_format: SourceFormat,
        source_bytes: Optional[bytes] = None,
        source_name: Optional[str] = None,
        preserve_text_chunks: Optional[bool] = None,
    ) -> ExportedCard:
        """
        Serialize a card for download.

        PNG output is produced only when the card came from a PNG and its
        original bytes are at hand; every other case yields JSON.

        Args:
            card: Card to export
            source_format: Format the card was imported from
            source_bytes: Original PNG bytes
            source_name: Original file name
            preserve_text_chunks: Override the configured text chunk policy

        Raises:
            FormatError: If the original PNG is malformed
            EncodeSelfCheckError: If the rebuilt PNG fails verification
        """
        if preserve_text_chunks is None:
            preserve_text_chunks = self.config.preserve_text_chunks

        if source_format is SourceFormat.PNG and source_bytes:
            output_format = SourceFormat.PNG
            content = PNGMetadataHandler.write_card(
                source_bytes,
                card,
                preserve_text_chunks=preserve_text_chunks,
                strip_exif=self.config.strip_exif,
            )
        else:
            if source_format is SourceFormat.PNG:
                logger.warning("Original PNG bytes unavailable, exporting as JSON")
            output_format = SourceFormat.JSON
            content = serialize_card(card, indent=self.config.json_indent).encode("utf-8")

        filename = export_filename(source_name, card.data.name, output_format)
        logger.info(f"Exported card '{card.data.name or 'unnamed'}' as {filename} ({len(content)} bytes)")
        return ExportedCard(filename=filename, content=content, media_type=MEDIA_TYPES[output_format])


def export_document(
    card: CharacterCard,
    source_format: SourceFormat,
    source_bytes: Optional[bytes] = None,
    source_name: Optional[str] = None,
    preserve_text_chunks: Optional[bool] = None,
    config: Optional[ExportConfig] = None,
) -> ExportedCard:
    """Export a card with a one-off exporter; see CharacterCardExporter.export."""
    return CharacterCardExporter(config).export(
        card,
        source_format,
        source_bytes=source_bytes,
        source_name=source_name,
        preserve_text_chunks=preserve_text_chunks,
    )
