"""
Tests for normalization, export and prompt building.
"""

import json

import pytest

from card_fixtures import make_card_png, v2_card
from card_workbench.config.models import DEFAULT_INSTRUCTION, ExportConfig
from card_workbench.services.character_cards.card_exporter import export_document, export_filename
from card_workbench.services.character_cards.card_importer import parse_card_bytes, parse_json_card
from card_workbench.services.character_cards.models import SourceFormat
from card_workbench.services.character_cards.normalizer import card_to_dict, normalize_card, serialize_card
from card_workbench.services.character_cards.prompts import build_external_prompt


class TestNormalizer:
    """Canonical card shape."""

    def test_nested_discriminators_removed(self):
        """Test spec keys nested in data are removed."""
        raw = v2_card()
        raw["data"]["spec"] = "chara_card_v2"
        raw["data"]["spec_version"] = "2.0"
        result = card_to_dict(parse_json_card(json.dumps(raw)))
        assert "spec" not in result["data"]
        assert "spec_version" not in result["data"]
        assert result["spec"] == "chara_card_v2"
        assert result["spec_version"] == "2.0"

    def test_insertion_order_defaults_to_position(self):
        """Test missing insertion orders default to the entry position."""
        raw = v2_card(character_book={"entries": [
            {"keys": ["a"], "content": "A"},
            {"keys": ["b"], "content": "B", "insertion_order": 42},
            {"keys": ["c"], "content": "C"},
        ]})
        entries = card_to_dict(parse_json_card(json.dumps(raw)))["data"]["character_book"]["entries"]
        assert [e["insertion_order"] for e in entries] == [0, 42, 2]
        assert all(e["enabled"] is True for e in entries)

    def test_input_not_mutated(self, sample_card):
        """Test normalizing leaves the input card unchanged."""
        card = parse_json_card(json.dumps(sample_card))
        before = card.model_dump()
        normalize_card(card)
        assert card.model_dump() == before

    def test_absent_lorebook_stays_absent(self):
        """Test a card without a lorebook serializes without one."""
        result = card_to_dict(parse_json_card(json.dumps(v2_card())))
        assert "character_book" not in result["data"]

    def test_compact_utf8_serialization(self):
        """Test default serialization is compact with raw non-ASCII text."""
        text = serialize_card(parse_json_card(json.dumps(v2_card(name="艾莉亚"))))
        assert "艾莉亚" in text
        assert ": " not in text and ", " not in text

    def test_indented_serialization(self):
        """Test an indent produces pretty-printed JSON."""
        text = serialize_card(parse_json_card(json.dumps(v2_card())), indent=2)
        assert text.startswith("{\n  ")

    def test_unknown_attributes_survive(self, sample_card):
        """Test unknown attributes survive serialization."""
        result = card_to_dict(parse_json_card(json.dumps(sample_card)))
        assert result["data"]["extensions"] == sample_card["data"]["extensions"]
        assert result["data"]["character_book"]["entries"][1]["extensions"] == {"depth": 2}


class TestExportFilename:
    """Output naming."""

    @pytest.mark.parametrize("source,fmt,expected", [
        ("aria.png", SourceFormat.PNG, "aria.png"),
        ("aria.PNG", SourceFormat.PNG, "aria.png"),
        ("aria.json", SourceFormat.JSON, "aria.json"),
        ("aria.png", SourceFormat.JSON, "aria.json"),
        ("dir/aria.v2.json", SourceFormat.JSON, "aria.v2.json"),
    ])
    def test_source_name_extension_swapped(self, source, fmt, expected):
        """Test the source name keeps its stem with the output extension."""
        assert export_filename(source, "Aria", fmt) == expected

    def test_card_name_fallback(self):
        """Test the card name is used when there is no source name."""
        assert export_filename(None, "Aria", SourceFormat.JSON) == "Aria_converted.json"
        assert export_filename("", "", SourceFormat.PNG) == "character_converted.png"


class TestExportDocument:
    """Format selection and encoding."""

    def test_png_source_exports_png(self, sample_card_png):
        """Test a PNG source exports a PNG."""
        parsed = parse_card_bytes(sample_card_png, "aria.png")
        exported = export_document(parsed.card, parsed.source_format, parsed.source_bytes, parsed.source_name)
        assert exported.media_type == "image/png"
        assert exported.filename == "aria.png"
        again = parse_card_bytes(exported.content, exported.filename)
        assert again.card.model_dump() == normalize_card(parsed.card).model_dump()

    def test_png_without_bytes_falls_back_to_json(self, sample_card_png):
        """Test a PNG source without bytes exports JSON."""
        parsed = parse_card_bytes(sample_card_png, "aria.png")
        exported = export_document(parsed.card, SourceFormat.PNG, None, "aria.png")
        assert exported.media_type == "application/json"
        assert exported.filename == "aria.json"

    def test_json_export_has_no_bom(self, sample_card):
        """Test JSON export is UTF-8 without a BOM."""
        card = parse_json_card(json.dumps(sample_card))
        exported = export_document(card, SourceFormat.JSON, None, "aria.json")
        assert not exported.content.startswith(b"\xef\xbb\xbf")
        assert json.loads(exported.content.decode("utf-8"))["data"]["name"] == "Aria"
        assert b"\n" not in exported.content

    def test_json_indent_config(self, sample_card):
        """Test the configured JSON indent is applied."""
        card = parse_json_card(json.dumps(sample_card))
        exported = export_document(card, SourceFormat.JSON, None, "aria.json", config=ExportConfig(json_indent=2))
        assert b"\n  " in exported.content

    def test_preserve_text_chunks_override(self):
        """Test the per-call text chunk flag overrides the config."""
        from card_workbench.services.character_cards.png_chunks import build_text_chunk, iter_chunks

        png = make_card_png(v2_card(), extra_chunks=[build_text_chunk("Comment", "keep")])
        parsed = parse_card_bytes(png, "c.png")
        kept = export_document(parsed.card, SourceFormat.PNG, png, "c.png", preserve_text_chunks=True)
        dropped = export_document(parsed.card, SourceFormat.PNG, png, "c.png")
        assert any(c.keyword == "Comment" for c in iter_chunks(kept.content))
        assert not any(c.keyword == "Comment" for c in iter_chunks(dropped.content))


class TestExternalPrompt:
    """Instruction wrapping."""

    def test_default_prompt_layout(self):
        """Test the default prompt is instruction, separator, content."""
        prompt = build_external_prompt("default", "### 【角色描述】\ntext")
        assert prompt == f"{DEFAULT_INSTRUCTION}\n\n---\n\n### 【角色描述】\ntext"

    def test_named_target(self):
        """Test a named target picks its instruction."""
        prompt = build_external_prompt("translate", "body", {"translate": "Translate it.", "default": "x"})
        assert prompt == "Translate it.\n\n---\n\nbody"

    def test_unknown_target(self):
        """Test an unknown target raises ValueError."""
        with pytest.raises(ValueError, match="Unknown prompt target"):
            build_external_prompt("missing", "body")
