"""
Card Normalizer
===============

Canonical shape applied to a card before it is serialized.
"""

import json
import logging
from typing import Any, Dict, Optional

from .models import CARD_SPEC, CARD_SPEC_VERSION, CharacterCard

logger = logging.getLogger(__name__)

DISCRIMINATOR_KEYS = ("spec", "spec_version")


def normalize_card(card: CharacterCard) -> CharacterCard:
    """
    Return a canonical copy of a card.

    - Top-level spec/spec_version forced to chara_card_v2 / 2.0
    - spec/spec_version nested inside data removed (top level is authoritative)
    - Every lorebook entry has list keys, string content, enabled and an
      insertion_order (defaulting to the entry's position)

    Every other attribute, known or not, is carried over unchanged.
    """
    payload = card.model_dump()
    data: Dict[str, Any] = payload.get("data") or {}

    for key in DISCRIMINATOR_KEYS:
        if key in data:
            logger.debug(f"Dropping nested '{key}' from card data")
            data.pop(key)

    book = data.get("character_book")
    if isinstance(book, dict):
        entries = []
        for idx, entry in enumerate(book.get("entries") or []):
            entry = dict(entry)
            if entry.get("insertion_order") is None:
                entry["insertion_order"] = idx
            entries.append(entry)
        book["entries"] = entries

    payload["spec"] = CARD_SPEC
    payload["spec_version"] = CARD_SPEC_VERSION
    payload["data"] = data
    return CharacterCard.model_validate(payload)


def card_to_dict(card: CharacterCard) -> Dict[str, Any]:
    """Normalized card as plain JSON-compatible data."""
    return normalize_card(card).model_dump(mode='json')


def serialize_card(card: CharacterCard, indent: Optional[int] = None) -> str:
    """
    Normalized card as JSON text.

    Compact (no whitespace between tokens) unless an indent is given.
    Non-ASCII text is written as-is.
    """
    payload = card_to_dict(card)
    if indent is None:
        return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    return json.dumps(payload, ensure_ascii=False, indent=indent)
