"""
Backfill
========

Merges externally edited text back into a card.

The edited text is expected to keep the ``### 【title】`` markers a work unit
was rendered with. Sections are matched to fields by title; list fields are
merged by absolute index so entries outside a unit's range, and attributes
other than keys/content, are left alone. Text that cannot be matched leaves
the card unchanged; nothing here raises on unrecognized content.
"""

import logging
import re
from typing import Dict, List, Optional, Tuple

from .field_registry import FIELD_SPECS, FieldKind, field_title
from .models import (
    CardData,
    CardField,
    CharacterBook,
    CharacterBookEntry,
    CharacterCard,
    RangeKind,
    TaskRange,
    WorkUnit,
)

logger = logging.getLogger(__name__)

MARKER_PATTERN = re.compile(r"###\s*【([^】]+)】")
LEADING_BLANK_LINES = re.compile(r"^\s*\n+")
TRAILING_BLANK_LINES = re.compile(r"\n+\s*\Z")
STRAY_MARKER = re.compile(r"^###\s*【[^】]+】\s*")

GREETING_TITLE_PATTERN = re.compile(r"备用开场白\s*(\d+)")
WORLD_BOOK_TITLE_PATTERN = re.compile(r"世界书条目\s*(\d+)")
KEYWORDS_PATTERN = re.compile(r"^[ \t]*\*\*关键词\*\*[ \t]*[:：][ \t]*([^\n]*)(?:\n|\Z)")
KEY_SEPARATOR = re.compile(r"[,，]")

WORLD_BOOK_FALLBACK_TITLE = "世界书"
RAW_FALLBACK_TITLE = "原始内容"
WORLD_BOOK_GROUP_TITLE = "世界观/知识库"


class MarkedContent(dict):
    """
    Title -> section text recovered from an edited result.

    ``has_markers`` is False when the result carried no markers at all and
    its whole text was stored under a fallback title.
    """

    def __init__(self, *args, has_markers: bool = True, **kwargs):
        super().__init__(*args, **kwargs)
        self.has_markers = has_markers

    @property
    def fallback_text(self) -> Optional[str]:
        if self.has_markers:
            return None
        return self.get(WORLD_BOOK_FALLBACK_TITLE, self.get(RAW_FALLBACK_TITLE))


def extract_marked_content(result: str) -> MarkedContent:
    """
    Split an edited result into sections keyed by marker title.

    Anything before the first marker is ignored. Each section runs to the next
    marker or the end of the text, with leading and trailing blank lines
    removed. A repeated title keeps its last section.
    """
    matches = list(MARKER_PATTERN.finditer(result))

    if not matches:
        content = MarkedContent(has_markers=False)
        trimmed = result.strip()
        if trimmed:
            title = WORLD_BOOK_FALLBACK_TITLE if "世界书条目" in result else RAW_FALLBACK_TITLE
            content[title] = trimmed
        return content

    content = MarkedContent()
    for idx, match in enumerate(matches):
        end = matches[idx + 1].start() if idx + 1 < len(matches) else len(result)
        text = result[match.end():end]
        text = LEADING_BLANK_LINES.sub("", text, count=1)
        text = TRAILING_BLANK_LINES.sub("", text, count=1)
        text = STRAY_MARKER.sub("", text, count=1)
        title = match.group(1).strip()
        if title in content:
            logger.debug(f"Duplicate section '{title}' in result, keeping the last one")
        content[title] = text
    return content


def split_keywords(text: str) -> Tuple[Optional[List[str]], str]:
    """
    Pull a leading ``**关键词**: a, b`` line off an entry's text.

    Returns:
        (keys, remaining content); keys is None when there is no keywords line
    """
    match = KEYWORDS_PATTERN.match(text)
    if not match:
        return None, text.strip()
    keys = [key.strip() for key in KEY_SEPARATOR.split(match.group(1))]
    return [key for key in keys if key], text[match.end():].strip()


def _numbered_sections(content: Dict[str, str], pattern: re.Pattern) -> List[Tuple[int, str]]:
    numbered = []
    for title, text in content.items():
        match = pattern.fullmatch(title)
        if match:
            numbered.append((int(match.group(1)), text))
    numbered.sort(key=lambda item: item[0])
    return numbered


def _recovered_greetings(content: MarkedContent, task_range: Optional[TaskRange]) -> List[str]:
    greetings = [text.strip() for _, text in _numbered_sections(content, GREETING_TITLE_PATTERN)]
    if greetings:
        return greetings

    plain = content.get(field_title(CardField.ALTERNATE_GREETINGS))
    if plain:
        return [part.strip() for part in re.split(r"\n\n+", plain) if part.strip()]

    fallback = content.fallback_text
    if fallback and task_range is not None and task_range.start == task_range.end:
        return [fallback]
    return []


def _merge_greetings(data: CardData, content: MarkedContent, task_range: Optional[TaskRange]) -> CardData:
    greetings = _recovered_greetings(content, task_range)
    if not greetings:
        logger.debug("No alternate greetings recovered, leaving list untouched")
        return data

    if task_range is None:
        return data.model_copy(update={"alternate_greetings": greetings})

    merged = list(data.alternate_greetings)
    for offset, greeting in enumerate(greetings):
        target = task_range.start - 1 + offset
        if target < len(merged):
            merged[target] = greeting
        else:
            merged.append(greeting)
    logger.debug(f"Backfilled {len(greetings)} greeting(s) from index {task_range.start}")
    return data.model_copy(update={"alternate_greetings": merged})


def _recovered_entries(
    content: MarkedContent,
    task_range: Optional[TaskRange],
) -> List[Tuple[int, Optional[List[str]], str]]:
    entries = []
    for index, text in _numbered_sections(content, WORLD_BOOK_TITLE_PATTERN):
        keys, body = split_keywords(text)
        entries.append((index, keys, body))
    if entries:
        return entries

    if task_range is not None and task_range.start == task_range.end:
        text = (
            content.get(WORLD_BOOK_FALLBACK_TITLE)
            or content.get(WORLD_BOOK_GROUP_TITLE)
            or content.get(RAW_FALLBACK_TITLE)
        )
        if text:
            keys, body = split_keywords(text)
            return [(task_range.start, keys, body)]
    return []


def _merge_world_book(data: CardData, content: MarkedContent, task_range: Optional[TaskRange]) -> CardData:
    recovered = _recovered_entries(content, task_range)
    if not recovered:
        logger.debug("No lorebook entries recovered, leaving lorebook untouched")
        return data

    entries = list(data.book_entries)
    changed = 0
    for index, keys, body in recovered:
        if task_range is not None and index not in task_range:
            logger.debug(f"Lorebook entry {index} outside task range {task_range.start}-{task_range.end}, skipped")
            continue
        target = index - 1
        if target < len(entries):
            update = {}
            if keys is not None:
                update["keys"] = keys
            if body:
                update["content"] = body
            entries[target] = entries[target].model_copy(update=update)
        elif target == len(entries):
            entries.append(CharacterBookEntry(
                keys=keys or [],
                content=body,
                enabled=True,
                insertion_order=len(entries),
            ))
        else:
            logger.debug(f"Lorebook entry {index} is past the end of the list, skipped")
            continue
        changed += 1

    if not changed:
        return data

    book = data.character_book or CharacterBook()
    book = book.model_copy(update={"entries": entries})
    logger.debug(f"Backfilled {changed} lorebook entr{'y' if changed == 1 else 'ies'}")
    return data.model_copy(update={"character_book": book})


def apply_backfill(card: CharacterCard, task: WorkUnit, result: str) -> CharacterCard:
    """
    Merge an edited result for one work unit into a card.

    Args:
        card: Card the unit was generated from (not modified)
        task: The work unit the result belongs to
        result: Edited text returned by the external editor

    Returns:
        A new card with only the unit's recovered fields/positions replaced
    """
    card = card.model_copy(deep=True)
    data = card.data
    content = extract_marked_content(result)
    scalar_fields = [f for f in task.fields if FIELD_SPECS[f].kind is FieldKind.SCALAR]

    for field in task.fields:
        spec = FIELD_SPECS[field]
        if spec.kind is FieldKind.GREETINGS:
            if task.range is None or task.range.kind is RangeKind.ALTERNATE_GREETINGS:
                data = _merge_greetings(data, content, task.range)
        elif spec.kind is FieldKind.WORLD_BOOK:
            if task.range is None or task.range.kind is RangeKind.WORLD_BOOK:
                data = _merge_world_book(data, content, task.range)
        elif spec.title in content:
            data = spec.assign(data, content[spec.title])
        elif content.fallback_text is not None and len(task.fields) == 1 and len(scalar_fields) == 1:
            logger.info(f"Result has no section markers, using whole text for '{field.value}'")
            data = spec.assign(data, content.fallback_text)
        else:
            logger.debug(f"No section for '{field.value}' in result, field left unchanged")

    return card.model_copy(update={"data": data})
