"""
Card Field Registry
===================

Maps each editable card field to its section title, its kind, and how its
text is read from / written to a card. All field access by identifier goes
through this table.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from .models import CardData, CardField, CharacterBookEntry, items_text

SECTION_MARKER = "### 【{title}】"

GREETING_ITEM_TITLE = "备用开场白{index}"
WORLD_BOOK_ITEM_TITLE = "世界书条目{index}"
KEYWORDS_LINE = "**关键词**: {keys}"


class FieldKind(str, Enum):
    SCALAR = "scalar"
    GREETINGS = "greetings"
    WORLD_BOOK = "world_book"


@dataclass(frozen=True)
class FieldSpec:
    field: CardField
    title: str
    kind: FieldKind
    extract: Callable[[CardData], str]
    # Only scalar fields are written back wholesale; list fields merge by position
    assign: Optional[Callable[[CardData, str], CardData]] = None


def section(title: str, body: str) -> str:
    """Render one marked section."""
    return f"{SECTION_MARKER.format(title=title)}\n{body}"


def render_world_book_entry(index: int, entry: CharacterBookEntry) -> str:
    """Render a lorebook entry under its absolute 1-based index."""
    keys = ", ".join(items_text(entry.keys))
    body = f"{KEYWORDS_LINE.format(keys=keys)}\n{entry.content}"
    return section(WORLD_BOOK_ITEM_TITLE.format(index=index), body)


def _scalar(name: str) -> Callable[[CardData], str]:
    return lambda data: getattr(data, name) or ""


def _assign(name: str) -> Callable[[CardData, str], CardData]:
    return lambda data, value: data.model_copy(update={name: value})


def _greetings(data: CardData) -> str:
    return "\n\n".join(items_text(data.alternate_greetings))


def _world_book(data: CardData) -> str:
    return "\n\n".join(
        render_world_book_entry(idx + 1, entry)
        for idx, entry in enumerate(data.book_entries)
    )


def _scalar_spec(field: CardField, title: str) -> FieldSpec:
    return FieldSpec(field, title, FieldKind.SCALAR, _scalar(field.value), _assign(field.value))


FIELD_SPECS: Dict[CardField, FieldSpec] = {
    CardField.DESCRIPTION: _scalar_spec(CardField.DESCRIPTION, "角色描述"),
    CardField.PERSONALITY: _scalar_spec(CardField.PERSONALITY, "性格设定"),
    CardField.SCENARIO: _scalar_spec(CardField.SCENARIO, "场景设定"),
    CardField.SYSTEM_PROMPT: _scalar_spec(CardField.SYSTEM_PROMPT, "系统提示词"),
    CardField.FIRST_MES: _scalar_spec(CardField.FIRST_MES, "开场白"),
    CardField.MES_EXAMPLE: _scalar_spec(CardField.MES_EXAMPLE, "消息示例"),
    CardField.CREATOR_NOTES: _scalar_spec(CardField.CREATOR_NOTES, "创作者笔记"),
    CardField.POST_HISTORY_INSTRUCTIONS: _scalar_spec(CardField.POST_HISTORY_INSTRUCTIONS, "历史后处理"),
    CardField.ALTERNATE_GREETINGS: FieldSpec(CardField.ALTERNATE_GREETINGS, "备用开场白", FieldKind.GREETINGS, _greetings),
    CardField.CHARACTER_BOOK: FieldSpec(CardField.CHARACTER_BOOK, "世界书", FieldKind.WORLD_BOOK, _world_book),
}

CORE_FIELDS: List[CardField] = [
    CardField.DESCRIPTION,
    CardField.PERSONALITY,
    CardField.SCENARIO,
    CardField.SYSTEM_PROMPT,
]

OTHER_FIELDS: List[CardField] = [
    CardField.MES_EXAMPLE,
    CardField.CREATOR_NOTES,
    CardField.POST_HISTORY_INSTRUCTIONS,
]

# Order used when every field goes into a single task
DOCUMENT_ORDER: List[CardField] = (
    CORE_FIELDS
    + [CardField.FIRST_MES]
    + OTHER_FIELDS
    + [CardField.ALTERNATE_GREETINGS, CardField.CHARACTER_BOOK]
)


def field_title(field: CardField) -> str:
    return FIELD_SPECS[field].title


def extract_field(data: CardData, field: CardField) -> str:
    """Text of a field as it is presented to the external editor."""
    return FIELD_SPECS[field].extract(data)
