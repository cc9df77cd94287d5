"""
Character Card Data Models
=========================

Pydantic models for the SillyTavern V2 card schema and the editing task
structures derived from it.

Card models accept and preserve unknown attributes verbatim so a card
survives decode -> encode without losing extension data.
"""

import json
import logging
from enum import Enum
from typing import Optional, List, Any, Union
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_serializer,
    model_validator,
)

logger = logging.getLogger(__name__)

CARD_SPEC = "chara_card_v2"
CARD_SPEC_VERSION = "2.0"


def _coerce_text(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (int, float, bool)):
        return str(value)
    return value


def _coerce_list(value: Any) -> Any:
    # Items are kept as written; only the container is normalized
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, (str, int, float, bool)):
        return [value]
    return value


def item_text(value: Any) -> str:
    """Text form of a list item: strings as-is, null as empty, anything else as JSON."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def items_text(values: List[Any]) -> List[str]:
    return [item_text(value) for value in values]


# ===========================
# SillyTavern Card Format
# ===========================

class SillyTavernSpec(str, Enum):
    """SillyTavern card specification versions."""
    V2 = "chara_card_v2"
    V3 = "chara_card_v3"


class CharacterBookEntry(BaseModel):
    """World info / lorebook entry. Extra attributes pass through untouched."""

    model_config = ConfigDict(extra='allow')

    keys: List[Any] = Field(default_factory=list)
    content: str = ""
    enabled: bool = True
    insertion_order: Optional[Union[int, float]] = None

    @field_validator('keys', mode='before')
    @classmethod
    def coerce_keys(cls, v: Any) -> Any:
        return _coerce_list(v)

    @field_validator('content', mode='before')
    @classmethod
    def coerce_content(cls, v: Any) -> Any:
        return _coerce_text(v)

    @field_validator('enabled', mode='before')
    @classmethod
    def default_enabled(cls, v: Any) -> Any:
        return True if v is None else v


class CharacterBook(BaseModel):
    """Character lorebook / world info."""

    model_config = ConfigDict(extra='allow')

    entries: List[CharacterBookEntry] = Field(default_factory=list)

    @field_validator('entries', mode='before')
    @classmethod
    def coerce_entries(cls, v: Any) -> Any:
        return [] if v is None else v


class CardData(BaseModel):
    """SillyTavern V2 card data structure."""

    model_config = ConfigDict(extra='allow')

    name: str = ""
    description: str = ""
    personality: str = ""
    scenario: str = ""
    first_mes: str = ""
    mes_example: str = ""
    creator_notes: str = ""
    system_prompt: str = ""
    post_history_instructions: str = ""
    alternate_greetings: List[Any] = Field(default_factory=list)
    character_book: Optional[CharacterBook] = None

    @field_validator(
        'name', 'description', 'personality', 'scenario', 'first_mes',
        'mes_example', 'creator_notes', 'system_prompt', 'post_history_instructions',
        mode='before'
    )
    @classmethod
    def coerce_text_fields(cls, v: Any) -> Any:
        return _coerce_text(v)

    @field_validator('alternate_greetings', mode='before')
    @classmethod
    def coerce_greetings(cls, v: Any) -> Any:
        return _coerce_list(v)

    @model_serializer(mode='wrap')
    def _omit_absent_book(self, handler):
        # A card that never had a lorebook must not gain "character_book": null
        data = handler(self)
        if self.character_book is None and 'character_book' not in self.model_fields_set:
            data.pop('character_book', None)
        return data

    @property
    def book_entries(self) -> List[CharacterBookEntry]:
        return self.character_book.entries if self.character_book else []


class CharacterCard(BaseModel):
    """Complete SillyTavern V2 character card structure."""

    model_config = ConfigDict(extra='allow')

    spec: str = CARD_SPEC
    spec_version: str = CARD_SPEC_VERSION
    data: CardData = Field(default_factory=CardData)

    @field_validator('spec', 'spec_version', mode='before')
    @classmethod
    def coerce_discriminator(cls, v: Any) -> Any:
        return _coerce_text(v)


# ===========================
# Editing Tasks
# ===========================

class CardField(str, Enum):
    """Card fields that can be handed out for external editing."""
    DESCRIPTION = "description"
    PERSONALITY = "personality"
    SCENARIO = "scenario"
    SYSTEM_PROMPT = "system_prompt"
    FIRST_MES = "first_mes"
    MES_EXAMPLE = "mes_example"
    CREATOR_NOTES = "creator_notes"
    POST_HISTORY_INSTRUCTIONS = "post_history_instructions"
    ALTERNATE_GREETINGS = "alternate_greetings"
    CHARACTER_BOOK = "character_book"


class RangeKind(str, Enum):
    """List field a range slice points into."""
    ALTERNATE_GREETINGS = "alternate_greetings"
    WORLD_BOOK = "world_book"


class TaskRange(BaseModel):
    """1-based inclusive slice of a list field."""
    start: int = Field(ge=1)
    end: int = Field(ge=1)
    kind: RangeKind

    @model_validator(mode='after')
    def check_order(self) -> 'TaskRange':
        if self.end < self.start:
            raise ValueError(f"range end {self.end} is before start {self.start}")
        return self

    def __contains__(self, index: int) -> bool:
        return self.start <= index <= self.end


class WorkUnit(BaseModel):
    """One bounded piece of card text handed out for external editing."""
    id: str
    group_id: str
    group_name: str
    fields: List[CardField]
    content: str
    completed: bool = False
    result: Optional[str] = None
    range: Optional[TaskRange] = None

    @field_validator('fields', mode='before')
    @classmethod
    def drop_unknown_fields(cls, v: Any) -> Any:
        if not isinstance(v, (list, tuple)):
            return v
        known = {f.value for f in CardField}
        kept = []
        for item in v:
            value = item.value if isinstance(item, CardField) else item
            if value in known:
                kept.append(value)
            else:
                logger.warning(f"Ignoring unknown card field in task: {item!r}")
        return kept


class WorkGroup(BaseModel):
    """Work units sharing a section of the card."""
    id: str
    name: str
    tasks: List[WorkUnit] = Field(default_factory=list)

    @computed_field
    @property
    def completed(self) -> bool:
        return all(task.completed for task in self.tasks)


# ===========================
# Import/Export DTOs
# ===========================

class SourceFormat(str, Enum):
    """File format a card was loaded from."""
    PNG = "png"
    JSON = "json"


class ParsedCard(BaseModel):
    """Result of reading a card file."""
    card: CharacterCard
    source_format: SourceFormat
    source_bytes: Optional[bytes] = None  # Original PNG, kept for re-encoding
    source_name: str = ""
    shape: str = ""  # Detected JSON layout
    warnings: List[str] = Field(default_factory=list)


class ExportedCard(BaseModel):
    """A serialized card ready to be written or downloaded."""
    filename: str
    content: bytes
    media_type: str
