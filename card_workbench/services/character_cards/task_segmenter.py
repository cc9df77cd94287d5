"""
Task Segmenter
==============

Splits a card into work units small enough to hand to an external editor.

Small cards become a single unit holding every non-empty field. A card is
segmented when any one dimension is large: total text volume, lorebook entry
count, or alternate greeting count. Segmented cards are split into fixed
groups, with the two list fields batched into ranged units.
"""

import logging
from typing import List, Optional, Sequence

from card_workbench.config.models import SegmentationConfig

from .field_registry import (
    CORE_FIELDS,
    DOCUMENT_ORDER,
    GREETING_ITEM_TITLE,
    OTHER_FIELDS,
    extract_field,
    field_title,
    render_world_book_entry,
    section,
)
from .models import (
    CardField,
    CharacterCard,
    RangeKind,
    TaskRange,
    WorkGroup,
    WorkUnit,
    item_text,
    items_text,
)

logger = logging.getLogger(__name__)

SINGLE_GROUP_NAME = "全部内容"
CORE_GROUP_NAME = "核心设定"
FIRST_MES_GROUP_NAME = "主开场白"
OTHER_GROUP_NAME = "其他字段"
GREETINGS_GROUP_NAME = "备用开场白"
WORLD_BOOK_GROUP_NAME = "世界观/知识库"

TEXT_FIELDS = (
    "description",
    "personality",
    "scenario",
    "first_mes",
    "mes_example",
    "creator_notes",
    "system_prompt",
    "post_history_instructions",
)


def count_card_words(card: CharacterCard) -> int:
    """
    Character volume of a card's editable text.

    Sums the free-text fields, every alternate greeting, and each lorebook
    entry's content and keys.
    """
    data = card.data
    count = sum(len(getattr(data, name) or "") for name in TEXT_FIELDS)
    count += len("".join(items_text(data.alternate_greetings)))
    for entry in data.book_entries:
        count += len(entry.content) + len("".join(items_text(entry.keys)))
    return count


def should_segment(card: CharacterCard, config: Optional[SegmentationConfig] = None) -> bool:
    """True if any size signal exceeds its threshold."""
    config = config or SegmentationConfig()
    return (
        count_card_words(card) > config.word_threshold
        or len(card.data.book_entries) > config.world_book_threshold
        or len(card.data.alternate_greetings) > config.alternate_greetings_threshold
    )


class _Counter:
    """Hands out sequential task-K / group-K identifiers."""

    def __init__(self):
        self.task = 0
        self.group = 0

    def next_task(self) -> str:
        self.task += 1
        return f"task-{self.task}"

    def next_group(self) -> str:
        self.group += 1
        return f"group-{self.group}"


def _render_sections(card: CharacterCard, fields: Sequence[CardField]):
    present: List[CardField] = []
    parts: List[str] = []
    for field in fields:
        text = extract_field(card.data, field)
        if text:
            present.append(field)
            parts.append(section(field_title(field), text))
    return present, "\n\n".join(parts)


def _single_unit_group(
    counter: _Counter,
    name: str,
    fields: List[CardField],
    content: str,
) -> WorkGroup:
    group_id = counter.next_group()
    unit = WorkUnit(
        id=counter.next_task(),
        group_id=group_id,
        group_name=name,
        fields=fields,
        content=content,
    )
    return WorkGroup(id=group_id, name=name, tasks=[unit])


def _batched_group(
    counter: _Counter,
    name: str,
    field: CardField,
    kind: RangeKind,
    rendered: List[str],
    batch_size: int,
) -> WorkGroup:
    group_id = counter.next_group()
    tasks = []
    for offset in range(0, len(rendered), batch_size):
        batch = rendered[offset:offset + batch_size]
        tasks.append(WorkUnit(
            id=counter.next_task(),
            group_id=group_id,
            group_name=name,
            fields=[field],
            content="\n\n".join(batch),
            range=TaskRange(start=offset + 1, end=offset + len(batch), kind=kind),
        ))
    return WorkGroup(id=group_id, name=name, tasks=tasks)


def generate_work_groups(
    card: CharacterCard,
    config: Optional[SegmentationConfig] = None,
) -> List[WorkGroup]:
    """
    Partition a card into ordered work groups.

    Args:
        card: Card to split
        config: Thresholds and batch sizes (defaults apply when omitted)

    Returns:
        Groups in fixed order; identifiers are assigned sequentially from 1
    """
    config = config or SegmentationConfig()
    counter = _Counter()

    if not should_segment(card, config):
        fields, content = _render_sections(card, DOCUMENT_ORDER)
        logger.debug(f"Card below thresholds, single unit with {len(fields)} field(s)")
        return [_single_unit_group(counter, SINGLE_GROUP_NAME, fields, content)]

    groups: List[WorkGroup] = []

    for name, field_list in (
        (CORE_GROUP_NAME, CORE_FIELDS),
        (FIRST_MES_GROUP_NAME, [CardField.FIRST_MES]),
        (OTHER_GROUP_NAME, OTHER_FIELDS),
    ):
        fields, content = _render_sections(card, field_list)
        if fields:
            groups.append(_single_unit_group(counter, name, fields, content))

    greetings = card.data.alternate_greetings
    if greetings:
        rendered = [
            section(GREETING_ITEM_TITLE.format(index=idx + 1), item_text(greeting))
            for idx, greeting in enumerate(greetings)
        ]
        groups.append(_batched_group(
            counter,
            GREETINGS_GROUP_NAME,
            CardField.ALTERNATE_GREETINGS,
            RangeKind.ALTERNATE_GREETINGS,
            rendered,
            config.greeting_batch_size,
        ))

    entries = card.data.book_entries
    if entries:
        rendered = [render_world_book_entry(idx + 1, entry) for idx, entry in enumerate(entries)]
        groups.append(_batched_group(
            counter,
            WORLD_BOOK_GROUP_NAME,
            CardField.CHARACTER_BOOK,
            RangeKind.WORLD_BOOK,
            rendered,
            config.world_book_batch_size,
        ))

    logger.info(
        f"Segmented card into {len(groups)} group(s), {counter.task} task(s) "
        f"({len(greetings)} greetings, {len(entries)} lorebook entries)"
    )
    return groups


def iter_tasks(groups: Sequence[WorkGroup]):
    """All units of a group list in order."""
    for group in groups:
        yield from group.tasks
