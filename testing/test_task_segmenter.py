"""
Tests for splitting cards into work units.

Tests cover:
- Volume counting and the three segmentation thresholds
- Single-unit layout for small cards
- Group order, identifiers and batch ranges for large cards
"""

import json

import pytest

from card_fixtures import book_entry, v2_card
from card_workbench.config.models import SegmentationConfig
from card_workbench.services.character_cards.card_importer import parse_json_card
from card_workbench.services.character_cards.models import CardField, RangeKind, WorkUnit
from card_workbench.services.character_cards.task_segmenter import (
    count_card_words,
    generate_work_groups,
    iter_tasks,
    should_segment,
)


def card(**data):
    return parse_json_card(json.dumps(v2_card(**data)))


def entries(count):
    return {"entries": [book_entry(i + 1) for i in range(count)]}


class TestVolume:
    """Character volume."""

    def test_counts_text_greetings_and_entries(self):
        """Test volume sums text fields, greetings and entries."""
        c = card(
            description="abc",
            personality="de",
            alternate_greetings=["12", "345"],
            character_book={"entries": [{"keys": ["k1", "k2"], "content": "xyz"}]},
        )
        # 3 + 2 + 5 greetings + 3 content + 4 keys
        assert count_card_words(c) == 17

    def test_name_not_counted(self):
        """Test the name does not count toward volume."""
        assert count_card_words(card(name="A very long name")) == 0

    def test_counts_code_points(self):
        """Test volume counts characters, not bytes."""
        assert count_card_words(card(description="角色描述")) == 4

    def test_non_string_items_count_as_text(self):
        """Test null items add nothing and other items count as JSON text."""
        assert count_card_words(card(alternate_greetings=["ab", None, 3])) == 3


class TestThresholds:
    """Each size signal is an exclusive upper bound."""

    def test_volume_boundary(self):
        """Test the volume threshold is exclusive."""
        assert not should_segment(card(description="a" * 3500))
        assert should_segment(card(description="a" * 3501))

    def test_world_book_boundary(self):
        """Test the lorebook entry threshold is exclusive."""
        assert not should_segment(card(character_book=entries(8)))
        assert should_segment(card(character_book=entries(9)))

    def test_greetings_boundary(self):
        """Test the greeting count threshold is exclusive."""
        assert not should_segment(card(alternate_greetings=["hi"] * 5))
        assert should_segment(card(alternate_greetings=["hi"] * 6))

    def test_configurable(self):
        """Test thresholds come from the config."""
        config = SegmentationConfig(word_threshold=10)
        assert should_segment(card(description="a" * 11), config)


class TestSingleUnit:
    """Small cards become one unit."""

    def test_layout(self):
        """Test the single unit layout and content."""
        c = card(
            description="D",
            first_mes="F",
            creator_notes="N",
            alternate_greetings=["g1", "g2"],
            character_book={"entries": [{"keys": ["k1", "k2"], "content": "c"}]},
        )
        groups = generate_work_groups(c)
        assert len(groups) == 1
        group = groups[0]
        assert group.id == "group-1"
        assert group.name == "全部内容"
        assert len(group.tasks) == 1

        task = group.tasks[0]
        assert task.id == "task-1"
        assert task.group_id == "group-1"
        assert task.range is None
        assert task.completed is False
        assert task.result is None
        assert task.fields == [
            CardField.DESCRIPTION,
            CardField.FIRST_MES,
            CardField.CREATOR_NOTES,
            CardField.ALTERNATE_GREETINGS,
            CardField.CHARACTER_BOOK,
        ]
        assert task.content == (
            "### 【角色描述】\nD\n\n"
            "### 【开场白】\nF\n\n"
            "### 【创作者笔记】\nN\n\n"
            "### 【备用开场白】\ng1\n\ng2\n\n"
            "### 【世界书】\n### 【世界书条目1】\n**关键词**: k1, k2\nc"
        )

    def test_non_string_greetings_rendered(self):
        """Test non-string greeting items render as text."""
        task = generate_work_groups(card(alternate_greetings=["hi", None, 3]))[0].tasks[0]
        assert task.content == "### 【备用开场白】\nhi\n\n\n\n3"

    def test_empty_fields_skipped(self):
        """Test empty fields are left out of the unit."""
        task = generate_work_groups(card(description="only"))[0].tasks[0]
        assert task.fields == [CardField.DESCRIPTION]
        assert task.content == "### 【角色描述】\nonly"

    def test_field_order(self):
        """Test fields appear in document order."""
        c = card(
            post_history_instructions="p",
            system_prompt="s",
            mes_example="m",
            scenario="sc",
            personality="pe",
            description="d",
            first_mes="f",
        )
        task = generate_work_groups(c)[0].tasks[0]
        assert [f.value for f in task.fields] == [
            "description", "personality", "scenario", "system_prompt",
            "first_mes", "mes_example", "post_history_instructions",
        ]


class TestSegmented:
    """Large cards are split into fixed groups."""

    @pytest.fixture
    def big_card(self):
        return card(
            description="d" * 3600,
            personality="p",
            first_mes="hello",
            mes_example="m",
            alternate_greetings=[f"greeting {i}" for i in range(1, 13)],
            character_book=entries(23),
        )

    def test_group_order_and_ids(self, big_card):
        """Test group order and sequential ids."""
        groups = generate_work_groups(big_card)
        assert [g.name for g in groups] == ["核心设定", "主开场白", "其他字段", "备用开场白", "世界观/知识库"]
        assert [g.id for g in groups] == ["group-1", "group-2", "group-3", "group-4", "group-5"]
        tasks = list(iter_tasks(groups))
        assert [t.id for t in tasks] == [f"task-{i}" for i in range(1, len(tasks) + 1)]
        for group in groups:
            assert all(t.group_id == group.id and t.group_name == group.name for t in group.tasks)

    def test_core_and_other_groups(self, big_card):
        """Test the core, primary greeting and other groups."""
        core, first, other = generate_work_groups(big_card)[:3]
        assert core.tasks[0].fields == [CardField.DESCRIPTION, CardField.PERSONALITY]
        assert first.tasks[0].content == "### 【开场白】\nhello"
        assert other.tasks[0].fields == [CardField.MES_EXAMPLE]
        assert all(t.range is None for g in (core, first, other) for t in g.tasks)

    def test_greeting_batches(self, big_card):
        """Test greetings are batched by five with absolute indexes."""
        greetings = generate_work_groups(big_card)[3]
        ranges = [(t.range.start, t.range.end) for t in greetings.tasks]
        assert ranges == [(1, 5), (6, 10), (11, 12)]
        assert all(t.range.kind == RangeKind.ALTERNATE_GREETINGS for t in greetings.tasks)
        second = greetings.tasks[1]
        assert second.content.startswith("### 【备用开场白6】\ngreeting 6\n\n### 【备用开场白7】")
        assert second.content.endswith("### 【备用开场白10】\ngreeting 10")

    def test_world_book_batches(self, big_card):
        """Test entries are batched by ten with keyword lines."""
        book = generate_work_groups(big_card)[4]
        assert [(t.range.start, t.range.end) for t in book.tasks] == [(1, 10), (11, 20), (21, 23)]
        assert all(t.range.kind == RangeKind.WORLD_BOOK for t in book.tasks)
        assert all(t.fields == [CardField.CHARACTER_BOOK] for t in book.tasks)
        last = book.tasks[2]
        assert last.content.startswith("### 【世界书条目21】\n**关键词**: key21, alias21\nEntry 21 content")

    @pytest.mark.parametrize("count", [6, 7, 10, 11, 15, 16, 37])
    def test_greeting_partition_is_complete(self, count):
        """Test greeting ranges cover every index exactly once."""
        groups = generate_work_groups(card(alternate_greetings=[f"g{i}" for i in range(count)]))
        covered = []
        for task in iter_tasks(groups):
            assert task.range.end - task.range.start + 1 <= 5
            covered.extend(range(task.range.start, task.range.end + 1))
        assert covered == list(range(1, count + 1))

    def test_missing_groups_skipped(self):
        """Test empty groups are skipped and ids stay sequential."""
        groups = generate_work_groups(card(alternate_greetings=["g"] * 12))
        assert [g.name for g in groups] == ["备用开场白"]
        assert groups[0].id == "group-1"
        assert groups[0].tasks[0].id == "task-1"

    def test_custom_batch_size(self):
        """Test the greeting batch size comes from the config."""
        config = SegmentationConfig(greeting_batch_size=4)
        groups = generate_work_groups(card(alternate_greetings=["g"] * 9), config)
        assert [(t.range.start, t.range.end) for t in groups[0].tasks] == [(1, 4), (5, 8), (9, 9)]


class TestWorkModels:
    """Unit and group models."""

    def test_group_completion_is_derived(self):
        """Test group completion follows its units."""
        groups = generate_work_groups(card(alternate_greetings=["g"] * 12))
        group = groups[0]
        assert group.completed is False
        done = group.model_copy(update={"tasks": [t.model_copy(update={"completed": True}) for t in group.tasks]})
        assert done.completed is True
        assert done.model_dump()["completed"] is True

    def test_unknown_fields_dropped(self):
        """Test unknown field identifiers are dropped from a unit."""
        unit = WorkUnit(
            id="task-1", group_id="group-1", group_name="x",
            fields=["description", "made_up"], content="",
        )
        assert unit.fields == [CardField.DESCRIPTION]
