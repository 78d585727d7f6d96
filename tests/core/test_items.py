"""Tests for the context item data model."""

from datetime import datetime, timezone

import pytest

from context_engine.core.items import (
    CATEGORY_TIER,
    ContentType,
    ContextCategory,
    ContextItem,
    ContextPriority,
    ItemMetadata,
    is_plan_item,
)


class TestContextPriority:
    def test_tiers_order_mandatory_first(self):
        assert (
            ContextPriority.MANDATORY
            < ContextPriority.IMPORTANT
            < ContextPriority.SUPPLEMENTARY
            < ContextPriority.OPTIONAL
        )

    def test_every_category_has_a_default_tier(self):
        assert set(CATEGORY_TIER) == set(ContextCategory)


class TestContextItem:
    def test_with_content_preserves_identity(self):
        item = ContextItem(id="a", label="Notes", content="long text", estimated_tokens=9)
        copy = item.with_content("short", 5)

        assert copy.id == "a"
        assert copy.label == "Notes"
        assert copy.content == "short"
        assert copy.estimated_tokens == 5
        assert item.content == "long text"

    def test_items_are_immutable(self):
        item = ContextItem(id="a", label="Notes", content="x")
        with pytest.raises(AttributeError):
            item.content = "y"  # type: ignore[misc]

    def test_metadata_lists_become_tuples(self):
        meta = ItemMetadata(related_task_ids=["t1", "t2"], related_file_patterns=["*.py"])
        assert meta.related_task_ids == ("t1", "t2")
        assert meta.related_file_patterns == ("*.py",)

    def test_from_dict_accepts_priority_names_and_numbers(self):
        by_name = ContextItem.from_dict({"id": "a", "priority": "important"})
        by_number = ContextItem.from_dict({"id": "b", "priority": 1})

        assert by_name.priority == ContextPriority.IMPORTANT
        assert by_number.priority == ContextPriority.MANDATORY

    def test_from_dict_defaults_priority_from_category(self):
        item = ContextItem.from_dict({"id": "t", "category": "current_task"})
        assert item.priority == ContextPriority.MANDATORY

    def test_from_dict_rejects_unknown_content_type(self):
        with pytest.raises(ValueError):
            ContextItem.from_dict({"id": "a", "content_type": "binary"})

    def test_to_dict_uses_wire_values(self):
        item = ContextItem(
            id="a",
            label="Notes",
            content="x",
            content_type=ContentType.NATURAL_TEXT,
            category=ContextCategory.RECENT_HISTORY,
            priority=ContextPriority.IMPORTANT,
            metadata=ItemMetadata(created_at=datetime(2025, 1, 1, tzinfo=timezone.utc)),
        )
        data = item.to_dict()

        assert data["content_type"] == "natural_text"
        assert data["category"] == "recent_history"
        assert data["priority"] == 2
        assert data["metadata"]["created_at"] == "2025-01-01T00:00:00+00:00"


class TestIsPlanItem:
    @pytest.mark.parametrize(
        "item",
        [
            ContextItem(id="a", label="x", content="", metadata=ItemMetadata(source_type="plan")),
            ContextItem(id="b", label="x", content="", category=ContextCategory.ACTIVE_PLAN),
            ContextItem(id="c", label="Migration PLAN v2", content=""),
        ],
    )
    def test_plan_markers(self, item):
        assert is_plan_item(item)

    def test_plain_item_is_not_plan(self):
        assert not is_plan_item(ContextItem(id="a", label="Notes", content="the plan"))
