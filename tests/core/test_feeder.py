"""Tests for budget-fitting prompt assembly."""

import json

import pytest

from context_engine.core.compression import TRUNCATION_MARKER
from context_engine.core.feeder import ContextFeeder, sort_by_tier_and_relevance
from context_engine.core.items import ContentType, ContextCategory, ContextPriority
from context_engine.core.models import (
    AgentContext,
    ConversationEntry,
    DesignComponent,
    Plan,
    Task,
    Ticket,
)
from context_engine.core.token_budget import ModelProfile, TokenBudget, TokenBudgetTracker
from tests.factories import FIXED_NOW, FLAT_PROFILE, make_item

TINY_PROFILE = ModelProfile(
    id="test/tiny",
    name="Tiny",
    context_window_tokens=120,
    max_output_tokens=0,
    chars_per_token={ct: 1.0 for ct in ContentType},
    overhead_tokens_per_item=0,
)


@pytest.fixture
def feeder(flat_tracker):
    return ContextFeeder(flat_tracker)


@pytest.fixture
def tiny_feeder():
    tracker = TokenBudgetTracker()
    tracker.register_model(TINY_PROFILE)
    tracker.set_current_model(TINY_PROFILE.id)
    return ContextFeeder(tracker)


def full_context(history_size: int = 3) -> AgentContext:
    return AgentContext(
        task=Task(
            id="t1",
            title="Fix login redirect",
            description="Users land on a blank page",
            files_modified=["src/auth/login.ts"],
        ),
        ticket=Ticket(id="k1", ticket_number=42, title="Blank page after login", task_id="t1"),
        plan=Plan(id="p1", name="Auth cleanup", config_json='{"goal": "stable login"}'),
        conversation_history=[
            ConversationEntry(role="user", content=f"message {i}") for i in range(history_size)
        ],
    )


# =============================================================================
# Assembly
# =============================================================================


class TestBuildOptimizedMessages:
    def test_message_order(self, feeder):
        result = feeder.build_optimized_messages(
            "coding", "Fix it please", "You are a coding agent.", full_context(), now=FIXED_NOW
        )
        messages = result.messages

        assert messages[0].role == "system"
        assert messages[0].content == "You are a coding agent."
        assert messages[-1].role == "user"
        assert messages[-1].content == "Fix it please"
        assert all(m.role == "user" for m in messages[1:])
        assert messages[1].content.startswith("[Current Task: Fix login redirect]\n")
        assert any(m.content.startswith("[Conversation History]\n") for m in messages)

    def test_everything_fits_in_a_large_budget(self, feeder):
        result = feeder.build_optimized_messages(
            "coding", "Fix it", "System", full_context(), now=FIXED_NOW
        )

        assert result.excluded_items == []
        assert not result.compression_applied
        # task, ticket, plan, recent history + system prompt and user message
        assert result.total_items_considered == 6
        assert len(result.included_items) == 6
        assert result.budget.consumed == sum(i.estimated_tokens for i in result.included_items)

    def test_included_items_ordered_by_tier(self, feeder):
        result = feeder.build_optimized_messages(
            "coding", "Fix it", "System", full_context(history_size=12), now=FIXED_NOW
        )
        tiers = [int(item.priority) for item in result.included_items]
        assert tiers == sorted(tiers)
        labels = [item.label for item in result.included_items]
        assert "Recent History (10 messages)" in labels
        assert labels[-1] == "Older History (2 messages)"

    def test_relevance_scored_against_request_keywords(self, feeder):
        result = feeder.build_optimized_messages(
            "coding", "Fix it", "System", full_context(), now=FIXED_NOW
        )
        ticket = next(i for i in result.included_items if i.id == "ticket-k1")
        # task keywords in content plus recency
        assert ticket.relevance_score > 10

    def test_overflow_compresses_mandatory_and_excludes_the_rest(self, tiny_feeder):
        extra = [
            make_item(
                "big", "x" * 300, label="Big Notes",
                category=ContextCategory.CURRENT_TASK, priority=ContextPriority.MANDATORY,
            ),
            make_item(
                "plan", "p" * 20, label="Release Plan",
                category=ContextCategory.ACTIVE_PLAN, priority=ContextPriority.IMPORTANT,
            ),
            make_item("opt", "o" * 5, label="Optional Notes"),
        ]
        result = tiny_feeder.build_optimized_messages(
            "coding", "U" * 10, "S" * 10, extra_items=extra, now=FIXED_NOW
        )

        big = next(i for i in result.included_items if i.id == "big")
        assert len(big.content) == 100
        assert big.content.endswith(TRUNCATION_MARKER)
        assert result.compression_applied
        assert [i.id for i in result.excluded_items] == ["plan", "opt"]
        assert result.excluded_items[0].content == "p" * 20
        assert result.budget.consumed == 120
        assert result.budget.remaining == 0

    def test_overflow_compresses_important_ticket(self, tiny_feeder):
        notes = "\n".join(f"entry {i}: ok" for i in range(20))
        ticket = make_item(
            "ticket-notes", notes, label="Ticket Notes",
            category=ContextCategory.RELATED_TICKET, priority=ContextPriority.IMPORTANT,
        )
        result = tiny_feeder.build_optimized_messages(
            "coding", "U" * 10, "S" * 10, extra_items=[ticket], now=FIXED_NOW
        )

        included = next(i for i in result.included_items if i.id == "ticket-notes")
        assert included.content == "entry 0: ok\n[18 similar entries]\nentry 19: ok"
        assert included.estimated_tokens == 45
        assert result.compression_applied
        assert result.excluded_items == []
        assert result.budget.consumed == 65

    def test_system_and_user_message_forced_over_budget(self, tiny_feeder):
        result = tiny_feeder.build_optimized_messages("coding", "U" * 100, "S" * 100)

        assert result.budget.consumed == 200
        assert [m.role for m in result.messages] == ["system", "user"]

    def test_to_dict_is_json_serializable(self, feeder):
        result = feeder.build_optimized_messages(
            "coding", "Fix it", "System", full_context(), now=FIXED_NOW
        )
        data = json.loads(json.dumps(result.to_dict()))
        assert data["total_items_considered"] == 6
        assert data["messages"][0]["role"] == "system"

    def test_negative_history_window_rejected(self):
        with pytest.raises(ValueError):
            ContextFeeder(recent_history_messages=-1)


class TestBuildContextItems:
    def test_one_item_per_source(self, feeder):
        context = full_context()
        context.additional_context.update({"schema": {"type": "object"}, "skip": None})
        items = feeder.build_context_items(context, now=FIXED_NOW)

        assert [i.id for i in items] == [
            "task-t1",
            "ticket-k1",
            "plan-p1",
            "history-recent",
            "additional-schema",
        ]

    def test_task_item_content(self, feeder):
        items = feeder.build_context_items(full_context(), now=FIXED_NOW)
        task = items[0]

        assert task.priority == ContextPriority.MANDATORY
        assert task.content.startswith("Task: Fix login redirect\n")
        assert task.content.endswith("Files: src/auth/login.ts")
        assert task.metadata.related_file_patterns == ("src/auth/login.ts",)
        assert task.metadata.created_at == FIXED_NOW.isoformat()

    def test_long_older_history_flagged_stale(self, feeder):
        items = feeder.build_context_items(full_context(history_size=35), now=FIXED_NOW)
        older = next(i for i in items if i.id == "history-older")

        assert older.metadata.is_stale
        assert older.priority == ContextPriority.OPTIONAL
        assert older.content.startswith("[user] message 0\n---\n[user] message 1")

    def test_extra_items_re_estimated(self, feeder):
        items = feeder.build_context_items(
            AgentContext(), [make_item("e", "twelve chars", tokens=999)], now=FIXED_NOW
        )
        assert items[0].estimated_tokens == 12


class TestSortByTierAndRelevance:
    def test_tier_then_relevance_then_input_order(self):
        items = [
            make_item("a", priority=ContextPriority.OPTIONAL, relevance=90),
            make_item("b", priority=ContextPriority.IMPORTANT, relevance=10),
            make_item("c", priority=ContextPriority.IMPORTANT, relevance=30),
            make_item("d", priority=ContextPriority.IMPORTANT, relevance=10),
        ]
        assert [i.id for i in sort_by_tier_and_relevance(items)] == ["c", "b", "d", "a"]


# =============================================================================
# Compression Ladder
# =============================================================================


class TestCompressItem:
    def test_code_comments_stripped_first(self):
        feeder = ContextFeeder()
        item = make_item(
            "c", "let a = 1; // " + "c" * 100 + "\nlet b = 2;",
            content_type=ContentType.CODE, priority=ContextPriority.IMPORTANT,
        )
        compressed = feeder.compress_item(item, 30)

        assert compressed.content == "let a = 1; \nlet b = 2;"
        assert compressed.id == "c"
        assert compressed.estimated_tokens <= 30

    def test_json_abbreviated(self):
        feeder = ContextFeeder()
        item = make_item(
            "j", '{"a": null, "b": "' + "y" * 200 + '"}', content_type=ContentType.JSON
        )
        compressed = feeder.compress_item(item, 40)
        assert json.loads(compressed.content) == {"b": "y" * 47 + "..."}

    def test_stops_after_collapsing_similar_lines(self, feeder):
        item = make_item("log", "\n".join(f"entry {i}: ok" for i in range(20)))
        compressed = feeder.compress_item(item, 50, profile=FLAT_PROFILE)

        assert compressed.content == "entry 0: ok\n[18 similar entries]\nentry 19: ok"
        assert compressed.estimated_tokens == 45

    def test_stops_after_head_tail_truncation(self, feeder):
        item = make_item("lines", "\n".join(f"{i} line" for i in range(40)))
        compressed = feeder.compress_item(item, 70, profile=FLAT_PROFILE)

        assert compressed.content == (
            "0 line\n1 line\n2 line\n[... 35 lines omitted ...]\n38 line\n39 line"
        )
        assert compressed.estimated_tokens == 63
        assert not compressed.content.endswith(TRUNCATION_MARKER)

    def test_fitting_item_returned_as_is(self):
        item = make_item("a", "short")
        assert ContextFeeder().compress_item(item, 1000) is item

    def test_plan_item_never_compressed(self):
        item = make_item("p", "z" * 500, label="Migration plan")
        assert ContextFeeder().compress_item(item, 10) is item

    def test_result_never_longer_than_input(self, flat_tracker):
        feeder = ContextFeeder(flat_tracker)
        item = make_item("a", "\n".join(f"row {i}: value" for i in range(40)))
        compressed = feeder.compress_item(item, 5, profile=FLAT_PROFILE)
        assert len(compressed.content) <= len(item.content)


# =============================================================================
# Design Context
# =============================================================================


def _component(id, name, *, page="p1", parent=None, order=0, **kwargs):
    return DesignComponent(
        id=id, page_id=page, name=name, parent_id=parent, sort_order=order, **kwargs
    )


class TestComponentTree:
    def test_large_sibling_groups_collapse(self, feeder):
        components = [_component("root", "Page", width=800, height=600)] + [
            _component(
                f"b{i}", f"Btn{i}", parent="root", order=i,
                type="button", x=10 * i, width=20, height=10,
            )
            for i in range(7)
        ]
        assert feeder.summarize_component_tree(components).split("\n") == [
            "Page [container] (0,0 800x600)",
            "  Btn0 [button] (0,0 20x10)",
            "  Btn1 [button] (10,0 20x10)",
            "  Btn2 [button] (20,0 20x10)",
            "  [3 children collapsed]",
            "  Btn6 [button] (60,0 20x10)",
        ]

    def test_fractional_geometry_kept(self, feeder):
        tree = feeder.summarize_component_tree([_component("a", "Box", x=10.5, width=3)])
        assert tree == "Box [container] (10.5,0 3x0)"

    def test_empty_and_orphaned(self, feeder):
        assert feeder.summarize_component_tree([]) == "[No components]"
        orphan = _component("a", "Lost", parent="ghost")
        assert feeder.summarize_component_tree([orphan]) == "[No root components]"


class TestBuildDesignContext:
    def components(self):
        return [
            _component("r1", "Root", width=800, height=600),
            _component(
                "b1", "Btn", parent="r1", type="button",
                x=10, y=20, width=100, height=40, content="Click me",
            ),
            _component("o1", "Other", page="p2"),
        ]

    def test_page_detail_and_other_page_summary(self, feeder):
        items = feeder.build_design_context(
            "p1", self.components(), TokenBudget.for_input(1000, FLAT_PROFILE), now=FIXED_NOW
        )

        assert [i.id for i in items] == ["design-page-p1", "design-other-pages"]
        assert items[0].priority == ContextPriority.IMPORTANT
        assert items[0].content.split("\n") == [
            "Root [container] (0,0 800x600) (root)",
            'Btn [button] (10,20 100x40) content="Click me" parent=r1',
        ]
        assert items[1].priority == ContextPriority.SUPPLEMENTARY
        assert items[1].content == "Other [container] (0,0 0x0)"

    def test_summary_skipped_when_budget_low(self, feeder):
        items = feeder.build_design_context(
            "p1", self.components(), TokenBudget.for_input(150, FLAT_PROFILE)
        )
        assert [i.id for i in items] == ["design-page-p1"]

    def test_no_components(self, feeder):
        assert feeder.build_design_context("p1", [], TokenBudget.for_input(1000)) == []
