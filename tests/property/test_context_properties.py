"""
Property-based tests for the breaking chain and compression using Hypothesis.

All items use the flat test profile, so token counts equal content lengths.
"""

import json
from datetime import timedelta

from hypothesis import given, settings, strategies as st

from context_engine.core.breaking_chain import (
    DISCARD_FRACTION,
    ContextBreakingChain,
    ContextBreakingLevel,
)
from context_engine.core.compression import (
    compress_code,
    compress_json,
    compress_text,
    deterministic_summarize,
    strip_comments,
)
from context_engine.core.feeder import ContextFeeder
from context_engine.core.items import ContentType, ContextPriority, is_plan_item
from context_engine.core.relevance import RelevanceKeywordSet
from context_engine.core.token_budget import TokenBudget, TokenBudgetTracker
from tests.factories import FIXED_NOW, FLAT_PROFILE, make_item

TEXT_ALPHABET = "abcdefgh .\n/{}:;\"#"

NO_KEYWORDS = RelevanceKeywordSet()


def flat_chain() -> ContextBreakingChain:
    tracker = TokenBudgetTracker()
    tracker.register_model(FLAT_PROFILE)
    tracker.set_current_model(FLAT_PROFILE.id)
    return ContextBreakingChain(tracker)


# Custom strategies


@st.composite
def context_item(draw, index: int, min_size: int = 0):
    """Generate one item with random content, tier, relevance and age."""
    content = draw(st.text(alphabet=TEXT_ALPHABET, min_size=min_size, max_size=400))
    label = draw(st.sampled_from(["Note", "Log", "Release Plan", "Snippet"]))
    age_hours = draw(st.one_of(st.none(), st.integers(min_value=-2, max_value=2000)))
    return make_item(
        f"i{index}",
        content,
        label=f"{label} {index}",
        content_type=draw(st.sampled_from(list(ContentType))),
        priority=draw(st.sampled_from(list(ContextPriority))),
        relevance=draw(st.integers(min_value=0, max_value=100)),
        age=timedelta(hours=age_hours) if age_hours is not None else None,
    )


@st.composite
def item_list(draw, min_items: int = 1, max_items: int = 12, min_size: int = 0):
    count = draw(st.integers(min_value=min_items, max_value=max_items))
    return [draw(context_item(i, min_size=min_size)) for i in range(count)]


budgets = st.integers(min_value=0, max_value=3000)


# =============================================================================
# Breaking Chain
# =============================================================================


class TestBreakingChainProperties:
    @given(items=item_list(), available=budgets)
    @settings(max_examples=60, deadline=None)
    def test_fitting_result_is_a_fixed_point(self, items, available):
        chain = flat_chain()
        budget = TokenBudget.for_input(available, FLAT_PROFILE)
        first = chain.apply_chain(items, budget, NO_KEYWORDS, now=FIXED_NOW)

        if first.result_tokens <= available:
            second = chain.apply_chain(first.items, budget, NO_KEYWORDS, now=FIXED_NOW)
            assert second.strategy_applied == ContextBreakingLevel.NONE
            assert second.items == first.items

    @given(items=item_list(), available=budgets)
    @settings(max_examples=60, deadline=None)
    def test_token_totals_never_rise_between_levels(self, items, available):
        result = flat_chain().apply_chain(
            items, TokenBudget.for_input(available, FLAT_PROFILE), NO_KEYWORDS, now=FIXED_NOW
        )

        previous = result.original_tokens
        for level in sorted(result.level_tokens):
            if level > ContextBreakingLevel.SMART_CHUNKING:
                break
            assert result.level_tokens[level] <= previous
            previous = result.level_tokens[level]
        if result.strategy_applied < ContextBreakingLevel.FRESH_START:
            assert result.result_tokens <= result.original_tokens

    @given(items=item_list(), available=budgets)
    @settings(max_examples=60, deadline=None)
    def test_fresh_start_never_costs_more_when_it_discards(self, items, available):
        result = flat_chain().apply_chain(
            items, TokenBudget.for_input(available, FLAT_PROFILE), NO_KEYWORDS, now=FIXED_NOW
        )

        if result.fresh_start_triggered:
            retained = len(result.items) - 1
            if result.snapshot.item_count > retained:
                assert (
                    result.level_tokens[ContextBreakingLevel.FRESH_START]
                    <= result.level_tokens[ContextBreakingLevel.DISCARD_LOW_RELEVANCE]
                )

    @given(items=item_list(), available=budgets)
    @settings(max_examples=60, deadline=None)
    def test_plan_items_unaltered_below_fresh_start(self, items, available):
        result = flat_chain().apply_chain(
            items, TokenBudget.for_input(available, FLAT_PROFILE), NO_KEYWORDS, now=FIXED_NOW
        )

        if result.strategy_applied < ContextBreakingLevel.FRESH_START:
            survivors = {(i.id, i.content, i.estimated_tokens) for i in result.items}
            for item in items:
                if is_plan_item(item):
                    assert (item.id, item.content, item.estimated_tokens) in survivors

    @given(items=item_list(), available=budgets)
    @settings(max_examples=60, deadline=None)
    def test_fresh_start_keeps_mandatory_items_plus_one_summary(self, items, available):
        result = flat_chain().apply_chain(
            items, TokenBudget.for_input(available, FLAT_PROFILE), NO_KEYWORDS, now=FIXED_NOW
        )

        if result.fresh_start_triggered:
            mandatory_ids = {i.id for i in items if i.priority == ContextPriority.MANDATORY}
            retained = [i for i in result.items if i.label != "Fresh Start Summary"]
            assert all(i.priority == ContextPriority.MANDATORY for i in retained)
            assert {i.id for i in retained} <= mandatory_ids
            assert len(result.items) == len(retained) + 1
            assert result.snapshot is not None
            assert result.snapshot.item_count <= len(items)
            assert result.snapshot.id in result.snapshot.resume_instructions

    @given(items=item_list(min_items=1, max_items=30))
    @settings(max_examples=40, deadline=None)
    def test_discard_replaces_thirty_percent(self, items):
        items = [i for i in items if not is_plan_item(i)]
        result, count = flat_chain().discard_low_relevance_with_count(
            items, NO_KEYWORDS, profile=FLAT_PROFILE
        )

        assert count == int(len(items) * DISCARD_FRACTION)
        assert len(result) == len(items)
        assert sorted(i.id for i in result) == sorted(i.id for i in items)

    @given(items=item_list(min_items=1, max_items=30))
    @settings(max_examples=40, deadline=None)
    def test_discard_only_raises_tokens_through_heavier_placeholders(self, items):
        result, count = flat_chain().discard_low_relevance_with_count(
            items, NO_KEYWORDS, profile=FLAT_PROFILE
        )

        originals = {i.id: i for i in items}
        placeholders = result[len(result) - count:] if count else []
        before = sum(i.estimated_tokens for i in items)
        after = sum(i.estimated_tokens for i in result)
        assert after == before + sum(
            p.estimated_tokens - originals[p.id].estimated_tokens for p in placeholders
        )
        if after > before:
            assert any(
                p.estimated_tokens > originals[p.id].estimated_tokens for p in placeholders
            )

    @given(items=item_list(max_items=20))
    @settings(max_examples=40, deadline=None)
    def test_snapshot_records_every_item(self, items):
        kept, snapshot = flat_chain().fresh_start(items, profile=FLAT_PROFILE, now=FIXED_NOW)

        assert snapshot.item_count == len(items)
        assert f"contains {len(items)} items" in snapshot.summary
        essential = json.loads(snapshot.essential_context)
        assert [e["id"] for e in essential] == [
            i.id for i in items if i.priority == ContextPriority.MANDATORY
        ]
        discarded = [i for i in items if i.priority != ContextPriority.MANDATORY]
        assert kept[-1].label == "Fresh Start Summary"
        if discarded:
            assert kept[-1].estimated_tokens <= sum(i.estimated_tokens for i in discarded)
        else:
            assert kept[-1].content == "No items to summarize."


# =============================================================================
# Compression
# =============================================================================


class TestCompressionProperties:
    @given(text=st.text(max_size=500))
    def test_strip_comments_never_grows(self, text):
        assert len(strip_comments(text)) <= len(text)

    @given(
        text=st.text(alphabet=TEXT_ALPHABET, max_size=500),
        ratio=st.floats(min_value=0.05, max_value=0.95),
    )
    def test_chunkers_never_grow(self, text, ratio):
        assert len(compress_code(text, ratio)) <= len(text)
        assert len(compress_json(text, ratio)) <= len(text)
        assert len(compress_text(text, ratio)) <= len(text)
        assert len(deterministic_summarize(text, ratio)) <= len(text)

    @given(
        value=st.recursive(
            st.one_of(st.none(), st.booleans(), st.integers(), st.text(max_size=80)),
            lambda children: st.one_of(
                st.lists(children, max_size=8),
                st.dictionaries(st.text(max_size=5), children, max_size=8),
            ),
            max_leaves=30,
        )
    )
    @settings(deadline=None)
    def test_compress_json_output_is_bounded(self, value):
        text = json.dumps(value)
        assert len(compress_json(text)) <= len(text)

    @given(item=context_item(0), target=st.integers(min_value=0, max_value=200))
    @settings(deadline=None)
    def test_feeder_compression_never_grows(self, item, target):
        compressed = ContextFeeder().compress_item(item, target, profile=FLAT_PROFILE)
        assert len(compressed.content) <= len(item.content)
        assert compressed.id == item.id
