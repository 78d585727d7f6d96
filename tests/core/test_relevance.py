"""Tests for keyword extraction and relevance scoring."""

from dataclasses import replace
from datetime import timedelta

import pytest

from context_engine.core.items import ItemMetadata
from context_engine.core.models import Plan, Task
from context_engine.core.relevance import (
    NEUTRAL_SCORE,
    RelevanceKeywordSet,
    compute_recency_bonus,
    compute_staleness_penalty,
    extract_keywords,
    parse_timestamp,
    score_relevance,
)
from tests.factories import FIXED_NOW, make_item


# =============================================================================
# Keyword Extraction
# =============================================================================


class TestExtractKeywords:
    def test_task_title_words_and_camel_case_parts(self):
        keywords = extract_keywords(task=Task(id="t1", title="Fix loginRedirect bug"))
        assert keywords.task_keywords == ("fix", "loginredirect", "bug", "login", "redirect")

    def test_stop_words_and_short_words_skipped(self):
        keywords = extract_keywords(task=Task(id="t1", title="Add it to the UI cache"))
        assert keywords.task_keywords == ("add", "cache")

    def test_files_modified_give_path_and_stem(self):
        keywords = extract_keywords(
            task=Task(id="t1", files_modified=["src/auth/Login.tsx", "", "a/b.py"])
        )
        assert keywords.file_keywords == ("src/auth/login.tsx", "login", "a/b.py")

    def test_plan_config_values_feed_domain(self):
        plan = Plan(
            id="p1",
            name="Checkout",
            config_json='{"goal": "faster payments", "steps": 3}',
        )
        keywords = extract_keywords(plan=plan)
        assert keywords.domain_keywords == ("checkout", "faster", "payments")

    def test_invalid_plan_json_read_as_text(self):
        lines = []
        keywords = extract_keywords(
            plan=Plan(id="p1", config_json="not json {"), sink=lines.append
        )

        assert keywords.domain_keywords == ("json",)
        assert any("not valid JSON" in line for line in lines)

    def test_user_message_feeds_domain(self):
        keywords = extract_keywords(user_message="Please refactor the billing module")
        assert keywords.domain_keywords == ("please", "refactor", "billing", "module")
        assert keywords.task_keywords == ()

    def test_nothing_given_is_empty(self):
        assert extract_keywords().is_empty


# =============================================================================
# Age Adjustments
# =============================================================================


class TestAgeAdjustments:
    @pytest.mark.parametrize(
        "age,expected",
        [
            (timedelta(minutes=30), 10),
            (timedelta(hours=12), 5),
            (timedelta(days=3), 2),
            (timedelta(days=10), 0),
            (timedelta(minutes=-5), 10),
        ],
    )
    def test_recency_bonus(self, age, expected):
        assert compute_recency_bonus(FIXED_NOW - age, FIXED_NOW) == expected

    def test_unknown_age_has_no_bonus(self):
        assert compute_recency_bonus(None, FIXED_NOW) == 0
        assert compute_recency_bonus("yesterday-ish", FIXED_NOW) == 0

    @pytest.mark.parametrize(
        "age,is_stale,expected",
        [
            (timedelta(days=7), False, 0),
            (timedelta(days=8), False, 5),
            (timedelta(days=10), False, 6),
            (timedelta(days=28), False, 10),
            (timedelta(days=28), True, 15),
            (timedelta(hours=1), True, 5),
        ],
    )
    def test_staleness_penalty(self, age, is_stale, expected):
        assert compute_staleness_penalty(FIXED_NOW - age, is_stale, FIXED_NOW) == expected

    def test_parse_timestamp_normalizes_to_utc(self):
        parsed = parse_timestamp("2025-01-31T12:00:00Z")
        assert parsed == FIXED_NOW
        assert parse_timestamp("2025-01-31T12:00:00") == FIXED_NOW
        assert parse_timestamp("") is None
        assert parse_timestamp("not a date") is None


# =============================================================================
# Scoring
# =============================================================================


class TestScoreRelevance:
    def test_empty_keywords_score_neutral(self):
        item = make_item("a", "anything", age=timedelta(days=30), is_stale=True)
        assert score_relevance(item, RelevanceKeywordSet(), FIXED_NOW) == NEUTRAL_SCORE

    def test_task_keyword_in_label_and_content(self):
        item = make_item("a", "login handler here", label="Login form")
        keywords = RelevanceKeywordSet(task_keywords=("login",))
        assert score_relevance(item, keywords, FIXED_NOW) == 6

    def test_file_keyword_counts_each_pattern(self):
        item = make_item("a", "x", related_file_patterns=("src/auth/*.ts", "lib/auth.py"))
        keywords = RelevanceKeywordSet(file_keywords=("auth",))
        assert score_relevance(item, keywords, FIXED_NOW) == 6

    def test_domain_keyword_counts_once(self):
        item = make_item("a", "billing details", label="Billing")
        keywords = RelevanceKeywordSet(domain_keywords=("billing",))
        assert score_relevance(item, keywords, FIXED_NOW) == 1

    def test_related_task_bonus(self):
        item = make_item("a", "y", label="x", related_task_ids=("auth-refactor",))
        keywords = RelevanceKeywordSet(task_keywords=("auth",))
        assert score_relevance(item, keywords, FIXED_NOW) == 8

    def test_recency_adds_to_keyword_score(self):
        item = make_item("a", "login", label="x", age=timedelta(minutes=5))
        keywords = RelevanceKeywordSet(task_keywords=("login",))
        assert score_relevance(item, keywords, FIXED_NOW) == 12

    def test_score_floored_at_zero(self):
        item = make_item("a", "unrelated", age=timedelta(days=28), is_stale=True)
        keywords = RelevanceKeywordSet(task_keywords=("zzz",))
        assert score_relevance(item, keywords, FIXED_NOW) == 0

    def test_unparseable_timestamp_is_reported(self):
        lines = []
        item = replace(
            make_item("a", "login", label="Broken"),
            metadata=ItemMetadata(created_at="garbage"),
        )
        keywords = RelevanceKeywordSet(task_keywords=("login",))

        assert score_relevance(item, keywords, FIXED_NOW, sink=lines.append) == 2
        assert any("Broken" in line and "unparseable" in line for line in lines)
