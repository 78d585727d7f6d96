"""Context breaking chain: five-level escalation for oversized working sets.

Applied to an already-assembled item list that exceeds its budget. Levels
are attempted in order and the chain stops at the first level whose result
fits ``budget.available_for_input``:

    NONE -> SUMMARIZE_OLD -> PRIORITIZE_RECENT -> SMART_CHUNKING
         -> DISCARD_LOW_RELEVANCE -> FRESH_START

    1 SUMMARIZE_OLD: extractive summary (~30%) of the oldest 60% of items
    2 PRIORITIZE_RECENT: drop day-old, low-relevance items; boost very recent ones
    3 SMART_CHUNKING: per-content-type compression (code 70%, JSON 60%, text 50%)
    4 DISCARD_LOW_RELEVANCE: replace the bottom 30% by composite score with placeholders
    5 FRESH_START: snapshot everything, keep MANDATORY items plus one summary item

Levels 1-4 never alter or drop items for which the protection predicate
(``is_plan_item`` by default) holds. Fresh-Start keeps items strictly by
``priority == MANDATORY``, so a protected IMPORTANT item is folded into the
summary at that level.

The chain performs no I/O and never raises for an unsatisfiable budget:
Fresh-Start always terminates it.
"""

from __future__ import annotations

import json
import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from typing import Any, Callable, Optional, Sequence
from uuid import uuid4

from context_engine.core.compression import (
    CODE_TARGET_RATIO,
    JSON_TARGET_RATIO,
    TEXT_TARGET_RATIO,
    compress_code,
    compress_json,
    compress_text,
    deterministic_summarize,
    hard_truncate,
    no_longer,
)
from context_engine.core.items import (
    ContentType,
    ContextCategory,
    ContextItem,
    ContextPriority,
    ItemMetadata,
    is_plan_item,
)
from context_engine.core.logging_config import LogSink, emit_diagnostic, resolve_sink
from context_engine.core.models import ContextSnapshot
from context_engine.core.relevance import RelevanceKeywordSet, item_age, parse_timestamp
from context_engine.core.token_budget import (
    ModelProfile,
    TokenBudget,
    TokenBudgetTracker,
    estimate_tokens_for_profile,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Level Constants
# =============================================================================

# L1
OLD_FRACTION = 0.6
SUMMARY_RATIO = 0.3

# L2
FULL_FIDELITY_AGE = timedelta(hours=1)
VERY_RECENT_AGE = timedelta(minutes=10)
VERY_RECENT_BONUS = 20
DROP_AGE = timedelta(hours=24)
DROP_RELEVANCE_BELOW = 30

# L4
DISCARD_FRACTION = 0.3
TASK_HIT_WEIGHT = 15
FILE_HIT_WEIGHT = 10
DOMAIN_HIT_WEIGHT = 5
MANDATORY_BONUS = 100
IMPORTANT_BONUS = 50

# L5
SUMMARY_LABEL_LIMIT = 10
FRESH_START_RELEVANCE = 50.0


class ContextBreakingLevel(IntEnum):
    """Escalation levels, in the order they are attempted."""

    NONE = 0
    SUMMARIZE_OLD = 1
    PRIORITIZE_RECENT = 2
    SMART_CHUNKING = 3
    DISCARD_LOW_RELEVANCE = 4
    FRESH_START = 5

    def next_level(self) -> Optional["ContextBreakingLevel"]:
        """Get the next level in the chain, or None at FRESH_START."""
        if self is ContextBreakingLevel.FRESH_START:
            return None
        return ContextBreakingLevel(self + 1)


@dataclass
class ContextBreakingResult:
    """Outcome of one chain run.

    Attributes:
        strategy_applied: Level at which the chain stopped
        original_tokens: Token total of the input items
        result_tokens: Token total of ``items``
        reduction_percent: Rounded percent reduction
        items_dropped: Items removed or replaced by placeholders
        fresh_start_triggered: True when FRESH_START ran
        snapshot: Snapshot payload, only when FRESH_START ran
        items: The resulting item list
        level_tokens: Token total after each attempted level
    """

    strategy_applied: ContextBreakingLevel
    original_tokens: int
    result_tokens: int
    reduction_percent: int
    items_dropped: int
    fresh_start_triggered: bool
    snapshot: Optional[ContextSnapshot] = None
    items: list[ContextItem] = field(default_factory=list)
    level_tokens: dict[ContextBreakingLevel, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "strategy_applied": self.strategy_applied.name.lower(),
            "level": int(self.strategy_applied),
            "original_tokens": self.original_tokens,
            "result_tokens": self.result_tokens,
            "reduction_percent": self.reduction_percent,
            "items_dropped": self.items_dropped,
            "fresh_start_triggered": self.fresh_start_triggered,
            "snapshot": self.snapshot.model_dump(mode="json") if self.snapshot else None,
            "items": [item.to_dict() for item in self.items],
            "level_tokens": {level.name.lower(): tokens for level, tokens in self.level_tokens.items()},
        }


def reduction_percent(original: int, result: int) -> int:
    if original == 0:
        return 0
    return math.floor((original - result) / original * 100 + 0.5)


def total_tokens(items: Sequence[ContextItem]) -> int:
    return sum(item.estimated_tokens for item in items)


def fits_in_budget(items: Sequence[ContextItem], budget: TokenBudget) -> bool:
    return total_tokens(items) <= budget.available_for_input


def omission_placeholder(item: ContextItem) -> str:
    return f"[Omitted: {item.label} ({item.estimated_tokens} tokens) -- low relevance]"


def _count_hits(keywords: Sequence[str], label: str, content: str) -> int:
    return sum(1 for kw in keywords if kw.lower() in content or kw.lower() in label)


def composite_score(item: ContextItem, keywords: RelevanceKeywordSet) -> float:
    """Relevance plus keyword hits plus tier bonus, used to rank discards."""
    label = item.label.lower()
    content = item.content.lower()
    score = item.relevance_score
    score += TASK_HIT_WEIGHT * _count_hits(keywords.task_keywords, label, content)
    score += FILE_HIT_WEIGHT * _count_hits(keywords.file_keywords, label, content)
    score += DOMAIN_HIT_WEIGHT * _count_hits(keywords.domain_keywords, label, content)
    if item.priority == ContextPriority.MANDATORY:
        score += MANDATORY_BONUS
    elif item.priority == ContextPriority.IMPORTANT:
        score += IMPORTANT_BONUS
    return score


def summarize_items(items: Sequence[ContextItem]) -> str:
    """One-paragraph description of an item set: counts, categories, labels."""
    if not items:
        return "No items to summarize."

    categories = Counter(item.category.value for item in items)
    breakdown = ", ".join(f"{count} {category}" for category, count in categories.items())
    labels = ", ".join(item.label for item in items[:SUMMARY_LABEL_LIMIT])
    trail = (
        f", and {len(items) - SUMMARY_LABEL_LIMIT} more"
        if len(items) > SUMMARY_LABEL_LIMIT
        else ""
    )
    return (
        f"Context snapshot contains {len(items)} items ({total_tokens(items)} tokens): "
        f"{breakdown}. Key items: {labels}{trail}."
    )


# =============================================================================
# Chain
# =============================================================================


class ContextBreakingChain:
    """Deterministic five-level reduction of an over-budget item list.

    Example:
        chain = ContextBreakingChain(tracker)
        result = chain.apply_chain(items, budget, keywords)
        if result.snapshot is not None:
            store.save(result.snapshot)
        items = result.items
    """

    def __init__(
        self,
        tracker: Optional[TokenBudgetTracker] = None,
        *,
        is_protected: Callable[[ContextItem], bool] = is_plan_item,
        log_sink: Optional[LogSink] = None,
    ):
        """Initialize the chain.

        Args:
            tracker: Supplies the profile for budgets without one; a default
                tracker when omitted
            is_protected: Items for which this holds are never altered or
                dropped by levels 1-4
            log_sink: Optional line sink for level-by-level diagnostics
        """
        self.tracker = tracker or TokenBudgetTracker()
        self.is_protected = is_protected
        self._sink = resolve_sink(log_sink)

    def _log(self, message: str, level: int = logging.DEBUG) -> None:
        emit_diagnostic(logger, self._sink, message, level)

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def apply_chain(
        self,
        items: Sequence[ContextItem],
        budget: TokenBudget,
        keywords: RelevanceKeywordSet,
        *,
        now: Optional[datetime] = None,
    ) -> ContextBreakingResult:
        """Walk the levels until the item set fits ``budget``.

        Items whose ``estimated_tokens`` is 0 are estimated with the
        budget's profile first; other estimates are taken as given.
        """
        now = parse_timestamp(now) or datetime.now(timezone.utc)
        profile = budget.model_profile
        current = [
            item if item.estimated_tokens > 0
            else item.with_tokens(self._estimate(item.content, item.content_type, profile))
            for item in items
        ]

        if not current:
            return ContextBreakingResult(ContextBreakingLevel.NONE, 0, 0, 0, 0, False)

        original_tokens = total_tokens(current)
        if fits_in_budget(current, budget):
            self._log(f"Items fit in budget ({original_tokens} tokens); no reduction needed")
            return ContextBreakingResult(
                strategy_applied=ContextBreakingLevel.NONE,
                original_tokens=original_tokens,
                result_tokens=original_tokens,
                reduction_percent=0,
                items_dropped=0,
                fresh_start_triggered=False,
                items=list(current),
            )

        self._log(
            f"Budget exceeded: {original_tokens} tokens vs {budget.available_for_input} "
            "available; starting chain",
            logging.INFO,
        )

        def fits(candidate: list[ContextItem]) -> bool:
            return fits_in_budget(candidate, budget)

        levels: list[
            tuple[
                ContextBreakingLevel,
                Callable[[list[ContextItem]], tuple[list[ContextItem], int]],
                Callable[[list[ContextItem]], bool],
            ]
        ] = [
            (
                ContextBreakingLevel.SUMMARIZE_OLD,
                lambda its: (self.summarize_old(its, profile=profile, now=now), 0),
                fits,
            ),
            (
                ContextBreakingLevel.PRIORITIZE_RECENT,
                lambda its: self._counted_drop(self.prioritize_recent(its, now=now), its),
                fits,
            ),
            (
                ContextBreakingLevel.SMART_CHUNKING,
                lambda its: (self.smart_chunking(its, profile=profile), 0),
                fits,
            ),
            (
                ContextBreakingLevel.DISCARD_LOW_RELEVANCE,
                lambda its: self.discard_low_relevance_with_count(
                    its, keywords, profile=profile
                ),
                fits,
            ),
        ]

        dropped = 0
        level_tokens: dict[ContextBreakingLevel, int] = {}
        for level, transform, succeeded in levels:
            current, level_dropped = transform(current)
            dropped += level_dropped
            tokens = total_tokens(current)
            level_tokens[level] = tokens
            self._log(
                f"L{int(level)} {level.name}: {tokens} tokens, dropped {level_dropped} "
                f"({reduction_percent(original_tokens, tokens)}% total reduction)"
            )
            if succeeded(current):
                return ContextBreakingResult(
                    strategy_applied=level,
                    original_tokens=original_tokens,
                    result_tokens=tokens,
                    reduction_percent=reduction_percent(original_tokens, tokens),
                    items_dropped=dropped,
                    fresh_start_triggered=False,
                    items=current,
                    level_tokens=level_tokens,
                )

        final_items, snapshot = self.fresh_start(current, profile=profile, now=now)
        final_tokens = total_tokens(final_items)
        level_tokens[ContextBreakingLevel.FRESH_START] = final_tokens
        self._log(
            f"L5 FRESH_START: {final_tokens} tokens, kept {len(final_items)} items; "
            f"snapshot {snapshot.id} holds {snapshot.item_count} items",
            logging.WARNING,
        )
        return ContextBreakingResult(
            strategy_applied=ContextBreakingLevel.FRESH_START,
            original_tokens=original_tokens,
            result_tokens=final_tokens,
            reduction_percent=reduction_percent(original_tokens, final_tokens),
            items_dropped=max(0, len(items) - len(final_items)),
            fresh_start_triggered=True,
            snapshot=snapshot,
            items=final_items,
            level_tokens=level_tokens,
        )

    @staticmethod
    def _counted_drop(
        result: list[ContextItem], before: list[ContextItem]
    ) -> tuple[list[ContextItem], int]:
        return result, len(before) - len(result)

    def _estimate(self, text: str, content_type: ContentType, profile: ModelProfile) -> int:
        return estimate_tokens_for_profile(text, content_type, profile)

    def _recompressed(
        self, item: ContextItem, content: str, profile: ModelProfile
    ) -> ContextItem:
        """Copy with new content; the estimate never rises above the original."""
        content = no_longer(content, item.content)
        if content == item.content:
            return item
        tokens = self._estimate(content, item.content_type, profile)
        return item.with_content(content, min(tokens, item.estimated_tokens))

    # -------------------------------------------------------------------------
    # Levels
    # -------------------------------------------------------------------------

    def summarize_old(
        self,
        items: Sequence[ContextItem],
        *,
        profile: Optional[ModelProfile] = None,
        now: Optional[datetime] = None,
    ) -> list[ContextItem]:
        """L1: summarize the oldest 60% (rounded up) to ~30% of their length.

        Items come back ordered oldest first. Unknown timestamps sort as
        "now", i.e. among the newest.
        """
        if not items:
            return []
        profile = profile or self.tracker.current_profile
        now = parse_timestamp(now) or datetime.now(timezone.utc)

        ordered = sorted(
            items, key=lambda item: parse_timestamp(item.metadata.created_at) or now
        )
        cutoff = math.ceil(len(ordered) * OLD_FRACTION)

        result = []
        for item in ordered[:cutoff]:
            if self.is_protected(item):
                result.append(item)
                continue
            summary = deterministic_summarize(item.content, SUMMARY_RATIO)
            result.append(self._recompressed(item, summary, profile))
        result.extend(ordered[cutoff:])
        return result

    def prioritize_recent(
        self,
        items: Sequence[ContextItem],
        *,
        now: Optional[datetime] = None,
    ) -> list[ContextItem]:
        """L2: keep recent and important items, drop day-old low-relevance ones.

        Items aged 10 minutes or less gain +20 relevance. Items of unknown
        age and protected items are always kept.
        """
        result = []
        for item in items:
            age = item_age(item.metadata.created_at, now)

            if age is not None and age <= FULL_FIDELITY_AGE:
                if age <= VERY_RECENT_AGE:
                    item = item.with_relevance(item.relevance_score + VERY_RECENT_BONUS)
                result.append(item)
                continue

            if item.priority <= ContextPriority.IMPORTANT or self.is_protected(item):
                result.append(item)
                continue

            if age is not None and age > DROP_AGE and item.relevance_score < DROP_RELEVANCE_BELOW:
                self._log(
                    f"Dropped '{item.label}': {age.total_seconds() / 3600:.1f}h old, "
                    f"relevance {item.relevance_score:g}"
                )
                continue

            result.append(item)
        return result

    def smart_chunking(
        self,
        items: Sequence[ContextItem],
        *,
        profile: Optional[ModelProfile] = None,
    ) -> list[ContextItem]:
        """L3: compress by content type (code 70%, JSON 60%, text and markdown 50%)."""
        profile = profile or self.tracker.current_profile
        result = []
        for item in items:
            if self.is_protected(item):
                result.append(item)
                continue
            if item.content_type == ContentType.CODE:
                compressed = compress_code(item.content, CODE_TARGET_RATIO)
            elif item.content_type == ContentType.JSON:
                compressed = compress_json(item.content, JSON_TARGET_RATIO)
            else:
                compressed = compress_text(item.content, TEXT_TARGET_RATIO)
            result.append(self._recompressed(item, compressed, profile))
        return result

    def discard_low_relevance(
        self,
        items: Sequence[ContextItem],
        keywords: RelevanceKeywordSet,
        *,
        profile: Optional[ModelProfile] = None,
    ) -> list[ContextItem]:
        """L4: replace the lowest-scoring 30% with one-line placeholders."""
        return self.discard_low_relevance_with_count(items, keywords, profile=profile)[0]

    def discard_low_relevance_with_count(
        self,
        items: Sequence[ContextItem],
        keywords: RelevanceKeywordSet,
        *,
        profile: Optional[ModelProfile] = None,
    ) -> tuple[list[ContextItem], int]:
        """L4 with the number of placeholders created.

        ``floor(len(items) * 0.3)`` items with the lowest composite score are
        replaced; protected items are never candidates, so fewer are replaced
        only when too few unprotected items remain. A placeholder can cost
        more than a very short item it replaces, so this level may raise the
        token total for tiny items. Kept items retain their order;
        placeholders follow them, lowest score first.
        """
        if not items:
            return [], 0
        profile = profile or self.tracker.current_profile

        candidates = [i for i, item in enumerate(items) if not self.is_protected(item)]
        drop_count = math.floor(len(items) * DISCARD_FRACTION)
        to_drop = sorted(
            candidates, key=lambda i: composite_score(items[i], keywords)
        )[:drop_count]

        dropped = set(to_drop)
        kept = [item for i, item in enumerate(items) if i not in dropped]
        placeholders = [self._placeholder(items[i], profile) for i in to_drop]
        for i in to_drop:
            self._log(
                f"Replaced '{items[i].label}' with placeholder "
                f"(score {composite_score(items[i], keywords):g})"
            )
        return kept + placeholders, len(placeholders)

    def _placeholder(self, original: ContextItem, profile: ModelProfile) -> ContextItem:
        text = omission_placeholder(original)
        return ContextItem(
            id=original.id,
            label=text,
            content=text,
            content_type=ContentType.NATURAL_TEXT,
            category=original.category,
            priority=ContextPriority.OPTIONAL,
            relevance_score=0.0,
            estimated_tokens=self._estimate(text, ContentType.NATURAL_TEXT, profile),
            metadata=original.metadata,
        )

    def fresh_start(
        self,
        items: Sequence[ContextItem],
        *,
        profile: Optional[ModelProfile] = None,
        now: Optional[datetime] = None,
    ) -> tuple[list[ContextItem], ContextSnapshot]:
        """L5: snapshot every item, keep MANDATORY items plus a summary item.

        The summary item describes the discarded items and never costs more
        than they did. When every item is MANDATORY it still appears, reading
        "No items to summarize.".
        """
        profile = profile or self.tracker.current_profile
        now = parse_timestamp(now) or datetime.now(timezone.utc)
        snapshot_id = f"snapshot-{uuid4().hex[:12]}"

        mandatory = [item for item in items if item.priority == ContextPriority.MANDATORY]
        discarded = [item for item in items if item.priority != ContextPriority.MANDATORY]

        snapshot = ContextSnapshot(
            id=snapshot_id,
            task_id=next(
                (i.metadata.related_task_ids[0] for i in items if i.metadata.related_task_ids),
                None,
            ),
            ticket_id=next(
                (i.metadata.source_id for i in items if i.metadata.source_type == "ticket"),
                None,
            ),
            summary=summarize_items(items),
            essential_context=json.dumps(
                [
                    {"id": i.id, "label": i.label, "category": i.category.value}
                    for i in mandatory
                ]
            ),
            resume_instructions=(
                f"Context was compressed via Fresh Start (Level 5). {len(items)} items "
                "were saved to this snapshot. Mandatory items were retained. Restore "
                f"from snapshot ID {snapshot_id} if full context is needed."
            ),
            item_count=len(items),
            created_at=now,
        )

        summary = summarize_items(discarded)
        ceiling = total_tokens(discarded)
        tokens = self._estimate(summary, ContentType.NATURAL_TEXT, profile)
        if discarded and tokens > ceiling:
            char_budget = math.floor(
                max(0, ceiling - profile.overhead_tokens_per_item)
                * profile.ratio_for(ContentType.NATURAL_TEXT)
            )
            summary = hard_truncate(summary, char_budget)
            tokens = self._estimate(summary, ContentType.NATURAL_TEXT, profile)

        summary_item = ContextItem(
            id=f"fresh-start-summary-{snapshot_id.removeprefix('snapshot-')}",
            label="Fresh Start Summary",
            content=summary,
            content_type=ContentType.NATURAL_TEXT,
            category=ContextCategory.SUPPLEMENTARY,
            priority=ContextPriority.IMPORTANT,
            relevance_score=FRESH_START_RELEVANCE,
            estimated_tokens=tokens,
            metadata=ItemMetadata(
                source_type="custom", source_id="fresh-start", created_at=now.isoformat()
            ),
        )
        return mandatory + [summary_item], snapshot


def apply_chain(
    items: Sequence[ContextItem],
    budget: TokenBudget,
    keywords: RelevanceKeywordSet,
    *,
    now: Optional[datetime] = None,
    is_protected: Callable[[ContextItem], bool] = is_plan_item,
    log_sink: Optional[LogSink] = None,
) -> ContextBreakingResult:
    """Run the breaking chain once with a throwaway chain instance."""
    chain = ContextBreakingChain(is_protected=is_protected, log_sink=log_sink)
    return chain.apply_chain(items, budget, keywords, now=now)


__all__ = [
    "ContextBreakingChain",
    "ContextBreakingLevel",
    "ContextBreakingResult",
    "ContextSnapshot",
    "apply_chain",
    "composite_score",
    "fits_in_budget",
    "omission_placeholder",
    "summarize_items",
    "total_tokens",
]
