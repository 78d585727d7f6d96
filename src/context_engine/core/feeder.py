"""Context feeder: relevance-ranked, budget-fitting prompt assembly.

Sits between an agent and its raw context. Builds one context item per
available source, scores every item against the request keywords, sorts by
tier then relevance, and greedily fills the budget. Items that overflow are
compressed (MANDATORY and IMPORTANT tiers) or excluded (lower tiers). The
system prompt and the user message are always included, even over budget.

Compression ladder (each step works on the previous step's output and
stops as soon as the item fits):
    1. Code: strip comments outside string literals
    2. JSON: drop nulls, shorten strings, cap arrays
    3. Collapse runs of repeated line patterns
    4. Keep head/tail lines around an omission marker
    5. Hard-truncate to the character budget with a marker

Plan items are never compressed: they are admitted whole or excluded.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence

from context_engine.core.compression import (
    abbreviate_json,
    collapse_repeated_patterns,
    hard_truncate,
    no_longer,
    strip_comments,
    truncate_head_tail,
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
from context_engine.core.models import (
    AgentContext,
    ConversationEntry,
    DesignComponent,
    LLMMessage,
)
from context_engine.core.relevance import extract_keywords, score_relevance
from context_engine.core.token_budget import (
    ModelProfile,
    TokenBudget,
    TokenBudgetTracker,
    detect_content_type,
    estimate_tokens_for_profile,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_RECENT_HISTORY_MESSAGES = 10

# Older history with more entries than this is flagged stale
STALE_HISTORY_ENTRIES = 20

# Component tree summaries
MAX_VISIBLE_CHILDREN = 5
SHOW_FIRST_CHILDREN = 3
SHOW_LAST_CHILDREN = 1

# Other-page summaries are only offered when this much budget remains
DESIGN_SUMMARY_MIN_REMAINING = 200

HISTORY_SEPARATOR = "\n---\n"

# Approximate characters per line when sizing head/tail truncation
CHARS_PER_LINE = 80
MIN_RETAINED_LINES = 5


# =============================================================================
# Result Type
# =============================================================================


@dataclass
class ContextFeedResult:
    """Outcome of one ``build_optimized_messages`` call.

    Attributes:
        messages: system message, context items as user messages, user message last
        budget: Final budget after all admissions
        included_items: Items admitted, possibly compressed, in admission order
        excluded_items: Items left out, in their original form
        compression_applied: True if any admitted item was compressed
        total_items_considered: Candidate items plus system prompt and user message
    """

    messages: list[LLMMessage]
    budget: TokenBudget
    included_items: list[ContextItem] = field(default_factory=list)
    excluded_items: list[ContextItem] = field(default_factory=list)
    compression_applied: bool = False
    total_items_considered: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "messages": [m.model_dump() for m in self.messages],
            "budget": self.budget.to_dict(),
            "included_items": [item.to_dict() for item in self.included_items],
            "excluded_items": [item.to_dict() for item in self.excluded_items],
            "compression_applied": self.compression_applied,
            "total_items_considered": self.total_items_considered,
        }


def sort_by_tier_and_relevance(items: Sequence[ContextItem]) -> list[ContextItem]:
    """Stable sort by priority tier ascending, then relevance descending."""
    return sorted(items, key=lambda item: (int(item.priority), -item.relevance_score))


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def _component_geometry(component: DesignComponent) -> str:
    return (
        f"({_format_number(component.x)},{_format_number(component.y)} "
        f"{_format_number(component.width)}x{_format_number(component.height)})"
    )


# =============================================================================
# Feeder
# =============================================================================


class ContextFeeder:
    """Assemble budget-fitting message lists from typed agent context.

    Example:
        feeder = ContextFeeder(TokenBudgetTracker())
        result = feeder.build_optimized_messages(
            agent_type="coding",
            user_message="Fix the login redirect",
            system_prompt="You are a coding agent.",
            context=AgentContext(task=task),
        )
        client.send(result.messages)
    """

    def __init__(
        self,
        tracker: Optional[TokenBudgetTracker] = None,
        *,
        log_sink: Optional[LogSink] = None,
        recent_history_messages: int = DEFAULT_RECENT_HISTORY_MESSAGES,
    ):
        """Initialize the feeder.

        Args:
            tracker: Token budget tracker; a default tracker when omitted
            log_sink: Optional line sink mirroring compression and exclusion diagnostics
            recent_history_messages: Trailing conversation entries treated as recent
        """
        if recent_history_messages < 0:
            raise ValueError(
                f"recent_history_messages must be non-negative, got {recent_history_messages}"
            )
        self.tracker = tracker or TokenBudgetTracker()
        self.recent_history_messages = recent_history_messages
        self._sink = resolve_sink(log_sink)

    def _log(self, message: str, level: int = logging.DEBUG) -> None:
        emit_diagnostic(logger, self._sink, message, level)

    def _estimate(
        self, text: str, content_type: ContentType, profile: Optional[ModelProfile]
    ) -> int:
        return estimate_tokens_for_profile(
            text, content_type, profile or self.tracker.current_profile
        )

    # -------------------------------------------------------------------------
    # Main entry point
    # -------------------------------------------------------------------------

    def build_optimized_messages(
        self,
        agent_type: str,
        user_message: str,
        system_prompt: str,
        context: Optional[AgentContext] = None,
        extra_items: Optional[Sequence[ContextItem]] = None,
        *,
        now: Optional[datetime] = None,
    ) -> ContextFeedResult:
        """Build an optimized message list for one model call.

        Steps:
        1. Create a budget (snapshotting the current model profile)
        2. Build context items from the agent context plus ``extra_items``
        3. Extract keywords and score every item
        4. Admit system prompt and user message unconditionally
        5. Admit the rest by (tier, relevance), compressing or excluding overflow
        6. Render messages from the admitted items
        """
        context = context or AgentContext()
        now = now or datetime.now(timezone.utc)

        budget = self.tracker.create_budget(agent_type)
        profile = budget.model_profile

        candidates = self.build_context_items(context, extra_items, profile=profile, now=now)
        keywords = extract_keywords(context.task, user_message, context.plan, sink=self._sink)
        candidates = [
            item.with_relevance(score_relevance(item, keywords, now, sink=self._sink))
            for item in candidates
        ]

        included: list[ContextItem] = []
        excluded: list[ContextItem] = []
        compression_applied = False

        for fixed in (
            self._fixed_item(
                "system-prompt", "System Prompt", system_prompt,
                ContextCategory.SYSTEM_PROMPT, "system", profile, now,
            ),
            self._fixed_item(
                "user-message", "User Message", user_message,
                ContextCategory.USER_MESSAGE, "user", profile, now,
            ),
        ):
            self.tracker.add_item(
                budget, fixed.label, fixed.content, fixed.priority, fixed.content_type,
                force=True,
            )
            included.append(fixed)

        for item in sort_by_tier_and_relevance(candidates):
            if item.category in (ContextCategory.SYSTEM_PROMPT, ContextCategory.USER_MESSAGE):
                continue

            tokens = self._estimate(item.content, item.content_type, profile)
            remaining = budget.remaining

            if tokens <= remaining:
                self.tracker.add_item(
                    budget, item.label, item.content, item.priority, item.content_type
                )
                included.append(item.with_tokens(tokens))
                continue

            if item.priority > ContextPriority.IMPORTANT:
                excluded.append(item)
                self._log(f"Excluded '{item.label}': {tokens} tokens (budget: {remaining})")
                continue

            if is_plan_item(item):
                excluded.append(item)
                self._log(
                    f"Excluded plan item '{item.label}' whole: {tokens} tokens "
                    f"(budget: {remaining})",
                    logging.INFO,
                )
                continue

            compressed = self.compress_item(item, remaining, profile=profile)
            if compressed.estimated_tokens <= remaining:
                self.tracker.add_item(
                    budget, compressed.label, compressed.content, compressed.priority,
                    compressed.content_type,
                )
                included.append(compressed)
                compression_applied = True
                self._log(
                    f"Compressed '{item.label}': {tokens} -> {compressed.estimated_tokens} tokens"
                )
            else:
                excluded.append(item)
                self._log(
                    f"Excluded '{item.label}': {tokens} tokens "
                    f"(even compressed: {compressed.estimated_tokens}, budget: {remaining})"
                )

        return ContextFeedResult(
            messages=self._build_messages(included),
            budget=budget,
            included_items=included,
            excluded_items=excluded,
            compression_applied=compression_applied,
            total_items_considered=len(candidates) + 2,
        )

    # -------------------------------------------------------------------------
    # Compression ladder
    # -------------------------------------------------------------------------

    def compress_item(
        self,
        item: ContextItem,
        target_tokens: int,
        *,
        profile: Optional[ModelProfile] = None,
    ) -> ContextItem:
        """Compress ``item`` toward ``target_tokens``.

        Returns the item itself when it already fits or is a plan item.
        Otherwise returns a copy whose content is never longer than the
        original; the copy may still exceed the target when even the hard
        truncation cannot reach it.
        """
        profile = profile or self.tracker.current_profile
        content_type = item.content_type

        def estimate(text: str) -> int:
            return estimate_tokens_for_profile(text, content_type, profile)

        if estimate(item.content) <= target_tokens or is_plan_item(item):
            return item

        char_budget = math.floor(
            max(0, target_tokens - profile.overhead_tokens_per_item)
            * profile.ratio_for(content_type)
        )

        text = item.content

        def finish(result: str) -> ContextItem:
            return item.with_content(result, estimate(result))

        if content_type == ContentType.CODE:
            text = no_longer(strip_comments(text), text)
            if estimate(text) <= target_tokens:
                return finish(text)

        if content_type == ContentType.JSON:
            text = no_longer(abbreviate_json(text), text)
            if estimate(text) <= target_tokens:
                return finish(text)

        text = no_longer(collapse_repeated_patterns(text), text)
        if estimate(text) <= target_tokens:
            return finish(text)

        max_lines = max(MIN_RETAINED_LINES, char_budget // CHARS_PER_LINE)
        text = no_longer(truncate_head_tail(text, max_lines), text)
        if estimate(text) <= target_tokens:
            return finish(text)

        return finish(hard_truncate(text, char_budget))

    # -------------------------------------------------------------------------
    # Item construction
    # -------------------------------------------------------------------------

    def build_context_items(
        self,
        context: AgentContext,
        extra_items: Optional[Sequence[ContextItem]] = None,
        *,
        profile: Optional[ModelProfile] = None,
        now: Optional[datetime] = None,
    ) -> list[ContextItem]:
        """Create one candidate item per available source in ``context``."""
        profile = profile or self.tracker.current_profile
        now_iso = (now or datetime.now(timezone.utc)).isoformat()
        items: list[ContextItem] = []

        def make(
            id: str,
            label: str,
            content: str,
            content_type: ContentType,
            category: ContextCategory,
            priority: ContextPriority,
            metadata: ItemMetadata,
        ) -> ContextItem:
            return ContextItem(
                id=id,
                label=label,
                content=content,
                content_type=content_type,
                category=category,
                priority=priority,
                estimated_tokens=estimate_tokens_for_profile(content, content_type, profile),
                metadata=metadata,
            )

        task = context.task
        if task is not None:
            lines = [
                f"Task: {task.title}",
                f"Description: {task.description}",
                f"Priority: {task.priority}",
                f"Status: {task.status}",
                f"Acceptance Criteria: {task.acceptance_criteria}",
            ]
            if task.files_modified:
                lines.append(f"Files: {', '.join(task.files_modified)}")
            items.append(
                make(
                    f"task-{task.id}",
                    f"Current Task: {task.title}",
                    "\n".join(lines),
                    ContentType.NATURAL_TEXT,
                    ContextCategory.CURRENT_TASK,
                    ContextPriority.MANDATORY,
                    ItemMetadata(
                        source_type="task",
                        source_id=task.id,
                        created_at=task.created_at or now_iso,
                        related_task_ids=(task.id,),
                        related_file_patterns=tuple(task.files_modified),
                    ),
                )
            )

        ticket = context.ticket
        if ticket is not None:
            content = "\n".join(
                [
                    f"Ticket TK-{ticket.ticket_number}: {ticket.title}",
                    f"Status: {ticket.status} | Priority: {ticket.priority}",
                    f"Body: {ticket.body}",
                ]
            )
            items.append(
                make(
                    f"ticket-{ticket.id}",
                    f"Related Ticket: TK-{ticket.ticket_number}",
                    content,
                    ContentType.NATURAL_TEXT,
                    ContextCategory.RELATED_TICKET,
                    ContextPriority.IMPORTANT,
                    ItemMetadata(
                        source_type="ticket",
                        source_id=ticket.id,
                        created_at=ticket.created_at or now_iso,
                        related_task_ids=(ticket.task_id,) if ticket.task_id else (),
                    ),
                )
            )

        plan = context.plan
        if plan is not None:
            content = "\n".join(
                [
                    f"Plan: {plan.name}",
                    f"Status: {plan.status}",
                    f"Config: {plan.config_json}",
                ]
            )
            items.append(
                make(
                    f"plan-{plan.id}",
                    f"Active Plan: {plan.name}",
                    content,
                    ContentType.MIXED,
                    ContextCategory.ACTIVE_PLAN,
                    ContextPriority.IMPORTANT,
                    ItemMetadata(
                        source_type="plan",
                        source_id=plan.id,
                        created_at=plan.created_at or now_iso,
                    ),
                )
            )

        history = context.conversation_history
        if history:
            cutoff = max(0, len(history) - self.recent_history_messages)
            recent, older = history[cutoff:], history[:cutoff]
            if recent:
                items.append(
                    self._history_item(
                        make, recent, "recent", "Recent History",
                        ContextCategory.RECENT_HISTORY, ContextPriority.IMPORTANT,
                        is_stale=False, now_iso=now_iso,
                    )
                )
            if older:
                items.append(
                    self._history_item(
                        make, older, "older", "Older History",
                        ContextCategory.OLDER_HISTORY, ContextPriority.OPTIONAL,
                        is_stale=len(older) > STALE_HISTORY_ENTRIES, now_iso=now_iso,
                    )
                )

        for key, value in context.additional_context.items():
            if value is None:
                continue
            text = value if isinstance(value, str) else json.dumps(value, indent=1, default=str)
            items.append(
                make(
                    f"additional-{key}",
                    f"Additional: {key}",
                    text,
                    detect_content_type(text),
                    ContextCategory.SUPPLEMENTARY,
                    ContextPriority.SUPPLEMENTARY,
                    ItemMetadata(source_type="custom", source_id=key, created_at=now_iso),
                )
            )

        for extra in extra_items or ():
            items.append(
                extra.with_tokens(
                    estimate_tokens_for_profile(extra.content, extra.content_type, profile)
                )
            )

        return items

    @staticmethod
    def _history_item(
        make: Callable[..., ContextItem],
        entries: Sequence[ConversationEntry],
        source_id: str,
        title: str,
        category: ContextCategory,
        priority: ContextPriority,
        *,
        is_stale: bool,
        now_iso: str,
    ) -> ContextItem:
        content = HISTORY_SEPARATOR.join(f"[{e.role}] {e.content}" for e in entries)
        return make(
            f"history-{source_id}",
            f"{title} ({len(entries)} messages)",
            content,
            ContentType.NATURAL_TEXT,
            category,
            priority,
            ItemMetadata(
                source_type="history",
                source_id=source_id,
                created_at=entries[-1].created_at or now_iso,
                is_stale=is_stale,
                related_task_ids=tuple(e.task_id for e in entries if e.task_id),
            ),
        )

    def _fixed_item(
        self,
        id: str,
        label: str,
        content: str,
        category: ContextCategory,
        source_id: str,
        profile: ModelProfile,
        now: datetime,
    ) -> ContextItem:
        return ContextItem(
            id=id,
            label=label,
            content=content,
            content_type=ContentType.NATURAL_TEXT,
            category=category,
            priority=ContextPriority.MANDATORY,
            relevance_score=100.0,
            estimated_tokens=estimate_tokens_for_profile(
                content, ContentType.NATURAL_TEXT, profile
            ),
            metadata=ItemMetadata(
                source_type="custom", source_id=source_id, created_at=now.isoformat()
            ),
        )

    @staticmethod
    def _build_messages(items: Sequence[ContextItem]) -> list[LLMMessage]:
        messages: list[LLMMessage] = []

        for item in items:
            if item.category == ContextCategory.SYSTEM_PROMPT:
                messages.append(LLMMessage(role="system", content=item.content))
                break

        for item in items:
            if item.category in (ContextCategory.SYSTEM_PROMPT, ContextCategory.USER_MESSAGE):
                continue
            if item.category in (ContextCategory.RECENT_HISTORY, ContextCategory.OLDER_HISTORY):
                header = "[Conversation History]"
            else:
                header = f"[{item.label}]"
            messages.append(LLMMessage(role="user", content=f"{header}\n{item.content}"))

        for item in items:
            if item.category == ContextCategory.USER_MESSAGE:
                messages.append(LLMMessage(role="user", content=item.content))
                break

        return messages

    # -------------------------------------------------------------------------
    # Design-aware context
    # -------------------------------------------------------------------------

    def summarize_component_tree(self, components: Sequence[DesignComponent]) -> str:
        """Render a design tree as an indented outline.

        Each line reads ``Name [type] (x,y WxH)``, indented two spaces per
        depth level. Sibling groups larger than 5 show the first 3 and the
        last 1 around a ``[N children collapsed]`` marker.
        """
        if not components:
            return "[No components]"

        children_of: dict[Optional[str], list[DesignComponent]] = {}
        for component in components:
            children_of.setdefault(component.parent_id, []).append(component)
        for siblings in children_of.values():
            siblings.sort(key=lambda c: c.sort_order)

        def render(parent_id: Optional[str], depth: int) -> list[str]:
            siblings = children_of.get(parent_id) or []
            indent = "  " * depth
            if len(siblings) > MAX_VISIBLE_CHILDREN:
                collapsed = len(siblings) - SHOW_FIRST_CHILDREN - SHOW_LAST_CHILDREN
                shown = (
                    siblings[:SHOW_FIRST_CHILDREN],
                    [None],
                    siblings[-SHOW_LAST_CHILDREN:],
                )
                visible = [c for group in shown for c in group]
            else:
                collapsed = 0
                visible = list(siblings)

            lines: list[str] = []
            for component in visible:
                if component is None:
                    lines.append(f"{indent}[{collapsed} children collapsed]")
                    continue
                lines.append(
                    f"{indent}{component.name} [{component.type}] {_component_geometry(component)}"
                )
                lines.extend(render(component.id, depth + 1))
            return lines

        lines = render(None, 0)
        return "\n".join(lines) if lines else "[No root components]"

    def build_design_context(
        self,
        page_id: str,
        components: Sequence[DesignComponent],
        budget: TokenBudget,
        *,
        now: Optional[datetime] = None,
    ) -> list[ContextItem]:
        """Design items for one page.

        The page's own components get a detailed Important item; components
        of other pages get a Supplementary tree summary, offered only when
        more than 200 tokens remain in ``budget``.
        """
        if not components:
            return []

        profile = budget.model_profile
        now_iso = (now or datetime.now(timezone.utc)).isoformat()
        page_components = [c for c in components if c.page_id == page_id]
        other_components = [c for c in components if c.page_id != page_id]
        items: list[ContextItem] = []

        if page_components:
            lines = []
            for c in page_components:
                line = f"{c.name} [{c.type}] {_component_geometry(c)}"
                if c.content:
                    line += f' content="{c.content[:80]}"'
                line += f" parent={c.parent_id}" if c.parent_id else " (root)"
                lines.append(line)
            content = "\n".join(lines)
            items.append(
                ContextItem(
                    id=f"design-page-{page_id}",
                    label=f"Page Components ({page_id})",
                    content=content,
                    content_type=ContentType.NATURAL_TEXT,
                    category=ContextCategory.DESIGN_COMPONENTS,
                    priority=ContextPriority.IMPORTANT,
                    relevance_score=80.0,
                    estimated_tokens=estimate_tokens_for_profile(
                        content, ContentType.NATURAL_TEXT, profile
                    ),
                    metadata=ItemMetadata(
                        source_type="component", source_id=page_id, created_at=now_iso
                    ),
                )
            )

        if other_components and budget.remaining > DESIGN_SUMMARY_MIN_REMAINING:
            summary = self.summarize_component_tree(other_components)
            items.append(
                ContextItem(
                    id="design-other-pages",
                    label="Other Page Components (summary)",
                    content=summary,
                    content_type=ContentType.NATURAL_TEXT,
                    category=ContextCategory.DESIGN_COMPONENTS,
                    priority=ContextPriority.SUPPLEMENTARY,
                    relevance_score=30.0,
                    estimated_tokens=estimate_tokens_for_profile(
                        summary, ContentType.NATURAL_TEXT, profile
                    ),
                    metadata=ItemMetadata(
                        source_type="component", source_id="other-pages", created_at=now_iso
                    ),
                )
            )
        elif other_components:
            self._log(
                f"Skipped other-page component summary: {budget.remaining} tokens remaining"
            )

        return items


__all__ = [
    "ContextFeedResult",
    "ContextFeeder",
    "sort_by_tier_and_relevance",
]
