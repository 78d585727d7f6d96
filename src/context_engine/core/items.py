"""Context item data model.

Every piece of candidate prompt content is represented as a ``ContextItem``:
an immutable value object carrying its text, content type, semantic
category, priority tier and relevance score. Compression steps never mutate
an item; they produce a copy through ``with_content`` so the ``id`` and
``label`` stay traceable across the whole pipeline.

Key Components:
    - ContentType: Content classes with distinct chars-per-token ratios
    - ContextCategory: The semantic slots an item can occupy
    - ContextPriority: Ordinal tier (MANDATORY < IMPORTANT < SUPPLEMENTARY < OPTIONAL)
    - ItemMetadata: Source, timestamp and linkage information
    - ContextItem: The atomic unit handled by the feeder and the breaking chain
    - is_plan_item(): The single predicate for source-of-truth plan content
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Optional, Union


# =============================================================================
# Enums
# =============================================================================


class ContentType(str, Enum):
    """Content classes, each tokenizing at a different chars-per-token ratio."""

    CODE = "code"
    NATURAL_TEXT = "natural_text"
    JSON = "json"
    MARKDOWN = "markdown"
    MIXED = "mixed"


class ContextCategory(str, Enum):
    """Semantic slot an item occupies in the assembled prompt."""

    SYSTEM_PROMPT = "system_prompt"
    CURRENT_TASK = "current_task"
    USER_MESSAGE = "user_message"
    ACTIVE_PLAN = "active_plan"
    RELATED_TICKET = "related_ticket"
    RECENT_HISTORY = "recent_history"
    OLDER_HISTORY = "older_history"
    DESIGN_COMPONENTS = "design_components"
    COMPONENT_SCHEMAS = "component_schemas"
    ETHICS_RULES = "ethics_rules"
    SYNC_STATE = "sync_state"
    SUPPLEMENTARY = "supplementary"


class ContextPriority(IntEnum):
    """Loading tier. Lower values are admitted first and compressed before dropping.

    MANDATORY and IMPORTANT items are compressed when they overflow the
    budget; SUPPLEMENTARY and OPTIONAL items are excluded outright.
    """

    MANDATORY = 1
    IMPORTANT = 2
    SUPPLEMENTARY = 3
    OPTIONAL = 4


# Default tier per category, used when callers build items without an
# explicit priority.
CATEGORY_TIER: dict[ContextCategory, ContextPriority] = {
    ContextCategory.SYSTEM_PROMPT: ContextPriority.MANDATORY,
    ContextCategory.CURRENT_TASK: ContextPriority.MANDATORY,
    ContextCategory.USER_MESSAGE: ContextPriority.MANDATORY,
    ContextCategory.ACTIVE_PLAN: ContextPriority.IMPORTANT,
    ContextCategory.RELATED_TICKET: ContextPriority.IMPORTANT,
    ContextCategory.RECENT_HISTORY: ContextPriority.IMPORTANT,
    ContextCategory.DESIGN_COMPONENTS: ContextPriority.SUPPLEMENTARY,
    ContextCategory.COMPONENT_SCHEMAS: ContextPriority.SUPPLEMENTARY,
    ContextCategory.ETHICS_RULES: ContextPriority.SUPPLEMENTARY,
    ContextCategory.SYNC_STATE: ContextPriority.SUPPLEMENTARY,
    ContextCategory.OLDER_HISTORY: ContextPriority.OPTIONAL,
    ContextCategory.SUPPLEMENTARY: ContextPriority.OPTIONAL,
}


# =============================================================================
# Item Types
# =============================================================================


@dataclass(frozen=True)
class ItemMetadata:
    """Provenance and linkage for a context item.

    Attributes:
        source_type: Where the item came from (task, ticket, plan, history, custom, ...)
        source_id: Identifier within that source
        created_at: ISO-8601 string or datetime; None or unparseable means unknown age
        is_stale: Explicit staleness flag set by the producer
        related_task_ids: Task ids this item is linked to
        related_file_patterns: File paths or globs this item concerns
    """

    source_type: str = "custom"
    source_id: str = ""
    created_at: Optional[Union[str, datetime]] = None
    is_stale: bool = False
    related_task_ids: tuple[str, ...] = ()
    related_file_patterns: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        # Accept lists from callers while keeping the dataclass hashable.
        object.__setattr__(self, "related_task_ids", tuple(self.related_task_ids))
        object.__setattr__(
            self, "related_file_patterns", tuple(self.related_file_patterns)
        )

    def to_dict(self) -> dict[str, Any]:
        created = self.created_at
        if isinstance(created, datetime):
            created = created.isoformat()
        return {
            "source_type": self.source_type,
            "source_id": self.source_id,
            "created_at": created,
            "is_stale": self.is_stale,
            "related_task_ids": list(self.related_task_ids),
            "related_file_patterns": list(self.related_file_patterns),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ItemMetadata":
        return cls(
            source_type=data.get("source_type") or "custom",
            source_id=data.get("source_id") or "",
            created_at=data.get("created_at"),
            is_stale=bool(data.get("is_stale", False)),
            related_task_ids=tuple(data.get("related_task_ids") or ()),
            related_file_patterns=tuple(data.get("related_file_patterns") or ()),
        )


@dataclass(frozen=True)
class ContextItem:
    """Atomic unit of candidate prompt content.

    Items are value objects. Any compression produces a new item via
    ``with_content``; ``id`` and ``label`` are preserved for traceability.

    Attributes:
        id: Stable identifier
        label: Human-readable label, also used as the message header
        content: The text payload
        content_type: Content class used for token estimation
        category: Semantic slot
        priority: Loading tier
        relevance_score: Higher is more relevant
        estimated_tokens: Token estimate for ``content`` (overhead included)
        metadata: Provenance and linkage
    """

    id: str
    label: str
    content: str
    content_type: ContentType = ContentType.MIXED
    category: ContextCategory = ContextCategory.SUPPLEMENTARY
    priority: ContextPriority = ContextPriority.OPTIONAL
    relevance_score: float = 0.0
    estimated_tokens: int = 0
    metadata: ItemMetadata = field(default_factory=ItemMetadata)

    def with_content(self, content: str, estimated_tokens: int) -> "ContextItem":
        """Return a copy carrying new content and its token estimate."""
        return replace(self, content=content, estimated_tokens=estimated_tokens)

    def with_relevance(self, relevance_score: float) -> "ContextItem":
        """Return a copy with a new relevance score."""
        return replace(self, relevance_score=relevance_score)

    def with_tokens(self, estimated_tokens: int) -> "ContextItem":
        return replace(self, estimated_tokens=estimated_tokens)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "label": self.label,
            "content": self.content,
            "content_type": self.content_type.value,
            "category": self.category.value,
            "priority": int(self.priority),
            "relevance_score": self.relevance_score,
            "estimated_tokens": self.estimated_tokens,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ContextItem":
        """Build an item from its serialized form.

        ``priority`` accepts either the tier number or its name
        (``"important"``); a missing priority falls back to the category's
        default tier.
        """
        category = ContextCategory(data.get("category", ContextCategory.SUPPLEMENTARY))
        raw_priority = data.get("priority")
        if raw_priority is None:
            priority = CATEGORY_TIER[category]
        elif isinstance(raw_priority, str) and not raw_priority.isdigit():
            priority = ContextPriority[raw_priority.upper()]
        else:
            priority = ContextPriority(int(raw_priority))

        return cls(
            id=str(data["id"]),
            label=str(data.get("label", data["id"])),
            content=str(data.get("content", "")),
            content_type=ContentType(data.get("content_type", ContentType.MIXED)),
            category=category,
            priority=priority,
            relevance_score=float(data.get("relevance_score", 0.0)),
            estimated_tokens=int(data.get("estimated_tokens", 0)),
            metadata=ItemMetadata.from_dict(data.get("metadata") or {}),
        )


# =============================================================================
# Plan Detection
# =============================================================================


def is_plan_item(item: ContextItem) -> bool:
    """Return True when the item carries authoritative plan content.

    Plan items are never altered by the feeder's compression ladder or by
    breaking-chain levels 1-4. An item is a plan item when its source type
    is ``plan``, its category is ACTIVE_PLAN, or its label mentions "plan"
    in any case.
    """
    return (
        item.metadata.source_type == "plan"
        or item.category == ContextCategory.ACTIVE_PLAN
        or "plan" in item.label.lower()
    )


__all__ = [
    "CATEGORY_TIER",
    "ContentType",
    "ContextCategory",
    "ContextItem",
    "ContextPriority",
    "ItemMetadata",
    "is_plan_item",
]
