"""Core budgeting, scoring, assembly and compaction for context-engine."""

from context_engine.core.items import (
    CATEGORY_TIER,
    ContentType,
    ContextCategory,
    ContextItem,
    ContextPriority,
    ItemMetadata,
    is_plan_item,
)

from context_engine.core.errors import ContextEngineError, ModelNotFoundError

from context_engine.core.models import (
    AgentContext,
    ContextSnapshot,
    ConversationEntry,
    DesignComponent,
    LLMMessage,
    Plan,
    Task,
    Ticket,
)

from context_engine.core.token_budget import (
    DEFAULT_MODEL_PROFILE,
    BudgetWarning,
    ModelProfile,
    TokenBudget,
    TokenBudgetItem,
    TokenBudgetTracker,
    WarningLevel,
    detect_content_type,
)

from context_engine.core.relevance import (
    RelevanceKeywordSet,
    extract_keywords,
    score_relevance,
)

from context_engine.core.feeder import ContextFeedResult, ContextFeeder

from context_engine.core.breaking_chain import (
    ContextBreakingChain,
    ContextBreakingLevel,
    ContextBreakingResult,
    apply_chain,
)

__all__ = [
    "CATEGORY_TIER",
    "ContentType",
    "ContextCategory",
    "ContextItem",
    "ContextPriority",
    "ItemMetadata",
    "is_plan_item",
    "ContextEngineError",
    "ModelNotFoundError",
    "AgentContext",
    "ContextSnapshot",
    "ConversationEntry",
    "DesignComponent",
    "LLMMessage",
    "Plan",
    "Task",
    "Ticket",
    "DEFAULT_MODEL_PROFILE",
    "BudgetWarning",
    "ModelProfile",
    "TokenBudget",
    "TokenBudgetItem",
    "TokenBudgetTracker",
    "WarningLevel",
    "detect_content_type",
    "RelevanceKeywordSet",
    "extract_keywords",
    "score_relevance",
    "ContextFeedResult",
    "ContextFeeder",
    "ContextBreakingChain",
    "ContextBreakingLevel",
    "ContextBreakingResult",
    "apply_chain",
]
