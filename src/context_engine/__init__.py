"""context-engine - deterministic context budgeting and compaction for LLM prompts."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("context-engine")
except PackageNotFoundError:
    # Package not installed (development mode without editable install)
    __version__ = "0.3.0"

from context_engine.core import (
    ContentType,
    ContextBreakingChain,
    ContextCategory,
    ContextFeedResult,
    ContextFeeder,
    ContextItem,
    ContextPriority,
    ModelNotFoundError,
    ModelProfile,
    TokenBudget,
    TokenBudgetTracker,
    apply_chain,
)

__all__ = [
    "__version__",
    "ContentType",
    "ContextBreakingChain",
    "ContextCategory",
    "ContextFeedResult",
    "ContextFeeder",
    "ContextItem",
    "ContextPriority",
    "ModelNotFoundError",
    "ModelProfile",
    "TokenBudget",
    "TokenBudgetTracker",
    "apply_chain",
]
