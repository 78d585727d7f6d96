"""Token budget model and estimator.

Provides model profiles, content-type-aware token estimation and the
mutable ``TokenBudget`` the assembler fills as it admits items. No
tokenizer dependency is used: estimates come from calibrated
characters-per-token ratios per content type, plus a fixed per-item
overhead.

Key Components:
    - ModelProfile: Frozen model description (window, output allowance, ratios)
    - DEFAULT_MODEL_PROFILE: Profile registered on every new tracker
    - TokenBudget: Input budget derived from one profile snapshot
    - TokenBudgetItem: Accounting record for one admitted (or refused) item
    - BudgetWarning: Threshold crossing notification
    - TokenBudgetTracker: Profile registry, estimator, budget factory, usage log

Usage:
    from context_engine.core.token_budget import TokenBudgetTracker

    tracker = TokenBudgetTracker()
    budget = tracker.create_budget("coding")
    tracker.add_item(budget, "Task", "Implement login", ContextPriority.MANDATORY)
    print(budget.remaining, budget.warning_level)

A budget captures the profile that was current when it was created
(``budget.model_profile``). Every estimate made on behalf of that budget
uses the captured profile, so a concurrent ``set_current_model`` never
changes the ratios mid-call.
"""

from __future__ import annotations

import logging
import math
import re
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from context_engine.core.errors import ModelNotFoundError
from context_engine.core.items import ContentType, ContextPriority
from context_engine.core.logging_config import LogSink, emit_diagnostic, resolve_sink

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Ratio used when a profile does not define one for a content type
DEFAULT_CHARS_PER_TOKEN = 3.6

# Default warning thresholds, as percent of available input consumed
DEFAULT_WARNING_THRESHOLD_PERCENT = 75.0
DEFAULT_CRITICAL_THRESHOLD_PERCENT = 90.0

# Usage records kept for calibration statistics
MAX_USAGE_RECORDS = 500

# Only the head of a text is inspected by detect_content_type
DETECTION_SAMPLE_CHARS = 1000

_JSON_START_RE = re.compile(r"^\s*[\[{]")
_JSON_KEY_RE = re.compile(r'"[^"]*"\s*:')

_CODE_SIGNALS = [
    re.compile(p, re.MULTILINE)
    for p in (
        r"\bfunction\b",
        r"\bconst\b",
        r"\blet\b",
        r"\bvar\b",
        r"\bclass\b",
        r"\bimport\b",
        r"\bexport\b",
        r"\breturn\b",
        r"\bif\s*\(",
        r"\bfor\s*\(",
        r"\bwhile\s*\(",
        r"=>\s*{",
        r"\{\s*\n",
        r";\s*\n",
        r"//\s",
        r"/\*",
        r"\*/",
    )
]

_MARKDOWN_SIGNALS = [
    re.compile(p, re.MULTILINE)
    for p in (
        r"^#{1,6}\s",
        r"^\s*[-*+]\s",
        r"\[.*\]\(.*\)",
        r"^\s*>\s",
        r"```",
        r"\*\*.*\*\*",
    )
]

_WORD_RE = re.compile(r"\b[a-zA-Z]+\b")


# =============================================================================
# Model Profiles
# =============================================================================


@dataclass(frozen=True)
class ModelProfile:
    """Token characteristics of one model.

    Attributes:
        id: Registry key, e.g. "mistralai/ministral-3-14b-reasoning"
        name: Display name
        context_window_tokens: Total context window
        max_output_tokens: Output allowance reserved out of the window
        chars_per_token: Characters per token for each content type
        overhead_tokens_per_item: Fixed cost added to every estimate

    Example:
        profile = ModelProfile(
            id="local/llama-8b",
            name="Llama 8B",
            context_window_tokens=8192,
            max_output_tokens=1024,
            chars_per_token={ContentType.CODE: 3.0},
        )
    """

    id: str
    name: str
    context_window_tokens: int
    max_output_tokens: int
    chars_per_token: Mapping[ContentType, float] = field(default_factory=dict)
    overhead_tokens_per_item: int = 4

    def __post_init__(self) -> None:
        """Validate limits after initialization."""
        if self.context_window_tokens <= 0:
            raise ValueError(
                f"context_window_tokens must be positive, got {self.context_window_tokens}"
            )
        if self.max_output_tokens < 0:
            raise ValueError(
                f"max_output_tokens must be non-negative, got {self.max_output_tokens}"
            )
        if self.overhead_tokens_per_item < 0:
            raise ValueError(
                f"overhead_tokens_per_item must be non-negative, got {self.overhead_tokens_per_item}"
            )
        for content_type, ratio in self.chars_per_token.items():
            if ratio <= 0:
                raise ValueError(
                    f"chars_per_token[{content_type}] must be positive, got {ratio}"
                )

    def ratio_for(self, content_type: ContentType) -> float:
        return self.chars_per_token.get(content_type, DEFAULT_CHARS_PER_TOKEN)

    def with_default_ratios(self) -> "ModelProfile":
        """Return a copy whose ratio table covers every content type."""
        ratios = {ct: self.ratio_for(ct) for ct in ContentType}
        if ratios == dict(self.chars_per_token):
            return self
        return ModelProfile(
            id=self.id,
            name=self.name,
            context_window_tokens=self.context_window_tokens,
            max_output_tokens=self.max_output_tokens,
            chars_per_token=ratios,
            overhead_tokens_per_item=self.overhead_tokens_per_item,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "context_window_tokens": self.context_window_tokens,
            "max_output_tokens": self.max_output_tokens,
            "chars_per_token": {ct.value: r for ct, r in self.chars_per_token.items()},
            "overhead_tokens_per_item": self.overhead_tokens_per_item,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ModelProfile":
        """Build a profile from a mapping (TOML table or JSON object)."""
        ratios = {
            ContentType(key): float(value)
            for key, value in (data.get("chars_per_token") or {}).items()
        }
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            context_window_tokens=int(data["context_window_tokens"]),
            max_output_tokens=int(data.get("max_output_tokens", 0)),
            chars_per_token=ratios,
            overhead_tokens_per_item=int(data.get("overhead_tokens_per_item", 4)),
        )


DEFAULT_MODEL_PROFILE = ModelProfile(
    id="mistralai/ministral-3-14b-reasoning",
    name="Ministral 3 14B Reasoning",
    context_window_tokens=32_768,
    max_output_tokens=4_096,
    chars_per_token={
        ContentType.CODE: 3.2,
        ContentType.NATURAL_TEXT: 4.0,
        ContentType.JSON: 3.5,
        ContentType.MARKDOWN: 3.8,
        ContentType.MIXED: 3.6,
    },
    overhead_tokens_per_item=4,
)


# =============================================================================
# Budget Types
# =============================================================================


class WarningLevel(str, Enum):
    """Budget consumption level relative to available input."""

    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"
    EXCEEDED = "exceeded"


@dataclass
class TokenBudgetItem:
    """Accounting record for one item offered to a budget."""

    label: str
    content_type: ContentType
    char_count: int
    estimated_tokens: int
    priority: ContextPriority
    included: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "content_type": self.content_type.value,
            "char_count": self.char_count,
            "estimated_tokens": self.estimated_tokens,
            "priority": int(self.priority),
            "included": self.included,
        }


@dataclass
class BudgetWarning:
    """Emitted when consumption crosses the warning or critical threshold."""

    level: WarningLevel
    message: str
    budget_used_percent: float
    remaining_tokens: int
    suggestion: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level.value,
            "message": self.message,
            "budget_used_percent": round(self.budget_used_percent, 2),
            "remaining_tokens": self.remaining_tokens,
            "suggestion": self.suggestion,
        }


@dataclass
class TokenBudget:
    """Input-token budget for one model call.

    Attributes:
        model_profile: Profile snapshot taken at creation
        total_context_window: The profile's full window
        reserved_for_output: Tokens held back for the response
        available_for_input: Window minus output reservation (and buffer)
        consumed: Tokens admitted so far
        remaining: available_for_input - consumed, never negative
        warning_level: Consumption level at the last admission
        items: Every item offered, admitted or not, in order
    """

    model_profile: ModelProfile
    total_context_window: int
    reserved_for_output: int
    available_for_input: int
    consumed: int = 0
    remaining: int = 0
    warning_level: WarningLevel = WarningLevel.OK
    items: list[TokenBudgetItem] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.available_for_input < 0:
            raise ValueError(
                f"available_for_input must be non-negative, got {self.available_for_input}"
            )
        if self.consumed == 0 and self.remaining == 0:
            self.remaining = self.available_for_input

    @property
    def used_percent(self) -> float:
        if self.available_for_input <= 0:
            return 100.0 if self.consumed > 0 else 0.0
        return self.consumed / self.available_for_input * 100

    @classmethod
    def for_input(
        cls, available_for_input: int, profile: ModelProfile = DEFAULT_MODEL_PROFILE
    ) -> "TokenBudget":
        """Budget with a fixed input ceiling, independent of the profile window."""
        return cls(
            model_profile=profile,
            total_context_window=available_for_input + profile.max_output_tokens,
            reserved_for_output=profile.max_output_tokens,
            available_for_input=available_for_input,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "model_id": self.model_profile.id,
            "total_context_window": self.total_context_window,
            "reserved_for_output": self.reserved_for_output,
            "available_for_input": self.available_for_input,
            "consumed": self.consumed,
            "remaining": self.remaining,
            "warning_level": self.warning_level.value,
            "used_percent": round(self.used_percent, 2),
            "items": [item.to_dict() for item in self.items],
        }


@dataclass
class UsageRecord:
    timestamp: float
    input_tokens_estimated: int
    output_tokens_actual: int
    agent_type: str


# =============================================================================
# Content Detection
# =============================================================================


def detect_content_type(text: str) -> ContentType:
    """Classify text by cheap lexical signals.

    Only the first 1000 characters are inspected. JSON wins if the sample
    opens with a bracket and contains a quoted key; then code (3+ code
    signals), then markdown (2+ markdown signals). Text that is mostly
    alphabetic words is natural text; everything else is mixed.
    """
    if not text:
        return ContentType.MIXED

    sample = text[:DETECTION_SAMPLE_CHARS]

    if _JSON_START_RE.match(sample) and _JSON_KEY_RE.search(sample):
        return ContentType.JSON

    code_score = sum(1 for pattern in _CODE_SIGNALS if pattern.search(sample))
    if code_score >= 3:
        return ContentType.CODE

    md_score = sum(1 for pattern in _MARKDOWN_SIGNALS if pattern.search(sample))
    if md_score >= 2:
        return ContentType.MARKDOWN

    words = len(_WORD_RE.findall(sample))
    chunks = max(len(re.split(r"\s+", sample)), 1)
    if words / chunks > 0.7:
        return ContentType.NATURAL_TEXT

    return ContentType.MIXED


def estimate_tokens_for_profile(
    text: str, content_type: ContentType, profile: ModelProfile
) -> int:
    """``ceil(len(text) / ratio) + overhead``; empty text costs the overhead only."""
    if not text:
        return profile.overhead_tokens_per_item
    return math.ceil(len(text) / profile.ratio_for(content_type)) + profile.overhead_tokens_per_item


# =============================================================================
# Tracker
# =============================================================================


class TokenBudgetTracker:
    """Model profile registry, token estimator and budget factory.

    The tracker owns the only cross-call mutable state in the engine: the
    profile registry and the current-model pointer. Budgets snapshot the
    current profile at creation.

    Example:
        tracker = TokenBudgetTracker()
        tracker.register_model(my_profile)
        tracker.set_current_model(my_profile.id)
        budget = tracker.create_budget("review")
    """

    def __init__(
        self,
        current_model_id: Optional[str] = None,
        *,
        warning_threshold_percent: float = DEFAULT_WARNING_THRESHOLD_PERCENT,
        critical_threshold_percent: float = DEFAULT_CRITICAL_THRESHOLD_PERCENT,
        input_buffer_percent: float = 0.0,
        log_sink: Optional[LogSink] = None,
    ):
        """Initialize the tracker.

        Args:
            current_model_id: Model to select; must be registered before
                ``set_current_model`` would accept it. Defaults to the
                built-in profile.
            warning_threshold_percent: Consumption percent for WARNING
            critical_threshold_percent: Consumption percent for CRITICAL
            input_buffer_percent: Safety margin removed from available input
            log_sink: Optional line sink for diagnostics
        """
        if not 0 < warning_threshold_percent <= critical_threshold_percent:
            raise ValueError(
                "thresholds must satisfy 0 < warning <= critical, got "
                f"{warning_threshold_percent}/{critical_threshold_percent}"
            )
        if not 0 <= input_buffer_percent < 100:
            raise ValueError(
                f"input_buffer_percent must be in [0, 100), got {input_buffer_percent}"
            )
        self.warning_threshold_percent = warning_threshold_percent
        self.critical_threshold_percent = critical_threshold_percent
        self.input_buffer_percent = input_buffer_percent

        self._sink = resolve_sink(log_sink)
        self._profiles: dict[str, ModelProfile] = {}
        self._warning_callbacks: list[Callable[[BudgetWarning], None]] = []
        self._usage: deque[UsageRecord] = deque(maxlen=MAX_USAGE_RECORDS)

        self.register_model(DEFAULT_MODEL_PROFILE)
        self._current_model_id = DEFAULT_MODEL_PROFILE.id
        if current_model_id is not None:
            self.set_current_model(current_model_id)

    def _log(self, message: str, level: int = logging.DEBUG) -> None:
        emit_diagnostic(logger, self._sink, message, level)

    # -------------------------------------------------------------------------
    # Model profiles
    # -------------------------------------------------------------------------

    def register_model(self, profile: ModelProfile) -> ModelProfile:
        """Insert or replace a profile. Missing ratios default to 3.6."""
        stored = profile.with_default_ratios()
        self._profiles[stored.id] = stored
        self._log(
            f"Model registered: {stored.name} ({stored.context_window_tokens} context window)"
        )
        return stored

    def set_current_model(self, model_id: str) -> None:
        """Select the profile used by subsequent budgets.

        Raises:
            ModelNotFoundError: If ``model_id`` was never registered
        """
        if model_id not in self._profiles:
            raise ModelNotFoundError(model_id, list(self._profiles))
        self._current_model_id = model_id
        self._log(f"Current model set to {model_id}", logging.INFO)

    def get_model(self, model_id: str) -> ModelProfile:
        try:
            return self._profiles[model_id]
        except KeyError:
            raise ModelNotFoundError(model_id, list(self._profiles)) from None

    def list_models(self) -> list[ModelProfile]:
        return list(self._profiles.values())

    @property
    def current_model_id(self) -> str:
        return self._current_model_id

    @property
    def current_profile(self) -> ModelProfile:
        return self._profiles[self._current_model_id]

    # -------------------------------------------------------------------------
    # Estimation
    # -------------------------------------------------------------------------

    def detect_content_type(self, text: str) -> ContentType:
        return detect_content_type(text)

    def estimate_tokens(
        self,
        text: str,
        content_type: Optional[ContentType] = None,
        profile: Optional[ModelProfile] = None,
    ) -> int:
        """Estimate tokens for ``text``.

        Args:
            text: Content to estimate
            content_type: Ratio to apply; detected from ``text`` when omitted
            profile: Profile snapshot to use; the current profile when omitted

        Returns:
            ``ceil(len(text) / ratio) + overhead``, never negative
        """
        if profile is None:
            profile = self.current_profile
        if content_type is None:
            content_type = detect_content_type(text)
        return estimate_tokens_for_profile(text, content_type, profile)

    # -------------------------------------------------------------------------
    # Budgets
    # -------------------------------------------------------------------------

    def create_budget(
        self,
        agent_type: Optional[str] = None,
        max_output_tokens: Optional[int] = None,
    ) -> TokenBudget:
        """Create an empty budget from a snapshot of the current profile."""
        profile = self.current_profile
        reserved = profile.max_output_tokens if max_output_tokens is None else max_output_tokens
        unbuffered = max(0, profile.context_window_tokens - reserved)
        available = math.floor(unbuffered * (1 - self.input_buffer_percent / 100))

        budget = TokenBudget(
            model_profile=profile,
            total_context_window=profile.context_window_tokens,
            reserved_for_output=reserved,
            available_for_input=available,
        )
        self._log(
            f"Budget created for {agent_type or 'unknown'}: {available} input tokens available "
            f"({profile.context_window_tokens} window - {reserved} output - "
            f"{unbuffered - available} buffer)"
        )
        return budget

    def add_item(
        self,
        budget: TokenBudget,
        label: str,
        content: str,
        priority: ContextPriority,
        content_type: Optional[ContentType] = None,
        *,
        force: bool = False,
    ) -> TokenBudgetItem:
        """Offer content to the budget.

        The item is admitted when its estimate fits the remaining budget, or
        unconditionally when ``force`` is set. ``remaining`` never drops
        below zero; a forced overflow shows up as ``warning_level ==
        EXCEEDED``.
        """
        ct = content_type or detect_content_type(content)
        tokens = estimate_tokens_for_profile(content, ct, budget.model_profile)
        fits = tokens <= budget.remaining
        included = fits or force

        record = TokenBudgetItem(
            label=label,
            content_type=ct,
            char_count=len(content),
            estimated_tokens=tokens,
            priority=priority,
            included=included,
        )
        budget.items.append(record)

        if included:
            budget.consumed += tokens
            budget.remaining = max(0, budget.available_for_input - budget.consumed)
            budget.warning_level = self._level_for(budget)
            if not fits:
                self._log(
                    f"Item '{label}' forced over budget: {tokens} tokens "
                    f"(consumed {budget.consumed}/{budget.available_for_input})",
                    logging.WARNING,
                )
        else:
            self._log(
                f"Item '{label}' skipped: needs {tokens} tokens, only {budget.remaining} remaining"
            )

        warning = self.check_warnings(budget)
        if warning is not None:
            for callback in self._warning_callbacks:
                callback(warning)

        return record

    def can_fit(
        self,
        budget: TokenBudget,
        content: str,
        content_type: Optional[ContentType] = None,
    ) -> bool:
        ct = content_type or detect_content_type(content)
        return estimate_tokens_for_profile(content, ct, budget.model_profile) <= budget.remaining

    def get_remaining(self, budget: TokenBudget) -> int:
        return budget.remaining

    def check_warnings(self, budget: TokenBudget) -> Optional[BudgetWarning]:
        """Return a warning when consumption is at or above a threshold."""
        used = budget.used_percent

        if used >= 100:
            return BudgetWarning(
                level=WarningLevel.EXCEEDED,
                message=f"Input token budget exceeded ({round(used)}%)",
                budget_used_percent=used,
                remaining_tokens=budget.remaining,
                suggestion="Apply the context breaking chain before sending",
            )
        if used >= self.critical_threshold_percent:
            return BudgetWarning(
                level=WarningLevel.CRITICAL,
                message=f"Input token budget at {round(used)}%, context breaking may be needed",
                budget_used_percent=used,
                remaining_tokens=budget.remaining,
                suggestion="Apply context compression or reduce context items",
            )
        if used >= self.warning_threshold_percent:
            return BudgetWarning(
                level=WarningLevel.WARNING,
                message=f"Input token budget at {round(used)}%, approaching limit",
                budget_used_percent=used,
                remaining_tokens=budget.remaining,
                suggestion="Consider reducing supplementary context",
            )
        return None

    def on_warning(self, callback: Callable[[BudgetWarning], None]) -> None:
        """Register a listener called after any admission that leaves a warning."""
        self._warning_callbacks.append(callback)

    def _level_for(self, budget: TokenBudget) -> WarningLevel:
        used = budget.used_percent
        if used >= 100:
            return WarningLevel.EXCEEDED
        if used >= self.critical_threshold_percent:
            return WarningLevel.CRITICAL
        if used >= self.warning_threshold_percent:
            return WarningLevel.WARNING
        return WarningLevel.OK

    # -------------------------------------------------------------------------
    # Usage tracking
    # -------------------------------------------------------------------------

    def record_usage(
        self, input_tokens_estimated: int, output_tokens_actual: int, agent_type: str
    ) -> None:
        """Record actual usage after a model call; the last 500 calls are kept."""
        self._usage.append(
            UsageRecord(
                timestamp=time.time(),
                input_tokens_estimated=input_tokens_estimated,
                output_tokens_actual=output_tokens_actual,
                agent_type=agent_type,
            )
        )

    def get_usage_stats(self) -> dict[str, int]:
        total_input = sum(r.input_tokens_estimated for r in self._usage)
        total_output = sum(r.output_tokens_actual for r in self._usage)
        count = len(self._usage)
        return {
            "total_input_estimated": total_input,
            "total_output_actual": total_output,
            "call_count": count,
            "avg_input_per_call": round(total_input / count) if count else 0,
            "avg_output_per_call": round(total_output / count) if count else 0,
        }

    def get_usage_by_agent(self) -> dict[str, dict[str, int]]:
        by_agent: dict[str, dict[str, int]] = {}
        for record in self._usage:
            entry = by_agent.setdefault(
                record.agent_type, {"calls": 0, "input_tokens": 0, "output_tokens": 0}
            )
            entry["calls"] += 1
            entry["input_tokens"] += record.input_tokens_estimated
            entry["output_tokens"] += record.output_tokens_actual
        return by_agent


__all__ = [
    "DEFAULT_CHARS_PER_TOKEN",
    "DEFAULT_MODEL_PROFILE",
    "BudgetWarning",
    "ModelNotFoundError",
    "ModelProfile",
    "TokenBudget",
    "TokenBudgetItem",
    "TokenBudgetTracker",
    "WarningLevel",
    "detect_content_type",
    "estimate_tokens_for_profile",
]
