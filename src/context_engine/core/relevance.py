"""Keyword extraction and relevance scoring.

Keywords are derived once per request from the active task, the user
message and the active plan, then every candidate item is scored against
them. Scoring is pure keyword matching plus age adjustments; no model is
consulted.

Score composition (before the non-negative floor):
    + 4 per task keyword found in the item label
    + 2 per task keyword found in the item content
    + 3 per (file keyword, related file pattern) containment
    + 1 per domain keyword found in label or content
    + 8 when a related task id matches a task keyword
    + recency bonus (10 / 5 / 2 / 0)
    - staleness penalty (0..15)

Items are scored 50 (neutral) when no keywords exist at all.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional, Union

from context_engine.core.items import ContextItem
from context_engine.core.logging_config import emit_diagnostic
from context_engine.core.models import Plan, Task

logger = logging.getLogger(__name__)


# =============================================================================
# Scoring Constants
# =============================================================================

NEUTRAL_SCORE = 50.0

WEIGHT_TASK_LABEL = 4
WEIGHT_TASK_CONTENT = 2
WEIGHT_FILE_PATTERN = 3
WEIGHT_DOMAIN = 1
RELATED_TASK_BONUS = 8

RECENCY_BONUS_HOUR = 10
RECENCY_BONUS_DAY = 5
RECENCY_BONUS_WEEK = 2

STALENESS_THRESHOLD = timedelta(days=7)
STALE_FLAG_PENALTY = 5
STALENESS_BASE_PENALTY = 5
STALENESS_PER_WEEK_PENALTY = 2
STALENESS_AGE_PENALTY_CAP = 10
STALENESS_PENALTY_CAP = 15

MIN_KEYWORD_LENGTH = 3

STOP_WORDS = frozenset(
    {
        "the", "a", "an", "is", "are", "was", "were", "be", "been", "being",
        "have", "has", "had", "do", "does", "did", "will", "would", "could",
        "should", "may", "might", "shall", "can", "need", "dare", "ought",
        "used", "to", "of", "in", "for", "on", "with", "at", "by", "from",
        "as", "into", "through", "during", "before", "after", "above", "below",
        "between", "out", "off", "over", "under", "again", "further", "then",
        "once", "here", "there", "when", "where", "why", "how", "all", "each",
        "every", "both", "few", "more", "most", "other", "some", "such", "no",
        "nor", "not", "only", "own", "same", "so", "than", "too", "very",
        "just", "because", "but", "and", "or", "if", "while", "that", "this",
        "it", "its", "they", "them", "their", "what", "which", "who", "whom",
        "these", "those", "i", "me", "my", "we", "our", "you", "your", "he",
        "him", "his", "she", "her",
    }
)

_NON_WORD_RE = re.compile(r"[^a-z0-9_\-./\\]")
_CAMEL_PART_RE = re.compile(r"[A-Z]?[a-z]+")
_EXTENSION_RE = re.compile(r"\.[^.]+$")


# =============================================================================
# Keyword Sets
# =============================================================================


@dataclass(frozen=True)
class RelevanceKeywordSet:
    """Keyword buckets derived from one request's task, message and plan."""

    task_keywords: tuple[str, ...] = ()
    file_keywords: tuple[str, ...] = ()
    domain_keywords: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "task_keywords", tuple(self.task_keywords))
        object.__setattr__(self, "file_keywords", tuple(self.file_keywords))
        object.__setattr__(self, "domain_keywords", tuple(self.domain_keywords))

    @property
    def is_empty(self) -> bool:
        return not (self.task_keywords or self.file_keywords or self.domain_keywords)

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "task_keywords": list(self.task_keywords),
            "file_keywords": list(self.file_keywords),
            "domain_keywords": list(self.domain_keywords),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RelevanceKeywordSet":
        return cls(
            task_keywords=tuple(data.get("task_keywords") or ()),
            file_keywords=tuple(data.get("file_keywords") or ()),
            domain_keywords=tuple(data.get("domain_keywords") or ()),
        )


def _extract_words_into(text: Optional[str], target: dict[str, None]) -> None:
    """Add lowercase non-stop-word tokens and camelCase parts of ``text``."""
    if not text:
        return

    for word in _NON_WORD_RE.sub(" ", text.lower()).split():
        if len(word) >= MIN_KEYWORD_LENGTH and word not in STOP_WORDS:
            target.setdefault(word, None)

    for part in _CAMEL_PART_RE.findall(text):
        lower = part.lower()
        if len(lower) >= MIN_KEYWORD_LENGTH and lower not in STOP_WORDS:
            target.setdefault(lower, None)


def _plan_config_text(
    config_json: str, sink: Optional[Callable[[str], Any]]
) -> str:
    try:
        config = json.loads(config_json)
    except json.JSONDecodeError:
        emit_diagnostic(
            logger, sink, "Plan config_json is not valid JSON; treating it as plain text"
        )
        return config_json

    if isinstance(config, dict):
        values: Iterable[Any] = config.values()
    elif isinstance(config, list):
        values = config
    else:
        return str(config)
    return " ".join(v for v in values if isinstance(v, str))


def extract_keywords(
    task: Optional[Task] = None,
    user_message: Optional[str] = None,
    plan: Optional[Plan] = None,
    *,
    sink: Optional[Callable[[str], Any]] = None,
) -> RelevanceKeywordSet:
    """Derive keyword buckets for one request.

    Args:
        task: Title, description and acceptance criteria feed task keywords;
            each modified file contributes its lowercase path and its base
            name without extension as file keywords
        user_message: Feeds domain keywords
        plan: Name and ``config_json`` values feed domain keywords; invalid
            JSON is read as plain text
        sink: Optional resolved line sink for diagnostics

    Returns:
        RelevanceKeywordSet with de-duplicated keywords in first-seen order
    """
    task_keywords: dict[str, None] = {}
    file_keywords: dict[str, None] = {}
    domain_keywords: dict[str, None] = {}

    if task is not None:
        _extract_words_into(task.title, task_keywords)
        _extract_words_into(task.description, task_keywords)
        _extract_words_into(task.acceptance_criteria, task_keywords)

        for file_path in task.files_modified:
            if not file_path:
                continue
            file_keywords.setdefault(file_path.lower(), None)
            filename = file_path.replace("\\", "/").split("/")[-1]
            stem = _EXTENSION_RE.sub("", filename)
            if len(stem) >= MIN_KEYWORD_LENGTH:
                file_keywords.setdefault(stem.lower(), None)

    if user_message:
        _extract_words_into(user_message, domain_keywords)

    if plan is not None:
        _extract_words_into(plan.name, domain_keywords)
        if plan.config_json:
            _extract_words_into(_plan_config_text(plan.config_json, sink), domain_keywords)

    return RelevanceKeywordSet(
        task_keywords=tuple(task_keywords),
        file_keywords=tuple(file_keywords),
        domain_keywords=tuple(domain_keywords),
    )


# =============================================================================
# Age Adjustments
# =============================================================================


def parse_timestamp(value: Optional[Union[str, datetime]]) -> Optional[datetime]:
    """Normalize an ISO-8601 string or datetime to an aware UTC datetime.

    Naive values are read as UTC. Returns None for missing or unparseable
    input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.debug(f"Unparseable timestamp: {value!r}")
            return None
    else:
        logger.debug(f"Unsupported timestamp type: {type(value).__name__}")
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def item_age(
    created_at: Optional[Union[str, datetime]], now: Optional[datetime] = None
) -> Optional[timedelta]:
    """Age of a timestamp relative to ``now``; None when unknown."""
    created = parse_timestamp(created_at)
    if created is None:
        return None
    now = parse_timestamp(now) or datetime.now(timezone.utc)
    return now - created


def compute_recency_bonus(
    created_at: Optional[Union[str, datetime]], now: Optional[datetime] = None
) -> int:
    """+10 within an hour, +5 within a day, +2 within a week, else 0.

    Future timestamps count as brand new. Unknown ages score 0.
    """
    age = item_age(created_at, now)
    if age is None:
        return 0
    if age <= timedelta(hours=1):
        return RECENCY_BONUS_HOUR
    if age <= timedelta(days=1):
        return RECENCY_BONUS_DAY
    if age <= timedelta(weeks=1):
        return RECENCY_BONUS_WEEK
    return 0


def compute_staleness_penalty(
    created_at: Optional[Union[str, datetime]],
    is_stale: bool = False,
    now: Optional[datetime] = None,
) -> int:
    """Penalty in 0..15 for flagged or old content.

    An explicit stale flag costs 5. Content older than 7 days costs
    ``5 + 2 * weeks_past_threshold`` more, capped at 10, and the total is
    capped at 15. Unknown ages add nothing beyond the flag.
    """
    penalty = STALE_FLAG_PENALTY if is_stale else 0

    age = item_age(created_at, now)
    if age is not None and age > STALENESS_THRESHOLD:
        weeks_over = (age - STALENESS_THRESHOLD) / timedelta(weeks=1)
        scaled = math.floor(STALENESS_BASE_PENALTY + weeks_over * STALENESS_PER_WEEK_PENALTY + 0.5)
        penalty += min(STALENESS_AGE_PENALTY_CAP, scaled)

    return min(STALENESS_PENALTY_CAP, penalty)


# =============================================================================
# Scoring
# =============================================================================


def score_relevance(
    item: ContextItem,
    keywords: RelevanceKeywordSet,
    now: Optional[datetime] = None,
    *,
    sink: Optional[Callable[[str], Any]] = None,
) -> float:
    """Score ``item`` against the request keywords.

    Returns:
        NEUTRAL_SCORE when every keyword bucket is empty, otherwise the
        weighted sum floored at zero
    """
    if keywords.is_empty:
        return NEUTRAL_SCORE

    label = item.label.lower()
    content = item.content.lower()
    patterns = [p.lower() for p in item.metadata.related_file_patterns]

    raw = 0
    for kw in keywords.task_keywords:
        kw = kw.lower()
        if kw in label:
            raw += WEIGHT_TASK_LABEL
        if kw in content:
            raw += WEIGHT_TASK_CONTENT

    for kw in keywords.file_keywords:
        kw = kw.lower()
        raw += WEIGHT_FILE_PATTERN * sum(1 for pattern in patterns if kw in pattern)

    for kw in keywords.domain_keywords:
        kw = kw.lower()
        if kw in label or kw in content:
            raw += WEIGHT_DOMAIN

    task_ids = [tid.lower() for tid in item.metadata.related_task_ids]
    if task_ids and any(
        kw.lower() in tid for kw in keywords.task_keywords for tid in task_ids
    ):
        raw += RELATED_TASK_BONUS

    created_at = item.metadata.created_at
    if created_at and parse_timestamp(created_at) is None:
        emit_diagnostic(
            logger,
            sink,
            f"Item '{item.label}' has unparseable created_at {created_at!r}; no age adjustment",
        )

    raw += compute_recency_bonus(created_at, now)
    raw -= compute_staleness_penalty(created_at, item.metadata.is_stale, now)

    return float(max(0, raw))


__all__ = [
    "NEUTRAL_SCORE",
    "STOP_WORDS",
    "RelevanceKeywordSet",
    "compute_recency_bonus",
    "compute_staleness_penalty",
    "extract_keywords",
    "item_age",
    "parse_timestamp",
    "score_relevance",
]
