"""Deterministic text compression primitives.

Shared by the context feeder's compression ladder and the breaking chain's
summarize/chunk levels. Every function is rule-based and reproducible: the
same input always yields the same output, and no model is involved.

Key Components:
    - strip_comments: Remove // and /* */ comments outside string literals
    - abbreviate_json: Drop nulls/empties, shorten strings, cap arrays
    - collapse_repeated_patterns: Fold runs of similar lines
    - truncate_head_tail: Keep the first ~60% and last ~40% of lines
    - hard_truncate: Cut to a character budget with a marker
    - deterministic_summarize: Extractive summary to a target length ratio
    - compress_code / compress_json / clean_json_value: Content-type chunkers
"""

from __future__ import annotations

import json
import math
import re
from typing import Any, Optional

# =============================================================================
# Constants
# =============================================================================

TRUNCATION_MARKER = "\n[... truncated to fit budget]"

# abbreviate_json
JSON_STRING_CAP = 50
JSON_STRING_KEEP = 47
JSON_ARRAY_CAP = 5

# clean_json_value
CLEAN_STRING_CAP = 50

# collapse_repeated_patterns
MIN_PATTERN_PREFIX = 4
MIN_PATTERN_RUN = 3

# truncate_head_tail
HEAD_FRACTION = 0.6

# Content-type targets used by the breaking chain
CODE_TARGET_RATIO = 0.7
JSON_TARGET_RATIO = 0.6
TEXT_TARGET_RATIO = 0.5

_MISSING = object()

_LINE_PREFIX_RE = re.compile(r"^(\s*\w+[\s:({]*)")
_EXCESS_BLANK_LINES_RE = re.compile(r"\n{3,}")

_HEADING_RE = re.compile(r"^#{1,6}\s")
_PATH_RE = re.compile(r"[/\\][\w.-]+[/\\]?[\w.-]*")
_EXTENSION_END_RE = re.compile(r"\.\w{1,5}$")
_DECLARATION_RE = re.compile(
    r"\b(function|class|interface|type|enum|const|let|var|def|fn)\s+\w+"
)
_CALL_RE = re.compile(r"\w+\s*\(")
_MODIFIER_RE = re.compile(r"\b(export|public|private|protected|async|static)\b")
_FIRST_SENTENCE_RE = re.compile(r"^[^.!?]*[.!?]")

_HASH_COMMENT_RE = re.compile(r"(?<=\s)#[^\n]*$", re.MULTILINE)
_TRAILING_WS_RE = re.compile(r"[ \t]+$", re.MULTILINE)


def no_longer(candidate: str, original: str) -> str:
    """Keep ``candidate`` only if it did not grow the text."""
    return candidate if len(candidate) <= len(original) else original


# =============================================================================
# Feeder Ladder Primitives
# =============================================================================


def strip_comments(code: str) -> str:
    """Remove ``//`` and ``/* */`` comments, leaving string contents intact.

    Single, double and backtick quoted literals are copied verbatim,
    including escaped characters. An unterminated block comment runs to the
    end of the text. Runs of three or more newlines left behind are folded
    to a single blank line.
    """
    if not code:
        return ""

    out: list[str] = []
    i = 0
    n = len(code)
    quote: Optional[str] = None

    while i < n:
        ch = code[i]
        nxt = code[i + 1] if i + 1 < n else ""

        if quote is None:
            if ch in ("'", '"', "`"):
                quote = ch
                out.append(ch)
                i += 1
                continue
            if ch == "/" and nxt == "/":
                while i < n and code[i] != "\n":
                    i += 1
                continue
            if ch == "/" and nxt == "*":
                end = code.find("*/", i + 2)
                i = n if end == -1 else end + 2
                continue
        else:
            if ch == "\\":
                out.append(code[i : i + 2])
                i += 2
                continue
            if ch == quote:
                quote = None

        out.append(ch)
        i += 1

    return _EXCESS_BLANK_LINES_RE.sub("\n\n", "".join(out))


def _abbreviate_value(value: Any) -> Any:
    if value is None:
        return _MISSING
    if isinstance(value, str):
        if value == "":
            return _MISSING
        if len(value) > JSON_STRING_CAP:
            return value[:JSON_STRING_KEEP] + "..."
        return value
    if isinstance(value, list):
        kept = [_abbreviate_value(v) for v in value[:JSON_ARRAY_CAP]]
        kept = [v for v in kept if v is not _MISSING]
        if len(value) > JSON_ARRAY_CAP:
            kept.append(f"[+{len(value) - JSON_ARRAY_CAP} more]")
        return kept
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            abbreviated = _abbreviate_value(item)
            if abbreviated is not _MISSING:
                result[key] = abbreviated
        return result
    return value


def abbreviate_json(text: str) -> str:
    """Shrink a JSON document; non-JSON text is returned unchanged.

    Null and empty-string values are dropped, strings longer than 50
    characters keep their first 47 plus ``...``, and arrays keep their
    first 5 elements plus a ``[+N more]`` marker.
    """
    if not text:
        return ""
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return text

    abbreviated = _abbreviate_value(parsed)
    if abbreviated is _MISSING:
        return ""
    return json.dumps(abbreviated, indent=1, ensure_ascii=False)


def _line_prefix(line: str) -> str:
    match = _LINE_PREFIX_RE.match(line)
    return match.group(1).strip() if match else ""


def collapse_repeated_patterns(text: str) -> str:
    """Fold runs of 3+ structurally similar lines.

    Lines are similar when they share the same leading word-and-punctuation
    prefix (at least 4 characters). A run keeps its first and last line
    around a ``[N similar entries]`` marker. Texts of 3 lines or fewer are
    returned unchanged.
    """
    if not text:
        return ""

    lines = text.split("\n")
    if len(lines) <= 3:
        return text

    result: list[str] = []
    i = 0
    while i < len(lines):
        prefix = _line_prefix(lines[i].strip())
        if len(prefix) >= MIN_PATTERN_PREFIX:
            j = i + 1
            while j < len(lines) and _line_prefix(lines[j].strip()) == prefix:
                j += 1
            run = j - i
            if run >= MIN_PATTERN_RUN:
                result.append(lines[i])
                result.append(f"[{run - 2} similar entries]")
                result.append(lines[j - 1])
                i = j
                continue
        result.append(lines[i])
        i += 1

    return "\n".join(result)


def truncate_head_tail(text: str, max_lines: int) -> str:
    """Keep the first ~60% and last ~40% of ``max_lines`` lines.

    The omitted middle is replaced by ``[... N lines omitted ...]``.
    """
    if not text:
        return ""

    lines = text.split("\n")
    if len(lines) <= max_lines:
        return text

    head_count = math.ceil(max_lines * HEAD_FRACTION)
    tail_count = max(1, max_lines - head_count)
    omitted = len(lines) - head_count - tail_count
    if omitted <= 0:
        return text

    return "\n".join(
        lines[:head_count] + [f"[... {omitted} lines omitted ...]"] + lines[-tail_count:]
    )


def hard_truncate(text: str, max_chars: int, marker: str = TRUNCATION_MARKER) -> str:
    """Cut ``text`` to at most ``max_chars`` characters, marker included.

    The cut backs off to the last newline when that keeps more than half of
    the allowance. Budgets too small for the marker get a bare prefix.
    """
    max_chars = max(0, max_chars)
    if len(text) <= max_chars:
        return text
    if max_chars <= len(marker):
        return text[:max_chars]

    limit = max_chars - len(marker)
    cut = text[:limit]
    last_newline = cut.rfind("\n")
    if last_newline > limit * 0.5:
        cut = cut[:last_newline]
    return cut + marker


def truncate_at_line(text: str, max_chars: int) -> str:
    """Cut to ``max_chars`` on the last line boundary, falling back to a hard cut."""
    if len(text) <= max_chars:
        return text
    cut = text[: max(0, max_chars)]
    last_newline = cut.rfind("\n")
    return cut[:last_newline] if last_newline > 0 else cut


# =============================================================================
# Extractive Summaries
# =============================================================================


def deterministic_summarize(text: str, target_ratio: float) -> str:
    """Rule-based extractive summary.

    Keeps headings, lines that look like file paths, declaration-looking
    lines and the first sentence of each paragraph (duplicates once), then
    truncates to ``ceil(len(text) * target_ratio)`` characters.
    """
    if not text:
        return ""
    if target_ratio >= 1.0:
        return text

    kept: list[str] = []
    seen: set[str] = set()
    in_paragraph = False
    sentence_captured = False

    for line in text.split("\n"):
        trimmed = line.strip()

        if _HEADING_RE.match(trimmed):
            kept.append(line)
            in_paragraph = False
            sentence_captured = False
            continue

        if _PATH_RE.search(trimmed) or _EXTENSION_END_RE.search(trimmed):
            if trimmed not in seen:
                kept.append(line)
                seen.add(trimmed)
            continue

        if _DECLARATION_RE.search(trimmed) or (
            _CALL_RE.search(trimmed) and _MODIFIER_RE.search(trimmed)
        ):
            if trimmed not in seen:
                kept.append(line)
                seen.add(trimmed)
            continue

        if not trimmed:
            in_paragraph = False
            sentence_captured = False
            continue

        if not in_paragraph:
            in_paragraph = True
            sentence_captured = False

        if not sentence_captured:
            match = _FIRST_SENTENCE_RE.match(trimmed)
            sentence = match.group(0) if match else trimmed
            if sentence not in seen:
                kept.append(sentence)
                seen.add(sentence)
            sentence_captured = True

    result = "\n".join(kept)
    target_length = math.ceil(len(text) * target_ratio)
    return result if len(result) <= target_length else result[:target_length]


# =============================================================================
# Content-Type Chunkers
# =============================================================================


def compress_code(content: str, target_ratio: float = CODE_TARGET_RATIO) -> str:
    """Strip comments and whitespace; cut on a line boundary if still large."""
    if not content:
        return ""

    result = strip_comments(content)
    result = _HASH_COMMENT_RE.sub("", result)
    result = _EXCESS_BLANK_LINES_RE.sub("\n\n", result)
    result = _TRAILING_WS_RE.sub("", result)
    result = result.strip("\n")

    target = math.ceil(len(content) * target_ratio)
    if len(result) > target:
        result = re.sub(r"\n\n+", "\n", result)
    if len(result) > target:
        result = truncate_at_line(result, target)
    return no_longer(result, content)


def clean_json_value(value: Any) -> Any:
    """Recursively drop null/empty values and cap strings at 50 characters.

    Returns a private sentinel when the whole value cleans away; callers
    go through ``compress_json``.
    """
    if value is None:
        return _MISSING
    if isinstance(value, str):
        if value == "":
            return _MISSING
        if len(value) > CLEAN_STRING_CAP:
            return value[:CLEAN_STRING_CAP] + "..."
        return value
    if isinstance(value, list):
        cleaned = [clean_json_value(v) for v in value]
        cleaned = [v for v in cleaned if v is not _MISSING]
        return cleaned if cleaned else _MISSING
    if isinstance(value, dict):
        cleaned_dict = {}
        for key, item in value.items():
            cleaned_item = clean_json_value(item)
            if cleaned_item is not _MISSING:
                cleaned_dict[key] = cleaned_item
        return cleaned_dict if cleaned_dict else _MISSING
    return value


def compress_json(content: str, target_ratio: float = JSON_TARGET_RATIO) -> str:
    """Clean and compact a JSON document to ``target_ratio`` of its length.

    Invalid JSON falls back to ``deterministic_summarize`` at the same ratio.
    """
    if not content:
        return ""
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        return deterministic_summarize(content, target_ratio)

    cleaned = clean_json_value(parsed)
    if cleaned is _MISSING:
        return ""
    result = json.dumps(cleaned, separators=(",", ":"), ensure_ascii=False)
    target = math.ceil(len(content) * target_ratio)
    return result if len(result) <= target else result[:target]


def compress_text(content: str, target_ratio: float = TEXT_TARGET_RATIO) -> str:
    return deterministic_summarize(content, target_ratio)


__all__ = [
    "TRUNCATION_MARKER",
    "abbreviate_json",
    "clean_json_value",
    "collapse_repeated_patterns",
    "compress_code",
    "compress_json",
    "compress_text",
    "deterministic_summarize",
    "hard_truncate",
    "no_longer",
    "strip_comments",
    "truncate_at_line",
    "truncate_head_tail",
]
