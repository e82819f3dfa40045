"""
Response Parsing & Prompt Truncation
====================================
Helpers shared by the structured client and the prompt builders.

Structured Content Salvage:
    1. Strip a surrounding markdown fence (```json ... ```)
    2. Try the whole text as JSON
    3. Try every balanced {...} / [...] candidate, in order of appearance
    4. For each parsed object, validate it; if it is a single-key wrapper
       ({"result": {...}}), also try the wrapped value
    The first candidate that validates wins.

Prompt Truncation:
    - truncate_content keeps the head and tail of a file
    - truncate_content_around_line keeps the widest window around a target
      line that fits in the character budget (binary search on the radius)
"""
import json
import logging
import re
from typing import Any, Callable, Iterator, List, Optional, TypeVar

from pydantic import ValidationError

from cosmos_harness.llm.errors import SchemaViolationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_FENCE_RE = re.compile(r"^\s*```[\w.+-]*[ \t]*\r?\n(.*?)\r?\n?```\s*$", re.DOTALL)

_SECRET_MARKERS = ("api_key", "apikey", "secret", "password", "credential", "bearer", "sk-")
_MAX_ERROR_CHARS = 200


# ---------------------------------------------------------------------------
# Fences & JSON candidates
# ---------------------------------------------------------------------------
def strip_markdown_fences(text: str) -> str:
    """Remove one surrounding ``` fence (with optional language tag)."""
    match = _FENCE_RE.match(text)
    if match:
        return match.group(1)
    return text


def extract_json_candidates(text: str) -> List[str]:
    """
    Return every balanced top-level ``{...}`` / ``[...]`` span in ``text``.

    String literals are respected so braces inside JSON strings do not
    unbalance the scan.
    """
    candidates: List[str] = []
    i = 0
    n = len(text)
    while i < n:
        if text[i] not in "{[":
            i += 1
            continue
        end = _balanced_end(text, i)
        if end is None:
            i += 1
            continue
        candidates.append(text[i:end + 1])
        i = end + 1
    return candidates


def _balanced_end(text: str, start: int) -> Optional[int]:
    stack: List[str] = []
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append("}" if ch == "{" else "]")
        elif ch in "}]":
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return idx
    return None


def _parsed_objects(raw: str) -> Iterator[Any]:
    cleaned = strip_markdown_fences(raw.strip()).strip()
    seen: set[str] = set()
    for candidate in [cleaned, *extract_json_candidates(cleaned)]:
        if not candidate or candidate in seen:
            continue
        seen.add(candidate)
        try:
            yield json.loads(candidate)
        except json.JSONDecodeError:
            continue


def parse_structured_content(raw: str, validate: Callable[[Any], T]) -> T:
    """
    Salvage a structured value from raw model output.

    Parameters
    ----------
    raw : str
        Raw ``choices[0].message.content``.
    validate : callable
        Validator, typically ``SomeModel.model_validate``. Must raise
        ``pydantic.ValidationError`` (or ValueError/TypeError) on mismatch.

    Returns
    -------
    T
        The first candidate that validates.

    Raises
    ------
    SchemaViolationError
        If no candidate parses and validates.
    """
    if not raw or not raw.strip():
        raise SchemaViolationError("Empty response from LLM")

    last_error = "Response is not valid JSON"
    for obj in _parsed_objects(raw):
        for value in _with_unwrapped(obj):
            try:
                return validate(value)
            except (ValidationError, ValueError, TypeError) as exc:
                last_error = f"Response does not match schema: {_first_line(str(exc))}"
    raise SchemaViolationError(last_error)


def _with_unwrapped(obj: Any) -> Iterator[Any]:
    yield obj
    if isinstance(obj, dict) and len(obj) == 1:
        inner = next(iter(obj.values()))
        if isinstance(inner, dict):
            yield inner


def _first_line(text: str) -> str:
    return truncate_str(" ".join(text.split()), _MAX_ERROR_CHARS)


# ---------------------------------------------------------------------------
# Error sanitising
# ---------------------------------------------------------------------------
def truncate_str(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return f"{text[:max_chars]} [truncated]"


def sanitize_api_response(body: str) -> str:
    """
    Make a provider error body safe to log or surface.

    Bodies that mention anything secret-looking are redacted entirely; all
    others are truncated.
    """
    lowered = body.lower()
    if any(marker in lowered for marker in _SECRET_MARKERS):
        return "[response redacted: may contain sensitive data]"
    return truncate_str(body.strip(), _MAX_ERROR_CHARS)


# ---------------------------------------------------------------------------
# Prompt truncation
# ---------------------------------------------------------------------------
def truncate_content(content: str, max_chars: int) -> str:
    """Keep the head and tail of ``content`` when it exceeds ``max_chars``."""
    if len(content) <= max_chars:
        return content
    half = max_chars // 2
    return f"{content[:half]}\n\n... [truncated] ...\n\n{content[len(content) - half:]}"


def truncate_content_around_line(content: str, line_number: int, max_chars: int) -> Optional[str]:
    """
    Return the widest window of lines centred on ``line_number`` (1-based)
    whose joined text fits in ``max_chars``.

    Falls back to the target line alone, cut to ``max_chars`` with a trailing
    ``...``. Returns None when the line is out of range or the budget is 0.
    """
    if max_chars <= 0:
        return None
    lines = content.splitlines()
    if not lines:
        return None
    target = max(line_number - 1, 0)
    if target >= len(lines):
        return None

    max_radius = max(target, len(lines) - 1 - target)
    best: Optional[tuple[int, int]] = None
    lo, hi = 0, max_radius
    while lo <= hi:
        mid = (lo + hi) // 2
        start = max(target - mid, 0)
        end = min(target + mid, len(lines) - 1)
        snippet = "\n".join(lines[start:end + 1])
        if len(snippet) <= max_chars:
            best = (start, end)
            lo = mid + 1
        elif mid == 0:
            break
        else:
            hi = mid - 1

    if best is not None:
        start, end = best
        return "\n".join(lines[start:end + 1])
    return _truncate_line(lines[target], max_chars)


def _truncate_line(line: str, max_chars: int) -> str:
    if len(line) <= max_chars:
        return line
    if max_chars <= 3:
        return line[:max_chars]
    return line[:max_chars - 3] + "..."
