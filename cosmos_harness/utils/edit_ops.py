"""
Edit Operations
===============
Applies ordered search/replace edit lists and explains failures to the model.

Matching Rules (per edit, in order):
    1. ``old_string`` must match exactly once
    2. CRLF fallback: if the file uses CRLF and the anchor LF, retry with CRLF
    3. Trimmed fallback: retry with surrounding whitespace removed
    An empty ``old_string`` is only allowed when the file is empty.

Anchor Validation:
    - Placeholder ellipses ("...", "…") are rejected unless they are part of
      real syntax such as ``...args``
    - Delimiter-only anchors ("}", "});", ...) are rejected as too generic

Errors name the 1-based edit index and include "Searched for: ..." so the
repair guidance can quote the failing anchor back to the model.
"""
import logging
from typing import List, Optional, Sequence

from cosmos_harness.core.errors import HarnessError
from cosmos_harness.models.fix_result import EditOp

logger = logging.getLogger(__name__)

_MAX_SEARCHED_FOR_CHARS = 200
_DELIMITER_CHARS = set("{}()[]<>;,:")


class EditApplyError(HarnessError):
    """An edit list could not be applied safely."""

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.path = path


# ---------------------------------------------------------------------------
# Anchor validation
# ---------------------------------------------------------------------------
def _is_ident(ch: Optional[str]) -> bool:
    return ch is not None and (ch.isalnum() or ch in "_$")


def old_string_looks_like_placeholder(old_string: str) -> bool:
    """True if the anchor contains an ellipsis that is not real spread/rest syntax."""
    text = old_string.strip()
    i = 0
    while i < len(text):
        if text.startswith("...", i):
            start, end = i, i + 3
        elif text[i] == "…":
            start, end = i, i + 1
        else:
            i += 1
            continue
        prev = text[start - 1] if start > 0 else None
        nxt = text[end] if end < len(text) else None
        if not (_is_ident(prev) or _is_ident(nxt)):
            return True
        i = end
    return False


def old_string_is_delimiter_only(old_string: str) -> bool:
    """True if the anchor is only whitespace and delimiters, e.g. ``}`` or ``});``."""
    text = old_string.strip()
    if not text:
        return False
    return all(ch.isspace() or ch in _DELIMITER_CHARS for ch in text)


def _searched_for(old_string: str) -> str:
    text = old_string
    if len(text) > _MAX_SEARCHED_FOR_CHARS:
        text = text[:_MAX_SEARCHED_FOR_CHARS] + "... [truncated]"
    return f"Searched for: {text!r}"


def validate_edits(edits: Sequence[EditOp], label: str) -> None:
    """
    Reject placeholder and delimiter-only anchors before touching content.

    Raises
    ------
    EditApplyError
        On the first invalid anchor.
    """
    for i, edit in enumerate(edits, 1):
        if old_string_looks_like_placeholder(edit.old_string):
            raise EditApplyError(
                f"Edit {i}: old_string contains placeholder ellipsis in {label}. "
                "Copy exact code; do not use `...` or `…`.\n" + _searched_for(edit.old_string),
                path=label,
            )
        if old_string_is_delimiter_only(edit.old_string):
            raise EditApplyError(
                f"Edit {i}: old_string is too generic in {label} (delimiter-only). "
                "Use a larger unique anchor with nearby code context.\n" + _searched_for(edit.old_string),
                path=label,
            )


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------
def _count_and_find(content: str, needle: str) -> tuple[int, int]:
    first = content.find(needle)
    if first == -1:
        return 0, -1
    count = 1
    pos = content.find(needle, first + 1)
    while pos != -1:
        count += 1
        pos = content.find(needle, pos + 1)
    return count, first


def apply_edits(content: str, edits: Sequence[EditOp], label: str) -> str:
    """
    Apply ``edits`` to ``content`` in order.

    Parameters
    ----------
    content : str
        Current file content.
    edits : sequence of EditOp
        Ordered search/replace operations.
    label : str
        File label used in error messages.

    Returns
    -------
    str
        Content with every edit applied.

    Raises
    ------
    EditApplyError
        If any edit is invalid, ambiguous, or not found.
    """
    if not edits:
        raise EditApplyError(f"No edits provided for {label}", path=label)
    validate_edits(edits, label)

    new_content = content
    for i, edit in enumerate(edits, 1):
        if edit.old_string == "":
            if new_content == "":
                new_content = edit.new_string
                continue
            raise EditApplyError(
                f"Edit {i}: old_string is empty for non-empty {label}. Provide more context.",
                path=label,
            )

        attempts: List[tuple[str, str, str]] = [(edit.old_string, edit.new_string, "old_string")]
        if "\n" in edit.old_string and "\r\n" in new_content:
            attempts.append((
                edit.old_string.replace("\n", "\r\n"),
                edit.new_string.replace("\n", "\r\n"),
                "normalized old_string",
            ))
        trimmed = edit.old_string.strip()
        if trimmed and trimmed != edit.old_string:
            attempts.append((trimmed, edit.new_string, "trimmed old_string"))

        applied = False
        for needle, replacement, what in attempts:
            count, start = _count_and_find(new_content, needle)
            if count == 1:
                new_content = new_content[:start] + replacement + new_content[start + len(needle):]
                applied = True
                break
            if count > 1:
                raise EditApplyError(
                    f"Edit {i}: {what} matches {count} times in {label} (must be unique). "
                    "Need more context.\n" + _searched_for(edit.old_string),
                    path=label,
                )
        if not applied:
            raise EditApplyError(
                f"Edit {i}: old_string not found in {label}. The LLM may have made an error.\n"
                + _searched_for(edit.old_string),
                path=label,
            )
    return new_content


# ---------------------------------------------------------------------------
# Repair guidance
# ---------------------------------------------------------------------------
def is_retryable_edit_apply_error(message: str) -> bool:
    """True for anchor problems a repair prompt can plausibly fix."""
    msg = message.lower()
    if "no edits provided" in msg or "no file edits provided" in msg:
        return True
    return "old_string" in msg and any(
        marker in msg
        for marker in ("not found", "matches", "must be unique", "empty for non-empty",
                       "placeholder", "ellipsis", "too generic")
    )


def format_edit_apply_repair_guidance(message: str, code_block_label: str) -> str:
    """
    Explain an edit-apply failure and how to regenerate edits.

    Parameters
    ----------
    message : str
        The EditApplyError message.
    code_block_label : str
        How the prompt refers to the source block (e.g. "code block above").

    Returns
    -------
    str
        Guidance appended to the next prompt.
    """
    msg = message.lower()
    if "no edits provided" in msg or "no file edits provided" in msg:
        bullets = [
            "Your response did not include any edits.",
            "Return at least one edit that changes the code to address the request.",
            "Keep the diff minimal and scoped. Avoid unrelated reformatting.",
            "Use exact `old_string` anchors copied verbatim from the code block.",
        ]
    elif "matches" in msg or "must be unique" in msg:
        bullets = [
            "Your `old_string` was too generic and matched multiple places.",
            "Pick a larger anchor: include 3-10 surrounding lines and at least one unique "
            "identifier (function name, string literal, or nearby statement).",
            "Avoid anchors like `}`, `</div>`, or single braces.",
            "If you need to change multiple occurrences, return multiple edits with different "
            "unique `old_string` values.",
        ]
    elif "placeholder" in msg or "ellipsis" in msg:
        bullets = [
            "Your `old_string` contained placeholder text and cannot match real code.",
            "Do not use ellipses (`...` or `…`) or shortened snippets in `old_string`.",
            "Copy `old_string` verbatim from the code block with exact indentation.",
        ]
    elif "too generic" in msg:
        bullets = [
            "Your `old_string` was only delimiters and cannot identify a unique location.",
            "Include the surrounding statement or function signature in the anchor.",
        ]
    elif "not found" in msg:
        bullets = [
            "Your `old_string` does not exist verbatim in the code block.",
            "Copy/paste the exact text from the code block, including indentation and line endings.",
            "Do not use placeholders, summaries, or ellipses. The match must be exact.",
        ]
    elif "empty for non-empty" in msg:
        bullets = [
            "Do not use an empty `old_string` when the file already has content.",
            "Choose an exact anchor from the code block that appears exactly once.",
        ]
    else:
        bullets = [
            "Fix your `old_string` values so they match verbatim text from the code block exactly once.",
        ]

    detail = ""
    idx = message.find("Searched for:")
    if idx != -1:
        detail = f"\nPrevious attempt detail:\n{message[idx:].strip()}"

    bullet_text = "\n".join(f"- {b}" for b in bullets)
    return (
        "\n\nIMPORTANT: Your previous edits could not be applied safely.\n"
        f"Error:\n{message}\n\n"
        f"When regenerating edits, use the {code_block_label} and follow these rules:\n"
        f"{bullet_text}\n{detail}"
    )
