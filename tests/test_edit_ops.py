"""
Edit Operations Tests
=====================
Search/replace edit application, anchor validation, repair guidance, and
generated-content normalisation.
"""
import pytest

from cosmos_harness.models.fix_result import EditOp
from cosmos_harness.utils.content_normalizer import normalize_generated_content, strip_code_fence
from cosmos_harness.utils.edit_ops import (
    EditApplyError,
    apply_edits,
    format_edit_apply_repair_guidance,
    is_retryable_edit_apply_error,
    old_string_is_delimiter_only,
    old_string_looks_like_placeholder,
)


SAMPLE = """\
def greet(name):
    return "hello " + name


def shout(name):
    return greet(name).upper()
"""


def _op(old, new):
    return EditOp(old_string=old, new_string=new)


# ---------------------------------------------------------------------------
# apply_edits
# ---------------------------------------------------------------------------
def test_edits_apply_in_order():
    result = apply_edits(SAMPLE, [
        _op('return "hello " + name', 'return f"hello {name}"'),
        _op("return greet(name).upper()", "return greet(name).upper() + '!'"),
    ], "greet.py")
    assert 'return f"hello {name}"' in result
    assert result.endswith("upper() + '!'\n")


def test_later_edit_sees_earlier_result():
    result = apply_edits("a = 1\n", [_op("a = 1", "a = 2"), _op("a = 2", "a = 3")], "x.py")
    assert result == "a = 3\n"


def test_ambiguous_anchor_is_rejected():
    with pytest.raises(EditApplyError) as exc_info:
        apply_edits(SAMPLE, [_op("(name)", "(who)")], "greet.py")
    message = exc_info.value.message
    assert "Edit 1" in message
    assert "matches 3 times" in message
    assert "Searched for: '(name)'" in message


def test_missing_anchor_is_rejected():
    with pytest.raises(EditApplyError) as exc_info:
        apply_edits(SAMPLE, [_op("def wave(name):", "def wave(who):")], "greet.py")
    assert "not found" in exc_info.value.message
    assert exc_info.value.path == "greet.py"


def test_crlf_fallback():
    content = "line one\r\nline two\r\n"
    result = apply_edits(content, [_op("line one\nline two", "line 1\nline 2")], "crlf.txt")
    assert result == "line 1\r\nline 2\r\n"


def test_trimmed_fallback():
    result = apply_edits(SAMPLE, [_op("   def shout(name):  \n", "def yell(name):")], "greet.py")
    assert "def yell(name):" in result


def test_empty_anchor_only_for_empty_file():
    assert apply_edits("", [_op("", "print('new')\n")], "new.py") == "print('new')\n"
    with pytest.raises(EditApplyError, match="empty for non-empty"):
        apply_edits(SAMPLE, [_op("", "x")], "greet.py")


def test_no_edits_is_rejected():
    with pytest.raises(EditApplyError, match="No edits provided"):
        apply_edits(SAMPLE, [], "greet.py")


def test_placeholder_anchor_is_rejected_before_matching():
    with pytest.raises(EditApplyError, match="placeholder ellipsis"):
        apply_edits(SAMPLE, [_op("def greet(name):\n    ...", "x")], "greet.py")


def test_delimiter_only_anchor_is_rejected():
    with pytest.raises(EditApplyError, match="too generic"):
        apply_edits("f(a)\n", [_op(")", "))")], "f.py")


# ---------------------------------------------------------------------------
# Anchor heuristics
# ---------------------------------------------------------------------------
@pytest.mark.parametrize("anchor,expected", [
    ("foo(...args)", False),
    ("const x = [...items];", False),
    ("// ... rest of code", True),
    ("return x …", True),
    ("plain code", False),
])
def test_placeholder_detection(anchor, expected):
    assert old_string_looks_like_placeholder(anchor) is expected


@pytest.mark.parametrize("anchor,expected", [
    ("}", True),
    ("  });\n", True),
    ("}\nfoo();", False),
    ("", False),
])
def test_delimiter_only_detection(anchor, expected):
    assert old_string_is_delimiter_only(anchor) is expected


# ---------------------------------------------------------------------------
# Repair guidance
# ---------------------------------------------------------------------------
def test_retryable_classification():
    assert is_retryable_edit_apply_error("Edit 1: old_string not found in a.py")
    assert is_retryable_edit_apply_error("Edit 2: old_string matches 2 times in a.py (must be unique)")
    assert is_retryable_edit_apply_error("No edits provided for a.py")
    assert not is_retryable_edit_apply_error("Cannot delete a.py: file does not exist")


def test_guidance_quotes_failing_anchor():
    message = "Edit 1: old_string matches 2 times in a.py (must be unique). Need more context.\nSearched for: 'x = 1'"
    guidance = format_edit_apply_repair_guidance(message, "code block above")
    assert "too generic and matched multiple places" in guidance
    assert "Previous attempt detail:\nSearched for: 'x = 1'" in guidance
    assert "use the code block above" in guidance


def test_guidance_for_missing_edits():
    guidance = format_edit_apply_repair_guidance("No edits provided for a.py", "excerpt above")
    assert "did not include any edits" in guidance


# ---------------------------------------------------------------------------
# Content normalisation
# ---------------------------------------------------------------------------
def test_normalizer_strips_bom_fence_and_crlf():
    raw = "\ufeff```python\r\nprint('hi')\r\nprint('bye')\r\n```\r\n"
    assert normalize_generated_content(raw) == "print('hi')\nprint('bye')\n"


def test_normalizer_enforces_single_trailing_newline():
    assert normalize_generated_content("x = 1") == "x = 1\n"
    assert normalize_generated_content("x = 1\n\n\n") == "x = 1\n"


def test_normalizer_keeps_empty_empty():
    assert normalize_generated_content("") == ""
    assert normalize_generated_content("\n\n") == ""


def test_normalizer_is_idempotent():
    once = normalize_generated_content("```js\nlet a = 1;\r\n```")
    assert normalize_generated_content(once) == once


def test_inner_fences_are_kept():
    body = "Some docs\n```\ncode\n```\nmore docs\n"
    assert strip_code_fence(body) == body
