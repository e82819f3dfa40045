"""
Quick-Check Tests
=================
Heuristic structural probe: no compiler, no LLM.
"""
import pytest

from cosmos_harness.services.quick_check import (
    ISSUE_BRACKETS,
    ISSUE_CONFLICT,
    ISSUE_EMPTY,
    ISSUE_PLACEHOLDER,
    ISSUE_TRUNCATED,
    QuickCheckRunner,
    QuickCheckStatus,
    check_file,
    find_unbalanced_brackets,
)


def _codes(path, content, expect_non_empty=False):
    return [issue.code for issue in check_file(path, content, expect_non_empty)]


# ---------------------------------------------------------------------------
# Bracket scan
# ---------------------------------------------------------------------------
def test_balanced_python_passes():
    content = 'def f(a, b):\n    return {"k": [a, b]}\n'
    assert find_unbalanced_brackets(content, "hash") is None


def test_unclosed_bracket_reports_line():
    assert find_unbalanced_brackets("x = [\n1,\n", "hash") == "unclosed '[' opened at line 1"


def test_mismatched_bracket():
    problem = find_unbalanced_brackets("foo(bar]\n", "c")
    assert problem.startswith("mismatched ']' at line 1")


def test_brackets_inside_strings_and_comments_are_ignored():
    py = 'x = ")"  # (\ny = \'[\'\nz = """\n{\n"""\n'
    js = 'const a = "}"; // (\n/* [ */\nconst b = `${x} {`;\nconst c = \'(\';\n'
    assert find_unbalanced_brackets(py, "hash") is None
    assert find_unbalanced_brackets(js, "c") is None


def test_unterminated_block_comment():
    assert "unterminated block comment" in find_unbalanced_brackets("/* open\nint x;\n", "c")


# ---------------------------------------------------------------------------
# Per-file signatures
# ---------------------------------------------------------------------------
def test_empty_file_only_fails_when_content_was_expected():
    assert _codes("a.py", "   \n", expect_non_empty=True) == [ISSUE_EMPTY]
    assert _codes("a.py", "", expect_non_empty=False) == []


def test_truncation_marker_at_end():
    assert ISSUE_TRUNCATED in _codes("a.py", "x = 1\n...\n")
    assert ISSUE_TRUNCATED in _codes("a.js", "let x = 1;\n// more code ...\n")


@pytest.mark.parametrize("line", [
    "# ... rest of the file",
    "// ... existing code",
    "    # rest of code unchanged",
    "<!-- ... remaining markup -->",
])
def test_placeholder_comments(line):
    assert ISSUE_PLACEHOLDER in _codes("page.html", f"<p>a</p>\n{line}\n<p>b</p>\n")


def test_conflict_markers():
    content = "<<<<<<< HEAD\na = 1\n=======\na = 2\n>>>>>>> branch\n"
    assert ISSUE_CONFLICT in _codes("a.txt", content)


def test_text_families_skip_bracket_scan():
    assert _codes("script.sh", "case $x in\n  a) echo hi ;;\nesac\n") == []
    assert _codes("config.yaml", "key: value)\n") == []


def test_bracket_issue_in_code_file():
    assert _codes("main.go", "func main() {\n") == [ISSUE_BRACKETS]


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------
def test_runner_pass_fail_unknown():
    runner = QuickCheckRunner()
    assert runner.run({"a.py": "x = 1\n"}).status is QuickCheckStatus.PASS
    assert runner.run({"a.py": "x = (\n"}).status is QuickCheckStatus.FAIL
    # Deleted and binary files are not checked
    unknown = runner.run({"gone.py": None, "logo.png": "binary"})
    assert unknown.status is QuickCheckStatus.UNKNOWN
    assert unknown.failed is False


def test_runner_reasons_name_the_file():
    result = QuickCheckRunner().run({"src/a.py": "x = (\n"})
    assert result.failed
    assert result.reasons == ["src/a.py: unclosed '(' opened at line 1"]


def test_baseline_issues_are_ignored_but_new_ones_count():
    runner = QuickCheckRunner()
    baseline = runner.run({"a.js": "function f() {\n", "b.js": "let b = 1;\n"})
    assert baseline.failed

    after = runner.run({"a.js": "function f() {\n  return 2;\n", "b.js": "let b = [1;\n"}, baseline=baseline)
    assert after.failed
    assert after.ignored_baseline == 1
    assert [issue.path for issue in after.issues] == ["b.js"]


def test_expect_non_empty_is_per_path():
    result = QuickCheckRunner().run({"a.py": "", "b.py": ""}, expect_non_empty=["a.py"])
    assert [issue.path for issue in result.issues] == ["a.py"]
