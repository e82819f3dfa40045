"""
Quick-Check Runner
==================
Cheap, language-agnostic structural sanity probe over changed files.

NO COMPILER, NO LLM. This is a heuristic gate, not a build: it looks for the
breakage signatures generated code typically shows and returns
Pass | Fail(reasons) | Unknown. Unknown never blocks progress.

Signatures:
    - empty body where non-empty content was expected
    - truncation marker at end of file ("..." / "…" as the last line)
    - placeholder comments ("// ... rest of code", "# existing code unchanged")
    - merge conflict markers
    - unmatched / mismatched () [] {} in code-like files (string literals and
      the family's comments are skipped)

Baseline:
    When a baseline result is supplied, issues already present before any
    edit (same path + issue code) are ignored so only new breakage counts.

The runner is pure: no I/O, no suspension points.
"""
import logging
import posixpath
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# File families
# ---------------------------------------------------------------------------
# Shell, YAML and INI-style files are text-checked only: their syntax allows
# bare brackets (case patterns, plain scalars) too often for a bracket scan.
_HASH_COMMENT_EXTS = {".py", ".pyi", ".rb", ".r", ".toml", ".nix"}
_C_COMMENT_EXTS = {
    ".c", ".h", ".cc", ".cpp", ".hpp", ".cs", ".java", ".js", ".jsx", ".mjs",
    ".cjs", ".ts", ".tsx", ".go", ".rs", ".swift", ".kt", ".kts", ".scala",
    ".php", ".dart", ".css", ".scss", ".less", ".json", ".jsonc", ".zig", ".sol",
}
_BINARY_EXTS = {
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".webp", ".pdf", ".zip",
    ".gz", ".tar", ".jar", ".woff", ".woff2", ".ttf", ".otf", ".mp3", ".mp4",
    ".wasm", ".so", ".dll", ".exe", ".bin", ".lock",
}

_OPENERS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = {v: k for k, v in _OPENERS.items()}

# ---------------------------------------------------------------------------
# Text signatures
# ---------------------------------------------------------------------------
_CONFLICT_MARKER_RE = re.compile(r"^(<{7}|>{7})(\s|$)", re.MULTILINE)
_COMMENT_LEAD = r"^\s*(?:#|//|/\*|\*|<!--|--)\s*"
_PLACEHOLDER_RES = (
    re.compile(_COMMENT_LEAD + r"(?:\.\.\.|…)\s*(?:rest|existing|remaining|other|previous|unchanged)", re.I | re.M),
    re.compile(_COMMENT_LEAD + r".*(?:rest of (?:the )?(?:file|code)|remains? unchanged|code unchanged)", re.I | re.M),
)
_CHAR_LITERAL_RE = re.compile(r"'(?:\\.|[^\\'\n])'")

ISSUE_EMPTY = "empty_file"
ISSUE_TRUNCATED = "truncation_marker"
ISSUE_PLACEHOLDER = "placeholder_comment"
ISSUE_CONFLICT = "merge_conflict_marker"
ISSUE_BRACKETS = "unbalanced_brackets"


class QuickCheckStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class QuickCheckIssue:
    path: str
    code: str
    message: str

    @property
    def key(self) -> Tuple[str, str]:
        return (self.path, self.code)

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


@dataclass
class QuickCheckResult:
    status: QuickCheckStatus
    issues: List[QuickCheckIssue] = field(default_factory=list)
    checked_files: List[str] = field(default_factory=list)
    ignored_baseline: int = 0

    @property
    def reasons(self) -> List[str]:
        return [str(issue) for issue in self.issues]

    @property
    def failed(self) -> bool:
        return self.status is QuickCheckStatus.FAIL


# ---------------------------------------------------------------------------
# Heuristics
# ---------------------------------------------------------------------------
def _family(path: str) -> Optional[str]:
    ext = posixpath.splitext(path.lower())[1]
    if ext in _HASH_COMMENT_EXTS:
        return "hash"
    if ext in _C_COMMENT_EXTS:
        return "c"
    return None


def is_checkable(path: str) -> bool:
    return posixpath.splitext(path.lower())[1] not in _BINARY_EXTS


def find_unbalanced_brackets(content: str, family: str) -> Optional[str]:
    """
    Scan for unmatched or mismatched brackets.

    Parameters
    ----------
    content : str
        File body.
    family : str
        "hash" (``#`` comments) or "c" (``//`` and ``/* */`` comments).

    Returns
    -------
    str or None
        Description of the first problem, or None if balanced.
    """
    stack: List[Tuple[str, int]] = []
    line = 1
    i = 0
    n = len(content)
    while i < n:
        ch = content[i]
        if ch == "\n":
            line += 1
            i += 1
            continue

        # Comments
        if family == "hash" and ch == "#" and (i == 0 or content[i - 1].isspace()):
            end = content.find("\n", i)
            i = n if end == -1 else end
            continue
        if family == "c" and content.startswith("//", i):
            end = content.find("\n", i)
            i = n if end == -1 else end
            continue
        if family == "c" and content.startswith("/*", i):
            end = content.find("*/", i + 2)
            if end == -1:
                return f"unterminated block comment starting at line {line}"
            line += content.count("\n", i, end)
            i = end + 2
            continue

        # String literals
        if content.startswith('"""', i) or (family == "hash" and content.startswith("'''", i)):
            quote = content[i:i + 3]
            end = content.find(quote, i + 3)
            if end == -1:
                return f"unterminated triple-quoted string starting at line {line}"
            line += content.count("\n", i, end)
            i = end + 3
            continue
        if ch == "'" and family == "c":
            match = _CHAR_LITERAL_RE.match(content, i)
            i = match.end() if match else i + 1
            continue
        if ch in "\"'" or (ch == "`" and family == "c"):
            i = _skip_string(content, i, multiline=(ch == "`"))
            continue

        # Brackets
        if ch in _OPENERS:
            stack.append((ch, line))
        elif ch in _CLOSERS:
            if not stack:
                return f"unexpected '{ch}' at line {line}"
            opener, opened_at = stack.pop()
            if _OPENERS[opener] != ch:
                return f"mismatched '{ch}' at line {line} (opened '{opener}' at line {opened_at})"
        i += 1

    if stack:
        opener, opened_at = stack[-1]
        return f"unclosed '{opener}' opened at line {opened_at}"
    return None


def _skip_string(content: str, start: int, multiline: bool) -> int:
    """Return the index just past the string starting at ``start``."""
    quote = content[start]
    i = start + 1
    while i < len(content):
        ch = content[i]
        if ch == "\\":
            i += 2
            continue
        if ch == quote:
            return i + 1
        if ch == "\n" and not multiline:
            # Unterminated single-line string: stop at the line end so the
            # newline is still counted by the caller.
            return i
        i += 1
    return len(content)


def _last_line_is_truncation(content: str) -> bool:
    lines = [ln.strip() for ln in content.rstrip().splitlines() if ln.strip()]
    if not lines:
        return False
    last = lines[-1]
    if last in ("...", "…"):
        return True
    return bool(re.match(r"^(?:#|//|/\*|<!--)", last)) and last.rstrip("*/->").rstrip().endswith(("...", "…"))


def check_file(path: str, content: Optional[str], expect_non_empty: bool) -> List[QuickCheckIssue]:
    """Return every issue found in one file (empty list = clean)."""
    if content is None:
        return []
    issues: List[QuickCheckIssue] = []
    if not content.strip():
        if expect_non_empty:
            issues.append(QuickCheckIssue(path, ISSUE_EMPTY, "file is empty but non-empty content was expected"))
        return issues

    if _last_line_is_truncation(content):
        issues.append(QuickCheckIssue(path, ISSUE_TRUNCATED, "file appears truncated (ends with '...')"))
    for pattern in _PLACEHOLDER_RES:
        match = pattern.search(content)
        if match:
            line_no = content.count("\n", 0, match.start()) + 1
            issues.append(QuickCheckIssue(
                path, ISSUE_PLACEHOLDER, f"placeholder comment at line {line_no}: {match.group(0).strip()[:80]}",
            ))
            break
    if _CONFLICT_MARKER_RE.search(content):
        issues.append(QuickCheckIssue(path, ISSUE_CONFLICT, "merge conflict markers present"))

    family = _family(path)
    if family is not None:
        problem = find_unbalanced_brackets(content, family)
        if problem:
            issues.append(QuickCheckIssue(path, ISSUE_BRACKETS, problem))
    return issues


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------
class QuickCheckRunner:
    """Runs the heuristic probe over a set of files."""

    def run(
        self,
        files: Dict[str, Optional[str]],
        expect_non_empty: Iterable[str] = (),
        baseline: Optional[QuickCheckResult] = None,
    ) -> QuickCheckResult:
        """
        Check ``files`` and summarise.

        Parameters
        ----------
        files : dict
            path → current content (None = deleted / absent, skipped).
        expect_non_empty : iterable of str
            Paths whose previous content was non-empty.
        baseline : QuickCheckResult or None
            Pre-edit result; its issues are ignored.

        Returns
        -------
        QuickCheckResult
            FAIL if any new issue, PASS if at least one file was checked,
            UNKNOWN otherwise.
        """
        expected: Set[str] = set(expect_non_empty)
        known = {issue.key for issue in baseline.issues} if baseline else set()
        issues: List[QuickCheckIssue] = []
        checked: List[str] = []
        ignored = 0

        for path, content in files.items():
            if content is None or not is_checkable(path):
                continue
            checked.append(path)
            for issue in check_file(path, content, path in expected):
                if issue.key in known:
                    ignored += 1
                    continue
                issues.append(issue)

        if issues:
            status = QuickCheckStatus.FAIL
        elif checked:
            status = QuickCheckStatus.PASS
        else:
            status = QuickCheckStatus.UNKNOWN
        logger.info(
            "Quick-check %s (%d file(s), %d issue(s), %d baseline ignored)",
            status.value, len(checked), len(issues), ignored,
        )
        return QuickCheckResult(status=status, issues=issues, checked_files=checked, ignored_baseline=ignored)
