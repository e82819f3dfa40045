"""
LLM Prompts
===========
Centralised store for generation, review, and fix prompts.

Prompt Design Rules:
    - Implement ONLY the validated suggestion — no drive-by refactors
    - Minimum diff; preserve comments and unrelated code verbatim
    - Prefer targeted ``edits`` with verbatim ``old_string`` anchors; use a
      whole-file ``replace`` only for new or tiny files
    - Never emit placeholders ("...", "rest of file unchanged")

Review Prompts:
    - Iteration 1: "verify the fix" prompt built from the FixContext (or a
      generic skeptical-reviewer prompt when there is none)
    - Iteration N>1: "RE-REVIEW #N" prompt listing previously addressed
      finding titles so the reviewer verifies them and looks for regressions
"""
import difflib
import logging
from typing import Dict, Iterable, List, Optional, Sequence

from cosmos_harness.core.constants import MAX_FILE_PROMPT_CHARS
from cosmos_harness.llm.parse import truncate_content
from cosmos_harness.models.review_finding import ReviewFinding
from cosmos_harness.models.suggestion import FixContext, ValidatedSuggestion

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------
GENERATION_SYSTEM_PROMPT = (
    "You are a careful senior engineer implementing ONE approved change in a codebase.\n"
    "\n"
    "HARD RULES — you MUST follow ALL of these:\n"
    "1. Implement ONLY the described change. Nothing else.\n"
    "2. Minimum diff only — change as few lines as possible.\n"
    "3. Preserve ALL comments and unrelated code exactly as they are.\n"
    "4. Only touch the listed files unless a new file is strictly required.\n"
    "5. Paths are relative to the repository root. Never use absolute paths or '..'.\n"
    "6. Prefer kind=\"edits\" with old_string copied VERBATIM from the file (unique, 3-10 lines).\n"
    "7. Use kind=\"replace\" only for new files or files under ~50 lines; return the COMPLETE file.\n"
    "8. NEVER use placeholders such as '...', '…' or 'rest of file unchanged'.\n"
    "9. Keep the code syntactically valid: balanced brackets, complete statements."
)


def build_generation_prompt(
    suggestion: ValidatedSuggestion,
    files: Dict[str, Optional[str]],
    feedback: Sequence[str] = (),
    repair_guidance: str = "",
) -> str:
    """
    Build the user prompt for the initial generation (and syntax repairs).

    Parameters
    ----------
    suggestion : ValidatedSuggestion
        The change to implement.
    files : dict
        Current content per candidate path (None = file does not exist yet).
    feedback : sequence of str
        Quick-check failure reasons from the previous attempt.
    repair_guidance : str
        Edit-apply repair guidance from a rejected previous response.

    Returns
    -------
    str
        Complete user prompt.
    """
    parts: List[str] = [
        f"PROBLEM:\n{suggestion.summary}",
    ]
    if suggestion.outcome:
        parts.append(f"EXPECTED OUTCOME:\n{suggestion.outcome}")
    if suggestion.description:
        parts.append(f"TECHNICAL DESCRIPTION:\n{suggestion.description}")

    for path, content in files.items():
        if content is None:
            parts.append(f"FILE: {path}\n(does not exist yet — create it if needed)")
        else:
            body = truncate_content(content, MAX_FILE_PROMPT_CHARS)
            parts.append(f"FILE: {path}\n```\n{body}\n```")

    if feedback:
        reasons = "\n".join(f"- {reason}" for reason in feedback)
        parts.append(
            "PREVIOUS ATTEMPT FAILED A SYNTAX SANITY CHECK. The files above show the current "
            f"state. Fix these problems:\n{reasons}"
        )

    prompt = "\n\n".join(parts)
    if repair_guidance:
        prompt += repair_guidance
    return prompt


def format_schema_repair_guidance(message: str, truncated: bool = False) -> str:
    """Guidance for a generation re-entry after an unusable structured response."""
    if truncated:
        lead = "Your previous response was cut off at the output limit."
        advice = "Be concise: use targeted `edits` instead of whole-file `replace` content."
    else:
        lead = f"Your previous response was not valid structured output ({message})."
        advice = "Return ONLY a JSON object matching the schema, with at least one file change."
    return (
        "\n\nIMPORTANT — PREVIOUS ATTEMPT REJECTED:\n"
        f"- {lead}\n"
        f"- {advice}\n"
        "- Do not wrap the JSON in markdown fences or add commentary."
    )


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------
REVIEW_OUTPUT = (
    "OUTPUT (JSON):\n"
    '{"summary": "Brief assessment", "findings": [\n'
    '  {"file": "path/to/file", "line": 42, "severity": "info|low|medium|high|critical", '
    '"category": "bug", "title": "Short title", "rationale": "Plain English explanation", '
    '"recommended": true}\n'
    "]}\n"
    "\n"
    "SEVERITY: critical (blocks shipping) | high (must fix) | medium (should fix) | low | info\n"
    "RECOMMENDED: true = fix now, false = can defer"
)

REVIEW_SYSTEM_WITH_CONTEXT = (
    "Review this code change. Verify the fix was done correctly.\n"
    "\n"
    "THE FIX WAS SUPPOSED TO:\n"
    "{fix_context}\n"
    "\n"
    "FOCUS:\n"
    "1) Did it solve the stated problem?\n"
    "2) Did it introduce regressions?\n"
    "3) Are important edge cases still broken?\n"
    "\n"
    "IGNORE: unrelated pre-existing code, style-only comments, scope creep"
)

REVIEW_SYSTEM_GENERIC = (
    "Skeptical code reviewer. Find bugs, security issues, problems the developer missed.\n"
    "\n"
    "Check for concrete issues:\n"
    "- logic/correctness regressions\n"
    "- security risks\n"
    "- error-handling/resource leaks\n"
    "- high-impact performance traps\n"
    "\n"
    "RECOMMENDED true: bugs fixable with code changes now\n"
    "RECOMMENDED false: architecture, infra, theoretical edge cases\n"
    "\n"
    "RULES:\n"
    "- Plain English, no code snippets\n"
    "- Explain why it matters\n"
    "- Focus on changes, not pre-existing code\n"
    "- Prefer a few high-signal findings over many weak ones\n"
    "- Empty findings if code is solid"
)

REVIEW_SYSTEM_FOLLOWUP = (
    "RE-REVIEW #{iteration}. Verify prior fixes and catch regressions.\n"
    "\n"
    "PREVIOUSLY ADDRESSED (may still need follow-up):\n"
    "{fixed_list}\n"
    "\n"
    "VERIFY: 1) Issues actually fixed? 2) New bugs introduced?\n"
    "\n"
    "DO NOT REPORT: architecture, infra, unrelated code, style, scope creep\n"
    "RECOMMENDED true: fix is broken or introduced clear bug\n"
    "RECOMMENDED false: refactoring, nice-to-have, theoretical\n"
    "\n"
    "Do not lower quality standards because this is a later iteration."
)


def format_fix_context(ctx: FixContext) -> str:
    text = f"Problem: {ctx.problem_summary}\nOutcome: {ctx.outcome}\nChanged: {ctx.description}"
    if ctx.modified_areas:
        text += f"\nAreas: {', '.join(ctx.modified_areas)}"
    return text


def review_system_prompt(
    iteration: int,
    fixed_titles: Sequence[str] = (),
    fix_context: Optional[FixContext] = None,
) -> str:
    """
    Return the reviewer system prompt for a given review iteration.

    Parameters
    ----------
    iteration : int
        1 for an initial (or independent) review, >1 for re-reviews.
    fixed_titles : sequence of str
        Titles of findings addressed by earlier fix passes.
    fix_context : FixContext or None
        What the change was supposed to do.

    Returns
    -------
    str
        Complete system prompt including the output contract.
    """
    if iteration <= 1:
        if fix_context is not None:
            base = REVIEW_SYSTEM_WITH_CONTEXT.replace("{fix_context}", format_fix_context(fix_context))
        else:
            base = REVIEW_SYSTEM_GENERIC
        return f"{base}\n\n{REVIEW_OUTPUT}"

    fixed_list = "\n".join(f"- {t}" for t in fixed_titles) if fixed_titles else "(none)"
    base = REVIEW_SYSTEM_FOLLOWUP.format(iteration=iteration, fixed_list=fixed_list)
    return f"{base}\n\n{REVIEW_OUTPUT}"


def compute_diff(path: str, old: str, new: str) -> str:
    """Unified diff between two versions of a file."""
    return "".join(difflib.unified_diff(
        old.splitlines(keepends=True),
        new.splitlines(keepends=True),
        fromfile=f"a/{path}",
        tofile=f"b/{path}",
    ))


def build_review_prompt(files: Iterable[tuple[str, str, str]]) -> str:
    """
    Build the reviewer user prompt from (path, old, new) triples.

    Each file shows the original content (omitted for new files), the full
    new content (head+tail truncated for large files) and the unified diff.
    """
    parts: List[str] = []
    for path, old, new in files:
        diff = compute_diff(path, old, new) or "(no textual changes)"
        original = (
            f"ORIGINAL CONTENT:\n```\n{truncate_content(old, MAX_FILE_PROMPT_CHARS)}\n```\n"
            if old else "ORIGINAL CONTENT: (new file)\n"
        )
        parts.append(
            f"FILE: {path}\n"
            + original
            + f"NEW CONTENT:\n```\n{truncate_content(new, MAX_FILE_PROMPT_CHARS)}\n```\n"
            f"DIFF:\n```diff\n{truncate_content(diff, MAX_FILE_PROMPT_CHARS)}\n```"
        )
    return "\n\n".join(parts) if parts else "(no files changed)"


# ---------------------------------------------------------------------------
# Fix pass
# ---------------------------------------------------------------------------
FIX_SYSTEM_PROMPT = (
    "You are fixing review findings in ONE file of an in-progress change.\n"
    "\n"
    "HARD RULES — you MUST follow ALL of these:\n"
    "1. Fix ONLY the listed findings. Nothing else.\n"
    "2. Minimum diff only. Preserve comments and unrelated code.\n"
    "3. Keep the original intent of the change (see CONTEXT).\n"
    "4. Respond with a single `change` for the given path.\n"
    "5. If the code block is an EXCERPT, you MUST use kind=\"edits\" with old_string copied "
    "verbatim from the excerpt. A whole-file replace would destroy the rest of the file.\n"
    "6. NEVER use placeholders such as '...' or 'rest of file unchanged'."
)


def build_fix_prompt(
    path: str,
    code_block: str,
    is_excerpt: bool,
    findings: Sequence[ReviewFinding],
    fix_context: Optional[FixContext] = None,
    repair_guidance: str = "",
) -> str:
    """Build the user prompt for a focused single-file fix pass."""
    lines = []
    for i, finding in enumerate(findings, 1):
        where = f" (line {finding.line})" if finding.line else ""
        lines.append(f"{i}. [{finding.severity}] {finding.title}{where}\n   {finding.rationale}".rstrip())

    parts: List[str] = []
    if fix_context is not None:
        parts.append(f"CONTEXT:\n{format_fix_context(fix_context)}")
    parts.append("FINDINGS TO FIX:\n" + "\n".join(lines))
    label = "EXCERPT" if is_excerpt else "CURRENT CONTENT"
    parts.append(f"FILE: {path} ({label})\n```\n{code_block}\n```")

    prompt = "\n\n".join(parts)
    if repair_guidance:
        prompt += repair_guidance
    return prompt
