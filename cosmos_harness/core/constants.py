"""
Constants
Centralised storage for severities, stage names, and CLI exit codes.
"""
SEVERITIES = ["info", "low", "medium", "high", "critical"]
DEFAULT_BLOCKING_SEVERITIES = frozenset({"high", "critical"})
ARROW = "→"

# Stage names used for budgeting, diagnostics, and progress callbacks
STAGE_GENERATION = "generation"
STAGE_GENERATION_REPAIR = "generation_repair"
STAGE_SYNTAX_REPAIR = "syntax_repair"
STAGE_APPLY = "apply"
STAGE_QUICK_CHECK = "quick_check"
STAGE_REVIEW = "review"
STAGE_FIX = "fix"
STAGE_FINAL_REVIEW = "final_review"

# Stages allowed to spend the independent-review reserve
RESERVE_STAGES = frozenset({STAGE_REVIEW, STAGE_FINAL_REVIEW})

# One-shot CLI exit status
EXIT_ACCEPTED = 0
EXIT_REJECTED_BY_REVIEW = 2
EXIT_BUDGET_EXHAUSTED = 3
EXIT_UNRECOVERABLE = 4
EXIT_ABORTED_BY_CALLER = 130

# Prompt sizing
MAX_FILE_PROMPT_CHARS = 20_000
MAX_ERROR_SNIPPET_CHARS = 200

# Diagnostics report location (relative to --report-dir / sandbox root)
REPORT_SUBDIR = ".cosmos/apply_harness"
