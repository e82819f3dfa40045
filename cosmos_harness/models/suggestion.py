"""
Suggestion Models
=================
Inputs handed to the harness by the UI layer.

ValidatedSuggestion:
    fingerprint   — stable identifier of the upstream suggestion
    summary       — human-readable problem summary
    outcome       — expected outcome once implemented
    description   — technical description of the change
    files         — ordered candidate paths, relative to the sandbox root

FixContext:
    Condensed intent passed to the reviewer so it can verify the change did
    what it was supposed to do.
"""
from typing import List

from pydantic import BaseModel, field_validator


class ValidatedSuggestion(BaseModel):
    fingerprint: str
    summary: str
    outcome: str = ""
    description: str = ""
    files: List[str]

    @field_validator("files")
    @classmethod
    def _normalise_files(cls, value: List[str]) -> List[str]:
        files = [f.strip().replace("\\", "/") for f in value if f and f.strip()]
        if not files:
            raise ValueError("suggestion must target at least one file")
        return files


class FixContext(BaseModel):
    problem_summary: str
    outcome: str = ""
    description: str = ""
    modified_areas: List[str] = []

    @classmethod
    def from_suggestion(cls, suggestion: ValidatedSuggestion) -> "FixContext":
        return cls(
            problem_summary=suggestion.summary,
            outcome=suggestion.outcome,
            description=suggestion.description,
            modified_areas=list(suggestion.files),
        )
