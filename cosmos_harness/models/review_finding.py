"""
Review Finding Model
====================
Pydantic models for reviewer output.

Fields:
    file         — path as emitted by the model (may be absolute, Windows-style,
                   or a suffix; the classifier resolves it)
    line         — optional 1-based line the finding refers to
    severity     — info | low | medium | high | critical (case-insensitive);
                   unknown strings are kept and never block
    category     — free-form category (bug, security, ...)
    title        — short title
    rationale    — plain-English explanation ("description" accepted on input)
    recommended  — True = fix now, False = can defer
"""
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ReviewFinding(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file: str = ""
    line: Optional[int] = None
    severity: str = "medium"
    category: str = ""
    title: str = ""
    rationale: str = Field(
        default="",
        validation_alias=AliasChoices("rationale", "description"),
    )
    recommended: bool = True


class ReviewResponse(BaseModel):
    summary: str = "Review completed"
    findings: List[ReviewFinding] = []
