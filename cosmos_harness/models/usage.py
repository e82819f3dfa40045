"""
Usage Model
===========
Token and cost accounting for LLM calls.

Merging Rules:
    - Token counts are additive.
    - cost_usd sums the values that are present; a merge of two unreported
      costs stays unreported (None) so diagnostics can tell "provider did not
      report" apart from "provider reported 0".
    - Aggregation (budgets, totals) uses cost_or_zero.

Wire Aliases:
    Providers report cost as either ``total_cost`` or ``cost``; both are
    accepted on input.
"""
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class Usage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost_usd: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("cost_usd", "total_cost", "cost"),
    )

    @field_validator("prompt_tokens", "completion_tokens", "total_tokens", mode="before")
    @classmethod
    def _none_is_zero(cls, value):
        return 0 if value is None else value

    @property
    def cost_or_zero(self) -> float:
        return self.cost_usd if self.cost_usd is not None else 0.0


def merge_usage(a: Optional[Usage], b: Optional[Usage]) -> Optional[Usage]:
    """
    Additively merge two Usage records.

    Parameters
    ----------
    a, b : Usage or None
        Records to merge. None acts as the identity.

    Returns
    -------
    Usage or None
        Combined record, or None when both inputs are None.
    """
    if a is None:
        return b
    if b is None:
        return a
    if a.cost_usd is None and b.cost_usd is None:
        cost = None
    else:
        cost = a.cost_or_zero + b.cost_or_zero
    return Usage(
        prompt_tokens=a.prompt_tokens + b.prompt_tokens,
        completion_tokens=a.completion_tokens + b.completion_tokens,
        total_tokens=a.total_tokens + b.total_tokens,
        cost_usd=cost,
    )
