"""
LLM Errors
==========
Error taxonomy for structured LLM calls.

Every error carries the Usage consumed before it was raised so the
controller can still account for the spend.

    LLMError
    ├── TransportError        — network failure, timeout, non-retryable HTTP status
    ├── RateLimitedError      — HTTP 429 after retries
    ├── SchemaViolationError  — content could not be parsed/validated after the repair retry
    │   └── TruncatedError    — finish_reason == "length"
    └── ContentFilterError    — finish_reason == "content_filter"
"""
from typing import Optional

from cosmos_harness.core.errors import HarnessError
from cosmos_harness.models.usage import Usage


class LLMError(HarnessError):
    kind = "llm_error"

    def __init__(self, message: str, usage: Optional[Usage] = None, model: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.usage = usage
        self.model = model


class TransportError(LLMError):
    kind = "transport"

    def __init__(
        self,
        message: str,
        usage: Optional[Usage] = None,
        model: str = "",
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message, usage=usage, model=model)
        self.status_code = status_code


class RateLimitedError(TransportError):
    kind = "rate_limited"

    def __init__(
        self,
        message: str,
        usage: Optional[Usage] = None,
        model: str = "",
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message, usage=usage, model=model, status_code=429)
        self.retry_after = retry_after


class SchemaViolationError(LLMError):
    kind = "schema_violation"


class TruncatedError(SchemaViolationError):
    kind = "truncated"


class ContentFilterError(LLMError):
    kind = "content_filter"
