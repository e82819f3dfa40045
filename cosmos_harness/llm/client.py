"""
Structured LLM Client
=====================
Asynchronous client for OpenAI-compatible chat-completion endpoints that
returns schema-validated structured content.

Structured Output:
    - Every call names a pydantic response model; its JSON schema is sent as
      ``response_format: {type: "json_schema", ...}`` to models that support
      JSON mode and inlined into the system prompt for everything else
    - Content is salvaged (fences stripped, balanced JSON candidates,
      wrapper unwrapping) and validated with ``model_validate``
    - A parse/validation failure triggers ONE repair call quoting the prior
      content; a second failure raises SchemaViolationError
    - finish_reason "length" → TruncatedError, "content_filter" → ContentFilterError

Transport:
    - One shared httpx.AsyncClient with a bounded connection pool, created lazily
    - Fixed per-call timeout (HTTP_TIMEOUT_SECONDS), further capped by the caller
    - 429 / 5xx / timeouts / connection errors retried with exponential
      backoff (2s · 2^n), honouring Retry-After
    - Other 4xx statuses fail immediately with an actionable message

Failover:
    - Speed tier: transport errors, rate limits and schema violations move on
      to the next router candidate (stable declaration order)
    - Other tiers: errors propagate to the controller

Usage Accounting:
    - Usage is always populated; cost stays None when the provider omits it
      (never estimated) and counts as 0.0 in totals
    - Usage of failed calls is merged into the next success, or attached to
      the raised error
"""
import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from cosmos_harness.core.config import (
    OPENROUTER_BASE_URL,
    HTTP_TIMEOUT_SECONDS,
    HTTP_MAX_CONNECTIONS,
    HTTP_MAX_KEEPALIVE,
    LLM_MAX_RETRIES,
    LLM_BACKOFF_BASE_SECONDS,
    resolve_api_key,
    is_valid_api_key,
)
from cosmos_harness.llm.errors import (
    ContentFilterError,
    RateLimitedError,
    SchemaViolationError,
    TransportError,
    TruncatedError,
)
from cosmos_harness.llm.parse import parse_structured_content, sanitize_api_response, truncate_content
from cosmos_harness.llm.router import ModelDescriptor, ModelRouter, ModelTier
from cosmos_harness.models.usage import Usage, merge_usage

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_MAX_RETRY_AFTER_SECONDS = 30.0
_REPAIR_QUOTE_CHARS = 12_000


# ---------------------------------------------------------------------------
# Call records
# ---------------------------------------------------------------------------
@dataclass
class CallLimits:
    """Per-call limits chosen by the controller."""
    timeout_seconds: float = HTTP_TIMEOUT_SECONDS


@dataclass
class CallDiagnostics:
    """What happened while serving one structured call."""
    model: str
    tier: ModelTier
    schema_inlined: bool = False
    repair_used: bool = False
    failover_used: bool = False
    attempts: int = 0
    elapsed_ms: int = 0
    finish_reason: str = ""
    models_tried: List[str] = field(default_factory=list)


@dataclass
class StructuredResult(Generic[T]):
    data: T
    usage: Usage
    diagnostics: CallDiagnostics


@dataclass
class RawCompletion:
    content: str
    finish_reason: str
    usage: Usage


# ---------------------------------------------------------------------------
# Provider error classification
# ---------------------------------------------------------------------------
def classify_provider_error(status_code: int, body: str) -> str:
    """
    Turn an HTTP error status into an actionable message.

    Parameters
    ----------
    status_code : int
        HTTP status returned by the gateway.
    body : str
        Raw response body (sanitised before inclusion).

    Returns
    -------
    str
        Human-readable message.
    """
    detail = sanitize_api_response(body)
    if status_code == 401:
        return f"Authentication failed (401): check OPENROUTER_API_KEY. {detail}"
    if status_code == 402:
        return f"Insufficient credits (402): add credits to the account. {detail}"
    if status_code == 403:
        return f"Request forbidden (403): the key may not have access to this model. {detail}"
    if status_code == 404:
        return f"Model or endpoint not found (404): check the configured model ids. {detail}"
    if status_code == 429:
        return f"Rate limited (429): too many requests, retry later. {detail}"
    if status_code >= 500:
        return f"Provider error ({status_code}): the upstream model is unavailable. {detail}"
    return f"Request failed ({status_code}). {detail}"


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds; dates are ignored."""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    if seconds < 0:
        return None
    return min(seconds, _MAX_RETRY_AFTER_SECONDS)


def _schema_instruction(schema: Dict[str, Any]) -> str:
    return (
        "\n\nRESPONSE FORMAT — you MUST respond with ONLY a JSON object matching "
        "this JSON Schema:\n"
        f"{json.dumps(schema, indent=2)}\n"
        "\n"
        "No other text. No markdown code fences. Just the JSON object."
    )


# ---------------------------------------------------------------------------
# LLM Client
# ---------------------------------------------------------------------------
class LLMClient:
    """
    Async client for schema-validated LLM calls.

    Usage:
        client = LLMClient()
        result = await client.call_structured(
            ModelTier.SMART, system, user, GenerationResponse,
        )
        await client.close()

    One instance (and its HTTP pool) may be shared by concurrent runs.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = OPENROUTER_BASE_URL,
        router: Optional[ModelRouter] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        max_retries: int = LLM_MAX_RETRIES,
        backoff_base_seconds: float = LLM_BACKOFF_BASE_SECONDS,
        sleep=asyncio.sleep,
    ) -> None:
        self.api_key = resolve_api_key(api_key)
        self.base_url = base_url.rstrip("/")
        self.router = router or ModelRouter()
        self.max_retries = max_retries
        self.backoff_base_seconds = backoff_base_seconds
        self._http: Optional[httpx.AsyncClient] = http_client
        self._sleep = sleep

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    def is_available(self) -> bool:
        """True when a well-formed API key is configured."""
        return is_valid_api_key(self.api_key)

    async def _get_http(self) -> httpx.AsyncClient:
        """Lazy-initialise the shared HTTP client."""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(HTTP_TIMEOUT_SECONDS),
                limits=httpx.Limits(
                    max_connections=HTTP_MAX_CONNECTIONS,
                    max_keepalive_connections=HTTP_MAX_KEEPALIVE,
                ),
            )
        return self._http

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http and not self._http.is_closed:
            await self._http.aclose()
            self._http = None

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------
    async def call_structured(
        self,
        tier: ModelTier,
        system: str,
        user: str,
        response_model: Type[T],
        limits: Optional[CallLimits] = None,
    ) -> StructuredResult[T]:
        """
        Send a prompt and return validated structured content.

        Parameters
        ----------
        tier : ModelTier
            Logical tier; resolved through the router.
        system : str
            System prompt.
        user : str
            User prompt.
        response_model : type[BaseModel]
            Pydantic model describing (and validating) the response.
        limits : CallLimits or None
            Per-call limits (timeout).

        Returns
        -------
        StructuredResult
            Validated data, merged usage across attempts, and diagnostics.

        Raises
        ------
        TransportError, RateLimitedError, SchemaViolationError,
        TruncatedError, ContentFilterError
        """
        limits = limits or CallLimits()
        started = time.monotonic()
        spent: Optional[Usage] = None
        tried: List[str] = []
        last_error: Optional[Exception] = None

        for position, descriptor in enumerate(self.router.resolve_with_failover(tier)):
            tried.append(descriptor.model_id)
            try:
                result = await self._call_model(descriptor, system, user, response_model, limits)
            except (TransportError, SchemaViolationError) as exc:
                self.router.report_failure(descriptor.model_id)
                spent = merge_usage(spent, exc.usage)
                logger.warning(
                    "Model %s (%s) failed: %s", descriptor.model_id, tier.value, exc.message,
                )
                last_error = exc
                continue
            except ContentFilterError as exc:
                exc.usage = merge_usage(spent, exc.usage)
                raise

            self.router.report_success(descriptor.model_id)
            result.usage = merge_usage(spent, result.usage) or Usage()
            result.diagnostics.failover_used = position > 0
            result.diagnostics.models_tried = tried
            result.diagnostics.elapsed_ms = int((time.monotonic() - started) * 1000)
            return result

        assert last_error is not None
        last_error.usage = spent
        raise last_error

    # -------------------------------------------------------------------
    # Single model: request → salvage → one repair
    # -------------------------------------------------------------------
    async def _call_model(
        self,
        descriptor: ModelDescriptor,
        system: str,
        user: str,
        response_model: Type[T],
        limits: CallLimits,
    ) -> StructuredResult[T]:
        schema = response_model.model_json_schema()
        diagnostics = CallDiagnostics(
            model=descriptor.model_id,
            tier=descriptor.tier,
            schema_inlined=not descriptor.supports_json_mode,
        )
        if descriptor.supports_json_mode:
            system_prompt = system
            response_format = {
                "type": "json_schema",
                "json_schema": {"name": response_model.__name__, "schema": schema},
            }
        else:
            system_prompt = system + _schema_instruction(schema)
            response_format = None

        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user},
        ]
        first = await self._complete(descriptor, messages, response_format, limits)
        diagnostics.attempts = 1
        diagnostics.finish_reason = first.finish_reason
        usage = first.usage

        try:
            data = self._validated(first, response_model, descriptor)
            return StructuredResult(data=data, usage=usage, diagnostics=diagnostics)
        except ContentFilterError as exc:
            exc.usage = usage
            raise
        except SchemaViolationError as exc:
            logger.warning(
                "Structured response from %s invalid (%s), attempting repair",
                descriptor.model_id, exc.message,
            )
            repair_messages = messages + [
                {"role": "user", "content": self._repair_instruction(first, exc)}
            ]

        diagnostics.repair_used = True
        try:
            second = await self._complete(descriptor, repair_messages, response_format, limits)
        except TransportError as exc:
            exc.usage = merge_usage(usage, exc.usage)
            raise
        diagnostics.attempts = 2
        diagnostics.finish_reason = second.finish_reason
        usage = merge_usage(usage, second.usage) or Usage()

        try:
            data = self._validated(second, response_model, descriptor)
        except (SchemaViolationError, ContentFilterError) as exc:
            exc.usage = usage
            raise
        return StructuredResult(data=data, usage=usage, diagnostics=diagnostics)

    @staticmethod
    def _validated(completion: RawCompletion, response_model: Type[T], descriptor: ModelDescriptor) -> T:
        if completion.finish_reason == "content_filter":
            raise ContentFilterError(
                "Response blocked by the provider's content filter",
                model=descriptor.model_id,
            )
        if completion.finish_reason == "length":
            raise TruncatedError(
                f"Response truncated at the {descriptor.max_tokens}-token output limit",
                model=descriptor.model_id,
            )
        try:
            return parse_structured_content(completion.content, response_model.model_validate)
        except SchemaViolationError as exc:
            exc.model = descriptor.model_id
            raise

    @staticmethod
    def _repair_instruction(previous: RawCompletion, error: SchemaViolationError) -> str:
        if isinstance(error, TruncatedError):
            return (
                "Your previous response was cut off at the output limit. Respond again, "
                "more concisely: prefer targeted `edits` over whole-file `content`, and "
                "return ONLY valid JSON matching the schema."
            )
        return (
            f"Your previous response could not be used: {error.message}\n"
            "Re-emit ONLY valid JSON matching the schema. No prose, no code fences.\n"
            "\n"
            "Previous response:\n"
            f"```\n{truncate_content(previous.content, _REPAIR_QUOTE_CHARS)}\n```"
        )

    # -------------------------------------------------------------------
    # Wire
    # -------------------------------------------------------------------
    async def _complete(
        self,
        descriptor: ModelDescriptor,
        messages: List[Dict[str, str]],
        response_format: Optional[Dict[str, Any]],
        limits: CallLimits,
    ) -> RawCompletion:
        if not self.is_available():
            raise TransportError("No valid API key configured (expected an 'sk-' key)", model=descriptor.model_id)

        payload: Dict[str, Any] = {
            "model": descriptor.model_id,
            "messages": messages,
            "max_tokens": descriptor.max_tokens,
            "usage": {"include": True},
        }
        if response_format is not None:
            payload["response_format"] = response_format

        resp = await self.send_with_retry(
            f"{self.base_url}/chat/completions",
            payload,
            limits.timeout_seconds,
            model=descriptor.model_id,
        )
        try:
            data = resp.json()
        except ValueError as exc:
            raise TransportError(
                f"Provider returned a non-JSON body: {sanitize_api_response(resp.text)}",
                model=descriptor.model_id,
                status_code=resp.status_code,
            ) from exc
        if not isinstance(data, dict):
            raise TransportError(
                f"Provider returned a {type(data).__name__} body instead of an object: "
                f"{sanitize_api_response(resp.text)}",
                model=descriptor.model_id,
                status_code=resp.status_code,
            )

        usage = self._parse_usage(data.get("usage"), descriptor.model_id)
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            error = data.get("error") or {}
            message = error.get("message", "") if isinstance(error, dict) else str(error)
            raise SchemaViolationError(
                f"Response contained no choices. {sanitize_api_response(message)}".strip(),
                usage=usage,
                model=descriptor.model_id,
            )
        choice = choices[0] if isinstance(choices[0], dict) else {}
        message = choice.get("message")
        message = message if isinstance(message, dict) else {}
        content = message.get("content")
        return RawCompletion(
            content=content if isinstance(content, str) else "",
            finish_reason=str(choice.get("finish_reason") or ""),
            usage=usage,
        )

    @staticmethod
    def _parse_usage(raw: Any, model: str) -> Usage:
        """Provider usage block; an unreadable one counts as unreported."""
        if not raw:
            return Usage()
        try:
            return Usage.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Ignoring malformed usage block from %s: %s", model, exc.errors()[:1])
            return Usage()

    async def send_with_retry(
        self,
        url: str,
        payload: Dict[str, Any],
        timeout_seconds: float,
        model: str = "",
    ) -> httpx.Response:
        """
        POST with bounded retries on 429 / 5xx / timeouts / connection errors.

        Returns
        -------
        httpx.Response
            The first 2xx response.

        Raises
        ------
        RateLimitedError
            Still rate limited after all retries.
        TransportError
            Any other failure.
        """
        http = await self._get_http()
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-Title": "cosmos-harness",
        }
        last_error: Optional[TransportError] = None

        for attempt in range(self.max_retries + 1):
            retry_after: Optional[float] = None
            try:
                resp = await http.post(
                    url, json=payload, headers=headers, timeout=httpx.Timeout(timeout_seconds),
                )
            except httpx.TimeoutException:
                last_error = TransportError(f"Request timed out after {timeout_seconds:.0f}s", model=model)
            except httpx.HTTPError as exc:
                last_error = TransportError(f"Connection error: {type(exc).__name__}", model=model)
            else:
                status = resp.status_code
                if status < 400:
                    return resp
                message = classify_provider_error(status, resp.text)
                if status == 429:
                    retry_after = parse_retry_after(resp.headers.get("retry-after"))
                    last_error = RateLimitedError(message, model=model, retry_after=retry_after)
                elif status >= 500:
                    last_error = TransportError(message, model=model, status_code=status)
                else:
                    raise TransportError(message, model=model, status_code=status)

            if attempt < self.max_retries:
                delay = retry_after if retry_after is not None else self.backoff_base_seconds * (2 ** attempt)
                logger.warning(
                    "Model %s attempt %d failed (%s), retrying in %.1fs",
                    model, attempt + 1, last_error.message, delay,
                )
                await self._sleep(delay)

        assert last_error is not None
        raise last_error
