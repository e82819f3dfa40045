"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    OPENROUTER_API_KEY              — API key for the OpenAI-compatible gateway (overrides configured keys)
    OPENROUTER_BASE_URL             — Gateway base URL (default: https://openrouter.ai/api/v1)
    HARNESS_SPEED_MODEL             — Model id for the Speed tier
    HARNESS_SPEED_FALLBACK_MODELS   — Comma-separated failover models for the Speed tier
    HARNESS_BALANCED_MODEL          — Model id for the Balanced tier
    HARNESS_SMART_MODEL             — Model id for the Smart tier
    HARNESS_JSON_MODE_MODELS        — Comma-separated model ids that honour json_schema response_format
    HARNESS_HTTP_TIMEOUT_SECONDS    — Fixed per-call HTTP timeout (default: 120)
    HARNESS_LLM_MAX_RETRIES         — Retries after a transport failure / 429 / 5xx (default: 1)
    HARNESS_MAX_TOTAL_MS            — Wall-time deadline for a single run (default: 120000)
    HARNESS_MAX_TOTAL_COST_USD      — USD cap for a single run (default: 0.080)
    HARNESS_LOG_DIR                 — Directory for daily log files (unset = console only)
    HARNESS_RUN_RETENTION_SECONDS   — How long finished API runs stay pollable (default: 3600)
    HARNESS_MAX_RUNS                — Cap on runs kept in the API registry (default: 200)

Key Resolution:
    A non-empty OPENROUTER_API_KEY (after trim) always wins over a key the
    caller configured. Keys are validated only by shape ("sk-" prefix); no
    remote probe is made.
"""
import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")
OPENROUTER_BASE_URL = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")

# Model tiers
SPEED_MODEL = os.getenv("HARNESS_SPEED_MODEL", "openai/gpt-4o-mini")
SPEED_FALLBACK_MODELS = _csv(
    os.getenv("HARNESS_SPEED_FALLBACK_MODELS", "meta-llama/llama-3.3-70b-instruct")
)
BALANCED_MODEL = os.getenv("HARNESS_BALANCED_MODEL", "openai/gpt-4.1-mini")
SMART_MODEL = os.getenv("HARNESS_SMART_MODEL", "anthropic/claude-sonnet-4")
JSON_MODE_MODELS = frozenset(_csv(os.getenv(
    "HARNESS_JSON_MODE_MODELS",
    "openai/gpt-4o-mini,openai/gpt-4.1-mini,openai/gpt-4.1,google/gemini-2.0-flash-001",
)))

# Shared output cap for every tier
MAX_OUTPUT_TOKENS = 16384

# HTTP
HTTP_TIMEOUT_SECONDS = float(os.getenv("HARNESS_HTTP_TIMEOUT_SECONDS", 120))
HTTP_MAX_CONNECTIONS = int(os.getenv("HARNESS_HTTP_MAX_CONNECTIONS", 20))
HTTP_MAX_KEEPALIVE = int(os.getenv("HARNESS_HTTP_MAX_KEEPALIVE", 10))
LLM_MAX_RETRIES = int(os.getenv("HARNESS_LLM_MAX_RETRIES", 1))
LLM_BACKOFF_BASE_SECONDS = float(os.getenv("HARNESS_LLM_BACKOFF_BASE_SECONDS", 2.0))

# Model health cooldown
MODEL_COOLDOWN_THRESHOLD = int(os.getenv("MODEL_COOLDOWN_THRESHOLD", 3))
MODEL_COOLDOWN_SKIP_COUNT = int(os.getenv("MODEL_COOLDOWN_SKIP_COUNT", 5))

# Run budget defaults
MAX_TOTAL_MS = int(os.getenv("HARNESS_MAX_TOTAL_MS", 120_000))
MAX_TOTAL_COST_USD = float(os.getenv("HARNESS_MAX_TOTAL_COST_USD", 0.080))
RESERVE_INDEPENDENT_REVIEW_MS = int(os.getenv("HARNESS_RESERVE_REVIEW_MS", 8000))
RESERVE_INDEPENDENT_REVIEW_COST_USD = float(os.getenv("HARNESS_RESERVE_REVIEW_COST_USD", 0.0015))

# API run registry
RUN_RETENTION_SECONDS = float(os.getenv("HARNESS_RUN_RETENTION_SECONDS", 3600))
MAX_RUNS = int(os.getenv("HARNESS_MAX_RUNS", 200))

# Logging
LOG_DIR = os.getenv("HARNESS_LOG_DIR")


def resolve_api_key(configured: Optional[str] = None) -> Optional[str]:
    """
    Return the API key to use for LLM calls.

    The environment variable wins when it is non-empty after trimming;
    otherwise the caller-configured key is used.

    Parameters
    ----------
    configured : str or None
        Key supplied by the caller (e.g. from a settings store).

    Returns
    -------
    str or None
        Trimmed key, or None when neither source has one.
    """
    env_key = os.getenv("OPENROUTER_API_KEY", "")
    if env_key.strip():
        return env_key.strip()
    if configured and configured.strip():
        return configured.strip()
    return None


def is_valid_api_key(key: Optional[str]) -> bool:
    """A key is valid iff it begins with ``sk-`` after trimming."""
    return bool(key) and key.strip().startswith("sk-")
