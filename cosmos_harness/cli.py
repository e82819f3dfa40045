"""
One-shot CLI
============
Runs the implementation harness once against a sandbox directory.

Usage:
    cosmos-harness --sandbox ./repo --suggestion suggestion.yaml \
        [--config harness.yaml] [--report-dir ./reports] [--rollback-on-failure]

Input files are YAML (JSON is valid YAML). The suggestion file holds the
ValidatedSuggestion fields, optionally with a nested ``fix_context``; the
config file holds HarnessConfig overrides.

Exit status:
    0    Accepted
    2    RejectedByReview
    3    BudgetExhausted
    4    Unrecoverable (also: unreadable / invalid input files)
    130  AbortedByCaller (SIGINT)
"""
import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import ValidationError

from cosmos_harness.agents.orchestrator import HarnessController
from cosmos_harness.core.constants import EXIT_ABORTED_BY_CALLER, EXIT_UNRECOVERABLE
from cosmos_harness.llm.client import LLMClient
from cosmos_harness.models.harness_config import HarnessConfig
from cosmos_harness.models.run_diagnostics import FinalizationStatus
from cosmos_harness.models.run_result import ImplementationRunResult
from cosmos_harness.models.suggestion import FixContext, ValidatedSuggestion
from cosmos_harness.services.edit_applier import EditApplier, WriteError
from cosmos_harness.utils.cancellation import CancellationToken
from cosmos_harness.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


class InputError(Exception):
    """An input file could not be read or validated."""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cosmos-harness",
        description="Implement one validated suggestion inside a sandbox directory.",
    )
    parser.add_argument("--sandbox", required=True, help="Sandbox root; all edits stay beneath it")
    parser.add_argument("--suggestion", required=True, help="Suggestion file (YAML or JSON)")
    parser.add_argument("--config", help="HarnessConfig overrides (YAML or JSON)")
    parser.add_argument("--report-dir", help="Write the JSON diagnostics report beneath this directory")
    parser.add_argument(
        "--rollback-on-failure",
        action="store_true",
        help="Restore every touched file unless the run is accepted",
    )
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def _load_mapping(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except OSError as exc:
        raise InputError(f"Cannot read {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise InputError(f"Cannot parse {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InputError(f"{path} must contain a mapping, got {type(data).__name__}")
    return data


def load_inputs(args: argparse.Namespace) -> Tuple[ValidatedSuggestion, Optional[FixContext], HarnessConfig]:
    """
    Load and validate the suggestion, optional fix context, and config.

    Raises
    ------
    InputError
        If a file is unreadable, malformed, or fails validation.
    """
    raw = _load_mapping(args.suggestion)
    context_data = raw.pop("fix_context", None)
    config_data = _load_mapping(args.config) if args.config else {}
    if args.report_dir:
        config_data["report_dir"] = args.report_dir
    try:
        suggestion = ValidatedSuggestion.model_validate(raw)
        fix_context = FixContext.model_validate(context_data) if context_data else None
        config = HarnessConfig.model_validate(config_data)
    except ValidationError as exc:
        raise InputError(f"Invalid input: {exc}") from exc
    return suggestion, fix_context, config


def summarize(result: ImplementationRunResult, rolled_back: List[str]) -> Dict[str, Any]:
    diagnostics = result.diagnostics
    return {
        "run_id": diagnostics.run_id,
        "status": result.status.value,
        "exit_code": result.exit_code,
        "description": result.description,
        "applied_files": [{"path": f.path, "edit_kind": f.edit_kind.value} for f in result.applied_files],
        "rolled_back": rolled_back,
        "fail_reasons": [r.model_dump() for r in diagnostics.fail_reasons],
        "escalations_used": diagnostics.escalations_used,
        "syntax_fix_loops_used": diagnostics.syntax_fix_loops_used,
        "total_cost_usd": round(diagnostics.total_cost_usd, 6),
        "total_ms": diagnostics.total_ms,
        "report_path": diagnostics.report_path,
    }


async def run_once(
    sandbox: str,
    suggestion: ValidatedSuggestion,
    fix_context: Optional[FixContext],
    config: HarnessConfig,
    rollback_on_failure: bool = False,
    client=None,
    cancel: Optional[CancellationToken] = None,
) -> Tuple[ImplementationRunResult, List[str]]:
    """Run the harness once; optionally roll back a non-accepted run."""
    owns_client = client is None
    client = client or LLMClient()
    cancel = cancel or CancellationToken()
    _install_sigint(cancel)

    applier: Optional[EditApplier]
    try:
        applier = EditApplier(sandbox)
    except OSError:
        applier = None  # the controller reports the unusable sandbox

    try:
        controller = HarnessController(client, config=config)
        result = await controller.run(sandbox, suggestion, fix_context=fix_context, cancel=cancel, applier=applier)
    finally:
        if owns_client:
            await client.close()

    rolled_back: List[str] = []
    if rollback_on_failure and applier is not None and result.status is not FinalizationStatus.ACCEPTED:
        try:
            rolled_back = applier.rollback()
        except WriteError as exc:
            logger.error("Rollback failed: %s", exc)
    return result, rolled_back


def _install_sigint(cancel: CancellationToken) -> None:
    """Turn SIGINT into a graceful cancellation where the platform allows it."""
    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGINT, cancel.cancel, "interrupted (SIGINT)")
    except (NotImplementedError, RuntimeError, ValueError):
        pass


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=getattr(logging, args.log_level))

    try:
        suggestion, fix_context, config = load_inputs(args)
    except InputError as exc:
        logger.error("%s", exc)
        return EXIT_UNRECOVERABLE

    try:
        result, rolled_back = asyncio.run(
            run_once(args.sandbox, suggestion, fix_context, config, args.rollback_on_failure)
        )
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return EXIT_ABORTED_BY_CALLER

    print(json.dumps(summarize(result, rolled_back), indent=2))
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
