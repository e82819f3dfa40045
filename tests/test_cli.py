"""
CLI Tests
=========
Input loading, exit codes and --rollback-on-failure.
LLMClient is patched in cosmos_harness.cli, so there are no real API calls.
"""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cosmos_harness.cli import InputError, build_parser, load_inputs, main, run_once
from cosmos_harness.llm.client import CallDiagnostics, StructuredResult
from cosmos_harness.llm.router import ModelRouter, ModelTier
from cosmos_harness.models.fix_result import GenerationResponse
from cosmos_harness.models.harness_config import HarnessConfig
from cosmos_harness.models.review_finding import ReviewResponse
from cosmos_harness.models.run_diagnostics import FinalizationStatus
from cosmos_harness.models.suggestion import ValidatedSuggestion
from cosmos_harness.models.usage import Usage

ORIGINAL = "def add(a, b):\n    return a - b\n"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _structured(data):
    return StructuredResult(
        data=data,
        usage=Usage(cost_usd=0.001),
        diagnostics=CallDiagnostics(model="fake-model", tier=ModelTier.SMART),
    )


def _generation(new_line):
    return _structured(GenerationResponse.model_validate({
        "files": [{"kind": "edits", "path": "app.py",
                   "edits": [{"old_string": "return a - b", "new_string": new_line}]}],
    }))


def _fake_client(*responses):
    client = MagicMock()
    client.router = ModelRouter()
    client.is_available.return_value = True
    client.call_structured = AsyncMock(side_effect=list(responses))
    client.close = AsyncMock()
    return client


@pytest.fixture
def sandbox(tmp_path):
    root = tmp_path / "repo"
    root.mkdir()
    (root / "app.py").write_text(ORIGINAL, encoding="utf-8")
    return root


@pytest.fixture
def suggestion_file(tmp_path):
    path = tmp_path / "suggestion.yaml"
    path.write_text(
        "fingerprint: fp-1\n"
        "summary: add() subtracts\n"
        "files:\n"
        "  - app.py\n"
        "fix_context:\n"
        "  problem_summary: add() subtracts\n",
        encoding="utf-8",
    )
    return path


# ===================================================================
# Input loading
# ===================================================================
def test_load_inputs_reads_yaml_and_fix_context(tmp_path, sandbox, suggestion_file):
    config_file = tmp_path / "harness.yaml"
    config_file.write_text("max_auto_syntax_fix_loops: 0\nblocking_severities: [HIGH]\n", encoding="utf-8")
    args = build_parser().parse_args([
        "--sandbox", str(sandbox), "--suggestion", str(suggestion_file),
        "--config", str(config_file), "--report-dir", str(tmp_path / "reports"),
    ])
    suggestion, fix_context, config = load_inputs(args)

    assert suggestion.files == ["app.py"]
    assert fix_context.problem_summary == "add() subtracts"
    assert config.max_auto_syntax_fix_loops == 0
    assert config.blocking_severities == {"high"}
    assert config.report_dir == str(tmp_path / "reports")


def test_load_inputs_accepts_json(tmp_path, sandbox):
    path = tmp_path / "suggestion.json"
    path.write_text(json.dumps({"fingerprint": "f", "summary": "s", "files": ["app.py"]}), encoding="utf-8")
    args = build_parser().parse_args(["--sandbox", str(sandbox), "--suggestion", str(path)])
    suggestion, fix_context, config = load_inputs(args)
    assert suggestion.fingerprint == "f"
    assert fix_context is None
    assert config == HarnessConfig()


@pytest.mark.parametrize("content", [
    "- just\n- a list\n",
    "fingerprint: f\nsummary: s\nfiles: []\n",
    "fingerprint: [unclosed\n",
])
def test_invalid_suggestion_raises_input_error(tmp_path, sandbox, content):
    path = tmp_path / "bad.yaml"
    path.write_text(content, encoding="utf-8")
    args = build_parser().parse_args(["--sandbox", str(sandbox), "--suggestion", str(path)])
    with pytest.raises(InputError):
        load_inputs(args)


def test_main_returns_4_on_missing_input(tmp_path, sandbox):
    with patch("cosmos_harness.cli.setup_logging"):
        code = main(["--sandbox", str(sandbox), "--suggestion", str(tmp_path / "missing.yaml")])
    assert code == 4


# ===================================================================
# Runs
# ===================================================================
def test_main_prints_summary_and_exit_code(sandbox, suggestion_file, capsys):
    fake = _fake_client(_generation("return a + b"), _structured(ReviewResponse(summary="ok")))
    with patch("cosmos_harness.cli.setup_logging"), \
         patch("cosmos_harness.cli.LLMClient", return_value=fake):
        code = main(["--sandbox", str(sandbox), "--suggestion", str(suggestion_file)])

    assert code == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["status"] == "accepted"
    assert summary["applied_files"] == [{"path": "app.py", "edit_kind": "modify"}]
    assert summary["rolled_back"] == []
    fake.close.assert_awaited_once()


def test_rollback_on_failure_restores_files(sandbox):
    fake = _fake_client(_generation("return (a + b"))
    suggestion = ValidatedSuggestion(fingerprint="f", summary="s", files=["app.py"])
    config = HarnessConfig(max_auto_syntax_fix_loops=0)

    result, rolled_back = asyncio.run(
        run_once(str(sandbox), suggestion, None, config, rollback_on_failure=True, client=fake)
    )

    assert result.status is FinalizationStatus.REJECTED_BY_REVIEW
    assert rolled_back == ["app.py"]
    assert (sandbox / "app.py").read_text(encoding="utf-8") == ORIGINAL
    # A caller-supplied client is not closed by run_once
    fake.close.assert_not_awaited()


def test_failed_run_is_kept_without_rollback_flag(sandbox):
    fake = _fake_client(_generation("return (a + b"))
    suggestion = ValidatedSuggestion(fingerprint="f", summary="s", files=["app.py"])

    result, rolled_back = asyncio.run(
        run_once(str(sandbox), suggestion, None, HarnessConfig(max_auto_syntax_fix_loops=0), client=fake)
    )

    assert result.exit_code == 2
    assert rolled_back == []
    assert "return (a + b" in (sandbox / "app.py").read_text(encoding="utf-8")


def test_missing_sandbox_is_unrecoverable(tmp_path):
    fake = _fake_client()
    suggestion = ValidatedSuggestion(fingerprint="f", summary="s", files=["app.py"])
    result, rolled_back = asyncio.run(
        run_once(str(tmp_path / "nope"), suggestion, None, HarnessConfig(), rollback_on_failure=True, client=fake)
    )
    assert result.status is FinalizationStatus.UNRECOVERABLE
    assert rolled_back == []
    fake.call_structured.assert_not_awaited()
