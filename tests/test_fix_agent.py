"""
Fix Agent Unit Tests
====================
All tests mock the LLM, so there are no real API calls.

Covers:
    - Generation prepares changes without writing
    - One edit-repair prompt after an unappliable edit list, then failure
    - Budget refusal of the repair call
    - Fix pass: per-file application, per-file failures, budget stop
    - Large files: excerpt prompt, whole-file replace rejected
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from cosmos_harness.agents.fix_agent import FixAgent
from cosmos_harness.llm.client import CallDiagnostics, StructuredResult
from cosmos_harness.llm.errors import SchemaViolationError
from cosmos_harness.llm.router import ModelTier
from cosmos_harness.models.fix_result import FixResponse, GenerationResponse
from cosmos_harness.models.review_finding import ReviewFinding
from cosmos_harness.models.suggestion import ValidatedSuggestion
from cosmos_harness.models.usage import Usage
from cosmos_harness.services.budget_manager import BudgetRefused
from cosmos_harness.services.edit_applier import EditApplier
from cosmos_harness.utils.edit_ops import EditApplyError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _ok(data, cost=0.001):
    return StructuredResult(
        data=data,
        usage=Usage(cost_usd=cost),
        diagnostics=CallDiagnostics(model="smart-model", tier=ModelTier.SMART),
    )


def _client(*responses):
    client = MagicMock()
    client.call_structured = AsyncMock(side_effect=list(responses))
    return client


def _edits(path, old, new):
    return {"kind": "edits", "path": path, "edits": [{"old_string": old, "new_string": new}]}


def _generation(*files):
    return _ok(GenerationResponse(description="change", files=list(files)))


def _fix(change):
    return _ok(FixResponse(description="fix", change=change))


def _suggestion(files=("calc.py",)):
    return ValidatedSuggestion(fingerprint="fp", summary="Use addition", files=list(files))


def _finding(file="calc.py", title="Wrong operator", line=None):
    return ReviewFinding(file=file, severity="high", title=title, line=line, rationale="because")


@pytest.fixture
def sandbox(tmp_path):
    (tmp_path / "calc.py").write_text("def add(a, b):\n    return a - b\n", encoding="utf-8")
    (tmp_path / "util.py").write_text("def one():\n    return 1\n", encoding="utf-8")
    return tmp_path


def _prompts(client):
    return [call.args[2] for call in client.call_structured.call_args_list]


# ===================================================================
# generate()
# ===================================================================
def test_generate_prepares_without_writing(sandbox):
    client = _client(_generation(_edits("calc.py", "a - b", "a + b")))
    applier = EditApplier(sandbox)
    outcome = asyncio.run(FixAgent(client).generate(applier, _suggestion()))

    assert outcome.calls == 1
    assert outcome.description == "change"
    assert outcome.prepared[0].new_content == "def add(a, b):\n    return a + b\n"
    assert (sandbox / "calc.py").read_text(encoding="utf-8").endswith("a - b\n")
    assert "FILE: calc.py" in _prompts(client)[0]


def test_generate_repairs_unappliable_edits_once(sandbox):
    client = _client(
        _generation(_edits("calc.py", "a minus b", "a + b")),
        _generation(_edits("calc.py", "a - b", "a + b")),
    )
    records = []
    outcome = asyncio.run(FixAgent(client).generate(
        EditApplier(sandbox), _suggestion(), on_call=records.append, may_spend=lambda stage: True,
    ))

    assert outcome.calls == 2
    assert outcome.usage.cost_usd == pytest.approx(0.002)
    assert [r.stage for r in records] == ["generation", "generation_repair"]
    repair_prompt = _prompts(client)[1]
    assert "could not be applied safely" in repair_prompt
    assert "Searched for: 'a minus b'" in repair_prompt


def test_generate_second_edit_failure_is_final(sandbox):
    bad = _generation(_edits("calc.py", "nope", "x"))
    client = _client(bad, _generation(_edits("calc.py", "still nope", "x")))
    with pytest.raises(EditApplyError):
        asyncio.run(FixAgent(client).generate(EditApplier(sandbox), _suggestion()))
    assert client.call_structured.await_count == 2


def test_generate_repair_refused_by_budget(sandbox):
    client = _client(_generation(_edits("calc.py", "nope", "x")))
    with pytest.raises(BudgetRefused) as exc_info:
        asyncio.run(FixAgent(client).generate(
            EditApplier(sandbox), _suggestion(), may_spend=lambda stage: False,
        ))
    assert exc_info.value.stage == "generation_repair"
    assert client.call_structured.await_count == 1


def test_generate_includes_previously_touched_files(sandbox):
    applier = EditApplier(sandbox)
    asyncio.run(applier.commit(applier.prepare([
        GenerationResponse.model_validate({"files": [_edits("util.py", "return 1", "return 2")]}).files[0],
    ])))
    client = _client(_generation(_edits("calc.py", "a - b", "a + b")))
    asyncio.run(FixAgent(client).generate(applier, _suggestion(), feedback=["util.py: oops"]))

    prompt = _prompts(client)[0]
    assert "FILE: util.py\n```\ndef one():\n    return 2\n" in prompt
    assert "- util.py: oops" in prompt


# ===================================================================
# fix_findings()
# ===================================================================
def test_fix_pass_applies_each_file(sandbox):
    client = _client(
        _fix(_edits("calc.py", "a - b", "a + b")),
        # Path in the response is ignored: the pass always edits the file under review
        _fix(_edits("elsewhere.py", "return 1", "return 1.0")),
    )
    applier = EditApplier(sandbox)
    grouped = {"calc.py": [_finding()], "util.py": [_finding("util.py", "Should be float")]}
    outcome = asyncio.run(FixAgent(client).fix_findings(grouped, None, applier))

    assert [a.path for a in outcome.applied] == ["calc.py", "util.py"]
    assert outcome.fixed_titles == ["Wrong operator", "Should be float"]
    assert outcome.failed_files == {}
    assert (sandbox / "util.py").read_text(encoding="utf-8") == "def one():\n    return 1.0\n"
    assert not (sandbox / "elsewhere.py").exists()


def test_fix_pass_continues_after_file_failure(sandbox):
    client = _client(
        SchemaViolationError("Response does not match schema"),
        _fix(_edits("util.py", "return 1", "return 2")),
    )
    grouped = {"calc.py": [_finding()], "util.py": [_finding("util.py")]}
    outcome = asyncio.run(FixAgent(client).fix_findings(grouped, None, EditApplier(sandbox)))

    assert list(outcome.failed_files) == ["calc.py"]
    assert [a.path for a in outcome.applied] == ["util.py"]


def test_fix_pass_stops_when_budget_refuses(sandbox):
    client = _client()
    grouped = {"calc.py": [_finding()]}
    outcome = asyncio.run(FixAgent(client).fix_findings(
        grouped, None, EditApplier(sandbox), may_spend=lambda stage: False,
    ))

    assert outcome.stopped_by_budget is True
    assert outcome.applied == []
    client.call_structured.assert_not_awaited()


def test_fix_pass_records_missing_file(sandbox):
    outcome = asyncio.run(FixAgent(_client()).fix_findings(
        {"gone.py": [_finding("gone.py")]}, None, EditApplier(sandbox),
    ))
    assert outcome.failed_files == {"gone.py": "file no longer exists"}


def test_large_file_gets_excerpt_and_replace_is_rejected(tmp_path):
    body = "".join(f"value_{i} = {i}\n" for i in range(400))
    (tmp_path / "big.py").write_text(body, encoding="utf-8")
    client = _client(
        _fix({"kind": "replace", "path": "big.py", "content": "value_200 = 0\n"}),
        _fix(_edits("big.py", "value_200 = 200", "value_200 = 0")),
    )
    agent = FixAgent(client, max_file_chars=500)
    outcome = asyncio.run(agent.fix_findings(
        {"big.py": [_finding("big.py", "Bad constant", line=201)]}, None, EditApplier(tmp_path),
    ))

    first, second = _prompts(client)
    assert "FILE: big.py (EXCERPT)" in first
    assert "value_200 = 200" in first
    assert "value_0 = 0\n" not in first
    assert "did not include any edits" in second
    assert "excerpt above" in second

    content = (tmp_path / "big.py").read_text(encoding="utf-8")
    assert "value_200 = 0\n" in content
    assert content.count("\n") == 400
    assert [a.path for a in outcome.applied] == ["big.py"]
