"""
Harness API Tests
=================
POST /implement, GET /runs/{run_id}, POST /runs/{run_id}/cancel.
The LLM client dependency is overridden, so there are no real API calls.
TestClient runs background tasks before returning, so a run has finished
by the time the POST returns.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from cosmos_harness.api.implement import RUNS, RunRecord, evict_finished_runs, get_llm_client
from cosmos_harness.llm.client import CallDiagnostics, StructuredResult
from cosmos_harness.llm.router import ModelRouter, ModelTier
from cosmos_harness.models.fix_result import GenerationResponse
from cosmos_harness.models.review_finding import ReviewResponse
from cosmos_harness.models.usage import Usage
from main import app


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _structured(data):
    return StructuredResult(
        data=data,
        usage=Usage(cost_usd=0.001),
        diagnostics=CallDiagnostics(model="fake-model", tier=ModelTier.SMART),
    )


def _fake_client(available=True):
    client = MagicMock()
    client.router = ModelRouter()
    client.is_available.return_value = available
    client.call_structured = AsyncMock(side_effect=[
        _structured(GenerationResponse.model_validate({
            "description": "Use addition",
            "files": [{"kind": "edits", "path": "app.py",
                       "edits": [{"old_string": "return a - b", "new_string": "return a + b"}]}],
        })),
        _structured(ReviewResponse(summary="looks right")),
    ])
    return client


def _payload(sandbox_root):
    return {
        "sandbox_root": str(sandbox_root),
        "suggestion": {
            "fingerprint": "fp-1",
            "summary": "add() subtracts",
            "files": ["app.py"],
        },
    }


@pytest.fixture
def sandbox(tmp_path):
    (tmp_path / "app.py").write_text("def add(a, b):\n    return a - b\n", encoding="utf-8")
    return tmp_path


@pytest.fixture
def api():
    RUNS.clear()
    fake = _fake_client()
    app.dependency_overrides[get_llm_client] = lambda: fake
    yield TestClient(app), fake
    app.dependency_overrides.clear()
    RUNS.clear()


# ===================================================================
# Tests
# ===================================================================
def test_health():
    assert TestClient(app).get("/health").json() == {"status": "ok"}


def test_implement_runs_in_background_and_reports_status(api, sandbox):
    client, fake = api
    resp = client.post("/implement", json=_payload(sandbox))
    assert resp.status_code == 202
    run_id = resp.json()["run_id"]
    assert resp.json()["status"] == "running"

    status = client.get(f"/runs/{run_id}")
    assert status.status_code == 200
    body = status.json()
    assert body["status"] == "accepted"
    assert body["exit_code"] == 0
    assert body["stage"] == "done"
    assert body["progress"] == 1.0
    assert body["result"]["diagnostics"]["run_id"] == run_id
    assert (sandbox / "app.py").read_text(encoding="utf-8").endswith("a + b\n")
    assert fake.call_structured.await_count == 2


def test_implement_unavailable_llm_is_unrecoverable(sandbox):
    RUNS.clear()
    fake = _fake_client(available=False)
    app.dependency_overrides[get_llm_client] = lambda: fake
    try:
        client = TestClient(app)
        run_id = client.post("/implement", json=_payload(sandbox)).json()["run_id"]
        body = client.get(f"/runs/{run_id}").json()
    finally:
        app.dependency_overrides.clear()
        RUNS.clear()

    assert body["status"] == "unrecoverable"
    assert body["exit_code"] == 4
    assert body["result"]["diagnostics"]["fail_reasons"][0]["code"] == "llm_unavailable"
    fake.call_structured.assert_not_awaited()


def test_missing_sandbox_returns_400(api, tmp_path):
    client, _ = api
    resp = client.post("/implement", json=_payload(tmp_path / "nope"))
    assert resp.status_code == 400
    assert RUNS == {}


def test_invalid_suggestion_returns_422(api, sandbox):
    client, _ = api
    payload = _payload(sandbox)
    payload["suggestion"]["files"] = []
    assert client.post("/implement", json=payload).status_code == 422


def test_unknown_run_returns_404(api):
    client, _ = api
    assert client.get("/runs/missing").status_code == 404
    assert client.post("/runs/missing/cancel").status_code == 404


def test_cancel_after_finish_is_a_no_op(api, sandbox):
    client, _ = api
    run_id = client.post("/implement", json=_payload(sandbox)).json()["run_id"]
    resp = client.post(f"/runs/{run_id}/cancel")
    assert resp.status_code == 200
    assert resp.json() == {"run_id": run_id, "cancelled": False, "status": "accepted"}
    assert RUNS[run_id].cancel.is_cancelled is False


# ===================================================================
# Registry retention
# ===================================================================
def _record(run_id, finished_at=None):
    record = RunRecord(run_id=run_id, sandbox_root="/tmp")
    record.finished_at = finished_at
    if finished_at is not None:
        record.status = "accepted"
    RUNS[run_id] = record
    return record


def test_expired_finished_runs_are_evicted_on_new_run(api, sandbox):
    client, _ = api
    _record("stale", finished_at=1.0)
    _record("still-running")

    run_id = client.post("/implement", json=_payload(sandbox)).json()["run_id"]

    assert "stale" not in RUNS
    assert "still-running" in RUNS
    assert client.get("/runs/stale").status_code == 404
    assert client.get(f"/runs/{run_id}").json()["status"] == "accepted"


def test_registry_cap_evicts_oldest_finished_first(monkeypatch):
    RUNS.clear()
    monkeypatch.setattr("cosmos_harness.api.implement.MAX_RUNS", 3)
    now = 10_000.0
    _record("old", finished_at=now - 30)
    _record("running")
    _record("newer", finished_at=now - 10)
    try:
        assert evict_finished_runs(now) == 1
        assert set(RUNS) == {"running", "newer"}
        # Under the cap and nothing expired: nothing to do
        assert evict_finished_runs(now) == 0
    finally:
        RUNS.clear()


def test_running_records_survive_even_over_the_cap(monkeypatch):
    RUNS.clear()
    monkeypatch.setattr("cosmos_harness.api.implement.MAX_RUNS", 1)
    _record("a")
    _record("b")
    try:
        assert evict_finished_runs(10_000.0) == 0
        assert set(RUNS) == {"a", "b"}
    finally:
        RUNS.clear()
