"""REST API without Temporal or Postgres: variants, run lookups, validation."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

import app as api
import config
from features.ledger.tracker import save_run_log
from models.schemas import FailurePolicy, Outcome, PipelineRun, StageResult, StageStatus


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "PIPELINE_RUNS_DIR", tmp_path / "runs")
    monkeypatch.setattr(config, "DATABASE_URL", "")
    monkeypatch.setattr(api, "temporal_client", None)
    # no context manager: the lifespan (Temporal connect) is not entered
    return TestClient(api.app)


def _saved_run(run_id: str, outcome: Outcome) -> PipelineRun:
    run = PipelineRun(
        run_id=run_id,
        job_name="petclinic-delivery",
        variant="local",
        results=(
            StageResult("Build", 1, FailurePolicy.FATAL, StageStatus.PASSED),
            StageResult("Run Tests", 2, FailurePolicy.TOLERATED, StageStatus.FAILED, error="TestFailure"),
        ),
        outcome=outcome,
        started_at="2026-10-17T10:00:00+00:00",
        completed_at="2026-10-17T10:05:00+00:00",
    )
    save_run_log(run, runs_dir=config.PIPELINE_RUNS_DIR)
    return run


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["temporal_connected"] is False


def test_variants_listed_with_stage_plans(client):
    variants = {v["name"]: v for v in client.get("/pipeline/variants").json()["variants"]}
    assert set(variants) == {"full", "local", "release"}
    assert variants["local"]["stages"][0]["name"] == "Build"


def test_unknown_variant_rejected(client):
    resp = client.post("/pipeline/start", json={"variant": "nightly"})
    assert resp.status_code == 400


def test_unknown_tests_policy_rejected(client):
    resp = client.post("/pipeline/start", json={"variant": "local", "tests_policy": "sometimes"})
    assert resp.status_code == 400


def test_unknown_run_is_404(client):
    assert client.get("/pipeline/run-missing").status_code == 404
    assert client.get("/pipeline/run-missing/stages").status_code == 404


def test_saved_run_is_served_from_json_log(client):
    _saved_run("run-a", Outcome.UNSTABLE)

    body = client.get("/pipeline/run-a").json()
    assert body["outcome"] == "unstable"
    assert [s["stage_name"] for s in body["stages"]] == ["Build", "Run Tests"]

    failed = client.get("/pipeline/run-a/stages", params={"status": "failed"}).json()
    assert failed["count"] == 1
    assert failed["stages"][0]["stage_name"] == "Run Tests"


def test_runs_listing_filters_by_outcome(client):
    _saved_run("run-a", Outcome.UNSTABLE)
    _saved_run("run-b", Outcome.SUCCESS)

    runs = client.get("/pipeline/runs").json()["runs"]
    assert {r["run_id"] for r in runs} == {"run-a", "run-b"}

    only = client.get("/pipeline/runs", params={"outcome": "success"}).json()["runs"]
    assert [r["run_id"] for r in only] == ["run-b"]
