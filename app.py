"""
FastAPI application — REST API for Delivery Pilot.

Endpoints:
  POST /pipeline/start            — Start a delivery pipeline run
  GET  /pipeline/variants         — List pipeline variants and their stages
  GET  /pipeline/runs             — List pipeline runs
  GET  /pipeline/{run_id}         — Get pipeline run status/results
  GET  /pipeline/{run_id}/stages  — Get the stage results of a run
  GET  /health                    — Health check
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

import config
from temporalio.client import Client
from features.ledger import db as ledger_db
from features.ledger.tracker import list_run_logs, load_run_log
from workflows.executor import new_run_id
from workflows.pipeline import DeliveryPipeline
from workflows.runner import run_pipeline
from workflows.stages import VARIANTS, PipelineSettings, parse_policy, stage_plan

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger(__name__)

temporal_client: Client | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global temporal_client
    # Initialize Postgres
    if config.DATABASE_URL:
        try:
            ledger_db.init_db()
            log.info("Postgres database initialized")
        except Exception as e:
            log.warning("Could not connect to Postgres: %s (runs will be kept as JSON logs only)", e)
    # Connect to Temporal
    try:
        temporal_client = await Client.connect(config.TEMPORAL_HOST, namespace=config.TEMPORAL_NAMESPACE)
        log.info("Connected to Temporal at %s", config.TEMPORAL_HOST)
    except Exception as e:
        log.warning("Could not connect to Temporal: %s (pipeline will run in-process)", e)
        temporal_client = None
    yield


app = FastAPI(
    title="Delivery Pilot",
    description="Build, test, ship and verify pipeline with Temporal orchestration",
    version="1.0.0",
    lifespan=lifespan,
)


class PipelineStartRequest(BaseModel):
    variant: str = "full"
    tests_policy: str | None = None


class PipelineStartResponse(BaseModel):
    run_id: str
    status: str
    message: str
    outcome: str | None = None


# ── Health ────────────────────────────────────────────────────────────

@app.get("/health")
def health():
    return {
        "status": "ok",
        "service": "delivery-pilot",
        "temporal_connected": temporal_client is not None,
    }


# ── Pipeline ──────────────────────────────────────────────────────────

@app.get("/pipeline/variants")
def list_variants():
    """List the pipeline variants with their stage plans."""
    settings = PipelineSettings.from_config()
    return {
        "variants": [
            {
                "name": v.name,
                "description": v.description,
                "stages": stage_plan(v.name, settings.tests_policy, include_verify=bool(settings.service_url)),
            }
            for v in VARIANTS.values()
        ]
    }


@app.post("/pipeline/start", response_model=PipelineStartResponse)
async def start_pipeline(req: PipelineStartRequest):
    """Start a delivery pipeline run."""
    if req.variant not in VARIANTS:
        raise HTTPException(status_code=400, detail=f"Unknown variant: {req.variant}")
    settings = PipelineSettings.from_config()
    if req.tests_policy:
        try:
            settings = replace(settings, tests_policy=parse_policy(req.tests_policy))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    run_id = new_run_id()
    if temporal_client:
        await temporal_client.start_workflow(
            DeliveryPipeline.run,
            {"run_id": run_id, "variant": req.variant, "tests_policy": settings.tests_policy.value},
            id=run_id,
            task_queue=config.TEMPORAL_TASK_QUEUE,
        )
        return PipelineStartResponse(
            run_id=run_id,
            status="started",
            message=f"Pipeline started via Temporal. Workflow ID: {run_id}",
        )

    # Run in-process (no Temporal server)
    loop = asyncio.get_running_loop()
    run, _ = await loop.run_in_executor(
        None, lambda: run_pipeline(req.variant, settings=settings, run_id=run_id),
    )
    return PipelineStartResponse(
        run_id=run.run_id,
        status="completed",
        message=f"Pipeline ran in-process (no Temporal). Run ID: {run.run_id}",
        outcome=run.outcome.value,
    )


@app.get("/pipeline/runs")
async def list_pipeline_runs(outcome: str | None = None, limit: int = 50):
    """List pipeline runs."""
    # Try Postgres first
    if config.DATABASE_URL:
        try:
            runs = ledger_db.list_pipeline_runs(limit=limit, outcome=outcome)
            return {"runs": [_serialize(r) for r in runs]}
        except Exception as e:
            log.warning("Listing runs from Postgres failed: %s", e)

    # Fallback: JSON files
    runs = list_run_logs()
    if outcome:
        runs = [r for r in runs if r.get("outcome") == outcome]
    return {"runs": runs[:limit]}


@app.get("/pipeline/{run_id}")
async def get_pipeline_run(run_id: str):
    """Get the results of a pipeline run."""
    # Check Postgres first
    if config.DATABASE_URL:
        try:
            row = ledger_db.get_pipeline_run(run_id)
            if row:
                row["stages"] = ledger_db.get_stage_results(run_id)
                row["stage_summary"] = ledger_db.get_stage_summary(run_id)
                return _serialize(row)
        except Exception as e:
            log.warning("Fetching run %s from Postgres failed: %s", run_id, e)

    # Fallback: check local log file
    record = load_run_log(run_id)
    if record is not None:
        return record

    # Check Temporal if connected
    if temporal_client:
        try:
            handle = temporal_client.get_workflow_handle(run_id)
            desc = await handle.describe()
            result = None
            if desc.status.name == "COMPLETED":
                result = await handle.result()
            return {
                "run_id": run_id,
                "temporal_status": desc.status.name,
                "result": result,
            }
        except Exception:
            raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")

    raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")


@app.get("/pipeline/{run_id}/stages")
async def get_stage_results(run_id: str, status: str | None = None):
    """Get the stage results of a run, optionally filtered by status."""
    if config.DATABASE_URL:
        try:
            stages = ledger_db.get_stage_results(run_id, status=status)
            if stages:
                return {"run_id": run_id, "stages": [_serialize(s) for s in stages], "count": len(stages)}
        except Exception as e:
            log.warning("Fetching stages of %s from Postgres failed: %s", run_id, e)

    record = load_run_log(run_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")
    stages = [s for s in record.get("stages", []) if not status or s.get("status") == status]
    return {"run_id": run_id, "stages": stages, "count": len(stages)}


def _serialize(obj: Any) -> Any:
    """Make a dict JSON-serializable (handle datetimes, Decimals, etc)."""
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_serialize(v) for v in obj]
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    return obj
