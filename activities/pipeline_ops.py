"""
Activities: Pipeline Operations — the units the Temporal workflow schedules.

One activity per stage execution, plus planning and finalization. Each call
builds its collaborators from config, so any worker can pick up any stage.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from temporalio import activity

from features.ledger.tracker import RunTracker, save_run_log
from models.schemas import Outcome, PipelineRun, StageContext, StageResult, StageStatus
from workflows.executor import execute_stage
from workflows.runner import build_dispatcher
from workflows.stages import (
    DeliveryStages,
    PipelineServices,
    PipelineSettings,
    build_stages,
    parse_policy,
    stage_plan,
)

log = logging.getLogger(__name__)


def _settings(request: dict) -> PipelineSettings:
    settings = PipelineSettings.from_config()
    if request.get("tests_policy"):
        settings = replace(settings, tests_policy=parse_policy(request["tests_policy"]))
    return settings


@activity.defn
def plan_stages(request: dict) -> list[dict]:
    """Resolve the variant into its ordered stage plan and register the run."""
    settings = _settings(request)
    variant = request.get("variant", "full")
    plan = stage_plan(variant, settings.tests_policy, include_verify=bool(settings.service_url))
    RunTracker(request["run_id"], job_name=settings.job_name, variant=variant).begin(request["started_at"])
    return plan


def _portable(artifacts: dict) -> dict:
    """Artifacts that survive the trip between activities (JSON-compatible values only)."""
    return {
        key: value for key, value in artifacts.items()
        if isinstance(value, (str, int, float, bool, list, dict)) or value is None
    }


@activity.defn
def run_stage(request: dict) -> dict:
    """Execute one stage (body + post-action) and report its result.

    Never raises for a stage failure: the result carries the status and the
    workflow applies the stage's policy. Artifacts left by earlier stages come
    in with the request and go back out, updated, with the result.
    """
    settings = _settings(request)
    services = PipelineServices.from_config()
    stages = build_stages(request.get("variant", "full"), DeliveryStages(services, settings))
    stage = next(s for s in stages if s.ordinal == request["ordinal"])

    context = StageContext(
        run_id=request["run_id"],
        job_name=settings.job_name,
        workspace=settings.project_dir,
        artifacts=dict(request.get("artifacts") or {}),
    )
    result = execute_stage(stage, context)
    RunTracker(request["run_id"], job_name=settings.job_name, variant=request.get("variant", "full")).record(result)
    return {
        "result": result.to_dict(),
        "unstable_reasons": list(context.unstable_reasons),
        "artifacts": _portable(context.artifacts),
    }


@activity.defn
def finalize_run(record: dict) -> dict:
    """Persist the final run, write the run log and dispatch the outcome."""
    settings = _settings(record)
    run = PipelineRun(
        run_id=record["run_id"],
        job_name=settings.job_name,
        variant=record.get("variant", "full"),
        results=tuple(StageResult.from_dict(r) for r in record["stages"]),
        outcome=Outcome(record["outcome"]),
        started_at=record["started_at"],
        completed_at=record["completed_at"],
        duration_sec=record.get("duration_sec", 0.0),
        unstable_reasons=tuple(record.get("unstable_reasons", [])),
        log_url=settings.log_url(record["run_id"]),
    )
    tracker = RunTracker(run.run_id, job_name=run.job_name, variant=run.variant)
    for result in run.results:
        if result.status == StageStatus.SKIPPED:
            tracker.record(result)
    tracker.finish(run)
    log_file = None
    try:
        log_file = save_run_log(run, runs_dir=settings.runs_dir)
    except OSError as e:
        log.error("Could not write run log for %s to %s: %s", run.run_id, settings.runs_dir, e)

    services = PipelineServices.from_config()
    context = StageContext(run_id=run.run_id, job_name=run.job_name, workspace=settings.project_dir)
    captured = (record.get("artifacts") or {}).get("captured_reports")
    if captured is None:
        reports_dir = settings.runs_dir / run.run_id / "reports"
        captured = [str(p) for p in sorted(reports_dir.glob("TEST-*.xml"))] if reports_dir.is_dir() else []
    context.artifacts["captured_reports"] = captured
    report = build_dispatcher(services, settings, context).finalize(run)
    return {
        "log_file": log_file,
        "log_url": run.log_url,
        "notified": report.notified,
        "notification_error": report.notification_error,
        "cleanup_errors": report.cleanup_errors,
    }
