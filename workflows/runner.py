"""
In-process pipeline run: stages → run log → outcome dispatch.

This is the path used by the CLI and by the API when no Temporal server is
reachable. The Temporal workflow in workflows/pipeline.py runs the same
stages as activities.
"""

from __future__ import annotations

import logging

from features.ledger.tracker import save_run_log
from models.schemas import PipelineRun, StageContext
from workflows.executor import StageExecutor, new_run_id
from workflows.outcome import DispatchReport, OutcomeDispatcher
from workflows.stages import DeliveryStages, PipelineServices, PipelineSettings, build_stages

log = logging.getLogger(__name__)


def build_dispatcher(
    services: PipelineServices,
    settings: PipelineSettings,
    context: StageContext,
) -> OutcomeDispatcher:
    def stop_local_app() -> None:
        services.processes.stop()

    return OutcomeDispatcher(
        channel=services.channel,
        recipients=settings.notify_to,
        cleanup_actions=[
            ("stop local application", stop_local_app),
            ("prune container resources", services.engine.prune_unused),
        ],
        attachments=context.artifacts.get("captured_reports", []),
    )


def run_pipeline(
    variant: str = "full",
    *,
    services: PipelineServices | None = None,
    settings: PipelineSettings | None = None,
    run_id: str | None = None,
) -> tuple[PipelineRun, DispatchReport]:
    """Execute one variant end to end and dispatch its outcome."""
    services = services or PipelineServices.from_config()
    settings = settings or PipelineSettings.from_config()
    context = StageContext(
        run_id=run_id or new_run_id(),
        job_name=settings.job_name,
        workspace=settings.project_dir,
    )
    log.info("Pipeline %s starting (%s variant, tests %s)", context.run_id, variant, settings.tests_policy.value)

    stages = build_stages(variant, DeliveryStages(services, settings))
    executor = StageExecutor(
        job_name=settings.job_name,
        variant=variant,
        log_url=settings.log_url(context.run_id),
    )
    run = executor.run(stages, context)
    try:
        save_run_log(run, runs_dir=settings.runs_dir)
    except OSError as e:
        log.error("Could not write run log for %s to %s: %s", run.run_id, settings.runs_dir, e)

    report = build_dispatcher(services, settings, context).finalize(run)
    log.info("Pipeline %s complete in %.1fs: %s", run.run_id, run.duration_sec, run.outcome.value)
    return run, report
