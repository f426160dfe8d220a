"""
Stage Graph Executor — runs an ordered list of stages under their failure policies.

  - stages run strictly in declaration order, one at a time
  - a FATAL failure skips every later stage except those flagged always_run
  - a TOLERATED failure is recorded and the run continues
  - a stage's post-action runs on every exit path from its body
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Iterable, Sequence

from features.ledger.tracker import RunTracker
from models.schemas import (
    FailurePolicy,
    Outcome,
    PipelineRun,
    Stage,
    StageContext,
    StageResult,
    StageStatus,
)

log = logging.getLogger(__name__)


def new_run_id() -> str:
    return f"run-{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:6]}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def classify_outcome(results: Iterable[StageResult], unstable_reasons: Sequence[str] = ()) -> Outcome:
    """FAILURE if a FATAL stage failed; UNSTABLE if a TOLERATED one failed or the run was marked unstable."""
    tolerated_failure = False
    for r in results:
        if r.status != StageStatus.FAILED:
            continue
        if r.policy == FailurePolicy.FATAL:
            return Outcome.FAILURE
        tolerated_failure = True
    if tolerated_failure or unstable_reasons:
        return Outcome.UNSTABLE
    return Outcome.SUCCESS


def describe_error(exc: BaseException) -> str:
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


def execute_stage(stage: Stage, context: StageContext) -> StageResult:
    """Run one stage body and its post-action, capturing the outcome.

    Exceptions from the body become a FAILED result. BaseExceptions such as
    KeyboardInterrupt still propagate, after the post-action has run.
    """
    started_at = _now()
    start = time.monotonic()
    status = StageStatus.PASSED
    error: str | None = None
    log.info("Stage %d: %s", stage.ordinal, stage.name)

    try:
        stage.action(context)
    except Exception as e:
        status = StageStatus.FAILED
        error = describe_error(e)
        log.debug("Stage %s raised", stage.name, exc_info=True)
    finally:
        if stage.post_action is not None:
            try:
                stage.post_action(context)
            except Exception as e:
                log.warning("Post-action of stage %s failed: %s", stage.name, e)

    return StageResult(
        stage_name=stage.name,
        ordinal=stage.ordinal,
        policy=stage.policy,
        status=status,
        error=error,
        started_at=started_at,
        completed_at=_now(),
        duration_sec=round(time.monotonic() - start, 2),
    )


def skipped_result(stage: Stage) -> StageResult:
    return StageResult(
        stage_name=stage.name,
        ordinal=stage.ordinal,
        policy=stage.policy,
        status=StageStatus.SKIPPED,
    )


class StageExecutor:
    """Runs a declared stage list and produces the frozen PipelineRun."""

    def __init__(self, job_name: str = "", variant: str = "custom", log_url: str = "", persist: bool = True):
        self.job_name = job_name
        self.variant = variant
        self.log_url = log_url
        self.persist = persist

    def run(self, stages: Sequence[Stage], context: StageContext | None = None) -> PipelineRun:
        context = context or StageContext(run_id=new_run_id(), job_name=self.job_name)
        ordered = sorted(stages, key=lambda s: s.ordinal)
        tracker = RunTracker(context.run_id, job_name=self.job_name, variant=self.variant, persist=self.persist)

        started_at = _now()
        start = time.monotonic()
        tracker.begin(started_at)
        aborted_by: str | None = None

        for stage in ordered:
            if aborted_by is not None and not stage.always_run:
                tracker.record(skipped_result(stage))
                continue

            result = execute_stage(stage, context)
            tracker.record(result)

            if result.status == StageStatus.FAILED and stage.policy == FailurePolicy.FATAL and aborted_by is None:
                aborted_by = stage.name
                log.error("Fatal failure in stage %s, skipping remaining stages", stage.name)

        results = tuple(tracker.results)
        outcome = classify_outcome(results, context.unstable_reasons)
        run = PipelineRun(
            run_id=context.run_id,
            job_name=self.job_name,
            variant=self.variant,
            results=results,
            outcome=outcome,
            started_at=started_at,
            completed_at=_now(),
            duration_sec=round(time.monotonic() - start, 2),
            unstable_reasons=tuple(context.unstable_reasons),
            log_url=self.log_url,
        )
        tracker.finish(run)
        log.info("Run %s finished: %s (%s)", run.run_id, outcome.value.upper(), tracker.summary()["statuses"])
        return run
