"""
Temporal Workflow: Delivery Pipeline

Runs a pipeline variant with one activity per stage:
  1. Plan the variant's stages
  2. Execute stages in order; a FATAL failure skips the rest (always-run stages excepted)
  3. Classify the outcome
  4. Finalize: run log, ledger, notification, cleanup

Stage activities are never retried as a whole; retries live inside the
stages (readiness polling, rollout await).
"""

from __future__ import annotations

from datetime import timedelta

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from activities.pipeline_ops import finalize_run, plan_stages, run_stage
    from models.schemas import FailurePolicy, StageResult, StageStatus
    from workflows.executor import classify_outcome

STAGE_TIMEOUT = timedelta(minutes=45)
NO_RETRY = RetryPolicy(maximum_attempts=1)


@workflow.defn
class DeliveryPipeline:
    """Temporal workflow that runs one delivery pipeline variant."""

    @workflow.run
    async def run(self, request: dict) -> dict:
        run_id = request.get("run_id") or workflow.info().workflow_id
        started = workflow.now()
        request = {**request, "run_id": run_id, "started_at": started.isoformat()}
        workflow.logger.info("Pipeline %s starting (%s)", run_id, request.get("variant", "full"))

        plan = await workflow.execute_activity(
            plan_stages, args=[request],
            start_to_close_timeout=timedelta(minutes=1),
        )

        results: list[StageResult] = []
        unstable_reasons: list[str] = []
        artifacts: dict = {}
        aborted_by: str | None = None

        for entry in plan:
            if aborted_by is not None and not entry["always_run"]:
                results.append(StageResult(
                    stage_name=entry["name"],
                    ordinal=entry["ordinal"],
                    policy=FailurePolicy(entry["policy"]),
                    status=StageStatus.SKIPPED,
                ))
                continue

            out = await workflow.execute_activity(
                run_stage, args=[{**request, "ordinal": entry["ordinal"], "artifacts": artifacts}],
                start_to_close_timeout=STAGE_TIMEOUT,
                retry_policy=NO_RETRY,
            )
            result = StageResult.from_dict(out["result"])
            results.append(result)
            unstable_reasons.extend(out.get("unstable_reasons", []))
            artifacts = out.get("artifacts", artifacts)

            if (result.status == StageStatus.FAILED and result.policy == FailurePolicy.FATAL
                    and aborted_by is None):
                aborted_by = result.stage_name
                workflow.logger.error("Fatal failure in stage %s, skipping remaining stages", result.stage_name)

        outcome = classify_outcome(results, unstable_reasons)
        completed = workflow.now()
        record = {
            "run_id": run_id,
            "variant": request.get("variant", "full"),
            "tests_policy": request.get("tests_policy"),
            "outcome": outcome.value,
            "started_at": started.isoformat(),
            "completed_at": completed.isoformat(),
            "duration_sec": round((completed - started).total_seconds(), 2),
            "unstable_reasons": unstable_reasons,
            "artifacts": artifacts,
            "stages": [r.to_dict() for r in results],
        }

        dispatch = await workflow.execute_activity(
            finalize_run, args=[record],
            start_to_close_timeout=timedelta(minutes=10),
            retry_policy=NO_RETRY,
        )
        record.update(dispatch)

        workflow.logger.info("Pipeline %s complete: %s", run_id, outcome.value)
        return record
