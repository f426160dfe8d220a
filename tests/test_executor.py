"""Stage ordering, failure policies and outcome classification."""

from __future__ import annotations

from dataclasses import replace

import pytest

from conftest import make_stage
from models.schemas import FailurePolicy, Outcome, StageContext, StageResult, StageStatus
from workflows.executor import StageExecutor, classify_outcome

FATAL = FailurePolicy.FATAL
TOLERATED = FailurePolicy.TOLERATED


def _run(stages, context=None):
    return StageExecutor(job_name="job", variant="test", persist=False).run(stages, context)


def test_all_stages_pass_gives_success():
    calls = []
    run = _run([make_stage("A", 1, calls=calls), make_stage("B", 2, TOLERATED, calls=calls)])

    assert calls == ["A", "B"]
    assert run.outcome == Outcome.SUCCESS
    assert [r.status for r in run.results] == [StageStatus.PASSED, StageStatus.PASSED]


def test_stages_run_in_ordinal_order():
    calls = []
    _run([make_stage("second", 2, calls=calls), make_stage("first", 1, calls=calls)])
    assert calls == ["first", "second"]


def test_fatal_failure_skips_everything_after_it():
    calls = []
    run = _run([
        make_stage("A", 1, calls=calls),
        make_stage("B", 2, fail=True, calls=calls),
        make_stage("C", 3, TOLERATED, calls=calls),
        make_stage("D", 4, calls=calls),
    ])

    assert calls == ["A", "B"]
    assert run.outcome == Outcome.FAILURE
    assert [r.status for r in run.results] == [
        StageStatus.PASSED, StageStatus.FAILED, StageStatus.SKIPPED, StageStatus.SKIPPED,
    ]
    assert "B broke" in run.result_for("B").error


def test_tolerated_failure_continues_and_is_unstable():
    calls = []
    run = _run([
        make_stage("A", 1, TOLERATED, fail=True, calls=calls),
        make_stage("B", 2, calls=calls),
    ])

    assert calls == ["A", "B"]
    assert run.outcome == Outcome.UNSTABLE
    assert run.result_for("A").status == StageStatus.FAILED


def test_build_ok_tests_fail_scan_ok_deploy_ok_is_unstable():
    calls = []
    run = _run([
        make_stage("Build", 1, FATAL, calls=calls),
        make_stage("Test", 2, TOLERATED, fail=True, calls=calls),
        make_stage("Scan", 3, TOLERATED, calls=calls),
        make_stage("Deploy", 4, FATAL, calls=calls),
    ])

    assert run.outcome == Outcome.UNSTABLE
    assert len(run.results) == 4
    assert [r.status for r in run.results] == [
        StageStatus.PASSED, StageStatus.FAILED, StageStatus.PASSED, StageStatus.PASSED,
    ]


def test_failed_build_skips_test_and_deploy():
    calls = []
    run = _run([
        make_stage("Build", 1, FATAL, fail=True, calls=calls),
        make_stage("Test", 2, TOLERATED, calls=calls),
        make_stage("Deploy", 3, FATAL, calls=calls),
    ])

    assert calls == ["Build"]
    assert run.outcome == Outcome.FAILURE
    assert run.result_for("Build").status == StageStatus.FAILED
    assert run.result_for("Test").status == StageStatus.SKIPPED
    assert run.result_for("Deploy").status == StageStatus.SKIPPED


def test_always_run_stage_executes_after_fatal_abort():
    calls = []
    run = _run([
        make_stage("Build", 1, fail=True, calls=calls),
        make_stage("Deploy", 2, calls=calls),
        make_stage("Cleanup", 3, TOLERATED, calls=calls, always_run=True),
    ])

    assert calls == ["Build", "Cleanup"]
    assert run.result_for("Cleanup").status == StageStatus.PASSED
    assert run.outcome == Outcome.FAILURE


def test_post_action_runs_when_body_fails():
    seen = []
    stage = make_stage("Test", 1, TOLERATED, fail=True, post=lambda ctx: seen.append("report"))
    run = _run([stage])

    assert seen == ["report"]
    assert run.result_for("Test").status == StageStatus.FAILED


def test_post_action_runs_on_interrupt_and_interrupt_propagates():
    seen = []

    def interrupted(ctx):
        raise KeyboardInterrupt

    stage = make_stage("Long", 1, post=lambda ctx: seen.append("stopped"))
    stage = replace(stage, action=interrupted)

    with pytest.raises(KeyboardInterrupt):
        _run([stage])
    assert seen == ["stopped"]


def test_post_action_error_does_not_change_status():
    def broken_post(ctx):
        raise OSError("disk full")

    run = _run([make_stage("Build", 1, post=broken_post)])
    assert run.result_for("Build").status == StageStatus.PASSED
    assert run.outcome == Outcome.SUCCESS


def test_unstable_marker_without_failures():
    def flaky(ctx):
        ctx.mark_unstable("2 of 10 tests failed")

    stage = make_stage("Test", 1)
    stage = replace(stage, action=flaky)
    run = _run([stage], StageContext(run_id="run-1"))

    assert run.outcome == Outcome.UNSTABLE
    assert run.unstable_reasons == ("2 of 10 tests failed",)


def test_classify_outcome_fatal_wins_over_tolerated():
    results = [
        StageResult("A", 1, TOLERATED, StageStatus.FAILED),
        StageResult("B", 2, FATAL, StageStatus.FAILED),
    ]
    assert classify_outcome(results) == Outcome.FAILURE
    assert classify_outcome(results[:1]) == Outcome.UNSTABLE
    assert classify_outcome([StageResult("C", 1, FATAL, StageStatus.SKIPPED)]) == Outcome.SUCCESS


def test_run_is_frozen():
    run = _run([make_stage("A", 1)])
    with pytest.raises(AttributeError):
        run.outcome = Outcome.FAILURE  # type: ignore[misc]
    assert isinstance(run.results, tuple)
