"""
Command line entry point — runs a pipeline variant in-process.

Usage:
    python cli.py --variant full
    python cli.py --list-variants
    python cli.py --variant local --tests-policy fatal
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from typing import Iterable

from models.schemas import Outcome
from workflows.runner import run_pipeline
from workflows.stages import VARIANTS, PipelineSettings, parse_policy, stage_plan

EXIT_CODES = {
    Outcome.SUCCESS: 0,
    Outcome.FAILURE: 1,
    Outcome.UNSTABLE: 0,
}


def _list_variants(settings: PipelineSettings) -> None:
    print("Available variants:")
    for name, variant in sorted(VARIANTS.items()):
        print(f"  {name:<8} - {variant.description}")
        for entry in stage_plan(name, settings.tests_policy, include_verify=bool(settings.service_url)):
            flag = " (always)" if entry["always_run"] else ""
            print(f"    {entry['ordinal']:>2}  {entry['name']:<18} {entry['policy']}{flag}")


def main(argv: Iterable[str] | None = None) -> int:
    parser = argparse.ArgumentParser(add_help=True)
    parser.add_argument("--variant", default="full", choices=sorted(VARIANTS.keys()), help="Pipeline variant to run")
    parser.add_argument("--list-variants", action="store_true", help="List variants with their stages and exit")
    parser.add_argument("--tests-policy", choices=["fatal", "tolerated"], help="Failure policy of the test stage")
    parser.add_argument("--run-id", help="Explicit run identifier")
    parser.add_argument("--fail-on-unstable", action="store_true", help="Exit non-zero for an unstable run")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args(list(argv) if argv is not None else None)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    settings = PipelineSettings.from_config()
    if args.tests_policy:
        settings = replace(settings, tests_policy=parse_policy(args.tests_policy))

    if args.list_variants:
        _list_variants(settings)
        return 0

    run, report = run_pipeline(args.variant, settings=settings, run_id=args.run_id)

    print(f"Pipeline {run.run_id}: {run.outcome.value.upper()} ({run.duration_sec:.1f}s)")
    for r in run.results:
        print(f"  [{r.ordinal}] {r.stage_name}: {r.status.value.upper()}")
    if report.notification_error:
        print(f"Notification failed: {report.notification_error}")
    print(f"Logs: {run.log_url}")

    if run.outcome == Outcome.UNSTABLE and args.fail_on_unstable:
        return 2
    return EXIT_CODES[run.outcome]


if __name__ == "__main__":
    raise SystemExit(main())
