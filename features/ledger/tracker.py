"""
Run Tracker — records stage results of a pipeline run as they happen.

Every result is persisted to Postgres via ledger.db when a database is
configured. If the DB is unavailable, the tracker keeps results in memory
only (with a warning); the JSON run log is always written at the end.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import config
from models.schemas import PipelineRun, StageResult, StageStatus

log = logging.getLogger(__name__)

# Try to import the DB layer; gracefully degrade if unavailable
_db_available = False
try:
    from features.ledger import db as ledger_db
    _db_available = True
except Exception:
    ledger_db = None  # type: ignore


class RunTracker:
    """Collects the stage results of a single pipeline run."""

    def __init__(self, run_id: str, job_name: str = "", variant: str = "", persist: bool = True):
        self.run_id = run_id
        self.job_name = job_name
        self.variant = variant
        self.results: list[StageResult] = []
        self._persist_enabled = persist and _db_available and bool(config.DATABASE_URL)

    def _persist(self, fn, *args) -> None:
        if not self._persist_enabled or ledger_db is None:
            return
        try:
            fn(*args)
        except Exception as e:
            log.warning("[STAGE] Failed to persist to DB for run %s: %s", self.run_id, e)

    def begin(self, started_at: str) -> None:
        """Register the run as in progress."""
        log.info("[STAGE] Run %s (%s) started", self.run_id, self.variant or "custom")
        if ledger_db is not None:
            self._persist(ledger_db.upsert_pipeline_run, {
                "run_id": self.run_id,
                "job_name": self.job_name,
                "variant": self.variant,
                "outcome": "running",
                "started_at": started_at,
            })

    def record(self, result: StageResult) -> None:
        """Append a finished stage result."""
        self.results.append(result)
        if result.status == StageStatus.FAILED:
            log.error("[STAGE] Failed: %s (%s): %s", result.stage_name, result.policy.value, result.error)
        elif result.status == StageStatus.SKIPPED:
            log.info("[STAGE] Skipped: %s", result.stage_name)
        else:
            log.info("[STAGE] Passed: %s (%.2fs)", result.stage_name, result.duration_sec or 0)
        if ledger_db is not None:
            self._persist(ledger_db.upsert_stage_result, self.run_id, result.to_dict())

    def finish(self, run: PipelineRun) -> None:
        """Persist the final run record."""
        if ledger_db is not None:
            self._persist(ledger_db.upsert_pipeline_run, run.to_dict())

    def summary(self) -> dict:
        """Return a summary of the recorded results."""
        statuses: dict[str, int] = {}
        for r in self.results:
            statuses[r.status.value] = statuses.get(r.status.value, 0) + 1
        total_duration = sum(r.duration_sec or 0 for r in self.results)
        return {
            "run_id": self.run_id,
            "total_stages": len(self.results),
            "statuses": statuses,
            "total_duration_sec": round(total_duration, 2),
        }


def save_run_log(run: PipelineRun, summary: dict | None = None, runs_dir: Path | None = None) -> str:
    """Save the pipeline run log to the pipeline_runs/ directory."""
    runs_dir = runs_dir or config.PIPELINE_RUNS_DIR
    runs_dir.mkdir(parents=True, exist_ok=True)
    file_path = runs_dir / f"{run.run_id}.json"
    record = run.to_dict()
    if summary is not None:
        record["stage_summary"] = summary
    with open(file_path, "w") as f:
        json.dump(record, f, indent=2, default=str)
    log.info("Run log saved: %s", file_path)
    return str(file_path)


def load_run_log(run_id: str, runs_dir: Path | None = None) -> dict | None:
    file_path = (runs_dir or config.PIPELINE_RUNS_DIR) / f"{run_id}.json"
    if not file_path.exists():
        return None
    with open(file_path) as f:
        return json.load(f)


def list_run_logs(runs_dir: Path | None = None) -> list[dict]:
    runs_dir = runs_dir or config.PIPELINE_RUNS_DIR
    if not runs_dir.exists():
        return []
    runs = []
    for log_file in sorted(runs_dir.glob("*.json"), reverse=True):
        try:
            with open(log_file) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            log.warning("Skipping unreadable run log %s: %s", log_file, e)
            continue
        runs.append({
            "run_id": data.get("run_id"),
            "variant": data.get("variant"),
            "outcome": data.get("outcome"),
            "started_at": data.get("started_at"),
            "duration_sec": data.get("duration_sec"),
        })
    return runs
