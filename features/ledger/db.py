"""
Postgres backing store for pipeline runs and stage results.

Tables:
  pipeline_runs  — one row per pipeline execution
  stage_results  — one row per stage of a run, FK to pipeline_runs

Each stage result is persisted as soon as the stage finishes so the audit
trail survives a crashed run.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from typing import Any

import psycopg2
import psycopg2.extras

import config

log = logging.getLogger(__name__)

# ── Connection ────────────────────────────────────────────────────────

_pool: list[Any] = []


def _get_conn():
    """Get a Postgres connection (simple single-connection reuse)."""
    if _pool:
        conn = _pool[0]
        if not conn.closed:
            return conn
        _pool.clear()

    if not config.DATABASE_URL:
        raise RuntimeError("DATABASE_URL is not configured")
    conn = psycopg2.connect(config.DATABASE_URL)
    conn.autocommit = True
    _pool.append(conn)
    return conn


@contextmanager
def get_cursor():
    """Yield a dict cursor."""
    conn = _get_conn()
    cur = conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
    try:
        yield cur
    finally:
        cur.close()


# ── Schema ────────────────────────────────────────────────────────────

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS pipeline_runs (
    run_id            TEXT PRIMARY KEY,
    job_name          TEXT NOT NULL,
    variant           TEXT NOT NULL,
    outcome           TEXT NOT NULL DEFAULT 'running',
    started_at        TIMESTAMPTZ,
    completed_at      TIMESTAMPTZ,
    duration_sec      DOUBLE PRECISION,
    unstable_reasons  JSONB DEFAULT '[]'::jsonb,
    log_url           TEXT,
    created_at        TIMESTAMPTZ DEFAULT now()
);

CREATE TABLE IF NOT EXISTS stage_results (
    run_id          TEXT NOT NULL REFERENCES pipeline_runs(run_id) ON DELETE CASCADE,
    ordinal         INTEGER NOT NULL,
    stage_name      TEXT NOT NULL,
    policy          TEXT NOT NULL,
    status          TEXT NOT NULL,
    error           TEXT,
    started_at      TIMESTAMPTZ,
    completed_at    TIMESTAMPTZ,
    duration_sec    DOUBLE PRECISION,
    updated_at      TIMESTAMPTZ DEFAULT now(),
    PRIMARY KEY (run_id, ordinal)
);

CREATE INDEX IF NOT EXISTS idx_stage_results_status ON stage_results(status);
CREATE INDEX IF NOT EXISTS idx_pipeline_runs_outcome ON pipeline_runs(outcome);
"""


def init_db():
    """Create tables if they don't exist."""
    try:
        with get_cursor() as cur:
            cur.execute(SCHEMA_SQL)
        log.info("Database schema initialized")
    except Exception as e:
        log.error("Failed to initialize database: %s", e)
        raise


# ── Pipeline Run CRUD ─────────────────────────────────────────────────

def upsert_pipeline_run(run: dict) -> None:
    """Insert or update a pipeline run record."""
    with get_cursor() as cur:
        cur.execute("""
            INSERT INTO pipeline_runs (
                run_id, job_name, variant, outcome,
                started_at, completed_at, duration_sec,
                unstable_reasons, log_url
            ) VALUES (
                %(run_id)s, %(job_name)s, %(variant)s, %(outcome)s,
                %(started_at)s, %(completed_at)s, %(duration_sec)s,
                %(unstable_reasons)s, %(log_url)s
            )
            ON CONFLICT (run_id) DO UPDATE SET
                outcome = EXCLUDED.outcome,
                completed_at = EXCLUDED.completed_at,
                duration_sec = EXCLUDED.duration_sec,
                unstable_reasons = EXCLUDED.unstable_reasons,
                log_url = EXCLUDED.log_url
        """, {
            "run_id": run.get("run_id"),
            "job_name": run.get("job_name", ""),
            "variant": run.get("variant", ""),
            "outcome": run.get("outcome", "running"),
            "started_at": run.get("started_at"),
            "completed_at": run.get("completed_at"),
            "duration_sec": run.get("duration_sec"),
            "unstable_reasons": json.dumps(run.get("unstable_reasons", [])),
            "log_url": run.get("log_url", ""),
        })


def get_pipeline_run(run_id: str) -> dict | None:
    """Fetch a pipeline run by ID."""
    with get_cursor() as cur:
        cur.execute("SELECT * FROM pipeline_runs WHERE run_id = %s", (run_id,))
        row = cur.fetchone()
        return dict(row) if row else None


def list_pipeline_runs(limit: int = 50, outcome: str | None = None) -> list[dict]:
    """List pipeline runs, newest first."""
    with get_cursor() as cur:
        if outcome:
            cur.execute(
                "SELECT * FROM pipeline_runs WHERE outcome = %s ORDER BY created_at DESC LIMIT %s",
                (outcome, limit),
            )
        else:
            cur.execute(
                "SELECT * FROM pipeline_runs ORDER BY created_at DESC LIMIT %s",
                (limit,),
            )
        return [dict(row) for row in cur.fetchall()]


# ── Stage Result CRUD ─────────────────────────────────────────────────

def upsert_stage_result(run_id: str, result: dict) -> None:
    """Insert or update one stage result of a run."""
    with get_cursor() as cur:
        cur.execute("""
            INSERT INTO stage_results (
                run_id, ordinal, stage_name, policy, status,
                error, started_at, completed_at, duration_sec
            ) VALUES (
                %(run_id)s, %(ordinal)s, %(stage_name)s, %(policy)s, %(status)s,
                %(error)s, %(started_at)s, %(completed_at)s, %(duration_sec)s
            )
            ON CONFLICT (run_id, ordinal) DO UPDATE SET
                status = EXCLUDED.status,
                error = EXCLUDED.error,
                started_at = EXCLUDED.started_at,
                completed_at = EXCLUDED.completed_at,
                duration_sec = EXCLUDED.duration_sec,
                updated_at = now()
        """, {
            "run_id": run_id,
            "ordinal": result.get("ordinal"),
            "stage_name": result.get("stage_name", ""),
            "policy": result.get("policy", ""),
            "status": result.get("status", ""),
            "error": result.get("error"),
            "started_at": result.get("started_at"),
            "completed_at": result.get("completed_at"),
            "duration_sec": result.get("duration_sec"),
        })


def get_stage_results(run_id: str, status: str | None = None) -> list[dict]:
    """Fetch the stage results of a run in declaration order."""
    with get_cursor() as cur:
        if status:
            cur.execute(
                "SELECT * FROM stage_results WHERE run_id = %s AND status = %s ORDER BY ordinal ASC",
                (run_id, status),
            )
        else:
            cur.execute(
                "SELECT * FROM stage_results WHERE run_id = %s ORDER BY ordinal ASC",
                (run_id,),
            )
        return [dict(row) for row in cur.fetchall()]


def get_stage_summary(run_id: str) -> dict:
    """Get an aggregate summary of the stage results of a run."""
    with get_cursor() as cur:
        cur.execute("""
            SELECT
                count(*) as total_stages,
                count(*) FILTER (WHERE status = 'passed') as passed,
                count(*) FILTER (WHERE status = 'failed') as failed,
                count(*) FILTER (WHERE status = 'skipped') as skipped,
                coalesce(sum(duration_sec), 0) as total_duration_sec
            FROM stage_results WHERE run_id = %s
        """, (run_id,))
        row = cur.fetchone()
        return dict(row) if row else {}
