"""
Ledger feature — records pipeline runs and their stage results.

Public API:
    from features.ledger import RunTracker, save_run_log
    from features.ledger import db as ledger_db
"""

from features.ledger.tracker import RunTracker, list_run_logs, load_run_log, save_run_log

__all__ = ["RunTracker", "save_run_log", "load_run_log", "list_run_logs"]
