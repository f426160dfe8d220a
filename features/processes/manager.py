"""
Process Lifecycle Manager — starts and stops the locally run application.

Only one instance per logical service may be alive: ``start`` first stops the
registered instance and any straggler whose command line contains the match
token. ``stop`` asks politely, waits a bounded number of checks, then kills.
Neither operation raises for a process that is already gone.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from collections import deque
from pathlib import Path
from typing import Callable, Mapping, Sequence

import psutil

import config
from features.processes.registry import ProcessRegistry
from models.schemas import ManagedProcess

log = logging.getLogger(__name__)


class ProcessManager:
    """Owns the single managed process slot for a pipeline run."""

    def __init__(
        self,
        registry: ProcessRegistry,
        stop_checks: int = config.PROCESS_STOP_CHECKS,
        stop_interval: float = config.PROCESS_STOP_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.registry = registry
        self.stop_checks = stop_checks
        self.stop_interval = stop_interval
        self._sleep = sleep
        self._children: dict[int, subprocess.Popen] = {}

    # ── start ──────────────────────────────────────────────────────────

    def start(
        self,
        name: str,
        command: Sequence[str],
        log_path: Path,
        *,
        match: str = "",
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ManagedProcess:
        """Launch ``command`` with stdout/stderr going to ``log_path``."""
        self.kill_stragglers(match)

        log_path = Path(log_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "ab") as sink:
            popen = subprocess.Popen(
                [str(c) for c in command],
                stdout=sink,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                cwd=str(cwd) if cwd else None,
                env={**os.environ, **(env or {})},
                start_new_session=True,
            )

        process = ManagedProcess(name=name, pid=popen.pid, log_path=log_path, match=match)
        self._children[popen.pid] = popen
        self.registry.write(process)
        log.info("Started %s (pid %d), logging to %s", name, popen.pid, log_path)
        return process

    def kill_stragglers(self, match: str = "") -> None:
        """Best-effort removal of any earlier instance before a new start."""
        prior = self.registry.read()
        if prior is not None:
            log.info("Stopping previous instance %s (pid %d)", prior.name or "<unnamed>", prior.pid)
            self.stop(prior)

        if not match:
            return

        own = {os.getpid(), os.getppid()}
        victims = []
        for proc in psutil.process_iter(["pid", "cmdline"]):
            if proc.info["pid"] in own:
                continue
            cmdline = " ".join(proc.info.get("cmdline") or [])
            if match in cmdline:
                victims.append(proc)

        for proc in victims:
            log.info("Terminating straggler pid %d matching %r", proc.pid, match)
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied as e:
                log.warning("Cannot terminate straggler %d: %s", proc.pid, e)

        if not victims:
            return
        _, alive = psutil.wait_procs(victims, timeout=self.stop_checks * self.stop_interval)
        for proc in alive:
            try:
                proc.kill()
            except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
                log.warning("Could not kill straggler %d: %s", proc.pid, e)

    # ── stop ───────────────────────────────────────────────────────────

    def stop(self, process: ManagedProcess | None = None) -> None:
        """Stop ``process`` (or whatever the registry holds) and clean up after it."""
        if process is None:
            process = self.registry.read()
        if process is None:
            log.info("No managed process to stop")
            self.registry.clear()
            return

        try:
            self._terminate(process.pid)
        finally:
            process.running = False
            self._children.pop(process.pid, None)
            self.registry.clear()
            self._remove_log(process.log_path)

    def _terminate(self, pid: int) -> None:
        try:
            proc = psutil.Process(pid)
            proc.terminate()
        except psutil.NoSuchProcess:
            log.info("Process %d already stopped", pid)
            return
        except psutil.AccessDenied as e:
            log.warning("Not allowed to signal process %d: %s", pid, e)
            return

        for _ in range(self.stop_checks):
            if not self._alive(proc):
                log.info("Process %d stopped", pid)
                return
            self._sleep(self.stop_interval)

        if not self._alive(proc):
            log.info("Process %d stopped", pid)
            return

        log.warning("Process %d still alive after %d checks, killing", pid, self.stop_checks)
        try:
            proc.kill()
            proc.wait(timeout=max(self.stop_interval, 1.0))
        except psutil.NoSuchProcess:
            pass
        except (psutil.AccessDenied, psutil.TimeoutExpired) as e:
            log.warning("Could not kill process %d: %s", pid, e)

    def _alive(self, proc: psutil.Process) -> bool:
        child = self._children.get(proc.pid)
        if child is not None and child.poll() is not None:
            return False
        try:
            return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False

    @staticmethod
    def _remove_log(path: Path) -> None:
        try:
            if path.is_file():
                path.unlink()
        except OSError as e:
            log.warning("Could not remove log %s: %s", path, e)

    # ── diagnostics ────────────────────────────────────────────────────

    @staticmethod
    def tail_log(process: ManagedProcess, lines: int = config.LOG_TAIL_LINES) -> str:
        """Last ``lines`` lines of the process log, or an empty string."""
        try:
            with open(process.log_path, errors="replace") as f:
                return "".join(deque(f, maxlen=lines))
        except OSError:
            return ""
