"""Process lifecycle: start/stop with real child processes and the pid registry."""

from __future__ import annotations

import subprocess
import sys
import time
import uuid
from pathlib import Path

import psutil
import pytest

from features.processes import FileProcessRegistry, InMemoryProcessRegistry, ProcessManager
from models.schemas import ManagedProcess

SLEEPER = "import time; print('ready', flush=True); time.sleep(60)"
STUBBORN = (
    "import signal, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); "
    "print('ready', flush=True); time.sleep(60)"
)


def _wait_for_ready(log_path: Path, timeout: float = 10.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if log_path.exists() and "ready" in log_path.read_text():
            return
        time.sleep(0.05)
    raise AssertionError(f"child never became ready; log: {log_path}")


@pytest.fixture
def manager():
    return ProcessManager(InMemoryProcessRegistry(), stop_checks=50, stop_interval=0.1)


def test_stop_without_start_is_a_no_op(manager):
    manager.stop()
    manager.stop()
    assert manager.registry.read() is None


def test_stop_of_unknown_pid_clears_registry(tmp_path):
    registry = InMemoryProcessRegistry()
    ghost = psutil.Popen([sys.executable, "-c", "pass"])
    ghost.wait()
    registry.write(ManagedProcess(name="ghost", pid=ghost.pid, log_path=tmp_path / "ghost.log"))

    ProcessManager(registry, stop_checks=1, stop_interval=0.01).stop()
    assert registry.read() is None


def test_start_then_stop(manager, tmp_path):
    log_path = tmp_path / "app.log"
    process = manager.start("petclinic", [sys.executable, "-c", SLEEPER], log_path)
    _wait_for_ready(log_path)

    assert manager.registry.read().pid == process.pid
    assert psutil.pid_exists(process.pid)

    manager.stop(process)

    assert process.running is False
    assert manager.registry.read() is None
    assert not log_path.exists()
    assert not psutil.pid_exists(process.pid) or psutil.Process(process.pid).status() == psutil.STATUS_ZOMBIE


def test_stop_twice_never_raises(manager, tmp_path):
    log_path = tmp_path / "app.log"
    process = manager.start("petclinic", [sys.executable, "-c", SLEEPER], log_path)
    _wait_for_ready(log_path)

    manager.stop(process)
    manager.stop(process)
    manager.stop()
    assert manager.registry.read() is None


def test_stop_escalates_to_kill_after_bounded_checks(tmp_path):
    sleeps = []

    def sleep(seconds):
        sleeps.append(seconds)
        time.sleep(seconds)

    manager = ProcessManager(InMemoryProcessRegistry(), stop_checks=3, stop_interval=0.05, sleep=sleep)
    log_path = tmp_path / "stubborn.log"
    process = manager.start("stubborn", [sys.executable, "-c", STUBBORN], log_path)
    _wait_for_ready(log_path)

    manager.stop(process)

    assert sleeps == [0.05, 0.05, 0.05]
    assert manager.registry.read() is None
    with pytest.raises(psutil.NoSuchProcess):
        psutil.Process(process.pid).status()


def test_start_replaces_previous_instance(manager, tmp_path):
    first = manager.start("petclinic", [sys.executable, "-c", SLEEPER], tmp_path / "a.log")
    _wait_for_ready(tmp_path / "a.log")

    second = manager.start("petclinic", [sys.executable, "-c", SLEEPER], tmp_path / "b.log")
    try:
        assert first.running is False
        assert manager.registry.read().pid == second.pid
        assert not (tmp_path / "a.log").exists()
    finally:
        manager.stop(second)


def test_start_terminates_stragglers_by_match_token(manager, tmp_path):
    token = f"straggler-{uuid.uuid4().hex}"
    straggler = subprocess.Popen([sys.executable, "-c", SLEEPER, token], stdout=subprocess.DEVNULL)

    process = manager.start("petclinic", [sys.executable, "-c", SLEEPER, token], tmp_path / "app.log", match=token)
    try:
        straggler.wait(timeout=10)
        assert straggler.returncode is not None
        assert manager.registry.read().pid == process.pid
    finally:
        manager.stop(process)


def test_tail_log_returns_last_lines(tmp_path):
    log_path = tmp_path / "app.log"
    log_path.write_text("".join(f"line {i}\n" for i in range(100)))
    process = ManagedProcess(name="petclinic", pid=1, log_path=log_path)

    assert ProcessManager.tail_log(process, lines=2) == "line 98\nline 99\n"
    assert ProcessManager.tail_log(ManagedProcess(name="x", pid=1, log_path=tmp_path / "missing.log")) == ""


def test_file_registry_persists_single_slot(tmp_path):
    registry = FileProcessRegistry(tmp_path / "state" / "app.pid")
    assert registry.read() is None

    registry.write(ManagedProcess(name="petclinic", pid=123, log_path=tmp_path / "app.log", match="app.jar"))
    registry.write(ManagedProcess(name="petclinic", pid=456, log_path=tmp_path / "app.log", match="app.jar"))

    record = FileProcessRegistry(tmp_path / "state" / "app.pid").read()
    assert (record.pid, record.match) == (456, "app.jar")

    registry.clear()
    registry.clear()
    assert registry.read() is None


def test_file_registry_reads_bare_pid_and_ignores_garbage(tmp_path):
    path = tmp_path / "app.pid"
    path.write_text("9876\n")
    assert FileProcessRegistry(path).read().pid == 9876

    path.write_text("{not json")
    assert FileProcessRegistry(path).read() is None


@pytest.mark.parametrize("content", [
    "null",
    '"123"',
    "[1]",
    "-5",
    '{"name": "petclinic", "pid": null, "log_path": "app.log"}',
    '{"name": "petclinic", "pid": 0, "log_path": "app.log"}',
])
def test_non_object_pid_file_reads_as_not_running(tmp_path, content):
    path = tmp_path / "app.pid"
    path.write_text(content)
    assert FileProcessRegistry(path).read() is None

    manager = ProcessManager(FileProcessRegistry(path), stop_checks=1, stop_interval=0.01)
    manager.stop()
    manager.kill_stragglers("")
    assert not path.exists()
