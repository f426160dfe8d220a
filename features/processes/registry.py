"""
Local process registry — a single-slot record of the managed process.

``start`` writes it, ``stop`` reads and clears it. Absence (or an unreadable
record) means "not running".
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol

from models.schemas import ManagedProcess

log = logging.getLogger(__name__)


class ProcessRegistry(Protocol):
    def read(self) -> ManagedProcess | None: ...

    def write(self, process: ManagedProcess) -> None: ...

    def clear(self) -> None: ...


class FileProcessRegistry:
    """Persists the managed process as JSON in a pid file on local disk."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def read(self) -> ManagedProcess | None:
        if not self.path.exists():
            return None
        raw = self.path.read_text().strip()
        if not raw:
            return None
        try:
            if raw.isdigit():
                # Bare pid written by older tooling
                process = ManagedProcess(name="", pid=int(raw), log_path=Path(""))
            else:
                data = json.loads(raw)
                if not isinstance(data, dict):
                    raise ValueError(f"expected a JSON object, got {type(data).__name__}")
                process = ManagedProcess.from_dict(data)
        except (ValueError, KeyError, TypeError) as e:
            log.warning("Ignoring unreadable pid file %s: %s", self.path, e)
            return None
        if process.pid <= 0:
            log.warning("Ignoring pid file %s with invalid pid %d", self.path, process.pid)
            return None
        return process

    def write(self, process: ManagedProcess) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(process.to_dict()))

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class InMemoryProcessRegistry:
    def __init__(self) -> None:
        self._slot: ManagedProcess | None = None

    def read(self) -> ManagedProcess | None:
        return self._slot

    def write(self, process: ManagedProcess) -> None:
        self._slot = process

    def clear(self) -> None:
        self._slot = None
