"""
Data models for the delivery pipeline.

Stage results and pipeline runs are frozen once produced; the stage executor
is the only place that builds them.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    UNSTABLE = "unstable"


class StageStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class FailurePolicy(str, Enum):
    FATAL = "fatal"
    TOLERATED = "tolerated"


class ReadinessOutcome(str, Enum):
    READY = "ready"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class CommandResult:
    """Result of one external command invocation."""
    command_str: str
    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        return self.stdout + self.stderr


@dataclass
class StageContext:
    """Run-scoped scratch space handed to every stage body."""
    run_id: str
    job_name: str = ""
    workspace: Path = Path(".")
    artifacts: dict[str, Any] = field(default_factory=dict)
    unstable_reasons: list[str] = field(default_factory=list)

    def mark_unstable(self, reason: str) -> None:
        self.unstable_reasons.append(reason)


StageAction = Callable[[StageContext], None]


@dataclass(frozen=True)
class Stage:
    """A named unit of pipeline work, defined before the run starts."""
    name: str
    ordinal: int
    policy: FailurePolicy
    action: StageAction
    post_action: StageAction | None = None
    always_run: bool = False
    description: str = ""


@dataclass(frozen=True)
class StageResult:
    stage_name: str
    ordinal: int
    policy: FailurePolicy
    status: StageStatus
    error: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    duration_sec: float | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["policy"] = self.policy.value
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> StageResult:
        return cls(
            stage_name=data["stage_name"],
            ordinal=int(data["ordinal"]),
            policy=FailurePolicy(data["policy"]),
            status=StageStatus(data["status"]),
            error=data.get("error"),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
            duration_sec=data.get("duration_sec"),
        )


@dataclass(frozen=True)
class PipelineRun:
    """Complete record of one pipeline execution."""
    run_id: str
    job_name: str
    variant: str
    results: tuple[StageResult, ...]
    outcome: Outcome
    started_at: str
    completed_at: str
    duration_sec: float = 0.0
    unstable_reasons: tuple[str, ...] = ()
    log_url: str = ""

    def result_for(self, stage_name: str) -> StageResult | None:
        for r in self.results:
            if r.stage_name == stage_name:
                return r
        return None

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "job_name": self.job_name,
            "variant": self.variant,
            "outcome": self.outcome.value,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "duration_sec": self.duration_sec,
            "unstable_reasons": list(self.unstable_reasons),
            "log_url": self.log_url,
            "stages": [r.to_dict() for r in self.results],
        }


@dataclass
class ManagedProcess:
    """A locally started external process."""
    name: str
    pid: int
    log_path: Path
    match: str = ""
    running: bool = True

    def to_dict(self) -> dict:
        return {"name": self.name, "pid": self.pid, "log_path": str(self.log_path), "match": self.match}

    @classmethod
    def from_dict(cls, data: dict) -> ManagedProcess:
        return cls(
            name=data["name"],
            pid=int(data["pid"]),
            log_path=Path(data["log_path"]),
            match=data.get("match", ""),
        )


@dataclass(frozen=True)
class RolloutTarget:
    """A named deployable unit in the cluster."""
    name: str
    image: str
    readiness_deadline: float = 300.0
    namespace: str = "default"
    container: str = ""

    @property
    def container_name(self) -> str:
        return self.container or self.name


@dataclass(frozen=True)
class NotificationPayload:
    job_name: str
    run_id: str
    outcome: Outcome
    log_url: str
    stage_lines: tuple[str, ...] = ()
