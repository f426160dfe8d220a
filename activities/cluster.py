"""
Activity: Cluster Deployment — applies manifests with kubectl and waits for the rollout.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Iterable, Protocol

import config
from models.errors import DeployError
from models.schemas import CommandResult, ReadinessOutcome, RolloutTarget
from utils import shell

log = logging.getLogger(__name__)


class Cluster(Protocol):
    def apply(self, manifest_paths: Iterable[Path], namespace: str | None = None) -> CommandResult: ...

    def set_image(self, target: RolloutTarget) -> CommandResult: ...

    def rollout_status(self, name: str, timeout: float, namespace: str | None = None) -> bool: ...

    def describe(self, name: str, namespace: str | None = None) -> str: ...

    def logs(self, name: str, tail_lines: int, namespace: str | None = None) -> str: ...


class KubectlCluster:
    """The cluster orchestrator as seen through the ``kubectl`` CLI."""

    def __init__(
        self,
        namespace: str = config.K8S_NAMESPACE,
        kubectl: str = config.KUBECTL_CMD,
        runner: Callable[..., CommandResult] = shell.run,
    ):
        self.namespace = namespace
        self.kubectl = kubectl
        self._run = runner

    def _kubectl(self, namespace: str | None, *args: str, timeout: float | None = 120) -> CommandResult:
        return self._run([self.kubectl, "-n", namespace or self.namespace, *args], timeout=timeout)

    def apply(self, manifest_paths: Iterable[Path], namespace: str | None = None) -> CommandResult:
        args = ["apply"]
        for path in manifest_paths:
            args += ["-f", str(path)]
        return self._kubectl(namespace, *args)

    def set_image(self, target: RolloutTarget) -> CommandResult:
        return self._kubectl(
            target.namespace,
            "set", "image", f"deployment/{target.name}", f"{target.container_name}={target.image}",
        )

    def rollout_status(self, name: str, timeout: float, namespace: str | None = None) -> bool:
        seconds = max(1, int(timeout))
        result = self._kubectl(
            namespace,
            "rollout", "status", f"deployment/{name}", f"--timeout={seconds}s",
            timeout=seconds + 30,
        )
        return result.ok

    def describe(self, name: str, namespace: str | None = None) -> str:
        return self._kubectl(namespace, "describe", f"deployment/{name}").output

    def logs(self, name: str, tail_lines: int, namespace: str | None = None) -> str:
        return self._kubectl(namespace, "logs", f"deployment/{name}", f"--tail={tail_lines}").output


def _already_exists(result: CommandResult) -> bool:
    return "AlreadyExists" in result.output or "already exists" in result.output


class RolloutVerifier:
    """Submits manifests and blocks until the rollout is ready or a deadline passes."""

    def __init__(
        self,
        cluster: Cluster,
        poll_interval: float = config.ROLLOUT_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.cluster = cluster
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep

    def deploy(self, target: RolloutTarget, manifests: Iterable[Path]) -> None:
        """Declarative apply (create or update in place), then pin the run's image."""
        manifests = list(manifests)
        log.info("Applying %d manifests for %s", len(manifests), target.name)
        result = self.cluster.apply(manifests, namespace=target.namespace)
        if not result.ok:
            if _already_exists(result):
                log.info("Resources for %s already exist, nothing to create", target.name)
            else:
                raise DeployError(f"apply failed (exit={result.exit_code}): {result.stderr.strip()[-1000:]}")

        result = self.cluster.set_image(target)
        if not result.ok:
            raise DeployError(f"set image failed (exit={result.exit_code}): {result.stderr.strip()[-1000:]}")
        log.info("Deployment %s now targets %s", target.name, target.image)

    def await_rollout(self, target: RolloutTarget, deadline: float | None = None) -> ReadinessOutcome:
        """Poll rollout status until all replicas are ready or ``deadline`` seconds elapse."""
        deadline = target.readiness_deadline if deadline is None else deadline
        end = self._clock() + deadline
        attempt = 0

        while True:
            remaining = end - self._clock()
            if remaining <= 0:
                break
            attempt += 1
            if self.cluster.rollout_status(
                target.name, timeout=min(self.poll_interval, remaining), namespace=target.namespace,
            ):
                log.info("Rollout of %s ready (check %d)", target.name, attempt)
                return ReadinessOutcome.READY
            remaining = end - self._clock()
            if remaining <= 0:
                break
            self._sleep(min(self.poll_interval, remaining))

        log.error("Rollout of %s not ready within %.0fs", target.name, deadline)
        return ReadinessOutcome.TIMED_OUT

    def diagnostics(self, target: RolloutTarget, tail_lines: int = config.LOG_TAIL_LINES) -> str:
        """Resource description and recent logs, gathered after a timeout."""
        sections = []
        try:
            sections.append("=== DESCRIBE ===\n" + self.cluster.describe(target.name, namespace=target.namespace))
        except Exception as e:
            sections.append(f"=== DESCRIBE ===\n(unavailable: {e})")
        try:
            sections.append(
                "=== LOGS ===\n" + self.cluster.logs(target.name, tail_lines, namespace=target.namespace)
            )
        except Exception as e:
            sections.append(f"=== LOGS ===\n(unavailable: {e})")
        return "\n\n".join(sections)
