"""
Stage bodies and the declarative pipeline variants built from them.

Every variant is just an ordered list of stage keys; the bodies are shared,
so there is one definition of "build", "deploy", etc. no matter which
variant runs them. Stage bodies raise on failure and never decide whether
the run should stop; that belongs to the executor.
"""

from __future__ import annotations

import logging
import shutil
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable

import httpx

import config
from activities.build import MavenBuild, find_artifact
from activities.cluster import Cluster, KubectlCluster, RolloutVerifier
from activities.container import DockerEngine, image_tags, publish_image, write_dockerfile
from activities.notify import NotificationChannel, SmtpChannel
from activities.scan import SonarScanner
from activities.smoke import PageFactory, assert_smoke, chromium_page
from features.processes import FileProcessRegistry, ProcessManager
from models.errors import (
    BuildError,
    ReadinessTimeout,
    RolloutTimeout,
    ScanError,
    TestFailure,
)
from models.schemas import (
    FailurePolicy,
    ReadinessOutcome,
    RolloutTarget,
    Stage,
    StageAction,
    StageContext,
)
from utils.poller import check_after_delay, endpoint_probe, poll_until_ready

log = logging.getLogger(__name__)


# ── Collaborators & settings ──────────────────────────────────────────

@dataclass
class PipelineServices:
    """External collaborators a run talks to; swapped for fakes in tests."""
    build_tool: MavenBuild
    scanner: SonarScanner
    engine: DockerEngine
    cluster: Cluster
    processes: ProcessManager
    channel: NotificationChannel
    http_client: httpx.Client | None = None
    ui_session: PageFactory = chromium_page
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.monotonic

    @classmethod
    def from_config(cls) -> PipelineServices:
        return cls(
            build_tool=MavenBuild(),
            scanner=SonarScanner(),
            engine=DockerEngine(),
            cluster=KubectlCluster(),
            processes=ProcessManager(FileProcessRegistry(config.PID_FILE)),
            channel=SmtpChannel(),
        )


def parse_policy(value: str | FailurePolicy) -> FailurePolicy:
    try:
        return FailurePolicy(str(getattr(value, "value", value)).lower())
    except ValueError:
        raise ValueError(f"Unknown failure policy {value!r} (expected 'fatal' or 'tolerated')") from None


@dataclass(frozen=True)
class PipelineSettings:
    job_name: str = config.JOB_NAME
    build_number: str = config.BUILD_NUMBER
    build_url: str = config.BUILD_URL
    project_dir: Path = config.APP_PROJECT_PATH
    runs_dir: Path = config.PIPELINE_RUNS_DIR
    tests_policy: FailurePolicy = FailurePolicy.TOLERATED
    service_name: str = config.SERVICE_NAME
    app_port: int = config.APP_PORT
    app_base_url: str = config.APP_BASE_URL
    app_log: Path = config.APP_LOG_FILE
    health_path: str = config.HEALTH_PATH
    root_path: str = config.ROOT_PATH
    local_probe_mode: str = config.LOCAL_PROBE_MODE
    local_startup_delay: float = config.LOCAL_STARTUP_DELAY
    verify_attempts: int = config.VERIFY_ATTEMPTS
    verify_interval: float = config.VERIFY_INTERVAL
    probe_timeout: float = config.PROBE_TIMEOUT
    sonar_project_key: str = config.SONAR_PROJECT_KEY
    image_repository: str = config.IMAGE_REPOSITORY
    image_fixed_tag: str = config.IMAGE_FIXED_TAG
    base_image: str = config.BASE_IMAGE
    namespace: str = config.K8S_NAMESPACE
    deployment: str = config.DEPLOYMENT_NAME
    container: str = config.CONTAINER_NAME
    manifests: tuple[str, ...] = tuple(config.K8S_MANIFESTS)
    rollout_deadline: float = config.ROLLOUT_DEADLINE
    service_url: str = config.SERVICE_URL
    notify_to: tuple[str, ...] = tuple(config.NOTIFY_TO)

    @classmethod
    def from_config(cls, **overrides) -> PipelineSettings:
        settings = cls(tests_policy=parse_policy(config.TESTS_POLICY))
        return replace(settings, **overrides) if overrides else settings

    def run_tag(self, run_id: str) -> str:
        return self.build_number or run_id

    def log_url(self, run_id: str) -> str:
        if self.build_url:
            return f"{self.build_url.rstrip('/')}/console"
        return str(self.runs_dir / f"{run_id}.json")


# ── Stage bodies ──────────────────────────────────────────────────────

class DeliveryStages:
    """Stage bodies bound to one set of services and settings."""

    def __init__(self, services: PipelineServices, settings: PipelineSettings):
        self.services = services
        self.settings = settings
        self.verifier = RolloutVerifier(services.cluster, clock=services.clock, sleep=services.sleep)

    def _target(self, context: StageContext) -> RolloutTarget:
        s = self.settings
        return RolloutTarget(
            name=s.deployment,
            image=f"{s.image_repository}:{s.run_tag(context.run_id)}",
            readiness_deadline=s.rollout_deadline,
            namespace=s.namespace,
            container=s.container,
        )

    def build(self, context: StageContext) -> None:
        result = self.services.build_tool.build(skip_tests=True)
        if result.exit_code != 0:
            raise BuildError(f"build exited with {result.exit_code}\n{result.output[-2000:]}")
        if result.artifact_path is None:
            raise BuildError("build succeeded but produced no jar under target/")
        context.artifacts["artifact"] = str(result.artifact_path)

    def run_tests(self, context: StageContext) -> None:
        report = self.services.build_tool.test()
        context.artifacts["test_reports"] = [str(p) for p in report.report_paths]
        if report.exit_code != 0:
            raise TestFailure(
                f"tests exited with {report.exit_code}: {report.failures} failures, {report.errors} errors"
                f" out of {report.tests}"
            )
        if report.failed:
            context.mark_unstable(f"{report.failed} of {report.tests} tests failed")

    def capture_test_reports(self, context: StageContext) -> None:
        """Copy the Surefire reports into the run's folder, whatever the test outcome."""
        reports = context.artifacts.get("test_reports")
        if reports is None:
            reports = [str(p) for p in (self.settings.project_dir / config.SUREFIRE_REPORTS).glob("TEST-*.xml")]
        dest = self.settings.runs_dir / context.run_id / "reports"
        captured = []
        for report in reports:
            src = Path(report)
            if not src.is_file():
                continue
            dest.mkdir(parents=True, exist_ok=True)
            captured.append(str(shutil.copy2(src, dest / src.name)))
        context.artifacts["captured_reports"] = captured
        log.info("Captured %d test reports", len(captured))

    def local_smoke(self, context: StageContext) -> None:
        """Start the jar locally, wait for it to answer, run the UI smoke checks."""
        s = self.settings
        artifact = context.artifacts.get("artifact") or find_artifact(s.project_dir)
        if not artifact:
            raise BuildError("no jar available to start")

        jar = Path(artifact).resolve()
        process = self.services.processes.start(
            s.service_name,
            ["java", "-jar", str(jar), f"--server.port={s.app_port}"],
            s.app_log,
            match=jar.name,
            cwd=s.project_dir,
        )
        context.artifacts["process"] = process

        probe = endpoint_probe(
            s.app_base_url, s.health_path, s.root_path, timeout=s.probe_timeout, client=self.services.http_client,
        )
        if s.local_probe_mode == "retry":
            outcome = poll_until_ready(probe, s.verify_attempts, s.verify_interval, sleep=self.services.sleep)
        else:
            outcome = check_after_delay(probe, s.local_startup_delay, sleep=self.services.sleep)
        if outcome == ReadinessOutcome.TIMED_OUT:
            tail = self.services.processes.tail_log(process)
            raise ReadinessTimeout(
                f"{s.service_name} did not become ready at {s.app_base_url}",
                diagnostics=f"=== APP LOG (tail) ===\n{tail}",
            )

        assert_smoke(s.app_base_url, page_factory=self.services.ui_session)

    def stop_local_app(self, context: StageContext) -> None:
        process = context.artifacts.pop("process", None)
        if process is not None:
            self.services.processes.stop(process)

    def quality_scan(self, context: StageContext) -> None:
        reports = [Path(p) for p in context.artifacts.get("test_reports", [])]
        result = self.services.scanner.scan(self.settings.sonar_project_key, reports)
        if not result.ok:
            raise ScanError(f"quality scan exited with {result.exit_code}: {result.stderr.strip()[-1000:]}")

    def build_image(self, context: StageContext) -> None:
        s = self.settings
        dockerfile = s.project_dir / config.DOCKERFILE
        if write_dockerfile(dockerfile, base_image=s.base_image, port=s.app_port):
            context.artifacts["generated_dockerfile"] = str(dockerfile)
        tags = image_tags(s.image_repository, s.image_fixed_tag, s.run_tag(context.run_id))
        context.artifacts["image"] = self.services.engine.build_image(dockerfile, s.project_dir, tags)
        context.artifacts["image_tags"] = tags

    def push_image(self, context: StageContext) -> None:
        s = self.settings
        context.artifacts["pushed_tags"] = publish_image(
            self.services.engine, s.image_repository, s.image_fixed_tag, s.run_tag(context.run_id),
        )

    def deploy(self, context: StageContext) -> None:
        target = self._target(context)
        manifests = [
            Path(m) if Path(m).is_absolute() else self.settings.project_dir / m
            for m in self.settings.manifests
        ]
        self.verifier.deploy(target, manifests)
        if self.verifier.await_rollout(target) == ReadinessOutcome.TIMED_OUT:
            raise RolloutTimeout(
                f"rollout of {target.name} not ready within {target.readiness_deadline:.0f}s",
                diagnostics=self.verifier.diagnostics(target),
            )

    def verify_service(self, context: StageContext) -> None:
        s = self.settings
        probe = endpoint_probe(
            s.service_url, s.health_path, s.root_path, timeout=s.probe_timeout, client=self.services.http_client,
        )
        outcome = poll_until_ready(probe, s.verify_attempts, s.verify_interval, sleep=self.services.sleep)
        if outcome == ReadinessOutcome.TIMED_OUT:
            raise ReadinessTimeout(
                f"{s.service_url} not healthy after {s.verify_attempts} attempts",
                diagnostics=self.verifier.diagnostics(self._target(context)),
            )

    def cleanup_workspace(self, context: StageContext) -> None:
        """Final always-run stage: nothing started by this run may outlive it."""
        self.stop_local_app(context)
        generated = context.artifacts.pop("generated_dockerfile", None)
        if generated:
            Path(generated).unlink(missing_ok=True)
            log.info("Removed generated %s", generated)


# ── Variants ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class StageSpec:
    key: str
    name: str
    policy: FailurePolicy | None  # None: the configurable test policy
    description: str
    action: str
    post_action: str | None = None
    always_run: bool = False


STAGE_SPECS: dict[str, StageSpec] = {s.key: s for s in [
    StageSpec("build", "Build", FailurePolicy.FATAL, "Compile and package the jar", "build"),
    StageSpec("test", "Run Tests", None, "Run the unit tests", "run_tests", post_action="capture_test_reports"),
    StageSpec("local-smoke", "Local Smoke Test", FailurePolicy.FATAL,
              "Start the jar locally, health-check it and run the UI smoke checks",
              "local_smoke", post_action="stop_local_app"),
    StageSpec("scan", "Code Quality", FailurePolicy.TOLERATED, "SonarQube analysis", "quality_scan"),
    StageSpec("image", "Build Image", FailurePolicy.FATAL, "Build the container image", "build_image"),
    StageSpec("push", "Push Image", FailurePolicy.FATAL, "Push the fixed and per-run tags", "push_image"),
    StageSpec("deploy", "Deploy", FailurePolicy.FATAL, "Apply manifests and wait for the rollout", "deploy"),
    StageSpec("verify", "Verify Deployment", FailurePolicy.FATAL, "Probe the deployed service", "verify_service"),
    StageSpec("cleanup", "Cleanup Workspace", FailurePolicy.TOLERATED,
              "Stop leftovers and remove generated files", "cleanup_workspace", always_run=True),
]}


@dataclass(frozen=True)
class Variant:
    name: str
    description: str
    stages: tuple[str, ...] = field(default_factory=tuple)


VARIANTS: dict[str, Variant] = {
    "full": Variant(
        name="full",
        description="Build, test, smoke, scan, image, push, deploy, verify",
        stages=("build", "test", "local-smoke", "scan", "image", "push", "deploy", "verify", "cleanup"),
    ),
    "local": Variant(
        name="local",
        description="Build, test and smoke-test the jar locally",
        stages=("build", "test", "local-smoke", "cleanup"),
    ),
    "release": Variant(
        name="release",
        description="Build and ship an image straight to the cluster",
        stages=("build", "image", "push", "deploy", "verify", "cleanup"),
    ),
}


def stage_plan(variant: str, tests_policy: FailurePolicy = FailurePolicy.TOLERATED,
               include_verify: bool = True) -> list[dict]:
    """Serializable view of a variant: name, ordinal, policy and flags per stage."""
    if variant not in VARIANTS:
        raise KeyError(f"Unknown variant {variant!r}; choose from {', '.join(sorted(VARIANTS))}")
    plan = []
    for key in VARIANTS[variant].stages:
        if key == "verify" and not include_verify:
            continue
        spec = STAGE_SPECS[key]
        plan.append({
            "key": key,
            "name": spec.name,
            "ordinal": len(plan) + 1,
            "policy": (spec.policy or tests_policy).value,
            "always_run": spec.always_run,
            "description": spec.description,
        })
    return plan


def build_stages(variant: str, bodies: DeliveryStages) -> list[Stage]:
    """Bind a variant's stage plan to concrete stage bodies."""
    settings = bodies.settings
    stages = []
    for entry in stage_plan(variant, settings.tests_policy, include_verify=bool(settings.service_url)):
        spec = STAGE_SPECS[entry["key"]]
        action: StageAction = getattr(bodies, spec.action)
        post: StageAction | None = getattr(bodies, spec.post_action) if spec.post_action else None
        stages.append(Stage(
            name=spec.name,
            ordinal=entry["ordinal"],
            policy=FailurePolicy(entry["policy"]),
            action=action,
            post_action=post,
            always_run=spec.always_run,
            description=spec.description,
        ))
    return stages
