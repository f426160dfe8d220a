"""Shared fakes and fixtures for the delivery pipeline tests."""

from __future__ import annotations

from contextlib import nullcontext
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlsplit

import httpx
import pytest
from playwright.sync_api import Error as PlaywrightError

from activities.build import BuildResult, TestReport
from activities.smoke import FIND_OWNERS_LINK, NAV_LINKS, VETS_LINK, VETS_TABLE, WELCOME_HEADING
from models.schemas import CommandResult, FailurePolicy, ManagedProcess, RolloutTarget, Stage
from workflows.stages import PipelineServices, PipelineSettings


def ok(command: str = "fake", stdout: str = "") -> CommandResult:
    return CommandResult(command_str=command, stdout=stdout, stderr="", exit_code=0)


def failed(command: str = "fake", stderr: str = "boom", exit_code: int = 1) -> CommandResult:
    return CommandResult(command_str=command, stdout="", stderr=stderr, exit_code=exit_code)


class FakeBuildTool:
    def __init__(self, artifact: Path | None = None, build_exit: int = 0, test_exit: int = 0,
                 tests: int = 10, failures: int = 0):
        self.artifact = artifact
        self.build_exit = build_exit
        self.test_exit = test_exit
        self.tests = tests
        self.failures = failures
        self.calls: list[str] = []

    def build(self, skip_tests: bool = True) -> BuildResult:
        self.calls.append("build")
        return BuildResult(artifact_path=self.artifact if self.build_exit == 0 else None, exit_code=self.build_exit)

    def test(self) -> TestReport:
        self.calls.append("test")
        return TestReport(report_paths=(), exit_code=self.test_exit, tests=self.tests, failures=self.failures)


class FakeScanner:
    def __init__(self, exit_code: int = 0):
        self.exit_code = exit_code
        self.scans: list[str] = []

    def scan(self, project_key, report_paths=()):
        self.scans.append(project_key)
        return ok("sonar") if self.exit_code == 0 else failed("sonar", exit_code=self.exit_code)


class FakeEngine:
    def __init__(self, failing_tags: set[str] | None = None, prune_error: Exception | None = None):
        self.failing_tags = failing_tags or set()
        self.prune_error = prune_error
        self.built: list[list[str]] = []
        self.pushed: list[str] = []
        self.prunes = 0

    def build_image(self, dockerfile, context_dir, tags):
        tags = list(tags)
        self.built.append(tags)
        return tags[0]

    def push(self, image_ref):
        if image_ref in self.failing_tags:
            return failed("docker push", stderr="denied")
        self.pushed.append(image_ref)
        return ok("docker push")

    def prune_unused(self):
        self.prunes += 1
        if self.prune_error is not None:
            raise self.prune_error


class FakeCluster:
    """In-memory cluster: apply is declarative, rollout becomes ready after N status checks."""

    def __init__(self, ready_after: int = 1, clock=None):
        self.ready_after = ready_after
        self.resources: dict[str, str] = {}
        self.images: dict[str, str] = {}
        self.applies = 0
        self.status_checks = 0
        self.clock = clock

    def apply(self, manifest_paths, namespace=None):
        self.applies += 1
        for path in manifest_paths:
            self.resources[str(path)] = "applied"
        return ok("kubectl apply")

    def set_image(self, target: RolloutTarget):
        self.images[target.name] = target.image
        self.status_checks = 0
        return ok("kubectl set image")

    def rollout_status(self, name, timeout, namespace=None):
        self.status_checks += 1
        if self.clock is not None:
            self.clock.advance(timeout)
        return self.ready_after is not None and self.status_checks >= self.ready_after

    def describe(self, name, namespace=None):
        return f"Name: {name}\nReplicas: 0 available"

    def logs(self, name, tail_lines, namespace=None):
        return "Started PetClinicApplication"


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeProcesses:
    def __init__(self) -> None:
        self.started: list[ManagedProcess] = []
        self.stopped: list[ManagedProcess | None] = []

    def start(self, name, command, log_path, *, match="", cwd=None, env=None):
        process = ManagedProcess(name=name, pid=4242, log_path=Path(log_path), match=match)
        self.started.append(process)
        return process

    def stop(self, process=None):
        self.stopped.append(process)

    def tail_log(self, process, lines=50):
        return "Caused by: java.net.BindException: Address already in use"


class RecordingChannel:
    def __init__(self, error: Exception | None = None, code: int = 0):
        self.error = error
        self.code = code
        self.sent: list[dict] = []

    def send(self, to, subject, body_html, attachments=None):
        self.sent.append({"to": list(to), "subject": subject, "body": body_html, "attachments": attachments})
        if self.error is not None:
            raise self.error
        return self.code


def petclinic_client(health: int = 200, root: int = 200) -> httpx.Client:
    """httpx client answering the readiness probes like a running PetClinic."""
    routes = {"/actuator/health": health, "/": root}

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(routes.get(request.url.path, 404), text="{}")

    return httpx.Client(transport=httpx.MockTransport(handler))


@dataclass
class FakeDocument:
    """A rendered page: its title, the text of elements per selector, link targets per selector."""
    title: str = ""
    elements: dict[str, list[str]] = field(default_factory=dict)
    links: dict[str, str] = field(default_factory=dict)
    status: int = 200


class FakeResponse:
    def __init__(self, status: int):
        self.status = status
        self.ok = status < 400


class FakeLocator:
    def __init__(self, page: FakeBrowserPage, selector: str):
        self.page = page
        self.selector = selector

    def count(self) -> int:
        return len(self.page.document.elements.get(self.selector, []))

    @property
    def first(self) -> FakeLocator:
        return self

    def inner_text(self) -> str:
        texts = self.page.document.elements.get(self.selector)
        if not texts:
            raise PlaywrightError(f"Timeout 10000ms exceeded waiting for locator({self.selector!r})")
        return texts[0]

    def click(self) -> None:
        href = self.page.document.links.get(self.selector)
        if href is None:
            raise PlaywrightError(f"Timeout 10000ms exceeded waiting for locator({self.selector!r})")
        self.page.goto(self.page.origin + href)


class FakeBrowserPage:
    """Just enough of a Playwright page to walk a static site."""

    def __init__(self, site: dict[str, FakeDocument], unreachable: bool = False):
        self.site = site
        self.unreachable = unreachable
        self.url = "about:blank"
        self.origin = ""
        self.document = FakeDocument()
        self.visited: list[str] = []

    def goto(self, url: str) -> FakeResponse:
        if self.unreachable:
            raise PlaywrightError(f"net::ERR_CONNECTION_REFUSED at {url}")
        parts = urlsplit(url)
        self.origin = f"{parts.scheme}://{parts.netloc}"
        self.url = url
        self.visited.append(parts.path or "/")
        self.document = self.site.get(parts.path or "/", FakeDocument(title="Not Found", status=404))
        return FakeResponse(self.document.status)

    def title(self) -> str:
        return self.document.title

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    def wait_for_load_state(self, state: str = "load") -> None:
        pass


def petclinic_site(**pages: FakeDocument) -> dict[str, FakeDocument]:
    """The PetClinic pages the smoke checks visit; keyword overrides replace pages by name."""
    site = {
        "home": FakeDocument(
            title="PetClinic :: a Spring Framework demonstration",
            elements={
                WELCOME_HEADING: ["Welcome"],
                NAV_LINKS: ["Home", "Find owners", "Veterinarians", "Error"],
                FIND_OWNERS_LINK: ["Find owners"],
                VETS_LINK: ["Veterinarians"],
            },
            links={FIND_OWNERS_LINK: "/owners/find", VETS_LINK: "/vets.html"},
        ),
        "owners": FakeDocument(title="PetClinic :: Find Owners", elements={"form": ["Find Owner"]}),
        "vets": FakeDocument(title="PetClinic :: Veterinarians", elements={VETS_TABLE: ["James Carter"]}),
    }
    site.update(pages)
    return {"/": site["home"], "/owners/find": site["owners"], "/vets.html": site["vets"]}


def petclinic_ui(site: dict[str, FakeDocument] | None = None, unreachable: bool = False):
    """Page factory handing out a fake browser page over ``site``."""
    site = site if site is not None else petclinic_site()
    return lambda: nullcontext(FakeBrowserPage(site, unreachable=unreachable))


def make_stage(name, ordinal, policy=FailurePolicy.FATAL, fail=False, calls=None, post=None, always_run=False):
    """Stage whose body appends its name to ``calls`` and optionally raises."""
    calls = calls if calls is not None else []

    def action(context):
        calls.append(name)
        if fail:
            raise RuntimeError(f"{name} broke")

    return Stage(name=name, ordinal=ordinal, policy=policy, action=action, post_action=post, always_run=always_run)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path) -> PipelineSettings:
    return PipelineSettings(
        job_name="petclinic-delivery",
        build_number="",
        build_url="",
        project_dir=tmp_path / "project",
        runs_dir=tmp_path / "runs",
        tests_policy=FailurePolicy.TOLERATED,
        app_log=tmp_path / "state" / "app.log",
        image_repository="registry.local/petclinic",
        image_fixed_tag="latest",
        manifests=("k8s/deployment.yaml",),
        rollout_deadline=60,
        service_url="",
        notify_to=("team@example.com",),
        local_startup_delay=0,
        verify_interval=0,
    )


@pytest.fixture
def services(tmp_path, clock) -> PipelineServices:
    jar = tmp_path / "project" / "target" / "petclinic.jar"
    jar.parent.mkdir(parents=True)
    jar.write_bytes(b"PK")
    return PipelineServices(
        build_tool=FakeBuildTool(artifact=jar),
        scanner=FakeScanner(),
        engine=FakeEngine(),
        cluster=FakeCluster(clock=clock),
        processes=FakeProcesses(),
        channel=RecordingChannel(),
        http_client=petclinic_client(),
        ui_session=petclinic_ui(),
        sleep=clock.sleep,
        clock=clock,
    )
