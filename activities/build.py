"""
Activity: Build Tool — compiles/packages the application and runs its tests with Maven.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable

import config
from models.schemas import CommandResult
from utils import shell

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildResult:
    artifact_path: Path | None
    exit_code: int
    output: str = ""


@dataclass(frozen=True)
class TestReport:
    report_paths: tuple[Path, ...]
    exit_code: int
    tests: int = 0
    failures: int = 0
    errors: int = 0
    skipped: int = 0
    output: str = ""

    __test__ = False  # not a pytest test class

    @property
    def failed(self) -> int:
        return self.failures + self.errors


class MavenBuild:
    """Thin wrapper over the ``mvn`` CLI for one project directory."""

    def __init__(
        self,
        project_dir: Path = config.APP_PROJECT_PATH,
        mvn: str = config.MAVEN_CMD,
        runner: Callable[..., CommandResult] = shell.run,
    ):
        self.project_dir = Path(project_dir)
        self.mvn = mvn
        self._run = runner

    def build(self, skip_tests: bool = True) -> BuildResult:
        """``mvn clean package`` and locate the produced jar."""
        args = [self.mvn, "-B", "clean", "package"]
        if skip_tests:
            args.append("-DskipTests")
        log.info("Building %s (skip_tests=%s)", self.project_dir, skip_tests)
        result = self._run(args, cwd=self.project_dir)
        artifact = find_artifact(self.project_dir) if result.ok else None
        if result.ok:
            log.info("Build produced %s", artifact)
        return BuildResult(artifact_path=artifact, exit_code=result.exit_code, output=result.output[-5000:])

    def test(self) -> TestReport:
        """``mvn test`` and summarize the Surefire XML reports."""
        log.info("Running tests in %s", self.project_dir)
        result = self._run([self.mvn, "-B", "test"], cwd=self.project_dir)
        reports = tuple(sorted((self.project_dir / config.SUREFIRE_REPORTS).glob("TEST-*.xml")))
        counts = parse_surefire_reports(reports)
        log.info(
            "Tests: %d run, %d failures, %d errors, %d skipped (exit=%d)",
            counts["tests"], counts["failures"], counts["errors"], counts["skipped"], result.exit_code,
        )
        return TestReport(report_paths=reports, exit_code=result.exit_code, output=result.output[-5000:], **counts)


def find_artifact(project_dir: Path) -> Path | None:
    """Newest runnable jar under target/, ignoring sources/javadoc jars."""
    candidates = [
        p for p in Path(project_dir).glob(config.APP_JAR_GLOB)
        if not p.name.endswith(("-sources.jar", "-javadoc.jar", "-tests.jar"))
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda p: p.stat().st_mtime)


def parse_surefire_reports(paths: Iterable[Path]) -> dict[str, int]:
    """Sum the test counters of JUnit XML reports (testsuite or testsuites roots)."""
    totals = {"tests": 0, "failures": 0, "errors": 0, "skipped": 0}
    for path in paths:
        try:
            root = ET.parse(path).getroot()
        except (ET.ParseError, OSError) as e:
            log.warning("Unreadable test report %s: %s", path, e)
            continue
        suites = [root] if root.tag == "testsuite" else root.findall("testsuite")
        for suite in suites:
            for key in totals:
                try:
                    totals[key] += int(suite.get(key, 0))
                except ValueError:
                    pass
    return totals
