"""
Activity: Code Quality Scan — runs the SonarQube analysis through Maven.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Iterable

import config
from models.schemas import CommandResult
from utils import shell

log = logging.getLogger(__name__)


class SonarScanner:
    def __init__(
        self,
        project_dir: Path = config.APP_PROJECT_PATH,
        host_url: str = config.SONAR_HOST_URL,
        token: str = config.SONAR_TOKEN,
        mvn: str = config.MAVEN_CMD,
        runner: Callable[..., CommandResult] = shell.run,
    ):
        self.project_dir = Path(project_dir)
        self.host_url = host_url
        self.token = token
        self.mvn = mvn
        self._run = runner

    def scan(self, project_key: str, report_paths: Iterable[Path] = ()) -> CommandResult:
        args = [
            self.mvn, "-B", "sonar:sonar",
            f"-Dsonar.projectKey={project_key}",
            f"-Dsonar.host.url={self.host_url}",
        ]
        if self.token:
            args.append(f"-Dsonar.token={self.token}")
        report_dirs = sorted({str(Path(p).parent) for p in report_paths})
        if report_dirs:
            args.append(f"-Dsonar.junit.reportPaths={','.join(report_dirs)}")

        log.info("Scanning %s as %s", self.project_dir, project_key)
        result = self._run(args, cwd=self.project_dir)
        if result.ok:
            log.info("Quality scan submitted for %s", project_key)
        return result
