"""
Activity: Container Image — builds, tags and pushes the application image with docker.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Iterable

import config
from models.errors import BuildError, ImagePushError
from models.schemas import CommandResult
from utils import shell

log = logging.getLogger(__name__)

DOCKERFILE_TEMPLATE = """\
FROM {base_image}

WORKDIR /app

COPY {artifact_glob} app.jar

EXPOSE {port}

ENTRYPOINT ["java", "-jar", "app.jar"]
"""


class DockerEngine:
    def __init__(
        self,
        docker: str = config.DOCKER_CMD,
        runner: Callable[..., CommandResult] = shell.run,
    ):
        self.docker = docker
        self._run = runner

    def build_image(self, dockerfile: Path, context_dir: Path, tags: Iterable[str]) -> str:
        """Build one image carrying every tag; returns the first tag as the image reference."""
        tags = list(tags)
        if not tags:
            raise ValueError("at least one tag is required")
        args = [self.docker, "build", "-f", str(dockerfile)]
        for tag in tags:
            args += ["-t", tag]
        args.append(str(context_dir))

        log.info("Building image %s", ", ".join(tags))
        result = self._run(args, cwd=context_dir)
        if not result.ok:
            raise BuildError(f"docker build failed (exit={result.exit_code}): {result.stderr.strip()[-1000:]}")
        return tags[0]

    def push(self, image_ref: str) -> CommandResult:
        log.info("Pushing %s", image_ref)
        return self._run([self.docker, "push", image_ref])

    def prune_unused(self) -> None:
        """Best-effort removal of dangling images and stopped containers."""
        result = self._run([self.docker, "system", "prune", "-f"])
        if not result.ok:
            log.warning("docker prune failed (exit=%d): %s", result.exit_code, result.stderr.strip())


def image_tags(repository: str, fixed_tag: str, run_tag: str) -> list[str]:
    """The fixed label and the unique per-run label, in push order."""
    if not run_tag or run_tag == fixed_tag:
        raise ValueError(f"per-run tag {run_tag!r} must be non-empty and differ from the fixed tag {fixed_tag!r}")
    return [f"{repository}:{fixed_tag}", f"{repository}:{run_tag}"]


def publish_image(engine: DockerEngine, repository: str, fixed_tag: str, run_tag: str) -> list[str]:
    """Push the fixed and per-run tags; any failed push aborts before deployment can happen."""
    pushed = []
    for tag in image_tags(repository, fixed_tag, run_tag):
        result = engine.push(tag)
        if not result.ok:
            raise ImagePushError(
                f"push of {tag} failed (exit={result.exit_code}): {result.stderr.strip()[-1000:]}"
            )
        pushed.append(tag)
    log.info("Pushed %d tags", len(pushed))
    return pushed


def write_dockerfile(
    path: Path,
    base_image: str = config.BASE_IMAGE,
    artifact_glob: str = config.APP_JAR_GLOB,
    port: int = config.APP_PORT,
) -> bool:
    """Write the default image recipe unless the project already has one."""
    path = Path(path)
    if path.exists():
        return False
    path.write_text(DOCKERFILE_TEMPLATE.format(base_image=base_image, artifact_glob=artifact_glob, port=port))
    log.info("Wrote default Dockerfile to %s", path)
    return True
