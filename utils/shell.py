"""
Subprocess helpers shared by every activity that shells out.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from pathlib import Path
from typing import Mapping, Sequence

from models.errors import CommandError
from models.schemas import CommandResult

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 1800


def run(
    args: Sequence[str],
    *,
    cwd: str | Path | None = None,
    env_overrides: Mapping[str, str] | None = None,
    timeout: float | None = DEFAULT_TIMEOUT,
) -> CommandResult:
    """Run a command to completion and capture its output.

    Never raises for a non-zero exit; a missing executable or a timeout is
    reported as exit code 127 / -1 so callers handle every failure the same way.
    """
    command_str = " ".join(shlex.quote(str(a)) for a in args)
    env = {**os.environ, **(env_overrides or {})}
    log.debug("Running: %s", command_str)

    try:
        proc = subprocess.run(
            [str(a) for a in args],
            cwd=str(cwd) if cwd else None,
            capture_output=True,
            text=True,
            env=env,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        log.error("Command not found: %s", args[0])
        return CommandResult(command_str=command_str, stdout="", stderr=str(e), exit_code=127)
    except subprocess.TimeoutExpired:
        log.error("Command timed out after %ss: %s", timeout, command_str)
        return CommandResult(
            command_str=command_str,
            stdout="",
            stderr=f"timed out after {timeout}s",
            exit_code=-1,
        )

    if proc.returncode != 0:
        log.warning("%s failed (exit=%d): %s", command_str, proc.returncode, proc.stderr.strip()[:500])
    return CommandResult(
        command_str=command_str,
        stdout=proc.stdout,
        stderr=proc.stderr,
        exit_code=proc.returncode,
    )


def check(result: CommandResult) -> CommandResult:
    """Raise CommandError unless the command succeeded."""
    if not result.ok:
        raise CommandError(result.command_str, result.exit_code, result.output[-2000:])
    return result
