"""
Pipeline error taxonomy.

Stage bodies raise these; only the stage executor decides whether a failure
aborts the run, based on the stage's failure policy.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for failures raised by stage bodies."""


class CommandError(PipelineError):
    """An external command exited non-zero."""

    def __init__(self, command: str, exit_code: int, output: str = ""):
        self.command = command
        self.exit_code = exit_code
        self.output = output
        super().__init__(f"`{command}` exited with {exit_code}")


class BuildError(PipelineError):
    pass


class TestFailure(PipelineError):
    """Tests ran but some failed or errored."""

    __test__ = False  # not a pytest test class


class ScanError(PipelineError):
    pass


class ImagePushError(PipelineError):
    pass


class DeployError(PipelineError):
    pass


class ReadinessTimeout(PipelineError):
    """A readiness probe never succeeded; carries collected diagnostics."""

    def __init__(self, message: str, diagnostics: str = ""):
        self.diagnostics = diagnostics
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if self.diagnostics:
            return f"{base}\n{self.diagnostics}"
        return base


class RolloutTimeout(ReadinessTimeout):
    pass


class SmokeTestFailure(PipelineError):
    pass
