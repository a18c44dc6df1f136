from __future__ import annotations

from typing import Sequence


class NearnetError(Exception):
    """Base class for every failure raised while building a topology."""


class OrchestratorError(NearnetError):
    """Container creation or command execution failed in the orchestrator."""


class ProbeError(NearnetError):
    """A readiness probe could not be carried out at all."""


class ReadinessTimeoutError(NearnetError):
    def __init__(self, description: str, attempts: int, delay_s: float):
        self.description = description
        self.attempts = attempts
        self.delay_s = delay_s
        super().__init__(
            f"{description} didn't become available even after {attempts} attempts "
            f"with {delay_s:g}s between attempts"
        )


class InitializationCommandError(NearnetError):
    def __init__(self, command: Sequence[str], exit_code: int, output: str):
        self.command = list(command)
        self.exit_code = exit_code
        self.output = output
        super().__init__(
            f"Command '{' '.join(self.command)}' returned error exit code '{exit_code}' with logs:\n{output}"
        )


class TopologyError(NearnetError):
    """Raised by the assembler; names the stage that failed and keeps the original error."""

    def __init__(self, stage: str, cause: NearnetError):
        self.stage = stage
        self.cause = cause
        super().__init__(f"Stage '{stage}' failed: {cause}")
