"""Version-control execution provider.

Real VCS execution is an external collaborator. The default tool records
the commands it is given without running them, which is what dry runs and
tests use.
"""

import logging
import threading
from abc import abstractmethod
from typing import Any

from .base import BaseTool, ToolResult

logger = logging.getLogger(__name__)


class VcsExecutionFailed(Exception):
    """Raised when the execution provider reports failure for a planned command."""

    def __init__(self, command: str, error: str | None = None) -> None:
        self.command = command
        self.error = error
        message = f"VCS command failed: {command}"
        if error:
            message += f"\n{error}"
        super().__init__(message)


class VcsTool(BaseTool):
    """Executes planned version-control command text."""

    name = "vcs"
    description = "Version-control command execution"

    def execute(self, command: str = "", **kwargs: Any) -> ToolResult:
        """Execute one command (the body of a classified command line)."""
        if not command.strip():
            return ToolResult.failed("Empty VCS command")
        return self.run(command)

    @abstractmethod
    def run(self, command: str) -> ToolResult:
        ...


class RecordingVcsTool(VcsTool):
    """Dry-run VCS tool that records every command.

    Commands containing any of ``fail_on`` substrings fail, so callers can
    exercise the failure path.
    """

    name = "vcs-recorder"

    def __init__(self, fail_on: list[str] | None = None) -> None:
        self.fail_on = list(fail_on or [])
        self.executed: list[str] = []
        self._lock = threading.Lock()

    def run(self, command: str) -> ToolResult:
        for marker in self.fail_on:
            if marker in command:
                logger.warning("VCS: simulated failure for %s", command)
                return ToolResult.failed(f"simulated failure ({marker})")

        with self._lock:
            self.executed.append(command)
        logger.debug("VCS: recorded %s", command)
        return ToolResult.ok(command)
