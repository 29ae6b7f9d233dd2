"""Build/test and device collaborators.

Compiling, testing and installing the application are external concerns.
These tools only report pass or fail per task and check; the scripted
implementations let a run proceed without a real toolchain.
"""

import threading
from abc import abstractmethod
from enum import Enum
from typing import Any

from .base import BaseTool, ToolResult


class CheckKind(str, Enum):
    """Verification checks a task must pass, in order."""

    BUILD = "build"
    UNIT = "unit"
    E2E = "e2e"


class VerificationTool(BaseTool):
    """Runs one check for one task."""

    name = "verification"
    description = "Build and test execution"

    def execute(self, task_name: str = "", check: CheckKind = CheckKind.BUILD, **kwargs: Any) -> ToolResult:
        return self.run_check(task_name, CheckKind(check))

    @abstractmethod
    def run_check(self, task_name: str, check: CheckKind) -> ToolResult:
        ...


class ScriptedVerificationTool(VerificationTool):
    """Passes every check except the ones listed in ``failures``.

    ``failures`` maps a task name to the checks that should fail for it.
    ``fix`` clears them, standing in for an external fix.
    """

    name = "scripted-verification"

    def __init__(self, failures: dict[str, set[CheckKind]] | None = None) -> None:
        self.failures = {name: set(checks) for name, checks in (failures or {}).items()}
        self.runs: list[tuple[str, CheckKind]] = []
        self._lock = threading.Lock()

    def run_check(self, task_name: str, check: CheckKind) -> ToolResult:
        with self._lock:
            self.runs.append((task_name, check))
            failing = check in self.failures.get(task_name, set())
        if failing:
            return ToolResult.failed(f"{check.value} failed for {task_name}", check=check.value)
        return ToolResult.ok({"task": task_name, "check": check.value})

    def fix(self, task_name: str, check: CheckKind | None = None) -> None:
        with self._lock:
            if check is None:
                self.failures.pop(task_name, None)
            else:
                self.failures.get(task_name, set()).discard(check)


class DeviceTool(BaseTool):
    """Installs and launches the built result for final verification."""

    name = "device"
    description = "Install and launch the built feature"

    def execute(self, feature_name: str = "", branch: str = "", **kwargs: Any) -> ToolResult:
        return self.install_and_launch(feature_name, branch)

    @abstractmethod
    def install_and_launch(self, feature_name: str, branch: str) -> ToolResult:
        ...


class ScriptedDeviceTool(DeviceTool):
    """Reports a fixed outcome for every launch."""

    name = "scripted-device"

    def __init__(self, succeed: bool = True, error: str = "launch failed") -> None:
        self.succeed = succeed
        self.error = error
        self.launches: list[str] = []

    def install_and_launch(self, feature_name: str, branch: str) -> ToolResult:
        self.launches.append(branch)
        if not self.succeed:
            return ToolResult.failed(self.error)
        return ToolResult.ok({"feature": feature_name, "branch": branch, "launched": True})
