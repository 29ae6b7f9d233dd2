"""Base interface for external collaborators.

Content drafting, VCS execution, build/test verification and device
installation all sit behind tools. The workflow core only sees their
ToolResult.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ToolStatus(Enum):
    """Status of a tool execution."""

    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class ToolResult:
    """Result of a tool execution."""

    status: ToolStatus
    output: Any = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status == ToolStatus.SUCCESS

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, output: Any = None, **metadata: Any) -> "ToolResult":
        return cls(status=ToolStatus.SUCCESS, output=output, metadata=metadata)

    @classmethod
    def failed(cls, error: str, **metadata: Any) -> "ToolResult":
        return cls(status=ToolStatus.FAILURE, error=error, metadata=metadata)


class BaseTool(ABC):
    """Abstract base class for collaborator tools.

    The workflow never looks inside a tool; it only acts on the status of
    the returned result.
    """

    name: str = "base_tool"
    description: str = "Base tool interface"

    @abstractmethod
    def execute(self, **kwargs: Any) -> ToolResult:
        """Run the tool.

        Args:
            **kwargs: Tool-specific parameters

        Returns:
            ToolResult with status and output
        """
        ...

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"
