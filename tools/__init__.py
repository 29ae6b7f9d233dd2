"""Tools module for workflow collaborators.

Provides deterministic tool abstractions for:
- VCS command planning and execution
- Build, unit and end-to-end checks
- Device install and launch
- Artifact content drafting
"""

from .base import BaseTool, ToolResult, ToolStatus
from .drafting import ContentDrafter, StaticDrafter, TemplateDrafter
from .vcs_planner import DEFAULT_REMOTE, StageSubject, TaskPlan, TaskSubject, plan, plan_stage, plan_task
from .vcs_tool import RecordingVcsTool, VcsExecutionFailed, VcsTool
from .verification import (
    CheckKind,
    DeviceTool,
    ScriptedDeviceTool,
    ScriptedVerificationTool,
    VerificationTool,
)

__all__ = [
    "BaseTool",
    "ToolResult",
    "ToolStatus",
    # VCS
    "DEFAULT_REMOTE",
    "StageSubject",
    "TaskSubject",
    "TaskPlan",
    "plan",
    "plan_stage",
    "plan_task",
    "VcsTool",
    "RecordingVcsTool",
    "VcsExecutionFailed",
    # Verification
    "CheckKind",
    "VerificationTool",
    "ScriptedVerificationTool",
    "DeviceTool",
    "ScriptedDeviceTool",
    # Drafting
    "ContentDrafter",
    "TemplateDrafter",
    "StaticDrafter",
]
