"""Schemas module for stagegate.

Provides Pydantic models for:
- Classified commands
- Approval records and audit entries
- Workflow, stage and task state
"""

from .approval import (
    ApprovalRecord,
    AuditEntry,
    AuditKind,
    Decision,
    SubjectKind,
)
from .command import Command, CommandCategory
from .workflow_state import (
    STAGE_ORDER,
    TASK_STATE_ORDER,
    Artifact,
    ArtifactSpec,
    StageId,
    StageRecord,
    TaskState,
    TaskUnit,
    WorkflowState,
    feature_branch_name,
    is_valid_slug,
    task_branch_name,
)

__all__ = [
    # Command
    "Command",
    "CommandCategory",
    # Approval
    "ApprovalRecord",
    "AuditEntry",
    "AuditKind",
    "Decision",
    "SubjectKind",
    # Workflow
    "StageId",
    "STAGE_ORDER",
    "TaskState",
    "TASK_STATE_ORDER",
    "ArtifactSpec",
    "Artifact",
    "StageRecord",
    "TaskUnit",
    "WorkflowState",
    "feature_branch_name",
    "task_branch_name",
    "is_valid_slug",
]
