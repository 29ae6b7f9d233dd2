"""Workflow state schema.

State machine representation of a feature moving through the nine fixed
stages, plus the per-task units owned by the Implementation stage.
"""

import hashlib
import re
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .approval import Decision

SLUG_PATTERN = re.compile(r"[a-z0-9][a-z0-9-]*")


class StageId(str, Enum):
    """Workflow stages, declared in execution order."""

    INIT = "init"
    PRD = "prd"
    HIGH_LEVEL_DESIGN = "high_level_design"
    LOW_LEVEL_DESIGN = "low_level_design"
    TEST_PLAN = "test_plan"
    TASK_SPLIT = "task_split"
    IMPLEMENTATION = "implementation"
    INTEGRATION = "integration"
    BUILD_VERIFY = "build_verify"

    @property
    def order(self) -> int:
        return STAGE_ORDER.index(self)

    @property
    def display_name(self) -> str:
        return STAGE_TITLES[self]

    def next(self) -> "StageId | None":
        """Stage following this one, or None for the last stage."""
        position = self.order + 1
        return STAGE_ORDER[position] if position < len(STAGE_ORDER) else None


STAGE_ORDER: list[StageId] = list(StageId)

STAGE_TITLES: dict[StageId, str] = {
    StageId.INIT: "Init",
    StageId.PRD: "PRD",
    StageId.HIGH_LEVEL_DESIGN: "High-level design",
    StageId.LOW_LEVEL_DESIGN: "Low-level design",
    StageId.TEST_PLAN: "Test plan",
    StageId.TASK_SPLIT: "Task split",
    StageId.IMPLEMENTATION: "Implementation",
    StageId.INTEGRATION: "Integration",
    StageId.BUILD_VERIFY: "Build verification",
}


class TaskState(str, Enum):
    """Task sub-workflow states, declared in execution order."""

    PLANNED = "planned"
    BRANCHED = "branched"
    SCAFFOLDED = "scaffolded"
    TESTS_WRITTEN = "tests_written"
    BUILD_CHECKED = "build_checked"
    UNIT_TESTED = "unit_tested"
    E2E_TESTED = "e2e_tested"
    APPROVAL_PENDING = "approval_pending"
    COMMITTED = "committed"
    PUSHED = "pushed"

    @property
    def order(self) -> int:
        return TASK_STATE_ORDER.index(self)

    def next(self) -> "TaskState | None":
        position = self.order + 1
        return TASK_STATE_ORDER[position] if position < len(TASK_STATE_ORDER) else None


TASK_STATE_ORDER: list[TaskState] = list(TaskState)


class ArtifactSpec(BaseModel):
    """A file a stage must produce."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(..., description="Workspace-relative POSIX path")
    template_kind: str = Field(..., description="Template used to render the body")


class Artifact(BaseModel):
    """A scaffolded file."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(..., description="Workspace-relative POSIX path")
    template_kind: str = Field(..., description="Template the content came from")
    content: str = Field(..., description="File content")

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.content.encode("utf-8")).hexdigest()


class StageRecord(BaseModel):
    """One stage of the workflow.

    Records are instantiated in order and never removed; they only move
    from pending to approved (or to rejected until resubmitted).
    """

    id: StageId = Field(..., description="Stage identity")
    order: int = Field(..., ge=0, description="Position in the fixed sequence")
    artifact_specs: list[ArtifactSpec] = Field(
        default_factory=list,
        description="Files the stage must produce",
    )
    approval_status: Decision = Field(Decision.PENDING, description="Advance decision")

    # Progress
    artifacts: dict[str, str] = Field(
        default_factory=dict,
        description="Scaffolded path -> content checksum",
    )
    scaffolded: bool = Field(False, description="Has the stage been scaffolded")
    vcs_commands: list[str] | None = Field(
        None,
        description="Planned VCS command texts (None until planned)",
    )

    # Timing
    started_at: datetime = Field(default_factory=datetime.now)
    approved_at: datetime | None = Field(None, description="When the stage was approved")


class TaskUnit(BaseModel):
    """A development task owned by the Implementation stage.

    The unit references its feature only by name.
    """

    name: str = Field(..., description="Task slug")
    feature_name: str = Field(..., description="Owning feature (by id only)")
    branch_name: str = Field(..., description="task/<feature>/<task>")
    sub_state: TaskState = Field(TaskState.PLANNED, description="Current sub-state")
    last_error: str | None = Field(None, description="Most recent failure")
    archived: bool = Field(False, description="Set once the task has been pushed")
    history: list[str] = Field(
        default_factory=list,
        description="Sub-states entered, in order",
    )


class WorkflowState(BaseModel):
    """Complete workflow state.

    This value is passed to and returned from every stage machine
    operation and persisted to disk between steps.
    """

    feature_name: str = Field(..., description="Feature slug, e.g. login-v2")
    feature_branch: str = Field(..., description="feature/<feature>")
    current_stage: StageId = Field(StageId.INIT, description="Active stage")
    stages: dict[str, StageRecord] = Field(
        default_factory=dict,
        description="Instantiated stages by id",
    )
    task_plan: list[str] = Field(default_factory=list, description="Approved task names")
    tasks: dict[str, TaskUnit] = Field(default_factory=dict, description="Task units by name")
    completed: bool = Field(False, description="BuildVerify approved")

    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    def get_stage(self, stage: StageId) -> StageRecord | None:
        """Get the record for a stage if it has been instantiated."""
        return self.stages.get(stage.value)

    @property
    def current(self) -> StageRecord:
        return self.stages[self.current_stage.value]

    def approved_stages(self) -> list[StageId]:
        return [
            StageId(key)
            for key, record in self.stages.items()
            if record.approval_status == Decision.APPROVED
        ]

    class Config:
        json_schema_extra = {
            "example": {
                "feature_name": "login-v2",
                "feature_branch": "feature/login-v2",
                "current_stage": "prd",
                "task_plan": [],
            }
        }


def feature_branch_name(feature_name: str) -> str:
    return f"feature/{feature_name}"


def task_branch_name(feature_name: str, task_name: str) -> str:
    return f"task/{feature_name}/{task_name}"


def is_valid_slug(name: str) -> bool:
    """Check a feature or task name against the branch naming grammar."""
    return SLUG_PATTERN.fullmatch(name) is not None
