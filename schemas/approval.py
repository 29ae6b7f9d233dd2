"""Approval and audit schemas.

Approval records and audit entries are immutable once created; the audit
log only ever appends them.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .command import Command


class Decision(str, Enum):
    """Outcome of an approval gate, also used as a stage's approval status."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SubjectKind(str, Enum):
    """What a gate decision or audit entry is about."""

    COMMAND = "command"
    STAGE = "stage"
    TASK = "task"


class ApprovalRecord(BaseModel):
    """A final gate decision."""

    model_config = ConfigDict(frozen=True)

    subject_id: str = Field(..., description="Command text, stage id or task name")
    subject_kind: SubjectKind = Field(..., description="Kind of subject")
    decision: Decision = Field(..., description="Approved or rejected")
    timestamp: datetime = Field(default_factory=datetime.now)
    decided_by: str = Field("user", description="Who decided ('auto' for auto-approval)")
    notes: str | None = Field(None, description="Reviewer notes or rejection reason")


class AuditKind(str, Enum):
    """Kinds of audit entries."""

    CLASSIFICATION = "classification"
    GATE_DECISION = "gate_decision"
    SCAFFOLD = "scaffold"
    SCAFFOLD_CONFLICT = "scaffold_conflict"
    VCS_PLAN = "vcs_plan"
    VCS_EXECUTION = "vcs_execution"
    STAGE_TRANSITION = "stage_transition"
    TASK_TRANSITION = "task_transition"
    ERROR = "error"


class AuditEntry(BaseModel):
    """One append-only audit log record.

    ``sequence`` is assigned by the log at append time and is strictly
    increasing, so it gives the causal order of everything recorded.
    """

    model_config = ConfigDict(frozen=True)

    sequence: int = Field(..., ge=1, description="Monotonic sequence number")
    kind: AuditKind = Field(..., description="Entry kind")
    subject_id: str = Field(..., description="Command text, stage id or task name")
    subject_kind: SubjectKind | None = Field(None, description="Kind of subject")
    timestamp: datetime = Field(default_factory=datetime.now)

    # Gate outcome (gate_decision entries)
    decision: Decision | None = Field(None, description="Gate decision if any")
    decided_by: str | None = Field(None, description="Who decided")
    notes: str | None = Field(None, description="Decision notes")

    # Transitions (stage_transition / task_transition entries)
    from_state: str | None = Field(None, description="State before the transition")
    to_state: str | None = Field(None, description="State after the transition")

    # Classification entries
    command: Command | None = Field(None, description="Classified command")

    detail: dict[str, Any] = Field(default_factory=dict, description="Free-form context")

    def as_approval_record(self) -> ApprovalRecord | None:
        """Return the approval record carried by a gate entry."""
        if self.kind != AuditKind.GATE_DECISION or self.decision is None:
            return None
        return ApprovalRecord(
            subject_id=self.subject_id,
            subject_kind=self.subject_kind or SubjectKind.COMMAND,
            decision=self.decision,
            timestamp=self.timestamp,
            decided_by=self.decided_by or "user",
            notes=self.notes,
        )
