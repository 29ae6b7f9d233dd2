"""Orchestrator module for stagegate.

Approval-gated feature workflow with:
- Command classification and the approval gate
- Sequential stage machine with per-task sub-workflows
- Append-only audit log
- State persistence and resume
"""

from .audit_log import AuditLog
from .checkpoints import (
    ApprovalGate,
    ApprovalRequest,
    ApprovalResponse,
    CallbackConfirmationSource,
    ChannelConfirmationSource,
    ConfirmationSource,
    ConsoleConfirmationSource,
    GateSubject,
    ScriptedConfirmationSource,
)
from .classifier import classify, split_prefix
from .dispatcher import CommandDispatcher, DispatchResult
from .errors import ApprovalDenied, InvalidCommand, InvalidTransition, VerificationFailed
from .runner import FeatureRunner
from .state_machine import TaskRunOutcome, WorkflowStageMachine, parse_task_list
from .task_workflow import TaskSubWorkflow

__all__ = [
    # Classification
    "classify",
    "split_prefix",
    # Gate
    "ApprovalGate",
    "ApprovalRequest",
    "ApprovalResponse",
    "GateSubject",
    "ConfirmationSource",
    "ConsoleConfirmationSource",
    "CallbackConfirmationSource",
    "ScriptedConfirmationSource",
    "ChannelConfirmationSource",
    # Execution
    "CommandDispatcher",
    "DispatchResult",
    "AuditLog",
    # Workflow
    "WorkflowStageMachine",
    "TaskSubWorkflow",
    "TaskRunOutcome",
    "FeatureRunner",
    "parse_task_list",
    # Errors
    "InvalidCommand",
    "ApprovalDenied",
    "InvalidTransition",
    "VerificationFailed",
]
