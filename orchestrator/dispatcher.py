"""Command execution layer.

Raw command text is validated, classified, gated and only then handed to
the execution tool. Planned VCS commands take the same path as anything a
user submits.
"""

import logging
from dataclasses import dataclass

from schemas.approval import AuditKind, Decision, SubjectKind
from schemas.command import Command
from tools.base import BaseTool, ToolResult
from tools.vcs_tool import VcsExecutionFailed

from .audit_log import AuditLog
from .checkpoints import ApprovalGate
from .classifier import classify
from .errors import ApprovalDenied, InvalidCommand

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    """Outcome of one submitted command."""

    command: Command
    decision: Decision
    result: ToolResult | None = None

    @property
    def executed(self) -> bool:
        return self.result is not None and self.result.success


class CommandDispatcher:
    """Classifies, gates and executes command text."""

    def __init__(self, gate: ApprovalGate, audit_log: AuditLog, executor: BaseTool) -> None:
        """Initialize dispatcher.

        Args:
            gate: Approval gate every command passes through
            audit_log: Log for classifications and executions
            executor: Tool that actually runs approved commands
        """
        self.gate = gate
        self.audit_log = audit_log
        self.executor = executor

    def submit(self, raw: str) -> DispatchResult:
        """Run one command through classification, the gate and execution.

        Returns:
            DispatchResult; ``decision`` is Pending when no answer arrived yet

        Raises:
            InvalidCommand: For empty or malformed text (never gated)
            ApprovalDenied: If the gate rejects the command
            VcsExecutionFailed: If the executor reports failure
        """
        try:
            command = classify(raw)
        except InvalidCommand as e:
            self.audit_log.append(
                AuditKind.ERROR,
                repr(raw)[:200],
                subject_kind=SubjectKind.COMMAND,
                detail={"error": "invalid_command", "message": str(e)},
            )
            raise

        self.audit_log.append(
            AuditKind.CLASSIFICATION,
            command.raw_text,
            subject_kind=SubjectKind.COMMAND,
            command=command,
        )

        decision = self.gate.gate_command(command)
        if decision == Decision.PENDING:
            return DispatchResult(command=command, decision=decision)
        if decision == Decision.REJECTED:
            raise ApprovalDenied(command.raw_text)

        result = self.executor.execute(command=command.body)
        self.audit_log.append(
            AuditKind.VCS_EXECUTION,
            command.raw_text,
            subject_kind=SubjectKind.COMMAND,
            detail={"success": result.success, "error": result.error},
        )
        if not result.success:
            logger.warning("DISPATCH: %s failed: %s", command.raw_text, result.error)
            raise VcsExecutionFailed(command.raw_text, result.error)

        return DispatchResult(command=command, decision=decision, result=result)

    def submit_all(self, commands: list[str]) -> list[DispatchResult]:
        """Submit commands in order, stopping at the first pending one.

        Errors from ``submit`` propagate and stop the sequence.
        """
        results = []
        for raw in commands:
            outcome = self.submit(raw)
            results.append(outcome)
            if outcome.decision == Decision.PENDING:
                break
        return results
