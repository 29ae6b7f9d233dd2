"""Approval gate and confirmation sources.

The gate renders every subject to its confirmation source, lets subjects
that do not need a human through immediately, and blocks the others until
the source answers yes or no. There is no timeout: a source with no answer
leaves the gate pending, and only a Rejected answer cancels.
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Prompt

from schemas.approval import ApprovalRecord, AuditKind, Decision, SubjectKind
from schemas.command import Command

from .audit_log import AuditLog
from .errors import ApprovalDenied

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GateSubject:
    """Something that may need approval before it proceeds."""

    subject_id: str
    kind: SubjectKind
    text: str
    requires_approval: bool
    artifact_paths: tuple[str, ...] = ()

    @classmethod
    def for_command(cls, command: Command) -> "GateSubject":
        return cls(
            subject_id=command.raw_text,
            kind=SubjectKind.COMMAND,
            text=command.raw_text,
            requires_approval=command.requires_approval,
        )


@dataclass(frozen=True)
class ApprovalRequest:
    """Request emitted by the gate to a confirmation source."""

    subject: GateSubject
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


@dataclass
class ApprovalResponse:
    """Response from a confirmation source."""

    approved: bool
    notes: str | None = None
    decided_by: str = "user"
    recorded: bool = False  # already in the audit log

    @property
    def decision(self) -> Decision:
        return Decision.APPROVED if self.approved else Decision.REJECTED


class ConfirmationSource(ABC):
    """Where approval requests are shown and answered."""

    def attach(self, recorder: Callable[[ApprovalRequest, ApprovalResponse], None]) -> None:
        """Receive the gate's recorder.

        Sources answered from another thread call it while registering an
        answer, so the log follows the order answers are given. Others
        leave recording to the gate.
        """

    @abstractmethod
    def show(self, request: ApprovalRequest) -> None:
        """Render the exact subject text (called for every gated subject)."""
        ...

    @abstractmethod
    def ask(self, request: ApprovalRequest) -> ApprovalResponse | None:
        """Wait for a yes/no answer; None means no answer yet."""
        ...


class ConsoleConfirmationSource(ConfirmationSource):
    """Interactive rich prompt.

    Prompts are serialized so concurrent tasks never interleave questions.
    """

    def __init__(
        self,
        console: Console | None = None,
        workspace: Path | None = None,
        approver: str = "user",
    ) -> None:
        self.console = console or Console()
        self.workspace = Path(workspace) if workspace else Path.cwd()
        self.approver = approver
        self._prompt_lock = threading.Lock()

    def show(self, request: ApprovalRequest) -> None:
        subject = request.subject
        if subject.requires_approval:
            return  # ask() renders the full panel
        self.console.print(f"[dim]auto-approved {subject.kind.value}:[/dim] {escape(subject.text)}")

    def ask(self, request: ApprovalRequest) -> ApprovalResponse:
        with self._prompt_lock:
            return self._prompt(request)

    def _prompt(self, request: ApprovalRequest) -> ApprovalResponse:
        subject = request.subject
        self.console.print()
        self.console.print(
            Panel(
                f"[bold yellow]Approval Required: {escape(subject.text)}[/bold yellow]",
                title=f"{subject.kind.value} {subject.subject_id}",
                border_style="yellow",
            )
        )

        if subject.artifact_paths:
            self.console.print("[bold]Artifacts to review:[/bold]")
            for path in subject.artifact_paths:
                self.console.print(f"  - {self.workspace / path}")
            self.console.print()

        self.console.print("[bold]Options:[/bold]")
        self.console.print("  [green]y/yes[/green] - Approve and continue")
        self.console.print("  [red]n/no[/red] - Reject and stop")
        self.console.print("  [blue]v/view[/blue] - View artifact contents")
        self.console.print()

        while True:
            choice = Prompt.ask(
                "Your decision",
                choices=["y", "yes", "n", "no", "v", "view"],
                console=self.console,
            )

            if choice in ("y", "yes"):
                notes = Prompt.ask("Any notes? (optional)", default="", console=self.console)
                return ApprovalResponse(approved=True, notes=notes or None, decided_by=self.approver)

            elif choice in ("n", "no"):
                reason = Prompt.ask("Reason for rejection", default="", console=self.console)
                return ApprovalResponse(approved=False, notes=reason or None, decided_by=self.approver)

            elif choice in ("v", "view"):
                self._view_artifacts(subject)

    def _view_artifacts(self, subject: GateSubject) -> None:
        """Display artifact contents."""
        if not subject.artifact_paths:
            self.console.print("[dim]No artifacts to view[/dim]")
            return

        for path in subject.artifact_paths:
            full_path = self.workspace / path
            if full_path.exists():
                content = full_path.read_text(encoding="utf-8")
                self.console.print()
                self.console.print(
                    Panel(
                        Markdown(content) if full_path.suffix == ".md" else content,
                        title=str(path),
                        border_style="blue",
                    )
                )
            else:
                self.console.print(f"[red]File not found: {path}[/red]")


class CallbackConfirmationSource(ConfirmationSource):
    """Delegates decisions to a callable.

    The callback may return an ApprovalResponse, a bool, or None (pending).
    """

    def __init__(
        self,
        callback: Callable[[ApprovalRequest], ApprovalResponse | bool | None],
        on_show: Callable[[ApprovalRequest], None] | None = None,
    ) -> None:
        self.callback = callback
        self.on_show = on_show

    def show(self, request: ApprovalRequest) -> None:
        if self.on_show:
            self.on_show(request)

    def ask(self, request: ApprovalRequest) -> ApprovalResponse | None:
        answer = self.callback(request)
        if answer is None or isinstance(answer, ApprovalResponse):
            return answer
        return ApprovalResponse(approved=bool(answer), decided_by="callback")


class ScriptedConfirmationSource(ConfirmationSource):
    """Fixed answers per subject id, with a default.

    Used for non-interactive runs (``--auto-approve``) and tests. An answer
    of None leaves the subject pending.
    """

    def __init__(
        self,
        answers: dict[str, bool | None] | None = None,
        default: bool | None = True,
        decided_by: str = "script",
    ) -> None:
        self.answers = dict(answers or {})
        self.default = default
        self.decided_by = decided_by
        self.shown: list[str] = []
        self.asked: list[str] = []
        self._lock = threading.Lock()

    def show(self, request: ApprovalRequest) -> None:
        with self._lock:
            self.shown.append(request.subject.text)

    def ask(self, request: ApprovalRequest) -> ApprovalResponse | None:
        subject_id = request.subject.subject_id
        with self._lock:
            self.asked.append(subject_id)
            answer = self.answers.get(subject_id, self.default)
        if answer is None:
            return None
        return ApprovalResponse(approved=answer, decided_by=self.decided_by)


@dataclass
class _Slot:
    request: ApprovalRequest
    response: ApprovalResponse | None = None
    answered: threading.Event = field(default_factory=threading.Event)


class ChannelConfirmationSource(ConfirmationSource):
    """Explicit request/response channel.

    ``ask`` registers the request and, when blocking, waits until another
    thread calls ``respond``. In non-blocking mode an unanswered request
    stays outstanding and the gate reports Pending; asking again for the
    same subject picks up the answer once it arrives.
    """

    def __init__(self, block: bool = True) -> None:
        self.block = block
        self.shown: list[str] = []
        self._recorder: Callable[[ApprovalRequest, ApprovalResponse], None] | None = None
        self._slots: dict[str, _Slot] = {}
        self._by_subject: dict[str, str] = {}
        self._changed = threading.Condition()

    def show(self, request: ApprovalRequest) -> None:
        with self._changed:
            self.shown.append(request.subject.text)

    def ask(self, request: ApprovalRequest) -> ApprovalResponse | None:
        with self._changed:
            existing = self._by_subject.get(request.subject.subject_id)
            if existing is not None:
                slot = self._slots[existing]
            else:
                slot = _Slot(request=request)
                self._slots[request.request_id] = slot
                self._by_subject[request.subject.subject_id] = request.request_id
                self._changed.notify_all()

        if self.block:
            slot.answered.wait()
        elif not slot.answered.is_set():
            return None

        with self._changed:
            self._slots.pop(slot.request.request_id, None)
            self._by_subject.pop(slot.request.subject.subject_id, None)
        return slot.response

    def outstanding(self) -> list[ApprovalRequest]:
        """Requests still waiting for an answer."""
        with self._changed:
            return [s.request for s in self._slots.values() if not s.answered.is_set()]

    def wait_for_request(self, subject_id: str | None = None) -> ApprovalRequest:
        """Block until a request (optionally for ``subject_id``) is outstanding."""
        with self._changed:
            while True:
                for slot in self._slots.values():
                    if slot.answered.is_set():
                        continue
                    if subject_id is None or slot.request.subject.subject_id == subject_id:
                        return slot.request
                self._changed.wait()

    def respond(
        self,
        request_id: str,
        approved: bool,
        notes: str | None = None,
        decided_by: str = "user",
    ) -> None:
        """Answer an outstanding request.

        Raises:
            KeyError: If no such request is outstanding
        """
        with self._changed:
            slot = self._slots.get(request_id)
            if slot is None or slot.answered.is_set():
                raise KeyError(f"No outstanding request: {request_id}")
            slot.response = ApprovalResponse(approved=approved, notes=notes, decided_by=decided_by)
            if self._recorder is not None:
                self._recorder(slot.request, slot.response)
                slot.response.recorded = True
            slot.answered.set()

    def attach(self, recorder: Callable[[ApprovalRequest, ApprovalResponse], None]) -> None:
        self._recorder = recorder


class ApprovalGate:
    """Blocks low-trust actions on an external yes/no decision.

    Every final outcome is appended to the audit log exactly once, at the
    moment the answer is registered where the source supports it.
    """

    def __init__(self, source: ConfirmationSource, audit_log: AuditLog) -> None:
        self.source = source
        self.audit_log = audit_log
        self.source.attach(self._record)

    def gate(self, subject: GateSubject) -> Decision:
        """Evaluate a subject and return Approved, Rejected or Pending."""
        record = self._decide(subject)
        return record.decision if record else Decision.PENDING

    def gate_command(self, command: Command) -> Decision:
        return self.gate(GateSubject.for_command(command))

    def require(self, subject: GateSubject) -> Decision:
        """Like ``gate`` but raise on rejection.

        Raises:
            ApprovalDenied: If the source answers no
        """
        record = self._decide(subject)
        if record is None:
            return Decision.PENDING
        if record.decision == Decision.REJECTED:
            raise ApprovalDenied(subject.subject_id, record.notes)
        return record.decision

    def _decide(self, subject: GateSubject) -> ApprovalRecord | None:
        request = ApprovalRequest(subject=subject)
        self.source.show(request)

        if not subject.requires_approval:
            response = ApprovalResponse(approved=True, decided_by="auto")
        else:
            response = self.source.ask(request)
            if response is None:
                logger.info("GATE: %s %s pending", subject.kind.value, subject.subject_id)
                return None

        if not response.recorded:
            self._record(request, response)
        return ApprovalRecord(
            subject_id=subject.subject_id,
            subject_kind=subject.kind,
            decision=response.decision,
            decided_by=response.decided_by,
            notes=response.notes,
        )

    def _record(self, request: ApprovalRequest, response: ApprovalResponse) -> None:
        """Append the final decision for a request to the audit log."""
        subject = request.subject
        self.audit_log.append(
            AuditKind.GATE_DECISION,
            subject.subject_id,
            subject_kind=subject.kind,
            decision=response.decision,
            decided_by=response.decided_by,
            notes=response.notes,
            detail={"text": subject.text, "requires_approval": subject.requires_approval},
        )

        if response.decision == Decision.REJECTED:
            logger.warning("GATE: %s %s rejected", subject.kind.value, subject.subject_id)
        else:
            logger.info(
                "GATE: %s %s approved by %s",
                subject.kind.value,
                subject.subject_id,
                response.decided_by,
            )
