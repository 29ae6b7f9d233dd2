"""Workflow errors.

Pending gates are not errors; a gate without an answer simply stays
pending.
"""


class InvalidCommand(Exception):
    """Raised for empty or malformed command text, before classification."""

    pass


class ApprovalDenied(Exception):
    """Raised when a gate returns Rejected for a command, stage or task."""

    def __init__(self, subject_id: str, notes: str | None = None) -> None:
        self.subject_id = subject_id
        self.notes = notes
        message = f"Approval denied for {subject_id}"
        if notes:
            message += f": {notes}"
        super().__init__(message)


class InvalidTransition(Exception):
    """Raised when a stage or task operation would skip, reorder or repeat a step."""

    pass


class VerificationFailed(Exception):
    """Raised when a task's build, unit or e2e check fails."""

    def __init__(self, task_name: str, check: str, error: str | None = None) -> None:
        self.task_name = task_name
        self.check = check
        self.error = error
        message = f"Task {task_name}: {check} check failed"
        if error:
            message += f": {error}"
        super().__init__(message)
