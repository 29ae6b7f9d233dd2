"""Append-only audit log.

The log is the system of record for what was classified, approved,
rejected, scaffolded and transitioned, and when. A single lock serializes
sequence assignment, the in-memory append and the optional JSONL write, so
entry order always matches the order in which the events were recorded.
"""

import json
import logging
import threading
from collections import Counter
from pathlib import Path
from typing import Any

from schemas.approval import AuditEntry, AuditKind, Decision, SubjectKind
from schemas.command import Command

logger = logging.getLogger(__name__)


class AuditLog:
    """Thread-safe, append-only sequence of audit entries.

    Example:
        >>> log = AuditLog()
        >>> entry = log.append(AuditKind.GATE_DECISION, "prd", decision=Decision.APPROVED)
        >>> entry.sequence
        1
    """

    def __init__(self, path: Path | str | None = None) -> None:
        """Initialize the log.

        Args:
            path: Optional JSONL file every entry is also appended to
        """
        self.path = Path(path) if path else None
        self._entries: list[AuditEntry] = []
        self._lock = threading.Lock()
        self._sequence = 0

        if self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)

    def append(
        self,
        kind: AuditKind,
        subject_id: str,
        subject_kind: SubjectKind | None = None,
        decision: Decision | None = None,
        decided_by: str | None = None,
        notes: str | None = None,
        from_state: str | None = None,
        to_state: str | None = None,
        command: Command | None = None,
        detail: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """Atomically append an entry and return it with its sequence number."""
        with self._lock:
            self._sequence += 1
            entry = AuditEntry(
                sequence=self._sequence,
                kind=kind,
                subject_id=subject_id,
                subject_kind=subject_kind,
                decision=decision,
                decided_by=decided_by,
                notes=notes,
                from_state=from_state,
                to_state=to_state,
                command=command,
                detail=detail or {},
            )
            self._entries.append(entry)
            if self.path:
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(entry.model_dump_json() + "\n")

        logger.debug("AUDIT #%d %s %s", entry.sequence, kind.value, subject_id)
        return entry

    def entries(self) -> tuple[AuditEntry, ...]:
        """Snapshot of all entries in sequence order."""
        with self._lock:
            return tuple(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def filter(
        self,
        kind: AuditKind | None = None,
        subject_id: str | None = None,
        subject_kind: SubjectKind | None = None,
        decision: Decision | None = None,
        to_state: str | None = None,
    ) -> list[AuditEntry]:
        """Entries matching every given criterion, in sequence order."""
        result = []
        for entry in self.entries():
            if kind is not None and entry.kind != kind:
                continue
            if subject_id is not None and entry.subject_id != subject_id:
                continue
            if subject_kind is not None and entry.subject_kind != subject_kind:
                continue
            if decision is not None and entry.decision != decision:
                continue
            if to_state is not None and entry.to_state != to_state:
                continue
            result.append(entry)
        return result

    def decisions(self, subject_kind: SubjectKind | None = None) -> list[AuditEntry]:
        return self.filter(kind=AuditKind.GATE_DECISION, subject_kind=subject_kind)

    def summary(self) -> dict[str, Any]:
        """Status summary built only from the log.

        A stage counts as approved once it has an Approved decision and its
        transition was logged; an approval whose commands failed does not.

        Returns:
            Dict with approved/rejected stages, per-task latest state,
            gate decision counts and error count.
        """
        entries = self.entries()

        approved: list[str] = []
        transitioned: set[str] = set()
        rejected_stages: list[str] = []
        task_states: dict[str, str] = {}
        decision_counts: Counter[str] = Counter()
        errors = 0
        scaffolded: list[str] = []

        for entry in entries:
            if entry.kind == AuditKind.GATE_DECISION and entry.decision:
                decision_counts[entry.decision.value] += 1
                if entry.subject_kind == SubjectKind.STAGE:
                    if entry.decision == Decision.APPROVED:
                        if entry.subject_id not in approved:
                            approved.append(entry.subject_id)
                    elif entry.decision == Decision.REJECTED:
                        rejected_stages.append(entry.subject_id)
            elif entry.kind == AuditKind.STAGE_TRANSITION and entry.from_state:
                transitioned.add(entry.from_state)
            elif entry.kind == AuditKind.TASK_TRANSITION and entry.to_state:
                task_states[entry.subject_id] = entry.to_state
            elif entry.kind == AuditKind.SCAFFOLD:
                scaffolded.extend(entry.detail.get("paths", []))
            elif entry.kind in (AuditKind.ERROR, AuditKind.SCAFFOLD_CONFLICT):
                errors += 1

        return {
            "entries": len(entries),
            "last_sequence": entries[-1].sequence if entries else 0,
            "approved_stages": [stage for stage in approved if stage in transitioned],
            "rejected_stages": rejected_stages,
            "tasks": task_states,
            "decisions": dict(decision_counts),
            "scaffolded_paths": scaffolded,
            "errors": errors,
        }

    @classmethod
    def load(cls, path: Path | str) -> "AuditLog":
        """Restore a log from its JSONL file and keep appending to it."""
        path = Path(path)
        log = cls(path)
        if not path.exists():
            return log

        with open(path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                log._entries.append(AuditEntry.model_validate(json.loads(line)))

        if log._entries:
            log._sequence = log._entries[-1].sequence
        return log
