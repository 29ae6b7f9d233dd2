"""Workflow stage machine.

Drives a feature through the fixed stage sequence:

    init -> prd -> high_level_design -> low_level_design -> test_plan
         -> task_split -> implementation -> integration -> build_verify

Only the current stage can be scaffolded, planned or advanced, and a stage
is only instantiated once its predecessor is approved, so stages can never
be skipped, reordered or re-run. Every operation takes a WorkflowState and
returns an updated copy.
"""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from schemas.approval import AuditKind, Decision, SubjectKind
from schemas.workflow_state import (
    Artifact,
    StageId,
    StageRecord,
    TaskState,
    TaskUnit,
    WorkflowState,
    feature_branch_name,
    is_valid_slug,
    task_branch_name,
)
from scaffolding.generator import ArtifactScaffolder, ScaffoldConflict
from scaffolding.templates import get_layout
from tools.vcs_planner import DEFAULT_REMOTE, StageSubject, plan_stage
from tools.vcs_tool import VcsExecutionFailed
from tools.verification import DeviceTool, VerificationTool

from .audit_log import AuditLog
from .checkpoints import ApprovalGate, GateSubject
from .dispatcher import CommandDispatcher
from .errors import ApprovalDenied, InvalidTransition, VerificationFailed
from .task_workflow import TaskSubWorkflow

logger = logging.getLogger(__name__)

TASK_LIST_PATH = "tasks/task_list.md"
TASK_LINE = re.compile(r"^\s*[-*]\s+(?:\[[ xX]\]\s+)?([a-z0-9][a-z0-9-]*)\s*(?::.*)?$")

STATE_FILE = "state.json"


@dataclass
class TaskRunOutcome:
    """Result of running one task sub-workflow."""

    name: str
    state: TaskState
    error: str | None = None
    error_kind: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def parse_task_list(content: str) -> list[str]:
    """Task names from the bullet/checkbox lines of a task list."""
    names = []
    for line in content.splitlines():
        match = TASK_LINE.match(line)
        if match and match.group(1) not in names:
            names.append(match.group(1))
    return names


class WorkflowStageMachine:
    """Sequential stage machine owning one sub-workflow per task.

    Manages:
    - Stage scaffolding, planning and gated advancement
    - Task sub-workflows spawned on entering Implementation
    - Concurrent task execution
    - State persistence
    """

    def __init__(
        self,
        workspace: Path | str,
        gate: ApprovalGate,
        dispatcher: CommandDispatcher,
        audit_log: AuditLog,
        verifier: VerificationTool,
        device: DeviceTool,
        scaffolder: ArtifactScaffolder | None = None,
        remote: str = DEFAULT_REMOTE,
        max_parallel_tasks: int = 4,
        state_dir: str = ".stagegate",
    ) -> None:
        """Initialize the stage machine.

        Args:
            workspace: Feature workspace root
            gate: Approval gate for stage and task decisions
            dispatcher: Execution layer for planned commands
            audit_log: System of record
            verifier: Build/test collaborator for tasks
            device: Install/launch collaborator for final verification
            scaffolder: Artifact scaffolder (default: one rooted at workspace)
            remote: Remote name used in push commands
            max_parallel_tasks: Thread pool size for task sub-workflows
            state_dir: Directory under the workspace for persisted state
        """
        self.workspace = Path(workspace)
        self.gate = gate
        self.dispatcher = dispatcher
        self.audit_log = audit_log
        self.verifier = verifier
        self.device = device
        self.scaffolder = scaffolder or ArtifactScaffolder(self.workspace)
        self.remote = remote
        self.max_parallel_tasks = max(1, max_parallel_tasks)
        self.state_dir = self.workspace / state_dir

        self._task_flows: dict[str, TaskSubWorkflow] = {}

    # ------------------------------------------------------------------
    # Stage operations
    # ------------------------------------------------------------------

    def initialize(self, feature_name: str) -> WorkflowState:
        """Create the workflow for a feature, positioned at Init."""
        if not is_valid_slug(feature_name):
            raise ValueError(
                f"Invalid feature name: {feature_name!r} (use lowercase letters, digits and hyphens)"
            )

        state = WorkflowState(
            feature_name=feature_name,
            feature_branch=feature_branch_name(feature_name),
        )
        state.stages[StageId.INIT.value] = self._new_stage(StageId.INIT)
        self._task_flows = {}

        self.audit_log.append(
            AuditKind.STAGE_TRANSITION,
            StageId.INIT.value,
            subject_kind=SubjectKind.STAGE,
            to_state=StageId.INIT.value,
            detail={"feature": feature_name},
        )
        logger.info("WORKFLOW: initialized %s", feature_name)
        return state

    def scaffold(
        self,
        state: WorkflowState,
        contents: dict[str, str] | None = None,
        stage: StageId | None = None,
    ) -> tuple[WorkflowState, list[Artifact]]:
        """Scaffold the current stage's artifacts.

        Args:
            state: Current workflow state
            contents: Optional drafted bodies by path
            stage: Stage the caller intends to scaffold (must be current)

        Raises:
            InvalidTransition: If ``stage`` is not the current stage or an
                earlier stage is not approved
            ScaffoldConflict: If existing files differ; nothing is written
        """
        state = state.model_copy(deep=True)
        self._ensure_open(state)
        target = stage or state.current_stage
        if target != state.current_stage:
            raise InvalidTransition(
                f"Cannot scaffold {target.value}: current stage is {state.current_stage.value}"
            )
        self._ensure_predecessors_approved(state, target)

        record = state.current
        try:
            artifacts = self.scaffolder.scaffold(target, state.feature_name, contents)
        except ScaffoldConflict as e:
            self.audit_log.append(
                AuditKind.SCAFFOLD_CONFLICT,
                target.value,
                subject_kind=SubjectKind.STAGE,
                detail={"paths": e.paths},
            )
            raise

        checksums = {a.path: a.checksum for a in artifacts}
        if record.scaffolded and checksums != record.artifacts:
            record.vcs_commands = None
        record.artifacts = checksums
        record.scaffolded = True
        state.updated_at = datetime.now()

        self.audit_log.append(
            AuditKind.SCAFFOLD,
            target.value,
            subject_kind=SubjectKind.STAGE,
            detail={"paths": sorted(checksums)},
        )
        return state, artifacts

    def accept_edits(self, state: WorkflowState) -> tuple[WorkflowState, list[Artifact]]:
        """Take the current stage's files as they are on disk.

        Hand edits to scaffolded files (e.g. task lines added to the task
        list) become the recorded content. Changed files need planning
        again before the stage can advance.

        Raises:
            InvalidTransition: If the stage has not been scaffolded yet
        """
        record = state.current
        if not record.scaffolded:
            raise InvalidTransition(f"Stage {record.id.value} has not been scaffolded")

        contents = {}
        for spec in record.artifact_specs:
            path = self.scaffolder.workspace / spec.path
            if path.is_file():
                contents[spec.path] = path.read_text(encoding="utf-8")

        state, artifacts = self.scaffold(state, contents)
        edited = [a.path for a in artifacts if record.artifacts.get(a.path) != a.checksum]
        if edited:
            logger.info("WORKFLOW: %s accepted edits to %s", record.id.value, ", ".join(edited))
        return state, artifacts

    def plan(self, state: WorkflowState) -> WorkflowState:
        """Plan the VCS commands recording the current stage.

        Raises:
            InvalidTransition: If the stage has not been scaffolded
        """
        state = state.model_copy(deep=True)
        self._ensure_open(state)
        record = state.current
        if not record.scaffolded:
            raise InvalidTransition(f"Stage {record.id.value} must be scaffolded before planning")

        subject = StageSubject(
            feature_name=state.feature_name,
            stage=record.id,
            artifact_paths=tuple(sorted(record.artifacts)),
            task_names=tuple(state.task_plan) if record.id == StageId.INTEGRATION else (),
        )
        record.vcs_commands = plan_stage(subject, remote=self.remote)
        state.updated_at = datetime.now()

        self.audit_log.append(
            AuditKind.VCS_PLAN,
            record.id.value,
            subject_kind=SubjectKind.STAGE,
            detail={"commands": record.vcs_commands},
        )
        return state

    def set_task_plan(self, state: WorkflowState, task_names: list[str]) -> WorkflowState:
        """Record the task plan while at TaskSplit.

        Raises:
            InvalidTransition: Outside TaskSplit
            ValueError: For empty, duplicate or invalid names
        """
        state = state.model_copy(deep=True)
        if state.current_stage != StageId.TASK_SPLIT:
            raise InvalidTransition("The task plan can only be set during task_split")
        state.task_plan = self._validate_task_names(task_names)
        state.updated_at = datetime.now()
        return state

    def advance(self, state: WorkflowState) -> WorkflowState:
        """Gate the current stage and move to the next one.

        Returns:
            Updated state. The current stage's ``approval_status`` tells the
            outcome: Approved (and the next stage instantiated), Rejected
            (stage stays, resubmit by advancing again) or Pending.

        Raises:
            InvalidTransition: If a precondition is not met
            VerificationFailed: If final device verification fails
            VcsExecutionFailed: If a planned command fails; the stage stays
                at its pre-commit state
        """
        state = state.model_copy(deep=True)
        self._ensure_open(state)
        record = state.current
        stage = record.id

        self._check_advance_preconditions(state)

        if stage == StageId.BUILD_VERIFY:
            result = self.device.execute(feature_name=state.feature_name, branch=state.feature_branch)
            if not result.success:
                error = VerificationFailed(state.feature_name, "device", result.error)
                self._record_error(stage, error)
                raise error

        subject = GateSubject(
            subject_id=stage.value,
            kind=SubjectKind.STAGE,
            text=f"ask: advance {state.feature_name} past {stage.display_name}",
            requires_approval=True,
            artifact_paths=tuple(sorted(record.artifacts)),
        )
        try:
            if self._standing_approval(subject):
                logger.info("WORKFLOW: %s already approved; retrying its commands", stage.value)
                decision = Decision.APPROVED
            else:
                decision = self.gate.require(subject)
        except ApprovalDenied as e:
            record.approval_status = Decision.REJECTED
            state.updated_at = datetime.now()
            self._record_error(stage, e)
            return state

        if decision == Decision.PENDING:
            record.approval_status = Decision.PENDING
            return state

        try:
            results = self.dispatcher.submit_all(record.vcs_commands or [])
        except (VcsExecutionFailed, ApprovalDenied) as e:
            self._record_error(stage, e)
            raise
        if any(r.decision != Decision.APPROVED for r in results):
            logger.info("WORKFLOW: %s waiting on a pending command", stage.value)
            return state

        record.approval_status = Decision.APPROVED
        record.approved_at = datetime.now()
        state.updated_at = record.approved_at

        next_stage = stage.next()
        if next_stage is None:
            state.completed = True
            self.audit_log.append(
                AuditKind.STAGE_TRANSITION,
                stage.value,
                subject_kind=SubjectKind.STAGE,
                from_state=stage.value,
                to_state="completed",
            )
            logger.info("WORKFLOW: %s completed", state.feature_name)
            return state

        state.stages[next_stage.value] = self._new_stage(next_stage)
        state.current_stage = next_stage
        self.audit_log.append(
            AuditKind.STAGE_TRANSITION,
            next_stage.value,
            subject_kind=SubjectKind.STAGE,
            from_state=stage.value,
            to_state=next_stage.value,
        )
        logger.info("WORKFLOW: %s -> %s", stage.value, next_stage.value)

        if next_stage == StageId.IMPLEMENTATION:
            self._spawn_tasks(state)

        return state

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def task_flow(self, name: str) -> TaskSubWorkflow:
        return self._task_flows[name]

    @property
    def task_flows(self) -> dict[str, TaskSubWorkflow]:
        return dict(self._task_flows)

    def run_tasks(
        self,
        state: WorkflowState,
        names: list[str] | None = None,
    ) -> tuple[WorkflowState, dict[str, TaskRunOutcome]]:
        """Run task sub-workflows concurrently.

        Each task runs until pushed, halted by an error, or waiting on its
        approval. One task's failure never stops its siblings.
        """
        if state.current_stage != StageId.IMPLEMENTATION:
            raise InvalidTransition("Tasks only run during implementation")
        if not self._task_flows and state.tasks:
            self.restore(state)

        selected = names or list(self._task_flows)
        unknown = [n for n in selected if n not in self._task_flows]
        if unknown:
            raise KeyError(f"Unknown tasks: {', '.join(unknown)}")

        pending = [self._task_flows[n] for n in selected if not self._task_flows[n].is_done]
        outcomes: dict[str, TaskRunOutcome] = {}

        if pending:
            workers = min(self.max_parallel_tasks, len(pending))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="task") as pool:
                futures = {flow.unit.name: pool.submit(self._run_one, flow) for flow in pending}
                for name, future in futures.items():
                    outcomes[name] = future.result()

        for name in selected:
            if name not in outcomes:
                outcomes[name] = TaskRunOutcome(name=name, state=self._task_flows[name].state)

        return self.sync_tasks(state), outcomes

    def sync_tasks(self, state: WorkflowState) -> WorkflowState:
        """Copy of ``state`` with task units refreshed from their sub-workflows."""
        state = state.model_copy(deep=True)
        for name, flow in self._task_flows.items():
            state.tasks[name] = flow.snapshot()
        state.updated_at = datetime.now()
        return state

    def restore(self, state: WorkflowState) -> None:
        """Rebuild task sub-workflows from persisted task units."""
        self._task_flows = {
            name: self._make_flow(unit.model_copy(deep=True))
            for name, unit in state.tasks.items()
        }

    def _run_one(self, flow: TaskSubWorkflow) -> TaskRunOutcome:
        try:
            final = flow.resubmit() if flow.unit.last_error else flow.run()
        except (VerificationFailed, ApprovalDenied, VcsExecutionFailed, ScaffoldConflict) as e:
            return TaskRunOutcome(
                name=flow.unit.name,
                state=flow.state,
                error=str(e),
                error_kind=type(e).__name__,
            )
        return TaskRunOutcome(name=flow.unit.name, state=final)

    def _spawn_tasks(self, state: WorkflowState) -> None:
        self._task_flows = {}
        for name in state.task_plan:
            unit = TaskUnit(
                name=name,
                feature_name=state.feature_name,
                branch_name=task_branch_name(state.feature_name, name),
            )
            state.tasks[name] = unit
            self._task_flows[name] = self._make_flow(unit.model_copy(deep=True))
        logger.info("WORKFLOW: spawned %d task(s)", len(self._task_flows))

    def _make_flow(self, unit: TaskUnit) -> TaskSubWorkflow:
        return TaskSubWorkflow(
            unit=unit,
            gate=self.gate,
            dispatcher=self.dispatcher,
            scaffolder=self.scaffolder,
            verifier=self.verifier,
            audit_log=self.audit_log,
            remote=self.remote,
        )

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _check_advance_preconditions(self, state: WorkflowState) -> None:
        record = state.current
        stage = record.id

        if not record.scaffolded:
            raise InvalidTransition(f"Stage {stage.value} has not been scaffolded")

        missing = [
            path
            for path, checksum in record.artifacts.items()
            if not self.scaffolder.exists(path, checksum)
        ]
        if missing:
            raise InvalidTransition(
                f"Stage {stage.value} artifacts missing or changed: {', '.join(sorted(missing))}"
            )

        if record.vcs_commands is None:
            raise InvalidTransition(f"Stage {stage.value} has no planned VCS commands")

        if stage == StageId.TASK_SPLIT and not state.task_plan:
            task_list = self.workspace / TASK_LIST_PATH
            names = parse_task_list(task_list.read_text(encoding="utf-8")) if task_list.exists() else []
            if not names:
                raise InvalidTransition("No tasks planned: add task lines to tasks/task_list.md")
            state.task_plan = self._validate_task_names(names)

        if stage == StageId.IMPLEMENTATION:
            state.tasks.update({n: f.snapshot() for n, f in self._task_flows.items()})
            unfinished = [
                name for name, unit in state.tasks.items() if unit.sub_state != TaskState.PUSHED
            ]
            if unfinished:
                raise InvalidTransition(f"Tasks not pushed yet: {', '.join(sorted(unfinished))}")

    def _ensure_open(self, state: WorkflowState) -> None:
        if state.completed:
            raise InvalidTransition(f"Workflow for {state.feature_name} is already complete")

    def _ensure_predecessors_approved(self, state: WorkflowState, stage: StageId) -> None:
        for earlier in list(StageId)[: stage.order]:
            record = state.get_stage(earlier)
            if record is None or record.approval_status != Decision.APPROVED:
                raise InvalidTransition(f"Stage {earlier.value} must be approved before {stage.value}")

    def _validate_task_names(self, task_names: list[str]) -> list[str]:
        if not task_names:
            raise ValueError("Task plan is empty")
        invalid = [n for n in task_names if not is_valid_slug(n)]
        if invalid:
            raise ValueError(f"Invalid task names: {', '.join(invalid)}")
        if len(set(task_names)) != len(task_names):
            raise ValueError("Task names must be unique")
        return list(task_names)

    def _new_stage(self, stage: StageId) -> StageRecord:
        return StageRecord(
            id=stage,
            order=stage.order,
            artifact_specs=get_layout(stage).artifact_specs,
        )

    def _standing_approval(self, subject: GateSubject) -> bool:
        """True if this advance was approved but its transition never happened.

        A failed VCS command after the approval leaves the stage open; the
        retry reuses the logged decision instead of asking again.
        """
        for entry in reversed(self.audit_log.entries()):
            if entry.subject_kind != SubjectKind.STAGE:
                continue
            if entry.kind == AuditKind.STAGE_TRANSITION and entry.from_state == subject.subject_id:
                return False
            if entry.kind == AuditKind.GATE_DECISION and entry.subject_id == subject.subject_id:
                return entry.decision == Decision.APPROVED and entry.detail.get("text") == subject.text
        return False

    def _record_error(self, stage: StageId, error: Exception) -> None:
        self.audit_log.append(
            AuditKind.ERROR,
            stage.value,
            subject_kind=SubjectKind.STAGE,
            detail={"error": type(error).__name__, "message": str(error)},
        )
        logger.warning("WORKFLOW: %s halted: %s", stage.value, error)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save_state(self, state: WorkflowState) -> Path:
        """Persist state (with task units synced) to disk."""
        state = self.sync_tasks(state) if self._task_flows else state
        self.state_dir.mkdir(parents=True, exist_ok=True)
        state_file = self.state_dir / STATE_FILE
        state_file.write_text(state.model_dump_json(indent=2), encoding="utf-8")
        return state_file

    def load_state(self) -> WorkflowState:
        """Load persisted state and rebuild task sub-workflows.

        Raises:
            FileNotFoundError: If no state has been saved
        """
        state_file = self.state_dir / STATE_FILE
        state = WorkflowState.model_validate_json(state_file.read_text(encoding="utf-8"))
        self.restore(state)
        return state
