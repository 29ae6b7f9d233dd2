"""Per-task sub-workflow.

Each planned task moves through a fixed sequence of sub-states on its own
branch:

    planned -> branched -> scaffolded -> tests_written -> build_checked
            -> unit_tested -> e2e_tested -> approval_pending -> committed
            -> pushed

A step only advances after its action succeeds. Check failures halt the
task where it is until it is resubmitted after an external fix. The commit
step always waits for an explicit approval of the task itself, even though
the commit command text carries an auto-approving prefix.
"""

import logging

from schemas.approval import AuditKind, Decision, SubjectKind
from schemas.workflow_state import TaskState, TaskUnit
from scaffolding.generator import ArtifactScaffolder, ScaffoldConflict
from scaffolding.templates import task_artifact_path
from tools.vcs_planner import DEFAULT_REMOTE, TaskSubject, plan_task
from tools.vcs_tool import VcsExecutionFailed
from tools.verification import CheckKind, VerificationTool

from .audit_log import AuditLog
from .checkpoints import ApprovalGate, GateSubject
from .dispatcher import CommandDispatcher
from .errors import ApprovalDenied, InvalidTransition, VerificationFailed

logger = logging.getLogger(__name__)

# state -> check that must pass to leave it
CHECKS: dict[TaskState, CheckKind] = {
    TaskState.TESTS_WRITTEN: CheckKind.BUILD,
    TaskState.BUILD_CHECKED: CheckKind.UNIT,
    TaskState.UNIT_TESTED: CheckKind.E2E,
}


class TaskSubWorkflow:
    """State machine for one development task.

    Instances share no mutable state with each other; each owns its
    TaskUnit and its branch.
    """

    def __init__(
        self,
        unit: TaskUnit,
        gate: ApprovalGate,
        dispatcher: CommandDispatcher,
        scaffolder: ArtifactScaffolder,
        verifier: VerificationTool,
        audit_log: AuditLog,
        remote: str = DEFAULT_REMOTE,
    ) -> None:
        self.unit = unit
        self.gate = gate
        self.dispatcher = dispatcher
        self.scaffolder = scaffolder
        self.verifier = verifier
        self.audit_log = audit_log
        self.remote = remote

        if not self.unit.history:
            self.unit.history.append(self.unit.sub_state.value)

    @property
    def state(self) -> TaskState:
        return self.unit.sub_state

    @property
    def subject_id(self) -> str:
        return self.unit.branch_name

    @property
    def is_done(self) -> bool:
        return self.unit.sub_state == TaskState.PUSHED

    def artifact_paths(self) -> tuple[str, ...]:
        return (
            task_artifact_path("task", self.unit.name),
            task_artifact_path("task_tests", self.unit.name),
        )

    def snapshot(self) -> TaskUnit:
        return self.unit.model_copy(deep=True)

    def step(self) -> TaskState:
        """Perform the action that leads out of the current state.

        Returns:
            The (possibly unchanged) state; unchanged means the task is
            waiting on a pending approval

        Raises:
            VerificationFailed: A build/unit/e2e check failed
            ApprovalDenied: The commit approval was rejected
            VcsExecutionFailed: A branch/commit/push command failed
            ScaffoldConflict: A task file exists with different content
            InvalidTransition: The task is already pushed
        """
        current = self.unit.sub_state
        target = current.next()
        if target is None:
            raise InvalidTransition(f"Task {self.unit.name} is already {current.value}")

        try:
            advanced = self._perform(current)
        except (VerificationFailed, ApprovalDenied, VcsExecutionFailed, ScaffoldConflict) as e:
            self._record_error(current, e)
            raise

        if not advanced:
            return current

        self._move_to(target)
        return target

    def run(self) -> TaskState:
        """Step until pushed or waiting on approval."""
        while not self.is_done:
            before = self.unit.sub_state
            if self.step() == before:
                break
        return self.unit.sub_state

    def resubmit(self) -> TaskState:
        """Retry from the current state after an external fix."""
        logger.info("TASK %s: resubmitted at %s", self.unit.name, self.unit.sub_state.value)
        self.unit.last_error = None
        return self.run()

    def _perform(self, current: TaskState) -> bool:
        task_plan = plan_task(
            TaskSubject(
                feature_name=self.unit.feature_name,
                task_name=self.unit.name,
                artifact_paths=self.artifact_paths(),
            ),
            remote=self.remote,
        )

        if current == TaskState.PLANNED:
            return self._dispatch(task_plan.branch)

        if current == TaskState.BRANCHED:
            self.scaffolder.scaffold_task(self.unit.feature_name, self.unit.name, "task")
            return True

        if current == TaskState.SCAFFOLDED:
            self.scaffolder.scaffold_task(self.unit.feature_name, self.unit.name, "task_tests")
            return True

        if current in CHECKS:
            check = CHECKS[current]
            result = self.verifier.execute(task_name=self.unit.name, check=check)
            if not result.success:
                raise VerificationFailed(self.unit.name, check.value, result.error)
            return True

        if current == TaskState.E2E_TESTED:
            return True  # now awaiting approval

        if current == TaskState.APPROVAL_PENDING:
            decision = self.gate.require(
                GateSubject(
                    subject_id=self.subject_id,
                    kind=SubjectKind.TASK,
                    text=f"ask: commit task {self.unit.name} on {self.unit.branch_name}",
                    requires_approval=True,
                    artifact_paths=self.artifact_paths(),
                )
            )
            if decision != Decision.APPROVED:
                return False
            return self._dispatch(task_plan.commit)

        if current == TaskState.COMMITTED:
            if not self._dispatch(task_plan.push):
                return False
            self.unit.archived = True
            return True

        raise InvalidTransition(f"No action defined for {current.value}")

    def _dispatch(self, commands: list[str]) -> bool:
        results = self.dispatcher.submit_all(commands)
        return len(results) == len(commands) and all(
            r.decision == Decision.APPROVED for r in results
        )

    def _move_to(self, target: TaskState) -> None:
        previous = self.unit.sub_state
        self.unit.sub_state = target
        self.unit.history.append(target.value)
        self.audit_log.append(
            AuditKind.TASK_TRANSITION,
            self.subject_id,
            subject_kind=SubjectKind.TASK,
            from_state=previous.value,
            to_state=target.value,
            detail={"task": self.unit.name, "feature": self.unit.feature_name},
        )
        logger.info("TASK %s: %s -> %s", self.unit.name, previous.value, target.value)

    def _record_error(self, current: TaskState, error: Exception) -> None:
        self.unit.last_error = str(error)
        self.audit_log.append(
            AuditKind.ERROR,
            self.subject_id,
            subject_kind=SubjectKind.TASK,
            from_state=current.value,
            detail={"error": type(error).__name__, "message": str(error)},
        )
        logger.warning("TASK %s: halted at %s: %s", self.unit.name, current.value, error)
