"""Feature runner.

Drives a feature from Init to BuildVerify with the stage machine:
scaffold (with drafted content), plan, advance, and run tasks during
Implementation. State is saved after every stage so a run can resume.
"""

import logging

from rich.console import Console
from rich.table import Table

from schemas.approval import Decision
from schemas.workflow_state import StageId, TaskState, WorkflowState
from tools.drafting import ContentDrafter, TemplateDrafter

from .errors import ApprovalDenied
from .state_machine import TaskRunOutcome, WorkflowStageMachine

logger = logging.getLogger(__name__)


class FeatureRunner:
    """Runs stages in order until the workflow completes or has to wait."""

    def __init__(
        self,
        machine: WorkflowStageMachine,
        drafter: ContentDrafter | None = None,
        console: Console | None = None,
        task_plan: list[str] | None = None,
    ) -> None:
        """Initialize runner.

        Args:
            machine: Stage machine to drive
            drafter: Content provider for artifact bodies (default: templates)
            console: Rich console for output
            task_plan: Task names to use at task_split when the task list
                has none
        """
        self.machine = machine
        self.drafter = drafter or TemplateDrafter()
        self.console = console or Console()
        self.task_plan = list(task_plan or [])

    def run(self, feature_name: str | None = None, resume: bool = False) -> WorkflowState:
        """Run a feature workflow.

        Args:
            feature_name: Feature to start (ignored when resuming)
            resume: Continue from the persisted state

        Returns:
            Final (or waiting) workflow state

        Raises:
            ApprovalDenied: If a stage advance is rejected
        """
        if resume:
            state = self.machine.load_state()
            self.console.print(f"[green]Resuming {state.feature_name} at {state.current_stage.value}[/green]")
        else:
            if not feature_name:
                raise ValueError("A feature name is required to start a run")
            state = self.machine.initialize(feature_name)
            self.console.print(f"[green]Starting feature {feature_name}[/green]")
        self.machine.save_state(state)

        while not state.completed:
            before = state.current_stage
            state = self.run_stage(state)
            if not state.completed and state.current_stage == before:
                self.console.print(f"[yellow]Waiting at {before.value}; resume when ready.[/yellow]")
                break

        if state.completed:
            self._print_completion_summary(state)
        return state

    def run_stage(self, state: WorkflowState) -> WorkflowState:
        """Take the current stage as far as it can go."""
        stage = state.current_stage
        self._print_stage_start(stage)
        logger.info("RUNNER: starting stage %s", stage.value)

        if stage == StageId.IMPLEMENTATION:
            state, outcomes = self.machine.run_tasks(state)
            self._print_task_outcomes(outcomes)
            self.machine.save_state(state)
            if not all(o.state == TaskState.PUSHED for o in outcomes.values()):
                return state

        record = state.current
        if not record.scaffolded:
            contents = self.drafter.draft_stage(stage, record.artifact_specs, state.feature_name)
            state, artifacts = self.machine.scaffold(state, contents)
            for artifact in artifacts:
                self.console.print(f"[green]Created:[/green] {artifact.path}")

        if stage == StageId.TASK_SPLIT and self.task_plan and not state.task_plan:
            state = self.machine.set_task_plan(state, self.task_plan)

        if state.current.vcs_commands is None:
            state = self.machine.plan(state)

        state = self.machine.advance(state)
        self.machine.save_state(state)

        decision = state.stages[stage.value].approval_status
        if decision == Decision.REJECTED:
            self.console.print(f"[red]Stage {stage.display_name} rejected[/red]")
            raise ApprovalDenied(stage.value)
        if decision == Decision.APPROVED:
            self.console.print(f"[green]Approved:[/green] {stage.display_name}")
        return state

    def _print_stage_start(self, stage: StageId) -> None:
        """Print stage start indicator."""
        self.console.print(f"\n[bold blue]>>> {stage.display_name}[/bold blue]")

    def _print_task_outcomes(self, outcomes: dict[str, TaskRunOutcome]) -> None:
        table = Table(title="Tasks")
        table.add_column("Task", style="cyan")
        table.add_column("State")
        table.add_column("Error", style="red")
        for name, outcome in sorted(outcomes.items()):
            table.add_row(name, outcome.state.value, outcome.error or "")
        self.console.print(table)

    def _print_completion_summary(self, state: WorkflowState) -> None:
        summary = self.machine.audit_log.summary()
        self.console.print(f"\n[bold green]Feature {state.feature_name} verified[/bold green]")
        self.console.print(f"  Stages approved: {len(summary['approved_stages'])}")
        self.console.print(f"  Tasks: {', '.join(sorted(state.tasks)) or '-'}")
        self.console.print(f"  Audit entries: {summary['entries']}")
